"""Period labelling and roll-up of per-day ledger sums"""

from collections import defaultdict
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Sequence, Tuple

from microfin_metrics.domain.amounts import ZERO, amount_or_zero
from microfin_metrics.domain.exceptions import InvalidQueryError
from microfin_metrics.domain.metric_names import GROUP_BY_CHOICES, SPLIT_DIMENSIONS


def normalize_group_by(group_by: str | None) -> str:
    key = (group_by or "day").strip().lower()
    if key not in GROUP_BY_CHOICES:
        raise InvalidQueryError(f"groupBy must be one of {', '.join(GROUP_BY_CHOICES)}")
    return key


def parse_split_by(split_by: str | Sequence[str] | None) -> List[str]:
    """Keep known split dimensions, in request order, without duplicates"""
    if not split_by:
        return []
    parts = [split_by] if isinstance(split_by, str) else list(split_by)
    fields: List[str] = []
    for part in parts:
        for name in str(part).split(","):
            name = name.strip()
            if name in SPLIT_DIMENSIONS and name not in fields:
                fields.append(name)
    return fields


def period_label(day: date, group_by: str) -> str:
    """
    Label of the period containing ``day``.

    day -> 2024-03-05, week -> 2024-W10 (ISO week-year), month -> 2024-03,
    year -> 2024
    """
    if group_by == "week":
        iso_year, iso_week, _ = day.isocalendar()
        return f"{iso_year}-W{iso_week:02d}"
    if group_by == "month":
        return f"{day.year}-{day.month:02d}"
    if group_by == "year":
        return str(day.year)
    return day.isoformat()


def _split_value(value: Any) -> Any:
    return str(value) if value is not None and not isinstance(value, str) else value


def rollup_summary(
    rows: Iterable[Tuple[str, date, Tuple[Any, ...], Any]],
    group_by: str,
    split_fields: Sequence[str],
) -> List[Dict[str, Any]]:
    """
    Collapse (name, day, split_values, total) rows into period buckets.

    Output rows are sorted by metric name, then period, then split values.
    """
    totals: Dict[Tuple, Decimal] = defaultdict(lambda: ZERO)
    for name, day, splits, total in rows:
        key = (name, period_label(day, group_by), tuple(_split_value(v) for v in splits))
        totals[key] += amount_or_zero(total)

    results = []
    for (name, period, splits), value in sorted(totals.items(), key=lambda kv: _sort_key(kv[0])):
        row: Dict[str, Any] = {"name": name, "period": period, "value": value}
        row.update(zip(split_fields, splits))
        results.append(row)
    return results


def rollup_profit(
    rows: Iterable[Tuple[date, Tuple[Any, ...], Any, Any]],
    group_by: str,
    split_fields: Sequence[str],
) -> List[Dict[str, Any]]:
    """Collapse (day, split_values, income, expenses) rows; profit = income - expenses"""
    income: Dict[Tuple, Decimal] = defaultdict(lambda: ZERO)
    expenses: Dict[Tuple, Decimal] = defaultdict(lambda: ZERO)
    for day, splits, day_income, day_expenses in rows:
        key = (period_label(day, group_by), tuple(_split_value(v) for v in splits))
        income[key] += amount_or_zero(day_income)
        expenses[key] += amount_or_zero(day_expenses)

    results = []
    for key in sorted(income, key=_sort_key):
        period, splits = key
        row: Dict[str, Any] = {
            "period": period,
            "income": income[key],
            "expenses": expenses[key],
            "profit": income[key] - expenses[key],
        }
        row.update(zip(split_fields, splits))
        results.append(row)
    return results


def _sort_key(key: Tuple) -> Tuple:
    # None split values sort first without comparing against strings
    return tuple(
        tuple((v is not None, v or "") for v in part) if isinstance(part, tuple) else part for part in key
    )
