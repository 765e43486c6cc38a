"""Read-side aggregation of the ledger by period and dimension splits"""

from dataclasses import replace
from typing import Any, Dict, List, Optional, Sequence
from sqlalchemy.orm import Session
from microfin_metrics.domain.exceptions import InvalidQueryError
from microfin_metrics.domain.metric_names import EXPENSE_METRICS, INCOME_METRICS, LEGACY_ALIASES, canonical_metric_name
from microfin_metrics.domain.models import MetricFilter
from microfin_metrics.domain.reporting import normalize_group_by, parse_split_by, rollup_profit, rollup_summary
from microfin_metrics.infrastructure.database.repositories import MetricEventRepository


def _with_aliases(names) -> List[str]:
    """Canonical names plus the legacy keys that map onto them"""
    names = set(names)
    names.update(alias for alias, canonical in LEGACY_ALIASES.items() if canonical in names)
    return sorted(names)


class MetricsReporter:
    """Summaries and profit over the metric ledger"""

    def __init__(self, db: Session):
        self.repo = MetricEventRepository(db)

    @staticmethod
    def _validate(metric_filter: MetricFilter) -> None:
        if metric_filter.date_from and metric_filter.date_to and metric_filter.date_from > metric_filter.date_to:
            raise InvalidQueryError("dateFrom must not be after dateTo")

    def summarize(
        self,
        metric_filter: MetricFilter,
        group_by: Optional[str] = "day",
        split_by: Optional[Sequence[str] | str] = None,
    ) -> List[Dict[str, Any]]:
        """
        Sum ledger values per metric name and period.

        Args:
            metric_filter: Names, dimensions and date range to keep
            group_by: day | week | month | year
            split_by: Dimensions kept apart within each period

        Returns:
            [{"name", "period", "value", <split fields>}] sorted by name then period

        Example:
            >>> reporter.summarize(MetricFilter(names=["profit"]), "month")
            [{"name": "profit", "period": "2024-03", "value": Decimal("170.00")}]
        """
        self._validate(metric_filter)
        group_by = normalize_group_by(group_by)
        split_fields = parse_split_by(split_by)
        if metric_filter.names:
            metric_filter = replace(metric_filter, names=[canonical_metric_name(n) for n in metric_filter.names])
        rows = self.repo.daily_sums(metric_filter, split_fields)
        return rollup_summary(rows, group_by, split_fields)

    def profit(
        self,
        metric_filter: MetricFilter,
        group_by: Optional[str] = "day",
        split_by: Optional[Sequence[str] | str] = None,
    ) -> List[Dict[str, Any]]:
        """Income minus expenses per period: [{"period", "income", "expenses", "profit", ...}]"""
        self._validate(metric_filter)
        group_by = normalize_group_by(group_by)
        split_fields = parse_split_by(split_by)
        income_names = _with_aliases(INCOME_METRICS)
        expense_names = _with_aliases(EXPENSE_METRICS)
        # The name allow-list does not apply here; income/expense names are fixed
        metric_filter = replace(metric_filter, names=income_names + expense_names)
        rows = self.repo.daily_income_expenses(metric_filter, split_fields, income_names, expense_names)
        return rollup_profit(rows, group_by, split_fields)
