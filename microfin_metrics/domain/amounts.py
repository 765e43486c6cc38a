"""Safe numeric coercion for amounts arriving from loosely-typed callers"""

import math
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Optional
from microfin_metrics.infrastructure.observability.logging import log_data_quality_warning

ZERO = Decimal("0")
CENT = Decimal("0.01")


def to_amount(value: Any) -> Optional[Decimal]:
    """Coerce to Decimal; None for missing, NaN, infinite or unparseable values"""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, float) and not math.isfinite(value):
        return None
    try:
        result = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None
    if not result.is_finite():
        return None
    return result


def amount_or_zero(value: Any) -> Decimal:
    result = to_amount(value)
    return ZERO if result is None else result


def required_amount(value: Any, field: str, **context: Any) -> Decimal:
    """Like amount_or_zero, but a missing value is logged as a data-quality issue"""
    result = to_amount(value)
    if result is None:
        log_data_quality_warning(
            "Missing numeric input defaulted to zero",
            field=field,
            **{k: str(v) for k, v in context.items()},
        )
        return ZERO
    return result


def cents(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)
