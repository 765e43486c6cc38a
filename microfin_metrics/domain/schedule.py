"""Loan repayment schedule math shared by the delta calculators and the daily job"""

import math
from datetime import datetime, timedelta
from decimal import Decimal
from typing import List, Optional, Tuple

from microfin_metrics.domain.amounts import ZERO, amount_or_zero, cents, required_amount, to_amount
from microfin_metrics.domain.models import Installment, LoanFacts
from microfin_metrics.utils.date_utils import as_utc

WEEK = timedelta(days=7)


def to_weeks(number, unit: Optional[str]) -> int:
    """Convert a loan duration into a number of weekly installments"""
    n = amount_or_zero(number)
    if n <= 0:
        return 0
    if unit == "days":
        return math.ceil(n / 7)
    if unit == "months":
        return int(n * 4)
    if unit == "years":
        return int(n * 52)
    return int(n)


def loan_weeks(loan: LoanFacts) -> int:
    return to_weeks(loan.loan_duration_number, loan.loan_duration_unit)


def compute_weekly_installment(loan: LoanFacts) -> Optional[Decimal]:
    """
    Flat-interest weekly installment: principal * (1 + rate/100) / weeks.

    Example:
        10000 at 20% over 10 weeks -> 12000 / 10 = 1200
    """
    weeks = loan_weeks(loan)
    principal = to_amount(loan.loan_amount)
    if weeks <= 0 or principal is None:
        return None
    rate = amount_or_zero(loan.interest_rate)
    return cents(principal * (1 + rate / 100) / weeks)


def total_repayable(loan: LoanFacts) -> Decimal:
    """
    Total the borrower is expected to repay.

    Uses weekly installment x weeks when both are known, otherwise falls back
    to the flat rate over the principal.
    """
    principal = required_amount(loan.loan_amount, "loan_amount", loan=loan.id)
    weeks = loan_weeks(loan)
    weekly = amount_or_zero(loan.weekly_installment)
    if weeks > 0 and weekly > 0:
        return weekly * weeks
    rate = amount_or_zero(loan.interest_rate)
    return principal * (1 + rate / 100)


def total_expected_interest(loan: LoanFacts) -> Decimal:
    principal = amount_or_zero(loan.loan_amount)
    return max(cents(total_repayable(loan) - principal), ZERO)


def expected_weekly_split(loan: LoanFacts) -> Tuple[Decimal, Decimal]:
    """(principal, interest) expected per weekly installment"""
    weeks = loan_weeks(loan)
    expected_weekly = amount_or_zero(loan.weekly_installment)
    principal_weekly = amount_or_zero(loan.loan_amount) / weeks if weeks > 0 else ZERO
    return principal_weekly, max(expected_weekly - principal_weekly, ZERO)


def collection_portions(
    loan: LoanFacts,
    field_collection,
    weekly_amount=None,
) -> Tuple[Decimal, Decimal]:
    """
    Split a field collection into (principal, interest) portions.

    Portions are the expected weekly split scaled by the share of the weekly
    amount actually collected, capped at one full installment.
    """
    principal_weekly, interest_weekly = expected_weekly_split(loan)
    denom = amount_or_zero(weekly_amount) or amount_or_zero(loan.weekly_installment)
    if denom <= 0:
        return ZERO, ZERO
    factor = min(max(amount_or_zero(field_collection) / denom, ZERO), Decimal("1"))
    return cents(principal_weekly * factor), cents(interest_weekly * factor)


def generate_repayment_schedule(loan: LoanFacts) -> List[Installment]:
    """
    Weekly installments starting one week after disbursement.

    The total repayable is split evenly; the last installment absorbs the
    rounding remainder so the schedule sums exactly to the total.
    """
    weeks = loan_weeks(loan)
    if weeks <= 0 or loan.disbursement_date is None:
        return []

    total = cents(total_repayable(loan))
    base_amount = cents(total / weeks)
    first_due = as_utc(loan.disbursement_date) + WEEK

    installments = []
    for i in range(weeks):
        amount = base_amount if i < weeks - 1 else total - base_amount * (weeks - 1)
        installments.append(Installment(due_date=(first_due + i * WEEK).date(), amount=amount))
    return installments


def expected_to_date(loan: LoanFacts, as_of: datetime) -> Decimal:
    """Cumulative scheduled repayments due on or before ``as_of``"""
    cutoff = as_utc(as_of).date()
    return sum(
        (inst.amount for inst in generate_repayment_schedule(loan) if inst.due_date <= cutoff),
        ZERO,
    )


def collected_to_date(loan: LoanFacts, as_of: datetime, include_advance: bool = True) -> Decimal:
    """Cumulative field collections (plus advances) dated on or before ``as_of``"""
    cutoff = as_utc(as_of)
    total = ZERO
    for entry in loan.collections:
        if entry.collection_date is None or as_utc(entry.collection_date) > cutoff:
            continue
        total += amount_or_zero(entry.field_collection)
        if include_advance:
            total += amount_or_zero(entry.advance_payment)
    return total
