"""From-scratch daily figures: the authoritative overdue definition and profit"""

from datetime import datetime
from decimal import Decimal
from typing import Dict

from microfin_metrics.domain.amounts import ZERO, amount_or_zero
from microfin_metrics.domain.models import DailyFigures, LoanFacts
from microfin_metrics.domain.schedule import collected_to_date, expected_to_date
from microfin_metrics.utils.date_utils import as_utc


def loan_overdue_as_of(loan: LoanFacts, end: datetime) -> Decimal:
    """
    Overdue contribution of one loan at ``end``.

    Past the scheduled end date the whole outstanding principal is overdue.
    Within the schedule only the arrears count: cumulative expected-to-date
    minus cumulative collected-to-date, when positive.
    """
    if loan.status != "active":
        return ZERO
    if loan.ending_date is not None and as_utc(loan.ending_date) < as_utc(end):
        outstanding = amount_or_zero(loan.loan_amount) - collected_to_date(loan, end, include_advance=False)
        return max(outstanding, ZERO)
    return max(expected_to_date(loan, end) - collected_to_date(loan, end), ZERO)


def daily_profit(figures: DailyFigures) -> Decimal:
    """Interest + core fees + admission fees - expenses"""
    return figures.interest_collected + figures.core_fees + figures.admission_fees - figures.expenses


def figures_to_metrics(figures: DailyFigures) -> Dict[str, Decimal]:
    """
    Snapshot values keyed by ledger metric name.

    feesCollected folds admission fees in for reporting; the profit term
    keeps them separate from core fees so they are not counted twice.
    """
    return {
        "profit": daily_profit(figures),
        "admissionFees": figures.admission_fees,
        "interestCollected": figures.interest_collected,
        "feesCollected": figures.core_fees + figures.admission_fees,
        "collected": figures.principal_collected,
        "expectedCollections": figures.expected_collections,
        "fieldCollections": figures.field_collections,
        "shortage": max(figures.expected_collections - figures.field_collections, ZERO),
        "waitingToBeCollected": figures.total_repayable
        - (figures.principal_collected + figures.interest_collected),
        "overdue": figures.overdue,
        "expenses": figures.expenses,
        "loansCount": Decimal(figures.loans_count),
        "loanAmountDistributed": figures.loan_amount_distributed,
        "savingsDeposits": figures.savings_deposits,
        "savingsWithdrawals": figures.savings_withdrawals,
        "netSavingsFlow": figures.savings_deposits - figures.savings_withdrawals,
        "personalSavingsFlow": figures.personal_savings_flow,
        "securityDepositsFlow": figures.security_deposits_flow,
        "savingsBalance": figures.savings_balance,
        "personalSavingsBalance": figures.personal_savings_balance,
        "securitySavingsBalance": figures.security_savings_balance,
    }
