"""Unit tests for from-scratch overdue and daily profit"""

from datetime import timedelta
from decimal import Decimal
from microfin_metrics.domain.daily import daily_profit, figures_to_metrics, loan_overdue_as_of
from microfin_metrics.domain.models import CollectionEntry, DailyFigures, LoanFacts


def test_overdue_within_schedule_is_arrears(sample_loan: LoanFacts, now):
    """Two installments due (2400), one paid (1200)"""
    sample_loan.collections = [
        CollectionEntry(collection_date=now - timedelta(days=7), field_collection=Decimal("1200")),
    ]
    assert loan_overdue_as_of(sample_loan, now) == Decimal("1200.00")


def test_overdue_never_negative_when_ahead(sample_loan: LoanFacts, now):
    sample_loan.collections = [
        CollectionEntry(collection_date=now - timedelta(days=7), field_collection=Decimal("3000")),
    ]
    assert loan_overdue_as_of(sample_loan, now) == Decimal("0")


def test_overdue_after_schedule_end_is_outstanding_principal(sample_loan: LoanFacts, now):
    sample_loan.ending_date = now - timedelta(days=1)
    sample_loan.collections = [
        CollectionEntry(
            collection_date=now - timedelta(days=20),
            field_collection=Decimal("4000"),
            advance_payment=Decimal("500"),
        ),
    ]
    # Advances are ignored for the principal still outstanding
    assert loan_overdue_as_of(sample_loan, now) == Decimal("6000")


def test_overdue_ignores_inactive_loans(sample_loan: LoanFacts, now):
    sample_loan.status = "paid"
    assert loan_overdue_as_of(sample_loan, now) == Decimal("0")


def test_daily_profit_counts_admission_fees_once():
    figures = DailyFigures(
        interest_collected=Decimal("200"),
        core_fees=Decimal("50"),
        admission_fees=Decimal("1000"),
        expenses=Decimal("80"),
    )

    assert daily_profit(figures) == Decimal("1170")
    metrics = figures_to_metrics(figures)
    assert metrics["profit"] == Decimal("1170")
    assert metrics["feesCollected"] == Decimal("1050")
    assert metrics["admissionFees"] == Decimal("1000")


def test_figures_to_metrics_shortage_and_waiting():
    figures = DailyFigures(
        expected_collections=Decimal("2400"),
        field_collections=Decimal("1900"),
        principal_collected=Decimal("1500"),
        interest_collected=Decimal("300"),
        total_repayable=Decimal("12000"),
        loans_count=1,
    )
    metrics = figures_to_metrics(figures)

    assert metrics["shortage"] == Decimal("500")
    assert metrics["waitingToBeCollected"] == Decimal("10200")
    assert metrics["loansCount"] == Decimal("1")
