"""Integration tests for ledger summaries and profit"""

import uuid
import pytest
from datetime import datetime, timezone
from decimal import Decimal
from sqlalchemy.orm import Session
from microfin_metrics.domain.exceptions import InvalidQueryError
from microfin_metrics.domain.models import ClientFacts, MetricEventInput, MetricFilter
from microfin_metrics.infrastructure.notifications.bus import MetricsEventBus
from microfin_metrics.services.increments import IncrementService
from microfin_metrics.services.recorder import MetricRecorder
from microfin_metrics.services.reporting import MetricsReporter

DAY_1 = datetime(2024, 3, 4, 12, tzinfo=timezone.utc)  # Monday, ISO week 10
DAY_2 = datetime(2024, 3, 6, 12, tzinfo=timezone.utc)
DAY_3 = datetime(2024, 3, 12, 12, tzinfo=timezone.utc)  # ISO week 11
LOAN_ID = uuid.uuid4()


def _record(db: Session, bus: MetricsEventBus, *events):
    MetricRecorder(db, bus).record_batch(
        [
            MetricEventInput(
                name=name,
                value=Decimal(str(value)),
                occurred_at=when,
                branch_name=branch_name,
                branch_code=branch_code,
                currency=currency,
                loan_officer_name=officer,
                loan_id=loan,
            )
            for name, value, when, branch_name, branch_code, currency, officer, loan in events
        ]
    )


@pytest.fixture
def ledger(db: Session, bus: MetricsEventBus):
    _record(
        db,
        bus,
        ("interestCollected", 200, DAY_1, "Paynesville", "PV01", "LRD", "Musu Kamara", LOAN_ID),
        ("feesCollected", 50, DAY_1, "Paynesville", "PV01", "LRD", "Musu Kamara", LOAN_ID),
        ("expenses", 80, DAY_1, "Paynesville", "PV01", "LRD", None, None),
        ("interestCollected", 100, DAY_2, "Kakata", "KK02", "LRD", "James Toe", None),
        ("interestCollected", 5, DAY_2, "Kakata", "KK02", "USD", "James Toe", None),
        ("totalAdmissionFees", 1000, DAY_3, "Paynesville", "PV01", "LRD", None, None),
        ("overdue", 500, DAY_3, "Paynesville", "PV01", "LRD", "Musu Kamara", LOAN_ID),
    )


def test_profit_for_a_single_day(db: Session, ledger):
    """interestCollected 200 + feesCollected 50 - expenses 80 = 170"""
    rows = MetricsReporter(db).profit(
        MetricFilter(branch_code="PV01", date_from=DAY_1.date(), date_to=DAY_1.date()), "day"
    )

    assert rows == [
        {"period": "2024-03-04", "income": Decimal("250"), "expenses": Decimal("80"), "profit": Decimal("170")}
    ]


def test_profit_by_week_split_by_currency(db: Session, ledger):
    """A bare admissionFees row is not income; registrations carry it in feesCollected"""
    rows = MetricsReporter(db).profit(MetricFilter(), "week", "currency")

    assert rows == [
        {"period": "2024-W10", "income": Decimal("350"), "expenses": Decimal("80"), "profit": Decimal("270"), "currency": "LRD"},
        {"period": "2024-W10", "income": Decimal("5"), "expenses": Decimal("0"), "profit": Decimal("5"), "currency": "USD"},
    ]


def test_summary_sorted_by_name_then_period(db: Session, ledger):
    rows = MetricsReporter(db).summarize(MetricFilter(currency="LRD"), "week")

    assert [(r["name"], r["period"], r["value"]) for r in rows] == [
        ("admissionFees", "2024-W11", Decimal("1000")),
        ("expenses", "2024-W10", Decimal("80")),
        ("feesCollected", "2024-W10", Decimal("50")),
        ("interestCollected", "2024-W10", Decimal("300")),
        ("overdue", "2024-W11", Decimal("500")),
    ]


def test_summary_name_allow_list_and_splits(db: Session, ledger):
    rows = MetricsReporter(db).summarize(
        MetricFilter(names=["interestCollected"]), "month", ["branchCode", "currency"]
    )

    assert rows == [
        {"name": "interestCollected", "period": "2024-03", "value": Decimal("100"), "branchCode": "KK02", "currency": "LRD"},
        {"name": "interestCollected", "period": "2024-03", "value": Decimal("5"), "branchCode": "KK02", "currency": "USD"},
        {"name": "interestCollected", "period": "2024-03", "value": Decimal("200"), "branchCode": "PV01", "currency": "LRD"},
    ]


def test_summary_filters_by_officer_and_loan(db: Session, ledger):
    by_officer = MetricsReporter(db).summarize(MetricFilter(loan_officer_name="James Toe"), "year")
    assert [(r["name"], r["period"], r["value"]) for r in by_officer] == [
        ("interestCollected", "2024", Decimal("105")),
    ]

    by_loan = MetricsReporter(db).summarize(MetricFilter(loan_id=LOAN_ID), "day", "loan")
    assert {r["name"] for r in by_loan} == {"interestCollected", "feesCollected", "overdue"}
    assert all(r["loan"] == str(LOAN_ID) for r in by_loan)


def test_summary_legacy_name_in_allow_list(db: Session, ledger):
    rows = MetricsReporter(db).summarize(MetricFilter(names=["totalAdmissionFees"]), "day")
    assert rows == [{"name": "admissionFees", "period": "2024-03-12", "value": Decimal("1000")}]


def test_empty_range_returns_nothing(db: Session, ledger):
    rows = MetricsReporter(db).summarize(
        MetricFilter(date_from=datetime(2025, 1, 1).date(), date_to=datetime(2025, 1, 31).date())
    )
    assert rows == []


def test_invalid_queries(db: Session):
    reporter = MetricsReporter(db)
    with pytest.raises(InvalidQueryError):
        reporter.summarize(MetricFilter(), "fortnight")
    with pytest.raises(InvalidQueryError):
        reporter.profit(MetricFilter(date_from=DAY_3.date(), date_to=DAY_1.date()))


def test_profit_counts_admission_fee_once(db: Session, bus: MetricsEventBus, now):
    client = ClientFacts(id=uuid.uuid4(), branch_name="Paynesville", branch_code="PV01", admission_date=now)
    IncrementService(db, bus).on_client_registration(client)

    rows = MetricsReporter(db).profit(MetricFilter(branch_code="PV01"), "day")

    assert rows == [
        {
            "period": now.date().isoformat(),
            "income": Decimal("1000"),
            "expenses": Decimal("0"),
            "profit": Decimal("1000"),
        }
    ]
