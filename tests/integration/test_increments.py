"""Integration tests for the increment service: ledger first, snapshot best effort"""

import logging
import uuid
import pytest
from datetime import timedelta
from decimal import Decimal
from unittest.mock import patch
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from microfin_metrics.config import settings
from microfin_metrics.domain.exceptions import InvalidCurrencyError, LedgerWriteError, NotFoundError
from microfin_metrics.domain.metric_names import FLOW, SNAPSHOT_FIELDS
from microfin_metrics.domain.models import (
    AuditContext,
    ClientFacts,
    EventScope,
    ExpenseFacts,
    GroupInfo,
    LoanFacts,
    SavingsAccountFacts,
)
from microfin_metrics.infrastructure.database.models import (
    BranchData,
    BranchRegistry,
    FinancialSnapshot,
    MetricEvent,
)
from microfin_metrics.infrastructure.database.repositories import BranchDataRepository, SnapshotRepository
from microfin_metrics.infrastructure.notifications.bus import MetricsEventBus
from microfin_metrics.services.increments import IncrementService
from microfin_metrics.utils.date_utils import day_bounds


def _snapshot(db: Session, snapshot_id) -> FinancialSnapshot:
    db.expire_all()
    return db.get(FinancialSnapshot, snapshot_id)


def _ledger_total(db: Session, name: str, **filters) -> Decimal:
    query = db.query(func.coalesce(func.sum(MetricEvent.value), 0)).filter(MetricEvent.name == name)
    for column, value in filters.items():
        query = query.filter(getattr(MetricEvent, column) == value)
    return Decimal(str(query.scalar()))


def test_loan_approval_scenario(db: Session, bus: MetricsEventBus, sample_loan: LoanFacts):
    service = IncrementService(db, bus)

    posting = service.on_loan_approval(sample_loan)

    assert sample_loan.weekly_installment == Decimal("1200.00")
    assert posting.deltas["pendingInterest"] == Decimal("2000.00")
    assert posting.snapshot_updated
    assert len(posting.event_ids) == 5

    snapshot = _snapshot(db, posting.snapshot_id)
    assert snapshot.total_loans_count == Decimal("1")
    assert snapshot.total_pending_loan_amount == Decimal("-10000")
    assert snapshot.total_approved_loan_balance == Decimal("10000")
    assert snapshot.total_pending_interest == Decimal("2000")
    assert snapshot.day_key == day_bounds()[2]


def test_collection_scenarios(db: Session, bus: MetricsEventBus, sample_loan: LoanFacts, make_collection):
    service = IncrementService(db, bus)
    service.on_loan_approval(sample_loan)

    full = service.on_collection(sample_loan, make_collection(1200, principal=1000, interest=200))
    snapshot = _snapshot(db, full.snapshot_id)
    assert snapshot.total_interest_collected == Decimal("200")
    assert snapshot.total_collected == Decimal("1000")
    assert snapshot.total_pending_interest == Decimal("1800")
    assert snapshot.total_profit == Decimal("200")
    assert snapshot.total_overdue == Decimal("0")

    short = service.on_collection(sample_loan, make_collection(700, principal=583.33, interest=116.67))
    snapshot = _snapshot(db, short.snapshot_id)
    assert short.deltas["overdue"] == Decimal("500")
    assert snapshot.total_overdue == Decimal("500")
    assert snapshot.total_shortage == Decimal("500")


def test_collection_derives_missing_portions(db: Session, bus: MetricsEventBus, sample_loan: LoanFacts, make_collection):
    sample_loan.weekly_installment = Decimal("1200")
    entry = make_collection(600)

    posting = IncrementService(db, bus).on_collection(sample_loan, entry)

    assert entry.principal_portion == Decimal("500.00")
    assert entry.interest_portion == Decimal("100.00")
    assert posting.deltas["interestCollected"] == Decimal("100.00")
    assert posting.deltas["overdue"] == Decimal("600.00")


def test_ledger_rows_carry_dimensions_and_audit(db: Session, bus: MetricsEventBus, sample_loan: LoanFacts, make_collection):
    sample_loan.weekly_installment = Decimal("1200")
    audit = AuditContext(user_id="u-1", username="Comfort Doe", email="comfort@example.org", source="collections")
    group = GroupInfo(group_id=sample_loan.group_id, group_name="Unity Women", group_code="UW-7")

    posting = IncrementService(db, bus).on_collection(
        sample_loan, make_collection(1200, principal=1000, interest=200), audit, group
    )

    row = db.query(MetricEvent).filter(MetricEvent.name == "interestCollected").one()
    assert row.loan_id == sample_loan.id
    assert row.group_id == sample_loan.group_id
    assert row.loan_officer_name == "Musu Kamara"
    assert row.extra["username"] == "Comfort Doe"
    assert row.extra["groupCode"] == "UW-7"
    assert row.extra["event"] == "collection"

    snapshot = _snapshot(db, posting.snapshot_id)
    assert snapshot.updated_by == "u-1"
    assert snapshot.updated_by_name == "Comfort Doe"
    assert snapshot.update_source == "collections"
    assert snapshot.group_name == "Unity Women"


def test_increments_commute(db: Session, bus: MetricsEventBus):
    """Same deltas in opposite order give the same snapshot"""
    service = IncrementService(db, bus)
    first = {"interestCollected": Decimal("200"), "profit": Decimal("200"), "overdue": Decimal("500")}
    second = {"overdue": Decimal("-300"), "expenses": Decimal("80"), "profit": Decimal("-80")}

    a = [service.apply_deltas(EventScope(branch_name="A", branch_code="A1"), d) for d in (first, second)]
    b = [service.apply_deltas(EventScope(branch_name="B", branch_code="B1"), d) for d in (second, first)]

    snap_a = _snapshot(db, a[-1].snapshot_id)
    snap_b = _snapshot(db, b[-1].snapshot_id)
    for column, _ in SNAPSHOT_FIELDS.values():
        assert getattr(snap_a, column) == getattr(snap_b, column), column
    assert snap_a.total_profit == Decimal("120")
    assert snap_a.total_overdue == Decimal("200")


def test_zero_deltas_post_nothing(db: Session, bus: MetricsEventBus):
    posting = IncrementService(db, bus).apply_deltas(
        EventScope(branch_name="Paynesville", branch_code="PV01"), {"profit": 0, "overdue": None}
    )

    assert posting.deltas == {}
    assert posting.snapshot_id is None
    assert db.query(MetricEvent).count() == 0
    assert db.query(FinancialSnapshot).count() == 0


def test_currency_isolation(db: Session, bus: MetricsEventBus, sample_loan: LoanFacts, make_collection):
    """A USD collection never lands in the branch's LRD snapshot"""
    service = IncrementService(db, bus)
    sample_loan.weekly_installment = Decimal("1200")
    lrd = service.on_collection(sample_loan, make_collection(1200, principal=1000, interest=200))

    usd_loan = LoanFacts(
        id=uuid.uuid4(),
        branch_name=sample_loan.branch_name,
        branch_code=sample_loan.branch_code,
        currency="USD",
        loan_amount=Decimal("100"),
        interest_rate=Decimal("20"),
        loan_duration_number=10,
        weekly_installment=Decimal("12"),
        status="active",
    )
    usd = service.on_collection(usd_loan, make_collection(12, principal=10, interest=2))

    assert usd.snapshot_id != lrd.snapshot_id
    lrd_snapshot = _snapshot(db, lrd.snapshot_id)
    usd_snapshot = _snapshot(db, usd.snapshot_id)
    assert lrd_snapshot.currency == "LRD"
    assert lrd_snapshot.total_interest_collected == Decimal("200")
    assert usd_snapshot.currency == "USD"
    assert usd_snapshot.total_interest_collected == Decimal("2")


def test_unsupported_currency_rejected(db: Session, bus: MetricsEventBus):
    with pytest.raises(InvalidCurrencyError):
        IncrementService(db, bus).apply_deltas(EventScope(branch_code="PV01", currency="EUR"), {"profit": 5})


def test_snapshot_failure_is_soft(db: Session, bus: MetricsEventBus, sample_loan: LoanFacts, caplog):
    """Ledger is kept and the call succeeds when the snapshot update fails"""
    with caplog.at_level(logging.ERROR):
        with patch.object(SnapshotRepository, "increment", side_effect=SQLAlchemyError("lock timeout")):
            posting = IncrementService(db, bus).on_loan_approval(sample_loan)

    assert posting.snapshot_updated is False
    assert posting.snapshot_id is None
    assert db.query(MetricEvent).count() == 5
    assert len(bus.published) == 1

    failure = next(r for r in caplog.records if r.getMessage() == "Snapshot update failed")
    assert failure.levelno == logging.ERROR
    assert failure.branch_name == "Paynesville"
    assert failure.branch_code == "PV01"
    assert failure.currency == "LRD"
    assert failure.day_key == day_bounds()[2]
    assert Decimal(failure.deltas["pendingInterest"]) == Decimal("2000")
    assert Decimal(failure.deltas["loansCount"]) == 1


def test_ledger_failure_propagates_and_skips_snapshot(db: Session, bus: MetricsEventBus, sample_loan: LoanFacts):
    service = IncrementService(db, bus)

    with patch.object(service.recorder.repo, "add_many", side_effect=SQLAlchemyError("disk full")):
        with pytest.raises(LedgerWriteError):
            service.on_loan_approval(sample_loan)

    assert db.query(MetricEvent).count() == 0
    assert db.query(FinancialSnapshot).count() == 0
    assert bus.published == []


def test_ledger_and_snapshot_agree(db: Session, bus: MetricsEventBus, sample_loan: LoanFacts, make_collection):
    """Flow fields equal the day's ledger sums for the branch and currency"""
    service = IncrementService(db, bus)
    account = SavingsAccountFacts(branch_name="Paynesville", branch_code="PV01", currency="LRD")

    service.on_loan_creation(sample_loan)
    service.on_loan_approval(sample_loan)
    service.on_collection(sample_loan, make_collection(1200, principal=1000, interest=200, fees=25))
    service.on_collection(sample_loan, make_collection(700, principal=583.33, interest=116.67))
    service.on_savings_transaction(account, Decimal("500"), Decimal("120"), "personal")
    service.on_expense(ExpenseFacts(amount=Decimal("80"), branch_name="Paynesville", branch_code="PV01"))
    posting = service.on_client_registration(ClientFacts(branch_name="Paynesville", branch_code="PV01"))

    snapshot = _snapshot(db, posting.snapshot_id)
    for name, (column, kind) in SNAPSHOT_FIELDS.items():
        if kind != FLOW:
            continue
        ledger = _ledger_total(db, name, branch_code="PV01", currency="LRD")
        assert getattr(snapshot, column) == ledger, name


def test_client_registration_books_admission_fee(db: Session, bus: MetricsEventBus):
    posting = IncrementService(db, bus).on_client_registration(
        ClientFacts(branch_name="Paynesville", branch_code="PV01")
    )

    assert posting.deltas == {
        "admissionFees": Decimal("1000"),
        "feesCollected": Decimal("1000"),
        "profit": Decimal("1000"),
    }
    assert db.query(MetricEvent).filter(MetricEvent.currency == settings.admission_fee_currency).count() == 3


def test_loan_lifecycle_nets_pending_buckets(db: Session, bus: MetricsEventBus, sample_loan: LoanFacts):
    service = IncrementService(db, bus)
    sample_loan.security_deposit = Decimal("500")

    service.on_loan_creation(sample_loan)
    posting = service.on_loan_denial(sample_loan)

    snapshot = _snapshot(db, posting.snapshot_id)
    assert snapshot.total_pending_loan_amount == Decimal("0")
    assert snapshot.total_pending_security_deposit == Decimal("0")
    assert snapshot.total_appraisal_fees == Decimal("200")


def test_distribution_and_bank_deposit(db: Session, bus: MetricsEventBus, sample_loan: LoanFacts):
    service = IncrementService(db, bus)
    account = SavingsAccountFacts(branch_name="Paynesville", branch_code="PV01")

    service.on_distribution(sample_loan, Decimal("12000"))
    posting = service.on_bank_deposit(account, Decimal("700"), Decimal("200"))

    snapshot = _snapshot(db, posting.snapshot_id)
    assert snapshot.total_waiting_to_be_collected == Decimal("12000")
    assert snapshot.bank_deposit_saving == Decimal("500")


def test_branch_data_reapproval_is_idempotent(db: Session, bus: MetricsEventBus, branch_data: BranchData):
    service = IncrementService(db, bus)

    first = service.on_branch_data_approval(branch_data.id)
    assert first.deltas == {
        "loanOfficerShortage": Decimal("150"),
        "entityShortage": Decimal("75"),
        "badDebt": Decimal("400"),
    }
    events_after_first = db.query(MetricEvent).count()

    second = service.on_branch_data_approval(branch_data.id)
    assert second.deltas == {}
    assert db.query(MetricEvent).count() == events_after_first

    record = db.get(BranchData, branch_data.id)
    record.bad_debt = Decimal("500")
    db.commit()
    third = service.on_branch_data_approval(branch_data.id)
    assert third.deltas == {"badDebt": Decimal("100")}

    snapshot = _snapshot(db, first.snapshot_id)
    assert snapshot.bad_debt == Decimal("500")
    assert snapshot.loan_officer_shortage == Decimal("150")


def test_branch_data_approval_failure_keeps_nothing(db: Session, bus: MetricsEventBus, branch_data: BranchData):
    """A failed approval leaves no ledger rows, so the retry posts the deltas once"""
    service = IncrementService(db, bus)
    record_id = branch_data.id

    with patch.object(BranchDataRepository, "mark_applied", side_effect=SQLAlchemyError("deadlock")):
        with pytest.raises(LedgerWriteError):
            service.on_branch_data_approval(record_id)

    assert db.query(MetricEvent).count() == 0
    assert db.get(BranchData, record_id).applied_at is None

    retry = service.on_branch_data_approval(record_id)
    assert retry.deltas["badDebt"] == Decimal("400")
    assert service.on_branch_data_approval(record_id).deltas == {}

    assert db.query(MetricEvent).count() == 3
    assert _ledger_total(db, "badDebt") == Decimal("400")
    assert db.get(BranchData, record_id).status == "approved"


def test_acting_user_stands_in_for_missing_officer(db: Session, bus: MetricsEventBus, sample_loan: LoanFacts):
    sample_loan.loan_officer_name = ""
    audit = AuditContext(user_id="u-7", username="Comfort Doe", email="comfort@example.org", source="loans")

    IncrementService(db, bus).on_loan_approval(sample_loan, audit)

    officers = {row.loan_officer_name for row in db.query(MetricEvent).all()}
    assert officers == {"Comfort Doe"}


def test_branch_data_unknown_record(db: Session, bus: MetricsEventBus):
    with pytest.raises(NotFoundError):
        IncrementService(db, bus).on_branch_data_approval(uuid.uuid4())


def test_registry_failure_falls_back_to_fixed_snapshot(db: Session, bus: MetricsEventBus, monkeypatch):
    start, end, key = day_bounds()
    fixed = SnapshotRepository(db).create(
        branch_name="Head Office", branch_code="HQ", currency="LRD", day_key=key, period_start=start, period_end=end
    )
    db.commit()
    monkeypatch.setattr(settings, "fixed_snapshot_id", str(fixed.id))

    service = IncrementService(db, bus)
    with patch.object(service.registry, "ensure_mapping", side_effect=SQLAlchemyError("registry offline")):
        posting = service.apply_deltas(EventScope(branch_name="Paynesville", branch_code="PV01"), {"expenses": 80})

    assert posting.snapshot_id == fixed.id
    assert _snapshot(db, fixed.id).total_expenses == Decimal("80")


def test_branch_without_code_uses_compound_key(db: Session, bus: MetricsEventBus):
    service = IncrementService(db, bus)
    scope = EventScope(branch_name="Kakata")

    first = service.apply_deltas(scope, {"expenses": 30})
    second = service.apply_deltas(scope, {"expenses": 20})

    assert first.snapshot_id == second.snapshot_id
    assert db.query(BranchRegistry).count() == 0
    snapshot = _snapshot(db, first.snapshot_id)
    assert snapshot.branch_name == "Kakata"
    assert snapshot.total_expenses == Decimal("50")


def test_backdated_event_refreshes_snapshot_day_to_today(db: Session, bus: MetricsEventBus, now):
    posting = IncrementService(db, bus).apply_deltas(
        EventScope(branch_name="Paynesville", branch_code="PV01", occurred_at=now - timedelta(days=30)),
        {"collected": 100},
    )

    row = db.query(MetricEvent).one()
    assert row.day_bucket < now.date()
    assert _snapshot(db, posting.snapshot_id).day_key == day_bounds()[2]
