"""
Increment service: business-event façades over the ledger and snapshots.

Every façade turns one business event into signed deltas, writes them to the
ledger (authoritative, failures propagate) and then applies the same deltas
as atomic column increments on the branch's snapshot (best effort, failures
are logged and swallowed).
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, Optional
from sqlalchemy.orm import Session
from microfin_metrics.config import settings
from microfin_metrics.domain import deltas as delta_calc
from microfin_metrics.domain.amounts import amount_or_zero
from microfin_metrics.domain.exceptions import InvalidCurrencyError, NotFoundError, SnapshotUpdateError
from microfin_metrics.domain.metric_names import canonical_metric_name, snapshot_column
from microfin_metrics.domain.models import (
    AuditContext,
    ClientFacts,
    CollectionEntry,
    EventScope,
    ExpenseFacts,
    GroupInfo,
    LoanFacts,
    MetricEventInput,
    Posting,
    SavingsAccountFacts,
)
from microfin_metrics.domain.schedule import collection_portions, compute_weekly_installment
from microfin_metrics.infrastructure.database.repositories import BranchDataRepository, SnapshotRepository
from microfin_metrics.infrastructure.notifications.bus import MetricsEventBus
from microfin_metrics.infrastructure.observability.logging import log_snapshot_failure
from microfin_metrics.infrastructure.observability.metrics import record_snapshot_update, snapshot_failure_counter
from microfin_metrics.services.recorder import MetricRecorder
from microfin_metrics.services.registry import BranchRegistryService
from microfin_metrics.utils.date_utils import day_bounds, utcnow


def _audit_extra(event: str, audit: Optional[AuditContext], group: Optional[GroupInfo]) -> Dict[str, Any]:
    extra: Dict[str, Any] = {"event": event}
    if audit is not None:
        extra.update(
            {
                "userId": audit.user_id,
                "username": audit.username,
                "email": audit.email,
                "source": audit.source,
            }
        )
    if group is not None:
        extra.update({"groupName": group.group_name, "groupCode": group.group_code})
    return extra


def _loan_scope(loan: LoanFacts, audit: Optional[AuditContext], occurred_at=None) -> EventScope:
    """Ledger dimensions of a loan event; the acting user stands in for a missing officer"""
    return EventScope(
        branch_name=loan.branch_name,
        branch_code=loan.branch_code,
        currency=loan.currency,
        occurred_at=occurred_at,
        loan_officer_name=loan.loan_officer_name or (audit.username if audit else None) or None,
        loan_id=loan.id,
        group_id=loan.group_id,
        client_id=loan.client_id,
    )


class IncrementService:
    """Applies business events to the ledger and the branch snapshot"""

    def __init__(self, db: Session, bus: Optional[MetricsEventBus] = None):
        self.db = db
        self.recorder = MetricRecorder(db, bus)
        self.registry = BranchRegistryService(db)
        self.snapshots = SnapshotRepository(db)
        self.branch_data = BranchDataRepository(db)

    # ------------------------------------------------------------------
    # Generic delta posting
    # ------------------------------------------------------------------

    def apply_deltas(
        self,
        scope: EventScope,
        deltas: Dict[str, Any],
        audit: Optional[AuditContext] = None,
        group: Optional[GroupInfo] = None,
        event: str = "manual",
        before_commit: Optional[Callable[[], None]] = None,
    ) -> Posting:
        """
        Post deltas to the ledger, then increment the branch snapshot.

        Args:
            scope: Branch, currency, date and relation ids of the event
            deltas: Metric name -> signed amount; zero entries are dropped
            audit: Who triggered the event, if known
            group: Group identity recorded on the snapshot, if known
            event: Event type stored in each ledger row's ``extra``
            before_commit: Writes committed atomically with the ledger rows

        Returns:
            Posting with the non-zero deltas and the snapshot outcome

        Raises:
            InvalidCurrencyError: Scope currency is not supported
            LedgerWriteError: The ledger write failed; nothing was posted
        """
        if scope.currency not in settings.supported_currencies:
            raise InvalidCurrencyError(scope.currency)

        posted: Dict[str, Decimal] = {}
        for name, value in delta_calc.prune(deltas).items():
            name = canonical_metric_name(name)
            posted[name] = posted.get(name, Decimal("0")) + value
        posted = delta_calc.prune(posted)
        posting = Posting(deltas=posted)
        if not posted and before_commit is None:
            return posting

        extra = _audit_extra(event, audit, group)
        rows = self.recorder.record_batch(
            [
                MetricEventInput(
                    name=name,
                    value=value,
                    occurred_at=scope.occurred_at,
                    branch_name=scope.branch_name,
                    branch_code=scope.branch_code,
                    currency=scope.currency,
                    loan_officer_name=scope.loan_officer_name,
                    loan_id=scope.loan_id,
                    group_id=scope.group_id or (group.group_id if group else None),
                    client_id=scope.client_id,
                    extra=extra,
                )
                for name, value in posted.items()
            ],
            source=audit.source if audit else event,
            before_commit=before_commit,
        )
        posting.event_ids = [row.id for row in rows]
        if not posted:
            return posting

        now = utcnow()
        try:
            posting.snapshot_id = self._increment_snapshot(scope, posted, audit, group, now)
            posting.snapshot_updated = posting.snapshot_id is not None
        except Exception as e:
            self.db.rollback()
            snapshot_failure_counter.inc()
            log_snapshot_failure(
                event,
                branch_name=scope.branch_name,
                branch_code=scope.branch_code,
                currency=scope.currency,
                day_key=day_bounds(now)[2],
                deltas=posted,
                error=e,
            )
        return posting

    def _increment_snapshot(
        self,
        scope: EventScope,
        deltas: Dict[str, Decimal],
        audit: Optional[AuditContext],
        group: Optional[GroupInfo],
        now: datetime,
    ) -> Optional[uuid.UUID]:
        column_deltas = {}
        for name, value in deltas.items():
            column = snapshot_column(name)
            if column:
                column_deltas[column] = value
        if not column_deltas:
            return None

        period_start, period_end, day_key = day_bounds(now)
        set_fields: Dict[str, Any] = {
            "day_key": day_key,
            "period_start": period_start,
            "period_end": period_end,
            "updated_at": now,
        }
        if group is not None:
            set_fields.update(
                {"group_id": group.group_id, "group_name": group.group_name, "group_code": group.group_code}
            )
        if audit is not None:
            set_fields.update(
                {
                    "updated_by": audit.user_id,
                    "updated_by_name": audit.username,
                    "updated_by_email": audit.email,
                    "update_source": audit.source,
                }
            )

        snapshot_id = self.registry.locate_snapshot(scope.branch_name, scope.branch_code, scope.currency, day_key)
        if self.snapshots.increment(snapshot_id, column_deltas, set_fields) == 0:
            raise SnapshotUpdateError(f"Snapshot {snapshot_id} disappeared before increment")
        self.db.commit()
        record_snapshot_update("increment")
        return snapshot_id

    # ------------------------------------------------------------------
    # Loan lifecycle
    # ------------------------------------------------------------------

    def on_loan_creation(
        self, loan: LoanFacts, audit: Optional[AuditContext] = None, group: Optional[GroupInfo] = None
    ) -> Posting:
        deltas = delta_calc.loan_creation_deltas(loan, Decimal(str(settings.appraisal_fee_rate)))
        return self.apply_deltas(_loan_scope(loan, audit), deltas, audit, group, event="loan_created")

    def on_loan_approval(
        self, loan: LoanFacts, audit: Optional[AuditContext] = None, group: Optional[GroupInfo] = None
    ) -> Posting:
        """Book approval deltas; a missing weekly installment is filled in on ``loan``"""
        if loan.weekly_installment is None:
            loan.weekly_installment = compute_weekly_installment(loan)
        deltas = delta_calc.loan_approval_deltas(loan)
        return self.apply_deltas(_loan_scope(loan, audit), deltas, audit, group, event="loan_approved")

    def on_loan_denial(
        self, loan: LoanFacts, audit: Optional[AuditContext] = None, group: Optional[GroupInfo] = None
    ) -> Posting:
        deltas = delta_calc.loan_denial_deltas(loan)
        return self.apply_deltas(_loan_scope(loan, audit), deltas, audit, group, event="loan_denied")

    def on_collection(
        self,
        loan: LoanFacts,
        entry: CollectionEntry,
        audit: Optional[AuditContext] = None,
        group: Optional[GroupInfo] = None,
    ) -> Posting:
        """
        Book one field collection.

        When the entry carries no principal/interest split, it is derived
        from the loan's expected weekly split.
        """
        if entry.principal_portion is None and entry.interest_portion is None:
            principal, interest = collection_portions(loan, entry.field_collection, entry.weekly_amount)
            entry.principal_portion = principal
            entry.interest_portion = interest
        deltas = delta_calc.collection_deltas(loan, entry)
        return self.apply_deltas(
            _loan_scope(loan, audit, entry.collection_date), deltas, audit, group, event="collection"
        )

    def on_distribution(
        self,
        loan: LoanFacts,
        total_amount: Any,
        audit: Optional[AuditContext] = None,
        group: Optional[GroupInfo] = None,
    ) -> Posting:
        deltas = delta_calc.distribution_deltas(total_amount)
        return self.apply_deltas(_loan_scope(loan, audit), deltas, audit, group, event="distribution")

    # ------------------------------------------------------------------
    # Savings, clients, expenses
    # ------------------------------------------------------------------

    def on_savings_transaction(
        self,
        account: SavingsAccountFacts,
        deposit: Any,
        withdrawal: Any,
        savings_type: str,
        occurred_at=None,
        audit: Optional[AuditContext] = None,
        group: Optional[GroupInfo] = None,
    ) -> Posting:
        scope = EventScope(
            branch_name=account.branch_name,
            branch_code=account.branch_code,
            currency=account.currency,
            occurred_at=occurred_at,
            group_id=account.group_id,
            client_id=account.client_id,
        )
        deltas = delta_calc.savings_deltas(deposit, withdrawal, savings_type)
        return self.apply_deltas(scope, deltas, audit, group, event="savings_transaction")

    def on_bank_deposit(
        self,
        account: SavingsAccountFacts,
        deposit: Any,
        withdrawal: Any,
        occurred_at=None,
        audit: Optional[AuditContext] = None,
    ) -> Posting:
        scope = EventScope(
            branch_name=account.branch_name,
            branch_code=account.branch_code,
            currency=account.currency,
            occurred_at=occurred_at,
            group_id=account.group_id,
            client_id=account.client_id,
        )
        deltas = delta_calc.bank_deposit_deltas(deposit, withdrawal)
        return self.apply_deltas(scope, deltas, audit, event="bank_deposit")

    def on_client_registration(
        self, client: ClientFacts, audit: Optional[AuditContext] = None, group: Optional[GroupInfo] = None
    ) -> Posting:
        """Book the fixed admission fee in its native currency"""
        scope = EventScope(
            branch_name=client.branch_name,
            branch_code=client.branch_code,
            currency=settings.admission_fee_currency,
            occurred_at=client.admission_date,
            group_id=client.group_id,
            client_id=client.id,
        )
        fee = Decimal(str(settings.admission_fee_amount))
        deltas = delta_calc.client_registration_deltas(fee)
        return self.apply_deltas(scope, deltas, audit, group, event="client_registered")

    def on_expense(self, expense: ExpenseFacts, audit: Optional[AuditContext] = None) -> Posting:
        scope = EventScope(
            branch_name=expense.branch_name,
            branch_code=expense.branch_code,
            currency=expense.currency,
            occurred_at=expense.expense_date,
        )
        return self.apply_deltas(scope, delta_calc.expense_deltas(expense.amount), audit, event="expense")

    # ------------------------------------------------------------------
    # Manual branch adjustments
    # ------------------------------------------------------------------

    def on_branch_data_approval(self, record_id: uuid.UUID, audit: Optional[AuditContext] = None) -> Posting:
        """
        Post the change in manual adjustments since the last approval.

        The record is locked for the duration of the approval, and its applied
        values move to the current values in the same transaction as the
        ledger rows, so approving an unchanged record again posts nothing.

        Raises:
            NotFoundError: Unknown branch-data record
            LedgerWriteError: Nothing was posted and the record is unchanged
        """
        record = self.branch_data.get(record_id, for_update=True)
        if record is None:
            raise NotFoundError(f"Branch data {record_id} not found")

        current = {
            "loanOfficerShortage": amount_or_zero(record.loan_officer_shortage),
            "branchShortage": amount_or_zero(record.branch_shortage),
            "entityShortage": amount_or_zero(record.entity_shortage),
            "badDebt": amount_or_zero(record.bad_debt),
        }
        applied = {
            "loanOfficerShortage": amount_or_zero(record.applied_loan_officer_shortage),
            "branchShortage": amount_or_zero(record.applied_branch_shortage),
            "entityShortage": amount_or_zero(record.applied_entity_shortage),
            "badDebt": amount_or_zero(record.applied_bad_debt),
        }
        scope = EventScope(
            branch_name=record.branch_name,
            branch_code=record.branch_code,
            currency=record.currency,
            occurred_at=record.data_date,
        )

        def stage_applied() -> None:
            record.status = "approved"
            self.branch_data.mark_applied(record, current, utcnow(), audit.username if audit else None)

        return self.apply_deltas(
            scope,
            delta_calc.branch_data_deltas(current, applied),
            audit,
            event="branch_data",
            before_commit=stage_applied,
        )
