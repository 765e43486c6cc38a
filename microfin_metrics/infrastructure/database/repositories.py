"""Data access layer for the metric ledger, snapshots, registry and source records"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple
from sqlalchemy import case, func, update
from sqlalchemy.orm import Session, selectinload
from microfin_metrics.domain.metric_names import SPLIT_DIMENSIONS
from microfin_metrics.domain.models import CollectionEntry, LoanFacts, MetricFilter
from microfin_metrics.infrastructure.database.models import (
    BranchData,
    BranchGroup,
    BranchRegistry,
    Client,
    Expense,
    FinancialSnapshot,
    Loan,
    LoanCollection,
    MetricEvent,
    SavingsAccount,
    SavingsTransaction,
)


def _branch_conditions(model, branch_name: Optional[str], branch_code: Optional[str]) -> list:
    conditions = []
    if branch_code:
        conditions.append(model.branch_code == branch_code)
    if branch_name:
        conditions.append(model.branch_name == branch_name)
    return conditions


def loan_to_facts(loan: Loan) -> LoanFacts:
    """Project an ORM loan (with collections) onto the engine's LoanFacts"""
    return LoanFacts(
        id=loan.id,
        branch_name=loan.branch_name,
        branch_code=loan.branch_code,
        currency=loan.currency,
        loan_amount=loan.loan_amount,
        interest_rate=loan.interest_rate,
        loan_duration_number=loan.loan_duration_number,
        loan_duration_unit=loan.loan_duration_unit,
        weekly_installment=loan.weekly_installment,
        disbursement_date=loan.disbursement_date,
        ending_date=loan.ending_date,
        status=loan.status,
        loan_officer_name=loan.loan_officer_name,
        security_deposit=loan.security_deposit,
        group_id=loan.group_id,
        client_id=loan.client_id,
        collections=[
            CollectionEntry(
                collection_date=c.collection_date,
                weekly_amount=c.weekly_amount,
                field_collection=c.field_collection,
                advance_payment=c.advance_payment,
                principal_portion=c.principal_portion,
                interest_portion=c.interest_portion,
                fees_portion=c.fees_portion,
                security_deposit_contribution=c.security_deposit_contribution,
            )
            for c in loan.collections
        ],
    )


class MetricEventRepository:
    """Repository for the append-only metric ledger"""

    def __init__(self, db: Session):
        self.db = db

    def add_many(self, events: List[MetricEvent]) -> List[MetricEvent]:
        """Stage ledger rows and flush to surface store errors early"""
        self.db.add_all(events)
        self.db.flush()
        return events

    def _filtered(self, query, metric_filter: MetricFilter):
        f = metric_filter
        if f.names:
            query = query.filter(MetricEvent.name.in_(f.names))
        if f.branch_name:
            query = query.filter(MetricEvent.branch_name == f.branch_name)
        if f.branch_code:
            query = query.filter(MetricEvent.branch_code == f.branch_code)
        if f.loan_officer_name:
            query = query.filter(MetricEvent.loan_officer_name == f.loan_officer_name)
        if f.currency:
            query = query.filter(MetricEvent.currency == f.currency)
        if f.loan_id:
            query = query.filter(MetricEvent.loan_id == f.loan_id)
        if f.group_id:
            query = query.filter(MetricEvent.group_id == f.group_id)
        if f.client_id:
            query = query.filter(MetricEvent.client_id == f.client_id)
        if f.date_from:
            query = query.filter(MetricEvent.day_bucket >= f.date_from)
        if f.date_to:
            query = query.filter(MetricEvent.day_bucket <= f.date_to)
        return query

    @staticmethod
    def _split_columns(split_fields: Sequence[str]) -> list:
        return [getattr(MetricEvent, SPLIT_DIMENSIONS[name]) for name in split_fields]

    def daily_sums(self, metric_filter: MetricFilter, split_fields: Sequence[str]) -> List[Tuple]:
        """(name, day, split_values, total) per metric/day/split combination"""
        split_columns = self._split_columns(split_fields)
        query = self.db.query(
            MetricEvent.name, MetricEvent.day_bucket, *split_columns, func.sum(MetricEvent.value)
        ).group_by(MetricEvent.name, MetricEvent.day_bucket, *split_columns)
        rows = self._filtered(query, metric_filter).all()
        return [(row[0], row[1], tuple(row[2:-1]), row[-1]) for row in rows]

    def daily_income_expenses(
        self,
        metric_filter: MetricFilter,
        split_fields: Sequence[str],
        income_names: Iterable[str],
        expense_names: Iterable[str],
    ) -> List[Tuple]:
        """(day, split_values, income, expenses) per day/split combination"""
        split_columns = self._split_columns(split_fields)
        income = func.sum(case((MetricEvent.name.in_(list(income_names)), MetricEvent.value), else_=0))
        expenses = func.sum(case((MetricEvent.name.in_(list(expense_names)), MetricEvent.value), else_=0))
        query = self.db.query(MetricEvent.day_bucket, *split_columns, income, expenses).group_by(
            MetricEvent.day_bucket, *split_columns
        )
        rows = self._filtered(query, metric_filter).all()
        return [(row[0], tuple(row[1:-2]), row[-2], row[-1]) for row in rows]


class SnapshotRepository:
    """Repository for financial snapshots"""

    def __init__(self, db: Session):
        self.db = db

    def get(self, snapshot_id: uuid.UUID) -> Optional[FinancialSnapshot]:
        return self.db.get(FinancialSnapshot, snapshot_id)

    def create(self, **fields: Any) -> FinancialSnapshot:
        snapshot = FinancialSnapshot(**fields)
        self.db.add(snapshot)
        self.db.flush()
        return snapshot

    def increment(self, snapshot_id: uuid.UUID, column_deltas: Dict[str, Decimal], set_fields: Dict[str, Any]) -> int:
        """
        Atomic ``col = col + delta`` for every column, plus plain assignments.

        Returns the number of rows touched (0 when the id does not exist).
        """
        values: Dict[str, Any] = dict(set_fields)
        for column, delta in column_deltas.items():
            values[column] = getattr(FinancialSnapshot, column) + delta
        result = self.db.execute(
            update(FinancialSnapshot)
            .where(FinancialSnapshot.id == snapshot_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    def overwrite(self, snapshot_id: uuid.UUID, values: Dict[str, Any]) -> int:
        result = self.db.execute(
            update(FinancialSnapshot)
            .where(FinancialSnapshot.id == snapshot_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    def find_by_compound_key(
        self, branch_code: str, branch_name: str, currency: str, day_key: str
    ) -> Optional[FinancialSnapshot]:
        return (
            self.db.query(FinancialSnapshot)
            .filter(
                FinancialSnapshot.branch_code == branch_code,
                FinancialSnapshot.branch_name == branch_name,
                FinancialSnapshot.currency == currency,
                FinancialSnapshot.day_key == day_key,
            )
            .first()
        )

    def list_snapshots(
        self,
        branch_name: Optional[str] = None,
        branch_code: Optional[str] = None,
        currency: Optional[str] = None,
        start_key: Optional[str] = None,
        end_key: Optional[str] = None,
    ) -> List[FinancialSnapshot]:
        """Snapshots newest first"""
        query = self.db.query(FinancialSnapshot).filter(
            *_branch_conditions(FinancialSnapshot, branch_name, branch_code)
        )
        if currency:
            query = query.filter(FinancialSnapshot.currency == currency)
        if start_key:
            query = query.filter(FinancialSnapshot.day_key >= start_key)
        if end_key:
            query = query.filter(FinancialSnapshot.day_key <= end_key)
        return query.order_by(FinancialSnapshot.day_key.desc(), FinancialSnapshot.currency.asc()).all()


class BranchRegistryRepository:
    """Repository for branch -> snapshot mappings"""

    def __init__(self, db: Session):
        self.db = db

    def find_by_code(self, branch_code: str) -> Optional[BranchRegistry]:
        return self.db.query(BranchRegistry).filter(BranchRegistry.branch_code == branch_code).first()

    def find_by_name(self, branch_name: str) -> Optional[BranchRegistry]:
        return (
            self.db.query(BranchRegistry)
            .filter(BranchRegistry.branch_name == branch_name)
            .order_by(BranchRegistry.created_at.asc())
            .first()
        )

    def create(self, branch_code: str, branch_name: str, snapshot_id: uuid.UUID) -> BranchRegistry:
        entry = BranchRegistry(branch_code=branch_code, branch_name=branch_name, snapshot_id=snapshot_id)
        self.db.add(entry)
        self.db.flush()
        return entry


class SourceRepository:
    """Read-only queries over loans, clients, savings and expenses"""

    def __init__(self, db: Session):
        self.db = db

    def resolve_branch_name(self, branch_code: str) -> str:
        """Branch name for a code, looked up through loans then expenses"""
        if not branch_code:
            return ""
        for model in (Loan, Expense):
            name = self.db.query(model.branch_name).filter(model.branch_code == branch_code).limit(1).scalar()
            if name:
                return name
        return ""

    def group_ids_for_branch(self, branch_name: Optional[str], branch_code: Optional[str]) -> List[uuid.UUID]:
        conditions = []
        if branch_name:
            conditions.append(BranchGroup.branch_name == branch_name)
        elif branch_code:
            conditions.append(BranchGroup.branch_code == branch_code)
        else:
            return []
        return [row[0] for row in self.db.query(BranchGroup.id).filter(*conditions).all()]

    def collection_totals(
        self,
        branch_name: Optional[str],
        branch_code: Optional[str],
        currency: str,
        start: datetime,
        end: datetime,
    ) -> Dict[str, Decimal]:
        """Sums over the day's collection entries on the branch's loans"""
        row = (
            self.db.query(
                func.coalesce(func.sum(LoanCollection.weekly_amount), 0),
                func.coalesce(func.sum(LoanCollection.field_collection), 0),
                func.coalesce(func.sum(LoanCollection.interest_portion), 0),
                func.coalesce(func.sum(LoanCollection.fees_portion), 0),
                func.coalesce(func.sum(LoanCollection.principal_portion), 0),
            )
            .join(Loan, LoanCollection.loan_id == Loan.id)
            .filter(
                Loan.currency == currency,
                LoanCollection.currency == currency,
                LoanCollection.collection_date >= start,
                LoanCollection.collection_date <= end,
                *_branch_conditions(Loan, branch_name, branch_code),
            )
            .one()
        )
        expected, collected, interest, fees, principal = row
        return {
            "expected": expected,
            "collected": collected,
            "interest": interest,
            "fees": fees,
            "principal": principal,
        }

    def admissions_count(
        self, branch_name: Optional[str], branch_code: Optional[str], start: datetime, end: datetime
    ) -> int:
        return (
            self.db.query(func.count(Client.id))
            .filter(
                Client.admission_date >= start,
                Client.admission_date <= end,
                *_branch_conditions(Client, branch_name, branch_code),
            )
            .scalar()
            or 0
        )

    def loans_disbursed(
        self,
        branch_name: Optional[str],
        branch_code: Optional[str],
        currency: str,
        start: datetime,
        end: datetime,
    ) -> List[Loan]:
        return (
            self.db.query(Loan)
            .filter(
                Loan.currency == currency,
                Loan.disbursement_date >= start,
                Loan.disbursement_date <= end,
                *_branch_conditions(Loan, branch_name, branch_code),
            )
            .all()
        )

    def active_loans(
        self, branch_name: Optional[str], branch_code: Optional[str], currency: str, end: datetime
    ) -> List[Loan]:
        """Active loans disbursed by ``end``, with collections eagerly loaded"""
        return (
            self.db.query(Loan)
            .options(selectinload(Loan.collections))
            .filter(
                Loan.currency == currency,
                Loan.status == "active",
                (Loan.disbursement_date.is_(None)) | (Loan.disbursement_date <= end),
                *_branch_conditions(Loan, branch_name, branch_code),
            )
            .all()
        )

    def savings_totals_by_type(
        self,
        group_ids: Sequence[uuid.UUID],
        currency: str,
        end: datetime,
        start: Optional[datetime] = None,
    ) -> Dict[str, Tuple[Decimal, Decimal]]:
        """{type: (deposits, withdrawals)} for transactions up to ``end``"""
        if not group_ids:
            return {}
        query = (
            self.db.query(
                SavingsTransaction.type,
                func.coalesce(func.sum(SavingsTransaction.saving_amount), 0),
                func.coalesce(func.sum(SavingsTransaction.withdrawal_amount), 0),
            )
            .join(SavingsAccount, SavingsTransaction.account_id == SavingsAccount.id)
            .filter(
                SavingsAccount.group_id.in_(list(group_ids)),
                SavingsAccount.currency == currency,
                SavingsTransaction.currency == currency,
                SavingsTransaction.date <= end,
            )
        )
        if start is not None:
            query = query.filter(SavingsTransaction.date >= start)
        rows = query.group_by(SavingsTransaction.type).all()
        return {row[0]: (row[1], row[2]) for row in rows}

    def expenses_total(
        self,
        branch_name: Optional[str],
        branch_code: Optional[str],
        currency: str,
        start: datetime,
        end: datetime,
    ) -> Decimal:
        return (
            self.db.query(func.coalesce(func.sum(Expense.amount), 0))
            .filter(
                Expense.currency == currency,
                Expense.expense_date >= start,
                Expense.expense_date <= end,
                *_branch_conditions(Expense, branch_name, branch_code),
            )
            .scalar()
        )


class BranchDataRepository:
    """Repository for manually entered branch adjustments"""

    def __init__(self, db: Session):
        self.db = db

    def get(self, record_id: uuid.UUID, for_update: bool = False) -> Optional[BranchData]:
        if for_update:
            # Serialises concurrent approvals of one record
            return self.db.query(BranchData).filter(BranchData.id == record_id).with_for_update().first()
        return self.db.get(BranchData, record_id)

    def mark_applied(self, record: BranchData, applied: Dict[str, Decimal], applied_at: datetime, applied_by: Optional[str]):
        """Remember what has been posted so the next approval only posts the difference"""
        record.applied_loan_officer_shortage = applied.get("loanOfficerShortage", 0)
        record.applied_branch_shortage = applied.get("branchShortage", 0)
        record.applied_entity_shortage = applied.get("entityShortage", 0)
        record.applied_bad_debt = applied.get("badDebt", 0)
        record.applied_currency = record.currency
        record.applied_at = applied_at
        record.applied_by = applied_by
        self.db.flush()
        return record
