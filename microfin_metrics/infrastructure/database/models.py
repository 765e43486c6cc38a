"""SQLAlchemy ORM models for the metric ledger, snapshots and source records"""

import uuid
from sqlalchemy import Column, String, Date, DateTime, Integer, Numeric, ForeignKey, Text, JSON, Index
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

Base = declarative_base()

Amount = Numeric(18, 2)


def _amount_column():
    return Column(Amount, nullable=False, default=0, server_default="0")


# ---------------------------------------------------------------------------
# Engine-owned tables
# ---------------------------------------------------------------------------


class MetricEvent(Base):
    """Append-only ledger row: one signed fact about a business quantity"""

    __tablename__ = "metric_event"
    __table_args__ = (
        Index("ix_metric_event_name_day", "name", "day_bucket"),
        Index("ix_metric_event_branch_day", "branch_code", "day_bucket"),
        Index("ix_metric_event_officer_day", "loan_officer_name", "day_bucket"),
        Index("ix_metric_event_currency_day", "currency", "day_bucket"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(Text, nullable=False)
    value = Column(Amount, nullable=False)
    occurred_at = Column(DateTime(timezone=True), nullable=False)
    day_bucket = Column(Date, nullable=False)
    branch_name = Column(Text, nullable=False, default="")
    branch_code = Column(Text, nullable=False, default="")
    loan_officer_name = Column(Text, nullable=True)
    currency = Column(String(3), nullable=False)

    # Weak references: identity only, never owned
    loan_id = Column(UUID(as_uuid=True), nullable=True)
    group_id = Column(UUID(as_uuid=True), nullable=True)
    client_id = Column(UUID(as_uuid=True), nullable=True)

    extra = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class FinancialSnapshot(Base):
    """Denormalised per-branch/day/currency aggregate, mutated by increments"""

    __tablename__ = "financial_snapshot"
    __table_args__ = (
        Index("ix_snapshot_code_day_currency", "branch_code", "day_key", "currency"),
        Index("ix_snapshot_name_day_currency", "branch_name", "day_key", "currency"),
        Index("ix_snapshot_group_day_currency", "group_id", "day_key", "currency"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    branch_name = Column(Text, nullable=False, default="")
    branch_code = Column(Text, nullable=True, default="")
    currency = Column(String(3), nullable=False)
    day_key = Column(String(10), nullable=False)  # YYYY-MM-DD (UTC)
    period_start = Column(DateTime(timezone=True), nullable=False)
    period_end = Column(DateTime(timezone=True), nullable=False)
    computed_at = Column(DateTime(timezone=True), nullable=True)

    # Flow fields (the day's activity)
    total_profit = _amount_column()
    total_admission_fees = _amount_column()
    total_appraisal_fees = _amount_column()
    total_savings_deposits = _amount_column()
    total_savings_withdrawals = _amount_column()
    net_savings_flow = _amount_column()
    total_security_deposits_flow = _amount_column()
    total_personal_savings_flow = _amount_column()
    total_interest_collected = _amount_column()
    total_fees_collected = _amount_column()
    total_collected = _amount_column()  # principal repaid
    total_expected_collections = _amount_column()
    total_field_collections = _amount_column()
    total_shortage = _amount_column()
    total_expenses = _amount_column()
    total_loans_count = _amount_column()
    total_loan_amount_distributed = _amount_column()

    # Balance fields (as of now)
    total_waiting_to_be_collected = _amount_column()
    total_overdue = _amount_column()
    total_savings_balance = _amount_column()
    total_personal_savings_balance = _amount_column()
    total_security_savings_balance = _amount_column()
    total_pending_loan_amount = _amount_column()
    total_approved_loan_balance = _amount_column()
    total_pending_interest = _amount_column()
    total_pending_admission_fees = _amount_column()
    total_pending_security_deposit = _amount_column()
    loan_officer_shortage = _amount_column()
    branch_shortage = _amount_column()
    entity_shortage = _amount_column()
    bad_debt = _amount_column()
    bank_deposit_saving = _amount_column()

    # Most recent contributor (not a history)
    group_id = Column(UUID(as_uuid=True), nullable=True)
    group_name = Column(Text, nullable=True)
    group_code = Column(Text, nullable=True)
    updated_by = Column(Text, nullable=True)
    updated_by_name = Column(Text, nullable=True)
    updated_by_email = Column(Text, nullable=True)
    update_source = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=True, onupdate=func.now())


class BranchRegistry(Base):
    """Maps a branch to the one snapshot document all writers converge on"""

    __tablename__ = "branch_registry"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    branch_code = Column(Text, nullable=False, unique=True)
    branch_name = Column(Text, nullable=False, index=True)
    snapshot_id = Column(UUID(as_uuid=True), ForeignKey("financial_snapshot.id"), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    snapshot = relationship("FinancialSnapshot")


# ---------------------------------------------------------------------------
# Source records (owned by the onboarding/loan/savings domains)
# ---------------------------------------------------------------------------


class BranchGroup(Base):
    """Solidarity group of clients within a branch"""

    __tablename__ = "branch_group"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    group_name = Column(Text, nullable=False)
    group_code = Column(Text, nullable=False)
    branch_name = Column(Text, nullable=False, index=True)
    branch_code = Column(Text, nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Client(Base):
    """Registered member"""

    __tablename__ = "client"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    member_name = Column(Text, nullable=False)
    branch_name = Column(Text, nullable=True)
    branch_code = Column(Text, nullable=True)
    group_id = Column(UUID(as_uuid=True), ForeignKey("branch_group.id"), nullable=True)
    admission_date = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Loan(Base):
    """Group or individual loan with its embedded collection history"""

    __tablename__ = "loan"
    __table_args__ = (
        Index("ix_loan_branch_status_end", "branch_code", "status", "ending_date"),
        Index("ix_loan_branch_disbursed", "branch_code", "disbursement_date"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    group_id = Column(UUID(as_uuid=True), ForeignKey("branch_group.id"), nullable=True)
    client_id = Column(UUID(as_uuid=True), ForeignKey("client.id"), nullable=True)
    branch_name = Column(Text, nullable=False)
    branch_code = Column(Text, nullable=False)
    loan_amount = Column(Amount, nullable=False)
    interest_rate = Column(Numeric(7, 3), nullable=False, default=0)
    loan_duration_number = Column(Integer, nullable=False)
    loan_duration_unit = Column(Text, nullable=False, default="weeks")
    weekly_installment = Column(Amount, nullable=True)
    security_deposit = Column(Amount, nullable=True)
    disbursement_date = Column(DateTime(timezone=True), nullable=True)
    ending_date = Column(DateTime(timezone=True), nullable=True)
    currency = Column(String(3), nullable=False, default="LRD")
    status = Column(Text, nullable=False, default="pending")
    loan_officer_name = Column(Text, nullable=False, default="")
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    collections = relationship(
        "LoanCollection", back_populates="loan", cascade="all, delete-orphan", order_by="LoanCollection.collection_date"
    )


class LoanCollection(Base):
    """Single field collection recorded against a loan"""

    __tablename__ = "loan_collection"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    loan_id = Column(UUID(as_uuid=True), ForeignKey("loan.id", ondelete="CASCADE"), nullable=False)
    collection_date = Column(DateTime(timezone=True), nullable=False, index=True)
    currency = Column(String(3), nullable=False)
    weekly_amount = Column(Amount, nullable=False, default=0)
    field_collection = Column(Amount, nullable=False, default=0)
    advance_payment = Column(Amount, nullable=False, default=0)
    principal_portion = Column(Amount, nullable=True)
    interest_portion = Column(Amount, nullable=True)
    fees_portion = Column(Amount, nullable=True)
    security_deposit_contribution = Column(Amount, nullable=True)

    loan = relationship("Loan", back_populates="collections")


class SavingsAccount(Base):
    """Group savings account (one per group)"""

    __tablename__ = "savings_account"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    group_id = Column(UUID(as_uuid=True), ForeignKey("branch_group.id"), nullable=False, unique=True)
    client_id = Column(UUID(as_uuid=True), ForeignKey("client.id"), nullable=True)
    currency = Column(String(3), nullable=False, default="LRD")
    current_balance = Column(Amount, nullable=False, default=0)

    transactions = relationship("SavingsTransaction", back_populates="account", cascade="all, delete-orphan")


class SavingsTransaction(Base):
    """Deposit and/or withdrawal on a savings account"""

    __tablename__ = "savings_transaction"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    account_id = Column(UUID(as_uuid=True), ForeignKey("savings_account.id", ondelete="CASCADE"), nullable=False)
    date = Column(DateTime(timezone=True), nullable=False, index=True)
    saving_amount = Column(Amount, nullable=False, default=0)
    withdrawal_amount = Column(Amount, nullable=False, default=0)
    currency = Column(String(3), nullable=False)
    type = Column(Text, nullable=False, default="personal")  # personal | security | other

    account = relationship("SavingsAccount", back_populates="transactions")


class Expense(Base):
    """Branch operating expense"""

    __tablename__ = "expense"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    description = Column(Text, nullable=False, default="")
    amount = Column(Amount, nullable=False)
    currency = Column(String(3), nullable=False, default="LRD")
    category = Column(Text, nullable=False, default="other")
    branch_name = Column(Text, nullable=False)
    branch_code = Column(Text, nullable=False)
    expense_date = Column(DateTime(timezone=True), nullable=False, index=True)
    status = Column(Text, nullable=False, default="pending")


class BranchData(Base):
    """Manually entered branch adjustments plus the values already applied"""

    __tablename__ = "branch_data"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    branch_name = Column(Text, nullable=False)
    branch_code = Column(Text, nullable=False, unique=True)
    currency = Column(String(3), nullable=False, default="LRD")
    data_date = Column(DateTime(timezone=True), nullable=True)
    status = Column(Text, nullable=False, default="pending")

    loan_officer_shortage = Column(Amount, nullable=False, default=0)
    branch_shortage = Column(Amount, nullable=False, default=0)
    entity_shortage = Column(Amount, nullable=False, default=0)
    bad_debt = Column(Amount, nullable=False, default=0)

    applied_loan_officer_shortage = Column(Amount, nullable=False, default=0)
    applied_branch_shortage = Column(Amount, nullable=False, default=0)
    applied_entity_shortage = Column(Amount, nullable=False, default=0)
    applied_bad_debt = Column(Amount, nullable=False, default=0)
    applied_currency = Column(String(3), nullable=True)
    applied_at = Column(DateTime(timezone=True), nullable=True)
    applied_by = Column(Text, nullable=True)
