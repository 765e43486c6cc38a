"""Pydantic schemas for API request/response validation"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import UUID
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from microfin_metrics.domain.models import (
    AuditContext,
    ClientFacts,
    CollectionEntry,
    ExpenseFacts,
    GroupInfo,
    LoanFacts,
    MetricEventInput,
    SavingsAccountFacts,
)


class CamelModel(BaseModel):
    """Accepts and emits camelCase keys; snake_case is accepted too"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class AuditSchema(CamelModel):
    """Who triggered the event"""

    user_id: Optional[str] = None
    username: str = ""
    email: str = ""
    source: str = ""

    def to_context(self) -> AuditContext:
        return AuditContext(user_id=self.user_id, username=self.username, email=self.email, source=self.source)


class GroupSchema(CamelModel):
    group_id: Optional[UUID] = None
    group_name: str = ""
    group_code: str = ""

    def to_info(self) -> GroupInfo:
        return GroupInfo(group_id=self.group_id, group_name=self.group_name, group_code=self.group_code)


# ---------------------------------------------------------------------------
# Raw ledger writes
# ---------------------------------------------------------------------------


class MetricEntrySchema(CamelModel):
    """One ledger fact; invalid names/values are dropped, not rejected"""

    name: Optional[str] = None
    value: Any = None
    occurred_at: Optional[datetime] = None
    branch_name: str = ""
    branch_code: str = ""
    currency: str = "LRD"
    loan_officer_name: Optional[str] = None
    loan: Optional[UUID] = None
    group: Optional[UUID] = None
    client: Optional[UUID] = None
    extra: Optional[Dict[str, Any]] = None

    def to_input(self) -> MetricEventInput:
        return MetricEventInput(
            name=self.name,
            value=self.value,
            occurred_at=self.occurred_at,
            branch_name=self.branch_name,
            branch_code=self.branch_code,
            currency=self.currency,
            loan_officer_name=self.loan_officer_name,
            loan_id=self.loan,
            group_id=self.group,
            client_id=self.client,
            extra=self.extra,
        )


class MetricBatchSchema(CamelModel):
    entries: List[MetricEntrySchema] = Field(default_factory=list)


class MetricsWriteResponse(CamelModel):
    """Response for POST /v1/metrics"""

    recorded: int
    dropped: int
    ids: List[str]


class SummaryResponse(CamelModel):
    """Response for GET /v1/metrics/summary and /v1/metrics/profit"""

    group_by: str
    split_by: List[str]
    rows: List[Dict[str, Any]]


# ---------------------------------------------------------------------------
# Business events
# ---------------------------------------------------------------------------


class CollectionSchema(CamelModel):
    collection_date: Optional[datetime] = None
    weekly_amount: Optional[Decimal] = None
    field_collection: Optional[Decimal] = None
    advance_payment: Optional[Decimal] = None
    principal_portion: Optional[Decimal] = None
    interest_portion: Optional[Decimal] = None
    fees_portion: Optional[Decimal] = None
    security_deposit_contribution: Optional[Decimal] = None

    def to_entry(self) -> CollectionEntry:
        return CollectionEntry(**self.model_dump())


class LoanSchema(CamelModel):
    """Loan fields the metrics engine needs"""

    id: Optional[UUID] = None
    branch_name: str = ""
    branch_code: str = ""
    currency: str = "LRD"
    loan_amount: Optional[Decimal] = None
    interest_rate: Optional[Decimal] = None
    loan_duration_number: Optional[int] = None
    loan_duration_unit: str = "weeks"
    weekly_installment: Optional[Decimal] = None
    disbursement_date: Optional[datetime] = None
    ending_date: Optional[datetime] = None
    status: str = "pending"
    loan_officer_name: str = ""
    security_deposit: Optional[Decimal] = None
    group_id: Optional[UUID] = None
    client_id: Optional[UUID] = None
    collections: List[CollectionSchema] = Field(default_factory=list)

    def to_facts(self) -> LoanFacts:
        data = self.model_dump(exclude={"collections"})
        return LoanFacts(**data, collections=[c.to_entry() for c in self.collections])


class SavingsAccountSchema(CamelModel):
    id: Optional[UUID] = None
    branch_name: str = ""
    branch_code: str = ""
    currency: str = "LRD"
    group_id: Optional[UUID] = None
    client_id: Optional[UUID] = None

    def to_facts(self) -> SavingsAccountFacts:
        return SavingsAccountFacts(**self.model_dump())


class ClientSchema(CamelModel):
    id: Optional[UUID] = None
    branch_name: str = ""
    branch_code: str = ""
    group_id: Optional[UUID] = None
    admission_date: Optional[datetime] = None

    def to_facts(self) -> ClientFacts:
        return ClientFacts(**self.model_dump())


class ExpenseSchema(CamelModel):
    id: Optional[UUID] = None
    amount: Optional[Decimal] = None
    branch_name: str = ""
    branch_code: str = ""
    currency: str = "LRD"
    expense_date: Optional[datetime] = None
    category: str = "other"

    def to_facts(self) -> ExpenseFacts:
        return ExpenseFacts(**self.model_dump())


class EventContextSchema(CamelModel):
    audit: Optional[AuditSchema] = None
    group: Optional[GroupSchema] = None

    def audit_context(self) -> Optional[AuditContext]:
        return self.audit.to_context() if self.audit else None

    def group_info(self) -> Optional[GroupInfo]:
        return self.group.to_info() if self.group else None


class LoanEventRequest(EventContextSchema):
    """Request body for loan created/approved/denied"""

    loan: LoanSchema


class CollectionEventRequest(EventContextSchema):
    loan: LoanSchema
    entry: CollectionSchema


class DistributionEventRequest(EventContextSchema):
    loan: LoanSchema
    total_amount: Decimal


class SavingsEventRequest(EventContextSchema):
    account: SavingsAccountSchema
    deposit: Decimal = Decimal("0")
    withdrawal: Decimal = Decimal("0")
    savings_type: str = "personal"
    occurred_at: Optional[datetime] = None


class BankDepositEventRequest(EventContextSchema):
    account: SavingsAccountSchema
    deposit: Decimal = Decimal("0")
    withdrawal: Decimal = Decimal("0")
    occurred_at: Optional[datetime] = None


class ClientEventRequest(EventContextSchema):
    client: ClientSchema


class ExpenseEventRequest(EventContextSchema):
    expense: ExpenseSchema


class PostingResponse(CamelModel):
    """Deltas posted for one business event"""

    deltas: Dict[str, float]
    event_ids: List[str]
    snapshot_id: Optional[str] = None
    snapshot_updated: bool = False
    weekly_installment: Optional[float] = None


# ---------------------------------------------------------------------------
# Snapshots
# ---------------------------------------------------------------------------


class SnapshotResponse(CamelModel):
    """Snapshot document with its metric fields keyed by ledger name"""

    id: str
    branch_name: str
    branch_code: Optional[str] = None
    currency: str
    day_key: str
    period_start: datetime
    period_end: datetime
    computed_at: Optional[datetime] = None
    metrics: Dict[str, float]
    group_name: Optional[str] = None
    group_code: Optional[str] = None
    updated_by: Optional[str] = None
    updated_by_name: Optional[str] = None
    update_source: Optional[str] = None


class SnapshotListResponse(CamelModel):
    snapshots: List[SnapshotResponse]

