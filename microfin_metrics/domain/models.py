"""Domain models - pure Python dataclasses representing business entities"""

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional


@dataclass
class AuditContext:
    """Who triggered an update and from which subsystem"""

    user_id: Optional[str] = None
    username: str = ""
    email: str = ""
    source: str = ""


@dataclass
class GroupInfo:
    """Denormalised group identity carried into audit fields"""

    group_id: Optional[uuid.UUID] = None
    group_name: str = ""
    group_code: str = ""


@dataclass
class MetricEventInput:
    """One ledger fact before validation"""

    name: Optional[str]
    value: Any
    occurred_at: Optional[datetime] = None
    branch_name: str = ""
    branch_code: str = ""
    currency: str = "LRD"
    loan_officer_name: Optional[str] = None
    loan_id: Optional[uuid.UUID] = None
    group_id: Optional[uuid.UUID] = None
    client_id: Optional[uuid.UUID] = None
    extra: Optional[Dict[str, Any]] = None


@dataclass
class CollectionEntry:
    """Single field collection against a loan"""

    collection_date: Optional[datetime] = None
    weekly_amount: Optional[Decimal] = None
    field_collection: Optional[Decimal] = None
    advance_payment: Optional[Decimal] = None
    principal_portion: Optional[Decimal] = None
    interest_portion: Optional[Decimal] = None
    fees_portion: Optional[Decimal] = None
    security_deposit_contribution: Optional[Decimal] = None


@dataclass
class LoanFacts:
    """Loan fields the metrics engine reads"""

    id: Optional[uuid.UUID] = None
    branch_name: str = ""
    branch_code: str = ""
    currency: str = "LRD"
    loan_amount: Optional[Decimal] = None
    interest_rate: Optional[Decimal] = None
    loan_duration_number: Optional[Decimal] = None
    loan_duration_unit: str = "weeks"  # days | weeks | months | years
    weekly_installment: Optional[Decimal] = None
    disbursement_date: Optional[datetime] = None
    ending_date: Optional[datetime] = None
    status: str = "pending"  # pending | active | paid | defaulted | denied
    loan_officer_name: str = ""
    security_deposit: Optional[Decimal] = None
    group_id: Optional[uuid.UUID] = None
    client_id: Optional[uuid.UUID] = None
    collections: List[CollectionEntry] = field(default_factory=list)


@dataclass
class SavingsAccountFacts:
    """Savings account scope for a deposit/withdrawal"""

    id: Optional[uuid.UUID] = None
    branch_name: str = ""
    branch_code: str = ""
    currency: str = "LRD"
    group_id: Optional[uuid.UUID] = None
    client_id: Optional[uuid.UUID] = None


@dataclass
class ExpenseFacts:
    """Approved branch expense"""

    amount: Optional[Decimal] = None
    branch_name: str = ""
    branch_code: str = ""
    currency: str = "LRD"
    expense_date: Optional[datetime] = None
    category: str = "other"
    id: Optional[uuid.UUID] = None


@dataclass
class ClientFacts:
    """Newly registered client"""

    id: Optional[uuid.UUID] = None
    branch_name: str = ""
    branch_code: str = ""
    group_id: Optional[uuid.UUID] = None
    admission_date: Optional[datetime] = None


@dataclass
class Posting:
    """Outcome of one business-event increment"""

    deltas: Dict[str, Decimal]
    event_ids: List[uuid.UUID] = field(default_factory=list)
    snapshot_id: Optional[uuid.UUID] = None
    snapshot_updated: bool = False


@dataclass
class DailyFigures:
    """Metrics recomputed from source records for one branch/day/currency"""

    expected_collections: Decimal = Decimal("0")
    field_collections: Decimal = Decimal("0")
    interest_collected: Decimal = Decimal("0")
    core_fees: Decimal = Decimal("0")
    principal_collected: Decimal = Decimal("0")
    admission_fees: Decimal = Decimal("0")
    loans_count: int = 0
    loan_amount_distributed: Decimal = Decimal("0")
    total_repayable: Decimal = Decimal("0")
    overdue: Decimal = Decimal("0")
    savings_deposits: Decimal = Decimal("0")
    savings_withdrawals: Decimal = Decimal("0")
    personal_savings_flow: Decimal = Decimal("0")
    security_deposits_flow: Decimal = Decimal("0")
    savings_balance: Decimal = Decimal("0")
    personal_savings_balance: Decimal = Decimal("0")
    security_savings_balance: Decimal = Decimal("0")
    expenses: Decimal = Decimal("0")


@dataclass
class Installment:
    """Single scheduled repayment"""

    due_date: date
    amount: Decimal


@dataclass
class MetricFilter:
    """Ledger query filter; every field is optional"""

    names: Optional[List[str]] = None
    branch_name: Optional[str] = None
    branch_code: Optional[str] = None
    loan_officer_name: Optional[str] = None
    currency: Optional[str] = None
    loan_id: Optional[uuid.UUID] = None
    group_id: Optional[uuid.UUID] = None
    client_id: Optional[uuid.UUID] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None


@dataclass
class EventScope:
    """Dimensions every ledger row of one business event is tagged with"""

    branch_name: str = ""
    branch_code: str = ""
    currency: str = "LRD"
    occurred_at: Optional[datetime] = None
    loan_officer_name: Optional[str] = None
    loan_id: Optional[uuid.UUID] = None
    group_id: Optional[uuid.UUID] = None
    client_id: Optional[uuid.UUID] = None
