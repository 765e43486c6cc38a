"""Daily compute job: rebuild a branch/day/currency snapshot from source records"""

import logging
from datetime import date
from decimal import Decimal
from typing import Optional
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from microfin_metrics.config import settings
from microfin_metrics.domain.amounts import ZERO, amount_or_zero
from microfin_metrics.domain.daily import figures_to_metrics, loan_overdue_as_of
from microfin_metrics.domain.exceptions import InvalidCurrencyError, InvalidQueryError, SnapshotUpdateError
from microfin_metrics.domain.metric_names import snapshot_column
from microfin_metrics.domain.models import DailyFigures
from microfin_metrics.domain.schedule import total_repayable
from microfin_metrics.infrastructure.database.models import FinancialSnapshot
from microfin_metrics.infrastructure.database.repositories import SnapshotRepository, SourceRepository, loan_to_facts
from microfin_metrics.infrastructure.observability.metrics import record_snapshot_update
from microfin_metrics.services.registry import BranchRegistryService
from microfin_metrics.utils.date_utils import day_bounds, utcnow

logger = logging.getLogger(__name__)


class DailyComputeJob:
    """Recomputes snapshot figures from loans, clients, savings and expenses (never the ledger)"""

    def __init__(self, db: Session):
        self.db = db
        self.source = SourceRepository(db)
        self.snapshots = SnapshotRepository(db)
        self.registry = BranchRegistryService(db)

    def compute_figures(
        self,
        branch_name: Optional[str],
        branch_code: Optional[str],
        day: date,
        currency: str,
    ) -> DailyFigures:
        """Same-day flows plus end-of-day balances for one branch"""
        start, end, _ = day_bounds(day)
        figures = DailyFigures()

        collections = self.source.collection_totals(branch_name, branch_code, currency, start, end)
        figures.expected_collections = amount_or_zero(collections["expected"])
        figures.field_collections = amount_or_zero(collections["collected"])
        figures.interest_collected = amount_or_zero(collections["interest"])
        figures.core_fees = amount_or_zero(collections["fees"])
        figures.principal_collected = amount_or_zero(collections["principal"])

        if currency == settings.admission_fee_currency:
            admitted = self.source.admissions_count(branch_name, branch_code, start, end)
            figures.admission_fees = Decimal(admitted) * Decimal(str(settings.admission_fee_amount))

        disbursed = [loan_to_facts(loan) for loan in self.source.loans_disbursed(branch_name, branch_code, currency, start, end)]
        figures.loans_count = len(disbursed)
        figures.loan_amount_distributed = sum((amount_or_zero(loan.loan_amount) for loan in disbursed), ZERO)
        figures.total_repayable = sum((total_repayable(loan) for loan in disbursed), ZERO)

        figures.overdue = sum(
            (
                loan_overdue_as_of(loan_to_facts(loan), end)
                for loan in self.source.active_loans(branch_name, branch_code, currency, end)
            ),
            ZERO,
        )

        group_ids = self.source.group_ids_for_branch(branch_name, branch_code)
        cumulative = self.source.savings_totals_by_type(group_ids, currency, end)
        for savings_type, (deposits, withdrawals) in cumulative.items():
            balance = amount_or_zero(deposits) - amount_or_zero(withdrawals)
            figures.savings_balance += balance
            if savings_type == "personal":
                figures.personal_savings_balance += balance
            elif savings_type == "security":
                figures.security_savings_balance += balance

        same_day = self.source.savings_totals_by_type(group_ids, currency, end, start=start)
        for savings_type, (deposits, withdrawals) in same_day.items():
            deposits = amount_or_zero(deposits)
            withdrawals = amount_or_zero(withdrawals)
            figures.savings_deposits += deposits
            figures.savings_withdrawals += withdrawals
            if savings_type == "personal":
                figures.personal_savings_flow += deposits - withdrawals
            elif savings_type == "security":
                figures.security_deposits_flow += deposits - withdrawals

        figures.expenses = amount_or_zero(self.source.expenses_total(branch_name, branch_code, currency, start, end))
        return figures

    def compute_snapshot(
        self,
        branch_name: Optional[str] = None,
        branch_code: Optional[str] = None,
        day: Optional[date] = None,
        currency: Optional[str] = None,
    ) -> FinancialSnapshot:
        """
        Recompute and overwrite the branch's snapshot for one day.

        The snapshot is located the same way increments locate it (registry,
        fixed snapshot, compound key) and its metric columns are set, not
        incremented.

        Args:
            branch_name: Branch display name; resolved from the code if omitted
            branch_code: Stable branch code
            day: Calendar day (UTC); defaults to today
            currency: One of the supported currencies; defaults to the default currency

        Raises:
            InvalidQueryError: Neither branch name nor branch code given
            InvalidCurrencyError: Unsupported currency
            SnapshotUpdateError: The snapshot could not be written
        """
        if not branch_name and not branch_code:
            raise InvalidQueryError("branchName or branchCode is required")
        currency = currency or settings.default_currency
        if currency not in settings.supported_currencies:
            raise InvalidCurrencyError(currency)
        if not branch_name:
            branch_name = self.source.resolve_branch_name(branch_code)

        day = day or utcnow().date()
        period_start, period_end, day_key = day_bounds(day)
        figures = self.compute_figures(branch_name, branch_code, day, currency)

        values = {snapshot_column(name): value for name, value in figures_to_metrics(figures).items()}
        values.update(
            {
                "branch_name": branch_name or "",
                "day_key": day_key,
                "period_start": period_start,
                "period_end": period_end,
                "computed_at": utcnow(),
                "updated_at": utcnow(),
                "update_source": "daily_compute",
            }
        )

        try:
            snapshot_id = self.registry.locate_snapshot(branch_name or "", branch_code or "", currency, day_key)
            if self.snapshots.overwrite(snapshot_id, values) == 0:
                raise SnapshotUpdateError(f"Snapshot {snapshot_id} disappeared before overwrite")
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise SnapshotUpdateError(f"Failed to write snapshot for {branch_code or branch_name}") from e

        record_snapshot_update("overwrite")
        logger.info(
            "Snapshot recomputed",
            extra={
                "step": "daily_compute",
                "branch_code": branch_code,
                "branch_name": branch_name,
                "currency": currency,
                "day_key": day_key,
                "snapshot_id": str(snapshot_id),
            },
        )
        return self.snapshots.get(snapshot_id)
