"""Metric recorder: validated, all-or-nothing writes to the ledger"""

import logging
import time
from typing import Any, Callable, Dict, Iterable, List, Optional
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from microfin_metrics.config import settings
from microfin_metrics.domain.amounts import to_amount
from microfin_metrics.domain.exceptions import InvalidCurrencyError, LedgerWriteError
from microfin_metrics.domain.metric_names import canonical_metric_name
from microfin_metrics.domain.models import MetricEventInput
from microfin_metrics.infrastructure.database.models import MetricEvent
from microfin_metrics.infrastructure.database.repositories import MetricEventRepository
from microfin_metrics.infrastructure.notifications.bus import MetricsEventBus, metrics_bus
from microfin_metrics.infrastructure.observability.logging import log_ledger_write
from microfin_metrics.infrastructure.observability.metrics import ledger_write_failures_counter, record_ledger_write
from microfin_metrics.utils.date_utils import to_day_bucket, utcnow

logger = logging.getLogger(__name__)


def _ref(value: Any) -> Optional[str]:
    return str(value) if value is not None else None


def to_projection(event: MetricEvent) -> Dict[str, Any]:
    """Minimal view of a ledger row pushed to real-time subscribers"""
    return {
        "name": event.name,
        "value": float(event.value),
        "day": event.day_bucket.isoformat(),
        "branchName": event.branch_name,
        "branchCode": event.branch_code,
        "loanOfficerName": event.loan_officer_name,
        "currency": event.currency,
        "loan": _ref(event.loan_id),
        "group": _ref(event.group_id),
        "client": _ref(event.client_id),
    }


class MetricRecorder:
    """Writes ledger events and announces them once they are durable"""

    def __init__(self, db: Session, bus: Optional[MetricsEventBus] = None):
        self.db = db
        self.bus = bus if bus is not None else metrics_bus
        self.repo = MetricEventRepository(db)

    def _to_row(self, event: MetricEventInput) -> Optional[MetricEvent]:
        if not event.name or not isinstance(event.name, str):
            return None
        value = to_amount(event.value)
        if value is None or value == 0:
            return None

        currency = event.currency or settings.default_currency
        if currency not in settings.supported_currencies:
            raise InvalidCurrencyError(currency)

        occurred_at = event.occurred_at or utcnow()
        return MetricEvent(
            name=canonical_metric_name(event.name),
            value=value,
            occurred_at=occurred_at,
            day_bucket=to_day_bucket(occurred_at),
            branch_name=event.branch_name or "",
            branch_code=event.branch_code or "",
            loan_officer_name=event.loan_officer_name or None,
            currency=currency,
            loan_id=event.loan_id,
            group_id=event.group_id,
            client_id=event.client_id,
            extra=event.extra,
        )

    def record(self, event: MetricEventInput) -> Optional[MetricEvent]:
        """Write a single event; None when it was dropped as a zero/invalid fact"""
        rows = self.record_batch([event])
        return rows[0] if rows else None

    def record_batch(
        self,
        events: Iterable[MetricEventInput],
        source: Optional[str] = None,
        before_commit: Optional[Callable[[], None]] = None,
    ) -> List[MetricEvent]:
        """
        Write every valid event in one transaction.

        Events with a missing name or a null/NaN/zero value are dropped
        silently. If the insert fails nothing from this call is kept.
        ``before_commit`` stages related writes in the same transaction; it
        runs even when every event was dropped.

        Returns:
            The persisted rows, in input order

        Raises:
            InvalidCurrencyError: An event carries an unsupported currency
            LedgerWriteError: The store rejected the write
        """
        start_time = time.time()
        events = list(events)
        rows = [row for row in (self._to_row(e) for e in events) if row is not None]
        if not rows and before_commit is None:
            return []

        try:
            if rows:
                self.repo.add_many(rows)
            if before_commit is not None:
                before_commit()
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            ledger_write_failures_counter.inc()
            logger.error(
                "Ledger write failed",
                extra={"step": "ledger_write", "event_count": len(rows), "error": str(e)},
            )
            raise LedgerWriteError(f"Failed to record {len(rows)} metric events") from e

        if not rows:
            return rows

        record_ledger_write(row.name for row in rows)
        log_ledger_write(len(rows), len(events) - len(rows), (time.time() - start_time) * 1000, source)

        self.bus.publish([to_projection(row) for row in rows])
        return rows
