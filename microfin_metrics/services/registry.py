"""Branch registry: one stable snapshot identity per branch"""

import logging
import uuid
from datetime import date
from typing import Optional
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from microfin_metrics.config import settings
from microfin_metrics.domain.exceptions import SnapshotUpdateError
from microfin_metrics.infrastructure.database.repositories import BranchRegistryRepository, SnapshotRepository
from microfin_metrics.infrastructure.observability.metrics import registry_bootstrap_counter
from microfin_metrics.utils.date_utils import day_bounds

logger = logging.getLogger(__name__)


class BranchRegistryService:
    """Resolve-or-create lookup of the snapshot all writers for a branch converge on"""

    def __init__(self, db: Session):
        self.db = db
        self.registry = BranchRegistryRepository(db)
        self.snapshots = SnapshotRepository(db)

    def resolve_snapshot_id(self, branch_code: Optional[str] = None, branch_name: Optional[str] = None) -> Optional[uuid.UUID]:
        """Look up by code first, then by (non-unique) name"""
        entry = None
        if branch_code:
            entry = self.registry.find_by_code(branch_code)
        if entry is None and branch_name:
            entry = self.registry.find_by_name(branch_name)
        return entry.snapshot_id if entry is not None else None

    def ensure_mapping(self, branch_code: str, branch_name: str, currency: Optional[str] = None) -> uuid.UUID:
        """
        Return the branch's snapshot id, bootstrapping the mapping on first use.

        The bootstrap creates an empty snapshot dated today plus the registry
        row, and commits both. A unique violation on ``branch_code`` means a
        concurrent caller won the race; its mapping is re-fetched.

        Raises:
            SnapshotUpdateError: No branch code was given, or the mapping
                vanished after a lost race
        """
        existing = self.resolve_snapshot_id(branch_code, branch_name)
        if existing is not None:
            registry_bootstrap_counter.labels(outcome="existing").inc()
            return existing
        if not branch_code:
            raise SnapshotUpdateError(f"Cannot register branch {branch_name!r} without a branch code")

        period_start, period_end, day_key = day_bounds()
        try:
            snapshot = self.snapshots.create(
                branch_name=branch_name or "",
                branch_code=branch_code,
                currency=currency or settings.default_currency,
                day_key=day_key,
                period_start=period_start,
                period_end=period_end,
            )
            entry = self.registry.create(branch_code=branch_code, branch_name=branch_name or "", snapshot_id=snapshot.id)
            snapshot_id = entry.snapshot_id
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            entry = self.registry.find_by_code(branch_code)
            if entry is None:
                raise SnapshotUpdateError(f"Registry mapping for {branch_code!r} missing after unique violation")
            registry_bootstrap_counter.labels(outcome="race_lost").inc()
            logger.info(
                "Registry mapping created concurrently, using existing",
                extra={"step": "registry_bootstrap", "branch_code": branch_code, "snapshot_id": str(entry.snapshot_id)},
            )
            return entry.snapshot_id

        registry_bootstrap_counter.labels(outcome="created").inc()
        logger.info(
            "Registry mapping created",
            extra={"step": "registry_bootstrap", "branch_code": branch_code, "snapshot_id": str(snapshot_id)},
        )
        return snapshot_id

    def locate_snapshot(self, branch_name: str, branch_code: str, currency: str, day_key: str) -> uuid.UUID:
        """
        Pick the snapshot document an update lands on.

        Order: the registry mapping (bootstrapped if absent), then the
        configured fixed snapshot, then the (branch, currency, day) compound
        key, created when missing. A candidate in another currency is
        skipped so currencies never mix in one document.
        """
        snapshot_id = None
        try:
            snapshot_id = self.ensure_mapping(branch_code, branch_name, currency)
        except Exception as e:
            self.db.rollback()
            logger.warning(
                "Registry lookup failed, falling back",
                extra={"step": "registry_bootstrap", "branch_code": branch_code, "error": str(e)},
            )

        if snapshot_id is not None and self._matches_currency(snapshot_id, currency):
            return snapshot_id

        if settings.fixed_snapshot_id:
            fixed_id = uuid.UUID(settings.fixed_snapshot_id)
            if self._matches_currency(fixed_id, currency):
                return fixed_id

        snapshot = self.snapshots.find_by_compound_key(branch_code or "", branch_name or "", currency, day_key)
        if snapshot is None:
            period_start, period_end, _ = day_bounds(date.fromisoformat(day_key))
            snapshot = self.snapshots.create(
                branch_name=branch_name or "",
                branch_code=branch_code or "",
                currency=currency,
                day_key=day_key,
                period_start=period_start,
                period_end=period_end,
            )
        return snapshot.id

    def _matches_currency(self, snapshot_id: uuid.UUID, currency: str) -> bool:
        snapshot = self.snapshots.get(snapshot_id)
        return snapshot is not None and snapshot.currency == currency
