"""Integration tests for the branch registry"""

import pytest
from sqlalchemy.orm import Session
from microfin_metrics.domain.exceptions import SnapshotUpdateError
from microfin_metrics.infrastructure.database.models import BranchRegistry, FinancialSnapshot
from microfin_metrics.services.registry import BranchRegistryService
from microfin_metrics.utils.date_utils import day_bounds


def test_ensure_mapping_bootstraps_once(db: Session):
    registry = BranchRegistryService(db)

    first = registry.ensure_mapping("PV01", "Paynesville", "LRD")
    second = registry.ensure_mapping("PV01", "Paynesville", "LRD")

    assert first == second
    assert db.query(BranchRegistry).count() == 1
    snapshot = db.get(FinancialSnapshot, first)
    assert snapshot.branch_code == "PV01"
    assert snapshot.currency == "LRD"
    assert snapshot.day_key == day_bounds()[2]
    assert snapshot.total_profit == 0


def test_resolve_prefers_code_then_name(db: Session):
    registry = BranchRegistryService(db)
    snapshot_id = registry.ensure_mapping("PV01", "Paynesville")

    assert registry.resolve_snapshot_id("PV01") == snapshot_id
    assert registry.resolve_snapshot_id(None, "Paynesville") == snapshot_id
    assert registry.resolve_snapshot_id("UNKNOWN", "Paynesville") == snapshot_id
    assert registry.resolve_snapshot_id("UNKNOWN", "Elsewhere") is None
    assert registry.resolve_snapshot_id() is None


def test_lost_race_refetches_winner(db: Session):
    """A loser that looked before the winner committed re-fetches after the unique violation"""
    winner_id = BranchRegistryService(db).ensure_mapping("PV01", "Paynesville")

    loser = BranchRegistryService(db)
    real_find = loser.registry.find_by_code
    calls = []

    def stale_find(branch_code):
        calls.append(branch_code)
        return None if len(calls) == 1 else real_find(branch_code)

    loser.registry.find_by_code = stale_find
    loser_id = loser.ensure_mapping("PV01", "Paynesville Main")

    assert loser_id == winner_id
    assert db.query(BranchRegistry).count() == 1
    # The loser's bootstrap snapshot was rolled back with its registry row
    assert db.query(FinancialSnapshot).count() == 1


def test_mapping_without_code_is_refused(db: Session):
    with pytest.raises(SnapshotUpdateError):
        BranchRegistryService(db).ensure_mapping("", "Paynesville")
