"""Snapshot reads and the daily compute trigger"""

import logging
from datetime import date
from typing import Optional
from uuid import UUID
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.orm import Session

from microfin_metrics.api.dependencies import get_daily_compute_job, get_request_id
from microfin_metrics.api.v1.schemas import SnapshotListResponse, SnapshotResponse
from microfin_metrics.domain.exceptions import InvalidCurrencyError, InvalidQueryError, SnapshotUpdateError
from microfin_metrics.domain.metric_names import SNAPSHOT_FIELDS
from microfin_metrics.infrastructure.database.models import FinancialSnapshot
from microfin_metrics.infrastructure.database.repositories import SnapshotRepository
from microfin_metrics.infrastructure.database.session import get_db
from microfin_metrics.services.daily_compute import DailyComputeJob
from microfin_metrics.utils.date_utils import parse_day

router = APIRouter(prefix="/snapshots")


def to_snapshot_response(snapshot: FinancialSnapshot) -> SnapshotResponse:
    return SnapshotResponse(
        id=str(snapshot.id),
        branch_name=snapshot.branch_name,
        branch_code=snapshot.branch_code,
        currency=snapshot.currency,
        day_key=snapshot.day_key,
        period_start=snapshot.period_start,
        period_end=snapshot.period_end,
        computed_at=snapshot.computed_at,
        metrics={name: float(getattr(snapshot, column) or 0) for name, (column, _) in SNAPSHOT_FIELDS.items()},
        group_name=snapshot.group_name,
        group_code=snapshot.group_code,
        updated_by=snapshot.updated_by,
        updated_by_name=snapshot.updated_by_name,
        update_source=snapshot.update_source,
    )


def _parse_day(value: Optional[str]) -> Optional[date]:
    try:
        return parse_day(value)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/compute", response_model=SnapshotResponse)
def compute_snapshot(
    request: Request,
    branch_name: Optional[str] = Query(None, alias="branchName"),
    branch_code: Optional[str] = Query(None, alias="branchCode"),
    day: Optional[str] = Query(None, alias="date", description="YYYY-MM-DD, defaults to today (UTC)"),
    currency: Optional[str] = Query(None),
    job: DailyComputeJob = Depends(get_daily_compute_job),
):
    """Recompute one branch/day/currency snapshot from source records"""
    request_id = get_request_id(request)
    try:
        snapshot = job.compute_snapshot(branch_name, branch_code, _parse_day(day), currency)
    except (InvalidQueryError, InvalidCurrencyError) as e:
        raise HTTPException(status_code=400, detail=str(e))
    except SnapshotUpdateError as e:
        logging.error(f"Snapshot compute failed: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=503, detail="Snapshot store unavailable")
    return to_snapshot_response(snapshot)


@router.get("", response_model=SnapshotListResponse)
def list_snapshots(
    branch_name: Optional[str] = Query(None, alias="branchName"),
    branch_code: Optional[str] = Query(None, alias="branchCode"),
    currency: Optional[str] = Query(None),
    start_date: Optional[str] = Query(None, alias="startDate"),
    end_date: Optional[str] = Query(None, alias="endDate"),
    db: Session = Depends(get_db),
):
    """Snapshots newest first, filtered by branch, currency and day range"""
    start = _parse_day(start_date)
    end = _parse_day(end_date)
    snapshots = SnapshotRepository(db).list_snapshots(
        branch_name=branch_name,
        branch_code=branch_code,
        currency=currency,
        start_key=start.isoformat() if start else None,
        end_key=end.isoformat() if end else None,
    )
    return SnapshotListResponse(snapshots=[to_snapshot_response(s) for s in snapshots])


@router.get("/{snapshot_id}", response_model=SnapshotResponse)
def get_snapshot(snapshot_id: UUID, db: Session = Depends(get_db)):
    snapshot = SnapshotRepository(db).get(snapshot_id)
    if snapshot is None:
        raise HTTPException(status_code=404, detail="Snapshot not found")
    return to_snapshot_response(snapshot)
