"""POST /v1/metrics and GET /v1/metrics/{summary,profit} - ledger writes and reports"""

import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import UUID
from fastapi import APIRouter, Body, Depends, HTTPException, Query, Request
from pydantic import ValidationError

from microfin_metrics.api.dependencies import get_recorder, get_reporter, get_request_id
from microfin_metrics.api.v1.schemas import MetricBatchSchema, MetricEntrySchema, MetricsWriteResponse, SummaryResponse
from microfin_metrics.domain.exceptions import InvalidCurrencyError, InvalidQueryError, LedgerWriteError
from microfin_metrics.domain.models import MetricFilter
from microfin_metrics.domain.reporting import normalize_group_by, parse_split_by
from microfin_metrics.services.recorder import MetricRecorder
from microfin_metrics.services.reporting import MetricsReporter
from microfin_metrics.utils.date_utils import parse_day

router = APIRouter()


def _jsonable(row: Dict[str, Any]) -> Dict[str, Any]:
    return {k: float(v) if isinstance(v, Decimal) else v for k, v in row.items()}


def _build_filter(
    metrics: Optional[str],
    branch_name: Optional[str],
    branch_code: Optional[str],
    loan_officer_name: Optional[str],
    currency: Optional[str],
    loan: Optional[UUID],
    group: Optional[UUID],
    client: Optional[UUID],
    date_from: Optional[str],
    date_to: Optional[str],
) -> MetricFilter:
    try:
        start = parse_day(date_from)
        end = parse_day(date_to)
    except ValueError as e:
        raise InvalidQueryError(str(e)) from e
    names = [n.strip() for n in metrics.split(",") if n.strip()] if metrics else None
    return MetricFilter(
        names=names,
        branch_name=branch_name,
        branch_code=branch_code,
        loan_officer_name=loan_officer_name,
        currency=currency,
        loan_id=loan,
        group_id=group,
        client_id=client,
        date_from=start,
        date_to=end,
    )


def metric_filter(
    metrics: Optional[str] = Query(None, description="Comma-separated metric names"),
    branch_name: Optional[str] = Query(None, alias="branchName"),
    branch_code: Optional[str] = Query(None, alias="branchCode"),
    loan_officer_name: Optional[str] = Query(None, alias="loanOfficerName"),
    currency: Optional[str] = Query(None),
    loan: Optional[UUID] = Query(None),
    group: Optional[UUID] = Query(None),
    client: Optional[UUID] = Query(None),
    date_from: Optional[str] = Query(None, alias="dateFrom", description="YYYY-MM-DD"),
    date_to: Optional[str] = Query(None, alias="dateTo", description="YYYY-MM-DD"),
) -> MetricFilter:
    """Query-string filter shared by the report endpoints"""
    try:
        return _build_filter(
            metrics, branch_name, branch_code, loan_officer_name, currency, loan, group, client, date_from, date_to
        )
    except InvalidQueryError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/metrics", response_model=MetricsWriteResponse, status_code=201)
async def create_metrics(
    request: Request,
    payload: Dict[str, Any] = Body(...),
    recorder: MetricRecorder = Depends(get_recorder),
):
    """
    Append raw facts to the ledger.

    Accepts either a single entry or ``{"entries": [...]}``. Entries with a
    missing name or a zero/null/NaN value are dropped.
    """
    request_id = get_request_id(request)
    try:
        if "entries" in payload:
            entries = MetricBatchSchema.model_validate(payload).entries
        else:
            entries = [MetricEntrySchema.model_validate(payload)]
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=e.errors(include_url=False))

    try:
        rows = recorder.record_batch([entry.to_input() for entry in entries], source="api")
    except InvalidCurrencyError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except LedgerWriteError as e:
        logging.error(f"Ledger write failed: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=503, detail="Metric ledger unavailable")

    return MetricsWriteResponse(recorded=len(rows), dropped=len(entries) - len(rows), ids=[str(r.id) for r in rows])


def _report(run, group_by: Optional[str], split_by: Optional[str]) -> SummaryResponse:
    try:
        key = normalize_group_by(group_by)
        rows: List[Dict[str, Any]] = run(key, split_by)
    except InvalidQueryError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return SummaryResponse(group_by=key, split_by=parse_split_by(split_by), rows=[_jsonable(r) for r in rows])


@router.get("/metrics/summary", response_model=SummaryResponse)
def get_summary(
    group_by: Optional[str] = Query("day", alias="groupBy", description="day | week | month | year"),
    split_by: Optional[str] = Query(None, alias="splitBy", description="Comma-separated dimensions"),
    filters: MetricFilter = Depends(metric_filter),
    reporter: MetricsReporter = Depends(get_reporter),
):
    """Ledger totals per metric name and period, optionally split by dimensions"""
    return _report(lambda key, split: reporter.summarize(filters, key, split), group_by, split_by)


@router.get("/metrics/profit", response_model=SummaryResponse)
def get_profit(
    group_by: Optional[str] = Query("day", alias="groupBy", description="day | week | month | year"),
    split_by: Optional[str] = Query(None, alias="splitBy", description="Comma-separated dimensions"),
    filters: MetricFilter = Depends(metric_filter),
    reporter: MetricsReporter = Depends(get_reporter),
):
    """Income minus expenses per period"""
    return _report(lambda key, split: reporter.profit(filters, key, split), group_by, split_by)
