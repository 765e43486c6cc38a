"""POST /v1/events/* - inbound business-event triggers"""

import logging
from typing import Callable, Optional
from uuid import UUID
from fastapi import APIRouter, Body, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from microfin_metrics.api.dependencies import get_increment_service, get_request_id
from microfin_metrics.api.v1.schemas import (
    AuditSchema,
    BankDepositEventRequest,
    ClientEventRequest,
    CollectionEventRequest,
    DistributionEventRequest,
    ExpenseEventRequest,
    LoanEventRequest,
    PostingResponse,
    SavingsEventRequest,
)
from microfin_metrics.domain.exceptions import InvalidCurrencyError, LedgerWriteError, NotFoundError
from microfin_metrics.domain.models import Posting
from microfin_metrics.services.increments import IncrementService

router = APIRouter(prefix="/events")


def _to_response(posting: Posting, weekly_installment=None) -> PostingResponse:
    return PostingResponse(
        deltas={name: float(value) for name, value in posting.deltas.items()},
        event_ids=[str(i) for i in posting.event_ids],
        snapshot_id=str(posting.snapshot_id) if posting.snapshot_id else None,
        snapshot_updated=posting.snapshot_updated,
        weekly_installment=float(weekly_installment) if weekly_installment is not None else None,
    )


def _post(request: Request, db: Session, action: Callable[[], Posting]) -> Posting:
    """Run a façade and map engine errors onto HTTP responses"""
    request_id = get_request_id(request)
    try:
        return action()
    except InvalidCurrencyError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except LedgerWriteError as e:
        logging.error(f"Ledger write failed: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=503, detail="Metric ledger unavailable")
    except Exception as e:
        db.rollback()
        logging.error(f"Unexpected error: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=500, detail="Internal server error")


@router.post("/loan-created", response_model=PostingResponse)
async def loan_created(
    body: LoanEventRequest, request: Request, service: IncrementService = Depends(get_increment_service)
):
    """Appraisal fee plus pending principal (and security deposit)"""
    loan = body.loan.to_facts()
    posting = _post(
        request, service.db, lambda: service.on_loan_creation(loan, body.audit_context(), body.group_info())
    )
    return _to_response(posting)


@router.post("/loan-approved", response_model=PostingResponse)
async def loan_approved(
    body: LoanEventRequest, request: Request, service: IncrementService = Depends(get_increment_service)
):
    """
    Move the principal from pending to approved and book expected interest.

    Returns:
        Posted deltas and the weekly installment (computed when the loan had none)
    """
    loan = body.loan.to_facts()
    posting = _post(
        request, service.db, lambda: service.on_loan_approval(loan, body.audit_context(), body.group_info())
    )
    return _to_response(posting, loan.weekly_installment)


@router.post("/loan-denied", response_model=PostingResponse)
async def loan_denied(
    body: LoanEventRequest, request: Request, service: IncrementService = Depends(get_increment_service)
):
    loan = body.loan.to_facts()
    posting = _post(request, service.db, lambda: service.on_loan_denial(loan, body.audit_context(), body.group_info()))
    return _to_response(posting)


@router.post("/collection", response_model=PostingResponse)
async def collection(
    body: CollectionEventRequest, request: Request, service: IncrementService = Depends(get_increment_service)
):
    loan = body.loan.to_facts()
    entry = body.entry.to_entry()
    posting = _post(
        request, service.db, lambda: service.on_collection(loan, entry, body.audit_context(), body.group_info())
    )
    return _to_response(posting)


@router.post("/distribution", response_model=PostingResponse)
async def distribution(
    body: DistributionEventRequest, request: Request, service: IncrementService = Depends(get_increment_service)
):
    loan = body.loan.to_facts()
    posting = _post(
        request,
        service.db,
        lambda: service.on_distribution(loan, body.total_amount, body.audit_context(), body.group_info()),
    )
    return _to_response(posting)


@router.post("/savings-transaction", response_model=PostingResponse)
async def savings_transaction(
    body: SavingsEventRequest, request: Request, service: IncrementService = Depends(get_increment_service)
):
    account = body.account.to_facts()
    posting = _post(
        request,
        service.db,
        lambda: service.on_savings_transaction(
            account,
            body.deposit,
            body.withdrawal,
            body.savings_type,
            occurred_at=body.occurred_at,
            audit=body.audit_context(),
            group=body.group_info(),
        ),
    )
    return _to_response(posting)


@router.post("/bank-deposit", response_model=PostingResponse)
async def bank_deposit(
    body: BankDepositEventRequest, request: Request, service: IncrementService = Depends(get_increment_service)
):
    account = body.account.to_facts()
    posting = _post(
        request,
        service.db,
        lambda: service.on_bank_deposit(
            account, body.deposit, body.withdrawal, occurred_at=body.occurred_at, audit=body.audit_context()
        ),
    )
    return _to_response(posting)


@router.post("/client-registered", response_model=PostingResponse)
async def client_registered(
    body: ClientEventRequest, request: Request, service: IncrementService = Depends(get_increment_service)
):
    client = body.client.to_facts()
    posting = _post(
        request, service.db, lambda: service.on_client_registration(client, body.audit_context(), body.group_info())
    )
    return _to_response(posting)


@router.post("/expense", response_model=PostingResponse)
async def expense(
    body: ExpenseEventRequest, request: Request, service: IncrementService = Depends(get_increment_service)
):
    facts = body.expense.to_facts()
    posting = _post(request, service.db, lambda: service.on_expense(facts, body.audit_context()))
    return _to_response(posting)


@router.post("/branch-data/{record_id}/approve", response_model=PostingResponse)
async def approve_branch_data(
    record_id: UUID,
    request: Request,
    audit: Optional[AuditSchema] = Body(None, embed=True),
    service: IncrementService = Depends(get_increment_service),
):
    """Post the change in manual adjustments since the record was last approved"""
    context = audit.to_context() if audit else None
    posting = _post(request, service.db, lambda: service.on_branch_data_approval(record_id, context))
    return _to_response(posting)
