# routes/payments.py
from datetime import datetime
from typing import Literal, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request

from app.payments.model import PaymentFilter
from app.payments.orchestrator import IssuanceOrchestrator
from deps.roles import require_admin, require_financial_authority, require_signatory
from schemas import InitiatePaymentRequest, RejectPaymentRequest, ok
from services.directory import Caller
from settings import settings

router = APIRouter(prefix="/v1/payments", tags=["payments"])


def get_orchestrator(request: Request) -> IssuanceOrchestrator:
    return request.app.state.orchestrator


def _page_args(page: int, limit: int) -> tuple[int, int]:
    return max(1, page), max(1, min(limit, settings.PAYMENTS_MAX_PAGE_LIMIT))


@router.post("/initiate")
def initiate_payment(
    body: InitiatePaymentRequest,
    caller: Caller = Depends(require_financial_authority),
    orchestrator: IssuanceOrchestrator = Depends(get_orchestrator),
):
    payment = orchestrator.initiate(
        caller,
        issued_to=body.issued_to,
        amount=body.amount,
        purpose=body.purpose,
    )
    return ok(payment.to_dict(), "Payment initiated and awaiting signatory approval")


@router.get("/pending")
def list_pending_payments(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1),
    caller: Caller = Depends(require_signatory),
    orchestrator: IssuanceOrchestrator = Depends(get_orchestrator),
):
    page, limit = _page_args(page, limit)
    result = orchestrator.store.list_pending(page=page, limit=limit)
    return ok(result.to_dict())


@router.get("/history")
def payment_history(
    approval_status: Optional[Literal["pending", "approved", "rejected"]] = None,
    payment_status: Optional[Literal["unset", "processing", "settled", "provider_failed"]] = None,
    initiated_by: Optional[UUID] = None,
    approved_by: Optional[UUID] = None,
    issued_to: Optional[UUID] = None,
    created_from: Optional[datetime] = None,
    created_to: Optional[datetime] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1),
    caller: Caller = Depends(require_admin),
    orchestrator: IssuanceOrchestrator = Depends(get_orchestrator),
):
    page, limit = _page_args(page, limit)
    flt = PaymentFilter(
        approval_status=approval_status,
        payment_status=payment_status,
        initiated_by=initiated_by,
        approved_by=approved_by,
        issued_to=issued_to,
        created_from=created_from,
        created_to=created_to,
    )
    result = orchestrator.store.list_by_filter(flt, page=page, limit=limit)
    return ok(result.to_dict())


@router.get("/{payment_id}")
def get_payment(
    payment_id: UUID,
    caller: Caller = Depends(require_admin),
    orchestrator: IssuanceOrchestrator = Depends(get_orchestrator),
):
    return ok(orchestrator.store.get(payment_id).to_dict())


@router.put("/{payment_id}/approve")
def approve_payment(
    payment_id: UUID,
    caller: Caller = Depends(require_signatory),
    orchestrator: IssuanceOrchestrator = Depends(get_orchestrator),
):
    outcome = orchestrator.approve(caller, payment_id)
    if outcome.settlement is not None and not outcome.settlement.success:
        message = "Payment approved; settlement with the mobile money provider failed"
    else:
        message = "Payment approved and sent to the mobile money provider"
    return ok(outcome.to_dict(), message)


@router.put("/{payment_id}/reject")
def reject_payment(
    payment_id: UUID,
    body: RejectPaymentRequest,
    caller: Caller = Depends(require_signatory),
    orchestrator: IssuanceOrchestrator = Depends(get_orchestrator),
):
    outcome = orchestrator.reject(caller, payment_id, body.rejection_reason)
    return ok(outcome.to_dict(), "Payment rejected")


@router.post("/{payment_id}/reconcile")
def reconcile_payment(
    payment_id: UUID,
    caller: Caller = Depends(require_admin),
    orchestrator: IssuanceOrchestrator = Depends(get_orchestrator),
):
    update = orchestrator.reconcile(caller, payment_id)
    return ok(update.to_dict(), "Settlement status updated" if update.applied else "No settlement change")
