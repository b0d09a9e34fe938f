"""
Receipts router: reading and staff review of submitted payment receipts.
"""
from typing import Optional
from fastapi import APIRouter, Depends, Query
from sqlmodel import Session

from apps.api.services import PaymentReconciler
from apps.core.security import Actor, get_current_actor, require_staff
from apps.db.models.receipt import (
    PaymentReceiptList,
    PaymentReceiptRead,
    ReceiptConfirmRequest,
    ReceiptRejectRequest,
)
from apps.db.session import get_session

router = APIRouter(prefix="/receipts", tags=["receipts"])


@router.get("", response_model=PaymentReceiptList)
async def list_receipts(
    status_filter: Optional[str] = Query(default=None, alias="status"),
    order_id: Optional[str] = None,
    customer_id: Optional[str] = None,
    skip: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=200),
    actor: Actor = Depends(require_staff),
    session: Session = Depends(get_session),
):
    """Review queue, newest first."""
    receipts, total = PaymentReconciler(session).list_receipts(
        status=status_filter,
        order_id=order_id,
        customer_id=customer_id,
        skip=skip,
        limit=limit,
    )
    return PaymentReceiptList(
        receipts=[PaymentReceiptRead.model_validate(r) for r in receipts],
        total=total,
    )


@router.get("/{receipt_id}", response_model=PaymentReceiptRead)
async def get_receipt(
    receipt_id: str,
    actor: Actor = Depends(get_current_actor),
    session: Session = Depends(get_session),
):
    """One receipt; customers only see receipts they submitted."""
    customer_id = None if actor.is_staff else actor.id
    return PaymentReconciler(session).get_receipt(receipt_id, customer_id=customer_id)


@router.post("/{receipt_id}/confirm", response_model=PaymentReceiptRead)
async def confirm_receipt(
    receipt_id: str,
    body: Optional[ReceiptConfirmRequest] = None,
    actor: Actor = Depends(require_staff),
    session: Session = Depends(get_session),
):
    """Confirm a receipt; its order moves to payment_confirmed."""
    note = body.note if body else None
    return PaymentReconciler(session).confirm(receipt_id, actor.id, note=note)


@router.post("/{receipt_id}/reject", response_model=PaymentReceiptRead)
async def reject_receipt(
    receipt_id: str,
    body: ReceiptRejectRequest,
    actor: Actor = Depends(require_staff),
    session: Session = Depends(get_session),
):
    """Reject a receipt; the customer may submit another."""
    return PaymentReconciler(session).reject(receipt_id, actor.id, body.reason)
