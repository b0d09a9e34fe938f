"""
Orders router: creation, status transitions, history and receipt submission.
"""
from typing import List, Optional
from fastapi import APIRouter, Depends, Query, status
from sqlmodel import Session

from apps.api.services import (
    IProofStore,
    OrderStateMachine,
    PaymentReconciler,
    quote_pay_per_image,
    verify_total,
)
from apps.core.exceptions import UnauthorizedError
from apps.core.security import Actor, get_current_actor, require_customer, resolve_customer_scope
from apps.db.models.order import (
    OrderCreate,
    OrderList,
    OrderRead,
    OrderStatusEventRead,
    OrderTransitionRequest,
)
from apps.db.models.receipt import PaymentReceiptCreate, PaymentReceiptRead
from apps.db.session import get_session

router = APIRouter(prefix="/orders", tags=["orders"])


def get_proof_store() -> Optional[IProofStore]:
    """Proof store used to check receipt references; none is wired by default."""
    return None


def _own_scope(actor: Actor) -> Optional[str]:
    return None if actor.is_staff else actor.id


@router.post("", response_model=OrderRead, status_code=status.HTTP_201_CREATED)
async def create_order(
    body: OrderCreate,
    actor: Actor = Depends(require_customer),
    session: Session = Depends(get_session),
):
    """
    Create an order for an uploaded batch.

    Subscription orders bind the quota reserved by the upload intent.
    Pay-per-image orders are priced here; a price sent by the client must
    match the quote.
    """
    orders = OrderStateMachine(session)

    if body.subscription_id is not None:
        order = orders.create(
            actor.id,
            body.subscription_id,
            body.image_count,
            reservation_id=body.reservation_id,
            notes=body.notes,
        )
    else:
        quote = quote_pay_per_image(body.image_count)
        if body.price is not None:
            verify_total(quote, body.price)
        order = orders.create(
            actor.id,
            None,
            body.image_count,
            price=quote.total,
            reservation_id=body.reservation_id,
            notes=body.notes,
            currency=quote.currency,
        )

    return order


@router.get("", response_model=OrderList)
async def list_orders(
    customer_id: Optional[str] = None,
    status_filter: Optional[str] = Query(default=None, alias="status"),
    skip: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=200),
    actor: Actor = Depends(get_current_actor),
    session: Session = Depends(get_session),
):
    """List orders, newest first. Customers only see their own."""
    scope = resolve_customer_scope(actor, customer_id)
    orders, total = OrderStateMachine(session).list_orders(
        customer_id=scope,
        status=status_filter,
        skip=skip,
        limit=limit,
    )
    return OrderList(orders=[OrderRead.model_validate(o) for o in orders], total=total)


@router.get("/{order_id}", response_model=OrderRead)
async def get_order(
    order_id: str,
    actor: Actor = Depends(get_current_actor),
    session: Session = Depends(get_session),
):
    return OrderStateMachine(session).get_order(order_id, customer_id=_own_scope(actor))


@router.get("/{order_id}/history", response_model=List[OrderStatusEventRead])
async def order_history(
    order_id: str,
    actor: Actor = Depends(get_current_actor),
    session: Session = Depends(get_session),
):
    """Applied status changes, oldest first."""
    return OrderStateMachine(session).history(order_id, customer_id=_own_scope(actor))


@router.post("/{order_id}/transition", response_model=OrderRead)
async def transition_order(
    order_id: str,
    body: OrderTransitionRequest,
    actor: Actor = Depends(get_current_actor),
    session: Session = Depends(get_session),
):
    """Apply a status trigger as the authenticated actor."""
    if body.actor_role is not None and body.actor_role != actor.role.value:
        raise UnauthorizedError(
            "actor_role does not match the authenticated role",
            details={"actor_role": body.actor_role, "token_role": actor.role.value},
        )

    orders = OrderStateMachine(session)
    if not actor.is_staff:
        orders.get_order(order_id, customer_id=actor.id)

    return orders.transition(
        order_id,
        body.trigger,
        actor.role,
        actor_id=actor.id,
        reason=body.reason,
    )


@router.post("/{order_id}/receipts", response_model=PaymentReceiptRead, status_code=status.HTTP_201_CREATED)
async def submit_receipt(
    order_id: str,
    body: PaymentReceiptCreate,
    actor: Actor = Depends(require_customer),
    session: Session = Depends(get_session),
    proof_store: Optional[IProofStore] = Depends(get_proof_store),
):
    """Attest a manual payment for an order in payment_made."""
    reconciler = PaymentReconciler(session, proof_store=proof_store)
    return reconciler.submit_receipt(
        order_id,
        actor.id,
        proof_ref=body.proof_ref,
        amount=body.amount,
        payment_method=body.payment_method,
        transaction_reference=body.transaction_reference,
        paid_on=body.paid_on,
        notes=body.notes,
        currency=body.currency,
    )
