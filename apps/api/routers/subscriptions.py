"""
Subscriptions router: plans, customer subscriptions and billing events.
"""
from typing import List, Optional
from fastapi import APIRouter, Depends, status
from sqlmodel import Session
import structlog

from apps.api.services import SubscriptionLedger
from apps.core.exceptions import ValidationError
from apps.core.security import Actor, get_current_actor, require_staff, resolve_customer_scope
from apps.db.models.subscription import (
    SubscriptionList,
    SubscriptionOpen,
    SubscriptionPlanRead,
    SubscriptionRead,
    SubscriptionStatusUpdate,
    SubscriptionUsageReset,
)
from apps.db.session import get_session

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["subscriptions"])


@router.get("/plans", response_model=List[SubscriptionPlanRead])
async def list_plans(
    actor: Actor = Depends(get_current_actor),
    session: Session = Depends(get_session),
):
    """Plans currently open for purchase."""
    return SubscriptionLedger(session).list_plans()


@router.get("/subscriptions", response_model=SubscriptionList)
async def list_subscriptions(
    customer_id: Optional[str] = None,
    actor: Actor = Depends(get_current_actor),
    session: Session = Depends(get_session),
):
    """A customer's subscriptions with remaining quota."""
    scope = resolve_customer_scope(actor, customer_id)
    if scope is None:
        raise ValidationError.for_fields({"customer_id": "customer_id is required for staff"})

    subscriptions = SubscriptionLedger(session).list_for_customer(scope)
    return SubscriptionList(
        subscriptions=[SubscriptionRead.from_subscription(s) for s in subscriptions],
        total=len(subscriptions),
    )


@router.post("/subscriptions", response_model=SubscriptionRead, status_code=status.HTTP_201_CREATED)
async def open_subscription(
    body: SubscriptionOpen,
    actor: Actor = Depends(require_staff),
    session: Session = Depends(get_session),
):
    """Open a subscription after a plan purchase."""
    subscription = SubscriptionLedger(session).open_subscription(
        body.customer_id,
        body.plan_id,
        billing_cycle=body.billing_cycle,
        period_start=body.period_start,
    )
    logger.info("Subscription opened by staff", subscription_id=str(subscription.id), staff_id=actor.id)
    return SubscriptionRead.from_subscription(subscription)


@router.post("/subscriptions/{subscription_id}/reset-usage", response_model=SubscriptionRead)
async def reset_usage(
    subscription_id: str,
    body: Optional[SubscriptionUsageReset] = None,
    actor: Actor = Depends(require_staff),
    session: Session = Depends(get_session),
):
    """Roll a subscription over to a new billing period."""
    period_start = body.period_start if body else None
    subscription = SubscriptionLedger(session).reset_usage(subscription_id, period_start=period_start)
    return SubscriptionRead.from_subscription(subscription)


@router.post("/subscriptions/{subscription_id}/status", response_model=SubscriptionRead)
async def change_status(
    subscription_id: str,
    body: SubscriptionStatusUpdate,
    actor: Actor = Depends(require_staff),
    session: Session = Depends(get_session),
):
    """Apply a billing status event."""
    subscription = SubscriptionLedger(session).change_status(subscription_id, body.status)
    return SubscriptionRead.from_subscription(subscription)
