"""
Subscription ledger: subscriptions, plans and per-period image usage.

This service handles:
- Listing a customer's subscriptions and the ones eligible for uploads
- Reserving quota with a single conditional update per subscription
- Opening subscriptions from plans and rolling billing periods over
- Status changes driven by billing events
"""

import calendar
from datetime import datetime
from typing import List, Optional, Union
from uuid import UUID
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select
import structlog

from apps.core.config import SubscriptionStatus, BillingCycle, BILLING_CYCLE_MONTHS
from apps.core.exceptions import (
    NotFoundError,
    QuotaExceededError,
    SubscriptionNotActiveError,
    ValidationError,
)
from apps.core.monitoring import increment_quota_reservation
from apps.db.base import get_or_404, utcnow
from apps.db.models.subscription import Subscription, SubscriptionPlan, QuotaReservation
from apps.db.session import engine

logger = structlog.get_logger(__name__)


def add_months(moment: datetime, months: int) -> datetime:
    """Shift a datetime by calendar months, clamping the day to the month end."""
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def period_end_for(period_start: datetime, billing_cycle: Union[str, BillingCycle]) -> datetime:
    """End of the billing period that starts at period_start."""
    return add_months(period_start, BILLING_CYCLE_MONTHS[BillingCycle(billing_cycle)])


class SubscriptionLedger:
    """
    Owner of subscription usage counters.

    No other component writes images_used. Reservations are linearizable
    per subscription: the limit check and the increment are one UPDATE
    statement, so concurrent callers can never overshoot images_limit.
    """

    def __init__(self, session: Session = None):
        """
        Initialize the ledger.

        Args:
            session: Database session (optional, will create if not provided)
        """
        self.session = session
        self._should_close_session = session is None

        if self.session is None:
            self.session = Session(engine)

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        if self._should_close_session and self.session:
            self.session.close()

    # Plans

    def list_plans(self, active_only: bool = True) -> List[SubscriptionPlan]:
        statement = select(SubscriptionPlan)
        if active_only:
            statement = statement.where(SubscriptionPlan.is_active == True)  # noqa: E712
        return list(self.session.exec(statement.order_by(SubscriptionPlan.images_per_month)).all())

    def get_plan(self, plan_id: str) -> SubscriptionPlan:
        plan = self.session.get(SubscriptionPlan, plan_id)
        if plan is None:
            raise NotFoundError("Subscription plan", plan_id)
        return plan

    # Reads

    def get_subscription(
        self,
        subscription_id: Union[str, UUID],
        customer_id: Optional[str] = None,
    ) -> Subscription:
        """
        Get a subscription, optionally checking it belongs to customer_id.

        A subscription owned by someone else is reported as not found.
        """
        subscription = get_or_404(self.session, Subscription, subscription_id, "Subscription")
        if customer_id is not None and subscription.customer_id != customer_id:
            raise NotFoundError("Subscription", str(subscription.id))
        return subscription

    def list_for_customer(self, customer_id: str) -> List[Subscription]:
        statement = (
            select(Subscription)
            .where(Subscription.customer_id == customer_id)
            .order_by(Subscription.created_at.desc())
            .execution_options(populate_existing=True)
        )
        return list(self.session.exec(statement).all())

    def list_eligible(self, customer_id: str) -> List[Subscription]:
        """
        Subscriptions that can absorb an upload, soonest-expiring first.

        Args:
            customer_id: Customer identifier

        Returns:
            Active subscriptions with images_used < images_limit, ordered by
            ascending period_end (open-ended periods last). Empty if none.
        """
        statement = (
            select(Subscription)
            .where(
                Subscription.customer_id == customer_id,
                Subscription.status == SubscriptionStatus.ACTIVE.value,
                Subscription.images_used < Subscription.images_limit,
            )
            .order_by(
                Subscription.period_end.is_(None),
                Subscription.period_end.asc(),
                Subscription.created_at.asc(),
            )
            .execution_options(populate_existing=True)
        )
        return list(self.session.exec(statement).all())

    @staticmethod
    def remaining(subscription: Subscription) -> int:
        """Images left in the current period, never negative."""
        return subscription.remaining()

    # Writes

    def reserve(
        self,
        subscription_id: Union[str, UUID],
        count: int,
        customer_id: Optional[str] = None,
    ) -> QuotaReservation:
        """
        Charge count images against a subscription.

        Args:
            subscription_id: Subscription to charge
            count: Number of images (>= 1)
            customer_id: When given, the subscription must belong to this customer

        Returns:
            The QuotaReservation written with the increment

        Raises:
            ValidationError: count below 1
            NotFoundError: unknown subscription or owned by another customer
            SubscriptionNotActiveError: subscription is expired or cancelled
            QuotaExceededError: images_used + count would exceed images_limit
        """
        if count < 1:
            raise ValidationError.for_fields({"count": "Image count must be at least 1"})

        subscription = self.get_subscription(subscription_id, customer_id=customer_id)
        key = subscription.id
        owner = subscription.customer_id

        statement = (
            update(Subscription)
            .where(
                Subscription.id == key,
                Subscription.status == SubscriptionStatus.ACTIVE.value,
                Subscription.images_used + count <= Subscription.images_limit,
            )
            .values(
                images_used=Subscription.images_used + count,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )

        try:
            result = self.session.execute(statement)
            if result.rowcount != 1:
                self.session.rollback()
                error = self._reservation_failure(key, count)
                increment_quota_reservation(type(error).__name__)
                logger.warning(
                    "Quota reservation refused",
                    subscription_id=str(key),
                    customer_id=owner,
                    requested=count,
                    reason=error.message,
                )
                raise error

            reservation = QuotaReservation(
                subscription_id=key,
                customer_id=owner,
                image_count=count,
            )
            self.session.add(reservation)
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error("Quota reservation failed", subscription_id=str(key), error=str(e))
            raise

        self.session.refresh(reservation)
        increment_quota_reservation("success", count)
        logger.info(
            "Quota reserved",
            subscription_id=str(key),
            customer_id=owner,
            reservation_id=str(reservation.id),
            images=count,
        )
        return reservation

    def _reservation_failure(self, subscription_id: UUID, count: int):
        """Work out why a conditional increment matched no row."""
        subscription = self.session.get(Subscription, subscription_id, populate_existing=True)
        if subscription is None:
            return NotFoundError("Subscription", str(subscription_id))
        if subscription.status != SubscriptionStatus.ACTIVE.value:
            return SubscriptionNotActiveError(str(subscription_id), subscription.status)
        return QuotaExceededError(count, subscription.remaining(), str(subscription_id))

    def open_subscription(
        self,
        customer_id: str,
        plan_id: str,
        billing_cycle: Union[str, BillingCycle] = BillingCycle.MONTHLY,
        period_start: Optional[datetime] = None,
    ) -> Subscription:
        """Create an active subscription after a plan purchase."""
        plan = self.get_plan(plan_id)
        if not plan.is_active:
            raise ValidationError.for_fields({"plan_id": f"Plan {plan_id} is not available"})

        try:
            cycle = BillingCycle(billing_cycle)
        except ValueError:
            raise ValidationError.for_fields({"billing_cycle": f"Unknown billing cycle: {billing_cycle}"})

        start = period_start or utcnow()
        subscription = Subscription(
            customer_id=customer_id,
            plan_id=plan.id,
            status=SubscriptionStatus.ACTIVE.value,
            billing_cycle=cycle.value,
            images_limit=plan.images_per_month,
            images_used=0,
            period_start=start,
            period_end=period_end_for(start, cycle),
        )
        self.session.add(subscription)
        self.session.commit()
        self.session.refresh(subscription)

        logger.info(
            "Subscription opened",
            subscription_id=str(subscription.id),
            customer_id=customer_id,
            plan_id=plan.id,
            images_limit=subscription.images_limit,
            period_end=subscription.period_end.isoformat(),
        )
        return subscription

    def reset_usage(
        self,
        subscription_id: Union[str, UUID],
        period_start: Optional[datetime] = None,
    ) -> Subscription:
        """
        Start a new billing period with zero usage.

        Called by the billing scheduler. The new period starts at
        period_start, or where the previous period ended.
        """
        subscription = get_or_404(self.session, Subscription, subscription_id, "Subscription", for_update=True)
        if subscription.status == SubscriptionStatus.CANCELLED.value:
            self.session.rollback()
            raise SubscriptionNotActiveError(str(subscription.id), subscription.status)

        start = period_start or subscription.period_end or utcnow()
        previous_used = subscription.images_used

        subscription.images_used = 0
        subscription.period_start = start
        subscription.period_end = period_end_for(start, subscription.billing_cycle)
        subscription.updated_at = utcnow()
        self.session.add(subscription)
        self.session.commit()
        self.session.refresh(subscription)

        logger.info(
            "Subscription usage reset",
            subscription_id=str(subscription.id),
            previous_used=previous_used,
            period_start=subscription.period_start.isoformat(),
            period_end=subscription.period_end.isoformat(),
        )
        return subscription

    def change_status(
        self,
        subscription_id: Union[str, UUID],
        status: Union[str, SubscriptionStatus],
    ) -> Subscription:
        """Apply a billing event. Cancelled subscriptions stay cancelled."""
        try:
            new_status = SubscriptionStatus(status)
        except ValueError:
            raise ValidationError.for_fields({"status": f"Unknown subscription status: {status}"})

        subscription = get_or_404(self.session, Subscription, subscription_id, "Subscription", for_update=True)
        if subscription.status == new_status.value:
            self.session.rollback()
            return subscription
        if subscription.status == SubscriptionStatus.CANCELLED.value:
            self.session.rollback()
            raise SubscriptionNotActiveError(str(subscription.id), subscription.status)

        previous = subscription.status
        subscription.status = new_status.value
        subscription.updated_at = utcnow()
        self.session.add(subscription)
        self.session.commit()
        self.session.refresh(subscription)

        logger.info(
            "Subscription status changed",
            subscription_id=str(subscription.id),
            from_status=previous,
            to_status=subscription.status,
        )
        return subscription


__all__ = ["SubscriptionLedger", "add_months", "period_end_for"]
