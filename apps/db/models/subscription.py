"""
Subscription models for plan quotas and per-period image usage.

A subscription grants a customer a monthly image quota taken from its plan.
Usage is only ever changed through a quota reservation, which is recorded
alongside the counter so every charged image can be traced to the order
that consumed it.
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID, uuid4
from sqlmodel import SQLModel, Field

from apps.core.config import SubscriptionStatus, BillingCycle
from apps.db.base import UTCDateTime, utcnow


class SubscriptionPlan(SQLModel, table=True):
    """
    Plan reference data.

    Plans are maintained outside this service; they are read here to seed
    the image limit of new subscriptions and to label selection candidates.
    """
    __tablename__ = "subscription_plans"

    id: str = Field(
        primary_key=True,
        description="Plan code (e.g., 'bronze', 'silver', 'gold')"
    )

    name: str = Field(description="Display name shown to customers")

    images_per_month: int = Field(
        ge=0,
        description="Images included in one billing period"
    )

    monthly_price: Decimal = Field(
        default=Decimal("0"),
        max_digits=10,
        decimal_places=2,
        description="Price for one month of the plan"
    )

    currency: str = Field(default="USD")

    is_active: bool = Field(
        default=True,
        description="Whether new subscriptions may be opened on this plan"
    )


class Subscription(SQLModel, table=True):
    """
    Customer subscription with its quota counters.

    Invariant: 0 <= images_used <= images_limit. The counter is only
    incremented by SubscriptionLedger.reserve, reset at period rollover.
    """
    __tablename__ = "subscriptions"

    id: Optional[UUID] = Field(
        default_factory=uuid4,
        primary_key=True,
        description="Unique subscription identifier"
    )

    customer_id: str = Field(
        index=True,
        description="Customer who owns this subscription"
    )

    plan_id: str = Field(
        foreign_key="subscription_plans.id",
        index=True,
        description="Plan the quota was taken from"
    )

    status: str = Field(
        default=SubscriptionStatus.ACTIVE.value,
        index=True,
        description="Subscription status: active, expired, cancelled"
    )

    billing_cycle: str = Field(
        default=BillingCycle.MONTHLY.value,
        description="Billing cycle: monthly, quarterly, yearly"
    )

    images_limit: int = Field(
        ge=0,
        description="Images allowed per billing period"
    )

    images_used: int = Field(
        default=0,
        ge=0,
        description="Images reserved in the current billing period"
    )

    period_start: datetime = Field(
        default_factory=utcnow,
        sa_type=UTCDateTime,
        description="Start of the current billing period"
    )

    period_end: Optional[datetime] = Field(
        default=None,
        sa_type=UTCDateTime,
        index=True,
        description="End of the current billing period"
    )

    # Metadata
    created_at: datetime = Field(
        default_factory=utcnow,
        sa_type=UTCDateTime,
        description="When this subscription record was created"
    )

    updated_at: datetime = Field(
        default_factory=utcnow,
        sa_type=UTCDateTime,
        description="When this subscription record was last updated"
    )

    def remaining(self) -> int:
        """Images still available in the current period."""
        return max(0, self.images_limit - self.images_used)

    def is_eligible(self) -> bool:
        """Active and not yet at its limit."""
        return self.status == SubscriptionStatus.ACTIVE.value and self.images_used < self.images_limit


class QuotaReservation(SQLModel, table=True):
    """
    Record of images charged against a subscription.

    Written in the same transaction as the usage increment. An order funded
    by the subscription binds the reservation by setting order_id.
    """
    __tablename__ = "quota_reservations"

    id: Optional[UUID] = Field(default_factory=uuid4, primary_key=True)
    subscription_id: UUID = Field(foreign_key="subscriptions.id", index=True)
    customer_id: str = Field(index=True)
    image_count: int = Field(ge=1, description="Images charged by this reservation")
    order_id: Optional[UUID] = Field(
        default=None,
        index=True,
        description="Order that consumed this reservation (null until bound)"
    )
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)


# Pydantic models for API
class SubscriptionPlanRead(SQLModel):
    """Plan read model."""
    id: str
    name: str
    images_per_month: int
    monthly_price: Decimal
    currency: str
    is_active: bool


class SubscriptionRead(SQLModel):
    """Subscription read model."""
    id: UUID
    customer_id: str
    plan_id: str
    status: str
    billing_cycle: str
    images_limit: int
    images_used: int
    remaining: int
    eligible: bool
    period_start: datetime
    period_end: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_subscription(cls, subscription: Subscription) -> "SubscriptionRead":
        return cls(
            id=subscription.id,
            customer_id=subscription.customer_id,
            plan_id=subscription.plan_id,
            status=subscription.status,
            billing_cycle=subscription.billing_cycle,
            images_limit=subscription.images_limit,
            images_used=subscription.images_used,
            remaining=subscription.remaining(),
            eligible=subscription.is_eligible(),
            period_start=subscription.period_start,
            period_end=subscription.period_end,
            created_at=subscription.created_at,
            updated_at=subscription.updated_at,
        )


class SubscriptionOpen(SQLModel):
    """Staff request to open a subscription after a plan purchase."""
    customer_id: str
    plan_id: str
    billing_cycle: BillingCycle = BillingCycle.MONTHLY
    period_start: Optional[datetime] = None


class SubscriptionUsageReset(SQLModel):
    """Period rollover request from the billing scheduler."""
    period_start: Optional[datetime] = None


class SubscriptionStatusUpdate(SQLModel):
    """Billing event moving a subscription to a new status."""
    status: SubscriptionStatus


class SubscriptionList(SQLModel):
    """Customer subscriptions listing."""
    subscriptions: List[SubscriptionRead]
    total: int
