"""
Order model for retouching requests and their status history.
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional, List
from uuid import UUID, uuid4
from sqlmodel import Field, SQLModel

from apps.core.config import OrderStatus, OrderFunding, OrderTrigger
from apps.db.base import UTCDateTime, utcnow


class Order(SQLModel, table=True):
    """Order database model."""
    __tablename__ = "orders"

    id: Optional[UUID] = Field(default_factory=uuid4, primary_key=True)
    order_number: str = Field(unique=True, index=True, description="Human-readable number, ORD-YYYYMMDD-XXXX")
    customer_id: str = Field(index=True)
    subscription_id: Optional[UUID] = Field(
        default=None,
        foreign_key="subscriptions.id",
        index=True,
        description="Funding subscription (null for pay-per-image)"
    )
    reservation_id: Optional[UUID] = Field(
        default=None,
        foreign_key="quota_reservations.id",
        unique=True,
        description="Quota reservation consumed by this order"
    )
    funding: str = Field(default=OrderFunding.SUBSCRIPTION.value)
    image_count: int = Field(ge=1, description="Images in the uploaded batch")
    price: Optional[Decimal] = Field(
        default=None,
        max_digits=10,
        decimal_places=2,
        description="Total price for pay-per-image orders"
    )
    currency: Optional[str] = Field(default=None)
    status: str = Field(default=OrderStatus.PENDING.value, index=True)
    notes: Optional[str] = Field(default=None)
    rejection_reason: Optional[str] = Field(default=None)
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime, index=True)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)
    paid_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime, description="When staff marked the order paid")


class OrderStatusEvent(SQLModel, table=True):
    """One applied status change of an order."""
    __tablename__ = "order_status_events"

    id: Optional[UUID] = Field(default_factory=uuid4, primary_key=True)
    order_id: UUID = Field(foreign_key="orders.id", index=True)
    trigger: str
    from_status: Optional[str] = Field(default=None)
    to_status: str
    actor_role: str
    actor_id: Optional[str] = Field(default=None)
    reason: Optional[str] = Field(default=None)
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)


class OrderCreate(SQLModel):
    """Order creation request."""
    image_count: int = Field(ge=1)
    subscription_id: Optional[UUID] = None
    reservation_id: Optional[UUID] = None
    price: Optional[Decimal] = Field(default=None, description="Quoted total the client agreed to (pay-per-image)")
    notes: Optional[str] = None


class OrderTransitionRequest(SQLModel):
    """Order transition request."""
    trigger: OrderTrigger
    actor_role: Optional[str] = None
    reason: Optional[str] = None


class OrderRead(SQLModel):
    """Order read schema (for API responses)."""
    id: UUID
    order_number: str
    customer_id: str
    subscription_id: Optional[UUID]
    reservation_id: Optional[UUID]
    funding: str
    image_count: int
    price: Optional[Decimal]
    currency: Optional[str]
    status: str
    notes: Optional[str]
    rejection_reason: Optional[str]
    created_at: datetime
    updated_at: datetime
    paid_at: Optional[datetime]


class OrderStatusEventRead(SQLModel):
    """Status history entry."""
    trigger: str
    from_status: Optional[str]
    to_status: str
    actor_role: str
    actor_id: Optional[str]
    reason: Optional[str]
    created_at: datetime


class OrderList(SQLModel):
    """Paginated order listing."""
    orders: List[OrderRead]
    total: int
