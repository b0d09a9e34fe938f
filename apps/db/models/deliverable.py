"""
Deliverables model for staff-curated download links.
"""
from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4
from sqlmodel import Field, SQLModel

from apps.db.base import UTCDateTime, utcnow


class DeliverableBase(SQLModel):
    """Base deliverable model with shared fields."""
    title: str = Field(description="Short label shown to the customer")
    link: str = Field(description="Download URL")
    description: str = Field(description="What the link contains")


class Deliverable(DeliverableBase, table=True):
    """Deliverable database model."""
    __tablename__ = "deliverables"

    id: Optional[UUID] = Field(default_factory=uuid4, primary_key=True)
    customer_id: str = Field(index=True)
    created_by: str = Field(description="Staff member who attached the link")
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime, index=True)


class DeliverableCreate(DeliverableBase):
    """Deliverable creation schema."""
    customer_id: str


class DeliverableRead(DeliverableBase):
    """Deliverable read schema (for API responses)."""
    id: UUID
    customer_id: str
    created_by: str
    created_at: datetime
