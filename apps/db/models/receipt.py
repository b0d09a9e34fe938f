"""
Payment receipt model for manually attested payments.
"""
from datetime import date, datetime
from decimal import Decimal
from typing import Optional, List
from uuid import UUID, uuid4
from sqlmodel import Field, SQLModel

from apps.core.config import ReceiptStatus, PaymentMethod
from apps.db.base import UTCDateTime, utcnow


class PaymentReceiptBase(SQLModel):
    """Fields a customer supplies when attesting a payment."""
    proof_ref: Optional[str] = Field(default=None, description="Storage reference of the uploaded receipt image")
    amount: Optional[Decimal] = Field(default=None, max_digits=10, decimal_places=2)
    currency: Optional[str] = Field(default=None)
    payment_method: str = Field(default=PaymentMethod.BANK_TRANSFER.value)
    transaction_reference: Optional[str] = Field(default=None)
    paid_on: Optional[date] = Field(default=None, description="Date the customer says the payment was made")
    notes: Optional[str] = Field(default=None)


class PaymentReceipt(PaymentReceiptBase, table=True):
    """Payment receipt database model."""
    __tablename__ = "payment_receipts"

    id: Optional[UUID] = Field(default_factory=uuid4, primary_key=True)
    order_id: UUID = Field(foreign_key="orders.id", index=True)
    customer_id: str = Field(index=True)
    status: str = Field(default=ReceiptStatus.SUBMITTED.value, index=True)
    reviewed_by: Optional[str] = Field(default=None)
    reviewed_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    review_notes: Optional[str] = Field(default=None, description="Rejection reason or confirmation note")
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime, index=True)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)


class PaymentReceiptCreate(SQLModel):
    """Receipt submission request."""
    proof_ref: Optional[str] = None
    amount: Optional[Decimal] = Field(default=None, gt=0)
    currency: Optional[str] = None
    payment_method: PaymentMethod = PaymentMethod.BANK_TRANSFER
    transaction_reference: Optional[str] = None
    paid_on: Optional[date] = None
    notes: Optional[str] = None


class ReceiptConfirmRequest(SQLModel):
    """Staff confirmation."""
    note: Optional[str] = None


class ReceiptRejectRequest(SQLModel):
    """Staff rejection."""
    reason: str = Field(min_length=1)


class PaymentReceiptRead(PaymentReceiptBase):
    """Receipt read schema."""
    id: UUID
    order_id: UUID
    customer_id: str
    status: str
    reviewed_by: Optional[str]
    reviewed_at: Optional[datetime]
    review_notes: Optional[str]
    created_at: datetime
    updated_at: datetime


class PaymentReceiptList(SQLModel):
    receipts: List[PaymentReceiptRead]
    total: int
