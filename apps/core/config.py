"""
Application configuration constants and enums.
"""
from enum import Enum


class SubscriptionStatus(str, Enum):
    """Subscription lifecycle status."""
    ACTIVE = "active"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class BillingCycle(str, Enum):
    """How often a subscription period rolls over."""
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"


class OrderStatus(str, Enum):
    """Retouching order status."""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    SENT = "sent"
    VIEWED = "viewed"
    PAYMENT_MADE = "payment_made"
    PAYMENT_CONFIRMED = "payment_confirmed"
    PAID = "paid"


class OrderTrigger(str, Enum):
    """Actions that move an order between statuses."""
    APPROVE = "approve"
    REJECT = "reject"
    MARK_SENT = "mark_sent"
    VIEW = "view"
    REPORT_PAYMENT = "report_payment"
    CONFIRM_PAYMENT = "confirm_payment"
    MARK_PAID = "mark_paid"


class OrderFunding(str, Enum):
    """Where the images of an order are paid from."""
    SUBSCRIPTION = "subscription"
    PAY_PER_IMAGE = "pay_per_image"


class ActorRole(str, Enum):
    """Roles carried in the bearer token."""
    CUSTOMER = "customer"
    STAFF = "staff"


class ReceiptStatus(str, Enum):
    """Payment receipt review status."""
    SUBMITTED = "submitted"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"


class PaymentMethod(str, Enum):
    """Manual payment methods a customer can attest to."""
    BANK_TRANSFER = "bank_transfer"
    CASH = "cash"
    CHECK = "check"
    OTHER = "other"


TERMINAL_ORDER_STATUSES = frozenset({OrderStatus.REJECTED, OrderStatus.PAID})

# Calendar months covered by one billing period
BILLING_CYCLE_MONTHS = {
    BillingCycle.MONTHLY: 1,
    BillingCycle.QUARTERLY: 3,
    BillingCycle.YEARLY: 12,
}

# Allowed absolute difference when a client echoes a quoted total
PRICE_TOLERANCE = "0.01"

ORDER_NUMBER_ATTEMPTS = 10
