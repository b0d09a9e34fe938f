# Database models
from .subscription import (
    SubscriptionPlan, Subscription, QuotaReservation,
    SubscriptionPlanRead, SubscriptionRead, SubscriptionOpen, SubscriptionUsageReset,
    SubscriptionStatusUpdate, SubscriptionList,
)
from .order import Order, OrderStatusEvent, OrderCreate, OrderTransitionRequest, OrderRead, OrderStatusEventRead, OrderList
from .receipt import (
    PaymentReceipt, PaymentReceiptCreate, ReceiptConfirmRequest, ReceiptRejectRequest,
    PaymentReceiptRead, PaymentReceiptList,
)
from .deliverable import Deliverable, DeliverableCreate, DeliverableRead

__all__ = [
    # Subscription models
    "SubscriptionPlan", "Subscription", "QuotaReservation",
    "SubscriptionPlanRead", "SubscriptionRead", "SubscriptionOpen", "SubscriptionUsageReset",
    "SubscriptionStatusUpdate", "SubscriptionList",
    # Order models
    "Order", "OrderStatusEvent", "OrderCreate", "OrderTransitionRequest", "OrderRead",
    "OrderStatusEventRead", "OrderList",
    # Receipt models
    "PaymentReceipt", "PaymentReceiptCreate", "ReceiptConfirmRequest", "ReceiptRejectRequest",
    "PaymentReceiptRead", "PaymentReceiptList",
    # Deliverable models
    "Deliverable", "DeliverableCreate", "DeliverableRead",
]
