"""
Services package for the quota and order-lifecycle engine.

Each service takes an optional SQLModel session and can be used as a
context manager; routers pass the request-scoped session.
"""

from .ledger import SubscriptionLedger
from .allocator import QuotaAllocator, Allocated, RequiresSelection, NoQuota, Candidate
from .orders import OrderStateMachine, TRANSITIONS
from .payments import PaymentReconciler, IProofStore
from .deliverables import DeliverableRegistry
from .pricing import PayPerImageQuote, quote_pay_per_image, verify_total

__all__ = [
    'Allocated',
    'Candidate',
    'DeliverableRegistry',
    'IProofStore',
    'NoQuota',
    'OrderStateMachine',
    'PayPerImageQuote',
    'PaymentReconciler',
    'QuotaAllocator',
    'RequiresSelection',
    'SubscriptionLedger',
    'TRANSITIONS',
    'quote_pay_per_image',
    'verify_total',
]
