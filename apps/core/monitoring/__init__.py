"""
Monitoring and observability package for the retouch engine.
"""

from .sentry_config import init_sentry, capture_order_context
from .prometheus_metrics import (
    metrics,
    increment_quota_reservation,
    increment_allocation_outcome,
    increment_order_transition,
    increment_orders_created,
    increment_receipt_action,
    increment_deliverable_action,
    increment_http_requests,
    observe_http_request_duration,
)

__all__ = [
    "init_sentry",
    "capture_order_context",
    "metrics",
    "increment_quota_reservation",
    "increment_allocation_outcome",
    "increment_order_transition",
    "increment_orders_created",
    "increment_receipt_action",
    "increment_deliverable_action",
    "increment_http_requests",
    "observe_http_request_duration",
]
