"""
Prometheus metrics for the retouch engine.
Covers quota reservations, order transitions, receipt reviews and HTTP traffic.
"""

from prometheus_client import Counter, Histogram, Gauge, CollectorRegistry, CONTENT_TYPE_LATEST, generate_latest
from fastapi import Response
import structlog

logger = structlog.get_logger(__name__)

# Create custom registry for our metrics
registry = CollectorRegistry()

# Quota Metrics
quota_reservations = Counter(
    'retouch_quota_reservations_total',
    'Quota reservation attempts',
    ['result'],
    registry=registry
)

images_reserved = Counter(
    'retouch_images_reserved_total',
    'Images charged against subscriptions',
    registry=registry
)

allocation_outcomes = Counter(
    'retouch_allocation_outcomes_total',
    'Upload intent outcomes',
    ['outcome'],
    registry=registry
)

# Order Metrics
order_transitions = Counter(
    'retouch_order_transitions_total',
    'Order transition attempts',
    ['trigger', 'result'],
    registry=registry
)

orders_created = Counter(
    'retouch_orders_created_total',
    'Orders created',
    ['funding'],
    registry=registry
)

# Payment Metrics
receipt_actions = Counter(
    'retouch_payment_receipts_total',
    'Payment receipt actions',
    ['action', 'result'],
    registry=registry
)

# Deliverable Metrics
deliverable_actions = Counter(
    'retouch_deliverables_total',
    'Deliverable registry actions',
    ['action'],
    registry=registry
)

# HTTP Metrics
http_requests_total = Counter(
    'retouch_http_requests_total',
    'Total HTTP requests',
    ['method', 'endpoint', 'status_code'],
    registry=registry
)

http_request_duration = Histogram(
    'retouch_http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'endpoint'],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.075, 0.1, 0.25, 0.5, 0.75, 1.0, 2.5, 5.0, 7.5, 10.0, float('inf')],
    registry=registry
)

# Health Check Metrics
health_check_duration = Histogram(
    'retouch_health_check_duration_seconds',
    'Health check duration in seconds',
    ['check_type', 'service'],
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, float('inf')],
    registry=registry
)

health_check_status = Gauge(
    'retouch_health_check_status',
    'Health check status (1=healthy, 0=unhealthy)',
    ['service'],
    registry=registry
)


class MetricsCollector:
    """Centralized metrics collection and helper methods."""

    def __init__(self):
        self.registry = registry

    def get_metrics_response(self) -> Response:
        """Return Prometheus metrics as HTTP response."""
        metrics_data = generate_latest(self.registry)
        return Response(
            content=metrics_data,
            media_type=CONTENT_TYPE_LATEST
        )


# Global metrics collector instance
metrics = MetricsCollector()


# Helper functions for common metric operations
def increment_quota_reservation(result: str, images: int = 0):
    """Count a reservation attempt and the images it charged."""
    quota_reservations.labels(result=result).inc()
    if images:
        images_reserved.inc(images)
    logger.debug("quota_reservation_recorded", result=result, images=images)


def increment_allocation_outcome(outcome: str):
    allocation_outcomes.labels(outcome=outcome).inc()


def increment_order_transition(trigger: str, result: str):
    """Count an order transition attempt."""
    order_transitions.labels(trigger=trigger, result=result).inc()
    logger.debug("order_transition_recorded", trigger=trigger, result=result)


def increment_orders_created(funding: str):
    orders_created.labels(funding=funding).inc()


def increment_receipt_action(action: str, result: str):
    """Count a receipt submission or review."""
    receipt_actions.labels(action=action, result=result).inc()


def increment_deliverable_action(action: str):
    deliverable_actions.labels(action=action).inc()


def increment_http_requests(method: str, endpoint: str, status_code: str):
    """Increment HTTP request counter."""
    http_requests_total.labels(method=method, endpoint=endpoint, status_code=status_code).inc()


def observe_http_request_duration(method: str, endpoint: str, duration_seconds: float):
    """Record HTTP request duration."""
    http_request_duration.labels(method=method, endpoint=endpoint).observe(duration_seconds)


def observe_health_check_duration(check_type: str, service: str, duration_seconds: float):
    """Record health check duration."""
    health_check_duration.labels(check_type=check_type, service=service).observe(duration_seconds)


def set_health_check_status(service: str, is_healthy: bool):
    """Set health check status."""
    health_check_status.labels(service=service).set(1 if is_healthy else 0)
