"""
Sentry integration for the retouch engine.
Provides exception tracking and performance monitoring.
"""

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration
from sentry_sdk.integrations.logging import LoggingIntegration
import structlog

from apps.core.settings import settings

logger = structlog.get_logger(__name__)

_IGNORED_TRANSACTIONS = ("/healthz", "/readyz", "/metrics")


def init_sentry() -> bool:
    """Initialize Sentry when a DSN is configured. Returns True if enabled."""
    if not settings.sentry_dsn:
        logger.info("Sentry DSN not configured, skipping Sentry initialization")
        return False

    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        environment=settings.environment,
        release=settings.release_version,
        traces_sample_rate=settings.sentry_traces_sample_rate,
        attach_stacktrace=True,
        send_default_pii=False,  # Don't send PII for privacy
        max_breadcrumbs=50,
        integrations=[
            FastApiIntegration(
                failed_request_status_codes={*range(500, 600)},
            ),
            SqlalchemyIntegration(),
            LoggingIntegration(
                level=None,
                event_level=None,
            ),
        ],
        before_send=_before_send_filter,
        before_send_transaction=_before_send_transaction_filter,
    )

    sentry_sdk.set_tag("service", "retouch-engine")

    logger.info(
        "sentry_initialized",
        environment=settings.environment,
        traces_sample_rate=settings.sentry_traces_sample_rate,
    )
    return True


def _before_send_filter(event, hint):
    """Filter and enrich events before sending to Sentry."""
    headers = event.get("request", {}).get("headers", {})
    for name in list(headers):
        if name.lower() == "authorization":
            headers[name] = "[Filtered]"

    if event.get("transaction") in _IGNORED_TRANSACTIONS:
        return None

    order_id = event.get("extra", {}).get("order_id")
    if order_id:
        event.setdefault("tags", {})["order_id"] = order_id

    return event


def _before_send_transaction_filter(event, hint):
    """Skip health and metrics transactions."""
    if event.get("transaction") in _IGNORED_TRANSACTIONS:
        return None
    return event


def capture_order_context(order_id: str, actor_id: str = None, trigger: str = None):
    """Tag the current Sentry scope with order details."""
    scope = sentry_sdk.get_current_scope()
    scope.set_tag("order_id", order_id)
    if actor_id:
        scope.set_user({"id": actor_id})
    if trigger:
        scope.set_tag("order_trigger", trigger)
