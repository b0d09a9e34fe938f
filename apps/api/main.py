"""
FastAPI application setup with monitoring, rate limiting and error handling.
"""
import logging
import time
import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from apps.core.settings import settings
from apps.core.exceptions import (
    RetouchException,
    retouch_exception_handler,
    validation_exception_handler,
    general_exception_handler,
)
from apps.core.monitoring import (
    init_sentry,
    metrics,
    increment_http_requests,
    observe_http_request_duration,
)
from apps.core.monitoring.health_checks import basic_health_check, readiness_check
from apps.api.routers import uploads, subscriptions, orders, receipts, deliverables
from apps.db.session import create_db_and_tables

# Setup structured logging
structlog.configure(
    processors=[
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.add_log_level,
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, settings.log_level, logging.INFO)),
    context_class=dict,
    logger_factory=structlog.PrintLoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger()

_UNTRACKED_PATHS = ("/metrics", "/healthz", "/readyz")


def create_application() -> FastAPI:
    """Create and configure the FastAPI application."""

    app = FastAPI(
        title="Retouch Quota & Order Engine",
        description="Subscription quota allocation, order lifecycle and payment reconciliation",
        version=settings.app_version,
        docs_url="/docs" if settings.enable_docs else None,
        redoc_url="/redoc" if settings.enable_docs else None,
    )

    # Rate limiting state; the limiter is a no-op when disabled in settings
    app.state.limiter = uploads.limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    setup_middleware(app)
    setup_monitoring(app)
    setup_exception_handlers(app)
    setup_routers(app)
    setup_event_handlers(app)

    return app


def setup_middleware(app: FastAPI):
    """Setup CORS for the configured origins."""
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "Accept", "Origin"],
        max_age=3600 if settings.is_production else 600,
    )
    logger.info("CORS configured", allowed_origins=settings.cors_origins)


def setup_monitoring(app: FastAPI):
    """Setup Sentry, request metrics and the /metrics endpoint."""

    init_sentry()

    if not settings.enable_metrics:
        logger.info("Metrics disabled via configuration")
        return

    @app.middleware("http")
    async def metrics_middleware(request: Request, call_next):
        start_time = time.time()

        response = await call_next(request)

        if request.url.path not in _UNTRACKED_PATHS:
            duration = time.time() - start_time
            route = request.scope.get("route")
            endpoint = getattr(route, "path", request.url.path)
            increment_http_requests(request.method, endpoint, str(response.status_code))
            observe_http_request_duration(request.method, endpoint, duration)

        return response

    @app.get("/metrics")
    async def get_metrics():
        """Expose Prometheus metrics."""
        return metrics.get_metrics_response()


def setup_exception_handlers(app: FastAPI):
    """Render engine errors as {"error": {...}} bodies."""
    app.add_exception_handler(RetouchException, retouch_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)


def setup_routers(app: FastAPI):
    """Setup API routers and operational endpoints."""

    app.include_router(uploads.router, prefix="/api")
    app.include_router(subscriptions.router, prefix="/api")
    app.include_router(orders.router, prefix="/api")
    app.include_router(receipts.router, prefix="/api")
    app.include_router(deliverables.router, prefix="/api")

    @app.get("/healthz")
    async def health_check(request: Request):
        """Basic health check endpoint."""
        logger.debug("Health check requested", remote_addr=get_remote_address(request))
        return await basic_health_check()

    @app.get("/readyz")
    async def readiness_check_endpoint(request: Request):
        """Readiness check with database verification."""
        logger.debug("Readiness check requested", remote_addr=get_remote_address(request))
        return await readiness_check()

    @app.get("/")
    async def root():
        """Root endpoint with API information."""
        return {
            "message": "Retouch Quota & Order Engine",
            "version": settings.app_version,
            "docs": "/docs" if settings.enable_docs else None,
        }


def setup_event_handlers(app: FastAPI):
    """Setup application event handlers."""

    @app.on_event("startup")
    async def startup_event():
        """Create tables and report configuration problems."""
        logger.info("Retouch engine starting up", environment=settings.environment)

        for issue in settings.validate_production_config():
            logger.warning("Configuration issue", issue=issue)

        create_db_and_tables()
        logger.info("Retouch engine started successfully")

    @app.on_event("shutdown")
    async def shutdown_event():
        """Application shutdown event."""
        logger.info("Retouch engine shutting down")


app = create_application()
