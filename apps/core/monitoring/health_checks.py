"""
Health checks with timings for the database dependency.
"""

import time
from typing import Dict, Any, Optional
import structlog
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from apps.core.settings import settings
from .prometheus_metrics import observe_health_check_duration, set_health_check_status

logger = structlog.get_logger(__name__)


class HealthCheckResult:
    """Result of a health check with timing and status information."""

    def __init__(self, service: str, healthy: bool, duration_ms: float,
                 details: Optional[Dict[str, Any]] = None, error: Optional[str] = None):
        self.service = service
        self.healthy = healthy
        self.duration_ms = duration_ms
        self.details = details or {}
        self.error = error

    def to_dict(self) -> Dict[str, Any]:
        return {
            "service": self.service,
            "healthy": self.healthy,
            "duration_ms": round(self.duration_ms, 2),
            "details": self.details,
            "error": self.error,
        }


class HealthChecker:
    """Dependency health checking with response-time thresholds."""

    def __init__(self, engine=None):
        # Health check thresholds (in milliseconds)
        self.thresholds = {
            "database": 1000,
        }
        self._engine = engine

    @property
    def engine(self):
        if self._engine is None:
            from apps.db.session import engine
            self._engine = engine
        return self._engine

    def check_database(self) -> HealthCheckResult:
        """Check database connectivity and response time."""
        start_time = time.time()

        try:
            with Session(self.engine) as session:
                row = session.execute(text("SELECT 1")).fetchone()

            duration_ms = (time.time() - start_time) * 1000
            healthy = bool(row and row[0] == 1) and duration_ms < self.thresholds["database"]
            result = HealthCheckResult(
                service="database",
                healthy=healthy,
                duration_ms=duration_ms,
                details={"threshold_ms": self.thresholds["database"]},
            )
        except SQLAlchemyError as e:
            duration_ms = (time.time() - start_time) * 1000
            logger.error("Database health check failed", error=str(e))
            result = HealthCheckResult(
                service="database",
                healthy=False,
                duration_ms=duration_ms,
                error=str(e),
            )

        observe_health_check_duration("readiness", "database", result.duration_ms / 1000)
        set_health_check_status("database", result.healthy)
        return result


health_checker = HealthChecker()


async def basic_health_check() -> Dict[str, Any]:
    """Liveness check: the process is up."""
    return {
        "status": "healthy",
        "version": settings.app_version,
        "environment": settings.environment,
    }


async def readiness_check(checker: Optional[HealthChecker] = None) -> Dict[str, Any]:
    """Readiness check: dependencies respond within thresholds."""
    checker = checker or health_checker
    database = checker.check_database()
    return {
        "status": "ready" if database.healthy else "not_ready",
        "checks": {"database": database.to_dict()},
    }
