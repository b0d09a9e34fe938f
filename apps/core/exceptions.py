"""
Custom exception classes and error handling utilities.
"""
from typing import Optional, Dict, Any
from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
import structlog

logger = structlog.get_logger(__name__)


class RetouchException(Exception):
    """Base exception class for the retouch engine."""

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


class AuthenticationError(RetouchException):
    """Missing or invalid bearer token."""

    def __init__(self, message: str = "Could not validate credentials"):
        super().__init__(
            message=message,
            status_code=status.HTTP_401_UNAUTHORIZED
        )


class UnauthorizedError(RetouchException):
    """Actor role is not permitted for the requested action."""

    def __init__(self, message: str = "Access denied", details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            status_code=status.HTTP_403_FORBIDDEN,
            details=details
        )


class ValidationError(RetouchException):
    """Data validation errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            status_code=status.HTTP_422_UNPROCESSABLE_CONTENT,
            details=details
        )

    @classmethod
    def for_fields(cls, fields: Dict[str, str]) -> "ValidationError":
        """Build an error carrying one message per invalid field."""
        names = ", ".join(sorted(fields))
        return cls(f"Invalid fields: {names}", details={"fields": fields})


class NotFoundError(RetouchException):
    """Resource not found errors."""

    def __init__(self, resource: str, identifier: str = ""):
        message = f"{resource} not found"
        if identifier:
            message += f": {identifier}"
        super().__init__(
            message=message,
            status_code=status.HTTP_404_NOT_FOUND,
            details={"resource": resource, "id": identifier} if identifier else {"resource": resource}
        )


class QuotaExceededError(RetouchException):
    """Reservation would push a subscription past its image limit."""

    def __init__(self, requested: int, remaining: int, subscription_id: Optional[str] = None):
        details = {"requested_images": requested, "remaining_images": remaining}
        if subscription_id:
            details["subscription_id"] = subscription_id
        super().__init__(
            message=f"Image quota exceeded. Requested: {requested}, Remaining: {remaining}",
            status_code=status.HTTP_409_CONFLICT,
            details=details
        )


class SubscriptionNotActiveError(RetouchException):
    """Subscription exists but cannot be charged."""

    def __init__(self, subscription_id: str, current_status: str):
        super().__init__(
            message=f"Subscription {subscription_id} is {current_status}",
            status_code=status.HTTP_409_CONFLICT,
            details={"subscription_id": subscription_id, "status": current_status}
        )


class InvalidTransitionError(RetouchException):
    """State machine rule violation."""

    def __init__(self, message: str, current_status: Optional[str] = None, trigger: Optional[str] = None):
        details = {}
        if current_status is not None:
            details["current_status"] = current_status
        if trigger is not None:
            details["trigger"] = trigger
        super().__init__(
            message=message,
            status_code=status.HTTP_409_CONFLICT,
            details=details
        )


class OrderNotPaymentReadyError(RetouchException):
    """Order is not waiting for a payment receipt."""

    def __init__(self, order_id: str, current_status: str):
        super().__init__(
            message=f"Order {order_id} is not awaiting payment confirmation (status: {current_status})",
            status_code=status.HTTP_409_CONFLICT,
            details={"order_id": order_id, "current_status": current_status}
        )


class DependencyUnavailableError(RetouchException):
    """External collaborator could not be reached."""

    def __init__(self, service: str, message: str):
        super().__init__(
            message=f"{service} service error: {message}",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            details={"service": service}
        )


# Exception handlers
async def retouch_exception_handler(request: Request, exc: RetouchException) -> JSONResponse:
    """Global exception handler for engine exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": {
                "message": exc.message,
                "type": exc.__class__.__name__,
                "details": exc.details,
                "status_code": exc.status_code
            }
        }
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Render request body/query validation failures like ValidationError."""
    fields = {}
    for error in exc.errors():
        location = [str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path")]
        fields[".".join(location) or "request"] = error.get("msg", "Invalid value")

    logger.warning(
        "Request validation failed",
        path=request.url.path,
        method=request.method,
        fields=sorted(fields),
    )
    error = ValidationError.for_fields(fields)
    return await retouch_exception_handler(request, error)


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handler for unexpected exceptions."""
    logger.error(
        "Unhandled exception",
        path=request.url.path,
        method=request.method,
        error=str(exc),
        error_type=exc.__class__.__name__
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": {
                "message": "Internal server error",
                "type": "InternalServerError",
                "status_code": status.HTTP_500_INTERNAL_SERVER_ERROR
            }
        }
    )
