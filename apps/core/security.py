"""
Security utilities for bearer token verification and role checks.

Tokens are issued by the authentication collaborator; this service only
verifies them and extracts the acting user and role.
"""
from typing import Optional
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jwt import decode as jwt_decode, InvalidTokenError
import structlog

from apps.core.config import ActorRole
from apps.core.exceptions import AuthenticationError, UnauthorizedError
from apps.core.settings import settings

logger = structlog.get_logger(__name__)

# JWT token scheme
bearer_scheme = HTTPBearer(auto_error=False)


class Actor:
    """Caller extracted from a verified bearer token."""

    def __init__(self, actor_id: str, role: ActorRole, payload: dict):
        self.id = actor_id
        self.role = role
        self.payload = payload

    @property
    def is_staff(self) -> bool:
        return self.role == ActorRole.STAFF

    def __str__(self):
        return f"Actor(id={self.id}, role={self.role.value})"

    def __repr__(self):
        return self.__str__()


class SecurityUtils:
    """Token helpers."""

    @staticmethod
    def verify_token(token: str) -> Optional[dict]:
        """Verify and decode a JWT, returning None when invalid."""
        try:
            return jwt_decode(
                token,
                settings.jwt_secret,
                algorithms=[settings.jwt_algorithm],
            )
        except InvalidTokenError as e:
            logger.warning("JWT validation failed", error=str(e))
            return None

    @staticmethod
    def extract_actor(payload: dict) -> Optional[Actor]:
        """Build an Actor from token claims."""
        actor_id = payload.get("sub")
        if not actor_id:
            return None

        try:
            role = ActorRole(payload.get("role", ActorRole.CUSTOMER.value))
        except ValueError:
            return None

        return Actor(actor_id=str(actor_id), role=role, payload=payload)


def get_current_actor(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme)
) -> Actor:
    """FastAPI dependency returning the authenticated actor."""
    if credentials is None:
        raise AuthenticationError("Missing bearer token")

    payload = SecurityUtils.verify_token(credentials.credentials)
    if payload is None:
        raise AuthenticationError()

    actor = SecurityUtils.extract_actor(payload)
    if actor is None:
        raise AuthenticationError("Invalid token payload")

    return actor


def require_staff(actor: Actor = Depends(get_current_actor)) -> Actor:
    """Dependency for staff-only endpoints."""
    if not actor.is_staff:
        raise UnauthorizedError("Staff role required", details={"role": actor.role.value})
    return actor


def require_customer(actor: Actor = Depends(get_current_actor)) -> Actor:
    """Dependency for customer-only endpoints."""
    if actor.role != ActorRole.CUSTOMER:
        raise UnauthorizedError("Customer role required", details={"role": actor.role.value})
    return actor


def resolve_customer_scope(actor: Actor, customer_id: Optional[str]) -> Optional[str]:
    """
    Customer whose records the actor may read.

    Customers are always scoped to themselves; staff may pass any customer
    id or none for all customers.
    """
    if actor.is_staff:
        return customer_id
    if customer_id and customer_id != actor.id:
        raise UnauthorizedError("Customers can only read their own records")
    return actor.id
