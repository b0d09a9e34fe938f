"""
Database base utilities and common operations.
"""
from datetime import datetime, timezone
from typing import Type, TypeVar, Union
from uuid import UUID
from sqlalchemy import DateTime
from sqlalchemy.types import TypeDecorator
from sqlmodel import SQLModel, Session

from apps.core.exceptions import NotFoundError

ModelType = TypeVar("ModelType", bound=SQLModel)


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """
    Timestamp column holding UTC.

    Values are stored without an offset and always loaded back as aware
    UTC datetimes, so reads compare equal to what was written on every
    backend. Naive values are taken to be UTC already.
    """
    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.replace(tzinfo=None)

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


def parse_uuid(value: Union[str, UUID], resource: str) -> UUID:
    """Coerce an identifier, treating malformed ids as unknown ones."""
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except (TypeError, ValueError):
        raise NotFoundError(resource, str(value))


def get_or_404(
    session: Session,
    model: Type[ModelType],
    identifier: Union[str, UUID],
    resource: str,
    *,
    for_update: bool = False,
) -> ModelType:
    """
    Load a row by primary key, always re-reading it from the database.

    With for_update the row is locked until the transaction ends on
    databases that support SELECT ... FOR UPDATE.
    """
    key = parse_uuid(identifier, resource)
    obj = session.get(
        model,
        key,
        populate_existing=True,
        with_for_update=True if for_update else None,
    )
    if obj is None:
        raise NotFoundError(resource, str(key))
    return obj
