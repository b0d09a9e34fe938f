"""
Deliverable registry: download links staff attach to a customer.
"""

from typing import Dict, List, Optional, Union
from uuid import UUID
from pydantic import HttpUrl, TypeAdapter
from pydantic import ValidationError as PydanticValidationError
from sqlmodel import Session, select
import structlog

from apps.core.exceptions import NotFoundError, ValidationError
from apps.core.monitoring import increment_deliverable_action
from apps.db.base import get_or_404
from apps.db.models.deliverable import Deliverable
from apps.db.session import engine

logger = structlog.get_logger(__name__)

_url_adapter = TypeAdapter(HttpUrl)


def validate_link(link: str) -> Optional[str]:
    """Return an error message for anything but an absolute http(s) URL."""
    try:
        _url_adapter.validate_python(link)
    except PydanticValidationError:
        return "Link must be a valid http or https URL"
    return None


class DeliverableRegistry:
    """Service for staff-curated deliverable links."""

    def __init__(self, session: Session = None):
        self.session = session
        self._should_close_session = session is None

        if self.session is None:
            self.session = Session(engine)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self._should_close_session and self.session:
            self.session.close()

    def add(
        self,
        customer_id: str,
        staff_id: str,
        title: str,
        link: str,
        description: str,
    ) -> Deliverable:
        """
        Attach a link to a customer.

        Every field is required and stored trimmed. All invalid fields are
        reported together in details["fields"]; nothing is written then.
        """
        values = {
            "customer_id": (customer_id or "").strip(),
            "title": (title or "").strip(),
            "link": (link or "").strip(),
            "description": (description or "").strip(),
        }

        errors: Dict[str, str] = {}
        for field, value in values.items():
            if not value:
                errors[field] = f"{field.replace('_', ' ').capitalize()} is required"
        if values["link"] and "link" not in errors:
            link_error = validate_link(values["link"])
            if link_error:
                errors["link"] = link_error

        if errors:
            logger.warning("Deliverable rejected", customer_id=customer_id, fields=sorted(errors))
            raise ValidationError.for_fields(errors)

        deliverable = Deliverable(created_by=staff_id, **values)
        self.session.add(deliverable)
        self.session.commit()
        self.session.refresh(deliverable)

        increment_deliverable_action("add")
        logger.info(
            "Deliverable added",
            deliverable_id=str(deliverable.id),
            customer_id=deliverable.customer_id,
            staff_id=staff_id,
        )
        return deliverable

    def remove(self, deliverable_id: Union[str, UUID]) -> None:
        """Hard-delete a deliverable."""
        deliverable = get_or_404(self.session, Deliverable, deliverable_id, "Deliverable")
        self.session.delete(deliverable)
        self.session.commit()

        increment_deliverable_action("remove")
        logger.info("Deliverable removed", deliverable_id=str(deliverable_id))

    def get(self, deliverable_id: Union[str, UUID], customer_id: Optional[str] = None) -> Deliverable:
        deliverable = get_or_404(self.session, Deliverable, deliverable_id, "Deliverable")
        if customer_id is not None and deliverable.customer_id != customer_id:
            raise NotFoundError("Deliverable", str(deliverable.id))
        return deliverable

    def list_for(self, customer_id: str) -> List[Deliverable]:
        """A customer's deliverables, newest first."""
        statement = (
            select(Deliverable)
            .where(Deliverable.customer_id == customer_id)
            .order_by(Deliverable.created_at.desc())
        )
        return list(self.session.exec(statement).all())


__all__ = ["DeliverableRegistry", "validate_link"]
