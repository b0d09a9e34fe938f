"""
Deliverables router: download links shown to customers.
"""
from typing import List, Optional
from fastapi import APIRouter, Depends, Response, status
from sqlmodel import Session

from apps.api.services import DeliverableRegistry
from apps.core.exceptions import ValidationError
from apps.core.security import Actor, get_current_actor, require_staff, resolve_customer_scope
from apps.db.models.deliverable import DeliverableCreate, DeliverableRead
from apps.db.session import get_session

router = APIRouter(prefix="/deliverables", tags=["deliverables"])


@router.post("", response_model=DeliverableRead, status_code=status.HTTP_201_CREATED)
async def add_deliverable(
    body: DeliverableCreate,
    actor: Actor = Depends(require_staff),
    session: Session = Depends(get_session),
):
    return DeliverableRegistry(session).add(
        body.customer_id,
        actor.id,
        body.title,
        body.link,
        body.description,
    )


@router.delete("/{deliverable_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_deliverable(
    deliverable_id: str,
    actor: Actor = Depends(require_staff),
    session: Session = Depends(get_session),
):
    DeliverableRegistry(session).remove(deliverable_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("", response_model=List[DeliverableRead])
async def list_deliverables(
    customer_id: Optional[str] = None,
    actor: Actor = Depends(get_current_actor),
    session: Session = Depends(get_session),
):
    """Deliverables of one customer, newest first."""
    scope = resolve_customer_scope(actor, customer_id)
    if scope is None:
        raise ValidationError.for_fields({"customer_id": "customer_id is required for staff"})
    return DeliverableRegistry(session).list_for(scope)


@router.get("/{deliverable_id}", response_model=DeliverableRead)
async def get_deliverable(
    deliverable_id: str,
    actor: Actor = Depends(get_current_actor),
    session: Session = Depends(get_session),
):
    """One deliverable; customers only see their own."""
    customer_id = None if actor.is_staff else actor.id
    return DeliverableRegistry(session).get(deliverable_id, customer_id=customer_id)
