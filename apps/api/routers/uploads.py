"""
Upload intent router: resolves which subscription funds an upload.
"""
from typing import Optional, Union
from uuid import UUID
from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field
from slowapi import Limiter
from slowapi.util import get_remote_address
from sqlmodel import Session
import structlog

from apps.api.services import QuotaAllocator, Allocated, RequiresSelection, NoQuota
from apps.core.security import Actor, require_customer
from apps.core.settings import settings
from apps.db.session import get_session

logger = structlog.get_logger(__name__)
limiter = Limiter(
    key_func=get_remote_address,
    storage_uri=settings.rate_limit_storage_uri,
    enabled=settings.enable_rate_limiting,
)

router = APIRouter(tags=["uploads"])


class UploadIntentRequest(BaseModel):
    """Upload intent request schema."""
    image_count: int = Field(ge=1)
    subscription_id: Optional[UUID] = None


@router.post("/upload-intent", response_model=Union[Allocated, RequiresSelection, NoQuota])
@limiter.limit(settings.upload_intent_rate_limit)
async def upload_intent(
    request: Request,
    intent: UploadIntentRequest,
    actor: Actor = Depends(require_customer),
    session: Session = Depends(get_session),
):
    """
    Reserve quota for an upload, ask the customer to pick a subscription,
    or offer pay-per-image when no subscription has quota left.
    """
    allocator = QuotaAllocator(session)
    result = allocator.allocate(actor.id, intent.image_count, subscription_id=intent.subscription_id)

    logger.info(
        "Upload intent resolved",
        customer_id=actor.id,
        images=intent.image_count,
        outcome=result.outcome,
    )
    return result
