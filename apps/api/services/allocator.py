"""
Quota allocation for upload intents.

Decides which subscription absorbs an upload. Selection is two-phase: when
several subscriptions could fund the batch the allocator only lists them,
and the caller repeats the request with the chosen subscription_id.
"""

from datetime import datetime
from typing import List, Literal, Optional, Union
from uuid import UUID
from pydantic import BaseModel
from sqlmodel import Session
import structlog

from apps.core.exceptions import QuotaExceededError, ValidationError
from apps.core.monitoring import increment_allocation_outcome
from apps.core.settings import settings
from apps.db.models.subscription import Subscription
from .ledger import SubscriptionLedger
from .pricing import PayPerImageQuote, quote_pay_per_image

logger = structlog.get_logger(__name__)


class Candidate(BaseModel):
    """A subscription the customer may pick."""
    subscription_id: UUID
    plan_id: str
    plan_name: str
    remaining: int
    period_end: Optional[datetime] = None


class Allocated(BaseModel):
    """Quota was reserved."""
    outcome: Literal["allocated"] = "allocated"
    subscription_id: UUID
    reservation_id: UUID
    image_count: int
    remaining: int


class RequiresSelection(BaseModel):
    """More than one subscription can fund the batch."""
    outcome: Literal["requires_selection"] = "requires_selection"
    image_count: int
    candidates: List[Candidate]


class NoQuota(BaseModel):
    """No subscription covers the batch; it can be paid per image."""
    outcome: Literal["no_quota"] = "no_quota"
    image_count: int
    pay_per_image: PayPerImageQuote


AllocationResult = Union[Allocated, RequiresSelection, NoQuota]


class QuotaAllocator:
    """Chooses and charges the funding subscription for an upload."""

    def __init__(self, session: Session = None, ledger: Optional[SubscriptionLedger] = None):
        self.ledger = ledger or SubscriptionLedger(session)
        self.session = self.ledger.session

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.ledger.__exit__(exc_type, exc_val, exc_tb)

    def allocate(
        self,
        customer_id: str,
        count: int,
        subscription_id: Optional[Union[str, UUID]] = None,
    ) -> AllocationResult:
        """
        Resolve an upload intent of count images.

        Args:
            customer_id: Customer uploading the images
            count: Number of images in the batch
            subscription_id: Subscription picked by the customer, if any

        Returns:
            Allocated, RequiresSelection or NoQuota

        Raises:
            ValidationError: count out of range
            QuotaExceededError: the only eligible subscription cannot cover count
            NotFoundError / SubscriptionNotActiveError: from an explicit pick
        """
        if count < 1:
            raise ValidationError.for_fields({"image_count": "Image count must be at least 1"})
        if count > settings.max_images_per_request:
            raise ValidationError.for_fields({
                "image_count": f"At most {settings.max_images_per_request} images per upload"
            })

        if subscription_id is not None:
            return self._reserve(customer_id, subscription_id, count)

        eligible = self.ledger.list_eligible(customer_id)

        if not eligible:
            increment_allocation_outcome("no_quota")
            logger.info("No eligible subscription, offering pay-per-image", customer_id=customer_id, images=count)
            return NoQuota(image_count=count, pay_per_image=quote_pay_per_image(count))

        if len(eligible) == 1:
            return self._reserve(customer_id, eligible[0].id, count)

        covering = [s for s in eligible if self.ledger.remaining(s) >= count]
        if not covering:
            increment_allocation_outcome("no_quota")
            logger.info(
                "No subscription covers upload, offering pay-per-image",
                customer_id=customer_id,
                images=count,
                best_remaining=max(self.ledger.remaining(s) for s in eligible),
            )
            return NoQuota(image_count=count, pay_per_image=quote_pay_per_image(count))

        if len(covering) == 1:
            return self._reserve(customer_id, covering[0].id, count)

        increment_allocation_outcome("requires_selection")
        logger.info(
            "Upload requires subscription selection",
            customer_id=customer_id,
            images=count,
            candidates=len(covering),
        )
        return RequiresSelection(
            image_count=count,
            candidates=[self._candidate(s) for s in covering],
        )

    def _reserve(self, customer_id: str, subscription_id, count: int) -> Allocated:
        try:
            reservation = self.ledger.reserve(subscription_id, count, customer_id=customer_id)
        except QuotaExceededError:
            increment_allocation_outcome("quota_exceeded")
            raise

        subscription = self.ledger.get_subscription(reservation.subscription_id)
        increment_allocation_outcome("allocated")
        return Allocated(
            subscription_id=reservation.subscription_id,
            reservation_id=reservation.id,
            image_count=reservation.image_count,
            remaining=self.ledger.remaining(subscription),
        )

    def _candidate(self, subscription: Subscription) -> Candidate:
        plan = self.ledger.get_plan(subscription.plan_id)
        return Candidate(
            subscription_id=subscription.id,
            plan_id=plan.id,
            plan_name=plan.name,
            remaining=self.ledger.remaining(subscription),
            period_end=subscription.period_end,
        )
