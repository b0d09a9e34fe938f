"""
Tests for quota allocation of upload intents.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from apps.api.services.allocator import Allocated, NoQuota, QuotaAllocator, RequiresSelection
from apps.core.exceptions import NotFoundError, QuotaExceededError, ValidationError


class TestQuotaAllocator:
    """Test subscription selection and reservation."""

    def test_single_eligible_subscription_is_reserved(self, session, make_subscription):
        """With one eligible subscription the upload is charged directly."""
        subscription = make_subscription(images_used=10)

        result = QuotaAllocator(session).allocate("customer-1", 5)

        assert isinstance(result, Allocated)
        assert result.subscription_id == subscription.id
        assert result.image_count == 5
        assert result.remaining == 45
        session.refresh(subscription)
        assert subscription.images_used == 15

    def test_single_eligible_never_requires_selection(self, session, make_subscription):
        """One eligible subscription plus ineligible ones is still auto-selected."""
        make_subscription(status="expired")
        make_subscription(images_used=60)
        only = make_subscription(images_used=0)

        result = QuotaAllocator(session).allocate("customer-1", 1)

        assert result.outcome == "allocated"
        assert result.subscription_id == only.id

    def test_single_eligible_insufficient_quota(self, session, make_subscription):
        """Limit 60, used 58, three images requested: quota exceeded, usage untouched."""
        subscription = make_subscription(images_limit=60, images_used=58)

        with pytest.raises(QuotaExceededError) as exc_info:
            QuotaAllocator(session).allocate("customer-1", 3)

        assert exc_info.value.details["requested_images"] == 3
        assert exc_info.value.details["remaining_images"] == 2
        session.refresh(subscription)
        assert subscription.images_used == 58

    def test_several_eligible_requires_selection(self, session, make_subscription):
        """Several covering subscriptions are listed, nothing is reserved."""
        now = datetime.now(timezone.utc)
        first = make_subscription(images_used=50, period_end=now + timedelta(days=2))
        second = make_subscription(images_used=0, period_end=now + timedelta(days=10))
        make_subscription(images_used=58, period_end=now + timedelta(days=1))

        allocator = QuotaAllocator(session)
        result = allocator.allocate("customer-1", 5)

        assert isinstance(result, RequiresSelection)
        assert [c.subscription_id for c in result.candidates] == [first.id, second.id]
        assert [c.remaining for c in result.candidates] == [10, 60]
        assert result.candidates[0].plan_name == "Silver"
        session.refresh(first)
        session.refresh(second)
        assert first.images_used == 50
        assert second.images_used == 0

        # Listing is repeatable
        again = allocator.allocate("customer-1", 5)
        assert again == result

    def test_several_eligible_none_covering(self, session, make_subscription):
        """No single subscription covers the batch, so it is quoted per image."""
        first = make_subscription(images_used=58)
        second = make_subscription(images_used=57)

        result = QuotaAllocator(session).allocate("customer-1", 5)

        assert isinstance(result, NoQuota)
        assert result.pay_per_image.total == Decimal("12.50")
        session.refresh(first)
        session.refresh(second)
        assert first.images_used == 58
        assert second.images_used == 57

    def test_several_eligible_one_covering_is_reserved(self, session, make_subscription):
        """Only one subscription can take the batch: charged without asking."""
        nearly_full = make_subscription(images_used=58)
        fresh = make_subscription(images_used=0)

        result = QuotaAllocator(session).allocate("customer-1", 5)

        assert isinstance(result, Allocated)
        assert result.subscription_id == fresh.id
        assert result.remaining == 55
        session.refresh(nearly_full)
        assert nearly_full.images_used == 58

    def test_explicit_selection_reserves(self, session, make_subscription):
        """The subscription picked after RequiresSelection is charged."""
        make_subscription()
        chosen = make_subscription(images_used=20)

        result = QuotaAllocator(session).allocate("customer-1", 4, subscription_id=str(chosen.id))

        assert isinstance(result, Allocated)
        assert result.subscription_id == chosen.id
        assert result.remaining == 36

    def test_explicit_selection_of_foreign_subscription(self, session, make_subscription):
        """A customer cannot charge someone else's subscription."""
        foreign = make_subscription(customer_id="customer-2")

        with pytest.raises(NotFoundError):
            QuotaAllocator(session).allocate("customer-1", 1, subscription_id=foreign.id)

    def test_no_eligible_subscription_offers_pay_per_image(self, session, make_subscription):
        """Without quota the upload is quoted per image."""
        make_subscription(images_used=60)

        result = QuotaAllocator(session).allocate("customer-1", 4)

        assert isinstance(result, NoQuota)
        assert result.pay_per_image.image_count == 4
        assert result.pay_per_image.unit_price == Decimal("2.50")
        assert result.pay_per_image.total == Decimal("10.00")

    def test_invalid_count(self, session, plan):
        allocator = QuotaAllocator(session)

        with pytest.raises(ValidationError):
            allocator.allocate("customer-1", 0)
        with pytest.raises(ValidationError):
            allocator.allocate("customer-1", 100000)
