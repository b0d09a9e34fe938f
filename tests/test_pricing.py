"""
Tests for pay-per-image pricing.
"""

from decimal import Decimal

import pytest

from apps.api.services.pricing import quote_pay_per_image, verify_total
from apps.core.exceptions import ValidationError


class TestPayPerImagePricing:

    def test_quote_uses_configured_unit_price(self):
        quote = quote_pay_per_image(3)

        assert quote.unit_price == Decimal("2.50")
        assert quote.total == Decimal("7.50")
        assert quote.currency == "USD"

    def test_quote_with_explicit_unit_price(self):
        quote = quote_pay_per_image(3, unit_price="1.333")

        assert quote.total == Decimal("4.00")

    def test_quote_rejects_bad_input(self):
        with pytest.raises(ValidationError):
            quote_pay_per_image(0)
        with pytest.raises(ValidationError):
            quote_pay_per_image(2, unit_price="0")

    def test_verify_total_within_tolerance(self):
        """Totals within one cent of unit x quantity are accepted."""
        quote = quote_pay_per_image(3)

        assert verify_total(quote, "7.50") == Decimal("7.50")
        assert verify_total(quote, 7.51) == Decimal("7.50")

    def test_verify_total_mismatch(self):
        quote = quote_pay_per_image(3)

        with pytest.raises(ValidationError) as exc_info:
            verify_total(quote, "7.00")

        assert "price" in exc_info.value.details["fields"]
