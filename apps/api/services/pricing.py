"""
Pay-per-image pricing for orders that no subscription funds.
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Union
from pydantic import BaseModel

from apps.core.config import PRICE_TOLERANCE
from apps.core.exceptions import ValidationError
from apps.core.settings import settings

CENT = Decimal("0.01")


class PayPerImageQuote(BaseModel):
    """Price of an unfunded batch of images."""
    unit_price: Decimal
    image_count: int
    total: Decimal
    currency: str


def quote_pay_per_image(
    image_count: int,
    unit_price: Optional[Union[Decimal, str]] = None,
    currency: Optional[str] = None,
) -> PayPerImageQuote:
    """
    Quote image_count images at a flat unit price.

    Args:
        image_count: Number of images (>= 1)
        unit_price: Price per image, defaults to the configured unit price
        currency: Defaults to the configured currency

    Returns:
        PayPerImageQuote with the total rounded to cents
    """
    if image_count < 1:
        raise ValidationError.for_fields({"image_count": "Image count must be at least 1"})

    unit = Decimal(str(unit_price)) if unit_price is not None else settings.pay_per_image_unit_price
    if unit <= 0:
        raise ValidationError.for_fields({"unit_price": "Unit price must be greater than zero"})

    total = (unit * image_count).quantize(CENT, rounding=ROUND_HALF_UP)
    return PayPerImageQuote(
        unit_price=unit,
        image_count=image_count,
        total=total,
        currency=currency or settings.default_currency,
    )


def verify_total(quote: PayPerImageQuote, claimed_total: Union[Decimal, str, float]) -> Decimal:
    """
    Check a client-echoed total against the quote.

    Returns the quoted total. Raises ValidationError on a mismatch
    larger than one cent.
    """
    claimed = Decimal(str(claimed_total))
    expected = quote.unit_price * quote.image_count
    if abs(claimed - expected) > Decimal(PRICE_TOLERANCE):
        raise ValidationError(
            f"Price mismatch: expected {quote.total}, got {claimed}",
            details={
                "fields": {"price": f"Total must equal {quote.unit_price} x {quote.image_count}"},
                "expected_total": str(quote.total),
                "claimed_total": str(claimed),
            },
        )
    return quote.total
