"""
Offer models and the structuring outcome.

The structuring model answers with either a structured offer or one of
four invalid tokens. Both cases are represented as a discriminated union
(ValidationOutcome) so callers branch on `kind` instead of inspecting
raw JSON.
"""

from datetime import datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from enum import Enum
from typing import Annotated, Literal, Optional, Union
import re

from pydantic import Field, field_validator

from models.base import BaseSchema


class OfferCategory(str, Enum):
    """Closed set of offer categories shown on the site."""

    OBST_GEMUESE = "Obst & Gemüse"
    FLEISCH_WURST = "Fleisch & Wurst"
    MILCHPRODUKTE = "Milchprodukte"
    BACKWAREN = "Backwaren"
    GETRAENKE = "Getränke"
    SONSTIGES = "Sonstiges"


class OfferStatus(str, Enum):
    """Offer lifecycle status."""

    DRAFT = "draft"      # Created by the pipeline, awaiting review
    LIVE = "live"        # Published
    EXPIRED = "expired"


class InvalidReason(str, Enum):
    """Why a submission could not be structured."""

    MISSING_PRODUCT = "MISSING_PRODUCT"
    MISSING_PRICE = "MISSING_PRICE"
    MISSING_BOTH = "MISSING_BOTH"
    UNCLEAR_MESSAGE = "UNCLEAR_MESSAGE"


# Singular-unit placeholder, used only when no unit can be detected at all
DEFAULT_UNIT = "Stück"

_PRICE_CLEAN_RE = re.compile(r"[€\s]|EUR|Euro", re.IGNORECASE)


def normalize_price(value) -> str:
    """
    Normalize a price to a two-decimal string.

    Accepts numbers and German-formatted strings:
    - 2.49 → "2.49"
    - "2,49 €" → "2.49"
    - "1" → "1.00"

    Raises:
        ValueError: If the value is not a positive amount
    """
    if value is None or isinstance(value, bool):
        raise ValueError("price is required")

    raw = _PRICE_CLEAN_RE.sub("", str(value)).replace(",", ".")

    try:
        amount = Decimal(raw)
    except InvalidOperation:
        raise ValueError(f"invalid price: {value!r}")

    if not amount.is_finite() or amount <= 0:
        raise ValueError(f"price must be positive: {value!r}")

    return str(amount.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


class StructuredOffer(BaseSchema):
    """Successful structuring result."""

    kind: Literal["structured"] = "structured"

    product_name: str = Field(..., min_length=1, max_length=255)
    price: str = Field(..., description="Decimal price as string, e.g. '2.49'")
    unit: str = Field(default=DEFAULT_UNIT, max_length=50)
    description: Optional[str] = Field(None, max_length=500)
    category: OfferCategory = OfferCategory.SONSTIGES
    validity_days: Optional[int] = Field(None, description="Validity stated in the message, if any")

    @field_validator("price", mode="before")
    @classmethod
    def _normalize_price(cls, v):
        return normalize_price(v)

    @field_validator("category", mode="before")
    @classmethod
    def _coerce_category(cls, v):
        # Unknown categories fall back to Sonstiges instead of failing the offer
        if isinstance(v, OfferCategory):
            return v
        for category in OfferCategory:
            if isinstance(v, str) and v.strip().lower() == category.value.lower():
                return category
        return OfferCategory.SONSTIGES

    @field_validator("validity_days", mode="before")
    @classmethod
    def _clamp_validity(cls, v):
        if v in (None, ""):
            return None
        try:
            days = int(v)
        except (TypeError, ValueError):
            return None
        return max(1, min(days, 30))


class InvalidSubmission(BaseSchema):
    """Rejected submission with a reason the sender can act on."""

    kind: Literal["invalid"] = "invalid"

    reason: InvalidReason
    raw_response: Optional[str] = Field(None, description="Model output, for logs")


ValidationOutcome = Annotated[
    Union[StructuredOffer, InvalidSubmission],
    Field(discriminator="kind")
]


class OfferCreate(BaseSchema):
    """Row written to the offers table."""

    market_id: str
    product_name: str = Field(..., min_length=1, max_length=255)
    price: str
    unit: Optional[str] = None
    description: Optional[str] = None
    ai_category: Optional[OfferCategory] = None
    image_id: Optional[str] = None
    status: OfferStatus = OfferStatus.DRAFT
    expires_at: datetime


class OfferResponse(BaseSchema):
    """Offer as stored."""

    id: str
    market_id: str
    product_name: str
    price: str
    unit: Optional[str] = None
    description: Optional[str] = None
    ai_category: Optional[str] = None
    image_id: Optional[str] = None
    status: OfferStatus
    expires_at: datetime
    created_at: Optional[datetime] = None

    @field_validator("price", mode="before")
    @classmethod
    def _price_to_str(cls, v):
        return normalize_price(v)
