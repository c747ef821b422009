"""
Pydantic models for validation and serialization.
"""

from models.base import BaseSchema
from models.market import MarketResponse
from models.pending_message import PendingMessageResponse
from models.image_library import ImageLibraryEntryCreate, ImageLibraryEntryResponse
from models.offer import (
    OfferCategory,
    OfferStatus,
    InvalidReason,
    StructuredOffer,
    InvalidSubmission,
    ValidationOutcome,
    OfferCreate,
    OfferResponse,
    DEFAULT_UNIT,
    normalize_price,
)
from models.webhook import InboundMessage
from models.sweep import ProcessResult, SweepSummary

__all__ = [
    # Base
    "BaseSchema",

    # Market
    "MarketResponse",

    # Pending messages
    "PendingMessageResponse",

    # Image library
    "ImageLibraryEntryCreate",
    "ImageLibraryEntryResponse",

    # Offers
    "OfferCategory",
    "OfferStatus",
    "InvalidReason",
    "StructuredOffer",
    "InvalidSubmission",
    "ValidationOutcome",
    "OfferCreate",
    "OfferResponse",
    "DEFAULT_UNIT",
    "normalize_price",

    # Webhook
    "InboundMessage",

    # Processing
    "ProcessResult",
    "SweepSummary",
]
