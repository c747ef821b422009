"""
Business logic services.

Each service handles one stage of the offer ingestion pipeline.
"""

from services.market_service import MarketService, get_market_service
from services.pending_message_service import PendingMessageService, get_pending_message_service
from services.structuring_service import OfferStructuringService, get_structuring_service
from services.image_library_service import ImageLibraryService, get_image_library_service
from services.offer_service import OfferService, get_offer_service
from services.message_processor_service import (
    MessageProcessorService,
    get_message_processor_service,
)
from services.readiness_service import ReadinessScheduler, get_readiness_scheduler

__all__ = [
    "MarketService",
    "get_market_service",
    "PendingMessageService",
    "get_pending_message_service",
    "OfferStructuringService",
    "get_structuring_service",
    "ImageLibraryService",
    "get_image_library_service",
    "OfferService",
    "get_offer_service",
    "MessageProcessorService",
    "get_message_processor_service",
    "ReadinessScheduler",
    "get_readiness_scheduler",
]
