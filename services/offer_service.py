"""
Offer service for persisting structured offers.
"""

from typing import Optional
from datetime import datetime, timedelta, timezone
import structlog

from config import get_supabase_client, settings
from models.offer import OfferCreate, OfferResponse, OfferStatus, StructuredOffer
from exceptions import OfferPersistError

logger = structlog.get_logger(__name__)


class OfferService:
    """
    Writes offers produced by the ingestion pipeline.

    Offers are created as drafts; publishing happens elsewhere.
    """

    def __init__(self):
        self.db = get_supabase_client()
        self.table = "offers"

    def build_offer(
        self,
        market_id: str,
        structured: StructuredOffer,
        image_id: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> OfferCreate:
        """
        Build the offer row for a structured submission.

        Expiry is now + the validity stated in the message, or the default
        validity window if none was stated.
        """
        now = now or datetime.now(timezone.utc)
        validity_days = structured.validity_days or settings.offer_validity_days

        return OfferCreate(
            market_id=market_id,
            product_name=structured.product_name,
            price=structured.price,
            unit=structured.unit,
            description=structured.description,
            ai_category=structured.category,
            image_id=image_id,
            status=OfferStatus.DRAFT,
            expires_at=now + timedelta(days=validity_days),
        )

    def create(self, data: OfferCreate) -> OfferResponse:
        """
        Insert an offer.

        Raises:
            OfferPersistError: If the insert fails
        """
        record = {
            "market_id": data.market_id,
            "product_name": data.product_name,
            "price": data.price,
            "unit": data.unit,
            "description": data.description,
            "ai_category": data.ai_category.value if data.ai_category else None,
            "image_id": data.image_id,
            "status": data.status.value,
            "expires_at": data.expires_at.isoformat(),
        }

        try:
            result = self.db.table(self.table).insert(record).execute()
        except Exception as e:
            logger.error("offer_create_failed", market_id=data.market_id, error=str(e))
            raise OfferPersistError(str(e), details={"market_id": data.market_id})

        if not result.data:
            raise OfferPersistError("No data returned from insert", details={"market_id": data.market_id})

        row = result.data[0]

        logger.info(
            "offer_created",
            id=row["id"],
            market_id=data.market_id,
            product_name=data.product_name,
            image_id=data.image_id
        )

        return self._row_to_response(row)

    def _row_to_response(self, row: dict) -> OfferResponse:
        """Convert database row to response model."""
        return OfferResponse(
            id=row["id"],
            market_id=row["market_id"],
            product_name=row["product_name"],
            price=row["price"],
            unit=row.get("unit"),
            description=row.get("description"),
            ai_category=row.get("ai_category"),
            image_id=row.get("image_id"),
            status=OfferStatus(row["status"]),
            expires_at=row["expires_at"],
            created_at=row.get("created_at"),
        )


# Singleton instance
_offer_service: Optional[OfferService] = None


def get_offer_service() -> OfferService:
    """Get or create OfferService instance."""
    global _offer_service
    if _offer_service is None:
        _offer_service = OfferService()
    return _offer_service
