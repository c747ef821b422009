"""
Market service for mapping WhatsApp senders to markets.
"""

from typing import Optional
import structlog

from config import get_supabase_client
from models.market import MarketResponse
from exceptions import DatabaseError
from utils.text_utils import mask_phone

logger = structlog.get_logger(__name__)


class MarketService:
    """
    Read-only market lookups for the ingestion pipeline.
    """

    def __init__(self):
        self.db = get_supabase_client()
        self.table = "markets"

    def find_by_whatsapp_number(self, number: str) -> Optional[MarketResponse]:
        """
        Find the market a WhatsApp number is registered for.

        Args:
            number: Sender phone number as delivered by the webhook

        Returns:
            MarketResponse if the number is registered, None otherwise

        Raises:
            DatabaseError: If the lookup fails
        """
        if not number or not number.strip():
            return None

        logger.debug("finding_market_by_number", number=mask_phone(number))

        try:
            result = (
                self.db.table(self.table)
                .select("id, name, whatsapp_numbers")
                .contains("whatsapp_numbers", [number])
                .limit(1)
                .execute()
            )
        except Exception as e:
            logger.error("find_market_failed", number=mask_phone(number), error=str(e))
            raise DatabaseError("select", str(e))

        if not result.data:
            logger.info("market_not_found_for_number", number=mask_phone(number))
            return None

        row = result.data[0]
        return MarketResponse(
            id=row["id"],
            name=row["name"],
            whatsapp_numbers=row.get("whatsapp_numbers") or [],
        )


# Singleton instance
_market_service: Optional[MarketService] = None


def get_market_service() -> MarketService:
    """Get or create MarketService instance."""
    global _market_service
    if _market_service is None:
        _market_service = MarketService()
    return _market_service
