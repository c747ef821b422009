"""
Market models.

Markets are managed elsewhere; the pipeline only reads them to map a
WhatsApp sender to the shop it posts for.
"""

from pydantic import Field

from models.base import BaseSchema


class MarketResponse(BaseSchema):
    """Market as seen by the ingestion pipeline."""

    id: str = Field(..., description="Market UUID")
    name: str = Field(..., description="Display name")
    whatsapp_numbers: list[str] = Field(
        default_factory=list,
        description="Sender numbers allowed to post offers for this market"
    )
