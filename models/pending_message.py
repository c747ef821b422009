"""
Pending message models.

A pending message is the "waiting room" row that accumulates fragments
from one sender for one market until the sender goes quiet.
"""

from typing import Optional
from datetime import datetime
from pydantic import Field

from models.base import BaseSchema


class PendingMessageResponse(BaseSchema):
    """
    Pending submission row.

    While is_processing is False, fragments may merge into it. Once True,
    the row is never modified again and is deleted after processing.
    """

    id: str = Field(..., description="Pending message UUID")
    sender_number: str = Field(..., description="WhatsApp sender number")
    market_id: str = Field(..., description="Target market UUID")

    # Merged content
    caption: Optional[str] = Field(None, description="Accumulated caption text")
    media_id: Optional[str] = Field(None, description="WhatsApp media id of the latest image")
    wamid: Optional[str] = Field(None, description="WhatsApp message id of the last fragment")

    # Timestamps
    created_at: datetime
    last_updated_at: datetime

    # Processing state
    is_processing: bool = False
    processed_at: Optional[datetime] = None

    @property
    def has_image(self) -> bool:
        return bool(self.media_id)
