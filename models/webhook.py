"""
Inbound WhatsApp message models.

Meta's webhook payload is deeply nested and mostly irrelevant here; the
route flattens it into an InboundMessage before anything else sees it.
"""

from typing import Literal, Optional
from pydantic import Field

from models.base import BaseSchema


class InboundMessage(BaseSchema):
    """One message as delivered by the webhook, flattened."""

    sender: str = Field(..., min_length=1, description="Sender phone number")
    message_type: Literal["text", "image"]
    wamid: Optional[str] = Field(None, description="WhatsApp message id")
    text: Optional[str] = Field(None, description="Body of a text message")
    media_id: Optional[str] = Field(None, description="Media id of an image message")
    caption: Optional[str] = Field(None, description="Caption of an image message")

    @property
    def caption_text(self) -> Optional[str]:
        """Text this fragment contributes to the merged caption."""
        value = self.text if self.message_type == "text" else self.caption
        return value or None
