"""
Processing result models.
"""

from datetime import datetime
from typing import Optional
from pydantic import Field

from models.base import BaseSchema
from models.offer import InvalidReason


class ProcessResult(BaseSchema):
    """Outcome of processing one pending submission."""

    pending_message_id: str
    success: bool = False
    skipped: bool = Field(False, description="Another worker already claimed the record")
    offer_id: Optional[str] = None
    invalid_reason: Optional[InvalidReason] = None
    error: Optional[str] = None


class SweepSummary(BaseSchema):
    """Response of the periodic sweep endpoint."""

    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    timestamp: datetime
