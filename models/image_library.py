"""
Image library models.

Catalog of product images already ingested, reused for repeat offers.
Entries are never updated or deleted by the pipeline.
"""

from datetime import datetime
from typing import Optional
from pydantic import Field

from models.base import BaseSchema


class ImageLibraryEntryCreate(BaseSchema):
    """Create a new library entry."""

    url: str = Field(..., min_length=1, description="Permanent public URL")
    product_name: str = Field(..., min_length=1, max_length=255, description="Product shown in the image")


class ImageLibraryEntryResponse(BaseSchema):
    """Library entry response."""

    id: str
    url: str
    product_name: str
    created_at: Optional[datetime] = None
