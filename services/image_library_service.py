"""
Image library service.

Decides which image an offer gets: a freshly submitted photo is uploaded
and catalogued, otherwise a previously catalogued photo of the same
product is reused. Image problems never fail an offer.
"""

import uuid
from typing import Optional
from datetime import datetime, timezone
import structlog
from rapidfuzz import fuzz

from config import get_supabase_client, settings
from models.image_library import ImageLibraryEntryCreate, ImageLibraryEntryResponse
from exceptions import AppError, DatabaseError, ImageStorageError
from integrations.whatsapp import download_media
from utils.text_utils import clean_product_name, normalize_product_name

logger = structlog.get_logger(__name__)

STORAGE_PREFIX = "whatsapp"

EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
    "image/gif": "gif",
}


class ImageLibraryService:
    """
    Service for the reusable product image catalog.

    Handles:
    - Uploading submitted photos to Supabase Storage
    - Cataloguing them by product name
    - Looking up existing photos for reuse
    """

    def __init__(self, match_threshold: Optional[int] = None):
        self.db = get_supabase_client()
        self.table = "image_library"
        self.bucket = settings.offer_images_bucket
        self.match_threshold = (
            settings.image_match_threshold if match_threshold is None else match_threshold
        )

    def resolve_image(
        self,
        media_id: Optional[str],
        product_name: str,
        image: Optional[tuple[bytes, str]] = None
    ) -> Optional[str]:
        """
        Pick the library entry an offer should reference.

        - New image supplied → upload, catalogue under product_name, return new id
        - No new image → return the id of an existing entry for product_name

        Args:
            media_id: WhatsApp media id submitted with the offer, if any
            product_name: Resolved product name
            image: Already downloaded (bytes, mime type) for media_id

        Returns:
            Image library id, or None (offer is created without image)
        """
        if media_id:
            return self._ingest_new_image(media_id, product_name, image)

        try:
            existing = self.find_by_product_name(product_name)
        except DatabaseError as e:
            logger.error("image_library_lookup_failed", product_name=product_name, error=e.message)
            return None

        if existing:
            logger.info("image_library_reused", image_id=existing.id, product_name=product_name)
            return existing.id

        logger.info("image_library_no_match", product_name=product_name)
        return None

    def find_by_product_name(self, product_name: str) -> Optional[ImageLibraryEntryResponse]:
        """
        Find a catalogued image for a product.

        Exact match on the cleaned name first. If a fuzzy threshold is
        configured, fall back to the best token-sort match above it.

        Raises:
            DatabaseError: If the query fails
        """
        name = clean_product_name(product_name)
        if not name:
            return None

        try:
            result = (
                self.db.table(self.table)
                .select("*")
                .eq("product_name", name)
                .order("created_at")
                .limit(1)
                .execute()
            )
        except Exception as e:
            raise DatabaseError("select", str(e))

        if result.data:
            return self._row_to_response(result.data[0])

        if not self.match_threshold:
            return None

        return self._find_fuzzy(name)

    def _find_fuzzy(self, name: str) -> Optional[ImageLibraryEntryResponse]:
        try:
            result = self.db.table(self.table).select("*").execute()
        except Exception as e:
            raise DatabaseError("select", str(e))

        target = normalize_product_name(name)
        best_row, best_score = None, 0

        for row in result.data or []:
            candidate = normalize_product_name(row.get("product_name"))
            if not candidate:
                continue
            score = int(fuzz.token_sort_ratio(target, candidate))
            if score > best_score:
                best_row, best_score = row, score

        if best_row and best_score >= self.match_threshold:
            logger.info(
                "image_library_fuzzy_match",
                search_name=name,
                matched_name=best_row["product_name"],
                score=best_score
            )
            return self._row_to_response(best_row)

        return None

    def upload_image(self, image_bytes: bytes, mime_type: str) -> str:
        """
        Upload image bytes to the offer images bucket.

        Returns:
            Public URL of the stored object

        Raises:
            ImageStorageError: If upload fails
        """
        extension = EXTENSIONS.get(mime_type, "jpg")
        timestamp = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")
        storage_path = f"{STORAGE_PREFIX}-{timestamp}-{str(uuid.uuid4())[:8]}.{extension}"

        logger.debug(
            "uploading_image_to_storage",
            storage_path=storage_path,
            size_bytes=len(image_bytes)
        )

        try:
            bucket = self.db.storage.from_(self.bucket)
            bucket.upload(
                storage_path,
                image_bytes,
                file_options={"content-type": mime_type, "upsert": "false"}
            )
            public_url = bucket.get_public_url(storage_path)
        except Exception as e:
            logger.error("image_upload_failed", storage_path=storage_path, error=str(e))
            raise ImageStorageError(f"Failed to upload image: {e}")

        logger.info("image_uploaded_to_storage", storage_path=storage_path)
        return public_url

    def create_entry(self, data: ImageLibraryEntryCreate) -> ImageLibraryEntryResponse:
        """
        Catalogue an uploaded image.

        Raises:
            ImageStorageError: If the insert fails
        """
        try:
            result = self.db.table(self.table).insert({
                "url": data.url,
                "product_name": data.product_name,
            }).execute()
        except Exception as e:
            logger.error("image_library_insert_failed", product_name=data.product_name, error=str(e))
            raise ImageStorageError(f"Failed to catalogue image: {e}")

        if not result.data:
            raise ImageStorageError("No data returned from image library insert")

        entry = self._row_to_response(result.data[0])
        logger.info("image_library_entry_created", image_id=entry.id, product_name=entry.product_name)
        return entry

    def _ingest_new_image(
        self,
        media_id: str,
        product_name: str,
        image: Optional[tuple[bytes, str]]
    ) -> Optional[str]:
        try:
            if image is None:
                image = download_media(media_id)
            image_bytes, mime_type = image

            url = self.upload_image(image_bytes, mime_type)
            entry = self.create_entry(ImageLibraryEntryCreate(
                url=url,
                product_name=clean_product_name(product_name) or product_name,
            ))
            return entry.id

        except AppError as e:
            logger.error(
                "image_ingest_failed",
                media_id=media_id,
                product_name=product_name,
                error=e.message
            )
            return None

    def _row_to_response(self, row: dict) -> ImageLibraryEntryResponse:
        """Convert database row to response model."""
        return ImageLibraryEntryResponse(
            id=row["id"],
            url=row["url"],
            product_name=row["product_name"],
            created_at=row.get("created_at"),
        )


# Singleton instance
_image_library_service: Optional[ImageLibraryService] = None


def get_image_library_service() -> ImageLibraryService:
    """Get or create ImageLibraryService instance."""
    global _image_library_service
    if _image_library_service is None:
        _image_library_service = ImageLibraryService()
    return _image_library_service
