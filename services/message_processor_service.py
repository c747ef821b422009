"""
Message processor service.

Runs one ready pending submission through the pipeline:

    claim (is_processing) → structure → reject & notify
                                      → resolve image → create offer
    → delete the pending row (always)

A record is processed at most once. Failures are never retried for the
same record; the sender has to send the offer again.
"""

from typing import Callable, Optional
import structlog

from models.offer import InvalidSubmission, StructuredOffer
from models.pending_message import PendingMessageResponse
from models.sweep import ProcessResult
from exceptions import AppError, DatabaseError, OfferPersistError, WhatsAppError
from integrations.whatsapp import download_media, send_text_message
from integrations.whatsapp_messages import get_rejection_message
from services.pending_message_service import PendingMessageService, get_pending_message_service
from services.structuring_service import OfferStructuringService, get_structuring_service
from services.image_library_service import ImageLibraryService, get_image_library_service
from services.offer_service import OfferService, get_offer_service
from utils.text_utils import mask_phone

logger = structlog.get_logger(__name__)


class MessageProcessorService:
    """
    Processes ready pending submissions into offers or rejections.
    """

    def __init__(
        self,
        pending_service: Optional[PendingMessageService] = None,
        structuring_service: Optional[OfferStructuringService] = None,
        image_library_service: Optional[ImageLibraryService] = None,
        offer_service: Optional[OfferService] = None,
        notify: Optional[Callable[[str, str], bool]] = None,
        fetch_media: Optional[Callable[[str], tuple[bytes, str]]] = None,
    ):
        self.pending = pending_service or get_pending_message_service()
        self.structuring = structuring_service or get_structuring_service()
        self.images = image_library_service or get_image_library_service()
        self.offers = offer_service or get_offer_service()
        self.notify = notify or send_text_message
        self.fetch_media = fetch_media or download_media

    def process(self, pending: PendingMessageResponse) -> ProcessResult:
        """
        Process one pending submission.

        Args:
            pending: A submission that was found ready

        Returns:
            ProcessResult. skipped=True means another worker had already
            claimed the record and nothing was done.
        """
        log = logger.bind(
            pending_message_id=pending.id,
            sender=mask_phone(pending.sender_number),
            market_id=pending.market_id
        )

        try:
            claimed = self.pending.mark_processing(pending.id)
        except DatabaseError as e:
            # State unchanged: the next sweep picks it up again
            log.error("claim_failed", error=e.message)
            return ProcessResult(pending_message_id=pending.id, error=e.message)

        if not claimed:
            return ProcessResult(pending_message_id=pending.id, skipped=True)

        log.info(
            "processing_pending_message",
            caption_length=len(pending.caption or ""),
            has_image=pending.has_image
        )

        try:
            return self._process_claimed(pending, log)
        except Exception as e:
            log.error(
                "pending_message_processing_failed",
                error=str(e),
                error_type=type(e).__name__
            )
            return ProcessResult(pending_message_id=pending.id, error=str(e))
        finally:
            try:
                self.pending.delete(pending.id)
            except DatabaseError as e:
                log.error("pending_message_cleanup_failed", error=e.message)

    def _process_claimed(self, pending: PendingMessageResponse, log) -> ProcessResult:
        image = None
        if pending.media_id:
            try:
                image = self.fetch_media(pending.media_id)
            except WhatsAppError as e:
                # The model still sees the caption; the offer goes without image
                log.warning("submission_image_unavailable", media_id=pending.media_id, error=e.message)

        outcome = self.structuring.validate(pending.caption, image)

        if isinstance(outcome, InvalidSubmission):
            log.info("submission_rejected", reason=outcome.reason.value)
            self._send_rejection(pending.sender_number, outcome, log)
            return ProcessResult(
                pending_message_id=pending.id,
                invalid_reason=outcome.reason
            )

        structured: StructuredOffer = outcome

        image_id = self.images.resolve_image(
            pending.media_id if image is not None else None,
            structured.product_name,
            image=image
        )

        try:
            offer = self.offers.create(
                self.offers.build_offer(pending.market_id, structured, image_id=image_id)
            )
        except OfferPersistError as e:
            # The pending row is deleted regardless, so the content only survives in this log line
            log.error(
                "offer_persist_failed_submission_lost",
                error=e.message,
                caption=pending.caption,
                media_id=pending.media_id,
                structured=structured.model_dump(mode="json")
            )
            return ProcessResult(pending_message_id=pending.id, error=e.message)

        log.info("pending_message_processed", offer_id=offer.id, image_id=image_id)

        return ProcessResult(
            pending_message_id=pending.id,
            success=True,
            offer_id=offer.id
        )

    def _send_rejection(self, to_number: str, outcome: InvalidSubmission, log) -> None:
        try:
            self.notify(to_number, get_rejection_message(outcome.reason))
        except AppError as e:
            log.error("rejection_notice_failed", reason=outcome.reason.value, error=e.message)


# Singleton instance
_message_processor_service: Optional[MessageProcessorService] = None


def get_message_processor_service() -> MessageProcessorService:
    """Get or create MessageProcessorService instance."""
    global _message_processor_service
    if _message_processor_service is None:
        _message_processor_service = MessageProcessorService()
    return _message_processor_service
