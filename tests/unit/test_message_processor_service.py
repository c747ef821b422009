"""
Unit tests for MessageProcessorService.

Run: pytest tests/unit/test_message_processor_service.py -v
"""

import pytest
from datetime import timedelta
from unittest.mock import MagicMock

from services.message_processor_service import MessageProcessorService
from services.pending_message_service import PendingMessageService
from services.structuring_service import OfferStructuringService
from services.image_library_service import ImageLibraryService
from services.offer_service import OfferService
from models.offer import InvalidReason
from exceptions import WhatsAppError
from tests.factories import (
    ImageLibraryFactory,
    PendingMessageFactory,
    StructuringResponseFactory,
)

JPEG = (b"\xff\xd8\xff\xe0fake-jpeg", "image/jpeg")


@pytest.fixture
def notify():
    return MagicMock(return_value=True)


@pytest.fixture
def fetch_media():
    return MagicMock(return_value=JPEG)


@pytest.fixture
def build_processor(mock_db, fake_model, notify, fetch_media):
    """Build a processor whose model answers with the given texts."""

    def _build(*responses):
        pending = PendingMessageService()
        processor = MessageProcessorService(
            pending_service=pending,
            structuring_service=OfferStructuringService(client=fake_model(*responses)),
            image_library_service=ImageLibraryService(),
            offer_service=OfferService(),
            notify=notify,
            fetch_media=fetch_media,
        )
        return processor

    return _build


def _load(mock_supabase, row):
    mock_supabase.set_table_data("pending_messages", [row])
    return PendingMessageService()._row_to_response(row)


class TestProcessValid:
    """Valid submissions become offers"""

    def test_creates_draft_offer_and_deletes_pending(self, build_processor, mock_supabase, notify, t0):
        pending = _load(mock_supabase, PendingMessageFactory.create(
            id="pm-1", caption="Tomaten 500g\n2.49€", media_id="media-1", last_updated_at=t0
        ))
        processor = build_processor(StructuringResponseFactory.offer())

        result = processor.process(pending)

        offers = mock_supabase.get_table_data("offers")
        images = mock_supabase.get_table_data("image_library")
        assert result.success is True
        assert result.offer_id == offers[0]["id"]
        assert offers[0]["market_id"] == "market-1"
        assert offers[0]["product_name"] == "Tomaten"
        assert offers[0]["price"] == "2.49"
        assert offers[0]["unit"] == "500g"
        assert offers[0]["status"] == "draft"
        assert offers[0]["ai_category"] == "Obst & Gemüse"
        assert offers[0]["image_id"] == images[0]["id"]
        assert mock_supabase.get_table_data("pending_messages") == []
        notify.assert_not_called()

    def test_image_is_fetched_once(self, build_processor, mock_supabase, fetch_media, t0):
        pending = _load(mock_supabase, PendingMessageFactory.create(
            caption="Tomaten 2,49 €", media_id="media-1", last_updated_at=t0
        ))
        processor = build_processor(StructuringResponseFactory.offer())

        processor.process(pending)

        fetch_media.assert_called_once_with("media-1")

    def test_text_only_offer_reuses_library_image(self, build_processor, mock_supabase, fetch_media, t0):
        mock_supabase.set_table_data("image_library", [
            ImageLibraryFactory.create(id="img-tomaten", product_name="Tomaten")
        ])
        pending = _load(mock_supabase, PendingMessageFactory.create(
            caption="Tomaten 500g 2,49 €", media_id=None, last_updated_at=t0
        ))
        processor = build_processor(StructuringResponseFactory.offer())

        processor.process(pending)

        assert mock_supabase.get_table_data("offers")[0]["image_id"] == "img-tomaten"
        assert mock_supabase.storage.objects == {}
        fetch_media.assert_not_called()

    def test_expiry_uses_stated_validity(self, build_processor, mock_supabase, t0):
        pending = _load(mock_supabase, PendingMessageFactory.create(last_updated_at=t0))
        processor = build_processor(StructuringResponseFactory.offer(validity_days=3))

        processor.process(pending)

        offer = mock_supabase.get_table_data("offers")[0]
        created = processor.offers._row_to_response(offer)
        assert timedelta(days=3) - timedelta(minutes=1) < created.expires_at - created.created_at < timedelta(days=3, minutes=1)

    def test_image_download_failure_still_creates_offer(self, build_processor, mock_supabase, fetch_media, t0):
        fetch_media.side_effect = WhatsAppError("media expired")
        pending = _load(mock_supabase, PendingMessageFactory.create(
            caption="Gurken 0,79 €", media_id="media-1", last_updated_at=t0
        ))
        processor = build_processor(StructuringResponseFactory.offer(product_name="Gurken", price="0.79"))

        result = processor.process(pending)

        assert result.success is True
        assert mock_supabase.get_table_data("offers")[0]["image_id"] is None


class TestProcessInvalid:
    """Invalid submissions are rejected with a notice"""

    def test_missing_price_sends_german_notice(self, build_processor, mock_supabase, notify, t0):
        pending = _load(mock_supabase, PendingMessageFactory.create(
            id="pm-1", caption="Tomaten", last_updated_at=t0
        ))
        processor = build_processor(StructuringResponseFactory.invalid("MISSING_PRICE"))

        result = processor.process(pending)

        assert result.success is False
        assert result.invalid_reason == InvalidReason.MISSING_PRICE
        notify.assert_called_once_with(
            "491701234567",
            "Ich sehe keinen Preis. Bitte sende den Preis zusammen mit dem Produktnamen."
        )
        assert mock_supabase.get_table_data("offers") == []
        assert mock_supabase.get_table_data("pending_messages") == []

    def test_off_format_answer_sends_unclear_notice(self, build_processor, mock_supabase, notify, t0):
        """A JSON answer with a list as product name is rejected as unclear."""
        pending = _load(mock_supabase, PendingMessageFactory.create(
            id="pm-1", caption="Tomaten 2,49", last_updated_at=t0
        ))
        processor = build_processor(StructuringResponseFactory.offer(product_name=["Tomaten"]))

        result = processor.process(pending)

        assert result.success is False
        assert result.error is None
        assert result.invalid_reason == InvalidReason.UNCLEAR_MESSAGE
        notify.assert_called_once_with(
            "491701234567",
            "Ich konnte kein Angebot erkennen. Bitte sende Produktname und Preis zusammen mit dem Bild."
        )
        assert mock_supabase.get_table_data("offers") == []
        assert mock_supabase.get_table_data("pending_messages") == []

    def test_notice_failure_does_not_break_processing(self, build_processor, mock_supabase, notify, t0):
        notify.side_effect = WhatsAppError("rate limited")
        pending = _load(mock_supabase, PendingMessageFactory.create(caption="Hallo", last_updated_at=t0))
        processor = build_processor(StructuringResponseFactory.invalid("UNCLEAR_MESSAGE"))

        result = processor.process(pending)

        assert result.invalid_reason == InvalidReason.UNCLEAR_MESSAGE
        assert mock_supabase.get_table_data("pending_messages") == []


class TestProcessLifecycle:
    """Claiming and cleanup"""

    def test_already_claimed_record_is_skipped(self, build_processor, mock_supabase, notify, t0):
        row = PendingMessageFactory.create(id="pm-1", last_updated_at=t0)
        pending = _load(mock_supabase, row)
        mock_supabase.set_table_data("pending_messages", [{**row, "is_processing": True}])
        processor = build_processor(StructuringResponseFactory.offer())

        result = processor.process(pending)

        assert result.skipped is True
        assert mock_supabase.get_table_data("offers") == []
        assert len(mock_supabase.get_table_data("pending_messages")) == 1
        notify.assert_not_called()

    def test_second_process_call_is_a_no_op(self, build_processor, mock_supabase, t0):
        pending = _load(mock_supabase, PendingMessageFactory.create(last_updated_at=t0))
        processor = build_processor(StructuringResponseFactory.offer())

        first = processor.process(pending)
        second = processor.process(pending)

        assert first.success is True
        assert second.skipped is True
        assert len(mock_supabase.get_table_data("offers")) == 1

    def test_offer_insert_failure_still_deletes_pending(self, build_processor, mock_supabase, t0):
        mock_supabase.fail("offers", "insert")
        pending = _load(mock_supabase, PendingMessageFactory.create(last_updated_at=t0))
        processor = build_processor(StructuringResponseFactory.offer())

        result = processor.process(pending)

        assert result.success is False
        assert result.error
        assert mock_supabase.get_table_data("pending_messages") == []

    def test_unexpected_error_still_deletes_pending(self, build_processor, mock_supabase, t0):
        pending = _load(mock_supabase, PendingMessageFactory.create(last_updated_at=t0))
        processor = build_processor(StructuringResponseFactory.offer())
        processor.structuring.validate = MagicMock(side_effect=RuntimeError("boom"))

        result = processor.process(pending)

        assert result.success is False
        assert result.error == "boom"
        assert mock_supabase.get_table_data("pending_messages") == []

    def test_claim_failure_leaves_record_for_next_sweep(self, build_processor, mock_supabase, t0):
        pending = _load(mock_supabase, PendingMessageFactory.create(last_updated_at=t0))
        processor = build_processor(StructuringResponseFactory.offer())
        mock_supabase.fail("pending_messages", "update")

        result = processor.process(pending)

        assert result.success is False
        assert result.skipped is False
        assert len(mock_supabase.get_table_data("pending_messages")) == 1
