"""
Unit tests for OfferService and MarketService.

Run: pytest tests/unit/test_offer_service.py -v
"""

import pytest
from datetime import timedelta

from services.offer_service import OfferService
from services.market_service import MarketService
from models.offer import OfferCategory, OfferStatus, StructuredOffer
from exceptions import DatabaseError, OfferPersistError


def _structured(**overrides) -> StructuredOffer:
    data = {
        "product_name": "Zitronen",
        "price": "1.00",
        "unit": "3 Stück",
        "description": "Saftige Zitronen für Limonade und Küche.",
        "category": "Obst & Gemüse",
    }
    data.update(overrides)
    return StructuredOffer(**data)


class TestBuildOffer:
    """Tests for OfferService.build_offer()"""

    def test_default_validity_is_seven_days(self, mock_db, t0):
        offer = OfferService().build_offer("market-1", _structured(), now=t0)

        assert offer.expires_at == t0 + timedelta(days=7)
        assert offer.status == OfferStatus.DRAFT
        assert offer.ai_category == OfferCategory.OBST_GEMUESE

    def test_stated_validity_wins(self, mock_db, t0):
        offer = OfferService().build_offer("market-1", _structured(validity_days=14), now=t0)

        assert offer.expires_at == t0 + timedelta(days=14)

    def test_image_is_optional(self, mock_db, t0):
        offer = OfferService().build_offer("market-1", _structured(), now=t0)

        assert offer.image_id is None


class TestCreate:
    """Tests for OfferService.create()"""

    def test_inserts_row(self, mock_db, mock_supabase, t0):
        service = OfferService()

        created = service.create(service.build_offer("market-1", _structured(), image_id="img-1", now=t0))

        row = mock_supabase.get_table_data("offers")[0]
        assert created.id == row["id"]
        assert row["unit"] == "3 Stück"
        assert row["ai_category"] == "Obst & Gemüse"
        assert row["image_id"] == "img-1"
        assert row["status"] == "draft"

    def test_insert_failure_raises(self, mock_db, mock_supabase, t0):
        mock_supabase.fail("offers", "insert")
        service = OfferService()

        with pytest.raises(OfferPersistError):
            service.create(service.build_offer("market-1", _structured(), now=t0))


class TestFindMarket:
    """Tests for MarketService.find_by_whatsapp_number()"""

    def test_registered_number(self, mock_db, mock_supabase, market_row):
        mock_supabase.set_table_data("markets", [
            {"id": "market-2", "name": "Obststand", "whatsapp_numbers": ["491600000000"]},
            market_row,
        ])

        market = MarketService().find_by_whatsapp_number("491701234567")

        assert market.id == "market-1"
        assert market.name == "Frischmarkt Yilmaz"

    def test_unregistered_number(self, mock_db, mock_supabase, market_row):
        mock_supabase.set_table_data("markets", [market_row])

        assert MarketService().find_by_whatsapp_number("4915200000000") is None

    def test_blank_number(self, mock_db):
        assert MarketService().find_by_whatsapp_number("  ") is None

    def test_lookup_failure_raises(self, mock_db, mock_supabase):
        mock_supabase.fail("markets", "select")

        with pytest.raises(DatabaseError):
            MarketService().find_by_whatsapp_number("491701234567")
