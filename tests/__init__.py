"""
Test suite for the offer ingestion pipeline.

Run all tests: pytest
Run unit tests only: pytest tests/unit/
Run specific file: pytest tests/unit/test_pending_message_service.py -v
"""
