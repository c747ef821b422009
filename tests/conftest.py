"""
Shared test fixtures.

The Supabase mock keeps rows in memory and honours the filters the
services use, so conditional updates (claiming a pending message) behave
like the real table.
"""

import os
import sys
from pathlib import Path

# Add project directory to Python path
project_dir = Path(__file__).parent.parent
sys.path.insert(0, str(project_dir))

# Settings are loaded at import time
os.environ.setdefault("SUPABASE_URL", "https://test-project.supabase.co")
os.environ.setdefault("SUPABASE_KEY", "test-anon-key")
os.environ.setdefault("ENVIRONMENT", "development")

import copy
import pytest
from unittest.mock import patch
from datetime import datetime, timezone
from types import SimpleNamespace
from typing import Generator, Optional
from uuid import uuid4

SERVICE_MODULES = [
    "services.market_service",
    "services.pending_message_service",
    "services.image_library_service",
    "services.offer_service",
]

SINGLETONS = [
    ("services.market_service", "_market_service"),
    ("services.pending_message_service", "_pending_message_service"),
    ("services.structuring_service", "_structuring_service"),
    ("services.image_library_service", "_image_library_service"),
    ("services.offer_service", "_offer_service"),
    ("services.message_processor_service", "_message_processor_service"),
    ("services.readiness_service", "_readiness_scheduler"),
]


# ===================
# MOCK SUPABASE CLIENT
# ===================

class MockSupabaseResponse:
    """Mock Supabase query response."""

    def __init__(self, data: list = None, count: int = None):
        self.data = data or []
        self.count = count if count is not None else len(self.data)


class MockSupabaseQuery:
    """Chainable query that runs against the client's in-memory rows."""

    def __init__(self, client: "MockSupabaseClient", table_name: str):
        self._client = client
        self._table_name = table_name
        self._operation = "select"
        self._payload = None
        self._filters = []
        self._order = None
        self._limit = None

    # Operations

    def select(self, *args, **kwargs):
        self._operation = "select"
        return self

    def insert(self, data):
        self._operation = "insert"
        self._payload = data
        return self

    def update(self, data):
        self._operation = "update"
        self._payload = data
        return self

    def delete(self):
        self._operation = "delete"
        return self

    # Filters

    def eq(self, column, value):
        self._filters.append(lambda row: row.get(column) == value)
        return self

    def neq(self, column, value):
        self._filters.append(lambda row: row.get(column) != value)
        return self

    def lt(self, column, value):
        self._filters.append(lambda row: row.get(column) is not None and row[column] < value)
        return self

    def lte(self, column, value):
        self._filters.append(lambda row: row.get(column) is not None and row[column] <= value)
        return self

    def gte(self, column, value):
        self._filters.append(lambda row: row.get(column) is not None and row[column] >= value)
        return self

    def contains(self, column, values):
        self._filters.append(lambda row: all(v in (row.get(column) or []) for v in values))
        return self

    # Modifiers

    def order(self, column, desc: bool = False, **kwargs):
        self._order = (column, desc)
        return self

    def limit(self, count):
        self._limit = count
        return self

    def execute(self) -> MockSupabaseResponse:
        self._client.check_failure(self._table_name, self._operation)
        rows = self._client.rows(self._table_name)

        if self._operation == "insert":
            items = self._payload if isinstance(self._payload, list) else [self._payload]
            inserted = []
            for item in items:
                row = {**item}
                row.setdefault("id", str(uuid4()))
                row.setdefault("created_at", datetime.now(timezone.utc).isoformat(timespec="microseconds"))
                self._client.check_unique(self._table_name, row)
                rows.append(row)
                inserted.append(copy.deepcopy(row))
            return MockSupabaseResponse(data=inserted)

        matched = [row for row in rows if all(f(row) for f in self._filters)]

        if self._operation == "update":
            for row in matched:
                row.update(copy.deepcopy(self._payload))
            return MockSupabaseResponse(data=copy.deepcopy(matched))

        if self._operation == "delete":
            for row in matched:
                rows.remove(row)
            return MockSupabaseResponse(data=copy.deepcopy(matched))

        if self._order:
            column, desc = self._order
            matched = sorted(matched, key=lambda row: row.get(column) or "", reverse=desc)
        if self._limit is not None:
            matched = matched[:self._limit]
        return MockSupabaseResponse(data=copy.deepcopy(matched))


class MockStorageBucket:
    """Mock storage bucket keeping uploads in a dict."""

    def __init__(self, storage: "MockStorage", name: str):
        self._storage = storage
        self.name = name

    def upload(self, path, file, file_options=None):
        if self._storage.fail_uploads:
            raise Exception("simulated storage failure")
        self._storage.objects[(self.name, path)] = {
            "content": file,
            "options": file_options or {},
        }
        return SimpleNamespace(path=path)

    def get_public_url(self, path):
        return f"https://test-project.supabase.co/storage/v1/object/public/{self.name}/{path}"


class MockStorage:
    """Mock Supabase storage."""

    def __init__(self):
        self.objects = {}
        self.fail_uploads = False

    def from_(self, bucket: str) -> MockStorageBucket:
        return MockStorageBucket(self, bucket)


class MockSupabaseClient:
    """In-memory Supabase client."""

    def __init__(self):
        self._tables = {}
        self._failures = set()
        self._unique = {}
        self.storage = MockStorage()

    def set_table_data(self, table_name: str, data: list):
        """Replace the rows of a table."""
        self._tables[table_name] = copy.deepcopy(data)

    def get_table_data(self, table_name: str) -> list:
        """Current rows of a table."""
        return copy.deepcopy(self._tables.get(table_name, []))

    def rows(self, table_name: str) -> list:
        return self._tables.setdefault(table_name, [])

    def fail(self, table_name: str, operation: str):
        """Make every <operation> on <table_name> raise."""
        self._failures.add((table_name, operation))

    def check_failure(self, table_name: str, operation: str):
        if (table_name, operation) in self._failures:
            raise Exception(f"simulated {operation} failure on {table_name}")

    def add_unique_constraint(self, table_name: str, columns: tuple, where: Optional[dict] = None):
        """Reject inserts that collide on columns among rows matching where."""
        self._unique[table_name] = (columns, where or {})

    def check_unique(self, table_name: str, row: dict):
        if table_name not in self._unique:
            return
        columns, where = self._unique[table_name]
        if any(row.get(k) != v for k, v in where.items()):
            return
        for existing in self.rows(table_name):
            if any(existing.get(k) != v for k, v in where.items()):
                continue
            if all(existing.get(c) == row.get(c) for c in columns):
                raise Exception("duplicate key value violates unique constraint")

    def table(self, name: str) -> MockSupabaseQuery:
        return MockSupabaseQuery(self, name)


# ===================
# MOCK STRUCTURING MODEL
# ===================

class FakeMessages:
    """Stands in for anthropic.Anthropic().messages."""

    def __init__(self, responses: list):
        self._responses = list(responses)
        self.calls = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        response = self._responses.pop(0) if len(self._responses) > 1 else self._responses[0]
        if isinstance(response, Exception):
            raise response
        return SimpleNamespace(content=[SimpleNamespace(type="text", text=response)])


class FakeAnthropicClient:
    """Returns canned answers in order; the last one repeats."""

    def __init__(self, *responses):
        self.messages = FakeMessages(responses or [""])


# ===================
# FIXTURES
# ===================

@pytest.fixture
def mock_supabase() -> MockSupabaseClient:
    """
    Create an in-memory Supabase client.

    Usage:
        def test_something(mock_supabase):
            mock_supabase.set_table_data("markets", [
                {"id": "market-1", "name": "Frischmarkt", ...}
            ])
    """
    client = MockSupabaseClient()
    client.add_unique_constraint(
        "pending_messages",
        ("sender_number", "market_id"),
        where={"is_processing": False}
    )
    return client


@pytest.fixture
def mock_db(mock_supabase) -> Generator:
    """
    Patch the database client with the mock.

    Usage:
        def test_something(mock_db, mock_supabase):
            service = PendingMessageService()
            # service.db is the mock
    """
    patches = [patch("config.database.get_supabase_client", return_value=mock_supabase)]
    patches += [
        patch(f"{module}.get_supabase_client", return_value=mock_supabase)
        for module in SERVICE_MODULES
    ]
    for p in patches:
        p.start()
    try:
        yield mock_supabase
    finally:
        for p in reversed(patches):
            p.stop()


@pytest.fixture(autouse=True)
def reset_service_singletons(monkeypatch):
    """Service singletons must not leak a mock client between tests."""
    import importlib

    for module_name, attribute in SINGLETONS:
        module = importlib.import_module(module_name)
        monkeypatch.setattr(module, attribute, None)


@pytest.fixture
def fake_model():
    """
    Factory for a fake Anthropic client.

    Usage:
        def test_something(fake_model):
            client = fake_model('{"product_name": "Tomaten", "price": "2.49"}')
            service = OfferStructuringService(client=client)
    """
    return FakeAnthropicClient


@pytest.fixture
def market_row() -> dict:
    """Registered market for sender 491701234567."""
    return {
        "id": "market-1",
        "name": "Frischmarkt Yilmaz",
        "whatsapp_numbers": ["491701234567"],
    }


@pytest.fixture
def t0() -> datetime:
    """Fixed reference time."""
    return datetime(2025, 6, 2, 9, 30, 0, tzinfo=timezone.utc)


# ===================
# API TEST CLIENT
# ===================

@pytest.fixture
def test_client_with_mock_db(mock_db, mock_supabase, market_row):
    """
    Create FastAPI test client with mocked database and one market.

    Usage:
        def test_endpoint(test_client_with_mock_db, mock_supabase):
            response = test_client_with_mock_db.post("/api/webhooks/whatsapp", json={...})
    """
    from fastapi.testclient import TestClient
    from main import app

    mock_supabase.set_table_data("markets", [market_row])
    with patch("main.check_connection", return_value={"status": "healthy", "markets_count": 1, "pending_messages_count": 0}):
        yield TestClient(app)
