"""Shared test fixtures for the webhook pipeline test suite.

Provides:
- app: Flask app configured for testing (in-memory SQLite)
- db_session: clean database per test (tables created/dropped)
- store: SqlAlchemyStore bound to the test session
- memory_store: dict-backed store with the same unique keys, for
  concurrency and call-count assertions
- make_webhook_row: insert an asaas_webhook_events row directly
"""

import threading
import uuid
from datetime import datetime, timedelta, timezone

import pytest

from payhooks import create_app
from payhooks.exceptions import DuplicateKeyError
from payhooks.extensions import db as _db
from payhooks.models.webhook_event import WebhookEvent
from payhooks.services.store import (
    PAYMENTS,
    SUBSCRIPTIONS,
    WEBHOOK_EVENTS,
    SqlAlchemyStore,
)


class MemoryStore:
    """In-memory store honoring the same unique keys as the real schema.

    Inserts are serialized by a lock so the unique check and the append
    are atomic, like a database unique constraint. Every call is recorded
    in `calls` as (operation, table).
    """

    UNIQUE_KEYS = {
        WEBHOOK_EVENTS: "event_id",
        SUBSCRIPTIONS: "external_ref",
        PAYMENTS: "external_payment_ref",
    }

    def __init__(self):
        self.tables = {table: [] for table in self.UNIQUE_KEYS}
        self.calls = []
        self._lock = threading.Lock()

    def insert(self, table, row):
        self.calls.append(("insert", table))
        key = self.UNIQUE_KEYS[table]
        with self._lock:
            if any(r.get(key) == row.get(key) for r in self.tables[table]):
                raise DuplicateKeyError(f"duplicate key on {table}.{key}")
            stored = {"id": str(uuid.uuid4())}
            if table == WEBHOOK_EVENTS:
                stored.update(retry_count=0, last_error=None,
                              processed_at=None, processing_time_ms=None)
            stored.update(row)
            self.tables[table].append(stored)
            return dict(stored)

    def select_one(self, table, column, value):
        self.calls.append(("select_one", table))
        for row in self.tables[table]:
            if row.get(column) == value:
                return dict(row)
        return None

    def select_many(self, table, column=None, values=None, limit=None):
        self.calls.append(("select_many", table))
        rows = [
            dict(row) for row in self.tables[table]
            if column is None or row.get(column) in (values or [])
        ]
        return rows[:limit] if limit is not None else rows

    def update(self, table, values, column, value):
        self.calls.append(("update", table))
        count = 0
        with self._lock:
            for row in self.tables[table]:
                if row.get(column) == value:
                    row.update(values)
                    count += 1
        return count


@pytest.fixture(scope="session")
def app():
    """Create the Flask application configured for testing."""
    app = create_app("testing")
    yield app


@pytest.fixture(autouse=True)
def db_session(app):
    """Create all tables before each test, drop after."""
    with app.app_context():
        _db.create_all()
        yield _db.session
        _db.session.rollback()
        _db.drop_all()


@pytest.fixture
def store(db_session):
    """SqlAlchemyStore writing through the per-test session."""
    return SqlAlchemyStore(db_session)


@pytest.fixture
def memory_store():
    return MemoryStore()


@pytest.fixture
def make_webhook_row(db_session):
    """Factory inserting a WebhookEvent row with a valid payload.

    Rows get increasing created_at values in call order.
    """
    base = datetime(2026, 1, 1, tzinfo=timezone.utc)
    counter = {"n": 0}

    def _make(event_id, event_type="SUBSCRIPTION_CREATED", status="pending",
              retry_count=0, payload=None, **extra):
        counter["n"] += 1
        if payload is None:
            payload = {
                "id": event_id,
                "event": event_type,
                "dateCreated": "2026-01-01",
                "subscription": {"id": f"sub_{event_id}"},
            }
        row = WebhookEvent(
            event_id=event_id,
            event_type=event_type,
            external_id=f"sub_{event_id}",
            payload=payload,
            status=status,
            retry_count=retry_count,
            created_at=base + timedelta(seconds=counter["n"]),
            **extra,
        )
        db_session.add(row)
        db_session.commit()
        return row

    return _make
