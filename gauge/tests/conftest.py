"""Shared fixtures for Gauge tests."""

from __future__ import annotations

from datetime import datetime, timedelta

import pytest

from ledger.src.models import Client
from ledger.src.store import InMemoryBackend, RecordStore


@pytest.fixture
def now() -> datetime:
    """A fixed reference time."""
    return datetime(2024, 3, 15, 12, 0, 0)


@pytest.fixture
def store() -> RecordStore:
    """Empty record store."""
    return RecordStore(InMemoryBackend())


@pytest.fixture
def clients(store: RecordStore) -> list[Client]:
    """Two stored clients, the second without an industry."""
    return [
        store.clients.create(
            {"name": "Acme Corporation", "email": "ops@acme.example", "industry": "Manufacturing"}
        ),
        store.clients.create({"name": "Blue Harbor", "email": "desk@harbor.example"}),
    ]


@pytest.fixture
def populated_store(store: RecordStore, clients: list[Client], now: datetime) -> RecordStore:
    """Store with three recent feedback records and one 60 days old.

    Per-record averages: Acme 4.5 (yesterday, website), Acme 3.0 and
    Blue 4.0 (two days ago, email / website), Acme 1.0 (60 days ago).
    """
    acme, blue = clients
    rows = [
        (acme.id, now - timedelta(days=1), [5, 4], "website"),
        (acme.id, now - timedelta(days=2), [3], "email"),
        (blue.id, now - timedelta(days=2), [4], "website"),
        (acme.id, now - timedelta(days=60), [1], None),
    ]
    for client_id, when, values, source in rows:
        store.feedback.create(
            {
                "client_id": client_id,
                "submitted_at": when,
                "ratings": [{"question_ref": f"q{i}", "value": v} for i, v in enumerate(values)],
                "source": source,
            }
        )
    return store
