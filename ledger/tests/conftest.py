"""Shared fixtures for Ledger tests."""

from __future__ import annotations

from datetime import datetime

import pytest

from ledger.src.models import Client, ClientStatus
from ledger.src.store import InMemoryBackend, RecordStore


@pytest.fixture
def now() -> datetime:
    """A fixed reference time."""
    return datetime(2024, 3, 15, 12, 0, 0)


@pytest.fixture
def backend() -> InMemoryBackend:
    """Empty in-memory backend."""
    return InMemoryBackend()


@pytest.fixture
def store(backend: InMemoryBackend) -> RecordStore:
    """Empty record store over the in-memory backend."""
    return RecordStore(backend)


@pytest.fixture
def acme(store: RecordStore) -> Client:
    """A stored active client."""
    return store.clients.create(
        {
            "name": "Acme Corporation",
            "email": "ops@acme.example",
            "company": "Acme",
            "industry": "Manufacturing",
            "status": ClientStatus.ACTIVE,
        }
    )
