"""Record store construction from configuration."""

from __future__ import annotations

import logging

from ledger.src.demo_data import seed_demo_data
from ledger.src.remote import RemoteBackend
from ledger.src.store import InMemoryBackend, RecordStore
from shared.config import StoreConfig

logger = logging.getLogger(__name__)


def create_record_store(config: StoreConfig | None = None) -> RecordStore:
    """Create a RecordStore for the configured backend.

    Args:
        config: Store settings. Defaults to an in-memory store with demo data.

    Returns:
        RecordStore wired to the selected backend.

    Raises:
        ValueError: If the backend name is unknown.
    """
    cfg = config or StoreConfig()

    if cfg.backend == "memory":
        store = RecordStore(InMemoryBackend())
        if cfg.seed_demo_data:
            seed_demo_data(store)
        logger.info("Using in-memory record store (demo data: %s)", cfg.seed_demo_data)
        return store

    if cfg.backend == "remote":
        backend = RemoteBackend(
            base_url=cfg.base_url,
            project_id=cfg.project_id,
            api_key=cfg.api_key,
            timeout=cfg.timeout_seconds,
            max_attempts=cfg.max_retries,
        )
        logger.info("Using remote record store at %s", backend.base_url)
        return RecordStore(backend)

    raise ValueError(f"Unknown record store backend: {cfg.backend}")
