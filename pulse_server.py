"""PulsePoint unified backend server.

Mounts the Ledger (records) and Gauge (analytics) routers under a
single FastAPI application, sharing one record store built from the
``PULSE_*`` environment configuration. If the store cannot be created
the routers are still mounted but unconfigured, so their endpoints
return 503 and the unified health endpoint reports the error.

Usage::

    # Development (auto-reload)
    uvicorn pulse_server:app --reload --port 8420

    # Against a remote record service
    PULSE_STORE_BACKEND=remote PULSE_API_BASE_URL=https://records.example \\
        uvicorn pulse_server:app --port 8420

    # Or run directly
    python pulse_server.py
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from gauge.src.reports import ReportArchive
from gauge.src.server import configure as configure_gauge
from gauge.src.server import router as gauge_router
from ledger.src.factory import create_record_store
from ledger.src.server import configure as configure_ledger
from ledger.src.server import router as ledger_router
from ledger.src.store import RecordStore
from shared.config import ConfigError, PulseConfig, configure_logging, load_config

logger = logging.getLogger("pulsepoint")

# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------

app = FastAPI(
    title="PulsePoint API",
    description=(
        "Backend for the PulsePoint feedback dashboard: "
        "Ledger (clients, feedback, forms, reports, settings) and "
        "Gauge (dashboard metrics, analytics, report generation)."
    ),
    version="0.1.0",
)

# ---------------------------------------------------------------------------
# CORS -- allow the local dashboard dev server
# ---------------------------------------------------------------------------

_ALLOWED_ORIGINS = [
    "http://localhost:5173",   # Vite dev server
    "http://localhost:8420",   # Self (for Swagger UI)
    "http://127.0.0.1:5173",
    "http://127.0.0.1:8420",
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=_ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ---------------------------------------------------------------------------
# Tool loading state
# ---------------------------------------------------------------------------

_tool_status: dict[str, dict[str, Any]] = {
    "ledger": {"loaded": False, "error": None},
    "gauge": {"loaded": False, "error": None},
}

app.include_router(ledger_router, prefix="/api/ledger", tags=["ledger"])
app.include_router(gauge_router, prefix="/api/gauge", tags=["gauge"])


def _create_store(config: PulseConfig) -> RecordStore | None:
    """Build the shared record store, recording failures in the tool status."""
    try:
        return create_record_store(config.store)
    except Exception as exc:
        for status in _tool_status.values():
            status["error"] = f"record store unavailable: {exc}"
        logger.warning("Record store failed to initialise: %s", exc)
        return None


def _mount_ledger(store: RecordStore, archive: ReportArchive) -> None:
    """Configure the Ledger router at ``/api/ledger/``.

    Deleted reports release their rendered files from *archive*.
    """
    try:
        configure_ledger(store, on_reports_deleted=archive.discard_many)
        _tool_status["ledger"]["loaded"] = True
        logger.info("Ledger router mounted at /api/ledger/")
    except Exception as exc:
        _tool_status["ledger"]["error"] = str(exc)
        logger.warning("Ledger router failed to load: %s", exc)


def _mount_gauge(store: RecordStore, config: PulseConfig, archive: ReportArchive) -> None:
    """Configure the Gauge router at ``/api/gauge/``.

    Demo mode (in-memory store with sample data) allows the illustrative
    distributions when there is no feedback yet.
    """
    try:
        demo_mode = config.store.backend == "memory" and config.store.seed_demo_data
        configure_gauge(
            store, analytics=config.analytics, demo_mode=demo_mode, archive=archive
        )
        _tool_status["gauge"]["loaded"] = True
        logger.info("Gauge router mounted at /api/gauge/")
    except Exception as exc:
        _tool_status["gauge"]["error"] = str(exc)
        logger.warning("Gauge router failed to load: %s", exc)


def init_app(config: PulseConfig | None = None) -> None:
    """Configure logging, create the record store, and configure both routers.

    Logging is set up before anything else so store start-up messages
    reach the configured handlers.

    Args:
        config: Configuration to use. Read from the environment if None.
    """
    if config is None:
        try:
            config = load_config()
        except ConfigError as exc:
            for status in _tool_status.values():
                status["error"] = f"invalid configuration: {exc}"
            configure_logging()
            logger.warning("Configuration error: %s", exc)
            return

    configure_logging(config.logging)
    store = _create_store(config)
    if store is None:
        return
    archive = ReportArchive()
    _mount_ledger(store, archive)
    _mount_gauge(store, config, archive)


# ---------------------------------------------------------------------------
# Unified health endpoint
# ---------------------------------------------------------------------------


@app.get("/api/health")
async def unified_health() -> dict[str, Any]:
    """Return health status for both PulsePoint tools.

    Returns:
        Dictionary with overall status and per-tool breakdown.
    """
    all_loaded = all(t["loaded"] for t in _tool_status.values())
    any_loaded = any(t["loaded"] for t in _tool_status.values())

    if all_loaded:
        status = "ok"
    elif any_loaded:
        status = "degraded"
    else:
        status = "error"

    return {
        "status": status,
        "version": "0.1.0",
        "tools": _tool_status,
    }


init_app()


# ---------------------------------------------------------------------------
# Main entry point
# ---------------------------------------------------------------------------


def run_server(host: str = "127.0.0.1", port: int = 8420) -> None:
    """Start the PulsePoint server via uvicorn.

    Args:
        host: Bind address. Defaults to localhost.
        port: Port number. Defaults to 8420.
    """
    import uvicorn

    uvicorn.run(app, host=host, port=port)


def main() -> None:
    """Console entry point: serve with the environment configuration."""
    config = load_config()
    run_server(config.server.host, config.server.port)


if __name__ == "__main__":
    main()
