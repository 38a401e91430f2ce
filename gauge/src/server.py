"""FastAPI router for Gauge, the analytics layer.

Serves dashboard metrics, the analytics overview, trend series, client
performance, distributions, and report generation and download. All
numbers come from ``gauge.src.aggregation`` over records read from the
configured record store. Designed to be mounted at ``/api/gauge/``.

Example::

    from fastapi import FastAPI
    from gauge.src.server import configure, router

    app = FastAPI()
    app.include_router(router, prefix="/api/gauge")
    configure(store)
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, HTTPException
from fastapi.responses import Response

from gauge.src.aggregation import (
    ALL_CLIENTS,
    build_analytics_overview,
    compute_trend_series,
    distribution_by_category,
    distribution_by_source,
    filter_by_date_window,
    net_promoter_score,
    placeholder_distributions,
    rank_client_performance,
    summarize_dashboard_metrics,
)
from gauge.src.reports import (
    ReportArchive,
    ReportGenerationError,
    ReportGenerator,
    ReportStateError,
)
from ledger.src.models import REPORT_DATE_RANGES
from ledger.src.store import RecordNotFoundError, RecordStore, RecordStoreError
from shared.config import AnalyticsConfig
from shared.hardening import ErrorFormatter

logger = logging.getLogger(__name__)

_formatter = ErrorFormatter()

# ===================================================================
# Shared state and factory
# ===================================================================

_state: dict[str, Any] = {
    "store": None,
    "generator": None,
    "analytics": None,
    "demo_mode": False,
}


def get_store() -> RecordStore:
    """Return the configured RecordStore, raising 503 if not initialised.

    Raises:
        HTTPException: 503 if configure() has not been called.
    """
    store = _state.get("store")
    if store is None:
        raise HTTPException(
            status_code=503,
            detail="Gauge record store not initialised. Call configure() first.",
        )
    return store


def get_generator() -> ReportGenerator:
    """Return the ReportGenerator, raising 503 if not initialised."""
    generator = _state.get("generator")
    if generator is None:
        raise HTTPException(status_code=503, detail="Report generator not initialised.")
    return generator


def _analytics() -> AnalyticsConfig:
    return _state.get("analytics") or AnalyticsConfig()


def configure(
    store: RecordStore,
    analytics: AnalyticsConfig | None = None,
    generator: ReportGenerator | None = None,
    demo_mode: bool = False,
    archive: ReportArchive | None = None,
) -> None:
    """Inject dependencies into the module-level state.

    Args:
        store: Record store to read from.
        analytics: Display-tuning constants (defaults apply if None).
        generator: Optional ReportGenerator (built over *store* if None).
        demo_mode: Allow the illustrative distributions when the store
            holds no feedback.
        archive: Where the built generator keeps rendered files, so another
            component can release them when reports are deleted.
    """
    cfg = analytics or AnalyticsConfig()
    _state["store"] = store
    _state["analytics"] = cfg
    _state["generator"] = generator or ReportGenerator(
        store,
        archive=archive,
        response_rate_scale=cfg.response_rate_scale,
        label_format=cfg.label_format,
    )
    _state["demo_mode"] = demo_mode


def _store_failure(exc: Exception) -> HTTPException:
    """Translate an adapter failure into a 502 with an operator notice."""
    notice = _formatter.format_store_error(exc)
    logger.warning("Record store failure: %s", notice.technical_detail)
    return HTTPException(status_code=502, detail=notice.to_dict())


# ===================================================================
# Router
# ===================================================================

router = APIRouter()


@router.get("/health")
async def health() -> dict[str, Any]:
    """Return Gauge service health status."""
    store_ready = _state.get("store") is not None
    return {
        "status": "ok" if store_ready else "not_configured",
        "version": "0.1.0",
        "components": {
            "store": store_ready,
            "reports": _state.get("generator") is not None,
        },
        "demo_mode": bool(_state.get("demo_mode")),
    }


# -------------------------------------------------------------------
# Dashboard and analytics
# -------------------------------------------------------------------


@router.get("/dashboard")
def dashboard() -> dict[str, Any]:
    """Headline metrics over every feedback record and client.

    Returns:
        DashboardMetrics dictionary.
    """
    try:
        store = get_store()
        metrics = summarize_dashboard_metrics(
            store.feedback.get_all(),
            store.clients.get_all(),
            _analytics().response_rate_scale,
        )
        return metrics.to_dict()
    except HTTPException:
        raise
    except RecordStoreError as exc:
        raise _store_failure(exc) from exc
    except Exception as exc:
        logger.exception("Failed to compute dashboard metrics")
        raise HTTPException(status_code=500, detail="Internal server error") from exc


@router.get("/analytics")
def analytics_overview(days: int = 30) -> dict[str, Any]:
    """Analytics page content for the last *days* days.

    Args:
        days: Look-back window; one of 7, 30, 90, 365.

    Returns:
        AnalyticsOverview dictionary.
    """
    if days not in REPORT_DATE_RANGES:
        raise HTTPException(
            status_code=422,
            detail=f"days must be one of {', '.join(str(d) for d in REPORT_DATE_RANGES)}",
        )
    try:
        store = get_store()
        cfg = _analytics()
        overview = build_analytics_overview(
            store.feedback.get_all(),
            store.clients.get_all(),
            days=days,
            response_rate_scale=cfg.response_rate_scale,
            label_format=cfg.label_format,
            fallback_to_placeholders=bool(_state.get("demo_mode")),
        )
        return overview.to_dict()
    except HTTPException:
        raise
    except RecordStoreError as exc:
        raise _store_failure(exc) from exc
    except Exception as exc:
        logger.exception("Failed to build analytics overview")
        raise HTTPException(status_code=500, detail="Internal server error") from exc


@router.get("/trend")
def trend(client_id: str = ALL_CLIENTS, window: int | None = None) -> dict[str, Any]:
    """Daily average-rating series for the chart.

    Args:
        client_id: Client to chart, or "all".
        window: Number of most recent days with data; 7, 30 or 90.
            Defaults to the configured window.

    Returns:
        TrendSeries dictionary.
    """
    try:
        store = get_store()
        cfg = _analytics()
        series = compute_trend_series(
            store.feedback.get_all(),
            client_filter=client_id,
            window_size_days=window if window is not None else cfg.default_window_days,
            label_format=cfg.label_format,
        )
        return series.to_dict()
    except HTTPException:
        raise
    except RecordStoreError as exc:
        raise _store_failure(exc) from exc
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    except Exception as exc:
        logger.exception("Failed to compute trend for %s", client_id)
        raise HTTPException(status_code=500, detail="Internal server error") from exc


@router.get("/client-performance")
def client_performance(sort_by: str | None = None) -> dict[str, Any]:
    """Responses and average rating for every client.

    Args:
        sort_by: Optional "responses", "avg_rating" or "name".

    Returns:
        Dictionary with a list of performance rows.
    """
    try:
        store = get_store()
        rows = rank_client_performance(
            store.clients.get_all(), store.feedback.get_all(), sort_by=sort_by
        )
        return {"clients": [row.to_dict() for row in rows]}
    except HTTPException:
        raise
    except RecordStoreError as exc:
        raise _store_failure(exc) from exc
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    except Exception as exc:
        logger.exception("Failed to rank client performance")
        raise HTTPException(status_code=500, detail="Internal server error") from exc


@router.get("/distributions")
def distributions(days: int | None = None) -> dict[str, Any]:
    """Satisfaction and source distributions.

    Args:
        days: Optional look-back window; all feedback when omitted.

    Returns:
        Dictionary with ``categories`` and ``sources`` slices.
    """
    if days is not None and days < 1:
        raise HTTPException(status_code=422, detail="days must be positive")
    try:
        store = get_store()
        records = store.feedback.get_all()
        if _state.get("demo_mode") and not records:
            categories, sources = placeholder_distributions()
        else:
            if days is not None:
                records = filter_by_date_window(records, days)
            categories = distribution_by_category(records)
            sources = distribution_by_source(records)
        return {
            "categories": [s.to_dict() for s in categories],
            "sources": [s.to_dict() for s in sources],
        }
    except HTTPException:
        raise
    except RecordStoreError as exc:
        raise _store_failure(exc) from exc
    except Exception as exc:
        logger.exception("Failed to compute distributions")
        raise HTTPException(status_code=500, detail="Internal server error") from exc


@router.get("/nps")
def nps(days: int | None = None) -> dict[str, Any]:
    """Net promoter score over all feedback or the last *days* days."""
    if days is not None and days < 1:
        raise HTTPException(status_code=422, detail="days must be positive")
    try:
        records = get_store().feedback.get_all()
        if days is not None:
            records = filter_by_date_window(records, days)
        return net_promoter_score(records).to_dict()
    except HTTPException:
        raise
    except RecordStoreError as exc:
        raise _store_failure(exc) from exc
    except Exception as exc:
        logger.exception("Failed to compute NPS")
        raise HTTPException(status_code=500, detail="Internal server error") from exc


# -------------------------------------------------------------------
# Reports
# -------------------------------------------------------------------


def _report_call(action: str, report_id: str, call: Any) -> Any:
    """Run a generator call with the shared report error mapping."""
    try:
        return call()
    except HTTPException:
        raise
    except RecordNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ReportStateError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except ReportGenerationError as exc:
        notice = _formatter.format_report_error(exc.__cause__ or exc)
        raise HTTPException(status_code=500, detail=notice.to_dict()) from exc
    except RecordStoreError as exc:
        raise _store_failure(exc) from exc
    except Exception as exc:
        logger.exception("Failed to %s report %s", action, report_id)
        raise HTTPException(status_code=500, detail="Internal server error") from exc


@router.post("/reports/{report_id}/generate")
def generate_report(report_id: str) -> dict[str, Any]:
    """Generate a pending report.

    Returns:
        The completed report dictionary.
    """
    generator = get_generator()
    report = _report_call("generate", report_id, lambda: generator.generate(report_id))
    return report.to_dict()


@router.post("/reports/{report_id}/retry")
def retry_report(report_id: str) -> dict[str, Any]:
    """Retry a failed report."""
    generator = get_generator()
    report = _report_call("retry", report_id, lambda: generator.retry(report_id))
    return report.to_dict()


@router.get("/reports/{report_id}/download")
def download_report(report_id: str) -> Response:
    """Download a completed report's file.

    Returns:
        The file bytes with a Content-Disposition attachment header.
    """
    generator = get_generator()
    _, artifact = _report_call("download", report_id, lambda: generator.download(report_id))
    return Response(
        content=artifact.content,
        media_type=artifact.media_type,
        headers={"Content-Disposition": f'attachment; filename="{artifact.filename}"'},
    )
