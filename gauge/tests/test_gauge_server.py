"""Tests for the Gauge FastAPI router.

Covers health, dashboard metrics, the analytics overview, trend series,
client performance, distributions, NPS, and report generation and
download using the FastAPI TestClient. Feedback is dated relative to the
real clock because the endpoints window against the current time.
"""

from __future__ import annotations

import inspect
from datetime import datetime
from unittest.mock import MagicMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from gauge.src.server import _state, configure, router
from ledger.src.models import ReportStatus
from ledger.src.store import RecordStore, RecordStoreError
from shared.config import AnalyticsConfig

# ===================================================================
# Fixtures
# ===================================================================


def _reset() -> None:
    _state["store"] = None
    _state["generator"] = None
    _state["analytics"] = None
    _state["demo_mode"] = False


@pytest.fixture
def now() -> datetime:
    """The real current time, so server-side windows include the fixtures."""
    return datetime.now().replace(microsecond=0)


def _app() -> FastAPI:
    app = FastAPI()
    app.include_router(router, prefix="/api/gauge")
    return app


@pytest.fixture()
def client(populated_store: RecordStore) -> TestClient:
    """TestClient over the populated store."""
    configure(populated_store)
    yield TestClient(_app())
    _reset()


@pytest.fixture()
def empty_client(store: RecordStore) -> TestClient:
    """TestClient over an empty store in demo mode."""
    configure(store, demo_mode=True)
    yield TestClient(_app())
    _reset()


@pytest.fixture()
def unconfigured_client() -> TestClient:
    """TestClient where Gauge has NOT been configured."""
    _reset()
    return TestClient(_app())


def _pending_report(store: RecordStore, **overrides: object) -> str:
    fields = {"title": "Weekly Pulse", "type": "analytics", "date_range": 7, "format": "csv"}
    fields.update(overrides)
    return store.reports.create(fields).id


# ===================================================================
# Health
# ===================================================================


class TestHealth:
    """Tests for GET /health and unconfigured behaviour."""

    def test_health_configured(self, client: TestClient) -> None:
        """Health reports both components ready."""
        data = client.get("/api/gauge/health").json()
        assert data["status"] == "ok"
        assert data["components"] == {"store": True, "reports": True}
        assert data["demo_mode"] is False

    def test_health_unconfigured(self, unconfigured_client: TestClient) -> None:
        """Health reports not_configured without a store."""
        data = unconfigured_client.get("/api/gauge/health").json()
        assert data["status"] == "not_configured"

    def test_endpoints_503_when_unconfigured(self, unconfigured_client: TestClient) -> None:
        """Data and report endpoints return 503 until configure() is called."""
        assert unconfigured_client.get("/api/gauge/dashboard").status_code == 503
        assert unconfigured_client.post("/api/gauge/reports/rep_1/generate").status_code == 503

    def test_store_handlers_run_in_threadpool(self) -> None:
        """Only the health check is a coroutine; store calls block and run in the threadpool."""
        is_coroutine = {
            route.path: inspect.iscoroutinefunction(route.endpoint) for route in router.routes
        }
        assert is_coroutine.pop("/health") is True
        assert is_coroutine and not any(is_coroutine.values())


# ===================================================================
# Metrics
# ===================================================================


class TestDashboard:
    """Tests for GET /dashboard."""

    def test_metrics(self, client: TestClient) -> None:
        """Metrics cover every record and client."""
        assert client.get("/api/gauge/dashboard").json() == {
            "total_feedback": 4,
            "average_rating": 3.1,
            "response_rate": 100.0,
            "sentiment_score": 63,
        }

    def test_response_rate_scale_from_config(self, populated_store: RecordStore) -> None:
        """The configured scale changes the response rate."""
        configure(populated_store, analytics=AnalyticsConfig(response_rate_scale=10.0))
        try:
            data = TestClient(_app()).get("/api/gauge/dashboard").json()
        finally:
            _reset()
        assert data["response_rate"] == 20.0

    def test_empty_store(self, empty_client: TestClient) -> None:
        """No clients and no feedback yield zeros."""
        data = empty_client.get("/api/gauge/dashboard").json()
        assert data["response_rate"] == 0.0
        assert data["total_feedback"] == 0


class TestAnalytics:
    """Tests for GET /analytics."""

    def test_overview_window(self, client: TestClient) -> None:
        """Only the last seven days are summarised."""
        data = client.get("/api/gauge/analytics", params={"days": 7}).json()
        assert data["period_days"] == 7
        assert data["metrics"]["total_feedback"] == 3
        assert sum(s["count"] for s in data["sources"]) == 3
        assert set(data["trends"]) == {"average_rating", "total_feedback"}

    def test_invalid_days(self, client: TestClient) -> None:
        """Unsupported ranges are rejected."""
        assert client.get("/api/gauge/analytics", params={"days": 14}).status_code == 422

    def test_demo_placeholders(self, empty_client: TestClient) -> None:
        """An empty demo store shows the illustrative breakdowns."""
        data = empty_client.get("/api/gauge/analytics").json()
        assert data["categories"][0] == {
            "name": "Very Satisfied",
            "count": 0,
            "percent": 45.0,
            "color": "#10B981",
        }
        assert data["sources"][0]["name"] == "Website"


class TestTrend:
    """Tests for GET /trend."""

    def test_all_clients(self, client: TestClient) -> None:
        """Days with feedback appear in order with their averages."""
        data = client.get("/api/gauge/trend").json()
        assert data["series"][0]["name"] == "Average Rating"
        assert len(data["categories"]) == len(data["series"][0]["data"]) == 3
        assert data["series"][0]["data"][-1] == 4.5

    def test_single_client(self, client: TestClient, clients: list) -> None:
        """Filtering by client keeps only that client's days."""
        data = client.get("/api/gauge/trend", params={"client_id": clients[1].id}).json()
        assert data["series"][0]["data"] == [4.0]

    def test_window(self, client: TestClient) -> None:
        """The window keeps the most recent days with feedback."""
        data = client.get("/api/gauge/trend", params={"window": 7}).json()
        assert len(data["categories"]) == 3

    def test_invalid_window(self, client: TestClient) -> None:
        """Unsupported windows are rejected."""
        resp = client.get("/api/gauge/trend", params={"window": 14})
        assert resp.status_code == 422
        assert "window_size_days" in resp.json()["detail"]


class TestClientPerformance:
    """Tests for GET /client-performance."""

    def test_rows(self, client: TestClient) -> None:
        """One row per client, with placeholders for missing industry."""
        rows = client.get("/api/gauge/client-performance").json()["clients"]
        assert [(r["name"], r["industry"], r["responses"]) for r in rows] == [
            ("Acme Corporation", "Manufacturing", 3),
            ("Blue Harbor", "N/A", 1),
        ]
        assert rows[1]["avg_rating"] == 4.0

    def test_sort(self, client: TestClient) -> None:
        """Sorting by rating puts the best rated first."""
        rows = client.get(
            "/api/gauge/client-performance", params={"sort_by": "avg_rating"}
        ).json()["clients"]
        assert rows[0]["name"] == "Blue Harbor"

    def test_bad_sort(self, client: TestClient) -> None:
        """Unknown sort keys are rejected."""
        resp = client.get("/api/gauge/client-performance", params={"sort_by": "revenue"})
        assert resp.status_code == 422


class TestDistributionsAndNps:
    """Tests for GET /distributions and GET /nps."""

    def test_distributions_window(self, client: TestClient) -> None:
        """Recent feedback is bucketed by band and by source."""
        data = client.get("/api/gauge/distributions", params={"days": 7}).json()
        counts = {s["name"]: s["count"] for s in data["categories"]}
        assert counts["Very Satisfied"] == 1
        assert counts["Satisfied"] == 1
        assert counts["Neutral"] == 1
        assert [(s["name"], s["count"]) for s in data["sources"]] == [("Website", 2), ("Email", 1)]

    def test_distributions_all_time(self, client: TestClient) -> None:
        """Without days every record counts."""
        data = client.get("/api/gauge/distributions").json()
        assert sum(s["count"] for s in data["categories"]) == 4

    def test_distributions_invalid_days(self, client: TestClient) -> None:
        """Non-positive windows are rejected."""
        assert client.get("/api/gauge/distributions", params={"days": 0}).status_code == 422

    def test_nps(self, client: TestClient) -> None:
        """One promoter, one passive, and one detractor net to zero."""
        assert client.get("/api/gauge/nps", params={"days": 7}).json() == {
            "score": 0.0,
            "promoters": 1,
            "passives": 1,
            "detractors": 1,
        }


# ===================================================================
# Reports
# ===================================================================


class TestReports:
    """Tests for report generation, retry, and download."""

    def test_generate_and_download(self, client: TestClient, populated_store: RecordStore) -> None:
        """A pending report completes and downloads as an attachment."""
        report_id = _pending_report(populated_store)

        resp = client.post(f"/api/gauge/reports/{report_id}/generate")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "completed"
        assert data["download_url"] == f"/reports/{report_id}.csv"
        assert data["file_size"] >= 1

        download = client.get(f"/api/gauge/reports/{report_id}/download")
        assert download.status_code == 200
        assert download.headers["content-type"].startswith("text/csv")
        assert download.headers["content-disposition"] == (
            'attachment; filename="Weekly_Pulse.csv"'
        )
        assert download.content.startswith(b"Weekly Pulse")
        assert populated_store.reports.get_by_id(report_id).download_count == 1

    def test_pdf_download(self, client: TestClient, populated_store: RecordStore) -> None:
        """PDF reports download as application/pdf."""
        report_id = _pending_report(populated_store, format="pdf")
        client.post(f"/api/gauge/reports/{report_id}/generate")
        download = client.get(f"/api/gauge/reports/{report_id}/download")
        assert download.headers["content-type"] == "application/pdf"
        assert download.content.startswith(b"%PDF")

    def test_generate_completed_conflicts(
        self, client: TestClient, populated_store: RecordStore
    ) -> None:
        """Generating a completed report is a conflict."""
        report_id = _pending_report(populated_store)
        client.post(f"/api/gauge/reports/{report_id}/generate")
        assert client.post(f"/api/gauge/reports/{report_id}/generate").status_code == 409

    def test_download_pending_conflicts(
        self, client: TestClient, populated_store: RecordStore
    ) -> None:
        """Pending reports cannot be downloaded."""
        report_id = _pending_report(populated_store)
        assert client.get(f"/api/gauge/reports/{report_id}/download").status_code == 409

    def test_missing_report(self, client: TestClient) -> None:
        """Unknown reports return 404."""
        assert client.post("/api/gauge/reports/rep_nope/generate").status_code == 404
        assert client.get("/api/gauge/reports/rep_nope/download").status_code == 404

    def test_failure_then_retry(
        self,
        client: TestClient,
        populated_store: RecordStore,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        """A failed generation returns a notice and can be retried."""
        report_id = _pending_report(populated_store)
        with monkeypatch.context() as patch:
            patch.setattr("gauge.src.reports.render_csv", MagicMock(side_effect=OSError("disk")))
            resp = client.post(f"/api/gauge/reports/{report_id}/generate")

        assert resp.status_code == 500
        detail = resp.json()["detail"]
        assert detail["component"] == "gauge"
        assert detail["error_code"].startswith("REPORT_")
        assert populated_store.reports.get_by_id(report_id).status == ReportStatus.FAILED

        retried = client.post(f"/api/gauge/reports/{report_id}/retry")
        assert retried.status_code == 200
        assert retried.json()["status"] == "completed"

    def test_retry_pending_conflicts(self, client: TestClient, populated_store: RecordStore) -> None:
        """Only failed reports can be retried."""
        report_id = _pending_report(populated_store)
        assert client.post(f"/api/gauge/reports/{report_id}/retry").status_code == 409


class TestStoreFailure:
    """Tests for record-store failures surfacing as notices."""

    def test_store_error_is_502_with_notice(self, client: TestClient) -> None:
        """An adapter failure returns 502 with a user-friendly notice."""
        broken = MagicMock()
        broken.fetch.side_effect = RecordStoreError("down")
        configure(RecordStore(broken))

        for path in ("/api/gauge/dashboard", "/api/gauge/trend", "/api/gauge/nps"):
            resp = client.get(path)
            assert resp.status_code == 502
            assert resp.json()["detail"]["error_code"].startswith("STORE_")
