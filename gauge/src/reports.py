"""Report lifecycle, content, and rendering.

A report starts ``pending``. Generation moves it to ``completed`` (with
file size and download URL) or ``failed``; a failed report can be put
back to ``pending`` and generated again. Completed reports are terminal.

Report content is built from the aggregation engine over the feedback
in the report's date range, then rendered as CSV (``csv`` and ``excel``
formats) or as a PDF via PyMuPDF (``pdf``). Rendered artefacts are kept
in a ``ReportArchive`` so downloads do not recompute them.
"""

from __future__ import annotations

import csv
import io
import logging
import math
import re
import threading
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

import fitz

from gauge.src.aggregation import (
    DEFAULT_LABEL_FORMAT,
    DEFAULT_RESPONSE_RATE_SCALE,
    compute_daily_activity,
    distribution_by_category,
    distribution_by_source,
    net_promoter_score,
    rank_client_performance,
    summarize_dashboard_metrics,
)
from ledger.src.models import Report, ReportFormat, ReportStatus, ReportType
from ledger.src.store import RecordNotFoundError, RecordStore

logger = logging.getLogger(__name__)


class ReportStateError(Exception):
    """Raised when a report is asked to make a transition it cannot make."""


class ReportGenerationError(Exception):
    """Raised when building or rendering a report fails; the report is marked failed."""


_TRANSITIONS: dict[ReportStatus, frozenset[ReportStatus]] = {
    ReportStatus.PENDING: frozenset({ReportStatus.COMPLETED, ReportStatus.FAILED}),
    ReportStatus.FAILED: frozenset({ReportStatus.PENDING}),
    ReportStatus.COMPLETED: frozenset(),
}


def can_transition(current: ReportStatus, target: ReportStatus) -> bool:
    """Return True when *current* may move to *target*."""
    return target in _TRANSITIONS[current]


def check_transition(current: ReportStatus, target: ReportStatus) -> None:
    """Raise ReportStateError unless *current* may move to *target*."""
    if not can_transition(current, target):
        raise ReportStateError(
            f"Cannot move report from '{current.value}' to '{target.value}'"
        )


# ===================================================================
# Content
# ===================================================================


@dataclass
class ReportTable:
    """A titled table inside a report."""

    title: str
    headers: list[str]
    rows: list[list[Any]] = field(default_factory=list)


@dataclass
class ReportArtifact:
    """A rendered report file.

    Attributes:
        report_id: Report the file belongs to.
        filename: Suggested download filename.
        media_type: MIME type of ``content``.
        content: File bytes.
        generated_at: When the file was rendered.
    """

    report_id: str
    filename: str
    media_type: str
    content: bytes
    generated_at: datetime

    @property
    def size_kb(self) -> int:
        """Size in whole kilobytes, rounded up."""
        return max(1, math.ceil(len(self.content) / 1024))


def build_report_tables(
    report: Report,
    feedback: list[Any],
    clients: list[Any],
    response_rate_scale: float = DEFAULT_RESPONSE_RATE_SCALE,
    label_format: str = DEFAULT_LABEL_FORMAT,
) -> list[ReportTable]:
    """Build the tables for *report* from already-windowed feedback.

    Every report opens with the headline metrics; the rest depends on
    the report type.

    Args:
        report: The report being generated.
        feedback: Feedback inside the report's date range.
        clients: All clients.
        response_rate_scale: Display multiplier for the response rate.
        label_format: strftime pattern for day labels.

    Returns:
        Ordered list of tables.
    """
    metrics = summarize_dashboard_metrics(feedback, clients, response_rate_scale)
    tables = [
        ReportTable(
            title=f"Summary (last {report.date_range} days)",
            headers=["Metric", "Value"],
            rows=[
                ["Total feedback", metrics.total_feedback],
                ["Average rating", metrics.average_rating],
                ["Response rate", metrics.response_rate],
                ["Sentiment score", metrics.sentiment_score],
            ],
        )
    ]

    if report.type in (ReportType.FEEDBACK_SUMMARY, ReportType.SATISFACTION):
        tables.append(
            ReportTable(
                title="Satisfaction distribution",
                headers=["Band", "Responses", "Percent"],
                rows=[[s.name, s.count, s.percent] for s in distribution_by_category(feedback)],
            )
        )

    if report.type == ReportType.ANALYTICS:
        activity = compute_daily_activity(feedback, report.date_range, label_format=label_format)
        counts, ratings = activity.series[0].data, activity.series[1].data
        tables.append(
            ReportTable(
                title="Daily activity",
                headers=["Date", "Responses", "Average rating"],
                rows=[
                    [label, count, rating]
                    for label, count, rating in zip(activity.categories, counts, ratings)
                ],
            )
        )
        tables.append(
            ReportTable(
                title="Sources",
                headers=["Source", "Responses", "Percent"],
                rows=[[s.name, s.count, s.percent] for s in distribution_by_source(feedback)],
            )
        )

    if report.type == ReportType.CLIENT_REPORT:
        tables.append(
            ReportTable(
                title="Client performance",
                headers=["Client", "Industry", "Responses", "Average rating"],
                rows=[
                    [row.name, row.industry, row.responses, row.avg_rating]
                    for row in rank_client_performance(clients, feedback, sort_by="responses")
                ],
            )
        )

    if report.type == ReportType.NPS:
        nps = net_promoter_score(feedback)
        tables.append(
            ReportTable(
                title="Net promoter score",
                headers=["Measure", "Value"],
                rows=[
                    ["Score", nps.score],
                    ["Promoters", nps.promoters],
                    ["Passives", nps.passives],
                    ["Detractors", nps.detractors],
                ],
            )
        )

    return tables


# ===================================================================
# Rendering
# ===================================================================


def render_csv(title: str, tables: list[ReportTable]) -> bytes:
    """Render tables as one CSV document, blank line between tables."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, dialect="excel")
    writer.writerow([title])
    for table in tables:
        writer.writerow([])
        writer.writerow([table.title])
        writer.writerow(table.headers)
        writer.writerows(table.rows)
    return buffer.getvalue().encode("utf-8")


_PAGE_WIDTH = 595
_PAGE_HEIGHT = 842
_MARGIN = 50
_LINE_HEIGHT = 14


def render_pdf(title: str, tables: list[ReportTable]) -> bytes:
    """Render tables as a simple paginated A4 PDF."""
    lines: list[tuple[str, float, str]] = [(title, 16, "hebo"), ("", 10, "helv")]
    for table in tables:
        lines.append((table.title, 12, "hebo"))
        lines.append(("  |  ".join(table.headers), 10, "hebo"))
        for row in table.rows:
            lines.append(("  |  ".join(str(cell) for cell in row), 10, "helv"))
        lines.append(("", 10, "helv"))

    doc = fitz.open()
    try:
        page = doc.new_page(width=_PAGE_WIDTH, height=_PAGE_HEIGHT)
        y = _MARGIN
        for text, size, font in lines:
            if y + _LINE_HEIGHT > _PAGE_HEIGHT - _MARGIN:
                page = doc.new_page(width=_PAGE_WIDTH, height=_PAGE_HEIGHT)
                y = _MARGIN
            y += _LINE_HEIGHT if size <= 12 else _LINE_HEIGHT + 6
            if text:
                page.insert_text((_MARGIN, y), text, fontsize=size, fontname=font)
        return doc.tobytes()
    finally:
        doc.close()


_EXTENSIONS = {
    ReportFormat.PDF: ("pdf", "application/pdf"),
    ReportFormat.EXCEL: ("csv", "text/csv"),
    ReportFormat.CSV: ("csv", "text/csv"),
}


def report_filename(report: Report) -> str:
    """Download filename derived from the report title and format."""
    stem = re.sub(r"\s+", "_", report.title.strip())
    stem = re.sub(r"[^A-Za-z0-9_\-]", "", stem) or report.id
    return f"{stem}.{_EXTENSIONS[report.format][0]}"


# ===================================================================
# Archive and generator
# ===================================================================


class ReportArchive:
    """Thread-safe in-memory store of rendered report files."""

    def __init__(self) -> None:
        self._artifacts: dict[str, ReportArtifact] = {}
        self._lock = threading.Lock()

    def put(self, artifact: ReportArtifact) -> None:
        """Store (or replace) an artefact."""
        with self._lock:
            self._artifacts[artifact.report_id] = artifact

    def get(self, report_id: str) -> ReportArtifact | None:
        """Return the artefact for a report, or None."""
        with self._lock:
            return self._artifacts.get(report_id)

    def discard(self, report_id: str) -> None:
        """Forget a report's artefact if present."""
        with self._lock:
            self._artifacts.pop(report_id, None)

    def discard_many(self, report_ids: Iterable[str]) -> None:
        """Forget the artefacts of several reports."""
        with self._lock:
            for report_id in report_ids:
                self._artifacts.pop(report_id, None)

    def prune(self, live_ids: Iterable[str]) -> list[str]:
        """Drop artefacts whose report is not in *live_ids*; return the dropped IDs."""
        keep = set(live_ids)
        with self._lock:
            stale = [rid for rid in self._artifacts if rid not in keep]
            for report_id in stale:
                del self._artifacts[report_id]
        return stale


class ReportGenerator:
    """Generates, retries, and serves reports.

    Args:
        store: Record store holding reports, feedback, and clients.
        archive: Where rendered files are kept (defaults to a new archive).
        response_rate_scale: Display multiplier for the response rate.
        label_format: strftime pattern for day labels.
    """

    def __init__(
        self,
        store: RecordStore,
        archive: ReportArchive | None = None,
        response_rate_scale: float = DEFAULT_RESPONSE_RATE_SCALE,
        label_format: str = DEFAULT_LABEL_FORMAT,
    ) -> None:
        self._store = store
        self.archive = archive or ReportArchive()
        self._response_rate_scale = response_rate_scale
        self._label_format = label_format
        self._download_lock = threading.Lock()

    def _get_report(self, report_id: str) -> Report:
        report = self._store.reports.get_by_id(report_id)
        if report is None:
            raise RecordNotFoundError(f"report '{report_id}' not found")
        return report

    def _prune_archive(self) -> None:
        stale = self.archive.prune(r.id for r in self._store.reports.get_all())
        if stale:
            logger.info("Released %d rendered report(s) no longer in the store", len(stale))

    def _render(self, report: Report, now: datetime) -> ReportArtifact:
        start = now - timedelta(days=report.date_range)
        feedback = self._store.feedback.get_by_date_range(start, now)
        clients = self._store.clients.get_all()
        tables = build_report_tables(
            report, feedback, clients, self._response_rate_scale, self._label_format
        )
        if report.format == ReportFormat.PDF:
            content = render_pdf(report.title, tables)
        else:
            content = render_csv(report.title, tables)
        return ReportArtifact(
            report_id=report.id,
            filename=report_filename(report),
            media_type=_EXTENSIONS[report.format][1],
            content=content,
            generated_at=now,
        )

    def generate(self, report_id: str, now: datetime | None = None) -> Report:
        """Generate a pending report.

        Args:
            report_id: Report to generate.
            now: Reference time for the date range. Defaults to now.

        Returns:
            The completed report.

        Raises:
            RecordNotFoundError: If the report does not exist.
            ReportStateError: If the report is not pending.
            ReportGenerationError: If building or rendering fails; the
                report has been marked failed.
        """
        ref = now or datetime.now()
        report = self._get_report(report_id)
        check_transition(report.status, ReportStatus.COMPLETED)
        self._prune_archive()

        try:
            artifact = self._render(report, ref)
        except Exception as exc:
            logger.exception("Report '%s' generation failed", report_id)
            self._store.reports.update(report_id, {"status": ReportStatus.FAILED})
            raise ReportGenerationError(f"Failed to generate report '{report_id}'") from exc

        self.archive.put(artifact)
        completed = self._store.reports.update(
            report_id,
            {
                "status": ReportStatus.COMPLETED,
                "completed_at": ref,
                "file_size": artifact.size_kb,
                "download_url": f"/reports/{report_id}.{_EXTENSIONS[report.format][0]}",
            },
        )
        logger.info("Generated report '%s' (%d KB)", report_id, artifact.size_kb)
        return completed

    def retry(self, report_id: str, now: datetime | None = None) -> Report:
        """Move a failed report back to pending and generate it again.

        Raises:
            RecordNotFoundError: If the report does not exist.
            ReportStateError: If the report has not failed.
            ReportGenerationError: If generation fails again.
        """
        report = self._get_report(report_id)
        check_transition(report.status, ReportStatus.PENDING)
        self._store.reports.update(report_id, {"status": ReportStatus.PENDING})
        logger.info("Retrying report '%s'", report_id)
        return self.generate(report_id, now)

    def download(
        self, report_id: str, now: datetime | None = None
    ) -> tuple[Report, ReportArtifact]:
        """Return a completed report's file and count the download.

        The file is re-rendered if the archive no longer holds it.
        Downloads are serialized so concurrent calls each add one to the
        count.

        Raises:
            RecordNotFoundError: If the report does not exist.
            ReportStateError: If the report is not completed.
        """
        ref = now or datetime.now()
        with self._download_lock:
            report = self._get_report(report_id)
            if report.status != ReportStatus.COMPLETED:
                raise ReportStateError(
                    f"Report '{report_id}' is {report.status.value}, not completed"
                )

            artifact = self.archive.get(report_id)
            if artifact is None:
                artifact = self._render(report, report.completed_at or ref)
                self.archive.put(artifact)

            updated = self._store.reports.update(
                report_id,
                {"download_count": report.download_count + 1, "last_downloaded": ref},
            )
        return updated, artifact
