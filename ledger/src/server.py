"""FastAPI router for Ledger, the record layer.

Exposes CRUD for clients, feedback, forms, and reports, the client list
search and sort used by the clients page, bulk delete and bulk status
changes with per-item outcomes, and the account settings sections.
Designed to be mounted at ``/api/ledger/`` by the parent application.

Example::

    from fastapi import FastAPI
    from ledger.src.server import configure, router

    app = FastAPI()
    app.include_router(router, prefix="/api/ledger")
    configure(store)
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel, Field

from ledger.src.bulk import run_bulk
from ledger.src.models import (
    REPORT_DATE_RANGES,
    Client,
    ClientStatus,
    FormCategory,
    FormStatus,
    Question,
    QuestionType,
    ReportFormat,
    ReportSchedule,
    ReportStatus,
    ReportType,
)
from ledger.src.settings import DEFAULT_SETTINGS, SettingsError, SettingsManager
from ledger.src.store import RecordNotFoundError, RecordStore, RecordStoreError
from shared.hardening import ErrorFormatter, InputValidator, ValidationError

logger = logging.getLogger(__name__)

_formatter = ErrorFormatter()
_validator = InputValidator()

# ===================================================================
# Pydantic request models
# ===================================================================


class ClientCreateRequest(BaseModel):
    """Request body for creating a client."""

    name: str = Field(..., min_length=1, max_length=200)
    email: str = Field(..., min_length=3, max_length=320)
    company: str | None = Field(default=None, max_length=200)
    phone: str | None = Field(default=None, max_length=50)
    industry: str | None = Field(default=None, max_length=100)
    status: ClientStatus = ClientStatus.ACTIVE
    tags: list[str] = Field(default_factory=list)


class ClientUpdateRequest(BaseModel):
    """Request body for a partial client update."""

    name: str | None = Field(default=None, min_length=1, max_length=200)
    email: str | None = Field(default=None, min_length=3, max_length=320)
    company: str | None = Field(default=None, max_length=200)
    phone: str | None = Field(default=None, max_length=50)
    industry: str | None = Field(default=None, max_length=100)
    status: ClientStatus | None = None
    tags: list[str] | None = None
    last_contact: datetime | None = None


class RatingBody(BaseModel):
    """One rated answer inside a feedback submission."""

    question_ref: str = Field(..., min_length=1)
    value: float = Field(..., ge=0, le=5)


class FeedbackCreateRequest(BaseModel):
    """Request body for recording a feedback submission."""

    client_id: str = Field(..., min_length=1)
    form_id: str | None = None
    submitted_at: datetime | None = None
    ratings: list[RatingBody] = Field(default_factory=list)
    source: str | None = Field(default=None, max_length=50)
    comment: str | None = Field(default=None, max_length=5_000)


class QuestionBody(BaseModel):
    """A form question as sent by the form builder."""

    id: str | None = None
    type: QuestionType = QuestionType.RATING
    text: str = Field(..., min_length=1, max_length=1_000)
    options: list[str] = Field(default_factory=list)
    required: bool = False


class FormCreateRequest(BaseModel):
    """Request body for creating a feedback form."""

    title: str = Field(..., min_length=1, max_length=300)
    description: str = Field(default="", max_length=5_000)
    category: FormCategory = FormCategory.SATISFACTION
    status: FormStatus = FormStatus.DRAFT
    questions: list[QuestionBody] = Field(default_factory=list)


class FormUpdateRequest(BaseModel):
    """Request body for a partial form update."""

    title: str | None = Field(default=None, min_length=1, max_length=300)
    description: str | None = Field(default=None, max_length=5_000)
    category: FormCategory | None = None
    status: FormStatus | None = None
    questions: list[QuestionBody] | None = None


class ReportCreateRequest(BaseModel):
    """Request body for creating a report (generated later by Gauge)."""

    title: str = Field(..., min_length=1, max_length=300)
    type: ReportType = ReportType.FEEDBACK_SUMMARY
    description: str = Field(default="", max_length=5_000)
    date_range: int = 30
    format: ReportFormat = ReportFormat.PDF
    schedule: ReportSchedule = ReportSchedule.NONE


class ReportUpdateRequest(BaseModel):
    """Request body for editing a report's descriptive fields."""

    title: str | None = Field(default=None, min_length=1, max_length=300)
    description: str | None = Field(default=None, max_length=5_000)
    schedule: ReportSchedule | None = None


class BulkIdsRequest(BaseModel):
    """Request body naming the records a bulk action applies to."""

    ids: list[str] = Field(..., min_length=1)


class BulkStatusRequest(BaseModel):
    """Request body for changing the status of several clients."""

    ids: list[str] = Field(..., min_length=1)
    status: ClientStatus


class SaveSettingsRequest(BaseModel):
    """Request body for saving one settings section."""

    values: dict[str, Any]


# ===================================================================
# Shared state and factory
# ===================================================================

_state: dict[str, Any] = {
    "store": None,
    "settings": None,
    "on_reports_deleted": None,
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
            detail="Ledger record store not initialised. Call configure() first.",
        )
    return store


def get_settings() -> SettingsManager:
    """Return the SettingsManager, raising 503 if not initialised."""
    settings = _state.get("settings")
    if settings is None:
        raise HTTPException(status_code=503, detail="Settings not initialised.")
    return settings


def configure(
    store: RecordStore,
    settings: SettingsManager | None = None,
    on_reports_deleted: Callable[[list[str]], None] | None = None,
) -> None:
    """Inject dependencies into the module-level state.

    Args:
        store: Record store backing every endpoint.
        settings: Optional SettingsManager (defaults to a new instance).
        on_reports_deleted: Called with the IDs of reports removed through
            this router, so rendered files can be released.
    """
    _state["store"] = store
    _state["settings"] = settings or SettingsManager()
    _state["on_reports_deleted"] = on_reports_deleted


def _reports_deleted(report_ids: list[str]) -> None:
    hook = _state.get("on_reports_deleted")
    if hook is not None and report_ids:
        hook(report_ids)


def _run(action: str, call: Callable[[], Any]) -> Any:
    """Run a store call, mapping domain errors to HTTP responses.

    Args:
        action: Short description used in log messages.
        call: Zero-argument callable doing the work.

    Returns:
        Whatever *call* returns.

    Raises:
        HTTPException: 400 on validation errors, 404 when a record is
            missing, 502 when the record store fails, 500 otherwise.
    """
    try:
        return call()
    except HTTPException:
        raise
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except RecordNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except RecordStoreError as exc:
        notice = _formatter.format_store_error(exc)
        logger.warning("Record store failure during %s: %s", action, notice.technical_detail)
        raise HTTPException(status_code=502, detail=notice.to_dict()) from exc
    except Exception as exc:
        logger.exception("Failed to %s", action)
        raise HTTPException(status_code=500, detail="Internal server error") from exc


def _require(record: Any, kind: str, record_id: str) -> Any:
    if record is None:
        raise HTTPException(status_code=404, detail=f"{kind} '{record_id}' not found")
    return record


def _check_id(record_id: str) -> str:
    try:
        return _validator.validate_identifier(record_id)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


# ===================================================================
# Client list helpers
# ===================================================================

CLIENT_SORT_KEYS = ("name", "email", "company", "created", "last_contact")


def search_clients(clients: list[Client], term: str | None) -> list[Client]:
    """Case-insensitive substring match on name, email, or company."""
    if not term or not term.strip():
        return list(clients)
    needle = term.strip().lower()
    return [
        c
        for c in clients
        if needle in c.name.lower()
        or needle in c.email.lower()
        or needle in (c.company or "").lower()
    ]


def sort_clients(clients: list[Client], sort_by: str) -> list[Client]:
    """Sort clients for the list view.

    Text keys sort ascending (case-insensitive); ``created`` and
    ``last_contact`` sort newest first with missing dates last.

    Raises:
        ValueError: On an unknown sort key.
    """
    if sort_by not in CLIENT_SORT_KEYS:
        raise ValueError(f"sort_by must be one of {', '.join(CLIENT_SORT_KEYS)}")
    if sort_by in ("name", "email", "company"):
        return sorted(clients, key=lambda c: (getattr(c, sort_by) or "").lower())

    attr = "created_at" if sort_by == "created" else "last_contact"
    dated = [c for c in clients if getattr(c, attr) is not None]
    undated = [c for c in clients if getattr(c, attr) is None]
    dated.sort(key=lambda c: getattr(c, attr).timestamp(), reverse=True)
    return dated + undated


# ===================================================================
# Router
# ===================================================================

router = APIRouter()


@router.get("/health")
async def health() -> dict[str, Any]:
    """Return Ledger service health status."""
    store_ready = _state.get("store") is not None
    return {
        "status": "ok" if store_ready else "not_configured",
        "version": "0.1.0",
        "components": {
            "store": store_ready,
            "settings": _state.get("settings") is not None,
        },
    }


# -------------------------------------------------------------------
# Clients
# -------------------------------------------------------------------


@router.get("/clients")
def list_clients(
    search: str | None = None,
    status: ClientStatus | None = None,
    sort_by: str = "name",
) -> dict[str, Any]:
    """List clients with optional search, status filter, and sort.

    Args:
        search: Matches name, email, or company.
        status: Only clients with this status.
        sort_by: One of name, email, company, created, last_contact.

    Returns:
        Dictionary with the matching clients.
    """
    if sort_by not in CLIENT_SORT_KEYS:
        raise HTTPException(
            status_code=422,
            detail=f"sort_by must be one of {', '.join(CLIENT_SORT_KEYS)}",
        )
    store = get_store()
    clients = _run(
        "list clients",
        lambda: store.clients.get_by_status(status) if status else store.clients.get_all(),
    )
    rows = sort_clients(search_clients(clients, search), sort_by)
    return {"clients": [c.to_dict() for c in rows], "total": len(rows)}


@router.get("/clients/{client_id}")
def get_client(client_id: str) -> dict[str, Any]:
    """Return one client."""
    store = get_store()
    client = _run("get client", lambda: store.clients.get_by_id(_check_id(client_id)))
    return _require(client, "client", client_id).to_dict()


@router.post("/clients", status_code=201)
def create_client(request: ClientCreateRequest) -> dict[str, Any]:
    """Create a client.

    Returns:
        The created client with its assigned ID.
    """
    store = get_store()

    def _create() -> Client:
        fields = request.model_dump()
        fields["email"] = _validator.validate_email(request.email)
        return store.clients.create(fields)

    return _run("create client", _create).to_dict()


@router.patch("/clients/{client_id}")
def update_client(client_id: str, request: ClientUpdateRequest) -> dict[str, Any]:
    """Apply a partial update to a client."""
    store = get_store()

    def _update() -> Client:
        fields = request.model_dump(exclude_unset=True)
        if fields.get("email") is not None:
            fields["email"] = _validator.validate_email(fields["email"])
        return store.clients.update(_check_id(client_id), fields)

    return _run("update client", _update).to_dict()


@router.delete("/clients/{client_id}")
def delete_client(client_id: str) -> dict[str, Any]:
    """Delete one client."""
    store = get_store()
    _run("delete client", lambda: store.clients.delete(_check_id(client_id)))
    return {"deleted": client_id}


@router.post("/clients/bulk-delete")
def bulk_delete_clients(request: BulkIdsRequest) -> dict[str, Any]:
    """Delete several clients; each ID succeeds or fails on its own."""
    store = get_store()
    ids = _run("validate ids", lambda: _validator.validate_identifiers(request.ids))
    return run_bulk(ids, store.clients.delete).to_dict()


@router.post("/clients/bulk-status")
def bulk_update_client_status(request: BulkStatusRequest) -> dict[str, Any]:
    """Set the status of several clients; each ID succeeds or fails on its own."""
    store = get_store()
    ids = _run("validate ids", lambda: _validator.validate_identifiers(request.ids))
    result = run_bulk(ids, lambda rid: store.clients.update(rid, {"status": request.status}))
    return {**result.to_dict(), "status": request.status.value}


# -------------------------------------------------------------------
# Feedback
# -------------------------------------------------------------------


@router.get("/feedback")
def list_feedback(
    client_id: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
) -> dict[str, Any]:
    """List feedback, optionally for one client and/or a date range.

    Args:
        client_id: Only feedback for this client.
        start: Range start (inclusive); requires ``end``.
        end: Range end (inclusive); requires ``start``.

    Returns:
        Dictionary with the matching feedback records.
    """
    if (start is None) != (end is None):
        raise HTTPException(status_code=422, detail="start and end must be given together")
    if start is not None and end is not None and start > end:
        raise HTTPException(status_code=422, detail="start must not be after end")
    store = get_store()

    def _list() -> list[Any]:
        if start is not None and end is not None:
            records = store.feedback.get_by_date_range(start, end)
            if client_id is not None:
                records = [r for r in records if r.client_id == client_id]
            return records
        if client_id is not None:
            return store.feedback.get_by_client(_check_id(client_id))
        return store.feedback.get_all()

    records = _run("list feedback", _list)
    return {"feedback": [r.to_dict() for r in records], "total": len(records)}


@router.get("/feedback/{feedback_id}")
def get_feedback(feedback_id: str) -> dict[str, Any]:
    """Return one feedback record."""
    store = get_store()
    record = _run("get feedback", lambda: store.feedback.get_by_id(_check_id(feedback_id)))
    return _require(record, "feedback", feedback_id).to_dict()


@router.post("/feedback", status_code=201)
def create_feedback(request: FeedbackCreateRequest) -> dict[str, Any]:
    """Record a feedback submission; ``submitted_at`` defaults to now."""
    store = get_store()
    fields = request.model_dump()
    if fields.get("comment"):
        fields["comment"] = _validator.sanitize_string(fields["comment"], max_length=5_000)

    def _create() -> Any:
        record = store.feedback.create(fields)
        store.refresh_client_stats(record.client_id)
        return record

    return _run("create feedback", _create).to_dict()


@router.delete("/feedback/{feedback_id}")
def delete_feedback(feedback_id: str) -> dict[str, Any]:
    """Delete one feedback record and refresh its client's derived fields."""
    store = get_store()

    def _delete() -> None:
        record = _require(
            store.feedback.get_by_id(_check_id(feedback_id)), "feedback", feedback_id
        )
        store.feedback.delete(record.id)
        store.refresh_client_stats(record.client_id)

    _run("delete feedback", _delete)
    return {"deleted": feedback_id}


# -------------------------------------------------------------------
# Forms
# -------------------------------------------------------------------


@router.get("/forms")
def list_forms(status: FormStatus | None = None) -> dict[str, Any]:
    """List forms, optionally by status."""
    store = get_store()
    forms = _run(
        "list forms",
        lambda: store.forms.get_by_status(status) if status else store.forms.get_all(),
    )
    return {"forms": [f.to_dict() for f in forms], "total": len(forms)}


@router.get("/forms/{form_id}")
def get_form(form_id: str) -> dict[str, Any]:
    """Return one form."""
    store = get_store()
    form = _run("get form", lambda: store.forms.get_by_id(_check_id(form_id)))
    return _require(form, "form", form_id).to_dict()


@router.post("/forms", status_code=201)
def create_form(request: FormCreateRequest) -> dict[str, Any]:
    """Create a form; questions without an ID are assigned one."""
    store = get_store()
    fields = request.model_dump()
    fields["description"] = _validator.sanitize_string(fields["description"], max_length=5_000)
    fields["last_modified"] = datetime.now()
    return _run("create form", lambda: store.forms.create(fields)).to_dict()


@router.patch("/forms/{form_id}")
def update_form(form_id: str, request: FormUpdateRequest) -> dict[str, Any]:
    """Apply a partial update to a form and stamp ``last_modified``."""
    store = get_store()
    fields = request.model_dump(exclude_unset=True)
    if fields.get("description"):
        fields["description"] = _validator.sanitize_string(
            fields["description"], max_length=5_000
        )
    if "questions" in fields and fields["questions"] is not None:
        fields["questions"] = [Question.from_dict(q) for q in fields["questions"]]
    fields["last_modified"] = datetime.now()
    return _run("update form", lambda: store.forms.update(_check_id(form_id), fields)).to_dict()


@router.post("/forms/{form_id}/publish")
def publish_form(form_id: str) -> dict[str, Any]:
    """Mark a form as published.

    Raises:
        HTTPException: 409 if the form has no questions.
    """
    store = get_store()
    form = _require(
        _run("get form", lambda: store.forms.get_by_id(_check_id(form_id))), "form", form_id
    )
    if not form.questions:
        raise HTTPException(status_code=409, detail="A form needs at least one question")
    updated = _run(
        "publish form",
        lambda: store.forms.update(
            form_id, {"status": FormStatus.PUBLISHED, "last_modified": datetime.now()}
        ),
    )
    return updated.to_dict()


@router.delete("/forms/{form_id}")
def delete_form(form_id: str) -> dict[str, Any]:
    """Delete one form."""
    store = get_store()
    _run("delete form", lambda: store.forms.delete(_check_id(form_id)))
    return {"deleted": form_id}


@router.post("/forms/bulk-delete")
def bulk_delete_forms(request: BulkIdsRequest) -> dict[str, Any]:
    """Delete several forms; each ID succeeds or fails on its own."""
    store = get_store()
    ids = _run("validate ids", lambda: _validator.validate_identifiers(request.ids))
    return run_bulk(ids, store.forms.delete).to_dict()


# -------------------------------------------------------------------
# Reports
# -------------------------------------------------------------------


@router.get("/reports")
def list_reports(
    status: ReportStatus | None = None,
    report_type: ReportType | None = Query(default=None, alias="type"),
) -> dict[str, Any]:
    """List reports, optionally by status and/or type."""
    store = get_store()

    def _list() -> list[Any]:
        if status is not None:
            reports = store.reports.get_by_status(status)
            return [r for r in reports if report_type is None or r.type == report_type]
        if report_type is not None:
            return store.reports.get_by_type(report_type)
        return store.reports.get_all()

    reports = _run("list reports", _list)
    return {"reports": [r.to_dict() for r in reports], "total": len(reports)}


@router.get("/reports/{report_id}")
def get_report(report_id: str) -> dict[str, Any]:
    """Return one report."""
    store = get_store()
    report = _run("get report", lambda: store.reports.get_by_id(_check_id(report_id)))
    return _require(report, "report", report_id).to_dict()


@router.post("/reports", status_code=201)
def create_report(request: ReportCreateRequest) -> dict[str, Any]:
    """Create a pending report."""
    if request.date_range not in REPORT_DATE_RANGES:
        raise HTTPException(
            status_code=422,
            detail=f"date_range must be one of {', '.join(str(d) for d in REPORT_DATE_RANGES)}",
        )
    store = get_store()
    fields = request.model_dump()
    fields["description"] = _validator.sanitize_string(fields["description"], max_length=5_000)
    fields["status"] = ReportStatus.PENDING
    return _run("create report", lambda: store.reports.create(fields)).to_dict()


@router.patch("/reports/{report_id}")
def update_report(report_id: str, request: ReportUpdateRequest) -> dict[str, Any]:
    """Edit a report's title, description, or schedule."""
    store = get_store()
    fields = request.model_dump(exclude_unset=True)
    return _run(
        "update report", lambda: store.reports.update(_check_id(report_id), fields)
    ).to_dict()


@router.delete("/reports/{report_id}")
def delete_report(report_id: str) -> dict[str, Any]:
    """Delete one report."""
    store = get_store()
    _run("delete report", lambda: store.reports.delete(_check_id(report_id)))
    _reports_deleted([report_id])
    return {"deleted": report_id}


@router.post("/reports/bulk-delete")
def bulk_delete_reports(request: BulkIdsRequest) -> dict[str, Any]:
    """Delete several reports; each ID succeeds or fails on its own."""
    store = get_store()
    ids = _run("validate ids", lambda: _validator.validate_identifiers(request.ids))
    result = run_bulk(ids, store.reports.delete)
    _reports_deleted(result.succeeded)
    return result.to_dict()


# -------------------------------------------------------------------
# Settings
# -------------------------------------------------------------------


def _check_section(section: str) -> None:
    if section not in DEFAULT_SETTINGS:
        raise HTTPException(status_code=404, detail=f"Unknown settings section: '{section}'")


@router.get("/settings")
def get_all_settings() -> dict[str, Any]:
    """Return every settings section."""
    return {"settings": get_settings().get()}


@router.get("/settings/{section}")
def get_settings_section(section: str) -> dict[str, Any]:
    """Return one settings section."""
    _check_section(section)
    return {"section": section, "values": get_settings().get_section(section)}


@router.put("/settings/{section}")
def save_settings_section(section: str, request: SaveSettingsRequest) -> dict[str, Any]:
    """Save changes to one settings section."""
    _check_section(section)
    try:
        values = get_settings().save_section(section, request.values)
    except SettingsError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"section": section, "values": values}


@router.post("/settings/{section}/reset")
def reset_settings_section(section: str) -> dict[str, Any]:
    """Restore one settings section to its defaults."""
    _check_section(section)
    return {"section": section, "values": get_settings().reset_section(section)}
