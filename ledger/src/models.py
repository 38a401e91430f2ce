"""Ledger data models for the feedback dashboard.

Defines the four record kinds held by the record store: clients,
feedback records, feedback forms, and reports. All models use
dataclasses with prefixed UUID identifiers and dictionary
serialization. ``from_dict`` is deliberately tolerant: records arriving
from the remote store may be missing fields, carry unknown enum values,
or have unparseable timestamps, and those degrade to defaults.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, TypeVar

_E = TypeVar("_E", bound=Enum)


class ClientStatus(str, Enum):
    """Account status of a client."""

    ACTIVE = "active"
    INACTIVE = "inactive"
    PENDING = "pending"
    BLOCKED = "blocked"


class FormCategory(str, Enum):
    """What a feedback form measures."""

    SATISFACTION = "satisfaction"
    NPS = "nps"
    PRODUCT = "product"
    SERVICE = "service"
    EVENT = "event"


class FormStatus(str, Enum):
    """Publication status of a feedback form."""

    DRAFT = "draft"
    PUBLISHED = "published"
    ARCHIVED = "archived"


class QuestionType(str, Enum):
    """Input widget used for a form question."""

    RATING = "rating"
    TEXT = "text"
    SCALE = "scale"
    MULTIPLE = "multiple"


class ReportType(str, Enum):
    """Content of a generated report."""

    FEEDBACK_SUMMARY = "feedback_summary"
    ANALYTICS = "analytics"
    CLIENT_REPORT = "client_report"
    SATISFACTION = "satisfaction"
    NPS = "nps"


class ReportFormat(str, Enum):
    """Download format requested for a report."""

    PDF = "pdf"
    EXCEL = "excel"
    CSV = "csv"


class ReportStatus(str, Enum):
    """Generation status of a report."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class ReportSchedule(str, Enum):
    """How often a report is regenerated."""

    NONE = "none"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


REPORT_DATE_RANGES = (7, 30, 90, 365)


# ===================================================================
# Parsing helpers
# ===================================================================


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO timestamp, date string, or datetime.

    Date-only values become midnight of that day. Anything that cannot
    be parsed yields None rather than raising.

    Args:
        value: Raw timestamp value.

    Returns:
        Parsed datetime, or None.
    """
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if not isinstance(value, str) or not value.strip():
        return None
    raw = value.strip()
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(raw)
    except ValueError:
        return None


def _enum_or_default(enum_cls: type[_E], value: Any, default: _E) -> _E:
    try:
        return enum_cls(value)
    except ValueError:
        return default


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _as_int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _as_float(value: Any, default: float = 0.0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


# ===================================================================
# Client
# ===================================================================


@dataclass
class Client:
    """A customer whose feedback is tracked.

    Attributes:
        id: Unique identifier (prefixed with 'cli_').
        name: Display name.
        email: Contact email.
        company: Company name (optional).
        phone: Phone number (optional).
        industry: Industry label shown in performance tables (optional).
        status: Account status.
        tags: Free-form labels.
        created_at: Creation timestamp.
        last_contact: Most recent contact timestamp.
        feedback_count: Derived count of feedback records.
        average_rating: Derived mean rating, 0-5.
    """

    id: str
    name: str
    email: str = ""
    company: str | None = None
    phone: str | None = None
    industry: str | None = None
    status: ClientStatus = ClientStatus.ACTIVE
    tags: list[str] = field(default_factory=list)
    created_at: datetime | None = field(default_factory=datetime.now)
    last_contact: datetime | None = None
    feedback_count: int = 0
    average_rating: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "company": self.company,
            "phone": self.phone,
            "industry": self.industry,
            "status": self.status.value,
            "tags": list(self.tags),
            "created_at": _iso(self.created_at),
            "last_contact": _iso(self.last_contact),
            "feedback_count": self.feedback_count,
            "average_rating": self.average_rating,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Client:
        """Deserialize from dictionary."""
        return cls(
            id=str(data.get("id", "")),
            name=data.get("name") or "",
            email=data.get("email") or "",
            company=data.get("company"),
            phone=data.get("phone"),
            industry=data.get("industry"),
            status=_enum_or_default(ClientStatus, data.get("status"), ClientStatus.ACTIVE),
            tags=list(data.get("tags") or []),
            created_at=parse_timestamp(data.get("created_at")),
            last_contact=parse_timestamp(data.get("last_contact")),
            feedback_count=max(0, _as_int(data.get("feedback_count"))),
            average_rating=min(5.0, max(0.0, _as_float(data.get("average_rating")))),
        )


# ===================================================================
# Feedback
# ===================================================================


@dataclass
class RatingAnswer:
    """One rated answer inside a feedback record.

    Attributes:
        question_ref: ID of the form question this answers.
        value: Numeric scale point (observed range 1-5).
    """

    question_ref: str
    value: float

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {"question_ref": self.question_ref, "value": self.value}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RatingAnswer:
        """Deserialize from dictionary; a missing value becomes 0."""
        return cls(
            question_ref=str(data.get("question_ref", "")),
            value=_as_float(data.get("value")),
        )


@dataclass
class FeedbackRecord:
    """One submitted response to a feedback form.

    Attributes:
        id: Unique identifier (prefixed with 'fb_').
        client_id: Client the response belongs to (not enforced).
        form_id: Form that was answered (optional).
        submitted_at: Submission timestamp.
        ratings: Ordered rated answers.
        source: Channel the response came through (optional).
        comment: Free-text comment (optional).
    """

    id: str
    client_id: str | None = None
    form_id: str | None = None
    submitted_at: datetime | None = field(default_factory=datetime.now)
    ratings: list[RatingAnswer] = field(default_factory=list)
    source: str | None = None
    comment: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "id": self.id,
            "client_id": self.client_id,
            "form_id": self.form_id,
            "submitted_at": _iso(self.submitted_at),
            "ratings": [r.to_dict() for r in self.ratings],
            "source": self.source,
            "comment": self.comment,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FeedbackRecord:
        """Deserialize from dictionary."""
        raw_ratings = data.get("ratings") or []
        return cls(
            id=str(data.get("id", "")),
            client_id=data.get("client_id"),
            form_id=data.get("form_id"),
            submitted_at=parse_timestamp(data.get("submitted_at")),
            ratings=[RatingAnswer.from_dict(r) for r in raw_ratings if isinstance(r, dict)],
            source=data.get("source"),
            comment=data.get("comment"),
        )


# ===================================================================
# Forms
# ===================================================================


@dataclass
class Question:
    """A single question on a feedback form.

    Attributes:
        id: Identifier unique within the form.
        type: Input widget type.
        text: Question wording.
        options: Choices for multiple-choice questions.
        required: Whether an answer is mandatory.
    """

    id: str
    type: QuestionType = QuestionType.RATING
    text: str = ""
    options: list[str] = field(default_factory=list)
    required: bool = False

    @staticmethod
    def generate_id() -> str:
        """Generate a unique question ID."""
        return f"q_{uuid.uuid4().hex[:8]}"

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "id": self.id,
            "type": self.type.value,
            "text": self.text,
            "options": list(self.options),
            "required": self.required,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Question:
        """Deserialize from dictionary."""
        return cls(
            id=str(data.get("id") or cls.generate_id()),
            type=_enum_or_default(QuestionType, data.get("type"), QuestionType.RATING),
            text=data.get("text") or "",
            options=list(data.get("options") or []),
            required=bool(data.get("required", False)),
        )


@dataclass
class Form:
    """A feedback form built by the operator.

    Attributes:
        id: Unique identifier (prefixed with 'form_').
        title: Form title.
        description: What the form is for.
        category: What the form measures.
        status: Publication status.
        questions: Ordered questions.
        created_at: Creation timestamp.
        last_modified: Last edit timestamp.
        responses: Number of responses received.
    """

    id: str
    title: str
    description: str = ""
    category: FormCategory = FormCategory.SATISFACTION
    status: FormStatus = FormStatus.DRAFT
    questions: list[Question] = field(default_factory=list)
    created_at: datetime | None = field(default_factory=datetime.now)
    last_modified: datetime | None = field(default_factory=datetime.now)
    responses: int = 0

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "category": self.category.value,
            "status": self.status.value,
            "questions": [q.to_dict() for q in self.questions],
            "created_at": _iso(self.created_at),
            "last_modified": _iso(self.last_modified),
            "responses": self.responses,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Form:
        """Deserialize from dictionary."""
        return cls(
            id=str(data.get("id", "")),
            title=data.get("title") or "",
            description=data.get("description") or "",
            category=_enum_or_default(
                FormCategory, data.get("category"), FormCategory.SATISFACTION
            ),
            status=_enum_or_default(FormStatus, data.get("status"), FormStatus.DRAFT),
            questions=[
                Question.from_dict(q) for q in data.get("questions") or [] if isinstance(q, dict)
            ],
            created_at=parse_timestamp(data.get("created_at")),
            last_modified=parse_timestamp(data.get("last_modified")),
            responses=max(0, _as_int(data.get("responses"))),
        )


# ===================================================================
# Reports
# ===================================================================


@dataclass
class Report:
    """A generated (or pending) analytics report.

    Attributes:
        id: Unique identifier (prefixed with 'rep_').
        title: Report title.
        type: What the report contains.
        description: Operator-supplied description.
        date_range: Look-back window in days (7, 30, 90 or 365).
        format: Download format.
        schedule: Regeneration schedule.
        status: Generation status.
        file_size: Artefact size in KB.
        download_count: Number of downloads.
        download_url: Where the artefact can be fetched.
        created_at: Creation timestamp.
        completed_at: When generation finished.
        last_downloaded: Most recent download timestamp.
    """

    id: str
    title: str
    type: ReportType = ReportType.FEEDBACK_SUMMARY
    description: str = ""
    date_range: int = 30
    format: ReportFormat = ReportFormat.PDF
    schedule: ReportSchedule = ReportSchedule.NONE
    status: ReportStatus = ReportStatus.PENDING
    file_size: int = 0
    download_count: int = 0
    download_url: str | None = None
    created_at: datetime | None = field(default_factory=datetime.now)
    completed_at: datetime | None = None
    last_downloaded: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "id": self.id,
            "title": self.title,
            "type": self.type.value,
            "description": self.description,
            "date_range": self.date_range,
            "format": self.format.value,
            "schedule": self.schedule.value,
            "status": self.status.value,
            "file_size": self.file_size,
            "download_count": self.download_count,
            "download_url": self.download_url,
            "created_at": _iso(self.created_at),
            "completed_at": _iso(self.completed_at),
            "last_downloaded": _iso(self.last_downloaded),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Report:
        """Deserialize from dictionary."""
        date_range = _as_int(data.get("date_range"), 30)
        if date_range not in REPORT_DATE_RANGES:
            date_range = 30
        return cls(
            id=str(data.get("id", "")),
            title=data.get("title") or "",
            type=_enum_or_default(ReportType, data.get("type"), ReportType.FEEDBACK_SUMMARY),
            description=data.get("description") or "",
            date_range=date_range,
            format=_enum_or_default(ReportFormat, data.get("format"), ReportFormat.PDF),
            schedule=_enum_or_default(ReportSchedule, data.get("schedule"), ReportSchedule.NONE),
            status=_enum_or_default(ReportStatus, data.get("status"), ReportStatus.PENDING),
            file_size=max(0, _as_int(data.get("file_size"))),
            download_count=max(0, _as_int(data.get("download_count"))),
            download_url=data.get("download_url"),
            created_at=parse_timestamp(data.get("created_at")),
            completed_at=parse_timestamp(data.get("completed_at")),
            last_downloaded=parse_timestamp(data.get("last_downloaded")),
        )
