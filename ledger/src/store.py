"""Record store capability for clients, feedback, forms, and reports.

The store is split in two layers:

* A ``RecordBackend`` moves plain dictionaries in and out of a table
  named after the record kind. Two backends exist: ``InMemoryBackend``
  (demo mode and tests) and ``RemoteBackend`` in ``ledger.src.remote``.
* A ``Repository`` per record kind converts those dictionaries to and
  from the dataclasses in ``ledger.src.models``, restricts writes to the
  kind's updateable fields, and offers the kind-specific filters.

``RecordStore`` bundles the four repositories over a single backend.

Example::

    store = RecordStore(InMemoryBackend())
    client = store.clients.create({"name": "Acme", "email": "ops@acme.test"})
    store.feedback.get_by_client(client.id)
"""

from __future__ import annotations

import copy
import logging
import threading
from abc import ABC, abstractmethod
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Generic, TypeVar

from gauge.src.aggregation import rank_client_performance
from ledger.src.models import (
    Client,
    ClientStatus,
    FeedbackRecord,
    Form,
    FormStatus,
    Report,
    ReportStatus,
    ReportType,
    parse_timestamp,
)

logger = logging.getLogger(__name__)

T = TypeVar("T", Client, FeedbackRecord, Form, Report)


class RecordStoreError(Exception):
    """Raised when the record store cannot complete an operation."""


class RecordNotFoundError(RecordStoreError, LookupError):
    """Raised when a record ID does not exist in its table."""


# ===================================================================
# Query conditions
# ===================================================================


class Operator(str, Enum):
    """Comparison applied by a query condition."""

    EXACT = "exact"
    GTE = "gte"
    LTE = "lte"


@dataclass(frozen=True)
class Condition:
    """A single where-clause applied by ``RecordBackend.fetch``.

    Attributes:
        field: Record field to compare.
        operator: Comparison to apply.
        value: Right-hand operand.
    """

    field: str
    operator: Operator
    value: Any

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {"field": self.field, "operator": self.operator.value, "value": self.value}


def _naive_local(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone().replace(tzinfo=None)


def _comparable(value: Any) -> Any:
    """Turn timestamps into naive local datetimes so they order correctly."""
    parsed = parse_timestamp(value) if isinstance(value, (str, datetime)) else None
    if parsed is not None:
        return _naive_local(parsed)
    return value


def matches(record: dict[str, Any], condition: Condition) -> bool:
    """Return True when *record* satisfies *condition*.

    Records missing the field, or holding a value that cannot be
    ordered against the operand, never match.

    Args:
        record: Stored record dictionary.
        condition: Condition to evaluate.

    Returns:
        Whether the record matches.
    """
    if condition.field not in record or record[condition.field] is None:
        return False
    actual = record[condition.field]
    if condition.operator == Operator.EXACT:
        return actual == condition.value
    left, right = _comparable(actual), _comparable(condition.value)
    try:
        if condition.operator == Operator.GTE:
            return left >= right
        return left <= right
    except TypeError:
        return False


# ===================================================================
# Backends
# ===================================================================


class RecordBackend(ABC):
    """Storage-agnostic table operations on plain dictionaries."""

    @abstractmethod
    def fetch(self, kind: str, conditions: list[Condition] | None = None) -> list[dict[str, Any]]:
        """Return all records of *kind* matching every condition."""

    @abstractmethod
    def get(self, kind: str, record_id: str) -> dict[str, Any] | None:
        """Return one record, or None if it does not exist."""

    @abstractmethod
    def insert(self, kind: str, fields: dict[str, Any]) -> dict[str, Any]:
        """Insert a record and return it with its assigned ``id``."""

    @abstractmethod
    def patch(self, kind: str, record_id: str, fields: dict[str, Any]) -> dict[str, Any]:
        """Merge *fields* into a record and return the result.

        Raises:
            RecordNotFoundError: If the record does not exist.
        """

    @abstractmethod
    def remove(self, kind: str, record_ids: list[str]) -> bool:
        """Delete records by ID.

        Raises:
            RecordNotFoundError: If any ID does not exist.
        """


_ID_PREFIXES = {
    "client": "cli",
    "feedback": "fb",
    "form": "form",
    "report": "rep",
}


class InMemoryBackend(RecordBackend):
    """Thread-safe in-process tables used for demo mode and tests.

    Each instance owns its own tables; nothing is shared between
    instances. Records handed in or out are deep-copied so callers can
    never mutate stored state.
    """

    def __init__(self) -> None:
        """Initialize empty tables."""
        self._tables: dict[str, dict[str, dict[str, Any]]] = {kind: {} for kind in _ID_PREFIXES}
        self._lock = threading.Lock()
        self._counter = 0

    def _table(self, kind: str) -> dict[str, dict[str, Any]]:
        if kind not in self._tables:
            raise RecordStoreError(f"Unknown record kind: '{kind}'")
        return self._tables[kind]

    def _next_id(self, kind: str) -> str:
        self._counter += 1
        return f"{_ID_PREFIXES[kind]}_{self._counter:06d}"

    def fetch(self, kind: str, conditions: list[Condition] | None = None) -> list[dict[str, Any]]:
        """Return all records of *kind* matching every condition."""
        with self._lock:
            rows = list(self._table(kind).values())
            if conditions:
                rows = [r for r in rows if all(matches(r, c) for c in conditions)]
            return copy.deepcopy(rows)

    def get(self, kind: str, record_id: str) -> dict[str, Any] | None:
        """Return one record, or None if it does not exist."""
        with self._lock:
            row = self._table(kind).get(record_id)
            return copy.deepcopy(row) if row is not None else None

    def insert(self, kind: str, fields: dict[str, Any]) -> dict[str, Any]:
        """Insert a record, assigning an ID when none is supplied.

        Raises:
            RecordStoreError: If the supplied ID already exists.
        """
        with self._lock:
            table = self._table(kind)
            record = copy.deepcopy(fields)
            record_id = record.get("id") or self._next_id(kind)
            if record_id in table:
                raise RecordStoreError(f"{kind} '{record_id}' already exists")
            record["id"] = record_id
            table[record_id] = record
            return copy.deepcopy(record)

    def patch(self, kind: str, record_id: str, fields: dict[str, Any]) -> dict[str, Any]:
        """Merge *fields* into a record and return the result."""
        with self._lock:
            table = self._table(kind)
            if record_id not in table:
                raise RecordNotFoundError(f"{kind} '{record_id}' not found")
            table[record_id].update(copy.deepcopy(fields))
            table[record_id]["id"] = record_id
            return copy.deepcopy(table[record_id])

    def remove(self, kind: str, record_ids: list[str]) -> bool:
        """Delete records by ID; nothing is deleted if any ID is missing."""
        with self._lock:
            table = self._table(kind)
            missing = [rid for rid in record_ids if rid not in table]
            if missing:
                raise RecordNotFoundError(f"{kind} not found: {', '.join(missing)}")
            for rid in record_ids:
                del table[rid]
            return True


# ===================================================================
# Repositories
# ===================================================================


def _jsonable(value: Any) -> Any:
    """Convert enums, datetimes and dataclass models into JSON-ready values."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


class Repository(Generic[T]):
    """Typed CRUD over one record kind.

    Subclasses set ``kind``, ``model``, and ``updateable_fields``.
    Writes silently drop fields outside ``updateable_fields`` (plus
    ``created_at`` on create), mirroring the record API's own rules.

    Args:
        backend: Backend the repository reads from and writes to.
    """

    kind: str = ""
    model: type[T]
    updateable_fields: tuple[str, ...] = ()

    def __init__(self, backend: RecordBackend) -> None:
        self._backend = backend

    def _filter_fields(self, fields: dict[str, Any], *, creating: bool) -> dict[str, Any]:
        allowed = set(self.updateable_fields)
        if creating:
            allowed.add("created_at")
        return {k: _jsonable(v) for k, v in fields.items() if k in allowed}

    def _to_model(self, row: dict[str, Any]) -> T:
        return self.model.from_dict(row)

    def get_all(self, conditions: list[Condition] | None = None) -> list[T]:
        """Return every record matching *conditions* (all records if None)."""
        rows = self._backend.fetch(self.kind, conditions)
        return [self._to_model(r) for r in rows]

    def get_by_id(self, record_id: str) -> T | None:
        """Return one record or None."""
        row = self._backend.get(self.kind, record_id)
        return self._to_model(row) if row is not None else None

    def create(self, fields: dict[str, Any]) -> T:
        """Create a record and return it including its assigned ID.

        Unset fields take the model defaults before the record is stored.

        Args:
            fields: Field values for the new record.

        Returns:
            The created record as echoed by the backend.
        """
        filtered = self._filter_fields(fields, creating=True)
        filtered.setdefault("created_at", datetime.now().isoformat())
        normalized = self.model.from_dict(filtered).to_dict()
        normalized.pop("id", None)
        row = self._backend.insert(self.kind, normalized)
        logger.info("Created %s '%s'", self.kind, row["id"])
        return self._to_model(row)

    def update(self, record_id: str, fields: dict[str, Any]) -> T:
        """Apply a partial update.

        Args:
            record_id: ID of the record to update.
            fields: Fields to change.

        Returns:
            The updated record.

        Raises:
            RecordNotFoundError: If the record does not exist.
        """
        filtered = self._filter_fields(fields, creating=False)
        row = self._backend.patch(self.kind, record_id, filtered)
        logger.info("Updated %s '%s' (%s)", self.kind, record_id, ", ".join(sorted(filtered)))
        return self._to_model(row)

    def delete(self, record_ids: str | Iterable[str]) -> bool:
        """Delete one record or several.

        Args:
            record_ids: A single ID or an iterable of IDs.

        Returns:
            True when the deletion succeeded.

        Raises:
            RecordNotFoundError: If any ID does not exist.
        """
        ids = [record_ids] if isinstance(record_ids, str) else list(record_ids)
        result = self._backend.remove(self.kind, ids)
        logger.info("Deleted %d %s record(s)", len(ids), self.kind)
        return result


class ClientRepository(Repository[Client]):
    """Repository for clients."""

    kind = "client"
    model = Client
    updateable_fields = (
        "name",
        "email",
        "company",
        "phone",
        "industry",
        "status",
        "tags",
        "last_contact",
        "feedback_count",
        "average_rating",
    )

    def get_by_status(self, status: ClientStatus | str) -> list[Client]:
        """Return clients with the given status."""
        return self.get_all([Condition("status", Operator.EXACT, _jsonable(status))])


class FeedbackRepository(Repository[FeedbackRecord]):
    """Repository for feedback records."""

    kind = "feedback"
    model = FeedbackRecord
    updateable_fields = ("client_id", "form_id", "submitted_at", "ratings", "source", "comment")

    def create(self, fields: dict[str, Any]) -> FeedbackRecord:
        """Create a feedback record, stamping ``submitted_at`` if absent."""
        stamped = dict(fields)
        if not stamped.get("submitted_at"):
            stamped["submitted_at"] = datetime.now()
        return super().create(stamped)

    def get_by_client(self, client_id: str) -> list[FeedbackRecord]:
        """Return feedback belonging to one client."""
        return self.get_all([Condition("client_id", Operator.EXACT, client_id)])

    def get_by_date_range(
        self, start: datetime | str, end: datetime | str
    ) -> list[FeedbackRecord]:
        """Return feedback submitted between *start* and *end* inclusive."""
        return self.get_all(
            [
                Condition("submitted_at", Operator.GTE, _jsonable(start)),
                Condition("submitted_at", Operator.LTE, _jsonable(end)),
            ]
        )


class FormRepository(Repository[Form]):
    """Repository for feedback forms."""

    kind = "form"
    model = Form
    updateable_fields = (
        "title",
        "description",
        "category",
        "status",
        "questions",
        "last_modified",
        "responses",
    )

    def get_by_status(self, status: FormStatus | str) -> list[Form]:
        """Return forms with the given status."""
        return self.get_all([Condition("status", Operator.EXACT, _jsonable(status))])


class ReportRepository(Repository[Report]):
    """Repository for reports."""

    kind = "report"
    model = Report
    updateable_fields = (
        "title",
        "type",
        "description",
        "date_range",
        "format",
        "schedule",
        "status",
        "file_size",
        "download_count",
        "download_url",
        "completed_at",
        "last_downloaded",
    )

    def get_by_status(self, status: ReportStatus | str) -> list[Report]:
        """Return reports with the given status."""
        return self.get_all([Condition("status", Operator.EXACT, _jsonable(status))])

    def get_by_type(self, report_type: ReportType | str) -> list[Report]:
        """Return reports of the given type."""
        return self.get_all([Condition("type", Operator.EXACT, _jsonable(report_type))])


class RecordStore:
    """The four repositories sharing one backend.

    Attributes:
        backend: The underlying backend.
        clients: Client repository.
        feedback: Feedback repository.
        forms: Form repository.
        reports: Report repository.
    """

    def __init__(self, backend: RecordBackend) -> None:
        self.backend = backend
        self.clients = ClientRepository(backend)
        self.feedback = FeedbackRepository(backend)
        self.forms = FormRepository(backend)
        self.reports = ReportRepository(backend)

    def refresh_client_stats(self, client_id: str | None) -> Client | None:
        """Recompute a client's ``feedback_count`` and ``average_rating``.

        Uses the same per-client aggregation as the performance table, so
        both views always agree.

        Args:
            client_id: Client whose feedback changed.

        Returns:
            The updated client, or None when the ID names no client
            (orphaned feedback).
        """
        if not client_id:
            return None
        client = self.clients.get_by_id(client_id)
        if client is None:
            return None
        row = rank_client_performance([client], self.feedback.get_by_client(client_id))[0]
        return self.clients.update(
            client_id, {"feedback_count": row.responses, "average_rating": row.avg_rating}
        )
