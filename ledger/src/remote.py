"""Remote record-API backend.

Talks to the hosted record service over HTTP with a shared
``requests.Session``. Every call carries a timeout. Reads retry transient
transport failures (connection errors, timeouts) with exponential
backoff. Writes retry only when the connection was never established,
since a read timeout may hide a write the service already applied.
Anything else surfaces as ``RecordStoreError`` so the view layer can
show a notice and keep its previous state.

Wire shape (owned by the record service)::

    POST   /tables/{kind}/records/query   {"where": [...]}        -> {"success", "data": [...]}
    GET    /tables/{kind}/records/{id}                            -> {"success", "data": {...}}
    POST   /tables/{kind}/records         {"records": [{...}]}    -> {"success", "results": [...]}
    PATCH  /tables/{kind}/records         {"records": [{...}]}    -> {"success", "results": [...]}
    DELETE /tables/{kind}/records         {"record_ids": [...]}   -> {"success"}
"""

from __future__ import annotations

import logging
from typing import Any

import requests

from ledger.src.store import (
    Condition,
    Operator,
    RecordBackend,
    RecordNotFoundError,
    RecordStoreError,
)
from shared.hardening import RetriesExhaustedError, RetryConfig, retry_with_backoff

logger = logging.getLogger(__name__)

_OPERATOR_NAMES = {
    Operator.EXACT: "ExactMatch",
    Operator.GTE: "GreaterThanOrEqualTo",
    Operator.LTE: "LessThanOrEqualTo",
}

_TRANSIENT = (requests.ConnectionError, requests.Timeout)
_UNSENT = (requests.ConnectTimeout,)


class RemoteBackend(RecordBackend):
    """Record backend backed by the hosted record API.

    Args:
        base_url: Root URL of the record API.
        project_id: Project identifier header value.
        api_key: Public API key header value.
        timeout: Per-request timeout in seconds.
        max_attempts: Total attempts for transient failures.
        session: Optional pre-built session (injected in tests).
        sleep_func: Optional sleep used between retries (injected in tests).
    """

    def __init__(
        self,
        base_url: str,
        project_id: str = "",
        api_key: str = "",
        timeout: float = 10.0,
        max_attempts: int = 3,
        session: requests.Session | None = None,
        sleep_func: Any = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session = session or requests.Session()
        self._session.headers.update(
            {
                "Accept": "application/json",
                "X-Project-Id": project_id,
                "X-Api-Key": api_key,
            }
        )
        self._retry = RetryConfig(max_attempts=max_attempts, retryable_exceptions=_TRANSIENT)
        self._write_retry = RetryConfig(max_attempts=max_attempts, retryable_exceptions=_UNSENT)
        self._sleep = sleep_func

    def close(self) -> None:
        """Close the underlying HTTP session."""
        self._session.close()

    # ---------------------------------------------------------------
    # Transport
    # ---------------------------------------------------------------

    def _url(self, kind: str, *parts: str) -> str:
        return "/".join([self.base_url, "tables", kind, "records", *parts])

    def _send(self, method: str, url: str, payload: dict[str, Any] | None) -> requests.Response:
        return self._session.request(method, url, json=payload, timeout=self.timeout)

    def _request(
        self,
        method: str,
        url: str,
        payload: dict[str, Any] | None = None,
        *,
        not_found_message: str | None = None,
        write: bool = False,
    ) -> dict[str, Any]:
        """Send one request with retries and decode the JSON envelope.

        Args:
            method: HTTP method.
            url: Absolute URL.
            payload: JSON body (optional).
            not_found_message: If given, a 404 raises RecordNotFoundError with it.
            write: The request changes records, so only failures to connect
                are retried.

        Returns:
            Decoded response envelope.

        Raises:
            RecordNotFoundError: On 404 when *not_found_message* is set.
            RecordStoreError: On any other failure.
        """
        try:
            response = retry_with_backoff(
                self._send,
                self._write_retry if write else self._retry,
                method,
                url,
                payload,
                sleep_func=self._sleep,
            )
        except RetriesExhaustedError as exc:
            logger.error("Record API unreachable: %s %s", method, url)
            raise RecordStoreError("Record service is unreachable") from exc
        except requests.RequestException as exc:
            raise RecordStoreError(f"Record service request failed: {exc}") from exc

        if response.status_code == 404 and not_found_message is not None:
            raise RecordNotFoundError(not_found_message)
        if response.status_code in (401, 403):
            raise RecordStoreError("Record service rejected the credentials") from PermissionError(
                response.status_code
            )
        if response.status_code >= 400:
            raise RecordStoreError(
                f"Record service returned HTTP {response.status_code} for {method} {url}"
            )
        try:
            body = response.json()
        except ValueError as exc:
            raise RecordStoreError("Record service returned invalid JSON") from exc
        if not isinstance(body, dict):
            raise RecordStoreError("Record service returned an unexpected payload")
        return body

    @staticmethod
    def _first_result(body: dict[str, Any], action: str) -> dict[str, Any]:
        results = body.get("results") or []
        if body.get("success") and results and results[0].get("success"):
            data = results[0].get("data")
            if isinstance(data, dict):
                return data
        message = results[0].get("message") if results else None
        raise RecordStoreError(message or f"Failed to {action} record")

    # ---------------------------------------------------------------
    # RecordBackend
    # ---------------------------------------------------------------

    def fetch(self, kind: str, conditions: list[Condition] | None = None) -> list[dict[str, Any]]:
        """Query records of *kind* matching every condition."""
        where = [
            {
                "fieldName": c.field,
                "operator": _OPERATOR_NAMES[c.operator],
                "values": [c.value],
            }
            for c in conditions or []
        ]
        body = self._request("POST", self._url(kind, "query"), {"where": where})
        data = body.get("data") or []
        return [row for row in data if isinstance(row, dict)]

    def get(self, kind: str, record_id: str) -> dict[str, Any] | None:
        """Fetch one record, returning None if the service does not know it."""
        try:
            body = self._request(
                "GET", self._url(kind, record_id), not_found_message=f"{kind} '{record_id}'"
            )
        except RecordNotFoundError:
            return None
        data = body.get("data")
        return data if isinstance(data, dict) else None

    def insert(self, kind: str, fields: dict[str, Any]) -> dict[str, Any]:
        """Create a record and return the service's echo including its ID."""
        body = self._request("POST", self._url(kind), {"records": [fields]}, write=True)
        return self._first_result(body, "create")

    def patch(self, kind: str, record_id: str, fields: dict[str, Any]) -> dict[str, Any]:
        """Update a record and return the service's echo."""
        body = self._request(
            "PATCH",
            self._url(kind),
            {"records": [{**fields, "id": record_id}]},
            not_found_message=f"{kind} '{record_id}' not found",
            write=True,
        )
        return self._first_result(body, "update")

    def remove(self, kind: str, record_ids: list[str]) -> bool:
        """Delete records by ID."""
        body = self._request(
            "DELETE",
            self._url(kind),
            {"record_ids": record_ids},
            not_found_message=f"{kind} not found: {', '.join(record_ids)}",
            write=True,
        )
        if not body.get("success"):
            raise RecordStoreError(f"Failed to delete {kind} record(s)")
        return True
