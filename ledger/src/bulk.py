"""Concurrent bulk operations with per-item outcomes.

A bulk action (delete N selected clients, set the status of N clients)
fans out one record-store call per ID on a thread pool and joins on all
of them. The result lists exactly which IDs succeeded and which failed
and why, so one failure never masks the others.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

_DEFAULT_MAX_WORKERS = 8


@dataclass
class BulkResult:
    """Outcome of a bulk operation.

    Attributes:
        succeeded: IDs whose action completed, in request order.
        failed: Mapping of failed ID to error message, in request order.
    """

    succeeded: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)

    @property
    def succeeded_count(self) -> int:
        """Number of successful items."""
        return len(self.succeeded)

    @property
    def failed_count(self) -> int:
        """Number of failed items."""
        return len(self.failed)

    @property
    def all_succeeded(self) -> bool:
        """True when no item failed."""
        return not self.failed

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "succeeded": list(self.succeeded),
            "failed": [{"id": rid, "error": msg} for rid, msg in self.failed.items()],
            "succeeded_count": self.succeeded_count,
            "failed_count": self.failed_count,
        }


def run_bulk(
    record_ids: Iterable[str],
    action: Callable[[str], Any],
    max_workers: int = _DEFAULT_MAX_WORKERS,
) -> BulkResult:
    """Apply *action* to every ID concurrently and collect outcomes.

    Duplicate IDs are processed once. Exceptions raised by *action* are
    recorded against their ID; they are never re-raised.

    Args:
        record_ids: IDs to process.
        action: Callable invoked with each ID.
        max_workers: Upper bound on concurrent calls.

    Returns:
        BulkResult listing succeeded and failed IDs in request order.
    """
    ids = list(dict.fromkeys(record_ids))
    result = BulkResult()
    if not ids:
        return result

    workers = max(1, min(max_workers, len(ids)))
    with ThreadPoolExecutor(max_workers=workers) as pool:
        futures = [(rid, pool.submit(action, rid)) for rid in ids]
        for rid, future in futures:
            exc = future.exception()
            if exc is None:
                result.succeeded.append(rid)
            else:
                result.failed[rid] = str(exc) or type(exc).__name__

    if result.failed:
        logger.warning(
            "Bulk operation: %d succeeded, %d failed (%s)",
            result.succeeded_count,
            result.failed_count,
            ", ".join(result.failed),
        )
    else:
        logger.info("Bulk operation: %d succeeded", result.succeeded_count)
    return result
