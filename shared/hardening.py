"""Boundary hardening utilities for the PulsePoint backend.

Provides retry logic for the remote record store, user-friendly error
formatting for the dashboard's notices, and input validation for values
arriving over HTTP.
"""

from __future__ import annotations

import html
import logging
import re
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# 1. Retrying record-service calls
# ---------------------------------------------------------------------------

_DEFAULT_RETRYABLE = (OSError, TimeoutError, ConnectionError)


@dataclass
class RetryConfig:
    """How often and how patiently to retry a record-service call.

    Attributes:
        max_attempts: Attempts in total, the first call included.
        base_delay: Seconds to wait after the first failure.
        max_delay: Ceiling on any single wait, in seconds.
        exponential_backoff: Double the wait after every failure.
        retryable_exceptions: Exception types treated as transient.
    """

    max_attempts: int = 3
    base_delay: float = 0.5
    max_delay: float = 8.0
    exponential_backoff: bool = True
    retryable_exceptions: tuple[type[BaseException], ...] = _DEFAULT_RETRYABLE


class RetriesExhaustedError(Exception):
    """Every attempt failed with a transient error.

    Attributes:
        last_error: Error raised by the final attempt.
        attempts: How many attempts were made.
    """

    def __init__(self, last_error: Exception, attempts: int) -> None:
        self.last_error = last_error
        self.attempts = attempts
        super().__init__(f"Gave up after {attempts} attempts: {last_error}")


def _compute_delay(attempt: int, config: RetryConfig) -> float:
    """Seconds to wait after failed attempt number *attempt* (zero-based)."""
    factor = 2**attempt if config.exponential_backoff else 1
    return min(config.base_delay * factor, config.max_delay)


def retry_with_backoff(
    func: Callable[..., Any],
    config: RetryConfig | None = None,
    *args: Any,
    sleep_func: Callable[[float], None] | None = None,
    **kwargs: Any,
) -> Any:
    """Call ``func(*args, **kwargs)``, retrying transient failures.

    Errors outside ``config.retryable_exceptions`` propagate at once.
    Between attempts the caller sleeps for ``_compute_delay`` seconds;
    ``sleep_func`` replaces ``time.sleep`` so tests need not wait.

    Returns:
        The first successful result.

    Raises:
        RetriesExhaustedError: If the last attempt also failed transiently.
    """
    cfg = config or RetryConfig()
    pause = sleep_func or time.sleep
    failure: Exception | None = None

    for attempt in range(1, cfg.max_attempts + 1):
        try:
            return func(*args, **kwargs)
        except cfg.retryable_exceptions as exc:
            failure = exc
            if attempt == cfg.max_attempts:
                break
            wait = _compute_delay(attempt - 1, cfg)
            logger.warning(
                "Transient failure on attempt %d of %d: %s; waiting %.1fs",
                attempt,
                cfg.max_attempts,
                exc,
                wait,
            )
            pause(wait)

    raise RetriesExhaustedError(failure, cfg.max_attempts)  # type: ignore[arg-type]


# ---------------------------------------------------------------------------
# 2. Error Formatting
# ---------------------------------------------------------------------------


@dataclass
class UserFriendlyError:
    """A structured error designed for the dashboard's notice banner.

    Attributes:
        message: Clear description for the operator.
        suggestion: Actionable guidance.
        component: Originating subsystem (ledger, gauge).
        error_code: Machine-readable identifier (e.g. "STORE_003").
        technical_detail: Debugging info for logs only -- never shown to users.
    """

    message: str
    suggestion: str
    component: str
    error_code: str
    technical_detail: str = ""

    def to_dict(self) -> dict[str, str]:
        """Serialize for API responses (excludes technical_detail).

        Returns:
            Dictionary safe for sending to end users.
        """
        return {
            "message": self.message,
            "suggestion": self.suggestion,
            "component": self.component,
            "error_code": self.error_code,
        }


class ErrorFormatter:
    """Convert internal exceptions to user-friendly messages.

    All methods return a ``UserFriendlyError`` and never expose URLs,
    stack traces, or record-store internals to the operator.
    """

    def format_store_error(self, error: Exception) -> UserFriendlyError:
        """Format a record-store (adapter) failure.

        Args:
            error: The caught exception.

        Returns:
            User-friendly error with actionable suggestion.
        """
        return self._format(error, component="ledger", code_prefix="STORE")

    def format_report_error(self, error: Exception) -> UserFriendlyError:
        """Format a report-generation failure.

        Args:
            error: The caught exception.

        Returns:
            User-friendly error with actionable suggestion.
        """
        return self._format(error, component="gauge", code_prefix="REPORT")

    # ------------------------------------------------------------------

    def _format(
        self,
        error: Exception,
        *,
        component: str,
        code_prefix: str,
    ) -> UserFriendlyError:
        """Shared formatting logic.

        Args:
            error: The caught exception.
            component: Subsystem name.
            code_prefix: Short prefix for error code.

        Returns:
            Structured error with safe user message.
        """
        message, suggestion, code_suffix = _classify_error(error)
        return UserFriendlyError(
            message=message,
            suggestion=suggestion,
            component=component,
            error_code=f"{code_prefix}_{code_suffix}",
            technical_detail=repr(error),
        )


def _error_chain(error: BaseException) -> Iterable[BaseException]:
    """Yield *error* followed by its explicit causes, innermost last."""
    seen: set[int] = set()
    current: BaseException | None = error
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        current = current.__cause__


def _classify_error(error: Exception) -> tuple[str, str, str]:
    """Map an exception to (message, suggestion, code_suffix).

    The explicit ``__cause__`` chain is inspected so that a wrapped
    transport error is still reported as a connectivity problem.

    Args:
        error: The caught exception.

    Returns:
        Tuple of user message, suggestion text, and error code suffix.
    """
    for exc in _error_chain(error):
        if isinstance(exc, RetriesExhaustedError):
            return (
                "The record service did not respond after several attempts.",
                "Check your network connection and try again shortly.",
                "003",
            )
        if isinstance(exc, (TimeoutError, ConnectionError)) or type(exc).__name__ in (
            "Timeout",
            "ConnectTimeout",
            "ReadTimeout",
            "ConnectionError",
        ):
            return (
                "The record service timed out or lost its connection.",
                "Try again. If the problem persists, check the service status.",
                "003",
            )
        if isinstance(exc, PermissionError):
            return (
                "The record service refused the request.",
                "Check the configured project ID and API key.",
                "002",
            )
        if isinstance(exc, LookupError):
            return (
                "The requested record could not be found.",
                "Refresh the page; the record may have been deleted.",
                "001",
            )
    if isinstance(error, ValueError):
        return (
            "Invalid input was provided.",
            "Check the input values and try again.",
            "005",
        )
    return (
        "An unexpected error occurred.",
        "If this keeps happening, please report the issue.",
        "999",
    )


# ---------------------------------------------------------------------------
# 3. Input Validation
# ---------------------------------------------------------------------------

_EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z0-9_\-]{1,64}$")


class ValidationError(Exception):
    """Raised when input validation fails."""


class InputValidator:
    """Validate inputs at system boundaries.

    All methods raise ``ValidationError`` on failure unless
    documented otherwise.
    """

    def validate_email(self, value: str) -> str:
        """Normalise and validate an email address.

        Args:
            value: Raw email from user input.

        Returns:
            Trimmed, lower-cased address.

        Raises:
            ValidationError: If the address is malformed.
        """
        cleaned = value.strip().lower()
        if not _EMAIL_PATTERN.match(cleaned):
            raise ValidationError(f"Invalid email address: '{value}'")
        return cleaned

    def validate_identifier(self, value: str) -> str:
        """Validate a record identifier taken from a URL or request body.

        Args:
            value: Raw identifier.

        Returns:
            The identifier unchanged.

        Raises:
            ValidationError: If the identifier contains unsafe characters.
        """
        if not _IDENTIFIER_PATTERN.match(value):
            raise ValidationError("Identifiers may only contain letters, digits, '-' and '_'.")
        return value

    def validate_identifiers(self, values: Iterable[str]) -> list[str]:
        """Validate and de-duplicate a list of identifiers, keeping order.

        Args:
            values: Raw identifiers.

        Returns:
            Validated identifiers without duplicates.

        Raises:
            ValidationError: If any identifier is invalid or the list is empty.
        """
        seen: dict[str, None] = {}
        for value in values:
            seen[self.validate_identifier(value)] = None
        if not seen:
            raise ValidationError("At least one identifier is required.")
        return list(seen)

    def validate_choice(self, value: str, choices: Iterable[str], *, field_name: str) -> str:
        """Check that *value* is one of *choices*.

        Args:
            value: Raw value.
            choices: Allowed values.
            field_name: Name used in the error message.

        Returns:
            The value unchanged.

        Raises:
            ValidationError: If the value is not allowed.
        """
        allowed = list(choices)
        if value not in allowed:
            raise ValidationError(f"{field_name} must be one of: {', '.join(allowed)}")
        return value

    def sanitize_string(
        self,
        value: str,
        *,
        max_length: int = 1000,
    ) -> str:
        """Sanitize a user-provided string.

        Strips HTML entities, control characters, and truncates.

        Args:
            value: Raw user string.
            max_length: Maximum allowed length after sanitization.

        Returns:
            Cleaned string.
        """
        cleaned = html.escape(value, quote=True)
        cleaned = _strip_control_chars(cleaned)
        cleaned = cleaned.strip()
        if len(cleaned) > max_length:
            cleaned = cleaned[:max_length]
        return cleaned


def _strip_control_chars(text: str) -> str:
    """Remove ASCII control characters except common whitespace.

    Args:
        text: Input string.

    Returns:
        Cleaned string.
    """
    return re.sub(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]", "", text)
