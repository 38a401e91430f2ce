"""Configuration for the PulsePoint backend.

Settings are plain dataclasses populated from ``PULSE_*`` environment
variables. Every field has a default so the server starts in demo mode
(in-memory record store seeded with sample data) with no environment at all.

Example::

    config = load_config()
    configure_logging(config.logging)
    store = create_record_store(config.store)
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

_VALID_BACKENDS = ("memory", "remote")
_VALID_WINDOWS = (7, 30, 90)


class ConfigError(Exception):
    """Raised when an environment value cannot be parsed or is out of range."""


@dataclass
class StoreConfig:
    """Record store selection and remote API connection settings.

    Attributes:
        backend: ``"memory"`` for the in-process store, ``"remote"`` for the record API.
        base_url: Root URL of the remote record API.
        project_id: Project identifier sent with every remote request.
        api_key: Public key sent with every remote request.
        timeout_seconds: Per-request timeout for remote calls.
        max_retries: Total attempts for transient remote failures.
        seed_demo_data: Populate the in-memory store with sample records.
    """

    backend: str = "memory"
    base_url: str = ""
    project_id: str = ""
    api_key: str = ""
    timeout_seconds: float = 10.0
    max_retries: int = 3
    seed_demo_data: bool = True


@dataclass
class AnalyticsConfig:
    """Display-tuning constants for the aggregation engine.

    Attributes:
        response_rate_scale: Multiplier applied to feedback-per-client.
        default_window_days: Trend window used when a request omits one.
        label_format: strftime pattern for trend chart day labels.
    """

    response_rate_scale: float = 100.0
    default_window_days: int = 30
    label_format: str = "%m/%d/%Y"


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str = "INFO"
    format: str = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"


@dataclass
class ServerConfig:
    """Bind address for the unified server."""

    host: str = "127.0.0.1"
    port: int = 8420


@dataclass
class PulseConfig:
    """Top-level configuration bundle."""

    store: StoreConfig = field(default_factory=StoreConfig)
    analytics: AnalyticsConfig = field(default_factory=AnalyticsConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    server: ServerConfig = field(default_factory=ServerConfig)


def _get_bool(env: Mapping[str, str], key: str, default: bool) -> bool:
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    value = raw.strip().lower()
    if value in ("1", "true", "yes", "on"):
        return True
    if value in ("0", "false", "no", "off"):
        return False
    raise ConfigError(f"{key} must be a boolean, got '{raw}'")


def _get_int(env: Mapping[str, str], key: str, default: int) -> int:
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigError(f"{key} must be an integer, got '{raw}'") from exc


def _get_float(env: Mapping[str, str], key: str, default: float) -> float:
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ConfigError(f"{key} must be a number, got '{raw}'") from exc


def load_config(env: Mapping[str, str] | None = None) -> PulseConfig:
    """Build a PulseConfig from environment variables.

    Args:
        env: Mapping to read from. Defaults to ``os.environ``.

    Returns:
        Fully populated configuration.

    Raises:
        ConfigError: If a value is malformed or out of range.
    """
    source = os.environ if env is None else env

    store = StoreConfig(
        backend=source.get("PULSE_STORE_BACKEND", "memory").strip().lower(),
        base_url=source.get("PULSE_API_BASE_URL", ""),
        project_id=source.get("PULSE_API_PROJECT_ID", ""),
        api_key=source.get("PULSE_API_KEY", ""),
        timeout_seconds=_get_float(source, "PULSE_API_TIMEOUT", 10.0),
        max_retries=_get_int(source, "PULSE_API_MAX_RETRIES", 3),
        seed_demo_data=_get_bool(source, "PULSE_SEED_DEMO_DATA", True),
    )
    if store.backend not in _VALID_BACKENDS:
        raise ConfigError(
            f"PULSE_STORE_BACKEND must be one of {', '.join(_VALID_BACKENDS)}, "
            f"got '{store.backend}'"
        )
    if store.backend == "remote" and not store.base_url:
        raise ConfigError("PULSE_API_BASE_URL is required for the remote backend")
    if store.timeout_seconds <= 0:
        raise ConfigError("PULSE_API_TIMEOUT must be positive")
    if store.max_retries < 1:
        raise ConfigError("PULSE_API_MAX_RETRIES must be at least 1")

    analytics = AnalyticsConfig(
        response_rate_scale=_get_float(source, "PULSE_RESPONSE_RATE_SCALE", 100.0),
        default_window_days=_get_int(source, "PULSE_DEFAULT_WINDOW_DAYS", 30),
        label_format=source.get("PULSE_TREND_LABEL_FORMAT", "%m/%d/%Y"),
    )
    if analytics.default_window_days not in _VALID_WINDOWS:
        raise ConfigError(
            "PULSE_DEFAULT_WINDOW_DAYS must be one of "
            f"{', '.join(str(w) for w in _VALID_WINDOWS)}"
        )
    if analytics.response_rate_scale <= 0:
        raise ConfigError("PULSE_RESPONSE_RATE_SCALE must be positive")

    log_config = LoggingConfig(level=source.get("PULSE_LOG_LEVEL", "INFO").upper())
    server = ServerConfig(
        host=source.get("PULSE_HOST", "127.0.0.1"),
        port=_get_int(source, "PULSE_PORT", 8420),
    )

    return PulseConfig(store=store, analytics=analytics, logging=log_config, server=server)


def configure_logging(config: LoggingConfig | None = None) -> None:
    """Configure root logging for the server process.

    Args:
        config: Logging settings. Uses defaults when None.
    """
    cfg = config or LoggingConfig()
    logging.basicConfig(level=cfg.level, format=cfg.format)
    logger.debug("Logging configured at %s", cfg.level)
