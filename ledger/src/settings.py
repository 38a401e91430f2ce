"""Account settings for the dashboard operator.

Settings are grouped into sections (profile, notifications, security,
preferences, integrations). Each section can be saved or reset to its
defaults independently. Keys and value types are fixed by the defaults:
unknown sections or keys, and values of the wrong type, are rejected.
"""

from __future__ import annotations

import copy
import logging
import threading
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_SETTINGS: dict[str, dict[str, Any]] = {
    "profile": {
        "name": "",
        "email": "",
        "company": "",
        "phone": "",
        "timezone": "America/New_York",
        "avatar": "",
    },
    "notifications": {
        "email_notifications": True,
        "push_notifications": True,
        "feedback_alerts": True,
        "report_generation": True,
        "weekly_digest": True,
        "new_client_alerts": False,
    },
    "security": {
        "two_factor_auth": False,
        "session_timeout": 30,
        "password_requirements": True,
        "login_alerts": True,
    },
    "preferences": {
        "theme": "light",
        "language": "en",
        "date_format": "MM/DD/YYYY",
        "time_format": "12",
        "default_dashboard": "analytics",
        "items_per_page": 20,
    },
    "integrations": {
        "slack_webhook": "",
        "email_provider": "smtp",
        "api_keys": [],
    },
}


class SettingsError(Exception):
    """Raised for unknown sections, unknown keys, or mistyped values."""


class SettingsManager:
    """Holds the operator's settings in memory.

    Args:
        initial: Optional overrides applied on top of the defaults.
    """

    def __init__(self, initial: dict[str, dict[str, Any]] | None = None) -> None:
        self._settings = copy.deepcopy(DEFAULT_SETTINGS)
        self._lock = threading.Lock()
        for section, values in (initial or {}).items():
            self.save_section(section, values)

    def get(self) -> dict[str, dict[str, Any]]:
        """Return a copy of all settings."""
        with self._lock:
            return copy.deepcopy(self._settings)

    def get_section(self, section: str) -> dict[str, Any]:
        """Return a copy of one section.

        Raises:
            SettingsError: If the section does not exist.
        """
        self._check_section(section)
        with self._lock:
            return copy.deepcopy(self._settings[section])

    def save_section(self, section: str, values: dict[str, Any]) -> dict[str, Any]:
        """Merge *values* into a section.

        Args:
            section: Section name.
            values: Keys to change.

        Returns:
            The updated section.

        Raises:
            SettingsError: On unknown section or key, or a mistyped value.
        """
        self._check_section(section)
        defaults = DEFAULT_SETTINGS[section]
        unknown = sorted(set(values) - set(defaults))
        if unknown:
            raise SettingsError(f"Unknown {section} setting(s): {', '.join(unknown)}")
        for key, value in values.items():
            expected = type(defaults[key])
            if expected is int and isinstance(value, bool):
                raise SettingsError(f"{section}.{key} must be an integer")
            if not isinstance(value, expected):
                raise SettingsError(f"{section}.{key} must be of type {expected.__name__}")

        with self._lock:
            self._settings[section].update(copy.deepcopy(values))
            logger.info("Saved %s settings (%s)", section, ", ".join(sorted(values)))
            return copy.deepcopy(self._settings[section])

    def reset_section(self, section: str) -> dict[str, Any]:
        """Restore a section to its defaults.

        Raises:
            SettingsError: If the section does not exist.
        """
        self._check_section(section)
        with self._lock:
            self._settings[section] = copy.deepcopy(DEFAULT_SETTINGS[section])
            logger.info("Reset %s settings to defaults", section)
            return copy.deepcopy(self._settings[section])

    @staticmethod
    def _check_section(section: str) -> None:
        if section not in DEFAULT_SETTINGS:
            raise SettingsError(f"Unknown settings section: '{section}'")
