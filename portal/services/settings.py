"""Persistence helpers for the access gate settings."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Tuple

from .gate import format_duration_label
from .storage import ContentRepository


LOGGER = logging.getLogger(__name__)

SETTINGS_KEY = "monetization"

DEFAULT_ACCESS_DURATION = 3600
DEFAULT_SERVER1_URL = "https://your-domain.com/verify?server=1&redirect=set-verified"
DEFAULT_SERVER2_URL = "https://your-domain.com/verify?server=2&redirect=set-verified"

DURATION_OPTIONS: Tuple[Tuple[int, str], ...] = (
    (1800, "30 minutes"),
    (3600, "1 hour"),
    (21600, "6 hours"),
    (43200, "12 hours"),
    (86400, "24 hours"),
    (259200, "3 days"),
    (604800, "7 days"),
)
ALLOWED_DURATIONS = frozenset(seconds for seconds, _ in DURATION_OPTIONS)

_LEGACY_FIELDS = {
    "keyValidityTime": "access_duration",
    "server1Link": "server1_url",
    "server2Link": "server2_url",
    "linkshortifyEnabled": "linkshortify_enabled",
}

OPERATOR_INSTRUCTIONS: Tuple[str, ...] = (
    "Copy the Server 1 and Server 2 URLs shown on the key generation page.",
    "Shorten each URL with your link shortener account.",
    "Make the shortened link redirect back to /set-verified.html?duration=<seconds>.",
    "Paste the final links above and save.",
)


@dataclass
class GateConfig:
    """Operator settings for the access gate."""

    access_duration: int = DEFAULT_ACCESS_DURATION
    server1_url: str = DEFAULT_SERVER1_URL
    server2_url: str = DEFAULT_SERVER2_URL
    linkshortify_enabled: bool = True

    @property
    def duration_label(self) -> str:
        return format_duration_label(self.access_duration)


def duration_options() -> List[Dict[str, Any]]:
    return [{"value": seconds, "label": label} for seconds, label in DURATION_OPTIONS]


def _coerce_duration(value: Any) -> int:
    try:
        seconds = int(value)
    except (TypeError, ValueError):
        LOGGER.warning("Ignoring non-numeric access duration %r", value)
        return DEFAULT_ACCESS_DURATION
    if seconds not in ALLOWED_DURATIONS:
        LOGGER.warning("Access duration %s is not an offered option; using default", seconds)
        return DEFAULT_ACCESS_DURATION
    return seconds


class GateSettingsStore:
    """Load and store :class:`GateConfig` in the ``settings`` table."""

    def __init__(self, repository: ContentRepository) -> None:
        self._repository = repository

    def load(self) -> GateConfig:
        """Return the stored settings, or defaults when none are usable."""

        payload = self._repository.get_setting(SETTINGS_KEY)
        if payload is None:
            LOGGER.debug("No gate settings stored; using defaults")
            return GateConfig()

        migrated = False
        for legacy, canonical in _LEGACY_FIELDS.items():
            if legacy in payload:
                payload.setdefault(canonical, payload[legacy])
                del payload[legacy]
                migrated = True

        settings = GateConfig()
        if "access_duration" in payload:
            settings.access_duration = _coerce_duration(payload["access_duration"])
        for field in ("server1_url", "server2_url"):
            value = payload.get(field)
            if isinstance(value, str) and value.strip():
                setattr(settings, field, value.strip())
        if "linkshortify_enabled" in payload:
            settings.linkshortify_enabled = bool(payload["linkshortify_enabled"])

        if migrated:
            LOGGER.info("Migrating legacy gate settings to canonical field names")
            self.save(settings)
        return settings

    def save(self, settings: GateConfig) -> None:
        if settings.access_duration not in ALLOWED_DURATIONS:
            raise ValueError(f"Unsupported access duration {settings.access_duration}")
        self._repository.put_setting(SETTINGS_KEY, asdict(settings))
        LOGGER.info(
            "Gate settings saved (duration=%s, shortener=%s)",
            settings.access_duration,
            settings.linkshortify_enabled,
        )


__all__ = [
    "ALLOWED_DURATIONS",
    "DURATION_OPTIONS",
    "GateConfig",
    "GateSettingsStore",
    "OPERATOR_INSTRUCTIONS",
    "SETTINGS_KEY",
    "duration_options",
]
