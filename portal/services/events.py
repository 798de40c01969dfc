"""Structured event helpers shared across the application."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional


DEFAULT_EVENT_LOGGER = logging.getLogger("study_portal.events")

_MAX_VALUE_LENGTH = 200


def _clean_value(value: Any) -> Any:
    if value is None or isinstance(value, (bool, int, float)):
        return value
    if isinstance(value, (list, tuple)):
        value = ", ".join(str(item) for item in value)
    text = str(value).strip()
    if not text:
        return None
    return text[:_MAX_VALUE_LENGTH] + ("…" if len(text) > _MAX_VALUE_LENGTH else "")


def normalize_context(values: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Drop empty entries and shorten long values."""

    normalised: Dict[str, Any] = {}
    for key, raw_value in (values or {}).items():
        value = _clean_value(raw_value)
        if key and value is not None:
            normalised[str(key)] = value
    return normalised


def emit_structured_event(
    event_type: str,
    message: str,
    *,
    payload: Optional[Dict[str, Any]] = None,
    context: Optional[Dict[str, Any]] = None,
    correlation: Optional[Dict[str, Any]] = None,
    duration_ms: Optional[float] = None,
    level: int = logging.INFO,
    logger: logging.Logger | logging.LoggerAdapter = DEFAULT_EVENT_LOGGER,
) -> None:
    """Log ``[event_type] message (key=value, ...)`` with the details in ``extra``."""

    details = {
        **normalize_context(correlation),
        **normalize_context(context),
        **normalize_context(payload),
    }
    if duration_ms is not None:
        details["duration_ms"] = round(float(duration_ms), 2)
    text = f"[{event_type}] {message}"
    if details:
        text += " (" + ", ".join(f"{key}={value}" for key, value in details.items()) + ")"
    logger.log(
        level,
        text,
        extra={"event": message, "event_type": event_type, "event_details": details},
    )


def emit_db_event(action: str, **kwargs: Any) -> None:
    kwargs.setdefault("level", logging.DEBUG)
    emit_structured_event("DB_QUERY", action, **kwargs)


def emit_gate_event(decision: str, *, path: str, **kwargs: Any) -> None:
    emit_structured_event("GATE", decision, context={"path": path}, **kwargs)


__all__ = [
    "DEFAULT_EVENT_LOGGER",
    "emit_db_event",
    "emit_gate_event",
    "emit_structured_event",
    "normalize_context",
]
