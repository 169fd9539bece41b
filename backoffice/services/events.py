"""Log lines for document store queries and upload store operations."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, Mapping, Optional


EVENT_LOGGER = logging.getLogger("backoffice.events")

DB_QUERY = "DB_QUERY"
FILE_OP = "FILE_OP"

_MAX_VALUE_LENGTH = 200


def _clean(value: Any) -> Any:
    if value is None or isinstance(value, (bool, int, float)):
        return value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (list, tuple, set)):
        value = ", ".join(str(item) for item in value)
    text = str(value).strip()
    if len(text) > _MAX_VALUE_LENGTH:
        text = text[:_MAX_VALUE_LENGTH] + "…"
    return text or None


def _details(*mappings: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    merged: Dict[str, Any] = {}
    for mapping in mappings:
        for key, raw in (mapping or {}).items():
            value = _clean(raw)
            if key and value is not None:
                merged[str(key)] = value
    return merged


def _emit(
    event_type: str,
    action: str,
    payload: Optional[Mapping[str, Any]],
    correlation: Optional[Mapping[str, Any]],
    duration_ms: Optional[float],
    level: int,
    logger: logging.Logger | logging.LoggerAdapter,
) -> None:
    details = _details(correlation, payload)
    if duration_ms is not None:
        details["duration_ms"] = round(float(duration_ms), 2)
    message = f"[{event_type}] {action}"
    if details:
        message += " (" + ", ".join(f"{key}={value}" for key, value in details.items()) + ")"
    logger.log(
        level,
        message,
        extra={"event": action, "event_type": event_type, "event_details": details},
    )


def emit_db_event(
    action: str,
    *,
    payload: Optional[Mapping[str, Any]] = None,
    correlation: Optional[Mapping[str, Any]] = None,
    duration_ms: Optional[float] = None,
    level: int = logging.DEBUG,
    logger: logging.Logger | logging.LoggerAdapter = EVENT_LOGGER,
) -> None:
    """Log one document store statement, e.g. ``books.find``."""

    _emit(DB_QUERY, action, payload, correlation, duration_ms, level, logger)


def emit_file_event(
    operation: str,
    *,
    payload: Optional[Mapping[str, Any]] = None,
    correlation: Optional[Mapping[str, Any]] = None,
    duration_ms: Optional[float] = None,
    level: int = logging.INFO,
    logger: logging.Logger | logging.LoggerAdapter = EVENT_LOGGER,
) -> None:
    """Log one upload store operation, e.g. ``upload.save``."""

    _emit(FILE_OP, operation, payload, correlation, duration_ms, level, logger)


__all__ = ["DB_QUERY", "EVENT_LOGGER", "FILE_OP", "emit_db_event", "emit_file_event"]
