"""Structured telemetry for tracker, evaluator, quality gate, and store activity.

Events are fanned out to in-process listeners and logged as a single
``TELEMETRY {...}`` line so external dashboards can scrape CLI output.
"""

from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from threading import RLock
from typing import Any, Callable, Dict, FrozenSet, Iterator, List

logger = logging.getLogger("learnpath.telemetry")

TRACKING_EVENT_RECORDED = "tracking_event_recorded"
ACHIEVEMENT_UNLOCKED = "achievement_unlocked"
ASSESSMENT_RECORDED = "assessment_recorded"
QUALITY_REPORT_RECORDED = "quality_report_recorded"
STORE_RECOVERED = "store_recovered"
TIMESTAMP_CLAMPED = "timestamp_clamped"

KNOWN_EVENTS: FrozenSet[str] = frozenset(
    {
        TRACKING_EVENT_RECORDED,
        ACHIEVEMENT_UNLOCKED,
        ASSESSMENT_RECORDED,
        QUALITY_REPORT_RECORDED,
        STORE_RECOVERED,
        TIMESTAMP_CLAMPED,
    }
)


@dataclass(frozen=True)
class TelemetryEvent:
    name: str
    payload: Dict[str, Any]
    emitted_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


Listener = Callable[[TelemetryEvent], None]

_listeners: List[Listener] = []
_lock = RLock()


def register_listener(listener: Listener) -> None:
    with _lock:
        _listeners.append(listener)


def unregister_listener(listener: Listener) -> None:
    with _lock:
        if listener in _listeners:
            _listeners.remove(listener)


def clear_listeners() -> None:
    """Remove all registered listeners. Mainly used to reset test state."""
    with _lock:
        _listeners.clear()


@contextmanager
def capture_events() -> Iterator[List[TelemetryEvent]]:
    """Collect every event emitted inside the block."""
    captured: List[TelemetryEvent] = []
    register_listener(captured.append)
    try:
        yield captured
    finally:
        unregister_listener(captured.append)


def emit_event(name: str, **fields: Any) -> TelemetryEvent:
    """Emit a structured telemetry event and fan it out to listeners."""
    if name not in KNOWN_EVENTS:
        logger.debug("Emitting unregistered telemetry event %s", name)
    event = TelemetryEvent(name=name, payload=_sanitize(fields))

    with _lock:
        listeners = list(_listeners)

    for listener in listeners:
        try:
            listener(event)
        except Exception:  # noqa: BLE001
            logger.exception("Telemetry listener failed for %s", name)

    structured = {"event": name, "emitted_at": event.emitted_at.isoformat(), **event.payload}
    logger.info("TELEMETRY %s", json.dumps(structured, default=str, sort_keys=True))
    return event


def _sanitize(fields: Dict[str, Any]) -> Dict[str, Any]:
    sanitized: Dict[str, Any] = {}
    for key, value in fields.items():
        if isinstance(value, (datetime, date)):
            sanitized[key] = value.isoformat()
        elif hasattr(value, "model_dump"):
            sanitized[key] = value.model_dump(mode="json")
        else:
            sanitized[key] = value
    return sanitized


__all__ = [
    "ACHIEVEMENT_UNLOCKED",
    "ASSESSMENT_RECORDED",
    "KNOWN_EVENTS",
    "QUALITY_REPORT_RECORDED",
    "STORE_RECOVERED",
    "TIMESTAMP_CLAMPED",
    "TRACKING_EVENT_RECORDED",
    "TelemetryEvent",
    "capture_events",
    "clear_listeners",
    "emit_event",
    "register_listener",
    "unregister_listener",
]
