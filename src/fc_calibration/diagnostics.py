"""
Diagnostics Recorder - append-only audit trail for one calibration session.

Every inbound acknowledgement and status-text is archived here (stale ones
included), together with the engine's significant local decisions. Field
failures are diagnosed from this record, so events are never mutated or
removed.
"""

import json
import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional

logger = logging.getLogger(__name__)


class EventKind(Enum):
    STATUS_TEXT = "status_text"
    ACKNOWLEDGEMENT = "acknowledgement"
    NOTE = "note"


class Severity(Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


_LOG_LEVELS = {
    Severity.INFO: logging.DEBUG,
    Severity.WARNING: logging.WARNING,
    Severity.ERROR: logging.ERROR,
}


@dataclass(frozen=True)
class DiagnosticEvent:
    """One immutable diagnostics entry."""
    seq: int
    timestamp: float
    kind: EventKind
    severity: Severity
    message: str
    payload: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "seq": self.seq,
            "timestamp": self.timestamp,
            "kind": self.kind.value,
            "severity": self.severity.value,
            "message": self.message,
            "payload": dict(self.payload),
        }


class DiagnosticsRecorder:
    """
    Thread-safe append-only event log.

    Timestamps come from ``clock`` (wall time by default) but are clamped so
    they never go backwards within one recorder.
    """

    def __init__(self, session_id: str = "", clock: Optional[Callable[[], float]] = None):
        self.session_id = session_id
        self._clock = clock or time.time
        self._lock = threading.Lock()
        self._events: List[DiagnosticEvent] = []
        self._last_timestamp = float("-inf")

    def record(
        self,
        kind: EventKind,
        message: str,
        severity: Severity = Severity.INFO,
        **payload: Any,
    ) -> DiagnosticEvent:
        """Append one event and return it."""
        with self._lock:
            timestamp = max(float(self._clock()), self._last_timestamp)
            self._last_timestamp = timestamp
            event = DiagnosticEvent(
                seq=len(self._events) + 1,
                timestamp=timestamp,
                kind=kind,
                severity=severity,
                message=message,
                payload=MappingProxyType(dict(payload)),
            )
            self._events.append(event)

        logger.log(
            _LOG_LEVELS[severity],
            f"[{self.session_id[:8] or '-'}] #{event.seq} {kind.value}: {message}",
        )
        return event

    def note(self, message: str, severity: Severity = Severity.INFO, **payload: Any) -> DiagnosticEvent:
        return self.record(EventKind.NOTE, message, severity, **payload)

    @property
    def events(self) -> tuple:
        """Snapshot of all events in append order."""
        with self._lock:
            return tuple(self._events)

    def __iter__(self) -> Iterator[DiagnosticEvent]:
        return iter(self.events)

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)

    def by_kind(self, kind: EventKind) -> List[DiagnosticEvent]:
        return [event for event in self.events if event.kind == kind]

    def to_dicts(self) -> List[Dict[str, Any]]:
        return [event.to_dict() for event in self.events]

    def to_json(self, indent: Optional[int] = 2) -> str:
        return json.dumps(
            {"session_id": self.session_id, "events": self.to_dicts()},
            indent=indent,
            default=str,
        )
