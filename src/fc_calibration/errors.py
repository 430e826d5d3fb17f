"""
Calibration Error Taxonomy and Collaborator Failure Handling

Calibration errors are resolved inside the engine and surfaced to the UI
through the state snapshot and the diagnostics log. Nothing in this
taxonomy is raised to the UI.

Error Taxonomy:
==============
    PROTOCOL_REJECTION   → terminal REJECTED (firmware refused the command)
    VALIDATION_REJECTION → correction message, retry allowed, no firmware round-trip
    FIRMWARE_FAILURE     → terminal FAILED (firmware status-text)
    USER_CANCELLATION    → terminal CANCELLED (always wins)
    UNRELATED_TRAFFIC    → archived to diagnostics, ignored for state
    LINK_LOST            → terminal TIMED_OUT (reported by the transport)

Exceptions below are reserved for programming errors (mutating a sealed
session, addressing a position outside 1..6).
"""

import logging
from enum import Enum
from typing import Any, Callable, Iterable

logger = logging.getLogger(__name__)


class ErrorKind(Enum):
    """Kinds of calibration error the engine resolves internally."""
    PROTOCOL_REJECTION = "protocol_rejection"
    VALIDATION_REJECTION = "validation_rejection"
    FIRMWARE_FAILURE = "firmware_failure"
    USER_CANCELLATION = "user_cancellation"
    UNRELATED_TRAFFIC = "unrelated_traffic"
    LINK_LOST = "link_lost"


class CalibrationError(Exception):
    """Base class for calibration programming errors."""


class SessionSealedError(CalibrationError):
    """Raised when a sealed calibration session is mutated."""

    def __init__(self, session_id: str):
        super().__init__(f"Calibration session {session_id} is sealed")
        self.session_id = session_id


class InvalidPositionError(CalibrationError):
    """Raised for accelerometer position indices outside 1..6."""

    def __init__(self, position: Any):
        super().__init__(f"Invalid accelerometer position: {position}")
        self.position = position


def notify_callbacks(callbacks: Iterable[Callable[..., None]], *args: Any) -> int:
    """
    Invoke every callback with ``args``, logging and skipping failures.

    Returns:
        Number of callbacks that raised
    """
    failures = 0
    for callback in list(callbacks):
        try:
            callback(*args)
        except Exception as e:
            failures += 1
            logger.error(f"Calibration callback {getattr(callback, '__name__', callback)!r} failed: {e}")
    return failures
