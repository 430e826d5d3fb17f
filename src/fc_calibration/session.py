"""
Calibration Session Model

One CalibrationSession per calibration attempt, owned by the engine.
Accelerometer sessions hold at most one PositionAttempt per body position;
retries update that entry instead of adding a new one. A session is sealed
when it reaches a terminal result, after which mutation raises
SessionSealedError.
"""

import logging
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple

from .diagnostics import DiagnosticsRecorder
from .errors import SessionSealedError
from .protocol.messages import ACCEL_POSITION_COUNT, BodyPosition, SensorKind
from .states import CalibrationState, Idle

logger = logging.getLogger(__name__)


class SessionResult(Enum):
    IN_PROGRESS = "in_progress"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"
    TIMED_OUT = "timed_out"
    REJECTED = "rejected"


@dataclass
class PositionAttempt:
    """Confirmation history of one accelerometer body position."""
    position: int
    position_name: str
    user_confirmed_at: Optional[float] = None
    firmware_accepted_at: Optional[float] = None
    accepted: bool = False
    attempt_count: int = 0
    local_rejections: int = 0
    last_firmware_message: Optional[str] = None
    last_sample_vector: Optional[Tuple[float, float, float]] = None

    def to_dict(self) -> dict:
        return {
            "position": self.position,
            "position_name": self.position_name,
            "user_confirmed_at": self.user_confirmed_at,
            "firmware_accepted_at": self.firmware_accepted_at,
            "accepted": self.accepted,
            "attempt_count": self.attempt_count,
            "local_rejections": self.local_rejections,
            "last_firmware_message": self.last_firmware_message,
            "last_sample_vector": list(self.last_sample_vector) if self.last_sample_vector else None,
        }


@dataclass
class CalibrationSession:
    sensor_kind: SensorKind
    session_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    started_at: float = field(default_factory=time.time)
    ended_at: Optional[float] = None
    state: CalibrationState = field(default_factory=Idle)
    result: SessionResult = SessionResult.IN_PROGRESS
    retry_count: int = 0
    last_error: Optional[str] = None
    diagnostics: Optional[DiagnosticsRecorder] = None
    _attempts: Dict[int, PositionAttempt] = field(default_factory=dict, repr=False)

    def __post_init__(self):
        if self.diagnostics is None:
            self.diagnostics = DiagnosticsRecorder(self.session_id)

    # -------------------------------------------------------------------------
    # Read access
    # -------------------------------------------------------------------------

    @property
    def sealed(self) -> bool:
        return self.ended_at is not None

    @property
    def positions(self) -> List[PositionAttempt]:
        """Position attempts ordered by position index."""
        return [self._attempts[index] for index in sorted(self._attempts)]

    def attempt(self, position: int) -> Optional[PositionAttempt]:
        return self._attempts.get(int(position))

    @property
    def accepted_positions(self) -> frozenset:
        return frozenset(p.position for p in self._attempts.values() if p.accepted)

    @property
    def all_positions_accepted(self) -> bool:
        return len(self.accepted_positions) == ACCEL_POSITION_COUNT

    # -------------------------------------------------------------------------
    # Mutation (engine only)
    # -------------------------------------------------------------------------

    def _ensure_open(self):
        if self.sealed:
            raise SessionSealedError(self.session_id)

    def set_state(self, state: CalibrationState):
        self._ensure_open()
        self.state = state

    def open_position(self, position: int) -> PositionAttempt:
        """Return the attempt for ``position``, creating it on first request."""
        self._ensure_open()
        body = BodyPosition.from_index(position)
        attempt = self._attempts.get(int(body))
        if attempt is None:
            attempt = PositionAttempt(position=int(body), position_name=body.display_name)
            self._attempts[int(body)] = attempt
        return attempt

    def begin_confirm(
        self,
        position: int,
        timestamp: float,
        sample_vector: Optional[Tuple[float, float, float]] = None,
    ) -> PositionAttempt:
        """
        Prepare the attempt for a confirm command that is about to be sent.

        Resets acceptance, increments the attempt count and, when this is not
        the first attempt for the position, the session retry count.
        """
        attempt = self.open_position(position)
        if attempt.attempt_count > 0:
            self.retry_count += 1
        attempt.accepted = False
        attempt.firmware_accepted_at = None
        attempt.attempt_count += 1
        attempt.user_confirmed_at = timestamp
        if sample_vector is not None:
            attempt.last_sample_vector = sample_vector
        return attempt

    def record_local_rejection(
        self,
        position: int,
        reason: str,
        sample_vector: Optional[Tuple[float, float, float]] = None,
    ) -> PositionAttempt:
        attempt = self.open_position(position)
        attempt.local_rejections += 1
        if sample_vector is not None:
            attempt.last_sample_vector = sample_vector
        self.last_error = reason
        return attempt

    def mark_accepted(self, position: int, timestamp: float, message: Optional[str] = None) -> PositionAttempt:
        attempt = self.open_position(position)
        attempt.accepted = True
        attempt.firmware_accepted_at = timestamp
        if message is not None:
            attempt.last_firmware_message = message
        return attempt

    def mark_rejected(self, position: int, message: str) -> PositionAttempt:
        attempt = self.open_position(position)
        attempt.accepted = False
        attempt.firmware_accepted_at = None
        attempt.last_firmware_message = message
        self.last_error = message
        return attempt

    def seal(self, result: SessionResult, timestamp: float, error: Optional[str] = None):
        """Record the terminal result. A session can only be sealed once."""
        self._ensure_open()
        self.result = result
        if error:
            self.last_error = error
        self.ended_at = max(timestamp, self.started_at)
        logger.info(f"Session {self.session_id[:8]} sealed: {result.value}")

    def to_dict(self) -> dict:
        return {
            "session_id": self.session_id,
            "sensor_kind": self.sensor_kind.value,
            "started_at": self.started_at,
            "ended_at": self.ended_at,
            "state": self.state.describe(),
            "result": self.result.value,
            "retry_count": self.retry_count,
            "last_error": self.last_error,
            "positions": [p.to_dict() for p in self.positions],
            "diagnostics": self.diagnostics.to_dicts(),
        }
