"""
State Snapshot - read-only projection of the engine state for the UI.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .protocol.messages import ACCEL_POSITION_COUNT, BodyPosition, SensorKind
from .session import CalibrationSession, SessionResult
from .states import (
    AwaitingUserPosition,
    CalibrationState,
    Failed,
    PositionRejected,
    Rejected,
    Rotating,
    StateTag,
    TimedOut,
    position_of,
)


class MessageKind(Enum):
    INFO = "info"
    CORRECTION = "correction"
    ALERT = "alert"
    COMPLETION = "completion"


@dataclass(frozen=True)
class StateSnapshot:
    state: StateTag
    instruction: str
    progress_percent: int
    confirm_enabled: bool
    active_position: Optional[int]
    position_name: Optional[str]
    message_kind: MessageKind
    session_id: Optional[str]
    sensor_kind: Optional[SensorKind]
    result: Optional[SessionResult]


_SENSOR_LABELS = {
    SensorKind.ACCELEROMETER: "Accelerometer",
    SensorKind.COMPASS: "Compass",
    SensorKind.BAROMETER: "Barometer",
    SensorKind.LEVEL_HORIZON: "Level horizon",
}

_POSITION_INSTRUCTIONS = {
    BodyPosition.LEVEL: "Place the vehicle LEVEL on a flat surface, then confirm.",
    BodyPosition.LEFT: "Place the vehicle on its LEFT side, then confirm.",
    BodyPosition.RIGHT: "Place the vehicle on its RIGHT side, then confirm.",
    BodyPosition.NOSE_DOWN: "Place the vehicle NOSE DOWN, then confirm.",
    BodyPosition.NOSE_UP: "Place the vehicle NOSE UP, then confirm.",
    BodyPosition.INVERTED: "Place the vehicle on its BACK (upside down), then confirm.",
}


def idle_snapshot() -> StateSnapshot:
    return StateSnapshot(
        state=StateTag.IDLE,
        instruction="Select a sensor and start calibration.",
        progress_percent=0,
        confirm_enabled=False,
        active_position=None,
        position_name=None,
        message_kind=MessageKind.INFO,
        session_id=None,
        sensor_kind=None,
        result=None,
    )


def build_snapshot(session: Optional[CalibrationSession]) -> StateSnapshot:
    """Derive the UI snapshot from the session's current state."""
    if session is None:
        return idle_snapshot()

    state = session.state
    position = position_of(state)
    instruction, kind = _instruction(state, session.sensor_kind)
    return StateSnapshot(
        state=state.tag,
        instruction=instruction,
        progress_percent=_progress(state, session),
        confirm_enabled=isinstance(state, (AwaitingUserPosition, PositionRejected)),
        active_position=position,
        position_name=BodyPosition(position).display_name if position else None,
        message_kind=kind,
        session_id=session.session_id,
        sensor_kind=session.sensor_kind,
        result=session.result,
    )


def _progress(state: CalibrationState, session: CalibrationSession) -> int:
    if state.tag == StateTag.COMPLETED:
        return 100
    if isinstance(state, Rotating):
        return max(0, min(100, state.percent))
    if session.sensor_kind == SensorKind.ACCELEROMETER:
        return int(len(session.accepted_positions) * 100 / ACCEL_POSITION_COUNT)
    return 0


def _instruction(state: CalibrationState, sensor_kind: SensorKind):
    label = _SENSOR_LABELS[sensor_kind]
    tag = state.tag

    if isinstance(state, AwaitingUserPosition):
        base = _POSITION_INSTRUCTIONS[BodyPosition(state.position)]
        if state.correction:
            return f"{state.correction} {base}", MessageKind.CORRECTION
        return base, MessageKind.INFO
    if isinstance(state, PositionRejected):
        return state.reason, MessageKind.CORRECTION
    if isinstance(state, (Failed, Rejected, TimedOut)):
        return f"{label} calibration {tag.value.replace('_', ' ')}: {state.reason}", MessageKind.ALERT
    if isinstance(state, Rotating):
        return f"Rotate the vehicle slowly through all orientations ({state.percent}%).", MessageKind.INFO

    messages = {
        StateTag.IDLE: ("Select a sensor and start calibration.", MessageKind.INFO),
        StateTag.AWAITING_ACKNOWLEDGEMENT: (
            f"Starting {label.lower()} calibration, waiting for the flight controller...", MessageKind.INFO),
        StateTag.AWAITING_INSTRUCTION: ("Waiting for the flight controller to request a position...", MessageKind.INFO),
        StateTag.SAMPLING: ("Checking vehicle orientation...", MessageKind.INFO),
        StateTag.AWAITING_SAMPLING: ("Hold still, the flight controller is sampling...", MessageKind.INFO),
        StateTag.POSITION_ACCEPTED: (
            "Position accepted. Waiting for the next instruction...", MessageKind.INFO),
        StateTag.HOLDING_STILL: ("Keep the vehicle still until calibration finishes.", MessageKind.INFO),
        StateTag.COMPLETED: (f"{label} calibration complete. Reboot recommended.", MessageKind.COMPLETION),
        StateTag.CANCELLED: (f"{label} calibration cancelled.", MessageKind.ALERT),
    }
    return messages[tag]
