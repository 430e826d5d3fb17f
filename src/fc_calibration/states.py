"""
Calibration States

Tagged union of the calibration state machine states. Each state is a frozen
dataclass carrying only the payload it needs; ``state.tag`` identifies the
variant.

    IDLE ─start─▶ AWAITING_ACKNOWLEDGEMENT ─ack─▶ AWAITING_INSTRUCTION
        ─request(N)─▶ AWAITING_USER_POSITION(N) ─confirm─▶ SAMPLING(N)
        ─valid─▶ AWAITING_SAMPLING(N) ─ack─▶ POSITION_ACCEPTED(N) ...
        ─success─▶ COMPLETED

Terminal: COMPLETED, FAILED, REJECTED, TIMED_OUT, CANCELLED
"""

from dataclasses import dataclass
from enum import Enum
from typing import ClassVar, Optional


class StateTag(Enum):
    IDLE = "idle"
    AWAITING_ACKNOWLEDGEMENT = "awaiting_acknowledgement"
    AWAITING_INSTRUCTION = "awaiting_instruction"
    AWAITING_USER_POSITION = "awaiting_user_position"
    SAMPLING = "sampling"
    AWAITING_SAMPLING = "awaiting_sampling"
    POSITION_ACCEPTED = "position_accepted"
    POSITION_REJECTED = "position_rejected"
    ROTATING = "rotating"
    HOLDING_STILL = "holding_still"
    COMPLETED = "completed"
    FAILED = "failed"
    REJECTED = "rejected"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


TERMINAL_TAGS = frozenset({
    StateTag.COMPLETED,
    StateTag.FAILED,
    StateTag.REJECTED,
    StateTag.TIMED_OUT,
    StateTag.CANCELLED,
})


@dataclass(frozen=True)
class CalibrationState:
    tag: ClassVar[StateTag] = StateTag.IDLE

    @property
    def is_terminal(self) -> bool:
        return self.tag in TERMINAL_TAGS

    def describe(self) -> str:
        return self.tag.name


@dataclass(frozen=True)
class _PositionState(CalibrationState):
    position: int = 1

    def describe(self) -> str:
        return f"{self.tag.name}({self.position})"


@dataclass(frozen=True)
class Idle(CalibrationState):
    tag: ClassVar[StateTag] = StateTag.IDLE


@dataclass(frozen=True)
class AwaitingAcknowledgement(CalibrationState):
    tag: ClassVar[StateTag] = StateTag.AWAITING_ACKNOWLEDGEMENT


@dataclass(frozen=True)
class AwaitingInstruction(CalibrationState):
    tag: ClassVar[StateTag] = StateTag.AWAITING_INSTRUCTION


@dataclass(frozen=True)
class AwaitingUserPosition(_PositionState):
    """Firmware asked for a position; ``correction`` is set after a local rejection."""
    tag: ClassVar[StateTag] = StateTag.AWAITING_USER_POSITION
    correction: Optional[str] = None


@dataclass(frozen=True)
class Sampling(_PositionState):
    tag: ClassVar[StateTag] = StateTag.SAMPLING


@dataclass(frozen=True)
class AwaitingSampling(_PositionState):
    """Confirm sent; waiting for the firmware to sample and acknowledge."""
    tag: ClassVar[StateTag] = StateTag.AWAITING_SAMPLING


@dataclass(frozen=True)
class PositionAccepted(_PositionState):
    tag: ClassVar[StateTag] = StateTag.POSITION_ACCEPTED


@dataclass(frozen=True)
class PositionRejected(_PositionState):
    tag: ClassVar[StateTag] = StateTag.POSITION_REJECTED
    reason: str = ""


@dataclass(frozen=True)
class Rotating(CalibrationState):
    tag: ClassVar[StateTag] = StateTag.ROTATING
    percent: int = 0

    def describe(self) -> str:
        return f"{self.tag.name}({self.percent}%)"


@dataclass(frozen=True)
class HoldingStill(CalibrationState):
    tag: ClassVar[StateTag] = StateTag.HOLDING_STILL


@dataclass(frozen=True)
class Completed(CalibrationState):
    tag: ClassVar[StateTag] = StateTag.COMPLETED


@dataclass(frozen=True)
class Failed(CalibrationState):
    tag: ClassVar[StateTag] = StateTag.FAILED
    reason: str = ""


@dataclass(frozen=True)
class Rejected(CalibrationState):
    tag: ClassVar[StateTag] = StateTag.REJECTED
    reason: str = ""


@dataclass(frozen=True)
class TimedOut(CalibrationState):
    tag: ClassVar[StateTag] = StateTag.TIMED_OUT
    reason: str = ""


@dataclass(frozen=True)
class Cancelled(CalibrationState):
    tag: ClassVar[StateTag] = StateTag.CANCELLED


def position_of(state: CalibrationState) -> Optional[int]:
    """Position index carried by ``state``, or None for non-position states."""
    return getattr(state, "position", None)
