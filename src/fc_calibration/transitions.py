"""
Calibration Transition Function

``step(state, event, context)`` is pure: it returns the next state and the
effects the engine must perform (send a command, update the session, record
a note, seal). It never reads a clock, never touches the session and never
calls the transport, so every protocol rule can be tested in isolation.

Completion is only ever produced by a firmware success notice.
"""

from dataclasses import dataclass, field
from typing import FrozenSet, Optional, Tuple

from .diagnostics import Severity
from .orientation_validator import OrientationResult
from .protocol.messages import (
    ACCEL_POSITION_COUNT,
    AbortCalibration,
    BodyPosition,
    CommandAck,
    ConfirmPosition,
    MAV_CMD_ACCELCAL_VEHICLE_POS,
    MAV_CMD_PREFLIGHT_CALIBRATION,
    OutboundCommand,
    SensorKind,
    StartCalibration,
    StatusText,
    describe_rejection,
)
from .session import SessionResult
from .states import (
    AwaitingAcknowledgement,
    AwaitingInstruction,
    AwaitingSampling,
    AwaitingUserPosition,
    CalibrationState,
    Cancelled,
    Completed,
    Failed,
    HoldingStill,
    Idle,
    PositionAccepted,
    PositionRejected,
    Rejected,
    Rotating,
    Sampling,
    TimedOut,
)
from .status_text import IntentKind, NoticeIntent

ALL_POSITIONS = frozenset(int(p) for p in BodyPosition)


# =============================================================================
# Events
# =============================================================================

@dataclass(frozen=True)
class Event:
    pass


@dataclass(frozen=True)
class StartRequested(Event):
    sensor_kind: SensorKind


@dataclass(frozen=True)
class AckReceived(Event):
    ack: CommandAck


@dataclass(frozen=True)
class NoticeReceived(Event):
    notice: StatusText
    intent: NoticeIntent


@dataclass(frozen=True)
class ConfirmRequested(Event):
    pass


@dataclass(frozen=True)
class SamplesValidated(Event):
    result: OrientationResult


@dataclass(frozen=True)
class ConfirmSendFailed(Event):
    position: int


@dataclass(frozen=True)
class CancelRequested(Event):
    pass


@dataclass(frozen=True)
class LinkLost(Event):
    reason: str = "Link to flight controller lost"


# =============================================================================
# Effects
# =============================================================================

@dataclass(frozen=True)
class Effect:
    pass


@dataclass(frozen=True)
class SendCommand(Effect):
    command: OutboundCommand


@dataclass(frozen=True)
class OpenPosition(Effect):
    position: int


@dataclass(frozen=True)
class BeginConfirm(Effect):
    """Reset acceptance and count the attempt before the confirm is sent."""
    position: int
    sample_vector: Optional[Tuple[float, float, float]] = None


@dataclass(frozen=True)
class RecordLocalRejection(Effect):
    position: int
    reason: str
    sample_vector: Optional[Tuple[float, float, float]] = None


@dataclass(frozen=True)
class AcceptPosition(Effect):
    position: int
    message: str


@dataclass(frozen=True)
class RejectPosition(Effect):
    position: int
    message: str


@dataclass(frozen=True)
class RecordNote(Effect):
    message: str
    severity: Severity = Severity.INFO


@dataclass(frozen=True)
class SealSession(Effect):
    result: SessionResult
    error: Optional[str] = None


@dataclass(frozen=True)
class TransitionContext:
    """Session facts the transition function may read."""
    sensor_kind: SensorKind
    accepted_positions: FrozenSet[int] = frozenset()
    notify_firmware_on_cancel: bool = False


@dataclass(frozen=True)
class Step:
    state: CalibrationState
    effects: Tuple[Effect, ...] = field(default_factory=tuple)
    handled: bool = True


def _ignore(state: CalibrationState, *effects: Effect) -> Step:
    return Step(state, tuple(effects), handled=False)


# =============================================================================
# Transition function
# =============================================================================

def step(state: CalibrationState, event: Event, ctx: TransitionContext) -> Step:
    """Apply one event to ``state``."""
    if state.is_terminal:
        return _ignore(state)

    if isinstance(event, CancelRequested):
        return _on_cancel(state, ctx)
    if isinstance(event, LinkLost):
        if isinstance(state, Idle):
            return _ignore(state)
        return Step(TimedOut(reason=event.reason), (SealSession(SessionResult.TIMED_OUT, event.reason),))
    if isinstance(event, StartRequested):
        if not isinstance(state, Idle):
            return _ignore(state)
        return Step(AwaitingAcknowledgement(), (SendCommand(StartCalibration(event.sensor_kind)),))
    if isinstance(event, AckReceived):
        return _on_ack(state, event.ack, ctx)
    if isinstance(event, NoticeReceived):
        return _on_notice(state, event, ctx)
    if isinstance(event, ConfirmRequested):
        if isinstance(state, (AwaitingUserPosition, PositionRejected)):
            return Step(Sampling(position=state.position))
        return _ignore(state)
    if isinstance(event, SamplesValidated):
        return _on_validated(state, event.result)
    if isinstance(event, ConfirmSendFailed):
        if isinstance(state, AwaitingSampling) and state.position == event.position:
            name = BodyPosition.from_index(state.position).display_name
            reason = (
                f"Could not send confirmation for position {state.position} ({name}). "
                "Check the link and confirm again."
            )
            return Step(PositionRejected(position=state.position, reason=reason))
        return _ignore(state)
    return _ignore(state)


def _on_cancel(state: CalibrationState, ctx: TransitionContext) -> Step:
    if isinstance(state, Idle):
        return _ignore(state)
    effects = []
    if ctx.notify_firmware_on_cancel:
        effects.append(SendCommand(AbortCalibration()))
    effects.append(RecordNote(f"Calibration cancelled by user in {state.describe()}", Severity.WARNING))
    effects.append(SealSession(SessionResult.CANCELLED, "Cancelled by user"))
    return Step(Cancelled(), tuple(effects))


def _on_ack(state: CalibrationState, ack: CommandAck, ctx: TransitionContext) -> Step:
    if isinstance(state, AwaitingAcknowledgement):
        if ack.command_id != MAV_CMD_PREFLIGHT_CALIBRATION:
            return _ignore(state)
        if not ack.accepted:
            reason = describe_rejection(ack.result)
            return Step(Rejected(reason=reason), (SealSession(SessionResult.REJECTED, reason),))
        if ctx.sensor_kind == SensorKind.ACCELEROMETER:
            return Step(AwaitingInstruction())
        if ctx.sensor_kind == SensorKind.COMPASS:
            return Step(Rotating(percent=0))
        return Step(HoldingStill())

    if isinstance(state, AwaitingSampling):
        if ack.command_id != MAV_CMD_ACCELCAL_VEHICLE_POS:
            return _ignore(state)
        position = state.position
        if ack.accepted:
            return Step(PositionAccepted(position=position), (AcceptPosition(position, ack.result_name),))
        name = BodyPosition(position).display_name
        reason = f"Firmware rejected position {position} ({name}): {ack.result_name}. Reposition and confirm again."
        return Step(
            PositionRejected(position=position, reason=reason),
            (
                RejectPosition(position, ack.result_name),
                RecordNote(reason, Severity.WARNING),
            ),
        )

    # Duplicate or late acknowledgement for a command already handled
    return _ignore(state)


def _on_notice(state: CalibrationState, event: NoticeReceived, ctx: TransitionContext) -> Step:
    intent = event.intent
    text = event.notice.text

    if isinstance(state, Idle):
        return _ignore(state)

    if intent.kind == IntentKind.CALIBRATION_FAILURE:
        return Step(Failed(reason=text), (SealSession(SessionResult.FAILED, text),))

    if intent.kind == IntentKind.CALIBRATION_SUCCESS:
        return _on_success(state, text, ctx)

    if ctx.sensor_kind == SensorKind.ACCELEROMETER and intent.kind == IntentKind.POSITION_REQUEST:
        return _on_position_request(state, intent.position)

    if ctx.sensor_kind == SensorKind.COMPASS and intent.kind == IntentKind.PROGRESS:
        if isinstance(state, Rotating) and state.percent != intent.percent:
            return Step(Rotating(percent=intent.percent))
        return _ignore(state)

    return _ignore(state)


def _on_success(state: CalibrationState, text: str, ctx: TransitionContext) -> Step:
    if ctx.sensor_kind != SensorKind.ACCELEROMETER:
        return Step(Completed(), (SealSession(SessionResult.SUCCESS),))

    accepted = set(ctx.accepted_positions)
    effects = []
    if isinstance(state, AwaitingSampling) and state.position not in accepted:
        # Firmware only reports success after sampling the pending position
        accepted.add(state.position)
        effects.append(AcceptPosition(state.position, text))

    if accepted >= ALL_POSITIONS:
        effects.append(SealSession(SessionResult.SUCCESS))
        return Step(Completed(), tuple(effects))

    missing = sorted(ALL_POSITIONS - accepted)
    return _ignore(
        state,
        RecordNote(
            f"Ignoring success notice with {len(accepted)}/{ACCEL_POSITION_COUNT} positions accepted "
            f"(missing {missing}): {text!r}",
            Severity.WARNING,
        ),
    )


def _on_position_request(state: CalibrationState, position: Optional[int]) -> Step:
    if position is None:
        return _ignore(state)

    if isinstance(state, (AwaitingUserPosition, PositionRejected)) and state.position == position:
        return _ignore(state)

    if isinstance(state, AwaitingSampling):
        if state.position == position:
            return _ignore(state)
        # Firmware moved on, so the pending position was sampled
        return Step(
            AwaitingUserPosition(position=position),
            (
                AcceptPosition(state.position, f"implied by request for position {position}"),
                RecordNote(
                    f"Position {state.position} accepted by firmware request for position {position} "
                    f"before its acknowledgement"
                ),
                OpenPosition(position),
            ),
        )

    if isinstance(state, (
        AwaitingAcknowledgement,
        AwaitingInstruction,
        AwaitingUserPosition,
        PositionAccepted,
        PositionRejected,
    )):
        return Step(AwaitingUserPosition(position=position), (OpenPosition(position),))

    return _ignore(state)


def _on_validated(state: CalibrationState, result: OrientationResult) -> Step:
    if not isinstance(state, Sampling):
        return _ignore(state)
    position = state.position
    if not result.accepted:
        return Step(
            AwaitingUserPosition(position=position, correction=result.reason),
            (
                RecordLocalRejection(position, result.reason, result.mean_vector),
                RecordNote(result.reason, Severity.WARNING),
            ),
        )
    return Step(
        AwaitingSampling(position=position),
        (
            BeginConfirm(position, result.mean_vector),
            SendCommand(ConfirmPosition(position=position)),
        ),
    )
