"""
Calibration Engine

Owns the active CalibrationSession and drives it through the pure transition
function. All public methods serialise through one re-entrant lock, so
transport threads and UI actions may call in concurrently.

Flow:
    UI action / inbound message
        → archive to diagnostics
        → step(state, event, context)
        → apply effects (session updates, outbound commands, notes, seal)
        → publish StateSnapshot to subscribers (after the lock is released)

The engine never completes a calibration on its own and has no timers: the
firmware is the sole authority on success or failure.
"""

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, List, Optional, Tuple, Union

from .config_loader import AppConfig
from .diagnostics import DiagnosticsRecorder, EventKind, Severity
from .errors import ErrorKind, notify_callbacks
from .orientation_validator import OrientationValidator
from .preconditions import PreconditionChecker
from .protocol.messages import (
    AccelSample,
    CommandAck,
    Heartbeat,
    MavSeverity,
    OutboundCommand,
    SensorKind,
    StatusText,
)
from .session import CalibrationSession, SessionResult
from .snapshot import StateSnapshot, build_snapshot
from .states import AwaitingSampling, CalibrationState
from .status_text import StatusTextInterpreter
from . import transitions as tr

logger = logging.getLogger(__name__)

Sender = Callable[[OutboundCommand], None]
Listener = Callable[[StateSnapshot], None]
InboundMessage = Union[CommandAck, StatusText, AccelSample, Heartbeat]

_ERROR_KIND_BY_RESULT = {
    SessionResult.REJECTED: ErrorKind.PROTOCOL_REJECTION,
    SessionResult.FAILED: ErrorKind.FIRMWARE_FAILURE,
    SessionResult.CANCELLED: ErrorKind.USER_CANCELLATION,
    SessionResult.TIMED_OUT: ErrorKind.LINK_LOST,
}


@dataclass(frozen=True)
class StartResult:
    started: bool
    session_id: Optional[str] = None
    reason: Optional[str] = None

    def __bool__(self) -> bool:
        return self.started


def _diagnostic_severity(mav_severity: int) -> Severity:
    if mav_severity <= MavSeverity.ERROR:
        return Severity.ERROR
    if mav_severity == MavSeverity.WARNING:
        return Severity.WARNING
    return Severity.INFO


class CalibrationEngine:
    """
    Firmware-confirmed sensor calibration state machine.

    Args:
        sender: Hands outbound commands to the transport; must not block
        app_config: Validated configuration (defaults if omitted)
        validator: Orientation validator (built from config if omitted)
        interpreter: Status-text interpreter (built from config if omitted)
        preconditions: Start gate; built from config when enabled there
        clock: Wall-clock source for session and diagnostics timestamps
    """

    def __init__(
        self,
        sender: Sender,
        app_config: Optional[AppConfig] = None,
        validator: Optional[OrientationValidator] = None,
        interpreter: Optional[StatusTextInterpreter] = None,
        preconditions: Optional[PreconditionChecker] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.config = app_config or AppConfig()
        self._sender = sender
        self._validator = validator or OrientationValidator.from_config(self.config.validator)
        self._interpreter = interpreter or StatusTextInterpreter(self.config.status_phrases)
        if preconditions is None and self.config.preconditions.enabled:
            preconditions = PreconditionChecker(self.config.preconditions)
        self.preconditions = preconditions
        self._clock = clock or time.time

        self._lock = threading.RLock()
        self._notify_lock = threading.RLock()
        self._outbox: Deque[StateSnapshot] = deque()
        self._listeners: List[Listener] = []

        self._session: Optional[CalibrationSession] = None
        self._history: Deque[CalibrationSession] = deque(maxlen=self.config.engine.history_size)
        # (received_at, sample), stamped with the engine clock on arrival
        self._samples: Deque[Tuple[float, AccelSample]] = deque(maxlen=self.config.validator.window_size)
        self._flushing = False
        self._snapshot = build_snapshot(None)

        logger.info("Calibration engine initialized")

    # =========================================================================
    # Read access
    # =========================================================================

    @property
    def snapshot(self) -> StateSnapshot:
        with self._lock:
            return self._snapshot

    @property
    def session(self) -> Optional[CalibrationSession]:
        """Current session, or the last one once it has ended."""
        with self._lock:
            return self._session

    @property
    def state(self) -> Optional[CalibrationState]:
        with self._lock:
            return self._session.state if self._session else None

    @property
    def diagnostics(self) -> DiagnosticsRecorder:
        with self._lock:
            if self._session is None:
                return DiagnosticsRecorder()
            return self._session.diagnostics

    @property
    def history(self) -> Tuple[CalibrationSession, ...]:
        """Most recent sessions, oldest first (current one included)."""
        with self._lock:
            return tuple(self._history)

    @property
    def is_active(self) -> bool:
        with self._lock:
            return self._session is not None and not self._session.sealed

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a snapshot listener. Returns a callable that unsubscribes it."""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe():
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    # =========================================================================
    # User actions
    # =========================================================================

    def start(self, sensor_kind: Union[SensorKind, str]) -> StartResult:
        """Start a calibration session. Only one session may be active."""
        if not isinstance(sensor_kind, SensorKind):
            sensor_kind = SensorKind.parse(sensor_kind)

        with self._lock:
            if self._session is not None and not self._session.sealed:
                reason = f"Calibration already in progress ({self._session.sensor_kind.value})"
                logger.warning(f"Start refused: {reason}")
                return StartResult(False, self._session.session_id, reason)

            if self.preconditions is not None:
                check = self.preconditions.check(sensor_kind)
                if not check:
                    return StartResult(False, None, check.message)

            now = self._clock()
            session = CalibrationSession(sensor_kind=sensor_kind, started_at=now)
            session.diagnostics = DiagnosticsRecorder(session.session_id, clock=self._clock)
            self._session = session
            self._history.append(session)
            self._samples.clear()

            session.diagnostics.note(f"Calibration started: {sensor_kind.value}", sensor_kind=sensor_kind.value)
            if self.preconditions is not None:
                for warning in check.warnings:
                    session.diagnostics.note(warning, Severity.WARNING)

            logger.info(f"Starting {sensor_kind.value} calibration (session {session.session_id[:8]})")
            self._run(session, tr.StartRequested(sensor_kind))
            result = StartResult(True, session.session_id)

        self._flush()
        return result

    def confirm_current_position(self) -> bool:
        """
        Validate the live sample window and, if it passes, confirm the
        current position to the firmware.

        Returns:
            True if the confirm command was sent
        """
        with self._lock:
            session = self._session
            if session is None or session.sealed:
                logger.debug("Confirm ignored: no active session")
                return False

            step = self._run(session, tr.ConfirmRequested())
            if not step.handled:
                logger.debug(f"Confirm ignored in {session.state.describe()}")
                return False

            position = session.state.position
            result = self._validator.validate(self._fresh_samples(), position)
            sent = self._run(session, tr.SamplesValidated(result)).sent
            if not sent:
                self._run(session, tr.ConfirmSendFailed(position))
            confirmed = sent and isinstance(session.state, AwaitingSampling)

        self._flush()
        return confirmed

    def cancel(self) -> bool:
        """Cancel the active session. Always available while a session is active."""
        with self._lock:
            session = self._session
            if session is None or session.sealed:
                return False
            self._run(session, tr.CancelRequested())

        self._flush()
        return True

    # =========================================================================
    # Inbound protocol messages
    # =========================================================================

    def handle_acknowledgement(self, ack: CommandAck) -> bool:
        """Returns True if the acknowledgement caused a transition."""
        with self._lock:
            session = self._session
            if session is None:
                logger.debug(f"Acknowledgement with no session: {ack}")
                return False

            stale = self._is_stale(session, ack.session_id)
            session.diagnostics.record(
                EventKind.ACKNOWLEDGEMENT,
                f"COMMAND_ACK {ack.command_id}: {ack.result_name}",
                Severity.INFO if ack.accepted else Severity.WARNING,
                command_id=ack.command_id,
                result=ack.result_name,
                state=session.state.describe(),
                stale=stale,
            )
            if stale:
                logger.debug(f"Stale acknowledgement archived: {ack}")
                return False
            handled = self._run(session, tr.AckReceived(ack)).handled

        self._flush()
        return handled

    def handle_status_text(self, notice: StatusText) -> bool:
        """Returns True if the notice caused a transition."""
        intent = self._interpreter.classify(notice.severity, notice.text)
        with self._lock:
            session = self._session
            if session is None:
                logger.debug(f"Status text with no session: {notice.text!r}")
                return False

            stale = self._is_stale(session, notice.session_id)
            session.diagnostics.record(
                EventKind.STATUS_TEXT,
                notice.text,
                _diagnostic_severity(notice.severity),
                mav_severity=notice.severity_name,
                intent=intent.kind.value,
                position=intent.position,
                percent=intent.percent,
                state=session.state.describe(),
                stale=stale,
            )
            if stale:
                logger.debug(f"Stale status text archived: {notice.text!r}")
                return False
            handled = self._run(session, tr.NoticeReceived(notice, intent)).handled

        self._flush()
        return handled

    def handle_sample(self, sample: AccelSample):
        """Add one acceleration sample to the rolling validation window."""
        with self._lock:
            self._samples.append((self._clock(), sample))

    def handle_heartbeat(self, heartbeat: Heartbeat):
        if self.preconditions is not None:
            self.preconditions.record_heartbeat(heartbeat)

    def handle_link_lost(self, reason: str = "Link to flight controller lost") -> bool:
        """Transport reports the link is gone; an active session times out."""
        with self._lock:
            if self.preconditions is not None:
                self.preconditions.set_connected(False)
            session = self._session
            if session is None or session.sealed:
                return False
            handled = self._run(session, tr.LinkLost(reason)).handled

        self._flush()
        return handled

    def handle_message(self, message: InboundMessage) -> bool:
        """Route any inbound message to its handler."""
        if isinstance(message, CommandAck):
            return self.handle_acknowledgement(message)
        if isinstance(message, StatusText):
            return self.handle_status_text(message)
        if isinstance(message, AccelSample):
            self.handle_sample(message)
            return False
        if isinstance(message, Heartbeat):
            self.handle_heartbeat(message)
            return False
        logger.debug(f"Ignoring unsupported message type {type(message).__name__}")
        return False

    # =========================================================================
    # Internals (lock held)
    # =========================================================================

    @staticmethod
    def _is_stale(session: CalibrationSession, session_id: Optional[str]) -> bool:
        if session.sealed:
            return True
        return session_id is not None and session_id != session.session_id

    def _context(self, session: CalibrationSession) -> tr.TransitionContext:
        return tr.TransitionContext(
            sensor_kind=session.sensor_kind,
            accepted_positions=session.accepted_positions,
            notify_firmware_on_cancel=self.config.engine.notify_firmware_on_cancel,
        )

    def _run(self, session: CalibrationSession, event: tr.Event) -> "_Applied":
        previous = session.state
        step = tr.step(previous, event, self._context(session))

        if step.handled:
            session.set_state(step.state)
            logger.info(
                f"[{session.session_id[:8]}] {previous.describe()} -> {step.state.describe()} "
                f"({type(event).__name__})"
            )

        sent = True
        for effect in step.effects:
            if not self._perform(session, effect):
                sent = False

        if step.handled:
            self._snapshot = build_snapshot(session)
            self._outbox.append(self._snapshot)
        return _Applied(step.handled, sent)

    def _perform(self, session: CalibrationSession, effect: tr.Effect) -> bool:
        now = self._clock()
        diagnostics = session.diagnostics

        if isinstance(effect, tr.SendCommand):
            return self._send(session, effect.command)
        if isinstance(effect, tr.OpenPosition):
            session.open_position(effect.position)
            # Samples taken before the request belong to the previous orientation
            self._samples.clear()
        elif isinstance(effect, tr.BeginConfirm):
            attempt = session.begin_confirm(effect.position, now, effect.sample_vector)
            if attempt.attempt_count > 1:
                diagnostics.note(
                    f"Retrying position {attempt.position} ({attempt.position_name}), "
                    f"attempt {attempt.attempt_count}",
                    position=attempt.position,
                    attempt=attempt.attempt_count,
                )
        elif isinstance(effect, tr.RecordLocalRejection):
            session.record_local_rejection(effect.position, effect.reason, effect.sample_vector)
        elif isinstance(effect, tr.AcceptPosition):
            session.mark_accepted(effect.position, now, effect.message)
        elif isinstance(effect, tr.RejectPosition):
            session.mark_rejected(effect.position, effect.message)
        elif isinstance(effect, tr.RecordNote):
            diagnostics.note(effect.message, effect.severity, state=session.state.describe())
        elif isinstance(effect, tr.SealSession):
            if effect.error:
                diagnostics.note(
                    effect.error,
                    Severity.WARNING,
                    result=effect.result.value,
                    error_kind=_ERROR_KIND_BY_RESULT[effect.result].value,
                )
            session.seal(effect.result, now, effect.error)
        return True

    def _fresh_samples(self) -> List[AccelSample]:
        """Samples received within ``validator.max_sample_age_s`` of now."""
        max_age = self.config.validator.max_sample_age_s
        now = self._clock()
        fresh = [sample for received_at, sample in self._samples if now - received_at <= max_age]
        if len(fresh) < len(self._samples):
            logger.debug(f"Dropped {len(self._samples) - len(fresh)} samples older than {max_age:.1f}s")
        return fresh

    def _send(self, session: CalibrationSession, command: OutboundCommand) -> bool:
        name = type(command).__name__
        try:
            self._sender(command)
        except Exception as e:
            logger.error(f"Failed to send {name}: {e}")
            session.diagnostics.note(
                f"Failed to send {name}: {e}",
                Severity.ERROR,
                command_id=command.command_id,
            )
            return False
        session.diagnostics.note(
            f"Sent {name}",
            command_id=command.command_id,
            params=list(command.params()),
        )
        return True

    def _flush(self):
        """Deliver queued snapshots in transition order, outside the engine lock."""
        with self._notify_lock:
            # A listener calling back into the engine lands here on the same
            # thread; the outer loop delivers its snapshots in order.
            if self._flushing:
                return
            self._flushing = True
            try:
                while True:
                    with self._lock:
                        if not self._outbox:
                            return
                        snapshot = self._outbox.popleft()
                        listeners = list(self._listeners)
                    notify_callbacks(listeners, snapshot)
            finally:
                self._flushing = False


@dataclass(frozen=True)
class _Applied:
    handled: bool
    sent: bool
