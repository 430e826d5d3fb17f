"""
FC Calibration - Firmware-Confirmed Sensor Calibration Engine

Drives multi-step flight-controller calibrations (accelerometer 6-position,
compass rotation, barometer, level horizon) over an asynchronous
command / acknowledgement / status-text channel. The firmware is the sole
authority on success or failure; the engine only orchestrates, validates
vehicle orientation locally and records a complete audit trail.

Primary Components:
    - CalibrationEngine: locked state machine owning the active session
    - OrientationValidator: local gate before confirming a position
    - StatusTextInterpreter: firmware notice classification
    - DiagnosticsRecorder: append-only session log
    - EventDispatcher: single-consumer worker in front of the engine

Usage:
    from fc_calibration import CalibrationEngine, SensorKind

    engine = CalibrationEngine(sender=bridge.send)
    engine.subscribe(print)
    engine.start(SensorKind.ACCELEROMETER)
"""

from .version import __version__

# Configuration
from .config_loader import AppConfig, load_and_validate_config

# Protocol
from .protocol.messages import (
    AccelSample,
    AckResult,
    BodyPosition,
    CommandAck,
    Heartbeat,
    SensorKind,
    StatusText,
)

# Engine
from .engine import CalibrationEngine, StartResult
from .dispatcher import EventDispatcher
from .diagnostics import DiagnosticEvent, DiagnosticsRecorder, EventKind, Severity
from .errors import CalibrationError, ErrorKind, InvalidPositionError, SessionSealedError
from .orientation_validator import OrientationResult, OrientationValidator
from .preconditions import PreconditionChecker, PreconditionResult
from .session import CalibrationSession, PositionAttempt, SessionResult
from .snapshot import MessageKind, StateSnapshot
from .states import StateTag
from .status_text import IntentKind, NoticeIntent, StatusTextInterpreter

__all__ = [
    "__version__",
    "AppConfig",
    "load_and_validate_config",
    "AccelSample",
    "AckResult",
    "BodyPosition",
    "CommandAck",
    "Heartbeat",
    "SensorKind",
    "StatusText",
    "CalibrationEngine",
    "StartResult",
    "EventDispatcher",
    "DiagnosticEvent",
    "DiagnosticsRecorder",
    "EventKind",
    "Severity",
    "CalibrationError",
    "ErrorKind",
    "InvalidPositionError",
    "SessionSealedError",
    "OrientationResult",
    "OrientationValidator",
    "PreconditionChecker",
    "PreconditionResult",
    "CalibrationSession",
    "PositionAttempt",
    "SessionResult",
    "MessageKind",
    "StateSnapshot",
    "StateTag",
    "IntentKind",
    "NoticeIntent",
    "StatusTextInterpreter",
]
