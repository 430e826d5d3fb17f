"""
Protocol Message Model

Typed representations of the messages the calibration engine consumes from
the flight controller and the commands it produces. Values mirror the
MAVLink common dialect so that the bridge layer is a pure field mapping:

Inbound:
    CommandAck   - COMMAND_ACK (command id + MAV_RESULT)
    StatusText   - STATUSTEXT (MAV_SEVERITY + free text)
    AccelSample  - SCALED_IMU / RAW_IMU acceleration in m/s^2
    Heartbeat    - HEARTBEAT (armed flag, autopilot, vehicle type)

Outbound:
    StartCalibration  - MAV_CMD_PREFLIGHT_CALIBRATION for one sensor
    ConfirmPosition   - MAV_CMD_ACCELCAL_VEHICLE_POS (position 1..6)
    AbortCalibration  - MAV_CMD_PREFLIGHT_CALIBRATION with all params zero
"""

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import ClassVar, Optional, Tuple

import numpy as np

from ..errors import InvalidPositionError

# MAVLink command ids
MAV_CMD_PREFLIGHT_CALIBRATION = 241
MAV_CMD_ACCELCAL_VEHICLE_POS = 42429

# MAV_AUTOPILOT_ARDUPILOTMEGA
AUTOPILOT_ARDUPILOT = 3

STANDARD_GRAVITY = 9.81  # m/s^2


class SensorKind(Enum):
    """Sensors the engine knows how to calibrate."""
    ACCELEROMETER = "accelerometer"
    COMPASS = "compass"
    BAROMETER = "barometer"
    LEVEL_HORIZON = "level_horizon"

    @classmethod
    def parse(cls, value: str) -> "SensorKind":
        """Parse user input such as ``"level-horizon"`` or ``"ACCELEROMETER"``."""
        normalized = value.strip().lower().replace("-", "_").replace(" ", "_")
        return cls(normalized)


class AckResult(IntEnum):
    """MAV_RESULT values carried by COMMAND_ACK."""
    ACCEPTED = 0
    TEMPORARILY_REJECTED = 1
    DENIED = 2
    UNSUPPORTED = 3
    FAILED = 4
    IN_PROGRESS = 5
    CANCELLED = 6


class MavSeverity(IntEnum):
    """MAV_SEVERITY values carried by STATUSTEXT."""
    EMERGENCY = 0
    ALERT = 1
    CRITICAL = 2
    ERROR = 3
    WARNING = 4
    NOTICE = 5
    INFO = 6
    DEBUG = 7


class BodyPosition(IntEnum):
    """
    Accelerometer calibration body positions.

    Values MUST match the MAV_CMD_ACCELCAL_VEHICLE_POS parameter.
    """
    LEVEL = 1
    LEFT = 2
    RIGHT = 3
    NOSE_DOWN = 4
    NOSE_UP = 5
    INVERTED = 6

    @property
    def display_name(self) -> str:
        return _POSITION_NAMES[self]

    @classmethod
    def from_index(cls, index: int) -> "BodyPosition":
        try:
            return cls(int(index))
        except (TypeError, ValueError):
            raise InvalidPositionError(index) from None


_POSITION_NAMES = {
    BodyPosition.LEVEL: "LEVEL",
    BodyPosition.LEFT: "LEFT",
    BodyPosition.RIGHT: "RIGHT",
    BodyPosition.NOSE_DOWN: "NOSE DOWN",
    BodyPosition.NOSE_UP: "NOSE UP",
    BodyPosition.INVERTED: "BACK",
}

ACCEL_POSITION_COUNT = len(BodyPosition)


# =============================================================================
# Inbound
# =============================================================================

@dataclass(frozen=True)
class CommandAck:
    """Firmware acknowledgement of a previously sent command."""
    command_id: int
    result: AckResult
    session_id: Optional[str] = None

    @property
    def accepted(self) -> bool:
        # IN_PROGRESS means the firmware took the command and is working on it
        return self.result in (AckResult.ACCEPTED, AckResult.IN_PROGRESS)

    @property
    def result_name(self) -> str:
        return self.result.name


@dataclass(frozen=True)
class StatusText:
    """Free-text notice from the firmware."""
    severity: int
    text: str
    session_id: Optional[str] = None

    @property
    def severity_name(self) -> str:
        try:
            return MavSeverity(self.severity).name
        except ValueError:
            return f"UNKNOWN({self.severity})"


@dataclass(frozen=True)
class AccelSample:
    """One acceleration sample in the body frame (m/s^2)."""
    timestamp: float
    x: float
    y: float
    z: float

    @property
    def vector(self) -> np.ndarray:
        return np.array([self.x, self.y, self.z], dtype=float)


@dataclass(frozen=True)
class Heartbeat:
    """Vehicle heartbeat, used for calibration pre-conditions."""
    armed: bool
    autopilot: int = AUTOPILOT_ARDUPILOT
    vehicle_type: int = 2
    timestamp: Optional[float] = None


# =============================================================================
# Outbound
# =============================================================================

Params = Tuple[float, float, float, float, float, float, float]


@dataclass(frozen=True)
class OutboundCommand:
    """Base class for commands sent to the flight controller."""
    command_id: ClassVar[int] = 0

    def params(self) -> Params:
        return (0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0)


# MAV_CMD_PREFLIGHT_CALIBRATION parameter slot and value per sensor
_PREFLIGHT_PARAMS = {
    SensorKind.ACCELEROMETER: (4, 4.0),   # param5 = 4: full 6-position accel
    SensorKind.COMPASS: (1, 1.0),         # param2 = 1: magnetometer
    SensorKind.BAROMETER: (2, 1.0),       # param3 = 1: ground pressure
    SensorKind.LEVEL_HORIZON: (4, 2.0),   # param5 = 2: board level / trims
}


@dataclass(frozen=True)
class StartCalibration(OutboundCommand):
    """Start calibration of one sensor."""
    command_id: ClassVar[int] = MAV_CMD_PREFLIGHT_CALIBRATION
    sensor_kind: SensorKind = SensorKind.ACCELEROMETER

    def params(self) -> Params:
        values = [0.0] * 7
        slot, value = _PREFLIGHT_PARAMS[self.sensor_kind]
        values[slot] = value
        return tuple(values)


@dataclass(frozen=True)
class ConfirmPosition(OutboundCommand):
    """Tell the firmware the vehicle is in the requested position."""
    command_id: ClassVar[int] = MAV_CMD_ACCELCAL_VEHICLE_POS
    position: int = 1

    def __post_init__(self):
        BodyPosition.from_index(self.position)

    def params(self) -> Params:
        return (float(self.position), 0.0, 0.0, 0.0, 0.0, 0.0, 0.0)


@dataclass(frozen=True)
class AbortCalibration(OutboundCommand):
    """All-zero preflight calibration: asks the firmware to stop calibrating."""
    command_id: ClassVar[int] = MAV_CMD_PREFLIGHT_CALIBRATION
    reason: str = field(default="cancelled by user", compare=False)


def describe_rejection(result: AckResult) -> str:
    """Human-readable reason for a rejected start-calibration acknowledgement."""
    if result == AckResult.TEMPORARILY_REJECTED:
        return "Calibration denied - vehicle may be armed or busy"
    if result == AckResult.DENIED:
        return "Calibration denied - check vehicle state"
    if result == AckResult.UNSUPPORTED:
        return "Calibration not supported by this firmware"
    if result == AckResult.FAILED:
        return "Calibration command failed"
    if result == AckResult.CANCELLED:
        return "Calibration command cancelled by firmware"
    return f"Calibration rejected (code: {int(result)})"
