"""
Protocol Module - typed flight-controller messages and the MAVLink adapter.

The bridge depends on pymavlink and is imported explicitly:
    from fc_calibration.protocol.mavlink_bridge import MavlinkBridge
"""

from .messages import (
    ACCEL_POSITION_COUNT,
    MAV_CMD_ACCELCAL_VEHICLE_POS,
    MAV_CMD_PREFLIGHT_CALIBRATION,
    STANDARD_GRAVITY,
    AbortCalibration,
    AccelSample,
    AckResult,
    BodyPosition,
    CommandAck,
    ConfirmPosition,
    Heartbeat,
    MavSeverity,
    OutboundCommand,
    SensorKind,
    StartCalibration,
    StatusText,
    describe_rejection,
)

__all__ = [
    "ACCEL_POSITION_COUNT",
    "MAV_CMD_ACCELCAL_VEHICLE_POS",
    "MAV_CMD_PREFLIGHT_CALIBRATION",
    "STANDARD_GRAVITY",
    "AbortCalibration",
    "AccelSample",
    "AckResult",
    "BodyPosition",
    "CommandAck",
    "ConfirmPosition",
    "Heartbeat",
    "MavSeverity",
    "OutboundCommand",
    "SensorKind",
    "StartCalibration",
    "StatusText",
    "describe_rejection",
]
