"""
Calibration Pre-Conditions

Gates the start of a calibration on link health and vehicle safety:

1. Link connected
2. At least ``min_heartbeats`` heartbeats received
3. Last heartbeat within ``heartbeat_timeout_s``
4. Heartbeats stable for ``heartbeat_stable_s``
5. Vehicle DISARMED (when ``require_disarmed``)

A non-ArduPilot autopilot is reported as a warning only.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional

from .config_loader import PreconditionConfig
from .protocol.messages import AUTOPILOT_ARDUPILOT, Heartbeat, SensorKind

logger = logging.getLogger(__name__)


class PreconditionFailure(Enum):
    NOT_CONNECTED = "not_connected"
    HEARTBEAT_UNSTABLE = "heartbeat_unstable"
    HEARTBEAT_TIMEOUT = "heartbeat_timeout"
    VEHICLE_ARMED = "vehicle_armed"


_INSTRUCTIONS = {
    SensorKind.ACCELEROMETER: [
        "Place vehicle on a stable, level surface.",
        "You will need to position the vehicle in 6 different orientations.",
        "Ensure propellers are REMOVED or motor outputs are DISABLED.",
    ],
    SensorKind.COMPASS: [
        "Move vehicle away from metal objects and electronics.",
        "Ensure adequate space to rotate vehicle in all directions.",
        "Ensure propellers are REMOVED for safety during rotation.",
    ],
    SensorKind.LEVEL_HORIZON: [
        "Place vehicle on a PERFECTLY LEVEL surface.",
        "Use a bubble level if available.",
    ],
    SensorKind.BAROMETER: [
        "Keep vehicle stationary.",
        "Avoid airflow over the vehicle (no fans, wind).",
    ],
}


@dataclass
class PreconditionResult:
    sensor_kind: SensorKind
    failure: Optional[PreconditionFailure] = None
    message: str = ""
    warnings: List[str] = field(default_factory=list)
    instructions: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.failure is None

    def __bool__(self) -> bool:
        return self.ok


class PreconditionChecker:
    """Tracks heartbeats and link state; thread-safe."""

    def __init__(self, settings: Optional[PreconditionConfig] = None, clock: Optional[Callable[[], float]] = None):
        self.settings = settings or PreconditionConfig()
        self._clock = clock or time.monotonic
        self._lock = threading.Lock()
        self._connected = False
        self.reset()

    def reset(self):
        with self._lock:
            self._heartbeat_count = 0
            self._first_heartbeat = None
            self._last_heartbeat = None
            self._armed = False
            self._autopilot = 0
        logger.debug("Pre-condition checker reset")

    def set_connected(self, connected: bool):
        with self._lock:
            self._connected = connected
        if not connected:
            self.reset()

    def record_heartbeat(self, heartbeat: Heartbeat):
        now = self._clock()
        with self._lock:
            if self._first_heartbeat is None:
                self._first_heartbeat = now
                logger.info(
                    f"First heartbeat received - vehicle type: {heartbeat.vehicle_type}, "
                    f"autopilot: {heartbeat.autopilot}"
                )
            self._heartbeat_count += 1
            self._last_heartbeat = now
            self._armed = heartbeat.armed
            self._autopilot = heartbeat.autopilot

    def check(self, sensor_kind: SensorKind) -> PreconditionResult:
        result = PreconditionResult(sensor_kind=sensor_kind)
        settings = self.settings
        now = self._clock()

        with self._lock:
            connected = self._connected
            count = self._heartbeat_count
            first = self._first_heartbeat
            last = self._last_heartbeat
            armed = self._armed
            autopilot = self._autopilot

        if not connected:
            result.failure = PreconditionFailure.NOT_CONNECTED
            result.message = "Vehicle not connected. Establish MAVLink connection first."
        elif count < settings.min_heartbeats:
            result.failure = PreconditionFailure.HEARTBEAT_UNSTABLE
            result.message = f"Waiting for heartbeat. Received {count}/{settings.min_heartbeats}."
        elif now - last > settings.heartbeat_timeout_s:
            result.failure = PreconditionFailure.HEARTBEAT_TIMEOUT
            result.message = f"MAVLink heartbeat timeout. No heartbeat for {now - last:.1f}s."
        elif now - first < settings.heartbeat_stable_s:
            result.failure = PreconditionFailure.HEARTBEAT_UNSTABLE
            result.message = (
                f"Waiting for stable heartbeat. {now - first:.1f}s of "
                f"{settings.heartbeat_stable_s:.0f}s required."
            )
        elif settings.require_disarmed and armed:
            result.failure = PreconditionFailure.VEHICLE_ARMED
            result.message = "SAFETY VIOLATION: Vehicle is ARMED. Disarm the vehicle before calibration."

        if not result.ok:
            logger.warning(f"Pre-conditions FAILED for {sensor_kind.value}: {result.message}")
            return result

        if autopilot != AUTOPILOT_ARDUPILOT:
            result.warnings.append(
                f"Non-ArduPilot autopilot detected (type={autopilot}). Calibration may behave differently."
            )
        result.instructions = list(_INSTRUCTIONS[sensor_kind])
        logger.info(f"Pre-conditions PASSED for {sensor_kind.value} calibration")
        return result
