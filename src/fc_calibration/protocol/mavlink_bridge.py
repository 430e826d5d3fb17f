"""
MAVLink Bridge

Thin adapter between a pymavlink connection and the calibration engine:

- ``send(command)``      → COMMAND_LONG
- ``translate(msg)``     → CommandAck / StatusText / AccelSample / Heartbeat
- ``poll(engine)``       → drain pending messages into the engine

IMU messages carry specific force (a level vehicle reads Z ≈ -1 g in the
NED body frame). Samples are negated so they point along gravity, which is
the frame the orientation validator works in.
"""

import logging
import time
from typing import Any, Callable, Optional

from pymavlink import mavutil

from ..config_loader import LinkConfig
from .messages import (
    AccelSample,
    AckResult,
    CommandAck,
    Heartbeat,
    OutboundCommand,
    StatusText,
)

logger = logging.getLogger(__name__)

MILLI_G_TO_MS2 = 9.80665 / 1000.0

_SCALED_IMU_TYPES = ("SCALED_IMU", "SCALED_IMU2", "SCALED_IMU3", "RAW_IMU")


class MavlinkBridge:
    """
    Adapter over a ``mavutil`` connection.

    Args:
        link: Link settings (connection string, ids, timeout)
        connection: Already-open pymavlink connection; opened by ``connect`` otherwise
        clock: Monotonic clock used for link-silence detection
    """

    def __init__(
        self,
        link: Optional[LinkConfig] = None,
        connection: Any = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.link = link or LinkConfig()
        self.connection = connection
        self._clock = clock or time.monotonic
        self._last_heartbeat: Optional[float] = None
        self._link_lost_reported = False

    @property
    def connected(self) -> bool:
        return self.connection is not None

    def connect(self, timeout: float = 5.0) -> bool:
        """Open the connection and wait for the first heartbeat."""
        logger.info(f"Connecting to {self.link.connection}")
        self.connection = mavutil.mavlink_connection(
            self.link.connection,
            baud=self.link.baud,
            source_system=self.link.source_system,
        )
        msg = self.connection.wait_heartbeat(timeout=timeout)
        if msg is None:
            logger.error(f"No heartbeat from {self.link.connection} within {timeout:.0f}s")
            return False
        self._last_heartbeat = self._clock()
        self._link_lost_reported = False
        logger.info(f"MAVLink connected to system {msg.get_srcSystem()}")
        return True

    def close(self):
        if self.connection is not None:
            self.connection.close()
            self.connection = None
            logger.info("MAVLink connection closed")

    def send(self, command: OutboundCommand):
        """Send an outbound command as COMMAND_LONG. Raises if not connected."""
        if self.connection is None:
            raise ConnectionError("MAVLink connection is not open")
        params = command.params()
        self.connection.mav.command_long_send(
            self.link.target_system,
            self.link.target_component,
            command.command_id,
            0,  # confirmation
            *params,
        )
        logger.debug(f"Sent COMMAND_LONG {command.command_id} params={params}")

    def translate(self, msg: Any):
        """Convert one pymavlink message into an inbound message, or None."""
        if msg is None:
            return None
        msg_type = msg.get_type()

        if msg_type == "COMMAND_ACK":
            try:
                result = AckResult(msg.result)
            except ValueError:
                logger.warning(f"Unknown MAV_RESULT {msg.result} for command {msg.command}")
                result = AckResult.FAILED
            return CommandAck(command_id=int(msg.command), result=result)

        if msg_type == "STATUSTEXT":
            text = msg.text
            if isinstance(text, bytes):
                text = text.decode("utf-8", errors="replace")
            return StatusText(severity=int(msg.severity), text=text.rstrip("\x00").strip())

        if msg_type in _SCALED_IMU_TYPES:
            return AccelSample(
                timestamp=self._clock(),
                x=-msg.xacc * MILLI_G_TO_MS2,
                y=-msg.yacc * MILLI_G_TO_MS2,
                z=-msg.zacc * MILLI_G_TO_MS2,
            )

        if msg_type == "HIGHRES_IMU":
            # Already in m/s^2
            return AccelSample(timestamp=self._clock(), x=-msg.xacc, y=-msg.yacc, z=-msg.zacc)

        if msg_type == "HEARTBEAT":
            return Heartbeat(
                armed=bool(msg.base_mode & mavutil.mavlink.MAV_MODE_FLAG_SAFETY_ARMED),
                autopilot=int(msg.autopilot),
                vehicle_type=int(msg.type),
                timestamp=self._clock(),
            )

        return None

    def poll(self, engine, max_messages: int = 200) -> int:
        """
        Feed pending messages to ``engine`` (anything with ``handle_message``
        and ``handle_link_lost``).

        Returns:
            Number of messages forwarded
        """
        if self.connection is None:
            return 0

        forwarded = 0
        for _ in range(max_messages):
            msg = self.connection.recv_match(blocking=False)
            if msg is None:
                break
            inbound = self.translate(msg)
            if inbound is None:
                continue
            if isinstance(inbound, Heartbeat):
                self._last_heartbeat = self._clock()
                self._link_lost_reported = False
            engine.handle_message(inbound)
            forwarded += 1

        self._check_link(engine)
        return forwarded

    def _check_link(self, engine):
        if self._last_heartbeat is None or self._link_lost_reported:
            return
        silence = self._clock() - self._last_heartbeat
        if silence > self.link.link_timeout_s:
            self._link_lost_reported = True
            reason = f"No heartbeat from flight controller for {silence:.1f}s"
            logger.error(reason)
            engine.handle_link_lost(reason)
