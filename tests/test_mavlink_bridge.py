#!/usr/bin/env python3
"""
Test Suite for the MAVLink Bridge

Tests:
- Message translation (acks, status text, IMU frames, heartbeats)
- COMMAND_LONG encoding
- Polling into the engine and link-silence detection
"""

import itertools
import sys
import os
import pytest
from unittest.mock import MagicMock, patch

sys.path.insert(0, os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "src"))

from pymavlink import mavutil

from fc_calibration.config_loader import LinkConfig
from fc_calibration.protocol.mavlink_bridge import MILLI_G_TO_MS2, MavlinkBridge
from fc_calibration.protocol.messages import (
    AccelSample,
    AckResult,
    CommandAck,
    ConfirmPosition,
    Heartbeat,
    MAV_CMD_ACCELCAL_VEHICLE_POS,
    MAV_CMD_PREFLIGHT_CALIBRATION,
    SensorKind,
    StartCalibration,
    StatusText,
)


class ManualClock:
    def __init__(self, now=100.0):
        self.now = now

    def __call__(self):
        return self.now


def mav_message(msg_type, **fields):
    msg = MagicMock()
    msg.get_type.return_value = msg_type
    for name, value in fields.items():
        setattr(msg, name, value)
    return msg


def heartbeat_message(base_mode=0, autopilot=3):
    return mav_message("HEARTBEAT", base_mode=base_mode, autopilot=autopilot, type=2)


class FakeEngine:
    def __init__(self):
        self.messages = []
        self.link_lost = []

    def handle_message(self, message):
        self.messages.append(message)
        return False

    def handle_link_lost(self, reason):
        self.link_lost.append(reason)
        return True


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def connection():
    conn = MagicMock()
    conn.recv_match.return_value = None
    return conn


@pytest.fixture
def bridge(connection, clock):
    return MavlinkBridge(LinkConfig(target_system=1, target_component=1), connection=connection, clock=clock)


class TestTranslate:
    """Test pymavlink message translation."""

    def test_command_ack(self, bridge):
        """Test COMMAND_ACK maps to CommandAck."""
        ack = bridge.translate(mav_message("COMMAND_ACK", command=241, result=0))
        assert ack == CommandAck(MAV_CMD_PREFLIGHT_CALIBRATION, AckResult.ACCEPTED)

    def test_unknown_ack_result_is_failure(self, bridge):
        """Test an out-of-range MAV_RESULT is treated as FAILED."""
        ack = bridge.translate(mav_message("COMMAND_ACK", command=42429, result=99))
        assert ack.result == AckResult.FAILED
        assert not ack.accepted

    def test_status_text_bytes(self, bridge):
        """Test byte payloads are decoded and null padding stripped."""
        notice = bridge.translate(mav_message("STATUSTEXT", severity=6, text=b"Place vehicle level\x00\x00"))
        assert notice == StatusText(6, "Place vehicle level")

    def test_scaled_imu_negated_and_scaled(self, bridge, clock):
        """Test milli-g readings become gravity-pointing m/s^2."""
        sample = bridge.translate(mav_message("SCALED_IMU2", xacc=0, yacc=0, zacc=-1000))

        assert isinstance(sample, AccelSample)
        assert sample.z == pytest.approx(1000 * MILLI_G_TO_MS2)
        assert sample.x == 0 and sample.y == 0
        assert sample.timestamp == clock.now

    def test_highres_imu_negated(self, bridge):
        """Test HIGHRES_IMU is already in m/s^2."""
        sample = bridge.translate(mav_message("HIGHRES_IMU", xacc=0.0, yacc=9.8, zacc=0.0))
        assert sample.y == pytest.approx(-9.8)

    def test_heartbeat_armed_flag(self, bridge):
        """Test the safety-armed bit of base_mode."""
        armed = bridge.translate(heartbeat_message(base_mode=mavutil.mavlink.MAV_MODE_FLAG_SAFETY_ARMED))
        disarmed = bridge.translate(heartbeat_message(base_mode=0, autopilot=12))

        assert isinstance(armed, Heartbeat)
        assert armed.armed
        assert not disarmed.armed
        assert disarmed.autopilot == 12

    def test_unrelated_message(self, bridge):
        """Test other message types are dropped."""
        assert bridge.translate(mav_message("ATTITUDE")) is None
        assert bridge.translate(None) is None


class TestSend:
    """Test COMMAND_LONG encoding."""

    def test_start_calibration(self, bridge, connection):
        """Test the compass start command sets param2."""
        bridge.send(StartCalibration(SensorKind.COMPASS))

        connection.mav.command_long_send.assert_called_once_with(
            1, 1, MAV_CMD_PREFLIGHT_CALIBRATION, 0, 0.0, 1.0, 0.0, 0.0, 0.0, 0.0, 0.0
        )

    def test_confirm_position(self, bridge, connection):
        """Test the position confirm carries the index in param1."""
        bridge.send(ConfirmPosition(4))

        connection.mav.command_long_send.assert_called_once_with(
            1, 1, MAV_CMD_ACCELCAL_VEHICLE_POS, 0, 4.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0
        )

    def test_send_without_connection(self):
        """Test sending on a closed bridge raises."""
        with pytest.raises(ConnectionError):
            MavlinkBridge().send(ConfirmPosition(1))


class TestPolling:
    """Test draining messages and detecting link loss."""

    def test_poll_forwards_messages(self, bridge, connection):
        """Test translated messages reach the engine in order."""
        connection.recv_match.side_effect = [
            heartbeat_message(),
            mav_message("ATTITUDE"),
            mav_message("STATUSTEXT", severity=6, text="Calibration successful"),
            None,
        ]
        engine = FakeEngine()

        assert bridge.poll(engine) == 2
        assert isinstance(engine.messages[0], Heartbeat)
        assert engine.messages[1].text == "Calibration successful"
        assert engine.link_lost == []

    def test_link_silence_reported_once(self, bridge, connection, clock):
        """Test heartbeat silence beyond the timeout reports link loss once."""
        connection.recv_match.side_effect = itertools.chain([heartbeat_message()], itertools.repeat(None))
        engine = FakeEngine()
        bridge.poll(engine)

        clock.now += 6.0
        bridge.poll(engine)
        bridge.poll(engine)

        assert len(engine.link_lost) == 1
        assert "No heartbeat" in engine.link_lost[0]

    def test_poll_without_connection(self):
        """Test polling a closed bridge is a no-op."""
        assert MavlinkBridge().poll(FakeEngine()) == 0


class TestConnect:
    """Test connection setup."""

    def test_connect_waits_for_heartbeat(self, clock):
        """Test connect opens the link and records the first heartbeat."""
        conn = MagicMock()
        with patch("fc_calibration.protocol.mavlink_bridge.mavutil.mavlink_connection", return_value=conn) as factory:
            bridge = MavlinkBridge(LinkConfig(connection="udpin:0.0.0.0:14551"), clock=clock)
            assert bridge.connect(timeout=1.0)

        factory.assert_called_once_with("udpin:0.0.0.0:14551", baud=115200, source_system=255)
        assert bridge.connected

        bridge.close()
        conn.close.assert_called_once()
        assert not bridge.connected

    def test_connect_without_heartbeat(self, clock):
        """Test connect fails when no heartbeat arrives."""
        conn = MagicMock()
        conn.wait_heartbeat.return_value = None
        with patch("fc_calibration.protocol.mavlink_bridge.mavutil.mavlink_connection", return_value=conn):
            bridge = MavlinkBridge(clock=clock)
            assert not bridge.connect(timeout=0.1)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
