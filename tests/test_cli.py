#!/usr/bin/env python3
"""
Test Suite for the fc-calibrate CLI

Tests:
- Argument parsing
- Exit codes for success, firmware refusal and missing link
- Diagnostics export
"""

import sys
import os
import io
import json
import pytest

sys.path.insert(0, os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "src"))

from fc_calibration import cli
from fc_calibration.protocol.messages import (
    AckResult,
    CommandAck,
    MAV_CMD_PREFLIGHT_CALIBRATION,
    StartCalibration,
    StatusText,
)


class ScriptedBridge:
    """Feeds one scripted message per poll once a command has been sent."""

    def __init__(self, link, script=(), connects=True):
        self.link = link
        self.script = list(script)
        self.connects = connects
        self.sent = []
        self.closed = False

    def connect(self, timeout=5.0):
        return self.connects

    def send(self, command):
        self.sent.append(command)

    def poll(self, engine):
        if not self.sent:
            return 0
        if not self.script:
            engine.handle_link_lost("script exhausted")
            return 0
        engine.handle_message(self.script.pop(0))
        return 1

    def close(self):
        self.closed = True


@pytest.fixture
def config_path(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(
        "system:\n"
        "  log_level: WARNING\n"
        f"  log_file: {tmp_path / 'cli.log'}\n"
        "preconditions:\n"
        "  enabled: false\n"
    )
    return str(path)


def factory_for(bridges, **kwargs):
    def factory(link):
        bridge = ScriptedBridge(link, **kwargs)
        bridges.append(bridge)
        return bridge
    return factory


class TestParser:
    """Test argument parsing."""

    def test_defaults(self):
        """Test accelerometer is the default sensor."""
        args = cli.build_parser().parse_args([])
        assert args.sensor == "accelerometer"
        assert args.export is None

    def test_rejects_unknown_sensor(self):
        """Test unknown sensors are refused by argparse."""
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args(["--sensor", "gyroscope"])


class TestMain:
    """Test end-to-end CLI runs against a scripted bridge."""

    def test_no_link(self, config_path):
        """Test a failed connect exits with EXIT_NO_LINK."""
        bridges = []
        code = cli.main(["--config", config_path], bridge_factory=factory_for(bridges, connects=False))

        assert code == cli.EXIT_NO_LINK
        assert bridges[0].sent == []

    def test_connection_override(self, config_path):
        """Test --connection replaces the configured link."""
        bridges = []
        cli.main(
            ["--config", config_path, "--connection", "tcp:127.0.0.1:5760"],
            bridge_factory=factory_for(bridges, connects=False),
        )
        assert bridges[0].link.connection == "tcp:127.0.0.1:5760"

    def test_compass_success(self, config_path, tmp_path, capsys):
        """Test a successful compass run exits 0 and exports diagnostics."""
        bridges = []
        export = tmp_path / "diag.json"
        script = [
            CommandAck(MAV_CMD_PREFLIGHT_CALIBRATION, AckResult.ACCEPTED),
            StatusText(6, "Mag(0) 50% complete"),
            StatusText(6, "Calibration successful"),
        ]

        code = cli.main(
            ["--config", config_path, "--sensor", "compass", "--export", str(export)],
            bridge_factory=factory_for(bridges, script=script),
            input_stream=io.StringIO(""),
        )

        assert code == cli.EXIT_OK
        assert bridges[0].sent[0] == StartCalibration(cli.SensorKind.COMPASS)
        assert bridges[0].closed

        out = capsys.readouterr().out
        assert "[ 50%]" in out
        assert "Calibration result: success" in out

        data = json.loads(export.read_text())
        messages = [event["message"] for event in data["events"]]
        assert "Calibration successful" in messages

    def test_firmware_refusal(self, config_path):
        """Test a denied start exits with EXIT_FAILED."""
        bridges = []
        script = [CommandAck(MAV_CMD_PREFLIGHT_CALIBRATION, AckResult.DENIED)]

        code = cli.main(
            ["--config", config_path, "--sensor", "barometer"],
            bridge_factory=factory_for(bridges, script=script),
            input_stream=io.StringIO(""),
        )

        assert code == cli.EXIT_FAILED
        assert bridges[0].closed


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
