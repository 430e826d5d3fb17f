"""
fc-calibrate - drive one calibration session from a terminal.

    fc-calibrate --connection udpin:0.0.0.0:14550 --sensor accelerometer
    fc-calibrate --sensor compass --export compass_diag.json

Press Enter to confirm a requested position, Ctrl+C to cancel.
"""

import argparse
import logging
import sys
import threading
import time
from pathlib import Path
from typing import Callable, List, Optional, TextIO

from .config_loader import AppConfig, load_and_validate_config
from .engine import CalibrationEngine
from .logging_utils import configure_package_logging
from .protocol.messages import SensorKind
from .session import SessionResult
from .snapshot import StateSnapshot
from .states import TERMINAL_TAGS

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_NO_LINK = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="fc-calibrate",
        description="Firmware-confirmed flight controller sensor calibration",
    )
    parser.add_argument("--connection", help="MAVLink connection string (overrides config)")
    parser.add_argument(
        "--sensor",
        default=SensorKind.ACCELEROMETER.value,
        choices=[kind.value for kind in SensorKind],
        help="Sensor to calibrate",
    )
    parser.add_argument("--config", help="Path to config.yaml")
    parser.add_argument("--export", help="Write session diagnostics to this JSON file")
    parser.add_argument("--log-level", help="Override system.log_level")
    return parser


def print_snapshot(snapshot: StateSnapshot, out: Optional[TextIO] = None):
    prefix = {
        "correction": "!",
        "alert": "X",
        "completion": "*",
    }.get(snapshot.message_kind.value, "-")
    line = f"[{snapshot.progress_percent:3d}%] {prefix} {snapshot.instruction}"
    if snapshot.confirm_enabled:
        line += "  (press Enter to confirm)"
    print(line, file=out or sys.stdout, flush=True)


def _watch_input(engine: CalibrationEngine, stream: TextIO, stop: threading.Event):
    try:
        for _ in iter(stream.readline, ""):
            if stop.is_set():
                return
            engine.confirm_current_position()
    except (OSError, ValueError) as e:
        logger.debug(f"Input closed: {e}")


def run_session(
    engine: CalibrationEngine,
    bridge,
    sensor_kind: SensorKind,
    input_stream: Optional[TextIO] = None,
    poll_interval: float = 0.02,
    warmup_s: float = 0.0,
) -> SessionResult:
    """
    Run one session until it reaches a terminal state.

    ``warmup_s`` keeps polling before the start so heartbeat pre-conditions
    can be satisfied.
    """
    deadline = time.monotonic() + warmup_s
    while time.monotonic() < deadline:
        bridge.poll(engine)
        time.sleep(poll_interval)

    started = engine.start(sensor_kind)
    if not started:
        print(f"Cannot start calibration: {started.reason}", flush=True)
        return SessionResult.REJECTED

    stop = threading.Event()
    if input_stream is not None:
        threading.Thread(
            target=_watch_input, args=(engine, input_stream, stop), name="fc-calibrate-input", daemon=True
        ).start()

    try:
        while engine.snapshot.state not in TERMINAL_TAGS:
            bridge.poll(engine)
            time.sleep(poll_interval)
    except KeyboardInterrupt:
        print("\nCancelling calibration...", flush=True)
        engine.cancel()
    finally:
        stop.set()

    return engine.session.result


def main(
    argv: Optional[List[str]] = None,
    bridge_factory: Optional[Callable] = None,
    input_stream: Optional[TextIO] = None,
) -> int:
    """CLI entry point."""
    args = build_parser().parse_args(argv)

    app_config: AppConfig = load_and_validate_config(args.config) if args.config else load_and_validate_config()
    if args.connection:
        app_config.link.connection = args.connection
    if args.log_level:
        app_config.system.log_level = args.log_level.upper()

    configure_package_logging(app_config.system.log_level, app_config.system.log_file)

    if bridge_factory is None:
        from .protocol.mavlink_bridge import MavlinkBridge
        bridge_factory = MavlinkBridge
    bridge = bridge_factory(app_config.link)

    if not bridge.connect():
        logger.error(f"Could not connect to {app_config.link.connection}")
        return EXIT_NO_LINK

    engine = CalibrationEngine(sender=bridge.send, app_config=app_config)
    if engine.preconditions is not None:
        engine.preconditions.set_connected(True)
    engine.subscribe(print_snapshot)

    # First heartbeat was consumed by connect(); allow one more period for stability
    warmup = app_config.preconditions.heartbeat_stable_s + 1.0 if app_config.preconditions.enabled else 0.0
    try:
        result = run_session(engine, bridge, SensorKind(args.sensor), input_stream or sys.stdin, warmup_s=warmup)
    finally:
        if args.export and engine.session is not None:
            Path(args.export).write_text(engine.diagnostics.to_json())
            logger.info(f"Diagnostics exported to {args.export}")
        bridge.close()

    print(f"Calibration result: {result.value}", flush=True)
    return EXIT_OK if result == SessionResult.SUCCESS else EXIT_FAILED


if __name__ == "__main__":
    sys.exit(main())
