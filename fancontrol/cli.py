#!/usr/bin/env python3
"""Command-line frontend for fancontrol.

List, read and drive fans on Linux (hwmon) and Windows (Lenovo Legion
firmware or the read-only Win32_Fan class).

Subcommands:
- list / get / set: one-shot reads and writes.
- monitor: live view driven by the worker poll loop.
- table / set-curve: inspect and write firmware fan curves.
- backup-curves / restore-curves: save and restore curves as JSON.
- gui: graphical frontend.
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from . import __version__
from .backends import create_controller
from .backends.base import DUTY_MAX, DUTY_MIN, FanController
from .backends.powershell import TRACE
from .backup import backup_curves, restore_curves
from .channels import CommandChannel, SnapshotChannel, WorkerError
from .config import ConfigManager
from .errors import DeviceUnavailable, FanControlError
from .fan import (ControllerSnapshot, Fan, FanCurve, build_curve_from_points, curve_max_rpm,
                  parse_point)
from .validator import validate_curve
from .worker import STOPPED, FanWorker

LOG_FORMAT = '%(asctime)s [%(levelname)s] %(module)s: %(message)s'


def setup_logging(verbosity: int = 0, log_file_path: Optional[str] = None) -> None:
    """Configure logging for stderr and an optional log file."""
    logging.addLevelName(TRACE, "TRACE")
    if verbosity >= 3:
        level = TRACE
    elif verbosity == 2:
        level = logging.DEBUG
    elif verbosity == 1:
        level = logging.INFO
    else:
        level = logging.WARNING

    handlers = [logging.StreamHandler(sys.stderr)]
    if log_file_path:
        handlers.append(logging.FileHandler(log_file_path))

    logging.basicConfig(level=level, format=LOG_FORMAT, datefmt='%H:%M:%S',
                        handlers=handlers, force=True)
    logging.debug("Logging initialized at level %s", logging.getLevelName(level))


def duty_value(text: str) -> int:
    try:
        value = int(text)
    except ValueError:
        raise argparse.ArgumentTypeError(f"duty must be an integer, got {text!r}")
    if not DUTY_MIN <= value <= DUTY_MAX:
        raise argparse.ArgumentTypeError(f"duty must be between {DUTY_MIN} and {DUTY_MAX}")
    return value


def curve_point(text: str):
    try:
        return parse_point(text)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="fancontrol",
        description="A minimal cross-platform app to control fan speed.",
    )
    parser.add_argument("-v", "--verbose", action="count", default=0,
                        help="Increase log verbosity (-v info, -vv debug, -vvv trace)")
    parser.add_argument("--config", default=None,
                        help="Path to YAML configuration file.")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    sub = parser.add_subparsers(dest="command", metavar="COMMAND")
    sub.required = True

    sub.add_parser("list", help="List all detected fans")

    get = sub.add_parser("get", help="Get the current speed of a fan")
    get.add_argument("fan_id", help="Fan ID (use 'list' to see available fans)")

    set_ = sub.add_parser("set", help="Set the duty of a fan (0-255)")
    set_.add_argument("fan_id", help="Fan ID (use 'list' to see available fans)")
    set_.add_argument("duty", type=duty_value, help="0 = automatic/off, 255 = full speed")

    monitor = sub.add_parser("monitor", help="Monitor all fans in real time")
    monitor.add_argument("-i", "--interval", type=float, default=None,
                         help="Refresh interval in seconds (default: poll_interval from config)")

    table = sub.add_parser("table", help="Display firmware fan curve table data")
    table.add_argument("--fan-id", type=int, default=None, help="Show curves for one fan only")

    set_curve = sub.add_parser("set-curve", help="Write a fan curve (TEMP:RPM points)")
    set_curve.add_argument("--fan-id", type=int, required=True)
    set_curve.add_argument("--sensor-id", type=int, required=True)
    set_curve.add_argument("points", nargs="+", type=curve_point, metavar="TEMP:RPM")

    backup = sub.add_parser("backup-curves", help="Save all fan curves to a JSON file")
    backup.add_argument("-o", "--output", default=None, help="Output file")

    restore = sub.add_parser("restore-curves", help="Restore fan curves from a JSON file")
    restore.add_argument("-i", "--input", default=None, help="Backup file")

    sub.add_parser("gui", help="Open the graphical fan control interface")
    return parser


def find_config_file(specified_path: str = None) -> Optional[str]:
    """
    Find the configuration file.
    Searches in order: specified path, working directory, /etc, user's config.
    """
    if specified_path:
        return specified_path

    search_paths = [
        Path.cwd() / "fancontrol.yaml",
        Path("/etc/fancontrol/config.yaml"),
        Path.home() / ".config/fancontrol/config.yaml",
    ]
    for path in search_paths:
        if path.exists():
            return str(path)
    return None


def print_fans(fans: List[Fan], out=None) -> None:
    out = out or sys.stdout
    if not fans:
        print("No fans detected.", file=out)
        return
    print(f"{'ID':<25} {'LABEL':<24} {'RPM':>8} {'DUTY':>6} STATUS", file=out)
    print("-" * 75, file=out)
    for fan in fans:
        duty = str(fan.duty) if fan.duty is not None else "-"
        status = "controllable" if fan.controllable else "read-only"
        if fan.full_speed_active:
            status += " (full speed)"
        print(f"{fan.id:<25} {fan.label:<24} {fan.speed_rpm:>8} {duty:>6} {status}", file=out)


def print_curves(curves: List[FanCurve], out=None) -> None:
    out = out or sys.stdout
    if not curves:
        print("No fan curve data available.", file=out)
        return
    for curve in curves:
        state = "active" if curve.active else "inactive"
        print(f"Fan {curve.fan_id} / sensor {curve.sensor_id} [{state}] "
              f"speed {curve.min_speed}-{curve.max_speed} RPM, "
              f"temp {curve.min_temp}-{curve.max_temp}°C", file=out)
        if not curve.points:
            print("    (empty table)", file=out)
        for point in curve.points:
            print(f"    {point.temperature:>4}°C -> {point.rpm:>5} RPM", file=out)


def cmd_list(controller: FanController, args) -> int:
    print_fans(controller.discover())
    return 0


def cmd_get(controller: FanController, args) -> int:
    print(f"{controller.read_speed(args.fan_id)} RPM")
    return 0


def cmd_set(controller: FanController, args) -> int:
    controller.set_duty(args.fan_id, args.duty)
    print(f"Set {args.fan_id} duty to {args.duty}")
    return 0


def cmd_table(controller: FanController, args) -> int:
    curves = controller.read_curves()
    if args.fan_id is not None:
        curves = [c for c in curves if c.fan_id == args.fan_id]
    print_curves(curves)
    return 0


def cmd_set_curve(controller: FanController, args) -> int:
    # learn the fan's real RPM range before validating against it
    fans = controller.discover()
    reference = next((c for f in fans for c in f.curves
                      if c.key == (args.fan_id, args.sensor_id)), None)
    curve = build_curve_from_points(args.fan_id, args.sensor_id, args.points, reference)

    validate_curve(curve, max_rpm=curve_max_rpm(curve, fans))
    controller.write_curve(args.fan_id, args.sensor_id, curve)
    print(f"Wrote curve for fan {args.fan_id} sensor {args.sensor_id}: {curve.describe()}")
    return 0


def cmd_backup(controller: FanController, args, config: ConfigManager) -> int:
    path = args.output or config.backup_path
    curves = backup_curves(controller, path)
    print(f"Saved {len(curves)} curves to {path}")
    return 0


def cmd_restore(controller: FanController, args, config: ConfigManager) -> int:
    path = args.input or config.backup_path
    curves = restore_curves(controller, path)
    print(f"Restored {len(curves)} curves from {path}")
    return 0


def render_snapshot(snapshot: ControllerSnapshot, interval: float, out=None) -> None:
    out = out or sys.stdout
    out.write("\x1b[2J\x1b[H")
    print(f"Fan Monitor (every {interval:g}s) - Ctrl+C to stop\n", file=out)
    print_fans(list(snapshot.fans.values()), out=out)
    if snapshot.reapplied:
        print(f"\nRe-applied held duty: {', '.join(snapshot.reapplied)}", file=out)
    out.flush()


def cmd_monitor(controller: FanController, args, config: ConfigManager) -> int:
    interval = args.interval if args.interval is not None else config.poll_interval
    commands, snapshots = CommandChannel(), SnapshotChannel()
    worker = FanWorker(controller, commands, snapshots, config=config, interval=interval)
    worker.start()
    print("Monitoring fans (Ctrl+C to stop)...")
    try:
        while True:
            event = snapshots.receive(timeout=interval * 2)
            if isinstance(event, ControllerSnapshot):
                render_snapshot(event, interval)
            elif isinstance(event, WorkerError):
                print(f"warning: {event.message}", file=sys.stderr)
                if isinstance(event.error, DeviceUnavailable):
                    return 1
            if worker.state == STOPPED:
                return 1
    except KeyboardInterrupt:
        print("\nStopping.")
        return 0
    finally:
        worker.stop(timeout=interval * 2)


def main(argv: Optional[List[str]] = None) -> int:
    """Main application entry point."""
    args = build_parser().parse_args(argv)

    try:
        config = ConfigManager(find_config_file(args.config))
    except (FileNotFoundError, ValueError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1

    setup_logging(args.verbose, config.log_file)
    if config.config_path:
        logging.info("Using configuration from: %s", config.config_path)

    if args.command == "gui":
        from .gui import run_gui
        return run_gui(config)

    try:
        controller = create_controller(config)
        if args.command == "list":
            return cmd_list(controller, args)
        if args.command == "get":
            return cmd_get(controller, args)
        if args.command == "set":
            return cmd_set(controller, args)
        if args.command == "monitor":
            return cmd_monitor(controller, args, config)
        if args.command == "table":
            return cmd_table(controller, args)
        if args.command == "set-curve":
            return cmd_set_curve(controller, args)
        if args.command == "backup-curves":
            return cmd_backup(controller, args, config)
        if args.command == "restore-curves":
            return cmd_restore(controller, args, config)
    except (FanControlError, ValueError, OSError) as exc:
        logging.debug("%s failed", args.command, exc_info=True)
        print(f"error: {exc}", file=sys.stderr)
        return 1
    return 2


if __name__ == "__main__":
    sys.exit(main())
