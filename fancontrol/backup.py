#!/usr/bin/env python3
"""
JSON backup and restore of fan curves.

The file is a list of curve objects, each holding fan id, sensor id, the
firmware limits and the ordered temperature/RPM points. Restores validate
every curve before the first write.
"""

import json
import logging
from typing import Any, Dict, List

from .backends.base import FanController
from .fan import FanCurve, FanCurvePoint, curve_max_rpm
from .validator import validate_curve


def curve_to_dict(curve: FanCurve) -> Dict[str, Any]:
    return {
        "fan_id": curve.fan_id,
        "sensor_id": curve.sensor_id,
        "min_speed": curve.min_speed,
        "max_speed": curve.max_speed,
        "min_temp": curve.min_temp,
        "max_temp": curve.max_temp,
        "active": curve.active,
        "points": [{"temperature": p.temperature, "rpm": p.rpm} for p in curve.points],
    }


def curve_from_dict(data: Dict[str, Any]) -> FanCurve:
    """
    Build a curve from one backup entry.

    Raises:
        ValueError: required fields are missing or not integers
    """
    try:
        points = tuple(
            FanCurvePoint(temperature=int(p["temperature"]), rpm=int(p["rpm"]))
            for p in data["points"]
        )
        return FanCurve(
            fan_id=int(data["fan_id"]),
            sensor_id=int(data["sensor_id"]),
            points=points,
            min_speed=int(data.get("min_speed", 0)),
            max_speed=int(data.get("max_speed", 0)),
            min_temp=int(data.get("min_temp", 0)),
            max_temp=int(data.get("max_temp", 0)),
            active=bool(data.get("active", True)),
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise ValueError(f"malformed curve entry {data!r}: {exc}")


def dump_curves(curves: List[FanCurve], path: str) -> None:
    with open(path, "w") as f:
        json.dump([curve_to_dict(c) for c in curves], f, indent=2)
        f.write("\n")
    logging.info("Saved %d curves to %s", len(curves), path)


def load_curves(path: str) -> List[FanCurve]:
    """
    Read curves from a backup file.

    Raises:
        OSError: the file cannot be read
        ValueError: the file is not a valid backup
    """
    with open(path) as f:
        try:
            data = json.load(f)
        except json.JSONDecodeError as exc:
            raise ValueError(f"{path} is not valid JSON: {exc}")
    if not isinstance(data, list):
        raise ValueError(f"{path}: expected a list of curves")
    return [curve_from_dict(entry) for entry in data]


def backup_curves(controller: FanController, path: str) -> List[FanCurve]:
    curves = controller.read_curves()
    dump_curves(curves, path)
    return curves


def restore_curves(controller: FanController, path: str) -> List[FanCurve]:
    """
    Write every curve from a backup file.

    The fans are discovered first so every curve is checked against the
    real maximum RPM, not only the one stored in the file. All curves are
    validated before the first write; one bad curve means nothing is written.
    A write failure stops the restore and propagates.
    """
    curves = load_curves(path)
    fans = controller.discover()
    for curve in curves:
        validate_curve(curve, max_rpm=curve_max_rpm(curve, fans))

    for curve in curves:
        controller.write_curve(curve.fan_id, curve.sensor_id, curve)
    logging.info("Restored %d curves from %s", len(curves), path)
    return curves
