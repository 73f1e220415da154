#!/usr/bin/env python3
"""
Safety validator for fan curves.

Every curve write goes through validate_curve() first, including restores
from a backup file. A bad curve can cook the machine, so any violation
rejects the whole curve.
"""

import math
from typing import Optional

from .errors import InvalidCurve
from .fan import FanCurve

MAX_PLAUSIBLE_TEMP = 150  # °C
MIN_POINTS = 2


def min_safe_rpm(max_rpm: int) -> int:
    """Lowest RPM allowed at the highest temperature point."""
    return math.ceil(max_rpm * 0.5)


def validate_curve(curve: FanCurve, max_rpm: Optional[int] = None) -> None:
    """
    Validate a fan curve before it is written.

    Checks, in order of the points:
    - at least two points
    - every temperature within 0-150 °C
    - temperatures strictly increasing
    - RPM never decreasing as temperature rises
    - the last point reaches at least half of max_rpm

    Args:
        curve: Curve to check
        max_rpm: Fan maximum; defaults to curve.max_speed. 0/None skips the
            half-speed check.

    Raises:
        InvalidCurve: with the offending point index where there is one
    """
    points = curve.points
    if len(points) < MIN_POINTS:
        raise InvalidCurve(f"curve must have at least {MIN_POINTS} points, got {len(points)}")

    previous = None
    for index, point in enumerate(points):
        if point.temperature < 0 or point.temperature > MAX_PLAUSIBLE_TEMP:
            raise InvalidCurve(
                f"point {index} has unreasonable temperature {point.temperature}°C "
                f"(allowed 0-{MAX_PLAUSIBLE_TEMP})",
                point_index=index,
            )
        if point.rpm < 0:
            raise InvalidCurve(f"point {index} has negative RPM {point.rpm}", point_index=index)

        if previous is not None:
            if point.temperature <= previous.temperature:
                raise InvalidCurve(
                    "temperatures must be strictly increasing: "
                    f"{point.temperature}°C at point {index} is not greater than "
                    f"{previous.temperature}°C at point {index - 1}",
                    point_index=index,
                )
            if point.rpm < previous.rpm:
                raise InvalidCurve(
                    "fan speed must not decrease as temperature rises: "
                    f"{point.rpm} RPM at {point.temperature}°C is less than "
                    f"{previous.rpm} RPM at {previous.temperature}°C",
                    point_index=index,
                )
        previous = point

    if max_rpm is None:
        max_rpm = curve.max_speed
    if max_rpm:
        floor = min_safe_rpm(max_rpm)
        last = points[-1]
        if last.rpm < floor:
            raise InvalidCurve(
                f"highest temperature point ({last.temperature}°C) has only {last.rpm} RPM; "
                f"must be at least {floor} RPM (50% of max {max_rpm})",
                point_index=len(points) - 1,
            )
