#!/usr/bin/env python3
"""
Fan and fan curve value types shared by every backend and frontend.
"""

import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple


@dataclass(frozen=True)
class FanCurvePoint:
    """A single temperature → RPM point in a fan curve."""
    temperature: int  # °C
    rpm: int


@dataclass(frozen=True)
class FanCurve:
    """
    A fan curve binding one fan to one sensor.

    Points are kept in the given order; ascending temperature is what the
    embedded controller expects. The EC takes the highest speed demanded
    across all sensor curves of a fan.
    """
    fan_id: int
    sensor_id: int
    points: Tuple[FanCurvePoint, ...]
    min_speed: int = 0
    max_speed: int = 0
    min_temp: int = 0
    max_temp: int = 0
    active: bool = True

    @property
    def key(self) -> Tuple[int, int]:
        return (self.fan_id, self.sensor_id)

    def describe(self) -> str:
        return ", ".join(f"{p.temperature}:{p.rpm}" for p in self.points)


@dataclass
class Fan:
    """A single fan as seen by the last discovery."""
    id: str
    label: str
    speed_rpm: int = 0
    duty: Optional[int] = None  # 0-255, None when the backend can't tell
    controllable: bool = False
    min_rpm: Optional[int] = None
    max_rpm: Optional[int] = None
    curves: List[FanCurve] = field(default_factory=list)
    full_speed_active: bool = False

    def __str__(self) -> str:
        status = "controllable" if self.controllable else "read-only"
        return f"{self.label}: {self.speed_rpm} RPM [{status}]"


@dataclass
class ControllerSnapshot:
    """Point-in-time view of every fan, rebuilt from scratch each poll."""
    fans: Dict[str, Fan]
    full_speed: bool = False
    taken_at: float = field(default_factory=time.monotonic)
    reapplied: Tuple[str, ...] = ()

    @classmethod
    def from_fans(cls, fans: Sequence[Fan]) -> "ControllerSnapshot":
        return cls(
            fans={fan.id: fan for fan in fans},
            full_speed=any(fan.full_speed_active for fan in fans),
        )

    def curves(self) -> List[FanCurve]:
        return [curve for fan in self.fans.values() for curve in fan.curves]


def parse_point(token: str) -> FanCurvePoint:
    """
    Parse a 'temp:rpm' token such as '55:1600'.

    Raises:
        ValueError: the token is not two non-negative integers joined by ':'
    """
    temp_str, sep, rpm_str = token.partition(":")
    if not sep:
        raise ValueError(f"expected TEMP:RPM, got {token!r}")
    try:
        temperature = int(temp_str.strip())
        rpm = int(rpm_str.strip())
    except ValueError:
        raise ValueError(f"expected integers in TEMP:RPM, got {token!r}")
    if temperature < 0 or rpm < 0:
        raise ValueError(f"negative value in {token!r}")
    return FanCurvePoint(temperature=temperature, rpm=rpm)


def build_curve_from_points(fan_id: int, sensor_id: int,
                            points: Sequence[FanCurvePoint],
                            reference: Optional[FanCurve] = None) -> FanCurve:
    """
    Build a FanCurve from user supplied points.

    Metadata (speed and temperature limits) comes from the reference curve
    read from the firmware when there is one, otherwise from the points.
    """
    speeds = [p.rpm for p in points]
    temps = [p.temperature for p in points]

    if reference is not None:
        limits = (reference.min_speed, reference.max_speed,
                  reference.min_temp, reference.max_temp)
    else:
        limits = (min(speeds, default=0), max(speeds, default=0),
                  min(temps, default=0), max(temps, default=0))

    return FanCurve(
        fan_id=fan_id,
        sensor_id=sensor_id,
        points=tuple(points),
        min_speed=limits[0],
        max_speed=limits[1],
        min_temp=limits[2],
        max_temp=limits[3],
        active=True,
    )


def curve_max_rpm(curve: FanCurve, fans: Sequence[Fan]) -> int:
    """
    Maximum RPM a curve must be checked against.

    The larger of the discovered fan's maximum and the curve's own
    max_speed.
    """
    known = [fan.max_rpm for fan in fans if fan.id == f"fan{curve.fan_id}" and fan.max_rpm]
    return max(known + [curve.max_speed])


class HeldOverrides:
    """
    Duty values the user asked for, per fan id.

    Owned by the worker thread only. A hold stays until it is released
    (duty 0) or replaced by a newer request; it is never written to disk.
    """

    def __init__(self):
        self._held: Dict[str, int] = {}

    def hold(self, fan_id: str, duty: int) -> None:
        self._held[fan_id] = duty

    def release(self, fan_id: str) -> None:
        self._held.pop(fan_id, None)

    def release_where(self, duty: int) -> List[str]:
        """Drop every hold with the given duty and return the fan ids."""
        released = [fan_id for fan_id, value in self._held.items() if value == duty]
        for fan_id in released:
            del self._held[fan_id]
        return released

    def get(self, fan_id: str) -> Optional[int]:
        return self._held.get(fan_id)

    def items(self) -> List[Tuple[str, int]]:
        return sorted(self._held.items())

    def __contains__(self, fan_id: str) -> bool:
        return fan_id in self._held

    def __len__(self) -> int:
        return len(self._held)

    def __repr__(self) -> str:
        return f"HeldOverrides({self._held!r})"
