#!/usr/bin/env python3
"""
Platform-agnostic fan controller interface.

Each backend implements this capability set so the CLI, the worker and the
GUI can drive any of them the same way.
"""

from abc import ABC, abstractmethod
from typing import List, Optional

from ..errors import NotSupported
from ..fan import ControllerSnapshot, Fan, FanCurve

DUTY_MIN = 0
DUTY_MAX = 255


def check_duty(value: int) -> int:
    """Reject duty values outside 0-255 before anything touches hardware."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"duty must be an integer, got {value!r}")
    if not DUTY_MIN <= value <= DUTY_MAX:
        raise ValueError(f"duty must be between {DUTY_MIN} and {DUTY_MAX}, got {value}")
    return value


class FanController(ABC):
    """Base controller; mutators validate their input before doing any I/O."""

    name = "base"

    @abstractmethod
    def discover(self) -> List[Fan]:
        """Discover all fans on the system."""

    @abstractmethod
    def read_speed(self, fan_id: str) -> int:
        """Read current speed (RPM) of a fan by its id."""

    @abstractmethod
    def set_duty(self, fan_id: str, value: int) -> None:
        """Set duty (0-255) for a fan by its id."""

    def read_temperature(self, sensor_id: int) -> int:
        raise NotSupported("reading sensor temperatures")

    def read_curves(self) -> List[FanCurve]:
        raise NotSupported("reading fan curves")

    def read_curve(self, fan_id: int, sensor_id: int) -> Optional[FanCurve]:
        """Return the curve for one fan/sensor pair, or None if absent."""
        for curve in self.read_curves():
            if curve.fan_id == fan_id and curve.sensor_id == sensor_id:
                return curve
        return None

    def write_curve(self, fan_id: int, sensor_id: int, curve: FanCurve) -> None:
        raise NotSupported("writing fan curves")

    def supports_full_speed(self) -> bool:
        return False

    def set_full_speed(self, enabled: bool) -> None:
        raise NotSupported("full speed mode")

    def snapshot(self) -> ControllerSnapshot:
        return ControllerSnapshot.from_fans(self.discover())
