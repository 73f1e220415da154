#!/usr/bin/env python3
"""
Command pattern implementation for fan control actions.

Frontends build commands and send them to the worker; only the worker
executes them, so every hardware write happens on one thread.
"""

import logging
from abc import ABC, abstractmethod

from .backends.base import FanController, check_duty
from .fan import FanCurve, HeldOverrides
from .validator import validate_curve


class Command(ABC):
    """Base command interface for the Command pattern."""

    @abstractmethod
    def execute(self, controller: FanController, held: HeldOverrides) -> None:
        """Apply the command to the controller and update held overrides."""
        pass

    def describe(self) -> str:
        return type(self).__name__


class RefreshCommand(Command):
    """Ask for an immediate poll cycle without changing anything."""

    def execute(self, controller: FanController, held: HeldOverrides) -> None:
        pass

    def describe(self) -> str:
        return "refresh"


class SetDutyCommand(Command):
    """Command to set a fan's duty and keep it held."""

    def __init__(self, fan_id: str, duty: int):
        """
        Initialize the command.

        Args:
            fan_id: Fan id as reported by discovery
            duty: 0 releases the fan to the firmware, 1-255 is held

        Raises:
            ValueError: duty outside 0-255
        """
        self.fan_id = fan_id
        self.duty = check_duty(duty)

    def execute(self, controller: FanController, held: HeldOverrides) -> None:
        controller.set_duty(self.fan_id, self.duty)
        if self.duty == 0:
            held.release(self.fan_id)
            if controller.supports_full_speed():
                # full speed is one global mode; a 255 hold elsewhere would turn it back on
                released = held.release_where(255)
                if released:
                    logging.info("released full speed holds for %s", ", ".join(released))
        else:
            held.hold(self.fan_id, self.duty)
        logging.info("held overrides: %s", held)

    def describe(self) -> str:
        return f"set {self.fan_id} duty={self.duty}"


class SetFullSpeedCommand(Command):
    """Command to toggle the global full speed mode."""

    def __init__(self, enabled: bool):
        self.enabled = bool(enabled)

    def execute(self, controller: FanController, held: HeldOverrides) -> None:
        controller.set_full_speed(self.enabled)
        if not self.enabled:
            # duty 255 holds mean "full speed"; keep them from turning it back on
            released = held.release_where(255)
            if released:
                logging.info("released full speed holds for %s", ", ".join(released))

    def describe(self) -> str:
        return f"full speed {'on' if self.enabled else 'off'}"


class SetCurveCommand(Command):
    """Command to write a fan curve."""

    def __init__(self, curve: FanCurve):
        """
        Initialize the command.

        Args:
            curve: Curve to write; checked again by the backend against the
                fan's learned maximum RPM

        Raises:
            InvalidCurve: the curve fails validation
        """
        validate_curve(curve)
        self.curve = curve

    def execute(self, controller: FanController, held: HeldOverrides) -> None:
        controller.write_curve(self.curve.fan_id, self.curve.sensor_id, self.curve)

    def describe(self) -> str:
        return f"set curve fan={self.curve.fan_id} sensor={self.curve.sensor_id}"
