#!/usr/bin/env python3
"""
Fan controller backends and platform detection.

Exactly one backend is chosen per process by create_controller().
"""

import logging
import sys

from ..config import ConfigManager
from ..errors import FanControlError, NotSupported
from .base import FanController, check_duty
from .curve_codec import get_codec
from .generic import GenericFanController
from .hwmon import HwmonFanController
from .lenovo import LenovoFanController
from .powershell import PowerShellRunner

MANUFACTURER_SCRIPT = "(Get-CimInstance -ClassName Win32_ComputerSystem).Manufacturer"


def is_lenovo(runner: PowerShellRunner) -> bool:
    """Check the system manufacturer reported by WMI."""
    try:
        manufacturer = runner.run(MANUFACTURER_SCRIPT)
    except FanControlError as exc:
        logging.warning("Could not read system manufacturer: %s", exc)
        return False
    logging.debug("System manufacturer: %s", manufacturer)
    return "lenovo" in manufacturer.lower()


def create_controller(config: ConfigManager = None, platform: str = None) -> FanController:
    """Create the controller for this platform."""
    config = config or ConfigManager()
    platform = platform or sys.platform

    if platform.startswith("linux"):
        logging.info("Using hwmon backend at %s", config.hwmon_base)
        return HwmonFanController(config.hwmon_base)

    if platform.startswith("win"):
        runner = PowerShellRunner(config.powershell, timeout=config.subprocess_timeout)
        if is_lenovo(runner):
            logging.info("Lenovo system detected, using firmware backend")
            return LenovoFanController(
                runner,
                default_range=(config.default_min_rpm, config.default_max_rpm),
                codec=get_codec(config.firmware_revision),
                table_length=config.curve_table_length,
            )
        logging.info("Using read-only Win32_Fan backend")
        return GenericFanController(runner)

    raise NotSupported(f"fan control on {platform}")


__all__ = [
    "FanController", "check_duty", "create_controller", "is_lenovo",
    "GenericFanController", "HwmonFanController", "LenovoFanController",
    "PowerShellRunner",
]
