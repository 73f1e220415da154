#!/usr/bin/env python3
"""
Read-only Windows backend using the standard Win32_Fan WMI class.

Win32_Fan has no method to change speed, so every mutator raises
NotControllable. Many desktop BIOSes publish no Win32_Fan objects at all;
that yields an empty fan list.
"""

import logging
from typing import List, Optional

from ..errors import FanNotFound, NotControllable
from ..fan import Fan
from .base import FanController, check_duty
from .powershell import PowerShellRunner

QUERY_SCRIPT = (
    "Get-CimInstance -Namespace root/cimv2 -ClassName Win32_Fan | ForEach-Object { "
    "$ac = if ($_.ActiveCooling) { '1' } else { '0' }; "
    "Write-Output (\"WIN32FAN|{0}|{1}|{2}|{3}\" -f $_.DeviceID, $ac, $_.DesiredSpeed, $_.Name) }"
)


def parse_win32_fan_line(line: str) -> Optional[Fan]:
    """Parse 'WIN32FAN|device_id|active|speed|name'. Name may contain '|'."""
    parts = line.split("|", 4)
    if len(parts) < 5 or parts[0] != "WIN32FAN" or not parts[1].strip():
        return None
    try:
        speed = int(parts[3].strip() or 0)
    except ValueError:
        speed = 0
    device_id = parts[1].strip()
    return Fan(
        id=device_id,
        label=parts[4].strip() or device_id,
        speed_rpm=speed,
        duty=None,
        controllable=False,
    )


class GenericFanController(FanController):
    """Monitoring only; Win32_Fan exposes no write interface."""

    name = "win32"

    def __init__(self, runner: PowerShellRunner = None):
        self.runner = runner or PowerShellRunner()

    def discover(self) -> List[Fan]:
        fans = []
        for line in self.runner.run(QUERY_SCRIPT).splitlines():
            fan = parse_win32_fan_line(line.strip())
            if fan is None:
                if line.strip():
                    logging.warning("Skipping malformed Win32_Fan record: %r", line)
                continue
            fans.append(fan)
        return fans

    def read_speed(self, fan_id: str) -> int:
        for fan in self.discover():
            if fan.id == fan_id:
                return fan.speed_rpm
        raise FanNotFound(fan_id)

    def set_duty(self, fan_id: str, value: int) -> None:
        check_duty(value)
        raise NotControllable(fan_id)

    def write_curve(self, fan_id, sensor_id, curve) -> None:
        raise NotControllable(f"fan{fan_id}")

    def set_full_speed(self, enabled: bool) -> None:
        raise NotControllable("all fans")
