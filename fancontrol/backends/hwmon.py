#!/usr/bin/env python3
"""
Linux fan controller backed by sysfs/hwmon.

Discovers fans by scanning /sys/class/hwmon/hwmon*/fan*_input and drives
them through the matching pwm* / pwm*_enable files.
"""

import glob
import logging
import os
import re
from typing import List, Optional, Tuple

from ..errors import FanControlError, FanNotFound, NotControllable, PermissionDenied
from ..fan import Fan
from .base import FanController, check_duty

PWM_ENABLE_MANUAL = "1"
PWM_ENABLE_AUTO = "2"

_FAN_ID_RE = re.compile(r"^(hwmon\d+)/fan(\d+)$")
_FAN_INPUT_RE = re.compile(r"^fan(\d+)_input$")


def _natural_key(path: str) -> Tuple[str, int]:
    match = re.search(r"(\d+)$", path)
    return (path[:match.start()] if match else path, int(match.group(1)) if match else -1)


class HwmonFanController(FanController):
    """
    Direct-filesystem backend.

    A fan id has the form 'hwmon{N}/fan{M}'.
    """

    name = "hwmon"

    def __init__(self, hwmon_base: str = "/sys/class/hwmon"):
        self.hwmon_base = hwmon_base

    def discover(self) -> List[Fan]:
        fans: List[Fan] = []
        if not os.path.isdir(self.hwmon_base):
            logging.debug("hwmon base %s does not exist", self.hwmon_base)
            return fans

        hwmon_dirs = sorted(glob.glob(os.path.join(self.hwmon_base, "hwmon*")), key=_natural_key)
        for hwmon_path in hwmon_dirs:
            if not os.path.isdir(hwmon_path):
                continue
            fans.extend(self._discover_in(hwmon_path))
        return fans

    def _discover_in(self, hwmon_path: str) -> List[Fan]:
        hwmon_name = os.path.basename(hwmon_path)
        try:
            entries = os.listdir(hwmon_path)
        except PermissionError:
            raise PermissionDenied(hwmon_path)

        indices = sorted(int(m.group(1)) for m in map(_FAN_INPUT_RE.match, entries) if m)
        fans = []
        for index in indices:
            try:
                speed = self._read_int(os.path.join(hwmon_path, f"fan{index}_input"))
            except FanControlError as exc:
                logging.warning("Skipping unreadable speed for %s/fan%d: %s", hwmon_name, index, exc)
                speed = 0
            controllable, duty = self._pwm_state(hwmon_path, index)
            fans.append(Fan(
                id=f"{hwmon_name}/fan{index}",
                label=self._read_label(hwmon_path, index),
                speed_rpm=speed,
                duty=duty,
                controllable=controllable,
            ))
        logging.debug("%s: %d fans", hwmon_name, len(fans))
        return fans

    def read_speed(self, fan_id: str) -> int:
        hwmon_path, index = self._resolve(fan_id)
        return self._read_int(os.path.join(hwmon_path, f"fan{index}_input"))

    def set_duty(self, fan_id: str, value: int) -> None:
        """Write a duty; 0 hands the fan back to automatic control where the driver allows it."""
        check_duty(value)
        hwmon_path, index = self._resolve(fan_id)
        pwm_path = os.path.join(hwmon_path, f"pwm{index}")
        if not os.path.exists(pwm_path):
            raise NotControllable(fan_id)

        enable_path = pwm_path + "_enable"
        if value == 0 and os.path.exists(enable_path):
            self.restore_automatic(fan_id)
            return

        # pwm writes are ignored until the channel is in manual mode
        if os.path.exists(enable_path):
            self._write(enable_path, PWM_ENABLE_MANUAL)
        self._write(pwm_path, str(value))
        logging.info("%s pwm -> %d", fan_id, value)

    def restore_automatic(self, fan_id: str) -> None:
        """Hand a fan back to the firmware by resetting pwm*_enable."""
        hwmon_path, index = self._resolve(fan_id)
        enable_path = os.path.join(hwmon_path, f"pwm{index}_enable")
        if not os.path.exists(enable_path):
            raise NotControllable(fan_id)
        self._write(enable_path, PWM_ENABLE_AUTO)
        logging.info("%s returned to automatic control", fan_id)

    def _resolve(self, fan_id: str) -> Tuple[str, int]:
        match = _FAN_ID_RE.match(fan_id)
        if not match:
            raise FanNotFound(fan_id)
        hwmon_path = os.path.join(self.hwmon_base, match.group(1))
        index = int(match.group(2))
        if not os.path.exists(os.path.join(hwmon_path, f"fan{index}_input")):
            raise FanNotFound(fan_id)
        return hwmon_path, index

    def _pwm_state(self, hwmon_path: str, index: int) -> Tuple[bool, Optional[int]]:
        pwm_path = os.path.join(hwmon_path, f"pwm{index}")
        if not os.path.exists(pwm_path):
            return False, None
        try:
            duty = self._read_int(pwm_path)
        except FanControlError:
            duty = None
        return os.access(pwm_path, os.W_OK), duty

    @staticmethod
    def _read_label(hwmon_path: str, index: int) -> str:
        try:
            with open(os.path.join(hwmon_path, f"fan{index}_label")) as f:
                label = f.read().strip()
        except OSError:
            label = ""
        return label or f"Fan {index}"

    @staticmethod
    def _read_int(path: str) -> int:
        try:
            with open(path) as f:
                raw = f.read().strip()
        except PermissionError:
            raise PermissionDenied(path)
        except OSError as exc:
            raise FanControlError(f"cannot read {path}: {exc}")
        try:
            return int(raw)
        except ValueError:
            raise FanControlError(f"failed to parse {raw!r} from {path}")

    @staticmethod
    def _write(path: str, value: str) -> None:
        try:
            with open(path, "w") as f:
                f.write(value)
        except PermissionError:
            raise PermissionDenied(path)
        except OSError as exc:
            raise FanControlError(f"cannot write {path}: {exc}")
