#!/usr/bin/env python3
"""
Lenovo Legion fan controller backed by vendor WMI classes.

Uses LENOVO_FAN_METHOD and LENOVO_FAN_TABLE_DATA in the root/WMI namespace.
Method calls go through a PowerShell subprocess (see powershell.py) which
prints one tagged record per line:

    PROTO|1
    FULLSPEED|0/1
    TABLE|fan_id|sensor_id|active|min_speed|max_speed|min_temp|max_temp|speeds_csv|temps_csv
    FAN|fan_id|sensor_id|speed|temp          one per fan (highest sensor id)

Parsing is per line: a bad record is logged and skipped, never fatal.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from ..errors import (FanNotFound, InterpreterMissing, InvalidCurve, NotSupported,
                      ParseFailure)
from ..fan import Fan, FanCurve, FanCurvePoint
from ..validator import validate_curve
from .base import FanController, check_duty
from .curve_codec import CurveCodec, get_codec
from .powershell import PowerShellRunner

PROTOCOL_VERSION = "1"

DEFAULT_MIN_RPM = 1600
DEFAULT_MAX_RPM = 4800

FAN_METHOD = "$fm = Get-WmiObject -Namespace root/WMI -Class LENOVO_FAN_METHOD; "
FAN_TABLES = "$tables = Get-WmiObject -Namespace root/WMI -Class LENOVO_FAN_TABLE_DATA; "

_TABLE_LOOP = (
    "foreach ($t in $tables) { "
    "$active = if ($t.Active) { '1' } else { '0' }; "
    "$speeds = ($t.FanTable_Data -join ','); "
    "$temps = ($t.SensorTable_Data -join ','); "
    "$minSpd = ($t.FanTable_Data | Measure-Object -Minimum).Minimum; "
    "$maxSpd = ($t.FanTable_Data | Measure-Object -Maximum).Maximum; "
    "$minTmp = ($t.SensorTable_Data | Measure-Object -Minimum).Minimum; "
    "$maxTmp = ($t.SensorTable_Data | Measure-Object -Maximum).Maximum; "
    "Write-Output \"TABLE|$($t.Fan_Id)|$($t.Sensor_ID)|$active|$minSpd|$maxSpd|$minTmp|$maxTmp|$speeds|$temps\" "
    "}; "
)

DISCOVER_SCRIPT = (
    FAN_METHOD + FAN_TABLES
    + f"Write-Output 'PROTO|{PROTOCOL_VERSION}'; "
    "$fs = ($fm.Fan_Get_FullSpeed()).Status; "
    "$fsVal = if ($fs) { '1' } else { '0' }; "
    "Write-Output \"FULLSPEED|$fsVal\"; "
    "$best = @{}; "
    "foreach ($t in $tables) { "
    "$fid = $t.Fan_Id; "
    "if (-not $best.ContainsKey($fid) -or $t.Sensor_ID -gt $best[$fid]) { $best[$fid] = $t.Sensor_ID } "
    "}; "
    + _TABLE_LOOP
    + "foreach ($fid in ($best.Keys | Sort-Object)) { "
    "$sid = $best[$fid]; "
    "$speed = ($fm.Fan_GetCurrentFanSpeed($fid)).CurrentFanSpeed; "
    "$temp = ($fm.Fan_GetCurrentSensorTemperature($sid)).CurrentSensorTemperature; "
    "Write-Output \"FAN|$fid|$sid|$speed|$temp\" "
    "}"
)

TABLES_SCRIPT = FAN_TABLES + f"Write-Output 'PROTO|{PROTOCOL_VERSION}'; " + _TABLE_LOOP

FAN_LABELS = {0: "CPU Fan", 1: "GPU Fan"}


@dataclass
class RpmRange:
    """Per-fan RPM range learned from table data."""
    min_rpm: int
    max_rpm: int

    def widen(self, other: "RpmRange") -> None:
        self.min_rpm = min(self.min_rpm, other.min_rpm)
        self.max_rpm = max(self.max_rpm, other.max_rpm)


@dataclass(frozen=True)
class FanRecord:
    fan_id: int
    sensor_id: int
    speed_rpm: int
    temperature: int


@dataclass
class DiscoveryResult:
    """Everything one discovery script reported."""
    full_speed: bool = False
    curves: List[FanCurve] = field(default_factory=list)
    fans: List[FanRecord] = field(default_factory=list)
    ranges: Dict[int, RpmRange] = field(default_factory=dict)
    skipped: int = 0


def parse_fan_id(fan_id: str) -> int:
    """Parse 'fan0' / 'fan1' into the firmware's numeric id."""
    if not fan_id.startswith("fan") or not fan_id[3:].isdigit():
        raise FanNotFound(fan_id)
    return int(fan_id[3:])


def duty_to_rpm(min_rpm: int, max_rpm: int, duty: int) -> int:
    """Map duty (0-255) linearly onto the fan's RPM range."""
    return min_rpm + int(duty / 255.0 * (max_rpm - min_rpm))


def rpm_to_duty(min_rpm: int, max_rpm: int, rpm: int) -> int:
    """Map a measured RPM back onto an approximate duty (0-255)."""
    if rpm <= min_rpm:
        return 0
    if rpm >= max_rpm:
        return 255
    return int((rpm - min_rpm) / float(max_rpm - min_rpm) * 255.0)


def _uint(field_value: str, line: str) -> int:
    text = field_value.strip()
    if not text:
        return 0
    if not text.isdigit():
        raise ParseFailure(line, f"non-numeric field {text!r}")
    return int(text)


def _uint_list(csv: str, line: str) -> List[int]:
    return [_uint(item, line) for item in csv.split(",") if item.strip()]


def parse_table_record(line: str) -> Tuple[FanCurve, RpmRange]:
    parts = line.split("|")
    if len(parts) < 10:
        raise ParseFailure(line, "TABLE record too short")

    fan_id, sensor_id = _uint(parts[1], line), _uint(parts[2], line)
    min_speed, max_speed = _uint(parts[4], line), _uint(parts[5], line)
    speeds = _uint_list(parts[8], line)
    temps = _uint_list(parts[9], line)

    curve = FanCurve(
        fan_id=fan_id,
        sensor_id=sensor_id,
        points=tuple(FanCurvePoint(temperature=t, rpm=s) for t, s in zip(temps, speeds)),
        min_speed=min_speed,
        max_speed=max_speed,
        min_temp=_uint(parts[6], line),
        max_temp=_uint(parts[7], line),
        active=parts[3].strip() == "1",
    )
    return curve, RpmRange(min_speed, max_speed)


def parse_fan_record(line: str) -> FanRecord:
    parts = line.split("|")
    if len(parts) < 5:
        raise ParseFailure(line, "FAN record too short")
    return FanRecord(
        fan_id=_uint(parts[1], line),
        sensor_id=_uint(parts[2], line),
        speed_rpm=_uint(parts[3], line),
        temperature=_uint(parts[4], line),
    )


def parse_discovery(output: str) -> DiscoveryResult:
    """
    Parse the tagged output of a discovery or table script.

    Zero, one or many records of each tag are fine. Malformed and unknown
    lines are logged and skipped.
    """
    result = DiscoveryResult()
    for raw in output.splitlines():
        line = raw.strip()
        if not line:
            continue
        tag = line.split("|", 1)[0]
        try:
            if tag == "PROTO":
                version = line.partition("|")[2].strip()
                if version != PROTOCOL_VERSION:
                    logging.warning("Unknown record protocol version %r, parsing best-effort", version)
            elif tag == "FULLSPEED":
                result.full_speed = line.partition("|")[2].strip() == "1"
            elif tag == "TABLE":
                curve, rpm_range = parse_table_record(line)
                result.curves.append(curve)
                # widest range across all of a fan's tables
                if rpm_range.max_rpm > 0:
                    if curve.fan_id in result.ranges:
                        result.ranges[curve.fan_id].widen(rpm_range)
                    else:
                        result.ranges[curve.fan_id] = rpm_range
            elif tag == "FAN":
                result.fans.append(parse_fan_record(line))
            else:
                raise ParseFailure(line, "unknown record tag")
        except ParseFailure as exc:
            result.skipped += 1
            logging.warning("Skipping firmware record: %s", exc)
    return result


class LenovoFanController(FanController):
    """
    Lenovo Legion backend.

    Duty semantics: 0 hands the fans back to the firmware, 1-254 map onto
    the fan's RPM range, 255 switches on the global full speed mode.
    """

    name = "lenovo"

    def __init__(self, runner: PowerShellRunner = None,
                 default_range: Tuple[int, int] = (DEFAULT_MIN_RPM, DEFAULT_MAX_RPM),
                 codec: CurveCodec = None, table_length: int = 10):
        self.runner = runner or PowerShellRunner()
        self.default_range = RpmRange(*default_range)
        self.codec = codec or get_codec("v1")
        self.table_length = table_length
        self._ranges: Dict[int, RpmRange] = {}
        self._disabled_reason: Optional[str] = None

    def _run(self, script: str) -> str:
        if self._disabled_reason:
            raise NotSupported(f"Lenovo firmware control ({self._disabled_reason})")
        try:
            return self.runner.run(script)
        except InterpreterMissing as exc:
            self._disabled_reason = str(exc)
            logging.error("Disabling Lenovo backend for this session: %s", exc)
            raise

    def fan_range(self, fan_numeric_id: int) -> RpmRange:
        return self._ranges.get(fan_numeric_id, self.default_range)

    def discover(self) -> List[Fan]:
        result = parse_discovery(self._run(DISCOVER_SCRIPT))
        self._ranges = {fid: RpmRange(r.min_rpm, r.max_rpm) for fid, r in result.ranges.items()}
        logging.debug("discovery: full_speed=%s tables=%d fans=%d skipped=%d",
                      result.full_speed, len(result.curves), len(result.fans), result.skipped)

        curves_by_fan: Dict[int, List[FanCurve]] = {}
        for curve in result.curves:
            curves_by_fan.setdefault(curve.fan_id, []).append(curve)

        fans = []
        for record in result.fans:
            learned = result.ranges.get(record.fan_id)
            rpm_range = learned or self.default_range
            if result.full_speed:
                duty = 255
            else:
                duty = rpm_to_duty(rpm_range.min_rpm, rpm_range.max_rpm, record.speed_rpm)
            label = FAN_LABELS.get(record.fan_id, f"Fan {record.fan_id}")
            fans.append(Fan(
                id=f"fan{record.fan_id}",
                label=f"{label} ({record.temperature}°C)",
                speed_rpm=record.speed_rpm,
                duty=duty,
                controllable=True,
                min_rpm=learned.min_rpm if learned else None,
                max_rpm=learned.max_rpm if learned else None,
                curves=curves_by_fan.get(record.fan_id, []),
                full_speed_active=result.full_speed,
            ))
        return fans

    def read_speed(self, fan_id: str) -> int:
        numeric_id = parse_fan_id(fan_id)
        output = self._run(FAN_METHOD + f"($fm.Fan_GetCurrentFanSpeed({numeric_id})).CurrentFanSpeed")
        if not output.isdigit():
            raise ParseFailure(output, "unexpected fan speed reply")
        return int(output)

    def read_temperature(self, sensor_id: int) -> int:
        sensor_id = int(sensor_id)
        output = self._run(
            FAN_METHOD + f"($fm.Fan_GetCurrentSensorTemperature({sensor_id})).CurrentSensorTemperature")
        if not output.isdigit():
            raise ParseFailure(output, "unexpected sensor temperature reply")
        return int(output)

    def set_duty(self, fan_id: str, value: int) -> None:
        check_duty(value)
        numeric_id = parse_fan_id(fan_id)

        if value == 255:
            logging.info("set_duty(%s, 255) -> Fan_Set_FullSpeed(1)", fan_id)
            self.set_full_speed(True)
        elif value == 0:
            logging.info("set_duty(%s, 0) -> Fan_Set_FullSpeed(0) [auto]", fan_id)
            self.set_full_speed(False)
        else:
            rpm_range = self.fan_range(numeric_id)
            target_rpm = duty_to_rpm(rpm_range.min_rpm, rpm_range.max_rpm, value)
            logging.info("set_duty(%s, %d) -> Fan_SetCurrentFanSpeed(%d, %d)",
                         fan_id, value, numeric_id, target_rpm)
            self._run(FAN_METHOD + f"$fm.Fan_SetCurrentFanSpeed({numeric_id}, {target_rpm})")

    def supports_full_speed(self) -> bool:
        return True

    def set_full_speed(self, enabled: bool) -> None:
        flag = 1 if enabled else 0
        self._run(FAN_METHOD + f"$fm.Fan_Set_FullSpeed({flag})")

    def read_curves(self) -> List[FanCurve]:
        result = parse_discovery(self._run(TABLES_SCRIPT))
        return result.curves

    def write_curve(self, fan_id: int, sensor_id: int, curve: FanCurve) -> None:
        fan_id, sensor_id = int(fan_id), int(sensor_id)
        if (curve.fan_id, curve.sensor_id) != (fan_id, sensor_id):
            raise InvalidCurve(
                f"curve belongs to fan {curve.fan_id} sensor {curve.sensor_id}, "
                f"not fan {fan_id} sensor {sensor_id}")

        learned = self._ranges[fan_id].max_rpm if fan_id in self._ranges else 0
        max_rpm = max(learned, curve.max_speed) or self.default_range.max_rpm
        validate_curve(curve, max_rpm=max_rpm)

        try:
            buffer = self.codec.encode(list(curve.points), self.table_length)
        except ValueError as exc:
            raise InvalidCurve(str(exc))
        if len(curve.points) > self.table_length:
            logging.warning("Curve has %d points, firmware table holds %d; truncating",
                            len(curve.points), self.table_length)
            truncated = FanCurve(fan_id=fan_id, sensor_id=sensor_id,
                                 points=tuple(self.codec.decode(buffer)),
                                 max_speed=curve.max_speed)
            validate_curve(truncated, max_rpm=max_rpm)

        byte_literal = ",".join(str(b) for b in buffer)
        logging.info("write_curve: fan=%d sensor=%d layout=%s points=[%s]",
                     fan_id, sensor_id, self.codec.revision, curve.describe())
        self._run(FAN_METHOD + f"$fm.Fan_Set_Table({fan_id}, {sensor_id}, [byte[]]@({byte_literal}))")
        logging.info("write_curve: wrote curve for fan %d sensor %d", fan_id, sensor_id)
