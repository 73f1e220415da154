import pytest

from conftest import DISCOVERY, FakeRunner
from fancontrol.backends.curve_codec import PairTableCodec
from fancontrol.backends.lenovo import (LenovoFanController, duty_to_rpm, parse_discovery,
                                        parse_fan_id, rpm_to_duty)
from fancontrol.errors import (FanNotFound, InterpreterMissing, InvalidCurve, NotSupported,
                               ParseFailure, SubprocessFailure)
from fancontrol.fan import FanCurve, FanCurvePoint

STUB_DISCOVERY = """\
PROTO|1
FULLSPEED|0
FAN|0|0|2000|40
"""


def test_parse_fan_id():
    assert parse_fan_id("fan0") == 0
    assert parse_fan_id("fan12") == 12
    for bad in ("hwmon0", "fan", "", "fan-1", "Fan0"):
        with pytest.raises(FanNotFound):
            parse_fan_id(bad)


def test_duty_rpm_mapping():
    assert duty_to_rpm(1600, 4800, 0) == 1600
    assert duty_to_rpm(1600, 4800, 255) == 4800
    assert 1600 < duty_to_rpm(1600, 4800, 128) < 4800
    assert rpm_to_duty(1600, 4800, 1000) == 0
    assert rpm_to_duty(1600, 4800, 9999) == 255
    assert abs(rpm_to_duty(1600, 4800, duty_to_rpm(1600, 4800, 100)) - 100) <= 1


def test_parse_discovery():
    result = parse_discovery(DISCOVERY)
    assert not result.full_speed
    assert len(result.curves) == 3
    assert [(f.fan_id, f.speed_rpm, f.temperature) for f in result.fans] == [(0, 2100, 45), (1, 0, 31)]
    assert (result.ranges[1].min_rpm, result.ranges[1].max_rpm) == (1800, 5000)
    first = result.curves[0]
    assert first.active and first.key == (0, 3)
    assert first.points[0] == FanCurvePoint(58, 1600)
    assert first.points[-1] == FanCurvePoint(100, 4800)
    assert result.skipped == 0


def test_stub_firmware_without_tables_yields_no_curves():
    result = parse_discovery(STUB_DISCOVERY)
    assert result.curves == []
    assert result.ranges == {}
    assert len(result.fans) == 1


def test_empty_output():
    result = parse_discovery("")
    assert result.fans == [] and result.curves == [] and not result.full_speed


def test_malformed_and_unknown_lines_are_skipped():
    output = "\n".join([
        "FULLSPEED|1",
        "TABLE|0|3|1|1600",
        "FAN|0|3",
        "FAN|x|3|2100|45",
        "GARBAGE line",
        "TABLE|1|4|1||||||",
        "FAN|1|4|3200|52",
    ])
    result = parse_discovery(output)
    assert result.full_speed
    assert result.skipped == 4
    assert [f.fan_id for f in result.fans] == [1]
    # an empty table row is a zero-point curve, not an error
    assert result.curves[0].points == ()


def test_unknown_protocol_version_still_parses():
    result = parse_discovery("PROTO|9\nFAN|0|3|2100|45")
    assert len(result.fans) == 1


def test_discover_builds_fans():
    runner = FakeRunner(DISCOVERY)
    fans = LenovoFanController(runner).discover()

    assert len(runner.scripts) == 1
    assert [f.id for f in fans] == ["fan0", "fan1"]
    cpu, gpu = fans
    assert "CPU Fan" in cpu.label and "45" in cpu.label
    assert cpu.controllable and not cpu.full_speed_active
    assert (cpu.min_rpm, cpu.max_rpm) == (1600, 4800)
    assert len(cpu.curves) == 2
    assert cpu.duty == rpm_to_duty(1600, 4800, 2100)
    assert "GPU Fan" in gpu.label
    assert gpu.duty == 0
    assert len(gpu.curves) == 1


def test_discover_without_tables_uses_defaults():
    fans = LenovoFanController(FakeRunner(STUB_DISCOVERY)).discover()
    assert fans[0].min_rpm is None and fans[0].max_rpm is None
    assert fans[0].curves == []


def test_full_speed_reports_max_duty():
    fans = LenovoFanController(FakeRunner(DISCOVERY.replace("FULLSPEED|0", "FULLSPEED|1"))).discover()
    assert all(f.full_speed_active and f.duty == 255 for f in fans)


def test_set_duty_zero_releases_to_auto():
    runner = FakeRunner("", DISCOVERY)
    controller = LenovoFanController(runner)
    controller.set_duty("fan0", 0)
    assert "Fan_Set_FullSpeed(0)" in runner.scripts[0]

    fan0 = controller.discover()[0]
    assert fan0.controllable
    assert fan0.duty == rpm_to_duty(1600, 4800, 2100)


def test_set_duty_255_enables_full_speed():
    runner = FakeRunner("")
    LenovoFanController(runner).set_duty("fan1", 255)
    assert "Fan_Set_FullSpeed(1)" in runner.scripts[0]


def test_set_duty_uses_learned_range():
    runner = FakeRunner(DISCOVERY, "")
    controller = LenovoFanController(runner)
    controller.discover()
    controller.set_duty("fan1", 128)
    assert f"Fan_SetCurrentFanSpeed(1, {duty_to_rpm(1800, 5000, 128)})" in runner.scripts[1]


def test_set_duty_defaults_before_discovery():
    runner = FakeRunner("")
    LenovoFanController(runner, default_range=(1000, 3000)).set_duty("fan0", 51)
    assert f"Fan_SetCurrentFanSpeed(0, {duty_to_rpm(1000, 3000, 51)})" in runner.scripts[0]


def test_set_duty_validates_before_spawning():
    runner = FakeRunner()
    controller = LenovoFanController(runner)
    with pytest.raises(ValueError):
        controller.set_duty("fan0", 300)
    with pytest.raises(FanNotFound):
        controller.set_duty("cpu", 100)
    assert runner.scripts == []


def test_read_speed_and_temperature():
    runner = FakeRunner("2300", "47")
    controller = LenovoFanController(runner)
    assert controller.read_speed("fan1") == 2300
    assert controller.read_temperature(4) == 47
    assert "Fan_GetCurrentFanSpeed(1)" in runner.scripts[0]
    assert "Fan_GetCurrentSensorTemperature(4)" in runner.scripts[1]


def test_read_speed_garbage_reply():
    with pytest.raises(ParseFailure):
        LenovoFanController(FakeRunner("n/a")).read_speed("fan0")


def test_read_curves():
    controller = LenovoFanController(FakeRunner(DISCOVERY))
    assert controller.read_curve(1, 4).points[-1] == FanCurvePoint(95, 5000)


def test_write_curve_sends_packed_table():
    curve = FanCurve(0, 3, tuple(FanCurvePoint(t, r) for t, r in
                                 [(55, 1600), (63, 2100), (70, 3200), (85, 4800)]), max_speed=5000)
    runner = FakeRunner("")
    LenovoFanController(runner).write_curve(0, 3, curve)

    expected = PairTableCodec().encode(list(curve.points), 10)
    literal = ",".join(str(b) for b in expected)
    assert f"Fan_Set_Table(0, 3, [byte[]]@({literal}))" in runner.scripts[0]


def test_write_curve_never_sends_invalid_curve():
    runner = FakeRunner()
    curve = FanCurve(0, 3, (FanCurvePoint(55, 1600), FanCurvePoint(50, 2100)), max_speed=4800)
    with pytest.raises(InvalidCurve):
        LenovoFanController(runner).write_curve(0, 3, curve)
    assert runner.scripts == []


def test_write_curve_checks_learned_max():
    runner = FakeRunner(DISCOVERY)
    controller = LenovoFanController(runner)
    controller.discover()
    # fine against its own metadata, unsafe for a 5000 RPM fan
    curve = FanCurve(1, 4, (FanCurvePoint(50, 1000), FanCurvePoint(90, 2400)), max_speed=4000)
    with pytest.raises(InvalidCurve):
        controller.write_curve(1, 4, curve)
    assert len(runner.scripts) == 1


def test_write_curve_rejects_mismatched_ids():
    curve = FanCurve(1, 4, (FanCurvePoint(50, 1800), FanCurvePoint(90, 4800)), max_speed=4800)
    with pytest.raises(InvalidCurve):
        LenovoFanController(FakeRunner()).write_curve(0, 3, curve)


def test_truncated_curve_is_revalidated():
    # the hottest points would be cut off, leaving an unsafe top point
    pairs = [(40 + i * 5, 1000 + i * 10) for i in range(10)] + [(95, 4000), (100, 4800)]
    curve = FanCurve(0, 3, tuple(FanCurvePoint(t, r) for t, r in pairs), max_speed=4800)
    runner = FakeRunner()
    with pytest.raises(InvalidCurve):
        LenovoFanController(runner).write_curve(0, 3, curve)
    assert runner.scripts == []


def test_write_failure_is_reported_not_raised_raw():
    curve = FanCurve(0, 3, (FanCurvePoint(50, 1800), FanCurvePoint(90, 4800)), max_speed=4800)
    runner = FakeRunner(SubprocessFailure(1, "Invalid method Parameter(s)"))
    with pytest.raises(SubprocessFailure):
        LenovoFanController(runner).write_curve(0, 3, curve)


def test_missing_interpreter_disables_backend():
    runner = FakeRunner(InterpreterMissing("powershell.exe", "not found"))
    controller = LenovoFanController(runner)
    with pytest.raises(InterpreterMissing):
        controller.discover()
    with pytest.raises(NotSupported):
        controller.set_duty("fan0", 100)
    assert len(runner.scripts) == 1


def test_other_failures_do_not_disable_backend():
    runner = FakeRunner(SubprocessFailure(1, "Access denied", elevation_required=True), DISCOVERY)
    controller = LenovoFanController(runner)
    with pytest.raises(SubprocessFailure) as excinfo:
        controller.discover()
    assert excinfo.value.elevation_required
    assert len(controller.discover()) == 2
