import pytest

from conftest import DISCOVERY, FakeController, FakeRunner
from fancontrol.backends.lenovo import LenovoFanController
from fancontrol.channels import CommandApplied, CommandChannel, SnapshotChannel, WorkerError
from fancontrol.commands import RefreshCommand, SetDutyCommand, SetFullSpeedCommand
from fancontrol.errors import DeviceUnavailable, FanNotFound, SubprocessFailure
from fancontrol.fan import ControllerSnapshot
from fancontrol.worker import IDLE, STOPPED, FanWorker


def make_worker(controller, interval=0.01):
    return FanWorker(controller, CommandChannel(), SnapshotChannel(), interval=interval)


def snapshots_of(channel):
    return [e for e in channel.drain() if isinstance(e, ControllerSnapshot)]


def test_held_duty_survives_firmware_reset(fake_controller):
    worker = make_worker(fake_controller)
    worker.tick([SetDutyCommand("fan0", 180)])
    assert fake_controller.writes == [("fan0", 180)]

    fake_controller.firmware_reset("fan0")
    snapshot = worker.tick()

    assert fake_controller.writes == [("fan0", 180), ("fan0", 180)]
    assert snapshot.fans["fan0"].duty == 180
    assert snapshot.reapplied == ("fan0",)
    assert snapshot.fans["fan1"].duty == 0


def test_no_reissue_while_firmware_agrees(fake_controller):
    worker = make_worker(fake_controller)
    worker.tick([SetDutyCommand("fan0", 180)])
    snapshot = worker.tick()
    assert fake_controller.writes == [("fan0", 180)]
    assert snapshot.reapplied == ()


def test_duty_zero_releases_hold(fake_controller):
    worker = make_worker(fake_controller)
    worker.tick([SetDutyCommand("fan0", 180)])
    worker.tick([SetDutyCommand("fan0", 0)])
    assert "fan0" not in worker.held

    fake_controller.fans["fan0"].duty = 90
    worker.tick()
    assert fake_controller.writes == [("fan0", 180), ("fan0", 0)]


def test_commands_apply_before_discovery(fake_controller):
    worker = make_worker(fake_controller)
    snapshot = worker.tick([SetDutyCommand("fan1", 42)])
    assert snapshot.fans["fan1"].duty == 42
    assert snapshot.reapplied == ()


def test_full_speed_off_releases_max_holds(fake_controller):
    worker = make_worker(fake_controller)
    worker.tick([SetDutyCommand("fan0", 255), SetDutyCommand("fan1", 100)])
    worker.tick([SetFullSpeedCommand(False)])
    assert "fan0" not in worker.held
    assert worker.held.get("fan1") == 100
    assert not fake_controller.full_speed


def test_release_to_auto_is_not_undone_by_full_speed_hold():
    runner = FakeRunner("", DISCOVERY.replace("FULLSPEED|0", "FULLSPEED|1"), "", DISCOVERY)
    worker = make_worker(LenovoFanController(runner))

    worker.tick([SetDutyCommand("fan0", 255)])
    snapshot = worker.tick([SetDutyCommand("fan1", 0)])

    full_speed_calls = [s for s in runner.scripts if "Fan_Set_FullSpeed" in s]
    assert "Fan_Set_FullSpeed(1)" in full_speed_calls[0]
    assert "Fan_Set_FullSpeed(0)" in full_speed_calls[-1]
    assert len(full_speed_calls) == 2
    assert len(worker.held) == 0
    assert snapshot.reapplied == ()


def test_failed_command_is_reported_and_loop_continues(fake_controller):
    worker = make_worker(fake_controller)
    snapshot = worker.tick([SetDutyCommand("fan9", 100), SetDutyCommand("fan0", 100)])

    events = worker.snapshots.drain()
    errors = [e for e in events if isinstance(e, WorkerError)]
    assert len(errors) == 1 and isinstance(errors[0].error, FanNotFound)
    assert any(isinstance(e, CommandApplied) for e in events)
    assert "fan9" not in worker.held
    assert snapshot.fans["fan0"].duty == 100


def test_discovery_failure_publishes_error(fake_controller, monkeypatch):
    worker = make_worker(fake_controller)

    def broken():
        raise SubprocessFailure(1, "WMI went away")
    monkeypatch.setattr(fake_controller, "discover", broken)

    assert worker.tick() is None
    events = worker.snapshots.drain()
    assert len(events) == 1 and isinstance(events[0].error, SubprocessFailure)


def test_no_fans_reported_once():
    worker = make_worker(FakeController(()))
    worker.tick()
    worker.tick()
    errors = [e for e in worker.snapshots.drain() if isinstance(e, WorkerError)]
    assert len(errors) == 1
    assert isinstance(errors[0].error, DeviceUnavailable)


def test_close_stops_after_pending_commands(fake_controller):
    worker = make_worker(fake_controller, interval=60)
    assert worker.state == IDLE
    worker.commands.send(SetDutyCommand("fan0", 120))
    worker.commands.send(RefreshCommand())
    worker.commands.close()

    worker.run()

    assert worker.state == STOPPED
    assert fake_controller.writes == [("fan0", 120)]
    assert worker.held.get("fan0") == 120


def test_threaded_stop(fake_controller):
    worker = make_worker(fake_controller, interval=0.05)
    thread = worker.start()
    worker.commands.send(SetDutyCommand("fan1", 200))
    worker.stop(timeout=5)

    assert not thread.is_alive()
    assert worker.state == STOPPED
    assert ("fan1", 200) in fake_controller.writes
    assert snapshots_of(worker.snapshots)


def test_unexpected_error_stops_worker(fake_controller, monkeypatch):
    worker = make_worker(fake_controller)

    def explode():
        raise RuntimeError("bug")
    monkeypatch.setattr(fake_controller, "discover", explode)

    with pytest.raises(RuntimeError):
        worker.run()
    assert worker.state == STOPPED
    assert isinstance(worker.snapshots.drain()[-1], WorkerError)
