import pytest

from fancontrol.backends.base import FanController
from fancontrol.config import ConfigManager
from fancontrol.errors import FanNotFound
from fancontrol.fan import Fan

# firmware reply for two fans: fan0 1600-4800 RPM, fan1 1800-5000 RPM
DISCOVERY = """\
PROTO|1
FULLSPEED|0
TABLE|0|3|1|1600|4800|58|100|1600,2100,2700,3400,4200,4800|58,63,68,73,85,100
TABLE|0|0|0|1600|4800|58|100|1600,2100,2700,3400,4200,4800|58,63,68,73,85,100
TABLE|1|4|1|1800|5000|63|95|1800,2400,3200,5000|63,73,85,95
FAN|0|3|2100|45
FAN|1|4|0|31
"""


@pytest.fixture(autouse=True)
def fresh_config():
    """ConfigManager is a singleton; give every test a clean one."""
    ConfigManager._instance = None
    yield
    ConfigManager._instance = None


class FakeRunner:
    """Stands in for PowerShellRunner: replies from a queue, records scripts."""

    def __init__(self, *replies):
        self.replies = list(replies)
        self.scripts = []

    def run(self, script):
        self.scripts.append(script)
        reply = self.replies.pop(0) if self.replies else ""
        if isinstance(reply, Exception):
            raise reply
        return reply


class FakeController(FanController):
    """In-memory controller whose firmware can 'reset' duties between polls."""

    name = "fake"

    def __init__(self, fan_ids=("fan0",)):
        self.fans = {fid: Fan(id=fid, label=fid, speed_rpm=2000, duty=0, controllable=True)
                     for fid in fan_ids}
        self.writes = []
        self.curve_writes = []
        self.full_speed = False

    def discover(self):
        return [Fan(id=f.id, label=f.label, speed_rpm=f.speed_rpm, duty=f.duty,
                    controllable=f.controllable, full_speed_active=self.full_speed)
                for f in self.fans.values()]

    def read_speed(self, fan_id):
        if fan_id not in self.fans:
            raise FanNotFound(fan_id)
        return self.fans[fan_id].speed_rpm

    def set_duty(self, fan_id, value):
        if fan_id not in self.fans:
            raise FanNotFound(fan_id)
        self.writes.append((fan_id, value))
        self.fans[fan_id].duty = value

    def supports_full_speed(self):
        return True

    def set_full_speed(self, enabled):
        self.full_speed = enabled

    def write_curve(self, fan_id, sensor_id, curve):
        self.curve_writes.append(curve)

    def firmware_reset(self, fan_id):
        self.fans[fan_id].duty = 0


@pytest.fixture
def fake_controller():
    return FakeController(("fan0", "fan1"))
