"""
Shared fixtures for the fanpid test suite.

FakeRunner stands in for subprocess.run and emulates the three commands the
gateway issues: raw fan vector read/write, `sdr -c get` and `smartctl -jA`.
"""

import json
import logging
import subprocess
from typing import Dict, List

import pytest

from fanpid.config import Configuration
from fanpid.ipmi import SensorGateway

logging.getLogger("fanpid").setLevel(logging.WARNING)

READ_OPCODE = ["0x3a", "0x02"]
WRITE_OPCODE = ["0x3a", "0x01"]


class FakeRunner:
    """Scripted BMC + smartctl, recording every command it is given"""

    def __init__(self):
        self.calls: List[List[str]] = []
        self.fan_vector = "32 32 32 32 32 00 00 10"
        self.sensors: Dict[str, str] = {}
        self.drives: Dict[str, float] = {}
        self.failed_reads = 0  # upcoming fan vector reads that fail
        self.write_returncodes: List[int] = []  # popped per write, default 0

    def __call__(self, command, **kwargs):
        self.calls.append(list(command))
        args = list(command[1:])

        if "raw" in args:
            i = args.index("raw")
            opcode = args[i + 1 : i + 3]
            if opcode == READ_OPCODE:
                if self.failed_reads:
                    self.failed_reads -= 1
                    return subprocess.CompletedProcess(command, 1, "", "Unable to send RAW command")
                return subprocess.CompletedProcess(command, 0, f" {self.fan_vector}\n", "")
            if opcode == WRITE_OPCODE:
                rc = self.write_returncodes.pop(0) if self.write_returncodes else 0
                if rc == 0:
                    self.fan_vector = " ".join(b[2:] for b in args[i + 3 :])
                    return subprocess.CompletedProcess(command, 0, "", "")
                return subprocess.CompletedProcess(command, rc, "", "Invalid data field")

        if "sdr" in args:
            name = args[-1]
            value = self.sensors[name]
            return subprocess.CompletedProcess(command, 0, f"{name},{value},degrees C,ok\n", "")

        if command[0] == "smartctl":
            device = args[-1].replace("/dev/", "")
            report = {"temperature": {"current": self.drives[device]}}
            return subprocess.CompletedProcess(command, 0, json.dumps(report), "")

        raise AssertionError(f"Unexpected command {command}")

    @property
    def writes(self) -> List[List[str]]:
        return [c for c in self.calls if "raw" in c and c[c.index("raw") + 1 : c.index("raw") + 3] == WRITE_OPCODE]

    def written_bytes(self, index: int = -1) -> List[int]:
        command = self.writes[index]
        return [int(b, 16) for b in command[command.index("raw") + 3 :]]


def make_config(**overrides) -> Configuration:
    raw = {
        "config_edited": "true",
        "target_temperature": "37",
        "max_temperature": "40",
        "ambient_tolerance": "2",
        "min_duty": "20",
        "max_duty": "100",
        "duty_differential": "10",
        "kp": "4",
        "ki": "0",
        "kd": "40",
        "tick_interval_minutes": "5",
        "drives": ["sda", "sdb"],
        "vector_length": "8",
        "primary_slots": ["0"],
        "intake_slots": ["1", "2"],
        "exhaust_slots": ["3"],
        "auxiliary_slots": ["4"],
    }
    raw.update(overrides)
    return Configuration.from_mapping(raw)


@pytest.fixture
def runner():
    fake = FakeRunner()
    fake.drives = {"sda": 30.0, "sdb": 32.0}
    return fake


@pytest.fixture
def config():
    return make_config()


@pytest.fixture
def gateway(config, runner):
    return SensorGateway(config, runner=runner)
