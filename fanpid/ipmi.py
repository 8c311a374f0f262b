"""Sensor and fan access through ipmitool and smartctl"""

import json
import logging
import math
import subprocess
from dataclasses import dataclass
from typing import Callable, List, Sequence

from fanpid.channels import ActuatorChannelVector, ChannelLayout
from fanpid.config import Configuration
from fanpid.errors import GatewayReadError, GatewayWriteError, SensorParseError

# smartctl exit status is a bit mask; bits 0-1 mean the command itself failed,
# higher bits report disk health and still come with usable output
SMARTCTL_FATAL_BITS = 0b11


@dataclass(frozen=True)
class SensorReading:
    """A single temperature read this tick"""

    name: str
    value: float  # °C


Runner = Callable[..., subprocess.CompletedProcess]


class SensorGateway:
    """Interface to the BMC and drives for sensor reading and fan control"""

    def __init__(self, config: Configuration, runner: Runner = subprocess.run, timeout: float = 10):
        self.config = config
        self.layout: ChannelLayout = config.layout
        self.runner = runner
        self.timeout = timeout  # ipmitool is slow, remote sessions more so
        self.logger = logging.getLogger(self.__class__.__name__)

    def _ipmitool(self, *args: str) -> List[str]:
        command = [self.config.ipmitool_path]
        if self.config.ipmi_host:
            command += [
                "-I", "lanplus",
                "-H", self.config.ipmi_host,
                "-U", self.config.ipmi_username,
                "-P", self.config.ipmi_password,
            ]
        return command + list(args)

    def _run(self, command: List[str], error_cls) -> subprocess.CompletedProcess:
        if self.logger.isEnabledFor(logging.DEBUG):
            shown = ["****" if prev == "-P" else arg for prev, arg in zip([""] + command, command)]
            self.logger.debug("Running %s", " ".join(shown))
        try:
            return self.runner(command, capture_output=True, text=True, timeout=self.timeout)
        except subprocess.TimeoutExpired as e:
            raise error_cls(f"{command[0]} timed out after {self.timeout}s") from e
        except OSError as e:
            raise error_cls(f"Cannot run {command[0]}: {e}") from e

    def read_actuator_vector(self) -> ActuatorChannelVector:
        """Read every fan duty slot with a single raw query

        Raises:
            GatewayReadError: If the query fails or returns a short vector
        """
        command = self._ipmitool("raw", *self.config.fan_read_opcode)
        result = self._run(command, GatewayReadError)
        if result.returncode != 0:
            raise GatewayReadError(
                f"Fan vector read failed ({result.returncode}): {result.stderr.strip()}"
            )
        return ActuatorChannelVector.from_raw(result.stdout.split(), self.layout)

    def write_actuator_vector(self, vector: ActuatorChannelVector):
        """Write every fan duty slot with a single raw command

        Raises:
            GatewayWriteError: If the command cannot run or reports failure
        """
        command = self._ipmitool("raw", *self.config.fan_write_opcode, *vector.to_raw())
        result = self._run(command, GatewayWriteError)
        if result.returncode != 0:
            raise GatewayWriteError(
                f"Fan vector write failed ({result.returncode}): {result.stderr.strip()}"
            )
        self.logger.info("Wrote fan vector: %s", vector.describe())

    def read_named_sensor(self, name: str) -> float:
        """Read one BMC sensor through `ipmitool sdr -c get`

        The compact record looks like ``CPU1 Temp,35,degrees C,ok``; the
        second field is the reading.
        """
        result = self._run(self._ipmitool("sdr", "-c", "get", name), GatewayReadError)
        if result.returncode != 0:
            raise GatewayReadError(
                f"Sensor {name!r} read failed ({result.returncode}): {result.stderr.strip()}"
            )

        lines = result.stdout.strip().splitlines()
        fields = lines[0].split(",") if lines else []
        if len(fields) < 2:
            raise SensorParseError(f"Sensor {name!r} returned no reading: {result.stdout!r}")
        try:
            value = float(fields[1])
        except ValueError as e:
            raise SensorParseError(f"Sensor {name!r} reading {fields[1]!r} is not numeric") from e
        if not math.isfinite(value):
            raise SensorParseError(f"Sensor {name!r} reading {fields[1]!r} is not finite")
        return value

    def read_drive_temperature(self, device: str) -> float:
        """Current drive temperature from smartctl's JSON attribute report"""
        path = device if device.startswith("/dev/") else f"/dev/{device}"
        result = self._run([self.config.smartctl_path, "-jA", path], GatewayReadError)
        if result.returncode & SMARTCTL_FATAL_BITS:
            raise GatewayReadError(f"smartctl failed on {path} ({result.returncode})")

        try:
            report = json.loads(result.stdout)
            value = float(report["temperature"]["current"])
        except (ValueError, KeyError, TypeError) as e:
            raise SensorParseError(f"No temperature in smartctl report for {path}") from e
        if not math.isfinite(value):
            raise SensorParseError(f"Temperature {value} for {path} is not finite")
        return value

    def read_sensors(self, names: Sequence[str]) -> List[SensorReading]:
        return [SensorReading(name, self.read_named_sensor(name)) for name in names]

    def read_drive_temperatures(self, devices: Sequence[str]) -> List[SensorReading]:
        return [SensorReading(device, self.read_drive_temperature(device)) for device in devices]
