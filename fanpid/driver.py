"""Control loop: read, estimate, control, map, write on change, sleep"""

import logging
import signal
import threading
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

from fanpid.channels import AUTO_DUTY, CONTROLLED_ROLES, ActuatorChannelVector, Role
from fanpid.config import Configuration, GroupConfig
from fanpid.errors import FanControlError, GatewayReadError, SensorParseError
from fanpid.estimators import compute_group_temperature, compute_target
from fanpid.ipmi import SensorGateway, SensorReading
from fanpid.mapper import ActuatorMapper
from fanpid.pid import ControllerState, PIDController, PIDSettings


@dataclass
class GroupRuntime:
    """A control group together with its controller and latest results"""

    config: GroupConfig
    controller: PIDController
    setpoint: Optional[float] = None
    process_variable: Optional[float] = None
    output: Optional[int] = None


@dataclass
class GroupSample:
    """Everything read for one group in one tick"""

    readings: List[SensorReading] = field(default_factory=list)
    ambient: List[SensorReading] = field(default_factory=list)


class ControlLoopDriver:
    """Owns the loop lifecycle and the guarantee that fans end on auto

    Args:
        config: Validated configuration
        gateway: Hardware access
        wait: Sleep primitive taking seconds. Defaults to waiting on the stop
            event so a termination signal cuts the sleep short.
    """

    def __init__(
        self,
        config: Configuration,
        gateway: SensorGateway,
        wait: Optional[Callable[[float], object]] = None,
    ):
        self.config = config
        self.gateway = gateway
        self._stop = threading.Event()
        self.wait = wait or self._stop.wait
        self.mapper = ActuatorMapper(config.duty_differential)
        self.groups: List[GroupRuntime] = []
        self.last_read: Optional[ActuatorChannelVector] = None
        self.last_written: Optional[ActuatorChannelVector] = None
        self.ticks = 0
        self.logger = logging.getLogger(self.__class__.__name__)

    @property
    def running(self) -> bool:
        return not self._stop.is_set()

    def install_signal_handlers(self):
        for signum in (signal.SIGTERM, signal.SIGINT, signal.SIGHUP):
            signal.signal(signum, self._signal_handler)

    def _signal_handler(self, signum, frame):
        """Handle shutdown signals gracefully"""
        self.logger.info("Received signal %s, initiating graceful shutdown...", signum)
        self.request_stop()

    def request_stop(self):
        self._stop.set()

    def _controlled_roles(self) -> List[Role]:
        return [role for role in CONTROLLED_ROLES if self.config.layout.indices(role)]

    def _build_controller(self, group: GroupConfig, seed_output: float) -> PIDController:
        feeds_differential = Role.INTAKE in group.roles and bool(
            self.config.layout.indices(Role.EXHAUST)
        )
        settings = PIDSettings(
            kp=group.kp,
            ki=group.ki,
            kd=group.kd,
            min_duty=self.config.min_duty,
            max_duty=self.config.max_duty,
            duty_differential=self.config.duty_differential,
            feeds_differential=feeds_differential,
            cooling_only=self.config.cooling_only,
            integral_convention=self.config.integral_convention,
        )
        state = ControllerState(
            previous_output=seed_output,
            tick_interval=self.config.tick_interval_minutes,
        )
        return PIDController(settings, state)

    def initialize(self):
        """Force every controlled fan to max duty and arm the controllers

        Raises:
            GatewayReadError: If the current fan vector cannot be read
            GatewayWriteError: If the max-duty write is rejected
        """
        self.logger.info("Fan controller starting, forcing fans to %d%%", self.config.max_duty)
        vector = self.gateway.read_actuator_vector()
        self.last_read = vector
        self.logger.info("Current fans: %s", vector.describe())

        safe = vector.with_roles({role: self.config.max_duty for role in self._controlled_roles()})
        self.gateway.write_actuator_vector(safe)
        self.last_written = safe

        self.groups = [
            GroupRuntime(config=group, controller=self._build_controller(group, self.config.max_duty))
            for group in self.config.groups
        ]
        self.logger.info(
            "Armed %d control group(s), tick interval %.1f minutes",
            len(self.groups),
            self.config.tick_interval_minutes,
        )

    def read_group(self, group: GroupConfig) -> GroupSample:
        if group.source == "smart":
            readings = self.gateway.read_drive_temperatures(group.members)
        else:
            readings = self.gateway.read_sensors(group.members)
        ambient = self.gateway.read_sensors(group.ambient_sensors)
        return GroupSample(readings=readings, ambient=ambient)

    def _read_phase(self) -> Tuple[ActuatorChannelVector, Dict[str, GroupSample]]:
        vector = self.gateway.read_actuator_vector()
        samples = {runtime.config.name: self.read_group(runtime.config) for runtime in self.groups}
        return vector, samples

    def _read_with_retries(self) -> Tuple[ActuatorChannelVector, Dict[str, GroupSample]]:
        attempts = self.config.read_retries + 1
        attempt = 1
        while True:
            try:
                return self._read_phase()
            except (GatewayReadError, SensorParseError) as e:
                if attempt >= attempts or not self.running:
                    raise
                delay = self.config.retry_backoff_seconds * attempt
                self.logger.warning(
                    "Read failed (attempt %d/%d): %s; retrying in %.0fs",
                    attempt,
                    attempts,
                    e,
                    delay,
                )
                self.wait(delay)
                attempt += 1

    def tick(self) -> ActuatorChannelVector:
        """Run one control iteration and return the vector now in effect"""
        vector, samples = self._read_with_retries()
        self.last_read = vector

        targets: Dict[Role, float] = {}
        for runtime in self.groups:
            group = runtime.config
            sample = samples[group.name]

            setpoint = compute_target(
                [r.value for r in sample.ambient],
                group.target_temperature,
                self.config.ambient_tolerance,
            )
            process_variable = compute_group_temperature(
                [r.value for r in sample.readings], group.max_temperature
            )
            output, _ = runtime.controller.tick(process_variable, setpoint)
            terms = runtime.controller.last_terms

            runtime.setpoint = setpoint
            runtime.process_variable = process_variable
            runtime.output = output
            self.logger.info(
                "%s: PV=%.2f°C SP=%.2f°C err=%.2f P=%.2f I=%.2f D=%.2f -> %d%%",
                group.name,
                process_variable,
                setpoint,
                terms.error,
                terms.proportional,
                terms.integral,
                terms.derivative,
                output,
            )

            for role in group.roles:
                targets[role] = output

        new_vector = self.mapper.apply(targets, vector)
        if new_vector != self.last_written:
            self.gateway.write_actuator_vector(new_vector)
            self.last_written = new_vector
        else:
            self.logger.debug("Fan speeds unchanged - maintaining current settings")

        self.ticks += 1
        return new_vector

    def safe_exit(self):
        """Hand every controlled fan back to the BMC, best effort"""
        base = self.last_written or self.last_read
        if base is None:
            try:
                base = self.gateway.read_actuator_vector()
            except FanControlError as e:
                self.logger.critical("Cannot restore automatic fan control: %s", e)
                return

        auto = base.with_roles({role: AUTO_DUTY for role in self._controlled_roles()})
        try:
            self.gateway.write_actuator_vector(auto)
            self.last_written = auto
            self.logger.info("Fans returned to automatic control")
        except FanControlError as e:
            self.logger.critical("Failed to return fans to automatic control: %s", e)

    def run(self, max_ticks: Optional[int] = None):
        """Main control loop; always ends with the safe-exit write"""
        try:
            self.initialize()
            self.logger.info("Entering main control loop...")
            while self.running:
                self.tick()
                if max_ticks is not None and self.ticks >= max_ticks:
                    break
                self.wait(self.config.tick_interval_minutes * 60)
        finally:
            self.logger.info("Shutting down...")
            self.safe_exit()

    def report_temperatures(self) -> Dict[str, List[SensorReading]]:
        """Current readings of every configured sensor, grouped for display"""
        report: Dict[str, List[SensorReading]] = {}
        for group in self.config.groups:
            sample = self.read_group(group)
            report[group.name] = sample.readings
            if sample.ambient:
                report[f"{group.name} ambient"] = sample.ambient
        return report

    def report_fans(self) -> ActuatorChannelVector:
        return self.gateway.read_actuator_vector()
