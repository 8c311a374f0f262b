"""
PID Fan Control for Drive Arrays
================================

Closed-loop fan controller for servers whose BMC exposes the fan duties as a
fixed vector of raw bytes. Drive temperatures (and optionally an HBA sensor)
feed incremental PID controllers whose outputs are spread over the chassis fan
headers by role, then written back through ipmitool.
"""

from fanpid.channels import AUTO_DUTY, ActuatorChannelVector, ChannelLayout, Role
from fanpid.config import Configuration, GroupConfig, load_config, write_default_config
from fanpid.driver import ControlLoopDriver
from fanpid.errors import (
    ConfigError,
    DependencyMissingError,
    FanControlError,
    GatewayReadError,
    GatewayWriteError,
    SensorParseError,
)
from fanpid.estimators import compute_group_temperature, compute_target, round_half_up
from fanpid.ipmi import SensorGateway, SensorReading
from fanpid.mapper import ActuatorMapper
from fanpid.pid import ControllerState, IntegralConvention, PIDController, PIDSettings

__version__ = "1.0.0"

__all__ = [
    "AUTO_DUTY",
    "ActuatorChannelVector",
    "ActuatorMapper",
    "ChannelLayout",
    "ConfigError",
    "Configuration",
    "ControlLoopDriver",
    "ControllerState",
    "DependencyMissingError",
    "FanControlError",
    "GatewayReadError",
    "GatewayWriteError",
    "GroupConfig",
    "IntegralConvention",
    "PIDController",
    "PIDSettings",
    "Role",
    "SensorGateway",
    "SensorParseError",
    "SensorReading",
    "compute_group_temperature",
    "compute_target",
    "load_config",
    "round_half_up",
    "write_default_config",
]
