"""Configuration loading, validation and default file generation

Two formats are accepted with the same keys:

* shell assignments, ``key="value"`` and ``key=( "a" "b" )`` arrays, which
  is what write_default_config() generates
* YAML, for files ending in .yml / .yaml

Nothing runs until the operator flips ``config_edited`` to "true".
"""

import logging
import shlex
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

import yaml

from fanpid.channels import DEFAULT_VECTOR_LENGTH, ChannelLayout, Role
from fanpid.errors import ConfigError
from fanpid.pid import IntegralConvention

logger = logging.getLogger(__name__)

EDITED_SENTINEL = "true"

DEFAULT_CONFIG = """\
# fanpid configuration
#
# Review every value below, then set config_edited to "true".
# The controller refuses to run while it is "false".
config_edited="false"

# Drive temperature control [degrees C]
target_temperature="37"
max_temperature="40"
ambient_tolerance="2"

# Duty limits [%]; exhaust fans run duty_differential below intake
min_duty="20"
max_duty="100"
duty_differential="0"

# PID gains and tick interval [minutes]
kp="4"
ki="0"
kd="40"
tick_interval_minutes="5"
cooling_only="false"
integral_convention="unscaled"

# Drives whose temperature is controlled, as device names under /dev
drives=( "sda" "sdb" )

# IPMI sensors giving room / inlet temperature; empty keeps a fixed target
ambient_sensors=( )

# Fan vector wiring: slot indices per role, remaining slots are left alone
vector_length="8"
primary_slots=( "0" )
intake_slots=( "1" "2" )
exhaust_slots=( "3" )
auxiliary_slots=( )

# Optional HBA cooling group with its own controller
hba_sensors=( )
hba_target_temperature="50"
hba_max_temperature="60"
hba_kp="4"
hba_ki="0"
hba_kd="40"

# Management interface; leave ipmi_host empty for the local BMC
ipmi_host=""
ipmi_username=""
ipmi_password=""
ipmitool_path="ipmitool"
smartctl_path="smartctl"
fan_read_opcode="0x3a 0x02"
fan_write_opcode="0x3a 0x01"

# Read failures: retries per tick and backoff step [seconds]
read_retries="0"
retry_backoff_seconds="30"

log_file=""
"""

ConfigValue = Union[str, List[str]]


def parse_shell_config(text: str) -> Dict[str, ConfigValue]:
    """Parse shell-style ``key="value"`` lines and ``key=( ... )`` arrays"""
    try:
        tokens = shlex.split(text, comments=True)
    except ValueError as e:
        raise ConfigError(f"Malformed configuration: {e}") from e

    values: Dict[str, ConfigValue] = {}
    array_key: Optional[str] = None
    array: List[str] = []

    for token in tokens:
        if array_key is not None:
            if token.endswith(")"):
                item = token[:-1]
                if item:
                    array.append(item)
                values[array_key] = array
                array_key = None
            else:
                array.append(token)
            continue

        key, sep, value = token.partition("=")
        if not sep or not key.isidentifier():
            raise ConfigError(f"Unexpected configuration token {token!r}")

        if value.startswith("("):
            value = value[1:]
            if value.endswith(")"):
                values[key] = [value[:-1]] if value[:-1] else []
            else:
                array_key = key
                array = [value] if value else []
        else:
            values[key] = value

    if array_key is not None:
        raise ConfigError(f"Unterminated array for {array_key!r}")

    return values


def _as_bool(key: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ("true", "yes", "1", "on"):
        return True
    if text in ("false", "no", "0", "off", ""):
        return False
    raise ConfigError(f"{key} must be true or false, got {value!r}")


def _is_edited(value: Any) -> bool:
    # YAML reads an unquoted true as a bool
    if isinstance(value, bool):
        return value
    return str(value).strip() == EDITED_SENTINEL


def _as_float(key: str, value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{key} must be a number, got {value!r}") from e


def _as_int(key: str, value: Any) -> int:
    try:
        return int(str(value).strip(), 0)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{key} must be an integer, got {value!r}") from e


def _as_list(key: str, value: Any) -> Tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return tuple(value.split())
    if isinstance(value, (list, tuple)):
        return tuple(str(item) for item in value)
    raise ConfigError(f"{key} must be a list, got {value!r}")


@dataclass(frozen=True)
class GroupConfig:
    """One independently controlled temperature group"""

    name: str
    source: str  # "smart" for drive devices, "ipmi" for named BMC sensors
    members: Tuple[str, ...]
    target_temperature: float
    max_temperature: float
    kp: float
    ki: float
    kd: float
    roles: Tuple[Role, ...]
    ambient_sensors: Tuple[str, ...] = ()


@dataclass(frozen=True)
class Configuration:
    """Validated, immutable controller configuration"""

    target_temperature: float = 37.0
    max_temperature: float = 40.0
    ambient_tolerance: float = 2.0
    min_duty: int = 20
    max_duty: int = 100
    duty_differential: int = 0
    kp: float = 4.0
    ki: float = 0.0
    kd: float = 40.0
    tick_interval_minutes: float = 5.0
    cooling_only: bool = False
    integral_convention: IntegralConvention = IntegralConvention.UNSCALED
    drives: Tuple[str, ...] = ()
    ambient_sensors: Tuple[str, ...] = ()
    layout: ChannelLayout = field(
        default_factory=lambda: ChannelLayout.from_lists(DEFAULT_VECTOR_LENGTH, {})
    )
    hba_sensors: Tuple[str, ...] = ()
    hba_target_temperature: float = 50.0
    hba_max_temperature: float = 60.0
    hba_kp: float = 4.0
    hba_ki: float = 0.0
    hba_kd: float = 40.0
    ipmi_host: str = ""
    ipmi_username: str = ""
    ipmi_password: str = ""
    ipmitool_path: str = "ipmitool"
    smartctl_path: str = "smartctl"
    fan_read_opcode: Tuple[str, ...] = ("0x3a", "0x02")
    fan_write_opcode: Tuple[str, ...] = ("0x3a", "0x01")
    read_retries: int = 0
    retry_backoff_seconds: float = 30.0
    log_file: str = ""
    edited: bool = True

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> "Configuration":
        """Convert raw key/value pairs (strings or YAML scalars) and validate"""
        convention_name = str(raw.get("integral_convention", "unscaled")).strip().lower()
        try:
            convention = IntegralConvention(convention_name)
        except ValueError as e:
            raise ConfigError(
                f"integral_convention must be 'unscaled' or 'scaled', got {convention_name!r}"
            ) from e

        vector_length = _as_int("vector_length", raw.get("vector_length", DEFAULT_VECTOR_LENGTH))
        role_slots = {}
        for role in (Role.PRIMARY, Role.INTAKE, Role.EXHAUST, Role.AUXILIARY):
            key = f"{role.value}_slots"
            role_slots[role] = [_as_int(key, v) for v in _as_list(key, raw.get(key))]
        layout = ChannelLayout.from_lists(vector_length, role_slots)

        config = cls(
            target_temperature=_as_float("target_temperature", raw.get("target_temperature", 37)),
            max_temperature=_as_float("max_temperature", raw.get("max_temperature", 40)),
            ambient_tolerance=_as_float("ambient_tolerance", raw.get("ambient_tolerance", 2)),
            min_duty=_as_int("min_duty", raw.get("min_duty", 20)),
            max_duty=_as_int("max_duty", raw.get("max_duty", 100)),
            duty_differential=_as_int("duty_differential", raw.get("duty_differential", 0)),
            kp=_as_float("kp", raw.get("kp", 4)),
            ki=_as_float("ki", raw.get("ki", 0)),
            kd=_as_float("kd", raw.get("kd", 40)),
            tick_interval_minutes=_as_float(
                "tick_interval_minutes", raw.get("tick_interval_minutes", 5)
            ),
            cooling_only=_as_bool("cooling_only", raw.get("cooling_only", False)),
            integral_convention=convention,
            drives=_as_list("drives", raw.get("drives")),
            ambient_sensors=_as_list("ambient_sensors", raw.get("ambient_sensors")),
            layout=layout,
            hba_sensors=_as_list("hba_sensors", raw.get("hba_sensors")),
            hba_target_temperature=_as_float(
                "hba_target_temperature", raw.get("hba_target_temperature", 50)
            ),
            hba_max_temperature=_as_float(
                "hba_max_temperature", raw.get("hba_max_temperature", 60)
            ),
            hba_kp=_as_float("hba_kp", raw.get("hba_kp", 4)),
            hba_ki=_as_float("hba_ki", raw.get("hba_ki", 0)),
            hba_kd=_as_float("hba_kd", raw.get("hba_kd", 40)),
            ipmi_host=str(raw.get("ipmi_host") or ""),
            ipmi_username=str(raw.get("ipmi_username") or ""),
            ipmi_password=str(raw.get("ipmi_password") or ""),
            ipmitool_path=str(raw.get("ipmitool_path") or "ipmitool"),
            smartctl_path=str(raw.get("smartctl_path") or "smartctl"),
            fan_read_opcode=_as_list("fan_read_opcode", raw.get("fan_read_opcode", "0x3a 0x02")),
            fan_write_opcode=_as_list(
                "fan_write_opcode", raw.get("fan_write_opcode", "0x3a 0x01")
            ),
            read_retries=_as_int("read_retries", raw.get("read_retries", 0)),
            retry_backoff_seconds=_as_float(
                "retry_backoff_seconds", raw.get("retry_backoff_seconds", 30)
            ),
            log_file=str(raw.get("log_file") or ""),
            edited=_is_edited(raw.get("config_edited", False)),
        )
        config.validate()
        return config

    def validate(self):
        """Raise ConfigError on settings the controller cannot run safely with"""
        if not 0 <= self.min_duty <= self.max_duty <= 100:
            raise ConfigError(
                f"Duty limits must satisfy 0 <= min_duty <= max_duty <= 100, "
                f"got {self.min_duty}..{self.max_duty}"
            )
        if self.duty_differential < 0:
            raise ConfigError("duty_differential must not be negative")
        if self.layout.indices(Role.EXHAUST) and (
            self.min_duty + self.duty_differential > self.max_duty
        ):
            raise ConfigError(
                "min_duty + duty_differential exceeds max_duty, exhaust fans cannot be derived"
            )
        if self.tick_interval_minutes <= 0:
            raise ConfigError("tick_interval_minutes must be positive")
        if self.ambient_tolerance < 0:
            raise ConfigError("ambient_tolerance must not be negative")
        if self.read_retries < 0 or self.retry_backoff_seconds < 0:
            raise ConfigError("read_retries and retry_backoff_seconds must not be negative")
        if not self.drives:
            raise ConfigError("At least one drive must be listed in drives")
        if not self.layout.controlled_indices():
            raise ConfigError("No fan slots assigned to any role")
        if len(self.fan_read_opcode) != 2 or len(self.fan_write_opcode) != 2:
            raise ConfigError("Fan opcodes must be a netfn/command byte pair")

    @property
    def hba_enabled(self) -> bool:
        return bool(self.hba_sensors)

    @property
    def groups(self) -> List[GroupConfig]:
        """Control groups in tick order; later groups override shared roles"""
        drive_roles = (Role.PRIMARY, Role.INTAKE, Role.AUXILIARY)
        groups = [
            GroupConfig(
                name="drives",
                source="smart",
                members=self.drives,
                target_temperature=self.target_temperature,
                max_temperature=self.max_temperature,
                kp=self.kp,
                ki=self.ki,
                kd=self.kd,
                roles=drive_roles,
                ambient_sensors=self.ambient_sensors,
            )
        ]
        if self.hba_enabled:
            groups.append(
                GroupConfig(
                    name="hba",
                    source="ipmi",
                    members=self.hba_sensors,
                    target_temperature=self.hba_target_temperature,
                    max_temperature=self.hba_max_temperature,
                    kp=self.hba_kp,
                    ki=self.hba_ki,
                    kd=self.hba_kd,
                    roles=(Role.AUXILIARY,),
                )
            )
        return groups


def read_config_file(path: Union[str, Path]) -> Dict[str, Any]:
    """Read raw key/value pairs from a shell-style or YAML file"""
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError as e:
        raise ConfigError(f"Configuration file not found: {path}") from e
    except OSError as e:
        raise ConfigError(f"Cannot read configuration file {path}: {e}") from e

    if path.suffix.lower() in (".yml", ".yaml"):
        try:
            raw = yaml.safe_load(text) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in configuration file: {e}") from e
        if not isinstance(raw, dict):
            raise ConfigError("YAML configuration must be a mapping")
        return raw

    return parse_shell_config(text)


def load_config(path: Union[str, Path]) -> Configuration:
    """Load and validate a configuration file, refusing unedited defaults"""
    config = Configuration.from_mapping(read_config_file(path))
    if not config.edited:
        raise ConfigError(
            f"Configuration {path} has not been edited; review it and set "
            f'config_edited="{EDITED_SENTINEL}"'
        )
    logger.info("Configuration loaded from %s", path)
    return config


def write_default_config(path: Union[str, Path]) -> Path:
    """Write the commented default configuration, never overwriting a file"""
    path = Path(path)
    if path.exists():
        raise ConfigError(f"Refusing to overwrite existing file {path}")
    try:
        path.write_text(DEFAULT_CONFIG, encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot write default configuration to {path}: {e}") from e
    logger.info("Default configuration written to %s", path)
    return path
