"""Exception hierarchy for the fan controller.

Every error carries the process exit code the CLI reports for it.
"""


class FanControlError(Exception):
    """Base class for all fan controller failures"""

    exit_code = 1


class ConfigError(FanControlError):
    """Configuration file missing, unedited or invalid"""

    exit_code = 1


class DependencyMissingError(FanControlError):
    """A required external tool is not installed"""

    exit_code = 100


class GatewayWriteError(FanControlError):
    """The management interface rejected a fan vector write

    Fans may be left at an indeterminate duty, so this always ends the loop.
    """

    exit_code = 2


class GatewayReadError(FanControlError):
    """Reading the fan vector or a sensor failed at the command level"""

    exit_code = 3


class SensorParseError(FanControlError):
    """A sensor command succeeded but its output held no usable number"""

    exit_code = 3
