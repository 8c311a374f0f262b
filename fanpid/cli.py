"""Command line entry point"""

import argparse
import logging
import shutil
import sys
from pathlib import Path
from typing import Iterable, List, Optional

from fanpid.channels import ActuatorChannelVector
from fanpid.config import Configuration, load_config, write_default_config
from fanpid.driver import ControlLoopDriver
from fanpid.errors import ConfigError, DependencyMissingError, FanControlError
from fanpid.ipmi import SensorGateway

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

logger = logging.getLogger("fanpid")


def setup_logging(verbose: bool = False, log_file: Optional[str] = None):
    """Configure logging system"""
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
        handlers=handlers,
        force=True,
    )


class ArgumentParser(argparse.ArgumentParser):
    """argparse with usage errors reported as exit code 1"""

    def error(self, message):
        self.print_usage(sys.stderr)
        self.exit(ConfigError.exit_code, f"{self.prog}: error: {message}\n")


def build_arg_parser() -> argparse.ArgumentParser:
    parser = ArgumentParser(
        prog="fanpid",
        description="PID fan controller keeping drive temperatures on target via IPMI.",
    )
    parser.add_argument(
        "-c",
        "--config",
        required=True,
        help="Path to the configuration file; a default is written if it does not exist",
    )
    mode = parser.add_mutually_exclusive_group(required=True)
    mode.add_argument("--temps", action="store_true", help="Print current temperatures and exit")
    mode.add_argument("--fans", action="store_true", help="Print current fan duties and exit")
    mode.add_argument("--daemon", action="store_true", help="Run the control loop")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    return parser


def check_dependencies(config: Configuration, mode: str):
    """Fail with DependencyMissingError unless the tools `mode` needs are on PATH

    Args:
        config: Loaded configuration
        mode: One of "temps", "fans", "daemon"
    """
    tools = [config.ipmitool_path]
    if mode != "fans" and any(group.source == "smart" for group in config.groups):
        tools.append(config.smartctl_path)

    missing = [tool for tool in tools if shutil.which(tool) is None]
    if missing:
        raise DependencyMissingError(f"{', '.join(missing)} is missing, please install")


def prepare_config(path: str) -> Configuration:
    config_path = Path(path)
    if not config_path.exists():
        write_default_config(config_path)
        raise ConfigError(
            f"No configuration at {config_path}; a default was written there. "
            "Edit it and set config_edited=\"true\" before running."
        )
    return load_config(config_path)


def print_temperatures(driver: ControlLoopDriver):
    for group, readings in driver.report_temperatures().items():
        values = ", ".join(f"{r.name}={r.value:.1f}°C" for r in readings)
        print(f"{group}: {values}")


def print_fans(vector: ActuatorChannelVector):
    for index, duty in enumerate(vector.duties):
        role = vector.layout.role_of(index)
        shown = "auto" if duty == 0 else f"{duty}%"
        print(f"slot {index} ({role.value}): {shown}")


def main(argv: Optional[Iterable[str]] = None) -> int:
    args = build_arg_parser().parse_args(list(argv) if argv is not None else None)
    setup_logging(args.verbose)

    try:
        config = prepare_config(args.config)
        if config.log_file:
            try:
                setup_logging(args.verbose, config.log_file)
            except OSError as e:
                setup_logging(args.verbose)
                raise ConfigError(f"Cannot open log file {config.log_file}: {e}") from e
        mode = "temps" if args.temps else "fans" if args.fans else "daemon"
        check_dependencies(config, mode)

        driver = ControlLoopDriver(config, SensorGateway(config))
        if args.temps:
            print_temperatures(driver)
        elif args.fans:
            print_fans(driver.report_fans())
        else:
            driver.install_signal_handlers()
            driver.run()
    except FanControlError as e:
        logger.critical("%s", e)
        print(f"fanpid: {e}", file=sys.stderr)
        return e.exit_code

    return 0
