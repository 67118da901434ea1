"""
Command-Line Interface - Sensor Monitor

Connects to a Kobuki base, logs every published sensor record and every
diagnostic event until interrupted (or until --duration elapses).

Usage:
    python -m py2kobuki --serial /dev/kobuki
    python -m py2kobuki --tcp 127.0.0.1:9999 --duration 10
    python -m py2kobuki --config kobuki.yaml --log-level DEBUG
"""

import sys
import argparse
import dataclasses
import logging
import time
from typing import List, Optional, Tuple

from py2kobuki.core.errors import ConfigurationError, KobukiError
from py2kobuki.driver import KobukiDriver
from py2kobuki.models.config import DriverConfig, TransportConfig
from py2kobuki.models.sensors import EventName, Feedback
from py2kobuki.services.config_loader import load_driver_config


def parse_args(args: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments.

    Args:
        args: List of arguments to parse. If None, uses sys.argv[1:]

    Returns:
        Parsed arguments namespace
    """
    parser = argparse.ArgumentParser(
        description="Kobuki sensor monitor",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s --serial /dev/ttyUSB0
  %(prog)s --tcp 192.168.1.50:9999 --duration 30
  %(prog)s --config kobuki.yaml
        """
    )

    connection = parser.add_mutually_exclusive_group()
    connection.add_argument(
        "--serial",
        type=str,
        default=None,
        metavar="PORT",
        help="Serial device of the robot (overrides the config file)"
    )
    connection.add_argument(
        "--tcp",
        type=str,
        default=None,
        metavar="HOST:PORT",
        help="TCP endpoint, e.g. a simulator (overrides the config file)"
    )

    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="YAML driver configuration file"
    )

    parser.add_argument(
        "--duration",
        type=float,
        default=None,
        help="Stop after this many seconds (default: run until Ctrl+C)"
    )

    parser.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Set logging level (default: INFO)"
    )

    return parser.parse_args(args)


def parse_endpoint(value: str) -> Tuple[str, int]:
    """Split HOST:PORT.

    Raises:
        ValueError: If the value is not HOST:PORT with a valid port
    """
    host, sep, port = value.rpartition(":")
    if not sep or not host:
        raise ValueError(f"Expected HOST:PORT, got '{value}'")
    port_number = int(port)
    if not (1 <= port_number <= 65535):
        raise ValueError(f"Port must be between 1 and 65535, got {port_number}")
    return host, port_number


def build_config(args: argparse.Namespace) -> DriverConfig:
    """Combine the config file (if any) with command-line overrides.

    Raises:
        ConfigurationError: If the file or the overrides are invalid
    """
    config = load_driver_config(args.config) if args.config else DriverConfig()

    if args.serial:
        transport = dataclasses.replace(config.transport, kind="serial", port=args.serial)
        config = dataclasses.replace(config, transport=transport)
    elif args.tcp:
        try:
            host, port = parse_endpoint(args.tcp)
        except ValueError as e:
            raise ConfigurationError(str(e), setting_name="--tcp") from e
        transport = TransportConfig(kind="tcp", host=host, tcp_port=port,
                                    connect_timeout=config.transport.connect_timeout)
        config = dataclasses.replace(config, transport=transport)

    valid, errors = config.validate()
    if not valid:
        raise ConfigurationError("Invalid configuration: " + "; ".join(errors))
    return config


def setup_logging(level: str):
    """Configure application logging.

    Args:
        level: Logging level as string (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    numeric_level = getattr(logging, level.upper(), None)

    logging.basicConfig(
        level=numeric_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )


def run_monitor(driver: KobukiDriver, duration: Optional[float] = None) -> int:
    """Log records and diagnostics until interrupted or duration elapses.

    Returns:
        Exit code (0 = clean stop, 1 = the dispatch loop failed)
    """
    logger = logging.getLogger("py2kobuki.monitor")

    def log_record(feedback: Feedback):
        logger.info(f"{feedback.name.value}: {feedback.record}")

    driver.subscribe(EventName.FEEDBACK, log_record)
    driver.start()

    deadline = time.monotonic() + duration if duration is not None else None
    try:
        while driver.is_running:
            if deadline is not None and time.monotonic() >= deadline:
                break
            event = driver.diagnostics.get(timeout=0.2)
            if event is not None:
                logger.info(f"[{event.kind.value}] {event.message}")
    except KeyboardInterrupt:
        logger.info("Interrupted")
    finally:
        driver.stop(teardown=True)

    if driver.dispatch_error is not None:
        logger.error(f"Dispatch loop failed: {driver.dispatch_error}")
        return 1
    return 0


def main(args: Optional[List[str]] = None) -> int:
    """Main entry point for the monitor.

    Args:
        args: Command-line arguments. If None, uses sys.argv[1:]

    Returns:
        Exit code (0 = success, 1 = error)
    """
    parsed_args = parse_args(args)

    setup_logging(parsed_args.log_level)

    logger = logging.getLogger(__name__)
    logger.info("Starting Kobuki monitor...")

    try:
        config = build_config(parsed_args)
        driver = KobukiDriver(config=config)
        return run_monitor(driver, parsed_args.duration)
    except KobukiError as e:
        logger.error(e.format_log_message())
        print(f"Error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
