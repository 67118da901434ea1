"""
YAML configuration loading for the Kobuki driver.

File layout (every key optional):

    transport:
      kind: serial            # serial | tcp | loopback
      port: /dev/kobuki
      baudrate: 115200
      host: 127.0.0.1         # tcp
      tcp_port: 9999          # tcp
      connect_timeout: 2.0
    duplex: full              # full | half
    read_timeout: 0.5
    poll_interval: 0.05
    read_size: 256
    stop_timeout: 2.0
    diagnostics_size: 100
    tolerances:
      cliff_adc: 10
      gyro: 5
      current_wheels: 2
"""

import logging
from dataclasses import asdict, fields
from pathlib import Path
from typing import Any, Dict, Union

import yaml

from py2kobuki.core.errors import ConfigurationError, ErrorCodes, wrap_external_error
from py2kobuki.models.command import ToleranceKind
from py2kobuki.models.config import DriverConfig, TransportConfig

logger = logging.getLogger(__name__)

_TRANSPORT_KEYS = {f.name for f in fields(TransportConfig)}
_DRIVER_KEYS = {f.name for f in fields(DriverConfig)} - {'transport', 'tolerances'}


def _parse_tolerances(raw: Any) -> Dict[ToleranceKind, float]:
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ConfigurationError(
            f"'tolerances' must be a mapping, got {type(raw).__name__}",
            setting_name='tolerances',
            error_code=ErrorCodes.CONFIG_INVALID,
        )
    tolerances = {}
    for key, value in raw.items():
        try:
            kind = ToleranceKind(key)
        except ValueError:
            raise ConfigurationError(
                f"Unknown tolerance '{key}'. Valid: {[k.value for k in ToleranceKind]}",
                setting_name=f'tolerances.{key}',
                error_code=ErrorCodes.CONFIG_INVALID,
            ) from None
        tolerances[kind] = value
    return tolerances


def config_from_dict(data: Dict[str, Any]) -> DriverConfig:
    """
    Build and validate a DriverConfig from a plain mapping.

    Raises:
        ConfigurationError: On unknown keys or invalid values
    """
    if not isinstance(data, dict):
        raise ConfigurationError(
            f"Configuration must be a mapping, got {type(data).__name__}",
            error_code=ErrorCodes.CONFIG_INVALID,
        )

    unknown = set(data) - _DRIVER_KEYS - {'transport', 'tolerances'}
    if unknown:
        raise ConfigurationError(
            f"Unknown configuration keys: {sorted(unknown)}",
            setting_name=sorted(unknown)[0],
            error_code=ErrorCodes.CONFIG_INVALID,
        )

    transport_raw = data.get('transport') or {}
    if not isinstance(transport_raw, dict):
        raise ConfigurationError(
            "'transport' must be a mapping",
            setting_name='transport',
            error_code=ErrorCodes.CONFIG_INVALID,
        )
    unknown = set(transport_raw) - _TRANSPORT_KEYS
    if unknown:
        raise ConfigurationError(
            f"Unknown transport keys: {sorted(unknown)}",
            setting_name=f"transport.{sorted(unknown)[0]}",
            error_code=ErrorCodes.CONFIG_INVALID,
        )

    config = DriverConfig(
        transport=TransportConfig(**transport_raw),
        tolerances=_parse_tolerances(data.get('tolerances')),
        **{key: value for key, value in data.items() if key in _DRIVER_KEYS},
    )

    try:
        valid, errors = config.validate()
    except TypeError as e:
        # e.g. a string where a number was expected
        raise wrap_external_error(
            e, f"Invalid configuration value: {e}", error_class=ConfigurationError
        ) from e
    if not valid:
        raise ConfigurationError(
            "Invalid configuration: " + "; ".join(errors),
            error_code=ErrorCodes.CONFIG_INVALID,
            context={'errors': errors},
        )
    return config


def load_driver_config(path: Union[str, Path]) -> DriverConfig:
    """
    Load a DriverConfig from a YAML file.

    An empty file yields the defaults.

    Raises:
        ConfigurationError: If the file is missing, unreadable, not valid
            YAML, or describes an invalid configuration
    """
    path = Path(path)
    if not path.is_file():
        raise ConfigurationError(
            f"Configuration file not found: {path}",
            setting_name=str(path),
            error_code=ErrorCodes.CONFIG_NOT_FOUND,
        )

    try:
        with open(path) as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise wrap_external_error(
            e, f"Failed to read configuration {path}: {e}",
            error_class=ConfigurationError, path=str(path)
        ) from e

    config = config_from_dict(data or {})
    logger.info(f"Loaded driver configuration from {path}")
    return config


def save_driver_config(config: DriverConfig, path: Union[str, Path]) -> None:
    """Write a DriverConfig as YAML (readable by load_driver_config)."""
    data = asdict(config)
    data['tolerances'] = {kind.value: value for kind, value in config.tolerances.items()}
    with open(path, 'w') as f:
        yaml.dump(data, f, default_flow_style=False, sort_keys=False, indent=2)
    logger.info(f"Wrote configuration to {path}")
