# ABOUTME: Configuration parser for the Shelly BLU exporter
# ABOUTME: Loads and validates YAML config with scan timing, device ids and logging options
from dataclasses import dataclass
from typing import Dict

import yaml


DEFAULT_LOG_FILE = "./logs/blu_exporter.log"
LOG_LEVELS = ('DEBUG', 'INFO', 'WARNING', 'ERROR')


@dataclass
class AppConfig:
    """Application configuration loaded from YAML file."""
    scan_interval_seconds: int
    scan_duration_seconds: int
    listen_port: int
    devices: Dict[str, str]  # device id (uppercase address) -> friendly name
    log_file: str = DEFAULT_LOG_FILE
    log_level: str = "INFO"
    log_raw_advertisements: bool = False


def load_config(path: str) -> AppConfig:
    """
    Load and validate application configuration from YAML file.

    Args:
        path: Path to YAML config file

    Returns:
        AppConfig instance with validated configuration

    Raises:
        ValueError: If config is invalid or missing required keys
    """
    try:
        with open(path, 'r') as f:
            data = yaml.safe_load(f)
    except FileNotFoundError as e:
        raise ValueError(f"Config file not found: {path}") from e
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in config file: {e}") from e

    if not isinstance(data, dict):
        raise ValueError("Config file must contain a YAML mapping")

    required_keys = ['scan_interval_seconds', 'scan_duration_seconds', 'listen_port', 'devices']
    missing_keys = [key for key in required_keys if key not in data]
    if missing_keys:
        raise ValueError(f"Missing required config keys: {', '.join(missing_keys)}")

    if not isinstance(data['devices'], dict):
        raise ValueError("'devices' must be a mapping of device ids to names")

    log_level = str(data.get('log_level', 'INFO')).upper()
    if log_level not in LOG_LEVELS:
        raise ValueError(f"Invalid log_level '{log_level}', expected one of: {', '.join(LOG_LEVELS)}")

    # Shelly device ids are rendered uppercase by the decoder
    devices = {str(device_id).upper(): name for device_id, name in data['devices'].items()}

    return AppConfig(
        scan_interval_seconds=data['scan_interval_seconds'],
        scan_duration_seconds=data['scan_duration_seconds'],
        listen_port=data['listen_port'],
        devices=devices,
        log_file=data.get('log_file', DEFAULT_LOG_FILE),
        log_level=log_level,
        log_raw_advertisements=bool(data.get('log_raw_advertisements', False))
    )
