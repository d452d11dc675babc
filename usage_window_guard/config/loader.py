"""
Configuration management and loading.

Handles the optional YAML settings file for the monitor.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

MIN_CUSTOM_LIMIT = 1_000
MAX_CUSTOM_LIMIT = 1_000_000
MIN_REFRESH_INTERVAL = 5
DEFAULT_REFRESH_INTERVAL = 60
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


@dataclass(frozen=True)
class MonitorConfig:
    """Validated monitor settings."""
    custom_limit: Optional[int] = None
    projects_path: Optional[Path] = None
    refresh_interval_seconds: int = DEFAULT_REFRESH_INTERVAL
    log_level: str = "WARNING"

    def __post_init__(self):
        """Validate settings are reasonable."""
        if not is_valid_custom_limit(self.custom_limit):
            raise ValueError(
                f"custom_limit must be between {MIN_CUSTOM_LIMIT:,} and {MAX_CUSTOM_LIMIT:,} tokens"
            )
        if self.refresh_interval_seconds < MIN_REFRESH_INTERVAL:
            raise ValueError(f"refresh_interval_seconds must be >= {MIN_REFRESH_INTERVAL}")
        if self.log_level not in LOG_LEVELS:
            raise ValueError(f"log_level must be one of: {list(LOG_LEVELS)}")

    @classmethod
    def default(cls) -> "MonitorConfig":
        return cls()


def is_valid_custom_limit(limit: Optional[int]) -> bool:
    """A custom limit is either unset or within 1K-1M tokens."""
    if limit is None:
        return True
    return MIN_CUSTOM_LIMIT <= limit <= MAX_CUSTOM_LIMIT


def load_monitor_config(path: str) -> MonitorConfig:
    """Load and validate monitor configuration from a YAML file.

    Strict validation: unknown keys and wrong types are rejected rather
    than silently ignored.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated MonitorConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if raw_config is None:
        return MonitorConfig.default()

    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a mapping")

    return _parse_config(raw_config)


def _parse_config(data: Dict[str, Any]) -> MonitorConfig:
    allowed_keys = {'custom_limit', 'projects_path', 'refresh_interval_seconds', 'log_level'}
    unknown_keys = set(data.keys()) - allowed_keys
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    custom_limit = data.get('custom_limit')
    if custom_limit is not None:
        if isinstance(custom_limit, bool) or not isinstance(custom_limit, int):
            raise ValueError("'custom_limit' must be an integer or null")

    projects_path = data.get('projects_path')
    if projects_path is not None:
        if not isinstance(projects_path, str) or not projects_path.strip():
            raise ValueError("'projects_path' must be a non-empty string")
        projects_path = Path(projects_path).expanduser()

    interval = data.get('refresh_interval_seconds', DEFAULT_REFRESH_INTERVAL)
    if isinstance(interval, bool) or not isinstance(interval, int):
        raise ValueError("'refresh_interval_seconds' must be an integer")

    log_level = data.get('log_level', "WARNING")
    if not isinstance(log_level, str):
        raise ValueError("'log_level' must be a string")

    return MonitorConfig(
        custom_limit=custom_limit,
        projects_path=projects_path,
        refresh_interval_seconds=interval,
        log_level=log_level.upper(),
    )
