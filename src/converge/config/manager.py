"""Layered configuration: user file, project file, explicit file, environment."""

import os
import yaml
from pathlib import Path
from typing import Any, Dict, List, Optional
from ..utils.errors import ConfigError
from ..utils.logging import get_logger

logger = get_logger("config.manager")

ENV_PREFIX = "CONVERGE_"
ENV_KEYS = {
    "STATE_DIR": "state_dir",
    "PARALLELISM": "parallelism",
    "MAX_ATTEMPTS": "max_attempts",
    "BACKOFF_INITIAL": "backoff_initial",
    "BACKOFF_MAX": "backoff_max",
    "LOCK_TIMEOUT": "lock_timeout",
    "REFRESH": "refresh",
}


def config_search_paths() -> List[Path]:
    """User config (~/.converge/config.yaml) then project config (./.converge/config.yaml)."""
    return [
        Path.home() / ".converge" / "config.yaml",
        Path.cwd() / ".converge" / "config.yaml",
    ]


def _read_yaml(path: Path) -> Dict[str, Any]:
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in config file {path}: {e}")
    except OSError as e:
        raise ConfigError(f"Error reading config file {path}: {e}")

    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a dictionary")
    return data


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load the merged config tree.

    Later sources override earlier ones: user file, project file, then
    `config_path` when given, then CONVERGE_* environment variables.

    Args:
        config_path: Explicit config file; must exist when given

    Returns:
        Merged configuration dictionary

    Raises:
        ConfigError: If a config file is unreadable or invalid
    """
    config: Dict[str, Any] = {}
    for path in config_search_paths():
        if path.exists():
            _deep_merge(config, _read_yaml(path))
            logger.debug(f"Loaded config from {path}")

    if config_path is not None:
        explicit = Path(config_path)
        if not explicit.exists():
            raise ConfigError(f"Config file not found: {config_path}")
        _deep_merge(config, _read_yaml(explicit))
        logger.info(f"Loaded config from {explicit}")

    env_overrides = _environment_overrides()
    if env_overrides:
        _deep_merge(config, {"engine": env_overrides})

    return config


def _environment_overrides() -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    for suffix, key in ENV_KEYS.items():
        value = os.getenv(ENV_PREFIX + suffix)
        if value is not None and value != "":
            overrides[key] = value
    return overrides


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> None:
    """Deep merge override into base (mutates base)."""
    for key, value in override.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value
