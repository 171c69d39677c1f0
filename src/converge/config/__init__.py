"""Configuration module: load engine settings from YAML, environment and flags."""

from typing import Any, Dict, Optional
from pydantic import ValidationError
from ..utils.errors import ConfigError
from ..utils.logging import get_logger
from .manager import load_config, config_search_paths
from .settings import EngineSettings

logger = get_logger("config")


def load_settings(config_path: Optional[str] = None, overrides: Optional[Dict[str, Any]] = None) -> EngineSettings:
    """
    Resolve engine settings.

    Settings live under the `engine:` key of the config files, e.g.::

        engine:
          state_dir: .converge/state
          parallelism: 4
          max_attempts: 5

    Args:
        config_path: Optional explicit config file
        overrides: Values from CLI flags; None entries are ignored

    Returns:
        Validated EngineSettings

    Raises:
        ConfigError: If the configuration is invalid
    """
    config = load_config(config_path)
    engine = config.get("engine", {})
    if not isinstance(engine, dict):
        raise ConfigError("'engine' section must be a dictionary")

    values = dict(engine)
    for key, value in (overrides or {}).items():
        if value is not None:
            values[key] = value

    try:
        settings = EngineSettings(**values)
    except ValidationError as e:
        raise ConfigError(f"Invalid engine settings: {e}")

    logger.debug(f"Engine settings: {settings.model_dump()}")
    return settings


__all__ = ["EngineSettings", "load_settings", "load_config", "config_search_paths"]
