"""CLI utilities package."""

from typing import Any, Optional
from ...config import load_settings
from ...engine import Engine
from ...model.loader import load_declarations
from ...utils.logging import get_logger
from .file_resolver import resolve_file_path

logger = get_logger("cli.utils")


def format_error(message: str, suggestion: Optional[str] = None) -> str:
    """
    Format error message with optional suggestion.

    Args:
        message: Error message
        suggestion: Optional suggestion or help text

    Returns:
        Formatted error string
    """
    error = f"Error: {message}"
    if suggestion:
        error += f"\nTip: {suggestion}"
    return error


def build_engine(config_path: Optional[str] = None, **overrides: Any) -> Engine:
    """
    Create an Engine from config files, environment and CLI flag overrides.

    Args:
        config_path: Optional explicit config file
        **overrides: EngineSettings fields from flags; None means "not given"

    Returns:
        Engine with a file-backed state store
    """
    settings = load_settings(config_path, overrides)
    logger.debug(f"Using state directory {settings.state_dir}")
    return Engine(settings)


def load_declaration_file(file_path: str):
    """Resolve and load a declaration file given on the command line."""
    return load_declarations(resolve_file_path(file_path))


__all__ = ["resolve_file_path", "format_error", "build_engine", "load_declaration_file"]
