"""converge - Dependency-graph-driven infrastructure reconciliation engine."""

import threading
from typing import Optional
from .config import load_settings
from .engine import Engine
from .executor.results import ApplyResult
from .model.loader import load_declarations
from .planner.models import Plan
from .providers.registry import ProviderRegistry
from .utils.logging import setup_logging, get_logger
from .utils.errors import ConvergeError

__version__ = "0.1.0"

__all__ = ["plan", "apply", "destroy", "Engine"]

setup_logging()
logger = get_logger("converge")


def plan(
    declarations_path: str,
    config_path: str = None,
    destroy: bool = False,
    refresh: Optional[bool] = None,
    registry: Optional[ProviderRegistry] = None
) -> Plan:
    """Plan the changes needed to reconcile state with a declaration file."""
    try:
        logger.info(f"Planning from declarations: {declarations_path}")
        settings = load_settings(config_path)
        declarations = load_declarations(declarations_path)
        engine = Engine(settings, registry=registry)
        with engine.store.session("plan"):
            return engine.plan(declarations, destroy=destroy, refresh=refresh)
    except ConvergeError:
        raise
    except Exception as e:
        logger.error(f"Unexpected error during plan: {e}", exc_info=True)
        raise ConvergeError(f"Plan failed: {e}") from e


def apply(
    declarations_path: str,
    config_path: str = None,
    destroy: bool = False,
    registry: Optional[ProviderRegistry] = None,
    cancel_event: Optional[threading.Event] = None
) -> ApplyResult:
    """Plan and apply in one locked run."""
    try:
        settings = load_settings(config_path)
        declarations = load_declarations(declarations_path)
        engine = Engine(settings, registry=registry)
        with engine.store.session("destroy" if destroy else "apply"):
            run_plan = engine.plan(declarations, destroy=destroy)
            return engine.apply(run_plan, cancel_event=cancel_event)
    except ConvergeError:
        raise
    except Exception as e:
        logger.error(f"Unexpected error during apply: {e}", exc_info=True)
        raise ConvergeError(f"Apply failed: {e}") from e


def destroy(
    declarations_path: str,
    config_path: str = None,
    registry: Optional[ProviderRegistry] = None,
    cancel_event: Optional[threading.Event] = None
) -> ApplyResult:
    """Destroy everything recorded in state."""
    return apply(declarations_path, config_path, destroy=True, registry=registry, cancel_event=cancel_event)
