"""Wire declarations, planner, executor and state store together."""

import threading
from typing import Optional, Sequence
from .config.settings import EngineSettings
from .executor.executor import Executor
from .executor.results import ApplyResult
from .model.models import ResourceDeclaration
from .planner.models import Plan, PlanMetadata
from .planner.planner import Planner
from .providers.registry import ProviderRegistry, default_registry
from .state.store import FileStateStore, StateStore
from .utils.errors import StalePlanError
from .utils.logging import get_logger

logger = get_logger("engine")


class Engine:
    """
    One reconciliation context: settings, provider registry and state store.

    The store must be open (see `StateStore.session`) around `plan` and
    `apply`; holding it open across both keeps the lock for the whole run.
    """

    def __init__(
        self,
        settings: Optional[EngineSettings] = None,
        registry: Optional[ProviderRegistry] = None,
        store: Optional[StateStore] = None
    ):
        self.settings = settings or EngineSettings()
        self.registry = registry or default_registry()
        self.store = store or FileStateStore(self.settings.state_dir, lock_timeout=self.settings.lock_timeout)
        self.planner = Planner(self.registry)
        self.executor = Executor(self.registry, self.store, self.settings)

    def plan(
        self,
        declarations: Sequence[ResourceDeclaration],
        destroy: bool = False,
        refresh: Optional[bool] = None
    ) -> Plan:
        """Plan against the current contents of the store."""
        from . import __version__

        metadata = PlanMetadata(
            state_serial=self.store.serial,
            state_lineage=self.store.lineage,
            state_digest=self.store.digest(),
            engine_version=__version__,
        )
        return self.planner.plan(
            declarations,
            self.store.snapshot(),
            destroy=destroy,
            refresh=self.settings.refresh if refresh is None else refresh,
            metadata=metadata,
        )

    def check_plan(self, plan: Plan) -> None:
        """
        Reject a saved plan if state changed since it was computed.

        Raises:
            StalePlanError: If the state digest no longer matches
        """
        current = self.store.digest()
        if plan.metadata.state_digest and plan.metadata.state_digest != current:
            raise StalePlanError(
                f"Saved plan was created against state serial {plan.metadata.state_serial}, "
                f"but state is now at serial {self.store.serial}. Re-run plan."
            )

    def apply(self, plan: Plan, cancel_event: Optional[threading.Event] = None) -> ApplyResult:
        """Execute a plan after verifying it still matches the store."""
        self.check_plan(plan)
        if not plan.has_changes:
            logger.info("No changes. Infrastructure matches the declarations.")
        return self.executor.apply(plan, cancel_event=cancel_event)
