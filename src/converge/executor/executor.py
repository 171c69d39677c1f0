"""Apply a Plan through resource providers, committing state step by step."""

import heapq
import logging
import threading
import time
from collections import defaultdict
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Any, Callable, Dict, List, Optional, Set
from tenacity import Retrying, before_sleep_log, retry_if_exception_type, stop_after_attempt, wait_exponential
from .results import ApplyResult, ResultCollector
from ..config.settings import EngineSettings
from ..model.models import ReferenceValue, ResourceAddress
from ..model.references import evaluate_attributes, is_unknown, lookup_path
from ..planner.diff import compute_fingerprint
from ..planner.models import Action, Plan, PlanStep
from ..providers.base import ResourceProvider
from ..providers.registry import ProviderRegistry
from ..state.models import ResourceState, ResourceStatus
from ..state.store import StateStore
from ..utils.errors import ApplyError, ProviderTransientError, StateStoreError, UnresolvedReferenceError
from ..utils.logging import get_logger

logger = get_logger("executor.executor")


class Executor:
    """
    Walks a plan in dependency order.

    Steps with no ancestor/descendant relationship run concurrently, bounded
    by `settings.parallelism`. A step starts only after every step it
    requires has committed its state. A failed step skips everything that
    depends on it; independent steps keep going.
    """

    def __init__(self, registry: ProviderRegistry, store: StateStore, settings: Optional[EngineSettings] = None):
        self.registry = registry
        self.store = store
        self.settings = settings or EngineSettings()

    def apply(self, plan: Plan, cancel_event: Optional[threading.Event] = None) -> ApplyResult:
        """
        Execute a plan against the (open) state store.

        Args:
            plan: Plan produced by the planner
            cancel_event: Once set, no new step is dispatched; running
                provider calls finish and are recorded

        Returns:
            ApplyResult listing applied, unchanged, failed and skipped addresses
        """
        started = time.monotonic()
        cancel_event = cancel_event or threading.Event()
        run = _ApplyRun(self, plan)
        collector = ResultCollector()

        steps = {step.address: step for step in plan.steps}
        position = {step.address: idx for idx, step in enumerate(plan.steps)}
        waiting: Dict[ResourceAddress, Set[ResourceAddress]] = {
            address: {req for req in step.requires if req in steps and req != address}
            for address, step in steps.items()
        }
        dependents: Dict[ResourceAddress, Set[ResourceAddress]] = defaultdict(set)
        for address, requirements in waiting.items():
            for requirement in requirements:
                dependents[requirement].add(address)

        ready: List = []

        def release(address: ResourceAddress) -> None:
            for dependent in dependents[address]:
                if dependent in waiting:
                    waiting[dependent].discard(address)
                    if not waiting[dependent]:
                        del waiting[dependent]
                        heapq.heappush(ready, (position[dependent], dependent))

        def skip_dependents(address: ResourceAddress) -> None:
            pending = list(dependents[address])
            while pending:
                dependent = pending.pop()
                if dependent in waiting:
                    del waiting[dependent]
                    collector.record_skipped(str(dependent), f"depends on failed {address}")
                    logger.warning(f"Skipping {dependent}: depends on failed {address}")
                    pending.extend(dependents[dependent])

        for address in [a for a, reqs in waiting.items() if not reqs]:
            del waiting[address]
            heapq.heappush(ready, (position[address], address))

        parallelism = max(1, self.settings.parallelism)
        running: Dict[Future, ResourceAddress] = {}
        logger.info(f"Applying {len(plan.changes)} changes with parallelism {parallelism}")

        with ThreadPoolExecutor(max_workers=parallelism, thread_name_prefix="converge-apply") as pool:
            while ready or running:
                while ready and len(running) < parallelism and not cancel_event.is_set():
                    _, address = heapq.heappop(ready)
                    step = steps[address]
                    if step.action == Action.NOOP:
                        run.record_unchanged(address)
                        collector.record_unchanged(str(address))
                        release(address)
                        continue
                    running[pool.submit(run.execute, step)] = address

                if not running:
                    break

                done, _ = wait(list(running), return_when=FIRST_COMPLETED)
                for future in done:
                    address = running.pop(future)
                    try:
                        performed = future.result()
                    except ApplyError as e:
                        logger.error(f"Apply failed: {e}")
                        collector.record_failure(str(address), str(e))
                        skip_dependents(address)
                        continue
                    except Exception as e:
                        logger.error(f"Unexpected error applying {address}: {e}", exc_info=True)
                        collector.record_failure(str(address), f"unexpected error: {e}")
                        skip_dependents(address)
                        continue
                    if performed == Action.NOOP.value:
                        collector.record_unchanged(str(address))
                    else:
                        collector.record_applied(str(address), performed)
                    release(address)

        leftover = [address for _, address in sorted(ready)] + sorted(waiting, key=position.__getitem__)
        if leftover:
            reason = "cancelled" if cancel_event.is_set() else "not reached"
            for address in leftover:
                collector.record_skipped(str(address), reason)
            if cancel_event.is_set():
                collector.mark_cancelled()
                logger.warning(f"Apply cancelled; {len(leftover)} steps were not started")

        result = collector.finalize(time.monotonic() - started)
        logger.info(
            f"Apply complete: {len(result.applied)} applied, {len(result.failed)} failed, "
            f"{len(result.skipped)} skipped, {len(result.unchanged)} unchanged"
        )
        return result


class _ApplyRun:
    """Per-run context: the in-run value mapping and step execution."""

    def __init__(self, executor: Executor, plan: Plan):
        self.registry = executor.registry
        self.store = executor.store
        self.settings = executor.settings
        self.plan = plan
        self._values: Dict[ResourceAddress, Dict[str, Any]] = {}
        self._values_lock = threading.Lock()

    def _remember(self, address: ResourceAddress, values: Dict[str, Any]) -> None:
        with self._values_lock:
            self._values[address] = values

    def record_unchanged(self, address: ResourceAddress) -> None:
        record = self.store.get(address)
        if record is not None:
            self._remember(address, record.values())

    def _resolve(self, ref: ReferenceValue) -> Any:
        with self._values_lock:
            values = self._values.get(ref.address)
        if values is None:
            record = self.store.get(ref.address)
            if record is None or record.status == ResourceStatus.ABSENT:
                raise UnresolvedReferenceError("${" + ref.render() + "}", f"{ref.address} has no applied state")
            values = record.values()
        return lookup_path(values, ref)

    def _call(self, address: ResourceAddress, fn: Callable[..., Any], *args: Any) -> Any:
        """Invoke a provider operation, retrying transient errors with backoff."""
        retrying = Retrying(
            retry=retry_if_exception_type(ProviderTransientError),
            stop=stop_after_attempt(self.settings.max_attempts),
            wait=wait_exponential(multiplier=self.settings.backoff_initial, max=self.settings.backoff_max),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        operation = getattr(fn, "__name__", "operation")
        try:
            return retrying(fn, *args)
        except ProviderTransientError as e:
            raise ApplyError(
                str(address),
                f"{operation} failed after {self.settings.max_attempts} attempts: {e}",
                attempts=self.settings.max_attempts,
            ) from e
        except Exception as e:
            raise ApplyError(str(address), f"{operation} failed: {e}") from e

    def _commit(self, record: ResourceState) -> None:
        try:
            self.store.put(record)
        except StateStoreError as e:
            raise ApplyError(
                str(record.address),
                f"applied as {record.provider_id} but state could not be written: {e}",
            ) from e
        self._remember(record.address, record.values())

    def _forget(self, address: ResourceAddress) -> None:
        try:
            self.store.delete(address)
        except StateStoreError as e:
            raise ApplyError(str(address), f"destroyed but state could not be updated: {e}") from e

    def execute(self, step: PlanStep) -> str:
        """Apply one step; returns the action actually performed."""
        address = step.address
        provider = self.registry.get(address.kind)

        if step.action == Action.DESTROY:
            return self._destroy(step, provider)

        if step.declaration is None:
            raise ApplyError(str(address), "plan step carries no declaration")
        try:
            desired = evaluate_attributes(step.declaration, self._resolve)
        except UnresolvedReferenceError as e:
            raise ApplyError(str(address), str(e)) from e
        if is_unknown(desired):
            raise ApplyError(str(address), "attribute values are still unknown at apply time")

        prior = self.store.get(address)
        if prior is not None and prior.status == ResourceStatus.ABSENT:
            prior = None

        action = step.action
        if prior is None:
            action = Action.CREATE
        elif step.deferred and action == Action.UPDATE:
            if compute_fingerprint(desired) == prior.fingerprint:
                self._remember(address, prior.values())
                logger.info(f"{address}: no changes once references were known")
                return Action.NOOP.value
            if provider.requires_replacement(prior.attributes, desired):
                action = Action.REPLACE

        dependencies = step.declaration.dependencies()
        logger.info(f"{address}: {action.value} started")

        if action == Action.REPLACE:
            self._call(address, provider.destroy, prior.provider_id)
            self._commit(prior.model_copy(update={"status": ResourceStatus.ABSENT}))
            action_done = Action.REPLACE
            prior = None
        else:
            action_done = action

        if prior is None:
            created = self._call(address, provider.create, desired)
            record = ResourceState.from_apply(address, created.provider_id, desired, created.attributes, dependencies)
        else:
            outputs = self._call(address, provider.update, prior.provider_id, desired)
            record = ResourceState.from_apply(address, prior.provider_id, desired, outputs or {}, dependencies)

        self._commit(record)
        logger.info(f"{address}: {action_done.value} complete (id {record.provider_id})")
        return action_done.value

    def _destroy(self, step: PlanStep, provider: ResourceProvider) -> str:
        address = step.address
        prior = self.store.get(address)
        if prior is None:
            logger.info(f"{address}: already absent from state")
            return Action.DESTROY.value
        if prior.status != ResourceStatus.ABSENT:
            logger.info(f"{address}: destroy started")
            self._call(address, provider.destroy, prior.provider_id)
        self._forget(address)
        logger.info(f"{address}: destroy complete")
        return Action.DESTROY.value
