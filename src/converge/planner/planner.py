"""Diff desired declarations against recorded state to produce a Plan."""

from typing import Any, Callable, Dict, List, Optional, Sequence, Set
from .diff import compute_diff, compute_fingerprint
from .models import Action, Plan, PlanMetadata, PlanStep
from ..graph.dependency_graph import DependencyGraph
from ..model.models import ReferenceValue, ResourceAddress, ResourceDeclaration
from ..model.references import UNKNOWN, evaluate_attributes, is_unknown, lookup_path, resolve_references
from ..providers.registry import ProviderRegistry
from ..state.models import ResourceState, ResourceStatus
from ..utils.errors import ConvergeError, UnresolvedReferenceError
from ..utils.logging import get_logger

logger = get_logger("planner.planner")


def plan_summary_line(plan: Plan) -> str:
    """Terraform-style one line summary."""
    counts = plan.summary()
    add = counts[Action.CREATE.value] + counts[Action.REPLACE.value]
    change = counts[Action.UPDATE.value]
    destroy = counts[Action.DESTROY.value] + counts[Action.REPLACE.value]
    return f"{add} to add, {change} to change, {destroy} to destroy"


class Planner:
    """
    Pure function of (declarations, recorded state) -> Plan.

    The planner reads providers only for replacement policy and, when
    refreshing, to check that recorded objects still exist. It never writes
    state.
    """

    def __init__(self, registry: ProviderRegistry):
        self.registry = registry

    def plan(
        self,
        declarations: Sequence[ResourceDeclaration],
        state: Dict[ResourceAddress, ResourceState],
        destroy: bool = False,
        refresh: bool = False,
        metadata: Optional[PlanMetadata] = None
    ) -> Plan:
        """
        Build a plan.

        Args:
            declarations: Desired state
            state: Snapshot of the state store
            destroy: Plan removal of everything in state
            refresh: Ask providers whether recorded objects still exist
            metadata: Plan metadata to attach (state serial, digest, ...)

        Returns:
            Plan whose step order is a valid serial execution order:
            destroys first (dependents before dependencies), then every
            declared address in topological order. A destroy that must wait
            for a declared step moves after it.

        Raises:
            UnknownReferenceError, CyclicDependencyError, UnknownKindError,
            UnresolvedReferenceError: The declaration set cannot be planned
        """
        edges = resolve_references(declarations)
        graph = DependencyGraph()
        graph.build_from_declarations(declarations, edges)

        for declaration in declarations:
            self.registry.get(declaration.kind)

        by_address = {declaration.address: declaration for declaration in declarations}
        if destroy:
            orphans = set(state)
            declared_steps: List[PlanStep] = []
        else:
            orphans = set(state) - set(by_address)
            declared_steps = self._plan_declared(graph, by_address, state, refresh)

        destroy_steps = self._plan_destroys(state, orphans, destroy)
        self._order_replacements_after_destroys(declared_steps, destroy_steps, state)
        self._order_destroys_after_dependents(declared_steps, destroy_steps, state)

        plan = Plan(
            metadata=metadata or PlanMetadata(destroy=destroy, refresh=refresh),
            steps=_execution_order(destroy_steps + declared_steps),
        )
        plan.metadata.destroy = destroy
        plan.metadata.refresh = refresh
        logger.info(f"Plan: {plan_summary_line(plan)}")
        return plan

    def _planning_resolver(
        self,
        steps: Dict[ResourceAddress, PlanStep],
        state: Dict[ResourceAddress, ResourceState]
    ) -> Callable[[ReferenceValue], Any]:
        """Resolve references against this run's planned values, then state."""

        def resolve(ref: ReferenceValue) -> Any:
            step = steps.get(ref.address)
            if step is None:
                raise UnresolvedReferenceError(
                    "${" + ref.render() + "}",
                    f"{ref.address} has not been planned before its dependents",
                )
            prior = state.get(ref.address)
            if step.action == Action.NOOP and prior is not None:
                return lookup_path(prior.values(), ref)
            # Providers may rewrite inputs in what they return, so only the id
            # of an object updated in place is known before apply. A deferred
            # update can still turn into a replacement.
            if step.action == Action.UPDATE and not step.deferred and prior is not None and ref.path == ["id"]:
                return prior.provider_id
            return UNKNOWN

        return resolve

    def _plan_declared(
        self,
        graph: DependencyGraph,
        by_address: Dict[ResourceAddress, ResourceDeclaration],
        state: Dict[ResourceAddress, ResourceState],
        refresh: bool
    ) -> List[PlanStep]:
        steps: Dict[ResourceAddress, PlanStep] = {}
        resolve = self._planning_resolver(steps, state)

        for address in graph.topological_order():
            declaration = by_address[address]
            provider = self.registry.get(declaration.kind)
            prior = state.get(address)
            reason = ""

            if prior is not None and prior.status == ResourceStatus.ABSENT:
                prior = None
                reason = "recorded as absent"
            if prior is not None and refresh and prior.status == ResourceStatus.PRESENT:
                try:
                    observed = provider.read(prior.provider_id)
                except Exception as e:
                    raise ConvergeError(f"Refresh of {address} failed: {e}") from e
                if observed is None:
                    logger.warning(f"{address} no longer exists ({prior.provider_id}); planning re-creation")
                    prior = None
                    reason = "object no longer exists"

            desired = evaluate_attributes(declaration, resolve)
            deferred = is_unknown(desired)

            if prior is None:
                action = Action.CREATE
                reason = reason or "not in state"
            elif prior.status == ResourceStatus.TAINTED:
                action = Action.REPLACE
                reason = "tainted"
            elif deferred:
                action = Action.UPDATE
                reason = "depends on values known only after apply"
            elif compute_fingerprint(desired) == prior.fingerprint:
                action = Action.NOOP
            elif provider.requires_replacement(prior.attributes, desired):
                action = Action.REPLACE
                reason = "change requires replacement"
            else:
                action = Action.UPDATE
                reason = "attributes changed"

            step = PlanStep(
                address=address,
                action=action,
                diff={} if action == Action.NOOP else compute_diff(prior.attributes if prior else None, desired),
                desired=desired,
                prior_fingerprint=prior.fingerprint if prior else None,
                declaration=declaration,
                requires=graph.dependencies_of(address),
                deferred=deferred,
                reason=reason,
            )
            steps[address] = step
            logger.debug(f"Planned {action.value} for {address}{f' ({reason})' if reason else ''}")

        return list(steps.values())

    def _plan_destroys(
        self,
        state: Dict[ResourceAddress, ResourceState],
        orphans: Set[ResourceAddress],
        destroy: bool
    ) -> List[PlanStep]:
        """Destroy steps in reverse topological order over recorded dependencies."""
        if not orphans:
            return []

        recorded = DependencyGraph()
        recorded.build_from_dependencies({address: record.dependencies for address, record in state.items()})

        steps: List[PlanStep] = []
        for address in reversed(recorded.topological_order()):
            if address not in orphans:
                continue
            self.registry.get(address.kind)
            record = state[address]
            dependents = sorted(
                (other for other in orphans if address in state[other].dependencies),
                key=str,
            )
            steps.append(PlanStep(
                address=address,
                action=Action.DESTROY,
                diff=compute_diff(record.attributes, None),
                prior_fingerprint=record.fingerprint,
                requires=dependents,
                reason="destroy requested" if destroy else "no longer declared",
            ))
        return steps

    def _order_replacements_after_destroys(
        self,
        declared_steps: List[PlanStep],
        destroy_steps: List[PlanStep],
        state: Dict[ResourceAddress, ResourceState]
    ) -> None:
        """A replaced object must outlive every orphan that still references it."""
        destroyed = {step.address for step in destroy_steps}
        for step in declared_steps:
            if step.action != Action.REPLACE:
                continue
            for orphan in sorted(destroyed, key=str):
                if step.address in state[orphan].dependencies and orphan not in step.requires:
                    step.requires.append(orphan)

    def _order_destroys_after_dependents(
        self,
        declared_steps: List[PlanStep],
        destroy_steps: List[PlanStep],
        state: Dict[ResourceAddress, ResourceState]
    ) -> None:
        """
        An orphan is destroyed only after declared objects recorded as
        referencing it have been moved off it.

        No-op steps keep their recorded references and are left alone. An
        edge that would close a cycle with the declared order is dropped with
        a warning; the destroy then runs in its usual place.
        """
        order = _requires_graph(destroy_steps + declared_steps)
        for destroy_step in destroy_steps:
            for step in declared_steps:
                prior = state.get(step.address)
                if step.action == Action.NOOP or prior is None:
                    continue
                if destroy_step.address not in prior.dependencies or step.address in destroy_step.requires:
                    continue
                if destroy_step.address in order.get_upstream_resources(step.address):
                    logger.warning(
                        f"{step.address} must be applied after {destroy_step.address} is destroyed; "
                        f"destroying it while still referenced"
                    )
                    continue
                destroy_step.requires.append(step.address)
                order.add_edge(destroy_step.address, step.address)


def _requires_graph(steps: List[PlanStep]) -> DependencyGraph:
    """Graph of `requires` between steps, positioned by plan order."""
    graph = DependencyGraph()
    for step in steps:
        graph.add_node(step.address)
    for step in steps:
        for requirement in step.requires:
            graph.add_edge(step.address, requirement)
    return graph


def _execution_order(steps: List[PlanStep]) -> List[PlanStep]:
    """Stable reorder so every step follows the steps it requires."""
    by_address = {step.address: step for step in steps}
    return [by_address[address] for address in _requires_graph(steps).topological_order() if address in by_address]
