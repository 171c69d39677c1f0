"""Shared fixtures: a recording fake provider, registries and stores."""

import threading
import time
from typing import Any, Callable, Dict, List, Optional, Tuple
import pytest
import yaml
from converge.config.settings import EngineSettings
from converge.engine import Engine
from converge.model.loader import parse_declarations
from converge.providers.base import ProviderResult, changed_keys
from converge.providers.registry import ProviderRegistry
from converge.state.store import MemoryStateStore


class FakeProvider:
    """
    In-memory provider that logs every call.

    Each declaration used in tests carries a `name` attribute, which is what
    the shared call log records. Failures are injected with `fail()`.
    """

    def __init__(self, kind: str, log: List[Tuple[str, str]], replace_keys=(), delay: float = 0.0):
        self.kind = kind
        self.log = log
        self.replace_keys = set(replace_keys)
        self.delay = delay
        self.objects: Dict[str, Dict[str, Any]] = {}
        self.failures: List[list] = []
        self.before_call: Optional[Callable[[str, Any], None]] = None
        self.active = 0
        self.max_active = 0
        self._counter = 0
        self._lock = threading.Lock()

    def fail(self, operation: str, exception: Exception, when: Optional[Callable[[Any], bool]] = None, times: Optional[int] = None):
        """Raise `exception` from `operation` when `when(payload)` holds, at most `times` times."""
        self.failures.append([operation, when or (lambda payload: True), exception, times])

    def _enter(self, operation: str, payload: Any, label: str) -> None:
        if self.before_call is not None:
            self.before_call(operation, payload)
        with self._lock:
            self.log.append((operation, label))
            for failure in self.failures:
                op, when, exception, times = failure
                if op == operation and when(payload) and (times is None or times > 0):
                    if times is not None:
                        failure[3] = times - 1
                    raise exception
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        if self.delay:
            time.sleep(self.delay)

    def _exit(self) -> None:
        with self._lock:
            self.active -= 1

    def create(self, attributes):
        self._enter("create", attributes, str(attributes.get("name")))
        try:
            with self._lock:
                self._counter += 1
                provider_id = f"{self.kind}-{self._counter}"
                self.objects[provider_id] = dict(attributes)
            return ProviderResult(provider_id=provider_id, attributes={"id": provider_id, "arn": f"arn:{provider_id}"})
        finally:
            self._exit()

    def read(self, provider_id):
        with self._lock:
            data = self.objects.get(provider_id)
        return dict(data, id=provider_id) if data is not None else None

    def update(self, provider_id, attributes):
        self._enter("update", attributes, str(attributes.get("name")))
        try:
            with self._lock:
                self.objects[provider_id] = dict(attributes)
            return {"id": provider_id, "arn": f"arn:{provider_id}"}
        finally:
            self._exit()

    def destroy(self, provider_id):
        label = str(self.objects.get(provider_id, {}).get("name", provider_id))
        self._enter("destroy", provider_id, label)
        try:
            with self._lock:
                self.objects.pop(provider_id, None)
        finally:
            self._exit()

    def requires_replacement(self, old_attributes, new_attributes):
        return bool(self.replace_keys & changed_keys(old_attributes, new_attributes))


@pytest.fixture
def call_log():
    """Calls across every fake provider, in the order they happened."""
    return []


@pytest.fixture
def providers(call_log):
    """Fake providers for the kinds used in tests."""
    return {
        "aws_vpc": FakeProvider("aws_vpc", call_log, replace_keys={"cidr_block"}),
        "aws_subnet": FakeProvider("aws_subnet", call_log, replace_keys={"vpc_id"}),
        "thing": FakeProvider("thing", call_log),
    }


@pytest.fixture
def registry(providers):
    """Registry wired to the fake providers."""
    reg = ProviderRegistry()
    for kind, provider in providers.items():
        reg.register(kind, provider)
    return reg


@pytest.fixture
def settings(tmp_path):
    """Settings with instant retries."""
    return EngineSettings(state_dir=tmp_path / "state", backoff_initial=0, backoff_max=0, parallelism=4)


@pytest.fixture
def store():
    """In-memory state store."""
    return MemoryStateStore()


@pytest.fixture
def engine(settings, registry, store):
    """Engine over fake providers and an in-memory store."""
    return Engine(settings, registry=registry, store=store)


def declarations(text: str):
    """Parse declarations from inline YAML."""
    return parse_declarations(yaml.safe_load(text))


def run(engine: Engine, decls, destroy: bool = False, cancel_event=None):
    """Plan and apply in one locked session; returns (plan, result)."""
    with engine.store.session("apply"):
        plan = engine.plan(decls, destroy=destroy)
        result = engine.apply(plan, cancel_event=cancel_event)
    return plan, result


def plan_only(engine: Engine, decls, destroy: bool = False, refresh: Optional[bool] = None):
    """Plan in a read-only session."""
    with engine.store.session("plan"):
        return engine.plan(decls, destroy=destroy, refresh=refresh)


VPC_AND_SUBNET = """
resources:
  - kind: aws_vpc
    name: main
    attributes:
      name: vpc
      cidr_block: 10.0.0.0/16
  - kind: aws_subnet
    name: a
    attributes:
      name: subnet
      vpc_id: ${aws_vpc.main.id}
      cidr_block: 10.0.1.0/24
"""
