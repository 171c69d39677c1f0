"""Tests for plan execution."""

import threading
import pytest
from converge.engine import Engine
from converge.executor.results import ApplyResult
from converge.model.models import ResourceAddress
from converge.state.models import ResourceStatus
from converge.utils.errors import ProviderTransientError, StalePlanError, StateStoreError
from conftest import VPC_AND_SUBNET, declarations, plan_only, run

CHAIN = """
resources:
  - {kind: thing, name: a, attributes: {name: a}}
  - {kind: thing, name: b, attributes: {name: b, up: "${thing.a.id}"}}
  - {kind: thing, name: c, attributes: {name: c, up: "${thing.b.id}"}}
  - {kind: thing, name: solo, attributes: {name: solo}}
"""


def addr(text):
    return ResourceAddress.parse(text)


class TestApply:
    """End-to-end apply against fake providers."""

    def test_create_vpc_then_subnet(self, engine, store, call_log):
        """The subnet is created with the VPC's real id."""
        _, result = run(engine, declarations(VPC_AND_SUBNET))

        assert result.success
        assert result.exit_code == 0
        assert result.applied == {"aws_vpc.main": "create", "aws_subnet.a": "create"}
        assert call_log == [("create", "vpc"), ("create", "subnet")]
        with store.session():
            vpc = store.get(addr("aws_vpc.main"))
            subnet = store.get(addr("aws_subnet.a"))
        assert subnet.attributes["vpc_id"] == vpc.provider_id
        assert subnet.dependencies == [addr("aws_vpc.main")]

    def test_second_apply_makes_no_calls(self, engine, call_log):
        decls = declarations(VPC_AND_SUBNET)
        run(engine, decls)
        call_log.clear()

        _, result = run(engine, decls)
        assert call_log == []
        assert result.applied == {}
        assert sorted(result.unchanged) == ["aws_subnet.a", "aws_vpc.main"]
        assert result.exit_code == 0

    def test_removed_subnet_is_destroyed_only(self, engine, store, call_log):
        run(engine, declarations(VPC_AND_SUBNET))
        call_log.clear()

        _, result = run(engine, declarations("""
resources:
  - {kind: aws_vpc, name: main, attributes: {name: vpc, cidr_block: 10.0.0.0/16}}
"""))
        assert call_log == [("destroy", "subnet")]
        assert result.applied == {"aws_subnet.a": "destroy"}
        with store.session():
            assert set(store.snapshot()) == {addr("aws_vpc.main")}

    def test_destroy_everything_dependents_first(self, engine, store, call_log):
        decls = declarations(CHAIN)
        run(engine, decls)
        call_log.clear()

        _, result = run(engine, decls, destroy=True)
        assert result.success
        order = [label for _, label in call_log]
        assert order.index("c") < order.index("b") < order.index("a")
        with store.session():
            assert store.snapshot() == {}

    def test_replace_updates_dependent_with_new_id(self, engine, store, call_log):
        run(engine, declarations(VPC_AND_SUBNET))
        call_log.clear()

        _, result = run(engine, declarations(VPC_AND_SUBNET.replace("10.0.0.0/16", "10.1.0.0/16")))
        assert result.success
        assert result.applied["aws_vpc.main"] == "replace"
        # The new vpc_id forces the subnet to be replaced too.
        assert result.applied["aws_subnet.a"] == "replace"
        with store.session():
            vpc = store.get(addr("aws_vpc.main"))
            subnet = store.get(addr("aws_subnet.a"))
        assert vpc.provider_id == "aws_vpc-2"
        assert subnet.attributes["vpc_id"] == "aws_vpc-2"

    def test_deferred_update_becomes_noop(self, engine, providers, call_log):
        """An update planned only because an input was unknown is skipped when nothing changed."""
        decls = declarations("""
resources:
  - {kind: thing, name: src, attributes: {name: src, size: 1}}
  - {kind: thing, name: dst, attributes: {name: dst, arn: "${thing.src.arn}"}}
""")
        run(engine, decls)
        call_log.clear()

        _, result = run(engine, declarations("""
resources:
  - {kind: thing, name: src, attributes: {name: src, size: 2}}
  - {kind: thing, name: dst, attributes: {name: dst, arn: "${thing.src.arn}"}}
"""))
        assert call_log == [("update", "src")]
        assert result.applied == {"thing.src": "update"}
        assert "thing.dst" in result.unchanged

    def test_orphan_destroyed_after_dependent_moves_off(self, engine, store, call_log):
        """A declared resource is repointed before the orphan it referenced is destroyed."""
        run(engine, declarations("""
resources:
  - {kind: thing, name: old, attributes: {name: old}}
  - {kind: thing, name: user, attributes: {name: user, up: "${thing.old.id}"}}
"""))
        call_log.clear()

        _, result = run(engine, declarations("""
resources:
  - {kind: thing, name: new, attributes: {name: new}}
  - {kind: thing, name: user, attributes: {name: user, up: "${thing.new.id}"}}
"""))
        assert result.success
        assert call_log == [("create", "new"), ("update", "user"), ("destroy", "old")]
        with store.session():
            assert store.get(addr("thing.user")).dependencies == [addr("thing.new")]
            assert store.get(addr("thing.old")) is None

    def test_unwritable_serial_does_not_fail_committed_step(self, engine, store, monkeypatch):
        """Once the record is stored the step is reported as applied."""
        def broken_meta():
            raise StateStoreError("disk full")

        monkeypatch.setattr(store, "_write_meta", broken_meta)
        _, result = run(engine, declarations("resources: [{kind: thing, name: x, attributes: {name: x}}]"))

        assert result.applied == {"thing.x": "create"}
        assert result.failed == {}
        with store.session():
            assert store.get(addr("thing.x")).status == ResourceStatus.PRESENT


class TestFailureIsolation:
    """A failed step halts only its dependents."""

    def test_chain_failure(self, engine, store, providers):
        """a applied, b failed, c skipped, independent solo applied."""
        providers["thing"].fail("create", RuntimeError("boom"), when=lambda attrs: attrs.get("name") == "b")

        _, result = run(engine, declarations(CHAIN))

        assert set(result.applied) == {"thing.a", "thing.solo"}
        assert "boom" in result.failed["thing.b"]
        assert result.skipped == {"thing.c": "depends on failed thing.b"}
        assert result.partial
        assert result.exit_code == 2
        with store.session():
            assert set(store.snapshot()) == {addr("thing.a"), addr("thing.solo")}

    def test_total_failure_exit_code(self, engine, providers):
        providers["thing"].fail("create", RuntimeError("down"))
        _, result = run(engine, declarations("resources: [{kind: thing, name: x, attributes: {name: x}}]"))
        assert result.applied == {}
        assert result.exit_code == 1

    def test_rerun_after_failure_finishes_the_job(self, engine, providers, call_log):
        providers["thing"].fail("create", RuntimeError("boom"), when=lambda attrs: attrs.get("name") == "b", times=1)
        decls = declarations(CHAIN)
        run(engine, decls)
        call_log.clear()

        _, result = run(engine, decls)
        assert result.success
        assert call_log == [("create", "b"), ("create", "c")]

    def test_failed_replace_leaves_address_absent(self, engine, store, providers):
        run(engine, declarations(VPC_AND_SUBNET))
        providers["aws_vpc"].fail("create", RuntimeError("quota exceeded"))

        _, result = run(engine, declarations(VPC_AND_SUBNET.replace("10.0.0.0/16", "10.1.0.0/16")))
        assert "quota exceeded" in result.failed["aws_vpc.main"]
        assert "aws_subnet.a" in result.skipped
        with store.session():
            assert store.get(addr("aws_vpc.main")).status == ResourceStatus.ABSENT

        providers["aws_vpc"].failures.clear()
        _, retry = run(engine, declarations(VPC_AND_SUBNET.replace("10.0.0.0/16", "10.1.0.0/16")))
        assert retry.applied["aws_vpc.main"] == "create"
        assert retry.success


class TestRetries:
    """Transient provider errors are retried."""

    def test_transient_error_retried(self, engine, providers, call_log):
        providers["thing"].fail("create", ProviderTransientError("throttled"), times=2)
        _, result = run(engine, declarations("resources: [{kind: thing, name: x, attributes: {name: x}}]"))
        assert result.success
        assert call_log == [("create", "x")] * 3

    def test_retries_exhausted(self, engine, providers, call_log):
        providers["thing"].fail("create", ProviderTransientError("throttled"))
        _, result = run(engine, declarations("resources: [{kind: thing, name: x, attributes: {name: x}}]"))
        assert "after 3 attempts" in result.failed["thing.x"]
        assert len(call_log) == 3

    def test_fatal_error_not_retried(self, engine, providers, call_log):
        providers["thing"].fail("create", ValueError("bad input"))
        _, result = run(engine, declarations("resources: [{kind: thing, name: x, attributes: {name: x}}]"))
        assert len(call_log) == 1
        assert result.failed["thing.x"].endswith("create failed: bad input")


class TestConcurrency:
    """Parallel dispatch and cancellation."""

    WIDE = "resources:\n" + "".join(
        f"  - {{kind: thing, name: n{i}, attributes: {{name: n{i}}}}}\n" for i in range(6)
    )

    def test_parallelism_bound(self, settings, registry, store, providers):
        providers["thing"].delay = 0.05
        engine = Engine(settings.model_copy(update={"parallelism": 2}), registry=registry, store=store)
        _, result = run(engine, declarations(self.WIDE))
        assert result.success
        assert providers["thing"].max_active <= 2

    def test_serial_when_parallelism_is_one(self, settings, registry, store, providers):
        providers["thing"].delay = 0.01
        engine = Engine(settings.model_copy(update={"parallelism": 1}), registry=registry, store=store)
        run(engine, declarations(self.WIDE))
        assert providers["thing"].max_active == 1

    def test_independent_steps_overlap(self, settings, registry, store, providers):
        providers["thing"].delay = 0.2
        engine = Engine(settings.model_copy(update={"parallelism": 6}), registry=registry, store=store)
        run(engine, declarations(self.WIDE))
        assert providers["thing"].max_active > 1

    def test_dependent_waits_for_dependency(self, engine, providers, call_log):
        providers["thing"].delay = 0.05
        run(engine, declarations(CHAIN))
        order = [label for _, label in call_log]
        assert order.index("a") < order.index("b") < order.index("c")

    def test_cancellation_stops_dispatch(self, settings, registry, store, providers):
        engine = Engine(settings.model_copy(update={"parallelism": 1}), registry=registry, store=store)
        cancel = threading.Event()
        providers["thing"].before_call = lambda operation, payload: cancel.set()

        _, result = run(engine, declarations(CHAIN), cancel_event=cancel)

        assert result.cancelled
        assert list(result.applied) == ["thing.a"]
        assert set(result.skipped) == {"thing.b", "thing.c", "thing.solo"}
        assert all(reason == "cancelled" for reason in result.skipped.values())
        assert result.exit_code == 2


class TestStalePlan:
    """Saved plans are rejected once state moves on."""

    def test_stale_plan_rejected(self, engine):
        decls = declarations(VPC_AND_SUBNET)
        plan = plan_only(engine, decls)
        run(engine, decls)
        with engine.store.session():
            with pytest.raises(StalePlanError):
                engine.apply(plan)


class TestApplyResult:
    """Exit code mapping."""

    def test_exit_codes(self):
        assert ApplyResult(applied={"a.b": "create"}).exit_code == 0
        assert ApplyResult(failed={"a.b": "x"}).exit_code == 1
        assert ApplyResult(applied={"a.b": "create"}, skipped={"a.c": "x"}).exit_code == 2
        assert ApplyResult(cancelled=True).exit_code == 1
