"""Tests for dependency graph."""

import pytest
from converge.graph.dependency_graph import DependencyGraph
from converge.model.models import ResourceAddress
from converge.model.references import resolve_references
from converge.utils.errors import CyclicDependencyError
from conftest import declarations


def _build(text):
    decls = declarations(text)
    graph = DependencyGraph()
    graph.build_from_declarations(decls, resolve_references(decls))
    return graph


def addr(text):
    return ResourceAddress.parse(text)


@pytest.fixture
def diamond():
    """d depends on b and c, which both depend on a; declared out of order."""
    return _build("""
resources:
  - {kind: thing, name: d, attributes: {x: "${thing.b.id}", y: "${thing.c.id}"}}
  - {kind: thing, name: c, attributes: {x: "${thing.a.id}"}}
  - {kind: thing, name: b, attributes: {x: "${thing.a.id}"}}
  - {kind: thing, name: a}
""")


class TestDependencyGraph:
    """Test dependency graph construction and ordering."""

    def test_build_counts(self, diamond):
        """Nodes per declaration, one edge per distinct reference."""
        assert len(diamond) == 4
        assert diamond.graph.number_of_edges() == 4

    def test_topological_order_respects_edges(self, diamond):
        """Every address comes after everything it depends on."""
        order = diamond.topological_order()
        position = {a: i for i, a in enumerate(order)}
        for source, target in diamond.graph.edges:
            assert position[target] < position[source]

    def test_topological_order_is_stable(self, diamond):
        """Ties are broken by declaration order."""
        assert [str(a) for a in diamond.topological_order()] == ["thing.a", "thing.c", "thing.b", "thing.d"]

    def test_independent_nodes_keep_declaration_order(self):
        graph = _build("""
resources:
  - {kind: thing, name: z}
  - {kind: thing, name: m}
  - {kind: thing, name: a}
""")
        assert [str(a) for a in graph.topological_order()] == ["thing.z", "thing.m", "thing.a"]

    def test_downstream_and_upstream(self, diamond):
        assert diamond.get_downstream_resources(addr("thing.a")) == {addr("thing.b"), addr("thing.c"), addr("thing.d")}
        assert diamond.get_upstream_resources(addr("thing.d")) == {addr("thing.a"), addr("thing.b"), addr("thing.c")}
        assert diamond.dependencies_of(addr("thing.d")) == [addr("thing.c"), addr("thing.b")]


class TestCycleDetection:
    """Cycles are reported with every address on them."""

    def test_two_node_cycle(self):
        with pytest.raises(CyclicDependencyError) as exc_info:
            _build("""
resources:
  - {kind: thing, name: a, attributes: {x: "${thing.b.id}"}}
  - {kind: thing, name: b, attributes: {x: "${thing.a.id}"}}
""")
        assert exc_info.value.cycle == ["thing.a", "thing.b"]
        assert "thing.a -> thing.b -> thing.a" in str(exc_info.value)

    def test_cycle_through_depends_on(self):
        with pytest.raises(CyclicDependencyError) as exc_info:
            _build("""
resources:
  - {kind: thing, name: root}
  - {kind: thing, name: a, attributes: {x: "${thing.root.id}"}, depends_on: [thing.c]}
  - {kind: thing, name: b, attributes: {x: "${thing.a.id}"}}
  - {kind: thing, name: c, attributes: {x: "${thing.b.id}"}}
""")
        assert sorted(exc_info.value.cycle) == ["thing.a", "thing.b", "thing.c"]

    def test_self_reference(self):
        with pytest.raises(CyclicDependencyError) as exc_info:
            _build("""
resources:
  - {kind: thing, name: a, attributes: {x: "${thing.a.name}"}}
""")
        assert exc_info.value.cycle == ["thing.a"]

    def test_recorded_dependencies_ignore_unknown_targets(self):
        graph = DependencyGraph()
        graph.build_from_dependencies({
            addr("thing.b"): [addr("thing.a"), addr("thing.gone")],
            addr("thing.a"): [],
        })
        assert graph.topological_order() == [addr("thing.a"), addr("thing.b")]
