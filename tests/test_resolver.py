import pytest

from cimiento.core.errors import CycleError, DeploymentInvalid
from cimiento.core.graph.resolver import resolve_order, reverse_dependency_order, topological_order

from conftest import make_graph, resource


def test_dependencies_come_first_including_reference_edges():
    graph = make_graph(
        resource("I", peer="${S.id}"),
        resource("S", peer="${N.id}"),
        resource("N"),
    )
    order = resolve_order(graph)
    assert order == ["N", "S", "I"]


def test_explicit_depends_on_is_an_edge():
    graph = make_graph(resource("app", depends_on=["db"]), resource("db"))
    assert resolve_order(graph) == ["db", "app"]


def test_independent_resources_keep_input_order():
    graph = make_graph(resource("c"), resource("a"), resource("b"))
    assert resolve_order(graph) == ["c", "a", "b"]


def test_nested_references_are_edges():
    graph = make_graph(
        resource("lb", tags={"groups": ["${sg.id}"]}),
        resource("sg"),
    )
    assert resolve_order(graph) == ["sg", "lb"]


def test_cycle_is_reported_with_participants():
    graph = make_graph(
        resource("a", peer="${b.id}"),
        resource("b", peer="${c.id}"),
        resource("c", depends_on=["a"]),
    )
    with pytest.raises(CycleError) as exc:
        resolve_order(graph)
    assert set(exc.value.cycle) == {"a", "b", "c"}
    assert exc.value.resource_id in {"a", "b", "c"}
    assert "Ciclo" in str(exc.value)


def test_unknown_dependency_names_the_resource():
    graph = make_graph(resource("app", depends_on=["ghost"]), resource("db", peer="${nope.id}"))
    with pytest.raises(DeploymentInvalid) as exc:
        resolve_order(graph)
    assert sorted(e.resource_id for e in exc.value.errors) == ["app", "db"]


def test_self_reference_is_a_cycle():
    graph = make_graph(resource("a", peer="${a.id}"))
    with pytest.raises(CycleError) as exc:
        resolve_order(graph)
    assert exc.value.cycle == ["a"]
    assert exc.value.resource_id == "a"


def test_self_depends_on_is_a_cycle():
    graph = make_graph(resource("b"), resource("a", depends_on=["a", "b"]))
    with pytest.raises(CycleError) as exc:
        resolve_order(graph)
    assert exc.value.cycle == ["a"]


def test_output_referencing_unknown_resource_is_invalid():
    graph = make_graph(resource("a"), outputs={"url": "${lb.dns_name}"})
    with pytest.raises(DeploymentInvalid) as exc:
        resolve_order(graph)
    assert exc.value.errors[0].resource_id == "url"


def test_reverse_dependency_order_puts_dependents_first():
    nodes = {"N": [], "S": ["N"], "I": ["S", "N"], "X": []}
    order = reverse_dependency_order(nodes)
    assert order.index("I") < order.index("S") < order.index("N")


def test_topological_order_ignores_edges_outside_the_mapping():
    assert topological_order({"a": ["gone"], "b": ["a"]}) == ["a", "b"]
