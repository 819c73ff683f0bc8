import dataclasses

import pydantic
import pytest

from cimiento.core.errors import DeploymentInvalid, UnknownResourceType
from cimiento.core.model.resources import UNKNOWN
from cimiento.core.plan.fingerprint import fingerprint
from cimiento.core.plan.models import ActionKind, Step
from cimiento.core.plan.planner import plan_changes, plan_destroy

from conftest import apply_graph, make_graph, resource


def kinds(plan):
    return [(a.resource_id, a.kind) for a in plan.actions]


def test_fresh_deployment_creates_everything_in_dependency_order(nsi_graph, registry, store):
    plan = plan_changes(nsi_graph, store.load(), registry)
    assert kinds(plan) == [
        ("N", ActionKind.CREATE),
        ("S", ActionKind.CREATE),
        ("I", ActionKind.CREATE),
    ]
    assert plan.get("S").planned["peer"] is UNKNOWN
    assert plan.get("I").dependencies == ("N", "S")


def test_replan_after_apply_is_all_noop(nsi_graph, registry, store):
    result = apply_graph(nsi_graph, registry, store)
    assert result.succeeded

    plan = plan_changes(nsi_graph, store.load(), registry)
    assert all(a.kind == ActionKind.NOOP for a in plan.actions)
    assert not plan.has_changes


def test_updatable_attribute_yields_update(registry, store):
    apply_graph(make_graph(resource("a", size=1)), registry, store)
    plan = plan_changes(make_graph(resource("a", size=2)), store.load(), registry)
    action = plan.get("a")
    assert action.kind == ActionKind.UPDATE
    assert action.changed == ("size",)
    assert action.steps == (Step.UPDATE,)


def test_replace_only_attribute_yields_replace_delete_first(registry, store):
    apply_graph(make_graph(resource("a", zone="x")), registry, store)
    plan = plan_changes(make_graph(resource("a", zone="y")), store.load(), registry)
    action = plan.get("a")
    assert action.kind == ActionKind.REPLACE
    assert action.steps == (Step.DELETE, Step.CREATE)


def test_replace_honours_create_before_destroy(registry, store):
    apply_graph(make_graph(resource("lb", "cbd_thing", zone="x")), registry, store)
    plan = plan_changes(make_graph(resource("lb", "cbd_thing", zone="y")), store.load(), registry)
    assert plan.get("lb").steps == (Step.CREATE, Step.DELETE)


def test_undeclared_attribute_change_is_treated_as_replace_only(registry, store):
    apply_graph(make_graph(resource("a", color="red")), registry, store)
    plan = plan_changes(make_graph(resource("a", color="blue")), store.load(), registry)
    assert plan.get("a").kind == ActionKind.REPLACE
    assert plan.get("a").changed == ("color",)


def test_type_change_yields_replace(registry, store):
    apply_graph(make_graph(resource("a")), registry, store)
    plan = plan_changes(make_graph(resource("a", "cbd_thing")), store.load(), registry)
    action = plan.get("a")
    assert action.kind == ActionKind.REPLACE
    assert action.changed == ("type",)
    assert action.prior.type == "thing"


def test_replacing_a_dependency_marks_references_unknown(nsi_graph, registry, store):
    apply_graph(nsi_graph, registry, store)
    changed = make_graph(
        resource("N", zone="b"),
        resource("S", peer="${N.id}"),
        resource("I", peer="${S.id}", zone="a", depends_on=["N"]),
    )
    plan = plan_changes(changed, store.load(), registry)
    assert plan.get("N").kind == ActionKind.REPLACE
    assert plan.get("S").kind == ActionKind.UPDATE
    assert plan.get("S").planned["peer"] is UNKNOWN
    # S conserva su id físico: I sigue igual
    assert plan.get("I").kind == ActionKind.NOOP


def test_removing_a_resource_yields_only_its_delete(nsi_graph, registry, store):
    apply_graph(nsi_graph, registry, store)
    smaller = make_graph(resource("N"), resource("S", peer="${N.id}"))
    plan = plan_changes(smaller, store.load(), registry)
    assert [(a.resource_id, a.kind) for a in plan.changes] == [("I", ActionKind.DELETE)]
    assert plan.get("I").removal


def test_deletes_follow_creates_in_reverse_dependency_order(nsi_graph, registry, store):
    apply_graph(nsi_graph, registry, store)
    plan = plan_changes(make_graph(resource("X")), store.load(), registry)
    assert kinds(plan) == [
        ("X", ActionKind.CREATE),
        ("I", ActionKind.DELETE),
        ("S", ActionKind.DELETE),
        ("N", ActionKind.DELETE),
    ]


def test_validation_errors_are_aggregated(registry, store):
    graph = make_graph(
        resource("a", invalid="x"),
        resource("b"),
        resource("c", invalid="y"),
    )
    with pytest.raises(DeploymentInvalid) as exc:
        plan_changes(graph, store.load(), registry)
    assert [e.resource_id for e in exc.value.errors] == ["a", "c"]


def test_unknown_type_is_a_validation_error(registry, store):
    graph = make_graph(resource("a", "teleporter"))
    with pytest.raises(DeploymentInvalid) as exc:
        plan_changes(graph, store.load(), registry)
    assert isinstance(exc.value.errors[0], UnknownResourceType)
    assert exc.value.errors[0].resource_id == "a"


def test_plan_destroy_deletes_dependents_first(nsi_graph, registry, store):
    apply_graph(nsi_graph, registry, store)
    plan = plan_destroy(nsi_graph, store.load(), registry)
    assert plan.destroy
    assert kinds(plan) == [
        ("I", ActionKind.DELETE),
        ("S", ActionKind.DELETE),
        ("N", ActionKind.DELETE),
    ]


def test_plan_is_immutable(nsi_graph, registry, store):
    plan = plan_changes(nsi_graph, store.load(), registry)
    with pytest.raises(dataclasses.FrozenInstanceError):
        plan.destroy = True
    assert isinstance(plan.actions, tuple)
    with pytest.raises(TypeError):
        plan.get("S").planned["peer"] = "changed"
    with pytest.raises(TypeError):
        plan.get("S").desired["peer"] = "changed"


def test_plan_does_not_share_state_with_snapshot(nsi_graph, registry, store):
    apply_graph(nsi_graph, registry, store)
    snapshot = store.load()
    graph = make_graph(resource("N"), resource("S", peer="${N.id}", size=3))
    plan = plan_changes(graph, snapshot, registry)

    snapshot.resources["S"].attributes["peer"] = "changed"
    graph.get("S").attributes["size"] = 4

    action = plan.get("S")
    assert action.prior.attributes["peer"] == snapshot.resources["N"].physical_id
    assert action.desired["size"] == 3
    with pytest.raises(pydantic.ValidationError):
        action.prior.physical_id = "other"


def test_fingerprint_is_stable_and_skips_unknown():
    a = fingerprint("thing", {"b": 1, "a": [1, 2]})
    b = fingerprint("thing", {"a": [1, 2], "b": 1})
    assert a == b
    assert fingerprint("other", {"b": 1, "a": [1, 2]}) != a
    assert fingerprint("thing", {"a": UNKNOWN}) is None
