import pytest

from cimiento.core.errors import ActionTimeout, ApplyFailed, RollbackFailure
from cimiento.core.execution.executor import PlanExecutor, prerequisites
from cimiento.core.execution.retry import CancelToken
from cimiento.core.execution.states import ActionStatus
from cimiento.core.plan.planner import plan_changes
from cimiento.core.runtime.settings import ExecutionSettings

from conftest import apply_graph, make_graph, permanent, resource, transient


def statuses(result):
    return {o.resource_id: o.status for o in result.outcomes}


def test_apply_commits_each_resource_with_resolved_references(nsi_graph, registry, store, cloud):
    result = apply_graph(nsi_graph, registry, store)

    assert result.succeeded
    assert result.applied_ids == ["N", "S", "I"]
    snapshot = store.load()
    assert snapshot.resources["S"].attributes["peer"] == snapshot.resources["N"].physical_id
    assert snapshot.resources["I"].attributes["peer"] == snapshot.resources["S"].physical_id
    assert snapshot.resources["I"].dependencies == ["N", "S"]
    assert cloud.ops() == [("apply", "N"), ("apply", "S"), ("apply", "I")]


def test_second_apply_makes_no_adapter_calls(nsi_graph, registry, store, cloud):
    apply_graph(nsi_graph, registry, store)
    calls = len(cloud.calls)

    result = apply_graph(nsi_graph, registry, store)
    assert result.succeeded
    assert result.applied_ids == []
    assert len(cloud.calls) == calls


def test_permanent_failure_rolls_back_in_reverse_order(nsi_graph, registry, store, cloud, fast_settings):
    cloud.fail("I", permanent("quota exceeded"))

    result = apply_graph(nsi_graph, registry, store, settings=fast_settings)

    assert statuses(result) == {
        "N": ActionStatus.ROLLED_BACK,
        "S": ActionStatus.ROLLED_BACK,
        "I": ActionStatus.FAILED,
    }
    assert result.outcome("I").attempts == 1
    assert cloud.ops("delete") == [("delete", "S"), ("delete", "N")]
    assert store.load().resources == {}
    assert cloud.live == {}
    with pytest.raises(ApplyFailed) as exc:
        result.raise_for_failure()
    assert exc.value.failed_ids == ["I"]
    assert not isinstance(exc.value, RollbackFailure)


def test_permanent_failure_without_rollback_keeps_applied(nsi_graph, registry, store, cloud):
    cloud.fail("I", permanent())
    settings = ExecutionSettings(backoff_base=0, rollback_on_failure=False)

    result = apply_graph(nsi_graph, registry, store, settings=settings)

    assert statuses(result) == {
        "N": ActionStatus.APPLIED,
        "S": ActionStatus.APPLIED,
        "I": ActionStatus.FAILED,
    }
    assert not result.rollback_attempted
    assert cloud.ops("delete") == []
    assert sorted(store.load().resources) == ["N", "S"]


def test_failure_stops_dispatching_later_actions(registry, store, cloud):
    cloud.fail("a", permanent())
    graph = make_graph(resource("a"), resource("b"))
    settings = ExecutionSettings(backoff_base=0, rollback_on_failure=False)

    result = apply_graph(graph, registry, store, settings=settings)

    assert result.pending_ids == ["b"]
    assert ("apply", "b") not in cloud.ops()


def test_transient_failures_are_retried(nsi_graph, registry, store, cloud, fast_settings):
    cloud.fail("S", transient(), times=2)

    result = apply_graph(nsi_graph, registry, store, settings=fast_settings)

    assert result.succeeded
    assert result.outcome("S").attempts == 3
    assert cloud.ops().count(("apply", "S")) == 3


def test_transient_failures_are_bounded(nsi_graph, registry, store, cloud, fast_settings):
    cloud.fail("S", transient(), times=5)

    result = apply_graph(nsi_graph, registry, store, settings=fast_settings)

    assert result.outcome("S").status == ActionStatus.FAILED
    assert result.outcome("S").attempts == 3
    assert result.outcome("N").status == ActionStatus.ROLLED_BACK


def test_timeout_is_transient_and_retried(registry, store, cloud):
    cloud.hang("a", 1.0)
    settings = ExecutionSettings(backoff_base=0, action_timeout=0.2, max_attempts=2)

    result = apply_graph(make_graph(resource("a")), registry, store, settings=settings)

    assert result.succeeded
    assert result.outcome("a").attempts == 2


def test_timeout_leaves_resource_in_unknown_state(registry, store, cloud):
    cloud.hang("a", 1.0)
    settings = ExecutionSettings(backoff_base=0, action_timeout=0.2, max_attempts=1)

    result = apply_graph(make_graph(resource("a")), registry, store, settings=settings)

    outcome = result.outcome("a")
    assert outcome.status == ActionStatus.FAILED
    assert isinstance(outcome.error, ActionTimeout)
    assert result.unknown_ids == ["a"]


def test_cancel_stops_dispatch_and_rolls_back(nsi_graph, registry, store, cloud):
    cancel = CancelToken()

    def on_event(outcome):
        if outcome.resource_id == "N" and outcome.status == ActionStatus.APPLIED:
            cancel.cancel()

    result = apply_graph(nsi_graph, registry, store, cancel=cancel, on_event=on_event)

    assert result.canceled
    assert statuses(result) == {
        "N": ActionStatus.ROLLED_BACK,
        "S": ActionStatus.PENDING,
        "I": ActionStatus.PENDING,
    }
    assert store.load().resources == {}
    with pytest.raises(ApplyFailed):
        result.raise_for_failure()


def test_rollback_of_update_restores_prior_attributes(registry, store, cloud, fast_settings):
    apply_graph(make_graph(resource("a", size=1)), registry, store)
    original = store.load().resources["a"]
    cloud.fail("b", permanent())

    result = apply_graph(make_graph(resource("a", size=2), resource("b")), registry, store, settings=fast_settings)

    assert result.outcome("a").status == ActionStatus.ROLLED_BACK
    record = store.load().resources["a"]
    assert record.attributes["size"] == 1
    assert record.physical_id == original.physical_id
    assert cloud.live[original.physical_id]["size"] == 1


def test_rollback_of_replace_recreates_the_old_resource(registry, store, cloud, fast_settings):
    apply_graph(make_graph(resource("a", zone="x"), resource("b", size=1)), registry, store)
    cloud.fail("b", permanent())

    result = apply_graph(
        make_graph(resource("a", zone="y"), resource("b", size=2)), registry, store, settings=fast_settings,
    )

    assert result.outcome("a").status == ActionStatus.ROLLED_BACK
    record = store.load().resources["a"]
    assert record.attributes["zone"] == "x"
    assert cloud.live[record.physical_id]["zone"] == "x"
    assert [attrs["zone"] for attrs in cloud.live.values() if attrs["name"] == "a"] == ["x"]


def test_create_before_destroy_rollback_keeps_the_old_resource(registry, store, cloud, fast_settings):
    apply_graph(make_graph(resource("lb", "cbd_thing", zone="x")), registry, store)
    original = store.load().resources["lb"]
    cloud.fail("lb", permanent("in use"), op="delete")

    result = apply_graph(make_graph(resource("lb", "cbd_thing", zone="y")), registry, store, settings=fast_settings)

    outcome = result.outcome("lb")
    assert outcome.status == ActionStatus.ROLLED_BACK
    assert store.load().resources["lb"].physical_id == original.physical_id
    assert list(cloud.live) == [original.physical_id]


def test_rollback_of_delete_recreates_the_resource(nsi_graph, registry, store, cloud, fast_settings):
    apply_graph(nsi_graph, registry, store)
    cloud.fail("S", permanent("dependency violation"), op="delete")

    result = apply_graph(make_graph(resource("N")), registry, store, settings=fast_settings)

    assert result.outcome("I").status == ActionStatus.ROLLED_BACK
    assert result.outcome("S").status == ActionStatus.FAILED
    snapshot = store.load()
    assert sorted(snapshot.resources) == ["I", "N", "S"]
    assert snapshot.resources["I"].physical_id in cloud.live


def _replace_x_update_y_fail_z(registry, store, cloud, fast_settings, on_event=None):
    apply_graph(make_graph(resource("x", zone="p"), resource("y", peer="${x.id}", size=1)), registry, store)
    cloud.fail("z", permanent())
    graph = make_graph(
        resource("x", zone="q"),
        resource("y", peer="${x.id}", size=2),
        resource("z"),
    )
    return apply_graph(graph, registry, store, settings=fast_settings, on_event=on_event)


def test_rollback_repoints_dependents_to_recreated_resource(registry, store, cloud, fast_settings):
    result = _replace_x_update_y_fail_z(registry, store, cloud, fast_settings)

    assert statuses(result) == {
        "x": ActionStatus.ROLLED_BACK,
        "y": ActionStatus.ROLLED_BACK,
        "z": ActionStatus.FAILED,
    }
    snapshot = store.load()
    x_id = snapshot.resources["x"].physical_id
    y = snapshot.resources["y"]
    assert x_id in cloud.live
    assert y.attributes["peer"] == x_id
    assert y.attributes["size"] == 1
    assert cloud.live[y.physical_id]["peer"] == x_id
    assert cloud.ops()[-1] == ("update", "y")
    assert result.unknown_ids == []


def test_failed_repoint_marks_dependent_inconsistent(registry, store, cloud, fast_settings):
    def on_event(outcome):
        if outcome.resource_id == "y" and outcome.status == ActionStatus.ROLLED_BACK:
            cloud.fail("y", permanent("locked"))

    result = _replace_x_update_y_fail_z(registry, store, cloud, fast_settings, on_event=on_event)

    assert result.outcome("x").status == ActionStatus.ROLLED_BACK
    assert result.outcome("y").status == ActionStatus.ROLLBACK_FAILED
    assert "y" in result.unknown_ids
    with pytest.raises(RollbackFailure) as exc:
        result.raise_for_failure()
    assert exc.value.inconsistent_ids == ["y"]
    assert exc.value.failed_ids == ["z"]


def test_rollback_failure_lists_inconsistent_resources(nsi_graph, registry, store, cloud, fast_settings):
    cloud.fail("I", permanent())
    cloud.fail("S", permanent("stuck"), op="delete")

    result = apply_graph(nsi_graph, registry, store, settings=fast_settings)

    assert result.outcome("S").status == ActionStatus.ROLLBACK_FAILED
    assert result.outcome("N").status == ActionStatus.ROLLED_BACK
    with pytest.raises(RollbackFailure) as exc:
        result.raise_for_failure()
    assert "S" in exc.value.inconsistent_ids
    assert exc.value.failed_ids == ["I"]


def test_outputs_resolve_and_persist(nsi_graph, registry, store):
    graph = make_graph(
        resource("N"),
        resource("S", peer="${N.id}"),
        outputs={"arn": {"value": "${S.arn}", "description": "S"}, "missing": "${N.nope}"},
    )
    result = apply_graph(graph, registry, store)

    s_id = store.load().resources["S"].physical_id
    assert result.outputs == {"arn": f"arn:{s_id}"}
    assert "missing" in result.output_errors
    assert store.load().outputs == {"arn": f"arn:{s_id}"}


def test_outputs_of_rolled_back_resources_are_dropped(registry, store, cloud, fast_settings):
    cloud.fail("b", permanent())
    graph = make_graph(resource("a"), resource("b"), outputs={"a_id": "${a.id}"})

    result = apply_graph(graph, registry, store, settings=fast_settings)

    assert result.outputs == {}
    assert store.load().outputs == {}


def test_literal_outputs_resolve_without_actions(registry, store):
    graph = make_graph(outputs={"region": "us-east-1", "ports": [22, 80]})

    result = apply_graph(graph, registry, store)

    assert result.outputs == {"region": "us-east-1", "ports": [22, 80]}
    assert store.load().outputs == result.outputs


def test_failed_run_keeps_outputs_of_untouched_resources(registry, store, cloud):
    outputs = {"a_id": "${a.id}", "b_arn": "${b.arn}"}
    apply_graph(make_graph(resource("a"), resource("b"), outputs=outputs), registry, store)
    previous = store.load().outputs
    assert sorted(previous) == ["a_id", "b_arn"]

    cloud.fail("a", permanent())
    settings = ExecutionSettings(backoff_base=0, rollback_on_failure=False)
    graph = make_graph(resource("a", size=2), resource("b"), outputs=outputs)
    result = apply_graph(graph, registry, store, settings=settings)

    assert result.outcome("a").status == ActionStatus.FAILED
    assert result.pending_ids == ["b"]
    assert store.load().outputs == previous


def test_rolled_back_update_restores_previous_output(registry, store, cloud, fast_settings):
    outputs = {"a_id": "${a.id}"}
    apply_graph(make_graph(resource("a", size=1), outputs=outputs), registry, store)
    previous = store.load().outputs

    cloud.fail("b", permanent())
    graph = make_graph(resource("a", size=2), resource("b"), outputs=outputs)
    result = apply_graph(graph, registry, store, settings=fast_settings)

    assert result.outcome("a").status == ActionStatus.ROLLED_BACK
    assert result.outputs == previous
    assert store.load().outputs == previous


def test_outputs_removed_from_the_document_are_dropped(registry, store):
    apply_graph(make_graph(resource("a"), outputs={"a_id": "${a.id}"}), registry, store)

    apply_graph(make_graph(resource("a")), registry, store)

    assert store.load().outputs == {}


def test_prerequisites_follow_dependency_edges(nsi_graph, registry, store):
    plan = plan_changes(
        make_graph(resource("a"), resource("b"), resource("c", peer="${a.id}")), store.load(), registry,
    )
    assert prerequisites(plan) == [set(), set(), {0}]


def test_parallel_apply_respects_dependencies(registry, store, cloud):
    graph = make_graph(
        resource("a"),
        resource("b"),
        resource("c"),
        resource("d", tags=["${a.id}", "${b.id}", "${c.id}"]),
    )
    settings = ExecutionSettings(backoff_base=0, workers=4)

    result = apply_graph(graph, registry, store, settings=settings)

    assert result.succeeded
    order = [name for _, name in cloud.ops()]
    assert order[-1] == "d"
    assert sorted(order[:3]) == ["a", "b", "c"]


def test_parallel_failure_rolls_back_finished_branches(registry, store, cloud):
    cloud.fail("b", permanent())
    settings = ExecutionSettings(backoff_base=0, workers=2)

    result = apply_graph(make_graph(resource("a"), resource("b")), registry, store, settings=settings)

    assert result.outcome("b").status == ActionStatus.FAILED
    assert result.outcome("a").status == ActionStatus.ROLLED_BACK
    assert store.load().resources == {}


def test_executor_emits_events_for_each_transition(nsi_graph, registry, store):
    seen = []
    executor = PlanExecutor(registry, store, on_event=lambda o: seen.append((o.resource_id, o.status)))
    executor.execute(plan_changes(nsi_graph, store.load(), registry))

    assert seen[:2] == [("N", ActionStatus.APPLYING), ("N", ActionStatus.APPLIED)]
    assert len(seen) == 6
