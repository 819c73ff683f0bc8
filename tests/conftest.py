import threading
import time
from typing import Any, Dict, List, Optional, Tuple

import pytest

from cimiento.core.errors import AdapterError, ValidationError
from cimiento.core.infra.contracts import AdapterResult, ProviderContext
from cimiento.core.infra.registry import AdapterRegistry
from cimiento.core.model.loader import graph_from_dict
from cimiento.core.runtime.settings import ExecutionSettings
from cimiento.core.runtime.state import MemoryStateStore


class FakeCloud:
    """
    Proveedor de prueba: registra cada llamada y permite programar fallos
    por nombre de recurso (atributo `name`).
    """

    def __init__(self):
        self.calls: List[Tuple[str, str, Optional[str]]] = []
        self.live: Dict[str, Dict[str, Any]] = {}
        self._faults: Dict[Tuple[str, str], List[Exception]] = {}
        self._hangs: Dict[Tuple[str, str], float] = {}
        self._counter = 0
        self._lock = threading.Lock()

    def fail(self, name: str, error: Exception, op: str = "apply", times: int = 1) -> None:
        self._faults.setdefault((op, name), []).extend([error] * times)

    def hang(self, name: str, seconds: float, op: str = "apply") -> None:
        self._hangs[(op, name)] = seconds

    def ops(self, op: Optional[str] = None) -> List[Tuple[str, str]]:
        return [(o, n) for o, n, _ in self.calls if op is None or o == op]

    def _trip(self, op: str, name: str) -> None:
        seconds = self._hangs.pop((op, name), None)
        if seconds:
            time.sleep(seconds)
        errors = self._faults.get((op, name))
        if errors:
            raise errors.pop(0)

    def next_id(self, type_name: str) -> str:
        with self._lock:
            self._counter += 1
            return f"{type_name}-{self._counter}"


class FakeAdapter:
    def __init__(
        self,
        type_name: str,
        cloud: FakeCloud,
        replace_only=("name", "zone"),
        updatable=("size", "tags", "peer"),
        create_before_destroy: bool = False,
    ):
        self.type_name = type_name
        self.cloud = cloud
        self.replace_only = frozenset(replace_only)
        self.updatable = frozenset(updatable)
        self.create_before_destroy = create_before_destroy

    def validate(self, attributes: Dict[str, Any]) -> None:
        if attributes.get("invalid"):
            raise ValidationError(f"atributo inválido: {attributes['invalid']}")

    def apply(self, attributes: Dict[str, Any], physical_id: Optional[str], context: ProviderContext) -> AdapterResult:
        name = attributes.get("name", "?")
        op = "apply" if physical_id is None else "update"
        with self.cloud._lock:
            self.cloud.calls.append((op, name, physical_id))
        self.cloud._trip("apply", name)
        if physical_id is None:
            physical_id = self.cloud.next_id(self.type_name)
        with self.cloud._lock:
            self.cloud.live[physical_id] = dict(attributes)
        return AdapterResult(
            physical_id=physical_id,
            outputs={"id": physical_id, "arn": f"arn:{physical_id}", "name": name},
        )

    def delete(self, physical_id: str, context: ProviderContext) -> None:
        with self.cloud._lock:
            name = self.cloud.live.get(physical_id, {}).get("name", "?")
            self.cloud.calls.append(("delete", name, physical_id))
        self.cloud._trip("delete", name)
        with self.cloud._lock:
            self.cloud.live.pop(physical_id, None)


def resource(rid: str, type_name: str = "thing", depends_on=(), **attributes) -> Dict[str, Any]:
    attrs = {"name": rid}
    attrs.update(attributes)
    return {"id": rid, "type": type_name, "attributes": attrs, "depends_on": list(depends_on)}


def make_graph(*resources, name: str = "test", outputs=None, settings=None):
    return graph_from_dict({
        "name": name,
        "resources": list(resources),
        "outputs": outputs or {},
        "settings": settings or {},
    })


def transient(msg: str = "rate limited") -> AdapterError:
    return AdapterError(msg, transient=True)


def permanent(msg: str = "conflict") -> AdapterError:
    return AdapterError(msg, transient=False)


@pytest.fixture()
def cloud() -> FakeCloud:
    return FakeCloud()


@pytest.fixture()
def registry(cloud) -> AdapterRegistry:
    return AdapterRegistry([
        FakeAdapter("thing", cloud),
        FakeAdapter("cbd_thing", cloud, create_before_destroy=True),
    ])


@pytest.fixture()
def store() -> MemoryStateStore:
    return MemoryStateStore("test")


@pytest.fixture()
def fast_settings() -> ExecutionSettings:
    return ExecutionSettings(max_attempts=3, backoff_base=0, backoff_max=0, action_timeout=5)


@pytest.fixture()
def nsi_graph():
    """Red → security group → instancia (N → S → I)."""
    return make_graph(
        resource("N"),
        resource("S", peer="${N.id}"),
        resource("I", peer="${S.id}", zone="a", depends_on=["N"]),
    )


def apply_graph(graph, registry, store, settings=None, cancel=None, on_event=None):
    from cimiento.core.execution.executor import PlanExecutor
    from cimiento.core.plan.planner import plan_changes

    plan = plan_changes(graph, store.load(), registry)
    executor = PlanExecutor(registry, store, settings=settings or ExecutionSettings(backoff_base=0), on_event=on_event)
    return executor.execute(plan, outputs=graph.outputs, cancel=cancel)
