"""
Engine: fachada que orquesta resolver → diff → executor → State Store.

La CLI (u otra capa) construye el Engine con el catálogo de adapters, el
State Store y los ajustes; el Engine no imprime nada.
"""

import logging
from contextlib import nullcontext
from typing import Any, ContextManager, Dict, List, Optional

from cimiento.core.errors import ValidationError
from cimiento.core.execution.executor import EventCallback, PlanExecutor
from cimiento.core.execution.results import ApplyResult
from cimiento.core.execution.retry import CancelToken
from cimiento.core.graph.resolver import resolve_order
from cimiento.core.infra.contracts import ProviderContext
from cimiento.core.infra.registry import AdapterRegistry
from cimiento.core.model.resources import DeploymentGraph, output_attribute, resolve_value
from cimiento.core.plan.models import Plan
from cimiento.core.plan.planner import plan_changes, plan_destroy
from cimiento.core.runtime.settings import ExecutionSettings
from cimiento.core.runtime.state import StateStore

logger = logging.getLogger(__name__)


class Engine:
    """
    Punto de entrada del motor para un deployment.

    lock: context manager (normalmente DeploymentLock) que se mantiene tomado
    durante plan + ejecución de apply/destroy. None = sin lock.
    """

    def __init__(
        self,
        registry: AdapterRegistry,
        store: StateStore,
        settings: Optional[ExecutionSettings] = None,
        context: Optional[ProviderContext] = None,
        lock: Optional[ContextManager[Any]] = None,
    ):
        self.registry = registry
        self.store = store
        self.settings = settings or ExecutionSettings()
        self.context = context or ProviderContext()
        self.lock = lock

    def _locked(self) -> ContextManager[Any]:
        return self.lock if self.lock is not None else nullcontext()

    def validate(self, graph: DeploymentGraph) -> List[str]:
        """Resuelve el orden y valida todos los recursos sin tocar el provider."""
        order = resolve_order(graph)
        plan_changes(graph, self.store.load(), self.registry)
        return order

    def plan(self, graph: DeploymentGraph) -> Plan:
        return plan_changes(graph, self.store.load(), self.registry)

    def plan_destroy(self, graph: DeploymentGraph) -> Plan:
        return plan_destroy(graph, self.store.load(), self.registry)

    def _execute(
        self,
        plan: Plan,
        graph: DeploymentGraph,
        cancel: Optional[CancelToken],
        on_event: Optional[EventCallback],
    ) -> ApplyResult:
        executor = PlanExecutor(
            self.registry, self.store, settings=self.settings, context=self.context, on_event=on_event,
        )
        outputs = () if plan.destroy else graph.outputs
        return executor.execute(plan, outputs=outputs, cancel=cancel)

    def apply(
        self,
        graph: DeploymentGraph,
        cancel: Optional[CancelToken] = None,
        on_event: Optional[EventCallback] = None,
    ) -> ApplyResult:
        """Planifica y ejecuta bajo el lock del deployment. No lanza por fallos de acción."""
        with self._locked():
            plan = self.plan(graph)
            logger.info("Apply '%s': %d cambio(s)", graph.name, len(plan.changes))
            return self._execute(plan, graph, cancel, on_event)

    def destroy(
        self,
        graph: DeploymentGraph,
        cancel: Optional[CancelToken] = None,
        on_event: Optional[EventCallback] = None,
    ) -> ApplyResult:
        with self._locked():
            plan = self.plan_destroy(graph)
            logger.info("Destroy '%s': %d recurso(s)", graph.name, len(plan.actions))
            return self._execute(plan, graph, cancel, on_event)

    def outputs(self, graph: DeploymentGraph) -> Dict[str, Any]:
        """
        Salidas resueltas contra el último snapshot. Las que referencian un
        recurso no aplicado (o un atributo que no expone) se omiten.
        """
        snapshot = self.store.load()
        out: Dict[str, Any] = {}
        for spec in graph.outputs:
            if any(ref.resource_id not in snapshot for ref in spec.references()):
                continue

            def lookup(ref):
                record = snapshot.resources[ref.resource_id]
                return output_attribute(record.outputs, record.physical_id, ref)

            try:
                out[spec.name] = resolve_value(spec.value, lookup)
            except ValidationError as e:
                logger.warning("Salida '%s' sin resolver: %s", spec.name, e)
        return out
