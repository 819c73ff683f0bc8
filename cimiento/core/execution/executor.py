"""
Plan Executor: aplica un Plan recurso por recurso contra los adapters.

- Resuelve las Reference con las salidas reales de lo ya aplicado.
- Confirma cada recurso en el State Store en cuanto su acción termina.
- Ante un fallo (o cancelación) deja de despachar y, si rollback_on_failure,
  revierte lo aplicado en esta ejecución en orden inverso (best-effort).
- Con workers > 1 despacha ramas independientes del DAG en paralelo; nunca
  paraleliza a través de una arista de dependencia.
"""

import logging
import threading
from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, wait
from typing import Any, Callable, Dict, List, Optional, Sequence, Set

from cimiento.core.errors import ActionTimeout, AdapterError, CimientoError, ValidationError
from cimiento.core.execution.results import ActionOutcome, ApplyResult
from cimiento.core.execution.retry import CancelToken, call_with_retry
from cimiento.core.execution.states import ActionStatus
from cimiento.core.infra.contracts import AdapterResult, ProviderContext
from cimiento.core.infra.registry import AdapterRegistry
from cimiento.core.model.resources import OutputSpec, Reference, output_attribute, resolve_value
from cimiento.core.plan.fingerprint import fingerprint
from cimiento.core.plan.models import ActionKind, Plan, Step
from cimiento.core.runtime.settings import ExecutionSettings
from cimiento.core.runtime.state import ResourceRecord, StateStore

logger = logging.getLogger(__name__)

EventCallback = Callable[[ActionOutcome], None]


def prerequisites(plan: Plan) -> List[Set[int]]:
    """
    Para cada acción, índices de acciones anteriores que deben terminar antes:
    las que comparten una arista de dependencia (en cualquier sentido) y, para
    los Deletes de recursos retirados, todas las acciones que no lo son.
    """
    actions = plan.actions
    out: List[Set[int]] = []
    for i, a in enumerate(actions):
        deps = set(a.dependencies)
        before = set()
        for j in range(i):
            b = actions[j]
            if b.resource_id in deps or a.resource_id in b.dependencies:
                before.add(j)
            elif a.removal and not b.removal:
                before.add(j)
        out.append(before)
    return out


class _ApplyRun:
    """Estado mutable de una ejecución concreta de un Plan."""

    def __init__(self, plan: Plan, records: Dict[str, ResourceRecord], cancel: CancelToken):
        self.plan = plan
        self.cancel = cancel
        self.outcomes = [ActionOutcome(action=a) for a in plan.actions]
        self.by_id = {o.resource_id: o for o in self.outcomes}
        self.live: Dict[str, ResourceRecord] = dict(records)
        self.started: List[ActionOutcome] = []
        self.outputs: Dict[str, Any] = {}
        self.output_errors: Dict[str, str] = {}
        self.remap: Dict[str, Any] = {}
        self.reverted: List[ActionOutcome] = []
        self.rolling_back = False

    def lookup(self, ref: Reference) -> Any:
        record = self.live.get(ref.resource_id)
        if record is None:
            raise ValidationError(
                f"'{ref.resource_id}' aún no está aplicado; no se puede resolver {ref}",
                resource_id=ref.resource_id,
            )
        return output_attribute(record.outputs, record.physical_id, ref)


class PlanExecutor:
    """Aplica Planes contra un catálogo de adapters y un State Store."""

    def __init__(
        self,
        registry: AdapterRegistry,
        store: StateStore,
        settings: Optional[ExecutionSettings] = None,
        context: Optional[ProviderContext] = None,
        on_event: Optional[EventCallback] = None,
    ):
        self.registry = registry
        self.store = store
        self.settings = settings or ExecutionSettings()
        self.context = context or ProviderContext()
        self.on_event = on_event
        self._commit_lock = threading.Lock()
        self._event_lock = threading.Lock()

    # ------------------------------------------------------------------ API

    def execute(
        self,
        plan: Plan,
        outputs: Sequence[OutputSpec] = (),
        cancel: Optional[CancelToken] = None,
    ) -> ApplyResult:
        cancel = cancel or CancelToken()
        snapshot = self.store.load()
        run = _ApplyRun(plan, dict(snapshot.resources), cancel)
        output_specs = list(outputs)
        self._resolve_outputs(run, output_specs)

        if self.settings.workers > 1:
            halted = self._run_parallel(run, output_specs)
        else:
            halted = self._run_sequential(run, output_specs)

        canceled = cancel.cancelled and bool(run.outcomes) and any(
            o.status == ActionStatus.PENDING for o in run.outcomes
        )
        result = ApplyResult(plan=plan, outcomes=run.outcomes, canceled=canceled)

        if (halted or canceled) and self.settings.rollback_on_failure:
            result.rollback_attempted = True
            self._rollback(run)
            self._prune_outputs(run, output_specs)

        result.outputs = self._merged_outputs(run, output_specs, snapshot.outputs)
        result.output_errors = dict(run.output_errors)
        self.store.set_outputs(result.outputs)

        logger.info(
            "Apply '%s' terminado: aplicados=%s fallidos=%s revertidos=%s",
            plan.deployment, result.applied_ids, result.failed_ids, result.rolled_back_ids,
        )
        return result

    # ----------------------------------------------------------- scheduling

    def _run_sequential(self, run: _ApplyRun, output_specs: List[OutputSpec]) -> bool:
        for outcome in run.outcomes:
            if run.cancel.cancelled:
                logger.warning("Apply cancelado: no se despachan más acciones")
                return False
            if not self._apply_action(run, outcome):
                return True
            self._resolve_outputs(run, output_specs)
        return False

    def _run_parallel(self, run: _ApplyRun, output_specs: List[OutputSpec]) -> bool:
        before = prerequisites(run.plan)
        pending = list(range(len(run.outcomes)))
        done: Set[int] = set()
        halted = False

        with ThreadPoolExecutor(max_workers=self.settings.workers, thread_name_prefix="cimiento-worker") as pool:
            running: Dict[Any, int] = {}
            while pending or running:
                if not halted and not run.cancel.cancelled:
                    for idx in list(pending):
                        if len(running) >= self.settings.workers:
                            break
                        if before[idx] <= done:
                            pending.remove(idx)
                            running[pool.submit(self._apply_action, run, run.outcomes[idx])] = idx
                if not running:
                    break
                finished, _ = wait(list(running), return_when=FIRST_COMPLETED)
                for future in finished:
                    idx = running.pop(future)
                    if future.result():
                        done.add(idx)
                        self._resolve_outputs(run, output_specs)
                    else:
                        halted = True
        return halted

    # ------------------------------------------------------------- actions

    def _emit(self, outcome: ActionOutcome) -> None:
        if self.on_event is None:
            return
        with self._event_lock:
            self.on_event(outcome)

    def _apply_action(self, run: _ApplyRun, outcome: ActionOutcome) -> bool:
        """Ejecuta una acción; devuelve False si falló (sin lanzar)."""
        action = outcome.action
        if action.kind == ActionKind.NOOP:
            outcome.physical_id = action.prior.physical_id if action.prior else None
            outcome.transition(ActionStatus.APPLIED)
            self._emit(outcome)
            return True

        outcome.transition(ActionStatus.APPLYING)
        run.started.append(outcome)
        self._emit(outcome)
        logger.debug("Aplicando: %s", action.describe())
        try:
            for step in action.steps:
                self._run_step(run, outcome, step)
                outcome.completed_steps.append(step)
        except CimientoError as e:
            outcome.error = e
            if isinstance(e, AdapterError):
                outcome.attempts += e.attempts
            outcome.transition(ActionStatus.FAILED)
            logger.warning("Falló %s: %s", action.resource_id, e)
            self._emit(outcome)
            return False

        outcome.transition(ActionStatus.APPLIED)
        logger.info("Aplicado: %s", action.describe())
        self._emit(outcome)
        return True

    def _call(self, run: _ApplyRun, outcome: ActionOutcome, fn: Callable[[], Any], operation: str) -> Any:
        # el rollback no se interrumpe por la cancelación que lo provocó
        cancel = None if run.rolling_back else run.cancel
        value, attempts = call_with_retry(
            fn, self.settings, outcome.resource_id, cancel=cancel, operation=operation,
        )
        outcome.attempts += attempts
        return value

    def _run_step(self, run: _ApplyRun, outcome: ActionOutcome, step: Step) -> None:
        action = outcome.action
        rid = action.resource_id

        if step == Step.DELETE:
            prior = action.prior
            adapter = self.registry.get(prior.type, resource_id=rid)
            self._call(run, outcome, lambda: adapter.delete(prior.physical_id, self.context), "delete")
            if action.kind == ActionKind.REPLACE and action.create_before_destroy:
                return
            with self._commit_lock:
                self.store.remove(rid)
                run.live.pop(rid, None)
            return

        adapter = self.registry.get(action.resource_type, resource_id=rid)
        attributes = resolve_value(action.desired, run.lookup)
        physical_id = action.prior.physical_id if step == Step.UPDATE else None
        result: AdapterResult = self._call(
            run, outcome, lambda: adapter.apply(attributes, physical_id, self.context), step.value,
        )
        outcome.physical_id = result.physical_id
        self._commit(run, rid, ResourceRecord(
            type=action.resource_type,
            fingerprint=fingerprint(action.resource_type, attributes),
            physical_id=result.physical_id,
            attributes=attributes,
            outputs=dict(result.outputs),
            dependencies=list(action.dependencies),
        ))

    def _commit(self, run: _ApplyRun, resource_id: str, record: ResourceRecord) -> None:
        with self._commit_lock:
            self.store.commit(resource_id, record)
            run.live[resource_id] = record

    # -------------------------------------------------------------- outputs

    def _resolve_outputs(self, run: _ApplyRun, output_specs: List[OutputSpec]) -> None:
        """Resuelve las salidas cuyas referencias ya están aplicadas."""
        for spec in output_specs:
            if spec.name in run.outputs or spec.name in run.output_errors:
                continue
            refs = spec.references()
            ready = all(
                ref.resource_id in run.by_id and run.by_id[ref.resource_id].status == ActionStatus.APPLIED
                for ref in refs
            )
            if not ready:
                continue
            try:
                run.outputs[spec.name] = resolve_value(spec.value, run.lookup)
            except ValidationError as e:
                run.output_errors[spec.name] = str(e)
                logger.warning("Salida '%s' sin resolver: %s", spec.name, e)

    def _prune_outputs(self, run: _ApplyRun, output_specs: List[OutputSpec]) -> None:
        """Tras un rollback solo sobreviven salidas de recursos que siguen aplicados."""
        reverted = {o.resource_id for o in run.outcomes if o.status != ActionStatus.APPLIED}
        for spec in output_specs:
            if spec.name in run.outputs and any(r.resource_id in reverted for r in spec.references()):
                del run.outputs[spec.name]

    def _merged_outputs(
        self, run: _ApplyRun, output_specs: List[OutputSpec], previous: Dict[str, Any],
    ) -> Dict[str, Any]:
        """
        Salidas a persistir: las resueltas en esta ejecución y, para el resto de
        las declaradas, el valor anterior si ningún recurso referenciado cambió
        (no se despachó, no-op o revertido). Las no declaradas se descartan.
        """
        merged: Dict[str, Any] = {}
        for spec in output_specs:
            if spec.name in run.outputs:
                merged[spec.name] = run.outputs[spec.name]
            elif spec.name in previous and spec.name not in run.output_errors:
                if all(self._unchanged(run, ref.resource_id) for ref in spec.references()):
                    merged[spec.name] = self._remap(run, previous[spec.name])
        return merged

    def _unchanged(self, run: _ApplyRun, resource_id: str) -> bool:
        if resource_id not in run.live:
            return False
        outcome = run.by_id.get(resource_id)
        if outcome is None or outcome.action.kind == ActionKind.NOOP:
            return True
        if outcome.status == ActionStatus.FAILED:
            return not outcome.completed_steps and not isinstance(outcome.error, ActionTimeout)
        return outcome.status in (ActionStatus.PENDING, ActionStatus.ROLLED_BACK)

    # ------------------------------------------------------------- rollback

    def _remap(self, run: _ApplyRun, value: Any) -> Any:
        """Sustituye ids/salidas de recursos recreados durante el rollback."""
        if isinstance(value, str):
            return run.remap.get(value, value)
        if isinstance(value, dict):
            return {k: self._remap(run, v) for k, v in value.items()}
        if isinstance(value, list):
            return [self._remap(run, v) for v in value]
        return value

    def _recreate(self, run: _ApplyRun, outcome: ActionOutcome, prior: ResourceRecord) -> None:
        """Vuelve a crear un recurso borrado a partir de su registro previo."""
        rid = outcome.resource_id
        adapter = self.registry.get(prior.type, resource_id=rid)
        attributes = self._remap(run, prior.attributes)
        result: AdapterResult = self._call(
            run, outcome, lambda: adapter.apply(attributes, None, self.context), "rollback-create",
        )
        run.remap[prior.physical_id] = result.physical_id
        for key, old in prior.outputs.items():
            new = result.outputs.get(key)
            if isinstance(old, str) and isinstance(new, str) and old != new:
                run.remap[old] = new
        self._commit(run, rid, prior.model_copy(update={
            "physical_id": result.physical_id,
            "attributes": attributes,
            "fingerprint": fingerprint(prior.type, attributes),
            "outputs": dict(result.outputs),
        }))

    def _reapply(
        self, run: _ApplyRun, outcome: ActionOutcome, record: ResourceRecord, attributes: Dict[str, Any],
    ) -> None:
        """Aplica en sitio `attributes` sobre el recurso físico de `record`."""
        rid = outcome.resource_id
        adapter = self.registry.get(record.type, resource_id=rid)
        result: AdapterResult = self._call(
            run, outcome, lambda: adapter.apply(attributes, record.physical_id, self.context), "rollback-update",
        )
        self._commit(run, rid, record.model_copy(update={
            "physical_id": result.physical_id,
            "attributes": attributes,
            "fingerprint": fingerprint(record.type, attributes),
            "outputs": dict(result.outputs),
        }))

    def _repoint(self, run: _ApplyRun) -> None:
        """
        Dependientes ya revertidos cuyos atributos restaurados apuntan a ids o
        salidas de un recurso que se acaba de recrear: se re-aplican con los
        valores nuevos. Si el adapter falla quedan en rollback_failed.
        """
        for other in run.reverted:
            if other.status != ActionStatus.ROLLED_BACK:
                continue
            record = run.live.get(other.resource_id)
            if record is None:
                continue
            attributes = self._remap(run, record.attributes)
            if attributes == record.attributes:
                continue
            logger.info("Re-apuntando '%s' al recurso recreado", other.resource_id)
            try:
                self._reapply(run, other, record, attributes)
            except CimientoError as e:
                other.rollback_error = e
                other.transition(ActionStatus.ROLLBACK_FAILED)
                logger.error("Rollback de '%s' falló al re-apuntarlo: %s", other.resource_id, e)
                self._emit(other)

    def _delete_new(self, run: _ApplyRun, outcome: ActionOutcome) -> None:
        """Borra el recurso físico que creó esta acción."""
        action = outcome.action
        adapter = self.registry.get(action.resource_type, resource_id=action.resource_id)
        physical_id = outcome.physical_id
        self._call(run, outcome, lambda: adapter.delete(physical_id, self.context), "rollback-delete")

    def _revert(self, run: _ApplyRun, outcome: ActionOutcome) -> None:
        action = outcome.action
        rid = action.resource_id
        prior = action.prior
        done = outcome.completed_steps

        if action.kind == ActionKind.CREATE:
            self._delete_new(run, outcome)
            with self._commit_lock:
                self.store.remove(rid)
                run.live.pop(rid, None)

        elif action.kind == ActionKind.UPDATE:
            self._reapply(run, outcome, prior, self._remap(run, prior.attributes))

        elif action.kind == ActionKind.DELETE:
            self._recreate(run, outcome, prior)

        elif action.kind == ActionKind.REPLACE:
            if Step.CREATE in done:
                self._delete_new(run, outcome)
                if Step.DELETE in done:
                    with self._commit_lock:
                        self.store.remove(rid)
                        run.live.pop(rid, None)
            if Step.DELETE in done:
                self._recreate(run, outcome, prior)
            else:
                self._commit(run, rid, prior)

    def _rollback(self, run: _ApplyRun) -> None:
        """Revierte, en orden inverso, lo que esta ejecución llegó a cambiar."""
        targets = [
            o for o in reversed(run.started)
            if o.status == ActionStatus.APPLIED
            or (o.status == ActionStatus.FAILED and o.completed_steps)
        ]
        if not targets:
            return
        run.rolling_back = True
        logger.warning("Rollback de %d acción(es): %s", len(targets), [o.resource_id for o in targets])
        for outcome in targets:
            remapped = dict(run.remap)
            try:
                self._revert(run, outcome)
            except CimientoError as e:
                outcome.rollback_error = e
                outcome.transition(ActionStatus.ROLLBACK_FAILED)
                logger.error("Rollback de '%s' falló: %s", outcome.resource_id, e)
            else:
                outcome.transition(ActionStatus.ROLLED_BACK)
                logger.info("Revertido: %s", outcome.resource_id)
            self._emit(outcome)
            if run.remap != remapped:
                self._repoint(run)
            if outcome.status == ActionStatus.ROLLED_BACK:
                run.reverted.append(outcome)
