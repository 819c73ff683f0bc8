"""
Planificación (diff engine): estado deseado + snapshot → Plan.

Lógica pura: no llama a apply/delete de ningún adapter, solo a validate.
Por cada recurso, en orden resuelto:
    - no está en el snapshot                       → Create
    - fingerprint idéntico                         → NoOp
    - cambian solo atributos actualizables         → Update
    - cambia algún atributo replace_only / el tipo → Replace
Los recursos del snapshot que ya no están en el grafo se borran al final,
en orden inverso de dependencias.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

from cimiento.core.errors import DeploymentInvalid, ValidationError
from cimiento.core.graph.resolver import resolve_order, reverse_dependency_order
from cimiento.core.infra.contracts import ResourceAdapter
from cimiento.core.infra.registry import AdapterRegistry
from cimiento.core.model.resources import (
    UNKNOWN,
    DeploymentGraph,
    Reference,
    Resource,
    contains_unknown,
    output_attribute,
    resolve_value,
)
from cimiento.core.plan.fingerprint import fingerprint
from cimiento.core.plan.models import Action, ActionKind, Plan
from cimiento.core.runtime.state import ResourceRecord, StateSnapshot

logger = logging.getLogger(__name__)

_MISSING = object()

# Acciones cuyo recurso conserva id físico y salidas durante el apply
_STABLE_KINDS = (ActionKind.NOOP, ActionKind.UPDATE)


def _as_resource_error(err: ValidationError, resource_id: str) -> ValidationError:
    if err.resource_id == resource_id:
        return err
    return ValidationError(err.message, resource_id=resource_id)


def changed_attributes(planned: Dict[str, Any], prior: Dict[str, Any]) -> Tuple[str, ...]:
    """Atributos que difieren (o cuyo valor aún no se conoce), en orden estable."""
    changed = []
    for key in list(planned) + [k for k in prior if k not in planned]:
        new = planned.get(key, _MISSING)
        old = prior.get(key, _MISSING)
        if contains_unknown(new) or new != old:
            changed.append(key)
    return tuple(changed)


def classify(
    resource: Resource,
    adapter: ResourceAdapter,
    planned: Dict[str, Any],
    prior: Optional[ResourceRecord],
) -> Tuple[ActionKind, Tuple[str, ...]]:
    """Devuelve el tipo de acción y los atributos que la motivan."""
    if prior is None:
        return ActionKind.CREATE, tuple(planned)
    if prior.type != resource.type:
        return ActionKind.REPLACE, ("type",)

    fp = fingerprint(resource.type, planned)
    if fp is not None and fp == prior.fingerprint:
        return ActionKind.NOOP, ()

    changed = changed_attributes(planned, prior.attributes)
    if not changed:
        return ActionKind.NOOP, ()
    in_place = all(k in adapter.updatable and k not in adapter.replace_only for k in changed)
    return (ActionKind.UPDATE if in_place else ActionKind.REPLACE), changed


def _delete_action(resource_id: str, record: ResourceRecord, removal: bool = True) -> Action:
    return Action(
        kind=ActionKind.DELETE,
        resource_id=resource_id,
        resource_type=record.type,
        planned=dict(record.attributes),
        prior=record,
        dependencies=tuple(record.dependencies),
        removal=removal,
    )


def _deletions(
    snapshot: StateSnapshot,
    ids: Sequence[str],
    registry: AdapterRegistry,
    errors: List[ValidationError],
) -> List[Action]:
    """Deletes de `ids` (registros del snapshot) en orden inverso de dependencias."""
    selected = set(ids)
    nodes = {
        rid: [d for d in snapshot.resources[rid].dependencies if d in selected]
        for rid in snapshot.resources
        if rid in selected
    }
    actions = []
    for rid in reverse_dependency_order(nodes):
        record = snapshot.resources[rid]
        if record.type not in registry:
            errors.append(ValidationError(
                f"No hay adapter para borrar el tipo '{record.type}'", resource_id=rid,
            ))
            continue
        actions.append(_delete_action(rid, record))
    return actions


def plan_changes(graph: DeploymentGraph, snapshot: StateSnapshot, registry: AdapterRegistry) -> Plan:
    """
    Calcula el Plan para llevar el snapshot al estado deseado del grafo.
    Lanza CycleError o DeploymentInvalid; nunca devuelve un plan parcial.
    """
    order = resolve_order(graph)
    errors: List[ValidationError] = []
    actions: Dict[str, Action] = {}

    for rid in order:
        resource = graph.get(rid)
        try:
            adapter = registry.get(resource.type, resource_id=rid)
        except ValidationError as e:
            errors.append(e)
            continue

        def lookup(ref: Reference) -> Any:
            dep = actions.get(ref.resource_id)
            if dep is None or dep.kind not in _STABLE_KINDS or dep.prior is None:
                return UNKNOWN
            return output_attribute(dep.prior.outputs, dep.prior.physical_id, ref)

        try:
            planned = resolve_value(resource.attributes, lookup)
            adapter.validate(planned)
        except ValidationError as e:
            errors.append(_as_resource_error(e, rid))
            continue

        prior = snapshot.get(rid)
        if prior is not None and prior.type != resource.type and prior.type not in registry:
            errors.append(ValidationError(
                f"No hay adapter para borrar el tipo anterior '{prior.type}'", resource_id=rid,
            ))
            continue

        kind, changed = classify(resource, adapter, planned, prior)
        actions[rid] = Action(
            kind=kind,
            resource_id=rid,
            resource_type=resource.type,
            desired=dict(resource.attributes),
            planned=planned,
            prior=prior,
            changed=changed,
            dependencies=tuple(resource.dependencies()),
            create_before_destroy=bool(adapter.create_before_destroy),
        )

    removed = [rid for rid in snapshot.resources if rid not in graph]
    deletions = _deletions(snapshot, removed, registry, errors)

    if errors:
        raise DeploymentInvalid(errors)

    plan = Plan(deployment=graph.name, actions=tuple(actions[rid] for rid in order) + tuple(deletions))
    logger.info("Plan '%s': %s", graph.name, plan.summary())
    return plan


def plan_destroy(graph: DeploymentGraph, snapshot: StateSnapshot, registry: AdapterRegistry) -> Plan:
    """Plan de solo Deletes para todo lo registrado, dependientes primero."""
    errors: List[ValidationError] = []
    deletions = _deletions(snapshot, list(snapshot.resources), registry, errors)
    if errors:
        raise DeploymentInvalid(errors)
    plan = Plan(deployment=graph.name, actions=tuple(deletions), destroy=True)
    logger.info("Plan de destrucción '%s': %d recursos", graph.name, len(deletions))
    return plan
