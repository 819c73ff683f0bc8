"""
Plan: secuencia ordenada e inmutable de acciones.

Un Plan se ejecuta tal cual o se descarta y se recalcula con un diff nuevo;
nunca se modifica.
"""

import copy
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple

from cimiento.core.runtime.state import ResourceRecord


class ActionKind(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    REPLACE = "replace"
    DELETE = "delete"
    NOOP = "no-op"


class Step(str, Enum):
    """Paso atómico frente al provider; un Replace son dos pasos."""
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True)
class Action:
    """
    Acción sobre un recurso lógico.

    desired: atributos con Reference sin resolver (el executor los resuelve al aplicar).
    planned: atributos resueltos contra el snapshot; UNKNOWN donde el valor
             depende de un recurso que aún se va a crear o reemplazar.

    Ambos se copian en profundidad al construir la acción y se exponen como
    mappings de solo lectura; prior también es una copia propia.
    """
    kind: ActionKind
    resource_id: str
    resource_type: str
    desired: Mapping[str, Any] = field(default_factory=dict)
    planned: Mapping[str, Any] = field(default_factory=dict)
    prior: Optional[ResourceRecord] = None
    changed: Tuple[str, ...] = ()
    dependencies: Tuple[str, ...] = ()
    create_before_destroy: bool = False
    removal: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "desired", MappingProxyType(copy.deepcopy(dict(self.desired))))
        object.__setattr__(self, "planned", MappingProxyType(copy.deepcopy(dict(self.planned))))
        if self.prior is not None:
            object.__setattr__(self, "prior", self.prior.model_copy(deep=True))
        object.__setattr__(self, "changed", tuple(self.changed))
        object.__setattr__(self, "dependencies", tuple(self.dependencies))

    @property
    def steps(self) -> Tuple[Step, ...]:
        if self.kind == ActionKind.CREATE:
            return (Step.CREATE,)
        if self.kind == ActionKind.UPDATE:
            return (Step.UPDATE,)
        if self.kind == ActionKind.DELETE:
            return (Step.DELETE,)
        if self.kind == ActionKind.REPLACE:
            if self.create_before_destroy:
                return (Step.CREATE, Step.DELETE)
            return (Step.DELETE, Step.CREATE)
        return ()

    @property
    def is_change(self) -> bool:
        return self.kind != ActionKind.NOOP

    def describe(self) -> str:
        """Línea legible para CLI/logs."""
        if self.kind == ActionKind.CREATE:
            return f"Crear {self.resource_id} ({self.resource_type})"
        if self.kind == ActionKind.UPDATE:
            return f"Actualizar {self.resource_id}: {', '.join(self.changed)}"
        if self.kind == ActionKind.REPLACE:
            order = " → ".join(s.value for s in self.steps)
            return f"Reemplazar {self.resource_id} ({order}): {', '.join(self.changed)}"
        if self.kind == ActionKind.DELETE:
            return f"Borrar {self.resource_id} ({self.resource_type})"
        return f"Sin cambios {self.resource_id}"


@dataclass(frozen=True)
class Plan:
    deployment: str
    actions: Tuple[Action, ...] = ()
    destroy: bool = False

    @property
    def changes(self) -> List[Action]:
        return [a for a in self.actions if a.is_change]

    @property
    def has_changes(self) -> bool:
        return any(a.is_change for a in self.actions)

    @property
    def resource_ids(self) -> List[str]:
        return [a.resource_id for a in self.actions]

    def get(self, resource_id: str) -> Action:
        for a in self.actions:
            if a.resource_id == resource_id:
                return a
        raise KeyError(resource_id)

    def summary(self) -> Dict[str, int]:
        counts = {k.value: 0 for k in ActionKind}
        for a in self.actions:
            counts[a.kind.value] += 1
        return counts
