"""
Resultado de un apply: estado final de cada acción y salidas resueltas.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from cimiento.core.errors import ActionTimeout, ApplyFailed, CimientoError, RollbackFailure
from cimiento.core.execution.states import ActionStatus, ensure_transition
from cimiento.core.plan.models import Action, ActionKind, Plan, Step


@dataclass
class ActionOutcome:
    """Progreso de una acción del plan durante un apply."""
    action: Action
    status: ActionStatus = ActionStatus.PENDING
    error: Optional[CimientoError] = None
    rollback_error: Optional[CimientoError] = None
    attempts: int = 0
    physical_id: Optional[str] = None
    completed_steps: List[Step] = field(default_factory=list)

    @property
    def resource_id(self) -> str:
        return self.action.resource_id

    @property
    def failed(self) -> bool:
        return self.error is not None

    def transition(self, dst: ActionStatus) -> None:
        ensure_transition(self.status, dst)
        self.status = dst


@dataclass
class ApplyResult:
    plan: Plan
    outcomes: List[ActionOutcome] = field(default_factory=list)
    outputs: Dict[str, Any] = field(default_factory=dict)
    output_errors: Dict[str, str] = field(default_factory=dict)
    canceled: bool = False
    rollback_attempted: bool = False

    def outcome(self, resource_id: str) -> ActionOutcome:
        for o in self.outcomes:
            if o.resource_id == resource_id:
                return o
        raise KeyError(resource_id)

    @property
    def succeeded(self) -> bool:
        return not self.canceled and all(o.status == ActionStatus.APPLIED for o in self.outcomes)

    @property
    def failed_ids(self) -> List[str]:
        return [o.resource_id for o in self.outcomes if o.failed]

    @property
    def applied_ids(self) -> List[str]:
        return [
            o.resource_id for o in self.outcomes
            if o.status == ActionStatus.APPLIED and o.action.kind != ActionKind.NOOP
        ]

    @property
    def pending_ids(self) -> List[str]:
        """Acciones que no llegaron a despacharse (fallo previo o cancelación)."""
        return [o.resource_id for o in self.outcomes if o.status == ActionStatus.PENDING]

    @property
    def rolled_back_ids(self) -> List[str]:
        return [o.resource_id for o in self.outcomes if o.status == ActionStatus.ROLLED_BACK]

    @property
    def rollback_failed_ids(self) -> List[str]:
        return [o.resource_id for o in self.outcomes if o.status == ActionStatus.ROLLBACK_FAILED]

    @property
    def unknown_ids(self) -> List[str]:
        """
        Recursos cuyo estado físico puede no coincidir con el State Store:
        rollback fallido, fallo con pasos parciales sin revertir, o timeout
        (la llamada pudo completarse en segundo plano).
        """
        out = []
        for o in self.outcomes:
            if o.status == ActionStatus.ROLLBACK_FAILED:
                out.append(o.resource_id)
            elif o.status == ActionStatus.FAILED and (o.completed_steps or isinstance(o.error, ActionTimeout)):
                out.append(o.resource_id)
        return out

    def raise_for_failure(self) -> None:
        if self.succeeded:
            return
        failed = self.failed_ids
        if self.rollback_failed_ids:
            raise RollbackFailure(
                f"Rollback incompleto: {', '.join(self.rollback_failed_ids)} requieren intervención",
                failed_ids=failed,
                inconsistent_ids=self.unknown_ids,
            )
        if self.canceled and not failed:
            raise ApplyFailed("Apply cancelado", failed_ids=[])
        raise ApplyFailed(f"Fallaron: {', '.join(failed)}", failed_ids=failed)
