"""
Máquina de estados de una acción del plan durante un apply.

    pending → applying → {applied | failed}
    applied | failed → {rolled_back | rollback_failed}

Un no-op pasa directo de pending a applied (no hay llamada al adapter).
Un dependiente ya revertido puede terminar en rollback_failed si al
re-apuntarlo a un recurso recreado el adapter falla.
"""

from enum import Enum
from typing import Set, Tuple

from cimiento.core.errors import IllegalTransition


class ActionStatus(str, Enum):
    PENDING = "pending"
    APPLYING = "applying"
    APPLIED = "applied"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"
    ROLLBACK_FAILED = "rollback_failed"


_ALLOWED: Set[Tuple[ActionStatus, ActionStatus]] = {
    (ActionStatus.PENDING, ActionStatus.APPLYING),
    (ActionStatus.PENDING, ActionStatus.APPLIED),

    (ActionStatus.APPLYING, ActionStatus.APPLIED),
    (ActionStatus.APPLYING, ActionStatus.FAILED),

    (ActionStatus.APPLIED, ActionStatus.ROLLED_BACK),
    (ActionStatus.APPLIED, ActionStatus.ROLLBACK_FAILED),
    (ActionStatus.FAILED, ActionStatus.ROLLED_BACK),
    (ActionStatus.FAILED, ActionStatus.ROLLBACK_FAILED),

    # re-apuntado fallido tras recrear una dependencia
    (ActionStatus.ROLLED_BACK, ActionStatus.ROLLBACK_FAILED),
}

_TERMINAL: Set[ActionStatus] = {ActionStatus.ROLLBACK_FAILED}


def is_terminal(status: ActionStatus) -> bool:
    return status in _TERMINAL


def can_transition(src: ActionStatus, dst: ActionStatus) -> bool:
    if src == dst:
        return True
    if src in _TERMINAL:
        return False
    return (src, dst) in _ALLOWED


def ensure_transition(src: ActionStatus, dst: ActionStatus) -> None:
    """Lanza IllegalTransition si el cambio de estado no está permitido."""
    if not can_transition(src, dst):
        raise IllegalTransition(src.value, dst.value)
