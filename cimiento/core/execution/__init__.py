"""
Ejecución de planes: estados por acción, reintentos/timeout, rollback y resultado.
"""

from cimiento.core.execution.states import ActionStatus, can_transition, ensure_transition, is_terminal
from cimiento.core.execution.retry import CancelToken, call_with_retry, call_with_timeout
from cimiento.core.execution.results import ActionOutcome, ApplyResult
from cimiento.core.execution.executor import PlanExecutor, prerequisites

__all__ = [
    "ActionStatus",
    "can_transition",
    "ensure_transition",
    "is_terminal",
    "CancelToken",
    "call_with_retry",
    "call_with_timeout",
    "ActionOutcome",
    "ApplyResult",
    "PlanExecutor",
    "prerequisites",
]
