"""
Plan: diff entre estado deseado y snapshot, sin ejecutar nada.
"""

from cimiento.core.plan.models import Action, ActionKind, Plan, Step
from cimiento.core.plan.fingerprint import fingerprint
from cimiento.core.plan.planner import changed_attributes, classify, plan_changes, plan_destroy

__all__ = [
    "Action",
    "ActionKind",
    "Plan",
    "Step",
    "fingerprint",
    "changed_attributes",
    "classify",
    "plan_changes",
    "plan_destroy",
]
