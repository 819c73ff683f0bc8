"""
Runtime: rutas de estado, State Store, lock por deployment y ajustes.
"""

from cimiento.core.runtime.resolver import state_root, state_file, lock_file
from cimiento.core.runtime.state import (
    FileStateStore,
    MemoryStateStore,
    ResourceRecord,
    StateSnapshot,
    StateStore,
)
from cimiento.core.runtime.lock import DeploymentLock
from cimiento.core.runtime.settings import (
    ExecutionSettings,
    ProviderSettings,
    load_execution_settings,
    load_provider_settings,
)

__all__ = [
    "state_root",
    "state_file",
    "lock_file",
    "FileStateStore",
    "MemoryStateStore",
    "ResourceRecord",
    "StateSnapshot",
    "StateStore",
    "DeploymentLock",
    "ExecutionSettings",
    "ProviderSettings",
    "load_execution_settings",
    "load_provider_settings",
]
