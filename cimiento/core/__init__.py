"""
Core: lógica de negocio pura.

ENFORCEMENT (arquitectura limpia):
- Este paquete NO debe importar: cimiento.cli ni cimiento.providers.* (implementaciones).
- El acceso al filesystem se limita a runtime (State Store, lock) y al loader del documento.
- Permitido: typing, pathlib.Path, pydantic, yaml, cimiento.core.*.
- Los providers y la CLI importan desde core; nunca al revés.
"""

from cimiento.core.errors import (
    ActionTimeout,
    AdapterError,
    ApplyFailed,
    CimientoError,
    ConfigError,
    CycleError,
    DeploymentInvalid,
    IllegalTransition,
    LockError,
    RollbackFailure,
    UnknownResourceType,
    ValidationError,
)

__all__ = [
    "ActionTimeout",
    "AdapterError",
    "ApplyFailed",
    "CimientoError",
    "ConfigError",
    "CycleError",
    "DeploymentInvalid",
    "IllegalTransition",
    "LockError",
    "RollbackFailure",
    "UnknownResourceType",
    "ValidationError",
]
