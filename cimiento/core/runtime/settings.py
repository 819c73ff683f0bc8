"""
Ajustes de ejecución y del provider.

Precedencia (menor → mayor): valores por defecto → bloque `settings:` del
deployment → variables CIMIENTO_* → opciones de la CLI.
Las credenciales y la región se pasan opacas a los adapters.
"""

import os
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from cimiento.core.errors import ConfigError

_ENV_PREFIX = "CIMIENTO_"


class ExecutionSettings(BaseModel):
    """Política de reintentos, timeout, paralelismo y rollback del executor."""
    max_attempts: int = Field(3, ge=1, description="Intentos por acción ante fallos transitorios")
    backoff_base: float = Field(0.5, ge=0, description="Segundos del primer backoff")
    backoff_max: float = Field(8.0, ge=0, description="Tope del backoff exponencial")
    action_timeout: Optional[float] = Field(300.0, gt=0, description="Timeout por llamada al adapter")
    workers: int = Field(1, ge=1, description="Workers para ramas independientes del DAG")
    rollback_on_failure: bool = Field(True, description="Revertir lo aplicado en esta ejecución si algo falla")
    lock_timeout: float = Field(0.0, ge=0, description="Espera máxima por el lock del deployment")

    class Config:
        extra = "forbid"

    def backoff_delay(self, attempt: int) -> float:
        """Espera antes del reintento número `attempt` (1 = primer reintento)."""
        return min(self.backoff_max, self.backoff_base * (2 ** (attempt - 1)))


class ProviderSettings(BaseModel):
    """Región/endpoint/credenciales: el core no los interpreta."""
    region: Optional[str] = None
    endpoint: Optional[str] = None
    profile: Optional[str] = None
    credentials: Dict[str, str] = Field(default_factory=dict)


_EXECUTION_ENV = {
    "max_attempts": "MAX_ATTEMPTS",
    "backoff_base": "BACKOFF_BASE",
    "backoff_max": "BACKOFF_MAX",
    "action_timeout": "ACTION_TIMEOUT",
    "workers": "WORKERS",
    "rollback_on_failure": "ROLLBACK_ON_FAILURE",
    "lock_timeout": "LOCK_TIMEOUT",
}


def load_execution_settings(
    file_settings: Optional[Mapping[str, Any]] = None,
    overrides: Optional[Mapping[str, Any]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> ExecutionSettings:
    env = os.environ if environ is None else environ
    merged: Dict[str, Any] = dict(file_settings or {})
    for field_name, suffix in _EXECUTION_ENV.items():
        raw = env.get(_ENV_PREFIX + suffix, "").strip()
        if raw:
            merged[field_name] = raw
    merged.update({k: v for k, v in (overrides or {}).items() if v is not None})
    try:
        return ExecutionSettings(**merged)
    except PydanticValidationError as e:
        raise ConfigError(f"Ajustes de ejecución inválidos: {e}") from e


def load_provider_settings(environ: Optional[Mapping[str, str]] = None) -> ProviderSettings:
    env = os.environ if environ is None else environ
    credentials = {}
    for key in ("ACCESS_KEY_ID", "SECRET_ACCESS_KEY", "SESSION_TOKEN"):
        value = env.get(_ENV_PREFIX + key, "").strip()
        if value:
            credentials[key.lower()] = value
    return ProviderSettings(
        region=env.get(_ENV_PREFIX + "REGION") or None,
        endpoint=env.get(_ENV_PREFIX + "ENDPOINT") or None,
        profile=env.get(_ENV_PREFIX + "PROFILE") or None,
        credentials=credentials,
    )
