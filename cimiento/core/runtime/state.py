"""
State Store: registro durable de lo último aplicado con éxito.

Es la línea base del diff. Se actualiza recurso por recurso a medida que el
executor avanza: un apply fallido deja intactos los registros ya confirmados.

Formato persistido (YAML):

    version: 1
    deployment: corpweb
    resources:
      engineering_vpc:
        type: network
        fingerprint: 3f2a...
        physical_id: vpc-0001
        attributes: {...}
        outputs: {...}
        dependencies: []
        applied_at: '2026-01-01T00:00:00Z'
    outputs:
      web_url: http://...
"""

import logging
import os
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

import yaml
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from cimiento.core.errors import ConfigError

logger = logging.getLogger(__name__)

STATE_VERSION = 1


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


class ResourceRecord(BaseModel):
    """Huella de un recurso aplicado: lo que se envió al provider y lo que devolvió."""
    type: str
    fingerprint: str
    physical_id: str
    attributes: Dict[str, Any] = Field(default_factory=dict)
    outputs: Dict[str, Any] = Field(default_factory=dict)
    dependencies: List[str] = Field(default_factory=list)
    applied_at: str = Field(default_factory=utc_now_iso)

    class Config:
        frozen = True


class StateSnapshot(BaseModel):
    """id lógico → ResourceRecord, más las últimas salidas resueltas."""
    version: int = STATE_VERSION
    deployment: str = ""
    resources: Dict[str, ResourceRecord] = Field(default_factory=dict)
    outputs: Dict[str, Any] = Field(default_factory=dict)

    def get(self, resource_id: str) -> Optional[ResourceRecord]:
        return self.resources.get(resource_id)

    def __contains__(self, resource_id: object) -> bool:
        return resource_id in self.resources


class StateStore(Protocol):
    """Contrato del State Store (archivo, memoria, backend remoto...)."""

    def load(self) -> StateSnapshot:
        """Último snapshot; vacío si nunca se aplicó nada."""
        ...

    def commit(self, resource_id: str, record: ResourceRecord) -> None:
        """Actualiza atómicamente el registro de un recurso."""
        ...

    def remove(self, resource_id: str) -> None:
        """Elimina el registro de un recurso borrado."""
        ...

    def set_outputs(self, outputs: Dict[str, Any]) -> None:
        ...


class MemoryStateStore:
    """State Store en memoria (tests y ejecuciones efímeras)."""

    def __init__(self, deployment: str = "", snapshot: Optional[StateSnapshot] = None):
        self._lock = threading.Lock()
        self._snapshot = snapshot.model_copy(deep=True) if snapshot else StateSnapshot(deployment=deployment)

    def load(self) -> StateSnapshot:
        with self._lock:
            return self._snapshot.model_copy(deep=True)

    def commit(self, resource_id: str, record: ResourceRecord) -> None:
        with self._lock:
            self._snapshot.resources[resource_id] = record.model_copy(deep=True)

    def remove(self, resource_id: str) -> None:
        with self._lock:
            self._snapshot.resources.pop(resource_id, None)

    def set_outputs(self, outputs: Dict[str, Any]) -> None:
        with self._lock:
            self._snapshot.outputs = dict(outputs)


class FileStateStore:
    """
    State Store en un documento YAML.

    Cada escritura reescribe el documento completo en un archivo temporal y lo
    renombra con os.replace: un load concurrente ve el documento anterior o el
    nuevo, nunca un registro a medias.
    """

    def __init__(self, path: Path, deployment: str = ""):
        self.path = Path(path)
        self.deployment = deployment
        self._lock = threading.Lock()

    def _read(self) -> StateSnapshot:
        if not self.path.exists():
            return StateSnapshot(deployment=self.deployment)
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"State corrupto ({self.path}): {e}") from e
        try:
            snapshot = StateSnapshot(**data)
        except PydanticValidationError as e:
            raise ConfigError(f"State con formato inválido ({self.path}): {e}") from e
        if snapshot.version != STATE_VERSION:
            raise ConfigError(f"Versión de state no soportada: {snapshot.version}")
        return snapshot

    def _write(self, snapshot: StateSnapshot) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        if not snapshot.deployment:
            snapshot.deployment = self.deployment
        tmp = self.path.with_name(f".{self.path.name}.{os.getpid()}.{threading.get_ident()}.tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            yaml.safe_dump(snapshot.model_dump(mode="json"), f, sort_keys=False, allow_unicode=True)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, self.path)

    def load(self) -> StateSnapshot:
        with self._lock:
            return self._read()

    def commit(self, resource_id: str, record: ResourceRecord) -> None:
        with self._lock:
            snapshot = self._read()
            snapshot.resources[resource_id] = record
            self._write(snapshot)
        logger.debug("State: '%s' confirmado (%s)", resource_id, record.physical_id)

    def remove(self, resource_id: str) -> None:
        with self._lock:
            snapshot = self._read()
            if snapshot.resources.pop(resource_id, None) is None:
                return
            self._write(snapshot)
        logger.debug("State: '%s' eliminado", resource_id)

    def set_outputs(self, outputs: Dict[str, Any]) -> None:
        with self._lock:
            snapshot = self._read()
            snapshot.outputs = dict(outputs)
            self._write(snapshot)
