"""
Nube simulada: inventario de recursos físicos sin API de proveedor.

Persiste en <state_root>/<deployment>.cloud.yaml para que ejecuciones
sucesivas de la CLI vean los mismos recursos físicos.

Formato persistido:

    counters:
      vpc: 1
    resources:
      vpc-00000001:
        kind: network
        attributes: {...}
    faults:
      - type: instance
        operation: apply
        transient: false
        times: 1
        message: InsufficientInstanceCapacity

La sección `faults` permite ensayar reintentos y rollback: cada entrada hace
fallar las próximas `times` llamadas a `operation` sobre ese tipo.
"""

import copy
import logging
import os
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from cimiento.core.errors import AdapterError, ConfigError

logger = logging.getLogger(__name__)


def cloud_file(root: Path, deployment: str) -> Path:
    return Path(root) / f"{deployment}.cloud.yaml"


class Fault(BaseModel):
    """Fallo programado para un tipo de recurso."""
    type: str
    operation: str = "apply"
    transient: bool = False
    times: int = Field(1, ge=1)
    message: str = "Fallo simulado"


class CloudDocument(BaseModel):
    counters: Dict[str, int] = Field(default_factory=dict)
    resources: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
    faults: List[Fault] = Field(default_factory=list)


class SimulatedCloud:
    """Inventario físico en memoria, opcionalmente respaldado por un YAML."""

    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path) if path is not None else None
        self._lock = threading.Lock()
        self._doc = self._read()

    def _read(self) -> CloudDocument:
        if self.path is None or not self.path.exists():
            return CloudDocument()
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
            return CloudDocument(**data)
        except (yaml.YAMLError, PydanticValidationError) as e:
            raise ConfigError(f"Inventario de la nube simulada inválido ({self.path}): {e}") from e

    def _save(self) -> None:
        if self.path is None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_name(f".{self.path.name}.tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            yaml.safe_dump(self._doc.model_dump(mode="json"), f, sort_keys=False, allow_unicode=True)
        os.replace(tmp, self.path)

    # ------------------------------------------------------------- faults

    def inject_fault(
        self,
        resource_type: str,
        operation: str = "apply",
        transient: bool = False,
        times: int = 1,
        message: str = "Fallo simulado",
    ) -> None:
        with self._lock:
            self._doc.faults.append(Fault(
                type=resource_type, operation=operation, transient=transient, times=times, message=message,
            ))
            self._save()

    def check_fault(self, resource_type: str, operation: str) -> None:
        """Consume un fallo programado para (tipo, operación), si lo hay."""
        with self._lock:
            for fault in self._doc.faults:
                if fault.type == resource_type and fault.operation == operation:
                    fault.times -= 1
                    if fault.times <= 0:
                        self._doc.faults.remove(fault)
                    self._save()
                    raise AdapterError(fault.message, transient=fault.transient)

    # ---------------------------------------------------------- inventory

    def create(self, kind: str, prefix: str, attributes: Dict[str, Any]) -> str:
        with self._lock:
            n = self._doc.counters.get(prefix, 0) + 1
            self._doc.counters[prefix] = n
            physical_id = f"{prefix}-{n:08x}"
            self._doc.resources[physical_id] = {"kind": kind, "attributes": copy.deepcopy(attributes)}
            self._save()
        logger.debug("Nube simulada: creado %s (%s)", physical_id, kind)
        return physical_id

    def update(self, physical_id: str, attributes: Dict[str, Any]) -> None:
        with self._lock:
            entry = self._doc.resources.get(physical_id)
            if entry is None:
                raise AdapterError(f"El recurso físico '{physical_id}' no existe")
            entry["attributes"] = copy.deepcopy(attributes)
            self._save()
        logger.debug("Nube simulada: actualizado %s", physical_id)

    def delete(self, physical_id: str) -> bool:
        """Borra un recurso; devuelve False si ya no existía."""
        with self._lock:
            existed = self._doc.resources.pop(physical_id, None) is not None
            if existed:
                self._save()
        logger.debug("Nube simulada: borrado %s (existía=%s)", physical_id, existed)
        return existed

    def get(self, physical_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            entry = self._doc.resources.get(physical_id)
            return copy.deepcopy(entry) if entry is not None else None

    def __contains__(self, physical_id: object) -> bool:
        with self._lock:
            return physical_id in self._doc.resources

    def ids(self, kind: Optional[str] = None) -> List[str]:
        with self._lock:
            return [pid for pid, e in self._doc.resources.items() if kind is None or e.get("kind") == kind]
