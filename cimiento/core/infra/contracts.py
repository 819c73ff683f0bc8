"""
Contratos que deben implementar los adapters de tipo de recurso.

El core solo define interfaces; la implementación vive en cimiento/providers/*.
Un adapter por tipo (network, instance, ...), registrado en una tabla de lookup;
no hay jerarquía de herencia obligatoria.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Optional, Protocol

from cimiento.core.runtime.settings import ProviderSettings


@dataclass(frozen=True)
class AdapterResult:
    """Resultado de apply: id físico asignado por el provider y salidas computadas."""
    physical_id: str
    outputs: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ProviderContext:
    """Contexto opaco que reciben los adapters (credenciales, región, endpoint)."""
    settings: ProviderSettings = field(default_factory=ProviderSettings)
    deployment: str = ""
    extra: Dict[str, Any] = field(default_factory=dict)


class ResourceAdapter(Protocol):
    """
    Capacidades de un tipo de recurso.

    Metadatos de mutabilidad:
        replace_only: atributos que definen identidad; cambiarlos obliga a reemplazar.
        updatable: atributos que el provider puede actualizar en el sitio.
        create_before_destroy: en un Replace, crear el nuevo antes de borrar el viejo.
    Un atributo no declarado en ninguno de los dos conjuntos se trata como replace_only.
    """

    type_name: str
    replace_only: FrozenSet[str]
    updatable: FrozenSet[str]
    create_before_destroy: bool

    def validate(self, attributes: Dict[str, Any]) -> None:
        """Lanza ValidationError si los atributos no son válidos (puede recibir UNKNOWN)."""
        ...

    def apply(
        self,
        attributes: Dict[str, Any],
        physical_id: Optional[str],
        context: ProviderContext,
    ) -> AdapterResult:
        """
        Crea (physical_id=None) o actualiza en el sitio el recurso.
        Lanza AdapterError(transient=...) si falla.
        """
        ...

    def delete(self, physical_id: str, context: ProviderContext) -> None:
        """Borra el recurso físico. Lanza AdapterError si falla."""
        ...
