"""
Catálogo de adapters: tabla tipo → adapter.
"""

from typing import Dict, Iterable, List, Optional

from cimiento.core.errors import UnknownResourceType
from cimiento.core.infra.contracts import ResourceAdapter


class AdapterRegistry:
    """Lookup de adapters por nombre de tipo."""

    def __init__(self, adapters: Iterable[ResourceAdapter] = ()):
        self._adapters: Dict[str, ResourceAdapter] = {}
        for adapter in adapters:
            self.register(adapter)

    def register(self, adapter: ResourceAdapter) -> None:
        name = adapter.type_name
        if name in self._adapters:
            raise ValueError(f"Tipo de recurso ya registrado: {name}")
        self._adapters[name] = adapter

    def get(self, type_name: str, resource_id: Optional[str] = None) -> ResourceAdapter:
        try:
            return self._adapters[type_name]
        except KeyError:
            raise UnknownResourceType(
                f"Tipo de recurso desconocido: '{type_name}' (disponibles: {', '.join(self.types) or 'ninguno'})",
                resource_id=resource_id,
            ) from None

    def __contains__(self, type_name: object) -> bool:
        return type_name in self._adapters

    @property
    def types(self) -> List[str]:
        return sorted(self._adapters)
