"""
Contratos y catálogo de adapters de tipo de recurso.

Los providers (simulated, y los que se agreguen) implementan estos contratos;
el core no depende de ningún provider concreto.
"""

from cimiento.core.infra.contracts import AdapterResult, ProviderContext, ResourceAdapter
from cimiento.core.infra.registry import AdapterRegistry

__all__ = ["AdapterResult", "ProviderContext", "ResourceAdapter", "AdapterRegistry"]
