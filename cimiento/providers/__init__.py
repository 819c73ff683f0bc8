"""
Providers: implementaciones de los adapters de tipo de recurso.

Cada provider expone build_registry() con su catálogo; el core solo conoce
los contratos de cimiento.core.infra.
"""
