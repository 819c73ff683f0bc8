"""
Graph: DAG de dependencias entre recursos y su orden topológico.
"""

from cimiento.core.graph.resolver import (
    dependency_map,
    resolve_order,
    reverse_dependency_order,
    topological_order,
)

__all__ = ["dependency_map", "resolve_order", "reverse_dependency_order", "topological_order"]
