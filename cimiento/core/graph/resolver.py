"""
Resolución de dependencias: grafo de recursos → orden total de ejecución.

Aristas = depends_on explícito + referencias ${recurso.atributo} en atributos.
Orden topológico por DFS; los empates entre recursos independientes se
resuelven por orden de entrada para que los planes sean deterministas.
"""

import logging
from typing import Dict, List, Mapping, Sequence

from cimiento.core.errors import CycleError, DeploymentInvalid, ValidationError
from cimiento.core.model.resources import DeploymentGraph

logger = logging.getLogger(__name__)

_WHITE, _GRAY, _BLACK = 0, 1, 2


def dependency_map(graph: DeploymentGraph) -> Dict[str, List[str]]:
    """
    id → dependencias (explícitas + implícitas), validando que existan.
    Las salidas también deben referenciar recursos del grafo.
    """
    errors: List[ValidationError] = []
    nodes: Dict[str, List[str]] = {}
    for r in graph.resources:
        deps = r.dependencies()
        for dep in deps:
            if dep not in graph:
                errors.append(ValidationError(f"Dependencia desconocida: '{dep}'", resource_id=r.id))
        # una auto-referencia se conserva: topological_order la reporta como ciclo
        nodes[r.id] = [d for d in deps if d in graph]

    for out in graph.outputs:
        for ref in out.references():
            if ref.resource_id not in graph:
                errors.append(ValidationError(
                    f"La salida referencia un recurso desconocido: '{ref.resource_id}'",
                    resource_id=out.name,
                ))
    if errors:
        raise DeploymentInvalid(errors)
    return nodes


def topological_order(nodes: Mapping[str, Sequence[str]]) -> List[str]:
    """
    Orden topológico por DFS: cada nodo aparece después de sus dependencias.
    Dependencias que no son nodos del mapping se ignoran.
    Lanza CycleError con los participantes del ciclo.
    """
    index = {node: i for i, node in enumerate(nodes)}
    color: Dict[str, int] = {node: _WHITE for node in nodes}
    order: List[str] = []
    path: List[str] = []

    def visit(node: str) -> None:
        color[node] = _GRAY
        path.append(node)
        deps = sorted((d for d in nodes[node] if d in index), key=index.__getitem__)
        for dep in deps:
            if color[dep] == _GRAY:
                cycle = path[path.index(dep):]
                raise CycleError(cycle)
            if color[dep] == _WHITE:
                visit(dep)
        path.pop()
        color[node] = _BLACK
        order.append(node)

    for node in nodes:
        if color[node] == _WHITE:
            visit(node)
    return order


def resolve_order(graph: DeploymentGraph) -> List[str]:
    """Orden de ejecución del deployment (dependencias primero)."""
    order = topological_order(dependency_map(graph))
    logger.debug("Orden resuelto para '%s': %s", graph.name, order)
    return order


def reverse_dependency_order(nodes: Mapping[str, Sequence[str]]) -> List[str]:
    """Orden para borrar: los dependientes antes que sus dependencias."""
    return list(reversed(topological_order(nodes)))
