"""
Loader: archivo YAML de deployment → DeploymentGraph.

Fase 1 del modelo en dos fases: solo construye datos en memoria;
no toca el State Store ni los adapters.
"""

import logging
from pathlib import Path
from typing import Any, Dict, List

import yaml
from pydantic import ValidationError as PydanticValidationError

from cimiento.core.errors import ConfigError, ValidationError
from cimiento.core.model.document import DeploymentDocument, OutputDocument
from cimiento.core.model.resources import DeploymentGraph, OutputSpec, Resource, parse_value

logger = logging.getLogger(__name__)


def _format_pydantic_errors(exc: PydanticValidationError) -> str:
    lines = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()))
        lines.append(f"{loc}: {err.get('msg')}")
    return "; ".join(lines)


def _outputs_from_document(raw: Dict[str, Any]) -> List[OutputSpec]:
    outputs: List[OutputSpec] = []
    for name, spec in raw.items():
        if isinstance(spec, dict) and "value" in spec:
            try:
                doc = OutputDocument(**spec)
            except PydanticValidationError as e:
                raise ConfigError(f"Salida '{name}' inválida: {_format_pydantic_errors(e)}") from e
            outputs.append(OutputSpec(name=name, value=parse_value(doc.value), description=doc.description))
        else:
            outputs.append(OutputSpec(name=name, value=parse_value(spec)))
    return outputs


def graph_from_dict(data: Dict[str, Any]) -> DeploymentGraph:
    """Construye el grafo desde un dict ya parseado (YAML, JSON o tests)."""
    if not isinstance(data, dict):
        raise ConfigError("El deployment debe ser un mapping en la raíz")
    try:
        doc = DeploymentDocument(**data)
    except PydanticValidationError as e:
        raise ConfigError(f"Deployment inválido: {_format_pydantic_errors(e)}") from e

    try:
        resources = [
            Resource(
                id=r.id,
                type=r.type,
                attributes=parse_value(r.attributes),
                depends_on=list(r.depends_on),
            )
            for r in doc.resources
        ]
        return DeploymentGraph(
            name=doc.name,
            resources=resources,
            outputs=_outputs_from_document(doc.outputs),
            settings=dict(doc.settings),
        )
    except ValidationError as e:
        raise ConfigError(str(e), resource_id=e.resource_id) from e


def load_deployment(path: Path) -> DeploymentGraph:
    """Carga y valida estructuralmente un archivo de deployment."""
    path = Path(path)
    if not path.exists():
        raise ConfigError(f"Archivo de deployment no encontrado: {path}")
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Error al parsear YAML ({path.name}): {e}") from e

    graph = graph_from_dict(data)
    logger.debug("Deployment '%s' cargado: %d recursos, %d salidas", graph.name, len(graph.resources), len(graph.outputs))
    return graph
