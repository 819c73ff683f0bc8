"""
Model: grafo de recursos deseado (datos puros) y su carga desde YAML.
"""

from cimiento.core.model.resources import (
    UNKNOWN,
    DeploymentGraph,
    OutputSpec,
    Reference,
    Resource,
    contains_unknown,
    iter_references,
    parse_value,
    resolve_value,
)
from cimiento.core.model.loader import graph_from_dict, load_deployment

__all__ = [
    "UNKNOWN",
    "DeploymentGraph",
    "OutputSpec",
    "Reference",
    "Resource",
    "contains_unknown",
    "iter_references",
    "parse_value",
    "resolve_value",
    "graph_from_dict",
    "load_deployment",
]
