"""
Esquema del archivo de deployment (YAML).

Ejemplo mínimo:

    name: corpweb
    settings:
      max_attempts: 3
    resources:
      - id: engineering_vpc
        type: network
        attributes:
          cidr: 10.0.0.0/18
      - id: webservers_sg
        type: security_group
        attributes:
          vpc_id: ${engineering_vpc.id}
    outputs:
      web_url:
        value: ${engineering_lb.dns_name}
        description: URL del load balancer
"""

from typing import Any, Dict, List

from pydantic import BaseModel, Field, field_validator

from cimiento.core.model.resources import RESOURCE_ID_PATTERN


class ResourceDocument(BaseModel):
    """Declaración de un recurso tal cual aparece en el YAML."""
    id: str = Field(..., description="Id lógico, único en el deployment")
    type: str = Field(..., description="Tipo del catálogo (network, instance, ...)")
    attributes: Dict[str, Any] = Field(default_factory=dict)
    depends_on: List[str] = Field(default_factory=list)

    class Config:
        extra = "forbid"

    @field_validator("id")
    @classmethod
    def _check_id(cls, v: str) -> str:
        if not RESOURCE_ID_PATTERN.match(v):
            raise ValueError(f"id inválido '{v}': usar letras, dígitos, '_' o '-'")
        return v


class OutputDocument(BaseModel):
    value: Any = Field(..., description="Literal o referencia ${recurso.atributo}")
    description: str = ""

    class Config:
        extra = "forbid"


class DeploymentDocument(BaseModel):
    """Documento completo: nombre, ajustes, recursos y salidas."""
    name: str = Field(..., min_length=1)
    settings: Dict[str, Any] = Field(default_factory=dict)
    resources: List[ResourceDocument] = Field(default_factory=list)
    outputs: Dict[str, Any] = Field(default_factory=dict, description="nombre → {value, description} o valor directo")

    class Config:
        extra = "forbid"

    @field_validator("name")
    @classmethod
    def _check_name(cls, v: str) -> str:
        if any(c in v for c in "/\\:*?\"<>| "):
            raise ValueError("El nombre no puede contener caracteres prohibidos en paths")
        return v
