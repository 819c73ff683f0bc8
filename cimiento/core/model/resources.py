"""
Modelo de recursos: grafo deseado como datos puros (sin efectos secundarios).

Un valor de atributo es un literal o una Reference a la salida de otro recurso.
Las referencias son las aristas implícitas del grafo de dependencias y se
resuelven de forma perezosa (plan: contra el snapshot; apply: contra lo aplicado).
"""

import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional

from cimiento.core.errors import ValidationError

RESOURCE_ID_PATTERN = re.compile(r"^[A-Za-z][A-Za-z0-9_-]*$")
_REF_STRING = re.compile(r"^\$\{([A-Za-z][A-Za-z0-9_-]*)\.([A-Za-z0-9_]+)\}$")


@dataclass(frozen=True)
class Reference:
    """Referencia a un atributo de salida de otro recurso (ej: ${web_sg.id})."""
    resource_id: str
    attribute: str

    def __str__(self) -> str:
        return f"${{{self.resource_id}.{self.attribute}}}"


class _Unknown:
    """Valor que solo se conoce tras aplicar el recurso referenciado."""

    _instance: Optional["_Unknown"] = None

    def __new__(cls) -> "_Unknown":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __copy__(self) -> "_Unknown":
        return self

    def __deepcopy__(self, memo: Dict[int, Any]) -> "_Unknown":
        return self

    def __repr__(self) -> str:
        return "UNKNOWN"

    def __str__(self) -> str:
        return "(conocido tras aplicar)"


UNKNOWN = _Unknown()


def parse_reference(text: str) -> Reference:
    """Convierte 'recurso.atributo' o '${recurso.atributo}' en Reference."""
    m = _REF_STRING.match(text)
    if m:
        return Reference(m.group(1), m.group(2))
    if "." in text:
        resource_id, _, attribute = text.partition(".")
        if RESOURCE_ID_PATTERN.match(resource_id) and attribute:
            return Reference(resource_id, attribute)
    raise ValidationError(f"Referencia inválida: '{text}' (formato: recurso.atributo)")


def parse_value(raw: Any) -> Any:
    """
    Convierte un valor leído del documento en literal o Reference (recursivo).

    Formas aceptadas de referencia:
        "${web_sg.id}"          (string completo)
        {"ref": "web_sg.id"}    (mapping de una sola clave)
    """
    if isinstance(raw, str) and _REF_STRING.match(raw):
        return parse_reference(raw)
    if isinstance(raw, dict):
        if set(raw.keys()) == {"ref"} and isinstance(raw["ref"], str):
            return parse_reference(raw["ref"])
        return {k: parse_value(v) for k, v in raw.items()}
    if isinstance(raw, list):
        return [parse_value(v) for v in raw]
    return raw


def iter_references(value: Any) -> Iterator[Reference]:
    """Recorre un valor y devuelve todas las Reference que contiene."""
    if isinstance(value, Reference):
        yield value
    elif isinstance(value, Mapping):
        for v in value.values():
            yield from iter_references(v)
    elif isinstance(value, (list, tuple)):
        for v in value:
            yield from iter_references(v)


def resolve_value(value: Any, lookup: Callable[[Reference], Any]) -> Any:
    """Sustituye cada Reference por lookup(ref); el resto se copia tal cual."""
    if isinstance(value, Reference):
        return lookup(value)
    if isinstance(value, Mapping):
        return {k: resolve_value(v, lookup) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [resolve_value(v, lookup) for v in value]
    return value


def contains_unknown(value: Any) -> bool:
    if value is UNKNOWN:
        return True
    if isinstance(value, Mapping):
        return any(contains_unknown(v) for v in value.values())
    if isinstance(value, (list, tuple)):
        return any(contains_unknown(v) for v in value)
    return False


def output_attribute(outputs: Dict[str, Any], physical_id: Optional[str], ref: Reference) -> Any:
    """
    Valor de ref.attribute en las salidas de un recurso ya aplicado.
    'id' cae en el identificador físico si el adapter no lo publica como salida.
    """
    if ref.attribute in outputs:
        return outputs[ref.attribute]
    if ref.attribute == "id" and physical_id is not None:
        return physical_id
    raise ValidationError(
        f"'{ref.resource_id}' no expone el atributo '{ref.attribute}'",
        resource_id=ref.resource_id,
    )


@dataclass(frozen=True)
class Resource:
    """Recurso deseado: id lógico, tipo del catálogo, atributos y dependencias explícitas."""
    id: str
    type: str
    attributes: Dict[str, Any] = field(default_factory=dict)
    depends_on: List[str] = field(default_factory=list)

    def references(self) -> List[Reference]:
        return list(iter_references(self.attributes))

    def dependencies(self) -> List[str]:
        """depends_on explícito + ids referenciados, sin duplicados y en orden de aparición."""
        out: List[str] = []
        for dep in list(self.depends_on) + [r.resource_id for r in self.references()]:
            if dep not in out:
                out.append(dep)
        return out


@dataclass(frozen=True)
class OutputSpec:
    """Salida nombrada del deployment (ej: web_url = ${engineering_lb.dns_name})."""
    name: str
    value: Any
    description: str = ""

    def references(self) -> List[Reference]:
        return list(iter_references(self.value))


@dataclass
class DeploymentGraph:
    """Conjunto completo de recursos y salidas de un stack lógico."""
    name: str
    resources: List[Resource] = field(default_factory=list)
    outputs: List[OutputSpec] = field(default_factory=list)
    settings: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        seen = set()
        for r in self.resources:
            if not RESOURCE_ID_PATTERN.match(r.id):
                raise ValidationError(f"Id de recurso inválido: '{r.id}'", resource_id=r.id)
            if r.id in seen:
                raise ValidationError("Id de recurso duplicado", resource_id=r.id)
            seen.add(r.id)

    @property
    def ids(self) -> List[str]:
        return [r.id for r in self.resources]

    def get(self, resource_id: str) -> Resource:
        for r in self.resources:
            if r.id == resource_id:
                return r
        raise KeyError(resource_id)

    def __contains__(self, resource_id: object) -> bool:
        return any(r.id == resource_id for r in self.resources)
