"""
Adapters de la nube simulada: red, security group, load balancer,
target group e instancia.

Cada adapter declara qué atributos fuerzan reemplazo y cuáles se actualizan
en el sitio. Los valores UNKNOWN (referencias aún no aplicadas) se aceptan en
validate y solo se comprueban los literales.
"""

import ipaddress
import logging
import re
from typing import Any, Dict, FrozenSet, Iterable, List, Optional

from cimiento.core.errors import AdapterError, ValidationError
from cimiento.core.infra.contracts import AdapterResult, ProviderContext
from cimiento.core.model.resources import UNKNOWN
from cimiento.providers.simulated.cloud import SimulatedCloud

logger = logging.getLogger(__name__)

DEFAULT_REGION = "us-east-1"

_SUBNET_NAME = re.compile(r"^[A-Za-z0-9_]+$")


def _region(context: ProviderContext) -> str:
    return context.settings.region or DEFAULT_REGION


def _known(value: Any) -> bool:
    return value is not UNKNOWN


class SimulatedAdapter:
    """Comportamiento común: atributos obligatorios, fallos programados y CRUD."""

    type_name = ""
    id_prefix = ""
    required: FrozenSet[str] = frozenset()
    replace_only: FrozenSet[str] = frozenset()
    updatable: FrozenSet[str] = frozenset()
    create_before_destroy = False

    def __init__(self, cloud: SimulatedCloud):
        self.cloud = cloud

    # ---------------------------------------------------------- validate

    def validate(self, attributes: Dict[str, Any]) -> None:
        missing = sorted(k for k in self.required if k not in attributes)
        if missing:
            raise ValidationError(f"{self.type_name}: faltan atributos obligatorios: {', '.join(missing)}")
        unknown = sorted(k for k in attributes if k not in self.replace_only | self.updatable)
        if unknown:
            raise ValidationError(f"{self.type_name}: atributos no soportados: {', '.join(unknown)}")
        self.check(attributes)

    def check(self, attributes: Dict[str, Any]) -> None:
        """Validaciones propias del tipo (solo sobre valores conocidos)."""

    # ------------------------------------------------------------- apply

    def outputs(self, physical_id: str, attributes: Dict[str, Any], context: ProviderContext) -> Dict[str, Any]:
        return {"id": physical_id}

    def apply(
        self,
        attributes: Dict[str, Any],
        physical_id: Optional[str],
        context: ProviderContext,
    ) -> AdapterResult:
        self.cloud.check_fault(self.type_name, "apply")
        if physical_id is None:
            physical_id = self.cloud.create(self.type_name, self.id_prefix, attributes)
            logger.info("%s creado: %s", self.type_name, physical_id)
        else:
            self.cloud.update(physical_id, attributes)
            logger.info("%s actualizado: %s", self.type_name, physical_id)
        return AdapterResult(physical_id=physical_id, outputs=self.outputs(physical_id, attributes, context))

    def delete(self, physical_id: str, context: ProviderContext) -> None:
        self.cloud.check_fault(self.type_name, "delete")
        if not self.cloud.delete(physical_id):
            logger.warning("%s '%s' ya no existía en la nube", self.type_name, physical_id)


def _check_cidr(value: Any, field: str) -> Optional[ipaddress.IPv4Network]:
    if not _known(value):
        return None
    try:
        return ipaddress.IPv4Network(str(value), strict=True)
    except ValueError as e:
        raise ValidationError(f"{field}: CIDR inválido '{value}': {e}") from e


def _check_port(value: Any, field: str) -> None:
    if not _known(value):
        return
    if not isinstance(value, int) or isinstance(value, bool) or not 0 < value < 65536:
        raise ValidationError(f"{field}: puerto inválido '{value}'")


def _check_list(value: Any, field: str) -> List[Any]:
    if not _known(value):
        return []
    if not isinstance(value, list):
        raise ValidationError(f"{field}: se esperaba una lista")
    return value


class NetworkAdapter(SimulatedAdapter):
    """
    Red virtual con subredes públicas.

    subnets: [{name, cidr_mask}]; las subredes se reparten en orden dentro
    del bloque `cidr`. Sus ids salen en `subnet_ids`.
    """

    type_name = "network"
    id_prefix = "vpc"
    required = frozenset({"cidr"})
    replace_only = frozenset({"cidr", "subnets"})
    updatable = frozenset({"enable_dns_support", "enable_dns_hostnames", "tags"})

    def check(self, attributes: Dict[str, Any]) -> None:
        network = _check_cidr(attributes.get("cidr"), "cidr")
        subnets = _check_list(attributes.get("subnets", []), "subnets")
        if network is None:
            return
        self._carve(network, subnets)

    @staticmethod
    def _carve(network: ipaddress.IPv4Network, subnets: Iterable[Any]) -> List[str]:
        """Asigna un bloque a cada subred, en orden; ValidationError si no caben."""
        blocks: List[str] = []
        taken: List[ipaddress.IPv4Network] = []
        for i, subnet in enumerate(subnets):
            if not isinstance(subnet, dict) or not _SUBNET_NAME.match(str(subnet.get("name", ""))):
                raise ValidationError(f"subnets[{i}]: se esperaba un mapping con 'name' alfanumérico")
            mask = subnet.get("cidr_mask", 24)
            if not isinstance(mask, int) or not network.prefixlen <= mask <= 28:
                raise ValidationError(f"subnets[{i}]: cidr_mask {mask} fuera de rango para {network}")
            free = (c for c in network.subnets(new_prefix=mask) if not any(c.overlaps(t) for t in taken))
            block = next(free, None)
            if block is None:
                raise ValidationError(f"subnets[{i}]: no queda espacio en {network} para un /{mask}")
            taken.append(block)
            blocks.append(str(block))
        return blocks

    def outputs(self, physical_id: str, attributes: Dict[str, Any], context: ProviderContext) -> Dict[str, Any]:
        network = ipaddress.IPv4Network(attributes["cidr"])
        subnets = attributes.get("subnets", [])
        blocks = self._carve(network, subnets)
        subnet_ids = [f"subnet-{physical_id[4:]}{i:02x}" for i in range(len(blocks))]
        out: Dict[str, Any] = {
            "id": physical_id,
            "cidr": str(network),
            "subnet_ids": subnet_ids,
            "subnet_cidrs": blocks,
        }
        # una salida por subred para poder referenciarla: ${vpc.subnet_public1}
        for subnet, subnet_id in zip(subnets, subnet_ids):
            out[f"subnet_{subnet['name']}"] = subnet_id
        return out


class SecurityGroupAdapter(SimulatedAdapter):
    """
    Security group: reglas de entrada [{port, protocol, cidr, description}].
    Se aplican tal cual se declaran.
    """

    type_name = "security_group"
    id_prefix = "sg"
    required = frozenset({"vpc_id"})
    replace_only = frozenset({"vpc_id", "description"})
    updatable = frozenset({"ingress", "tags"})

    def check(self, attributes: Dict[str, Any]) -> None:
        for i, rule in enumerate(_check_list(attributes.get("ingress", []), "ingress")):
            if not isinstance(rule, dict):
                raise ValidationError(f"ingress[{i}]: se esperaba un mapping")
            _check_port(rule.get("port"), f"ingress[{i}].port")
            if rule.get("protocol", "tcp") not in ("tcp", "udp", UNKNOWN):
                raise ValidationError(f"ingress[{i}].protocol: '{rule.get('protocol')}' no soportado")
            _check_cidr(rule.get("cidr"), f"ingress[{i}].cidr")

    def outputs(self, physical_id: str, attributes: Dict[str, Any], context: ProviderContext) -> Dict[str, Any]:
        return {"id": physical_id, "group_id": physical_id}


class LoadBalancerAdapter(SimulatedAdapter):
    """Load balancer de aplicación; se reemplaza creando el nuevo antes de borrar el viejo."""

    type_name = "load_balancer"
    id_prefix = "lb"
    required = frozenset({"vpc_id", "subnets"})
    replace_only = frozenset({"vpc_id", "subnets", "internet_facing", "name"})
    updatable = frozenset({"security_groups", "target_group", "listener_port", "tags"})
    create_before_destroy = True

    def check(self, attributes: Dict[str, Any]) -> None:
        subnets = _check_list(attributes.get("subnets"), "subnets")
        if _known(attributes.get("subnets")) and len(subnets) < 2:
            raise ValidationError("subnets: un load balancer necesita al menos dos subredes")
        _check_list(attributes.get("security_groups", []), "security_groups")
        _check_port(attributes.get("listener_port", 80), "listener_port")

    def outputs(self, physical_id: str, attributes: Dict[str, Any], context: ProviderContext) -> Dict[str, Any]:
        name = attributes.get("name") or physical_id
        scheme = "" if attributes.get("internet_facing", True) else "internal-"
        dns = f"{scheme}{name}-{physical_id[3:]}.{_region(context)}.elb.simulated"
        return {
            "id": physical_id,
            "arn": f"arn:sim:elasticloadbalancing:{_region(context)}:loadbalancer/{physical_id}",
            "dns_name": dns,
            "url": f"http://{dns}",
        }


class TargetGroupAdapter(SimulatedAdapter):
    type_name = "target_group"
    id_prefix = "tg"
    required = frozenset({"vpc_id", "port"})
    replace_only = frozenset({"vpc_id", "port", "protocol"})
    updatable = frozenset({"targets", "health_check_path", "tags"})

    def check(self, attributes: Dict[str, Any]) -> None:
        _check_port(attributes.get("port"), "port")
        if attributes.get("protocol", "HTTP") not in ("HTTP", "HTTPS", UNKNOWN):
            raise ValidationError(f"protocol: '{attributes.get('protocol')}' no soportado")
        _check_list(attributes.get("targets", []), "targets")

    def apply(self, attributes: Dict[str, Any], physical_id: Optional[str], context: ProviderContext) -> AdapterResult:
        missing = [t for t in attributes.get("targets", []) if t not in self.cloud]
        if missing:
            raise AdapterError(f"Targets inexistentes: {', '.join(map(str, missing))}")
        return super().apply(attributes, physical_id, context)

    def outputs(self, physical_id: str, attributes: Dict[str, Any], context: ProviderContext) -> Dict[str, Any]:
        return {
            "id": physical_id,
            "arn": f"arn:sim:elasticloadbalancing:{_region(context)}:targetgroup/{physical_id}",
        }


class InstanceAdapter(SimulatedAdapter):
    """Instancia de cómputo; user_data puede ser un script o una lista de comandos."""

    type_name = "instance"
    id_prefix = "i"
    required = frozenset({"image_id", "instance_type", "subnet_id"})
    replace_only = frozenset({"image_id", "subnet_id", "key_name", "user_data"})
    updatable = frozenset({"instance_type", "security_groups", "tags"})

    def check(self, attributes: Dict[str, Any]) -> None:
        image = attributes.get("image_id")
        if _known(image) and not str(image).strip().startswith("ami-"):
            raise ValidationError(f"image_id: '{image}' no es un id de imagen")
        itype = attributes.get("instance_type")
        if _known(itype) and (not isinstance(itype, str) or "." not in itype):
            raise ValidationError(f"instance_type: '{itype}' inválido (ej: t2.micro)")
        _check_list(attributes.get("security_groups", []), "security_groups")
        user_data = attributes.get("user_data")
        if _known(user_data) and user_data is not None and not isinstance(user_data, (str, list)):
            raise ValidationError("user_data: se esperaba un script o una lista de comandos")

    def outputs(self, physical_id: str, attributes: Dict[str, Any], context: ProviderContext) -> Dict[str, Any]:
        n = int(physical_id.split("-", 1)[1], 16)
        private_ip = f"10.0.{(n >> 8) & 0xFF}.{(n & 0xFF) or 1}"
        public_ip = f"54.{(n >> 16) & 0xFF}.{(n >> 8) & 0xFF}.{(n & 0xFF) or 1}"
        return {
            "id": physical_id,
            "private_ip": private_ip,
            "public_ip": public_ip,
            "public_dns": f"ec2-{public_ip.replace('.', '-')}.{_region(context)}.compute.simulated",
        }


ADAPTER_TYPES = (
    NetworkAdapter,
    SecurityGroupAdapter,
    LoadBalancerAdapter,
    TargetGroupAdapter,
    InstanceAdapter,
)
