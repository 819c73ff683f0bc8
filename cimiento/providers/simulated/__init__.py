"""
Provider simulado: nube en memoria/YAML para ensayar planes, fallos y rollback.
"""

from pathlib import Path
from typing import Optional

from cimiento.core.infra.registry import AdapterRegistry
from cimiento.providers.simulated.adapters import (
    ADAPTER_TYPES,
    InstanceAdapter,
    LoadBalancerAdapter,
    NetworkAdapter,
    SecurityGroupAdapter,
    SimulatedAdapter,
    TargetGroupAdapter,
)
from cimiento.providers.simulated.cloud import SimulatedCloud, cloud_file


def build_registry(cloud: Optional[SimulatedCloud] = None) -> AdapterRegistry:
    """Catálogo con un adapter por tipo, todos sobre la misma nube."""
    cloud = cloud if cloud is not None else SimulatedCloud()
    return AdapterRegistry(adapter_type(cloud) for adapter_type in ADAPTER_TYPES)


def open_cloud(root: Path, deployment: str) -> SimulatedCloud:
    return SimulatedCloud(cloud_file(root, deployment))


__all__ = [
    "build_registry",
    "open_cloud",
    "cloud_file",
    "SimulatedCloud",
    "SimulatedAdapter",
    "NetworkAdapter",
    "SecurityGroupAdapter",
    "LoadBalancerAdapter",
    "TargetGroupAdapter",
    "InstanceAdapter",
]
