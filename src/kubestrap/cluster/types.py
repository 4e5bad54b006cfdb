# src/kubestrap/cluster/types.py

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional

from kubestrap.bootstrap.models import HostSpec


class ClusterType(str, Enum):
    EXISTING = "existing"
    EKS = "eks"
    GKE = "gke"
    KUBEADM = "kubeadm"


class NodeRole(str, Enum):
    CONTROL_PLANE = "control-plane"
    WORKER = "worker"


CONTROL_PLANE_LABELS = (
    "node-role.kubernetes.io/control-plane",
    "node-role.kubernetes.io/master",
)


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class NodeInfo:
    name: str
    role: NodeRole = NodeRole.WORKER
    status: str = "NotReady"        # Ready | NotReady
    internal_ip: str = ""
    external_ip: str = ""
    labels: Dict[str, str] = field(default_factory=dict)

    @property
    def ready(self) -> bool:
        return self.status == "Ready"


@dataclass
class ClusterInfo:
    name: str
    type: ClusterType
    status: str = "unknown"
    kubernetes_version: str = ""
    endpoint: str = ""
    region: str = ""
    control_plane_nodes: List[NodeInfo] = field(default_factory=list)
    worker_nodes: List[NodeInfo] = field(default_factory=list)
    created_at: Optional[datetime] = None

    def add_nodes(self, nodes: List[NodeInfo]) -> None:
        for node in nodes:
            if node.role == NodeRole.CONTROL_PLANE:
                self.control_plane_nodes.append(node)
            else:
                self.worker_nodes.append(node)


@dataclass
class HealthStatus:
    healthy: bool = False
    message: str = ""
    components: Dict[str, str] = field(default_factory=dict)
    node_statuses: Dict[str, str] = field(default_factory=dict)
    checked_at: datetime = field(default_factory=_now)


@dataclass
class NodeTaint:
    key: str
    value: str = ""
    effect: str = "NoSchedule"

    def __str__(self) -> str:
        return f"{self.key}={self.value}:{self.effect}"


@dataclass
class CreateOptions:
    name: str = ""
    region: str = ""
    kubernetes_version: str = ""
    worker_count: int = 0
    worker_type: str = ""
    control_plane_type: str = ""
    tags: Dict[str, str] = field(default_factory=dict)
    # kubeadm: the machines to bootstrap
    hosts: List[HostSpec] = field(default_factory=list)
    pod_cidr: str = ""
    service_cidr: str = ""
    cni: str = ""
    # gke
    gcp_project: str = ""
    gcp_network: str = ""
    gcp_subnetwork: str = ""
    preemptible: bool = False


@dataclass
class ScaleOptions:
    node_group: str = ""
    desired_count: int = 0
    min_count: Optional[int] = None
    max_count: Optional[int] = None
    # kubeadm: workers to join / node names to remove
    add_hosts: List[HostSpec] = field(default_factory=list)
    remove_nodes: List[str] = field(default_factory=list)


@dataclass
class NodeGroupOptions:
    name: str = ""
    instance_type: str = ""
    desired_size: int = 0
    min_size: int = 0
    max_size: int = 0
    disk_size: int = 0
    labels: Dict[str, str] = field(default_factory=dict)
    taints: List[NodeTaint] = field(default_factory=list)
    hosts: List[HostSpec] = field(default_factory=list)


@dataclass
class NodeGroupInfo:
    name: str
    cluster: str
    status: str = ""
    instance_type: str = ""
    desired_size: int = 0
    min_size: int = 0
    max_size: int = 0
    labels: Dict[str, str] = field(default_factory=dict)
