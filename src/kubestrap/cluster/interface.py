# src/kubestrap/cluster/interface.py

from __future__ import annotations

from pathlib import Path
from typing import List, Optional, Protocol, Union, runtime_checkable

from kubestrap.utils.execution import ExecutionContext
from .types import (
    ClusterInfo,
    ClusterType,
    CreateOptions,
    HealthStatus,
    NodeGroupInfo,
    NodeGroupOptions,
    ScaleOptions,
)

Kubeconfig = Union[bytes, Path]


@runtime_checkable
class Provider(Protocol):
    """
    Lifecycle contract every backend implements independently.

    Mutating operations validate their input and raise InvalidConfiguration
    before any remote call. health() reports problems in HealthStatus and
    does not raise for unhealthy or unreachable clusters.
    """

    @property
    def type(self) -> ClusterType: ...

    def create(self, opts: CreateOptions, ctx: Optional[ExecutionContext] = None) -> ClusterInfo: ...

    def delete(self, name: str, ctx: Optional[ExecutionContext] = None) -> None: ...

    def scale(self, name: str, opts: ScaleOptions, ctx: Optional[ExecutionContext] = None) -> None: ...

    def get_kubeconfig(self, name: str, ctx: Optional[ExecutionContext] = None) -> Kubeconfig: ...

    def health(self, name: str, ctx: Optional[ExecutionContext] = None) -> HealthStatus: ...

    def list_clusters(self, ctx: Optional[ExecutionContext] = None) -> List[ClusterInfo]: ...

    def get_cluster(self, name: str, ctx: Optional[ExecutionContext] = None) -> ClusterInfo: ...

    def create_node_group(self, cluster: str, opts: NodeGroupOptions, ctx: Optional[ExecutionContext] = None) -> None: ...

    def delete_node_group(self, cluster: str, name: str, ctx: Optional[ExecutionContext] = None) -> None: ...

    def list_node_groups(self, cluster: str, ctx: Optional[ExecutionContext] = None) -> List[NodeGroupInfo]: ...
