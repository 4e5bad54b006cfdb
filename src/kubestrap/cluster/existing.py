# src/kubestrap/cluster/existing.py
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import List, Optional

from kubestrap.errors import ClusterError, ClusterNotFound, InvalidConfiguration, UnsupportedOperation
from kubestrap.utils.execution import ExecutionContext
from kubestrap.utils.runner import CommandRunner
from .nodes import (
    COMPONENT_STATUS_JSONPATH,
    extract_server_version,
    parse_component_statuses,
    parse_nodes,
    summarize_readiness,
)
from .types import (
    ClusterInfo,
    ClusterType,
    CreateOptions,
    HealthStatus,
    NodeGroupInfo,
    NodeGroupOptions,
    NodeInfo,
    ScaleOptions,
)

log = logging.getLogger("kubestrap")


def default_kubeconfig() -> Path:
    """First entry of $KUBECONFIG, else ~/.kube/config."""
    env = os.environ.get("KUBECONFIG", "")
    first = env.split(os.pathsep)[0] if env else ""
    return Path(first) if first else Path.home() / ".kube" / "config"


class ExistingProvider:
    """
    Clusters that already exist and are reachable through a kubeconfig.
    Each kube context is one "cluster"; nothing here creates or resizes.
    """

    def __init__(self, kubeconfig: Optional[str | Path] = None, runner: Optional[CommandRunner] = None):
        self.kubeconfig = Path(kubeconfig or default_kubeconfig()).expanduser()
        self.runner = runner or CommandRunner(label="kubectl")

    @property
    def type(self) -> ClusterType:
        return ClusterType.EXISTING

    # ------------------ unsupported ------------------

    def create(self, opts: CreateOptions, ctx: Optional[ExecutionContext] = None) -> ClusterInfo:
        raise UnsupportedOperation(
            "create", self.type.value,
            "create not supported for existing clusters; use get_cluster to connect",
        )

    def delete(self, name: str, ctx: Optional[ExecutionContext] = None) -> None:
        raise UnsupportedOperation("delete", self.type.value, "delete not supported for existing clusters")

    def scale(self, name: str, opts: ScaleOptions, ctx: Optional[ExecutionContext] = None) -> None:
        raise UnsupportedOperation(
            "scale", self.type.value,
            "scale not directly supported for existing clusters; use kubectl or the original provisioning tool",
        )

    def create_node_group(self, cluster: str, opts: NodeGroupOptions, ctx: Optional[ExecutionContext] = None) -> None:
        raise UnsupportedOperation("create_node_group", self.type.value)

    def delete_node_group(self, cluster: str, name: str, ctx: Optional[ExecutionContext] = None) -> None:
        raise UnsupportedOperation("delete_node_group", self.type.value)

    def list_node_groups(self, cluster: str, ctx: Optional[ExecutionContext] = None) -> List[NodeGroupInfo]:
        raise UnsupportedOperation("list_node_groups", self.type.value)

    # ------------------ read paths ------------------

    def get_kubeconfig(self, name: str, ctx: Optional[ExecutionContext] = None) -> Path:
        if not self.kubeconfig.is_file():
            raise InvalidConfiguration(f"kubeconfig not found at {self.kubeconfig}")
        return self.kubeconfig

    def health(self, name: str, ctx: Optional[ExecutionContext] = None) -> HealthStatus:
        status = HealthStatus()

        try:
            self._kubectl(name, ["cluster-info"], ctx)
        except ClusterError as exc:
            status.message = f"cannot connect to cluster: {exc}"
            return status

        try:
            nodes = self._nodes(name, ctx)
        except ClusterError as exc:
            status.message = f"cannot get nodes: {exc}"
            return status

        status.node_statuses = {n.name: n.status for n in nodes}
        status.healthy, status.message = summarize_readiness(nodes)

        # componentstatuses is deprecated and absent on newer clusters
        try:
            out = self._kubectl(name, ["get", "componentstatuses", "-o", COMPONENT_STATUS_JSONPATH], ctx)
            status.components = parse_component_statuses(out)
        except ClusterError as exc:
            log.debug("[existing] componentstatuses unavailable for %s: %s", name, exc)

        return status

    def list_clusters(self, ctx: Optional[ExecutionContext] = None) -> List[ClusterInfo]:
        return [
            ClusterInfo(name=context, type=self.type, status="available")
            for context in self._contexts(ctx)
        ]

    def get_cluster(self, name: str, ctx: Optional[ExecutionContext] = None) -> ClusterInfo:
        if name not in self._contexts(ctx):
            raise ClusterNotFound(name)

        info = ClusterInfo(name=name, type=self.type, status="unknown")
        try:
            out = self._kubectl(name, ["version"], ctx)
            info.kubernetes_version = extract_server_version(out)
            info.status = "connected"
        except ClusterError as exc:
            log.debug("[existing] version query failed for %s: %s", name, exc)

        try:
            info.add_nodes(self._nodes(name, ctx))
        except ClusterError as exc:
            log.debug("[existing] node query failed for %s: %s", name, exc)

        return info

    # ------------------ kubectl ------------------

    def _kubectl(self, context: str, args: List[str], ctx: Optional[ExecutionContext]) -> str:
        argv = ["kubectl", "--kubeconfig", str(self.kubeconfig)]
        if context:
            argv += ["--context", context]
        return self.runner.run(argv + args, ctx=ctx).stdout

    def _contexts(self, ctx: Optional[ExecutionContext]) -> List[str]:
        out = self._kubectl("", ["config", "get-contexts", "-o", "name"], ctx)
        return [line.strip() for line in out.splitlines() if line.strip()]

    def _nodes(self, context: str, ctx: Optional[ExecutionContext]) -> List[NodeInfo]:
        return parse_nodes(self._kubectl(context, ["get", "nodes", "-o", "json"], ctx))
