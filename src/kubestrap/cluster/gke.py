# src/kubestrap/cluster/gke.py
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from kubestrap.errors import ClusterError, ClusterNotFound, CommandError, InvalidConfiguration
from kubestrap.utils.execution import ExecutionContext
from kubestrap.utils.runner import CommandRunner
from .types import (
    ClusterInfo,
    ClusterType,
    CreateOptions,
    HealthStatus,
    NodeGroupInfo,
    NodeGroupOptions,
    ScaleOptions,
)
from .validate import (
    CLUSTER_NAME_REQUIRED,
    DESIRED_COUNT_NEGATIVE,
    NODE_POOL_REQUIRED,
    PROJECT_REQUIRED,
    REGION_REQUIRED,
    parse_timestamp,
    require,
)

log = logging.getLogger("kubestrap")

DEFAULT_NODE_POOL = "default-pool"


class GKEProvider:
    """Google Kubernetes Engine through `gcloud container`."""

    def __init__(
        self,
        *,
        project: Optional[str] = None,
        region: Optional[str] = None,
        kubeconfig_dir: Optional[Path] = None,
        runner: Optional[CommandRunner] = None,
    ):
        self.project = project
        self.region = region
        self.kubeconfig_dir = kubeconfig_dir or Path.home() / ".kube" / "kubestrap"
        self.runner = runner or CommandRunner(label="gcloud")

    @property
    def type(self) -> ClusterType:
        return ClusterType.GKE

    def _gcloud(
        self,
        args: List[str],
        ctx: Optional[ExecutionContext],
        *,
        project: Optional[str] = None,
        region: Optional[str] = None,
        env: Optional[Dict[str, str]] = None,
    ) -> Any:
        argv = ["gcloud", "container", *args, "--format=json", "--quiet"]
        project = project or self.project
        region = region or self.region
        if project:
            argv.append(f"--project={project}")
        if region:
            argv.append(f"--region={region}")
        out = self.runner.run(argv, ctx=ctx, env=env).stdout
        if not out.strip():
            return {}
        try:
            return json.loads(out)
        except json.JSONDecodeError as exc:
            raise ClusterError(f"unexpected gcloud output for {' '.join(args[:2])}: {exc}") from exc

    def _describe(self, name: str, ctx: Optional[ExecutionContext]) -> Dict[str, Any]:
        try:
            return self._gcloud(["clusters", "describe", name], ctx)
        except CommandError as exc:
            if "NOT_FOUND" in exc.stderr or "not found" in exc.stderr.lower():
                raise ClusterNotFound(name) from exc
            raise

    def _to_info(self, data: Dict[str, Any]) -> ClusterInfo:
        endpoint = data.get("endpoint", "")
        return ClusterInfo(
            name=data.get("name", ""),
            type=self.type,
            status=data.get("status", "unknown"),
            kubernetes_version=data.get("currentMasterVersion", ""),
            endpoint=f"https://{endpoint}" if endpoint else "",
            region=data.get("location", self.region or ""),
            created_at=parse_timestamp(data.get("createTime")),
        )

    def _pool_info(self, cluster: str, data: Dict[str, Any]) -> NodeGroupInfo:
        config = data.get("config", {})
        autoscaling = data.get("autoscaling", {})
        count = data.get("initialNodeCount", 0)
        return NodeGroupInfo(
            name=data.get("name", ""),
            cluster=cluster,
            status=data.get("status", ""),
            instance_type=config.get("machineType", ""),
            desired_size=count,
            min_size=autoscaling.get("minNodeCount", count),
            max_size=autoscaling.get("maxNodeCount", count),
            labels=config.get("labels") or {},
        )

    # ------------------ lifecycle ------------------

    def create(self, opts: CreateOptions, ctx: Optional[ExecutionContext] = None) -> ClusterInfo:
        require(opts.name, CLUSTER_NAME_REQUIRED)
        region = opts.region or self.region
        require(region, REGION_REQUIRED)
        project = opts.gcp_project or self.project
        require(project, PROJECT_REQUIRED)

        args = ["clusters", "create", opts.name, f"--num-nodes={max(opts.worker_count, 1)}"]
        if opts.worker_type:
            args.append(f"--machine-type={opts.worker_type}")
        if opts.kubernetes_version:
            args.append(f"--cluster-version={opts.kubernetes_version}")
        if opts.gcp_network:
            args.append(f"--network={opts.gcp_network}")
        if opts.gcp_subnetwork:
            args.append(f"--subnetwork={opts.gcp_subnetwork}")
        if opts.preemptible:
            args.append("--preemptible")
        if opts.tags:
            args.append("--labels=" + ",".join(f"{k}={v}" for k, v in sorted(opts.tags.items())))

        log.info("[gke] creating cluster %s in %s/%s", opts.name, project, region)
        data = self._gcloud(args, ctx, project=project, region=region)
        # create returns a list with the new cluster
        if isinstance(data, list):
            data = data[0] if data else {}
        info = self._to_info(data or {"name": opts.name, "status": "RUNNING"})
        info.region = region
        return info

    def delete(self, name: str, ctx: Optional[ExecutionContext] = None) -> None:
        require(name, CLUSTER_NAME_REQUIRED)
        log.info("[gke] deleting cluster %s", name)
        self._gcloud(["clusters", "delete", name], ctx)

    def scale(self, name: str, opts: ScaleOptions, ctx: Optional[ExecutionContext] = None) -> None:
        require(name, CLUSTER_NAME_REQUIRED)
        if opts.desired_count < 0:
            raise InvalidConfiguration(DESIRED_COUNT_NEGATIVE)
        pool = opts.node_group or DEFAULT_NODE_POOL

        log.info("[gke] resizing %s/%s to %d", name, pool, opts.desired_count)
        self._gcloud(
            ["clusters", "resize", name, f"--node-pool={pool}", f"--num-nodes={opts.desired_count}"],
            ctx,
        )
        if opts.min_count is not None or opts.max_count is not None:
            min_nodes = opts.min_count if opts.min_count is not None else min(opts.desired_count, 1)
            max_nodes = opts.max_count if opts.max_count is not None else max(opts.desired_count, min_nodes)
            self._gcloud(
                [
                    "clusters", "update", name,
                    "--enable-autoscaling",
                    f"--node-pool={pool}",
                    f"--min-nodes={min_nodes}",
                    f"--max-nodes={max_nodes}",
                ],
                ctx,
            )

    def get_kubeconfig(self, name: str, ctx: Optional[ExecutionContext] = None) -> Path:
        require(name, CLUSTER_NAME_REQUIRED)
        path = self.kubeconfig_dir / f"gke-{name}.yaml"
        path.parent.mkdir(parents=True, exist_ok=True)
        self._gcloud(["clusters", "get-credentials", name], ctx, env={"KUBECONFIG": str(path)})
        return path

    def health(self, name: str, ctx: Optional[ExecutionContext] = None) -> HealthStatus:
        status = HealthStatus()
        if not name:
            status.message = CLUSTER_NAME_REQUIRED
            return status
        try:
            data = self._describe(name, ctx)
        except ClusterError as exc:
            status.message = f"cannot describe cluster: {exc}"
            return status

        cp_status = data.get("status", "UNKNOWN")
        status.components["control-plane"] = cp_status
        for pool in data.get("nodePools", []):
            status.node_statuses[pool.get("name", "")] = pool.get("status", "UNKNOWN")

        degraded = [p for p, s in status.node_statuses.items() if s != "RUNNING"]
        status.healthy = cp_status == "RUNNING" and not degraded
        if cp_status != "RUNNING":
            status.message = f"cluster status is {cp_status}"
        elif degraded:
            status.message = f"node pools not running: {', '.join(degraded)}"
        else:
            status.message = f"cluster running, {len(status.node_statuses)} node pool(s) running"
        return status

    def list_clusters(self, ctx: Optional[ExecutionContext] = None) -> List[ClusterInfo]:
        data = self._gcloud(["clusters", "list"], ctx) or []
        return [self._to_info(item) for item in data]

    def get_cluster(self, name: str, ctx: Optional[ExecutionContext] = None) -> ClusterInfo:
        require(name, CLUSTER_NAME_REQUIRED)
        return self._to_info(self._describe(name, ctx))

    # ------------------ node pools ------------------

    def create_node_group(self, cluster: str, opts: NodeGroupOptions, ctx: Optional[ExecutionContext] = None) -> None:
        require(cluster, CLUSTER_NAME_REQUIRED)
        require(opts.name, NODE_POOL_REQUIRED)

        args = [
            "node-pools", "create", opts.name,
            f"--cluster={cluster}",
            f"--num-nodes={opts.desired_size or 1}",
        ]
        if opts.instance_type:
            args.append(f"--machine-type={opts.instance_type}")
        if opts.disk_size:
            args.append(f"--disk-size={opts.disk_size}")
        if opts.labels:
            args.append("--node-labels=" + ",".join(f"{k}={v}" for k, v in sorted(opts.labels.items())))
        if opts.taints:
            args.append("--node-taints=" + ",".join(str(t) for t in opts.taints))
        if opts.max_size:
            args += ["--enable-autoscaling", f"--min-nodes={opts.min_size}", f"--max-nodes={opts.max_size}"]

        log.info("[gke] creating node pool %s/%s", cluster, opts.name)
        self._gcloud(args, ctx)

    def delete_node_group(self, cluster: str, name: str, ctx: Optional[ExecutionContext] = None) -> None:
        require(cluster, CLUSTER_NAME_REQUIRED)
        require(name, NODE_POOL_REQUIRED)
        log.info("[gke] deleting node pool %s/%s", cluster, name)
        self._gcloud(["node-pools", "delete", name, f"--cluster={cluster}"], ctx)

    def list_node_groups(self, cluster: str, ctx: Optional[ExecutionContext] = None) -> List[NodeGroupInfo]:
        require(cluster, CLUSTER_NAME_REQUIRED)
        data = self._gcloud(["node-pools", "list", f"--cluster={cluster}"], ctx) or []
        return [self._pool_info(cluster, item) for item in data]
