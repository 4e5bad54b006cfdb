# src/kubestrap/cluster/eks.py
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

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
    NodeTaint,
    ScaleOptions,
)
from .validate import (
    CLUSTER_NAME_REQUIRED,
    DESIRED_COUNT_NEGATIVE,
    NODE_GROUP_REQUIRED,
    REGION_REQUIRED,
    parse_timestamp,
    require,
)

log = logging.getLogger("kubestrap")

_TAINT_EFFECTS = {
    "NoSchedule": "NO_SCHEDULE",
    "NoExecute": "NO_EXECUTE",
    "PreferNoSchedule": "PREFER_NO_SCHEDULE",
}


def _kv(pairs: Dict[str, str]) -> str:
    return ",".join(f"{k}={v}" for k, v in sorted(pairs.items()))


class EKSProvider:
    """Amazon EKS through the aws CLI."""

    def __init__(
        self,
        *,
        profile: Optional[str] = None,
        region: Optional[str] = None,
        role_arn: Optional[str] = None,
        node_role_arn: Optional[str] = None,
        subnet_ids: Sequence[str] = (),
        kubeconfig_dir: Optional[Path] = None,
        runner: Optional[CommandRunner] = None,
    ):
        self.profile = profile
        self.region = region
        self.role_arn = role_arn
        self.node_role_arn = node_role_arn
        self.subnet_ids = list(subnet_ids)
        self.kubeconfig_dir = kubeconfig_dir or Path.home() / ".kube" / "kubestrap"
        self.runner = runner or CommandRunner(label="aws")

    @property
    def type(self) -> ClusterType:
        return ClusterType.EKS

    # ------------------ aws ------------------

    def _aws(self, args: List[str], ctx: Optional[ExecutionContext], region: Optional[str] = None) -> Dict[str, Any]:
        argv = ["aws", *args, "--output", "json"]
        region = region or self.region
        if region:
            argv += ["--region", region]
        if self.profile:
            argv += ["--profile", self.profile]
        out = self.runner.run(argv, ctx=ctx).stdout
        if not out.strip():
            return {}
        try:
            return json.loads(out)
        except json.JSONDecodeError as exc:
            raise ClusterError(f"unexpected aws output for {' '.join(args[:2])}: {exc}") from exc

    def _describe(self, name: str, ctx: Optional[ExecutionContext]) -> Dict[str, Any]:
        try:
            return self._aws(["eks", "describe-cluster", "--name", name], ctx).get("cluster", {})
        except CommandError as exc:
            if "ResourceNotFoundException" in exc.stderr:
                raise ClusterNotFound(name) from exc
            raise

    def _nodegroup_names(self, name: str, ctx: Optional[ExecutionContext]) -> List[str]:
        return self._aws(["eks", "list-nodegroups", "--cluster-name", name], ctx).get("nodegroups", [])

    def _describe_nodegroup(self, cluster: str, group: str, ctx: Optional[ExecutionContext]) -> Dict[str, Any]:
        return self._aws(
            ["eks", "describe-nodegroup", "--cluster-name", cluster, "--nodegroup-name", group], ctx
        ).get("nodegroup", {})

    def _to_info(self, data: Dict[str, Any]) -> ClusterInfo:
        return ClusterInfo(
            name=data.get("name", ""),
            type=self.type,
            status=data.get("status", "unknown"),
            kubernetes_version=data.get("version", ""),
            endpoint=data.get("endpoint", ""),
            region=self.region or "",
            created_at=parse_timestamp(data.get("createdAt")),
        )

    def _group_info(self, cluster: str, data: Dict[str, Any]) -> NodeGroupInfo:
        scaling = data.get("scalingConfig", {})
        return NodeGroupInfo(
            name=data.get("nodegroupName", ""),
            cluster=cluster,
            status=data.get("status", ""),
            instance_type=",".join(data.get("instanceTypes") or []),
            desired_size=scaling.get("desiredSize", 0),
            min_size=scaling.get("minSize", 0),
            max_size=scaling.get("maxSize", 0),
            labels=data.get("labels") or {},
        )

    # ------------------ lifecycle ------------------

    def create(self, opts: CreateOptions, ctx: Optional[ExecutionContext] = None) -> ClusterInfo:
        require(opts.name, CLUSTER_NAME_REQUIRED)
        region = opts.region or self.region
        require(region, REGION_REQUIRED)
        require(self.role_arn, "cluster role ARN is required")
        if not self.subnet_ids:
            raise InvalidConfiguration("at least one subnet is required")

        args = [
            "eks", "create-cluster",
            "--name", opts.name,
            "--role-arn", self.role_arn,
            "--resources-vpc-config", f"subnetIds={','.join(self.subnet_ids)}",
        ]
        if opts.kubernetes_version:
            args += ["--kubernetes-version", opts.kubernetes_version]
        if opts.tags:
            args += ["--tags", _kv(opts.tags)]

        log.info("[eks] creating cluster %s in %s", opts.name, region)
        self._aws(args, ctx, region=region)
        self._aws(["eks", "wait", "cluster-active", "--name", opts.name], ctx, region=region)

        if opts.worker_count > 0:
            self.create_node_group(
                opts.name,
                NodeGroupOptions(
                    name=f"{opts.name}-workers",
                    instance_type=opts.worker_type or "t3.medium",
                    desired_size=opts.worker_count,
                    min_size=opts.worker_count,
                    max_size=opts.worker_count,
                ),
                ctx,
                region=region,
            )

        info = self._to_info(self._aws(["eks", "describe-cluster", "--name", opts.name], ctx, region=region).get("cluster", {}))
        info.region = region
        return info

    def delete(self, name: str, ctx: Optional[ExecutionContext] = None) -> None:
        require(name, CLUSTER_NAME_REQUIRED)
        for group in self._nodegroup_names(name, ctx):
            self.delete_node_group(name, group, ctx)
        log.info("[eks] deleting cluster %s", name)
        self._aws(["eks", "delete-cluster", "--name", name], ctx)

    def scale(self, name: str, opts: ScaleOptions, ctx: Optional[ExecutionContext] = None) -> None:
        require(name, CLUSTER_NAME_REQUIRED)
        if opts.desired_count < 0:
            raise InvalidConfiguration(DESIRED_COUNT_NEGATIVE)

        group = opts.node_group
        if not group:
            groups = self._nodegroup_names(name, ctx)
            if not groups:
                raise InvalidConfiguration(f"cluster {name} has no node groups to scale")
            group = groups[0]

        current = self._group_info(name, self._describe_nodegroup(name, group, ctx))
        desired = opts.desired_count
        min_size = opts.min_count if opts.min_count is not None else min(current.min_size, desired)
        max_size = opts.max_count if opts.max_count is not None else max(current.max_size, desired)

        log.info("[eks] scaling %s/%s to %d", name, group, desired)
        self._aws(
            [
                "eks", "update-nodegroup-config",
                "--cluster-name", name,
                "--nodegroup-name", group,
                "--scaling-config", f"minSize={min_size},maxSize={max_size},desiredSize={desired}",
            ],
            ctx,
        )

    def get_kubeconfig(self, name: str, ctx: Optional[ExecutionContext] = None) -> Path:
        require(name, CLUSTER_NAME_REQUIRED)
        path = self.kubeconfig_dir / f"eks-{name}.yaml"
        path.parent.mkdir(parents=True, exist_ok=True)
        self._aws(["eks", "update-kubeconfig", "--name", name, "--kubeconfig", str(path)], ctx)
        return path

    def health(self, name: str, ctx: Optional[ExecutionContext] = None) -> HealthStatus:
        status = HealthStatus()
        if not name:
            status.message = CLUSTER_NAME_REQUIRED
            return status
        try:
            cluster = self._describe(name, ctx)
            cp_status = cluster.get("status", "UNKNOWN")
            status.components["control-plane"] = cp_status
            for group in self._nodegroup_names(name, ctx):
                status.node_statuses[group] = self._describe_nodegroup(name, group, ctx).get("status", "UNKNOWN")
        except ClusterError as exc:
            status.message = f"cannot describe cluster: {exc}"
            return status

        degraded = [g for g, s in status.node_statuses.items() if s != "ACTIVE"]
        status.healthy = cp_status == "ACTIVE" and not degraded
        if cp_status != "ACTIVE":
            status.message = f"cluster status is {cp_status}"
        elif degraded:
            status.message = f"node groups not active: {', '.join(degraded)}"
        else:
            status.message = f"cluster active, {len(status.node_statuses)} node group(s) active"
        return status

    def list_clusters(self, ctx: Optional[ExecutionContext] = None) -> List[ClusterInfo]:
        names = self._aws(["eks", "list-clusters"], ctx).get("clusters", [])
        return [self._to_info(self._describe(n, ctx)) for n in names]

    def get_cluster(self, name: str, ctx: Optional[ExecutionContext] = None) -> ClusterInfo:
        require(name, CLUSTER_NAME_REQUIRED)
        return self._to_info(self._describe(name, ctx))

    # ------------------ node groups ------------------

    def create_node_group(
        self,
        cluster: str,
        opts: NodeGroupOptions,
        ctx: Optional[ExecutionContext] = None,
        region: Optional[str] = None,
    ) -> None:
        require(cluster, CLUSTER_NAME_REQUIRED)
        require(opts.name, NODE_GROUP_REQUIRED)
        region = region or self.region
        require(region, REGION_REQUIRED)
        require(self.node_role_arn, "node role ARN is required")
        if not self.subnet_ids:
            raise InvalidConfiguration("at least one subnet is required")

        desired = opts.desired_size or 1
        args = [
            "eks", "create-nodegroup",
            "--cluster-name", cluster,
            "--nodegroup-name", opts.name,
            "--node-role", self.node_role_arn,
            "--subnets", *self.subnet_ids,
            "--scaling-config",
            f"minSize={opts.min_size or desired},maxSize={opts.max_size or desired},desiredSize={desired}",
        ]
        if opts.instance_type:
            args += ["--instance-types", opts.instance_type]
        if opts.disk_size:
            args += ["--disk-size", str(opts.disk_size)]
        if opts.labels:
            args += ["--labels", _kv(opts.labels)]
        if opts.taints:
            args += ["--taints", *[self._taint(t) for t in opts.taints]]

        log.info("[eks] creating node group %s/%s", cluster, opts.name)
        self._aws(args, ctx, region=region)
        self._aws(["eks", "wait", "nodegroup-active", "--cluster-name", cluster, "--nodegroup-name", opts.name], ctx, region=region)

    @staticmethod
    def _taint(taint: NodeTaint) -> str:
        effect = _TAINT_EFFECTS.get(taint.effect, taint.effect)
        return f"key={taint.key},value={taint.value},effect={effect}"

    def delete_node_group(self, cluster: str, name: str, ctx: Optional[ExecutionContext] = None) -> None:
        require(cluster, CLUSTER_NAME_REQUIRED)
        require(name, NODE_GROUP_REQUIRED)
        log.info("[eks] deleting node group %s/%s", cluster, name)
        self._aws(["eks", "delete-nodegroup", "--cluster-name", cluster, "--nodegroup-name", name], ctx)
        self._aws(["eks", "wait", "nodegroup-deleted", "--cluster-name", cluster, "--nodegroup-name", name], ctx)

    def list_node_groups(self, cluster: str, ctx: Optional[ExecutionContext] = None) -> List[NodeGroupInfo]:
        require(cluster, CLUSTER_NAME_REQUIRED)
        return [
            self._group_info(cluster, self._describe_nodegroup(cluster, g, ctx))
            for g in self._nodegroup_names(cluster, ctx)
        ]
