# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubestrap/cluster/kubeadm.py
from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence

from kubestrap.bootstrap.models import API_SERVER_PORT, BootstrapConfig, CNIPlugin, HostSpec
from kubestrap.bootstrap.orchestrator import KubeadmBootstrapper
from kubestrap.config.models import KubeadmSettings, SSHSettings
from kubestrap.errors import (
    ClusterError,
    ClusterNotFound,
    InvalidConfiguration,
    RemoteConnectionError,
)
from kubestrap.observers.dispatcher import EventBus
from kubestrap.observers.events import ClusterCreated, ClusterDeleted, ClusterScaled, new_ctx, stamp
from kubestrap.ssh.client import SSHClient
from kubestrap.ssh.hostkeys import HostKeyPolicy
from kubestrap.ssh.network import wait_for_reachable
from kubestrap.utils.execution import ExecutionContext
from kubestrap.utils.retry import call_with_retry
from .nodes import summarize_readiness
from .remote_kubectl import RemoteKubectl
from .types import (
    ClusterInfo,
    ClusterType,
    CreateOptions,
    HealthStatus,
    NodeGroupInfo,
    NodeGroupOptions,
    NodeInfo,
    NodeRole,
    ScaleOptions,
)
from .validate import CLUSTER_NAME_REQUIRED, DESIRED_COUNT_NEGATIVE, NODE_GROUP_REQUIRED, require

log = logging.getLogger("kubestrap")

NODE_GROUP_LABEL = "kubestrap.io/node-group"
HOSTS_REQUIRED = "at least one host is required"
ONE_CONTROL_PLANE = "exactly one control-plane host is required"


@dataclass
class KubeadmCluster:
    """
    What kubestrap knows about a kubeadm cluster. Host names are expected
    to match the node names the kubelet registers.
    """

    name: str
    control_plane: HostSpec
    workers: List[HostSpec] = field(default_factory=list)
    config: BootstrapConfig = field(default_factory=BootstrapConfig)
    node_groups: Dict[str, List[str]] = field(default_factory=dict)
    created_at: Optional[datetime] = None

    @classmethod
    def from_hosts(cls, name: str, hosts: Sequence[HostSpec], config: Optional[BootstrapConfig] = None) -> "KubeadmCluster":
        control_planes, workers = _split_hosts(hosts)
        config = config or BootstrapConfig()
        return cls(
            name=name,
            control_plane=control_planes[0],
            workers=workers,
            config=replace(config, cluster_name=name, control_plane_address=control_planes[0].address),
        )

    @property
    def hosts(self) -> List[HostSpec]:
        return [self.control_plane, *self.workers]

    @property
    def endpoint(self) -> str:
        return f"https://{self.control_plane.address}:{API_SERVER_PORT}"

    def worker(self, name: str) -> Optional[HostSpec]:
        return next((w for w in self.workers if w.name == name), None)


def _split_hosts(hosts: Sequence[HostSpec]) -> tuple[List[HostSpec], List[HostSpec]]:
    if not hosts:
        raise InvalidConfiguration(HOSTS_REQUIRED)
    control_planes = [h for h in hosts if h.is_control_plane]
    if len(control_planes) != 1:
        raise InvalidConfiguration(ONE_CONTROL_PLANE)
    return control_planes, [h for h in hosts if not h.is_control_plane]


def host_key_policy(settings: SSHSettings) -> HostKeyPolicy:
    if settings.host_key_policy == "known-hosts":
        return HostKeyPolicy.known_hosts(settings.known_hosts_path)
    if settings.host_key_policy == "fingerprint":
        return HostKeyPolicy.pinned(settings.fingerprints)
    return HostKeyPolicy.auto_add()


def ssh_client(host: HostSpec, settings: SSHSettings, key_candidates: Sequence[str] = ()) -> SSHClient:
    """Unconnected client for `host`; per-host fields override the shared SSH settings."""
    return SSHClient(
        host.address,
        port=host.port or settings.port,
        user=host.user or settings.user,
        private_key_path=host.key_path or settings.key_path,
        key_candidates=key_candidates or settings.key_candidates,
        host_key_policy=host_key_policy(settings),
        connect_timeout=settings.connect_timeout,
        command_timeout=settings.command_timeout,
    )


class KubeadmProvider:
    """
    Self-managed clusters on hosts the caller supplies, bootstrapped with
    kubeadm over SSH. Cluster membership lives in an in-memory inventory.
    """

    def __init__(
        self,
        ssh_settings: Optional[SSHSettings] = None,
        *,
        settings: Optional[KubeadmSettings] = None,
        key_candidates: Sequence[str] = (),
        bootstrapper: Optional[KubeadmBootstrapper] = None,
        client_factory: Optional[Callable[[HostSpec], Any]] = None,
        inventory: Optional[Dict[str, KubeadmCluster]] = None,
        bus: Optional[EventBus] = None,
        event_ctx: Optional[Dict[str, Any]] = None,
    ):
        self.ssh_settings = ssh_settings or SSHSettings()
        self.settings = settings or KubeadmSettings()
        self.key_candidates = list(key_candidates) or list(self.ssh_settings.key_candidates)
        self.bus = bus
        self.event_ctx = event_ctx or new_ctx(env="default", context=None)
        self.bootstrapper = bootstrapper or KubeadmBootstrapper(
            bus=bus, event_ctx=self.event_ctx, max_parallel=self.settings.max_parallel
        )
        self.client_factory = client_factory or self._ssh_client
        self.inventory: Dict[str, KubeadmCluster] = dict(inventory or {})

    @property
    def type(self) -> ClusterType:
        return ClusterType.KUBEADM

    def _emit(self, event_cls, **fields) -> None:
        if self.bus is not None:
            self.bus.emit(event_cls(**stamp(self.event_ctx), **fields))

    # ------------------ connections ------------------

    def _ssh_client(self, host: HostSpec) -> SSHClient:
        return ssh_client(host, self.ssh_settings, self.key_candidates)

    def _connect(self, host: HostSpec, ctx: ExecutionContext, retries: int = 1):
        client = self.client_factory(host)
        if retries <= 1:
            client.connect(ctx)
            return client

        def _on_retry(attempt: int, exc: BaseException) -> None:
            log.info("[kubeadm] %s not accepting SSH yet (attempt %d/%d): %s", host.address, attempt, retries, exc)

        call_with_retry(
            lambda: client.connect(ctx),
            retries=retries,
            delay=self.settings.connect_retry_delay,
            ctx=ctx,
            retry_on=(RemoteConnectionError,),
            reraise=True,
            on_retry=_on_retry,
            name=f"connect {host.address}",
        )
        return client

    @contextmanager
    def _session(self, host: HostSpec, ctx: ExecutionContext, retries: int = 1) -> Iterator[Any]:
        client = self._connect(host, ctx, retries)
        try:
            yield client
        finally:
            client.close()

    def _connect_fresh(self, hosts: Sequence[HostSpec], ctx: ExecutionContext) -> List[Any]:
        """Wait for SSH on freshly supplied hosts, then connect with retry."""
        reach_ctx = ctx.with_timeout(self.settings.reachability_timeout)
        for host in hosts:
            log.info("[kubeadm] waiting for SSH on %s", host.address)
            wait_for_reachable(host.address, host.port or self.ssh_settings.port, reach_ctx)

        clients: List[Any] = []
        try:
            for host in hosts:
                clients.append(self._connect(host, ctx, self.settings.connect_retries))
        except BaseException:
            for c in clients:
                c.close()
            raise
        return clients

    def _cluster(self, name: str) -> KubeadmCluster:
        cluster = self.inventory.get(name)
        if cluster is None:
            raise ClusterNotFound(name)
        return cluster

    # ------------------ lifecycle ------------------

    def create(self, opts: CreateOptions, ctx: Optional[ExecutionContext] = None) -> ClusterInfo:
        ctx = ctx or ExecutionContext.background()
        require(opts.name, CLUSTER_NAME_REQUIRED)

        known = self.inventory.get(opts.name)
        hosts = opts.hosts or (known.hosts if known else [])
        control_planes, workers = _split_hosts(hosts)
        cp = control_planes[0]

        base = known.config if known else BootstrapConfig()
        config = replace(
            base,
            kubernetes_version=opts.kubernetes_version or base.kubernetes_version,
            pod_cidr=opts.pod_cidr or base.pod_cidr,
            service_cidr=opts.service_cidr or base.service_cidr,
            cni=opts.cni or base.cni,
            cluster_name=opts.name,
            control_plane_address=cp.address,
        )
        CNIPlugin.parse(config.cni)

        log.info("[kubeadm] creating cluster %s (control plane %s, %d worker(s))", opts.name, cp.address, len(workers))
        clients = self._connect_fresh([cp, *workers], ctx)
        try:
            result = self.bootstrapper.bootstrap_cluster(
                clients[0], clients[1:], config, ctx, ready_timeout=self.settings.ready_timeout
            )
        finally:
            for c in clients:
                c.close()

        cluster = KubeadmCluster(
            name=opts.name,
            control_plane=cp,
            workers=list(workers),
            config=config,
            created_at=datetime.now(timezone.utc),
        )
        self.inventory[opts.name] = cluster
        self._emit(ClusterCreated, cluster_type=self.type.value, name=opts.name, endpoint=cluster.endpoint)
        log.info("[kubeadm] cluster %s ready: %d node(s)", opts.name, result.ready_nodes)

        info = ClusterInfo(
            name=opts.name,
            type=self.type,
            status="running",
            kubernetes_version=config.kubernetes_version,
            endpoint=cluster.endpoint,
            created_at=cluster.created_at,
        )
        info.add_nodes(self._inventory_nodes(cluster, status="Ready"))
        return info

    def delete(self, name: str, ctx: Optional[ExecutionContext] = None) -> None:
        ctx = ctx or ExecutionContext.background()
        require(name, CLUSTER_NAME_REQUIRED)
        cluster = self._cluster(name)

        # workers first so the control plane outlives its members
        first_error: Optional[ClusterError] = None
        for host in [*cluster.workers, cluster.control_plane]:
            try:
                with self._session(host, ctx) as client:
                    self.bootstrapper.reset_node(client, ctx)
            except ClusterError as exc:
                log.error("[kubeadm] reset of %s failed: %s", host.name, exc)
                if first_error is None:
                    first_error = exc
        if first_error is not None:
            raise first_error

        del self.inventory[name]
        self._emit(ClusterDeleted, cluster_type=self.type.value, name=name)

    def scale(self, name: str, opts: ScaleOptions, ctx: Optional[ExecutionContext] = None) -> None:
        ctx = ctx or ExecutionContext.background()
        require(name, CLUSTER_NAME_REQUIRED)
        if opts.desired_count < 0:
            raise InvalidConfiguration(DESIRED_COUNT_NEGATIVE)
        if not opts.add_hosts and not opts.remove_nodes:
            raise InvalidConfiguration("kubeadm scale needs hosts to add or nodes to remove")
        cluster = self._cluster(name)

        added = self._join(cluster, opts.add_hosts, opts.node_group, ctx) if opts.add_hosts else []
        removed = self._remove(cluster, opts.remove_nodes, ctx) if opts.remove_nodes else []
        self._emit(ClusterScaled, cluster_type=self.type.value, name=name, added=added, removed=removed)

    def _join(
        self,
        cluster: KubeadmCluster,
        hosts: Sequence[HostSpec],
        group: str,
        ctx: ExecutionContext,
        labels: Optional[Dict[str, str]] = None,
    ) -> List[str]:
        existing = {h.name for h in cluster.hosts}
        for host in hosts:
            if host.is_control_plane:
                raise InvalidConfiguration(f"{host.name}: only worker hosts can be added")
            if host.name in existing:
                raise InvalidConfiguration(f"{host.name} is already part of cluster {cluster.name}")

        with self._session(cluster.control_plane, ctx) as cp:
            artifacts = self.bootstrapper.get_join_token(cp, ctx)
            workers = self._connect_fresh(hosts, ctx)
            joined: List[str] = []
            try:
                self.bootstrapper.add_workers(
                    cp, workers, cluster.config, artifacts, cluster.control_plane.address, ctx,
                    on_joined=joined.append,
                )
            except ClusterError:
                done = [h for h in hosts if h.address in joined]
                log.warning(
                    "[kubeadm] %d of %d worker(s) joined %s before the failure", len(done), len(hosts), cluster.name
                )
                try:
                    self._record_workers(cp, cluster, done, group, labels, ctx)
                except ClusterError as exc:
                    log.error("[kubeadm] labelling joined workers of %s failed: %s", cluster.name, exc)
                raise
            finally:
                for w in workers:
                    w.close()

            return self._record_workers(cp, cluster, hosts, group, labels, ctx)

    def _record_workers(
        self,
        cp: Any,
        cluster: KubeadmCluster,
        hosts: Sequence[HostSpec],
        group: str,
        labels: Optional[Dict[str, str]],
        ctx: ExecutionContext,
    ) -> List[str]:
        """Add joined hosts to the inventory, then label them into their node group."""
        cluster.workers.extend(hosts)
        names = [h.name for h in hosts]
        if group and names:
            cluster.node_groups.setdefault(group, []).extend(names)
            node_labels = {NODE_GROUP_LABEL: group, **(labels or {})}
            self.bootstrapper.label_nodes(cp, names, node_labels, ctx)
        return names

    def _remove(self, cluster: KubeadmCluster, nodes: Sequence[str], ctx: ExecutionContext) -> List[str]:
        hosts: List[HostSpec] = []
        for node in nodes:
            host = cluster.worker(node)
            if host is None:
                raise InvalidConfiguration(f"{node} is not a worker of cluster {cluster.name}")
            hosts.append(host)

        removed: List[str] = []
        with self._session(cluster.control_plane, ctx) as cp:
            kubectl = RemoteKubectl(cp)
            for host in hosts:
                log.info("[kubeadm] removing %s from %s", host.name, cluster.name)
                kubectl.drain(host.name, ctx)
                kubectl.delete_node(host.name, ctx)
                with self._session(host, ctx) as client:
                    self.bootstrapper.reset_node(client, ctx)
                cluster.workers.remove(host)
                for members in cluster.node_groups.values():
                    if host.name in members:
                        members.remove(host.name)
                removed.append(host.name)
        return removed

    def get_kubeconfig(self, name: str, ctx: Optional[ExecutionContext] = None) -> bytes:
        ctx = ctx or ExecutionContext.background()
        require(name, CLUSTER_NAME_REQUIRED)
        cluster = self._cluster(name)
        with self._session(cluster.control_plane, ctx) as cp:
            return self.bootstrapper.get_kubeconfig(cp, ctx)

    # ------------------ read paths ------------------

    def health(self, name: str, ctx: Optional[ExecutionContext] = None) -> HealthStatus:
        ctx = ctx or ExecutionContext.background()
        status = HealthStatus()
        if not name:
            status.message = CLUSTER_NAME_REQUIRED
            return status
        cluster = self.inventory.get(name)
        if cluster is None:
            status.message = f"cluster not found: {name}"
            return status

        try:
            with self._session(cluster.control_plane, ctx) as cp:
                kubectl = RemoteKubectl(cp)
                try:
                    nodes = kubectl.nodes(ctx)
                except ClusterError as exc:
                    status.message = f"cannot get nodes: {exc}"
                    return status
                try:
                    status.components = kubectl.component_statuses(ctx)
                except ClusterError as exc:
                    log.debug("[kubeadm] componentstatuses unavailable for %s: %s", name, exc)
        except ClusterError as exc:
            status.message = f"cannot connect to cluster: {exc}"
            return status

        status.node_statuses = {n.name: n.status for n in nodes}
        status.healthy, status.message = summarize_readiness(nodes)
        return status

    def list_clusters(self, ctx: Optional[ExecutionContext] = None) -> List[ClusterInfo]:
        ctx = ctx or ExecutionContext.background()
        return [self._live_info(c, ctx) for c in sorted(self.inventory.values(), key=lambda c: c.name)]

    def get_cluster(self, name: str, ctx: Optional[ExecutionContext] = None) -> ClusterInfo:
        require(name, CLUSTER_NAME_REQUIRED)
        return self._live_info(self._cluster(name), ctx or ExecutionContext.background())

    def _live_info(self, cluster: KubeadmCluster, ctx: ExecutionContext) -> ClusterInfo:
        info = ClusterInfo(
            name=cluster.name,
            type=self.type,
            status="unknown",
            kubernetes_version=cluster.config.kubernetes_version,
            endpoint=cluster.endpoint,
            created_at=cluster.created_at,
        )
        try:
            with self._session(cluster.control_plane, ctx) as cp:
                kubectl = RemoteKubectl(cp)
                nodes = kubectl.nodes(ctx)
                info.kubernetes_version = kubectl.server_version(ctx)
        except ClusterError as exc:
            log.debug("[kubeadm] %s unreachable: %s", cluster.name, exc)
            info.status = "unreachable"
            info.add_nodes(self._inventory_nodes(cluster, status="Unknown"))
            return info

        info.status = "running" if nodes else "unknown"
        info.add_nodes(nodes)
        return info

    @staticmethod
    def _inventory_nodes(cluster: KubeadmCluster, status: str) -> List[NodeInfo]:
        nodes = [NodeInfo(cluster.control_plane.name, NodeRole.CONTROL_PLANE, status, cluster.control_plane.address)]
        nodes += [NodeInfo(w.name, NodeRole.WORKER, status, w.address) for w in cluster.workers]
        return nodes

    # ------------------ node groups ------------------

    def create_node_group(self, cluster: str, opts: NodeGroupOptions, ctx: Optional[ExecutionContext] = None) -> None:
        ctx = ctx or ExecutionContext.background()
        require(cluster, CLUSTER_NAME_REQUIRED)
        require(opts.name, NODE_GROUP_REQUIRED)
        if not opts.hosts:
            raise InvalidConfiguration(HOSTS_REQUIRED)
        target = self._cluster(cluster)
        if opts.name in target.node_groups:
            raise InvalidConfiguration(f"node group {opts.name} already exists in cluster {cluster}")

        hosts = [replace(h, role="worker") for h in opts.hosts]
        names = self._join(target, hosts, opts.name, ctx, labels=opts.labels)
        if opts.taints:
            with self._session(target.control_plane, ctx) as cp:
                RemoteKubectl(cp).taint(names, opts.taints, ctx)
        self._emit(ClusterScaled, cluster_type=self.type.value, name=cluster, added=names, removed=[])

    def delete_node_group(self, cluster: str, name: str, ctx: Optional[ExecutionContext] = None) -> None:
        ctx = ctx or ExecutionContext.background()
        require(cluster, CLUSTER_NAME_REQUIRED)
        require(name, NODE_GROUP_REQUIRED)
        target = self._cluster(cluster)
        members = target.node_groups.get(name)
        if members is None:
            raise InvalidConfiguration(f"node group {name} not found in cluster {cluster}")

        removed = self._remove(target, list(members), ctx) if members else []
        del target.node_groups[name]
        self._emit(ClusterScaled, cluster_type=self.type.value, name=cluster, added=[], removed=removed)

    def list_node_groups(self, cluster: str, ctx: Optional[ExecutionContext] = None) -> List[NodeGroupInfo]:
        require(cluster, CLUSTER_NAME_REQUIRED)
        target = self._cluster(cluster)
        return [
            NodeGroupInfo(
                name=group,
                cluster=cluster,
                status="active",
                desired_size=len(members),
                min_size=len(members),
                max_size=len(members),
                labels={NODE_GROUP_LABEL: group},
            )
            for group, members in sorted(target.node_groups.items())
        ]
