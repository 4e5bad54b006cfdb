# src/kubestrap/cluster/factory.py
from __future__ import annotations

from typing import Any, Dict, Optional

from kubestrap.bootstrap.models import BootstrapConfig, HostSpec
from kubestrap.config.models import KubeadmClusterSpec, KubeadmSettings, KubestrapConfig
from kubestrap.observers.dispatcher import EventBus
from kubestrap.ssh.keys import default_key_candidates
from kubestrap.utils.runner import CommandRunner
from .eks import EKSProvider
from .existing import ExistingProvider
from .gke import GKEProvider
from .kubeadm import KubeadmCluster, KubeadmProvider
from .manager import ClusterManager


def to_cluster(spec: KubeadmClusterSpec) -> KubeadmCluster:
    hosts = [HostSpec(**h.model_dump()) for h in spec.hosts]
    b = spec.bootstrap
    config = BootstrapConfig(
        kubernetes_version=b.kubernetes_version,
        pod_cidr=b.pod_cidr,
        service_cidr=b.service_cidr,
        cni=b.cni,
        control_plane_endpoint=b.control_plane_endpoint,
    )
    return KubeadmCluster.from_hosts(spec.name, hosts, config)


def build_manager(
    config: KubestrapConfig,
    *,
    bus: Optional[EventBus] = None,
    event_ctx: Optional[Dict[str, Any]] = None,
    dry_run: bool = False,
    include_existing: bool = False,
) -> ClusterManager:
    """
    Register the providers the config enables. kubeadm is registered
    whenever the config lists clusters or a kubeadm section.
    """
    manager = ClusterManager()
    providers = config.providers

    if providers.existing is not None or include_existing:
        kubeconfig = providers.existing.kubeconfig if providers.existing else None
        manager.register_provider(
            ExistingProvider(kubeconfig, runner=CommandRunner(label="kubectl", dry_run=dry_run))
        )

    if providers.eks is not None:
        eks = providers.eks
        manager.register_provider(
            EKSProvider(
                profile=eks.profile,
                region=eks.region,
                role_arn=eks.role_arn,
                node_role_arn=eks.node_role_arn,
                subnet_ids=eks.subnet_ids,
                runner=CommandRunner(label="aws", dry_run=dry_run),
            )
        )

    if providers.gke is not None:
        manager.register_provider(
            GKEProvider(
                project=providers.gke.project,
                region=providers.gke.region,
                runner=CommandRunner(label="gcloud", dry_run=dry_run),
            )
        )

    if providers.kubeadm is not None or config.clusters:
        key_candidates = config.ssh.key_candidates or [str(p) for p in default_key_candidates()]
        manager.register_provider(
            KubeadmProvider(
                config.ssh,
                settings=providers.kubeadm or KubeadmSettings(),
                key_candidates=key_candidates,
                inventory={c.name: to_cluster(c) for c in config.clusters},
                bus=bus,
                event_ctx=event_ctx,
            )
        )

    return manager
