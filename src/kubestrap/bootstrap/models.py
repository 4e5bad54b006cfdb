# src/kubestrap/bootstrap/models.py

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional

from kubestrap.errors import InvalidConfiguration

DEFAULT_KUBERNETES_VERSION = "1.29"
DEFAULT_POD_CIDR = "192.168.0.0/16"
DEFAULT_SERVICE_CIDR = "10.96.0.0/12"
DEFAULT_CNI = "calico"

API_SERVER_PORT = 6443


class CNIPlugin(str, Enum):
    CALICO = "calico"
    FLANNEL = "flannel"

    @property
    def manifest_url(self) -> str:
        return _MANIFESTS[self]

    @classmethod
    def parse(cls, name: str) -> "CNIPlugin":
        """Exact, case-insensitive match; anything else is a config error."""
        try:
            return cls((name or "").strip().lower())
        except ValueError:
            raise InvalidConfiguration(f"unsupported CNI: {name}") from None


_MANIFESTS = {
    CNIPlugin.CALICO: "https://raw.githubusercontent.com/projectcalico/calico/v3.27.0/manifests/calico.yaml",
    CNIPlugin.FLANNEL: "https://github.com/flannel-io/flannel/releases/latest/download/kube-flannel.yml",
}


@dataclass(frozen=True)
class JoinArtifacts:
    """Credentials a node needs to join; empty fields mean unavailable."""

    join_command: str = ""
    token: str = ""
    ca_cert_hash: str = ""

    @property
    def available(self) -> bool:
        return bool(self.token and self.ca_cert_hash)


@dataclass(frozen=True)
class BootstrapConfig:
    kubernetes_version: str = ""
    pod_cidr: str = ""
    service_cidr: str = ""
    cluster_name: str = ""
    control_plane_address: str = ""
    is_control_plane: bool = False
    join_token: str = ""
    ca_cert_hash: str = ""
    cni: str = ""
    # extra SAN / stable endpoint for HA control planes
    control_plane_endpoint: Optional[str] = None

    def __post_init__(self):
        # frozen: fill empty fields through object.__setattr__
        for name, default in (
            ("kubernetes_version", DEFAULT_KUBERNETES_VERSION),
            ("pod_cidr", DEFAULT_POD_CIDR),
            ("service_cidr", DEFAULT_SERVICE_CIDR),
            ("cni", DEFAULT_CNI),
        ):
            if not getattr(self, name):
                object.__setattr__(self, name, default)
        object.__setattr__(self, "kubernetes_version", self.kubernetes_version.lstrip("v"))

    @property
    def kubernetes_minor(self) -> str:
        """'1.29.3' -> '1.29'; the package repository is per minor version."""
        return ".".join(self.kubernetes_version.split(".")[:2])

    @property
    def kubernetes_release(self) -> str:
        """Full release for kubeadm init; a bare minor becomes <minor>.0."""
        parts = self.kubernetes_version.split(".")
        if len(parts) == 2:
            parts.append("0")
        return ".".join(parts)

    def with_join(self, artifacts: JoinArtifacts, control_plane_address: str) -> "BootstrapConfig":
        return replace(
            self,
            is_control_plane=False,
            control_plane_address=control_plane_address,
            join_token=artifacts.token,
            ca_cert_hash=artifacts.ca_cert_hash,
        )


@dataclass
class HostSpec:
    """A machine to bootstrap. Connection details default from SSH settings."""

    name: str
    address: str
    port: Optional[int] = None
    user: Optional[str] = None
    key_path: Optional[str] = None
    role: str = "worker"

    @property
    def is_control_plane(self) -> bool:
        return self.role == "control-plane"
