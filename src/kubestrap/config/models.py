# src/kubestrap/config/models.py

from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator


class SSHSettings(BaseModel):
    user: str = "ubuntu"
    port: int = 22
    key_path: Optional[str] = None
    # tried in order when key_path is unset; empty means the usual ~/.ssh keys
    key_candidates: List[str] = Field(default_factory=list)
    host_key_policy: Literal["auto-add", "known-hosts", "fingerprint"] = "auto-add"
    known_hosts_path: Optional[str] = None
    fingerprints: Dict[str, str] = Field(default_factory=dict)   # host -> SHA256:...
    connect_timeout: float = 30.0
    command_timeout: Optional[float] = None

    @model_validator(mode="after")
    def _fingerprints_required(self):
        if self.host_key_policy == "fingerprint" and not self.fingerprints:
            raise ValueError("host_key_policy 'fingerprint' needs at least one entry in ssh.fingerprints")
        return self


class HostSpec(BaseModel):
    name: str
    address: str
    port: Optional[int] = None
    user: Optional[str] = None
    key_path: Optional[str] = None
    role: Literal["control-plane", "worker"] = "worker"


class BootstrapSettings(BaseModel):
    kubernetes_version: str = ""
    pod_cidr: str = ""
    service_cidr: str = ""
    cni: str = ""
    control_plane_endpoint: Optional[str] = None


class KubeadmClusterSpec(BaseModel):
    name: str
    hosts: List[HostSpec]
    bootstrap: BootstrapSettings = BootstrapSettings()

    @field_validator("hosts")
    @classmethod
    def _one_control_plane(cls, hosts: List[HostSpec]) -> List[HostSpec]:
        cps = [h for h in hosts if h.role == "control-plane"]
        if len(cps) != 1:
            raise ValueError("exactly one control-plane host is required")
        return hosts


class ExistingSettings(BaseModel):
    kubeconfig: Optional[str] = None


class EKSSettings(BaseModel):
    profile: Optional[str] = None
    region: Optional[str] = None
    role_arn: Optional[str] = None
    node_role_arn: Optional[str] = None
    subnet_ids: List[str] = Field(default_factory=list)


class GKESettings(BaseModel):
    project: Optional[str] = None
    region: Optional[str] = None


class KubeadmSettings(BaseModel):
    connect_retries: int = 30
    connect_retry_delay: float = 20.0
    reachability_timeout: float = 600.0
    ready_timeout: float = 600.0
    max_parallel: int = 4


class ProvidersConfig(BaseModel):
    existing: Optional[ExistingSettings] = None
    eks: Optional[EKSSettings] = None
    gke: Optional[GKESettings] = None
    kubeadm: Optional[KubeadmSettings] = None


class KubestrapConfig(BaseModel):
    environment: str = "default"
    ssh: SSHSettings = SSHSettings()
    providers: ProvidersConfig = ProvidersConfig()
    clusters: List[KubeadmClusterSpec] = Field(default_factory=list)

    def cluster(self, name: str) -> Optional[KubeadmClusterSpec]:
        return next((c for c in self.clusters if c.name == name), None)
