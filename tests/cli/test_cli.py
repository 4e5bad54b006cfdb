import logging

import pytest
from typer.testing import CliRunner

from kubestrap.cli import app as cli_mod
from kubestrap.cluster.manager import ClusterManager
from kubestrap.cluster.types import ClusterInfo, ClusterType, HealthStatus, NodeGroupInfo, NodeInfo, NodeRole
from kubestrap.errors import ClusterNotFound, InvalidConfiguration

runner = CliRunner()

JOIN = "kubeadm join 10.0.0.1:6443 --token abcdef.0123456789abcdef --discovery-token-ca-cert-hash sha256:beef"


class FakeProvider:
    def __init__(self, cluster_type=ClusterType.KUBEADM, healthy=True):
        self._type = cluster_type
        self.healthy = healthy
        self.calls = []

    @property
    def type(self):
        return self._type

    def create(self, opts, ctx=None):
        self.calls.append(("create", opts))
        info = ClusterInfo(name=opts.name, type=self._type, status="running", endpoint="https://10.0.0.1:6443")
        info.add_nodes([NodeInfo("cp-1", NodeRole.CONTROL_PLANE, "Ready", "10.0.0.1")])
        return info

    def delete(self, name, ctx=None):
        self.calls.append(("delete", name))

    def scale(self, name, opts, ctx=None):
        self.calls.append(("scale", name, opts))

    def get_kubeconfig(self, name, ctx=None):
        if name == "ghost":
            raise ClusterNotFound(name)
        return b"apiVersion: v1\n"

    def health(self, name, ctx=None):
        return HealthStatus(healthy=self.healthy, message="1/2 nodes ready", node_statuses={"w1": "NotReady"})

    def list_clusters(self, ctx=None):
        return []

    def get_cluster(self, name, ctx=None):
        if not name:
            raise InvalidConfiguration("cluster name is required")
        return ClusterInfo(name=name, type=self._type, status="running", kubernetes_version="v1.29.3")

    def create_node_group(self, cluster, opts, ctx=None):
        self.calls.append(("create_node_group", cluster, opts))

    def delete_node_group(self, cluster, name, ctx=None):
        self.calls.append(("delete_node_group", cluster, name))

    def list_node_groups(self, cluster, ctx=None):
        return [NodeGroupInfo(name="gpu", cluster=cluster, status="active", desired_size=2, min_size=1, max_size=3)]


class FakeSSH:
    def __init__(self, world, address):
        self.world = world
        self.host = address

    def connect(self, ctx=None):
        return self

    def close(self):
        pass

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def run(self, command, ctx=None):
        self.world.append((self.host, command))
        return "True True"

    def run_sudo(self, command, ctx=None):
        self.world.append((self.host, command))
        return JOIN + "\n"

    def run_script(self, script, ctx=None):
        self.world.append((self.host, script))
        return ""

    def run_sudo_script(self, script, ctx=None):
        self.world.append((self.host, script))
        return ""


@pytest.fixture
def provider(monkeypatch, tmp_path):
    fake = FakeProvider()

    def _manager(cfg, **kw):
        m = ClusterManager()
        m.register_provider(fake)
        return m

    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.setattr(
        cli_mod, "init_logging",
        lambda **kw: (logging.getLogger("cli-test"), "run-1", tmp_path / "run.log"),
    )
    monkeypatch.setattr(cli_mod, "build_manager", _manager)
    return fake


@pytest.fixture
def ssh_world(monkeypatch, provider):
    world = []
    monkeypatch.setattr(cli_mod, "ssh_client", lambda host, settings, candidates: FakeSSH(world, host.address))
    return world


def test_providers(provider):
    result = runner.invoke(cli_mod.app, ["providers"])
    assert result.exit_code == 0
    assert result.output.strip() == "kubeadm"


def test_unregistered_type_is_an_error(provider):
    result = runner.invoke(cli_mod.app, ["cluster", "list", "eks"])
    assert result.exit_code == 1
    assert "no provider registered for cluster type 'eks'" in result.output


def test_unknown_type_is_a_usage_error(provider):
    result = runner.invoke(cli_mod.app, ["cluster", "list", "aks"])
    assert result.exit_code == 2
    assert "unknown cluster type 'aks'" in result.output


def test_missing_config_file(provider, tmp_path):
    result = runner.invoke(cli_mod.app, ["--config", str(tmp_path / "nope.yaml"), "providers"])
    assert result.exit_code == 2
    assert "config file not found" in result.output


def test_cluster_create_kubeadm_hosts(provider):
    result = runner.invoke(
        cli_mod.app,
        [
            "cluster", "create", "kubeadm", "lab",
            "--control-plane", "cp-1=10.0.0.1",
            "--worker-host", "worker-1=10.0.0.2:2222",
            "--cni", "flannel",
            "--tag", "team=infra",
        ],
    )

    assert result.exit_code == 0, result.output
    assert "Status     : running" in result.output
    _, opts = provider.calls[0]
    assert [(h.name, h.address, h.port, h.role) for h in opts.hosts] == [
        ("cp-1", "10.0.0.1", None, "control-plane"),
        ("worker-1", "10.0.0.2", 2222, "worker"),
    ]
    assert opts.cni == "flannel"
    assert opts.tags == {"team": "infra"}


def test_bad_host_syntax(provider):
    result = runner.invoke(cli_mod.app, ["cluster", "create", "kubeadm", "lab", "--worker-host", "10.0.0.2"])
    assert result.exit_code != 0
    assert provider.calls == []


def test_health_exit_code(provider):
    provider.healthy = False
    result = runner.invoke(cli_mod.app, ["cluster", "health", "kubeadm", "lab"])

    assert result.exit_code == 1
    assert "unhealthy: 1/2 nodes ready" in result.output
    assert "w1" in result.output


def test_get_cluster_invalid_name_exits_2(provider):
    result = runner.invoke(cli_mod.app, ["cluster", "get", "kubeadm", ""])
    assert result.exit_code == 2
    assert "cluster name is required" in result.output


def test_kubeconfig_to_file(provider, tmp_path):
    out = tmp_path / "kube" / "lab.yaml"
    result = runner.invoke(cli_mod.app, ["cluster", "kubeconfig", "kubeadm", "lab", "-o", str(out)])

    assert result.exit_code == 0, result.output
    assert out.read_bytes() == b"apiVersion: v1\n"
    assert out.stat().st_mode & 0o777 == 0o600


def test_kubeconfig_unknown_cluster(provider):
    result = runner.invoke(cli_mod.app, ["cluster", "kubeconfig", "kubeadm", "ghost"])
    assert result.exit_code == 1
    assert "cluster not found: ghost" in result.output


def test_delete_requires_confirmation(provider):
    result = runner.invoke(cli_mod.app, ["cluster", "delete", "kubeadm", "lab"], input="n\n")
    assert result.exit_code != 0
    assert provider.calls == []

    result = runner.invoke(cli_mod.app, ["cluster", "delete", "kubeadm", "lab", "--yes"])
    assert result.exit_code == 0
    assert provider.calls == [("delete", "lab")]


def test_scale_add_and_remove(provider):
    result = runner.invoke(
        cli_mod.app,
        ["cluster", "scale", "kubeadm", "lab", "--add", "worker-2=10.0.0.3", "--remove", "worker-1", "--node-group", "batch"],
    )

    assert result.exit_code == 0, result.output
    _, name, opts = provider.calls[0]
    assert name == "lab"
    assert [h.name for h in opts.add_hosts] == ["worker-2"]
    assert opts.remove_nodes == ["worker-1"]
    assert opts.node_group == "batch"


def test_nodegroup_create_and_list(provider):
    result = runner.invoke(
        cli_mod.app,
        [
            "nodegroup", "create", "kubeadm", "lab", "gpu",
            "--host", "gpu-1=10.0.0.9",
            "--label", "accel=a100",
            "--taint", "gpu=true:NoSchedule",
        ],
    )
    assert result.exit_code == 0, result.output
    _, cluster, opts = provider.calls[0]
    assert cluster == "lab"
    assert opts.labels == {"accel": "a100"}
    assert str(opts.taints[0]) == "gpu=true:NoSchedule"

    result = runner.invoke(cli_mod.app, ["nodegroup", "list", "kubeadm", "lab"])
    assert result.exit_code == 0
    assert result.output.startswith("gpu")
    assert "2 (1-3)" in result.output


def test_node_token(ssh_world):
    result = runner.invoke(cli_mod.app, ["node", "token", "10.0.0.1"])

    assert result.exit_code == 0, result.output
    assert JOIN in result.output
    assert ssh_world == [("10.0.0.1", "kubeadm token create --print-join-command")]


def test_node_join_without_bootstrap(ssh_world):
    result = runner.invoke(cli_mod.app, ["node", "join", "10.0.0.5", "--control-plane", "10.0.0.1", "--no-bootstrap"])

    assert result.exit_code == 0, result.output
    worker_scripts = [text for host, text in ssh_world if host == "10.0.0.5"]
    assert len(worker_scripts) == 1
    assert "kubeadm join 10.0.0.1:6443" in worker_scripts[0]
    assert "abcdef.0123456789abcdef" in worker_scripts[0]


def test_node_wait_ready(ssh_world):
    result = runner.invoke(cli_mod.app, ["node", "wait-ready", "10.0.0.1", "--expected", "2", "--wait", "5"])
    assert result.exit_code == 0, result.output
    assert "2 node(s) ready" in result.output
