import json

import pytest

from kubestrap.bootstrap.models import HostSpec
from kubestrap.bootstrap.orchestrator import NODE_READY_CMD, KubeadmBootstrapper
from kubestrap.bootstrap.scripts import JOIN_MARKER
from kubestrap.cluster import kubeadm as kubeadm_mod
from kubestrap.cluster.kubeadm import NODE_GROUP_LABEL, KubeadmCluster, KubeadmProvider
from kubestrap.cluster.types import ClusterType, CreateOptions, NodeGroupOptions, ScaleOptions
from kubestrap.config.models import KubeadmSettings
from kubestrap.errors import ClusterNotFound, CommandError, InvalidConfiguration, RemoteConnectionError, StageError
from kubestrap.observers.dispatcher import EventBus
from kubestrap.observers.events import ClusterCreated, ClusterDeleted, ClusterScaled

JOIN = "kubeadm join 10.0.0.1:6443 --token abcdef.0123456789abcdef --discovery-token-ca-cert-hash sha256:beef"


def _nodes_json(*names):
    return json.dumps(
        {
            "items": [
                {
                    "metadata": {
                        "name": n,
                        "labels": {"node-role.kubernetes.io/control-plane": ""} if n.startswith("cp") else {},
                    },
                    "status": {"conditions": [{"type": "Ready", "status": "True"}]},
                }
                for n in names
            ]
        }
    )

# ----------------- Fakes -----------------

class FakeHost:
    """Stands in for a connected SSHClient on one host."""

    def __init__(self, world, spec):
        self.world = world
        self.host = spec.address
        self.spec = spec
        self.connected = False

    def connect(self, ctx=None):
        self.world.connects.append(self.host)
        failures = self.world.connect_failures.get(self.host, 0)
        if failures:
            self.world.connect_failures[self.host] = failures - 1
            raise RemoteConnectionError("connection refused", self.host)
        self.connected = True
        return self

    def close(self):
        self.connected = False

    def _record(self, kind, text):
        self.world.log.append((self.host, kind, text))

    def run(self, command, ctx=None):
        self._record("run", command)
        if command == NODE_READY_CMD:
            return " ".join(["True"] * self.world.node_count)
        if command.startswith("kubectl get nodes"):
            return _nodes_json(*self.world.node_names)
        if command.startswith("kubectl version"):
            return "Server Version: v1.29.3\n"
        return ""

    def run_sudo(self, command, ctx=None):
        self._record("sudo", command)
        if "kubeadm token create" in command:
            return JOIN + "\n"
        return ""

    def run_script(self, script, ctx=None):
        self._record("script", script)
        return ""

    def run_sudo_script(self, script, ctx=None):
        self._record("sudo_script", script)
        if "kubeadm join" in script and self.host in self.world.join_failures:
            raise CommandError("kubeadm join", 1, stderr="preflight checks failed", host=self.host)
        if "kubeadm token create" in script:
            return f"{JOIN_MARKER}\n{JOIN}\n"
        return ""

    def download(self, remote_path, ctx=None, sudo=False):
        self._record("download", remote_path)
        return b"apiVersion: v1\nkind: Config\n"


class World:
    def __init__(self, node_names=("cp-1",)):
        self.log = []
        self.connects = []
        self.connect_failures = {}
        self.join_failures = set()
        self.node_names = list(node_names)

    @property
    def node_count(self):
        return len(self.node_names)

    def factory(self, spec):
        return FakeHost(self, spec)

    def commands(self, host):
        return [text for h, _, text in self.log if h == host]


class Capture:
    def __init__(self):
        self.events = []

    def notify(self, event):
        self.events.append(event)


@pytest.fixture(autouse=True)
def _no_network(monkeypatch):
    reached = []
    monkeypatch.setattr(kubeadm_mod, "wait_for_reachable", lambda host, port, ctx: reached.append((host, port)))
    return reached


CP = HostSpec(name="cp-1", address="10.0.0.1", role="control-plane")
W1 = HostSpec(name="worker-1", address="10.0.0.2")
W2 = HostSpec(name="worker-2", address="10.0.0.3")
W3 = HostSpec(name="worker-3", address="10.0.0.4")


def _provider(world, inventory=None, capture=None):
    bus = EventBus([capture]) if capture else None
    return KubeadmProvider(
        settings=KubeadmSettings(connect_retries=3, connect_retry_delay=0, ready_timeout=5),
        bootstrapper=KubeadmBootstrapper(poll_interval=0.01),
        client_factory=world.factory,
        inventory=inventory,
        bus=bus,
    )


def _existing(workers=(W1,)):
    return {"lab": KubeadmCluster.from_hosts("lab", [CP, *workers])}

# ----------------- Tests -----------------

def test_type():
    assert _provider(World()).type is ClusterType.KUBEADM


def test_create_validation():
    p = _provider(World())

    with pytest.raises(InvalidConfiguration) as exc:
        p.create(CreateOptions())
    assert exc.value.message == "cluster name is required"

    with pytest.raises(InvalidConfiguration) as exc:
        p.create(CreateOptions(name="lab"))
    assert exc.value.message == "at least one host is required"

    with pytest.raises(InvalidConfiguration) as exc:
        p.create(CreateOptions(name="lab", hosts=[W1, W2]))
    assert exc.value.message == "exactly one control-plane host is required"

    with pytest.raises(InvalidConfiguration):
        p.create(CreateOptions(name="lab", hosts=[CP], cni="weave"))


def test_create_bootstraps_and_records_cluster(_no_network):
    world = World(node_names=["cp-1", "worker-1"])
    capture = Capture()
    p = _provider(world, capture=capture)

    info = p.create(CreateOptions(name="lab", hosts=[CP, W1], cni="flannel"))

    assert info.status == "running"
    assert info.endpoint == "https://10.0.0.1:6443"
    assert [n.name for n in info.control_plane_nodes] == ["cp-1"]
    assert [n.name for n in info.worker_nodes] == ["worker-1"]
    assert _no_network == [("10.0.0.1", 22), ("10.0.0.2", 22)]
    assert "lab" in p.inventory
    assert any("kube-flannel.yml" in c for c in world.commands("10.0.0.1"))
    assert any("kubeadm join 10.0.0.1:6443" in c for c in world.commands("10.0.0.2"))
    assert [type(e) for e in capture.events] == [ClusterCreated]


def test_create_retries_refused_connections():
    world = World()
    world.connect_failures["10.0.0.1"] = 2
    p = _provider(world)

    p.create(CreateOptions(name="lab", hosts=[CP]))

    assert world.connects.count("10.0.0.1") == 3


def test_create_gives_up_with_connection_error():
    world = World()
    world.connect_failures["10.0.0.1"] = 99
    p = _provider(world)

    with pytest.raises(RemoteConnectionError) as exc:
        p.create(CreateOptions(name="lab", hosts=[CP]))

    assert isinstance(exc.value, ConnectionError)
    assert exc.value.host == "10.0.0.1"
    assert world.connects.count("10.0.0.1") == 3
    assert "lab" not in p.inventory


def test_create_uses_inventory_hosts_when_none_given():
    world = World(node_names=["cp-1", "worker-1"])
    p = _provider(world, inventory=_existing())

    info = p.create(CreateOptions(name="lab"))

    assert [n.name for n in info.worker_nodes] == ["worker-1"]


def test_delete_resets_every_host_and_forgets_cluster():
    world = World()
    capture = Capture()
    p = _provider(world, inventory=_existing(), capture=capture)

    p.delete("lab")

    resets = [h for h, _, text in world.log if "kubeadm reset -f" in text]
    assert resets == ["10.0.0.2", "10.0.0.1"]
    assert "lab" not in p.inventory
    assert isinstance(capture.events[-1], ClusterDeleted)


def test_delete_unknown_cluster():
    with pytest.raises(ClusterNotFound):
        _provider(World()).delete("ghost")


def test_scale_adds_workers_with_fresh_token():
    world = World(node_names=["cp-1", "worker-1", "worker-2"])
    capture = Capture()
    p = _provider(world, inventory=_existing(), capture=capture)

    p.scale("lab", ScaleOptions(add_hosts=[W2], node_group="batch"))

    cp_cmds = world.commands("10.0.0.1")
    assert "kubeadm token create --print-join-command" in cp_cmds
    assert any("kubeadm join" in c for c in world.commands("10.0.0.3"))
    assert any(f"{NODE_GROUP_LABEL}=batch" in c for c in cp_cmds)
    assert [w.name for w in p.inventory["lab"].workers] == ["worker-1", "worker-2"]
    event = capture.events[-1]
    assert isinstance(event, ClusterScaled)
    assert event.added == ["worker-2"]


def test_scale_keeps_workers_that_joined_before_a_failure():
    world = World(node_names=["cp-1", "worker-1", "worker-2"])
    world.join_failures.add("10.0.0.4")
    p = _provider(world, inventory=_existing())

    with pytest.raises(StageError) as exc:
        p.scale("lab", ScaleOptions(add_hosts=[W2, W3], node_group="batch"))

    assert exc.value.host == "10.0.0.4"
    cluster = p.inventory["lab"]
    assert [w.name for w in cluster.workers] == ["worker-1", "worker-2"]
    assert cluster.node_groups["batch"] == ["worker-2"]
    labels = [c for c in world.commands("10.0.0.1") if NODE_GROUP_LABEL in c]
    assert len(labels) == 1
    assert "kubectl label node worker-2" in labels[0]
    assert "worker-3" not in labels[0]

    # the joined worker is now reset on delete
    p.delete("lab")
    resets = [h for h, _, text in world.log if "kubeadm reset -f" in text]
    assert "10.0.0.3" in resets


def test_scale_removes_nodes():
    world = World()
    p = _provider(world, inventory=_existing())

    p.scale("lab", ScaleOptions(remove_nodes=["worker-1"]))

    cp_cmds = world.commands("10.0.0.1")
    assert any(c.startswith("kubectl drain worker-1") for c in cp_cmds)
    assert any(c.startswith("kubectl delete node worker-1") for c in cp_cmds)
    assert any("kubeadm reset -f" in c for c in world.commands("10.0.0.2"))
    assert p.inventory["lab"].workers == []


def test_scale_needs_something_to_do():
    p = _provider(World(), inventory=_existing())
    with pytest.raises(InvalidConfiguration):
        p.scale("lab", ScaleOptions())
    with pytest.raises(InvalidConfiguration):
        p.scale("lab", ScaleOptions(remove_nodes=["not-a-worker"]))


def test_get_kubeconfig_returns_bytes():
    p = _provider(World(), inventory=_existing())
    assert p.get_kubeconfig("lab").startswith(b"apiVersion: v1")


def test_health_all_ready():
    world = World(node_names=["cp-1", "worker-1"])
    status = _provider(world, inventory=_existing()).health("lab")

    assert status.healthy
    assert status.message == "all 2 nodes ready"


def test_health_unreachable_control_plane():
    world = World()
    world.connect_failures["10.0.0.1"] = 1
    status = _provider(world, inventory=_existing()).health("lab")

    assert not status.healthy
    assert status.message.startswith("cannot connect to cluster")


def test_health_unknown_cluster_is_not_an_error():
    status = _provider(World()).health("ghost")
    assert not status.healthy
    assert "not found" in status.message


def test_get_cluster_live_and_unreachable():
    world = World(node_names=["cp-1", "worker-1"])
    p = _provider(world, inventory=_existing())

    info = p.get_cluster("lab")
    assert info.status == "running"
    assert info.kubernetes_version == "v1.29.3"

    world.connect_failures["10.0.0.1"] = 1
    info = p.get_cluster("lab")
    assert info.status == "unreachable"
    assert [n.status for n in info.worker_nodes] == ["Unknown"]


def test_list_clusters():
    p = _provider(World(), inventory=_existing())
    assert [c.name for c in p.list_clusters()] == ["lab"]


def test_node_group_lifecycle():
    world = World()
    p = _provider(world, inventory=_existing())

    with pytest.raises(InvalidConfiguration) as exc:
        p.create_node_group("lab", NodeGroupOptions())
    assert exc.value.message == "node group name is required"

    p.create_node_group("lab", NodeGroupOptions(name="gpu", hosts=[W2], labels={"accel": "a100"}))

    groups = p.list_node_groups("lab")
    assert [(g.name, g.desired_size) for g in groups] == [("gpu", 1)]
    assert any("accel=a100" in c for c in world.commands("10.0.0.1"))

    p.delete_node_group("lab", "gpu")

    assert p.list_node_groups("lab") == []
    assert [w.name for w in p.inventory["lab"].workers] == ["worker-1"]
