import json
import types

import pytest

from kubestrap.cluster.existing import ExistingProvider
from kubestrap.cluster.types import CreateOptions, NodeGroupOptions, NodeRole, ScaleOptions
from kubestrap.errors import ClusterNotFound, CommandError, InvalidConfiguration, UnsupportedOperation

NODES = {
    "items": [
        {
            "metadata": {"name": "cp-1", "labels": {"node-role.kubernetes.io/control-plane": ""}},
            "status": {
                "addresses": [{"type": "InternalIP", "address": "10.0.0.1"}],
                "conditions": [{"type": "Ready", "status": "True"}],
            },
        },
        {
            "metadata": {"name": "worker-1", "labels": {}},
            "status": {
                "addresses": [{"type": "InternalIP", "address": "10.0.0.2"}],
                "conditions": [{"type": "Ready", "status": "False"}],
            },
        },
    ]
}


class FakeKubectl:
    """Answers by the first kubectl verb after the global flags."""

    def __init__(self, replies=None, errors=None):
        self.replies = replies or {}
        self.errors = errors or set()
        self.calls = []

    def run(self, argv, ctx=None, check=True, env=None, cwd=None):
        self.calls.append(list(argv))
        args = argv[3:]
        if args and args[0] == "--context":
            args = args[2:]
        verb = " ".join(args[:2])
        if verb in self.errors or args[0] in self.errors:
            raise CommandError(" ".join(argv), 1, stderr="Unable to connect to the server")
        out = self.replies.get(verb, self.replies.get(args[0], ""))
        return types.SimpleNamespace(returncode=0, stdout=out, stderr="")


def _provider(tmp_path, **kw):
    kubeconfig = tmp_path / "config"
    kubeconfig.write_text("apiVersion: v1\n")
    return ExistingProvider(kubeconfig, runner=FakeKubectl(**kw))


def test_mutations_are_unsupported(tmp_path):
    p = _provider(tmp_path)

    with pytest.raises(UnsupportedOperation) as exc:
        p.create(CreateOptions(name="x"))
    assert "use get_cluster to connect" in str(exc.value)
    with pytest.raises(UnsupportedOperation):
        p.delete("x")
    with pytest.raises(UnsupportedOperation):
        p.scale("x", ScaleOptions(desired_count=1))
    with pytest.raises(UnsupportedOperation):
        p.create_node_group("x", NodeGroupOptions(name="y"))
    with pytest.raises(UnsupportedOperation):
        p.list_node_groups("x")


def test_get_kubeconfig_returns_path(tmp_path):
    p = _provider(tmp_path)
    assert p.get_kubeconfig("any") == tmp_path / "config"


def test_get_kubeconfig_missing_file(tmp_path):
    p = ExistingProvider(tmp_path / "missing", runner=FakeKubectl())
    with pytest.raises(InvalidConfiguration) as exc:
        p.get_kubeconfig("any")
    assert "kubeconfig not found" in str(exc.value)


def test_health_reports_partial_readiness(tmp_path):
    p = _provider(tmp_path, replies={"get nodes": json.dumps(NODES), "get componentstatuses": "etcd-0=True\n"})

    status = p.health("prod")

    assert not status.healthy
    assert status.message == "1/2 nodes ready"
    assert status.node_statuses == {"cp-1": "Ready", "worker-1": "NotReady"}
    assert status.components == {"etcd-0": "True"}
    assert p.runner.calls[0][:5] == ["kubectl", "--kubeconfig", str(tmp_path / "config"), "--context", "prod"]


def test_health_unreachable_does_not_raise(tmp_path):
    p = _provider(tmp_path, errors={"cluster-info"})

    status = p.health("prod")

    assert not status.healthy
    assert status.message.startswith("cannot connect to cluster")


def test_health_without_componentstatuses(tmp_path):
    all_ready = {"items": [NODES["items"][0]]}
    p = _provider(tmp_path, replies={"get nodes": json.dumps(all_ready)}, errors={"get componentstatuses"})

    status = p.health("prod")

    assert status.healthy
    assert status.message == "all 1 nodes ready"
    assert status.components == {}


def test_list_clusters_from_contexts(tmp_path):
    p = _provider(tmp_path, replies={"config get-contexts": "prod\nstaging\n"})

    clusters = p.list_clusters()

    assert [c.name for c in clusters] == ["prod", "staging"]
    assert all(c.status == "available" for c in clusters)


def test_get_cluster_unknown_context(tmp_path):
    p = _provider(tmp_path, replies={"config get-contexts": "prod\n"})
    with pytest.raises(ClusterNotFound):
        p.get_cluster("staging")


def test_get_cluster_enriches_with_version_and_nodes(tmp_path):
    p = _provider(
        tmp_path,
        replies={
            "config get-contexts": "prod\n",
            "version": "Client Version: v1.30.0\nServer Version: v1.29.3\n",
            "get nodes": json.dumps(NODES),
        },
    )

    info = p.get_cluster("prod")

    assert info.status == "connected"
    assert info.kubernetes_version == "v1.29.3"
    assert [n.name for n in info.control_plane_nodes] == ["cp-1"]
    assert info.control_plane_nodes[0].role is NodeRole.CONTROL_PLANE
    assert [n.name for n in info.worker_nodes] == ["worker-1"]
