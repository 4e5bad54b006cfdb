import json
import types

import pytest

from kubestrap.cluster.gke import GKEProvider
from kubestrap.cluster.types import CreateOptions, NodeGroupOptions, NodeTaint, ScaleOptions
from kubestrap.errors import ClusterNotFound, CommandError, InvalidConfiguration


class FakeRunner:
    def __init__(self, replies=None, errors=None):
        self.replies = replies or {}
        self.errors = errors or {}
        self.calls = []

    def run(self, argv, ctx=None, check=True, env=None, cwd=None):
        self.calls.append((list(argv), env))
        key = tuple(argv[2:4])
        if key in self.errors:
            raise self.errors[key]
        payload = self.replies.get(key)
        return types.SimpleNamespace(returncode=0, stdout=json.dumps(payload) if payload is not None else "", stderr="")


DESCRIBE = {
    "name": "web",
    "status": "RUNNING",
    "currentMasterVersion": "1.29.4-gke.100",
    "endpoint": "34.1.2.3",
    "location": "europe-west1",
    "createTime": "2024-05-01T10:00:00+00:00",
    "nodePools": [{"name": "default-pool", "status": "RUNNING"}],
}


def test_create_validates_name_region_project_in_order():
    p = GKEProvider(runner=FakeRunner())

    with pytest.raises(InvalidConfiguration) as exc:
        p.create(CreateOptions())
    assert exc.value.message == "cluster name is required"

    with pytest.raises(InvalidConfiguration) as exc:
        p.create(CreateOptions(name="web"))
    assert exc.value.message == "region is required"

    with pytest.raises(InvalidConfiguration) as exc:
        p.create(CreateOptions(name="web", region="europe-west1"))
    assert exc.value.message == "GCP project is required"


def test_create_uses_provider_defaults():
    runner = FakeRunner(replies={("clusters", "create"): [DESCRIBE]})
    p = GKEProvider(project="acme", region="europe-west1", runner=runner)

    info = p.create(CreateOptions(name="web", worker_count=3, worker_type="e2-standard-4", preemptible=True))

    argv, _ = runner.calls[0]
    assert argv[:5] == ["gcloud", "container", "clusters", "create", "web"]
    assert "--num-nodes=3" in argv
    assert "--machine-type=e2-standard-4" in argv
    assert "--preemptible" in argv
    assert "--project=acme" in argv
    assert "--region=europe-west1" in argv
    assert "--format=json" in argv
    assert info.status == "RUNNING"
    assert info.endpoint == "https://34.1.2.3"


def test_health_empty_name_is_unhealthy_not_error():
    status = GKEProvider(project="acme", region="europe-west1", runner=FakeRunner()).health("")
    assert status.healthy is False


def test_health_running():
    runner = FakeRunner(replies={("clusters", "describe"): DESCRIBE})
    status = GKEProvider(project="acme", region="europe-west1", runner=runner).health("web")

    assert status.healthy
    assert status.node_statuses == {"default-pool": "RUNNING"}


def test_health_degraded_pool():
    degraded = dict(DESCRIBE, nodePools=[{"name": "default-pool", "status": "RECONCILING"}])
    runner = FakeRunner(replies={("clusters", "describe"): degraded})

    status = GKEProvider(runner=runner).health("web")

    assert not status.healthy
    assert "default-pool" in status.message


def test_get_cluster_not_found():
    err = CommandError("gcloud", 1, stderr="ERROR: (gcloud.container.clusters.describe) ResponseError: code=404, message=Not found: projects/acme")
    p = GKEProvider(runner=FakeRunner(errors={("clusters", "describe"): err}))

    with pytest.raises(ClusterNotFound):
        p.get_cluster("ghost")


def test_scale_resizes_default_pool():
    runner = FakeRunner()
    GKEProvider(runner=runner).scale("web", ScaleOptions(desired_count=4))

    argv, _ = runner.calls[0]
    assert argv[2:5] == ["clusters", "resize", "web"]
    assert "--node-pool=default-pool" in argv
    assert "--num-nodes=4" in argv
    assert len(runner.calls) == 1


def test_scale_with_bounds_enables_autoscaling():
    runner = FakeRunner()
    GKEProvider(runner=runner).scale("web", ScaleOptions(node_group="batch", desired_count=2, min_count=1, max_count=6))

    argv, _ = runner.calls[1]
    assert "--enable-autoscaling" in argv
    assert "--min-nodes=1" in argv
    assert "--max-nodes=6" in argv


def test_get_kubeconfig_sets_kubeconfig_env(tmp_path):
    runner = FakeRunner()
    path = GKEProvider(runner=runner, kubeconfig_dir=tmp_path).get_kubeconfig("web")

    argv, env = runner.calls[0]
    assert argv[2:5] == ["clusters", "get-credentials", "web"]
    assert env == {"KUBECONFIG": str(tmp_path / "gke-web.yaml")}
    assert path == tmp_path / "gke-web.yaml"


def test_node_pool_name_required():
    p = GKEProvider(runner=FakeRunner())
    with pytest.raises(InvalidConfiguration) as exc:
        p.create_node_group("web", NodeGroupOptions())
    assert exc.value.message == "node pool name is required"
    with pytest.raises(InvalidConfiguration) as exc:
        p.delete_node_group("web", "")
    assert exc.value.message == "node pool name is required"


def test_node_pool_create_and_list():
    pools = [
        {
            "name": "gpu",
            "status": "RUNNING",
            "initialNodeCount": 2,
            "config": {"machineType": "a2-highgpu-1g", "labels": {"accel": "a100"}},
            "autoscaling": {"minNodeCount": 0, "maxNodeCount": 4},
        }
    ]
    runner = FakeRunner(replies={("node-pools", "list"): pools})
    p = GKEProvider(runner=runner)

    p.create_node_group(
        "web",
        NodeGroupOptions(name="gpu", desired_size=2, labels={"accel": "a100"}, taints=[NodeTaint("gpu", "true")]),
    )
    argv, _ = runner.calls[0]
    assert argv[2:5] == ["node-pools", "create", "gpu"]
    assert "--cluster=web" in argv
    assert "--node-labels=accel=a100" in argv
    assert "--node-taints=gpu=true:NoSchedule" in argv

    groups = p.list_node_groups("web")
    assert groups[0].instance_type == "a2-highgpu-1g"
    assert (groups[0].min_size, groups[0].max_size) == (0, 4)
