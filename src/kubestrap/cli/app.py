# src/kubestrap/cli/app.py
from __future__ import annotations

import sys
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

import typer

from kubestrap.bootstrap.models import BootstrapConfig, HostSpec
from kubestrap.bootstrap.orchestrator import KubeadmBootstrapper
from kubestrap.bootstrap.stages import stage_names
from kubestrap.cluster.factory import build_manager
from kubestrap.cluster.interface import Provider
from kubestrap.cluster.kubeadm import ssh_client
from kubestrap.cluster.manager import ClusterManager, as_cluster_type
from kubestrap.cluster.types import (
    ClusterInfo,
    CreateOptions,
    NodeGroupOptions,
    NodeTaint,
    ScaleOptions,
)
from kubestrap.config.loader import load_config
from kubestrap.config.models import KubestrapConfig
from kubestrap.errors import ClusterError, InvalidConfiguration
from kubestrap.logging.log import init_logging
from kubestrap.observers.console import ConsoleObserver
from kubestrap.observers.dispatcher import EventBus
from kubestrap.observers.events import new_ctx
from kubestrap.observers.jsonfile import JsonFileObserver
from kubestrap.observers.logger import LoggerObserver
from kubestrap.ssh.keys import default_key_candidates
from kubestrap.utils.execution import ExecutionContext

# ------------------------------------------------------------------------------
# CLI setup
# ------------------------------------------------------------------------------

app = typer.Typer(help="kubestrap: create, inspect and scale Kubernetes clusters", no_args_is_help=True)
cluster_app = typer.Typer(help="Cluster lifecycle through a registered provider", no_args_is_help=True)
nodegroup_app = typer.Typer(help="Node groups / node pools of a cluster", no_args_is_help=True)
node_app = typer.Typer(help="Bootstrap individual hosts over SSH", no_args_is_help=True)

app.add_typer(cluster_app, name="cluster")
app.add_typer(nodegroup_app, name="nodegroup")
app.add_typer(node_app, name="node")


@dataclass
class Options:
    config_path: Optional[Path] = None
    verbose: bool = False
    timeout: Optional[float] = None
    dry_run: bool = False
    _runtime: Optional["Runtime"] = field(default=None, repr=False)


@dataclass
class Runtime:
    config: KubestrapConfig
    manager: ClusterManager
    ctx: ExecutionContext
    bus: EventBus
    event_ctx: Dict[str, Any]


def _runtime(ctx: typer.Context) -> Runtime:
    """Logging, config, observers and providers, built once on first use."""
    opts: Options = ctx.find_root().obj
    if opts._runtime is not None:
        return opts._runtime

    logger, run_id, log_path = init_logging(verbose=opts.verbose)
    logger.debug("log file: %s", log_path)

    cfg = load_config(opts.config_path) if opts.config_path else KubestrapConfig()

    event_ctx = new_ctx(env=cfg.environment, context=None, run_id=run_id)
    bus = EventBus(
        observers=[
            ConsoleObserver(),
            LoggerObserver(logger),
            JsonFileObserver(Path.home() / ".kubestrap" / "logs" / f"{run_id}.jsonl"),
        ]
    )

    exec_ctx = ExecutionContext(dry_run=opts.dry_run).with_timeout(opts.timeout)
    manager = build_manager(cfg, bus=bus, event_ctx=event_ctx, dry_run=opts.dry_run, include_existing=True)

    opts._runtime = Runtime(config=cfg, manager=manager, ctx=exec_ctx, bus=bus, event_ctx=event_ctx)
    return opts._runtime


@contextmanager
def _cli_errors() -> Iterator[None]:
    try:
        yield
    except InvalidConfiguration as exc:
        typer.secho(f"error: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=2)
    except FileNotFoundError as exc:
        typer.secho(f"error: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=2)
    except ClusterError as exc:
        typer.secho(f"error: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)


def _provider(ctx: typer.Context, cluster_type: str) -> tuple[Runtime, Provider]:
    rt = _runtime(ctx)
    return rt, rt.manager.require_provider(as_cluster_type(cluster_type))


# ------------------------------------------------------------------------------
# Option parsing helpers
# ------------------------------------------------------------------------------

def _pairs(values: Optional[List[str]], what: str) -> Dict[str, str]:
    out: Dict[str, str] = {}
    for item in values or []:
        key, sep, value = item.partition("=")
        if not sep or not key:
            raise typer.BadParameter(f"{what} must look like key=value, got '{item}'")
        out[key] = value
    return out


def _taints(values: Optional[List[str]]) -> List[NodeTaint]:
    """key=value:Effect or key:Effect"""
    taints: List[NodeTaint] = []
    for item in values or []:
        kv, sep, effect = item.rpartition(":")
        if not sep or not kv:
            raise typer.BadParameter(f"taint must look like key=value:Effect, got '{item}'")
        key, _, value = kv.partition("=")
        taints.append(NodeTaint(key=key, value=value, effect=effect))
    return taints


def _hosts(values: Optional[List[str]], role: str = "worker") -> List[HostSpec]:
    """name=address[:port]"""
    hosts: List[HostSpec] = []
    for item in values or []:
        name, sep, target = item.partition("=")
        if not sep or not name or not target:
            raise typer.BadParameter(f"host must look like name=address[:port], got '{item}'")
        address, _, port = target.partition(":")
        hosts.append(HostSpec(name=name, address=address, port=int(port) if port else None, role=role))
    return hosts


def _echo_cluster(info: ClusterInfo) -> None:
    typer.echo(f"Name       : {info.name}")
    typer.echo(f"Type       : {info.type.value}")
    typer.echo(f"Status     : {info.status}")
    typer.echo(f"Version    : {info.kubernetes_version or '-'}")
    typer.echo(f"Endpoint   : {info.endpoint or '-'}")
    if info.region:
        typer.echo(f"Region     : {info.region}")
    if info.created_at:
        typer.echo(f"Created    : {info.created_at.isoformat()}")
    for node in [*info.control_plane_nodes, *info.worker_nodes]:
        typer.echo(f"  {node.name:<30} {node.role.value:<14} {node.status:<9} {node.internal_ip}")


# ------------------------------------------------------------------------------
# Global options
# ------------------------------------------------------------------------------

@app.callback()
def main(
    ctx: typer.Context,
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="kubestrap YAML config"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug output on the console"),
    timeout: Optional[float] = typer.Option(None, "--timeout", help="Overall deadline in seconds"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Log local commands instead of running them"),
):
    ctx.obj = Options(config_path=config, verbose=verbose, timeout=timeout, dry_run=dry_run)


@app.command()
def providers(ctx: typer.Context):
    """List the registered cluster types."""
    with _cli_errors():
        for cluster_type in _runtime(ctx).manager.list_providers():
            typer.echo(cluster_type.value)


# ------------------------------------------------------------------------------
# cluster
# ------------------------------------------------------------------------------

@cluster_app.command("list")
def cluster_list(ctx: typer.Context, cluster_type: str = typer.Argument(..., metavar="TYPE")):
    with _cli_errors():
        rt, provider = _provider(ctx, cluster_type)
        clusters = provider.list_clusters(rt.ctx)
        if not clusters:
            typer.echo("no clusters")
            return
        for info in clusters:
            typer.echo(f"{info.name:<30} {info.status:<12} {info.kubernetes_version or '-':<10} {info.endpoint}")


@cluster_app.command("get")
def cluster_get(
    ctx: typer.Context,
    cluster_type: str = typer.Argument(..., metavar="TYPE"),
    name: str = typer.Argument(...),
):
    with _cli_errors():
        rt, provider = _provider(ctx, cluster_type)
        _echo_cluster(provider.get_cluster(name, rt.ctx))


@cluster_app.command("health")
def cluster_health(
    ctx: typer.Context,
    cluster_type: str = typer.Argument(..., metavar="TYPE"),
    name: str = typer.Argument(...),
):
    """Exit status is 1 when the cluster is not healthy."""
    with _cli_errors():
        rt = _runtime(ctx)
        status = rt.manager.health_check(as_cluster_type(cluster_type), name, rt.ctx)

    colour = typer.colors.GREEN if status.healthy else typer.colors.RED
    typer.secho(f"{'healthy' if status.healthy else 'unhealthy'}: {status.message}", fg=colour)
    for node, state in sorted(status.node_statuses.items()):
        typer.echo(f"  node {node:<30} {state}")
    for component, state in sorted(status.components.items()):
        typer.echo(f"  component {component:<25} {state}")
    if not status.healthy:
        raise typer.Exit(code=1)


@cluster_app.command("kubeconfig")
def cluster_kubeconfig(
    ctx: typer.Context,
    cluster_type: str = typer.Argument(..., metavar="TYPE"),
    name: str = typer.Argument(...),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write to this file instead of stdout"),
):
    with _cli_errors():
        rt, provider = _provider(ctx, cluster_type)
        kubeconfig = provider.get_kubeconfig(name, rt.ctx)

    data = kubeconfig if isinstance(kubeconfig, bytes) else Path(kubeconfig).read_bytes()
    if output is None:
        sys.stdout.buffer.write(data)
        sys.stdout.flush()
        return
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_bytes(data)
    output.chmod(0o600)
    typer.echo(f"kubeconfig written to {output}")


@cluster_app.command("create")
def cluster_create(
    ctx: typer.Context,
    cluster_type: str = typer.Argument(..., metavar="TYPE"),
    name: str = typer.Argument(...),
    region: str = typer.Option("", "--region"),
    version: str = typer.Option("", "--kubernetes-version"),
    workers: int = typer.Option(0, "--workers", help="Worker count (managed clusters)"),
    worker_type: str = typer.Option("", "--worker-type"),
    project: str = typer.Option("", "--project", help="GCP project"),
    network: str = typer.Option("", "--network"),
    subnetwork: str = typer.Option("", "--subnetwork"),
    preemptible: bool = typer.Option(False, "--preemptible"),
    cni: str = typer.Option("", "--cni", help="calico or flannel (kubeadm)"),
    pod_cidr: str = typer.Option("", "--pod-cidr"),
    service_cidr: str = typer.Option("", "--service-cidr"),
    control_plane: Optional[str] = typer.Option(None, "--control-plane", help="name=address[:port] (kubeadm)"),
    worker_host: Optional[List[str]] = typer.Option(None, "--worker-host", help="name=address[:port] (kubeadm)"),
    tag: Optional[List[str]] = typer.Option(None, "--tag", help="key=value"),
):
    """
    Create a cluster. kubeadm hosts come from --control-plane/--worker-host
    or, when omitted, from the cluster of the same name in the config.
    """
    opts = CreateOptions(
        name=name,
        region=region,
        kubernetes_version=version,
        worker_count=workers,
        worker_type=worker_type,
        tags=_pairs(tag, "tag"),
        hosts=_hosts([control_plane] if control_plane else [], role="control-plane") + _hosts(worker_host),
        pod_cidr=pod_cidr,
        service_cidr=service_cidr,
        cni=cni,
        gcp_project=project,
        gcp_network=network,
        gcp_subnetwork=subnetwork,
        preemptible=preemptible,
    )
    with _cli_errors():
        rt, provider = _provider(ctx, cluster_type)
        info = provider.create(opts, rt.ctx)
    _echo_cluster(info)


@cluster_app.command("delete")
def cluster_delete(
    ctx: typer.Context,
    cluster_type: str = typer.Argument(..., metavar="TYPE"),
    name: str = typer.Argument(...),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
):
    if not yes:
        typer.confirm(f"Delete {cluster_type} cluster {name}?", abort=True)
    with _cli_errors():
        rt, provider = _provider(ctx, cluster_type)
        provider.delete(name, rt.ctx)
    typer.echo(f"cluster {name} deleted")


@cluster_app.command("scale")
def cluster_scale(
    ctx: typer.Context,
    cluster_type: str = typer.Argument(..., metavar="TYPE"),
    name: str = typer.Argument(...),
    node_group: str = typer.Option("", "--node-group"),
    count: int = typer.Option(0, "--count", help="Desired node count (managed clusters)"),
    min_count: Optional[int] = typer.Option(None, "--min"),
    max_count: Optional[int] = typer.Option(None, "--max"),
    add: Optional[List[str]] = typer.Option(None, "--add", help="name=address[:port] (kubeadm)"),
    remove: Optional[List[str]] = typer.Option(None, "--remove", help="Node name (kubeadm)"),
):
    opts = ScaleOptions(
        node_group=node_group,
        desired_count=count,
        min_count=min_count,
        max_count=max_count,
        add_hosts=_hosts(add),
        remove_nodes=list(remove or []),
    )
    with _cli_errors():
        rt, provider = _provider(ctx, cluster_type)
        provider.scale(name, opts, rt.ctx)
    typer.echo(f"cluster {name} scaled")


# ------------------------------------------------------------------------------
# nodegroup
# ------------------------------------------------------------------------------

@nodegroup_app.command("list")
def nodegroup_list(
    ctx: typer.Context,
    cluster_type: str = typer.Argument(..., metavar="TYPE"),
    cluster: str = typer.Argument(...),
):
    with _cli_errors():
        rt, provider = _provider(ctx, cluster_type)
        groups = provider.list_node_groups(cluster, rt.ctx)
    if not groups:
        typer.echo("no node groups")
        return
    for g in groups:
        typer.echo(
            f"{g.name:<25} {g.status:<10} {g.instance_type or '-':<14} "
            f"{g.desired_size} ({g.min_size}-{g.max_size})"
        )


@nodegroup_app.command("create")
def nodegroup_create(
    ctx: typer.Context,
    cluster_type: str = typer.Argument(..., metavar="TYPE"),
    cluster: str = typer.Argument(...),
    name: str = typer.Argument(...),
    instance_type: str = typer.Option("", "--instance-type"),
    size: int = typer.Option(0, "--size"),
    min_size: int = typer.Option(0, "--min"),
    max_size: int = typer.Option(0, "--max"),
    disk_size: int = typer.Option(0, "--disk-size", help="GiB"),
    label: Optional[List[str]] = typer.Option(None, "--label", help="key=value"),
    taint: Optional[List[str]] = typer.Option(None, "--taint", help="key=value:Effect"),
    host: Optional[List[str]] = typer.Option(None, "--host", help="name=address[:port] (kubeadm)"),
):
    opts = NodeGroupOptions(
        name=name,
        instance_type=instance_type,
        desired_size=size,
        min_size=min_size,
        max_size=max_size,
        disk_size=disk_size,
        labels=_pairs(label, "label"),
        taints=_taints(taint),
        hosts=_hosts(host),
    )
    with _cli_errors():
        rt, provider = _provider(ctx, cluster_type)
        provider.create_node_group(cluster, opts, rt.ctx)
    typer.echo(f"node group {name} created in {cluster}")


@nodegroup_app.command("delete")
def nodegroup_delete(
    ctx: typer.Context,
    cluster_type: str = typer.Argument(..., metavar="TYPE"),
    cluster: str = typer.Argument(...),
    name: str = typer.Argument(...),
    yes: bool = typer.Option(False, "--yes", "-y"),
):
    if not yes:
        typer.confirm(f"Delete node group {name} of {cluster}?", abort=True)
    with _cli_errors():
        rt, provider = _provider(ctx, cluster_type)
        provider.delete_node_group(cluster, name, rt.ctx)
    typer.echo(f"node group {name} deleted")


# ------------------------------------------------------------------------------
# node
# ------------------------------------------------------------------------------

def _connect(rt: Runtime, address: str, user: Optional[str], port: Optional[int]):
    settings = rt.config.ssh
    candidates = settings.key_candidates or [str(p) for p in default_key_candidates()]
    client = ssh_client(HostSpec(name=address, address=address, port=port, user=user), settings, candidates)
    return client.connect(rt.ctx)


def _bootstrapper(rt: Runtime) -> KubeadmBootstrapper:
    settings = rt.config.providers.kubeadm
    return KubeadmBootstrapper(
        bus=rt.bus,
        event_ctx=rt.event_ctx,
        max_parallel=settings.max_parallel if settings else 4,
    )


@node_app.command("bootstrap")
def node_bootstrap(
    ctx: typer.Context,
    address: str = typer.Argument(...),
    user: Optional[str] = typer.Option(None, "--user"),
    port: Optional[int] = typer.Option(None, "--port"),
    version: str = typer.Option("", "--kubernetes-version"),
    start_at: Optional[str] = typer.Option(
        None, "--start-at", help=f"Resume at a stage: {', '.join(stage_names())}"
    ),
):
    """Kernel prerequisites, container runtime and the kubeadm toolchain."""
    with _cli_errors():
        rt = _runtime(ctx)
        with _connect(rt, address, user, port) as client:
            _bootstrapper(rt).bootstrap_node(client, BootstrapConfig(kubernetes_version=version), rt.ctx, start_at=start_at)
    typer.echo(f"{address} bootstrapped")


@node_app.command("join")
def node_join(
    ctx: typer.Context,
    address: str = typer.Argument(...),
    control_plane: str = typer.Option(..., "--control-plane", help="Control plane address"),
    user: Optional[str] = typer.Option(None, "--user"),
    port: Optional[int] = typer.Option(None, "--port"),
    version: str = typer.Option("", "--kubernetes-version"),
    bootstrap: bool = typer.Option(True, "--bootstrap/--no-bootstrap", help="Run the node stages first"),
):
    """Join a host to an existing control plane with a freshly issued token."""
    with _cli_errors():
        rt = _runtime(ctx)
        bootstrapper = _bootstrapper(rt)
        with _connect(rt, control_plane, user, None) as cp:
            artifacts = bootstrapper.get_join_token(cp, rt.ctx)
        config = BootstrapConfig(kubernetes_version=version).with_join(artifacts, control_plane)
        with _connect(rt, address, user, port) as client:
            if bootstrap:
                bootstrapper.bootstrap_node(client, config, rt.ctx)
            bootstrapper.join_worker(client, config, rt.ctx)
    typer.echo(f"{address} joined {control_plane}")


@node_app.command("token")
def node_token(
    ctx: typer.Context,
    control_plane: str = typer.Argument(..., help="Control plane address"),
    user: Optional[str] = typer.Option(None, "--user"),
    port: Optional[int] = typer.Option(None, "--port"),
):
    """Print a fresh kubeadm join command."""
    with _cli_errors():
        rt = _runtime(ctx)
        with _connect(rt, control_plane, user, port) as cp:
            artifacts = _bootstrapper(rt).get_join_token(cp, rt.ctx)
    typer.echo(artifacts.join_command)


@node_app.command("wait-ready")
def node_wait_ready(
    ctx: typer.Context,
    control_plane: str = typer.Argument(..., help="Control plane address"),
    expected: int = typer.Option(1, "--expected", help="Minimum number of nodes"),
    wait: float = typer.Option(600.0, "--wait", help="Seconds to wait"),
    user: Optional[str] = typer.Option(None, "--user"),
    port: Optional[int] = typer.Option(None, "--port"),
):
    with _cli_errors():
        rt = _runtime(ctx)
        with _connect(rt, control_plane, user, port) as cp:
            ready = _bootstrapper(rt).wait_for_node_ready(cp, rt.ctx, timeout=wait, expected=expected)
    typer.echo(f"{ready} node(s) ready")


if __name__ == "__main__":
    app()
