# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubestrap/bootstrap/orchestrator.py
from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, List, Optional, Sequence

from kubestrap.errors import (
    ClusterError,
    CommandError,
    OperationCancelled,
    StageError,
    WaitTimeout,
)
from kubestrap.observers.dispatcher import EventBus
from kubestrap.observers.events import (
    CNIInstalled,
    ControlPlaneInitialized,
    StageFailed,
    StageStarted,
    StageSucceeded,
    WaitStarted,
    WaitSucceeded,
    WaitTimedOut,
    WorkerJoined,
    new_ctx,
    stamp,
)
from kubestrap.utils.execution import ExecutionContext
from . import scripts, stages
from .interface import RemoteShell
from .join import parse_init_output, parse_join_command
from .models import BootstrapConfig, CNIPlugin, JoinArtifacts
from .stages import Stage

log = logging.getLogger("kubestrap")

READY_POLL_INTERVAL = 10.0
KUBECONFIG_PATH = "/etc/kubernetes/admin.conf"
NODE_READY_CMD = (
    "kubectl get nodes -o jsonpath="
    "'{.items[*].status.conditions[?(@.type==\"Ready\")].status}'"
)


@dataclass
class BootstrapResult:
    artifacts: JoinArtifacts
    kubeconfig: bytes
    joined: List[str] = field(default_factory=list)
    ready_nodes: int = 0


class KubeadmBootstrapper:
    """
    Drives the bootstrap stages over connected clients.

    Clients are borrowed: the caller connects and closes them. Stages on a
    host run strictly in order; different hosts may run concurrently.
    Nothing here retries a failed stage; a StageError names the stage so
    the caller can resume with start_at.
    """

    def __init__(
        self,
        *,
        bus: Optional[EventBus] = None,
        event_ctx: Optional[Dict[str, Any]] = None,
        poll_interval: float = READY_POLL_INTERVAL,
        max_parallel: int = 4,
    ):
        self.bus = bus
        self.event_ctx = event_ctx or new_ctx(env="default", context=None)
        self.poll_interval = poll_interval
        self.max_parallel = max(1, max_parallel)

    def _emit(self, event_cls, **fields) -> None:
        if self.bus is not None:
            self.bus.emit(event_cls(**stamp(self.event_ctx), **fields))

    # ------------------ stages ------------------

    def run_stage(self, client: RemoteShell, stage: Stage, config: BootstrapConfig, ctx: ExecutionContext) -> str:
        # rendering validates config before anything touches the host
        script = stage.render(config)
        ctx.check()

        log.info("[bootstrap] %s stage %s ...", client.host, stage.name)
        self._emit(StageStarted, host=client.host, stage=stage.name)
        start = time.monotonic()
        try:
            if stage.sudo:
                out = client.run_sudo_script(script, ctx)
            else:
                out = client.run_script(script, ctx)
        except OperationCancelled as exc:
            self._emit(StageFailed, host=client.host, stage=stage.name, error=str(exc))
            raise
        except ClusterError as exc:
            self._emit(StageFailed, host=client.host, stage=stage.name, error=str(exc))
            log.error("[bootstrap] %s stage %s failed: %s", client.host, stage.name, exc)
            raise StageError(stage.name, client.host, exc) from exc

        duration_ms = int((time.monotonic() - start) * 1000)
        self._emit(StageSucceeded, host=client.host, stage=stage.name, duration_ms=duration_ms)
        log.info("[bootstrap] %s stage %s done (%.1fs)", client.host, stage.name, duration_ms / 1000)
        return out

    def run_stages(
        self,
        client: RemoteShell,
        sequence: Sequence[Stage],
        config: BootstrapConfig,
        ctx: Optional[ExecutionContext] = None,
        start_at: Optional[str] = None,
    ) -> Dict[str, str]:
        """Run `sequence` in order, optionally resuming at `start_at`; stop on first failure."""
        ctx = ctx or ExecutionContext.background()
        outputs: Dict[str, str] = {}
        for stage in stages.stages_from(sequence, start_at):
            outputs[stage.name] = self.run_stage(client, stage, config, ctx)
        return outputs

    # ------------------ operations ------------------

    def bootstrap_node(
        self,
        client: RemoteShell,
        config: BootstrapConfig,
        ctx: Optional[ExecutionContext] = None,
        start_at: Optional[str] = None,
    ) -> None:
        """Kernel prerequisites, container runtime, kubeadm toolchain."""
        self.run_stages(client, stages.NODE_STAGES, config, ctx, start_at=start_at)

    def initialize_control_plane(
        self,
        client: RemoteShell,
        config: BootstrapConfig,
        ctx: Optional[ExecutionContext] = None,
    ) -> JoinArtifacts:
        ctx = ctx or ExecutionContext.background()
        output = self.run_stage(client, stages.CONTROL_PLANE_INIT, config, ctx)
        artifacts = parse_init_output(output)
        if not artifacts.available:
            log.warning("[bootstrap] %s: join command not found in init output", client.host)
        self.run_stage(client, stages.KUBECTL_SETUP, config, ctx)
        self._emit(ControlPlaneInitialized, host=client.host, artifacts_available=artifacts.available)
        return artifacts

    def install_cni(self, client: RemoteShell, plugin: str, ctx: Optional[ExecutionContext] = None) -> None:
        cni = CNIPlugin.parse(plugin)
        self.run_stage(client, stages.CNI, BootstrapConfig(cni=cni.value), ctx or ExecutionContext.background())
        self._emit(CNIInstalled, host=client.host, plugin=cni.value)

    def join_worker(self, client: RemoteShell, config: BootstrapConfig, ctx: Optional[ExecutionContext] = None) -> None:
        self.run_stage(client, stages.WORKER_JOIN, config, ctx or ExecutionContext.background())
        self._emit(WorkerJoined, host=client.host, control_plane=config.control_plane_address)

    def get_join_token(self, client: RemoteShell, ctx: Optional[ExecutionContext] = None) -> JoinArtifacts:
        """Issue a fresh token on a live control plane; init's token may have expired."""
        ctx = ctx or ExecutionContext.background()
        try:
            out = client.run_sudo("kubeadm token create --print-join-command", ctx)
        except CommandError as exc:
            raise StageError("join-token", client.host, exc) from exc
        return parse_join_command(out.strip())

    def wait_for_node_ready(
        self,
        client: RemoteShell,
        ctx: Optional[ExecutionContext] = None,
        timeout: Optional[float] = None,
        expected: int = 1,
    ) -> int:
        """
        Poll node Ready conditions until every listed node is ready and at
        least `expected` nodes are listed. Returns the node count.

        A kubectl failure counts as "not ready yet". Connection failures
        propagate. Deadline -> WaitTimeout.
        """
        ctx = (ctx or ExecutionContext.background()).with_timeout(timeout)
        name = f"nodes ready on {client.host}"
        self._emit(WaitStarted, name=name, timeout_s=timeout)

        polls = 0
        while True:
            if ctx.cancelled:
                raise OperationCancelled("cancelled")
            if ctx.expired:
                break
            polls += 1
            statuses: List[str] = []
            try:
                statuses = client.run(NODE_READY_CMD, ctx).split()
            except CommandError as exc:
                log.debug("[bootstrap] %s: node query failed (poll %d): %s", client.host, polls, exc)
            except OperationCancelled:
                if ctx.cancelled:
                    raise
                break

            if statuses and len(statuses) >= expected and all(s == "True" for s in statuses):
                self._emit(WaitSucceeded, name=name, polls=polls)
                log.info("[bootstrap] %s: %d node(s) ready", client.host, len(statuses))
                return len(statuses)

            log.debug("[bootstrap] %s: node readiness %s (poll %d)", client.host, statuses or "-", polls)
            if not ctx.sleep(self.poll_interval):
                if ctx.cancelled:
                    raise OperationCancelled("cancelled")
                break

        self._emit(WaitTimedOut, name=name, timeout_s=timeout)
        raise WaitTimeout(f"timed out waiting for nodes to be ready on {client.host} after {polls} poll(s)")

    def get_kubeconfig(self, client: RemoteShell, ctx: Optional[ExecutionContext] = None) -> bytes:
        """admin.conf from the control plane; root-only, so fetched via sudo scp."""
        return client.download(KUBECONFIG_PATH, ctx, sudo=True)

    def reset_node(self, client: RemoteShell, ctx: Optional[ExecutionContext] = None) -> None:
        ctx = ctx or ExecutionContext.background()
        log.info("[bootstrap] %s: kubeadm reset", client.host)
        try:
            client.run_sudo_script(scripts.reset_script(), ctx)
        except CommandError as exc:
            raise StageError("reset", client.host, exc) from exc

    def label_nodes(
        self,
        client: RemoteShell,
        nodes: Sequence[str],
        labels: Dict[str, str],
        ctx: Optional[ExecutionContext] = None,
    ) -> None:
        if not nodes or not labels:
            return
        ctx = ctx or ExecutionContext.background()
        try:
            client.run_script(scripts.node_label_script(nodes, labels), ctx)
        except CommandError as exc:
            raise StageError("label-nodes", client.host, exc) from exc

    # ------------------ whole cluster ------------------

    def add_workers(
        self,
        control_plane: RemoteShell,
        workers: Sequence[RemoteShell],
        config: BootstrapConfig,
        artifacts: JoinArtifacts,
        control_plane_address: str,
        ctx: Optional[ExecutionContext] = None,
        on_joined: Optional[Callable[[str], None]] = None,
    ) -> List[str]:
        """
        Bootstrap and join workers, several at a time. Artifacts that are
        unavailable are re-issued from the control plane first.

        on_joined(host) is called for every worker that joined, also when
        another worker fails and the first failure is raised afterwards.
        """
        ctx = ctx or ExecutionContext.background()
        if not workers:
            return []
        if not artifacts.available:
            log.info("[bootstrap] requesting a fresh join token from %s", control_plane.host)
            artifacts = self.get_join_token(control_plane, ctx)
        worker_cfg = config.with_join(artifacts, control_plane_address)

        def _one(worker: RemoteShell) -> str:
            self.bootstrap_node(worker, worker_cfg, ctx)
            self.join_worker(worker, worker_cfg, ctx)
            return worker.host

        with ThreadPoolExecutor(max_workers=min(self.max_parallel, len(workers))) as pool:
            futures = [pool.submit(_one, w) for w in workers]
            joined: List[str] = []
            first_error: Optional[BaseException] = None
            for fut in futures:
                try:
                    host = fut.result()
                except ClusterError as exc:
                    log.error("[bootstrap] worker failed: %s", exc)
                    if first_error is None:
                        first_error = exc
                    continue
                joined.append(host)
                if on_joined:
                    on_joined(host)
        if first_error is not None:
            raise first_error
        return joined

    def bootstrap_cluster(
        self,
        control_plane: RemoteShell,
        workers: Sequence[RemoteShell],
        config: BootstrapConfig,
        ctx: Optional[ExecutionContext] = None,
        ready_timeout: Optional[float] = 600.0,
    ) -> BootstrapResult:
        """
        Full sequence: node stages + init + kubectl + CNI on the control
        plane, then node stages + join on each worker, then wait for every
        node to report Ready.
        """
        ctx = ctx or ExecutionContext.background()
        cp_address = config.control_plane_address or control_plane.host
        cp_config = replace(config, is_control_plane=True, control_plane_address=cp_address)

        self.bootstrap_node(control_plane, cp_config, ctx)
        artifacts = self.initialize_control_plane(control_plane, cp_config, ctx)
        self.install_cni(control_plane, cp_config.cni, ctx)

        joined = self.add_workers(control_plane, workers, cp_config, artifacts, cp_address, ctx)

        ready = self.wait_for_node_ready(control_plane, ctx, timeout=ready_timeout, expected=1 + len(workers))
        kubeconfig = self.get_kubeconfig(control_plane, ctx)
        return BootstrapResult(artifacts=artifacts, kubeconfig=kubeconfig, joined=joined, ready_nodes=ready)
