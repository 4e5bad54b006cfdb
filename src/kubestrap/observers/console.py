# src/kubestrap/observers/console.py
from __future__ import annotations

import typer

from .events import (
    BaseEvent,
    CNIInstalled,
    ClusterCreated,
    ClusterDeleted,
    ClusterScaled,
    ControlPlaneInitialized,
    StageFailed,
    StageStarted,
    StageSucceeded,
    WaitStarted,
    WaitSucceeded,
    WaitTimedOut,
    WorkerJoined,
)

_SKIP = ("ts", "run_id", "env", "context")


class ConsoleObserver:
    """Short human-readable lines for interactive CLI runs."""

    def notify(self, event: BaseEvent) -> None:
        typer.echo(self.render(event))

    def render(self, event: BaseEvent) -> str:
        if isinstance(event, StageStarted):
            return f"[{event.host}] {event.stage} ..."
        if isinstance(event, StageSucceeded):
            return f"[{event.host}] {event.stage} ok ({event.duration_ms / 1000:.1f}s)"
        if isinstance(event, StageFailed):
            return f"[{event.host}] {event.stage} FAILED: {event.error}"
        if isinstance(event, ControlPlaneInitialized):
            state = "join artifacts captured" if event.artifacts_available else "join artifacts missing"
            return f"[{event.host}] control plane initialized, {state}"
        if isinstance(event, CNIInstalled):
            return f"[{event.host}] CNI {event.plugin} applied"
        if isinstance(event, WorkerJoined):
            return f"[{event.host}] joined {event.control_plane}"
        if isinstance(event, WaitStarted):
            return f"[wait] {event.name} (timeout {event.timeout_s}s)"
        if isinstance(event, WaitSucceeded):
            return f"[wait] {event.name} ok after {event.polls} poll(s)"
        if isinstance(event, WaitTimedOut):
            return f"[wait] {event.name} timed out after {event.timeout_s}s"
        if isinstance(event, ClusterCreated):
            return f"[{event.cluster_type}] cluster {event.name} created at {event.endpoint}"
        if isinstance(event, ClusterDeleted):
            return f"[{event.cluster_type}] cluster {event.name} deleted"
        if isinstance(event, ClusterScaled):
            return (
                f"[{event.cluster_type}] cluster {event.name} scaled "
                f"(+{len(event.added)} / -{len(event.removed)})"
            )
        d = event.dict()
        data = ", ".join(f"{k}={v}" for k, v in d.items() if k not in _SKIP)
        return f"[{d['ts']}] {event.__class__.__name__} {data}"
