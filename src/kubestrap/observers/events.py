# src/kubestrap/observers/events.py

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


# ---------------------------------------------------------------------
# Base context and helper
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class BaseEvent:
    ts: str           # ISO timestamp
    run_id: str       # correlates all events in a single invocation
    env: str          # environment name from config
    context: Optional[str]  # cluster name or kube-context

    def dict(self) -> Dict[str, Any]:
        return asdict(self)


def new_ctx(env: str, context: Optional[str], run_id: Optional[str] = None) -> Dict[str, Any]:
    return {
        "ts": datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z"),
        "run_id": run_id or str(uuid.uuid4()),
        "env": env,
        "context": context,
    }


def stamp(ctx: Dict[str, Any]) -> Dict[str, Any]:
    """Same context, fresh timestamp."""
    out = dict(ctx)
    out["ts"] = datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")
    return out


# ---------------------------------------------------------------------
# Bootstrap stages
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class StageStarted(BaseEvent):
    host: str
    stage: str

@dataclass(frozen=True)
class StageSucceeded(BaseEvent):
    host: str
    stage: str
    duration_ms: int

@dataclass(frozen=True)
class StageFailed(BaseEvent):
    host: str
    stage: str
    error: str


# ---------------------------------------------------------------------
# Cluster formation
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class ControlPlaneInitialized(BaseEvent):
    host: str
    artifacts_available: bool

@dataclass(frozen=True)
class CNIInstalled(BaseEvent):
    host: str
    plugin: str

@dataclass(frozen=True)
class WorkerJoined(BaseEvent):
    host: str
    control_plane: str


# ---------------------------------------------------------------------
# Waiters
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class WaitStarted(BaseEvent):
    name: str
    timeout_s: Optional[float]

@dataclass(frozen=True)
class WaitSucceeded(BaseEvent):
    name: str
    polls: int

@dataclass(frozen=True)
class WaitTimedOut(BaseEvent):
    name: str
    timeout_s: Optional[float]


# ---------------------------------------------------------------------
# Provider lifecycle
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class ClusterCreated(BaseEvent):
    cluster_type: str
    name: str
    endpoint: str

@dataclass(frozen=True)
class ClusterDeleted(BaseEvent):
    cluster_type: str
    name: str

@dataclass(frozen=True)
class ClusterScaled(BaseEvent):
    cluster_type: str
    name: str
    added: List[str]
    removed: List[str]
