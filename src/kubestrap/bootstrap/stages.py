# src/kubestrap/bootstrap/stages.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional, Sequence

from kubestrap.errors import InvalidConfiguration
from . import scripts
from .models import BootstrapConfig


@dataclass(frozen=True)
class Stage:
    """
    One idempotent bootstrap step.

    render builds the script from the config; sudo selects whether the
    script runs as root or as the login user (kubectl stages need the
    user's kubeconfig).
    """

    name: str
    render: Callable[[BootstrapConfig], str]
    sudo: bool = True


KERNEL = Stage("kernel", lambda cfg: scripts.kernel_script())
CONTAINER_RUNTIME = Stage("container-runtime", lambda cfg: scripts.container_runtime_script())
KUBERNETES_TOOLING = Stage("kubernetes-tooling", scripts.kubernetes_tooling_script)
CONTROL_PLANE_INIT = Stage("control-plane-init", scripts.control_plane_init_script)
KUBECTL_SETUP = Stage("kubectl-setup", lambda cfg: scripts.kubectl_setup_script(), sudo=False)
CNI = Stage("cni", lambda cfg: scripts.cni_script(cfg.cni), sudo=False)
WORKER_JOIN = Stage("worker-join", scripts.worker_join_script)

NODE_STAGES: Sequence[Stage] = (KERNEL, CONTAINER_RUNTIME, KUBERNETES_TOOLING)
ALL_STAGES: Sequence[Stage] = NODE_STAGES + (CONTROL_PLANE_INIT, KUBECTL_SETUP, CNI, WORKER_JOIN)


def stage_names(stages: Sequence[Stage] = ALL_STAGES) -> list[str]:
    return [s.name for s in stages]


def stages_from(stages: Sequence[Stage], start_at: Optional[str]) -> Sequence[Stage]:
    """The tail of `stages` beginning with `start_at` (all of them when None)."""
    if start_at is None:
        return stages
    names = stage_names(stages)
    if start_at not in names:
        raise InvalidConfiguration(f"unknown stage '{start_at}' (expected one of: {', '.join(names)})")
    return stages[names.index(start_at):]
