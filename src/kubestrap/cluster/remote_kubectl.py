# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubestrap/cluster/remote_kubectl.py
from __future__ import annotations

import shlex
from typing import Dict, List, Optional, Sequence

from kubestrap.bootstrap.interface import RemoteShell
from kubestrap.errors import CommandError, KubectlError
from kubestrap.utils.execution import ExecutionContext
from .nodes import (
    COMPONENT_STATUS_JSONPATH,
    extract_server_version,
    parse_component_statuses,
    parse_nodes,
)
from .types import NodeInfo, NodeTaint

DRAIN_TIMEOUT = "120s"


class RemoteKubectl:
    """kubectl on the control plane, as the SSH user configured by kubectl-setup."""

    def __init__(self, client: RemoteShell):
        self.client = client

    def _kubectl(self, args: Sequence[str], ctx: Optional[ExecutionContext]) -> str:
        cmd = "kubectl " + " ".join(shlex.quote(a) for a in args)
        try:
            return self.client.run(cmd, ctx)
        except CommandError as exc:
            raise KubectlError(f"{cmd} failed on {self.client.host}: {exc.stderr.strip() or exc}") from exc

    def nodes(self, ctx: Optional[ExecutionContext] = None) -> List[NodeInfo]:
        return parse_nodes(self._kubectl(["get", "nodes", "-o", "json"], ctx))

    def server_version(self, ctx: Optional[ExecutionContext] = None) -> str:
        return extract_server_version(self._kubectl(["version"], ctx))

    def component_statuses(self, ctx: Optional[ExecutionContext] = None) -> Dict[str, str]:
        return parse_component_statuses(
            self._kubectl(["get", "componentstatuses", "-o", COMPONENT_STATUS_JSONPATH], ctx)
        )

    def drain(self, node: str, ctx: Optional[ExecutionContext] = None) -> None:
        self._kubectl(
            [
                "drain", node,
                "--ignore-daemonsets",
                "--delete-emptydir-data",
                "--force",
                f"--timeout={DRAIN_TIMEOUT}",
            ],
            ctx,
        )

    def delete_node(self, node: str, ctx: Optional[ExecutionContext] = None) -> None:
        self._kubectl(["delete", "node", node, "--ignore-not-found"], ctx)

    def taint(self, nodes: Sequence[str], taints: Sequence[NodeTaint], ctx: Optional[ExecutionContext] = None) -> None:
        if not nodes or not taints:
            return
        self._kubectl(["taint", "nodes", *nodes, *[str(t) for t in taints], "--overwrite"], ctx)
