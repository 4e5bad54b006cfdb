# src/kubestrap/cluster/nodes.py
"""Parsing helpers for kubectl output shared by the kubectl-backed providers."""
from __future__ import annotations

import json
from typing import Dict, List

from kubestrap.errors import KubectlError
from .types import CONTROL_PLANE_LABELS, NodeInfo, NodeRole

COMPONENT_STATUS_JSONPATH = 'jsonpath={range .items[*]}{.metadata.name}={.conditions[0].status}{"\\n"}{end}'


def node_role(labels: Dict[str, str]) -> NodeRole:
    if any(key in labels for key in CONTROL_PLANE_LABELS):
        return NodeRole.CONTROL_PLANE
    return NodeRole.WORKER


def parse_nodes(output: str) -> List[NodeInfo]:
    """`kubectl get nodes -o json` -> NodeInfo list."""
    try:
        doc = json.loads(output or "{}")
    except json.JSONDecodeError as exc:
        raise KubectlError(f"failed to parse nodes: {exc}") from exc

    nodes: List[NodeInfo] = []
    for item in doc.get("items", []):
        meta = item.get("metadata", {})
        status = item.get("status", {})
        labels = meta.get("labels") or {}
        node = NodeInfo(name=meta.get("name", ""), role=node_role(labels), labels=dict(labels))

        for addr in status.get("addresses", []):
            if addr.get("type") == "InternalIP":
                node.internal_ip = addr.get("address", "")
            elif addr.get("type") == "ExternalIP":
                node.external_ip = addr.get("address", "")

        for cond in status.get("conditions", []):
            if cond.get("type") == "Ready":
                node.status = "Ready" if cond.get("status") == "True" else "NotReady"
                break

        nodes.append(node)
    return nodes


def parse_component_statuses(output: str) -> Dict[str, str]:
    components: Dict[str, str] = {}
    for line in (output or "").splitlines():
        name, sep, value = line.strip().partition("=")
        if sep and name:
            components[name] = value
    return components


def extract_server_version(output: str) -> str:
    """'Server Version: v1.28.0' -> 'v1.28.0'; 'unknown' when absent."""
    for line in (output or "").splitlines():
        if line.startswith("Server Version:"):
            return line[len("Server Version:"):].strip() or "unknown"
    return "unknown"


def summarize_readiness(nodes: List[NodeInfo]) -> tuple[bool, str]:
    ready = sum(1 for n in nodes if n.ready)
    if nodes and ready == len(nodes):
        return True, f"all {len(nodes)} nodes ready"
    return False, f"{ready}/{len(nodes)} nodes ready"
