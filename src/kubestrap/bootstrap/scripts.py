# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubestrap/bootstrap/scripts.py
"""
Shell text for each bootstrap stage.

Every generator is a pure function of its arguments and every script is
safe to re-run after a partial failure.
"""
from __future__ import annotations

import shlex
from typing import Dict, Iterable

from kubestrap.errors import InvalidConfiguration
from .models import API_SERVER_PORT, BootstrapConfig, CNIPlugin
from .template_renderer import TemplateRenderer

JOIN_MARKER = "=== JOIN COMMAND ==="

KERNEL_MODULES = ("overlay", "br_netfilter")
SYSCTLS = (
    ("net.bridge.bridge-nf-call-iptables", "1"),
    ("net.bridge.bridge-nf-call-ip6tables", "1"),
    ("net.ipv4.ip_forward", "1"),
)

_renderer = TemplateRenderer()


def kernel_script() -> str:
    return _renderer.render("kernel.sh.j2", {"modules": KERNEL_MODULES, "sysctls": SYSCTLS})


def container_runtime_script() -> str:
    return _renderer.render("container_runtime.sh.j2")


def kubernetes_tooling_script(config: BootstrapConfig) -> str:
    return _renderer.render("kubernetes_tooling.sh.j2", {"minor": config.kubernetes_minor})


def control_plane_init_script(config: BootstrapConfig) -> str:
    return _renderer.render(
        "control_plane_init.sh.j2",
        {
            "pod_cidr": config.pod_cidr,
            "service_cidr": config.service_cidr,
            "release": config.kubernetes_release,
            "endpoint": config.control_plane_endpoint or "",
            "api_port": API_SERVER_PORT,
            "marker": JOIN_MARKER,
        },
    )


def kubectl_setup_script() -> str:
    return _renderer.render("kubectl_setup.sh.j2")


def cni_manifest_url(plugin: str | CNIPlugin) -> str:
    if isinstance(plugin, CNIPlugin):
        return plugin.manifest_url
    return CNIPlugin.parse(plugin).manifest_url


def cni_script(plugin: str | CNIPlugin) -> str:
    return _renderer.render("cni.sh.j2", {"manifest_url": cni_manifest_url(plugin)})


def worker_join_script(config: BootstrapConfig) -> str:
    missing = [
        label
        for label, value in (
            ("control plane address", config.control_plane_address),
            ("join token", config.join_token),
            ("CA cert hash", config.ca_cert_hash),
        )
        if not value
    ]
    if missing:
        raise InvalidConfiguration(f"{', '.join(missing)} required to join a worker")
    return _renderer.render(
        "worker_join.sh.j2",
        {
            "address": config.control_plane_address,
            "api_port": API_SERVER_PORT,
            "token": shlex.quote(config.join_token),
            "ca_cert_hash": shlex.quote(config.ca_cert_hash),
        },
    )


def reset_script() -> str:
    return _renderer.render("reset.sh.j2")


def node_label_script(nodes: Iterable[str], labels: Dict[str, str]) -> str:
    return _renderer.render(
        "node_labels.sh.j2",
        {
            "nodes": [shlex.quote(n) for n in nodes],
            "labels": [(shlex.quote(k), shlex.quote(v)) for k, v in sorted(labels.items())],
        },
    )
