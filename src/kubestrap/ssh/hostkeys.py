# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubestrap/ssh/hostkeys.py
from __future__ import annotations

import base64
import hashlib
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional

import paramiko

log = logging.getLogger("kubestrap")


def fingerprint(key: paramiko.PKey) -> str:
    """OpenSSH-style SHA256 fingerprint, e.g. SHA256:abc... (no padding)."""
    digest = hashlib.sha256(key.asbytes()).digest()
    return "SHA256:" + base64.b64encode(digest).decode("ascii").rstrip("=")


class _WarnAndAccept(paramiko.MissingHostKeyPolicy):
    def missing_host_key(self, client, hostname, key):
        log.warning(
            "[ssh] accepting unverified host key for %s (%s %s)",
            hostname, key.get_name(), fingerprint(key),
        )
        client.get_host_keys().add(hostname, key.get_name(), key)


class _PinnedFingerprint(paramiko.MissingHostKeyPolicy):
    def __init__(self, pins: Dict[str, str]):
        self.pins = pins

    def missing_host_key(self, client, hostname, key):
        host = hostname.split("]")[0].lstrip("[")
        expected = self.pins.get(host) or self.pins.get(hostname)
        actual = fingerprint(key)
        if expected is None:
            raise paramiko.SSHException(f"no pinned host key fingerprint for {host}")
        if expected.rstrip("=") != actual:
            raise paramiko.SSHException(
                f"host key mismatch for {host}: expected {expected}, got {actual}"
            )
        client.get_host_keys().add(hostname, key.get_name(), key)


@dataclass(frozen=True)
class HostKeyPolicy:
    """
    How an SSHClient verifies the server's host key.

    auto-add     accept any key and log a warning (freshly provisioned hosts)
    known-hosts  only hosts already present in known_hosts are accepted
    fingerprint  keys must match a SHA256 fingerprint obtained out of band
    """

    mode: str = "auto-add"
    known_hosts_path: Optional[str] = None
    pins: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def auto_add(cls) -> "HostKeyPolicy":
        return cls(mode="auto-add")

    @classmethod
    def known_hosts(cls, path: Optional[str] = None) -> "HostKeyPolicy":
        return cls(mode="known-hosts", known_hosts_path=path)

    @classmethod
    def pinned(cls, pins: Dict[str, str]) -> "HostKeyPolicy":
        return cls(mode="fingerprint", pins=dict(pins))

    def apply(self, client: paramiko.SSHClient) -> None:
        if self.mode == "auto-add":
            client.set_missing_host_key_policy(_WarnAndAccept())
        elif self.mode == "known-hosts":
            if self.known_hosts_path:
                client.load_host_keys(str(Path(self.known_hosts_path).expanduser()))
            else:
                client.load_system_host_keys()
            client.set_missing_host_key_policy(paramiko.RejectPolicy())
        elif self.mode == "fingerprint":
            client.set_missing_host_key_policy(_PinnedFingerprint(self.pins))
        else:
            raise ValueError(f"unknown host key policy: {self.mode}")
