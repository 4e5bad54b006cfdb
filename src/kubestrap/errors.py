# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubestrap/errors.py
from __future__ import annotations

from typing import Optional


class ClusterError(Exception):
    """Base class for every kubestrap failure."""


class RemoteConnectionError(ClusterError, ConnectionError):
    """Transport or authentication failure against a host."""

    def __init__(self, message: str, host: Optional[str] = None):
        self.host = host
        super().__init__(f"{host}: {message}" if host else message)


class CommandError(ClusterError):
    """A command (remote or local) exited non-zero."""

    def __init__(
        self,
        command: str,
        exit_status: int,
        stderr: str = "",
        stdout: str = "",
        host: Optional[str] = None,
    ):
        self.command = command
        self.exit_status = exit_status
        self.stderr = stderr
        self.stdout = stdout
        self.host = host
        where = f" on {host}" if host else ""
        detail = (stderr or stdout).strip()
        msg = f"command failed{where} (exit {exit_status}): {_short(command)}"
        if detail:
            msg += f"\n{detail}"
        super().__init__(msg)


class StageError(ClusterError):
    """A bootstrap stage failed; the cause is chained on __cause__."""

    def __init__(self, stage: str, host: str, cause: BaseException):
        self.stage = stage
        self.host = host
        self.cause = cause
        super().__init__(f"stage '{stage}' failed on {host}: {cause}")

    @property
    def stderr(self) -> str:
        return getattr(self.cause, "stderr", "") or ""


class InvalidConfiguration(ClusterError):
    def __init__(self, message: str):
        self.message = message
        super().__init__(f"invalid configuration: {message}")


class ClusterNotFound(ClusterError):
    def __init__(self, cluster_name: str):
        self.cluster_name = cluster_name
        super().__init__(f"cluster not found: {cluster_name}")


class WaitTimeout(ClusterError, TimeoutError):
    """A deadline-bound wait elapsed before its condition became true."""


class OperationCancelled(ClusterError):
    def __init__(self, reason: str = "cancelled"):
        self.reason = reason
        super().__init__(reason)


class UnsupportedOperation(ClusterError):
    def __init__(self, operation: str, backend: str, message: Optional[str] = None):
        self.operation = operation
        self.backend = backend
        super().__init__(message or f"{operation} not supported for {backend} clusters")


class ProviderNotRegistered(ClusterError):
    def __init__(self, cluster_type: str):
        self.cluster_type = cluster_type
        super().__init__(f"no provider registered for cluster type '{cluster_type}'")


class KubectlError(ClusterError):
    pass


def _short(command: str, limit: int = 120) -> str:
    first = command.strip().splitlines()[0] if command.strip() else ""
    if len(first) > limit or "\n" in command.strip():
        return first[:limit] + " ..."
    return first
