# src/kubestrap/bootstrap/interface.py

from __future__ import annotations

from typing import Optional, Protocol

from kubestrap.utils.execution import ExecutionContext


class RemoteShell(Protocol):
    """
    What the bootstrapper needs from a connected host.
    kubestrap.ssh.client.SSHClient satisfies it; tests use fakes.
    """

    host: str

    def run(self, command: str, ctx: Optional[ExecutionContext] = None) -> str: ...

    def run_sudo(self, command: str, ctx: Optional[ExecutionContext] = None) -> str: ...

    def run_script(self, script: str, ctx: Optional[ExecutionContext] = None) -> str: ...

    def run_sudo_script(self, script: str, ctx: Optional[ExecutionContext] = None) -> str: ...

    def download(self, remote_path: str, ctx: Optional[ExecutionContext] = None, sudo: bool = False) -> bytes: ...
