# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubestrap/ssh/client.py
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, Optional

import paramiko
from paramiko.common import cMSG_CHANNEL_REQUEST

from kubestrap.errors import CommandError, OperationCancelled, RemoteConnectionError
from kubestrap.ssh import scp
from kubestrap.ssh.hostkeys import HostKeyPolicy
from kubestrap.ssh.keys import resolve_private_key
from kubestrap.ssh.session import InteractiveSession
from kubestrap.utils.execution import ExecutionContext

log = logging.getLogger("kubestrap")

_POLL = 0.05
_CHUNK = 32768


@dataclass(frozen=True)
class CommandResult:
    command: str
    exit_status: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.exit_status == 0


def quote(script: str) -> str:
    """Single-quote for bash -c; embedded ' becomes '"'"'."""
    return "'" + script.replace("'", "'\"'\"'") + "'"


def send_signal(chan: paramiko.Channel, signal: str = "KILL") -> None:
    """Send an RFC 4254 "signal" channel request without waiting for a reply."""
    # paramiko has no public API for channel signals; this is the only
    # place that touches its private transport sender
    m = paramiko.Message()
    m.add_byte(cMSG_CHANNEL_REQUEST)
    m.add_int(chan.remote_chanid)
    m.add_string("signal")
    m.add_boolean(False)
    m.add_string(signal)
    chan.transport._send_user_message(m)


class SSHClient:
    """
    One authenticated connection to one host.

    Commands are serialized: a client runs at most one command at a time.
    There is no retry in here; callers decide which failures are transient.
    """

    def __init__(
        self,
        host: str,
        *,
        port: int = 22,
        user: str = "ubuntu",
        private_key: Optional[bytes] = None,
        private_key_path: Optional[str | Path] = None,
        key_candidates: Iterable[str | Path] = (),
        host_key_policy: Optional[HostKeyPolicy] = None,
        connect_timeout: float = 30.0,
        command_timeout: Optional[float] = None,
        client_factory: Callable[[], paramiko.SSHClient] = paramiko.SSHClient,
    ):
        self.host = host
        self.port = port
        self.user = user
        self.private_key = private_key
        self.private_key_path = private_key_path
        self.key_candidates = list(key_candidates)
        self.host_key_policy = host_key_policy or HostKeyPolicy.auto_add()
        self.connect_timeout = connect_timeout
        self.command_timeout = command_timeout
        self._client_factory = client_factory
        self._client: Optional[paramiko.SSHClient] = None
        self._lock = threading.Lock()

    def __repr__(self) -> str:
        return f"SSHClient({self.user}@{self.host}:{self.port})"

    # ------------------ connection ------------------

    @property
    def is_connected(self) -> bool:
        if self._client is None:
            return False
        transport = self._client.get_transport()
        return transport is not None and transport.is_active()

    def connect(self, ctx: Optional[ExecutionContext] = None) -> "SSHClient":
        ctx = ctx or ExecutionContext.background()
        if ctx.cancelled:
            raise OperationCancelled("cancelled")
        timeout = ctx.bound(self.connect_timeout)
        if timeout is not None and timeout <= 0:
            raise RemoteConnectionError("deadline elapsed before connect", self.host)

        pkey = resolve_private_key(
            data=self.private_key,
            path=self.private_key_path,
            candidates=self.key_candidates,
        )

        client = self._client_factory()
        self.host_key_policy.apply(client)
        log.debug("[ssh] connecting %s@%s:%d", self.user, self.host, self.port)
        try:
            client.connect(
                hostname=self.host,
                port=self.port,
                username=self.user,
                pkey=pkey,
                password=None,
                look_for_keys=False,
                allow_agent=False,
                timeout=timeout,
                banner_timeout=timeout,
                auth_timeout=timeout,
            )
        except paramiko.AuthenticationException as exc:
            client.close()
            raise RemoteConnectionError(f"authentication failed for {self.user}: {exc}", self.host) from exc
        except (paramiko.SSHException, OSError) as exc:
            client.close()
            raise RemoteConnectionError(f"{type(exc).__name__}: {exc}", self.host) from exc

        self._client = client
        return self

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    def __enter__(self) -> "SSHClient":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def _open_channel(self):
        if self._client is None:
            raise RemoteConnectionError("not connected", self.host)
        transport = self._client.get_transport()
        if transport is None or not transport.is_active():
            raise RemoteConnectionError("connection closed", self.host)
        try:
            return transport.open_session()
        except (paramiko.SSHException, OSError) as exc:
            raise RemoteConnectionError(f"cannot open channel: {exc}", self.host) from exc

    # ------------------ commands ------------------

    def execute(self, command: str, ctx: Optional[ExecutionContext] = None) -> CommandResult:
        """
        Run one command and return its result whatever the exit status.

        On cancellation or deadline the remote process is sent KILL, the
        channel is closed and OperationCancelled is raised.
        """
        ctx = (ctx or ExecutionContext.background()).with_timeout(self.command_timeout)
        ctx.check()
        with self._lock:
            chan = self._open_channel()
            log.debug("[ssh] %s $ %s", self.host, command)
            try:
                chan.exec_command(command)
                out, err = [], []
                while True:
                    if ctx.cancelled or ctx.expired:
                        reason = "cancelled" if ctx.cancelled else "deadline exceeded"
                        self._terminate(chan)
                        raise OperationCancelled(reason)
                    progressed = False
                    if chan.recv_ready():
                        out.append(chan.recv(_CHUNK))
                        progressed = True
                    if chan.recv_stderr_ready():
                        err.append(chan.recv_stderr(_CHUNK))
                        progressed = True
                    if chan.exit_status_ready() and not chan.recv_ready() and not chan.recv_stderr_ready():
                        break
                    if not progressed:
                        ctx.cancel_event.wait(_POLL)
                status = chan.recv_exit_status()
            except (paramiko.SSHException, OSError) as exc:
                raise RemoteConnectionError(f"command transport failed: {exc}", self.host) from exc
            finally:
                chan.close()

        stdout = b"".join(out).decode("utf-8", errors="replace")
        stderr = b"".join(err).decode("utf-8", errors="replace")
        log.debug("[ssh] %s [exit %d]", self.host, status)
        if stderr.strip():
            log.debug("[ssh] %s [stderr]\n%s", self.host, stderr.rstrip())
        return CommandResult(command=command, exit_status=status, stdout=stdout, stderr=stderr)

    def _terminate(self, chan) -> None:
        log.debug("[ssh] %s: signalling remote command to terminate", self.host)
        try:
            send_signal(chan, "KILL")
        except (paramiko.SSHException, OSError, AttributeError) as exc:
            log.debug("[ssh] %s: signal request failed: %s", self.host, exc)
        chan.close()

    def run(self, command: str, ctx: Optional[ExecutionContext] = None) -> str:
        """Run a command; stdout on success, CommandError on non-zero exit."""
        result = self.execute(command, ctx)
        if not result.ok:
            raise CommandError(command, result.exit_status, stderr=result.stderr, stdout=result.stdout, host=self.host)
        return result.stdout

    def run_sudo(self, command: str, ctx: Optional[ExecutionContext] = None) -> str:
        return self.run(f"sudo {command}", ctx)

    def run_script(self, script: str, ctx: Optional[ExecutionContext] = None) -> str:
        return self.run(f"bash -c {quote(script)}", ctx)

    def run_sudo_script(self, script: str, ctx: Optional[ExecutionContext] = None) -> str:
        return self.run(f"sudo bash -c {quote(script)}", ctx)

    # ------------------ files ------------------

    def upload(
        self,
        data: bytes,
        remote_path: str,
        ctx: Optional[ExecutionContext] = None,
        mode: int = 0o644,
        sudo: bool = False,
    ) -> None:
        ctx = (ctx or ExecutionContext.background()).with_timeout(self.command_timeout)
        ctx.check()
        log.debug("[ssh] %s upload %d bytes -> %s", self.host, len(data), remote_path)
        with self._lock:
            chan = self._open_channel()
            try:
                scp.upload(chan, data, remote_path, ctx, mode=mode, sudo=sudo)
            except (paramiko.SSHException, OSError) as exc:
                raise RemoteConnectionError(f"upload failed: {exc}", self.host) from exc
            finally:
                chan.close()

    def download(self, remote_path: str, ctx: Optional[ExecutionContext] = None, sudo: bool = False) -> bytes:
        ctx = (ctx or ExecutionContext.background()).with_timeout(self.command_timeout)
        ctx.check()
        log.debug("[ssh] %s download %s", self.host, remote_path)
        with self._lock:
            chan = self._open_channel()
            try:
                return scp.download(chan, remote_path, ctx, sudo=sudo)
            except (paramiko.SSHException, OSError) as exc:
                raise RemoteConnectionError(f"download failed: {exc}", self.host) from exc
            finally:
                chan.close()

    def upload_file(self, local_path: str | Path, remote_path: str, ctx: Optional[ExecutionContext] = None) -> None:
        self.upload(Path(local_path).read_bytes(), remote_path, ctx)

    def download_file(self, remote_path: str, local_path: str | Path, ctx: Optional[ExecutionContext] = None) -> Path:
        dest = Path(local_path)
        dest.write_bytes(self.download(remote_path, ctx))
        return dest

    # ------------------ interactive ------------------

    def interactive_session(self, term: str = "xterm", width: int = 120, height: int = 40) -> InteractiveSession:
        chan = self._open_channel()
        try:
            chan.get_pty(term=term, width=width, height=height)
            chan.invoke_shell()
        except (paramiko.SSHException, OSError) as exc:
            chan.close()
            raise RemoteConnectionError(f"cannot start shell: {exc}", self.host) from exc
        return InteractiveSession(chan, self.host)
