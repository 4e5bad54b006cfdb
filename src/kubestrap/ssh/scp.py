# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubestrap/ssh/scp.py
"""
Just enough of the scp sink/source exchange to move kubeconfigs and
certificates (kilobytes) to and from a host over an exec channel.

    upload:   scp -t <dir>   <- \\0, "C0644 <len> <name>\\n", data + \\0
    download: scp -f <path>  -> "C0644 <len> <name>\\n", data, \\0
"""
from __future__ import annotations

import posixpath
import shlex

from kubestrap.errors import CommandError, OperationCancelled
from kubestrap.utils.execution import ExecutionContext

_POLL = 0.05


def _prefix(sudo: bool) -> str:
    return "sudo " if sudo else ""


def _recv(chan, n: int, ctx: ExecutionContext) -> bytes:
    """Read exactly n bytes from the channel, honouring ctx."""
    buf = b""
    while len(buf) < n:
        if ctx.cancelled or ctx.expired:
            raise OperationCancelled("cancelled" if ctx.cancelled else "deadline exceeded")
        if chan.recv_ready():
            chunk = chan.recv(n - len(buf))
            if not chunk:
                break
            buf += chunk
            continue
        if chan.exit_status_ready() and not chan.recv_ready():
            break
        ctx.cancel_event.wait(_POLL)
    return buf


def _recv_line(chan, ctx: ExecutionContext, limit: int = 4096) -> bytes:
    line = b""
    while not line.endswith(b"\n") and len(line) < limit:
        b = _recv(chan, 1, ctx)
        if not b:
            break
        line += b
    return line


def _read_ack(chan, command: str, ctx: ExecutionContext) -> None:
    code = _recv(chan, 1, ctx)
    if code == b"\x00":
        return
    if not code:
        raise CommandError(command, -1, stderr="scp: connection closed before acknowledgement")
    detail = _recv_line(chan, ctx).decode("utf-8", errors="replace").strip()
    raise CommandError(command, code[0], stderr=f"scp: {detail}")


def upload(
    chan,
    data: bytes,
    remote_path: str,
    ctx: ExecutionContext,
    mode: int = 0o644,
    sudo: bool = False,
) -> None:
    directory, name = posixpath.split(remote_path)
    command = f"{_prefix(sudo)}scp -t {shlex.quote(directory or '.')}"
    chan.exec_command(command)
    _read_ack(chan, command, ctx)
    chan.sendall(f"C{mode:04o} {len(data)} {name}\n".encode())
    _read_ack(chan, command, ctx)
    chan.sendall(data + b"\x00")
    _read_ack(chan, command, ctx)


def download(chan, remote_path: str, ctx: ExecutionContext, sudo: bool = False) -> bytes:
    command = f"{_prefix(sudo)}scp -f {shlex.quote(remote_path)}"
    chan.exec_command(command)
    chan.sendall(b"\x00")

    header = _recv_line(chan, ctx)
    while header.startswith(b"T"):  # timestamps, only sent with -p
        chan.sendall(b"\x00")
        header = _recv_line(chan, ctx)
    if header[:1] in (b"\x01", b"\x02"):
        raise CommandError(command, header[0], stderr="scp: " + header[1:].decode("utf-8", errors="replace").strip())
    if not header.startswith(b"C"):
        raise CommandError(command, -1, stderr=f"scp: unexpected header {header!r}")

    try:
        _, size, _ = header.decode().rstrip("\n").split(" ", 2)
        length = int(size)
    except ValueError as exc:
        raise CommandError(command, -1, stderr=f"scp: malformed header {header!r}") from exc

    chan.sendall(b"\x00")
    data = _recv(chan, length, ctx)
    if len(data) != length:
        raise CommandError(command, -1, stderr=f"scp: short read ({len(data)}/{length} bytes)")
    _read_ack(chan, command, ctx)
    chan.sendall(b"\x00")
    return data
