# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubestrap/ssh/keys.py
from __future__ import annotations

import io
import logging
from pathlib import Path
from typing import Iterable, Optional, Sequence

import paramiko

from kubestrap.errors import RemoteConnectionError

log = logging.getLogger("kubestrap")

# most modern first
KEY_TYPES: Sequence[type[paramiko.PKey]] = (
    paramiko.Ed25519Key,
    paramiko.RSAKey,
    paramiko.ECDSAKey,
)


def default_key_candidates(home: Optional[Path] = None) -> list[Path]:
    """The conventional private key locations, in lookup order."""
    home = home or Path.home()
    return [home / ".ssh" / "id_rsa", home / ".ssh" / "id_ed25519"]


def load_private_key(
    *,
    data: Optional[bytes] = None,
    path: Optional[str | Path] = None,
    passphrase: Optional[str] = None,
) -> paramiko.PKey:
    """Parse a private key from bytes or a file, trying Ed25519, RSA, then ECDSA."""
    if data is None and path is None:
        raise ValueError("either data or path is required")
    if data is None:
        try:
            data = Path(path).expanduser().read_bytes()
        except OSError as exc:
            raise RemoteConnectionError(f"cannot read private key {path}: {exc}") from exc

    text = data.decode("utf-8", errors="replace")
    last_exc: Optional[Exception] = None
    for key_cls in KEY_TYPES:
        try:
            return key_cls.from_private_key(io.StringIO(text), password=passphrase)
        except (paramiko.SSHException, ValueError) as exc:
            last_exc = exc
            continue
    where = f" at {path}" if path else ""
    raise RemoteConnectionError(f"unsupported or unreadable private key{where}: {last_exc}")


def resolve_private_key(
    *,
    data: Optional[bytes] = None,
    path: Optional[str | Path] = None,
    candidates: Iterable[str | Path] = (),
) -> paramiko.PKey:
    """
    Key resolution order: explicit bytes, explicit path, then the first
    readable candidate location.
    """
    if data:
        return load_private_key(data=data)
    if path:
        return load_private_key(path=path)
    for candidate in candidates:
        p = Path(candidate).expanduser()
        if not p.is_file():
            continue
        try:
            key = load_private_key(path=p)
        except RemoteConnectionError as exc:
            log.debug("[ssh] skipping key %s: %s", p, exc)
            continue
        log.debug("[ssh] using private key %s", p)
        return key
    raise RemoteConnectionError("no SSH private key found")
