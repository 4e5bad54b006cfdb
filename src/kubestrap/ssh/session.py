# src/kubestrap/ssh/session.py
from __future__ import annotations

import logging
from typing import Optional

log = logging.getLogger("kubestrap")


class InteractiveSession:
    """
    A live login shell on the host: write to its stdin, read its stdout
    and stderr. Not used by the bootstrap flow itself.
    """

    def __init__(self, channel, host: str):
        self._chan = channel
        self.host = host

    def write(self, data: bytes | str) -> int:
        if isinstance(data, str):
            data = data.encode()
        self._chan.sendall(data)
        return len(data)

    def read(self, n: int = 4096, timeout: Optional[float] = None) -> bytes:
        """Blocking read of up to n bytes of stdout; b"" means the shell exited."""
        self._chan.settimeout(timeout)
        return self._chan.recv(n)

    def read_stderr(self, n: int = 4096, timeout: Optional[float] = None) -> bytes:
        self._chan.settimeout(timeout)
        return self._chan.recv_stderr(n)

    def resize(self, width: int, height: int) -> None:
        self._chan.resize_pty(width=width, height=height)

    @property
    def closed(self) -> bool:
        return self._chan.closed

    @property
    def exit_status(self) -> Optional[int]:
        if self._chan.exit_status_ready():
            return self._chan.recv_exit_status()
        return None

    def close(self) -> None:
        log.debug("[ssh] %s interactive session closed", self.host)
        self._chan.close()

    def __enter__(self) -> "InteractiveSession":
        return self

    def __exit__(self, *exc) -> None:
        self.close()
