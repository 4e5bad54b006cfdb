# src/kubestrap/ssh/network.py
from __future__ import annotations

import logging
import socket
from typing import Optional

from kubestrap.errors import OperationCancelled, WaitTimeout
from kubestrap.utils.execution import ExecutionContext

log = logging.getLogger("kubestrap")


def wait_for_reachable(
    host: str,
    port: int = 22,
    ctx: Optional[ExecutionContext] = None,
    *,
    interval: float = 5.0,
    dial_timeout: float = 5.0,
) -> None:
    """
    Poll a TCP connect to host:port until it succeeds.

    Returns as soon as one dial succeeds. Raises WaitTimeout when the
    context deadline elapses first, OperationCancelled on cancellation.
    """
    ctx = ctx or ExecutionContext.background()
    attempt = 0
    while True:
        if ctx.cancelled:
            raise OperationCancelled("cancelled")
        if ctx.expired:
            raise WaitTimeout(f"{host}:{port} not reachable before deadline ({attempt} attempts)")
        attempt += 1
        timeout = ctx.bound(dial_timeout)
        try:
            with socket.create_connection((host, port), timeout=timeout):
                log.debug("[net] %s:%d reachable after %d attempt(s)", host, port, attempt)
                return
        except OSError as exc:
            log.debug("[net] %s:%d not reachable yet (attempt %d): %s", host, port, attempt, exc)
        if not ctx.sleep(interval):
            if ctx.cancelled:
                raise OperationCancelled("cancelled")
            raise WaitTimeout(f"{host}:{port} not reachable before deadline ({attempt} attempts)")
