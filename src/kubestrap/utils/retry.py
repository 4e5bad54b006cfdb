# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

from typing import Callable, Optional, TypeVar

from kubestrap.errors import ClusterError, OperationCancelled, WaitTimeout
from kubestrap.utils.execution import ExecutionContext

T = TypeVar("T")


class RetryError(ClusterError):
    pass


def call_with_retry(
    fn: Callable[[], T],
    *,
    retries: int,
    delay: float,
    ctx: ExecutionContext,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    on_retry: Optional[Callable[[int, BaseException], None]] = None,
    name: Optional[str] = None,
    reraise: bool = False,
) -> T:
    """
    Retry helper for idempotent operations.

    retries: number of attempts
    delay: seconds between attempts (interrupted by ctx cancellation)
    retry_on: exception types to retry; anything else propagates at once
    on_retry: callback(attempt, exception)
    reraise: when attempts run out, raise the last exception itself
      instead of wrapping it in RetryError

    A cancellation during the back-off raises OperationCancelled, an expired
    deadline raises WaitTimeout; both chain the last failure.
    """
    name = name or getattr(fn, "__name__", "operation")
    last_exc: Optional[BaseException] = None
    attempt = 0
    for attempt in range(1, retries + 1):
        ctx.check()
        try:
            return fn()
        except retry_on as exc:
            last_exc = exc
            if on_retry:
                on_retry(attempt, exc)
            if attempt == retries:
                break
            if not ctx.sleep(delay):
                if ctx.cancelled:
                    raise OperationCancelled("cancelled") from exc
                raise WaitTimeout(f"{name}: deadline elapsed after {attempt} attempt(s): {exc}") from exc
    if reraise and last_exc is not None:
        raise last_exc
    raise RetryError(f"{name} failed after {attempt} attempt(s): {last_exc}") from last_exc
