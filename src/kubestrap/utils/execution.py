# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field, replace
from typing import Optional

from kubestrap.errors import OperationCancelled


@dataclass(frozen=True)
class ExecutionContext:
    """
    Controls how commands are executed: dry-run, an optional monotonic
    deadline and a cancellation flag shared by every derived context.
    """

    dry_run: bool = False
    deadline: Optional[float] = None
    cancel_event: threading.Event = field(default_factory=threading.Event, compare=False)

    @classmethod
    def background(cls, *, dry_run: bool = False) -> "ExecutionContext":
        return cls(dry_run=dry_run)

    def with_timeout(self, seconds: Optional[float]) -> "ExecutionContext":
        """Derive a context whose deadline is the earlier of ours and now+seconds."""
        if seconds is None:
            return self
        candidate = time.monotonic() + seconds
        if self.deadline is not None and self.deadline < candidate:
            candidate = self.deadline
        return replace(self, deadline=candidate)

    def child(self, timeout: Optional[float] = None) -> "ExecutionContext":
        return self.with_timeout(timeout)

    def cancel(self) -> None:
        self.cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    @property
    def expired(self) -> bool:
        return self.deadline is not None and time.monotonic() >= self.deadline

    def remaining(self) -> Optional[float]:
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    def check(self) -> None:
        if self.cancelled:
            raise OperationCancelled("cancelled")
        if self.expired:
            raise OperationCancelled("deadline exceeded")

    def bound(self, seconds: Optional[float]) -> Optional[float]:
        """Clamp a per-call timeout to what is left of the deadline."""
        left = self.remaining()
        if left is None:
            return seconds
        if seconds is None:
            return left
        return min(seconds, left)

    def sleep(self, seconds: float) -> bool:
        """
        Sleep up to `seconds`, waking early on cancellation.
        Returns False when the context was cancelled or has expired.
        """
        wait_for = self.bound(seconds)
        if wait_for and wait_for > 0:
            self.cancel_event.wait(wait_for)
        return not (self.cancelled or self.expired)
