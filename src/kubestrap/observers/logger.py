from __future__ import annotations

import logging

from .events import BaseEvent, StageFailed, WaitTimedOut

_FAILURES = (StageFailed, WaitTimedOut)
_SKIP = ("ts", "run_id", "env")


class LoggerObserver:
    """Mirrors events into the log; failures at WARNING, the rest at DEBUG."""

    def __init__(self, logger: logging.Logger):
        self.logger = logger

    def notify(self, event: BaseEvent) -> None:
        fields = ", ".join(f"{k}={v}" for k, v in event.dict().items() if k not in _SKIP)
        level = logging.WARNING if isinstance(event, _FAILURES) else logging.DEBUG
        self.logger.log(level, "[event] %s: %s", event.__class__.__name__, fields)
