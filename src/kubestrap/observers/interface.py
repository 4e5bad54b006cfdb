# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations
from typing import Protocol, runtime_checkable
from .events import BaseEvent


@runtime_checkable
class Observer(Protocol):
    """Receives every event emitted on an EventBus, in emission order.

    notify() runs on the emitting thread (worker joins emit from the pool),
    so implementations that hold shared state need their own lock.
    """

    def notify(self, event: BaseEvent) -> None: ...
