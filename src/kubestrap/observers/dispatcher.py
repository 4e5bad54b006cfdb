# src/kubestrap/observers/dispatcher.py
from __future__ import annotations

import logging
from typing import List, Optional

from .events import BaseEvent
from .interface import Observer

log = logging.getLogger("kubestrap")


class EventBus:
    def __init__(self, observers: Optional[List[Observer]] = None):
        self._observers = list(observers or [])

    def subscribe(self, observer: Observer) -> None:
        if not isinstance(observer, Observer):
            raise TypeError(f"{type(observer).__name__} has no notify()")
        self._observers.append(observer)

    def emit(self, event: BaseEvent) -> None:
        for ob in self._observers:
            try:
                ob.notify(event)
            except Exception as exc:
                # observers must not break cluster operations
                log.debug("observer %s failed on %s: %s", type(ob).__name__, type(event).__name__, exc)
