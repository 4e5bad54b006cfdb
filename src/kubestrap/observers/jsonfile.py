from __future__ import annotations

import json
import threading
from pathlib import Path

from .events import BaseEvent
from .interface import Observer


class JsonFileObserver(Observer):
    """One JSON object per line. Workers join from a thread pool, so writes are serialized."""

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def notify(self, event: BaseEvent) -> None:
        line = json.dumps({"event": event.__class__.__name__, **event.dict()}, default=str, sort_keys=True)
        with self._lock, self.path.open("a") as f:
            f.write(line + "\n")
