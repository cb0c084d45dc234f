"""Thread-safe progress forwarding for long-running collaborator calls."""

from __future__ import annotations

import threading
from collections.abc import Callable

ProgressCallback = Callable[[float], None]


class ProgressTracker:
    """Forward fractional progress, dropping values that would move backwards.

    Collaborators report from reader threads while other threads may read
    `value`; both go through the lock.
    """

    def __init__(self, callback: ProgressCallback | None = None) -> None:
        self._callback = callback
        self._lock = threading.Lock()
        self._value = 0.0

    @property
    def value(self) -> float:
        with self._lock:
            return self._value

    def update(self, progress: float) -> bool:
        p = float(progress)
        if p != p:  # NaN
            return False
        p = min(max(p, 0.0), 1.0)
        with self._lock:
            if p <= self._value:
                return False
            self._value = p
        if self._callback is not None:
            self._callback(p)
        return True
