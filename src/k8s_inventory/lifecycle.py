"""Single-use lifecycle signals between the agent's threads.

A :class:`LifecycleSignal` carries at most one value. Once signalled or
closed it never blocks a waiter again: late subscribers get the value, or
``None`` if the signal was closed without one.
"""

from __future__ import annotations

import threading
from typing import Generic, TypeVar

T = TypeVar("T")


class LifecycleSignal(Generic[T]):
    def __init__(self, name: str) -> None:
        self.name = name
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._value: T | None = None
        self._delivered = False
        self._closed = False

    def signal(self, value: T) -> bool:
        """Deliver *value*. Returns False if already delivered or closed."""
        with self._lock:
            if self._delivered or self._closed:
                return False
            self._value = value
            self._delivered = True
            self._event.set()
            return True

    def close(self) -> None:
        with self._lock:
            self._closed = True
            self._event.set()

    @property
    def delivered(self) -> bool:
        return self._delivered

    @property
    def closed(self) -> bool:
        return self._closed

    def wait(self, timeout: float | None = None) -> T | None:
        """Block until signalled or closed; return the value or ``None``."""
        self._event.wait(timeout)
        return self._value

    def is_set(self) -> bool:
        return self._event.is_set()
