"""Clock abstraction so token expiry arithmetic can be driven from tests."""

import threading
import time
from typing import Protocol


class Clock(Protocol):
    def current_time_millis(self) -> int:
        """Milliseconds since the Unix epoch."""
        ...


class SystemClock:
    def current_time_millis(self) -> int:
        return time.time_ns() // 1_000_000


class FixedClock:
    """Clock that only moves when told to."""

    def __init__(self, start_millis: int = 0):
        self._millis = start_millis
        self._lock = threading.Lock()

    def current_time_millis(self) -> int:
        with self._lock:
            return self._millis

    def set_time(self, millis: int) -> "FixedClock":
        with self._lock:
            self._millis = millis
        return self

    def advance(self, millis: int) -> "FixedClock":
        with self._lock:
            self._millis += millis
        return self


SYSTEM_CLOCK = SystemClock()
