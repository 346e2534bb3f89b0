"""
Clock abstraction used for lock expiry arithmetic.

Every expiry comparison reads time from one ``Clock`` so tests can drive
expiry deterministically with ``ManualClock``.
"""

from __future__ import annotations

import threading
import time
from datetime import datetime, timedelta, timezone
from typing import Protocol


class Clock(Protocol):
    """Source of the current time."""

    def millis(self) -> int:
        """Milliseconds since the Unix epoch."""
        ...

    def now(self) -> datetime:
        """Timezone-aware current time."""
        ...


class SystemClock:
    """UTC wall clock."""

    def millis(self) -> int:
        return time.time_ns() // 1_000_000

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class ManualClock:
    """Clock that only moves when told to."""

    def __init__(self, start_millis: int = 0) -> None:
        self._millis = start_millis
        self._lock = threading.Lock()

    def millis(self) -> int:
        with self._lock:
            return self._millis

    def now(self) -> datetime:
        return datetime.fromtimestamp(self.millis() / 1000, tz=timezone.utc)

    def set(self, millis: int) -> None:
        with self._lock:
            self._millis = millis

    def advance(self, delta: timedelta | None = None, *, millis: int = 0) -> None:
        step = millis
        if delta is not None:
            step += int(delta.total_seconds() * 1000)
        with self._lock:
            self._millis += step
