"""Time sources.

Domain code never reads a clock: every operation takes `now_ms` from the
caller. The engine asks an injected Clock once per public operation.
"""

import threading
import time
from datetime import datetime, timezone
from typing import Protocol


def utc_now() -> datetime:
    """Return timezone-aware UTC now."""
    return datetime.now(timezone.utc)


class Clock(Protocol):
    def now_ms(self) -> int: ...


class SystemClock:
    """Wall-clock milliseconds, forced monotonic so TWAP never sees time go backwards."""

    def __init__(self) -> None:
        self._last_ms = 0
        self._lock = threading.Lock()

    def now_ms(self) -> int:
        with self._lock:
            ts = int(time.time() * 1000)
            if ts < self._last_ms:
                ts = self._last_ms
            self._last_ms = ts
            return ts


class ManualClock:
    """Caller-driven clock for tests and replays."""

    def __init__(self, start_ms: int = 0) -> None:
        self._now_ms = start_ms

    def now_ms(self) -> int:
        return self._now_ms

    def advance(self, delta_ms: int) -> int:
        if delta_ms < 0:
            raise ValueError("ManualClock cannot move backwards")
        self._now_ms += delta_ms
        return self._now_ms
