"""
core/clock.py -- Time source abstraction.

Every component that reasons about time (lock windows, token expiry, rate
limit windows) takes a Clock instead of calling time.time() directly. The
production wiring passes SystemClock(); tests pass ManualClock() and move it
forward explicitly, so expiry behaviour is tested without sleeping.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

from __future__ import annotations

import threading
import time
from typing import Protocol


class Clock(Protocol):
    def now(self) -> float:
        """Return the current instant as epoch seconds."""
        ...


class SystemClock:
    """Wall-clock time from the host."""

    def now(self) -> float:
        return time.time()


class ManualClock:
    """A clock that only moves when told to.

    Usage:
        clock = ManualClock(1_700_000_000)
        clock.advance(901)   # jump past a 15-minute window
    """

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self._now = float(start)
        self._lock = threading.Lock()

    def now(self) -> float:
        with self._lock:
            return self._now

    def advance(self, seconds: float) -> float:
        with self._lock:
            self._now += seconds
            return self._now

    def set(self, instant: float) -> None:
        with self._lock:
            self._now = float(instant)
