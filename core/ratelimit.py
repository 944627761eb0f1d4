"""
core/ratelimit.py -- Fixed-window request counter keyed by arbitrary strings.

The engine knows nothing about HTTP or authentication: a key is just a string
(an address, "auth:<address>:<username>", anything). api/limiter.py decides
which key a request maps to and what to do when a check says "not allowed".

Window semantics:
  - The first check for a key opens a window: reset_at = now + window.
  - Every check increments count, including checks that are already over the
    limit. An abusive client cannot stop being counted by hammering.
  - allowed is count <= max_requests.
  - A check at or after reset_at discards the old count and opens a fresh
    window starting at that check.

Concurrency: one threading.Lock guards the whole map. Each check is a single
read-increment-write under that lock, so N concurrent checks on one key end
at count == N with no lost updates. The critical section is a dict lookup and
an integer add -- contention is negligible next to request handling.

Compaction: purge_expired() drops records whose reset_at passed more than one
window ago. api/main.py runs it from a background task; purge timing affects
memory footprint only, never a check result.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

from __future__ import annotations

import logging
import math
import threading
from dataclasses import dataclass
from typing import Optional

from core.clock import Clock, SystemClock

logger = logging.getLogger("authgate.ratelimit")


@dataclass
class _Record:
    count: int
    reset_at: float
    window: float


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    limit: int
    count: int
    remaining: int
    reset_at: float  # epoch seconds

    @property
    def reset_epoch_seconds(self) -> int:
        """reset_at rounded up to a whole second, for the X-RateLimit-Reset header."""
        return math.ceil(self.reset_at)

    def retry_after(self, now: float) -> int:
        return max(0, math.ceil(self.reset_at - now))


class RateLimiter:
    """In-memory fixed-window rate limit engine.

    Usage:
        limiter = RateLimiter()
        result = limiter.check("203.0.113.7", window_seconds=900, max_requests=100)
        if not result.allowed: ...
    """

    def __init__(self, clock: Optional[Clock] = None) -> None:
        self.clock: Clock = clock or SystemClock()
        self._records: dict[str, _Record] = {}
        self._lock = threading.Lock()

    def check(self, key: str, window_seconds: float, max_requests: int) -> RateLimitResult:
        """Count one request against key and report whether it is within the limit."""
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        if max_requests < 0:
            raise ValueError("max_requests must not be negative")

        with self._lock:
            now = self.clock.now()
            record = self._records.get(key)
            if record is None or now >= record.reset_at:
                record = _Record(count=0, reset_at=now + window_seconds, window=window_seconds)
                self._records[key] = record
            record.count += 1
            count = record.count
            reset_at = record.reset_at

        return RateLimitResult(
            allowed=count <= max_requests,
            limit=max_requests,
            count=count,
            remaining=max(0, max_requests - count),
            reset_at=reset_at,
        )

    def peek(self, key: str) -> int:
        """Return the live count for key without counting a request (0 if absent or expired)."""
        with self._lock:
            record = self._records.get(key)
            if record is None or self.clock.now() >= record.reset_at:
                return 0
            return record.count

    def purge_expired(self) -> int:
        """Drop records whose window closed more than one window length ago.

        Returns the number of records removed.
        """
        with self._lock:
            now = self.clock.now()
            stale = [k for k, r in self._records.items() if now > r.reset_at + r.window]
            for key in stale:
                del self._records[key]
        if stale:
            logger.debug("Purged %d expired rate limit records", len(stale))
        return len(stale)

    def reset(self) -> None:
        """Forget every record."""
        with self._lock:
            self._records.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)
