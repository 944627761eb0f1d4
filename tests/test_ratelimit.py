"""Unit tests for core/ratelimit.py -- the fixed-window rate limit engine.

Covers:
- First check opens a window of fixed length; count starts at 1
- The (R+1)-th check inside a window is not allowed; over-limit checks still count
- A check at or after reset_at opens a fresh window from that check
- Keys are independent
- Concurrent checks on one key lose no updates
- purge_expired() drops only records more than one window past reset
"""

from concurrent.futures import ThreadPoolExecutor

import pytest

from core.clock import ManualClock
from core.ratelimit import RateLimiter

WINDOW = 60
LIMIT = 5


@pytest.fixture
def limiter(clock: ManualClock) -> RateLimiter:
    return RateLimiter(clock=clock)


class TestWindow:
    def test_first_check_opens_window(self, limiter: RateLimiter, clock: ManualClock) -> None:
        result = limiter.check("k", WINDOW, LIMIT)
        assert result.allowed
        assert result.count == 1
        assert result.remaining == LIMIT - 1
        assert result.reset_at == clock.now() + WINDOW

    def test_limit_plus_one_is_rejected(self, limiter: RateLimiter, clock: ManualClock) -> None:
        results = []
        for _ in range(LIMIT + 1):
            results.append(limiter.check("k", WINDOW, LIMIT))
            clock.advance(1)
        assert all(r.allowed for r in results[:LIMIT])
        assert not results[LIMIT].allowed
        assert results[LIMIT].remaining == 0

    def test_over_limit_checks_still_count(self, limiter: RateLimiter) -> None:
        for _ in range(LIMIT + 3):
            last = limiter.check("k", WINDOW, LIMIT)
        assert last.count == LIMIT + 3
        assert limiter.peek("k") == LIMIT + 3

    def test_window_reset_at_boundary(self, limiter: RateLimiter, clock: ManualClock) -> None:
        first = limiter.check("k", WINDOW, LIMIT)
        for _ in range(LIMIT):
            limiter.check("k", WINDOW, LIMIT)
        clock.set(first.reset_at)
        fresh = limiter.check("k", WINDOW, LIMIT)
        assert fresh.allowed
        assert fresh.count == 1
        assert fresh.reset_at == first.reset_at + WINDOW

    def test_reset_at_does_not_move_within_window(self, limiter: RateLimiter, clock: ManualClock) -> None:
        first = limiter.check("k", WINDOW, LIMIT)
        clock.advance(WINDOW - 1)
        second = limiter.check("k", WINDOW, LIMIT)
        assert second.reset_at == first.reset_at
        assert second.count == 2

    def test_keys_are_independent(self, limiter: RateLimiter) -> None:
        limiter.check("a", WINDOW, LIMIT)
        limiter.check("a", WINDOW, LIMIT)
        limiter.check("b", WINDOW, LIMIT)
        assert limiter.peek("a") == 2
        assert limiter.peek("b") == 1
        assert limiter.peek("missing") == 0

    def test_reset_header_value_rounds_up(self, clock: ManualClock) -> None:
        clock.set(1000.25)
        result = RateLimiter(clock=clock).check("k", 10, LIMIT)
        assert result.reset_epoch_seconds == 1011
        assert result.retry_after(1000.25) == 10

    def test_rejects_bad_parameters(self, limiter: RateLimiter) -> None:
        with pytest.raises(ValueError):
            limiter.check("k", 0, LIMIT)
        with pytest.raises(ValueError):
            limiter.check("k", WINDOW, -1)


class TestConcurrency:
    def test_no_lost_updates(self, limiter: RateLimiter) -> None:
        n = 500
        with ThreadPoolExecutor(max_workers=16) as pool:
            list(pool.map(lambda _: limiter.check("shared", WINDOW, n), range(n)))
        assert limiter.peek("shared") == n


class TestCompaction:
    def test_purges_only_records_a_full_window_past_reset(self, limiter: RateLimiter, clock: ManualClock) -> None:
        limiter.check("old", WINDOW, LIMIT)
        clock.advance(WINDOW)
        limiter.check("recent", WINDOW, LIMIT)

        clock.advance(WINDOW + 1)  # "old" reset 61s+ ago (> one window); "recent" reset 1s ago
        assert limiter.purge_expired() == 1
        assert len(limiter) == 1

        clock.advance(WINDOW)
        assert limiter.purge_expired() == 1
        assert len(limiter) == 0

    def test_reset_clears_everything(self, limiter: RateLimiter) -> None:
        limiter.check("a", WINDOW, LIMIT)
        limiter.check("b", WINDOW, LIMIT)
        limiter.reset()
        assert len(limiter) == 0
