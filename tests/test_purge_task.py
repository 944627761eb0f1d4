"""
tests/test_purge_task.py -- Background compaction task in api/main.py.

Covers:
  - A purge that raises is logged and the loop keeps running
  - stop_purge_task() cancels the loop and waits for it to finish
"""

from __future__ import annotations

import asyncio
import logging
from types import SimpleNamespace

import pytest

from api.main import _purge_loop, stop_purge_task


class _FlakyLimiter:
    def __init__(self) -> None:
        self.calls = 0

    def purge_expired(self) -> int:
        self.calls += 1
        if self.calls == 1:
            raise RuntimeError("purge exploded")
        return 0


def test_loop_survives_a_failing_purge(caplog: pytest.LogCaptureFixture) -> None:
    limiter = _FlakyLimiter()
    app = SimpleNamespace(state=SimpleNamespace(rate_limiter=limiter))

    async def scenario() -> asyncio.Task:
        task = asyncio.create_task(_purge_loop(app, 0))
        for _ in range(20):
            await asyncio.sleep(0)
        await stop_purge_task(task)
        return task

    with caplog.at_level(logging.ERROR, logger="authgate.api"):
        task = asyncio.run(scenario())

    assert limiter.calls >= 2
    assert task.cancelled()
    assert "Rate limit purge failed" in caplog.text


def test_stop_purge_task_awaits_cancellation() -> None:
    async def scenario() -> asyncio.Task:
        task = asyncio.create_task(asyncio.sleep(99999))
        await asyncio.sleep(0)
        await stop_purge_task(task)
        return task

    task = asyncio.run(scenario())
    assert task.done()
    assert task.cancelled()
