"""Tests for the periodic trigger loop"""

import asyncio

import pytest

from posterm.common.scheduler import ScheduledLoop


@pytest.mark.asyncio
async def test_loop_fires_and_stops():
    fired = asyncio.Event()
    calls = []

    async def tick():
        calls.append(1)
        fired.set()

    loop = ScheduledLoop(0.01, tick, name="test")
    await loop.start()
    await asyncio.wait_for(fired.wait(), timeout=2)
    loop.stop()

    assert loop.is_running is False
    assert loop.execution_count >= 1
    assert loop.get_stats()["name"] == "test"


@pytest.mark.asyncio
async def test_callback_errors_are_counted():
    failed = asyncio.Event()

    async def tick():
        failed.set()
        raise RuntimeError("boom")

    loop = ScheduledLoop(0.01, tick, name="failing")
    await loop.start()
    await asyncio.wait_for(failed.wait(), timeout=2)
    await asyncio.sleep(0)
    loop.stop()

    assert loop.get_stats()["error_count"] >= 1
