import asyncio

import pytest

from common.scheduler import ScheduledLoop


async def test_fires_repeatedly():
    calls = []

    async def tick():
        calls.append(1)

    loop = ScheduledLoop(0.02, tick, name="test")
    await loop.start()
    await asyncio.sleep(0.15)
    await loop.stop()

    assert len(calls) >= 3
    assert loop.execution_count == len(calls)


async def test_start_is_idempotent():
    async def tick():
        pass

    loop = ScheduledLoop(0.05, tick)
    await loop.start()
    task = loop._timer_task
    await loop.start()
    assert loop._timer_task is task
    await loop.stop()


async def test_overlapping_run_is_skipped():
    active = 0
    max_active = 0

    async def slow():
        nonlocal active, max_active
        active += 1
        max_active = max(max_active, active)
        await asyncio.sleep(0.12)
        active -= 1

    loop = ScheduledLoop(0.03, slow, name="slow")
    await loop.start()
    await asyncio.sleep(0.3)
    await loop.stop()

    assert max_active == 1
    assert loop.overlap_skips >= 1
    assert loop.get_stats()["overlap_skips"] == loop.overlap_skips


async def test_stop_waits_for_inflight_run():
    finished = asyncio.Event()
    started = asyncio.Event()

    async def work():
        started.set()
        await asyncio.sleep(0.1)
        finished.set()

    loop = ScheduledLoop(0.02, work)
    await loop.start()
    await asyncio.wait_for(started.wait(), timeout=1)
    await loop.stop()

    assert finished.is_set()
    assert not loop.is_running


async def test_callback_errors_do_not_stop_timer():
    calls = []

    async def failing():
        calls.append(1)
        raise RuntimeError("boom")

    loop = ScheduledLoop(0.02, failing)
    await loop.start()
    await asyncio.sleep(0.12)
    await loop.stop()

    assert len(calls) >= 2
    assert loop.get_stats()["error_count"] == len(calls)


def test_interval_must_be_positive():
    async def tick():
        pass

    with pytest.raises(ValueError):
        ScheduledLoop(0, tick)
