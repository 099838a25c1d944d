import asyncio
import random

import pytest

from update_ingest.task_tracker import TaskTracker


@pytest.mark.asyncio
async def test_wait_blocks_until_every_task_finished():
    tracker = TaskTracker()
    finished: list[int] = []

    async def job(n: int) -> None:
        await asyncio.sleep(random.uniform(0, 0.02))
        finished.append(n)

    for n in range(10):
        tracker.spawn(job(n))
    assert tracker.pending == 10

    await tracker.wait()
    assert sorted(finished) == list(range(10))
    assert tracker.pending == 0


@pytest.mark.asyncio
async def test_failing_task_still_releases_its_count(caplog):
    tracker = TaskTracker()

    async def boom() -> None:
        raise RuntimeError("handler blew up")

    tracker.spawn(boom(), name="boom")
    await asyncio.wait_for(tracker.wait(), timeout=1)
    assert tracker.pending == 0
    assert "handler blew up" in caplog.text


@pytest.mark.asyncio
async def test_task_cancelled_before_start_releases_its_count():
    tracker = TaskTracker()

    async def never() -> None:
        await asyncio.sleep(3600)

    task = tracker.spawn(never())
    task.cancel()
    await asyncio.wait_for(tracker.wait(), timeout=1)
    assert tracker.pending == 0


@pytest.mark.asyncio
async def test_wait_returns_at_once_when_idle():
    await asyncio.wait_for(TaskTracker().wait(), timeout=1)


@pytest.mark.asyncio
async def test_wait_is_not_fooled_by_partial_completion():
    tracker = TaskTracker()
    gate = asyncio.Event()

    async def quick() -> None:
        pass

    async def slow() -> None:
        await gate.wait()

    tracker.spawn(quick())
    tracker.spawn(slow())
    waiter = asyncio.ensure_future(tracker.wait())
    await asyncio.sleep(0.01)
    assert not waiter.done()
    assert tracker.pending == 1

    gate.set()
    await asyncio.wait_for(waiter, timeout=1)
