# TaskTracker: counts handler tasks spawned off the ingestion loop so that
# shutdown can wait for them to drain.
#
# The count is released from the task's done-callback, which asyncio runs
# for every outcome: normal return, exception, and cancellation (even a
# cancellation that lands before the coroutine ever started). A leaked
# count would make wait() hang forever.
#
# All methods must be called from the event loop thread.

import asyncio
import logging
from typing import Any, Coroutine

log = logging.getLogger(__name__)


class TaskTracker:

    def __init__(self) -> None:
        self._count = 0
        self._idle = asyncio.Event()
        self._idle.set()
        self._tasks: set[asyncio.Task] = set()   # strong refs until done

    @property
    def pending(self) -> int:
        return self._count

    def spawn(self, coro: Coroutine[Any, Any, Any], *, name: str | None = None) -> asyncio.Task:
        """Run `coro` in the background; its failure is logged, never raised."""
        self._count += 1
        self._idle.clear()
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        try:
            if task.cancelled():
                log.debug("Task %s cancelled", task.get_name())
                return
            exc = task.exception()
            if exc is not None:
                log.error(
                    "Task %s failed: %s", task.get_name(), exc,
                    exc_info=(type(exc), exc, exc.__traceback__),
                )
        finally:
            self._count -= 1
            if self._count == 0:
                log.debug("all tasks done")
                self._idle.set()

    async def wait(self) -> None:
        """
        Block until no spawned task is running. Returns at once when nothing
        is in flight. Expects no new spawn() calls while draining.
        """
        if self._count:
            log.info("Waiting for %d task(s) to finish", self._count)
        await self._idle.wait()
