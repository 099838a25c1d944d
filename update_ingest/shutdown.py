import asyncio
import logging
import threading

log = logging.getLogger(__name__)


def _resolve(waiter: asyncio.Future) -> None:
    # the waiter may have been cancelled by its owner
    if not waiter.done():
        waiter.set_result(None)


class Shutdown:
    """
    One-shot, multi-waiter stop signal shared by every engine in a process.

    register() hands out a future per waiter. shutdown() resolves all of them
    once; any waiter registered afterwards is born resolved, so there is no
    window in which a wakeup can be missed.

    shutdown() may be called from any thread (signal handlers, a watcher
    thread); waiters owned by another thread's loop are resolved through
    call_soon_threadsafe.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        # None once fired: no new waiter gets queued after that point
        self._waiters: list[asyncio.Future] | None = []

    @property
    def fired(self) -> bool:
        with self._lock:
            return self._waiters is None

    def register(self) -> asyncio.Future:
        waiter = asyncio.get_running_loop().create_future()
        with self._lock:
            if self._waiters is None:
                waiter.set_result(None)
            else:
                self._waiters.append(waiter)
        return waiter

    async def wait(self) -> None:
        await self.register()

    def shutdown(self) -> None:
        with self._lock:
            waiters, self._waiters = self._waiters, None
        if waiters is None:
            return

        log.info("Shutdown requested, notifying %d waiter(s)", len(waiters))
        try:
            current = asyncio.get_running_loop()
        except RuntimeError:
            current = None
        for waiter in waiters:
            loop = waiter.get_loop()
            if loop is current:
                _resolve(waiter)
            elif not loop.is_closed():
                loop.call_soon_threadsafe(_resolve, waiter)
