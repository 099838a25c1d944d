# IngestionDriver: runs one bot's update stream until shutdown or a fatal
# error.
#
# Each iteration races the stream's next update against the shutdown
# signal. Updates are dispatched as tracked background tasks, so a slow
# handler never holds up ingestion. Recoverable fetch errors are reported
# and slept off (the sleep itself is interruptible by shutdown); fatal ones
# are reported and raised to the caller, which decides what they mean for
# the process.
#
# On shutdown:
#   1. no new fetch is issued; an in-flight one is allowed to finish
#   2. the updates handed out so far are confirmed upstream, so they are
#      not redelivered on the next start
#   3. wait for dispatched tasks to drain

import asyncio
import logging
from typing import Protocol

from update_ingest.config import EngineConfig
from update_ingest.errors import FatalIngestError, IngestError
from update_ingest.handlers import ErrorReporter, LoggingErrorReporter, UpdateHandler
from update_ingest.models import RawFetch, Update
from update_ingest.shutdown import Shutdown
from update_ingest.stream import UpdateStream
from update_ingest.task_tracker import TaskTracker


class ApiClient(Protocol):
    async def get_updates(self, offset: int, timeout: int) -> RawFetch: ...
    async def confirm(self, offset: int) -> None: ...


class Interceptor(Protocol):
    def intercept(self, update: Update) -> bool: ...


class IngestionDriver:

    def __init__(
        self,
        config: EngineConfig,
        client: ApiClient,
        handler: UpdateHandler,
        *,
        shutdown: Shutdown,
        tracker: TaskTracker,
        reporter: ErrorReporter | None = None,
        interceptor: Interceptor | None = None,
    ) -> None:
        self.config = config
        self.stream = UpdateStream(client, config)
        self._client = client
        self._handler = handler
        self._shutdown = shutdown
        self._tracker = tracker
        self._reporter = reporter or LoggingErrorReporter()
        self._interceptor = interceptor
        self._log = logging.getLogger(f"runner.{config.name.lower()}")

    async def run(self) -> None:
        """
        Raises:
            FatalIngestError  when the stream can't go on; nothing is
                              confirmed or drained in that case
        """
        waiter = self._shutdown.register()
        self._log.info("Started polling %s at offset %d", self.config.name, self.stream.cursor.value)
        try:
            await self._ingest(waiter)
        except FatalIngestError as exc:
            self._log.error("Polling %s stopped: %s", self.config.name, exc)
            raise
        finally:
            self.stream.stop()
            if not waiter.done():
                waiter.cancel()

        await self._finish()

    async def _next(self) -> Update | None:
        try:
            return await self.stream.__anext__()
        except StopAsyncIteration:
            return None

    async def _ingest(self, waiter: asyncio.Future) -> None:
        while not waiter.done():
            next_update = asyncio.ensure_future(self._next())
            try:
                done, _ = await asyncio.wait(
                    {next_update, waiter}, return_when=asyncio.FIRST_COMPLETED,
                )
            except asyncio.CancelledError:
                next_update.cancel()
                raise

            if next_update not in done:
                self._log.info("Shutdown observed, letting the current fetch finish")
                self.stream.stop()
                await self._settle(next_update)
                return

            try:
                update = next_update.result()
            except FatalIngestError as exc:
                self._report(exc)
                raise
            except IngestError as exc:
                self._report(exc)
                delay = exc.retry_in or 0.0
                self._log.warning(
                    "(%d) fetch error: %s. Retrying in %.3gs.",
                    self.stream.retry.count, exc, delay,
                )
                if not await self._backoff(delay, waiter):
                    self._log.info("Shutdown observed during backoff")
                    return
                continue

            if update is None:
                return
            self.stream.retry.reset()
            self._dispatch(update)

    async def _backoff(self, delay: float, waiter: asyncio.Future) -> bool:
        """Sleep `delay` seconds; False if shutdown fired meanwhile."""
        done, _ = await asyncio.wait({waiter}, timeout=delay)
        return not done

    async def _settle(self, pending: asyncio.Future) -> None:
        try:
            update = await pending
        except IngestError as exc:
            self._report(exc)
            return
        if update is not None:
            self._dispatch(update)

    def _dispatch(self, update: Update) -> None:
        self._log.debug("%d> handling", update.update_id)
        if self._interceptor is not None and self._interceptor.intercept(update):
            return
        self._tracker.spawn(
            self._handler.handle(update),
            name=f"{self.config.name}-{update.update_id}",
        )

    def _report(self, error: IngestError) -> None:
        try:
            self._reporter.report(self.config.name, error)
        except Exception:
            self._log.exception("Error reporter failed")

    async def _finish(self) -> None:
        if self.config.acknowledge_on_shutdown:
            offset = self.stream.ack_offset
            try:
                await self._client.confirm(offset)
            except IngestError as exc:
                self._log.error("failed to confirm updates below %d: %s", offset, exc)
            else:
                self._log.info("Confirmed updates below %d", offset)
        await self._tracker.wait()
        self._log.info("Polling %s stopped", self.config.name)
