# UpdateStream: the long-poll fetch loop for a single bot.
#
# State machine:
#   IDLE      -> issue getUpdates(offset=cursor, timeout=window) -> FETCHING
#   FETCHING  -> Batch             buffer, advance cursor, reset retries -> IDLE
#             -> Timeout           reset retries, same cursor -> IDLE
#             -> RecoverableError  salvage cursor, count retry, raise -> IDLE
#             -> FatalError        raise -> FATAL
#   STOPPED / FATAL are terminal: no further fetch is ever issued.
#
# Buffered updates are handed out one at a time; the next fetch only starts
# once the buffer is empty. Backoff sleeping is left to the caller, which
# reads the delay from the raised error's `retry_in`.
#
# Not safe for concurrent consumers: exactly one fetch may be outstanding.

import enum
import logging
from collections import deque
from typing import Protocol

from update_ingest.backoff import RetryState
from update_ingest.classifier import classify
from update_ingest.config import EngineConfig
from update_ingest.cursor import CursorTracker
from update_ingest.errors import FatalIngestError, RetryBudgetExhausted
from update_ingest.models import (
    Batch,
    FatalError,
    RawFetch,
    RecoverableError,
    Timeout,
    Update,
)


class UpdateSource(Protocol):
    async def get_updates(self, offset: int, timeout: int) -> RawFetch: ...


class StreamState(enum.Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    STOPPED = "stopped"
    FATAL = "fatal"


class UpdateStream:
    """
    Async iterator of Updates from one long-poll source.

    Raises from __anext__ (the stream stays usable afterwards):
        IngestError         recoverable; `retry_in` holds the backoff delay
        FatalIngestError    terminal; later calls end the iteration
    """

    def __init__(
        self,
        source: UpdateSource,
        config: EngineConfig,
        cursor: CursorTracker | None = None,
    ) -> None:
        self._source = source
        self._config = config
        self.cursor = cursor or CursorTracker()
        self.retry = RetryState(cap=config.max_retries)
        self.state = StreamState.IDLE
        self._stopping = False
        self._buffer: deque[Update] = deque()
        self._log = logging.getLogger(f"stream.{config.name.lower()}")

    def __aiter__(self) -> "UpdateStream":
        return self

    async def __anext__(self) -> Update:
        if self.state is StreamState.FETCHING:
            raise RuntimeError("UpdateStream polled concurrently")
        while True:
            if self.state in (StreamState.STOPPED, StreamState.FATAL):
                raise StopAsyncIteration
            if self._buffer:
                update = self._buffer.popleft()
                self._log.debug("%d> received %s", update.update_id, update.kind)
                return update
            await self._fetch_once()

    @property
    def ack_offset(self) -> int:
        """Offset that confirms exactly the updates already handed out."""
        if self._buffer:
            return self._buffer[0].update_id
        return self.cursor.value

    @property
    def buffered(self) -> int:
        return len(self._buffer)

    def stop(self) -> None:
        """
        Stop issuing fetches. An in-flight fetch still completes and its
        result is applied to the cursor and buffer, but nothing more is
        handed out.
        """
        if self.state is StreamState.FATAL or self._stopping:
            return
        self._log.debug("Stopping at offset %d", self.cursor.value)
        self._stopping = True
        if self.state is StreamState.IDLE:
            self.state = StreamState.STOPPED

    async def _fetch_once(self) -> None:
        offset = self.cursor.value
        self.state = StreamState.FETCHING
        try:
            raw = await self._source.get_updates(offset, self._config.poll_timeout)
        finally:
            self.state = StreamState.STOPPED if self._stopping else StreamState.IDLE

        outcome = classify(raw, retry_transport_errors=self._config.retry_transport_errors)

        if isinstance(outcome, Batch):
            self.retry.reset()
            if outcome.updates:
                self.cursor.advance(outcome.updates[-1].update_id)
                self._buffer.extend(outcome.updates)
                self._log.debug(
                    "%d update(s) fetched at offset %d", len(outcome.updates), offset,
                )

        elif isinstance(outcome, Timeout):
            self.retry.reset()
            self._log.debug("Long-poll timed out at offset %d", offset)

        elif isinstance(outcome, RecoverableError):
            if outcome.recovered_id is not None:
                self.cursor.recover(outcome.recovered_id)
            delay = self.retry.record_failure(self._config.backoff_unit)
            if delay is None:
                self.state = StreamState.FATAL
                raise RetryBudgetExhausted(
                    f"retried {self.retry.count} times, giving up"
                ) from outcome.cause
            outcome.cause.retry_in = delay
            raise outcome.cause

        elif isinstance(outcome, FatalError):
            self.state = StreamState.FATAL
            raise FatalIngestError(str(outcome.cause)) from outcome.cause
