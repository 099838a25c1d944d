# Output side of the engine: update handlers and error reporters.
#
# A handler receives every Update the stream delivers:
#     async def handle(self, update: Update) -> None: ...
# It runs as a tracked background task, so it may take as long as it needs
# and its exceptions only end up in the log.
#
# A reporter is told about every classified fetch error, retried or not:
#     def report(self, source: str, error: IngestError) -> None: ...
# It must not block; anything slow goes through the task tracker.

import html
import logging
from datetime import datetime, timezone
from typing import Protocol

from update_ingest.errors import FatalIngestError, IngestError, SchemaMismatch
from update_ingest.http_client import BotApiClient
from update_ingest.models import Update
from update_ingest.task_tracker import TaskTracker

log = logging.getLogger(__name__)


class UpdateHandler(Protocol):
    async def handle(self, update: Update) -> None: ...


class ErrorReporter(Protocol):
    def report(self, source: str, error: IngestError) -> None: ...


def _ts() -> str:
    """ISO 8601 UTC timestamp, e.g. 2026-02-21T12:39:08Z"""
    return datetime.now(tz=timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class ConsoleUpdateHandler:
    """
    Prints one line per update to stdout:

        [2026-02-21T12:39:08Z] eval | 1042 | message | chat=12345 | /about
    """

    _MAX_TEXT_LEN = 120

    def __init__(self, source: str) -> None:
        self._source = source

    async def handle(self, update: Update) -> None:
        print(self._format(update), flush=True)

    def _format(self, u: Update) -> str:
        chat = u.chat_id if u.chat_id is not None else "N/A"
        text = self._truncate(u.text or "")
        return f"[{_ts()}] {self._source} | {u.update_id} | {u.kind} | chat={chat} | {text}"

    def _truncate(self, text: str) -> str:
        text = " ".join(text.split())
        if len(text) <= self._MAX_TEXT_LEN:
            return text
        return text[: self._MAX_TEXT_LEN - 1].rstrip() + "…"


class LoggingErrorReporter:

    def report(self, source: str, error: IngestError) -> None:
        level = logging.ERROR if isinstance(error, FatalIngestError) else logging.WARNING
        log.log(level, "(%s) %s: %s", source, type(error).__name__, error)


def format_error(error: IngestError) -> str:
    """HTML message body for an error; raw response bodies go in a <pre>."""
    cause = error.__cause__ if isinstance(error, FatalIngestError) else error
    summary = html.escape(f"{type(error).__name__}: {error}", quote=False)
    if isinstance(cause, SchemaMismatch) and cause.data:
        data = cause.data.decode("utf-8", errors="replace")
        if len(data) > AdminErrorReporter.MAX_BODY_LEN:
            data = data[: AdminErrorReporter.MAX_BODY_LEN] + "…"
        return f"parse failed: {summary}\n<pre>{html.escape(data, quote=False)}</pre>"
    return summary


class AdminErrorReporter:
    """
    Sends every reported error to the admin's chat, through the bot that hit
    it. Also logs locally, so the admin chat is never the only record.
    """

    # Telegram caps messages at 4096 characters
    MAX_BODY_LEN = 3000

    def __init__(self, client: BotApiClient, admin_id: int, tracker: TaskTracker) -> None:
        self._client = client
        self._admin_id = admin_id
        self._tracker = tracker
        self._fallback = LoggingErrorReporter()

    def report(self, source: str, error: IngestError) -> None:
        self._fallback.report(source, error)
        self._tracker.spawn(
            self.notify(f"({html.escape(source)}) {format_error(error)}"),
            name=f"report-{source}",
        )

    async def notify(self, text: str) -> None:
        try:
            await self._client.send_message(self._admin_id, text)
        except IngestError as exc:
            log.error("failed to send message to admin: %s", exc)
