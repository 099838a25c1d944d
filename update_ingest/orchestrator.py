# UpdateIngestor: the top-level service.
#
# Responsibilities:
#   - Create one shared aiohttp session and connection pool
#   - Resolve each configured bot (getMe) and start one IngestionDriver per bot
#   - Share one Shutdown and one TaskTracker across all drivers, so a single
#     stop() drains every bot
#   - Treat a fatal error as the end of that one bot, not of the process
#
# Concurrency model:
#   every bot is an asyncio task on one event loop; handlers are further
#   tasks, tracked for drain.

import asyncio
import logging
from typing import Callable

import aiohttp

from update_ingest import __version__
from update_ingest.commands import CommonCommands
from update_ingest.config import CONNECTION_LIMIT, USER_AGENT, EngineConfig
from update_ingest.errors import IngestError
from update_ingest.handlers import (
    AdminErrorReporter,
    ErrorReporter,
    LoggingErrorReporter,
    UpdateHandler,
)
from update_ingest.http_client import BotApiClient
from update_ingest.runner import IngestionDriver
from update_ingest.shutdown import Shutdown
from update_ingest.task_tracker import TaskTracker

log = logging.getLogger(__name__)

HandlerFactory = Callable[[BotApiClient], UpdateHandler]


class UpdateIngestor:

    def __init__(
        self,
        configs: list[EngineConfig],
        handler_factory: HandlerFactory,
        *,
        shutdown: Shutdown | None = None,
        tracker: TaskTracker | None = None,
    ) -> None:
        self._configs = configs
        self._handler_factory = handler_factory
        self.shutdown = shutdown or Shutdown()
        self.tracker = tracker or TaskTracker()
        self.drivers: list[IngestionDriver] = []

    async def run(self) -> dict[str, BaseException | None]:
        """
        Poll every configured bot until shutdown. Returns, per bot that got
        started, the exception that ended it (None for a clean stop).
        """
        connector = aiohttp.TCPConnector(limit=CONNECTION_LIMIT)
        async with aiohttp.ClientSession(
            connector=connector,
            headers={"User-Agent": USER_AGENT},
        ) as session:
            return await self.run_with_session(session)

    async def run_with_session(self, session: aiohttp.ClientSession) -> dict[str, BaseException | None]:
        clients = [BotApiClient(session, config) for config in self._configs]
        started = await self._start(clients)
        if not started:
            log.error("No bot could be started")
            return {}

        admin = self._admin_client(started)
        if admin is not None:
            client, admin_id = admin
            lines = [f"Start version: {__version__}"]
            lines += [f"bot {c.name} @{c.username}" for c in started]
            await AdminErrorReporter(client, admin_id, self.tracker).notify("\n".join(lines))

        tasks = [
            asyncio.create_task(driver.run(), name=f"runner-{driver.config.name}")
            for driver in self.drivers
        ]
        log.info(
            "UpdateIngestor running, polling %d bot(s). Press Ctrl+C to stop.",
            len(tasks),
        )
        results = await asyncio.gather(*tasks, return_exceptions=True)

        outcome: dict[str, BaseException | None] = {}
        for driver, result in zip(self.drivers, results):
            if isinstance(result, BaseException):
                log.error("Bot %s disabled: %s", driver.config.name, result)
                outcome[driver.config.name] = result
            else:
                outcome[driver.config.name] = None

        await self.tracker.wait()
        if admin is not None:
            client, admin_id = admin
            await AdminErrorReporter(client, admin_id, self.tracker).notify("bye")
        return outcome

    async def _start(self, clients: list[BotApiClient]) -> list[BotApiClient]:
        results = await asyncio.gather(
            *(client.get_me() for client in clients), return_exceptions=True,
        )
        started: list[BotApiClient] = []
        for client, result in zip(clients, results):
            config = client.config
            if isinstance(result, IngestError):
                log.error("failed to init bot for %s: %s", config.name, result)
                continue
            if isinstance(result, BaseException):
                raise result

            reporter: ErrorReporter = LoggingErrorReporter()
            if config.admin_id is not None:
                reporter = AdminErrorReporter(client, config.admin_id, self.tracker)
            self.drivers.append(IngestionDriver(
                config,
                client,
                self._handler_factory(client),
                shutdown=self.shutdown,
                tracker=self.tracker,
                reporter=reporter,
                interceptor=CommonCommands(client, self.shutdown, self.tracker, config.admin_id),
            ))
            log.info("Bot %s running as @%s", config.name, client.username)
            started.append(client)
        return started

    def _admin_client(self, clients: list[BotApiClient]) -> tuple[BotApiClient, int] | None:
        for client in clients:
            if client.config.admin_id is not None:
                return client, client.config.admin_id
        return None

    def stop(self) -> None:
        """Fire the shared shutdown; every driver confirms and drains."""
        self.shutdown.shutdown()
