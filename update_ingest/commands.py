# Commands every bot answers the same way, handled before the update
# reaches the bot's own handler:
#   /about     reply with name, version and homepage
#   /shutdown  (admin only) start a graceful shutdown of the whole process
#
# Both only apply to text messages in private chats.

import logging

from update_ingest import __version__
from update_ingest.config import HOMEPAGE
from update_ingest.errors import IngestError
from update_ingest.http_client import BotApiClient
from update_ingest.models import Update
from update_ingest.shutdown import Shutdown
from update_ingest.task_tracker import TaskTracker

log = logging.getLogger(__name__)

ABOUT_MESSAGE: str = f"update-ingest {__version__}\n{HOMEPAGE}"


def is_private_message(update: Update) -> bool:
    if update.kind != "message":
        return False
    return update.payload["chat"].get("type") == "private"


class CommonCommands:

    def __init__(
        self,
        client: BotApiClient,
        shutdown: Shutdown,
        tracker: TaskTracker,
        admin_id: int | None = None,
    ) -> None:
        self._client = client
        self._shutdown = shutdown
        self._tracker = tracker
        self._admin_id = admin_id

    def intercept(self, update: Update) -> bool:
        """Return True if the update was consumed here."""
        if not is_private_message(update) or update.text is None:
            return False

        command = update.text.strip()
        if command == "/about":
            self._reply(update, ABOUT_MESSAGE)
            return True
        if command == "/shutdown":
            sender = update.payload.get("from") or {}
            if self._admin_id is None or sender.get("id") != self._admin_id:
                return False
            log.info("%d> shutdown requested by admin", update.update_id)
            self._reply(update, "start shutting down...")
            self._shutdown.shutdown()
            return True
        return False

    def _reply(self, update: Update, text: str) -> None:
        self._tracker.spawn(
            self._send(update.update_id, update.payload["chat"]["id"], text),
            name=f"reply-{update.update_id}",
        )

    async def _send(self, update_id: int, chat_id: int, text: str) -> None:
        try:
            msg = await self._client.send_message(chat_id, text)
        except IngestError as exc:
            log.warning("%d> error: %s", update_id, exc)
            return
        if isinstance(msg, dict):
            log.debug("%d> sent reply as %s", update_id, msg.get("message_id"))
