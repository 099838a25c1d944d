# Bot API client on top of a shared aiohttp.ClientSession.
#
# getUpdates is the only call on the ingestion hot path and it never raises:
# every outcome (body, timeout, connection failure) comes back as a RawFetch
# for the classifier to judge. The remaining calls are plain request/response
# helpers that raise IngestError subclasses.
#
# The token is part of every URL, so URLs are never logged.

import asyncio
import json
import logging
from typing import Any

import aiohttp

from update_ingest.config import EngineConfig
from update_ingest.errors import SchemaMismatch, TransportError, UpstreamRejected
from update_ingest.models import RawFetch

log = logging.getLogger(__name__)

# plain request/response calls don't long-poll
REQUEST_TIMEOUT_SECONDS: int = 10


class BotApiClient:
    """
    One bot's view of the API. Many clients may share one session (and so
    one connection pool); each carries its own token.
    """

    def __init__(self, session: aiohttp.ClientSession, config: EngineConfig) -> None:
        self._session = session
        self.config = config
        self.username: str | None = None

    @property
    def name(self) -> str:
        return self.config.name

    def _url(self, method: str) -> str:
        return f"{self.config.api_base}/bot{self.config.token}/{method}"

    async def get_updates(self, offset: int, timeout: int) -> RawFetch:
        """
        Long-poll for updates starting at `offset`.

        The client timeout is the server window plus the configured margin,
        so a timeout here means the server never answered at all.
        """
        payload = {"offset": offset, "timeout": timeout}
        client_timeout = timeout + self.config.client_timeout_margin
        try:
            async with self._session.post(
                self._url("getUpdates"),
                json=payload,
                timeout=aiohttp.ClientTimeout(total=client_timeout),
            ) as resp:
                body = await resp.read()
                return RawFetch.ok(body, resp.status)
        except asyncio.TimeoutError as exc:
            log.debug("(%s) getUpdates timed out after %.1fs", self.name, client_timeout)
            return RawFetch.failed(exc)
        except (aiohttp.ClientError, OSError) as exc:
            log.warning("(%s) getUpdates failed: %s", self.name, type(exc).__name__)
            return RawFetch.failed(exc)

    async def call(self, method: str, payload: dict[str, Any] | None = None) -> Any:
        """
        Perform one API call and return its `result`.

        Raises:
            TransportError    on connection failure or timeout
            SchemaMismatch    when the body isn't a Bot API envelope
            UpstreamRejected  when the API answers ok:false
        """
        try:
            async with self._session.post(
                self._url(method),
                json=payload or {},
                timeout=aiohttp.ClientTimeout(total=REQUEST_TIMEOUT_SECONDS),
            ) as resp:
                body = await resp.read()
        except asyncio.TimeoutError as exc:
            log.warning("(%s) Timeout calling %s", self.name, method)
            raise TransportError(f"timeout calling {method}") from exc
        except (aiohttp.ClientError, OSError) as exc:
            log.warning("(%s) Error calling %s: %s", self.name, method, type(exc).__name__)
            raise TransportError(f"{method}: {type(exc).__name__}: {exc}") from exc

        try:
            document = json.loads(body)
        except (ValueError, UnicodeDecodeError) as exc:
            raise SchemaMismatch(f"{method}: response is not JSON", body) from exc
        if not isinstance(document, dict) or not isinstance(document.get("ok"), bool):
            raise SchemaMismatch(f"{method}: response has no boolean 'ok' field", body)
        if not document["ok"]:
            raise UpstreamRejected(
                str(document.get("description", "no description")),
                document.get("error_code"),
            )
        return document.get("result")

    async def get_me(self) -> dict[str, Any]:
        me = await self.call("getMe")
        if not isinstance(me, dict):
            raise SchemaMismatch("getMe: result is not an object")
        self.username = me.get("username")
        return me

    async def confirm(self, offset: int) -> None:
        """Mark every update below `offset` as consumed, without waiting."""
        await self.call("getUpdates", {"offset": offset, "timeout": 0, "limit": 1})

    async def send_message(self, chat_id: int, text: str) -> dict[str, Any]:
        return await self.call(
            "sendMessage",
            {
                "chat_id": chat_id,
                "text": text,
                "parse_mode": "HTML",
                "disable_web_page_preview": True,
            },
        )
