import asyncio
import json
from typing import Any

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from update_ingest.config import EngineConfig
from update_ingest.errors import IngestError
from update_ingest.models import RawFetch


def message(update_id: int, text: str = "hi", chat_id: int = 1, chat_type: str = "private",
            sender_id: int = 7) -> dict[str, Any]:
    return {
        "update_id": update_id,
        "message": {
            "message_id": update_id * 10,
            "chat": {"id": chat_id, "type": chat_type},
            "from": {"id": sender_id},
            "text": text,
        },
    }


def batch(*ids: int) -> RawFetch:
    return RawFetch.from_json({"ok": True, "result": [message(i) for i in ids]})


def timeout() -> RawFetch:
    return RawFetch.failed(asyncio.TimeoutError())


def malformed(*ids: int) -> RawFetch:
    """
    ok:true envelope whose items carry an unknown update kind; without ids,
    a `result` that isn't an array, so nothing can be salvaged.
    """
    if not ids:
        return RawFetch.from_json({"ok": True, "result": {}})
    return RawFetch.from_json({"ok": True, "result": [{"update_id": i, "poll": {}} for i in ids]})


def rejected(code: int, description: str = "nope") -> RawFetch:
    return RawFetch.from_json({"ok": False, "error_code": code, "description": description})


class FakeClient:
    """
    Scripted getUpdates. Each call pops the next RawFetch; once the script
    runs out, calls park until the test stops the engine.
    """

    def __init__(self, *script: RawFetch) -> None:
        self.script = list(script)
        self.offsets: list[int] = []
        self.confirmed: list[int] = []
        self.sent: list[tuple[int, str]] = []
        self.idle = asyncio.Event()
        self.release = asyncio.Event()

    async def get_updates(self, offset: int, timeout: int) -> RawFetch:
        self.offsets.append(offset)
        if self.script:
            return self.script.pop(0)
        self.idle.set()
        await self.release.wait()
        return RawFetch.failed(asyncio.TimeoutError())

    async def confirm(self, offset: int) -> None:
        self.confirmed.append(offset)

    async def send_message(self, chat_id: int, text: str) -> dict[str, Any]:
        self.sent.append((chat_id, text))
        return {"message_id": len(self.sent)}


class RecordingHandler:

    def __init__(self) -> None:
        self.seen: list[int] = []

    async def handle(self, update) -> None:
        self.seen.append(update.update_id)


class RecordingReporter:

    def __init__(self) -> None:
        self.errors: list[IngestError] = []

    def report(self, source: str, error: IngestError) -> None:
        self.errors.append(error)


@pytest.fixture
def config() -> EngineConfig:
    return EngineConfig(name="test", token="123:abc", backoff_unit=0.001)


def body(document: Any) -> bytes:
    return json.dumps(document).encode()


class FakeBotApi:
    """
    Minimal Bot API served by aiohttp's TestServer. getUpdates answers from
    `updates_script` in order, then with empty batches.
    """

    def __init__(self, token: str = "123:abc") -> None:
        self.token = token
        self.requests: list[tuple[str, dict[str, Any]]] = []
        self.updates_script: list[Any] = []
        self.get_updates_delay = 0.0
        self.app = web.Application()
        self.app.router.add_post("/bot{token}/{method}", self._dispatch)
        self.server = None

    async def start(self) -> str:
        self.server = TestServer(self.app)
        await self.server.start_server()
        return f"http://{self.server.host}:{self.server.port}"

    async def close(self) -> None:
        await self.server.close()

    def calls(self, method: str) -> list[dict[str, Any]]:
        return [payload for name, payload in self.requests if name == method]

    async def _dispatch(self, request):
        if request.match_info["token"] != self.token:
            return web.json_response(
                {"ok": False, "error_code": 401, "description": "Unauthorized"}, status=401,
            )
        method = request.match_info["method"]
        payload = await request.json() if request.can_read_body else {}
        self.requests.append((method, payload))

        if method == "getMe":
            return web.json_response({"ok": True, "result": {"id": 1, "username": "test_bot"}})
        if method == "sendMessage":
            return web.json_response({"ok": True, "result": {"message_id": len(self.requests)}})
        if method == "getUpdates":
            if self.get_updates_delay:
                await asyncio.sleep(self.get_updates_delay)
            if payload.get("timeout") and self.updates_script:
                document = self.updates_script.pop(0)
                if isinstance(document, bytes):
                    return web.Response(body=document, content_type="application/json")
                return web.json_response(document)
            return web.json_response({"ok": True, "result": []})
        return web.json_response(
            {"ok": False, "error_code": 404, "description": "Not Found"}, status=404,
        )
