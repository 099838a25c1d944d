import json
from dataclasses import dataclass, field
from typing import Any

from update_ingest.errors import IngestError, SchemaMismatch

# Update kinds the typed decoder understands. An update carrying none of
# these (a kind added upstream later) fails typed decoding.
MESSAGE_KINDS: tuple[str, ...] = (
    "message",
    "edited_message",
    "channel_post",
    "edited_channel_post",
)
UPDATE_KINDS: tuple[str, ...] = MESSAGE_KINDS + (
    "inline_query",
    "chosen_inline_result",
    "callback_query",
)


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


@dataclass
class Update:
    """
    One event from the upstream feed.

    The engine only looks at `update_id`; `kind` and `payload` are handed
    to the handler untouched.
    """
    update_id: int
    kind: str
    payload: dict[str, Any]

    @property
    def chat_id(self) -> int | None:
        if self.kind in MESSAGE_KINDS:
            return self.payload["chat"]["id"]
        return None

    @property
    def text(self) -> str | None:
        if self.kind in MESSAGE_KINDS:
            text = self.payload.get("text")
            return text if isinstance(text, str) else None
        return None


def parse_update(item: Any) -> Update:
    """Typed decode of one `result` element. Raises SchemaMismatch."""
    if not isinstance(item, dict):
        raise SchemaMismatch(f"update is not an object: {type(item).__name__}")

    update_id = item.get("update_id")
    if not _is_int(update_id):
        raise SchemaMismatch(f"missing or invalid update_id: {update_id!r}")

    kinds = [k for k in UPDATE_KINDS if k in item]
    if len(kinds) != 1:
        raise SchemaMismatch(
            f"update {update_id}: expected exactly one known kind, found {kinds or 'none'}"
        )
    kind = kinds[0]
    payload = item[kind]
    if not isinstance(payload, dict):
        raise SchemaMismatch(f"update {update_id}: {kind} is not an object")

    if kind in MESSAGE_KINDS:
        chat = payload.get("chat")
        if not _is_int(payload.get("message_id")):
            raise SchemaMismatch(f"update {update_id}: {kind} has no message_id")
        if not isinstance(chat, dict) or not _is_int(chat.get("id")):
            raise SchemaMismatch(f"update {update_id}: {kind} has no chat id")

    return Update(update_id=update_id, kind=kind, payload=payload)


@dataclass
class RawFetch:
    """Result of one getUpdates attempt before classification."""
    body: bytes | None = None
    error: BaseException | None = None
    status: int | None = None

    @classmethod
    def ok(cls, body: bytes, status: int = 200) -> "RawFetch":
        return cls(body=body, status=status)

    @classmethod
    def failed(cls, error: BaseException) -> "RawFetch":
        return cls(error=error)

    @classmethod
    def from_json(cls, document: Any, status: int = 200) -> "RawFetch":
        return cls(body=json.dumps(document).encode(), status=status)


# ─── Classified outcomes ──────────────────────────────────────────────────────

@dataclass
class Batch:
    updates: list[Update] = field(default_factory=list)


@dataclass
class Timeout:
    pass


@dataclass
class RecoverableError:
    cause: IngestError
    recovered_id: int | None = None   # last id salvaged from a generic parse


@dataclass
class FatalError:
    cause: IngestError


Outcome = Batch | Timeout | RecoverableError | FatalError
