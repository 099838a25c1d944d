import pytest

from conftest import message
from update_ingest.errors import SchemaMismatch
from update_ingest.models import parse_update


def test_message_update_is_decoded():
    update = parse_update(message(3, text="hi", chat_id=9))
    assert (update.update_id, update.kind, update.chat_id, update.text) == (3, "message", 9, "hi")


def test_non_message_update_has_no_chat():
    update = parse_update({"update_id": 4, "inline_query": {"id": "q", "query": "serde"}})
    assert update.kind == "inline_query"
    assert update.chat_id is None
    assert update.text is None


@pytest.mark.parametrize("item", [
    [],
    {"message": {"message_id": 1, "chat": {"id": 1}}},
    {"update_id": True, "message": {"message_id": 1, "chat": {"id": 1}}},
    {"update_id": 1},
    {"update_id": 1, "poll": {}},
    {"update_id": 1, "message": {}, "inline_query": {}},
    {"update_id": 1, "message": "text"},
    {"update_id": 1, "message": {"chat": {"id": 1}}},
    {"update_id": 1, "message": {"message_id": 1, "chat": {"id": "x"}}},
])
def test_malformed_updates_are_rejected(item):
    with pytest.raises(SchemaMismatch):
        parse_update(item)
