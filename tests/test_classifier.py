import asyncio

import aiohttp

from conftest import body, message
from update_ingest.classifier import classify, recover_last_id
from update_ingest.errors import SchemaMismatch, TransportError, UpstreamRejected
from update_ingest.models import (
    Batch,
    FatalError,
    RawFetch,
    RecoverableError,
    Timeout,
)


def test_batch_is_decoded_in_order():
    outcome = classify(RawFetch.from_json({"ok": True, "result": [message(10), message(11)]}))
    assert isinstance(outcome, Batch)
    assert [u.update_id for u in outcome.updates] == [10, 11]
    assert outcome.updates[0].kind == "message"
    assert outcome.updates[0].chat_id == 1


def test_empty_result_is_an_empty_batch():
    outcome = classify(RawFetch.from_json({"ok": True, "result": []}))
    assert outcome == Batch([])


def test_client_timeout_is_not_an_error():
    assert isinstance(classify(RawFetch.failed(asyncio.TimeoutError())), Timeout)


def test_transport_failure_is_fatal_by_default():
    outcome = classify(RawFetch.failed(aiohttp.ClientConnectionError("refused")))
    assert isinstance(outcome, FatalError)
    assert isinstance(outcome.cause, TransportError)


def test_transport_failure_can_be_retried():
    outcome = classify(
        RawFetch.failed(aiohttp.ClientConnectionError("refused")),
        retry_transport_errors=True,
    )
    assert isinstance(outcome, RecoverableError)
    assert outcome.recovered_id is None


def test_unknown_kind_recovers_last_id():
    raw = RawFetch.from_json({"ok": True, "result": [message(41), {"update_id": 42, "poll": {}}]})
    outcome = classify(raw)
    assert isinstance(outcome, RecoverableError)
    assert isinstance(outcome.cause, SchemaMismatch)
    assert outcome.cause.data == raw.body
    assert outcome.recovered_id == 42


def test_recovery_uses_last_element_even_if_it_is_the_valid_one():
    raw = RawFetch.from_json({"ok": True, "result": [{"update_id": 5}, message(6)]})
    outcome = classify(raw)
    assert isinstance(outcome, RecoverableError)
    assert outcome.recovered_id == 6


def test_non_json_body_is_recoverable_without_cursor():
    outcome = classify(RawFetch.ok(b"<html>502 Bad Gateway</html>", 502))
    assert isinstance(outcome, RecoverableError)
    assert isinstance(outcome.cause, SchemaMismatch)
    assert outcome.recovered_id is None


def test_envelope_without_ok_flag_is_recoverable_without_cursor():
    outcome = classify(RawFetch.from_json({"result": [message(1)]}))
    assert isinstance(outcome, RecoverableError)
    assert outcome.recovered_id is None


def test_auth_rejection_is_fatal():
    outcome = classify(RawFetch.from_json(
        {"ok": False, "error_code": 401, "description": "Unauthorized"}, status=401,
    ))
    assert isinstance(outcome, FatalError)
    assert isinstance(outcome.cause, UpstreamRejected)
    assert outcome.cause.error_code == 401


def test_other_rejection_is_recoverable():
    outcome = classify(RawFetch.from_json(
        {"ok": False, "error_code": 409, "description": "Conflict"}, status=409,
    ))
    assert isinstance(outcome, RecoverableError)
    assert outcome.cause.description == "Conflict"
    assert outcome.recovered_id is None


def test_recover_last_id_requirements():
    assert recover_last_id(body({"ok": True, "result": [{"update_id": 42}]})) == 42
    assert recover_last_id(body({"ok": False, "result": [{"update_id": 42}]})) is None
    assert recover_last_id(body({"ok": True, "result": []})) is None
    assert recover_last_id(body({"ok": True, "result": [{"update_id": "42"}]})) is None
    assert recover_last_id(body({"ok": True, "result": [{"update_id": True}]})) is None
    assert recover_last_id(body({"ok": True, "result": [42]})) is None
    assert recover_last_id(body([1, 2])) is None
    assert recover_last_id(b"\xff\xfe") is None
