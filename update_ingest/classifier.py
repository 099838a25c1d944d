# Turns one raw getUpdates attempt into a classified outcome:
#   Batch | Timeout | RecoverableError | FatalError
#
# Decisions:
#   - A client-side timeout is the quiet steady state of a long-poll, not an
#     error. It never touches the retry budget.
#   - The HTTP status is ignored: the Bot API reports failures as
#     {"ok": false, "description": ..., "error_code": ...} with a 4xx/5xx,
#     and that body carries everything we need.
#   - When typed decoding fails but the body is still {"ok": true,
#     "result": [...]}, the id of the last element is salvaged so the caller
#     can move the cursor past the batch. This is best effort: if the
#     upstream changes its envelope entirely, nothing is salvaged and the
#     error just escalates through the retry budget.

import asyncio
import json
import logging
from typing import Any

from update_ingest.errors import SchemaMismatch, TransportError, UpstreamRejected
from update_ingest.models import (
    Batch,
    FatalError,
    Outcome,
    RawFetch,
    RecoverableError,
    Timeout,
    Update,
    parse_update,
)

log = logging.getLogger(__name__)

# ok:false codes that mean the token itself is rejected; retrying can't help
FATAL_ERROR_CODES: frozenset[int] = frozenset({401, 403, 404})


def recover_last_id(data: bytes) -> int | None:
    """
    Generic parse of a body that failed typed decoding.

    Only needs a top-level object with "ok": true and a "result" array whose
    last element is an object with an integer "update_id".
    """
    try:
        value = json.loads(data)
    except (ValueError, UnicodeDecodeError):
        return None
    if not isinstance(value, dict) or value.get("ok") is not True:
        return None
    result = value.get("result")
    if not isinstance(result, list) or not result:
        return None
    last = result[-1]
    if not isinstance(last, dict):
        return None
    update_id = last.get("update_id")
    if isinstance(update_id, int) and not isinstance(update_id, bool):
        return update_id
    return None


def _decode(data: bytes) -> Any:
    try:
        return json.loads(data)
    except (ValueError, UnicodeDecodeError) as exc:
        raise SchemaMismatch(f"response is not JSON: {exc}", data) from exc


def classify(raw: RawFetch, *, retry_transport_errors: bool = False) -> Outcome:
    if raw.error is not None:
        if isinstance(raw.error, (asyncio.TimeoutError, TimeoutError)):
            return Timeout()
        cause = TransportError(f"{type(raw.error).__name__}: {raw.error}")
        cause.__cause__ = raw.error
        if retry_transport_errors:
            return RecoverableError(cause)
        return FatalError(cause)

    data = raw.body or b""
    try:
        document = _decode(data)
        if not isinstance(document, dict) or not isinstance(document.get("ok"), bool):
            raise SchemaMismatch("response has no boolean 'ok' field", data)

        if not document["ok"]:
            return _rejected(document)

        result = document.get("result")
        if not isinstance(result, list):
            raise SchemaMismatch("'result' is not an array", data)
        updates: list[Update] = []
        for item in result:
            try:
                updates.append(parse_update(item))
            except SchemaMismatch as exc:
                exc.data = data
                raise
        return Batch(updates)

    except SchemaMismatch as exc:
        recovered = recover_last_id(data)
        if recovered is not None:
            log.debug("Salvaged update_id %d from undecodable response", recovered)
        return RecoverableError(exc, recovered)


def _rejected(document: dict[str, Any]) -> Outcome:
    description = document.get("description")
    if not isinstance(description, str):
        description = "no description"
    error_code = document.get("error_code")
    if not isinstance(error_code, int) or isinstance(error_code, bool):
        error_code = None
    cause = UpstreamRejected(description, error_code)
    if error_code in FATAL_ERROR_CODES:
        return FatalError(cause)
    return RecoverableError(cause)
