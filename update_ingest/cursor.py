import logging

log = logging.getLogger(__name__)


class CursorTracker:
    """
    Owns the offset of the next update to request.

    The value only ever moves forward. Both `advance` and `recover` set it to
    id + 1; they are kept apart so logs show which path moved it.
    """

    def __init__(self, initial: int = 0) -> None:
        self._value = initial

    @property
    def value(self) -> int:
        return self._value

    def advance(self, last_seen_id: int) -> int:
        """Called with the highest update_id of a decoded batch."""
        return self._bump(last_seen_id, "advance")

    def recover(self, candidate_id: int) -> int:
        """Called with the last update_id salvaged from an undecodable batch."""
        return self._bump(candidate_id, "recover")

    def _bump(self, update_id: int, how: str) -> int:
        proposed = update_id + 1
        if proposed < self._value:
            log.warning(
                "Ignoring %s to %d: cursor already at %d", how, proposed, self._value,
            )
            return self._value
        self._value = proposed
        log.debug("Cursor %s to %d", how, proposed)
        return self._value

    def __repr__(self) -> str:
        return f"CursorTracker({self._value})"
