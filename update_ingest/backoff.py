from dataclasses import dataclass

from update_ingest.config import BACKOFF_UNIT_SECONDS, MAX_RETRIES


def backoff_delay(
    retry_count: int,
    cap: int = MAX_RETRIES,
    unit: float = BACKOFF_UNIT_SECONDS,
) -> float | None:
    """
    Delay before the next attempt after `retry_count` earlier consecutive
    failures: unit * 2^retry_count.

    Returns None once retry_count has reached `cap`, meaning the failure
    that asked is fatal and no further attempt should be made.
    With the default cap of 13 the delays run 1s, 2s, ... 4096s and the
    14th consecutive failure is fatal.
    """
    if retry_count < 0:
        raise ValueError(f"retry_count must be >= 0, got {retry_count}")
    if retry_count >= cap:
        return None
    return unit * (1 << retry_count)


@dataclass
class RetryState:
    """Consecutive recoverable failures seen by one stream."""
    count: int = 0
    cap: int = MAX_RETRIES

    def reset(self) -> None:
        self.count = 0

    @property
    def exhausted(self) -> bool:
        return self.count >= self.cap

    def record_failure(self, unit: float = BACKOFF_UNIT_SECONDS) -> float | None:
        """
        Account for one more failure and return how long to wait.

        Returns None (and leaves `count` alone) when the budget is spent.
        """
        delay = backoff_delay(self.count, self.cap, unit)
        if delay is not None:
            self.count += 1
        return delay
