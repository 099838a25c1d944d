import logging
import os
from dataclasses import dataclass
from typing import Mapping

log = logging.getLogger(__name__)

API_BASE: str = "https://api.telegram.org"
USER_AGENT: str = "update-ingest/1.0 (long-poll ingestion)"
HOMEPAGE: str = "https://github.com/update-ingest/update-ingest"
CONNECTION_LIMIT: int = 50

LONG_POLL_TIMEOUT_SECONDS: int = 5          # sent as `timeout`, server-side hold
CLIENT_TIMEOUT_MARGIN_SECONDS: float = 5.0  # client timeout = window + margin
MAX_RETRIES: int = 13                       # the 14th consecutive error is fatal
BACKOFF_UNIT_SECONDS: float = 1.0           # delay = unit * 2^retry_count

ADMIN_ID_ENV: str = "BOT_ADMIN_ID"

# one entry per independently polled bot; token is read from `token_env`
SOURCES: list[dict[str, str]] = [
    {"name": "eval",     "token_env": "EVAL_TELEGRAM_TOKEN"},
    {"name": "cratesio", "token_env": "CRATESIO_TELEGRAM_TOKEN"},
    {"name": "rustdoc",  "token_env": "RUSTDOC_TELEGRAM_TOKEN"},
]


@dataclass
class EngineConfig:
    """
    Everything one ingestion engine needs, passed in at construction.

    The client-side timeout is derived from the server window so a long-poll
    that returns naturally is never cut short by the client.
    """
    name: str
    token: str
    api_base: str = API_BASE
    poll_timeout: int = LONG_POLL_TIMEOUT_SECONDS
    client_timeout_margin: float = CLIENT_TIMEOUT_MARGIN_SECONDS
    max_retries: int = MAX_RETRIES
    backoff_unit: float = BACKOFF_UNIT_SECONDS
    retry_transport_errors: bool = False
    acknowledge_on_shutdown: bool = True
    admin_id: int | None = None

    def __post_init__(self) -> None:
        if self.poll_timeout < 0:
            raise ValueError(f"poll_timeout must be >= 0, got {self.poll_timeout}")
        if self.client_timeout_margin < 0:
            raise ValueError(
                f"client timeout must not be shorter than the server window "
                f"(margin {self.client_timeout_margin})"
            )
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {self.max_retries}")

    @property
    def client_timeout(self) -> float:
        return self.poll_timeout + self.client_timeout_margin

    def __repr__(self) -> str:
        # keep the token out of logs and tracebacks
        return f"EngineConfig(name={self.name!r}, api_base={self.api_base!r})"


def parse_admin_id(environ: Mapping[str, str] = os.environ) -> int | None:
    raw = environ.get(ADMIN_ID_ENV)
    if raw is None or raw.strip() == "":
        return None
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{ADMIN_ID_ENV} must be a valid user id, got {raw!r}") from None


def load_engine_configs(
    sources: list[dict[str, str]] = SOURCES,
    environ: Mapping[str, str] = os.environ,
) -> list[EngineConfig]:
    """
    Build one EngineConfig per source whose token variable is set.

    A source without a token is skipped, not an error: that bot simply
    doesn't start.
    """
    admin_id = parse_admin_id(environ)
    configs: list[EngineConfig] = []
    for source in sources:
        token = environ.get(source["token_env"])
        if not token:
            log.info(
                "%s wouldn't start because %s is not set",
                source["name"], source["token_env"],
            )
            continue
        configs.append(EngineConfig(name=source["name"], token=token, admin_id=admin_id))
    return configs
