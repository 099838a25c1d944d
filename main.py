import asyncio
import logging
import os
import platform
import signal
import sys

from update_ingest.config import load_engine_configs
from update_ingest.handlers import ConsoleUpdateHandler
from update_ingest.orchestrator import UpdateIngestor

logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s  %(levelname)-8s  %(name)s  %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%S",
    handlers=[logging.StreamHandler(sys.stdout)],
)
log = logging.getLogger("main")


async def main() -> int:
    configs  = load_engine_configs()
    ingestor = UpdateIngestor(configs, lambda client: ConsoleUpdateHandler(client.name))
    loop     = asyncio.get_running_loop()

    if not configs:
        log.error("No bot configured, set at least one *_TELEGRAM_TOKEN")
        return 1

    if platform.system() != "Windows":

        def _shutdown(sig: signal.Signals) -> None:
            log.info("Received %s, shutting down gracefully...", sig.name)
            ingestor.stop()

        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, _shutdown, sig)

        results = await ingestor.run()

    else:
        run = asyncio.create_task(ingestor.run())
        try:
            results = await asyncio.shield(run)
        except (asyncio.CancelledError, KeyboardInterrupt):
            log.info("Shutting down...")
            ingestor.stop()
            results = await run

    log.info("Ingestor stopped.")
    clean = [name for name, exc in results.items() if exc is None]
    return 0 if clean else 1


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
