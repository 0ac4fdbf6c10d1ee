"""Entry point - serves the HTTP API until SIGINT/SIGTERM."""

import asyncio
import logging
import signal
from typing import Optional

import uvicorn

from nullroute.api.app import create_app
from nullroute.config import Settings, get_settings
from nullroute.ledger.database import close_db, get_db, init_db
from nullroute.ledger.repository import LedgerRepository

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    # httpx logs every request at INFO; governor pacing makes that noisy
    logging.getLogger("httpx").setLevel(logging.WARNING)


async def report_unreconciled() -> int:
    """Log transfers left flagged by earlier runs."""
    async with get_db() as session:
        flagged = await LedgerRepository(session).get_unreconciled_transactions()

    if flagged:
        logger.warning(
            f"{len(flagged)} transfer(s) need reconciliation - run scripts/reconcile.py"
        )
        for tx in flagged:
            logger.warning(f"  {tx.tx_signature}: {tx.error_message}")
    return len(flagged)


class Application:
    """Owns the uvicorn server and the shutdown signal."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.server: Optional[uvicorn.Server] = None
        self._stop = asyncio.Event()

    async def run(self) -> None:
        configure_logging(self.settings)

        logger.info(f"Starting Nullroute ({self.settings.environment})")
        if self.settings.dry_run:
            logger.warning("DRY_RUN enabled - exchange calls are simulated")
        logger.info(
            f"Exchange requests paced at {self.settings.governor_requests_per_second}/s "
            f"(ceiling {self.settings.exchange_rate_limit}/s)"
        )

        await init_db()
        await report_unreconciled()

        config = uvicorn.Config(
            create_app(),
            host=self.settings.api_host,
            port=self.settings.api_port,
            log_level="debug" if self.settings.debug else "info",
        )
        self.server = uvicorn.Server(config)

        serve = asyncio.create_task(self.server.serve())
        stop = asyncio.create_task(self._stop.wait())
        try:
            await asyncio.wait({serve, stop}, return_when=asyncio.FIRST_COMPLETED)
            self.server.should_exit = True
            await serve
        finally:
            stop.cancel()
            await close_db()
            logger.info("Nullroute stopped")

    def shutdown(self) -> None:
        logger.info("Shutdown requested")
        self._stop.set()


def main():
    """Console script entry point."""
    app = Application()

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, app.shutdown)

    try:
        loop.run_until_complete(app.run())
    finally:
        loop.close()


if __name__ == "__main__":
    main()
