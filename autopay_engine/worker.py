"""Standalone scheduler process: runs due subscriptions until SIGINT/SIGTERM"""

import asyncio
import logging
import signal

from autopay_engine.config import settings
from autopay_engine.infrastructure.database.models import Base
from autopay_engine.infrastructure.database.session import SessionLocal, engine as db_engine
from autopay_engine.infrastructure.observability.logging import setup_logging
from autopay_engine.services.engine import build_engine

logger = logging.getLogger(__name__)


async def run() -> None:
    if settings.auto_create_tables:
        Base.metadata.create_all(bind=db_engine)

    engine = build_engine(settings, SessionLocal)
    stop = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    await engine.scheduler.run_forever(stop)


def main() -> None:
    setup_logging(settings.log_level)
    logger.info("Starting AutoPay scheduler worker")
    asyncio.run(run())


if __name__ == "__main__":
    main()
