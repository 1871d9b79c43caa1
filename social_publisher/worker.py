# social_publisher/worker.py
"""Standalone scheduler process: python -m social_publisher.worker"""
import asyncio
import signal

import structlog

from social_publisher.infrastructure.database import get_session, init_db
from social_publisher.infrastructure.log_config import configure_structlog
from social_publisher.infrastructure.platform_client import HttpPlatformClient
from social_publisher.services.publisher import PublishOrchestrator
from social_publisher.services.scheduler import Scheduler

logger = structlog.get_logger("worker")


async def main() -> None:
    await init_db()
    orchestrator = PublishOrchestrator(get_session, HttpPlatformClient())
    scheduler = Scheduler(get_session, orchestrator)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, scheduler.stop)
        except NotImplementedError:
            # windows event loops have no signal handlers
            pass

    logger.info("worker_started")
    await scheduler.run_forever()


if __name__ == "__main__":
    configure_structlog()
    asyncio.run(main())
