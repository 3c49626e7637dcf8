"""Standalone runner for the scheduled pipeline jobs.

Runs leaderboard sync, challenge stats sync and challenge settlement on
their intervals until SIGINT/SIGTERM.

Usage: python -m apptime.workers.scheduler_runner
"""

from __future__ import annotations

import asyncio
import logging
import signal

from apptime.config import get_settings
from apptime.database import close_db, init_db
from apptime.middleware.logging import setup_logging
from apptime.notifications.dispatcher import NotificationDispatcher
from apptime.notifications.sender import RedisNotificationSender
from apptime.redis_client import close_redis, get_redis, init_redis
from apptime.workers.jobs import build_scheduler

logger = logging.getLogger(__name__)


async def main() -> None:
    """Run the scheduler until a shutdown signal arrives."""
    settings = get_settings()
    setup_logging(settings)

    await init_db(settings.database_url)
    await init_redis(settings)

    dispatcher = NotificationDispatcher(RedisNotificationSender(get_redis()))
    dispatcher.start()
    scheduler = build_scheduler(settings, dispatcher)

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    logger.info("Starting pipeline scheduler (%s)", ", ".join(scheduler.jobs))
    scheduler.start()
    try:
        await stop_event.wait()
    finally:
        await scheduler.stop()
        await dispatcher.stop()
        await close_redis()
        await close_db()
        logger.info("Pipeline scheduler stopped")


if __name__ == "__main__":
    asyncio.run(main())
