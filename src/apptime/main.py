"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from apptime.challenges.router import router as challenges_router
from apptime.config import get_settings
from apptime.database import close_db, init_db
from apptime.health.router import router as health_router
from apptime.leaderboard.router import router as leaderboard_router
from apptime.middleware import setup_middleware
from apptime.notifications.dispatcher import NotificationDispatcher
from apptime.notifications.sender import RedisNotificationSender
from apptime.redis_client import close_redis, get_redis, init_redis
from apptime.workers.jobs import build_scheduler

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    settings = get_settings()
    await init_db(settings.database_url)
    await init_redis(settings)

    dispatcher = NotificationDispatcher(RedisNotificationSender(get_redis()))
    dispatcher.start()
    app.state.dispatcher = dispatcher

    scheduler = None
    if settings.scheduler_enabled:
        scheduler = build_scheduler(settings, dispatcher)
        scheduler.start()
        app.state.scheduler = scheduler
    else:
        logger.info("Scheduler disabled; run apptime.workers.scheduler_runner separately")

    yield

    if scheduler is not None:
        await scheduler.stop()
        app.state.scheduler = None
    await dispatcher.stop()
    app.state.dispatcher = None

    await close_redis()
    await close_db()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="AppTime Pipeline API",
        description="Screen-time leaderboards, challenge rankings and settlement",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(leaderboard_router)
    app.include_router(challenges_router)

    return app


app = create_app()
