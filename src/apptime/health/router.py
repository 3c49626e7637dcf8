"""Liveness, readiness and version endpoints.

Readiness covers the stores the pipeline writes to and, when this process
hosts them, the scheduled jobs and the notification dispatcher.
"""

from typing import Any

from fastapi import APIRouter, Depends, Request
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from apptime.config import get_settings
from apptime.database import get_session
from apptime.redis_client import get_redis

router = APIRouter()


@router.get("/health")
async def health() -> dict[str, str]:
    return {"status": "healthy"}


def _pipeline_state(request: Request) -> tuple[dict[str, Any], list[str]]:
    """Dispatcher counters and job status, plus the names of stalled jobs."""
    state: dict[str, Any] = {}
    stalled: list[str] = []

    dispatcher = getattr(request.app.state, "dispatcher", None)
    if dispatcher is None:
        state["notifications"] = "not started"
    else:
        state["notifications"] = {"running": dispatcher.running, **dispatcher.stats()}

    scheduler = getattr(request.app.state, "scheduler", None)
    if scheduler is None:
        state["scheduler"] = "disabled"
    else:
        jobs = scheduler.status()
        state["scheduler"] = jobs
        stalled = [name for name, job in jobs.items() if not job["running"]]

    return state, stalled


@router.get("/ready")
async def readiness(
    request: Request,
    db: AsyncSession = Depends(get_session),  # noqa: B008
) -> dict[str, object]:
    """Database and Redis connectivity, with in-process pipeline state."""
    checks: dict[str, object] = {}

    try:
        await db.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except Exception as exc:
        checks["database"] = f"error: {exc}"

    try:
        await get_redis().ping()
        checks["redis"] = "ok"
    except Exception as exc:
        checks["redis"] = f"error: {exc}"

    pipeline, stalled = _pipeline_state(request)
    if stalled:
        checks["scheduler"] = f"error: stopped jobs: {', '.join(sorted(stalled))}"

    all_ok = all(v == "ok" for v in checks.values())
    return {"status": "ready" if all_ok else "degraded", "checks": checks, "pipeline": pipeline}


@router.get("/version")
async def version() -> dict[str, object]:
    settings = get_settings()
    return {
        "version": settings.app_version,
        "environment": settings.environment,
        "scheduler_enabled": settings.scheduler_enabled,
    }
