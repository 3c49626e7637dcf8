"""Leaderboard API: period leaderboards, sync trigger and direct stat writes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from apptime.aggregation.leaderboard_sync import sync_usage, update_leaderboard_stats
from apptime.aggregation.schemas import SyncResult, UpdateStatsRequest, UpdateStatsResult
from apptime.dependencies import get_db
from apptime.ranking.leaderboard import get_daily_leaderboard, get_monthly_leaderboard, get_weekly_leaderboard
from apptime.ranking.schemas import LeaderboardResponse

router = APIRouter(prefix="/api/v1/leaderboard", tags=["Leaderboard"])


@router.get("/daily", response_model=LeaderboardResponse)
async def daily_leaderboard(
    date: str | None = Query(None, description="YYYY-MM-DD, defaults to today (UTC)"),
    user_id: str | None = Query(None),
    limit: int | None = Query(None, ge=1, le=500),
    db: AsyncSession = Depends(get_db),  # noqa: B008
) -> LeaderboardResponse:
    return await get_daily_leaderboard(db, date, current_user_id=user_id, limit=limit)


@router.get("/weekly", response_model=LeaderboardResponse)
async def weekly_leaderboard(
    week: str | None = Query(None, description="YYYY-Www, defaults to the current ISO week"),
    user_id: str | None = Query(None),
    limit: int | None = Query(None, ge=1, le=500),
    db: AsyncSession = Depends(get_db),  # noqa: B008
) -> LeaderboardResponse:
    return await get_weekly_leaderboard(db, week, current_user_id=user_id, limit=limit)


@router.get("/monthly", response_model=LeaderboardResponse)
async def monthly_leaderboard(
    month: str | None = Query(None, description="YYYY-MM, defaults to the current month"),
    user_id: str | None = Query(None),
    limit: int | None = Query(None, ge=1, le=500),
    db: AsyncSession = Depends(get_db),  # noqa: B008
) -> LeaderboardResponse:
    return await get_monthly_leaderboard(db, month, current_user_id=user_id, limit=limit)


@router.post("/sync", response_model=SyncResult)
async def trigger_sync(
    date: str | None = Query(None, description="Recount one UTC day instead of syncing new events"),
    db: AsyncSession = Depends(get_db),  # noqa: B008
) -> SyncResult:
    return await sync_usage(db, date)


@router.post("/stats", response_model=UpdateStatsResult)
async def update_stats(
    body: UpdateStatsRequest,
    db: AsyncSession = Depends(get_db),  # noqa: B008
) -> UpdateStatsResult:
    return await update_leaderboard_stats(
        db,
        user_id=body.user_id,
        period=body.period,
        period_date=body.period_date,
        total_screen_time_ms=body.total_screen_time_ms,
        replace=body.replace,
    )
