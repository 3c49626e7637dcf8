"""Leaderboard aggregation: raw usage events -> daily/weekly/monthly stats.

Daily totals are rebuilt from the raw events of every (user, day) touched by
new events, then weekly and monthly rows are rebuilt from the daily rows.
Nothing is ever incremented in place, so re-running a sync over the same
events cannot double count and rollups cannot drift.

Incremental runs pick up events past each user's high-water mark
(``sync_cursors`` rows with pipeline='leaderboard').
"""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import date

from sqlalchemy import and_, func, select
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from apptime.aggregation.cursors import LEADERBOARD_PIPELINE, advance_cursor
from apptime.aggregation.schemas import SyncResult, UpdateStatsResult
from apptime.config import get_settings
from apptime.db.models import LeaderboardStat, Period, SyncCursor, UsageEvent
from apptime.db.upsert import insert_for
from apptime.errors import TransientStoreError, ValidationError
from apptime.periods import (
    as_utc,
    coerce_day,
    day_bounds,
    day_key,
    month_days,
    month_key,
    parse_day_key,
    utcnow,
    week_days,
    week_key,
)

logger = logging.getLogger(__name__)


async def sync_usage(
    db: AsyncSession,
    window_date: str | date | None = None,
    batch_size: int | None = None,
) -> SyncResult:
    """Fold usage events into leaderboard stats.

    With no ``window_date`` every event past the per-user high-water mark is
    processed. With a date, every event on that UTC day is recounted and the
    cursors are left alone.
    """
    day = coerce_day(window_date)
    if batch_size is None:
        batch_size = get_settings().sync_batch_size

    try:
        if day is None:
            events_processed, stats_updated = await _sync_incremental(db, batch_size)
        else:
            events_processed, stats_updated = await _sync_day(db, day)
    except DBAPIError as exc:
        await db.rollback()
        raise TransientStoreError(f"Leaderboard sync failed: {exc}") from exc

    if events_processed == 0:
        message = "No new usage events to sync"
    else:
        message = f"Synced {events_processed} events into {stats_updated} leaderboard stats"
    logger.info("Leaderboard sync: %s (date=%s)", message, day)
    return SyncResult(
        events_processed=events_processed,
        stats_updated=stats_updated,
        message=message,
    )


async def _sync_incremental(db: AsyncSession, batch_size: int) -> tuple[int, int]:
    events_processed = 0
    stats_updated = 0

    while True:
        result = await db.execute(
            select(UsageEvent.id, UsageEvent.user_id, UsageEvent.event_timestamp)
            .outerjoin(
                SyncCursor,
                and_(
                    SyncCursor.pipeline == LEADERBOARD_PIPELINE,
                    SyncCursor.owner_key == UsageEvent.user_id,
                ),
            )
            .where(UsageEvent.id > func.coalesce(SyncCursor.last_event_id, 0))
            .order_by(UsageEvent.id)
            .limit(batch_size)
        )
        rows = result.all()
        if not rows:
            break

        touched: dict[str, set[date]] = defaultdict(set)
        high_water: dict[str, int] = {}
        for row in rows:
            touched[row.user_id].add(as_utc(row.event_timestamp).date())
            high_water[row.user_id] = max(high_water.get(row.user_id, 0), row.id)

        for user_id, days in touched.items():
            stats_updated += await _rebuild_user_days(db, user_id, days)
            await advance_cursor(db, LEADERBOARD_PIPELINE, user_id, high_water[user_id])

        await db.commit()
        events_processed += len(rows)

        if len(rows) < batch_size:
            break

    return events_processed, stats_updated


async def _sync_day(db: AsyncSession, day: date) -> tuple[int, int]:
    start, end = day_bounds(day)
    result = await db.execute(
        select(UsageEvent.user_id, func.count(UsageEvent.id).label("cnt"))
        .where(UsageEvent.event_timestamp >= start, UsageEvent.event_timestamp < end)
        .group_by(UsageEvent.user_id)
    )
    rows = result.all()

    stats_updated = 0
    for row in rows:
        stats_updated += await _rebuild_user_days(db, row.user_id, {day})
    await db.commit()

    return sum(row.cnt for row in rows), stats_updated


async def _rebuild_user_days(db: AsyncSession, user_id: str, days: set[date]) -> int:
    """Rebuild daily rows for ``days`` then their weekly/monthly rollups."""
    for day in days:
        total = await _sum_events_for_day(db, user_id, day)
        await _upsert_stat(db, user_id, Period.DAILY, day_key(day), total)
    return len(days) + await recompute_rollups(db, user_id, days)


async def _sum_events_for_day(db: AsyncSession, user_id: str, day: date) -> int:
    start, end = day_bounds(day)
    result = await db.execute(
        select(func.coalesce(func.sum(UsageEvent.duration_ms), 0)).where(
            UsageEvent.user_id == user_id,
            UsageEvent.event_timestamp >= start,
            UsageEvent.event_timestamp < end,
        )
    )
    return int(result.scalar_one())


async def recompute_rollups(db: AsyncSession, user_id: str, days: set[date]) -> int:
    """Rebuild the weekly and monthly rows covering ``days`` from daily rows."""
    updated = 0
    for key in sorted({week_key(d) for d in days}):
        first, last = week_days(key)
        total = await _sum_daily_rows(db, user_id, first, last)
        await _upsert_stat(db, user_id, Period.WEEKLY, key, total)
        updated += 1
    for key in sorted({month_key(d) for d in days}):
        first, last = month_days(key)
        total = await _sum_daily_rows(db, user_id, first, last)
        await _upsert_stat(db, user_id, Period.MONTHLY, key, total)
        updated += 1
    return updated


async def _sum_daily_rows(db: AsyncSession, user_id: str, first_key: str, last_key: str) -> int:
    # Daily keys are ISO dates, so string order is date order.
    result = await db.execute(
        select(func.coalesce(func.sum(LeaderboardStat.total_screen_time_ms), 0)).where(
            LeaderboardStat.user_id == user_id,
            LeaderboardStat.period == Period.DAILY.value,
            LeaderboardStat.period_key >= first_key,
            LeaderboardStat.period_key <= last_key,
        )
    )
    return int(result.scalar_one())


async def _upsert_stat(db: AsyncSession, user_id: str, period: Period, key: str, total: int) -> None:
    now = utcnow()
    stmt = insert_for(db, LeaderboardStat).values(
        user_id=user_id,
        period=period.value,
        period_key=key,
        total_screen_time_ms=total,
        updated_at=now,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["user_id", "period", "period_key"],
        set_={"total_screen_time_ms": total, "updated_at": now},
    )
    await db.execute(stmt)


async def update_leaderboard_stats(
    db: AsyncSession,
    user_id: str,
    period: str,
    period_date: str,
    total_screen_time_ms: int,
    replace: bool = False,
) -> UpdateStatsResult:
    """Directly set or add to a user's daily total.

    Only daily stats can be written; weekly and monthly stats are rebuilt
    from the daily rows afterwards. A later event sync for the same day
    rebuilds the daily row from raw events.
    """
    if period != Period.DAILY.value:
        raise ValidationError(
            "Only 'daily' period is supported. Weekly and monthly stats are "
            "automatically updated from daily stats."
        )
    if not user_id:
        raise ValidationError("user_id is required")
    day = parse_day_key(period_date)
    if total_screen_time_ms < 0:
        raise ValidationError("totalScreenTime must be non-negative")

    result = await db.execute(
        select(LeaderboardStat.total_screen_time_ms).where(
            LeaderboardStat.user_id == user_id,
            LeaderboardStat.period == Period.DAILY.value,
            LeaderboardStat.period_key == period_date,
        )
    )
    existing = result.scalar_one_or_none()

    if existing is None:
        action, final_total = "created", total_screen_time_ms
    elif replace:
        action, final_total = "replaced", total_screen_time_ms
    else:
        action, final_total = "accumulated", existing + total_screen_time_ms

    try:
        await _upsert_stat(db, user_id, Period.DAILY, period_date, final_total)
        await recompute_rollups(db, user_id, {day})
        await db.commit()
    except DBAPIError as exc:
        await db.rollback()
        raise TransientStoreError(f"Leaderboard stats update failed: {exc}") from exc

    logger.info("Leaderboard stats %s for user=%s day=%s total=%d", action, user_id, period_date, final_total)
    return UpdateStatsResult(
        success=True,
        message=f"Leaderboard stats {action} successfully. Weekly and monthly stats updated automatically.",
        period=period,
        period_date=period_date,
        total_screen_time_ms=final_total,
        action=action,
    )
