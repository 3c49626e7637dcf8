"""Daily, weekly and monthly screen-time leaderboards.

Reads leaderboard_stats rows for one period key. The sort direction comes
from settings (ascending = least screen time first); equal totals are
ordered by user id.
"""

from __future__ import annotations

from sqlalchemy import and_, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from apptime.config import get_settings
from apptime.db.models import LeaderboardStat, Period
from apptime.errors import ValidationError
from apptime.periods import day_key, month_key, parse_day_key, parse_month_key, parse_week_key, utcnow, week_key
from apptime.ranking.schemas import LeaderboardEntry, LeaderboardResponse


def _ascending() -> bool:
    order = get_settings().leaderboard_sort_order.lower()
    if order not in ("asc", "desc"):
        raise ValidationError(f"Invalid leaderboard sort order: {order}")
    return order == "asc"


async def get_daily_leaderboard(
    db: AsyncSession,
    date_key: str | None = None,
    current_user_id: str | None = None,
    limit: int | None = None,
) -> LeaderboardResponse:
    """Leaderboard for one day ('YYYY-MM-DD', default today UTC)."""
    if date_key is None:
        date_key = day_key(utcnow().date())
    else:
        parse_day_key(date_key)
    return await get_leaderboard(db, Period.DAILY, date_key, current_user_id, limit)


async def get_weekly_leaderboard(
    db: AsyncSession,
    week: str | None = None,
    current_user_id: str | None = None,
    limit: int | None = None,
) -> LeaderboardResponse:
    """Leaderboard for one ISO week ('YYYY-Www', default current week)."""
    if week is None:
        week = week_key(utcnow().date())
    else:
        parse_week_key(week)
    return await get_leaderboard(db, Period.WEEKLY, week, current_user_id, limit)


async def get_monthly_leaderboard(
    db: AsyncSession,
    month: str | None = None,
    current_user_id: str | None = None,
    limit: int | None = None,
) -> LeaderboardResponse:
    """Leaderboard for one month ('YYYY-MM', default current month)."""
    if month is None:
        month = month_key(utcnow().date())
    else:
        parse_month_key(month)
    return await get_leaderboard(db, Period.MONTHLY, month, current_user_id, limit)


async def get_leaderboard(
    db: AsyncSession,
    period: Period,
    period_key: str,
    current_user_id: str | None = None,
    limit: int | None = None,
) -> LeaderboardResponse:
    """Top ``limit`` users for a period key plus the caller's rank."""
    if limit is None:
        limit = get_settings().leaderboard_default_limit
    if limit < 1:
        raise ValidationError("limit must be positive")

    ascending = _ascending()
    total_col = LeaderboardStat.total_screen_time_ms
    order = total_col.asc() if ascending else total_col.desc()

    base = (
        LeaderboardStat.period == period.value,
        LeaderboardStat.period_key == period_key,
    )
    result = await db.execute(
        select(LeaderboardStat.user_id, total_col)
        .where(*base)
        .order_by(order, LeaderboardStat.user_id.asc())
        .limit(limit)
    )
    rows = result.all()

    total_result = await db.execute(select(func.count(LeaderboardStat.id)).where(*base))
    total = total_result.scalar_one()

    entries = [
        LeaderboardEntry(
            rank=idx + 1,
            user_id=row.user_id,
            total_screen_time_ms=row.total_screen_time_ms,
            is_current_user=row.user_id == current_user_id if current_user_id else False,
        )
        for idx, row in enumerate(rows)
    ]

    user_rank = None
    user_total = None
    if current_user_id:
        user_rank, user_total = await _user_rank(db, period, period_key, current_user_id, ascending)

    return LeaderboardResponse(
        period=period.value,
        period_key=period_key,
        entries=entries,
        total=total,
        user_rank=user_rank,
        user_total_screen_time_ms=user_total,
    )


async def _user_rank(
    db: AsyncSession,
    period: Period,
    period_key: str,
    user_id: str,
    ascending: bool,
) -> tuple[int | None, int | None]:
    """Rank = 1 + number of rows ordered ahead of the user's row."""
    base = (
        LeaderboardStat.period == period.value,
        LeaderboardStat.period_key == period_key,
    )
    result = await db.execute(
        select(LeaderboardStat.total_screen_time_ms).where(*base, LeaderboardStat.user_id == user_id)
    )
    user_total = result.scalar_one_or_none()
    if user_total is None:
        return None, None

    total_col = LeaderboardStat.total_screen_time_ms
    better = total_col < user_total if ascending else total_col > user_total
    ahead = await db.execute(
        select(func.count(LeaderboardStat.id)).where(
            *base,
            or_(better, and_(total_col == user_total, LeaderboardStat.user_id < user_id)),
        )
    )
    return ahead.scalar_one() + 1, user_total

