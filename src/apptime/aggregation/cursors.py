"""High-water marks for incremental aggregation."""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from apptime.db.models import SyncCursor
from apptime.db.upsert import insert_for
from apptime.periods import utcnow

LEADERBOARD_PIPELINE = "leaderboard"
CHALLENGE_PIPELINE = "challenge"


async def get_cursor(db: AsyncSession, pipeline: str, owner_key: str) -> int:
    """Last event id folded in for this owner, 0 if never synced."""
    result = await db.execute(
        select(SyncCursor.last_event_id).where(
            SyncCursor.pipeline == pipeline,
            SyncCursor.owner_key == owner_key,
        )
    )
    return result.scalar_one_or_none() or 0


async def advance_cursor(db: AsyncSession, pipeline: str, owner_key: str, last_event_id: int) -> None:
    """Move the high-water mark. Does not commit.

    A cursor that moves backwards only causes already-counted keys to be
    recomputed, which is harmless since totals are rebuilt, not incremented.
    """
    now = utcnow()
    stmt = insert_for(db, SyncCursor).values(
        pipeline=pipeline,
        owner_key=owner_key,
        last_event_id=last_event_id,
        updated_at=now,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["pipeline", "owner_key"],
        set_={"last_event_id": last_event_id, "updated_at": now},
    )
    await db.execute(stmt)
