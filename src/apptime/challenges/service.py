"""Challenge lookups, joins and direct stat submission."""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from apptime.aggregation.challenge_sync import insert_submitted_stats
from apptime.aggregation.schemas import ChallengeStatEntry
from apptime.db.models import Challenge, ChallengeParticipant, ChallengeParticipantStat, ChallengeType
from apptime.db.upsert import insert_for
from apptime.errors import NotFoundError, ValidationError
from apptime.periods import as_utc, utcnow

logger = logging.getLogger(__name__)


def parse_challenge_type(value: str | ChallengeType) -> ChallengeType:
    """Parse a challenge type, raising ValidationError on unknown values."""
    try:
        return ChallengeType(value)
    except ValueError as exc:
        valid = ", ".join(t.value for t in ChallengeType)
        raise ValidationError(f"Invalid challenge type '{value}'. Must be one of: {valid}") from exc


async def get_challenge(db: AsyncSession, challenge_id: int) -> Challenge:
    """Get a challenge by ID. Raises NotFoundError if missing."""
    challenge = await db.get(Challenge, challenge_id)
    if challenge is None:
        raise NotFoundError(f"Challenge {challenge_id} not found")
    return challenge


async def has_user_joined(db: AsyncSession, user_id: str, challenge_id: int) -> bool:
    result = await db.execute(
        select(ChallengeParticipant.id).where(
            ChallengeParticipant.challenge_id == challenge_id,
            ChallengeParticipant.user_id == user_id,
        )
    )
    return result.first() is not None


async def join_challenge(
    db: AsyncSession,
    user_id: str,
    challenge_id: int,
    now: datetime | None = None,
) -> ChallengeParticipant:
    """Join a challenge. Joins are permanent; there is no leave operation."""
    if not user_id:
        raise ValidationError("user_id is required")
    now = now or utcnow()
    challenge = await get_challenge(db, challenge_id)
    if not challenge.is_active or challenge.settled_at is not None:
        raise ValidationError("Challenge is not active")
    if as_utc(challenge.end_time) <= now:
        raise ValidationError("Challenge has already ended")

    stmt = (
        insert_for(db, ChallengeParticipant)
        .values(challenge_id=challenge_id, user_id=user_id, joined_at=now)
        .on_conflict_do_nothing(index_elements=["challenge_id", "user_id"])
        .returning(ChallengeParticipant.id)
    )
    inserted = (await db.execute(stmt)).scalar_one_or_none()
    if inserted is None:
        await db.rollback()
        raise ValidationError("You have already joined this challenge")
    await db.commit()

    participant = await db.get(ChallengeParticipant, inserted)
    logger.info("User %s joined challenge %d", user_id, challenge_id)
    return participant  # type: ignore[return-value]


async def submit_challenge_stats(
    db: AsyncSession,
    user_id: str,
    challenge_id: int,
    entries: list[ChallengeStatEntry],
) -> int:
    """Append client-reported usage rows for a joined participant."""
    await get_challenge(db, challenge_id)
    if not await has_user_joined(db, user_id, challenge_id):
        raise ValidationError("You must join the challenge before submitting stats")
    return await insert_submitted_stats(db, challenge_id, user_id, entries)


async def get_participant_count(db: AsyncSession, challenge_id: int) -> int:
    result = await db.execute(
        select(func.count(ChallengeParticipant.id)).where(ChallengeParticipant.challenge_id == challenge_id)
    )
    return result.scalar_one()


async def get_user_app_counts(db: AsyncSession, challenge_id: int, user_ids: set[str]) -> dict[str, int]:
    """Distinct packages used per user in a challenge, 0 for users without stats."""
    if not user_ids:
        return {}
    result = await db.execute(
        select(
            ChallengeParticipantStat.user_id,
            func.count(func.distinct(ChallengeParticipantStat.package_name)).label("apps"),
        )
        .where(
            ChallengeParticipantStat.challenge_id == challenge_id,
            ChallengeParticipantStat.user_id.in_(user_ids),
        )
        .group_by(ChallengeParticipantStat.user_id)
    )
    counts = {row.user_id: row.apps for row in result}
    return {uid: counts.get(uid, 0) for uid in user_ids}


async def get_last_sync_time(db: AsyncSession, user_id: str, challenge_id: int) -> datetime | None:
    """Most recent end_sync_time of a user's stats in a challenge."""
    result = await db.execute(
        select(func.max(ChallengeParticipantStat.end_sync_time)).where(
            ChallengeParticipantStat.challenge_id == challenge_id,
            ChallengeParticipantStat.user_id == user_id,
        )
    )
    value = result.scalar_one_or_none()
    return as_utc(value) if value is not None else None
