"""Challenge rankings read from participant stats.

Every joined participant is ranked, with a total of 0 when they have no stat
rows yet. Totals come from a single aggregate query; sorting happens in
memory. Pure reads: nothing here writes.
"""

from __future__ import annotations

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from apptime.challenges.service import get_challenge, get_user_app_counts, parse_challenge_type
from apptime.db.models import ChallengeParticipant, ChallengeParticipantStat, ChallengeType
from apptime.errors import ValidationError
from apptime.ranking.engine import (
    ParticipantTotal,
    RankedParticipant,
    calculate_percentile,
    find_rank,
    rank_participants,
)
from apptime.ranking.schemas import ChallengeRankingEntry, ChallengeRankingsResponse


async def load_participant_totals(db: AsyncSession, challenge_id: int) -> list[ParticipantTotal]:
    """Sum of stat durations per joined participant, 0 for participants without stats."""
    totals = (
        select(
            ChallengeParticipantStat.user_id.label("user_id"),
            func.sum(ChallengeParticipantStat.duration_ms).label("total"),
        )
        .where(ChallengeParticipantStat.challenge_id == challenge_id)
        .group_by(ChallengeParticipantStat.user_id)
        .subquery()
    )
    result = await db.execute(
        select(
            ChallengeParticipant.user_id,
            ChallengeParticipant.joined_at,
            func.coalesce(totals.c.total, 0).label("total"),
        )
        .outerjoin(totals, totals.c.user_id == ChallengeParticipant.user_id)
        .where(ChallengeParticipant.challenge_id == challenge_id)
    )
    return [
        ParticipantTotal(user_id=row.user_id, total_duration_ms=int(row.total), joined_at=row.joined_at)
        for row in result
    ]


async def rank_challenge(
    db: AsyncSession, challenge_id: int, challenge_type: str | ChallengeType,
) -> list[RankedParticipant]:
    """Full ranking of a challenge's participants. Raises NotFoundError for an unknown challenge."""
    await get_challenge(db, challenge_id)
    ctype = parse_challenge_type(challenge_type)
    participants = await load_participant_totals(db, challenge_id)
    return rank_participants(participants, ctype)


async def get_challenge_rankings(
    db: AsyncSession,
    challenge_id: int,
    challenge_type: str | ChallengeType,
    limit: int = 10,
) -> list[RankedParticipant]:
    """Top ``limit`` participants. Empty for an existing challenge nobody joined."""
    if limit < 1:
        raise ValidationError("limit must be positive")
    ranked = await rank_challenge(db, challenge_id, challenge_type)
    return ranked[:limit]


async def get_user_rank(
    db: AsyncSession,
    user_id: str,
    challenge_id: int,
    challenge_type: str | ChallengeType,
) -> int | None:
    """1-based rank of ``user_id``, or None if they never joined."""
    ranked = await rank_challenge(db, challenge_id, challenge_type)
    return find_rank(ranked, user_id)


async def get_challenge_leaderboard(
    db: AsyncSession,
    challenge_id: int,
    current_user_id: str | None = None,
    limit: int = 10,
) -> ChallengeRankingsResponse:
    """Ranking for display: top entries with app counts and the caller's position."""
    if limit < 1:
        raise ValidationError("limit must be positive")
    challenge = await get_challenge(db, challenge_id)
    ranked = await rank_challenge(db, challenge_id, challenge.challenge_type)
    top = ranked[:limit]

    app_counts = await get_user_app_counts(db, challenge_id, {r.user_id for r in top})
    entries = [
        ChallengeRankingEntry(
            rank=r.rank,
            user_id=r.user_id,
            total_duration_ms=r.total_duration_ms,
            app_count=app_counts.get(r.user_id, 0),
            is_current_user=r.user_id == current_user_id if current_user_id else False,
        )
        for r in top
    ]

    user_rank = None
    user_total = None
    user_percentile = None
    if current_user_id:
        user_rank = find_rank(ranked, current_user_id)
        if user_rank is not None:
            user_total = ranked[user_rank - 1].total_duration_ms
            user_percentile = calculate_percentile(user_rank, len(ranked))

    return ChallengeRankingsResponse(
        challenge_id=challenge_id,
        challenge_type=challenge.challenge_type,
        entries=entries,
        total_participants=len(ranked),
        user_rank=user_rank,
        user_total_duration_ms=user_total,
        user_percentile=user_percentile,
    )
