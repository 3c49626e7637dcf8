"""Deterministic challenge ranking.

LESS_SCREENTIME ranks the lowest total first, MORE_SCREENTIME the highest.
Equal totals are ordered by join time (earlier joiner wins), then by user id,
so the same data always yields the same order.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone

from apptime.db.models import ChallengeType

_FAR_FUTURE = datetime(2099, 12, 31, 23, 59, 59, tzinfo=timezone.utc)


@dataclass(frozen=True)
class ParticipantTotal:
    user_id: str
    total_duration_ms: int
    joined_at: datetime | None = None


@dataclass(frozen=True)
class RankedParticipant:
    rank: int
    user_id: str
    total_duration_ms: int


def rank_participants(
    participants: list[ParticipantTotal],
    challenge_type: ChallengeType,
) -> list[RankedParticipant]:
    """Rank every participant, 1-indexed and contiguous."""
    if not participants:
        return []

    sign = 1 if challenge_type == ChallengeType.LESS_SCREENTIME else -1

    def sort_key(p: ParticipantTotal) -> tuple[int, datetime, str]:
        joined = p.joined_at or _FAR_FUTURE
        if joined.tzinfo is None:
            joined = joined.replace(tzinfo=timezone.utc)
        return (sign * p.total_duration_ms, joined, p.user_id)

    ordered = sorted(participants, key=sort_key)
    return [
        RankedParticipant(rank=idx + 1, user_id=p.user_id, total_duration_ms=p.total_duration_ms)
        for idx, p in enumerate(ordered)
    ]


def find_rank(ranked: list[RankedParticipant], user_id: str) -> int | None:
    """1-based position of ``user_id``, or None if absent."""
    for entry in ranked:
        if entry.user_id == user_id:
            return entry.rank
    return None


def calculate_percentile(rank: int, total: int) -> float:
    """Rank 1 of 100 -> 99.0, rank 100 of 100 -> 0.0."""
    if total <= 0 or rank <= 0:
        return 0.0
    return round(100 - (rank / total * 100), 2)
