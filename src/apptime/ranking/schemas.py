"""Pydantic schemas for leaderboard and challenge ranking responses."""

from __future__ import annotations

from pydantic import BaseModel


class LeaderboardEntry(BaseModel):
    rank: int
    user_id: str
    total_screen_time_ms: int
    is_current_user: bool = False


class LeaderboardResponse(BaseModel):
    period: str
    period_key: str
    entries: list[LeaderboardEntry]
    total: int
    user_rank: int | None = None
    user_total_screen_time_ms: int | None = None


class ChallengeRankingEntry(BaseModel):
    rank: int
    user_id: str
    total_duration_ms: int
    app_count: int = 0
    is_current_user: bool = False


class ChallengeRankingsResponse(BaseModel):
    challenge_id: int
    challenge_type: str
    entries: list[ChallengeRankingEntry]
    total_participants: int
    user_rank: int | None = None
    user_total_duration_ms: int | None = None
    user_percentile: float | None = None


class UserRankResponse(BaseModel):
    challenge_id: int
    user_id: str
    rank: int | None
    total_participants: int
