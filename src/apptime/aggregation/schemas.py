"""Pydantic schemas for sync results and direct stat submissions."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


class SyncResult(BaseModel):
    events_processed: int
    stats_updated: int
    message: str


class ChallengeSyncResult(BaseModel):
    events_processed: int
    challenges_processed: int
    stats_created: int
    users_updated: int
    message: str


class UpdateStatsRequest(BaseModel):
    user_id: str
    period: str = "daily"
    period_date: str
    total_screen_time_ms: int
    replace: bool = False


class UpdateStatsResult(BaseModel):
    success: bool
    message: str
    period: str
    period_date: str
    total_screen_time_ms: int
    action: str  # created, replaced, accumulated


class ChallengeStatEntry(BaseModel):
    app_name: str | None = None
    package_name: str
    start_sync_time: datetime
    end_sync_time: datetime
    duration_ms: int


class SubmitChallengeStatsRequest(BaseModel):
    user_id: str
    stats: list[ChallengeStatEntry]


class SubmitChallengeStatsResponse(BaseModel):
    challenge_id: int
    stats_created: int
