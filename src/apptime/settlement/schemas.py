"""Pydantic schemas for settlement results and the reward ledger."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict


class SettlementResult(BaseModel):
    challenge_id: int
    rewards_awarded: int
    message: str


class SweepResult(BaseModel):
    challenges_found: int
    challenges_settled: int
    rewards_awarded: int
    errors: int


class RewardResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: str
    type: str
    source: str
    title: str
    description: str | None = None
    amount: int
    challenge_id: int | None = None
    challenge_title: str | None = None
    rank: int | None = None
    is_claimed: bool
    earned_at: datetime
