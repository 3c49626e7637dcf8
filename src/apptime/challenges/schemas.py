"""Pydantic schemas for challenge membership."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


class JoinChallengeRequest(BaseModel):
    user_id: str


class JoinChallengeResponse(BaseModel):
    challenge_id: int
    user_id: str
    joined_at: datetime
