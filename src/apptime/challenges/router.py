"""Challenge API: rankings, membership, stats and settlement."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from apptime.aggregation.challenge_sync import sync_challenge_stats
from apptime.aggregation.schemas import (
    ChallengeSyncResult,
    SubmitChallengeStatsRequest,
    SubmitChallengeStatsResponse,
)
from apptime.challenges.schemas import JoinChallengeRequest, JoinChallengeResponse
from apptime.challenges.service import get_challenge, get_participant_count, join_challenge, submit_challenge_stats
from apptime.dependencies import get_db, get_dispatcher
from apptime.notifications.dispatcher import NotificationDispatcher
from apptime.periods import as_utc
from apptime.ranking.schemas import ChallengeRankingsResponse, UserRankResponse
from apptime.ranking.service import get_challenge_leaderboard, get_user_rank
from apptime.settlement.rewards import get_rewards_by_challenge
from apptime.settlement.schemas import RewardResponse, SettlementResult
from apptime.settlement.service import award_challenge_rewards

router = APIRouter(prefix="/api/v1/challenges", tags=["Challenges"])


@router.post("/sync", response_model=ChallengeSyncResult)
async def trigger_sync(
    date: str | None = Query(None, description="Only fold events of one UTC day"),
    db: AsyncSession = Depends(get_db),  # noqa: B008
) -> ChallengeSyncResult:
    return await sync_challenge_stats(db, date)


@router.get("/{challenge_id}/rankings", response_model=ChallengeRankingsResponse)
async def challenge_rankings(
    challenge_id: int,
    user_id: str | None = Query(None),
    limit: int = Query(10, ge=1, le=500),
    db: AsyncSession = Depends(get_db),  # noqa: B008
) -> ChallengeRankingsResponse:
    return await get_challenge_leaderboard(db, challenge_id, current_user_id=user_id, limit=limit)


@router.get("/{challenge_id}/rank", response_model=UserRankResponse)
async def user_rank(
    challenge_id: int,
    user_id: str = Query(...),
    db: AsyncSession = Depends(get_db),  # noqa: B008
) -> UserRankResponse:
    challenge = await get_challenge(db, challenge_id)
    rank = await get_user_rank(db, user_id, challenge_id, challenge.challenge_type)
    total = await get_participant_count(db, challenge_id)
    return UserRankResponse(challenge_id=challenge_id, user_id=user_id, rank=rank, total_participants=total)


@router.post("/{challenge_id}/join", response_model=JoinChallengeResponse)
async def join(
    challenge_id: int,
    body: JoinChallengeRequest,
    db: AsyncSession = Depends(get_db),  # noqa: B008
) -> JoinChallengeResponse:
    participant = await join_challenge(db, body.user_id, challenge_id)
    return JoinChallengeResponse(
        challenge_id=challenge_id,
        user_id=participant.user_id,
        joined_at=as_utc(participant.joined_at),
    )


@router.post("/{challenge_id}/stats", response_model=SubmitChallengeStatsResponse)
async def submit_stats(
    challenge_id: int,
    body: SubmitChallengeStatsRequest,
    db: AsyncSession = Depends(get_db),  # noqa: B008
) -> SubmitChallengeStatsResponse:
    created = await submit_challenge_stats(db, body.user_id, challenge_id, body.stats)
    return SubmitChallengeStatsResponse(challenge_id=challenge_id, stats_created=created)


@router.post("/{challenge_id}/settle", response_model=SettlementResult)
async def settle(
    challenge_id: int,
    top_n: int | None = Query(None, ge=1, le=100),
    db: AsyncSession = Depends(get_db),  # noqa: B008
    dispatcher: NotificationDispatcher | None = Depends(get_dispatcher),  # noqa: B008
) -> SettlementResult:
    return await award_challenge_rewards(db, challenge_id, top_n_ranks=top_n, dispatcher=dispatcher)


@router.get("/{challenge_id}/rewards", response_model=list[RewardResponse])
async def challenge_rewards(
    challenge_id: int,
    db: AsyncSession = Depends(get_db),  # noqa: B008
) -> list[RewardResponse]:
    await get_challenge(db, challenge_id)
    rewards = await get_rewards_by_challenge(db, challenge_id)
    return [RewardResponse.model_validate(r) for r in rewards]
