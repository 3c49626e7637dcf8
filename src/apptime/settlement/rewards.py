"""Reward and coin ledger.

Rewards are unique per (challenge_id, rank); coin grants are unique per
idempotency key. Writers here never commit: the caller owns the
transaction.
"""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from apptime.db.models import CoinGrant, CoinSource, Reward, RewardSource, RewardType
from apptime.db.upsert import insert_for
from apptime.errors import SettlementRaceError
from apptime.periods import utcnow

logger = logging.getLogger(__name__)


def coins_for_rank(rank: int, schedule: list[int], default: int) -> int:
    """Coins paid for a 1-based rank.

    Ranks covered by ``schedule`` get their scheduled amount, later ranks
    get ``default``.
    """
    if rank < 1:
        raise ValueError(f"rank must be >= 1, got {rank}")
    if rank <= len(schedule):
        return schedule[rank - 1]
    return default


def challenge_idempotency_key(challenge_id: int, rank: int) -> str:
    return f"challenge:{challenge_id}:rank:{rank}"


async def has_challenge_reward(
    db: AsyncSession,
    user_id: str,
    challenge_id: int,
    rank: int | None = None,
) -> bool:
    """Whether ``user_id`` already holds a challenge reward (at ``rank`` if given)."""
    stmt = select(Reward.id).where(
        Reward.user_id == user_id,
        Reward.challenge_id == challenge_id,
        Reward.source == RewardSource.CHALLENGE_WIN.value,
    )
    if rank is not None:
        stmt = stmt.where(Reward.rank == rank)
    result = await db.execute(stmt.limit(1))
    return result.first() is not None


async def insert_challenge_reward(
    db: AsyncSession,
    user_id: str,
    challenge_id: int,
    challenge_title: str,
    rank: int,
    coins: int,
) -> int:
    """Insert the reward for (challenge, rank). Raises SettlementRaceError if taken."""
    stmt = (
        insert_for(db, Reward)
        .values(
            user_id=user_id,
            type=RewardType.COINS.value,
            source=RewardSource.CHALLENGE_WIN.value,
            title=f"Challenge Reward - Rank #{rank}",
            description=f"Reward for placing #{rank} in '{challenge_title}'",
            amount=coins,
            challenge_id=challenge_id,
            challenge_title=challenge_title,
            rank=rank,
            is_claimed=False,
            earned_at=utcnow(),
        )
        .on_conflict_do_nothing(index_elements=["challenge_id", "rank"])
        .returning(Reward.id)
    )
    reward_id = (await db.execute(stmt)).scalar_one_or_none()
    if reward_id is None:
        raise SettlementRaceError(challenge_id, rank)
    return reward_id


async def grant_coins(
    db: AsyncSession,
    user_id: str,
    amount: int,
    source: CoinSource,
    idempotency_key: str,
    description: str | None = None,
    challenge_id: int | None = None,
    challenge_title: str | None = None,
    rank: int | None = None,
    expires_at: datetime | None = None,
) -> bool:
    """Add a coin transaction. Returns False if the idempotency key was already used."""
    stmt = (
        insert_for(db, CoinGrant)
        .values(
            user_id=user_id,
            amount=amount,
            source=source.value,
            description=description,
            challenge_id=challenge_id,
            challenge_title=challenge_title,
            rank=rank,
            idempotency_key=idempotency_key,
            expires_at=expires_at,
            created_at=utcnow(),
        )
        .on_conflict_do_nothing(index_elements=["idempotency_key"])
        .returning(CoinGrant.id)
    )
    coin_id = (await db.execute(stmt)).scalar_one_or_none()
    if coin_id is None:
        logger.info("Coin grant %s already exists, skipping", idempotency_key)
        return False
    return True


async def get_rewards_by_challenge(db: AsyncSession, challenge_id: int) -> list[Reward]:
    """All rewards of a challenge, best rank first."""
    result = await db.execute(
        select(Reward)
        .where(Reward.challenge_id == challenge_id)
        .order_by(Reward.rank.asc().nulls_last(), Reward.id)
    )
    return list(result.scalars().all())


async def get_user_rewards(
    db: AsyncSession,
    user_id: str,
    source: RewardSource | None = None,
    is_claimed: bool | None = None,
    limit: int | None = None,
    offset: int = 0,
) -> list[Reward]:
    """A user's rewards, newest first."""
    stmt = select(Reward).where(Reward.user_id == user_id)
    if source is not None:
        stmt = stmt.where(Reward.source == source.value)
    if is_claimed is not None:
        stmt = stmt.where(Reward.is_claimed.is_(is_claimed))
    stmt = stmt.order_by(Reward.earned_at.desc(), Reward.id.desc()).offset(offset)
    if limit is not None:
        stmt = stmt.limit(limit)
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def get_total_coins(db: AsyncSession, user_id: str, now: datetime | None = None) -> int:
    """Sum of a user's non-expired coin transactions."""
    now = now or utcnow()
    result = await db.execute(
        select(func.coalesce(func.sum(CoinGrant.amount), 0)).where(
            CoinGrant.user_id == user_id,
            or_(CoinGrant.expires_at.is_(None), CoinGrant.expires_at > now),
        )
    )
    return int(result.scalar_one())
