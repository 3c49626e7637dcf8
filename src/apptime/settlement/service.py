"""Challenge settlement: pay out the final ranking of ended challenges.

A challenge is settled once: its top ranks get a reward row plus a coin
grant, then it is marked settled and inactive in the same transaction.
The unique (challenge_id, rank) key on rewards keeps concurrent sweeps from
paying a rank twice; the loser of such a race skips that rank.

Notifications are queued only after the commit and never fail settlement.
"""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from apptime.challenges.service import get_challenge
from apptime.config import get_settings
from apptime.db.models import Challenge, CoinSource
from apptime.errors import SettlementRaceError, TransientStoreError, ValidationError
from apptime.notifications.dispatcher import NotificationDispatcher
from apptime.notifications.messages import (
    ChallengeRewardNotification,
    ChallengeWinnerNotification,
    CoinsAddedNotification,
)
from apptime.periods import as_utc, utcnow
from apptime.ranking.engine import RankedParticipant
from apptime.ranking.service import rank_challenge
from apptime.settlement.rewards import (
    challenge_idempotency_key,
    coins_for_rank,
    grant_coins,
    has_challenge_reward,
    insert_challenge_reward,
)
from apptime.settlement.schemas import SettlementResult, SweepResult

logger = logging.getLogger(__name__)


async def get_recently_ended_challenges(db: AsyncSession, now: datetime | None = None) -> list[int]:
    """Ids of challenges that ended and have not been settled."""
    now = now or utcnow()
    result = await db.execute(
        select(Challenge.id)
        .where(Challenge.end_time <= now, Challenge.settled_at.is_(None))
        .order_by(Challenge.end_time, Challenge.id)
    )
    return [row[0] for row in result]


async def award_challenge_rewards(
    db: AsyncSession,
    challenge_id: int,
    top_n_ranks: int | None = None,
    dispatcher: NotificationDispatcher | None = None,
    now: datetime | None = None,
) -> SettlementResult:
    """Reward the top ranks of an ended challenge and mark it settled."""
    settings = get_settings()
    now = now or utcnow()
    top_n = top_n_ranks if top_n_ranks is not None else settings.challenge_reward_top_n
    if top_n < 1:
        raise ValidationError("top_n_ranks must be positive")

    challenge = await get_challenge(db, challenge_id)
    if as_utc(challenge.end_time) > now:
        raise ValidationError("Challenge has not ended yet")
    if challenge.settled_at is not None:
        return SettlementResult(
            challenge_id=challenge_id, rewards_awarded=0, message="Challenge already settled",
        )

    title = challenge.title
    awarded: list[tuple[RankedParticipant, int, bool]] = []
    try:
        ranked = await rank_challenge(db, challenge_id, challenge.challenge_type)
        for entry in ranked[:top_n]:
            if await has_challenge_reward(db, entry.user_id, challenge_id, rank=entry.rank):
                continue
            coins = coins_for_rank(
                entry.rank,
                settings.challenge_reward_schedule,
                settings.challenge_reward_default_coins,
            )
            try:
                await insert_challenge_reward(db, entry.user_id, challenge_id, title, entry.rank, coins)
            except SettlementRaceError as exc:
                logger.info("Skipping rank: %s", exc)
                continue
            granted = await grant_coins(
                db,
                user_id=entry.user_id,
                amount=coins,
                source=CoinSource.CHALLENGE_WIN,
                idempotency_key=challenge_idempotency_key(challenge_id, entry.rank),
                description=f"Rank #{entry.rank} in '{title}'",
                challenge_id=challenge_id,
                challenge_title=title,
                rank=entry.rank,
            )
            awarded.append((entry, coins, granted))

        challenge.settled_at = now
        challenge.is_active = False
        await db.commit()
    except DBAPIError as exc:
        await db.rollback()
        raise TransientStoreError(f"Settlement of challenge {challenge_id} failed: {exc}") from exc

    if dispatcher is not None and awarded:
        _queue_notifications(dispatcher, challenge_id, title, awarded, ranked, settings.challenge_winner_broadcast)

    if not ranked:
        message = "No participants to reward"
    else:
        message = f"Awarded {len(awarded)} rewards to top {min(top_n, len(ranked))} ranks"
    logger.info("Challenge %d settled: %s", challenge_id, message)
    return SettlementResult(challenge_id=challenge_id, rewards_awarded=len(awarded), message=message)


def _queue_notifications(
    dispatcher: NotificationDispatcher,
    challenge_id: int,
    title: str,
    awarded: list[tuple[RankedParticipant, int, bool]],
    ranked: list[RankedParticipant],
    broadcast_winner: bool,
) -> None:
    try:
        for entry, coins, granted in awarded:
            dispatcher.enqueue(ChallengeRewardNotification(
                user_id=entry.user_id,
                challenge_id=challenge_id,
                challenge_title=title,
                rank=entry.rank,
                coins=coins,
            ))
            # Only a new coin row changes the balance
            if granted:
                dispatcher.enqueue(CoinsAddedNotification(
                    user_id=entry.user_id,
                    amount=coins,
                    source=CoinSource.CHALLENGE_WIN.value,
                    description=f"Rank #{entry.rank} in '{title}'",
                ))

        winner = next(((e, c) for e, c, _ in awarded if e.rank == 1), None)
        if broadcast_winner and winner is not None:
            entry, coins = winner
            others = tuple(r.user_id for r in ranked if r.user_id != entry.user_id)
            if others:
                dispatcher.enqueue(ChallengeWinnerNotification(
                    winner_user_id=entry.user_id,
                    challenge_id=challenge_id,
                    challenge_title=title,
                    coins=coins,
                    other_user_ids=others,
                ))
    except Exception:
        logger.warning("Failed to queue notifications for challenge %d", challenge_id, exc_info=True)


async def settle_ended_challenges(
    db: AsyncSession,
    dispatcher: NotificationDispatcher | None = None,
    now: datetime | None = None,
    top_n_ranks: int | None = None,
) -> SweepResult:
    """Settle every ended, unsettled challenge. One failure does not stop the rest."""
    now = now or utcnow()
    challenge_ids = await get_recently_ended_challenges(db, now)
    if not challenge_ids:
        logger.info("No recently ended challenges found")
        return SweepResult(challenges_found=0, challenges_settled=0, rewards_awarded=0, errors=0)

    logger.info("Found %d recently ended challenge(s)", len(challenge_ids))
    settled = 0
    rewards = 0
    errors = 0
    for challenge_id in challenge_ids:
        try:
            result = await award_challenge_rewards(
                db, challenge_id, top_n_ranks=top_n_ranks, dispatcher=dispatcher, now=now,
            )
        except Exception:
            errors += 1
            await db.rollback()
            logger.exception("Error awarding rewards for challenge %d", challenge_id)
            continue
        settled += 1
        rewards += result.rewards_awarded

    logger.info(
        "Challenge rewards sweep completed: %d settled, %d rewards, %d errors",
        settled, rewards, errors,
    )
    return SweepResult(
        challenges_found=len(challenge_ids),
        challenges_settled=settled,
        rewards_awarded=rewards,
        errors=errors,
    )
