"""Challenge settlement and the reward ledger."""

import asyncio
from datetime import timedelta
from unittest.mock import MagicMock

import pytest
from sqlalchemy import func, select

from apptime.aggregation.challenge_sync import sync_challenge_stats
from apptime.database import get_session_factory
from apptime.db.models import Challenge, CoinGrant, CoinSource, Reward
from apptime.errors import SettlementRaceError, ValidationError
from apptime.notifications.messages import NotificationKind
from apptime.settlement.rewards import (
    challenge_idempotency_key,
    get_rewards_by_challenge,
    get_total_coins,
    get_user_rewards,
    grant_coins,
    has_challenge_reward,
    insert_challenge_reward,
)
from apptime.settlement.service import award_challenge_rewards, get_recently_ended_challenges, settle_ended_challenges
from conftest import add_challenge, add_event, add_participant, utc

START = utc(2024, 1, 10)
END = utc(2024, 1, 20)
AFTER_END = END + timedelta(hours=1)


async def _ended_challenge(db, users: dict[str, int], title: str = "Digital Detox") -> int:
    challenge = await add_challenge(db, START, END, title=title)
    for user_id, total in users.items():
        await add_participant(db, challenge, user_id)
        if total:
            await add_event(db, user_id, utc(2024, 1, 12, 9), total)
    await db.commit()
    await sync_challenge_stats(db)
    return challenge.id


async def _count(db, model) -> int:
    return (await db.execute(select(func.count(model.id)))).scalar_one()


class TestAwardChallengeRewards:
    async def test_pays_schedule_and_marks_settled(self, db_session):
        cid = await _ended_challenge(db_session, {"A": 0, "B": 5000, "C": 2000, "D": 9000, "E": 7000})
        result = await award_challenge_rewards(db_session, cid, top_n_ranks=4, now=AFTER_END)
        assert result.rewards_awarded == 4

        rewards = await get_rewards_by_challenge(db_session, cid)
        assert [(r.rank, r.user_id, r.amount) for r in rewards] == [
            (1, "A", 1000), (2, "C", 500), (3, "B", 250), (4, "E", 100),
        ]
        assert await get_total_coins(db_session, "A") == 1000

        challenge = await db_session.get(Challenge, cid)
        assert challenge.settled_at is not None
        assert challenge.is_active is False

    async def test_second_run_awards_nothing(self, db_session):
        cid = await _ended_challenge(db_session, {"A": 0, "B": 10})
        await award_challenge_rewards(db_session, cid, now=AFTER_END)
        again = await award_challenge_rewards(db_session, cid, now=AFTER_END)
        assert again.rewards_awarded == 0
        assert await _count(db_session, Reward) == 2
        assert await _count(db_session, CoinGrant) == 2

    async def test_existing_rank_reward_is_skipped_on_retry(self, db_session):
        cid = await _ended_challenge(db_session, {"A": 0, "B": 10})
        # A crashed earlier run paid rank 1 but never marked the challenge settled
        await insert_challenge_reward(db_session, "A", cid, "Digital Detox", 1, 1000)
        await db_session.commit()

        result = await award_challenge_rewards(db_session, cid, now=AFTER_END)
        assert result.rewards_awarded == 1
        assert await _count(db_session, Reward) == 2

    async def test_not_ended(self, db_session):
        cid = await _ended_challenge(db_session, {"A": 0})
        with pytest.raises(ValidationError, match="not ended"):
            await award_challenge_rewards(db_session, cid, now=END - timedelta(minutes=1))
        assert await _count(db_session, Reward) == 0

    async def test_no_participants_still_settles(self, db_session):
        cid = await _ended_challenge(db_session, {})
        result = await award_challenge_rewards(db_session, cid, now=AFTER_END)
        assert result.rewards_awarded == 0
        assert result.message == "No participants to reward"
        assert await get_recently_ended_challenges(db_session, AFTER_END) == []

    async def test_queues_reward_and_winner_notifications(self, db_session):
        cid = await _ended_challenge(db_session, {"A": 0, "B": 10, "C": 20})
        dispatcher = MagicMock()
        await award_challenge_rewards(db_session, cid, top_n_ranks=2, dispatcher=dispatcher, now=AFTER_END)

        messages = [call.args[0] for call in dispatcher.enqueue.call_args_list]
        kinds = [m.kind for m in messages]
        assert kinds.count(NotificationKind.CHALLENGE_REWARD) == 2
        coins = [m for m in messages if m.kind is NotificationKind.COINS_ADDED]
        assert [(m.user_id, m.amount) for m in coins] == [("A", 1000), ("B", 500)]
        assert coins[0].source == "CHALLENGE_WIN"
        winner = next(m for m in messages if m.kind is NotificationKind.CHALLENGE_WINNER)
        assert winner.winner_user_id == "A"
        assert set(winner.other_user_ids) == {"B", "C"}

    async def test_no_coin_notice_when_grant_already_exists(self, db_session):
        cid = await _ended_challenge(db_session, {"A": 0, "B": 10})
        await grant_coins(db_session, "A", 1000, CoinSource.CHALLENGE_WIN, challenge_idempotency_key(cid, 1))
        await db_session.commit()
        dispatcher = MagicMock()
        await award_challenge_rewards(db_session, cid, dispatcher=dispatcher, now=AFTER_END)

        messages = [call.args[0] for call in dispatcher.enqueue.call_args_list]
        coin_users = [m.user_id for m in messages if m.kind is NotificationKind.COINS_ADDED]
        assert coin_users == ["B"]
        assert await get_total_coins(db_session, "A") == 1000

    async def test_notification_failure_does_not_fail_settlement(self, db_session):
        cid = await _ended_challenge(db_session, {"A": 0})
        dispatcher = MagicMock()
        dispatcher.enqueue.side_effect = RuntimeError("queue broken")
        result = await award_challenge_rewards(db_session, cid, dispatcher=dispatcher, now=AFTER_END)
        assert result.rewards_awarded == 1


class TestSettleEndedChallenges:
    async def test_concurrent_settlements_pay_each_rank_once(self, db_session):
        cid = await _ended_challenge(db_session, {"A": 0, "B": 10, "C": 20})
        factory = get_session_factory()
        async with factory() as first, factory() as second:
            await asyncio.gather(
                award_challenge_rewards(first, cid, top_n_ranks=3, now=AFTER_END),
                award_challenge_rewards(second, cid, top_n_ranks=3, now=AFTER_END),
            )

        rewards = await get_rewards_by_challenge(db_session, cid)
        assert [r.rank for r in rewards] == [1, 2, 3]
        assert await _count(db_session, CoinGrant) == 3

    async def test_sweep_settles_each_ended_challenge_once(self, db_session):
        first = await _ended_challenge(db_session, {"A": 0, "B": 10}, title="One")
        second = await _ended_challenge(db_session, {"C": 0}, title="Two")
        running = await add_challenge(db_session, START, AFTER_END + timedelta(days=5), title="Running")
        await db_session.commit()
        running_id = running.id

        assert await get_recently_ended_challenges(db_session, AFTER_END) == [first, second]
        sweep = await settle_ended_challenges(db_session, now=AFTER_END)
        assert sweep.challenges_settled == 2
        assert sweep.rewards_awarded == 3
        assert sweep.errors == 0

        again = await settle_ended_challenges(db_session, now=AFTER_END)
        assert again.challenges_found == 0
        assert await _count(db_session, Reward) == 3
        assert running_id not in await get_recently_ended_challenges(db_session, AFTER_END)


class TestRewardLedger:
    async def test_unique_rank_raises_race_error(self, db_session):
        cid = await _ended_challenge(db_session, {"A": 0, "B": 0})
        await insert_challenge_reward(db_session, "A", cid, "Digital Detox", 1, 1000)
        with pytest.raises(SettlementRaceError):
            await insert_challenge_reward(db_session, "B", cid, "Digital Detox", 1, 1000)

    async def test_has_challenge_reward(self, db_session):
        cid = await _ended_challenge(db_session, {"A": 0})
        await insert_challenge_reward(db_session, "A", cid, "Digital Detox", 1, 1000)
        await db_session.commit()
        assert await has_challenge_reward(db_session, "A", cid, rank=1)
        assert await has_challenge_reward(db_session, "A", cid)
        assert not await has_challenge_reward(db_session, "A", cid, rank=2)
        assert len(await get_user_rewards(db_session, "A")) == 1

    async def test_coin_idempotency_and_expiry(self, db_session):
        now = utc(2024, 2, 1)
        assert await grant_coins(db_session, "U", 100, CoinSource.CHALLENGE_WIN, "k1")
        assert not await grant_coins(db_session, "U", 100, CoinSource.CHALLENGE_WIN, "k1")
        await grant_coins(db_session, "U", 50, CoinSource.CHALLENGE_WIN, "k2", expires_at=now - timedelta(days=1))
        await grant_coins(db_session, "U", 25, CoinSource.CHALLENGE_WIN, "k3", expires_at=now + timedelta(days=1))
        await db_session.commit()
        assert await get_total_coins(db_session, "U", now=now) == 125
