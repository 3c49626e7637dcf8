"""Unit tests for the bounded notification dispatcher."""

import asyncio
import json
from unittest.mock import AsyncMock

from apptime.notifications.dispatcher import NotificationDispatcher
from apptime.notifications.messages import ChallengeRewardNotification, ChallengeWinnerNotification
from apptime.notifications.sender import RedisNotificationSender


def _reward(user_id: str = "u1", rank: int = 1) -> ChallengeRewardNotification:
    return ChallengeRewardNotification(
        user_id=user_id, challenge_id=1, challenge_title="Detox", rank=rank, coins=1000,
    )


class TestDispatcher:
    async def test_delivers_queued_messages(self):
        sender = AsyncMock()
        sender.notify = AsyncMock(return_value=True)
        dispatcher = NotificationDispatcher(sender, queue_size=10, workers=2, drain_timeout=1.0)
        dispatcher.start()

        assert dispatcher.enqueue(_reward("u1"))
        assert dispatcher.enqueue(_reward("u2", rank=2))
        await dispatcher.stop()

        assert dispatcher.delivered == 2
        assert dispatcher.failed == 0
        called = sorted(call.args[0] for call in sender.notify.await_args_list)
        assert called == ["u1", "u2"]
        assert sender.notify.await_args_list[0].args[1] == "challenge_reward"

    async def test_full_queue_drops_without_blocking(self):
        sender = AsyncMock()
        dispatcher = NotificationDispatcher(sender, queue_size=1, workers=1, drain_timeout=0.1)
        # Not started: nothing consumes the queue
        assert dispatcher.enqueue(_reward("u1"))
        assert not dispatcher.enqueue(_reward("u2"))
        assert dispatcher.dropped == 1
        assert dispatcher.enqueued == 1
        assert dispatcher.pending == 1

    async def test_sender_failure_is_counted_and_worker_survives(self):
        sender = AsyncMock()
        sender.notify = AsyncMock(side_effect=[RuntimeError("boom"), True])
        dispatcher = NotificationDispatcher(sender, queue_size=10, workers=1, drain_timeout=1.0)
        dispatcher.start()
        dispatcher.enqueue(_reward("u1"))
        dispatcher.enqueue(_reward("u2"))
        await dispatcher.stop()

        assert dispatcher.failed == 1
        assert dispatcher.delivered == 1

    async def test_winner_broadcast_fans_out(self):
        sender = AsyncMock()
        sender.notify = AsyncMock(return_value=True)
        dispatcher = NotificationDispatcher(sender, queue_size=10, workers=1, drain_timeout=1.0)
        dispatcher.start()
        dispatcher.enqueue(ChallengeWinnerNotification(
            winner_user_id="w", challenge_id=1, challenge_title="Detox", coins=1000,
            other_user_ids=("a", "b", "c"),
        ))
        await dispatcher.stop()
        assert sender.notify.await_count == 3
        assert dispatcher.delivered == 1

    async def test_stop_after_drain_timeout_reports_undelivered(self):
        release = asyncio.Event()

        async def slow_notify(*_args):
            await release.wait()
            return True

        sender = AsyncMock()
        sender.notify = slow_notify
        dispatcher = NotificationDispatcher(sender, queue_size=10, workers=1, drain_timeout=0.05)
        dispatcher.start()
        for i in range(3):
            dispatcher.enqueue(_reward(f"u{i}"))
        await asyncio.sleep(0)

        await dispatcher.stop()
        assert not dispatcher.running
        assert dispatcher.delivered == 0
        assert dispatcher.pending == 2


class TestRedisSender:
    async def test_publishes_to_user_channel(self):
        redis = AsyncMock()
        sender = RedisNotificationSender(redis)
        ok = await sender.notify("u1", "challenge_reward", {"title": "t", "body": "b", "deeplink": "d", "data": {}})
        assert ok
        channel = redis.publish.await_args.args[0]
        assert channel == "ws:user:u1"
        event = json.loads(redis.publish.await_args.args[1])
        assert event["event"] == "notification"
        assert event["data"]["type"] == "challenge_reward"
        assert event["data"]["description"] == "b"

    async def test_publish_failure_is_swallowed(self):
        redis = AsyncMock()
        redis.publish = AsyncMock(side_effect=ConnectionError("down"))
        sender = RedisNotificationSender(redis)
        assert await sender.notify("u1", "coins_added", {}) is False

    async def test_without_redis(self):
        assert await RedisNotificationSender(None).notify("u1", "coins_added", {}) is False
