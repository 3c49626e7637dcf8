"""Iteration bodies of the scheduled pipeline jobs.

Each run opens its own session. Intervals (defaults):
- leaderboard sync: every 10 minutes
- challenge stats sync: every 15 minutes
- challenge rewards: every hour
"""

from __future__ import annotations

import logging
from functools import partial

from apptime.aggregation.challenge_sync import sync_challenge_stats
from apptime.aggregation.leaderboard_sync import sync_usage
from apptime.aggregation.schemas import ChallengeSyncResult, SyncResult
from apptime.config import Settings
from apptime.database import get_session_factory
from apptime.notifications.dispatcher import NotificationDispatcher
from apptime.settlement.schemas import SweepResult
from apptime.settlement.service import settle_ended_challenges
from apptime.workers.scheduler import PeriodicJob, Scheduler

logger = logging.getLogger(__name__)

LEADERBOARD_SYNC_JOB = "leaderboard-sync"
CHALLENGE_STATS_SYNC_JOB = "challenge-stats-sync"
CHALLENGE_REWARDS_JOB = "challenge-rewards"


async def run_leaderboard_sync() -> SyncResult:
    """Fold new usage events into leaderboard stats."""
    async with get_session_factory()() as db:
        result = await sync_usage(db)
    logger.info("Scheduled leaderboard sync: %s", result.message)
    return result


async def run_challenge_stats_sync() -> ChallengeSyncResult:
    """Append new usage events to active challenges."""
    async with get_session_factory()() as db:
        result = await sync_challenge_stats(db)
    logger.info("Scheduled challenge stats sync: %s", result.message)
    return result


async def run_challenge_rewards(
    dispatcher: NotificationDispatcher | None = None,
    top_n_ranks: int | None = None,
) -> SweepResult:
    """Settle challenges that ended since the last sweep."""
    async with get_session_factory()() as db:
        return await settle_ended_challenges(db, dispatcher, top_n_ranks=top_n_ranks)


def build_scheduler(settings: Settings, dispatcher: NotificationDispatcher | None = None) -> Scheduler:
    return Scheduler([
        PeriodicJob(LEADERBOARD_SYNC_JOB, settings.leaderboard_sync_interval_seconds, run_leaderboard_sync),
        PeriodicJob(
            CHALLENGE_STATS_SYNC_JOB,
            settings.challenge_stats_sync_interval_seconds,
            run_challenge_stats_sync,
        ),
        PeriodicJob(
            CHALLENGE_REWARDS_JOB,
            settings.challenge_rewards_interval_seconds,
            partial(run_challenge_rewards, dispatcher, settings.challenge_reward_top_n),
        ),
    ])
