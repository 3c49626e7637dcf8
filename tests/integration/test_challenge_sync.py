"""Challenge aggregation, joins and direct stat submission."""

from datetime import timedelta

import pytest
from sqlalchemy import func, select

from apptime.aggregation.challenge_sync import sync_challenge_stats
from apptime.aggregation.schemas import ChallengeStatEntry
from apptime.challenges.service import get_last_sync_time, join_challenge, submit_challenge_stats
from apptime.db.models import ChallengeParticipantStat
from apptime.errors import NotFoundError, ValidationError
from conftest import add_challenge, add_event, add_participant, utc

START = utc(2024, 1, 10)
END = utc(2024, 1, 20)


async def _totals(db, challenge_id: int) -> dict[str, int]:
    result = await db.execute(
        select(ChallengeParticipantStat.user_id, func.sum(ChallengeParticipantStat.duration_ms))
        .where(ChallengeParticipantStat.challenge_id == challenge_id)
        .group_by(ChallengeParticipantStat.user_id)
    )
    return {row[0]: row[1] for row in result}


class TestSyncChallengeStats:
    async def test_only_qualifying_events_are_folded(self, db_session):
        challenge = await add_challenge(db_session, START, END)
        await add_participant(db_session, challenge, "A")
        await add_participant(db_session, challenge, "late", joined_at=utc(2024, 1, 15))

        await add_event(db_session, "A", utc(2024, 1, 12, 9), 1000)
        await add_event(db_session, "A", utc(2024, 1, 9, 9), 5000)  # before start
        await add_event(db_session, "A", utc(2024, 1, 21, 9), 5000)  # after end
        await add_event(db_session, "late", utc(2024, 1, 12, 9), 7000)  # before joining
        await add_event(db_session, "late", utc(2024, 1, 16, 9), 300)
        await add_event(db_session, "stranger", utc(2024, 1, 12, 9), 9999)  # never joined
        await db_session.commit()

        result = await sync_challenge_stats(db_session)
        assert result.events_processed == 2
        assert result.stats_created == 2
        assert result.users_updated == 2
        assert await _totals(db_session, challenge.id) == {"A": 1000, "late": 300}

    async def test_rerun_does_not_duplicate(self, db_session):
        challenge = await add_challenge(db_session, START, END)
        await add_participant(db_session, challenge, "A")
        await add_event(db_session, "A", utc(2024, 1, 12, 9), 1000)
        await db_session.commit()

        await sync_challenge_stats(db_session)
        again = await sync_challenge_stats(db_session)
        assert again.events_processed == 0
        assert again.message == "No new usage events for active challenges"

        # Date mode re-reads the day; the (challenge, event) key keeps it a no-op
        by_date = await sync_challenge_stats(db_session, "2024-01-12")
        assert by_date.events_processed == 1
        assert by_date.stats_created == 0
        assert await _totals(db_session, challenge.id) == {"A": 1000}

    async def test_package_filter(self, db_session):
        challenge = await add_challenge(db_session, START, END, package_names="com.social.app, com.video.app")
        await add_participant(db_session, challenge, "A")
        await add_event(db_session, "A", utc(2024, 1, 12, 9), 1000, package_name="com.social.app")
        await add_event(db_session, "A", utc(2024, 1, 12, 10), 2000, package_name="com.work.app")
        await db_session.commit()

        await sync_challenge_stats(db_session)
        assert await _totals(db_session, challenge.id) == {"A": 1000}

    async def test_no_active_challenges(self, db_session):
        result = await sync_challenge_stats(db_session)
        assert result.challenges_processed == 0
        assert result.message == "No active challenges to sync"

    async def test_event_window_from_epoch_millis(self, db_session):
        challenge = await add_challenge(db_session, START, END)
        await add_participant(db_session, challenge, "A")
        event = await add_event(db_session, "A", utc(2024, 1, 12, 9), 60_000)
        event.start_time = int(utc(2024, 1, 12, 8, 59).timestamp() * 1000)
        event.end_time = int(utc(2024, 1, 12, 9).timestamp() * 1000)
        await db_session.commit()

        await sync_challenge_stats(db_session)
        last = await get_last_sync_time(db_session, "A", challenge.id)
        assert last == utc(2024, 1, 12, 9)


class TestJoinChallenge:
    async def test_join_once(self, db_session):
        challenge = await add_challenge(db_session, START, END)
        await db_session.commit()
        now = START + timedelta(days=1)

        participant = await join_challenge(db_session, "A", challenge.id, now=now)
        assert participant.user_id == "A"
        with pytest.raises(ValidationError, match="already joined"):
            await join_challenge(db_session, "A", challenge.id, now=now)

    async def test_cannot_join_ended_challenge(self, db_session):
        challenge = await add_challenge(db_session, START, END)
        await db_session.commit()
        with pytest.raises(ValidationError, match="ended"):
            await join_challenge(db_session, "A", challenge.id, now=END + timedelta(seconds=1))

    async def test_unknown_challenge(self, db_session):
        with pytest.raises(NotFoundError):
            await join_challenge(db_session, "A", 404)


class TestSubmitChallengeStats:
    def _entry(self, duration_ms: int = 1000, end_offset: int = 1) -> ChallengeStatEntry:
        return ChallengeStatEntry(
            app_name="Video",
            package_name="com.video.app",
            start_sync_time=utc(2024, 1, 12, 9),
            end_sync_time=utc(2024, 1, 12, 9) + timedelta(hours=end_offset),
            duration_ms=duration_ms,
        )

    async def test_submit_appends_rows(self, db_session):
        challenge = await add_challenge(db_session, START, END)
        await add_participant(db_session, challenge, "A")
        await db_session.commit()

        created = await submit_challenge_stats(db_session, "A", challenge.id, [self._entry(), self._entry(500)])
        assert created == 2
        assert await _totals(db_session, challenge.id) == {"A": 1500}

    async def test_validation(self, db_session):
        challenge = await add_challenge(db_session, START, END)
        await add_participant(db_session, challenge, "A")
        await db_session.commit()

        with pytest.raises(ValidationError, match="empty"):
            await submit_challenge_stats(db_session, "A", challenge.id, [])
        with pytest.raises(ValidationError, match="positive"):
            await submit_challenge_stats(db_session, "A", challenge.id, [self._entry(duration_ms=0)])
        with pytest.raises(ValidationError, match="precedes"):
            await submit_challenge_stats(db_session, "A", challenge.id, [self._entry(end_offset=-1)])
        with pytest.raises(ValidationError, match="join"):
            await submit_challenge_stats(db_session, "B", challenge.id, [self._entry()])
        assert await _totals(db_session, challenge.id) == {}
