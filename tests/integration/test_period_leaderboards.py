"""Daily, weekly and monthly leaderboard reads."""

import pytest

from apptime.aggregation.leaderboard_sync import update_leaderboard_stats
from apptime.config import get_settings
from apptime.errors import ValidationError
from apptime.ranking.leaderboard import get_daily_leaderboard, get_monthly_leaderboard, get_weekly_leaderboard


async def _seed(db):
    for user_id, total in [("carol", 3000), ("alice", 1000), ("bob", 1000), ("dave", 9000)]:
        await update_leaderboard_stats(db, user_id, "daily", "2024-01-15", total)


class TestPeriodLeaderboards:
    async def test_ascending_with_user_id_tiebreak(self, db_session):
        await _seed(db_session)
        board = await get_daily_leaderboard(db_session, "2024-01-15", current_user_id="carol")
        assert [e.user_id for e in board.entries] == ["alice", "bob", "carol", "dave"]
        assert [e.rank for e in board.entries] == [1, 2, 3, 4]
        assert board.total == 4
        assert board.user_rank == 3
        assert board.user_total_screen_time_ms == 3000
        assert [e.is_current_user for e in board.entries] == [False, False, True, False]

    async def test_user_rank_beyond_limit(self, db_session):
        await _seed(db_session)
        board = await get_daily_leaderboard(db_session, "2024-01-15", current_user_id="dave", limit=2)
        assert len(board.entries) == 2
        assert board.user_rank == 4

    async def test_descending_order_setting(self, db_session, monkeypatch):
        monkeypatch.setenv("APPTIME_LEADERBOARD_SORT_ORDER", "desc")
        get_settings.cache_clear()
        await _seed(db_session)
        board = await get_weekly_leaderboard(db_session, "2024-W03", current_user_id="bob")
        assert [e.user_id for e in board.entries] == ["dave", "carol", "alice", "bob"]
        assert board.user_rank == 4

    async def test_monthly_and_unknown_user(self, db_session):
        await _seed(db_session)
        board = await get_monthly_leaderboard(db_session, "2024-01", current_user_id="nobody")
        assert board.period == "monthly"
        assert board.user_rank is None
        assert board.user_total_screen_time_ms is None

    async def test_empty_period(self, db_session):
        board = await get_daily_leaderboard(db_session, "2020-01-01")
        assert board.entries == []
        assert board.total == 0

    @pytest.mark.parametrize(
        ("func", "key"),
        [(get_daily_leaderboard, "2024-1-1"), (get_weekly_leaderboard, "2024-03"), (get_monthly_leaderboard, "2024-W01")],
    )
    async def test_bad_keys(self, db_session, func, key):
        with pytest.raises(ValidationError):
            await func(db_session, key)
