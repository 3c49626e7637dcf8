"""Unit tests for period keys and date parsing."""

from datetime import date, datetime, timedelta, timezone

import pytest

from apptime.errors import ValidationError
from apptime.periods import (
    as_utc,
    coerce_day,
    day_bounds,
    month_days,
    month_key,
    parse_day_key,
    parse_month_key,
    parse_week_key,
    week_days,
    week_key,
)


class TestWeekKeys:
    def test_iso_week_year_boundary(self):
        # 2024-12-30 is Monday of ISO week 1 of 2025
        assert week_key(date(2024, 12, 30)) == "2025-W01"
        assert week_key(date(2021, 1, 3)) == "2020-W53"

    def test_parse_week_returns_monday_to_sunday(self):
        monday, sunday = parse_week_key("2024-W03")
        assert monday == date(2024, 1, 15)
        assert sunday == date(2024, 1, 21)

    def test_week_53_only_when_it_exists(self):
        assert parse_week_key("2020-W53")[0] == date(2020, 12, 28)
        with pytest.raises(ValidationError):
            parse_week_key("2021-W53")

    @pytest.mark.parametrize("bad", ["2024-3", "2024W03", "2024-W3", "", "2024-W00"])
    def test_bad_week_format(self, bad):
        with pytest.raises(ValidationError):
            parse_week_key(bad)

    def test_week_days(self):
        assert week_days("2024-W03") == ("2024-01-15", "2024-01-21")


class TestMonthAndDayKeys:
    def test_month_bounds_leap_year(self):
        assert parse_month_key("2024-02") == (date(2024, 2, 1), date(2024, 2, 29))
        assert month_days("2023-12") == ("2023-12-01", "2023-12-31")

    def test_month_key(self):
        assert month_key(date(2024, 7, 9)) == "2024-07"

    @pytest.mark.parametrize("bad", ["2024-13", "2024-1", "24-01", "2024/01"])
    def test_bad_month(self, bad):
        with pytest.raises(ValidationError):
            parse_month_key(bad)

    @pytest.mark.parametrize("bad", ["2024-02-30", "2024-1-05", "15-01-2024", "yesterday"])
    def test_bad_day(self, bad):
        with pytest.raises(ValidationError, match="Expected YYYY-MM-DD"):
            parse_day_key(bad)

    def test_coerce_day(self):
        assert coerce_day(None) is None
        assert coerce_day("2024-01-15") == date(2024, 1, 15)
        assert coerce_day(date(2024, 1, 15)) == date(2024, 1, 15)
        tz = timezone(timedelta(hours=-5))
        # 22:00 at UTC-5 is already the next day in UTC
        assert coerce_day(datetime(2024, 1, 15, 22, tzinfo=tz)) == date(2024, 1, 16)

    def test_day_bounds_are_half_open_utc(self):
        start, end = day_bounds(date(2024, 1, 15))
        assert start == datetime(2024, 1, 15, tzinfo=timezone.utc)
        assert end - start == timedelta(days=1)

    def test_as_utc(self):
        assert as_utc(datetime(2024, 1, 1)).tzinfo == timezone.utc
