"""Tests for period bucketing, latest-per-key reduction, lag and rounding."""

from dataclasses import replace
from datetime import date, datetime, timedelta, timezone

import pytest

from core.windows import (
    day_of,
    lag_pairs,
    latest_per_key,
    percent_change,
    percent_of,
    round_half_up,
    sum_optional,
    week_start_of,
)


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


class TestPeriods:

    def test_week_starts_on_monday_midnight_utc(self):
        # 2024-03-06 is a Wednesday
        assert week_start_of(utc(2024, 3, 6, 15, 30)) == utc(2024, 3, 4)
        assert week_start_of(utc(2024, 3, 4, 0, 0)) == utc(2024, 3, 4)
        assert week_start_of(utc(2024, 3, 10, 23, 59, 59)) == utc(2024, 3, 4)
        assert week_start_of(utc(2024, 3, 11)) == utc(2024, 3, 11)

    def test_week_start_converts_to_utc_first(self):
        plus_three = timezone(timedelta(hours=3))
        # Monday 01:00 at UTC+3 is still Sunday in UTC
        ts = datetime(2024, 3, 11, 1, 0, tzinfo=plus_three)
        assert week_start_of(ts) == utc(2024, 3, 4)

    def test_day_of_is_utc_date(self):
        assert day_of(utc(2024, 3, 6, 23, 59)) == date(2024, 3, 6)


class TestLatestPerKey:

    def test_picks_max_timestamp(self, make_record):
        old = make_record("bitcoin", price=1, timestamp=utc(2024, 3, 1))
        new = make_record("bitcoin", price=2, timestamp=utc(2024, 3, 2))
        other = make_record("ethereum", price=3, timestamp=utc(2024, 3, 1))

        latest = latest_per_key([new, other, old], lambda r: r.coin_id)

        assert latest["bitcoin"] is new
        assert latest["ethereum"] is other

    def test_equal_timestamps_resolve_to_lowest_id(self, make_record):
        ts = utc(2024, 3, 2)
        high = make_record("bitcoin", price=1, timestamp=ts, id=9)
        low = make_record("bitcoin", price=2, timestamp=ts, id=4)

        assert latest_per_key([high, low], lambda r: r.coin_id)["bitcoin"] is low
        assert latest_per_key([low, high], lambda r: r.coin_id)["bitcoin"] is low

    def test_unsaved_record_loses_tie_to_stored_one(self, make_record):
        ts = utc(2024, 3, 2)
        stored = make_record("bitcoin", price=1, timestamp=ts, id=1)
        unsaved = replace(make_record("bitcoin", price=2, timestamp=ts), id=None)

        assert latest_per_key([unsaved, stored], lambda r: r.coin_id)["bitcoin"] is stored
        assert latest_per_key([stored, unsaved], lambda r: r.coin_id)["bitcoin"] is stored

    def test_unsaved_record_still_wins_on_later_timestamp(self, make_record):
        stored = make_record("bitcoin", price=1, timestamp=utc(2024, 3, 1), id=1)
        unsaved = replace(make_record("bitcoin", price=2, timestamp=utc(2024, 3, 2)), id=None)

        assert latest_per_key([stored, unsaved], lambda r: r.coin_id)["bitcoin"] is unsaved


class TestLag:

    def test_first_period_per_coin_is_dropped(self):
        series = {
            ("bitcoin", date(2024, 3, 1)): 10.0,
            ("bitcoin", date(2024, 3, 2)): 20.0,
            ("bitcoin", date(2024, 3, 4)): 15.0,
            ("ethereum", date(2024, 3, 2)): 5.0,
        }

        pairs = lag_pairs(series)

        assert pairs == [
            ("bitcoin", date(2024, 3, 2), 10.0, 20.0),
            ("bitcoin", date(2024, 3, 4), 20.0, 15.0),
        ]


class TestNumerics:

    @pytest.mark.parametrize("value,expected", [
        (2.675, 2.68),
        (1.005, 1.01),
        (-1.005, -1.01),
        (33.333333, 33.33),
        (0.0, 0.0),
    ])
    def test_round_half_up(self, value, expected):
        assert round_half_up(value) == expected

    def test_round_rejects_non_finite(self):
        assert round_half_up(float("inf")) is None
        assert round_half_up(float("nan")) is None
        assert round_half_up(None) is None

    def test_percent_of_zero_or_null_denominator(self):
        assert percent_of(5.0, 0.0) is None
        assert percent_of(5.0, None) is None
        assert percent_of(None, 10.0) is None
        assert percent_of(1.0, 3.0) == 33.33

    def test_percent_change(self):
        assert percent_change(100.0, 150.0) == 50.0
        assert percent_change(200.0, 100.0) == -50.0
        assert percent_change(0.0, 100.0) is None
        assert percent_change(None, 100.0) is None

    def test_sum_optional_ignores_nulls(self):
        assert sum_optional([1.0, None, 2.5]) == 3.5
        assert sum_optional([None, None]) is None
        assert sum_optional([]) is None
