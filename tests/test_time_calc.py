"""Tests for time-of-day parsing and billable hour rounding."""

import pytest

from src.calculations.time_calc import (
    billable_hours,
    elapsed_minutes,
    parse_time_of_day,
    round_up_to_increment,
)


class TestParseTimeOfDay:
    """Tests for HH:MM parsing."""

    def test_hours_and_minutes(self):
        assert parse_time_of_day("08:30") == 510

    def test_with_seconds(self):
        assert parse_time_of_day("23:59:59") == 23 * 60 + 59

    def test_midnight(self):
        assert parse_time_of_day("00:00") == 0

    @pytest.mark.parametrize("value", ["", "8", "25:00", "08:61", "ab:cd", None])
    def test_invalid_raises(self, value):
        with pytest.raises(ValueError):
            parse_time_of_day(value)


class TestElapsedMinutes:
    """Tests for elapsed time, including jobs that cross midnight."""

    def test_same_day(self):
        assert elapsed_minutes("08:00", "16:30") == 510

    def test_overnight_adds_a_day(self):
        # 22:00 -> 02:00 is four hours, not minus twenty
        assert elapsed_minutes("22:00", "02:00") == 240

    def test_equal_times_are_zero(self):
        assert elapsed_minutes("09:00", "09:00") == 0

    def test_never_negative(self):
        for start, end in [("23:59", "00:00"), ("12:00", "11:59"), ("00:01", "00:00")]:
            assert elapsed_minutes(start, end) > 0


class TestRoundUpToIncrement:
    """Tests for quarter-hour rounding."""

    def test_rounds_up(self):
        assert round_up_to_increment(50) == 60
        assert round_up_to_increment(61) == 75

    def test_exact_increment_unchanged(self):
        assert round_up_to_increment(45) == 45

    def test_zero_and_negative(self):
        assert round_up_to_increment(0) == 0
        assert round_up_to_increment(-5) == 0

    def test_custom_increment(self):
        assert round_up_to_increment(7, increment=10) == 10


class TestBillableHours:
    """Tests for billable hours."""

    def test_fifty_minutes_bills_one_hour(self):
        assert billable_hours("08:00", "08:50") == 1.0

    def test_overnight(self):
        assert billable_hours("22:00", "01:10") == 3.25

    def test_missing_time_is_zero(self):
        assert billable_hours(None, "10:00") == 0.0
        assert billable_hours("08:00", "") == 0.0
