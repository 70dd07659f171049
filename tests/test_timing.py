"""Tests for timer status derivation."""

from datetime import datetime, timedelta, timezone as dt_timezone
from types import SimpleNamespace

import pytest

from django_divewatch.timing import (
    LatestCheckIn,
    TimerStatus,
    classify,
    derive_timer,
    next_deadline_for,
    round_to_5min,
    seconds_until,
)

UTC = dt_timezone.utc
WARNING = timedelta(minutes=5)


def at(hour, minute, second=0, microsecond=0, day=1):
    return datetime(2025, 6, day, hour, minute, second, microsecond, tzinfo=UTC)


def make_cart(paused_at=None, **overrides):
    values = dict(
        pk=7,
        cart_number=3,
        cart_type=2,
        diver_names=["Ana", "Ben"],
        dive_id=1,
        paused_at=paused_at,
        checkin_location="",
    )
    values.update(overrides)
    return SimpleNamespace(**values)


class TestRoundTo5Min:
    """Tests for round_to_5min."""

    @pytest.mark.parametrize(
        "value,expected",
        [
            (at(12, 0), at(12, 0)),
            (at(12, 2, 59), at(12, 0)),
            (at(12, 3), at(12, 5)),
            (at(12, 4, 30), at(12, 5)),
            (at(12, 7), at(12, 5)),
            (at(12, 8), at(12, 10)),
            (at(12, 58), at(13, 0)),
        ],
    )
    def test_rounds_to_nearest_mark(self, value, expected):
        """Remainders below 3 round down, 3 and above round up."""
        assert round_to_5min(value) == expected

    def test_rolls_over_midnight(self):
        """Rounding up past 23:55 moves to the next day."""
        assert round_to_5min(at(23, 58, 10)) == at(0, 0, day=2)

    def test_drops_seconds_and_microseconds(self):
        result = round_to_5min(at(9, 10, 45, 999999))

        assert result.second == 0
        assert result.microsecond == 0

    @pytest.mark.parametrize("minute", range(0, 60, 7))
    def test_is_idempotent(self, minute):
        """Rounding an already rounded instant changes nothing."""
        once = round_to_5min(at(14, minute, 31))
        assert round_to_5min(once) == once

    def test_next_deadline_is_on_a_five_minute_mark(self):
        deadline = next_deadline_for(at(10, 18, 42), timedelta(minutes=60))

        assert deadline == at(11, 20)
        assert deadline.minute % 5 == 0
        assert deadline.second == 0


class TestClassify:
    """Tests for classify and seconds_until."""

    def test_green_above_warning_lead(self):
        assert classify(301, WARNING) == TimerStatus.GREEN

    def test_warning_boundary_is_orange(self):
        """Exactly the warning lead remaining is orange, not green."""
        assert classify(300, WARNING) == TimerStatus.ORANGE

    def test_one_second_left_is_orange(self):
        assert classify(1, WARNING) == TimerStatus.ORANGE

    def test_zero_and_negative_are_expired(self):
        assert classify(0, WARNING) == TimerStatus.EXPIRED
        assert classify(-120, WARNING) == TimerStatus.EXPIRED

    def test_seconds_until_floors(self):
        deadline = at(11, 0)
        assert seconds_until(deadline, at(10, 59, 58, 500000)) == 1
        assert seconds_until(deadline, at(11, 0, 0, 500000)) == -1


class TestDeriveTimer:
    """Tests for derive_timer."""

    def test_no_checkin_is_waiting(self):
        timer = derive_timer(make_cart(), None, at(10, 0), WARNING)

        assert timer.status == TimerStatus.WAITING
        assert timer.seconds_remaining == 0
        assert timer.next_deadline is None
        assert not timer.is_running

    def test_paused_keeps_last_deadline(self):
        latest = LatestCheckIn(1, at(10, 0), at(11, 0))
        timer = derive_timer(make_cart(paused_at=at(10, 30)), latest, at(10, 45), WARNING)

        assert timer.status == TimerStatus.PAUSED
        assert timer.seconds_remaining == 0
        assert timer.next_deadline == at(11, 0)

    def test_paused_wins_over_missing_checkin(self):
        timer = derive_timer(make_cart(paused_at=at(10, 30)), None, at(10, 45), WARNING)

        assert timer.status == TimerStatus.PAUSED

    def test_running_reports_remaining_seconds(self):
        latest = LatestCheckIn(1, at(10, 0), at(11, 0))
        timer = derive_timer(make_cart(), latest, at(10, 30), WARNING)

        assert timer.status == TimerStatus.GREEN
        assert timer.seconds_remaining == 30 * 60
        assert timer.checkin_id == 1
        assert timer.last_checkin_at == at(10, 0)

    def test_expired_is_clamped_to_zero(self):
        latest = LatestCheckIn(1, at(10, 0), at(11, 0))
        timer = derive_timer(make_cart(), latest, at(11, 20), WARNING)

        assert timer.status == TimerStatus.EXPIRED
        assert timer.seconds_remaining == 0

    def test_is_pure(self):
        """Same inputs always give the same timer."""
        latest = LatestCheckIn(1, at(10, 0), at(11, 0))
        cart = make_cart()

        first = derive_timer(cart, latest, at(10, 56), WARNING)
        second = derive_timer(cart, latest, at(10, 56), WARNING)

        assert first == second
        assert first.status == TimerStatus.ORANGE

    def test_as_dict_is_json_safe(self):
        latest = LatestCheckIn(1, at(10, 0), at(11, 0))
        data = derive_timer(make_cart(checkin_location="Pier 2"), latest, at(10, 30), WARNING).as_dict()

        assert data["id"] == 7
        assert data["timer_status"] == "green"
        assert data["next_deadline"] == "2025-06-01T11:00:00+00:00"
        assert data["diver_names"] == ["Ana", "Ben"]
        assert data["paused_at"] is None
        assert data["checkin_location"] == "Pier 2"
