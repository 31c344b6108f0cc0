"""Tests for next-occurrence computation."""

from datetime import UTC, datetime, time, timedelta
from zoneinfo import ZoneInfo

import pytest

from holo_scheduler.scheduler.calculator import (
    add_months,
    local_instant,
    next_occurrence,
    parse_time_of_day,
)
from holo_scheduler.scheduler.models import DailySchedule, IntervalSchedule, OnceSchedule

NEW_YORK = ZoneInfo("America/New_York")
DAY0 = datetime(2025, 1, 6, tzinfo=UTC)


def _daily(time_of_day: str = "09:00", start: datetime = DAY0, end: datetime | None = None):
    return DailySchedule(time_of_day=time_of_day, start_date=start, end_date=end)


# -- parse_time_of_day ---------------------------------------------------------


class TestParseTimeOfDay:
    def test_valid(self):
        assert parse_time_of_day("09:00") == time(9, 0)
        assert parse_time_of_day("23:59") == time(23, 59)
        assert parse_time_of_day("7:05") == time(7, 5)

    @pytest.mark.parametrize("value", ["24:00", "12:60", "9am", "", "09:00:00", None])
    def test_invalid(self, value):
        with pytest.raises(ValueError, match="Invalid time of day"):
            parse_time_of_day(value)


# -- once ----------------------------------------------------------------------


class TestOnce:
    def test_future(self):
        at = DAY0 + timedelta(hours=9)
        assert next_occurrence(OnceSchedule(at), DAY0) == at

    def test_elapsed(self):
        at = DAY0 + timedelta(hours=9)
        assert next_occurrence(OnceSchedule(at), at) is None


# -- daily ---------------------------------------------------------------------


class TestDaily:
    def test_deterministic(self):
        after = DAY0 + timedelta(hours=8)
        first = next_occurrence(_daily(), after)
        assert first == next_occurrence(_daily(), after)
        assert first == DAY0 + timedelta(hours=9)

    def test_rolls_to_next_day(self):
        after = DAY0 + timedelta(hours=9, seconds=1)
        assert next_occurrence(_daily(), after) == DAY0 + timedelta(days=1, hours=9)

    def test_exact_time_is_eligible(self):
        at = DAY0 + timedelta(hours=9)
        assert next_occurrence(_daily(), at) == at

    def test_future_start_date(self):
        start = DAY0 + timedelta(days=3)
        assert next_occurrence(_daily(start=start), DAY0) == start + timedelta(hours=9)

    def test_end_date_inclusive(self):
        end = datetime(2025, 1, 8, 23, 59, 59, 999999, tzinfo=UTC)
        schedule = _daily(end=end)
        last = datetime(2025, 1, 8, 9, tzinfo=UTC)
        assert next_occurrence(schedule, last - timedelta(hours=1)) == last
        assert next_occurrence(schedule, last + timedelta(microseconds=1)) is None

    def test_interpreted_in_zone(self):
        # January: New York is UTC-5.
        assert next_occurrence(_daily(), DAY0, NEW_YORK) == DAY0 + timedelta(hours=14)

    def test_spring_forward_gap_shifts_forward(self):
        # 2025-03-09 02:30 does not exist in New York; it lands at 03:30 EDT.
        after = datetime(2025, 3, 9, 5, tzinfo=UTC)
        got = next_occurrence(_daily("02:30"), after, NEW_YORK)
        assert got == datetime(2025, 3, 9, 7, 30, tzinfo=UTC)
        assert got.astimezone(NEW_YORK).hour == 3

    def test_fall_back_uses_first_occurrence(self):
        # 2025-11-02 01:30 happens twice in New York; the EDT one comes first.
        after = datetime(2025, 11, 2, 4, tzinfo=UTC)
        got = next_occurrence(_daily("01:30"), after, NEW_YORK)
        assert got == datetime(2025, 11, 2, 5, 30, tzinfo=UTC)

    def test_same_wall_time_across_dst(self):
        before = next_occurrence(_daily(), datetime(2025, 3, 8, tzinfo=UTC), NEW_YORK)
        after = next_occurrence(_daily(), datetime(2025, 3, 10, tzinfo=UTC), NEW_YORK)
        assert before.astimezone(NEW_YORK).hour == after.astimezone(NEW_YORK).hour == 9
        assert before.hour == 14
        assert after.hour == 13


def test_local_instant_returns_utc():
    got = local_instant(DAY0.date(), time(9, 0), NEW_YORK)
    assert got == datetime(2025, 1, 6, 14, tzinfo=UTC)
    assert got.tzinfo is UTC


# -- interval ------------------------------------------------------------------


class TestInterval:
    def test_before_start(self):
        schedule = IntervalSchedule(every_ms=60_000, start_at=DAY0)
        assert next_occurrence(schedule, DAY0 - timedelta(hours=1)) == DAY0

    def test_strictly_after(self):
        schedule = IntervalSchedule(every_ms=60_000, start_at=DAY0)
        assert next_occurrence(schedule, DAY0) == DAY0 + timedelta(minutes=1)
        assert next_occurrence(schedule, DAY0 + timedelta(seconds=90)) == DAY0 + timedelta(
            minutes=2
        )

    def test_end_at(self):
        schedule = IntervalSchedule(
            every_ms=60_000, start_at=DAY0, end_at=DAY0 + timedelta(minutes=2)
        )
        assert next_occurrence(schedule, DAY0 + timedelta(minutes=1)) == DAY0 + timedelta(
            minutes=2
        )
        assert next_occurrence(schedule, DAY0 + timedelta(minutes=2)) is None


def test_unknown_schedule_type():
    with pytest.raises(TypeError):
        next_occurrence({"kind": "once"}, DAY0)


# -- add_months ----------------------------------------------------------------


@pytest.mark.parametrize(
    ("start", "months", "expected"),
    [
        (datetime(2025, 1, 6, 8, tzinfo=UTC), 1, datetime(2025, 2, 6, 8, tzinfo=UTC)),
        (datetime(2025, 11, 15, tzinfo=UTC), 3, datetime(2026, 2, 15, tzinfo=UTC)),
        (datetime(2025, 1, 31, tzinfo=UTC), 1, datetime(2025, 2, 28, tzinfo=UTC)),
        (datetime(2024, 2, 29, tzinfo=UTC), 12, datetime(2025, 2, 28, tzinfo=UTC)),
        (datetime(2025, 3, 31, tzinfo=UTC), -1, datetime(2025, 2, 28, tzinfo=UTC)),
        (DAY0, 0, DAY0),
    ],
)
def test_add_months(start, months, expected):
    assert add_months(start, months) == expected
