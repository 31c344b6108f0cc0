"""Schedule calculator: pure next-occurrence computation.

All inputs and outputs are aware datetimes; results are returned in UTC.
``daily`` wall-clock times are interpreted in an explicit IANA zone:

- a local time that does not exist (spring-forward gap) resolves to the
  instant right after the gap, shifted by the gap length (02:30 -> 03:30);
- a local time that occurs twice (fall-back) resolves to the first one.
"""

from __future__ import annotations

import calendar
import re
from datetime import UTC, date, datetime, time, timedelta
from zoneinfo import ZoneInfo

from holo_scheduler.scheduler.models import (
    DailySchedule,
    IntervalSchedule,
    OnceSchedule,
    Schedule,
)

_TIME_OF_DAY = re.compile(r"^(\d{1,2}):(\d{2})$")


def parse_time_of_day(value: str) -> time:
    """Parse ``HH:MM`` (00:00-23:59). Raises ValueError on anything else."""
    match = _TIME_OF_DAY.match(value.strip()) if isinstance(value, str) else None
    if match is None:
        msg = f"Invalid time of day: {value!r} (expected HH:MM)"
        raise ValueError(msg)
    hours, minutes = int(match.group(1)), int(match.group(2))
    if hours > 23 or minutes > 59:
        msg = f"Invalid time of day: {value!r} (expected HH:MM)"
        raise ValueError(msg)
    return time(hours, minutes)


def add_months(moment: datetime, months: int) -> datetime:
    """Step *moment* by whole calendar months, keeping the wall-clock time.

    The day is clamped to the length of the target month (Jan 31 + 1 -> Feb 28).
    """
    if not months:
        return moment
    index = moment.month - 1 + months
    year, month = moment.year + index // 12, index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def local_instant(day: date, at: time, tz: ZoneInfo) -> datetime:
    """Return the UTC instant of wall-clock *at* on *day* in *tz*."""
    # Round-tripping through UTC normalises times that fall in a DST gap.
    return datetime.combine(day, at, tzinfo=tz).astimezone(UTC)


def next_occurrence(
    schedule: Schedule,
    after: datetime,
    tz: ZoneInfo | None = None,
) -> datetime | None:
    """Return the next eligible run time of *schedule* relative to *after*.

    Returns None when the schedule has no further occurrence.
    """
    zone = tz or ZoneInfo("UTC")

    if isinstance(schedule, OnceSchedule):
        return schedule.at if schedule.at > after else None

    if isinstance(schedule, DailySchedule):
        return _next_daily(schedule, after, zone)

    if isinstance(schedule, IntervalSchedule):
        return _next_interval(schedule, after)

    msg = f"Unsupported schedule: {schedule!r}"
    raise TypeError(msg)


def _next_daily(schedule: DailySchedule, after: datetime, tz: ZoneInfo) -> datetime | None:
    at = parse_time_of_day(schedule.time_of_day)
    floor = max(after, schedule.start_date)
    day = floor.astimezone(tz).date()

    candidate = local_instant(day, at, tz)
    if candidate < floor:
        candidate = local_instant(day + timedelta(days=1), at, tz)

    if schedule.end_date is not None and candidate > schedule.end_date:
        return None
    return candidate


def _next_interval(schedule: IntervalSchedule, after: datetime) -> datetime | None:
    every = schedule.every
    if after < schedule.start_at:
        candidate = schedule.start_at
    else:
        k = (after - schedule.start_at) // every + 1
        candidate = schedule.start_at + k * every

    if schedule.end_at is not None and candidate > schedule.end_at:
        return None
    return candidate
