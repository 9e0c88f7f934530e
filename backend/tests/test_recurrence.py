"""Tests for recurrence arithmetic: wall-clock stepping across DST, validation, cursor advancement."""

from datetime import datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from accountability.core.errors import InvalidConfiguration
from accountability.services.recurrence import (
    advance_past,
    first_occurrence,
    next_occurrence,
    validate_recurrence,
)

NY = "America/New_York"


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def test_daily_across_fall_back_keeps_local_nine_am():
    """Daily 09:00 New York from Nov 2 09:00 EDT lands on Nov 3 09:00 EST (25h later in absolute time)."""
    last_sent = datetime(2024, 11, 2, 9, 0, tzinfo=ZoneInfo(NY))
    nxt = next_occurrence("daily", None, time(9, 0), NY, last_sent)
    assert nxt == utc(2024, 11, 3, 14, 0)
    assert nxt.astimezone(ZoneInfo(NY)).hour == 9
    assert nxt - last_sent == timedelta(hours=25)


def test_daily_across_spring_forward_keeps_local_nine_am():
    last_sent = datetime(2024, 3, 9, 9, 0, tzinfo=ZoneInfo(NY))
    nxt = next_occurrence("daily", None, time(9, 0), NY, last_sent)
    assert nxt == utc(2024, 3, 10, 13, 0)
    assert nxt - last_sent == timedelta(hours=23)


def test_weekly_across_spring_forward():
    start = utc(2024, 3, 4, 14, 0)  # Monday 09:00 EST
    nxt = next_occurrence("weekly", None, time(9, 0), NY, start)
    assert nxt == utc(2024, 3, 11, 13, 0)  # Monday 09:00 EDT
    assert nxt.astimezone(ZoneInfo(NY)).weekday() == 0


def test_custom_interval_uses_calendar_days():
    start = utc(2024, 10, 31, 13, 0)  # 09:00 EDT
    nxt = next_occurrence("custom", 5, time(9, 0), NY, start)
    assert nxt == utc(2024, 11, 5, 14, 0)  # 09:00 EST


def test_time_in_spring_forward_gap_lands_after_gap():
    """02:30 does not exist on 2024-03-10 in New York; it resolves with the pre-transition offset (03:30 EDT)."""
    start = utc(2024, 3, 9, 7, 30)  # 02:30 EST
    nxt = next_occurrence("daily", None, time(2, 30), NY, start)
    assert nxt == utc(2024, 3, 10, 7, 30)
    assert nxt > start
    local = nxt.astimezone(ZoneInfo(NY))
    assert (local.hour, local.minute) == (3, 30)
    following = next_occurrence("daily", None, time(2, 30), NY, nxt)
    assert following == utc(2024, 3, 11, 6, 30)  # back to 02:30 wall clock, now EDT


def test_time_in_fall_back_overlap_uses_first_occurrence():
    start = utc(2024, 11, 2, 5, 30)  # 01:30 EDT
    nxt = next_occurrence("daily", None, time(1, 30), NY, start)
    assert nxt == utc(2024, 11, 3, 5, 30)  # first 01:30 (EDT), not the repeated one


@pytest.mark.parametrize("tz_name", [NY, "Europe/London", "Australia/Sydney", "Asia/Kolkata", "UTC"])
@pytest.mark.parametrize("recurrence,interval,period_days", [
    ("daily", None, 1),
    ("weekly", None, 7),
    ("custom", 3, 3),
    ("custom", 30, 30),
])
def test_repeated_application_is_strictly_increasing_wall_clock_periods(tz_name, recurrence, interval, period_days):
    """Over a year of firings every step is exactly one period on the local calendar at 09:15 local."""
    tz = ZoneInfo(tz_name)
    cursor = first_occurrence(time(9, 15), tz_name, utc(2024, 1, 1))
    steps = max(3, 400 // period_days)
    for _ in range(steps):
        nxt = next_occurrence(recurrence, interval, time(9, 15), tz_name, cursor)
        assert nxt > cursor
        prev_local, next_local = cursor.astimezone(tz), nxt.astimezone(tz)
        assert (next_local.hour, next_local.minute) == (9, 15)
        assert (next_local.date() - prev_local.date()).days == period_days
        cursor = nxt


def test_naive_from_instant_is_treated_as_utc():
    assert next_occurrence("daily", None, time(9, 0), "UTC", datetime(2024, 6, 1, 9, 0)) == utc(2024, 6, 2, 9, 0)


def test_first_occurrence_today_or_tomorrow():
    assert first_occurrence(time(9, 0), NY, utc(2024, 6, 1, 12, 0)) == utc(2024, 6, 1, 13, 0)
    assert first_occurrence(time(9, 0), NY, utc(2024, 6, 1, 13, 0)) == utc(2024, 6, 2, 13, 0)


def test_advance_past_skips_occurrences_missed_during_outage():
    fired = utc(2024, 6, 1, 9, 0)
    assert advance_past("daily", None, time(9, 0), "UTC", fired, utc(2024, 6, 4, 8, 0)) == utc(2024, 6, 4, 9, 0)
    assert advance_past("daily", None, time(9, 0), "UTC", fired, utc(2024, 6, 1, 9, 5)) == utc(2024, 6, 2, 9, 0)


@pytest.mark.parametrize("interval", [0, -1, 366, 400])
def test_custom_interval_out_of_range_rejected(interval):
    with pytest.raises(InvalidConfiguration):
        validate_recurrence("custom", interval, "UTC")
    with pytest.raises(InvalidConfiguration):
        next_occurrence("custom", interval, time(9, 0), "UTC", utc(2024, 1, 1))


def test_custom_interval_bounds_accepted():
    assert validate_recurrence("custom", 1, "UTC")[1] == 1
    assert validate_recurrence("custom", 365, "UTC")[1] == 365


def test_custom_requires_interval():
    with pytest.raises(InvalidConfiguration):
        validate_recurrence("custom", None, "UTC")


def test_interval_ignored_for_non_custom():
    rec, interval = validate_recurrence("weekly", 12, "UTC")
    assert rec.value == "weekly"
    assert interval is None


def test_unknown_recurrence_and_timezone_rejected():
    with pytest.raises(InvalidConfiguration):
        validate_recurrence("monthly", None, "UTC")
    with pytest.raises(InvalidConfiguration):
        validate_recurrence("daily", None, "Mars/Olympus_Mons")


def test_advance_past_across_dst_keeps_weekly_wall_clock():
    fired = utc(2024, 3, 4, 14, 0)  # Monday 09:00 EST
    nxt = advance_past("weekly", None, time(9, 0), NY, fired, utc(2024, 3, 20, 12, 0))
    assert nxt == utc(2024, 3, 25, 13, 0)  # Monday 09:00 EDT


@pytest.mark.parametrize("recurrence,interval", [("daily", None), ("custom", 4)])
def test_advance_past_matches_repeated_next_occurrence(recurrence, interval):
    fired = utc(2024, 10, 28, 13, 30)
    now = utc(2024, 11, 20, 0, 0)
    stepped = next_occurrence(recurrence, interval, time(9, 30), NY, fired)
    while stepped <= now:
        stepped = next_occurrence(recurrence, interval, time(9, 30), NY, stepped)
    assert advance_past(recurrence, interval, time(9, 30), NY, fired, now) == stepped
