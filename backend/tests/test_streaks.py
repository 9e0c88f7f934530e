"""Tests for streak and milestone derivation."""

from datetime import date, datetime, timedelta, timezone

import pytest

from accountability.core.errors import InvalidState
from accountability.services.streaks import MILESTONE_THRESHOLDS, compute_stats, milestone_progress


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def test_ninety_days_without_relapse():
    stats = compute_stats(date(2024, 1, 1), [], utc(2024, 3, 31))
    assert stats.current_streak_days == 90
    assert stats.milestones_achieved == ("30_days", "60_days", "90_days")
    assert [MILESTONE_THRESHOLDS[t] for t in stats.milestones_achieved] == [30, 60, 90]
    assert stats.next_milestone_days == 180
    assert stats.days_until_next_milestone == 90


def test_date_now_is_accepted():
    assert compute_stats(date(2024, 1, 1), [], date(2024, 3, 31)).current_streak_days == 90


def test_partial_day_is_floored():
    stats = compute_stats(date(2024, 1, 1), [], utc(2024, 1, 30, 23, 59))
    assert stats.current_streak_days == 29
    assert stats.milestones_achieved == ()
    assert stats.next_milestone_days == 30


def test_streak_measured_from_latest_relapse():
    relapses = [utc(2024, 2, 1, 20, 0), utc(2024, 3, 1, 8, 0), utc(2024, 2, 15)]
    stats = compute_stats(date(2024, 1, 1), relapses, utc(2024, 3, 11, 8, 0))
    assert stats.current_streak_days == 10
    assert stats.effective_start == utc(2024, 3, 1, 8, 0)


def test_relapse_dated_now_resets_to_zero():
    now = utc(2024, 6, 1, 12, 0)
    before = compute_stats(date(2024, 1, 1), [], now)
    assert before.current_streak_days > 0
    after = compute_stats(date(2024, 1, 1), [now], now)
    assert after.current_streak_days == 0
    assert after.milestones_achieved == ()
    assert after.next_milestone_days == 30


@pytest.mark.parametrize("relapse_offsets", [[], [3], [3, 40], [100, 10, 55], [119]])
def test_streak_equals_days_since_effective_start(relapse_offsets):
    start = date(2024, 1, 1)
    start_dt = utc(2024, 1, 1)
    now = start_dt + timedelta(days=120, hours=5)
    relapses = [start_dt + timedelta(days=d, hours=2) for d in relapse_offsets]
    effective = max([start_dt, *relapses])
    expected = int((now - effective).total_seconds() // 86400)
    assert compute_stats(start, relapses, now).current_streak_days == expected


def test_relapse_before_start_is_ignored_for_effective_start():
    stats = compute_stats(date(2024, 3, 1), [utc(2024, 2, 1)], utc(2024, 3, 11))
    assert stats.current_streak_days == 10


def test_all_milestones_achieved():
    stats = compute_stats(date(2020, 1, 1), [], utc(2024, 1, 1))
    assert stats.milestones_achieved == tuple(MILESTONE_THRESHOLDS)
    assert stats.next_milestone_days is None
    assert stats.days_until_next_milestone is None


def test_now_before_effective_start_raises():
    with pytest.raises(InvalidState):
        compute_stats(date(2024, 5, 1), [], utc(2024, 4, 30))
    with pytest.raises(InvalidState):
        compute_stats(date(2024, 1, 1), [utc(2024, 5, 2)], utc(2024, 5, 1))


def test_milestone_progress_marks_achieved():
    stats = compute_stats(date(2024, 1, 1), [], utc(2024, 3, 1))
    rows = milestone_progress(stats)
    assert [r.days for r in rows] == [30, 60, 90, 180, 365]
    assert [r.achieved for r in rows] == [True, True, False, False, False]
    assert rows[-1].tag == "1_year"
