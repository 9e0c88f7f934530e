"""
Recurrence arithmetic for check-in schedules.

All arithmetic is done on the local calendar of the schedule's timezone: "daily at 09:00"
means 09:00 wall-clock on the next local date, so the absolute gap between two firings is
23h or 25h across a DST transition. Results are aware UTC datetimes.
"""

from __future__ import annotations

import enum
from datetime import date, datetime, time, timezone
from itertools import islice
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dateutil.rrule import DAILY, rrule

from accountability.core.errors import InvalidConfiguration

MIN_CUSTOM_INTERVAL_DAYS = 1
MAX_CUSTOM_INTERVAL_DAYS = 365


class Recurrence(str, enum.Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    CUSTOM = "custom"


def _parse_recurrence(recurrence: str | Recurrence) -> Recurrence:
    try:
        return Recurrence(recurrence)
    except ValueError:
        raise InvalidConfiguration(f"Unknown recurrence: {recurrence!r}") from None


def load_timezone(tz_name: str) -> ZoneInfo:
    """Return ZoneInfo for an IANA key or raise InvalidConfiguration."""
    if not tz_name or not tz_name.strip():
        raise InvalidConfiguration("Timezone is required")
    try:
        return ZoneInfo(tz_name.strip())
    except (ZoneInfoNotFoundError, ValueError):
        raise InvalidConfiguration(f"Unknown timezone: {tz_name!r}") from None


def validate_recurrence(
    recurrence: str | Recurrence,
    custom_interval_days: int | None,
    tz_name: str,
) -> tuple[Recurrence, int | None]:
    """
    Check a recurrence rule. Returns (recurrence, interval) with the interval set to None
    unless the rule is custom. Raises InvalidConfiguration; out-of-range intervals are never clamped.
    """
    rec = _parse_recurrence(recurrence)
    load_timezone(tz_name)
    if rec is not Recurrence.CUSTOM:
        return rec, None
    if custom_interval_days is None:
        raise InvalidConfiguration("custom_interval_days is required for custom recurrence")
    if isinstance(custom_interval_days, bool) or not isinstance(custom_interval_days, int):
        raise InvalidConfiguration("custom_interval_days must be an integer")
    if not MIN_CUSTOM_INTERVAL_DAYS <= custom_interval_days <= MAX_CUSTOM_INTERVAL_DAYS:
        raise InvalidConfiguration(
            f"custom_interval_days must be between {MIN_CUSTOM_INTERVAL_DAYS} and "
            f"{MAX_CUSTOM_INTERVAL_DAYS}, got {custom_interval_days}"
        )
    return rec, custom_interval_days


def interval_days(recurrence: str | Recurrence, custom_interval_days: int | None) -> int:
    rec = _parse_recurrence(recurrence)
    if rec is Recurrence.DAILY:
        return 1
    if rec is Recurrence.WEEKLY:
        return 7
    _, days = validate_recurrence(rec, custom_interval_days, "UTC")
    return days


def _as_utc(instant: datetime) -> datetime:
    if instant.tzinfo is None:
        return instant.replace(tzinfo=timezone.utc)
    return instant.astimezone(timezone.utc)


def _wall_time(time_of_day: time) -> time:
    return time_of_day.replace(tzinfo=None, second=0, microsecond=0)


def _localize(wall: datetime, tz: ZoneInfo) -> datetime:
    """
    Naive wall time in tz as UTC. Times inside a spring-forward gap use the pre-transition
    offset (fold=0) and so land just after the gap; times in a fall-back overlap resolve to
    the first of the two instants.
    """
    return wall.replace(tzinfo=tz, fold=0).astimezone(timezone.utc)


def _wall_rule(days: int, local_day: date, time_of_day: time) -> rrule:
    """Naive wall-clock firings every `days` local calendar days starting at local_day."""
    return rrule(DAILY, interval=days, dtstart=datetime.combine(local_day, _wall_time(time_of_day)))


def next_occurrence(
    recurrence: str | Recurrence,
    custom_interval_days: int | None,
    time_of_day: time,
    tz_name: str,
    from_instant: datetime,
) -> datetime:
    """
    Next firing after from_instant: the local date of from_instant plus one recurrence period
    (1, 7 or custom_interval_days calendar days), at time_of_day in tz_name.
    """
    tz = load_timezone(tz_name)
    days = interval_days(recurrence, custom_interval_days)
    local_day = _as_utc(from_instant).astimezone(tz).date()
    # Any wall time on a later local date is after from_instant, so this is strictly increasing
    wall = _wall_rule(days, local_day, time_of_day)[1]
    return _localize(wall, tz)


def first_occurrence(time_of_day: time, tz_name: str, now: datetime) -> datetime:
    """Next instant at time_of_day in tz_name strictly after now (today if still ahead, else tomorrow)."""
    tz = load_timezone(tz_name)
    start = _as_utc(now)
    for wall in _wall_rule(1, start.astimezone(tz).date(), time_of_day):
        candidate = _localize(wall, tz)
        if candidate > start:
            return candidate


def advance_past(
    recurrence: str | Recurrence,
    custom_interval_days: int | None,
    time_of_day: time,
    tz_name: str,
    fired_at: datetime,
    now: datetime,
) -> datetime:
    """
    Step the cursor from the just-fired value until it is after now. Occurrences missed
    entirely during an outage are skipped rather than fired as a burst.
    """
    tz = load_timezone(tz_name)
    days = interval_days(recurrence, custom_interval_days)
    limit = _as_utc(now)
    fired_day = _as_utc(fired_at).astimezone(tz).date()
    for wall in islice(_wall_rule(days, fired_day, time_of_day), 1, None):
        cursor = _localize(wall, tz)
        if cursor > limit:
            return cursor
