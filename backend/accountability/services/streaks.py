"""Sobriety streak and milestone derivation. Pure: recomputed on every read, never stored."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timezone
from typing import Iterable

from accountability.core.errors import InvalidState

SECONDS_PER_DAY = 86400

MILESTONE_THRESHOLDS: dict[str, int] = {
    "30_days": 30,
    "60_days": 60,
    "90_days": 90,
    "180_days": 180,
    "1_year": 365,
}

MILESTONE_DISPLAY_TEXT: dict[str, str] = {
    "30_days": "30 Days - One Month Sober!",
    "60_days": "60 Days - Two Months Strong!",
    "90_days": "90 Days - Three Month Milestone!",
    "180_days": "180 Days - Half a Year!",
    "1_year": "1 Year - Anniversary!",
}


@dataclass(frozen=True)
class StreakStats:
    current_streak_days: int
    milestones_achieved: tuple[str, ...]
    next_milestone_days: int | None
    effective_start: datetime

    @property
    def days_until_next_milestone(self) -> int | None:
        if self.next_milestone_days is None:
            return None
        return self.next_milestone_days - self.current_streak_days


@dataclass(frozen=True)
class MilestoneDisplay:
    tag: str
    days: int
    display_text: str
    achieved: bool


def _to_instant(value: date | datetime) -> datetime:
    """Dates count from local midnight UTC; naive datetimes are assumed UTC."""
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    return datetime.combine(value, time.min, tzinfo=timezone.utc)


def effective_start(start_date: date | datetime, relapses: Iterable[date | datetime]) -> datetime:
    """The later of start_date and the most recent relapse."""
    start = _to_instant(start_date)
    latest = max((_to_instant(r) for r in relapses), default=None)
    if latest is None or latest < start:
        return start
    return latest


def compute_stats(
    start_date: date | datetime,
    relapses: Iterable[date | datetime],
    now: date | datetime,
) -> StreakStats:
    """
    Streak length in whole days since the effective start, the milestone tags reached and
    the next milestone threshold. Raises InvalidState if now precedes the effective start.
    """
    begin = effective_start(start_date, relapses)
    current = _to_instant(now)
    if current < begin:
        raise InvalidState(f"now ({current.isoformat()}) is before effective start ({begin.isoformat()})")
    days = int((current - begin).total_seconds() // SECONDS_PER_DAY)
    achieved = tuple(tag for tag, threshold in MILESTONE_THRESHOLDS.items() if threshold <= days)
    upcoming = [threshold for threshold in MILESTONE_THRESHOLDS.values() if threshold > days]
    return StreakStats(
        current_streak_days=days,
        milestones_achieved=achieved,
        next_milestone_days=min(upcoming) if upcoming else None,
        effective_start=begin,
    )


def milestone_progress(stats: StreakStats) -> list[MilestoneDisplay]:
    return [
        MilestoneDisplay(
            tag=tag,
            days=threshold,
            display_text=MILESTONE_DISPLAY_TEXT[tag],
            achieved=tag in stats.milestones_achieved,
        )
        for tag, threshold in MILESTONE_THRESHOLDS.items()
    ]
