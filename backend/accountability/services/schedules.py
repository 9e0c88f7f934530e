"""Check-in schedule configuration: create, update, disable/enable."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, time
from typing import Sequence

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from accountability.core.errors import InvalidConfiguration
from accountability.models.check_in_instance import CheckInInstance, CheckInStatus
from accountability.models.check_in_schedule import CheckInSchedule
from accountability.services.recurrence import first_occurrence, validate_recurrence

logger = logging.getLogger(__name__)

MIN_QUESTIONS = 1
MAX_QUESTIONS = 5
MAX_QUESTION_LENGTH = 500


def validate_questions(questions: Sequence[str]) -> list[str]:
    cleaned = [(q or "").strip() for q in questions]
    if not MIN_QUESTIONS <= len(cleaned) <= MAX_QUESTIONS:
        raise InvalidConfiguration(f"A check-in needs {MIN_QUESTIONS} to {MAX_QUESTIONS} questions, got {len(cleaned)}")
    if any(not q for q in cleaned):
        raise InvalidConfiguration("Check-in questions must not be empty")
    if any(len(q) > MAX_QUESTION_LENGTH for q in cleaned):
        raise InvalidConfiguration(f"Check-in questions are limited to {MAX_QUESTION_LENGTH} characters")
    return cleaned


def _wall_time(time_of_day: time) -> time:
    return time_of_day.replace(second=0, microsecond=0, tzinfo=None)


async def create_schedule(
    session: AsyncSession,
    owner_id: uuid.UUID,
    *,
    recurrence: str,
    time_of_day: time,
    timezone: str,
    questions: Sequence[str],
    now: datetime,
    custom_interval_days: int | None = None,
) -> CheckInSchedule:
    """
    Validate and add a schedule. Raises InvalidConfiguration before anything is added to
    the session, so a rejected rule never reaches the datastore.
    """
    rec, interval = validate_recurrence(recurrence, custom_interval_days, timezone)
    cleaned = validate_questions(questions)
    wall = _wall_time(time_of_day)
    schedule = CheckInSchedule(
        owner_id=owner_id,
        recurrence=rec.value,
        custom_interval_days=interval,
        time_of_day=wall,
        timezone=timezone.strip(),
        questions=cleaned,
        next_scheduled_at=first_occurrence(wall, timezone, now),
        last_sent_at=None,
        consecutive_misses=0,
        escalation_raised=False,
        is_active=True,
    )
    session.add(schedule)
    await session.flush()
    logger.info(
        "Schedules: created schedule_id=%s owner_id=%s recurrence=%s next=%s",
        schedule.id, owner_id, rec.value, schedule.next_scheduled_at.isoformat(),
    )
    return schedule


async def update_schedule(
    session: AsyncSession,
    schedule: CheckInSchedule,
    *,
    now: datetime,
    recurrence: str | None = None,
    custom_interval_days: int | None = None,
    time_of_day: time | None = None,
    timezone: str | None = None,
    questions: Sequence[str] | None = None,
) -> CheckInSchedule:
    """Partial update. Changing the rule, time or zone moves the cursor to the first occurrence after now."""
    new_recurrence = recurrence if recurrence is not None else schedule.recurrence
    new_tz = timezone if timezone is not None else schedule.timezone
    new_interval = custom_interval_days if custom_interval_days is not None else schedule.custom_interval_days
    rec, interval = validate_recurrence(new_recurrence, new_interval, new_tz)
    cleaned = validate_questions(questions) if questions is not None else None
    new_time = _wall_time(time_of_day) if time_of_day is not None else schedule.time_of_day

    timing_changed = (
        rec.value != schedule.recurrence
        or interval != schedule.custom_interval_days
        or new_time != schedule.time_of_day
        or new_tz.strip() != schedule.timezone
    )
    schedule.recurrence = rec.value
    schedule.custom_interval_days = interval
    schedule.time_of_day = new_time
    schedule.timezone = new_tz.strip()
    if cleaned is not None:
        schedule.questions = cleaned
    if timing_changed:
        schedule.next_scheduled_at = first_occurrence(new_time, schedule.timezone, now)
    await session.flush()
    return schedule


async def set_schedule_active(
    session: AsyncSession,
    schedule: CheckInSchedule,
    active: bool,
    now: datetime,
) -> CheckInSchedule:
    """
    Soft disable/enable. Disabling closes check-ins that were never sent. Re-enabling resets the miss counter, re-arms escalation and moves the
    cursor to the next occurrence after now so a long pause does not fire stale check-ins.
    """
    if schedule.is_active == active:
        return schedule
    schedule.is_active = active
    if active:
        schedule.consecutive_misses = 0
        schedule.escalation_raised = False
        schedule.next_scheduled_at = first_occurrence(schedule.time_of_day, schedule.timezone, now)
    else:
        # Unsent check-ins of a paused schedule are closed without counting a miss
        await session.execute(
            update(CheckInInstance)
            .where(
                CheckInInstance.schedule_id == schedule.id,
                CheckInInstance.status == CheckInStatus.PENDING.value,
            )
            .values(status=CheckInStatus.MISSED.value, dispatch_claimed_at=None)
            .execution_options(synchronize_session=False)
        )
    await session.flush()
    logger.info("Schedules: schedule_id=%s active=%s", schedule.id, active)
    return schedule


async def get_owned_schedule(
    session: AsyncSession,
    schedule_id: uuid.UUID,
    owner_id: uuid.UUID,
) -> CheckInSchedule | None:
    r = await session.execute(
        select(CheckInSchedule).where(
            CheckInSchedule.id == schedule_id,
            CheckInSchedule.owner_id == owner_id,
        )
    )
    return r.scalar_one_or_none()


async def list_schedules(session: AsyncSession, owner_id: uuid.UUID) -> list[CheckInSchedule]:
    r = await session.execute(
        select(CheckInSchedule)
        .where(CheckInSchedule.owner_id == owner_id)
        .order_by(CheckInSchedule.created_at.asc())
    )
    return list(r.scalars().all())
