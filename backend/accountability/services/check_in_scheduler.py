"""
Due scan: materialise one check-in instance per due schedule, advance the schedule cursor, and
hand Pending instances to the push dispatcher.

Overlapping passes are safe. The unique (schedule_id, due_at) constraint guards instance
creation and the cursor only moves by compare-and-swap on its previous value. Sends take a
short dispatch lease on the instance.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime, timedelta

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from accountability.core.errors import AccountabilityError, InvalidConfiguration
from accountability.models.check_in_instance import CheckInInstance, CheckInStatus
from accountability.models.check_in_schedule import CheckInSchedule
from accountability.services import metrics
from accountability.services.miss_detector import mark_missed, retire_orphan
from accountability.services.push_notifications import NotificationDispatcher, check_in_reminder_payload
from accountability.services.recurrence import advance_past

logger = logging.getLogger(__name__)


async def _fire_schedule(
    session_maker: async_sessionmaker[AsyncSession],
    schedule_id: uuid.UUID,
    now: datetime,
) -> CheckInInstance | None:
    """
    Create the Pending instance for the schedule's current cursor and advance the cursor in the
    same transaction, so the cursor never moves past an occurrence whose instance is not durable.
    Returns the new instance, or None if another tick already fired this occurrence.
    """
    async with session_maker() as session:
        schedule = await session.get(CheckInSchedule, schedule_id)
        if schedule is None or not schedule.is_active or schedule.next_scheduled_at > now:
            return None
        fired_at = schedule.next_scheduled_at
        existing = (
            await session.execute(
                select(CheckInInstance.id).where(
                    CheckInInstance.schedule_id == schedule_id,
                    CheckInInstance.due_at == fired_at,
                )
            )
        ).scalar_one_or_none()
        instance = None
        if existing is None:
            instance = CheckInInstance(
                schedule_id=schedule.id,
                due_at=fired_at,
                status=CheckInStatus.PENDING.value,
                questions_snapshot=list(schedule.questions or []),
                responses={},
                created_at=now,
            )
            session.add(instance)
            await session.flush()
        else:
            logger.info("Scan: instance for schedule_id=%s due_at=%s already exists", schedule_id, fired_at)

        next_at = advance_past(
            schedule.recurrence,
            schedule.custom_interval_days,
            schedule.time_of_day,
            schedule.timezone,
            fired_at,
            now,
        )
        moved = await session.execute(
            update(CheckInSchedule)
            .where(CheckInSchedule.id == schedule_id, CheckInSchedule.next_scheduled_at == fired_at)
            .values(next_scheduled_at=next_at, last_sent_at=now)
            .execution_options(synchronize_session=False)
        )
        if moved.rowcount != 1:
            # Another tick advanced the cursor first
            await session.rollback()
            return None
        try:
            await session.commit()
        except IntegrityError:
            await session.rollback()
            logger.info("Scan: schedule_id=%s due_at=%s fired by a concurrent pass", schedule_id, fired_at)
            return None
    if instance is not None:
        metrics.CHECK_INS_CREATED.inc()
        logger.info(
            "Scan: created instance_id=%s schedule_id=%s due_at=%s next=%s",
            instance.id, schedule_id, fired_at.isoformat(), next_at.isoformat(),
        )
    return instance


async def _disable_schedule(
    session_maker: async_sessionmaker[AsyncSession],
    schedule_id: uuid.UUID,
    reason: Exception,
) -> None:
    """Take a schedule whose stored rule no longer resolves out of the scan until its owner fixes it."""
    async with session_maker() as session:
        r = await session.execute(
            update(CheckInSchedule)
            .where(CheckInSchedule.id == schedule_id, CheckInSchedule.is_active.is_(True))
            .values(is_active=False)
            .execution_options(synchronize_session=False)
        )
        await session.commit()
    if r.rowcount == 1:
        metrics.SCHEDULES_DISABLED.inc()
        logger.error("Scan: disabled schedule_id=%s: %s", schedule_id, reason)


async def _dispatch_instance(
    session_maker: async_sessionmaker[AsyncSession],
    dispatcher: NotificationDispatcher,
    instance_id: uuid.UUID,
    now: datetime,
    *,
    dispatch_timeout: float,
    max_retry_age: timedelta,
    escalation_threshold: int,
) -> str:
    """Send one Pending instance or force it to Missed when too old. Returns the outcome for the summary."""
    lease_cutoff = now - timedelta(seconds=dispatch_timeout * 2)
    async with session_maker() as session:
        instance = await session.get(CheckInInstance, instance_id)
        if instance is None or instance.status != CheckInStatus.PENDING.value:
            return "skipped"
        parent = (
            await session.execute(
                select(CheckInSchedule.owner_id, CheckInSchedule.is_active).where(
                    CheckInSchedule.id == instance.schedule_id
                )
            )
        ).one_or_none()
        if parent is None:
            logger.warning(
                "Scan: instance_id=%s references missing schedule %s", instance_id, instance.schedule_id
            )
            await retire_orphan(session, instance_id, from_status=CheckInStatus.PENDING)
            await session.commit()
            return "orphan"
        owner_id, is_active = parent
        if not is_active:
            # Paused after the instance was created
            return "skipped"

        if now - (instance.created_at or instance.due_at) >= max_retry_age:
            transitioned, _ = await mark_missed(
                session,
                instance_id,
                instance.schedule_id,
                now,
                from_status=CheckInStatus.PENDING,
                escalation_threshold=escalation_threshold,
            )
            await session.commit()
            if transitioned:
                logger.warning("Scan: instance_id=%s never dispatched within %s, marked missed", instance_id, max_retry_age)
                return "expired"
            return "skipped"

        claimed = await session.execute(
            update(CheckInInstance)
            .where(
                CheckInInstance.id == instance_id,
                CheckInInstance.status == CheckInStatus.PENDING.value,
                or_(
                    CheckInInstance.dispatch_claimed_at.is_(None),
                    CheckInInstance.dispatch_claimed_at < lease_cutoff,
                ),
            )
            .values(dispatch_claimed_at=now, dispatch_attempts=CheckInInstance.dispatch_attempts + 1)
            .execution_options(synchronize_session=False)
        )
        await session.commit()
        if claimed.rowcount != 1:
            return "skipped"

        payload = check_in_reminder_payload(instance_id, len(instance.questions_snapshot or []))
        try:
            ok = await asyncio.wait_for(dispatcher.send(owner_id, payload), timeout=dispatch_timeout)
        except asyncio.TimeoutError:
            logger.warning("Scan: dispatch for instance_id=%s timed out after %ss", instance_id, dispatch_timeout)
            ok = False
        except Exception as e:
            logger.warning("Scan: dispatch for instance_id=%s failed: %s", instance_id, e)
            ok = False

        if ok:
            values = {"status": CheckInStatus.SENT.value, "sent_at": now, "dispatch_claimed_at": None}
        else:
            values = {"dispatch_claimed_at": None}
        await session.execute(
            update(CheckInInstance)
            .where(CheckInInstance.id == instance_id, CheckInInstance.status == CheckInStatus.PENDING.value)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        await session.commit()
    if ok:
        metrics.CHECK_INS_SENT.inc()
        logger.info("Scan: sent instance_id=%s to user_id=%s", instance_id, owner_id)
        return "sent"
    metrics.CHECK_INS_DISPATCH_FAILED.inc()
    return "failed"


async def scan(
    session_maker: async_sessionmaker[AsyncSession],
    dispatcher: NotificationDispatcher,
    now: datetime,
    *,
    concurrency: int = 5,
    dispatch_timeout: float = 10.0,
    max_retry_age: timedelta = timedelta(hours=24),
    escalation_threshold: int = 3,
    summary: dict | None = None,
) -> list[CheckInInstance]:
    """
    One due-scan pass. Fires every active schedule whose cursor is at or before now, then tries
    to dispatch every Pending instance (new ones and leftovers from failed sends). Returns the
    instances created by this pass. Per-schedule and per-instance failures are logged and left
    for the next pass.
    """
    sem = asyncio.Semaphore(max(1, concurrency))

    async with session_maker() as session:
        r = await session.execute(
            select(CheckInSchedule.id)
            .where(
                CheckInSchedule.is_active.is_(True),
                CheckInSchedule.next_scheduled_at <= now,
            )
            .order_by(CheckInSchedule.next_scheduled_at.asc())
        )
        due_ids = [row[0] for row in r.all()]
    if due_ids:
        logger.info("Scan: %s schedules due", len(due_ids))

    async def fire(schedule_id: uuid.UUID) -> CheckInInstance | None:
        async with sem:
            try:
                return await _fire_schedule(session_maker, schedule_id, now)
            except InvalidConfiguration as e:
                try:
                    await _disable_schedule(session_maker, schedule_id, e)
                except SQLAlchemyError as err:
                    logger.warning("Scan: failed to disable schedule_id=%s, will retry: %s", schedule_id, err)
                return None
            except (AccountabilityError, SQLAlchemyError) as e:
                logger.warning("Scan: failed to fire schedule_id=%s, will retry: %s", schedule_id, e)
                return None

    fired = await asyncio.gather(*[fire(sid) for sid in due_ids])
    created = [instance for instance in fired if instance is not None]

    async with session_maker() as session:
        r = await session.execute(
            select(CheckInInstance.id)
            .outerjoin(CheckInSchedule, CheckInSchedule.id == CheckInInstance.schedule_id)
            .where(
                CheckInInstance.status == CheckInStatus.PENDING.value,
                # Paused schedules send nothing; orphans are selected so they can be closed
                or_(CheckInSchedule.id.is_(None), CheckInSchedule.is_active.is_(True)),
            )
            .order_by(CheckInInstance.due_at.asc())
        )
        pending_ids = [row[0] for row in r.all()]

    async def dispatch(instance_id: uuid.UUID) -> str:
        async with sem:
            try:
                return await _dispatch_instance(
                    session_maker,
                    dispatcher,
                    instance_id,
                    now,
                    dispatch_timeout=dispatch_timeout,
                    max_retry_age=max_retry_age,
                    escalation_threshold=escalation_threshold,
                )
            except (AccountabilityError, SQLAlchemyError) as e:
                logger.warning("Scan: dispatch bookkeeping for instance_id=%s failed, will retry: %s", instance_id, e)
                return "failed"

    outcomes = await asyncio.gather(*[dispatch(iid) for iid in pending_ids])
    if summary is not None:
        summary["checkInsDue"] = len(due_ids)
        summary["instancesCreated"] = len(created)
        summary["notificationsSent"] = outcomes.count("sent")
        summary["dispatchFailures"] = outcomes.count("failed")
        summary["expiredUnsent"] = outcomes.count("expired")
        summary["orphansClosed"] = outcomes.count("orphan")
    return created
