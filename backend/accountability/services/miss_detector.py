"""
Check-in state machine past dispatch: Sent -> Missed after the grace period, Sent -> Completed on
response, consecutive-miss counting, and one sponsor escalation per run of misses.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Mapping

from sqlalchemy import or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from accountability.core.errors import AccountabilityError, InvalidInput, InvalidState, OrphanReference
from accountability.models.check_in_escalation import CheckInEscalation
from accountability.models.check_in_instance import TERMINAL_STATUSES, CheckInInstance, CheckInStatus
from accountability.models.check_in_schedule import CheckInSchedule
from accountability.models.user import User
from accountability.services import metrics
from accountability.services.push_notifications import NotificationDispatcher, sponsor_alert_payload
from accountability.services.sponsor_links import get_active_sponsor_id

logger = logging.getLogger(__name__)

MAX_RESPONSE_LENGTH = 500


@dataclass
class MissDetectionResult:
    missed: list[uuid.UUID] = field(default_factory=list)
    escalations_raised: list[CheckInEscalation] = field(default_factory=list)
    escalations_notified: int = 0


async def mark_missed(
    session: AsyncSession,
    instance_id: uuid.UUID,
    schedule_id: uuid.UUID,
    now: datetime,
    *,
    from_status: CheckInStatus,
    escalation_threshold: int,
) -> tuple[bool, CheckInEscalation | None]:
    """
    Transition one instance to Missed inside the caller's transaction and count the miss on its
    schedule. Returns (transitioned, escalation raised by this miss). The transition is a
    compare-and-swap on status, so a concurrent tick that got there first makes this a no-op.
    Raises OrphanReference when the schedule is gone.
    """
    owner_id = (
        await session.execute(select(CheckInSchedule.owner_id).where(CheckInSchedule.id == schedule_id))
    ).scalar_one_or_none()
    if owner_id is None:
        raise OrphanReference(f"check-in instance {instance_id} references missing schedule {schedule_id}")

    r = await session.execute(
        update(CheckInInstance)
        .where(CheckInInstance.id == instance_id, CheckInInstance.status == from_status.value)
        .values(status=CheckInStatus.MISSED.value, dispatch_claimed_at=None)
        .execution_options(synchronize_session=False)
    )
    if r.rowcount != 1:
        return False, None

    await session.execute(
        update(CheckInSchedule)
        .where(CheckInSchedule.id == schedule_id)
        .values(consecutive_misses=CheckInSchedule.consecutive_misses + 1)
        .execution_options(synchronize_session=False)
    )
    misses = (
        await session.execute(select(CheckInSchedule.consecutive_misses).where(CheckInSchedule.id == schedule_id))
    ).scalar_one()
    metrics.CHECK_INS_MISSED.labels(reason=from_status.value).inc()
    logger.info("Misses: instance_id=%s missed (schedule_id=%s, consecutive=%s)", instance_id, schedule_id, misses)

    if misses < escalation_threshold:
        return True, None
    # Arm flag: only the transaction that flips it raises the escalation for this run of misses
    armed = await session.execute(
        update(CheckInSchedule)
        .where(CheckInSchedule.id == schedule_id, CheckInSchedule.escalation_raised.is_(False))
        .values(escalation_raised=True)
        .execution_options(synchronize_session=False)
    )
    if armed.rowcount != 1:
        return True, None
    escalation = CheckInEscalation(
        schedule_id=schedule_id,
        sponsee_id=owner_id,
        sponsor_id=await get_active_sponsor_id(session, owner_id),
        consecutive_misses=misses,
        raised_at=now,
    )
    session.add(escalation)
    await session.flush()
    metrics.ESCALATIONS_RAISED.inc()
    if escalation.sponsor_id is None:
        logger.warning("Misses: escalation for schedule_id=%s raised but owner has no active sponsor", schedule_id)
    else:
        logger.info(
            "Misses: escalation raised for schedule_id=%s after %s misses (sponsor_id=%s)",
            schedule_id, misses, escalation.sponsor_id,
        )
    return True, escalation


async def retire_orphan(session: AsyncSession, instance_id: uuid.UUID, *, from_status: CheckInStatus) -> bool:
    """
    Close an instance whose schedule no longer exists as Missed so later ticks stop selecting it.
    There is no schedule left to count the miss on, so only the status changes.
    """
    r = await session.execute(
        update(CheckInInstance)
        .where(CheckInInstance.id == instance_id, CheckInInstance.status == from_status.value)
        .values(status=CheckInStatus.MISSED.value, dispatch_claimed_at=None)
        .execution_options(synchronize_session=False)
    )
    if r.rowcount != 1:
        return False
    metrics.ORPHANS_SKIPPED.inc()
    logger.warning("Misses: instance_id=%s has no schedule, closed as missed", instance_id)
    return True


async def detect_misses(
    session_maker: async_sessionmaker[AsyncSession],
    dispatcher: NotificationDispatcher,
    now: datetime,
    *,
    grace_period: timedelta,
    escalation_threshold: int,
    dispatch_timeout: float = 10.0,
) -> MissDetectionResult:
    """
    Mark every Sent instance whose grace period elapsed without a response as Missed, raise
    escalations where a schedule reaches the threshold, then deliver outstanding escalations.
    Each instance commits on its own; a failing one is logged and left for the next tick.
    """
    result = MissDetectionResult()
    cutoff = now - grace_period
    async with session_maker() as session:
        r = await session.execute(
            select(CheckInInstance.id, CheckInInstance.schedule_id)
            .where(
                CheckInInstance.status == CheckInStatus.SENT.value,
                CheckInInstance.responded_at.is_(None),
                CheckInInstance.sent_at <= cutoff,
            )
            .order_by(CheckInInstance.sent_at.asc())
        )
        overdue = r.all()

    for instance_id, schedule_id in overdue:
        try:
            async with session_maker() as session:
                async with session.begin():
                    transitioned, escalation = await mark_missed(
                        session,
                        instance_id,
                        schedule_id,
                        now,
                        from_status=CheckInStatus.SENT,
                        escalation_threshold=escalation_threshold,
                    )
        except OrphanReference as e:
            logger.warning("Misses: skipping instance_id=%s: %s", instance_id, e)
            try:
                async with session_maker() as session:
                    async with session.begin():
                        await retire_orphan(session, instance_id, from_status=CheckInStatus.SENT)
            except SQLAlchemyError as err:
                logger.warning("Misses: failed to close orphan instance_id=%s, will retry: %s", instance_id, err)
            continue
        except (AccountabilityError, SQLAlchemyError) as e:
            logger.warning("Misses: failed to mark instance_id=%s missed, will retry: %s", instance_id, e)
            continue
        if transitioned:
            result.missed.append(instance_id)
        if escalation is not None:
            result.escalations_raised.append(escalation)

    result.escalations_notified = await dispatch_pending_escalations(
        session_maker, dispatcher, now, dispatch_timeout=dispatch_timeout
    )
    return result


async def dispatch_pending_escalations(
    session_maker: async_sessionmaker[AsyncSession],
    dispatcher: NotificationDispatcher,
    now: datetime,
    *,
    dispatch_timeout: float = 10.0,
) -> int:
    """Send every raised, not yet delivered escalation that has a sponsor. Returns how many were delivered."""
    lease_cutoff = now - timedelta(seconds=dispatch_timeout * 2)
    async with session_maker() as session:
        r = await session.execute(
            select(CheckInEscalation.id)
            .where(
                CheckInEscalation.notified_at.is_(None),
                CheckInEscalation.sponsor_id.isnot(None),
            )
            .order_by(CheckInEscalation.raised_at.asc())
        )
        pending_ids = [row[0] for row in r.all()]

    delivered = 0
    for escalation_id in pending_ids:
        try:
            async with session_maker() as session:
                claimed = await session.execute(
                    update(CheckInEscalation)
                    .where(
                        CheckInEscalation.id == escalation_id,
                        CheckInEscalation.notified_at.is_(None),
                        or_(
                            CheckInEscalation.dispatch_claimed_at.is_(None),
                            CheckInEscalation.dispatch_claimed_at < lease_cutoff,
                        ),
                    )
                    .values(
                        dispatch_claimed_at=now,
                        dispatch_attempts=CheckInEscalation.dispatch_attempts + 1,
                    )
                    .execution_options(synchronize_session=False)
                )
                await session.commit()
                if claimed.rowcount != 1:
                    continue
                escalation = await session.get(CheckInEscalation, escalation_id)
                sponsee_name = (
                    await session.execute(select(User.full_name).where(User.id == escalation.sponsee_id))
                ).scalar_one_or_none()
                payload = sponsor_alert_payload(
                    escalation.id, escalation.schedule_id, sponsee_name, escalation.consecutive_misses
                )
                try:
                    ok = await asyncio.wait_for(dispatcher.send(escalation.sponsor_id, payload), timeout=dispatch_timeout)
                except asyncio.TimeoutError:
                    logger.warning("Misses: sponsor alert for escalation_id=%s timed out", escalation_id)
                    ok = False
                except Exception as e:
                    logger.warning("Misses: sponsor alert for escalation_id=%s failed: %s", escalation_id, e)
                    ok = False
                values = {"notified_at": now} if ok else {"dispatch_claimed_at": None}
                await session.execute(
                    update(CheckInEscalation)
                    .where(CheckInEscalation.id == escalation_id)
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
                await session.commit()
        except SQLAlchemyError as e:
            logger.warning("Misses: escalation_id=%s dispatch bookkeeping failed, will retry: %s", escalation_id, e)
            continue
        if ok:
            delivered += 1
            metrics.ESCALATIONS_NOTIFIED.inc()
            logger.info("Misses: sponsor alerted for escalation_id=%s", escalation_id)
    return delivered


def _validate_responses(responses: Mapping[int | str, str], question_count: int) -> dict[str, str]:
    cleaned: dict[str, str] = {}
    for key, answer in responses.items():
        try:
            index = int(key)
        except (TypeError, ValueError):
            raise InvalidInput(f"Response key {key!r} is not a question index") from None
        if not 0 <= index < question_count:
            raise InvalidInput(f"Response index {index} is out of range for {question_count} questions")
        text = (answer or "").strip()
        if len(text) > MAX_RESPONSE_LENGTH:
            raise InvalidInput(f"Response {index} exceeds {MAX_RESPONSE_LENGTH} characters")
        cleaned[str(index)] = text
    if not cleaned:
        raise InvalidInput("At least one response is required")
    return cleaned


async def submit_check_in_response(
    session: AsyncSession,
    instance_id: uuid.UUID,
    owner_id: uuid.UUID,
    responses: Mapping[int | str, str],
    now: datetime,
    *,
    grace_period: timedelta,
) -> CheckInInstance:
    """
    Complete a check-in. Allowed from Pending or Sent while the grace window (from sent_at, or
    due_at if never sent) is open. Completion resets the schedule's miss counter and re-arms
    escalation.
    """
    r = await session.execute(
        select(CheckInInstance, CheckInSchedule)
        .join(CheckInSchedule, CheckInSchedule.id == CheckInInstance.schedule_id)
        .where(CheckInInstance.id == instance_id)
    )
    row = r.one_or_none()
    if row is None or row[1].owner_id != owner_id:
        raise OrphanReference(f"check-in {instance_id} not found")
    instance, schedule = row
    if instance.status in {s.value for s in TERMINAL_STATUSES}:
        raise InvalidState(f"check-in {instance_id} is already {instance.status}")
    window_start = instance.sent_at or instance.due_at
    if now - window_start >= grace_period:
        raise InvalidState(f"check-in {instance_id} grace period has elapsed")
    cleaned = _validate_responses(responses, len(instance.questions_snapshot or []))

    done = await session.execute(
        update(CheckInInstance)
        .where(
            CheckInInstance.id == instance_id,
            CheckInInstance.status.in_([CheckInStatus.PENDING.value, CheckInStatus.SENT.value]),
        )
        .values(
            status=CheckInStatus.COMPLETED.value,
            responded_at=now,
            responses=cleaned,
            dispatch_claimed_at=None,
        )
        .execution_options(synchronize_session=False)
    )
    if done.rowcount != 1:
        raise InvalidState(f"check-in {instance_id} changed state concurrently")
    await session.execute(
        update(CheckInSchedule)
        .where(CheckInSchedule.id == schedule.id)
        .values(consecutive_misses=0, escalation_raised=False)
        .execution_options(synchronize_session=False)
    )
    await session.flush()
    await session.refresh(instance)
    await session.refresh(schedule)
    metrics.CHECK_INS_COMPLETED.inc()
    logger.info("Misses: instance_id=%s completed; schedule_id=%s counter reset", instance_id, schedule.id)
    return instance
