"""Sobriety dates, append-only relapse log, and derived streak stats."""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime, time, timezone

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from accountability.core.errors import InvalidInput, OrphanReference
from accountability.models.relapse import TRIGGER_CONTEXTS, Relapse
from accountability.models.sobriety_date import SobrietyDate
from accountability.models.user import User
from accountability.services.push_notifications import NotificationDispatcher, relapse_notice_payload
from accountability.services.sponsor_links import get_active_sponsor_id
from accountability.services.streaks import StreakStats, compute_stats

logger = logging.getLogger(__name__)

MAX_SUBSTANCE_LENGTH = 64
MAX_NOTE_LENGTH = 2000


@dataclass(frozen=True)
class SobrietyStats:
    record: SobrietyDate
    streak: StreakStats
    total_relapses: int
    last_relapse_date: datetime | None


async def set_sobriety_date(
    session: AsyncSession,
    user_id: uuid.UUID,
    substance_type: str,
    start_date: date,
    today: date,
) -> SobrietyDate:
    """
    Start tracking (or restart) a substance. The previous active record for the same substance is
    deactivated rather than edited, so its relapse history stays attached to the dates it was logged against.
    """
    substance = (substance_type or "").strip().lower()
    if not substance or len(substance) > MAX_SUBSTANCE_LENGTH:
        raise InvalidInput("substance_type is required (max 64 characters)")
    if start_date > today:
        raise InvalidInput("start_date cannot be in the future")
    await session.execute(
        update(SobrietyDate)
        .where(
            SobrietyDate.user_id == user_id,
            SobrietyDate.substance_type == substance,
            SobrietyDate.is_active.is_(True),
        )
        .values(is_active=False)
        .execution_options(synchronize_session=False)
    )
    record = SobrietyDate(user_id=user_id, substance_type=substance, start_date=start_date, is_active=True)
    session.add(record)
    await session.flush()
    logger.info("Sobriety: user_id=%s tracking %s since %s", user_id, substance, start_date.isoformat())
    return record


async def get_owned_record(
    session: AsyncSession,
    sobriety_date_id: uuid.UUID,
    user_id: uuid.UUID,
) -> SobrietyDate:
    r = await session.execute(
        select(SobrietyDate).where(SobrietyDate.id == sobriety_date_id, SobrietyDate.user_id == user_id)
    )
    record = r.scalar_one_or_none()
    if record is None:
        raise OrphanReference(f"sobriety record {sobriety_date_id} not found")
    return record


async def log_relapse(
    session: AsyncSession,
    sobriety_date_id: uuid.UUID,
    user_id: uuid.UUID,
    relapse_date: datetime,
    now: datetime,
    *,
    private_note: str | None = None,
    trigger_context: str | None = None,
) -> Relapse:
    """Append a relapse. The streak read afterwards restarts from relapse_date; nothing else is rewritten."""
    record = await get_owned_record(session, sobriety_date_id, user_id)
    if relapse_date.tzinfo is None:
        relapse_date = relapse_date.replace(tzinfo=timezone.utc)
    start = datetime.combine(record.start_date, time.min, tzinfo=timezone.utc)
    if relapse_date < start:
        raise InvalidInput("relapse_date cannot be before the sobriety start date")
    if relapse_date > now:
        raise InvalidInput("relapse_date cannot be in the future")
    if trigger_context is not None and trigger_context not in TRIGGER_CONTEXTS:
        raise InvalidInput(f"trigger_context must be one of {', '.join(TRIGGER_CONTEXTS)}")
    note = (private_note or "").strip() or None
    if note and len(note) > MAX_NOTE_LENGTH:
        raise InvalidInput(f"private_note is limited to {MAX_NOTE_LENGTH} characters")
    relapse = Relapse(
        sobriety_date_id=record.id,
        relapse_date=relapse_date,
        private_note=note,
        trigger_context=trigger_context,
        sponsor_notified=False,
    )
    session.add(relapse)
    await session.flush()
    logger.info("Sobriety: relapse logged for sobriety_date_id=%s", record.id)
    return relapse


async def notify_sponsor_of_relapse(
    session: AsyncSession,
    dispatcher: NotificationDispatcher,
    relapse: Relapse,
    user_id: uuid.UUID,
    *,
    dispatch_timeout: float = 10.0,
) -> bool:
    """Tell the active sponsor about a relapse (without the private note). Marks sponsor_notified on success."""
    if relapse.sponsor_notified:
        return True
    sponsor_id = await get_active_sponsor_id(session, user_id)
    if sponsor_id is None:
        logger.debug("Sobriety: no active sponsor for user_id=%s; relapse notice skipped", user_id)
        return False
    name = (await session.execute(select(User.full_name).where(User.id == user_id))).scalar_one_or_none()
    try:
        ok = await asyncio.wait_for(
            dispatcher.send(sponsor_id, relapse_notice_payload(relapse.id, name)),
            timeout=dispatch_timeout,
        )
    except asyncio.TimeoutError:
        logger.warning("Sobriety: relapse notice for relapse_id=%s timed out", relapse.id)
        ok = False
    except Exception as e:
        logger.warning("Sobriety: relapse notice for relapse_id=%s failed: %s", relapse.id, e)
        ok = False
    if ok:
        relapse.sponsor_notified = True
        await session.flush()
    return ok


async def list_relapses(session: AsyncSession, sobriety_date_id: uuid.UUID) -> list[Relapse]:
    r = await session.execute(
        select(Relapse).where(Relapse.sobriety_date_id == sobriety_date_id).order_by(Relapse.relapse_date.asc())
    )
    return list(r.scalars().all())


async def get_sobriety_stats(session: AsyncSession, record: SobrietyDate, now: datetime) -> SobrietyStats:
    """Derive streak and milestones from the start date and the full relapse log."""
    r = await session.execute(
        select(func.count(Relapse.id), func.max(Relapse.relapse_date)).where(
            Relapse.sobriety_date_id == record.id
        )
    )
    total, last = r.one()
    if last is not None and last.tzinfo is None:
        last = last.replace(tzinfo=timezone.utc)
    relapses = [last] if last is not None else []
    return SobrietyStats(
        record=record,
        streak=compute_stats(record.start_date, relapses, now),
        total_relapses=int(total or 0),
        last_relapse_date=last,
    )


async def list_active_records(session: AsyncSession, user_id: uuid.UUID) -> list[SobrietyDate]:
    r = await session.execute(
        select(SobrietyDate)
        .where(SobrietyDate.user_id == user_id, SobrietyDate.is_active.is_(True))
        .order_by(SobrietyDate.created_at.asc())
    )
    return list(r.scalars().all())
