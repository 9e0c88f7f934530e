"""Periodic check-in tick: due scan, then miss detection. Invoked by APScheduler or the internal cron endpoint."""

import asyncio
import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from accountability.config import settings
from accountability.services.check_in_scheduler import scan
from accountability.services.miss_detector import detect_misses
from accountability.services.push_notifications import ExpoPushDispatcher, NotificationDispatcher

logger = logging.getLogger(__name__)


async def run_check_in_pass(
    session_maker: async_sessionmaker[AsyncSession],
    dispatcher: NotificationDispatcher,
    now: datetime,
) -> dict:
    """Scan then detect misses with the configured policy. Returns counters for logs and the cron endpoint."""
    summary: dict = {}
    await scan(
        session_maker,
        dispatcher,
        now,
        concurrency=settings.check_in_scan_concurrency,
        dispatch_timeout=settings.check_in_dispatch_timeout_seconds,
        max_retry_age=timedelta(hours=settings.check_in_max_retry_age_hours),
        escalation_threshold=settings.check_in_escalation_threshold,
        summary=summary,
    )
    misses = await detect_misses(
        session_maker,
        dispatcher,
        now,
        grace_period=timedelta(hours=settings.check_in_grace_period_hours),
        escalation_threshold=settings.check_in_escalation_threshold,
        dispatch_timeout=settings.check_in_dispatch_timeout_seconds,
    )
    summary["missedTracked"] = len(misses.missed)
    summary["escalationsRaised"] = len(misses.escalations_raised)
    summary["sponsorAlerts"] = misses.escalations_notified
    return summary


async def run_check_in_cycle(
    now: datetime | None = None,
    *,
    session_maker: async_sessionmaker[AsyncSession] | None = None,
    dispatcher: NotificationDispatcher | None = None,
) -> dict:
    """
    Scheduled job: one tick bounded by check_in_pass_deadline_seconds. Work cut off by the
    deadline rolls back per item and is picked up by the next tick.
    """
    if session_maker is None:
        from accountability.db.session import async_session_maker

        session_maker = async_session_maker
    dispatcher = dispatcher or ExpoPushDispatcher(session_maker)
    now = now or datetime.now(timezone.utc)
    try:
        summary = await asyncio.wait_for(
            run_check_in_pass(session_maker, dispatcher, now),
            timeout=settings.check_in_pass_deadline_seconds,
        )
    except asyncio.TimeoutError:
        logger.warning(
            "Check-in tick at %s hit the %ss deadline; remaining work deferred to next tick",
            now.isoformat(), settings.check_in_pass_deadline_seconds,
        )
        return {"success": False, "error": "deadline exceeded"}
    except Exception as e:
        logger.exception("Check-in tick at %s failed: %s", now.isoformat(), e)
        return {"success": False, "error": str(e)}
    logger.info("Check-in tick at %s: %s", now.isoformat(), summary)
    return {"success": True, **summary}
