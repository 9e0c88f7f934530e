"""Tests for the periodic check-in tick (scan then miss detection, bounded by the pass deadline)."""

from datetime import timedelta
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import select

from accountability.config import settings
from accountability.models import CheckInInstance, CheckInSchedule
from accountability.services.jobs import run_check_in_cycle, run_check_in_pass
from conftest import FakeDispatcher, add_schedule, add_sponsor_link, add_user, utc

CREATED_AT = utc(2024, 6, 1, 8, 0)


@pytest.mark.asyncio
async def test_tick_summary_counts_each_stage(session_maker, dispatcher):
    sponsee = await add_user(session_maker, full_name="Alex")
    sponsor = await add_user(session_maker, full_name="Jordan")
    await add_sponsor_link(session_maker, sponsor, sponsee)
    await add_schedule(session_maker, sponsee, now=CREATED_AT, consecutive_misses=2)

    first = await run_check_in_cycle(utc(2024, 6, 1, 9, 1), session_maker=session_maker, dispatcher=dispatcher)

    assert first["success"] is True
    assert first["checkInsDue"] == 1
    assert first["instancesCreated"] == 1
    assert first["notificationsSent"] == 1
    assert first["missedTracked"] == 0

    # Next day: yesterday's check-in is past grace and today's fires
    second = await run_check_in_cycle(utc(2024, 6, 2, 9, 2), session_maker=session_maker, dispatcher=dispatcher)

    assert second["success"] is True
    assert second["instancesCreated"] == 1
    assert second["missedTracked"] == 1
    assert second["escalationsRaised"] == 1
    assert second["sponsorAlerts"] == 1
    assert [uid for uid, _ in dispatcher.sent_of_type("missed-check-in-alert")] == [sponsor]
    async with session_maker() as session:
        statuses = (
            await session.execute(select(CheckInInstance.status).order_by(CheckInInstance.due_at))
        ).scalars().all()
    assert statuses == ["missed", "sent"]


@pytest.mark.asyncio
async def test_tick_is_idempotent_for_same_instant(session_maker, dispatcher):
    owner = await add_user(session_maker)
    await add_schedule(session_maker, owner, now=CREATED_AT)
    now = utc(2024, 6, 1, 9, 1)

    await run_check_in_cycle(now, session_maker=session_maker, dispatcher=dispatcher)
    again = await run_check_in_cycle(now, session_maker=session_maker, dispatcher=dispatcher)

    assert again["success"] is True
    assert again["instancesCreated"] == 0
    assert again["notificationsSent"] == 0
    assert len(dispatcher.sent) == 1


@pytest.mark.asyncio
async def test_tick_over_deadline_reports_failure_and_leaves_work_for_next_tick(session_maker):
    owner = await add_user(session_maker)
    await add_schedule(session_maker, owner, now=CREATED_AT)
    slow = FakeDispatcher(delay=1.0)

    with patch.object(settings, "check_in_pass_deadline_seconds", 0.1):
        result = await run_check_in_cycle(utc(2024, 6, 1, 9, 1), session_maker=session_maker, dispatcher=slow)

    assert result == {"success": False, "error": "deadline exceeded"}
    async with session_maker() as session:
        [instance] = (await session.execute(select(CheckInInstance))).scalars().all()
    assert instance.status == "pending"

    retry = await run_check_in_cycle(
        utc(2024, 6, 1, 9, 6) + timedelta(seconds=settings.check_in_dispatch_timeout_seconds * 2),
        session_maker=session_maker,
        dispatcher=FakeDispatcher(),
    )
    assert retry["notificationsSent"] == 1


@pytest.mark.asyncio
async def test_tick_reports_unexpected_failure(session_maker, dispatcher):
    with patch("accountability.services.jobs.scan", new_callable=AsyncMock, side_effect=RuntimeError("boom")):
        result = await run_check_in_cycle(utc(2024, 6, 1), session_maker=session_maker, dispatcher=dispatcher)
    assert result == {"success": False, "error": "boom"}


@pytest.mark.asyncio
async def test_unresolvable_schedule_does_not_block_other_users(session_maker, dispatcher):
    stale_owner = await add_user(session_maker, full_name="Stale")
    stale = await add_schedule(session_maker, stale_owner, now=CREATED_AT)
    await run_check_in_cycle(utc(2024, 6, 1, 9, 1), session_maker=session_maker, dispatcher=dispatcher)

    later = utc(2024, 6, 3, 10, 0)
    good_owner = await add_user(session_maker, full_name="Good")
    good = await add_schedule(session_maker, good_owner, now=utc(2024, 6, 3, 8, 0))
    broken_owner = await add_user(session_maker, full_name="Broken")
    broken = await add_schedule(session_maker, broken_owner, now=utc(2024, 6, 3, 8, 0), timezone="Not/AZone")

    with patch.object(settings, "check_in_scan_concurrency", 1):
        summary = await run_check_in_pass(session_maker, dispatcher, later)

    assert summary["missedTracked"] == 1
    assert good_owner in [uid for uid, _ in dispatcher.sent]
    async with session_maker() as session:
        first_stale = (
            await session.execute(
                select(CheckInInstance).where(CheckInInstance.schedule_id == stale.id).order_by(CheckInInstance.due_at)
            )
        ).scalars().first()
        good_instances = (
            await session.execute(select(CheckInInstance).where(CheckInInstance.schedule_id == good.id))
        ).scalars().all()
        broken_row = await session.get(CheckInSchedule, broken.id)
        broken_instances = (
            await session.execute(select(CheckInInstance).where(CheckInInstance.schedule_id == broken.id))
        ).scalars().all()
    assert first_stale.status == "missed"
    assert [i.status for i in good_instances] == ["sent"]
    assert broken_row.is_active is False
    assert broken_instances == []

    # Disabled, so the next tick no longer trips over it
    again = await run_check_in_pass(session_maker, dispatcher, later + timedelta(minutes=1))
    assert again["checkInsDue"] == 0
