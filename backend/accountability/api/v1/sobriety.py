"""Sobriety API: set start date, log relapses, read derived streak and milestones."""

from datetime import date, datetime, timezone
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from accountability.api.deps import CurrentUserId, get_dispatcher
from accountability.config import settings
from accountability.db.session import get_db
from accountability.models.relapse import Relapse
from accountability.schemas.sobriety import (
    LogRelapseBody,
    MilestoneResponse,
    RelapseResponse,
    SetSobrietyDateBody,
    SobrietyStatsResponse,
)
from accountability.services.push_notifications import NotificationDispatcher
from accountability.services.sobriety import (
    SobrietyStats,
    get_owned_record,
    get_sobriety_stats,
    list_active_records,
    list_relapses,
    log_relapse,
    notify_sponsor_of_relapse,
    set_sobriety_date,
)
from accountability.services.streaks import milestone_progress

router = APIRouter(prefix="/sobriety", tags=["sobriety"])


def _stats_to_response(stats: SobrietyStats) -> SobrietyStatsResponse:
    record, streak = stats.record, stats.streak
    return SobrietyStatsResponse(
        id=record.id,
        substance_type=record.substance_type,
        start_date=record.start_date,
        is_active=record.is_active,
        current_streak_days=streak.current_streak_days,
        milestones_achieved=list(streak.milestones_achieved),
        next_milestone_days=streak.next_milestone_days,
        days_until_next_milestone=streak.days_until_next_milestone,
        total_relapses=stats.total_relapses,
        last_relapse_date=stats.last_relapse_date,
        milestones=[
            MilestoneResponse(type=m.tag, days=m.days, display_text=m.display_text, achieved=m.achieved)
            for m in milestone_progress(streak)
        ],
    )


def _relapse_to_response(row: Relapse) -> RelapseResponse:
    return RelapseResponse(
        id=row.id,
        sobriety_date_id=row.sobriety_date_id,
        relapse_date=row.relapse_date,
        private_note=row.private_note,
        trigger_context=row.trigger_context,
        sponsor_notified=row.sponsor_notified,
    )


@router.put(
    "",
    response_model=SobrietyStatsResponse,
    summary="Set sobriety start date",
    responses={401: {"description": "Not authenticated"}},
)
async def put_sobriety_date(
    session: Annotated[AsyncSession, Depends(get_db)],
    user_id: CurrentUserId,
    body: SetSobrietyDateBody,
) -> SobrietyStatsResponse:
    """Start (or restart) tracking a substance. A previous active record for it is archived."""
    now = datetime.now(timezone.utc)
    record = await set_sobriety_date(session, user_id, body.substance_type, body.start_date, now.date())
    await session.commit()
    return _stats_to_response(await get_sobriety_stats(session, record, now))


@router.get("", response_model=list[SobrietyStatsResponse], summary="Current streaks and milestones")
async def get_sobriety(
    session: Annotated[AsyncSession, Depends(get_db)],
    user_id: CurrentUserId,
) -> list[SobrietyStatsResponse]:
    now = datetime.now(timezone.utc)
    return [
        _stats_to_response(await get_sobriety_stats(session, record, now))
        for record in await list_active_records(session, user_id)
    ]


@router.post(
    "/{sobriety_date_id}/relapses",
    response_model=SobrietyStatsResponse,
    status_code=201,
    summary="Log a relapse",
)
async def post_relapse(
    sobriety_date_id: UUID,
    session: Annotated[AsyncSession, Depends(get_db)],
    user_id: CurrentUserId,
    dispatcher: Annotated[NotificationDispatcher, Depends(get_dispatcher)],
    body: LogRelapseBody,
) -> SobrietyStatsResponse:
    """Append a relapse and return the recomputed streak. Optionally notifies the active sponsor."""
    now = datetime.now(timezone.utc)
    relapse = await log_relapse(
        session,
        sobriety_date_id,
        user_id,
        body.relapse_date,
        now,
        private_note=body.private_note,
        trigger_context=body.trigger_context,
    )
    await session.commit()
    if body.notify_sponsor:
        await notify_sponsor_of_relapse(
            session,
            dispatcher,
            relapse,
            user_id,
            dispatch_timeout=settings.check_in_dispatch_timeout_seconds,
        )
        await session.commit()
    record = await get_owned_record(session, sobriety_date_id, user_id)
    return _stats_to_response(await get_sobriety_stats(session, record, now))


@router.get("/{sobriety_date_id}/relapses", response_model=list[RelapseResponse], summary="Relapse history")
async def get_relapses(
    sobriety_date_id: UUID,
    session: Annotated[AsyncSession, Depends(get_db)],
    user_id: CurrentUserId,
) -> list[RelapseResponse]:
    record = await get_owned_record(session, sobriety_date_id, user_id)
    return [_relapse_to_response(row) for row in await list_relapses(session, record.id)]
