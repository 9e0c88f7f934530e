"""Check-ins API: configure recurring check-ins, list instances, submit responses."""

from datetime import datetime, timedelta, timezone
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from accountability.api.deps import CurrentUserId
from accountability.config import settings
from accountability.db.session import get_db
from accountability.models.check_in_instance import CheckInInstance
from accountability.models.check_in_schedule import CheckInSchedule
from accountability.schemas.check_in import (
    CheckInInstanceResponse,
    CheckInResponseBody,
    ScheduleCreate,
    ScheduleResponse,
    ScheduleUpdate,
)
from accountability.schemas.pagination import PaginatedResponse
from accountability.services.miss_detector import submit_check_in_response
from accountability.services.schedules import (
    create_schedule,
    get_owned_schedule,
    list_schedules,
    set_schedule_active,
    update_schedule,
)

router = APIRouter(prefix="/check-ins", tags=["check-ins"])


def _schedule_to_response(row: CheckInSchedule) -> ScheduleResponse:
    return ScheduleResponse(
        id=row.id,
        recurrence=row.recurrence,
        custom_interval_days=row.custom_interval_days,
        time_of_day=row.time_of_day.strftime("%H:%M"),
        timezone=row.timezone,
        questions=list(row.questions or []),
        next_scheduled_at=row.next_scheduled_at,
        last_sent_at=row.last_sent_at,
        consecutive_misses=row.consecutive_misses,
        is_active=row.is_active,
    )


def _instance_to_response(row: CheckInInstance) -> CheckInInstanceResponse:
    return CheckInInstanceResponse(
        id=row.id,
        schedule_id=row.schedule_id,
        due_at=row.due_at,
        sent_at=row.sent_at,
        responded_at=row.responded_at,
        questions=list(row.questions_snapshot or []),
        responses=dict(row.responses or {}),
        status=row.status,
    )


async def _require_schedule(session: AsyncSession, schedule_id: UUID, user_id: UUID) -> CheckInSchedule:
    schedule = await get_owned_schedule(session, schedule_id, user_id)
    if schedule is None:
        raise HTTPException(status_code=404, detail="Schedule not found")
    return schedule


@router.post(
    "/schedules",
    response_model=ScheduleResponse,
    status_code=201,
    summary="Create check-in schedule",
    responses={401: {"description": "Not authenticated"}, 422: {"description": "Invalid recurrence"}},
)
async def create_check_in_schedule(
    session: Annotated[AsyncSession, Depends(get_db)],
    user_id: CurrentUserId,
    body: ScheduleCreate,
) -> ScheduleResponse:
    schedule = await create_schedule(
        session,
        user_id,
        recurrence=body.recurrence,
        custom_interval_days=body.custom_interval_days,
        time_of_day=body.time_of_day,
        timezone=body.timezone,
        questions=body.questions,
        now=datetime.now(timezone.utc),
    )
    await session.commit()
    return _schedule_to_response(schedule)


@router.get("/schedules", response_model=list[ScheduleResponse], summary="List my check-in schedules")
async def get_check_in_schedules(
    session: Annotated[AsyncSession, Depends(get_db)],
    user_id: CurrentUserId,
) -> list[ScheduleResponse]:
    return [_schedule_to_response(row) for row in await list_schedules(session, user_id)]


@router.patch("/schedules/{schedule_id}", response_model=ScheduleResponse, summary="Update check-in schedule")
async def patch_check_in_schedule(
    schedule_id: UUID,
    session: Annotated[AsyncSession, Depends(get_db)],
    user_id: CurrentUserId,
    body: ScheduleUpdate,
) -> ScheduleResponse:
    schedule = await _require_schedule(session, schedule_id, user_id)
    await update_schedule(
        session,
        schedule,
        now=datetime.now(timezone.utc),
        recurrence=body.recurrence,
        custom_interval_days=body.custom_interval_days,
        time_of_day=body.time_of_day,
        timezone=body.timezone,
        questions=body.questions,
    )
    await session.commit()
    return _schedule_to_response(schedule)


@router.post("/schedules/{schedule_id}/disable", response_model=ScheduleResponse, summary="Pause check-ins")
async def disable_check_in_schedule(
    schedule_id: UUID,
    session: Annotated[AsyncSession, Depends(get_db)],
    user_id: CurrentUserId,
) -> ScheduleResponse:
    schedule = await _require_schedule(session, schedule_id, user_id)
    await set_schedule_active(session, schedule, False, datetime.now(timezone.utc))
    await session.commit()
    return _schedule_to_response(schedule)


@router.post("/schedules/{schedule_id}/enable", response_model=ScheduleResponse, summary="Resume check-ins")
async def enable_check_in_schedule(
    schedule_id: UUID,
    session: Annotated[AsyncSession, Depends(get_db)],
    user_id: CurrentUserId,
) -> ScheduleResponse:
    """Resume a paused schedule. The miss counter starts again from zero."""
    schedule = await _require_schedule(session, schedule_id, user_id)
    await set_schedule_active(session, schedule, True, datetime.now(timezone.utc))
    await session.commit()
    return _schedule_to_response(schedule)


@router.get(
    "/schedules/{schedule_id}/instances",
    response_model=PaginatedResponse,
    summary="Check-in history for a schedule",
)
async def get_check_in_instances(
    schedule_id: UUID,
    session: Annotated[AsyncSession, Depends(get_db)],
    user_id: CurrentUserId,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
) -> PaginatedResponse:
    """Newest first."""
    await _require_schedule(session, schedule_id, user_id)
    base = (
        select(CheckInInstance)
        .where(CheckInInstance.schedule_id == schedule_id)
        .order_by(CheckInInstance.due_at.desc())
    )
    total = (await session.execute(select(func.count()).select_from(base.subquery()))).scalar() or 0
    r = await session.execute(base.offset(offset).limit(limit))
    items = [_instance_to_response(row).model_dump(mode="json") for row in r.scalars().all()]
    return PaginatedResponse(
        items=items,
        total=total,
        limit=limit,
        offset=offset,
        has_more=(offset + limit) < total,
    )


@router.post(
    "/instances/{instance_id}/responses",
    response_model=CheckInInstanceResponse,
    summary="Submit check-in answers",
    responses={409: {"description": "Check-in already closed or grace period elapsed"}},
)
async def respond_to_check_in(
    instance_id: UUID,
    session: Annotated[AsyncSession, Depends(get_db)],
    user_id: CurrentUserId,
    body: CheckInResponseBody,
) -> CheckInInstanceResponse:
    instance = await submit_check_in_response(
        session,
        instance_id,
        user_id,
        body.responses,
        datetime.now(timezone.utc),
        grace_period=timedelta(hours=settings.check_in_grace_period_hours),
    )
    await session.commit()
    return _instance_to_response(instance)
