"""Pydantic schemas for check-in schedule and response API."""

from datetime import datetime, time
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, Field


class ScheduleCreate(BaseModel):
    """Body for configuring recurring check-ins. Interval bounds are enforced by the service (422 on violation)."""

    recurrence: Literal["daily", "weekly", "custom"]
    custom_interval_days: int | None = None
    time_of_day: time
    timezone: str = Field(..., min_length=1, max_length=64)
    questions: list[str] = Field(..., min_length=1, max_length=5)


class ScheduleUpdate(BaseModel):
    """Body for updating a schedule (partial)."""

    recurrence: Literal["daily", "weekly", "custom"] | None = None
    custom_interval_days: int | None = None
    time_of_day: time | None = None
    timezone: str | None = Field(None, min_length=1, max_length=64)
    questions: list[str] | None = Field(None, min_length=1, max_length=5)


class ScheduleResponse(BaseModel):
    id: UUID
    recurrence: str
    custom_interval_days: int | None
    time_of_day: str
    timezone: str
    questions: list[str]
    next_scheduled_at: datetime
    last_sent_at: datetime | None
    consecutive_misses: int
    is_active: bool


class CheckInInstanceResponse(BaseModel):
    id: UUID
    schedule_id: UUID
    due_at: datetime
    sent_at: datetime | None
    responded_at: datetime | None
    questions: list[str]
    responses: dict[str, str]
    status: str


class CheckInResponseBody(BaseModel):
    """Answers keyed by question index (0-based)."""

    responses: dict[int, str] = Field(..., min_length=1)
