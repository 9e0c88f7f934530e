"""Pydantic schemas for sobriety tracking API."""

from datetime import date, datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, Field

TriggerContext = Literal["stress", "social_pressure", "emotional", "physical_pain", "other"]


class SetSobrietyDateBody(BaseModel):
    substance_type: str = Field(..., min_length=1, max_length=64)
    start_date: date


class LogRelapseBody(BaseModel):
    relapse_date: datetime
    private_note: str | None = Field(None, max_length=2000)
    trigger_context: TriggerContext | None = None
    notify_sponsor: bool = False


class MilestoneResponse(BaseModel):
    type: str
    days: int
    display_text: str
    achieved: bool


class SobrietyStatsResponse(BaseModel):
    id: UUID
    substance_type: str
    start_date: date
    is_active: bool
    current_streak_days: int
    milestones_achieved: list[str]
    next_milestone_days: int | None
    days_until_next_milestone: int | None
    total_relapses: int
    last_relapse_date: datetime | None
    milestones: list[MilestoneResponse]


class RelapseResponse(BaseModel):
    """Relapse as shown to its owner (includes the private note)."""

    id: UUID
    sobriety_date_id: UUID
    relapse_date: datetime
    private_note: str | None
    trigger_context: str | None
    sponsor_notified: bool
