"""Recurring check-in configuration and its scheduling cursor."""

from __future__ import annotations

import uuid
from datetime import datetime, time

from sqlalchemy import Boolean, ForeignKey, Integer, String, Time, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.types import JSON

from accountability.db.base import Base
from accountability.db.types import UTCDateTime, utcnow


class CheckInSchedule(Base):
    __tablename__ = "check_in_schedules"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    owner_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    recurrence: Mapped[str] = mapped_column(String(16), nullable=False)  # daily | weekly | custom
    custom_interval_days: Mapped[int | None] = mapped_column(Integer, nullable=True)  # only for custom
    time_of_day: Mapped[time] = mapped_column(Time, nullable=False)  # local wall-clock time
    timezone: Mapped[str] = mapped_column(String(64), nullable=False)  # IANA key
    questions: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    next_scheduled_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, index=True)
    last_sent_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    consecutive_misses: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # True once the sponsor was alerted for the current run of misses; cleared by a completion
    escalation_raised: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, index=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, onupdate=utcnow)

    instances: Mapped[list["CheckInInstance"]] = relationship(
        "CheckInInstance", back_populates="schedule", passive_deletes=True
    )
