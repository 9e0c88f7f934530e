"""One firing of a check-in schedule."""

from __future__ import annotations

import enum
import uuid
from datetime import datetime

from sqlalchemy import ForeignKey, Integer, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.types import JSON

from accountability.db.base import Base
from accountability.db.types import UTCDateTime, utcnow


class CheckInStatus(str, enum.Enum):
    PENDING = "pending"
    SENT = "sent"
    COMPLETED = "completed"
    MISSED = "missed"


TERMINAL_STATUSES = (CheckInStatus.COMPLETED, CheckInStatus.MISSED)


class CheckInInstance(Base):
    __tablename__ = "check_in_instances"
    __table_args__ = (
        UniqueConstraint("schedule_id", "due_at", name="uq_check_in_instance_schedule_due"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    schedule_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("check_in_schedules.id", ondelete="CASCADE"), nullable=False, index=True
    )
    due_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, index=True)
    sent_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    responded_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    questions_snapshot: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    responses: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)  # {"0": "answer", ...}
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=CheckInStatus.PENDING.value, index=True
    )
    # Lease held while a send is in flight so overlapping ticks do not send twice
    dispatch_claimed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    dispatch_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)

    schedule: Mapped["CheckInSchedule"] = relationship("CheckInSchedule", back_populates="instances")
