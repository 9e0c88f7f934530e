"""Sponsor escalations raised after consecutive missed check-ins (outbox, retried until notified)."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import ForeignKey, Integer, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from accountability.db.base import Base
from accountability.db.types import UTCDateTime, utcnow


class CheckInEscalation(Base):
    __tablename__ = "check_in_escalations"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    schedule_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("check_in_schedules.id", ondelete="CASCADE"), nullable=False, index=True
    )
    sponsee_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    sponsor_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)  # None: no active sponsor
    consecutive_misses: Mapped[int] = mapped_column(Integer, nullable=False)
    raised_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    notified_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True, index=True)
    # Lease held while a send is in flight so overlapping ticks do not alert twice
    dispatch_claimed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    dispatch_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
