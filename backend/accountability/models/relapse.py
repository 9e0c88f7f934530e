from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import Boolean, ForeignKey, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from accountability.db.base import Base
from accountability.db.types import UTCDateTime, utcnow

TRIGGER_CONTEXTS = ("stress", "social_pressure", "emotional", "physical_pain", "other")


class Relapse(Base):
    __tablename__ = "relapses"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    sobriety_date_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("sobriety_dates.id", ondelete="CASCADE"), nullable=False, index=True
    )
    relapse_date: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, index=True)
    private_note: Mapped[str | None] = mapped_column(Text, nullable=True)  # only visible to the user
    trigger_context: Mapped[str | None] = mapped_column(String(32), nullable=True)
    sponsor_notified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)

    sobriety_date: Mapped["SobrietyDate"] = relationship("SobrietyDate", back_populates="relapses")
