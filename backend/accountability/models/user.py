"""Subset of the profile store's users table read by the engine (names and push tokens)."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from accountability.db.base import Base
from accountability.db.types import UTCDateTime, utcnow


class User(Base):
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    full_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    push_token: Mapped[str | None] = mapped_column(String(255), nullable=True)  # Expo push token
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)
