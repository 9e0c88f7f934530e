"""Sponsor-link lookup for escalations and relapse notices."""

import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from accountability.models.connection import CONNECTION_STATUS_ACTIVE, Connection


async def get_active_sponsor_id(session: AsyncSession, sponsee_id: uuid.UUID) -> uuid.UUID | None:
    """Return the sponsor of the sponsee's active connection, or None. Newest link wins if several exist."""
    r = await session.execute(
        select(Connection.sponsor_id)
        .where(
            Connection.sponsee_id == sponsee_id,
            Connection.status == CONNECTION_STATUS_ACTIVE,
        )
        .order_by(Connection.created_at.desc())
        .limit(1)
    )
    return r.scalar_one_or_none()
