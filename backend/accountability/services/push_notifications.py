"""Expo Push Notifications: the dispatcher the check-in engine hands reminders and sponsor alerts to."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Protocol

import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from accountability.config import settings
from accountability.models.user import User
from accountability.services.http_client import get_http_client

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NotificationPayload:
    title: str
    body: str
    data: dict[str, str] = field(default_factory=dict)


class NotificationDispatcher(Protocol):
    async def send(self, target_user_id: uuid.UUID, payload: NotificationPayload) -> bool:
        """Hand one notification to the delivery channel. True on accepted, False on any failure."""
        ...


def check_in_reminder_payload(instance_id: uuid.UUID, question_count: int) -> NotificationPayload:
    noun = "question" if question_count == 1 else "questions"
    return NotificationPayload(
        title="Check-In Reminder",
        body=f"Time to complete your check-in with {question_count} {noun}",
        data={
            "type": "check-in",
            "checkInId": str(instance_id),
            "idempotencyKey": f"check-in:{instance_id}",
            "deepLink": f"{settings.deep_link_scheme}://check-in-response?checkInId={instance_id}",
        },
    )


def sponsor_alert_payload(
    escalation_id: uuid.UUID,
    schedule_id: uuid.UUID,
    sponsee_name: str | None,
    consecutive_misses: int,
) -> NotificationPayload:
    who = (sponsee_name or "").strip() or "Your sponsee"
    return NotificationPayload(
        title="Check-In Alert",
        body=f"{who} has missed {consecutive_misses} consecutive check-ins",
        data={
            "type": "missed-check-in-alert",
            "checkInId": str(schedule_id),
            "consecutiveMisses": str(consecutive_misses),
            "idempotencyKey": f"escalation:{escalation_id}",
        },
    )


def relapse_notice_payload(relapse_id: uuid.UUID, sponsee_name: str | None) -> NotificationPayload:
    """Sponsor notice for a logged relapse. Never includes the private note."""
    who = (sponsee_name or "").strip() or "Your sponsee"
    return NotificationPayload(
        title="Reach Out",
        body=f"{who} logged a relapse and could use your support.",
        data={
            "type": "relapse-notice",
            "relapseId": str(relapse_id),
            "idempotencyKey": f"relapse:{relapse_id}",
        },
    )


async def send_expo_push(token: str, payload: NotificationPayload) -> bool:
    """Send a push notification via Expo. Returns False (and logs) on any failure."""
    if not token or not token.strip():
        return False
    title = (payload.title or settings.push_default_title).strip() or settings.push_default_title
    body = (payload.body or "").strip()[:200]
    try:
        client = get_http_client()
        resp = await client.post(
            settings.expo_push_url,
            json={
                "to": token.strip(),
                "title": title[:100],
                "body": body,
                "data": payload.data,
                "sound": "default",
                "priority": "high",
            },
        )
        resp.raise_for_status()
        ticket = (resp.json() or {}).get("data") or {}
    except (httpx.HTTPError, ValueError) as e:
        logger.warning("Expo push send failed: %s", e)
        return False
    if isinstance(ticket, list):
        ticket = ticket[0] if ticket else {}
    if ticket.get("status") != "ok":
        logger.warning("Expo push rejected: %s", ticket.get("message") or ticket)
        return False
    return True


async def get_push_token(session: AsyncSession, user_id: uuid.UUID) -> str | None:
    r = await session.execute(select(User.push_token).where(User.id == user_id))
    token = r.scalar_one_or_none()
    return token if token and token.strip() else None


class ExpoPushDispatcher:
    """Dispatcher that looks up the target's Expo token and posts to the push API."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    async def send(self, target_user_id: uuid.UUID, payload: NotificationPayload) -> bool:
        async with self._session_maker() as session:
            token = await get_push_token(session, target_user_id)
        if not token:
            logger.debug("Push skipped for user_id=%s (no token)", target_user_id)
            return False
        ok = await send_expo_push(token, payload)
        if ok:
            logger.debug("Push sent to user_id=%s type=%s", target_user_id, payload.data.get("type"))
        return ok
