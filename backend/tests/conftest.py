"""Pytest configuration and shared fixtures: per-test SQLite database, fake push dispatcher, API client."""

import asyncio
import os
import uuid
from datetime import datetime, time, timezone

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

# Set env before app imports so config/engine use it (the global engine is never connected in tests)
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./unused-test.db")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("ENABLE_SCHEDULER", "false")
os.environ.setdefault("CRON_SECRET", "test-cron-secret")

from accountability.api.deps import get_dispatcher
from accountability.core.auth import create_access_token
from accountability.db.base import Base
from accountability.db.session import get_db
from accountability.main import app
from accountability.models import CheckInSchedule, Connection, User
from accountability.services.schedules import create_schedule

pytest_plugins = ["pytest_asyncio"]


class FakeDispatcher:
    """Records sends. `results` queues outcomes (True/False/Exception); `delay` simulates a slow channel."""

    def __init__(self, default: bool = True, delay: float = 0.0):
        self.default = default
        self.delay = delay
        self.results: list = []
        self.sent: list[tuple[uuid.UUID, object]] = []

    async def send(self, target_user_id, payload) -> bool:
        if self.delay:
            await asyncio.sleep(self.delay)
        outcome = self.results.pop(0) if self.results else self.default
        if isinstance(outcome, Exception):
            raise outcome
        if outcome:
            self.sent.append((target_user_id, payload))
        return outcome

    def sent_of_type(self, kind: str) -> list:
        return [(uid, p) for uid, p in self.sent if p.data.get("type") == kind]


@pytest_asyncio.fixture
async def session_maker(tmp_path):
    """Fresh file-backed SQLite database per test."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def dispatcher():
    return FakeDispatcher()


async def add_user(session_maker, full_name: str = "Sam", push_token: str | None = "ExponentPushToken[x]") -> uuid.UUID:
    async with session_maker() as session:
        user = User(full_name=full_name, push_token=push_token)
        session.add(user)
        await session.commit()
        return user.id


async def add_sponsor_link(session_maker, sponsor_id: uuid.UUID, sponsee_id: uuid.UUID, status: str = "active") -> None:
    async with session_maker() as session:
        session.add(Connection(sponsor_id=sponsor_id, sponsee_id=sponsee_id, status=status))
        await session.commit()


async def add_schedule(
    session_maker,
    owner_id: uuid.UUID,
    *,
    now: datetime,
    recurrence: str = "daily",
    time_of_day: time = time(9, 0),
    tz: str = "UTC",
    questions: list[str] | None = None,
    custom_interval_days: int | None = None,
    **overrides,
) -> CheckInSchedule:
    """Create a schedule through the service, then apply column overrides (e.g. consecutive_misses)."""
    async with session_maker() as session:
        schedule = await create_schedule(
            session,
            owner_id,
            recurrence=recurrence,
            time_of_day=time_of_day,
            timezone=tz,
            questions=questions or ["How are you feeling today?", "Any cravings?"],
            now=now,
            custom_interval_days=custom_interval_days,
        )
        for key, value in overrides.items():
            setattr(schedule, key, value)
        await session.commit()
        return schedule


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


@pytest_asyncio.fixture
async def client(session_maker, dispatcher):
    """AsyncClient over the app with get_db and the push dispatcher bound to the test database."""

    async def _get_db():
        async with session_maker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def test_user(session_maker):
    """Create a user in the test database and return (user_id, access_token)."""
    user_id = await add_user(session_maker)
    return user_id, create_access_token(user_id, "test@test.com")


@pytest.fixture
def auth_headers(test_user):
    _, token = test_user
    return {"Authorization": f"Bearer {token}"}
