from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from accountability.config import settings
from accountability.db.base import Base

# Ticks run for minutes between requests; drop connections the server closed meanwhile
_engine_kwargs = {"echo": settings.debug}
if not settings.database_url.startswith("sqlite"):
    _engine_kwargs["pool_pre_ping"] = True

engine = create_async_engine(settings.database_url, **_engine_kwargs)
# Scan and miss passes read attributes after commit, so instances must not expire
async_session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def init_db() -> None:
    """Create missing tables (dev convenience; production schema comes from Alembic)."""
    import accountability.models  # noqa: F401 - register all mappers
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def dispose_db() -> None:
    await engine.dispose()


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with async_session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
