"""Async database engine and session factory construction."""

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from shopcrawl.config import Settings
from shopcrawl.models.base import Base


def create_engine_from_settings(settings: Settings) -> AsyncEngine:
    """Build the async engine for DATABASE_URL."""
    settings.require_database()

    # SQLite doesn't support pool_size / max_overflow / pool_pre_ping
    engine_kwargs: dict = {"echo": settings.DB_ECHO}
    if not settings.DATABASE_URL.startswith("sqlite"):
        engine_kwargs.update(pool_size=5, max_overflow=5, pool_pre_ping=True)

    return create_async_engine(settings.DATABASE_URL, **engine_kwargs)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


async def init_models(engine: AsyncEngine) -> None:
    """Create all tables that do not exist yet."""
    import shopcrawl.models  # noqa: F401  registers every table on Base.metadata

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
