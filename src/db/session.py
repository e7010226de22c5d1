"""Database engine and request-scoped sessions."""
from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from core.config import Settings, get_settings


def build_engine(settings: Settings) -> AsyncEngine:
    """Create the async engine; SQLite (used in tests) takes no pool options."""
    url = settings.async_database_url
    if url.startswith("sqlite"):
        return create_async_engine(url, echo=settings.db_echo)
    return create_async_engine(
        url,
        echo=settings.db_echo,
        pool_size=settings.db_pool_size,
        pool_pre_ping=True,
    )


engine = build_engine(get_settings())

async_session_factory = async_sessionmaker(engine, expire_on_commit=False)


async def get_async_session() -> AsyncGenerator[AsyncSession]:
    """
    Yield a session for one request.

    Services commit their own writes so that change events are only published
    for committed rows. Anything still pending when a handler fails is rolled back.
    """
    async with async_session_factory() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
