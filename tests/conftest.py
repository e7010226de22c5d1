"""Shared fixtures: an in-memory database and an HTTP client bound to the app."""
import os

# Settings are read at import time by db.session; point them at throwaway defaults.
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("REDIS_ENABLED", "false")

from collections.abc import AsyncGenerator  # noqa: E402

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import (  # noqa: E402
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool  # noqa: E402

from api.main import app  # noqa: E402
from core.redis import set_redis_client  # noqa: E402
from db.session import get_async_session  # noqa: E402
from models import Base, User  # noqa: E402


@pytest.fixture
async def session_factory() -> AsyncGenerator[async_sessionmaker[AsyncSession]]:
    """Fresh in-memory SQLite database per test; every session shares one connection."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession]:
    """Session for arranging and asserting database state directly."""
    async with session_factory() as session:
        yield session


@pytest.fixture
async def client(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncClient]:
    """HTTP client for the app, with Redis absent so the change feed stays in-process."""

    async def override_get_async_session() -> AsyncGenerator[AsyncSession]:
        async with session_factory() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_async_session] = override_get_async_session
    set_redis_client(None)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
async def users(db_session: AsyncSession) -> dict[str, User]:
    """Two users with fixed ids 'u1' and 'u2'."""
    u1 = User(id="u1", email="u1@example.com", name="User One", provider="google")
    u2 = User(id="u2", email="u2@example.com", name="User Two", provider="google")
    db_session.add_all([u1, u2])
    await db_session.commit()
    return {"u1": u1, "u2": u2}
