from __future__ import annotations

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from loyalty.db import models  # noqa: F401
from loyalty.db.models.base import Base
from loyalty.db.session import build_session_factory

SQLITE_MEMORY_URL = "sqlite+aiosqlite://"


@pytest.fixture
async def engine() -> AsyncEngine:
    engine = create_async_engine(
        SQLITE_MEMORY_URL,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker:
    return build_session_factory(engine)
