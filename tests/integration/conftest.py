from __future__ import annotations

import pytest
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker

from loyalty.core.config import get_settings
from loyalty.core.integration_db_safety import integration_db_skip_reason
from loyalty.db import models  # noqa: F401
from loyalty.db.models.base import Base
from loyalty.db.session import build_engine, build_session_factory

TRUNCATE_TABLES = (
    "ledger_entries",
    "promotion_usages",
    "transaction_promotions",
    "points_transactions",
    "promotions",
    "event_guests",
    "event_organizers",
    "events",
    "loyalty_accounts",
    "user_roles",
    "users",
)

TRUNCATE_SQL = f"TRUNCATE TABLE {', '.join(TRUNCATE_TABLES)} RESTART IDENTITY CASCADE"


@pytest.fixture
async def engine() -> AsyncEngine:
    database_url = get_settings().database_url
    skip_reason = integration_db_skip_reason(database_url)
    if skip_reason is not None:
        pytest.skip(f"Postgres test database is required for integration tests: {skip_reason}")

    engine = build_engine(database_url)
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as exc:  # pragma: no cover - environment-dependent
        await engine.dispose()
        pytest.skip(f"Postgres is required for integration tests: {exc}")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
        await conn.execute(text(TRUNCATE_SQL))

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker:
    return build_session_factory(engine)
