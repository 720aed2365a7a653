from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from loyalty.core.config import Settings, get_settings
from loyalty.core.logging import configure_logging
from loyalty.db.session import build_engine, build_session_factory
from loyalty.ledger.events import EventPointsPool
from loyalty.ledger.redemptions import RedemptionStateMachine
from loyalty.ledger.transactions import TransactionFactory
from loyalty.ledger.transactions.queries import TransactionQueries
from loyalty.ledger.users import UserAdministration
from loyalty.services.cache import LedgerCache

logger = structlog.get_logger("loyalty.main")


@dataclass(frozen=True, slots=True)
class LoyaltyLedger:
    session_factory: async_sessionmaker[AsyncSession]
    cache: LedgerCache
    transactions: TransactionFactory
    queries: TransactionQueries
    redemptions: RedemptionStateMachine
    events: EventPointsPool
    users: UserAdministration


def build_ledger(
    session_factory: async_sessionmaker[AsyncSession],
    *,
    cache: LedgerCache | None = None,
    settings: Settings | None = None,
) -> LoyaltyLedger:
    settings = settings or get_settings()
    cache = cache or LedgerCache.disabled()
    return LoyaltyLedger(
        session_factory=session_factory,
        cache=cache,
        transactions=TransactionFactory(
            session_factory,
            cache=cache,
            cents_per_point=settings.purchase_cents_per_point,
        ),
        queries=TransactionQueries(session_factory, cache=cache),
        redemptions=RedemptionStateMachine(session_factory, cache=cache),
        events=EventPointsPool(session_factory, cache=cache),
        users=UserAdministration(session_factory, cache=cache),
    )


@asynccontextmanager
async def open_ledger(settings: Settings | None = None) -> AsyncIterator[LoyaltyLedger]:
    """Wire every ledger component against the configured database and cache.

    The superuser named in settings is created (or has its role restored) on
    entry; the engine and the Redis client are released on exit.
    """
    settings = settings or get_settings()
    configure_logging(settings.log_level, json_logs=settings.app_env != "dev")

    engine = build_engine(settings.database_url, echo=settings.database_echo)
    try:
        async with LedgerCache.connect(
            settings.redis_url,
            default_ttl_seconds=settings.cache_default_ttl_seconds,
        ) as cache:
            ledger = build_ledger(build_session_factory(engine), cache=cache, settings=settings)
            await ledger.users.bootstrap_from_settings(settings)
            logger.info("ledger_started", app_env=settings.app_env, cache_enabled=cache.enabled)
            yield ledger
    finally:
        await engine.dispose()
