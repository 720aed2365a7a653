from __future__ import annotations

import pytest

from loyalty.core.config import Settings
from loyalty.ledger.roles import Actor, Role
from loyalty.main import build_ledger, open_ledger


def _settings(**overrides: str) -> Settings:
    values = {
        "APP_ENV": "test",
        "DATABASE_URL": "sqlite+aiosqlite://",
        "REDIS_URL": "",
        "PURCHASE_CENTS_PER_POINT": "10",
        "SUPERUSER_UTORID": "",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.mark.asyncio
async def test_build_ledger_shares_session_factory_and_settings(session_factory) -> None:
    ledger = build_ledger(session_factory, settings=_settings())
    cashier = Actor(user_id=1, role=Role.CASHIER)

    customer = await ledger.users.register(
        cashier,
        utorid="clerk001",
        name="Clerk One",
        email="clerk001@mail.utoronto.ca",
    )
    purchase = await ledger.transactions.create_purchase(
        Actor(user_id=customer.user_id, role=Role.CASHIER),
        customer_id=customer.user_id,
        amount_cents=1000,
    )

    assert ledger.session_factory is session_factory
    assert ledger.cache.enabled is False
    assert purchase.points_posted == 100


@pytest.mark.asyncio
async def test_open_ledger_runs_without_redis_or_superuser() -> None:
    async with open_ledger(_settings()) as ledger:
        assert ledger.cache.enabled is False
        assert ledger.users is not None
        assert ledger.events is not None
