from __future__ import annotations

import asyncio

import pytest

from loyalty.ledger.errors import ConflictError
from loyalty.ledger.roles import Role
from loyalty.ledger.transactions import TransactionFactory
from tests.ledger_fixtures import _balance, _create_promotion, _create_user

pytestmark = pytest.mark.postgres


@pytest.mark.asyncio
async def test_parallel_purchases_claim_one_time_promotion_once(session_factory) -> None:
    cashier = await _create_user(session_factory, utorid="cashier1", role=Role.CASHIER)
    customer = await _create_user(session_factory, utorid="custom01")
    promotion_id = await _create_promotion(
        session_factory,
        kind="one_time",
        bonus_points=100,
        min_spending_cents=2000,
    )
    factory = TransactionFactory(session_factory, cents_per_point=4)
    barrier = asyncio.Event()

    async def _attempt() -> str:
        await barrier.wait()
        try:
            await factory.create_purchase(
                cashier,
                customer_id=customer.user_id,
                amount_cents=2500,
                promotion_ids=[promotion_id],
            )
        except ConflictError:
            return "conflict"
        return "applied"

    tasks = [asyncio.create_task(_attempt()) for _ in range(2)]
    await asyncio.sleep(0)
    barrier.set()
    outcomes = await asyncio.gather(*tasks)

    assert sorted(outcomes) == ["applied", "conflict"]
    assert await _balance(session_factory, customer.user_id) == 725
