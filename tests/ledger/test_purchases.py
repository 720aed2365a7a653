from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import select

from loyalty.db.models.promotions import PromotionUsage
from loyalty.ledger.errors import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from loyalty.ledger.promotions import PromotionEngine, rules
from loyalty.ledger.roles import Role
from loyalty.ledger.transactions import PurchaseRecord, TransactionFactory
from tests.ledger_fixtures import NOW, _balance, _create_promotion, _create_user


@pytest.mark.asyncio
async def test_purchase_posts_base_points(session_factory) -> None:
    cashier = await _create_user(session_factory, utorid="cashier1", role=Role.CASHIER)
    customer = await _create_user(session_factory, utorid="custom01")
    factory = TransactionFactory(session_factory, cents_per_point=4)

    record = await factory.create_purchase(cashier, customer_id=customer.user_id, amount_cents=100)

    assert isinstance(record, PurchaseRecord)
    assert record.points_posted == 25
    assert record.cashier_id == cashier.user_id
    assert record.promotion_ids == ()
    assert await _balance(session_factory, customer.user_id) == 25


@pytest.mark.asyncio
async def test_purchase_requires_cashier_and_positive_amount(session_factory) -> None:
    regular = await _create_user(session_factory, utorid="regular1")
    cashier = await _create_user(session_factory, utorid="cashier2", role=Role.CASHIER)
    factory = TransactionFactory(session_factory, cents_per_point=4)

    with pytest.raises(AuthorizationError):
        await factory.create_purchase(regular, customer_id=regular.user_id, amount_cents=100)
    with pytest.raises(ValidationError):
        await factory.create_purchase(cashier, customer_id=regular.user_id, amount_cents=0)
    with pytest.raises(NotFoundError):
        await factory.create_purchase(cashier, customer_id=424242, amount_cents=100)

    assert await _balance(session_factory, regular.user_id) == 0


@pytest.mark.asyncio
async def test_automatic_promotions_stack_on_every_qualifying_purchase(session_factory) -> None:
    cashier = await _create_user(session_factory, utorid="cashier3", role=Role.CASHIER)
    customer = await _create_user(session_factory, utorid="custom02")
    rate_id = await _create_promotion(session_factory, rate=Decimal("2"))
    flat_id = await _create_promotion(session_factory, bonus_points=10, min_spending_cents=1000)
    factory = TransactionFactory(session_factory, cents_per_point=4)

    small = await factory.create_purchase(cashier, customer_id=customer.user_id, amount_cents=400)
    large = await factory.create_purchase(cashier, customer_id=customer.user_id, amount_cents=1000)

    assert small.points_posted == 100 + 100
    assert small.promotion_ids == (rate_id,)
    assert large.points_posted == 250 + 250 + 10
    assert large.promotion_ids == tuple(sorted((rate_id, flat_id)))
    assert await _balance(session_factory, customer.user_id) == 200 + 510


@pytest.mark.asyncio
async def test_one_time_promotion_applies_once_above_min_spending(session_factory) -> None:
    cashier = await _create_user(session_factory, utorid="cashier4", role=Role.CASHIER)
    customer = await _create_user(session_factory, utorid="custom03")
    promotion_id = await _create_promotion(
        session_factory,
        kind="one_time",
        bonus_points=100,
        min_spending_cents=2000,
    )
    factory = TransactionFactory(session_factory, cents_per_point=4)

    below = await factory.create_purchase(
        cashier,
        customer_id=customer.user_id,
        amount_cents=1500,
        promotion_ids=[promotion_id],
    )
    above = await factory.create_purchase(
        cashier,
        customer_id=customer.user_id,
        amount_cents=2500,
        promotion_ids=[promotion_id],
    )
    with pytest.raises(ConflictError):
        await factory.create_purchase(
            cashier,
            customer_id=customer.user_id,
            amount_cents=2500,
            promotion_ids=[promotion_id],
        )

    assert below.promotion_ids == ()
    assert below.points_posted == 375
    assert above.promotion_ids == (promotion_id,)
    assert above.points_posted == 625 + 100
    assert await _balance(session_factory, customer.user_id) == 375 + 725

    async with session_factory() as session:
        usages = (await session.execute(select(PromotionUsage))).scalars().all()
    assert [(usage.user_id, usage.transaction_id) for usage in usages] == [
        (customer.user_id, above.transaction_id)
    ]


@pytest.mark.asyncio
async def test_one_time_promotion_is_only_applied_when_requested(session_factory) -> None:
    cashier = await _create_user(session_factory, utorid="cashier5", role=Role.CASHIER)
    customer = await _create_user(session_factory, utorid="custom04")
    await _create_promotion(session_factory, kind="one_time", bonus_points=100)
    factory = TransactionFactory(session_factory, cents_per_point=4)

    record = await factory.create_purchase(cashier, customer_id=customer.user_id, amount_cents=400)

    assert record.promotion_ids == ()
    assert record.points_posted == 100


@pytest.mark.asyncio
async def test_requesting_unknown_or_expired_promotion_fails_without_posting(session_factory) -> None:
    cashier = await _create_user(session_factory, utorid="cashier6", role=Role.CASHIER)
    customer = await _create_user(session_factory, utorid="custom05")
    expired_id = await _create_promotion(
        session_factory,
        kind="one_time",
        bonus_points=5,
        starts_at=NOW - timedelta(days=10),
        ends_at=NOW - timedelta(days=5),
    )
    factory = TransactionFactory(session_factory, cents_per_point=4)

    with pytest.raises(NotFoundError):
        await factory.create_purchase(
            cashier,
            customer_id=customer.user_id,
            amount_cents=400,
            promotion_ids=[424242],
        )
    with pytest.raises(ValidationError):
        await factory.create_purchase(
            cashier,
            customer_id=customer.user_id,
            amount_cents=400,
            promotion_ids=[expired_id],
        )

    assert await _balance(session_factory, customer.user_id) == 0


@pytest.mark.asyncio
async def test_suspicious_customer_purchase_still_posts_and_is_flagged(session_factory) -> None:
    cashier = await _create_user(session_factory, utorid="cashier7", role=Role.CASHIER)
    customer = await _create_user(session_factory, utorid="custom06", suspicious=True)
    factory = TransactionFactory(session_factory, cents_per_point=4)

    record = await factory.create_purchase(cashier, customer_id=customer.user_id, amount_cents=200)

    assert record.suspicious is True
    assert record.points_posted == 50
    assert await _balance(session_factory, customer.user_id) == 50


@pytest.mark.asyncio
async def test_purchase_idempotency_key_replays_for_the_same_cashier(session_factory) -> None:
    cashier = await _create_user(session_factory, utorid="cashier8", role=Role.CASHIER)
    other_cashier = await _create_user(session_factory, utorid="cashier9", role=Role.CASHIER)
    customer = await _create_user(session_factory, utorid="custom07")
    factory = TransactionFactory(session_factory, cents_per_point=4)

    first = await factory.create_purchase(
        cashier,
        customer_id=customer.user_id,
        amount_cents=400,
        idempotency_key="till-7:receipt-0001",
    )
    replay = await factory.create_purchase(
        cashier,
        customer_id=customer.user_id,
        amount_cents=400,
        idempotency_key="till-7:receipt-0001",
    )
    with pytest.raises(ConflictError):
        await factory.create_purchase(
            other_cashier,
            customer_id=customer.user_id,
            amount_cents=400,
            idempotency_key="till-7:receipt-0001",
        )

    assert replay.transaction_id == first.transaction_id
    assert await _balance(session_factory, customer.user_id) == 100


@pytest.mark.asyncio
async def test_purchase_key_reused_for_another_amount_or_customer_conflicts(session_factory) -> None:
    cashier = await _create_user(session_factory, utorid="cashr010", role=Role.CASHIER)
    customer = await _create_user(session_factory, utorid="custom10")
    other_customer = await _create_user(session_factory, utorid="custom11")
    factory = TransactionFactory(session_factory, cents_per_point=4)

    await factory.create_purchase(
        cashier,
        customer_id=customer.user_id,
        amount_cents=400,
        idempotency_key="till-9:receipt-0042",
    )
    with pytest.raises(ConflictError):
        await factory.create_purchase(
            cashier,
            customer_id=customer.user_id,
            amount_cents=800,
            idempotency_key="till-9:receipt-0042",
        )
    with pytest.raises(ConflictError):
        await factory.create_purchase(
            cashier,
            customer_id=other_customer.user_id,
            amount_cents=400,
            idempotency_key="till-9:receipt-0042",
        )

    assert await _balance(session_factory, customer.user_id) == 100
    assert await _balance(session_factory, other_customer.user_id) == 0


@pytest.mark.asyncio
async def test_engine_bonus_matches_pure_rule_and_claims_one_time_usage(session_factory) -> None:
    customer = await _create_user(session_factory, utorid="custom12")
    automatic_id = await _create_promotion(session_factory, rate=Decimal("1.5"))
    one_time_id = await _create_promotion(session_factory, kind="one_time", bonus_points=100)

    async with session_factory.begin() as session:
        candidates = await PromotionEngine.load_candidates(session, requested_ids=[one_time_id], now_utc=NOW)
        result = await PromotionEngine.compute_bonus(
            session,
            user_id=customer.user_id,
            amount_cents=400,
            base_points=100,
            candidates=candidates,
            now_utc=NOW,
        )
        expected = rules.compute_bonus(candidates, amount_cents=400, base_points=100, now_utc=NOW)
        usages = (await session.execute(select(PromotionUsage))).scalars().all()

    assert result == expected
    assert result.applied_promotion_ids == [automatic_id, one_time_id]
    assert result.bonus_points == 150
    assert [(usage.promotion_id, usage.user_id) for usage in usages] == [(one_time_id, customer.user_id)]
