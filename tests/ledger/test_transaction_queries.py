from __future__ import annotations

import pytest

from loyalty.db.repo.transactions_repo import TransactionFilters
from loyalty.ledger.errors import AuthorizationError, NotFoundError, ValidationError
from loyalty.ledger.roles import Role
from loyalty.ledger.transactions import PurchaseRecord, TransactionFactory
from loyalty.ledger.transactions.queries import TransactionQueries
from tests.ledger_fixtures import _balance, _create_promotion, _create_user


@pytest.mark.asyncio
async def test_regular_users_only_see_their_own_transactions(session_factory) -> None:
    cashier = await _create_user(session_factory, utorid="cashier1", role=Role.CASHIER)
    manager = await _create_user(session_factory, utorid="manager1", role=Role.MANAGER)
    alice = await _create_user(session_factory, utorid="alice001")
    bob = await _create_user(session_factory, utorid="bob00001")
    factory = TransactionFactory(session_factory, cents_per_point=4)
    queries = TransactionQueries(session_factory)

    alice_purchase = await factory.create_purchase(cashier, customer_id=alice.user_id, amount_cents=400)
    await factory.create_purchase(cashier, customer_id=bob.user_id, amount_cents=800)

    alice_page = await queries.list_transactions(alice)
    assert alice_page.count == 1
    assert alice_page.results[0].transaction_id == alice_purchase.transaction_id

    everything = await queries.list_transactions(manager, filters=TransactionFilters(type="purchase"))
    assert everything.count == 2

    assert (await queries.get_transaction(alice, alice_purchase.transaction_id)).points_posted == 100
    with pytest.raises(AuthorizationError):
        await queries.get_transaction(bob, alice_purchase.transaction_id)
    with pytest.raises(NotFoundError):
        await queries.get_transaction(manager, 424242)


@pytest.mark.asyncio
async def test_cashier_can_read_pending_redemptions_only(session_factory) -> None:
    cashier = await _create_user(session_factory, utorid="cashier2", role=Role.CASHIER)
    owner = await _create_user(session_factory, utorid="owner001", points=50)
    friend = await _create_user(session_factory, utorid="friend01")
    factory = TransactionFactory(session_factory)
    queries = TransactionQueries(session_factory)

    request = await factory.create_redemption_request(owner, amount=20)
    transfer = await factory.create_transfer(owner, recipient_id=friend.user_id, amount=5)

    assert (await queries.get_transaction(cashier, request.transaction_id)).status == "pending_verification"
    with pytest.raises(AuthorizationError):
        await queries.get_transaction(cashier, transfer.sent.transaction_id)


@pytest.mark.asyncio
async def test_list_filters_by_promotion_points_and_paginates(session_factory) -> None:
    cashier = await _create_user(session_factory, utorid="cashier3", role=Role.CASHIER)
    manager = await _create_user(session_factory, utorid="manager2", role=Role.MANAGER)
    customer = await _create_user(session_factory, utorid="custom01")
    promotion_id = await _create_promotion(session_factory, bonus_points=5, min_spending_cents=1000)
    factory = TransactionFactory(session_factory, cents_per_point=4)
    queries = TransactionQueries(session_factory)

    for amount_cents in (400, 1000, 2000):
        await factory.create_purchase(cashier, customer_id=customer.user_id, amount_cents=amount_cents)

    promoted = await queries.list_transactions(manager, filters=TransactionFilters(promotion_id=promotion_id))
    assert promoted.count == 2
    assert all(promotion_id in record.promotion_ids for record in promoted.results)

    large = await queries.list_transactions(manager, filters=TransactionFilters(min_points=200))
    assert sorted(record.points_posted for record in large.results) == [255, 505]

    first_page = await queries.list_transactions(manager, filters=TransactionFilters(type="purchase"), limit=2)
    second_page = await queries.list_transactions(
        manager,
        filters=TransactionFilters(type="purchase"),
        page=2,
        limit=2,
    )
    assert first_page.count == second_page.count == 3
    assert len(first_page.results) == 2
    assert len(second_page.results) == 1

    with pytest.raises(ValidationError):
        await queries.list_transactions(manager, page=0)


@pytest.mark.asyncio
async def test_mark_suspicious_is_advisory(session_factory) -> None:
    cashier = await _create_user(session_factory, utorid="cashier4", role=Role.CASHIER)
    manager = await _create_user(session_factory, utorid="manager3", role=Role.MANAGER)
    customer = await _create_user(session_factory, utorid="custom02", points=10)
    factory = TransactionFactory(session_factory, cents_per_point=4)
    queries = TransactionQueries(session_factory)
    purchase = await factory.create_purchase(cashier, customer_id=customer.user_id, amount_cents=400)
    adjustment = await factory.create_adjustment(manager, customer_id=customer.user_id, amount=1)

    with pytest.raises(AuthorizationError):
        await queries.mark_suspicious(cashier, purchase.transaction_id, True)
    with pytest.raises(ValidationError):
        await queries.mark_suspicious(manager, adjustment.transaction_id, True)

    record = await queries.mark_suspicious(manager, purchase.transaction_id, True)

    assert isinstance(record, PurchaseRecord)
    assert record.suspicious is True
    assert record.points_posted == 100
    assert await _balance(session_factory, customer.user_id) == 111

    flagged = await queries.list_transactions(manager, filters=TransactionFilters(suspicious=True))
    assert [item.transaction_id for item in flagged.results] == [purchase.transaction_id]
