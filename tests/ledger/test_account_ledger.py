from __future__ import annotations

import pytest
from sqlalchemy import select

from loyalty.db.models.ledger_entries import LedgerEntry
from loyalty.db.models.points_transactions import PointsTransaction
from loyalty.ledger.accounts import AccountLedger
from loyalty.ledger.errors import (
    ConflictError,
    InsufficientBalanceError,
    NotFoundError,
    ValidationError,
)
from tests.ledger_fixtures import NOW, _account_id, _balance, _create_user


async def _transaction(session, *, account_id: int, user_id: int, points: int) -> PointsTransaction:
    transaction = PointsTransaction(
        type="adjustment",
        status="posted",
        account_id=account_id,
        created_by_user_id=user_id,
        manager_id=user_id,
        points_calculated=points,
        points_posted=points,
        created_at=NOW,
    )
    session.add(transaction)
    await session.flush()
    return transaction


@pytest.mark.asyncio
async def test_apply_credits_and_records_balance_after(session_factory) -> None:
    actor = await _create_user(session_factory, utorid="ledger01")
    account_id = await _account_id(session_factory, actor.user_id)

    async with session_factory.begin() as session:
        transaction = await _transaction(session, account_id=account_id, user_id=actor.user_id, points=40)
        result = await AccountLedger.apply(
            session,
            account_id=account_id,
            delta=40,
            transaction_id=transaction.id,
            kind="adjustment_credit",
            posted_by_user_id=actor.user_id,
        )

    assert result.balance_after == 40
    assert result.idempotent_replay is False
    assert await _balance(session_factory, actor.user_id) == 40


@pytest.mark.asyncio
async def test_apply_is_idempotent_per_transaction_id(session_factory) -> None:
    actor = await _create_user(session_factory, utorid="ledger02")
    account_id = await _account_id(session_factory, actor.user_id)

    async with session_factory.begin() as session:
        transaction = await _transaction(session, account_id=account_id, user_id=actor.user_id, points=15)
        kwargs = dict(
            account_id=account_id,
            delta=15,
            transaction_id=transaction.id,
            kind="adjustment_credit",
            posted_by_user_id=actor.user_id,
        )
        first = await AccountLedger.apply(session, **kwargs)
        second = await AccountLedger.apply(session, **kwargs)
        entries = (
            await session.execute(select(LedgerEntry).where(LedgerEntry.transaction_id == transaction.id))
        ).scalars().all()

    assert first.idempotent_replay is False
    assert second.idempotent_replay is True
    assert second.balance_after == 15
    assert len(entries) == 1
    assert await _balance(session_factory, actor.user_id) == 15


@pytest.mark.asyncio
async def test_apply_replay_with_different_terms_is_a_conflict(session_factory) -> None:
    actor = await _create_user(session_factory, utorid="ledger03")
    account_id = await _account_id(session_factory, actor.user_id)

    with pytest.raises(ConflictError):
        async with session_factory.begin() as session:
            transaction = await _transaction(session, account_id=account_id, user_id=actor.user_id, points=5)
            await AccountLedger.apply(
                session,
                account_id=account_id,
                delta=5,
                transaction_id=transaction.id,
                kind="adjustment_credit",
                posted_by_user_id=actor.user_id,
            )
            await AccountLedger.apply(
                session,
                account_id=account_id,
                delta=6,
                transaction_id=transaction.id,
                kind="adjustment_credit",
                posted_by_user_id=actor.user_id,
            )


@pytest.mark.asyncio
async def test_apply_rejects_debit_below_zero_and_leaves_balance(session_factory) -> None:
    actor = await _create_user(session_factory, utorid="ledger04", points=10)
    account_id = await _account_id(session_factory, actor.user_id)

    with pytest.raises(InsufficientBalanceError):
        async with session_factory.begin() as session:
            transaction = await _transaction(session, account_id=account_id, user_id=actor.user_id, points=-11)
            await AccountLedger.apply(
                session,
                account_id=account_id,
                delta=-11,
                transaction_id=transaction.id,
                kind="adjustment_debit",
                posted_by_user_id=actor.user_id,
            )

    assert await _balance(session_factory, actor.user_id) == 10


@pytest.mark.asyncio
async def test_apply_rejects_zero_delta_and_unknown_account(session_factory) -> None:
    actor = await _create_user(session_factory, utorid="ledger05")

    async with session_factory() as session:
        with pytest.raises(ValidationError):
            await AccountLedger.apply(
                session,
                account_id=1,
                delta=0,
                transaction_id=999,
                kind="adjustment_credit",
                posted_by_user_id=actor.user_id,
            )
        with pytest.raises(NotFoundError):
            await AccountLedger.apply(
                session,
                account_id=424242,
                delta=5,
                transaction_id=999,
                kind="adjustment_credit",
                posted_by_user_id=actor.user_id,
            )
        with pytest.raises(NotFoundError):
            await AccountLedger.balance_of(session, 424242)


@pytest.mark.asyncio
async def test_lock_accounts_reports_missing_ids(session_factory) -> None:
    actor = await _create_user(session_factory, utorid="ledger06")
    account_id = await _account_id(session_factory, actor.user_id)

    async with session_factory() as session:
        locked = await AccountLedger.lock_accounts(session, [account_id])
        assert set(locked) == {account_id}
        with pytest.raises(NotFoundError):
            await AccountLedger.lock_accounts(session, [account_id, 424242])


@pytest.mark.asyncio
async def test_reconcile_matches_posted_transactions_and_ledger(session_factory) -> None:
    actor = await _create_user(session_factory, utorid="ledger07", points=120)
    account_id = await _account_id(session_factory, actor.user_id)

    async with session_factory() as session:
        result = await AccountLedger.reconcile(session, account_id)

    assert result.points_cached == 120
    assert result.posted_total == 120
    assert result.ledger_total == 120
    assert result.is_consistent is True
