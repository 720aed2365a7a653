from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from loyalty.core.clock import utc_now
from loyalty.db.models.ledger_entries import LedgerEntry
from loyalty.db.models.loyalty_accounts import LoyaltyAccount
from loyalty.db.repo.accounts_repo import AccountsRepo
from loyalty.db.repo.ledger_repo import LedgerRepo
from loyalty.db.repo.transactions_repo import TransactionsRepo
from loyalty.ledger.accounts.types import LedgerApplyResult, ReconciliationResult
from loyalty.ledger.errors import (
    ConflictError,
    InsufficientBalanceError,
    NotFoundError,
    ValidationError,
)

logger = structlog.get_logger("loyalty.ledger.accounts")


class AccountLedger:
    """The only writer of ``loyalty_accounts.points_cached``.

    Every method takes the caller's session; the caller owns the unit of work.
    """

    @staticmethod
    async def open_account(
        session: AsyncSession,
        *,
        user_id: int,
        now_utc: datetime | None = None,
    ) -> LoyaltyAccount:
        existing = await AccountsRepo.get_by_user_id(session, user_id)
        if existing is not None:
            return existing
        return await AccountsRepo.create(session, user_id=user_id, now_utc=now_utc or utc_now())

    @staticmethod
    async def lock_accounts(
        session: AsyncSession,
        account_ids: Iterable[int],
    ) -> dict[int, LoyaltyAccount]:
        requested = {int(account_id) for account_id in account_ids}
        locked = await AccountsRepo.lock_many(session, requested)
        missing = requested - set(locked)
        if missing:
            raise NotFoundError(f"account {min(missing)} not found")
        return locked

    @staticmethod
    async def apply(
        session: AsyncSession,
        *,
        account_id: int,
        delta: int,
        transaction_id: int,
        kind: str,
        posted_by_user_id: int,
        now_utc: datetime | None = None,
    ) -> LedgerApplyResult:
        if delta == 0:
            raise ValidationError("ledger delta must be non-zero")

        existing = await LedgerRepo.get_by_transaction_id(session, transaction_id)
        if existing is not None:
            if existing.account_id != account_id or existing.points_delta != delta:
                raise ConflictError(
                    f"transaction {transaction_id} was already applied with different terms"
                )
            logger.info(
                "ledger_apply_replayed",
                account_id=account_id,
                transaction_id=transaction_id,
            )
            return LedgerApplyResult(
                account_id=account_id,
                transaction_id=transaction_id,
                points_delta=delta,
                balance_after=existing.balance_after,
                idempotent_replay=True,
            )

        now_utc = now_utc or utc_now()
        balance_after = await AccountsRepo.apply_delta_guarded(
            session,
            account_id=account_id,
            delta=delta,
            now_utc=now_utc,
        )
        if balance_after is None:
            current = await AccountsRepo.get_points(session, account_id)
            if current is None:
                raise NotFoundError(f"account {account_id} not found")
            logger.warning(
                "ledger_apply_rejected_insufficient_balance",
                account_id=account_id,
                transaction_id=transaction_id,
                delta=delta,
                balance=current,
            )
            raise InsufficientBalanceError(
                f"account {account_id} has {current} points; {-delta} required"
            )

        await LedgerRepo.create(
            session,
            entry=LedgerEntry(
                account_id=account_id,
                transaction_id=transaction_id,
                points_delta=delta,
                balance_after=balance_after,
                kind=kind,
                posted_by_user_id=posted_by_user_id,
                created_at=now_utc,
            ),
        )
        logger.info(
            "ledger_applied",
            account_id=account_id,
            transaction_id=transaction_id,
            delta=delta,
            balance_after=balance_after,
            kind=kind,
        )
        return LedgerApplyResult(
            account_id=account_id,
            transaction_id=transaction_id,
            points_delta=delta,
            balance_after=balance_after,
            idempotent_replay=False,
        )

    @staticmethod
    async def balance_of(session: AsyncSession, account_id: int) -> int:
        balance = await AccountsRepo.get_points(session, account_id)
        if balance is None:
            raise NotFoundError(f"account {account_id} not found")
        return balance

    @staticmethod
    async def reconcile(session: AsyncSession, account_id: int) -> ReconciliationResult:
        points_cached = await AccountLedger.balance_of(session, account_id)
        result = ReconciliationResult(
            account_id=account_id,
            points_cached=points_cached,
            posted_total=await TransactionsRepo.sum_posted_for_account(session, account_id),
            ledger_total=await LedgerRepo.sum_deltas_for_account(session, account_id),
        )
        if not result.is_consistent:
            logger.error(
                "ledger_reconciliation_mismatch",
                account_id=account_id,
                points_cached=result.points_cached,
                posted_total=result.posted_total,
                ledger_total=result.ledger_total,
            )
        return result
