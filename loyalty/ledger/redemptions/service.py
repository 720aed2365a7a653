from __future__ import annotations

from datetime import datetime

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from loyalty.core.clock import utc_now
from loyalty.db.models.points_transactions import PointsTransaction
from loyalty.db.repo.accounts_repo import AccountsRepo
from loyalty.db.repo.transactions_repo import TransactionsRepo
from loyalty.ledger.accounts import AccountLedger
from loyalty.ledger.errors import (
    AuthorizationError,
    ConflictError,
    InsufficientBalanceError,
    NotFoundError,
    ValidationError,
)
from loyalty.ledger.roles import Actor, Role, require_role
from loyalty.ledger.transactions.types import (
    STATUS_PENDING_VERIFICATION,
    TRANSACTION_TYPE_REDEMPTION,
    RedemptionRecord,
    to_record,
)
from loyalty.services.cache import LedgerCache

logger = structlog.get_logger("loyalty.ledger.redemptions")


async def _load_redemption(session: AsyncSession, transaction_id: int) -> PointsTransaction:
    row = await TransactionsRepo.get_by_id_for_update(session, transaction_id)
    if row is None:
        raise NotFoundError(f"transaction {transaction_id} not found")
    if row.type != TRANSACTION_TYPE_REDEMPTION:
        raise ValidationError(f"transaction {transaction_id} is not a redemption")
    return row


def _already_processed(transaction_id: int) -> ConflictError:
    return ConflictError(f"transaction {transaction_id} already processed")


class RedemptionStateMachine:
    """pending_verification -> posted | cancelled; both targets are terminal."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        cache: LedgerCache | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._cache = cache

    async def process(
        self,
        actor: Actor,
        transaction_id: int,
        *,
        now_utc: datetime | None = None,
    ) -> RedemptionRecord:
        require_role(actor.role, Role.CASHIER)
        now_utc = now_utc or utc_now()

        async with self._session_factory.begin() as session:
            row = await _load_redemption(session, transaction_id)
            if row.status != STATUS_PENDING_VERIFICATION:
                raise _already_processed(transaction_id)

            amount = -row.points_calculated
            await AccountLedger.lock_accounts(session, [row.account_id])
            balance = await AccountLedger.balance_of(session, row.account_id)
            if balance < amount:
                logger.warning(
                    "redemption_rejected_insufficient_balance",
                    transaction_id=transaction_id,
                    account_id=row.account_id,
                    balance=balance,
                    amount=amount,
                )
                raise InsufficientBalanceError(
                    f"balance {balance} is less than redemption amount {amount}"
                )

            claimed = await TransactionsRepo.claim_pending_redemption(
                session,
                transaction_id=transaction_id,
                points_posted=-amount,
                cashier_id=actor.user_id,
                now_utc=now_utc,
            )
            if not claimed:
                logger.warning("redemption_claim_lost", transaction_id=transaction_id)
                raise _already_processed(transaction_id)

            await AccountLedger.apply(
                session,
                account_id=row.account_id,
                delta=-amount,
                transaction_id=transaction_id,
                kind="redeem",
                posted_by_user_id=actor.user_id,
                now_utc=now_utc,
            )
            await session.refresh(row)
            record = to_record(row)

        logger.info(
            "redemption_processed",
            transaction_id=transaction_id,
            account_id=record.account_id,
            amount=amount,
            cashier_id=actor.user_id,
        )
        if self._cache is not None:
            await self._cache.invalidate_accounts([record.account_id])
        return record

    async def cancel(
        self,
        actor: Actor,
        transaction_id: int,
        *,
        now_utc: datetime | None = None,
    ) -> RedemptionRecord:
        now_utc = now_utc or utc_now()

        async with self._session_factory.begin() as session:
            row = await _load_redemption(session, transaction_id)
            owner = await AccountsRepo.get_by_user_id(session, actor.user_id)
            if owner is None or owner.id != row.account_id:
                raise AuthorizationError("only the owner can cancel a redemption")
            if row.status != STATUS_PENDING_VERIFICATION:
                raise _already_processed(transaction_id)

            cancelled = await TransactionsRepo.cancel_pending_redemption(
                session,
                transaction_id=transaction_id,
                now_utc=now_utc,
            )
            if not cancelled:
                raise _already_processed(transaction_id)
            await session.refresh(row)
            record = to_record(row)

        logger.info("redemption_cancelled", transaction_id=transaction_id, account_id=record.account_id)
        if self._cache is not None:
            await self._cache.invalidate_accounts([record.account_id])
        return record

    async def list_pending(self, actor: Actor, *, limit: int = 50) -> list[RedemptionRecord]:
        require_role(actor.role, Role.CASHIER)
        async with self._session_factory() as session:
            rows = await TransactionsRepo.list_pending_redemptions(session, limit=limit)
            return [to_record(row) for row in rows]
