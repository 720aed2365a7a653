from __future__ import annotations

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from loyalty.db.models.points_transactions import PointsTransaction
from loyalty.db.repo.accounts_repo import AccountsRepo
from loyalty.db.repo.transactions_repo import TransactionFilters, TransactionsRepo
from loyalty.ledger.errors import AuthorizationError, NotFoundError, ValidationError
from loyalty.ledger.roles import Actor, Role, is_at_least, require_role
from loyalty.ledger.transactions.types import (
    STATUS_PENDING_VERIFICATION,
    TRANSACTION_TYPE_PURCHASE,
    TRANSACTION_TYPE_REDEMPTION,
    PurchaseRecord,
    TransactionPage,
    TransactionRecord,
    to_record,
)
from loyalty.services.cache import LedgerCache

logger = structlog.get_logger("loyalty.ledger.transactions.queries")

DEFAULT_PAGE_LIMIT = 10


async def _own_account_id(session: AsyncSession, user_id: int) -> int | None:
    account = await AccountsRepo.get_by_user_id(session, user_id)
    return None if account is None else account.id


def _cashier_may_read(actor: Actor, row: PointsTransaction) -> bool:
    return (
        is_at_least(actor.role, Role.CASHIER)
        and row.type == TRANSACTION_TYPE_REDEMPTION
        and row.status == STATUS_PENDING_VERIFICATION
    )


class TransactionQueries:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        cache: LedgerCache | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._cache = cache

    async def get_transaction(self, actor: Actor, transaction_id: int) -> TransactionRecord:
        async with self._session_factory() as session:
            row = await TransactionsRepo.get_by_id(session, transaction_id)
            if row is None:
                raise NotFoundError(f"transaction {transaction_id} not found")
            if not is_at_least(actor.role, Role.MANAGER) and not _cashier_may_read(actor, row):
                if row.account_id != await _own_account_id(session, actor.user_id):
                    raise AuthorizationError("cannot view another user's transaction")
            promotion_ids = await TransactionsRepo.list_promotion_ids(session, row.id)
            return to_record(row, promotion_ids)

    async def list_transactions(
        self,
        actor: Actor,
        *,
        filters: TransactionFilters | None = None,
        page: int = 1,
        limit: int = DEFAULT_PAGE_LIMIT,
    ) -> TransactionPage:
        if page < 1 or limit < 1:
            raise ValidationError("page and limit must be positive")
        filters = filters or TransactionFilters()

        async with self._session_factory() as session:
            account_id: int | None = None
            if not is_at_least(actor.role, Role.MANAGER):
                account_id = await _own_account_id(session, actor.user_id)
                if account_id is None:
                    return TransactionPage(count=0, results=[])
            rows, total = await TransactionsRepo.list_with_filters(
                session,
                filters=filters,
                account_id=account_id,
                page=page,
                limit=limit,
            )
            promotions = await TransactionsRepo.map_promotion_ids(session, [row.id for row in rows])
            return TransactionPage(
                count=total,
                results=[to_record(row, promotions.get(row.id, ())) for row in rows],
            )

    async def mark_suspicious(
        self,
        actor: Actor,
        transaction_id: int,
        suspicious: bool,
    ) -> PurchaseRecord:
        """Reviewer flag only; the posted amount and the balance stay untouched."""
        require_role(actor.role, Role.MANAGER)
        async with self._session_factory.begin() as session:
            row = await TransactionsRepo.get_by_id_for_update(session, transaction_id)
            if row is None:
                raise NotFoundError(f"transaction {transaction_id} not found")
            if row.type != TRANSACTION_TYPE_PURCHASE:
                raise ValidationError("only purchases can be marked suspicious")
            row.suspicious = suspicious
            await session.flush()
            promotion_ids = await TransactionsRepo.list_promotion_ids(session, row.id)
            record = to_record(row, promotion_ids)

        logger.info(
            "transaction_suspicious_flag_set",
            transaction_id=transaction_id,
            suspicious=suspicious,
            actor_user_id=actor.user_id,
        )
        if self._cache is not None:
            await self._cache.invalidate_accounts([record.account_id])
        return record
