from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import datetime

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from loyalty.core.clock import utc_now
from loyalty.core.config import get_settings
from loyalty.db.models.loyalty_accounts import LoyaltyAccount
from loyalty.db.models.points_transactions import PointsTransaction
from loyalty.db.models.users import User
from loyalty.db.repo.accounts_repo import AccountsRepo
from loyalty.db.repo.transactions_repo import TransactionsRepo
from loyalty.db.repo.users_repo import UsersRepo
from loyalty.ledger.accounts import AccountLedger
from loyalty.ledger.errors import AuthorizationError, InsufficientBalanceError, NotFoundError, ValidationError
from loyalty.ledger.promotions import PromotionEngine, rules
from loyalty.ledger.roles import Actor, Role, require_role
from loyalty.ledger.transactions.idempotency import find_replay, insert_transaction, request_scope
from loyalty.ledger.transactions.types import (
    STATUS_PENDING_VERIFICATION,
    STATUS_POSTED,
    TRANSACTION_TYPE_ADJUSTMENT,
    TRANSACTION_TYPE_EVENT,
    TRANSACTION_TYPE_PURCHASE,
    TRANSACTION_TYPE_REDEMPTION,
    TRANSACTION_TYPE_TRANSFER,
    AdjustmentRecord,
    PurchaseRecord,
    RedemptionRecord,
    TransferResult,
    to_record,
)
from loyalty.services.cache import LedgerCache

logger = structlog.get_logger("loyalty.ledger.transactions")


def _require_positive_points(value: object, *, field: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{field} must be an integer")
    if value <= 0:
        raise ValidationError(f"{field} must be positive")
    return value


async def _get_user(session: AsyncSession, user_id: int) -> User:
    user = await UsersRepo.get_by_id(session, user_id)
    if user is None:
        raise NotFoundError(f"user {user_id} not found")
    return user


async def _get_account(session: AsyncSession, user_id: int) -> LoyaltyAccount:
    account = await AccountsRepo.get_by_user_id(session, user_id)
    if account is None:
        raise NotFoundError(f"loyalty account for user {user_id} not found")
    return account


async def _require_verified(session: AsyncSession, user_id: int, *, action: str) -> None:
    user = await _get_user(session, user_id)
    if not user.is_verified:
        raise AuthorizationError(f"only verified users can {action}")


class TransactionFactory:
    """One creation path per transaction type.

    Each call authorizes, validates and mutates inside a single unit of work;
    cache entries for the touched accounts are dropped after commit.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        cache: LedgerCache | None = None,
        cents_per_point: int | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._cache = cache
        self._cents_per_point = cents_per_point or get_settings().purchase_cents_per_point

    async def _invalidate(self, account_ids: Iterable[int]) -> None:
        if self._cache is not None:
            await self._cache.invalidate_accounts(account_ids)

    async def create_purchase(
        self,
        actor: Actor,
        *,
        customer_id: int,
        amount_cents: int,
        promotion_ids: Sequence[int] = (),
        remark: str | None = None,
        idempotency_key: str | None = None,
        now_utc: datetime | None = None,
    ) -> PurchaseRecord:
        require_role(actor.role, Role.CASHIER)
        _require_positive_points(amount_cents, field="amount_cents")
        now_utc = now_utc or utc_now()
        scope = request_scope(
            TRANSACTION_TYPE_PURCHASE,
            customer=customer_id,
            amount_cents=amount_cents,
            promotions=",".join(str(promotion_id) for promotion_id in sorted(set(promotion_ids))),
        )

        async with self._session_factory.begin() as session:
            replay = await find_replay(
                session,
                idempotency_key=idempotency_key,
                created_by_user_id=actor.user_id,
                transaction_type=TRANSACTION_TYPE_PURCHASE,
                scope=scope,
            )
            if replay is not None:
                applied = await TransactionsRepo.list_promotion_ids(session, replay.id)
                return to_record(replay, applied)

            customer = await _get_user(session, customer_id)
            account = await _get_account(session, customer_id)
            await AccountLedger.lock_accounts(session, [account.id])

            candidates = await PromotionEngine.load_candidates(
                session,
                requested_ids=list(dict.fromkeys(promotion_ids)),
                now_utc=now_utc,
            )
            base_points = rules.base_points_for(amount_cents, cents_per_point=self._cents_per_point)
            bonus = await PromotionEngine.compute_bonus(
                session,
                user_id=customer.id,
                amount_cents=amount_cents,
                base_points=base_points,
                candidates=candidates,
                now_utc=now_utc,
            )
            points = base_points + bonus.bonus_points

            transaction = await insert_transaction(
                session,
                transaction=PointsTransaction(
                    type=TRANSACTION_TYPE_PURCHASE,
                    status=STATUS_POSTED,
                    account_id=account.id,
                    created_by_user_id=actor.user_id,
                    cashier_id=actor.user_id,
                    total_cents=amount_cents,
                    points_calculated=points,
                    points_posted=points,
                    suspicious=customer.is_suspicious,
                    idempotency_key=idempotency_key,
                    notes=remark,
                    created_at=now_utc,
                ),
                scope=scope,
            )
            if bonus.applied_promotion_ids:
                await TransactionsRepo.add_promotions(
                    session,
                    transaction_id=transaction.id,
                    promotion_ids=bonus.applied_promotion_ids,
                )
                await PromotionEngine.link_usages(
                    session,
                    user_id=customer.id,
                    promotion_ids=bonus.applied_promotion_ids,
                    transaction_id=transaction.id,
                )
            if points > 0:
                await AccountLedger.apply(
                    session,
                    account_id=account.id,
                    delta=points,
                    transaction_id=transaction.id,
                    kind="earn_purchase",
                    posted_by_user_id=actor.user_id,
                    now_utc=now_utc,
                )
            record = to_record(transaction, bonus.applied_promotion_ids)

        logger.info(
            "purchase_created",
            transaction_id=record.transaction_id,
            account_id=record.account_id,
            amount_cents=amount_cents,
            base_points=base_points,
            bonus_points=bonus.bonus_points,
            promotion_ids=list(record.promotion_ids),
        )
        if record.suspicious:
            logger.warning(
                "purchase_flagged_suspicious",
                transaction_id=record.transaction_id,
                customer_id=customer_id,
            )
        await self._invalidate([record.account_id])
        return record

    async def create_transfer(
        self,
        actor: Actor,
        *,
        recipient_id: int,
        amount: int,
        remark: str | None = None,
        idempotency_key: str | None = None,
        now_utc: datetime | None = None,
    ) -> TransferResult:
        _require_positive_points(amount, field="amount")
        if recipient_id == actor.user_id:
            raise ValidationError("cannot transfer points to yourself")
        now_utc = now_utc or utc_now()
        scope = request_scope(TRANSACTION_TYPE_TRANSFER, recipient=recipient_id, amount=amount)

        async with self._session_factory.begin() as session:
            await _require_verified(session, actor.user_id, action="transfer points")
            replay = await find_replay(
                session,
                idempotency_key=idempotency_key,
                created_by_user_id=actor.user_id,
                transaction_type=TRANSACTION_TYPE_TRANSFER,
                scope=scope,
            )
            if replay is not None:
                counterpart = await TransactionsRepo.get_by_id(session, int(replay.related_id))
                return TransferResult(sent=to_record(replay), received=to_record(counterpart))

            sender_account = await _get_account(session, actor.user_id)
            await _get_user(session, recipient_id)
            recipient_account = await _get_account(session, recipient_id)
            await AccountLedger.lock_accounts(session, [sender_account.id, recipient_account.id])

            balance = await AccountLedger.balance_of(session, sender_account.id)
            if balance < amount:
                logger.warning(
                    "transfer_rejected_insufficient_balance",
                    account_id=sender_account.id,
                    balance=balance,
                    amount=amount,
                )
                raise InsufficientBalanceError(f"balance {balance} is less than transfer amount {amount}")

            sent = await insert_transaction(
                session,
                transaction=PointsTransaction(
                    type=TRANSACTION_TYPE_TRANSFER,
                    status=STATUS_POSTED,
                    account_id=sender_account.id,
                    created_by_user_id=actor.user_id,
                    points_calculated=-amount,
                    points_posted=-amount,
                    idempotency_key=idempotency_key,
                    notes=remark,
                    created_at=now_utc,
                ),
                scope=scope,
            )
            received = await insert_transaction(
                session,
                transaction=PointsTransaction(
                    type=TRANSACTION_TYPE_TRANSFER,
                    status=STATUS_POSTED,
                    account_id=recipient_account.id,
                    created_by_user_id=actor.user_id,
                    points_calculated=amount,
                    points_posted=amount,
                    related_id=sent.id,
                    notes=remark,
                    created_at=now_utc,
                ),
            )
            sent.related_id = received.id
            await session.flush()

            await AccountLedger.apply(
                session,
                account_id=sender_account.id,
                delta=-amount,
                transaction_id=sent.id,
                kind="transfer_out",
                posted_by_user_id=actor.user_id,
                now_utc=now_utc,
            )
            await AccountLedger.apply(
                session,
                account_id=recipient_account.id,
                delta=amount,
                transaction_id=received.id,
                kind="transfer_in",
                posted_by_user_id=actor.user_id,
                now_utc=now_utc,
            )
            result = TransferResult(sent=to_record(sent), received=to_record(received))

        logger.info(
            "transfer_created",
            sent_transaction_id=result.sent.transaction_id,
            received_transaction_id=result.received.transaction_id,
            amount=amount,
        )
        await self._invalidate([result.sent.account_id, result.received.account_id])
        return result

    async def create_adjustment(
        self,
        actor: Actor,
        *,
        customer_id: int,
        amount: int,
        related_id: int | None = None,
        remark: str | None = None,
        idempotency_key: str | None = None,
        now_utc: datetime | None = None,
    ) -> AdjustmentRecord:
        require_role(actor.role, Role.MANAGER)
        if isinstance(amount, bool) or not isinstance(amount, int) or amount == 0:
            raise ValidationError("adjustment amount must be a non-zero integer")
        now_utc = now_utc or utc_now()
        scope = request_scope(
            TRANSACTION_TYPE_ADJUSTMENT,
            customer=customer_id,
            amount=amount,
            related=related_id,
        )

        async with self._session_factory.begin() as session:
            replay = await find_replay(
                session,
                idempotency_key=idempotency_key,
                created_by_user_id=actor.user_id,
                transaction_type=TRANSACTION_TYPE_ADJUSTMENT,
                scope=scope,
            )
            if replay is not None:
                return to_record(replay)

            if related_id is not None and await TransactionsRepo.get_by_id(session, related_id) is None:
                raise NotFoundError(f"transaction {related_id} not found")
            account = await _get_account(session, customer_id)
            await AccountLedger.lock_accounts(session, [account.id])

            transaction = await insert_transaction(
                session,
                transaction=PointsTransaction(
                    type=TRANSACTION_TYPE_ADJUSTMENT,
                    status=STATUS_POSTED,
                    account_id=account.id,
                    created_by_user_id=actor.user_id,
                    manager_id=actor.user_id,
                    points_calculated=amount,
                    points_posted=amount,
                    related_id=related_id,
                    idempotency_key=idempotency_key,
                    notes=remark,
                    created_at=now_utc,
                ),
                scope=scope,
            )
            await AccountLedger.apply(
                session,
                account_id=account.id,
                delta=amount,
                transaction_id=transaction.id,
                kind="adjustment_credit" if amount > 0 else "adjustment_debit",
                posted_by_user_id=actor.user_id,
                now_utc=now_utc,
            )
            record = to_record(transaction)

        logger.info(
            "adjustment_created",
            transaction_id=record.transaction_id,
            account_id=record.account_id,
            amount=amount,
            related_id=related_id,
        )
        await self._invalidate([record.account_id])
        return record

    async def create_redemption_request(
        self,
        actor: Actor,
        *,
        amount: int,
        remark: str | None = None,
        idempotency_key: str | None = None,
        now_utc: datetime | None = None,
    ) -> RedemptionRecord:
        _require_positive_points(amount, field="amount")
        now_utc = now_utc or utc_now()
        scope = request_scope(TRANSACTION_TYPE_REDEMPTION, amount=amount)

        async with self._session_factory.begin() as session:
            await _require_verified(session, actor.user_id, action="redeem points")
            replay = await find_replay(
                session,
                idempotency_key=idempotency_key,
                created_by_user_id=actor.user_id,
                transaction_type=TRANSACTION_TYPE_REDEMPTION,
                scope=scope,
            )
            if replay is not None:
                return to_record(replay)

            account = await _get_account(session, actor.user_id)
            balance = await AccountLedger.balance_of(session, account.id)
            if balance < amount:
                raise InsufficientBalanceError(
                    f"balance {balance} is less than requested redemption {amount}"
                )

            transaction = await insert_transaction(
                session,
                transaction=PointsTransaction(
                    type=TRANSACTION_TYPE_REDEMPTION,
                    status=STATUS_PENDING_VERIFICATION,
                    account_id=account.id,
                    created_by_user_id=actor.user_id,
                    points_calculated=-amount,
                    points_posted=None,
                    idempotency_key=idempotency_key,
                    notes=remark,
                    created_at=now_utc,
                ),
                scope=scope,
            )
            record = to_record(transaction)

        logger.info(
            "redemption_requested",
            transaction_id=record.transaction_id,
            account_id=record.account_id,
            amount=amount,
        )
        await self._invalidate([record.account_id])
        return record

    @staticmethod
    async def post_event_award(
        session: AsyncSession,
        *,
        actor: Actor,
        event_id: int,
        account_id: int,
        amount: int,
        remark: str | None,
        idempotency_key: str | None,
        now_utc: datetime,
        scope: str | None = None,
    ) -> PointsTransaction:
        """Creates and posts one event credit; the caller reserves the pool first."""
        transaction = await insert_transaction(
            session,
            transaction=PointsTransaction(
                type=TRANSACTION_TYPE_EVENT,
                status=STATUS_POSTED,
                account_id=account_id,
                created_by_user_id=actor.user_id,
                event_id=event_id,
                points_calculated=amount,
                points_posted=amount,
                related_id=event_id,
                idempotency_key=idempotency_key,
                notes=remark,
                created_at=now_utc,
            ),
            scope=scope,
        )
        await AccountLedger.apply(
            session,
            account_id=account_id,
            delta=amount,
            transaction_id=transaction.id,
            kind="earn_event",
            posted_by_user_id=actor.user_id,
            now_utc=now_utc,
        )
        return transaction

