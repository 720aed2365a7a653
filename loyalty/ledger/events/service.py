from __future__ import annotations

from datetime import datetime

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from loyalty.core.clock import utc_now
from loyalty.db.models.events import Event
from loyalty.db.repo.accounts_repo import AccountsRepo
from loyalty.db.repo.events_repo import EventsRepo
from loyalty.ledger.accounts import AccountLedger
from loyalty.ledger.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from loyalty.ledger.events.types import EventPoolStatus
from loyalty.ledger.roles import Actor, Role, is_at_least
from loyalty.ledger.transactions.idempotency import (
    batch_item_key,
    find_batch_replay,
    find_replay,
    request_scope,
)
from loyalty.ledger.transactions.service import TransactionFactory
from loyalty.ledger.transactions.types import TRANSACTION_TYPE_EVENT, EventAwardRecord, to_record
from loyalty.services.cache import LedgerCache

logger = structlog.get_logger("loyalty.ledger.events")


def _require_positive_amount(value: object) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValidationError("award amount must be a positive integer")
    return value


async def _authorize(session: AsyncSession, actor: Actor, event_id: int) -> Event:
    event = await EventsRepo.get_by_id_for_update(session, event_id)
    if event is None:
        raise NotFoundError(f"event {event_id} not found")
    if is_at_least(actor.role, Role.MANAGER):
        return event
    if await EventsRepo.is_organizer(session, event_id=event_id, user_id=actor.user_id):
        return event
    raise AuthorizationError("only organizers or managers can award event points")


async def _reserve(session: AsyncSession, *, event_id: int, total: int) -> None:
    if await EventsRepo.reserve_points(session, event_id=event_id, amount=total):
        return
    totals = await EventsRepo.get_pool_totals(session, event_id)
    points_pool, points_awarded = totals if totals is not None else (0, 0)
    logger.warning(
        "event_pool_overdraw_rejected",
        event_id=event_id,
        requested=total,
        points_pool=points_pool,
        points_awarded=points_awarded,
    )
    raise ConflictError(
        f"event {event_id} has {points_pool - points_awarded} points remaining; {total} requested"
    )


class EventPointsPool:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        cache: LedgerCache | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._cache = cache

    async def _invalidate(self, *, event_id: int, account_ids: list[int]) -> None:
        if self._cache is None:
            return
        await self._cache.invalidate_event(event_id)
        await self._cache.invalidate_accounts(account_ids)

    async def award_single(
        self,
        actor: Actor,
        *,
        event_id: int,
        guest_user_id: int,
        amount: int,
        remark: str | None = None,
        idempotency_key: str | None = None,
        now_utc: datetime | None = None,
    ) -> EventAwardRecord:
        now_utc = now_utc or utc_now()
        scope = request_scope("event_award", event=event_id, guest=guest_user_id, amount=amount)

        async with self._session_factory.begin() as session:
            await _authorize(session, actor, event_id)
            _require_positive_amount(amount)
            replay = await find_replay(
                session,
                idempotency_key=idempotency_key,
                created_by_user_id=actor.user_id,
                transaction_type=TRANSACTION_TYPE_EVENT,
                scope=scope,
            )
            if replay is not None:
                return to_record(replay)

            if not await EventsRepo.is_guest(session, event_id=event_id, user_id=guest_user_id):
                raise ValidationError(f"user {guest_user_id} is not a guest of event {event_id}")
            account = await AccountsRepo.get_by_user_id(session, guest_user_id)
            if account is None:
                raise NotFoundError(f"loyalty account for user {guest_user_id} not found")

            await _reserve(session, event_id=event_id, total=amount)
            await AccountLedger.lock_accounts(session, [account.id])
            transaction = await TransactionFactory.post_event_award(
                session,
                actor=actor,
                event_id=event_id,
                account_id=account.id,
                amount=amount,
                remark=remark,
                idempotency_key=idempotency_key,
                now_utc=now_utc,
                scope=scope,
            )
            record = to_record(transaction)

        logger.info(
            "event_points_awarded",
            event_id=event_id,
            guest_user_id=guest_user_id,
            amount=amount,
            transaction_id=record.transaction_id,
        )
        await self._invalidate(event_id=event_id, account_ids=[record.account_id])
        return record

    async def award_all(
        self,
        actor: Actor,
        *,
        event_id: int,
        per_guest_amount: int,
        remark: str | None = None,
        idempotency_key: str | None = None,
        now_utc: datetime | None = None,
    ) -> list[EventAwardRecord]:
        """Credits every current guest, or nobody when the pool cannot cover them all."""
        now_utc = now_utc or utc_now()
        scope = request_scope("event_award_all", event=event_id, per_guest_amount=per_guest_amount)

        async with self._session_factory.begin() as session:
            await _authorize(session, actor, event_id)
            _require_positive_amount(per_guest_amount)
            replayed = await find_batch_replay(
                session,
                idempotency_key=idempotency_key,
                created_by_user_id=actor.user_id,
                transaction_type=TRANSACTION_TYPE_EVENT,
                scope=scope,
            )
            if replayed:
                return [to_record(row) for row in replayed]

            guest_ids = await EventsRepo.list_guest_user_ids(session, event_id)
            if not guest_ids:
                raise ValidationError(f"event {event_id} has no guests")
            accounts = []
            for guest_id in guest_ids:
                account = await AccountsRepo.get_by_user_id(session, guest_id)
                if account is None:
                    raise NotFoundError(f"loyalty account for user {guest_id} not found")
                accounts.append((guest_id, account.id))

            total = per_guest_amount * len(accounts)
            await _reserve(session, event_id=event_id, total=total)
            await AccountLedger.lock_accounts(session, [account_id for _, account_id in accounts])

            records: list[EventAwardRecord] = []
            for guest_id, account_id in sorted(accounts, key=lambda pair: pair[1]):
                transaction = await TransactionFactory.post_event_award(
                    session,
                    actor=actor,
                    event_id=event_id,
                    account_id=account_id,
                    amount=per_guest_amount,
                    remark=remark,
                    idempotency_key=batch_item_key(idempotency_key, guest_id),
                    now_utc=now_utc,
                    scope=scope,
                )
                records.append(to_record(transaction))

        logger.info(
            "event_points_awarded_to_all",
            event_id=event_id,
            guests=len(records),
            per_guest_amount=per_guest_amount,
            total=total,
        )
        await self._invalidate(
            event_id=event_id,
            account_ids=[record.account_id for record in records],
        )
        return records

    async def pool_status(self, event_id: int) -> EventPoolStatus:
        async with self._session_factory() as session:
            totals = await EventsRepo.get_pool_totals(session, event_id)
        if totals is None:
            raise NotFoundError(f"event {event_id} not found")
        points_pool, points_awarded = totals
        return EventPoolStatus(event_id=event_id, points_pool=points_pool, points_awarded=points_awarded)
