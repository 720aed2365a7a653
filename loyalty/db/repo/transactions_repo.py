from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from loyalty.db.models.points_transactions import PointsTransaction, TransactionPromotion


@dataclass(frozen=True, slots=True)
class TransactionFilters:
    type: str | None = None
    status: str | None = None
    suspicious: bool | None = None
    promotion_id: int | None = None
    related_id: int | None = None
    created_by_user_id: int | None = None
    min_points: int | None = None
    max_points: int | None = None


class TransactionsRepo:
    @staticmethod
    async def create(session: AsyncSession, *, transaction: PointsTransaction) -> PointsTransaction:
        session.add(transaction)
        await session.flush()
        return transaction

    @staticmethod
    async def get_by_id(session: AsyncSession, transaction_id: int) -> PointsTransaction | None:
        return await session.get(PointsTransaction, transaction_id)

    @staticmethod
    async def get_by_id_for_update(
        session: AsyncSession, transaction_id: int
    ) -> PointsTransaction | None:
        stmt = select(PointsTransaction).where(PointsTransaction.id == transaction_id).with_for_update()
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def get_by_idempotency_key(
        session: AsyncSession, idempotency_key: str
    ) -> PointsTransaction | None:
        stmt = select(PointsTransaction).where(PointsTransaction.idempotency_key == idempotency_key)
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def list_by_idempotency_prefix(
        session: AsyncSession, prefix: str
    ) -> list[PointsTransaction]:
        stmt = (
            select(PointsTransaction)
            .where(PointsTransaction.idempotency_key.startswith(prefix, autoescape=True))
            .order_by(PointsTransaction.id)
        )
        result = await session.execute(stmt)
        return list(result.scalars().all())

    @staticmethod
    async def claim_pending_redemption(
        session: AsyncSession,
        *,
        transaction_id: int,
        points_posted: int,
        cashier_id: int,
        now_utc: datetime,
    ) -> bool:
        stmt = (
            update(PointsTransaction)
            .where(
                PointsTransaction.id == transaction_id,
                PointsTransaction.type == "redemption",
                PointsTransaction.status == "pending_verification",
            )
            .values(
                status="posted",
                points_posted=points_posted,
                cashier_id=cashier_id,
                processed_at=now_utc,
            )
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        return (result.rowcount or 0) == 1

    @staticmethod
    async def cancel_pending_redemption(
        session: AsyncSession,
        *,
        transaction_id: int,
        now_utc: datetime,
    ) -> bool:
        stmt = (
            update(PointsTransaction)
            .where(
                PointsTransaction.id == transaction_id,
                PointsTransaction.type == "redemption",
                PointsTransaction.status == "pending_verification",
            )
            .values(status="cancelled", processed_at=now_utc)
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        return (result.rowcount or 0) == 1

    @staticmethod
    async def add_promotions(
        session: AsyncSession,
        *,
        transaction_id: int,
        promotion_ids: Iterable[int],
    ) -> None:
        session.add_all(
            [
                TransactionPromotion(transaction_id=transaction_id, promotion_id=promotion_id)
                for promotion_id in promotion_ids
            ]
        )
        await session.flush()

    @staticmethod
    async def list_promotion_ids(session: AsyncSession, transaction_id: int) -> list[int]:
        stmt = (
            select(TransactionPromotion.promotion_id)
            .where(TransactionPromotion.transaction_id == transaction_id)
            .order_by(TransactionPromotion.promotion_id)
        )
        result = await session.execute(stmt)
        return [int(value) for value in result.scalars().all()]

    @staticmethod
    async def map_promotion_ids(
        session: AsyncSession,
        transaction_ids: Iterable[int],
    ) -> dict[int, list[int]]:
        ids = tuple({int(transaction_id) for transaction_id in transaction_ids})
        if not ids:
            return {}
        stmt = (
            select(TransactionPromotion.transaction_id, TransactionPromotion.promotion_id)
            .where(TransactionPromotion.transaction_id.in_(ids))
            .order_by(TransactionPromotion.transaction_id, TransactionPromotion.promotion_id)
        )
        result = await session.execute(stmt)
        mapping: dict[int, list[int]] = {}
        for transaction_id, promotion_id in result.all():
            mapping.setdefault(int(transaction_id), []).append(int(promotion_id))
        return mapping

    @staticmethod
    async def sum_posted_for_account(session: AsyncSession, account_id: int) -> int:
        stmt = select(func.coalesce(func.sum(PointsTransaction.points_posted), 0)).where(
            PointsTransaction.account_id == account_id,
            PointsTransaction.status == "posted",
        )
        result = await session.execute(stmt)
        return int(result.scalar_one() or 0)

    @staticmethod
    async def list_pending_redemptions(
        session: AsyncSession,
        *,
        limit: int,
    ) -> list[PointsTransaction]:
        stmt = (
            select(PointsTransaction)
            .where(
                PointsTransaction.type == "redemption",
                PointsTransaction.status == "pending_verification",
            )
            .order_by(PointsTransaction.created_at, PointsTransaction.id)
            .limit(max(1, min(500, int(limit))))
        )
        result = await session.execute(stmt)
        return list(result.scalars().all())

    @staticmethod
    async def list_with_filters(
        session: AsyncSession,
        *,
        filters: TransactionFilters,
        account_id: int | None,
        page: int,
        limit: int,
    ) -> tuple[list[PointsTransaction], int]:
        conditions = []
        if account_id is not None:
            conditions.append(PointsTransaction.account_id == account_id)
        if filters.type is not None:
            conditions.append(PointsTransaction.type == filters.type)
        if filters.status is not None:
            conditions.append(PointsTransaction.status == filters.status)
        if filters.suspicious is not None:
            conditions.append(PointsTransaction.suspicious == filters.suspicious)
        if filters.created_by_user_id is not None:
            conditions.append(PointsTransaction.created_by_user_id == filters.created_by_user_id)
        if filters.related_id is not None:
            conditions.append(
                or_(
                    PointsTransaction.related_id == filters.related_id,
                    PointsTransaction.event_id == filters.related_id,
                )
            )
        if filters.promotion_id is not None:
            conditions.append(
                select(TransactionPromotion.id)
                .where(
                    TransactionPromotion.transaction_id == PointsTransaction.id,
                    TransactionPromotion.promotion_id == filters.promotion_id,
                )
                .exists()
            )
        if filters.min_points is not None:
            conditions.append(PointsTransaction.points_posted >= filters.min_points)
        if filters.max_points is not None:
            conditions.append(PointsTransaction.points_posted <= filters.max_points)

        count_stmt = select(func.count(PointsTransaction.id)).where(*conditions)
        total = int((await session.execute(count_stmt)).scalar_one() or 0)

        resolved_limit = max(1, min(100, int(limit)))
        offset = (max(1, int(page)) - 1) * resolved_limit
        stmt = (
            select(PointsTransaction)
            .where(*conditions)
            .order_by(PointsTransaction.created_at.desc(), PointsTransaction.id.desc())
            .offset(offset)
            .limit(resolved_limit)
        )
        result = await session.execute(stmt)
        return list(result.scalars().all()), total
