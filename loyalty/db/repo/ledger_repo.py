from __future__ import annotations

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from loyalty.db.models.ledger_entries import LedgerEntry


class LedgerRepo:
    @staticmethod
    async def get_by_transaction_id(
        session: AsyncSession, transaction_id: int
    ) -> LedgerEntry | None:
        stmt = select(LedgerEntry).where(LedgerEntry.transaction_id == transaction_id)
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def create(session: AsyncSession, *, entry: LedgerEntry) -> LedgerEntry:
        session.add(entry)
        await session.flush()
        return entry

    @staticmethod
    async def sum_deltas_for_account(session: AsyncSession, account_id: int) -> int:
        stmt = select(func.coalesce(func.sum(LedgerEntry.points_delta), 0)).where(
            LedgerEntry.account_id == account_id
        )
        result = await session.execute(stmt)
        return int(result.scalar_one() or 0)

    @staticmethod
    async def list_for_account(
        session: AsyncSession,
        account_id: int,
        *,
        limit: int = 100,
    ) -> list[LedgerEntry]:
        stmt = (
            select(LedgerEntry)
            .where(LedgerEntry.account_id == account_id)
            .order_by(LedgerEntry.id.desc())
            .limit(max(1, min(1000, int(limit))))
        )
        result = await session.execute(stmt)
        return list(result.scalars().all())
