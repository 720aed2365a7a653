from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from loyalty.db.models.loyalty_accounts import LoyaltyAccount


class AccountsRepo:
    @staticmethod
    async def get_by_id(session: AsyncSession, account_id: int) -> LoyaltyAccount | None:
        return await session.get(LoyaltyAccount, account_id)

    @staticmethod
    async def get_by_user_id(session: AsyncSession, user_id: int) -> LoyaltyAccount | None:
        stmt = select(LoyaltyAccount).where(LoyaltyAccount.user_id == user_id)
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def lock_many(
        session: AsyncSession,
        account_ids: Iterable[int],
    ) -> dict[int, LoyaltyAccount]:
        # Ascending id order keeps crossing transfers from deadlocking.
        ids = sorted({int(account_id) for account_id in account_ids})
        if not ids:
            return {}
        stmt = (
            select(LoyaltyAccount)
            .where(LoyaltyAccount.id.in_(ids))
            .order_by(LoyaltyAccount.id)
            .with_for_update()
        )
        result = await session.execute(stmt)
        return {account.id: account for account in result.scalars().all()}

    @staticmethod
    async def get_points(session: AsyncSession, account_id: int) -> int | None:
        stmt = select(LoyaltyAccount.points_cached).where(LoyaltyAccount.id == account_id)
        result = await session.execute(stmt)
        value = result.scalar_one_or_none()
        return None if value is None else int(value)

    @staticmethod
    async def apply_delta_guarded(
        session: AsyncSession,
        *,
        account_id: int,
        delta: int,
        now_utc: datetime,
    ) -> int | None:
        """Adds ``delta`` unless the balance would drop below zero.

        Returns the new balance, or ``None`` when the guard rejected the change
        or the account does not exist.
        """
        stmt = (
            update(LoyaltyAccount)
            .where(
                LoyaltyAccount.id == account_id,
                LoyaltyAccount.points_cached + delta >= 0,
            )
            .values(
                points_cached=LoyaltyAccount.points_cached + delta,
                updated_at=now_utc,
            )
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        if (result.rowcount or 0) == 0:
            return None
        return await AccountsRepo.get_points(session, account_id)

    @staticmethod
    async def create(session: AsyncSession, *, user_id: int, now_utc: datetime) -> LoyaltyAccount:
        account = LoyaltyAccount(
            user_id=user_id,
            points_cached=0,
            created_at=now_utc,
            updated_at=now_utc,
        )
        session.add(account)
        await session.flush()
        return account
