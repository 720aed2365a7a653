from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from loyalty.db.models.promotions import Promotion, PromotionUsage


class PromotionsRepo:
    @staticmethod
    async def get_by_id(session: AsyncSession, promotion_id: int) -> Promotion | None:
        return await session.get(Promotion, promotion_id)

    @staticmethod
    async def list_by_ids(session: AsyncSession, promotion_ids: Sequence[int]) -> list[Promotion]:
        ids = tuple({int(promotion_id) for promotion_id in promotion_ids})
        if not ids:
            return []
        stmt = select(Promotion).where(Promotion.id.in_(ids)).order_by(Promotion.id)
        result = await session.execute(stmt)
        return list(result.scalars().all())

    @staticmethod
    async def list_active_automatic(session: AsyncSession, *, now_utc: datetime) -> list[Promotion]:
        stmt = (
            select(Promotion)
            .where(
                Promotion.kind == "automatic",
                Promotion.status == "active",
                Promotion.starts_at <= now_utc,
                or_(Promotion.ends_at.is_(None), Promotion.ends_at > now_utc),
            )
            .order_by(Promotion.id)
        )
        result = await session.execute(stmt)
        return list(result.scalars().all())

    @staticmethod
    async def get_usage(
        session: AsyncSession,
        *,
        promotion_id: int,
        user_id: int,
    ) -> PromotionUsage | None:
        stmt = select(PromotionUsage).where(
            PromotionUsage.promotion_id == promotion_id,
            PromotionUsage.user_id == user_id,
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def create_usage(session: AsyncSession, *, usage: PromotionUsage) -> PromotionUsage:
        session.add(usage)
        await session.flush()
        return usage

    @staticmethod
    async def list_used_promotion_ids(session: AsyncSession, user_id: int) -> set[int]:
        stmt = select(PromotionUsage.promotion_id).where(PromotionUsage.user_id == user_id)
        result = await session.execute(stmt)
        return {int(value) for value in result.scalars().all()}
