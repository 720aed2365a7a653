from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import datetime

import structlog
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from loyalty.db.models.promotions import Promotion, PromotionUsage
from loyalty.db.repo.promotions_repo import PromotionsRepo
from loyalty.ledger.errors import ConflictError, NotFoundError, ValidationError
from loyalty.ledger.promotions import rules
from loyalty.ledger.promotions.types import BonusResult, PromotionSnapshot

logger = structlog.get_logger("loyalty.ledger.promotions")


def snapshot_from_model(promotion: Promotion) -> PromotionSnapshot:
    return PromotionSnapshot(
        promotion_id=promotion.id,
        kind=promotion.kind,
        status=promotion.status,
        rate=promotion.rate,
        bonus_points=promotion.bonus_points,
        min_spending_cents=promotion.min_spending_cents,
        starts_at=promotion.starts_at,
        ends_at=promotion.ends_at,
    )


class PromotionEngine:
    @staticmethod
    async def load_candidates(
        session: AsyncSession,
        *,
        requested_ids: Sequence[int],
        now_utc: datetime,
    ) -> list[PromotionSnapshot]:
        """Active automatic promotions plus the ones the cashier asked for."""
        requested = await PromotionsRepo.list_by_ids(session, requested_ids)
        found_ids = {promotion.id for promotion in requested}
        missing = sorted(set(requested_ids) - found_ids)
        if missing:
            raise NotFoundError(f"promotion {missing[0]} not found")

        candidates: dict[int, PromotionSnapshot] = {}
        for promotion in requested:
            snapshot = snapshot_from_model(promotion)
            if not rules.is_within_window(snapshot, now_utc=now_utc):
                raise ValidationError(f"promotion {promotion.id} is not currently active")
            candidates[promotion.id] = snapshot

        for promotion in await PromotionsRepo.list_active_automatic(session, now_utc=now_utc):
            candidates.setdefault(promotion.id, snapshot_from_model(promotion))
        return [candidates[promotion_id] for promotion_id in sorted(candidates)]

    @staticmethod
    async def _claim_one_time(
        session: AsyncSession,
        *,
        promotion_id: int,
        user_id: int,
        now_utc: datetime,
    ) -> None:
        existing = await PromotionsRepo.get_usage(
            session, promotion_id=promotion_id, user_id=user_id
        )
        if existing is not None:
            raise ConflictError(f"promotion {promotion_id} has already been used")
        try:
            await PromotionsRepo.create_usage(
                session,
                usage=PromotionUsage(
                    promotion_id=promotion_id,
                    user_id=user_id,
                    transaction_id=None,
                    used_at=now_utc,
                ),
            )
        except IntegrityError as exc:
            logger.warning(
                "one_time_promotion_claim_lost",
                promotion_id=promotion_id,
                user_id=user_id,
            )
            raise ConflictError(f"promotion {promotion_id} has already been used") from exc

    @staticmethod
    async def compute_bonus(
        session: AsyncSession,
        *,
        user_id: int,
        amount_cents: int,
        base_points: int,
        candidates: Iterable[PromotionSnapshot],
        now_utc: datetime,
    ) -> BonusResult:
        by_id = {promotion.promotion_id: promotion for promotion in candidates}
        result = rules.compute_bonus(
            by_id.values(),
            amount_cents=amount_cents,
            base_points=base_points,
            now_utc=now_utc,
        )
        for promotion_id in result.applied_promotion_ids:
            if by_id[promotion_id].is_one_time:
                await PromotionEngine._claim_one_time(
                    session,
                    promotion_id=promotion_id,
                    user_id=user_id,
                    now_utc=now_utc,
                )
        return result

    @staticmethod
    async def link_usages(
        session: AsyncSession,
        *,
        user_id: int,
        promotion_ids: Iterable[int],
        transaction_id: int,
    ) -> None:
        ids = tuple(promotion_ids)
        if not ids:
            return
        stmt = (
            update(PromotionUsage)
            .where(
                PromotionUsage.user_id == user_id,
                PromotionUsage.promotion_id.in_(ids),
                PromotionUsage.transaction_id.is_(None),
            )
            .values(transaction_id=transaction_id)
            .execution_options(synchronize_session=False)
        )
        await session.execute(stmt)
