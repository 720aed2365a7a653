from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal

from loyalty.core.clock import ensure_utc
from loyalty.ledger.promotions.types import PROMOTION_STATUS_ACTIVE, BonusResult, PromotionSnapshot


def round_half_up(value: Decimal) -> int:
    return int(value.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def base_points_for(amount_cents: int, *, cents_per_point: int) -> int:
    if cents_per_point <= 0:
        raise ValueError("cents_per_point must be positive")
    return round_half_up(Decimal(amount_cents) / Decimal(cents_per_point))


def is_within_window(promotion: PromotionSnapshot, *, now_utc: datetime) -> bool:
    if promotion.status != PROMOTION_STATUS_ACTIVE:
        return False
    if ensure_utc(promotion.starts_at) > now_utc:
        return False
    if promotion.ends_at is not None and ensure_utc(promotion.ends_at) <= now_utc:
        return False
    return True


def is_eligible(promotion: PromotionSnapshot, *, amount_cents: int, now_utc: datetime) -> bool:
    if not is_within_window(promotion, now_utc=now_utc):
        return False
    if promotion.min_spending_cents is not None and amount_cents < promotion.min_spending_cents:
        return False
    return True


def promotion_bonus(promotion: PromotionSnapshot, *, base_points: int) -> int:
    bonus = 0
    if promotion.rate is not None:
        bonus += round_half_up(Decimal(base_points) * (Decimal(promotion.rate) - 1))
    if promotion.bonus_points:
        bonus += promotion.bonus_points
    return bonus


def compute_bonus(
    promotions: Iterable[PromotionSnapshot],
    *,
    amount_cents: int,
    base_points: int,
    now_utc: datetime,
) -> BonusResult:
    """Stacks every eligible promotion additively; ignores per-user usage."""
    result = BonusResult()
    for promotion in promotions:
        if not is_eligible(promotion, amount_cents=amount_cents, now_utc=now_utc):
            continue
        result.bonus_points += promotion_bonus(promotion, base_points=base_points)
        result.applied_promotion_ids.append(promotion.promotion_id)
    return result
