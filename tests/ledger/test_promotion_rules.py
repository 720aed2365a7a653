from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from loyalty.ledger.promotions.rules import (
    base_points_for,
    compute_bonus,
    is_eligible,
    promotion_bonus,
    round_half_up,
)
from loyalty.ledger.promotions.types import PromotionSnapshot

UTC = timezone.utc
NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


def snapshot(
    promotion_id: int = 1,
    *,
    kind: str = "automatic",
    status: str = "active",
    rate: Decimal | None = None,
    bonus_points: int | None = None,
    min_spending_cents: int | None = None,
    starts_at: datetime = NOW - timedelta(days=1),
    ends_at: datetime | None = NOW + timedelta(days=1),
) -> PromotionSnapshot:
    return PromotionSnapshot(
        promotion_id=promotion_id,
        kind=kind,
        status=status,
        rate=rate,
        bonus_points=bonus_points,
        min_spending_cents=min_spending_cents,
        starts_at=starts_at,
        ends_at=ends_at,
    )


def test_base_points_default_rate_gives_25_points_per_dollar() -> None:
    assert base_points_for(100, cents_per_point=4) == 25
    assert base_points_for(1999, cents_per_point=4) == 500
    assert base_points_for(1, cents_per_point=4) == 0


def test_round_half_up_rounds_halves_away_from_zero() -> None:
    assert round_half_up(Decimal("2.5")) == 3
    assert round_half_up(Decimal("2.4")) == 2


def test_min_spending_gates_eligibility() -> None:
    promotion = snapshot(kind="one_time", bonus_points=50, min_spending_cents=2000)

    assert is_eligible(promotion, amount_cents=1500, now_utc=NOW) is False
    assert is_eligible(promotion, amount_cents=2000, now_utc=NOW) is True
    assert is_eligible(promotion, amount_cents=2500, now_utc=NOW) is True


@pytest.mark.parametrize(
    "promotion",
    [
        snapshot(status="inactive", bonus_points=10),
        snapshot(bonus_points=10, starts_at=NOW + timedelta(minutes=1)),
        snapshot(bonus_points=10, ends_at=NOW),
    ],
)
def test_window_and_status_gate_eligibility(promotion: PromotionSnapshot) -> None:
    assert is_eligible(promotion, amount_cents=10_000, now_utc=NOW) is False


def test_open_ended_promotion_stays_eligible() -> None:
    promotion = snapshot(bonus_points=10, ends_at=None)
    assert is_eligible(promotion, amount_cents=100, now_utc=NOW + timedelta(days=365)) is True


def test_rate_bonus_uses_extra_multiplier_over_base_points() -> None:
    assert promotion_bonus(snapshot(rate=Decimal("1.5")), base_points=25) == 13
    assert promotion_bonus(snapshot(rate=Decimal("2")), base_points=25) == 25


def test_rate_and_flat_rewards_stack_within_one_promotion() -> None:
    promotion = snapshot(rate=Decimal("2"), bonus_points=10)
    assert promotion_bonus(promotion, base_points=40) == 50


def test_compute_bonus_stacks_eligible_promotions_and_lists_applied_ids() -> None:
    promotions = [
        snapshot(1, bonus_points=10),
        snapshot(2, rate=Decimal("1.2"), min_spending_cents=500),
        snapshot(3, bonus_points=99, min_spending_cents=5000),
    ]

    result = compute_bonus(promotions, amount_cents=1000, base_points=250, now_utc=NOW)

    assert result.bonus_points == 10 + 50
    assert result.applied_promotion_ids == [1, 2]
