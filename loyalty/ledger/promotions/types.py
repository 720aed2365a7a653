from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal

PROMOTION_KIND_AUTOMATIC = "automatic"
PROMOTION_KIND_ONE_TIME = "one_time"
PROMOTION_STATUS_ACTIVE = "active"


@dataclass(frozen=True, slots=True)
class PromotionSnapshot:
    promotion_id: int
    kind: str
    status: str
    rate: Decimal | None
    bonus_points: int | None
    min_spending_cents: int | None
    starts_at: datetime
    ends_at: datetime | None

    @property
    def is_one_time(self) -> bool:
        return self.kind == PROMOTION_KIND_ONE_TIME


@dataclass(slots=True)
class BonusResult:
    bonus_points: int = 0
    applied_promotion_ids: list[int] = field(default_factory=list)
