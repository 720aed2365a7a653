from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from loyalty.db.models.base import Base, BigIntPK


class Promotion(Base):
    __tablename__ = "promotions"
    __table_args__ = (
        CheckConstraint("kind IN ('automatic','one_time')", name="ck_promotions_kind"),
        CheckConstraint("status IN ('active','inactive')", name="ck_promotions_status"),
        CheckConstraint(
            "rate IS NOT NULL OR bonus_points IS NOT NULL",
            name="ck_promotions_has_reward",
        ),
        CheckConstraint("rate IS NULL OR rate >= 1", name="ck_promotions_rate_multiplier"),
        CheckConstraint(
            "bonus_points IS NULL OR bonus_points > 0",
            name="ck_promotions_bonus_points_positive",
        ),
        CheckConstraint(
            "min_spending_cents IS NULL OR min_spending_cents >= 0",
            name="ck_promotions_min_spending_non_negative",
        ),
        CheckConstraint(
            "ends_at IS NULL OR ends_at > starts_at",
            name="ck_promotions_window",
        ),
        Index("idx_promotions_kind_status", "kind", "status"),
        Index("idx_promotions_window", "starts_at", "ends_at"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    kind: Mapped[str] = mapped_column(String(16), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    rate: Mapped[Decimal | None] = mapped_column(Numeric(8, 4), nullable=True)
    bonus_points: Mapped[int | None] = mapped_column(Integer, nullable=True)
    min_spending_cents: Mapped[int | None] = mapped_column(Integer, nullable=True)
    starts_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    ends_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class PromotionUsage(Base):
    __tablename__ = "promotion_usages"
    __table_args__ = (
        UniqueConstraint("promotion_id", "user_id", name="uq_promotion_usages_promotion_user"),
        Index("idx_promotion_usages_user", "user_id"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    promotion_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("promotions.id"), nullable=False)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id"), nullable=False)
    transaction_id: Mapped[int | None] = mapped_column(
        BigInteger,
        ForeignKey("points_transactions.id"),
        nullable=True,
    )
    used_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
