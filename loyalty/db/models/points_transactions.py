from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from loyalty.db.models.base import Base, BigIntPK


class PointsTransaction(Base):
    __tablename__ = "points_transactions"
    __table_args__ = (
        CheckConstraint(
            "type IN ('purchase','transfer','redemption','adjustment','event')",
            name="ck_points_transactions_type",
        ),
        CheckConstraint(
            "status IN ('posted','pending_verification','cancelled')",
            name="ck_points_transactions_status",
        ),
        CheckConstraint(
            "status <> 'posted' OR points_posted IS NOT NULL",
            name="ck_points_transactions_posted_amount",
        ),
        CheckConstraint(
            "total_cents IS NULL OR total_cents > 0",
            name="ck_points_transactions_total_cents_positive",
        ),
        Index("idx_points_transactions_account_created", "account_id", "created_at"),
        Index("idx_points_transactions_type_status", "type", "status"),
        Index("idx_points_transactions_related", "related_id"),
        Index("idx_points_transactions_event", "event_id"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    type: Mapped[str] = mapped_column(String(16), nullable=False)
    status: Mapped[str] = mapped_column(String(24), nullable=False)
    account_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("loyalty_accounts.id"),
        nullable=False,
    )
    created_by_user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id"), nullable=False)
    cashier_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey("users.id"), nullable=True)
    manager_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey("users.id"), nullable=True)
    event_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey("events.id"), nullable=True)
    total_cents: Mapped[int | None] = mapped_column(Integer, nullable=True)
    points_calculated: Mapped[int] = mapped_column(Integer, nullable=False)
    points_posted: Mapped[int | None] = mapped_column(Integer, nullable=True)
    related_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    suspicious: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=text("false"))
    idempotency_key: Mapped[str | None] = mapped_column(String(128), unique=True, nullable=True)
    idempotency_scope: Mapped[str | None] = mapped_column(Text, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class TransactionPromotion(Base):
    __tablename__ = "transaction_promotions"
    __table_args__ = (
        UniqueConstraint(
            "transaction_id",
            "promotion_id",
            name="uq_transaction_promotions_transaction_promotion",
        ),
        Index("idx_transaction_promotions_promotion", "promotion_id"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    transaction_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("points_transactions.id"),
        nullable=False,
    )
    promotion_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("promotions.id"), nullable=False)
