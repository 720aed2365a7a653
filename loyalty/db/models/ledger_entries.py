from __future__ import annotations

from datetime import datetime

from sqlalchemy import BigInteger, CheckConstraint, DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from loyalty.db.models.base import Base, BigIntPK


class LedgerEntry(Base):
    __tablename__ = "ledger_entries"
    __table_args__ = (
        CheckConstraint("points_delta <> 0", name="ck_ledger_entries_delta_non_zero"),
        CheckConstraint("balance_after >= 0", name="ck_ledger_entries_balance_non_negative"),
        CheckConstraint(
            "kind IN ('earn_purchase','transfer_out','transfer_in','adjustment_credit',"
            "'adjustment_debit','earn_event','redeem')",
            name="ck_ledger_entries_kind",
        ),
        Index("idx_ledger_entries_account_created", "account_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    account_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("loyalty_accounts.id"),
        nullable=False,
    )
    transaction_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("points_transactions.id"),
        unique=True,
        nullable=False,
    )
    points_delta: Mapped[int] = mapped_column(Integer, nullable=False)
    balance_after: Mapped[int] = mapped_column(Integer, nullable=False)
    kind: Mapped[str] = mapped_column(String(24), nullable=False)
    posted_by_user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
