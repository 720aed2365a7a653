from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Literal

from loyalty.core.clock import ensure_utc
from loyalty.db.models.points_transactions import PointsTransaction

TRANSACTION_TYPE_PURCHASE = "purchase"
TRANSACTION_TYPE_TRANSFER = "transfer"
TRANSACTION_TYPE_ADJUSTMENT = "adjustment"
TRANSACTION_TYPE_EVENT = "event"
TRANSACTION_TYPE_REDEMPTION = "redemption"

STATUS_POSTED = "posted"
STATUS_PENDING_VERIFICATION = "pending_verification"
STATUS_CANCELLED = "cancelled"


@dataclass(frozen=True, slots=True)
class PurchaseRecord:
    transaction_id: int
    account_id: int
    created_by_user_id: int
    cashier_id: int
    total_cents: int
    points_posted: int
    promotion_ids: tuple[int, ...]
    suspicious: bool
    remark: str | None
    created_at: datetime
    type: Literal["purchase"] = "purchase"


@dataclass(frozen=True, slots=True)
class TransferRecord:
    transaction_id: int
    account_id: int
    created_by_user_id: int
    counterpart_transaction_id: int | None
    points_posted: int
    remark: str | None
    created_at: datetime
    type: Literal["transfer"] = "transfer"

    @property
    def direction(self) -> Literal["sent", "received"]:
        return "sent" if self.points_posted < 0 else "received"


@dataclass(frozen=True, slots=True)
class TransferResult:
    sent: TransferRecord
    received: TransferRecord


@dataclass(frozen=True, slots=True)
class AdjustmentRecord:
    transaction_id: int
    account_id: int
    created_by_user_id: int
    manager_id: int
    related_transaction_id: int | None
    points_posted: int
    remark: str | None
    created_at: datetime
    type: Literal["adjustment"] = "adjustment"


@dataclass(frozen=True, slots=True)
class EventAwardRecord:
    transaction_id: int
    account_id: int
    created_by_user_id: int
    event_id: int
    points_posted: int
    remark: str | None
    created_at: datetime
    type: Literal["event"] = "event"


@dataclass(frozen=True, slots=True)
class RedemptionRecord:
    transaction_id: int
    account_id: int
    created_by_user_id: int
    status: str
    amount: int
    points_posted: int | None
    processed_by_user_id: int | None
    processed_at: datetime | None
    remark: str | None
    created_at: datetime
    type: Literal["redemption"] = "redemption"


TransactionRecord = PurchaseRecord | TransferRecord | AdjustmentRecord | EventAwardRecord | RedemptionRecord


@dataclass(frozen=True, slots=True)
class TransactionPage:
    count: int
    results: list[TransactionRecord]


def to_record(row: PointsTransaction, promotion_ids: Sequence[int] = ()) -> TransactionRecord:
    """Project a stored row onto the variant for its type."""
    if row.type == TRANSACTION_TYPE_PURCHASE:
        return PurchaseRecord(
            transaction_id=row.id,
            account_id=row.account_id,
            created_by_user_id=row.created_by_user_id,
            cashier_id=row.cashier_id if row.cashier_id is not None else row.created_by_user_id,
            total_cents=row.total_cents or 0,
            points_posted=row.points_posted or 0,
            promotion_ids=tuple(sorted(promotion_ids)),
            suspicious=bool(row.suspicious),
            remark=row.notes,
            created_at=ensure_utc(row.created_at),
        )
    if row.type == TRANSACTION_TYPE_TRANSFER:
        return TransferRecord(
            transaction_id=row.id,
            account_id=row.account_id,
            created_by_user_id=row.created_by_user_id,
            counterpart_transaction_id=row.related_id,
            points_posted=row.points_posted or 0,
            remark=row.notes,
            created_at=ensure_utc(row.created_at),
        )
    if row.type == TRANSACTION_TYPE_ADJUSTMENT:
        return AdjustmentRecord(
            transaction_id=row.id,
            account_id=row.account_id,
            created_by_user_id=row.created_by_user_id,
            manager_id=row.manager_id if row.manager_id is not None else row.created_by_user_id,
            related_transaction_id=row.related_id,
            points_posted=row.points_posted or 0,
            remark=row.notes,
            created_at=ensure_utc(row.created_at),
        )
    if row.type == TRANSACTION_TYPE_EVENT:
        return EventAwardRecord(
            transaction_id=row.id,
            account_id=row.account_id,
            created_by_user_id=row.created_by_user_id,
            event_id=int(row.event_id or 0),
            points_posted=row.points_posted or 0,
            remark=row.notes,
            created_at=ensure_utc(row.created_at),
        )
    if row.type == TRANSACTION_TYPE_REDEMPTION:
        return RedemptionRecord(
            transaction_id=row.id,
            account_id=row.account_id,
            created_by_user_id=row.created_by_user_id,
            status=row.status,
            amount=-row.points_calculated,
            points_posted=row.points_posted,
            processed_by_user_id=row.cashier_id,
            processed_at=None if row.processed_at is None else ensure_utc(row.processed_at),
            remark=row.notes,
            created_at=ensure_utc(row.created_at),
        )
    raise ValueError(f"unknown transaction type: {row.type!r}")
