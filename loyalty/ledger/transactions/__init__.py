from loyalty.ledger.transactions.service import TransactionFactory
from loyalty.ledger.transactions.types import (
    AdjustmentRecord,
    EventAwardRecord,
    PurchaseRecord,
    RedemptionRecord,
    TransactionPage,
    TransactionRecord,
    TransferRecord,
    TransferResult,
    to_record,
)

__all__ = [
    "AdjustmentRecord",
    "EventAwardRecord",
    "PurchaseRecord",
    "RedemptionRecord",
    "TransactionFactory",
    "TransactionPage",
    "TransactionRecord",
    "TransferRecord",
    "TransferResult",
    "to_record",
]
