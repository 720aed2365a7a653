from __future__ import annotations

from dataclasses import dataclass


@dataclass(slots=True)
class LedgerApplyResult:
    account_id: int
    transaction_id: int
    points_delta: int
    balance_after: int
    idempotent_replay: bool


@dataclass(slots=True)
class ReconciliationResult:
    account_id: int
    points_cached: int
    posted_total: int
    ledger_total: int

    @property
    def is_consistent(self) -> bool:
        return self.points_cached == self.posted_total == self.ledger_total
