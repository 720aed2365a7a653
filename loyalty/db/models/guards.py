from __future__ import annotations

from sqlalchemy import event, inspect
from sqlalchemy.orm import Session

from loyalty.db.models.ledger_entries import LedgerEntry
from loyalty.db.models.points_transactions import PointsTransaction

FINAL_TRANSACTION_STATUSES = frozenset({"posted", "cancelled"})
# Reviewer metadata that may still change on a final transaction.
_MUTABLE_FINAL_ATTRS = frozenset({"suspicious"})


def _changed_attrs(obj: object) -> set[str]:
    state = inspect(obj)
    return {attr.key for attr in state.attrs if attr.history.has_changes()}


def _original_status(obj: PointsTransaction) -> str:
    history = inspect(obj).attrs.status.history
    if history.deleted:
        return history.deleted[0]
    return obj.status


def _links_counterpart(obj: PointsTransaction, changed: set[str]) -> bool:
    # The first row of a transfer pair learns its counterpart id after both rows exist.
    if obj.type != "transfer" or changed != {"related_id"}:
        return False
    history = inspect(obj).attrs.related_id.history
    return all(value is None for value in history.deleted)


@event.listens_for(Session, "before_flush")
def _enforce_append_only(session: Session, flush_context, instances) -> None:  # noqa: ARG001
    for obj in session.deleted:
        if isinstance(obj, (LedgerEntry, PointsTransaction)):
            raise ValueError(f"{obj.__tablename__} is append-only")

    for obj in session.dirty:
        if isinstance(obj, LedgerEntry) and _changed_attrs(obj):
            raise ValueError("ledger_entries is append-only")
        if isinstance(obj, PointsTransaction):
            if _original_status(obj) not in FINAL_TRANSACTION_STATUSES:
                continue
            changed = _changed_attrs(obj) - _MUTABLE_FINAL_ATTRS
            if changed and not _links_counterpart(obj, changed):
                raise ValueError("points_transactions is append-only once final")
