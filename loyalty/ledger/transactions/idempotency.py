from __future__ import annotations

import re

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from loyalty.db.models.points_transactions import PointsTransaction
from loyalty.db.repo.transactions_repo import TransactionsRepo
from loyalty.ledger.errors import ConflictError, ValidationError

IDEMPOTENCY_KEY_RE = re.compile(r"^[A-Za-z0-9_.:-]{1,100}$")
BATCH_ITEM_SEPARATOR = "#"


def request_scope(kind: str, **params: object) -> str:
    """Fingerprint of what a request asks for, stored beside its idempotency key."""
    parts = [kind, *(f"{name}={value}" for name, value in params.items())]
    return ":".join(parts)


def validate_idempotency_key(idempotency_key: str | None) -> str | None:
    if idempotency_key is None:
        return None
    if not IDEMPOTENCY_KEY_RE.match(idempotency_key):
        raise ValidationError(
            "idempotency key must be 1-100 characters of letters, digits, '_', '.', ':' or '-'"
        )
    return idempotency_key


def _check_matches(
    row: PointsTransaction,
    *,
    created_by_user_id: int,
    transaction_type: str,
    scope: str,
) -> None:
    if (
        row.created_by_user_id != created_by_user_id
        or row.type != transaction_type
        or row.idempotency_scope != scope
    ):
        raise ConflictError("idempotency key was already used for a different request")


async def find_replay(
    session: AsyncSession,
    *,
    idempotency_key: str | None,
    created_by_user_id: int,
    transaction_type: str,
    scope: str,
) -> PointsTransaction | None:
    if validate_idempotency_key(idempotency_key) is None:
        return None
    row = await TransactionsRepo.get_by_idempotency_key(session, idempotency_key)
    if row is None:
        return None
    _check_matches(
        row,
        created_by_user_id=created_by_user_id,
        transaction_type=transaction_type,
        scope=scope,
    )
    return row


async def find_batch_replay(
    session: AsyncSession,
    *,
    idempotency_key: str | None,
    created_by_user_id: int,
    transaction_type: str,
    scope: str,
) -> list[PointsTransaction]:
    if validate_idempotency_key(idempotency_key) is None:
        return []
    single = await TransactionsRepo.get_by_idempotency_key(session, idempotency_key)
    if single is not None:
        raise ConflictError("idempotency key was already used for a different request")
    rows = await TransactionsRepo.list_by_idempotency_prefix(
        session, batch_key_prefix(idempotency_key)
    )
    for row in rows:
        _check_matches(
            row,
            created_by_user_id=created_by_user_id,
            transaction_type=transaction_type,
            scope=scope,
        )
    return rows


def batch_key_prefix(idempotency_key: str) -> str:
    return f"{idempotency_key}{BATCH_ITEM_SEPARATOR}"


def batch_item_key(idempotency_key: str | None, item_id: int) -> str | None:
    if idempotency_key is None:
        return None
    return f"{batch_key_prefix(idempotency_key)}{item_id}"


async def insert_transaction(
    session: AsyncSession,
    *,
    transaction: PointsTransaction,
    scope: str | None = None,
) -> PointsTransaction:
    if transaction.idempotency_key is not None:
        transaction.idempotency_scope = scope
    try:
        return await TransactionsRepo.create(session, transaction=transaction)
    except IntegrityError as exc:
        if transaction.idempotency_key is None:
            raise
        raise ConflictError("a request with this idempotency key is already in progress") from exc
