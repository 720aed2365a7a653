from __future__ import annotations

from sqlalchemy import CheckConstraint, UniqueConstraint

from loyalty.db.models import (  # noqa: F401
    Event,
    EventGuest,
    EventOrganizer,
    LedgerEntry,
    LoyaltyAccount,
    PointsTransaction,
    Promotion,
    PromotionUsage,
    TransactionPromotion,
    User,
    UserRole,
)
from loyalty.db.models.base import Base


def _constraint_names(table_name: str, kind: type) -> set[str]:
    table = Base.metadata.tables[table_name]
    return {constraint.name for constraint in table.constraints if isinstance(constraint, kind)}


def test_all_ledger_tables_registered() -> None:
    expected_tables = {
        "users",
        "user_roles",
        "loyalty_accounts",
        "points_transactions",
        "transaction_promotions",
        "ledger_entries",
        "promotions",
        "promotion_usages",
        "events",
        "event_guests",
        "event_organizers",
    }
    assert expected_tables.issubset(set(Base.metadata.tables))


def test_balance_and_pool_invariants_are_check_constraints() -> None:
    assert "ck_loyalty_accounts_points_non_negative" in _constraint_names("loyalty_accounts", CheckConstraint)
    assert "ck_events_points_within_pool" in _constraint_names("events", CheckConstraint)
    assert "ck_ledger_entries_balance_non_negative" in _constraint_names("ledger_entries", CheckConstraint)


def test_one_time_promotion_usage_is_unique_per_user() -> None:
    assert "uq_promotion_usages_promotion_user" in _constraint_names("promotion_usages", UniqueConstraint)


def test_ledger_entry_is_unique_per_transaction() -> None:
    column = Base.metadata.tables["ledger_entries"].c.transaction_id
    assert column.unique is True


def test_idempotency_key_is_unique_and_optional() -> None:
    column = Base.metadata.tables["points_transactions"].c.idempotency_key
    assert column.unique is True
    assert column.nullable is True


def test_users_start_unverified_and_transactions_keep_their_request_scope() -> None:
    users = Base.metadata.tables["users"]
    transactions = Base.metadata.tables["points_transactions"]

    assert users.c.is_verified.nullable is False
    assert users.c.is_verified.server_default is not None
    assert transactions.c.idempotency_scope.nullable is True
