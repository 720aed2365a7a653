"""loyalty_core_ledger

Revision ID: 0001_loyalty_core_ledger
Revises:
Create Date: 2026-10-17 09:00:00.000000
"""
from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

revision: str = "0001_loyalty_core_ledger"
down_revision: str | None = None
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("utorid", sa.String(16), nullable=False),
        sa.Column("name", sa.String(64), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("is_activated", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("is_suspicious", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("is_verified", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("token_version", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_login_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("token_version >= 0", name="ck_users_token_version_non_negative"),
        sa.UniqueConstraint("utorid", name="uq_users_utorid"),
        sa.UniqueConstraint("email", name="uq_users_email"),
    )
    op.create_index("idx_users_created_at", "users", ["created_at"])

    op.create_table(
        "user_roles",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("user_id", sa.BigInteger(), nullable=False),
        sa.Column("role", sa.String(16), nullable=False),
        sa.Column("assigned_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "role IN ('regular','cashier','manager','superuser')",
            name="ck_user_roles_role",
        ),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.UniqueConstraint("user_id", "role", name="uq_user_roles_user_role"),
    )
    op.create_index("idx_user_roles_user", "user_roles", ["user_id"])

    op.create_table(
        "loyalty_accounts",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("user_id", sa.BigInteger(), nullable=False),
        sa.Column("points_cached", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("points_cached >= 0", name="ck_loyalty_accounts_points_non_negative"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.UniqueConstraint("user_id", name="uq_loyalty_accounts_user_id"),
    )

    op.create_table(
        "events",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("capacity", sa.Integer(), nullable=True),
        sa.Column("points_pool", sa.Integer(), nullable=False),
        sa.Column("points_awarded", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("starts_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("ends_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("points_pool >= 0", name="ck_events_points_pool_non_negative"),
        sa.CheckConstraint("points_awarded >= 0", name="ck_events_points_awarded_non_negative"),
        sa.CheckConstraint("points_awarded <= points_pool", name="ck_events_points_within_pool"),
        sa.CheckConstraint("capacity IS NULL OR capacity > 0", name="ck_events_capacity_positive"),
    )
    op.create_index("idx_events_starts_at", "events", ["starts_at"])

    for table_name, time_column in (("event_guests", "joined_at"), ("event_organizers", "added_at")):
        op.create_table(
            table_name,
            sa.Column("id", sa.BigInteger(), primary_key=True),
            sa.Column("event_id", sa.BigInteger(), nullable=False),
            sa.Column("user_id", sa.BigInteger(), nullable=False),
            sa.Column(time_column, sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["event_id"], ["events.id"]),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
            sa.UniqueConstraint("event_id", "user_id", name=f"uq_{table_name}_event_user"),
        )
        op.create_index(f"idx_{table_name}_user", table_name, ["user_id"])

    op.create_table(
        "promotions",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("kind", sa.String(16), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("rate", sa.Numeric(8, 4), nullable=True),
        sa.Column("bonus_points", sa.Integer(), nullable=True),
        sa.Column("min_spending_cents", sa.Integer(), nullable=True),
        sa.Column("starts_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("ends_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("kind IN ('automatic','one_time')", name="ck_promotions_kind"),
        sa.CheckConstraint("status IN ('active','inactive')", name="ck_promotions_status"),
        sa.CheckConstraint(
            "rate IS NOT NULL OR bonus_points IS NOT NULL",
            name="ck_promotions_has_reward",
        ),
        sa.CheckConstraint("rate IS NULL OR rate >= 1", name="ck_promotions_rate_multiplier"),
        sa.CheckConstraint(
            "bonus_points IS NULL OR bonus_points > 0",
            name="ck_promotions_bonus_points_positive",
        ),
        sa.CheckConstraint(
            "min_spending_cents IS NULL OR min_spending_cents >= 0",
            name="ck_promotions_min_spending_non_negative",
        ),
        sa.CheckConstraint("ends_at IS NULL OR ends_at > starts_at", name="ck_promotions_window"),
    )
    op.create_index("idx_promotions_kind_status", "promotions", ["kind", "status"])
    op.create_index("idx_promotions_window", "promotions", ["starts_at", "ends_at"])

    op.create_table(
        "points_transactions",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("type", sa.String(16), nullable=False),
        sa.Column("status", sa.String(24), nullable=False),
        sa.Column("account_id", sa.BigInteger(), nullable=False),
        sa.Column("created_by_user_id", sa.BigInteger(), nullable=False),
        sa.Column("cashier_id", sa.BigInteger(), nullable=True),
        sa.Column("manager_id", sa.BigInteger(), nullable=True),
        sa.Column("event_id", sa.BigInteger(), nullable=True),
        sa.Column("total_cents", sa.Integer(), nullable=True),
        sa.Column("points_calculated", sa.Integer(), nullable=False),
        sa.Column("points_posted", sa.Integer(), nullable=True),
        sa.Column("related_id", sa.BigInteger(), nullable=True),
        sa.Column("suspicious", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("idempotency_key", sa.String(128), nullable=True),
        sa.Column("idempotency_scope", sa.Text(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint(
            "type IN ('purchase','transfer','redemption','adjustment','event')",
            name="ck_points_transactions_type",
        ),
        sa.CheckConstraint(
            "status IN ('posted','pending_verification','cancelled')",
            name="ck_points_transactions_status",
        ),
        sa.CheckConstraint(
            "status <> 'posted' OR points_posted IS NOT NULL",
            name="ck_points_transactions_posted_amount",
        ),
        sa.CheckConstraint(
            "total_cents IS NULL OR total_cents > 0",
            name="ck_points_transactions_total_cents_positive",
        ),
        sa.ForeignKeyConstraint(["account_id"], ["loyalty_accounts.id"]),
        sa.ForeignKeyConstraint(["created_by_user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["cashier_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["manager_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["event_id"], ["events.id"]),
        sa.UniqueConstraint("idempotency_key", name="uq_points_transactions_idempotency_key"),
    )
    op.create_index(
        "idx_points_transactions_account_created",
        "points_transactions",
        ["account_id", "created_at"],
    )
    op.create_index("idx_points_transactions_type_status", "points_transactions", ["type", "status"])
    op.create_index("idx_points_transactions_related", "points_transactions", ["related_id"])
    op.create_index("idx_points_transactions_event", "points_transactions", ["event_id"])

    op.create_table(
        "transaction_promotions",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("transaction_id", sa.BigInteger(), nullable=False),
        sa.Column("promotion_id", sa.BigInteger(), nullable=False),
        sa.ForeignKeyConstraint(["transaction_id"], ["points_transactions.id"]),
        sa.ForeignKeyConstraint(["promotion_id"], ["promotions.id"]),
        sa.UniqueConstraint(
            "transaction_id",
            "promotion_id",
            name="uq_transaction_promotions_transaction_promotion",
        ),
    )
    op.create_index("idx_transaction_promotions_promotion", "transaction_promotions", ["promotion_id"])

    op.create_table(
        "promotion_usages",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("promotion_id", sa.BigInteger(), nullable=False),
        sa.Column("user_id", sa.BigInteger(), nullable=False),
        sa.Column("transaction_id", sa.BigInteger(), nullable=True),
        sa.Column("used_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["promotion_id"], ["promotions.id"]),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["transaction_id"], ["points_transactions.id"]),
        sa.UniqueConstraint("promotion_id", "user_id", name="uq_promotion_usages_promotion_user"),
    )
    op.create_index("idx_promotion_usages_user", "promotion_usages", ["user_id"])

    op.create_table(
        "ledger_entries",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("account_id", sa.BigInteger(), nullable=False),
        sa.Column("transaction_id", sa.BigInteger(), nullable=False),
        sa.Column("points_delta", sa.Integer(), nullable=False),
        sa.Column("balance_after", sa.Integer(), nullable=False),
        sa.Column("kind", sa.String(24), nullable=False),
        sa.Column("posted_by_user_id", sa.BigInteger(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("points_delta <> 0", name="ck_ledger_entries_delta_non_zero"),
        sa.CheckConstraint("balance_after >= 0", name="ck_ledger_entries_balance_non_negative"),
        sa.CheckConstraint(
            "kind IN ('earn_purchase','transfer_out','transfer_in','adjustment_credit',"
            "'adjustment_debit','earn_event','redeem')",
            name="ck_ledger_entries_kind",
        ),
        sa.ForeignKeyConstraint(["account_id"], ["loyalty_accounts.id"]),
        sa.ForeignKeyConstraint(["transaction_id"], ["points_transactions.id"]),
        sa.ForeignKeyConstraint(["posted_by_user_id"], ["users.id"]),
        sa.UniqueConstraint("transaction_id", name="uq_ledger_entries_transaction_id"),
    )
    op.create_index(
        "idx_ledger_entries_account_created",
        "ledger_entries",
        ["account_id", "created_at"],
    )


def downgrade() -> None:
    op.drop_index("idx_ledger_entries_account_created", table_name="ledger_entries")
    op.drop_table("ledger_entries")
    op.drop_index("idx_promotion_usages_user", table_name="promotion_usages")
    op.drop_table("promotion_usages")
    op.drop_index("idx_transaction_promotions_promotion", table_name="transaction_promotions")
    op.drop_table("transaction_promotions")
    for index_name in (
        "idx_points_transactions_event",
        "idx_points_transactions_related",
        "idx_points_transactions_type_status",
        "idx_points_transactions_account_created",
    ):
        op.drop_index(index_name, table_name="points_transactions")
    op.drop_table("points_transactions")
    op.drop_index("idx_promotions_window", table_name="promotions")
    op.drop_index("idx_promotions_kind_status", table_name="promotions")
    op.drop_table("promotions")
    for table_name in ("event_organizers", "event_guests"):
        op.drop_index(f"idx_{table_name}_user", table_name=table_name)
        op.drop_table(table_name)
    op.drop_index("idx_events_starts_at", table_name="events")
    op.drop_table("events")
    op.drop_table("loyalty_accounts")
    op.drop_index("idx_user_roles_user", table_name="user_roles")
    op.drop_table("user_roles")
    op.drop_index("idx_users_created_at", table_name="users")
    op.drop_table("users")
