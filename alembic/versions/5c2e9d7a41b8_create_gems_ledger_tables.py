"""Create GEMS ledger tables

Revision ID: 5c2e9d7a41b8
Revises:
Create Date: 2026-10-17 10:12:31.508114

"""
from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = '5c2e9d7a41b8'
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Create gems_balances, gems_transactions, gems_settings and admin_log."""

    # --- gems_balances ---
    op.create_table(
        "gems_balances",
        sa.Column("id", sa.String(32), primary_key=True),
        sa.Column("balance", sa.BigInteger, nullable=False, server_default="0"),
        sa.Column("lifetime_earned", sa.BigInteger, nullable=False, server_default="0"),
        sa.Column("lifetime_spent", sa.BigInteger, nullable=False, server_default="0"),
        sa.Column("last_activity", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint("balance >= 0", name="ck_gems_balances_non_negative"),
        sa.CheckConstraint("lifetime_earned >= 0", name="ck_gems_balances_earned"),
        sa.CheckConstraint("lifetime_spent >= 0", name="ck_gems_balances_spent"),
        sa.CheckConstraint(
            "balance = lifetime_earned - lifetime_spent",
            name="ck_gems_balances_consistent",
        ),
    )
    op.create_index("ix_gems_balances_balance", "gems_balances", ["balance"])
    op.create_index("ix_gems_balances_earned", "gems_balances", ["lifetime_earned"])
    op.create_index("ix_gems_balances_spent", "gems_balances", ["lifetime_spent"])

    # --- gems_transactions ---
    op.create_table(
        "gems_transactions",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("account_id", sa.String(32), nullable=False),
        sa.Column("type", sa.String(20), nullable=False),
        sa.Column("amount", sa.BigInteger, nullable=False),
        sa.Column("reason", sa.String(500), nullable=False),
        sa.Column("source", sa.String(20), nullable=False),
        sa.Column("related_account_id", sa.String(32), nullable=True),
        sa.Column("transfer_id", sa.String(64), nullable=True),
        sa.Column("metadata", postgresql.JSONB, nullable=True),
        sa.Column(
            "timestamp",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.CheckConstraint("amount >= 0", name="ck_gems_transactions_amount"),
    )
    op.create_index("ix_gems_tx_account_time", "gems_transactions", ["account_id", "timestamp"])
    op.create_index(
        "ix_gems_tx_account_type_time", "gems_transactions", ["account_id", "type", "timestamp"],
    )
    op.create_index(
        "ix_gems_tx_type_source_time", "gems_transactions", ["type", "source", "timestamp"],
    )
    op.create_index("ix_gems_tx_timestamp", "gems_transactions", ["timestamp"])
    op.create_index(
        "ix_gems_tx_transfer_leg",
        "gems_transactions",
        ["transfer_id", "account_id", "type"],
        unique=True,
        postgresql_where=sa.text("transfer_id IS NOT NULL"),
    )

    # --- gems_settings ---
    op.create_table(
        "gems_settings",
        sa.Column("key", sa.String(100), primary_key=True),
        sa.Column("value_json", sa.Text, nullable=False),
        sa.Column("category", sa.String(20), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("updated_by", sa.String(64), nullable=False, server_default="system"),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_gems_settings_category", "gems_settings", ["category"])

    # --- admin_log ---
    op.create_table(
        "admin_log",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("actor_id", sa.String(64), nullable=False),
        sa.Column("action_type", sa.String(50), nullable=False),
        sa.Column("target_table", sa.String(50), nullable=False),
        sa.Column("target_id", sa.String(100), nullable=True),
        sa.Column("before_snapshot", postgresql.JSONB, nullable=True),
        sa.Column("after_snapshot", postgresql.JSONB, nullable=True),
        sa.Column("reason", sa.Text, nullable=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_admin_log_actor_time", "admin_log", ["actor_id", "timestamp"])
    op.create_index("ix_admin_log_target", "admin_log", ["target_table", "target_id", "timestamp"])


def downgrade() -> None:
    """Drop the ledger tables."""
    op.drop_table("admin_log")
    op.drop_table("gems_settings")
    op.drop_table("gems_transactions")
    op.drop_table("gems_balances")
