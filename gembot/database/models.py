"""
gembot.database.models — SQLAlchemy 2.0 Data Models
====================================================

Tables:
- gems_balances      — Current balance + lifetime totals per account
- gems_transactions  — Append-only log of every balance-affecting event
- gems_settings      — Admin-configurable GEMS tuning values
- admin_log          — Append-only audit trail of admin mutations
"""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all GemBot ORM models."""


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class TransactionType(enum.StrEnum):
    """Kinds of balance-affecting events."""
    EARNED = "earned"
    SPENT = "spent"
    TRANSFERRED = "transferred"
    BONUS = "bonus"
    ADMIN_ADD = "admin_add"
    ADMIN_REMOVE = "admin_remove"


class TransactionSource(enum.StrEnum):
    """Where a transaction originated."""
    MESSAGE = "message"
    SPOTLIGHT = "spotlight"
    VERIFICATION = "verification"
    SOCIAL = "social"
    TIP = "tip"
    ADMIN = "admin"
    BONUS = "bonus"
    SYSTEM = "system"


class SettingCategory(enum.StrEnum):
    EARNING = "earning"
    SPENDING = "spending"
    LIMITS = "limits"
    FEATURES = "features"


class AdminActionType(enum.StrEnum):
    """Categories of admin mutations recorded in admin_log."""
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    MANUAL_ADD = "MANUAL_ADD"
    MANUAL_REMOVE = "MANUAL_REMOVE"


# ---------------------------------------------------------------------------
# GemsBalance — one row per account
# ---------------------------------------------------------------------------
class GemsBalance(Base):
    """Current spendable GEMS plus lifetime totals.

    Mutated only through :class:`~gembot.services.balance_store.BalanceStore`
    with single-statement guarded UPDATEs.  The CHECK constraints make the
    database itself refuse a negative or inconsistent balance.
    """
    __tablename__ = "gems_balances"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)  # Discord snowflake
    balance: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    lifetime_earned: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    lifetime_spent: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    last_activity: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_gems_balances_non_negative"),
        CheckConstraint("lifetime_earned >= 0", name="ck_gems_balances_earned"),
        CheckConstraint("lifetime_spent >= 0", name="ck_gems_balances_spent"),
        CheckConstraint(
            "balance = lifetime_earned - lifetime_spent",
            name="ck_gems_balances_consistent",
        ),
        Index("ix_gems_balances_balance", "balance"),
        Index("ix_gems_balances_earned", "lifetime_earned"),
        Index("ix_gems_balances_spent", "lifetime_spent"),
    )

    def __repr__(self) -> str:
        return f"<GemsBalance id={self.id} balance={self.balance}>"


# ---------------------------------------------------------------------------
# GemsTransaction — append-only ledger
# ---------------------------------------------------------------------------
class GemsTransaction(Base):
    """Immutable record of one balance-affecting event.

    ``transfer_id`` ties the legs of a transfer together and is the
    idempotency key for re-driving it: at most one row per
    (transfer_id, account_id, type).
    """
    __tablename__ = "gems_transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    account_id: Mapped[str] = mapped_column(String(32), nullable=False)
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    reason: Mapped[str] = mapped_column(String(500), nullable=False)
    source: Mapped[str] = mapped_column(String(20), nullable=False)
    related_account_id: Mapped[str | None] = mapped_column(String(32), nullable=True)
    transfer_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    metadata_: Mapped[dict | None] = mapped_column("metadata", JSONB, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (
        # Zero only for the "Account created" marker; callers are held to > 0.
        CheckConstraint("amount >= 0", name="ck_gems_transactions_amount"),
        Index("ix_gems_tx_account_time", "account_id", "timestamp"),
        Index("ix_gems_tx_account_type_time", "account_id", "type", "timestamp"),
        Index("ix_gems_tx_type_source_time", "type", "source", "timestamp"),
        Index("ix_gems_tx_timestamp", "timestamp"),
        Index(
            "ix_gems_tx_transfer_leg",
            "transfer_id",
            "account_id",
            "type",
            unique=True,
            postgresql_where=transfer_id.isnot(None),
            sqlite_where=transfer_id.isnot(None),
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<GemsTransaction id={self.id} account={self.account_id} "
            f"type={self.type} amount={self.amount}>"
        )


# ---------------------------------------------------------------------------
# GemsSetting — admin-configurable key-value store
# ---------------------------------------------------------------------------
class GemsSetting(Base):
    """Key-value configuration store for earning rates, limits and features.

    Values are stored as JSON strings; the expected type for each key is
    enforced by :class:`~gembot.services.settings_service.SettingsStore`.
    """
    __tablename__ = "gems_settings"

    key: Mapped[str] = mapped_column(String(100), primary_key=True)
    value_json: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(String(20), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, default=None)
    updated_by: Mapped[str] = mapped_column(String(64), nullable=False, default="system")
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("ix_gems_settings_category", "category"),
    )

    def __repr__(self) -> str:
        return f"<GemsSetting key={self.key!r} category={self.category!r}>"


# ---------------------------------------------------------------------------
# AdminLog — append-only audit trail
# ---------------------------------------------------------------------------
class AdminLog(Base):
    __tablename__ = "admin_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    actor_id: Mapped[str] = mapped_column(String(64), nullable=False)
    action_type: Mapped[str] = mapped_column(String(50), nullable=False)
    target_table: Mapped[str] = mapped_column(String(50), nullable=False)
    target_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    before_snapshot: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    after_snapshot: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_admin_log_actor_time", "actor_id", "timestamp"),
        Index("ix_admin_log_target", "target_table", "target_id", "timestamp"),
    )

    def __repr__(self) -> str:
        return f"<AdminLog id={self.id} actor={self.actor_id} action={self.action_type}>"
