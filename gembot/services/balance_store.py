"""
gembot.services.balance_store — Atomic Balance Mutations
=========================================================

One ``gems_balances`` row per account.  Every change is a single guarded
SQL statement, so concurrent credits and debits serialise inside the
database rather than in Python:

    UPDATE gems_balances
       SET balance = balance - :amount, lifetime_spent = lifetime_spent + :amount
     WHERE id = :id AND balance >= :amount
    RETURNING ...

No row back means the guard failed; the debit is rejected, never retried.
All methods take the caller's :class:`Session` so the mutation commits with
the ledger row that records it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from gembot.database.models import GemsBalance, TransactionSource, TransactionType
from gembot.errors import InsufficientFunds, InvalidInput
from gembot.services.transaction_ledger import TransactionLedger, as_utc

logger = logging.getLogger(__name__)

ACCOUNT_CREATED_REASON = "Account created"


@dataclass(frozen=True, slots=True)
class BalanceView:
    """Snapshot of one account's balance row."""

    account_id: str
    balance: int
    lifetime_earned: int
    lifetime_spent: int
    last_activity: datetime | None = None
    created_at: datetime | None = None

    @classmethod
    def from_row(cls, row: GemsBalance) -> BalanceView:
        return cls(
            account_id=row.id,
            balance=row.balance,
            lifetime_earned=row.lifetime_earned,
            lifetime_spent=row.lifetime_spent,
            last_activity=as_utc(row.last_activity),
            created_at=as_utc(row.created_at),
        )

    def to_dict(self) -> dict:
        return {
            "account_id": self.account_id,
            "balance": self.balance,
            "lifetime_earned": self.lifetime_earned,
            "lifetime_spent": self.lifetime_spent,
            "last_activity": self.last_activity.isoformat() if self.last_activity else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


_RETURNING = (
    GemsBalance.id,
    GemsBalance.balance,
    GemsBalance.lifetime_earned,
    GemsBalance.lifetime_spent,
    GemsBalance.last_activity,
    GemsBalance.created_at,
)


def _view(row) -> BalanceView:
    return BalanceView(
        account_id=row[0],
        balance=row[1],
        lifetime_earned=row[2],
        lifetime_spent=row[3],
        last_activity=as_utc(row[4]),
        created_at=as_utc(row[5]),
    )


def _check_amount(amount: int) -> None:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise InvalidInput("Amount must be a positive whole number", {"amount": amount})


class BalanceStore:
    """Lazily-created balance rows with guarded single-statement updates."""

    def __init__(self, ledger: TransactionLedger) -> None:
        self._ledger = ledger

    def get(self, session: Session, account_id: str) -> BalanceView | None:
        row = session.get(GemsBalance, account_id, populate_existing=True)
        return BalanceView.from_row(row) if row is not None else None

    def lock(self, session: Session, account_id: str) -> BalanceView | None:
        """Take the row lock (``SELECT … FOR UPDATE``) for the rest of the
        transaction.

        Daily-cap checks read the log and then write; holding the account's
        row for the whole unit of work serialises them per account.
        SQLite ignores ``FOR UPDATE``; its ``BEGIN IMMEDIATE`` already holds
        the database write lock.
        """
        row = session.scalars(
            select(GemsBalance)
            .where(GemsBalance.id == account_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).first()
        return BalanceView.from_row(row) if row is not None else None

    def get_or_create(
        self, session: Session, account_id: str, now: datetime | None = None,
    ) -> BalanceView:
        """Return the account's row, inserting a zero balance if absent.

        The INSERT runs inside a SAVEPOINT: if a concurrent creator wins the
        race the primary key collision is rolled back locally and the
        winner's row is re-read.  Only the creator writes the zero-amount
        "Account created" ledger entry.
        """
        row = session.get(GemsBalance, account_id, populate_existing=True)
        if row is not None:
            return BalanceView.from_row(row)

        now = now or datetime.now(UTC)
        try:
            with session.begin_nested():
                session.add(GemsBalance(
                    id=account_id,
                    balance=0,
                    lifetime_earned=0,
                    lifetime_spent=0,
                    last_activity=now,
                    created_at=now,
                    updated_at=now,
                ))
                session.flush()
                self._ledger.append(
                    session,
                    account_id=account_id,
                    type=TransactionType.EARNED,
                    amount=0,
                    reason=ACCOUNT_CREATED_REASON,
                    source=TransactionSource.SYSTEM,
                    timestamp=now,
                    allow_zero=True,
                )
        except IntegrityError:
            logger.debug("Account %s created concurrently; re-reading", account_id)
            row = session.get(GemsBalance, account_id, populate_existing=True)
            if row is None:
                raise
            return BalanceView.from_row(row)

        logger.info("Created GEMS account %s", account_id)
        row = session.get(GemsBalance, account_id, populate_existing=True)
        return BalanceView.from_row(row)

    def credit(
        self, session: Session, account_id: str, amount: int, now: datetime | None = None,
    ) -> BalanceView:
        """Add *amount* to balance and lifetime_earned in one statement.

        The account must exist (call :meth:`get_or_create` first).
        """
        _check_amount(amount)
        now = now or datetime.now(UTC)
        row = session.execute(
            update(GemsBalance)
            .where(GemsBalance.id == account_id)
            .values(
                balance=GemsBalance.balance + amount,
                lifetime_earned=GemsBalance.lifetime_earned + amount,
                last_activity=now,
                updated_at=now,
            )
            .returning(*_RETURNING)
            .execution_options(synchronize_session=False)
        ).first()
        if row is None:
            raise InvalidInput(f"Account {account_id} does not exist", {"account_id": account_id})
        return _view(row)

    def debit(
        self, session: Session, account_id: str, amount: int, now: datetime | None = None,
    ) -> BalanceView:
        """Subtract *amount* only if the balance covers it.

        Raises :class:`InsufficientFunds` (carrying the current balance)
        when the guard fails or the account does not exist.
        """
        _check_amount(amount)
        now = now or datetime.now(UTC)
        row = session.execute(
            update(GemsBalance)
            .where(GemsBalance.id == account_id, GemsBalance.balance >= amount)
            .values(
                balance=GemsBalance.balance - amount,
                lifetime_spent=GemsBalance.lifetime_spent + amount,
                last_activity=now,
                updated_at=now,
            )
            .returning(*_RETURNING)
            .execution_options(synchronize_session=False)
        ).first()
        if row is not None:
            return _view(row)

        available = session.scalar(
            select(GemsBalance.balance).where(GemsBalance.id == account_id)
        )
        raise InsufficientFunds(account_id, amount, available or 0)

    def delete(self, session: Session, account_id: str) -> BalanceView | None:
        """Remove the account's balance row; returns what was deleted."""
        row = session.get(GemsBalance, account_id, populate_existing=True)
        if row is None:
            return None
        snapshot = BalanceView.from_row(row)
        session.execute(
            delete(GemsBalance)
            .where(GemsBalance.id == account_id)
            .execution_options(synchronize_session=False)
        )
        session.expunge(row)
        return snapshot
