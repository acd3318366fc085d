"""
tests/test_balance_store.py — BalanceStore Tests
=================================================

Lazy account creation, guarded credit/debit and the database CHECK
constraints that back the balance invariant.
"""

from __future__ import annotations

from datetime import UTC, datetime

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from gembot.database.models import GemsBalance, GemsTransaction
from gembot.errors import InsufficientFunds, InvalidInput
from gembot.services.balance_store import ACCOUNT_CREATED_REASON, BalanceStore
from gembot.services.transaction_ledger import TransactionLedger

NOW = datetime(2026, 3, 14, 12, 0, tzinfo=UTC)


@pytest.fixture
def store(db_engine) -> BalanceStore:
    return BalanceStore(TransactionLedger(db_engine))


class TestGetOrCreate:
    def test_creates_zero_account_with_marker(self, db_engine, store):
        with Session(db_engine) as s:
            view = store.get_or_create(s, "100", NOW)
            s.commit()
        assert (view.balance, view.lifetime_earned, view.lifetime_spent) == (0, 0, 0)
        assert view.created_at == NOW

        with Session(db_engine) as s:
            rows = s.scalars(select(GemsTransaction)).all()
        assert len(rows) == 1
        assert rows[0].amount == 0
        assert rows[0].reason == ACCOUNT_CREATED_REASON
        assert rows[0].source == "system"

    def test_second_call_returns_existing(self, db_engine, store):
        with Session(db_engine) as s:
            store.get_or_create(s, "100", NOW)
            store.credit(s, "100", 10, NOW)
            again = store.get_or_create(s, "100", NOW)
            s.commit()
        assert again.balance == 10
        with Session(db_engine) as s:
            assert len(s.scalars(select(GemsTransaction)).all()) == 1

    def test_get_missing_is_none(self, db_engine, store):
        with Session(db_engine) as s:
            assert store.get(s, "nobody") is None


class TestCreditDebit:
    def test_credit_updates_lifetime(self, db_engine, store):
        with Session(db_engine) as s:
            store.get_or_create(s, "100", NOW)
            view = store.credit(s, "100", 25, NOW)
        assert (view.balance, view.lifetime_earned) == (25, 25)

    def test_credit_missing_account(self, db_engine, store):
        with Session(db_engine) as s, pytest.raises(InvalidInput):
            store.credit(s, "ghost", 5, NOW)

    def test_debit_guard(self, db_engine, store):
        with Session(db_engine) as s:
            store.get_or_create(s, "100", NOW)
            store.credit(s, "100", 50, NOW)
            with pytest.raises(InsufficientFunds) as exc:
                store.debit(s, "100", 100, NOW)
            assert exc.value.details["available"] == 50
            assert store.get(s, "100").balance == 50

    def test_debit_exact_balance(self, db_engine, store):
        with Session(db_engine) as s:
            store.get_or_create(s, "100", NOW)
            store.credit(s, "100", 50, NOW)
            view = store.debit(s, "100", 50, NOW)
        assert (view.balance, view.lifetime_earned, view.lifetime_spent) == (0, 50, 50)

    def test_debit_missing_account_reports_zero(self, db_engine, store):
        with Session(db_engine) as s, pytest.raises(InsufficientFunds) as exc:
            store.debit(s, "ghost", 1, NOW)
        assert exc.value.details["available"] == 0

    @pytest.mark.parametrize("amount", [0, -1, 1.5, True])
    def test_rejects_bad_amounts(self, db_engine, store, amount):
        with Session(db_engine) as s:
            store.get_or_create(s, "100", NOW)
            with pytest.raises(InvalidInput):
                store.credit(s, "100", amount, NOW)

    def test_delete_returns_snapshot(self, db_engine, store):
        with Session(db_engine) as s:
            store.get_or_create(s, "100", NOW)
            store.credit(s, "100", 7, NOW)
            removed = store.delete(s, "100")
            assert removed.balance == 7
            assert store.get(s, "100") is None
            assert store.delete(s, "100") is None


class TestConstraints:
    def test_database_refuses_inconsistent_row(self, db_engine):
        with Session(db_engine) as s:
            s.add(GemsBalance(id="bad", balance=10, lifetime_earned=0, lifetime_spent=0))
            with pytest.raises(IntegrityError):
                s.flush()

    def test_database_refuses_negative_balance(self, db_engine):
        with Session(db_engine) as s:
            s.add(GemsBalance(id="neg", balance=-5, lifetime_earned=0, lifetime_spent=5))
            with pytest.raises(IntegrityError):
                s.flush()
