"""
tests/test_database_engine.py — Commit Gate & Bounded Async Bridge
===================================================================

A unit of work whose caller has stopped waiting must roll back; one that
had already started committing must be waited for, not reported as failed.
"""

from __future__ import annotations

import asyncio
import threading
import time

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from conftest import make_file_engine
from gembot.database.engine import CommitGate, get_session, run_db_bounded
from gembot.database.models import GemsSetting
from gembot.errors import StorageUnavailable


def _run(coro):
    return asyncio.run(coro)


def _cap(engine) -> str:
    with Session(engine) as s:
        return s.scalar(
            select(GemsSetting.value_json).where(GemsSetting.key == "limits.tip.daily_max")
        )


def _write_cap(engine, value: str, delay: float = 0.0) -> str:
    with get_session(engine) as session:
        row = session.get(GemsSetting, "limits.tip.daily_max")
        row.value_json = value
        session.flush()
        time.sleep(delay)
    return value


class TestCommitGate:
    def test_commit_then_abandon(self):
        gate = CommitGate(5)
        gate.claim_commit()
        assert gate.abandon() is False

    def test_abandon_then_commit(self):
        gate = CommitGate(5)
        assert gate.abandon() is True
        with pytest.raises(StorageUnavailable):
            gate.claim_commit()

    def test_deadline_passed(self):
        gate = CommitGate(0)
        with pytest.raises(StorageUnavailable):
            gate.claim_commit()
        assert gate.abandoned

    def test_no_timeout_never_expires(self):
        gate = CommitGate(None)
        gate.claim_commit()
        assert gate.committing

    def test_second_session_in_same_unit_may_commit(self):
        gate = CommitGate(5)
        gate.claim_commit()
        gate.claim_commit()


class TestRunDbBounded:
    def test_fast_work_commits(self, db_engine):
        assert _run(run_db_bounded(5, _write_cap, db_engine, "75")) == "75"
        assert _cap(db_engine) == "75"

    def test_abandoned_work_rolls_back(self, tmp_path):
        engine = make_file_engine(tmp_path / "gate.db")
        with pytest.raises(StorageUnavailable) as exc:
            _run(run_db_bounded(0.1, _write_cap, engine, "5", delay=0.4))
        assert exc.value.retryable
        # the worker thread has been joined by asyncio.run
        assert _cap(engine) == "100"
        engine.dispose()

    def test_plain_sessions_are_not_gated(self, db_engine):
        _write_cap(db_engine, "60")
        assert _cap(db_engine) == "60"

    def test_gate_does_not_leak_between_threads(self, db_engine):
        _run(run_db_bounded(5, _write_cap, db_engine, "70"))
        seen: list[str] = []
        worker = threading.Thread(target=lambda: seen.append(_write_cap(db_engine, "80")))
        worker.start()
        worker.join(5)
        assert seen == ["80"]
        assert _cap(db_engine) == "80"


class TestSqliteWriteLock:
    def test_transactions_take_write_lock_at_begin(self, tmp_path):
        engine = make_file_engine(tmp_path / "begin.db", timeout_seconds=0.1)
        with Session(engine) as first:
            first.scalar(select(GemsSetting.key).limit(1))
            with Session(engine) as second:
                with pytest.raises(OperationalError, match="locked"):
                    second.scalar(select(GemsSetting.key).limit(1))
        engine.dispose()

    def test_lock_released_after_commit(self, tmp_path):
        engine = make_file_engine(tmp_path / "begin.db", timeout_seconds=0.1)
        with Session(engine) as first:
            first.scalar(select(GemsSetting.key).limit(1))
            first.commit()
            with Session(engine) as second:
                assert second.scalar(select(GemsSetting.key).limit(1)) is not None
        engine.dispose()
