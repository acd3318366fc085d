"""
gembot.database.engine — Database Handle, Sessions & Async Bridge
==================================================================

Discord bots run on an ``asyncio`` event loop while SQLAlchemy + psycopg2
is **synchronous**.  Every ledger unit of work is therefore written as a
plain sync function and shipped to a worker thread:

    1. A slash command fires (async world).
    2. The cog awaits a :class:`~gembot.services.ledger_service.LedgerService`
       method.
    3. The service calls ``await run_db_bounded(timeout, func, ...)`` which
       runs *func* on the default thread pool via ``asyncio.to_thread()``.
    4. The DB work happens on a background thread — the event loop stays free.

Storage failures (connection loss, pool exhaustion, statement timeouts, an
answer that never arrives) are classified as
:class:`~gembot.errors.StorageUnavailable` so callers know a retry is safe.
A unit of work the caller stopped waiting for is never allowed to commit:
:func:`get_session` asks the :class:`CommitGate` before every COMMIT.

Usage::

    from gembot.database.engine import Database

    db = Database.open()                 # reads DATABASE_URL, creates tables
    ...
    db.close()                           # at shutdown
"""

from __future__ import annotations

import asyncio
import logging
import os
import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from typing import ParamSpec, TypeVar

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session

from gembot.database.models import Base
from gembot.errors import StorageUnavailable

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")

DEFAULT_TIMEOUT_SECONDS = 10.0


# ---------------------------------------------------------------------------
# SQLite transaction handling
# ---------------------------------------------------------------------------
def enable_sqlite_transactions(engine: Engine, begin: str = "BEGIN") -> None:
    """Let SQLAlchemy, not pysqlite, emit BEGIN on SQLite connections.

    pysqlite defers BEGIN until the first DML statement, which breaks
    SAVEPOINTs and lets two writers read the same balance.  Passing
    ``begin="BEGIN IMMEDIATE"`` takes the write lock at transaction start.
    """

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql(begin)


# ---------------------------------------------------------------------------
# Engine creation
# ---------------------------------------------------------------------------
def create_db_engine(
    url: str | None = None,
    *,
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
) -> Engine:
    """Build a SQLAlchemy :class:`Engine` from *url* or ``DATABASE_URL``.

    The pool is sized for a community of tens of thousands of members:
    * ``pool_size=5`` — five persistent connections.
    * ``max_overflow=10`` — up to 10 extra connections under load.
    * ``pool_timeout`` — fail fast instead of queueing forever.
    * ``pool_recycle=3600`` — recycle connections after 1 hour.

    On SQLite every transaction starts with ``BEGIN IMMEDIATE`` so writers
    queue on the busy timeout instead of deadlocking on lock upgrade.

    On PostgreSQL the server-side ``statement_timeout`` and ``lock_timeout``
    are set just below *timeout_seconds*, so a slow unit of work is rolled
    back by the database before the async caller gives up on it.

    Raises
    ------
    RuntimeError
        If neither *url* nor ``DATABASE_URL`` is set.
    """
    url = url or os.getenv("DATABASE_URL")
    if not url:
        raise RuntimeError(
            "DATABASE_URL is not set.  "
            "Copy .env.example → .env and set a valid PostgreSQL URL."
        )

    if url.startswith("sqlite"):
        engine = create_engine(
            url,
            echo=False,
            connect_args={"timeout": timeout_seconds, "check_same_thread": False},
        )
        enable_sqlite_transactions(engine, "BEGIN IMMEDIATE")
    else:
        server_timeout_ms = max(int(timeout_seconds * 1000) - 500, 100)
        engine = create_engine(
            url,
            echo=False,        # Set True for SQL debugging
            pool_size=5,
            max_overflow=10,
            pool_pre_ping=True,   # Reconnect stale connections automatically
            pool_timeout=timeout_seconds,
            pool_recycle=3600,
            connect_args={
                "options": (
                    f"-c statement_timeout={server_timeout_ms} "
                    f"-c lock_timeout={server_timeout_ms}"
                ),
            },
        )
    logger.info("Database engine created → %s", engine.url.host or engine.url.database)
    return engine


# ---------------------------------------------------------------------------
# Schema initialization
# ---------------------------------------------------------------------------
def init_db(engine: Engine) -> None:
    """Create all ledger tables and seed the default GEMS settings.

    Safe to call on every startup — ``CREATE TABLE IF NOT EXISTS`` under the
    hood, and seeding only inserts missing keys.

    .. note::

        In production the schema is managed by Alembic (``alembic upgrade
        head``).  ``create_all`` is retained for dev/test environments.
    """
    Base.metadata.create_all(engine)
    logger.info("Database tables verified / created.")

    from gembot.database.seed import seed_default_settings

    seed_default_settings(engine)


# ---------------------------------------------------------------------------
# Explicit store handle
# ---------------------------------------------------------------------------
class Database:
    """Owns the engine for the lifetime of the process.

    Opened once at startup and closed at shutdown; every service receives
    the handle (or its ``engine``) explicitly.
    """

    def __init__(
        self, engine: Engine, *, timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self.engine = engine
        self.timeout_seconds = timeout_seconds
        self._closed = False

    @classmethod
    def open(
        cls,
        url: str | None = None,
        *,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        create_schema: bool = True,
    ) -> Database:
        engine = create_db_engine(url, timeout_seconds=timeout_seconds)
        if create_schema:
            init_db(engine)
        return cls(engine, timeout_seconds=timeout_seconds)

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        """Dispose of the connection pool.  Idempotent."""
        if self._closed:
            return
        self.engine.dispose()
        self._closed = True
        logger.info("Database connections closed.")

    def __enter__(self) -> Database:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


# ---------------------------------------------------------------------------
# Commit gate
# ---------------------------------------------------------------------------
class CommitGate:
    """Decides, once, whether a bounded unit of work may still commit.

    The worker thread calls :meth:`claim_commit` right before COMMIT; the
    awaiting coroutine calls :meth:`abandon` when its timeout fires.  Both
    take the same lock, so exactly one of them wins:

    * worker first  → the commit goes ahead and the caller waits for it;
    * caller first  → the worker raises StorageUnavailable and rolls back.
    """

    def __init__(self, timeout: float | None) -> None:
        self.deadline = time.monotonic() + timeout if timeout is not None else None
        self._lock = threading.Lock()
        self.abandoned = False
        self.committing = False

    def claim_commit(self) -> None:
        with self._lock:
            if self.committing:
                return
            if self.deadline is not None and time.monotonic() >= self.deadline:
                self.abandoned = True
            if self.abandoned:
                raise StorageUnavailable("Storage timed out before commit; nothing was written.")
            self.committing = True

    def abandon(self) -> bool:
        """Stop the pending commit.  False if it is already under way."""
        with self._lock:
            if self.committing:
                return False
            self.abandoned = True
            return True


_commit_gate: ContextVar[CommitGate | None] = ContextVar("gembot_commit_gate", default=None)


# ---------------------------------------------------------------------------
# Session helper
# ---------------------------------------------------------------------------
@contextmanager
def get_session(engine: Engine) -> Iterator[Session]:
    """Yield a :class:`Session` that commits on success and rolls back on
    exception.

    ``expire_on_commit=False`` so rows returned from a unit of work stay
    readable after the block exits.  Inside :func:`run_db_bounded` the
    commit only happens if the caller is still waiting for it.
    """
    session = Session(engine, expire_on_commit=False)
    try:
        yield session
        gate = _commit_gate.get()
        if gate is not None:
            gate.claim_commit()
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


# ---------------------------------------------------------------------------
# Storage error classification
# ---------------------------------------------------------------------------
@contextmanager
def storage_guard(operation: str) -> Iterator[None]:
    """Translate connection-level failures into :class:`StorageUnavailable`.

    Constraint violations and programming errors are *not* translated —
    they are bugs or terminal conditions, not transient outages.
    """
    try:
        yield
    except (OperationalError, InterfaceError, PoolTimeoutError) as exc:
        logger.warning("Storage unavailable during %s: %s", operation, exc)
        raise StorageUnavailable(
            f"Storage unavailable during {operation}.",
            {"operation": operation},
        ) from exc
    except DBAPIError as exc:
        if exc.connection_invalidated:
            logger.warning("Connection lost during %s: %s", operation, exc)
            raise StorageUnavailable(
                f"Connection lost during {operation}.",
                {"operation": operation},
            ) from exc
        raise


# ---------------------------------------------------------------------------
# Async bridge
# ---------------------------------------------------------------------------
async def run_db(func: Callable[P, T], *args: P.args, **kwargs: P.kwargs) -> T:
    """Run a **synchronous** database function on a background thread.

    Every DB call from a cog or route should go through this wrapper (or
    :func:`run_db_bounded`)::

        result = await run_db(my_sync_db_function, engine, user_id)
    """
    return await asyncio.to_thread(func, *args, **kwargs)


def _discard_outcome(future: asyncio.Future) -> None:
    # Retrieve the abandoned worker's exception so asyncio does not log it
    if not future.cancelled():
        future.exception()


async def run_db_bounded(
    timeout: float | None,
    func: Callable[P, T],
    *args: P.args,
    **kwargs: P.kwargs,
) -> T:
    """Like :func:`run_db`, but gives up after *timeout* seconds.

    Storage failures inside *func* and the timeout itself both surface as
    :class:`StorageUnavailable`.  A timed-out unit of work keeps running on
    its thread but can no longer commit (see :class:`CommitGate`), so the
    caller may retry straight away.  If the worker had already started
    committing when the timeout fired, its result is awaited and returned.
    """
    name = getattr(func, "__name__", "db operation")
    gate = CommitGate(timeout)

    def _guarded() -> T:
        _commit_gate.set(gate)
        with storage_guard(name):
            return func(*args, **kwargs)

    worker = asyncio.ensure_future(asyncio.to_thread(_guarded))
    try:
        return await asyncio.wait_for(asyncio.shield(worker), timeout)
    except TimeoutError as exc:
        if not gate.abandon():
            logger.info("%s was committing when its timeout fired; waiting for it", name)
            return await worker
        worker.add_done_callback(_discard_outcome)
        logger.warning("Storage timeout after %.1fs during %s", timeout or 0, name)
        raise StorageUnavailable(
            f"Storage did not respond within {timeout}s.",
            {"operation": name, "timeout": timeout},
        ) from exc
    except asyncio.CancelledError:
        gate.abandon()
        worker.add_done_callback(_discard_outcome)
        raise
