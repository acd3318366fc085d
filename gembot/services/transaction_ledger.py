"""
gembot.services.transaction_ledger — Append-Only Transaction Log
=================================================================

Every balance-affecting event is one immutable ``gems_transactions`` row.
The ledger only ever INSERTs (``append``) or bulk-deletes expired history
(``delete_before``); it never updates a row.

Reads:
  * ``history()``   — lazy, restartable page over one account's log,
                      newest first (``timestamp DESC, id DESC``).
  * ``aggregate()`` — windowed ``SUM(amount)``, the basis of LimitPolicy.
  * ``stats()``     — per-type counts and totals for one account.
  * ``recent()``    — latest rows across the whole economy.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import Engine, and_, delete, func, or_, select
from sqlalchemy.orm import Session

from gembot.database.engine import get_session
from gembot.database.models import GemsTransaction, TransactionSource, TransactionType
from gembot.errors import InvalidInput

logger = logging.getLogger(__name__)

MAX_HISTORY_LIMIT = 100
HISTORY_BATCH_SIZE = 50
REASON_MIN_LENGTH = 3
REASON_MAX_LENGTH = 500

_TYPES = frozenset(t.value for t in TransactionType)
_SOURCES = frozenset(s.value for s in TransactionSource)


def as_utc(dt: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; everything stored is UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


# ---------------------------------------------------------------------------
# Value objects
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class TransactionRecord:
    """Read-only view of one ledger row."""

    id: int
    account_id: str
    type: str
    amount: int
    reason: str
    source: str
    related_account_id: str | None
    transfer_id: str | None
    metadata: dict[str, Any] | None
    timestamp: datetime

    @classmethod
    def from_row(cls, row: GemsTransaction) -> TransactionRecord:
        return cls(
            id=row.id,
            account_id=row.account_id,
            type=row.type,
            amount=row.amount,
            reason=row.reason,
            source=row.source,
            related_account_id=row.related_account_id,
            transfer_id=row.transfer_id,
            metadata=row.metadata_,
            timestamp=as_utc(row.timestamp),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "account_id": self.account_id,
            "type": self.type,
            "amount": self.amount,
            "reason": self.reason,
            "source": self.source,
            "related_account_id": self.related_account_id,
            "transfer_id": self.transfer_id,
            "metadata": self.metadata,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }


@dataclass(frozen=True, slots=True)
class HistoryFilter:
    """Pagination and filter options for :meth:`TransactionLedger.history`.

    ``limit`` above :data:`MAX_HISTORY_LIMIT` is clamped down to it.
    """

    limit: int = 20
    offset: int = 0
    type: str | None = None
    start: datetime | None = None
    end: datetime | None = None

    def __post_init__(self) -> None:
        if self.limit < 1:
            raise InvalidInput("limit must be at least 1", {"limit": self.limit})
        if self.offset < 0:
            raise InvalidInput("offset cannot be negative", {"offset": self.offset})
        if self.type is not None and self.type not in _TYPES:
            raise InvalidInput(f"Unknown transaction type: {self.type}", {"type": self.type})
        if self.start and self.end and as_utc(self.start) > as_utc(self.end):
            raise InvalidInput("start must not be after end")
        if self.limit > MAX_HISTORY_LIMIT:
            object.__setattr__(self, "limit", MAX_HISTORY_LIMIT)


@dataclass
class HistoryPage:
    """Lazy view over one page of an account's history.

    Nothing is read until the page is iterated.  Each iteration re-runs the
    query in batches, so the page can be walked any number of times and
    always reflects the log at that moment.  Only the first batch uses
    OFFSET; later batches continue strictly after the last ``(timestamp,
    id)`` seen, so rows appended mid-iteration never shift the page.
    """

    engine: Engine
    account_id: str
    filters: HistoryFilter = field(default_factory=HistoryFilter)
    batch_size: int = HISTORY_BATCH_SIZE

    def _query(self):
        f = self.filters
        stmt = select(GemsTransaction).where(GemsTransaction.account_id == self.account_id)
        if f.type is not None:
            stmt = stmt.where(GemsTransaction.type == f.type)
        if f.start is not None:
            stmt = stmt.where(GemsTransaction.timestamp >= as_utc(f.start))
        if f.end is not None:
            stmt = stmt.where(GemsTransaction.timestamp <= as_utc(f.end))
        return stmt.order_by(GemsTransaction.timestamp.desc(), GemsTransaction.id.desc())

    def __iter__(self) -> Iterator[TransactionRecord]:
        stmt = self._query()
        remaining = self.filters.limit
        after: tuple[datetime, int] | None = None
        while remaining > 0:
            size = min(self.batch_size, remaining)
            if after is None:
                batch_stmt = stmt.offset(self.filters.offset)
            else:
                last_ts, last_id = after
                batch_stmt = stmt.where(or_(
                    GemsTransaction.timestamp < last_ts,
                    and_(GemsTransaction.timestamp == last_ts, GemsTransaction.id < last_id),
                ))
            with get_session(self.engine) as session:
                rows = session.scalars(batch_stmt.limit(size)).all()
                batch = [TransactionRecord.from_row(r) for r in rows]
                if rows:
                    after = (rows[-1].timestamp, rows[-1].id)
            yield from batch
            if len(batch) < size:
                return
            remaining -= len(batch)

    def to_list(self) -> list[TransactionRecord]:
        return list(self)


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------
class TransactionLedger:
    """Append-only log over ``gems_transactions``.

    Mutating calls take the caller's :class:`Session` so the INSERT commits
    (or rolls back) together with the balance update it records.
    """

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    @staticmethod
    def validate(
        account_id: str,
        type: str,
        amount: int,
        reason: str,
        source: str,
        related_account_id: str | None = None,
        *,
        allow_zero: bool = False,
    ) -> None:
        """Raise :class:`InvalidInput` unless the row would be well-formed."""
        if not account_id:
            raise InvalidInput("account_id is required")
        if type not in _TYPES:
            raise InvalidInput(f"Unknown transaction type: {type}", {"type": type})
        if source not in _SOURCES:
            raise InvalidInput(f"Unknown transaction source: {source}", {"source": source})
        if isinstance(amount, bool) or not isinstance(amount, int):
            raise InvalidInput("Amount must be a whole number", {"amount": amount})
        if amount < 0 or (amount == 0 and not allow_zero):
            raise InvalidInput("Amount must be positive", {"amount": amount})
        reason = (reason or "").strip()
        if not REASON_MIN_LENGTH <= len(reason) <= REASON_MAX_LENGTH:
            raise InvalidInput(
                f"Reason must be {REASON_MIN_LENGTH}-{REASON_MAX_LENGTH} characters",
                {"length": len(reason)},
            )
        if type == TransactionType.TRANSFERRED:
            if not related_account_id:
                raise InvalidInput("Transfers require a related account")
            if related_account_id == account_id:
                raise InvalidInput("Transfer counterparty must differ from the account")

    def append(
        self,
        session: Session,
        *,
        account_id: str,
        type: str,
        amount: int,
        reason: str,
        source: str,
        related_account_id: str | None = None,
        transfer_id: str | None = None,
        metadata: dict[str, Any] | None = None,
        timestamp: datetime | None = None,
        allow_zero: bool = False,
    ) -> GemsTransaction:
        """Validate and INSERT one row.  Flushes so ``id`` is populated."""
        self.validate(
            account_id, type, amount, reason, source, related_account_id,
            allow_zero=allow_zero,
        )
        row = GemsTransaction(
            account_id=account_id,
            type=str(type),
            amount=amount,
            reason=reason.strip(),
            source=str(source),
            related_account_id=related_account_id,
            transfer_id=transfer_id,
            metadata_=metadata or None,
            timestamp=timestamp or datetime.now(UTC),
        )
        session.add(row)
        session.flush()
        return row

    def history(self, account_id: str, filters: HistoryFilter | None = None) -> HistoryPage:
        return HistoryPage(self._engine, account_id, filters or HistoryFilter())

    def aggregate(
        self,
        session: Session,
        account_id: str,
        type: str,
        start: datetime,
        end: datetime,
        source: str | None = None,
    ) -> int:
        """``SUM(amount)`` of *type* rows for *account_id* in ``[start, end)``."""
        stmt = (
            select(func.coalesce(func.sum(GemsTransaction.amount), 0))
            .where(
                GemsTransaction.account_id == account_id,
                GemsTransaction.type == str(type),
                GemsTransaction.timestamp >= as_utc(start),
                GemsTransaction.timestamp < as_utc(end),
            )
        )
        if source is not None:
            stmt = stmt.where(GemsTransaction.source == str(source))
        return int(session.scalar(stmt) or 0)

    def find_transfer_legs(self, session: Session, transfer_id: str) -> list[GemsTransaction]:
        """Every row already written for *transfer_id*, oldest first."""
        return list(session.scalars(
            select(GemsTransaction)
            .where(GemsTransaction.transfer_id == transfer_id)
            .order_by(GemsTransaction.id)
        ).all())

    def stats(
        self,
        account_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> dict[str, dict[str, int]]:
        """Per-type ``{"count": n, "total": sum}`` for one account.

        Types with no rows in the window are reported as zeros.
        """
        stmt = (
            select(
                GemsTransaction.type,
                func.count(GemsTransaction.id),
                func.coalesce(func.sum(GemsTransaction.amount), 0),
            )
            .where(GemsTransaction.account_id == account_id)
            .group_by(GemsTransaction.type)
        )
        if start is not None:
            stmt = stmt.where(GemsTransaction.timestamp >= as_utc(start))
        if end is not None:
            stmt = stmt.where(GemsTransaction.timestamp <= as_utc(end))

        result = {t.value: {"count": 0, "total": 0} for t in TransactionType}
        with get_session(self._engine) as session:
            for tx_type, count, total in session.execute(stmt):
                result[tx_type] = {"count": int(count), "total": int(total)}
        return result

    def recent(self, limit: int = 20) -> list[TransactionRecord]:
        limit = max(1, min(limit, MAX_HISTORY_LIMIT))
        with get_session(self._engine) as session:
            rows = session.scalars(
                select(GemsTransaction)
                .order_by(GemsTransaction.timestamp.desc(), GemsTransaction.id.desc())
                .limit(limit)
            ).all()
            return [TransactionRecord.from_row(r) for r in rows]

    def count_since(self, session: Session, since: datetime) -> int:
        return int(session.scalar(
            select(func.count(GemsTransaction.id))
            .where(GemsTransaction.timestamp >= as_utc(since))
        ) or 0)

    def delete_before(self, cutoff: datetime, *, batch_size: int = 5000) -> int:
        """Delete rows older than *cutoff* in batches; return the total removed."""
        total = 0
        while True:
            with get_session(self._engine) as session:
                ids = session.scalars(
                    select(GemsTransaction.id)
                    .where(GemsTransaction.timestamp < as_utc(cutoff))
                    .limit(batch_size)
                ).all()
                if not ids:
                    break
                session.execute(
                    delete(GemsTransaction).where(GemsTransaction.id.in_(ids))
                )
            total += len(ids)
            if len(ids) < batch_size:
                break
        if total:
            logger.info("Deleted %d transactions older than %s", total, cutoff.isoformat())
        return total
