"""
gembot.services.retention_service — Transaction Retention Cleanup
==================================================================

Periodic removal of aged ``gems_transactions`` rows.

    - Default retention: 365 days.
    - Runs as a ``discord.ext.tasks`` loop (daily) or can be invoked ad-hoc.
    - Balance rows are never touched; lifetime totals keep their values.

**Deletion is batched** so the table is never locked for long: rows are
removed in chunks of ``BATCH_SIZE``.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta

from sqlalchemy import Engine, func, select

from gembot.database.engine import get_session
from gembot.database.models import GemsTransaction
from gembot.services.transaction_ledger import TransactionLedger, as_utc

logger = logging.getLogger(__name__)

# How many rows to delete in each batch (avoids long-held row locks)
BATCH_SIZE = 5_000

DEFAULT_RETENTION_DAYS = 365


def run_transaction_cleanup(
    engine: Engine,
    retention_days: int = DEFAULT_RETENTION_DAYS,
    *,
    now: datetime | None = None,
) -> dict[str, int | str]:
    """Delete transactions older than ``retention_days``.

    Returns ``{"transactions_deleted": N, "cutoff": iso}``.
    """
    if retention_days < 1:
        raise ValueError("retention_days must be at least 1")

    cutoff = (now or datetime.now(UTC)) - timedelta(days=retention_days)
    deleted = TransactionLedger(engine).delete_before(cutoff, batch_size=BATCH_SIZE)

    logger.info(
        "Retention cleanup complete — %d transactions removed (retention_days=%d, cutoff=%s)",
        deleted, retention_days, cutoff.isoformat(),
    )
    return {"transactions_deleted": deleted, "cutoff": cutoff.isoformat()}


def get_retention_stats(engine: Engine) -> dict:
    """Ledger size statistics for the admin dashboard."""
    with get_session(engine) as session:
        total = session.scalar(select(func.count()).select_from(GemsTransaction)) or 0
        oldest = session.scalar(select(func.min(GemsTransaction.timestamp)))
        newest = session.scalar(select(func.max(GemsTransaction.timestamp)))

    return {
        "total_transactions": total,
        "oldest_transaction": as_utc(oldest).isoformat() if oldest else None,
        "newest_transaction": as_utc(newest).isoformat() if newest else None,
    }
