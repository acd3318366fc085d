"""
gembot.bot.cogs.tasks — Periodic Background Tasks
==================================================

Scheduled jobs that run on ``discord.ext.tasks`` loops:

- **Retention cleanup** — daily, removes transactions older than
  ``RETENTION_DAYS``.
- **Ledger reconciliation** — weekly, reports balances that disagree with
  the log and transfers left unsettled.  Nothing is corrected
  automatically.

These tasks fire in the bot process (not a separate worker) to keep the
deployment simple.  They run via ``run_db()`` to avoid blocking the event
loop.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from discord.ext import commands, tasks

from gembot.database.engine import run_db
from gembot.services.reconciliation_service import reconcile_ledger
from gembot.services.retention_service import DEFAULT_RETENTION_DAYS, run_transaction_cleanup

if TYPE_CHECKING:
    from gembot.bot.core import GemBot

logger = logging.getLogger(__name__)

RETENTION_DAYS = DEFAULT_RETENTION_DAYS


class PeriodicTasks(commands.Cog):
    """Cog for scheduled ledger maintenance."""

    def __init__(self, bot: GemBot) -> None:
        self.bot = bot

    async def cog_load(self) -> None:
        self.retention_loop.start()
        self.reconciliation_loop.start()

    async def cog_unload(self) -> None:
        self.retention_loop.cancel()
        self.reconciliation_loop.cancel()

    # -------------------------------------------------------------------
    # Retention cleanup — runs every 24 hours
    # -------------------------------------------------------------------
    @tasks.loop(hours=24)
    async def retention_loop(self):
        """Delete transactions older than the retention window."""
        try:
            result = await run_db(run_transaction_cleanup, self.bot.engine, RETENTION_DAYS)
            logger.info(
                "Retention task complete: %d transactions deleted",
                result["transactions_deleted"],
            )
        except Exception:
            logger.exception("Retention task failed", extra={"task": "retention"})

    @retention_loop.before_loop
    async def _wait_retention(self):
        await self.bot.wait_until_ready()

    # -------------------------------------------------------------------
    # Ledger reconciliation — runs every 7 days
    # -------------------------------------------------------------------
    @tasks.loop(hours=168)  # 7 days
    async def reconciliation_loop(self):
        """Compare balances with the log and report drift."""
        try:
            report = await run_db(reconcile_ledger, self.bot.engine)
            logger.info(
                "Reconciliation task complete: checked=%d mismatches=%d stranded=%d",
                report["checked"],
                len(report["sum_mismatches"]) + len(report["invariant_violations"]),
                len(report["stranded_transfers"]),
            )
        except Exception:
            logger.exception("Reconciliation task failed", extra={"task": "reconciliation"})

    @reconciliation_loop.before_loop
    async def _wait_reconciliation(self):
        await self.bot.wait_until_ready()


async def setup(bot: GemBot) -> None:
    await bot.add_cog(PeriodicTasks(bot))
