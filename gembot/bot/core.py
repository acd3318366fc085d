"""
gembot.bot.core — Bot Instance & Cog Loader
============================================

Defines :class:`GemBot`, a ``commands.Bot`` subclass that:

1. Stores the shared config (``bot.cfg``), the open :class:`Database`
   handle (``bot.db``) and the :class:`LedgerService` (``bot.ledger``) so
   every Cog can reach them via ``self.bot.*``.
2. Loads every Cog listed in :data:`EXTENSIONS`.
3. Syncs the slash-command tree on startup (guild-scoped for dev, global
   for production — controlled by the ``DEV_GUILD_ID`` env var).
4. Closes the database handle on shutdown.

Cogs never touch SQLAlchemy directly; every GEMS change goes through
``bot.ledger``.
"""

from __future__ import annotations

import logging
import os

import discord
from discord.ext import commands

from gembot.config import GemBotConfig
from gembot.database.engine import Database
from gembot.services.ledger_service import LedgerService

logger = logging.getLogger(__name__)

# Cog modules to load on startup.
EXTENSIONS: list[str] = [
    "gembot.bot.cogs.gems",
    "gembot.bot.cogs.admin",
    "gembot.bot.cogs.tasks",
]


class GemBot(commands.Bot):
    """Custom Bot subclass that carries project-wide state.

    Parameters
    ----------
    cfg:
        The parsed :class:`GemBotConfig` from ``config.yaml``.
    db:
        The open :class:`Database` handle; closed in :meth:`close`.
    ledger:
        The :class:`LedgerService` every cog talks to.
    """

    def __init__(self, cfg: GemBotConfig, db: Database, ledger: LedgerService) -> None:
        intents = discord.Intents.default()
        intents.members = True            # Privileged: resolve leaderboard names
        intents.presences = False

        super().__init__(
            command_prefix=cfg.bot_prefix,
            intents=intents,
            description=f"{cfg.community_name} — {cfg.community_motto}",
        )

        self.cfg = cfg
        self.db = db
        self.ledger = ledger

    @property
    def engine(self):
        return self.db.engine

    # -----------------------------------------------------------------------
    # Lifecycle hooks
    # -----------------------------------------------------------------------
    async def setup_hook(self) -> None:
        """Called once before the bot connects to Discord.

        If any extension fails to load, we log the error but keep going —
        one broken Cog shouldn't take down the whole bot.
        """
        for ext in EXTENSIONS:
            try:
                await self.load_extension(ext)
                logger.info("Loaded extension: %s", ext)
            except commands.ExtensionError:
                logger.exception("Failed to load extension %s", ext)

    async def on_ready(self) -> None:
        """Fired when the bot has connected and the cache is populated."""
        assert self.user is not None  # guaranteed after on_ready
        logger.info("Logged in as %s (ID: %s)", self.user.name, self.user.id)

        dev_guild_id = os.getenv("DEV_GUILD_ID")
        if dev_guild_id:
            guild = discord.Object(id=int(dev_guild_id))
            self.tree.copy_global_to(guild=guild)
            synced = await self.tree.sync(guild=guild)
            logger.info("Synced %d commands to dev guild %s", len(synced), dev_guild_id)
        else:
            synced = await self.tree.sync()
            logger.info("Synced %d commands globally", len(synced))

    async def close(self) -> None:
        """Graceful shutdown — disconnect, then release the connection pool."""
        logger.info("Bot shutting down…")
        await super().close()
        self.db.close()

    def display_name_for(self, account_id: str) -> str:
        """Best-effort member name for leaderboards; falls back to a mention."""
        guild = self.get_guild(self.cfg.guild_id)
        if guild is not None and account_id.isdigit():
            member = guild.get_member(int(account_id))
            if member is not None:
                return member.display_name
        return f"<@{account_id}>"
