"""
gembot.bot.__main__ — Entry point for ``python -m gembot.bot``
===============================================================

Wiring:
1. Load .env (secrets).
2. Load config.yaml (infrastructure settings).
3. Open the Database handle (engine + tables + default settings).
4. Build the SettingsStore with its own TTL cache.
5. Build the LedgerService on top of both.
6. Create the GemBot and hand it config + database + ledger.
7. Start the bot (blocking — runs the asyncio event loop).

Run with::

    python -m gembot.bot
"""

from __future__ import annotations

import logging
import os
import sys

from dotenv import load_dotenv

from gembot.bot.core import GemBot
from gembot.config import load_config
from gembot.database.engine import Database
from gembot.engine.cache import SettingsCache
from gembot.services.ledger_service import LedgerService
from gembot.services.settings_service import SettingsStore

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("gembot")


def main() -> None:
    """Bootstrap and run GemBot."""

    # 1. Environment variables (secrets).
    load_dotenv()

    token = os.getenv("DISCORD_TOKEN")
    if not token or token == "your-discord-bot-token-here":
        logger.critical(
            "DISCORD_TOKEN is not set.  "
            "Copy .env.example → .env and paste your bot token."
        )
        sys.exit(1)

    # 2. Infrastructure configuration.
    cfg = load_config()
    logger.info("Config loaded — Community: %s", cfg.community_name)

    # 3. Database (explicit handle, closed by the bot on shutdown).
    db = Database.open(timeout_seconds=cfg.storage_timeout_seconds)

    # 4–5. Settings + ledger.
    settings = SettingsStore(db.engine, SettingsCache(cfg.settings_cache_ttl_seconds))
    ledger = LedgerService(db, settings)

    # 6. Bot.
    bot = GemBot(cfg=cfg, db=db, ledger=ledger)

    # 7. Run (blocks until Ctrl+C or SIGTERM).
    logger.info("Starting GemBot…")
    try:
        bot.run(token, log_handler=None)
    except KeyboardInterrupt:
        logger.info("Shutting down gracefully…")
    finally:
        db.close()


if __name__ == "__main__":
    main()
