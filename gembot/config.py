"""
gembot.config — YAML Configuration Loader
==========================================

Reads ``config.yaml`` for **infrastructure-only** settings (Discord
identity, admin role, storage timeouts).  Every GEMS tuning value (earning
amounts, tip limits, feature switches) lives in the ``gems_settings`` table
and is read through :class:`~gembot.services.settings_service.SettingsStore`.

Usage::

    from gembot.config import load_config

    cfg = load_config()          # reads ./config.yaml by default
    print(cfg.community_name)
    print(cfg.storage_timeout_seconds)
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import yaml

# Settings readers may never be staler than this.
MAX_SETTINGS_CACHE_TTL = 300.0


# ---------------------------------------------------------------------------
# Typed settings object — infrastructure/identity only.
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class GemBotConfig:
    """Immutable configuration loaded from ``config.yaml``."""

    # Identity
    community_name: str
    community_motto: str

    # Discord
    bot_prefix: str
    guild_id: int

    # Dashboard
    dashboard_port: int

    # Admin role required for /gems-admin commands
    admin_role_id: int

    # Optional
    announce_channel_id: int | None = None
    currency_name: str = "GEMS"

    # Ledger
    storage_timeout_seconds: float = 10.0
    settings_cache_ttl_seconds: float = MAX_SETTINGS_CACHE_TTL


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_config(path: str | Path = "config.yaml") -> GemBotConfig:
    """Read *path* and return a :class:`GemBotConfig` instance.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    KeyError
        If a required key is missing from the YAML file.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh)

    ttl = float(raw.get("settings_cache_ttl_seconds", MAX_SETTINGS_CACHE_TTL))

    return GemBotConfig(
        community_name=raw["community_name"],
        community_motto=raw["community_motto"],
        bot_prefix=raw["bot_prefix"],
        guild_id=int(raw["guild_id"]),
        dashboard_port=int(raw["dashboard_port"]),
        admin_role_id=int(raw["admin_role_id"]),
        announce_channel_id=(
            int(raw["announce_channel_id"]) if raw.get("announce_channel_id") else None
        ),
        currency_name=raw.get("currency_name", "GEMS"),
        storage_timeout_seconds=float(raw.get("storage_timeout_seconds", 10)),
        settings_cache_ttl_seconds=min(max(ttl, 0.0), MAX_SETTINGS_CACHE_TTL),
    )
