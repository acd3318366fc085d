"""
gembot.constants — Shared Constants & Helpers
==============================================

Presentation constants shared by the bot cogs and the dashboard API.
"""

from __future__ import annotations

CURRENCY_EMOJI = "\U0001f48e"  # 💎

RANK_BADGES: list[str] = ["\U0001f947", "\U0001f948", "\U0001f949"]  # 🥇🥈🥉

# Embed colours (hex ints for discord.Color)
COLOR_SUCCESS = 0x00FF00
COLOR_ERROR = 0xFF0000
COLOR_INFO = 0x4FACFE

# Leaderboard metric display names
METRIC_LABELS: dict[str, str] = {
    "balance": "Balance",
    "lifetime_earned": "Lifetime Earned",
    "lifetime_spent": "Lifetime Spent",
}


def format_gems(amount: int, currency_name: str = "GEMS") -> str:
    """Render an amount like ``1,250 GEMS``."""
    return f"{amount:,} {currency_name}"


def rank_badge(rank: int) -> str:
    """Medal for the top three, ``#n`` for everyone else."""
    if 1 <= rank <= len(RANK_BADGES):
        return RANK_BADGES[rank - 1]
    return f"#{rank}"
