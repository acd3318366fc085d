"""
gembot.services.embeds — Discord embed builders for GEMS replies
=================================================================

All embed construction lives here so the cogs only need to supply data —
no layout concerns.  Ledger errors are rendered here too: the ledger only
classifies failures, the chat layer decides how to phrase them.
"""

from __future__ import annotations

import discord

from gembot.constants import (
    COLOR_ERROR,
    COLOR_INFO,
    COLOR_SUCCESS,
    CURRENCY_EMOJI,
    METRIC_LABELS,
    format_gems,
    rank_badge,
)
from gembot.errors import (
    DailyLimitExceeded,
    InsufficientFunds,
    LedgerError,
    PartialTransferFailure,
    StorageUnavailable,
    TransferLimitExceeded,
)
from gembot.services.balance_store import BalanceView
from gembot.services.leaderboard_service import EconomyStats, LeaderboardEntry, RankInfo
from gembot.services.ledger_service import TransferResult
from gembot.services.transaction_ledger import TransactionRecord

_TYPE_ICONS = {
    "earned": "\u2795",
    "bonus": "\U0001f381",
    "admin_add": "\U0001f6e0",
    "transferred": "\u21a9",
    "spent": "\u2796",
    "admin_remove": "\U0001f6e0",
}


def build_balance_embed(
    display_name: str, avatar_url: str, view: BalanceView, currency: str = "GEMS",
) -> discord.Embed:
    embed = discord.Embed(
        title=f"{CURRENCY_EMOJI} {display_name}'s {currency}",
        color=COLOR_INFO,
    )
    embed.add_field(name="Balance", value=format_gems(view.balance, currency), inline=True)
    embed.add_field(
        name="Lifetime Earned", value=format_gems(view.lifetime_earned, currency), inline=True,
    )
    embed.add_field(
        name="Lifetime Spent", value=format_gems(view.lifetime_spent, currency), inline=True,
    )
    if view.last_activity:
        embed.timestamp = view.last_activity
        embed.set_footer(text="Last activity")
    embed.set_thumbnail(url=avatar_url)
    return embed


def build_leaderboard_embed(
    entries: list[LeaderboardEntry],
    metric: str,
    names: dict[str, str],
    currency: str = "GEMS",
) -> discord.Embed:
    label = METRIC_LABELS.get(metric, metric)
    embed = discord.Embed(title=f"\U0001f3c6 {currency} Leaderboard — {label}", color=COLOR_INFO)
    if not entries:
        embed.description = "No one has any GEMS yet. Be the first!"
        return embed
    lines = [
        f"{rank_badge(e.rank)} **{names.get(e.account_id, f'<@{e.account_id}>')}** — "
        f"{format_gems(e.value, currency)}"
        for e in entries
    ]
    embed.description = "\n".join(lines)
    return embed


def build_rank_embed(display_name: str, info: RankInfo, currency: str = "GEMS") -> discord.Embed:
    label = METRIC_LABELS.get(info.metric, info.metric)
    embed = discord.Embed(
        title=f"\U0001f4ca {display_name}'s Rank — {label}",
        description=(
            f"{rank_badge(info.rank)} Rank **{info.rank}** of {info.total}\n"
            f"Percentile: **{info.percentile}** · {format_gems(info.value, currency)}"
        ),
        color=COLOR_INFO,
    )
    return embed


def build_history_embed(
    display_name: str, records: list[TransactionRecord], currency: str = "GEMS",
) -> discord.Embed:
    embed = discord.Embed(title=f"\U0001f4dc {display_name}'s {currency} History", color=COLOR_INFO)
    if not records:
        embed.description = "No transactions yet."
        return embed
    lines = []
    for r in records:
        sign = "-" if r.type in ("spent", "admin_remove") else "+"
        when = discord.utils.format_dt(r.timestamp, style="R") if r.timestamp else ""
        lines.append(
            f"{_TYPE_ICONS.get(r.type, '')} {sign}{r.amount:,} · {r.reason} {when}"
        )
    embed.description = "\n".join(lines)
    return embed


def build_tip_embed(
    sender_name: str,
    recipient_name: str,
    avatar_url: str,
    result: TransferResult,
    reason: str,
    currency: str = "GEMS",
) -> discord.Embed:
    embed = discord.Embed(
        title=f"\U0001f4b8 {currency} Tip Successful!",
        description=(
            f"**{sender_name}** tipped **{format_gems(result.amount, currency)}** "
            f"to **{recipient_name}**"
        ),
        color=COLOR_SUCCESS,
    )
    embed.add_field(
        name="\U0001f4b0 Your New Balance",
        value=format_gems(result.from_balance, currency), inline=True,
    )
    embed.add_field(
        name="\U0001f4b0 Recipient Balance",
        value=format_gems(result.to_balance, currency), inline=True,
    )
    embed.add_field(name="\U0001f4dd Reason", value=reason, inline=False)
    embed.set_thumbnail(url=avatar_url)
    embed.set_footer(text="Thank you for supporting the community!")
    return embed


def build_tip_received_embed(
    sender_name: str, avatar_url: str, result: TransferResult, reason: str,
    currency: str = "GEMS",
) -> discord.Embed:
    embed = discord.Embed(
        title=f"{CURRENCY_EMOJI} You received {currency}!",
        description=f"**{sender_name}** tipped you **{format_gems(result.amount, currency)}**!",
        color=COLOR_INFO,
    )
    embed.add_field(
        name="\U0001f4b0 Your New Balance",
        value=format_gems(result.to_balance, currency), inline=True,
    )
    embed.add_field(name="\U0001f4dd Reason", value=reason, inline=False)
    embed.set_thumbnail(url=avatar_url)
    return embed


def build_economy_embed(stats: EconomyStats, currency: str = "GEMS") -> discord.Embed:
    embed = discord.Embed(title=f"\U0001f4c8 {currency} Economy", color=COLOR_INFO)
    embed.add_field(name="Accounts", value=f"{stats.accounts:,}", inline=True)
    embed.add_field(
        name="In Circulation", value=format_gems(stats.circulating, currency), inline=True,
    )
    embed.add_field(name="Transactions Today", value=f"{stats.transactions_today:,}", inline=True)
    embed.add_field(
        name="Lifetime Earned", value=format_gems(stats.lifetime_earned, currency), inline=True,
    )
    embed.add_field(
        name="Lifetime Spent", value=format_gems(stats.lifetime_spent, currency), inline=True,
    )
    embed.timestamp = stats.generated_at
    return embed


def describe_ledger_error(exc: LedgerError, currency: str = "GEMS") -> str:
    """One-line, user-facing explanation of a ledger failure."""
    if isinstance(exc, InsufficientFunds):
        return (
            f"You need **{format_gems(exc.requested, currency)}** but only have "
            f"**{format_gems(exc.available, currency)}**."
        )
    if isinstance(exc, DailyLimitExceeded):
        return (
            f"Daily earning limit of {format_gems(exc.daily_max, currency)} reached. "
            f"Remaining today: {format_gems(exc.remaining, currency)}."
        )
    if isinstance(exc, TransferLimitExceeded):
        return f"{exc.message}. Remaining today: {format_gems(exc.remaining, currency)}."
    if isinstance(exc, StorageUnavailable):
        return "The GEMS vault is busy right now. Please try again in a moment."
    if isinstance(exc, PartialTransferFailure):
        return (
            "Something went wrong mid-transfer. An admin has been alerted and will "
            f"settle it (reference `{exc.transfer_id}`)."
        )
    return exc.message


def build_error_embed(exc: LedgerError, currency: str = "GEMS") -> discord.Embed:
    titles = {
        "INSUFFICIENT_FUNDS": f"❌ Insufficient {currency}",
        "DAILY_LIMIT_EXCEEDED": "⏳ Daily Limit Reached",
        "TRANSFER_LIMIT_EXCEEDED": "⏳ Transfer Limit",
        "STORAGE_UNAVAILABLE": "⚠️ Try Again Shortly",
        "PARTIAL_TRANSFER_FAILURE": "⚠️ Transfer Needs Attention",
    }
    return discord.Embed(
        title=titles.get(exc.code, "❌ Error"),
        description=describe_ledger_error(exc, currency),
        color=COLOR_ERROR,
    )
