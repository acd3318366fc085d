"""
gembot.bot.cogs.gems — Member GEMS Commands
============================================

Slash commands for everyday members:
- /gems balance [member] — own balance (other members: admins only)
- /gems leaderboard [metric] — top holders
- /gems history [page] — recent transactions
- /gems rank [metric] — own position and percentile
- /tip member amount [reason] — send GEMS to another member

Every call goes through ``bot.ledger``; ledger errors are rendered by
:meth:`Gems.cog_app_command_error` so the commands stay linear.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import discord
from discord import app_commands
from discord.ext import commands

from gembot.errors import LedgerError
from gembot.services.embeds import (
    build_balance_embed,
    build_error_embed,
    build_history_embed,
    build_leaderboard_embed,
    build_rank_embed,
    build_tip_embed,
    build_tip_received_embed,
)

if TYPE_CHECKING:
    from gembot.bot.core import GemBot

logger = logging.getLogger(__name__)

HISTORY_PAGE_SIZE = 10
LEADERBOARD_SIZE = 10

METRIC_CHOICES = [
    app_commands.Choice(name="Balance", value="balance"),
    app_commands.Choice(name="Lifetime Earned", value="lifetime_earned"),
    app_commands.Choice(name="Lifetime Spent", value="lifetime_spent"),
]


def _has_admin_role(bot: GemBot, user: discord.abc.User) -> bool:
    roles = getattr(user, "roles", None) or []
    return any(role.id == bot.cfg.admin_role_id for role in roles)


class Gems(commands.Cog, name="Gems"):
    """Balances, leaderboards, history and tipping."""

    gems = app_commands.Group(name="gems", description="Check your GEMS")

    def __init__(self, bot: GemBot) -> None:
        self.bot = bot

    @property
    def currency(self) -> str:
        return self.bot.cfg.currency_name

    # -------------------------------------------------------------------
    # Error rendering
    # -------------------------------------------------------------------
    async def cog_app_command_error(
        self, interaction: discord.Interaction, error: app_commands.AppCommandError,
    ) -> None:
        original = getattr(error, "original", error)
        if not isinstance(original, LedgerError):
            return  # the tree's on_error logs everything else
        embed = build_error_embed(original, self.currency)
        if interaction.response.is_done():
            await interaction.followup.send(embed=embed, ephemeral=True)
        else:
            await interaction.response.send_message(embed=embed, ephemeral=True)

    # -------------------------------------------------------------------
    # /gems balance
    # -------------------------------------------------------------------
    @gems.command(name="balance", description="Check a GEMS balance.")
    @app_commands.describe(member="Member to check (admins only; defaults to you)")
    async def balance(
        self, interaction: discord.Interaction, member: discord.Member | None = None,
    ) -> None:
        target = member or interaction.user
        if target.id != interaction.user.id and not _has_admin_role(self.bot, interaction.user):
            await interaction.response.send_message(
                "❌ Only admins can check other members' balances.", ephemeral=True,
            )
            return

        await interaction.response.defer(ephemeral=member is None)
        view = await self.bot.ledger.get_balance(str(target.id))
        embed = build_balance_embed(
            target.display_name, target.display_avatar.url, view, self.currency,
        )
        await interaction.followup.send(embed=embed)

    # -------------------------------------------------------------------
    # /gems leaderboard
    # -------------------------------------------------------------------
    @gems.command(name="leaderboard", description="Top GEMS holders.")
    @app_commands.describe(metric="What to rank by")
    @app_commands.choices(metric=METRIC_CHOICES)
    async def leaderboard(
        self,
        interaction: discord.Interaction,
        metric: app_commands.Choice[str] | None = None,
    ) -> None:
        await interaction.response.defer()
        if not await self.bot.ledger.get_setting("features.leaderboard_enabled"):
            await interaction.followup.send("\U0001f6ab The leaderboard is currently disabled.")
            return

        metric_name = metric.value if metric else "balance"
        entries = await self.bot.ledger.leaderboard(metric_name, LEADERBOARD_SIZE)
        names = {e.account_id: self.bot.display_name_for(e.account_id) for e in entries}
        embed = build_leaderboard_embed(entries, metric_name, names, self.currency)
        await interaction.followup.send(embed=embed)

    # -------------------------------------------------------------------
    # /gems history
    # -------------------------------------------------------------------
    @gems.command(name="history", description="Your recent GEMS transactions.")
    @app_commands.describe(page="Page number (10 per page)")
    async def history(
        self, interaction: discord.Interaction, page: app_commands.Range[int, 1, 100] = 1,
    ) -> None:
        await interaction.response.defer(ephemeral=True)
        records = await self.bot.ledger.history(
            str(interaction.user.id),
            limit=HISTORY_PAGE_SIZE,
            offset=(page - 1) * HISTORY_PAGE_SIZE,
        )
        embed = build_history_embed(interaction.user.display_name, records, self.currency)
        embed.set_footer(text=f"Page {page}")
        await interaction.followup.send(embed=embed, ephemeral=True)

    # -------------------------------------------------------------------
    # /gems rank
    # -------------------------------------------------------------------
    @gems.command(name="rank", description="Your position on the GEMS leaderboard.")
    @app_commands.describe(metric="What to rank by")
    @app_commands.choices(metric=METRIC_CHOICES)
    async def rank(
        self,
        interaction: discord.Interaction,
        metric: app_commands.Choice[str] | None = None,
    ) -> None:
        await interaction.response.defer(ephemeral=True)
        info = await self.bot.ledger.rank(
            str(interaction.user.id), metric.value if metric else "balance",
        )
        embed = build_rank_embed(interaction.user.display_name, info, self.currency)
        await interaction.followup.send(embed=embed, ephemeral=True)

    # -------------------------------------------------------------------
    # /tip
    # -------------------------------------------------------------------
    @app_commands.command(name="tip", description="Tip GEMS to another member.")
    @app_commands.describe(
        member="Member to tip",
        amount="Amount of GEMS to tip",
        reason="Optional reason for the tip",
    )
    async def tip(
        self,
        interaction: discord.Interaction,
        member: discord.Member,
        amount: app_commands.Range[int, 1, 1000],
        reason: app_commands.Range[str, 3, 200] = "GEMS tip",
    ) -> None:
        if member.bot:
            await interaction.response.send_message(
                "❌ You cannot tip GEMS to bots.", ephemeral=True,
            )
            return

        await interaction.response.defer()
        result = await self.bot.ledger.transfer(
            str(interaction.user.id), str(member.id), amount, reason,
        )
        embed = build_tip_embed(
            interaction.user.display_name, member.display_name,
            member.display_avatar.url, result, reason, self.currency,
        )
        await interaction.followup.send(embed=embed)

        try:
            await member.send(embed=build_tip_received_embed(
                interaction.user.display_name, interaction.user.display_avatar.url,
                result, reason, self.currency,
            ))
        except discord.HTTPException as exc:
            # DMs disabled is routine
            logger.info("Could not DM %s about tip %s: %s", member.id, result.transfer_id, exc)


async def setup(bot: GemBot) -> None:
    await bot.add_cog(Gems(bot))
