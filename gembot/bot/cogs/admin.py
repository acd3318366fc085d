"""
gembot.bot.cogs.admin — Admin Slash Commands
=============================================

Discord slash commands for server admins:
- /gems-admin add member amount reason — manual credit (``admin_add``)
- /gems-admin remove member amount reason — manual debit (``admin_remove``)
- /gems-admin stats — economy-wide totals
- /gems-admin setting key [value] — show or change a GEMS setting
- /gems-admin reset member reason — delete a member's balance row
- /gems-admin complete-transfer transfer_id — settle a stranded transfer

All commands require the configured admin_role_id and reply ephemerally.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import discord
from discord import app_commands
from discord.ext import commands

from gembot.constants import COLOR_INFO, COLOR_SUCCESS, format_gems
from gembot.database.seed import DEFAULT_SETTINGS
from gembot.errors import LedgerError
from gembot.services.embeds import build_economy_embed, build_error_embed
from gembot.services.settings_service import parse_setting_input

if TYPE_CHECKING:
    from gembot.bot.core import GemBot

logger = logging.getLogger(__name__)


def is_admin():
    """Decorator that checks if the user has the configured admin role."""
    async def predicate(interaction: discord.Interaction) -> bool:
        bot: GemBot = interaction.client  # type: ignore[assignment]
        if not interaction.user or not hasattr(interaction.user, "roles"):
            return False
        admin_role_id = bot.cfg.admin_role_id
        return any(role.id == admin_role_id for role in interaction.user.roles)
    return app_commands.check(predicate)


class Admin(commands.Cog, name="Admin"):
    """GEMS economy administration."""

    group = app_commands.Group(name="gems-admin", description="Admin commands for GEMS")

    def __init__(self, bot: GemBot) -> None:
        self.bot = bot

    @property
    def currency(self) -> str:
        return self.bot.cfg.currency_name

    async def cog_app_command_error(
        self, interaction: discord.Interaction, error: app_commands.AppCommandError,
    ) -> None:
        if isinstance(error, app_commands.CheckFailure):
            message = "❌ You need the admin role to use this command."
            if not interaction.response.is_done():
                await interaction.response.send_message(message, ephemeral=True)
            return
        original = getattr(error, "original", error)
        if not isinstance(original, LedgerError):
            return  # the tree's on_error logs everything else
        embed = build_error_embed(original, self.currency)
        if interaction.response.is_done():
            await interaction.followup.send(embed=embed, ephemeral=True)
        else:
            await interaction.response.send_message(embed=embed, ephemeral=True)

    # -------------------------------------------------------------------
    # /gems-admin add | remove
    # -------------------------------------------------------------------
    @group.command(name="add", description="Add GEMS to a member.")
    @app_commands.describe(
        member="Member to credit",
        amount="Amount of GEMS to add",
        reason="Reason for the adjustment",
    )
    @is_admin()
    async def add(
        self,
        interaction: discord.Interaction,
        member: discord.Member,
        amount: app_commands.Range[int, 1, 1_000_000],
        reason: app_commands.Range[str, 3, 500],
    ) -> None:
        await interaction.response.defer(ephemeral=True)
        view = await self.bot.ledger.admin_adjust(
            str(member.id), amount, reason, str(interaction.user.id),
        )
        await interaction.followup.send(
            f"✅ Added **{format_gems(amount, self.currency)}** to "
            f"**{member.display_name}**. New balance: "
            f"{format_gems(view.balance, self.currency)}\nReason: {reason}",
            ephemeral=True,
        )

    @group.command(name="remove", description="Remove GEMS from a member.")
    @app_commands.describe(
        member="Member to debit",
        amount="Amount of GEMS to remove",
        reason="Reason for the adjustment",
    )
    @is_admin()
    async def remove(
        self,
        interaction: discord.Interaction,
        member: discord.Member,
        amount: app_commands.Range[int, 1, 1_000_000],
        reason: app_commands.Range[str, 3, 500],
    ) -> None:
        await interaction.response.defer(ephemeral=True)
        view = await self.bot.ledger.admin_adjust(
            str(member.id), -amount, reason, str(interaction.user.id),
        )
        await interaction.followup.send(
            f"✅ Removed **{format_gems(amount, self.currency)}** from "
            f"**{member.display_name}**. New balance: "
            f"{format_gems(view.balance, self.currency)}\nReason: {reason}",
            ephemeral=True,
        )

    # -------------------------------------------------------------------
    # /gems-admin stats
    # -------------------------------------------------------------------
    @group.command(name="stats", description="View GEMS economy statistics.")
    @is_admin()
    async def stats(self, interaction: discord.Interaction) -> None:
        await interaction.response.defer(ephemeral=True)
        stats = await self.bot.ledger.economy_stats()
        await interaction.followup.send(
            embed=build_economy_embed(stats, self.currency), ephemeral=True,
        )

    # -------------------------------------------------------------------
    # /gems-admin setting
    # -------------------------------------------------------------------
    @group.command(name="setting", description="Show or change a GEMS setting.")
    @app_commands.describe(key="Setting key", value="New value (omit to show the current one)")
    @is_admin()
    async def setting(
        self, interaction: discord.Interaction, key: str, value: str | None = None,
    ) -> None:
        await interaction.response.defer(ephemeral=True)
        if value is None:
            current = await self.bot.ledger.get_setting(key)
            embed = discord.Embed(
                title=f"⚙️ {key}",
                description=f"Current value: `{current}`",
                color=COLOR_INFO,
            )
            embed.set_footer(text=DEFAULT_SETTINGS[key][2] if key in DEFAULT_SETTINGS else "")
            await interaction.followup.send(embed=embed, ephemeral=True)
            return

        parsed = parse_setting_input(key, value)
        updated = await self.bot.ledger.set_setting(key, parsed, str(interaction.user.id))
        await interaction.followup.send(
            embed=discord.Embed(
                title="✅ Setting Updated",
                description=f"`{updated.key}` is now `{updated.value}`",
                color=COLOR_SUCCESS,
            ),
            ephemeral=True,
        )

    @setting.autocomplete("key")
    async def _setting_key_autocomplete(
        self, interaction: discord.Interaction, current: str,
    ) -> list[app_commands.Choice[str]]:
        return [
            app_commands.Choice(name=k, value=k)
            for k in DEFAULT_SETTINGS
            if current.lower() in k.lower()
        ][:25]

    # -------------------------------------------------------------------
    # /gems-admin reset
    # -------------------------------------------------------------------
    @group.command(name="reset", description="Delete a member's GEMS balance.")
    @app_commands.describe(member="Member to reset", reason="Why the account is reset")
    @is_admin()
    async def reset(
        self,
        interaction: discord.Interaction,
        member: discord.Member,
        reason: app_commands.Range[str, 3, 500],
    ) -> None:
        await interaction.response.defer(ephemeral=True)
        removed = await self.bot.ledger.reset_account(
            str(member.id), str(interaction.user.id), reason,
        )
        if removed:
            message = f"✅ Reset **{member.display_name}**'s {self.currency} account."
        else:
            message = f"**{member.display_name}** has no {self.currency} account."
        await interaction.followup.send(message, ephemeral=True)

    # -------------------------------------------------------------------
    # /gems-admin complete-transfer
    # -------------------------------------------------------------------
    @group.command(name="complete-transfer", description="Settle a stranded GEMS transfer.")
    @app_commands.describe(transfer_id="Reference shown in the failed transfer message")
    @is_admin()
    async def complete_transfer(self, interaction: discord.Interaction, transfer_id: str) -> None:
        await interaction.response.defer(ephemeral=True)
        result = await self.bot.ledger.complete_transfer(transfer_id)
        await interaction.followup.send(
            f"Transfer `{result.transfer_id}` is **{result.status}** "
            f"({format_gems(result.amount, self.currency)} from <@{result.from_id}> "
            f"to <@{result.to_id}>).",
            ephemeral=True,
        )


async def setup(bot: GemBot) -> None:
    await bot.add_cog(Admin(bot))
