"""
tests/test_bot_cogs.py — Slash Command Response Handling
=========================================================

Discord invalidates an interaction that is not acknowledged within three
seconds, so every command that awaits the ledger must defer first and
answer through the followup webhook.
"""

from __future__ import annotations

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

from gembot.bot.cogs.admin import Admin
from gembot.bot.cogs.gems import Gems


def run_async(coro):
    return asyncio.run(coro)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _make_bot(order: list[str]) -> MagicMock:
    """Mock GemBot whose ledger calls record themselves in ``order``."""
    bot = MagicMock()
    bot.cfg = SimpleNamespace(currency_name="GEMS", admin_role_id=42)

    def _ledger_call(name, result):
        async def _call(*args, **kwargs):
            order.append(name)
            return result
        return _call

    bot.ledger.admin_adjust = AsyncMock(
        side_effect=_ledger_call("admin_adjust", SimpleNamespace(balance=15)),
    )
    bot.ledger.reset_account = AsyncMock(side_effect=_ledger_call("reset_account", True))
    bot.ledger.history = AsyncMock(side_effect=_ledger_call("history", []))
    bot.ledger.get_setting = AsyncMock(side_effect=_ledger_call("get_setting", 100))
    return bot


def _make_interaction(order: list[str]) -> MagicMock:
    interaction = MagicMock()
    interaction.user = SimpleNamespace(id=7, display_name="Admin", roles=[SimpleNamespace(id=42)])

    async def _defer(*args, **kwargs):
        order.append("defer")

    async def _followup(*args, **kwargs):
        order.append("followup")

    interaction.response.defer = AsyncMock(side_effect=_defer)
    interaction.response.send_message = AsyncMock()
    interaction.followup.send = AsyncMock(side_effect=_followup)
    return interaction


def _member() -> SimpleNamespace:
    return SimpleNamespace(id=99, display_name="Member", bot=False)


# ---------------------------------------------------------------------------
# Admin commands
# ---------------------------------------------------------------------------
class TestAdminDefers:
    def test_add_defers_before_ledger(self):
        order: list[str] = []
        cog = Admin(_make_bot(order))
        interaction = _make_interaction(order)
        run_async(Admin.add.callback(cog, interaction, _member(), 5, "Bonus"))
        assert order == ["defer", "admin_adjust", "followup"]
        interaction.response.defer.assert_awaited_once_with(ephemeral=True)
        interaction.response.send_message.assert_not_awaited()

    def test_remove_defers_before_ledger(self):
        order: list[str] = []
        bot = _make_bot(order)
        cog = Admin(bot)
        interaction = _make_interaction(order)
        run_async(Admin.remove.callback(cog, interaction, _member(), 5, "Penalty"))
        assert order == ["defer", "admin_adjust", "followup"]
        assert bot.ledger.admin_adjust.await_args.args[1] == -5
        interaction.response.send_message.assert_not_awaited()

    def test_reset_defers_before_ledger(self):
        order: list[str] = []
        cog = Admin(_make_bot(order))
        interaction = _make_interaction(order)
        run_async(Admin.reset.callback(cog, interaction, _member(), "Cleanup"))
        assert order == ["defer", "reset_account", "followup"]
        message = interaction.followup.send.await_args.args[0]
        assert "Reset" in message

    def test_setting_show_defers_before_ledger(self):
        order: list[str] = []
        cog = Admin(_make_bot(order))
        interaction = _make_interaction(order)
        run_async(Admin.setting.callback(cog, interaction, "limits.tip.daily_max"))
        assert order == ["defer", "get_setting", "followup"]


# ---------------------------------------------------------------------------
# Member commands
# ---------------------------------------------------------------------------
class TestGemsDefers:
    def test_history_defers_before_ledger(self):
        order: list[str] = []
        cog = Gems(_make_bot(order))
        interaction = _make_interaction(order)
        run_async(Gems.history.callback(cog, interaction, 1))
        assert order == ["defer", "history", "followup"]
        interaction.response.send_message.assert_not_awaited()

    def test_disabled_leaderboard_still_acknowledged(self):
        order: list[str] = []
        bot = _make_bot(order)
        bot.ledger.get_setting = AsyncMock(return_value=False)
        cog = Gems(bot)
        interaction = _make_interaction(order)
        run_async(Gems.leaderboard.callback(cog, interaction, None))
        assert order == ["defer", "followup"]
        bot.ledger.leaderboard.assert_not_called()
