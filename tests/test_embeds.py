"""
tests/test_embeds.py — Discord Embed Builder Tests
===================================================
"""

from __future__ import annotations

from datetime import UTC, datetime

from gembot.constants import format_gems, rank_badge
from gembot.errors import (
    InsufficientFunds,
    InvalidInput,
    PartialTransferFailure,
    StorageUnavailable,
    TransferLimitExceeded,
)
from gembot.services.embeds import (
    build_error_embed,
    build_history_embed,
    build_leaderboard_embed,
    build_rank_embed,
    describe_ledger_error,
)
from gembot.services.leaderboard_service import LeaderboardEntry, RankInfo
from gembot.services.transaction_ledger import TransactionRecord


def _record(type: str, amount: int) -> TransactionRecord:
    return TransactionRecord(
        id=1, account_id="100", type=type, amount=amount, reason="Raffle ticket",
        source="social", related_account_id=None, transfer_id=None, metadata=None,
        timestamp=datetime(2026, 3, 14, tzinfo=UTC),
    )


class TestFormatting:
    def test_format_gems(self):
        assert format_gems(1250) == "1,250 GEMS"
        assert format_gems(3, "Sparkles") == "3 Sparkles"

    def test_rank_badges(self):
        assert rank_badge(1) == "\U0001f947"
        assert rank_badge(4) == "#4"


class TestErrorMessages:
    def test_insufficient_funds(self):
        text = describe_ledger_error(InsufficientFunds("1", 100, 50))
        assert "100 GEMS" in text and "50 GEMS" in text

    def test_transfer_limit_shows_remaining(self):
        exc = TransferLimitExceeded(
            "1", 40, "Daily transfer limit of 100 exceeded",
            min_amount=1, max_amount=50, daily_max=100, transferred_today=80,
        )
        assert "Remaining today: 20 GEMS" in describe_ledger_error(exc)

    def test_partial_failure_gives_reference(self):
        exc = PartialTransferFailure("tx-9", "1", "2", 5, "down")
        assert "tx-9" in describe_ledger_error(exc)

    def test_error_embed_titles(self):
        assert "Try Again" in build_error_embed(StorageUnavailable()).title
        assert build_error_embed(InvalidInput("Bad amount")).description == "Bad amount"


class TestBuilders:
    def test_leaderboard_uses_names_and_badges(self):
        entries = [LeaderboardEntry(1, "1", 100), LeaderboardEntry(1, "2", 100),
                   LeaderboardEntry(3, "3", 50)]
        embed = build_leaderboard_embed(entries, "balance", {"1": "Ada", "2": "Lin"})
        lines = embed.description.splitlines()
        assert lines[0].startswith("\U0001f947 **Ada**")
        assert lines[1].startswith("\U0001f947 **Lin**")
        assert lines[2].startswith("\U0001f949 **<@3>**")

    def test_empty_leaderboard(self):
        embed = build_leaderboard_embed([], "balance", {})
        assert "Be the first" in embed.description

    def test_rank_embed(self):
        info = RankInfo("1", "lifetime_earned", 3, 4, 50, 20)
        embed = build_rank_embed("Ada", info)
        assert "Lifetime Earned" in embed.title
        assert "Rank **3** of 4" in embed.description

    def test_history_signs(self):
        embed = build_history_embed("Ada", [_record("spent", 4), _record("earned", 9)])
        lines = embed.description.splitlines()
        assert "-4" in lines[0]
        assert "+9" in lines[1]
