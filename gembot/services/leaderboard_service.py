"""
gembot.services.leaderboard_service — Rankings over gems_balances
==================================================================

Read-only; owns no state of its own.

* ``top()`` — highest values first, ties broken by account id, with
  competition ranking (100, 100, 50 → ranks 1, 1, 3).
* ``position()`` — rank = 1 + number of accounts strictly ahead;
  percentile = round((total - rank + 1) / total * 100).
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from gembot.database.models import GemsBalance
from gembot.errors import InvalidInput

MAX_LEADERBOARD_LIMIT = 50

METRIC_COLUMNS = {
    "balance": GemsBalance.balance,
    "lifetime_earned": GemsBalance.lifetime_earned,
    "lifetime_spent": GemsBalance.lifetime_spent,
}
METRIC_ALIASES = {
    "earned": "lifetime_earned",
    "spent": "lifetime_spent",
    "lifetimeEarned": "lifetime_earned",
    "lifetimeSpent": "lifetime_spent",
}


def resolve_metric(metric: str) -> str:
    """Canonical metric name, or :class:`InvalidInput`."""
    name = METRIC_ALIASES.get(metric, metric)
    if name not in METRIC_COLUMNS:
        raise InvalidInput(
            f"Unknown leaderboard metric: {metric}",
            {"metric": metric, "allowed": sorted(METRIC_COLUMNS)},
        )
    return name


@dataclass(frozen=True, slots=True)
class LeaderboardEntry:
    rank: int
    account_id: str
    value: int

    def to_dict(self) -> dict:
        return {"rank": self.rank, "account_id": self.account_id, "value": self.value}


@dataclass(frozen=True, slots=True)
class RankInfo:
    account_id: str
    metric: str
    rank: int
    total: int
    percentile: int
    value: int

    def to_dict(self) -> dict:
        return {
            "account_id": self.account_id,
            "metric": self.metric,
            "rank": self.rank,
            "total": self.total,
            "percentile": self.percentile,
            "value": self.value,
        }


def percentile_for(rank: int, total: int) -> int:
    if total <= 0:
        return 0
    return round((total - rank + 1) / total * 100)


class LeaderboardIndex:
    """Ranking queries; every method runs inside the caller's session."""

    def top(self, session: Session, metric: str, limit: int = 10) -> list[LeaderboardEntry]:
        name = resolve_metric(metric)
        if limit < 1:
            raise InvalidInput("limit must be at least 1", {"limit": limit})
        limit = min(limit, MAX_LEADERBOARD_LIMIT)
        column = METRIC_COLUMNS[name]

        rows = session.execute(
            select(GemsBalance.id, column)
            .order_by(column.desc(), GemsBalance.id.asc())
            .limit(limit)
        ).all()

        entries: list[LeaderboardEntry] = []
        previous_value = None
        rank = 0
        for position, (account_id, value) in enumerate(rows, start=1):
            if value != previous_value:
                rank = position
                previous_value = value
            entries.append(LeaderboardEntry(rank=rank, account_id=account_id, value=value))
        return entries

    def position(self, session: Session, account_id: str, metric: str) -> RankInfo | None:
        """Rank of *account_id*, or ``None`` if the account has no balance row."""
        name = resolve_metric(metric)
        column = METRIC_COLUMNS[name]

        value = session.scalar(select(column).where(GemsBalance.id == account_id))
        if value is None:
            return None

        ahead = session.scalar(select(func.count()).where(column > value)) or 0
        total = session.scalar(select(func.count()).select_from(GemsBalance)) or 0
        rank = ahead + 1
        return RankInfo(
            account_id=account_id,
            metric=name,
            rank=rank,
            total=total,
            percentile=percentile_for(rank, total),
            value=value,
        )


@dataclass(frozen=True, slots=True)
class EconomyStats:
    """Economy-wide totals for the admin stats panel."""

    accounts: int
    circulating: int
    lifetime_earned: int
    lifetime_spent: int
    transactions_today: int
    generated_at: datetime

    def to_dict(self) -> dict:
        return {
            "accounts": self.accounts,
            "circulating": self.circulating,
            "lifetime_earned": self.lifetime_earned,
            "lifetime_spent": self.lifetime_spent,
            "transactions_today": self.transactions_today,
            "generated_at": self.generated_at.isoformat(),
        }


def economy_totals(session: Session) -> tuple[int, int, int, int]:
    """(accounts, circulating supply, lifetime earned, lifetime spent)."""
    row = session.execute(
        select(
            func.count(GemsBalance.id),
            func.coalesce(func.sum(GemsBalance.balance), 0),
            func.coalesce(func.sum(GemsBalance.lifetime_earned), 0),
            func.coalesce(func.sum(GemsBalance.lifetime_spent), 0),
        )
    ).one()
    return int(row[0]), int(row[1]), int(row[2]), int(row[3])
