"""
gembot.api.routes.public — Read-only GEMS endpoints
====================================================
"""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, HTTPException, Query

from gembot.api.deps import Ledger

router = APIRouter(prefix="/gems", tags=["public"])


# ---------------------------------------------------------------------------
# GET /gems/balance/{account_id}
# ---------------------------------------------------------------------------
@router.get("/balance/{account_id}")
async def get_balance(account_id: str, ledger: Ledger):
    """Current balance; the account is created on first sight."""
    view = await ledger.get_balance(account_id)
    return view.to_dict()


# ---------------------------------------------------------------------------
# GET /gems/history/{account_id}
# ---------------------------------------------------------------------------
@router.get("/history/{account_id}")
async def get_history(
    account_id: str,
    ledger: Ledger,
    limit: int = Query(20, ge=1),
    offset: int = Query(0, ge=0),
    type: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
):
    records = await ledger.history(
        account_id, limit=limit, offset=offset, type=type, start=start, end=end,
    )
    return {
        "account_id": account_id,
        "limit": min(limit, 100),
        "offset": offset,
        "transactions": [r.to_dict() for r in records],
    }


# ---------------------------------------------------------------------------
# GET /gems/leaderboard/{metric}
# ---------------------------------------------------------------------------
@router.get("/leaderboard/{metric}")
async def get_leaderboard(metric: str, ledger: Ledger, limit: int = Query(10, ge=1)):
    if not await ledger.get_setting("features.leaderboard_enabled"):
        raise HTTPException(403, "Leaderboard is disabled")
    entries = await ledger.leaderboard(metric, limit)
    return {"metric": metric, "entries": [e.to_dict() for e in entries]}


# ---------------------------------------------------------------------------
# GET /gems/rank/{account_id}
# ---------------------------------------------------------------------------
@router.get("/rank/{account_id}")
async def get_rank(account_id: str, ledger: Ledger, metric: str = "balance"):
    info = await ledger.rank(account_id, metric)
    return info.to_dict()


# ---------------------------------------------------------------------------
# GET /gems/stats
# ---------------------------------------------------------------------------
@router.get("/stats")
async def get_economy_stats(ledger: Ledger):
    stats = await ledger.economy_stats()
    return stats.to_dict()
