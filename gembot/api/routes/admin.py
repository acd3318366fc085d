"""
gembot.api.routes.admin — Admin GEMS endpoints (JWT‑protected)
===============================================================
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from gembot.api.deps import Ledger, get_current_admin
from gembot.database.engine import run_db
from gembot.services.reconciliation_service import reconcile_ledger
from gembot.services.retention_service import get_retention_stats

router = APIRouter(prefix="/admin", tags=["admin"])


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class SettingUpdate(BaseModel):
    value: Any


class AdjustRequest(BaseModel):
    account_id: str = Field(min_length=1, max_length=32)
    amount: int
    reason: str = Field(min_length=3, max_length=500)


class ResetRequest(BaseModel):
    reason: str = Field(min_length=3, max_length=500)


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------
@router.get("/settings")
async def list_settings(ledger: Ledger, admin: dict = Depends(get_current_admin)):
    return [s.to_dict() for s in await ledger.all_settings()]


@router.put("/settings/{key}")
async def update_setting(
    key: str,
    body: SettingUpdate,
    ledger: Ledger,
    admin: dict = Depends(get_current_admin),
):
    updated = await ledger.set_setting(key, body.value, admin["sub"])
    return updated.to_dict()


# ---------------------------------------------------------------------------
# Balances
# ---------------------------------------------------------------------------
@router.post("/gems/adjust")
async def adjust_balance(
    body: AdjustRequest,
    ledger: Ledger,
    admin: dict = Depends(get_current_admin),
):
    view = await ledger.admin_adjust(body.account_id, body.amount, body.reason, admin["sub"])
    return view.to_dict()


@router.post("/gems/accounts/{account_id}/reset")
async def reset_account(
    account_id: str,
    body: ResetRequest,
    ledger: Ledger,
    admin: dict = Depends(get_current_admin),
):
    removed = await ledger.reset_account(account_id, admin["sub"], body.reason)
    return {"account_id": account_id, "removed": removed}


# ---------------------------------------------------------------------------
# Transfers
# ---------------------------------------------------------------------------
@router.post("/gems/transfers/{transfer_id}/complete")
async def complete_transfer(
    transfer_id: str,
    ledger: Ledger,
    admin: dict = Depends(get_current_admin),
):
    result = await ledger.complete_transfer(transfer_id)
    return result.to_dict()


@router.get("/gems/transactions")
async def recent_transactions(
    ledger: Ledger,
    limit: int = Query(20, ge=1, le=100),
    admin: dict = Depends(get_current_admin),
):
    return [r.to_dict() for r in await ledger.recent_transactions(limit)]


# ---------------------------------------------------------------------------
# Maintenance
# ---------------------------------------------------------------------------
@router.post("/gems/reconcile")
async def run_reconciliation(ledger: Ledger, admin: dict = Depends(get_current_admin)):
    """On-demand reconciliation report; nothing is corrected."""
    return await run_db(reconcile_ledger, ledger.engine)


@router.get("/gems/retention")
async def retention_stats(ledger: Ledger, admin: dict = Depends(get_current_admin)):
    return await run_db(get_retention_stats, ledger.engine)
