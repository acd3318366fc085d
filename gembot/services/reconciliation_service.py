"""
gembot.services.reconciliation_service — Ledger Reconciliation
===============================================================

Weekly job that checks ``gems_balances`` against the transaction log and
reports drift.  It **never** rewrites balances: every finding needs a human
(or an explicit ``complete_transfer`` / admin adjustment) to resolve.

Checks:
    1. Row invariant: ``balance == lifetime_earned - lifetime_spent`` and
       nothing negative.
    2. Sums: lifetime_earned / lifetime_spent versus the credit and debit
       rows logged since the account was created.  Accounts whose early
       history was pruned by retention are counted as unverifiable.
    3. Stranded transfers: a sender debit leg with neither the recipient
       credit nor the sender refund.
    4. Double-settled transfers: both the credit and the refund landed.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import UTC, datetime

from sqlalchemy import Engine, and_, exists, func, select
from sqlalchemy.orm import aliased

from gembot.database.engine import get_session
from gembot.database.models import GemsBalance, GemsTransaction, TransactionType
from gembot.services.transaction_ledger import as_utc

logger = logging.getLogger(__name__)

CREDIT_TYPES = (
    TransactionType.EARNED,
    TransactionType.BONUS,
    TransactionType.ADMIN_ADD,
    TransactionType.TRANSFERRED,
)
DEBIT_TYPES = (TransactionType.SPENT, TransactionType.ADMIN_REMOVE)


def _leg_exists(leg, debit, tx_type: str):
    return exists().where(and_(
        leg.transfer_id == debit.transfer_id,
        leg.type == tx_type,
    ))


def reconcile_ledger(engine: Engine) -> dict:
    """Compare balances with the log and list unsettled transfers.

    Returns a report dict; see the module docstring for what each list holds.
    """
    invariant_violations: list[dict] = []
    sum_mismatches: list[dict] = []
    unverifiable = 0

    with get_session(engine) as session:
        oldest = as_utc(session.scalar(select(func.min(GemsTransaction.timestamp))))

        # Per-account sums, only counting rows since the account's creation
        sums_q = (
            select(
                GemsTransaction.account_id,
                GemsTransaction.type,
                func.sum(GemsTransaction.amount).label("total"),
            )
            .join(GemsBalance, GemsBalance.id == GemsTransaction.account_id)
            .where(GemsTransaction.timestamp >= GemsBalance.created_at)
            .group_by(GemsTransaction.account_id, GemsTransaction.type)
        )
        credits: dict[str, int] = defaultdict(int)
        debits: dict[str, int] = defaultdict(int)
        for row in session.execute(sums_q):
            if row.type in CREDIT_TYPES:
                credits[row.account_id] += int(row.total or 0)
            elif row.type in DEBIT_TYPES:
                debits[row.account_id] += int(row.total or 0)

        balances = session.scalars(select(GemsBalance).order_by(GemsBalance.id)).all()
        for acct in balances:
            if (
                acct.balance != acct.lifetime_earned - acct.lifetime_spent
                or min(acct.balance, acct.lifetime_earned, acct.lifetime_spent) < 0
            ):
                invariant_violations.append({
                    "account_id": acct.id,
                    "balance": acct.balance,
                    "lifetime_earned": acct.lifetime_earned,
                    "lifetime_spent": acct.lifetime_spent,
                })

            created = as_utc(acct.created_at)
            if oldest is not None and created is not None and oldest > created:
                unverifiable += 1
                continue
            logged_in, logged_out = credits[acct.id], debits[acct.id]
            if (logged_in, logged_out) != (acct.lifetime_earned, acct.lifetime_spent):
                sum_mismatches.append({
                    "account_id": acct.id,
                    "lifetime_earned": acct.lifetime_earned,
                    "logged_credits": logged_in,
                    "lifetime_spent": acct.lifetime_spent,
                    "logged_debits": logged_out,
                })

        # Transfer legs
        debit = aliased(GemsTransaction)
        leg = aliased(GemsTransaction)
        debit_legs = (
            select(debit)
            .where(debit.transfer_id.isnot(None), debit.type == TransactionType.SPENT)
        )
        stranded_rows = session.scalars(
            debit_legs
            .where(~_leg_exists(leg, debit, TransactionType.EARNED))
            .where(~_leg_exists(leg, debit, TransactionType.TRANSFERRED))
            .order_by(debit.timestamp)
        ).all()
        double_rows = session.scalars(
            debit_legs
            .where(_leg_exists(leg, debit, TransactionType.EARNED))
            .where(_leg_exists(leg, debit, TransactionType.TRANSFERRED))
            .order_by(debit.timestamp)
        ).all()
        stranded = [_transfer_summary(r) for r in stranded_rows]
        double_settled = [_transfer_summary(r) for r in double_rows]
        checked = len(balances)

    if invariant_violations or sum_mismatches or stranded or double_settled:
        logger.warning(
            "Ledger reconciliation: %d invariant violations, %d sum mismatches, "
            "%d stranded transfers, %d double-settled transfers (of %d accounts)",
            len(invariant_violations), len(sum_mismatches), len(stranded),
            len(double_settled), checked,
        )
    else:
        logger.info("Ledger reconciliation: all %d accounts consistent", checked)

    return {
        "checked": checked,
        "unverifiable": unverifiable,
        "invariant_violations": invariant_violations,
        "sum_mismatches": sum_mismatches,
        "stranded_transfers": stranded,
        "double_settled_transfers": double_settled,
        "timestamp": datetime.now(UTC).isoformat(),
    }


def _transfer_summary(row: GemsTransaction) -> dict:
    return {
        "transfer_id": row.transfer_id,
        "from_id": row.account_id,
        "to_id": row.related_account_id,
        "amount": row.amount,
        "debited_at": as_utc(row.timestamp).isoformat(),
    }
