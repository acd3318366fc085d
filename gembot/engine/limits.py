"""
gembot.engine.limits — Daily Earning & Transfer Caps
=====================================================

Anti-abuse limits evaluated just before a mutation.  Violations are
*rejected*, never queued or retried.

Earning cap
    Today's (UTC) sum of ``earned`` rows plus the new amount must stay at or
    below ``limits.earning.daily_max``.

Transfer caps
    ``limits.tip.min_amount <= amount <= limits.tip.max_amount`` and the
    sender's ``spent``/``tip`` sum for today plus the amount must stay at or
    below ``limits.tip.daily_max``.

The ``evaluate_*`` functions are pure (numbers in, decision out) so the
rules can be tested without a database; :class:`LimitPolicy` feeds them
with live settings and ledger sums.  Callers must hold the account's row
lock (:meth:`BalanceStore.lock`) while checking and writing, or two
concurrent mutations can both pass the same cap.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from sqlalchemy.orm import Session

from gembot.database.models import TransactionSource, TransactionType
from gembot.errors import DailyLimitExceeded, TransferLimitExceeded
from gembot.services.settings_service import SettingsStore
from gembot.services.transaction_ledger import TransactionLedger

logger = logging.getLogger(__name__)

DEFAULT_EARN_DAILY_MAX = 100
DEFAULT_TIP_DAILY_MAX = 100
DEFAULT_TIP_MIN = 1
DEFAULT_TIP_MAX = 50


@dataclass(frozen=True, slots=True)
class LimitDecision:
    """Outcome of one limit check."""

    allowed: bool
    message: str
    used: int
    remaining: int
    limit: int


def utc_day_bounds(now: datetime) -> tuple[datetime, datetime]:
    """``[00:00, next 00:00)`` of *now*'s UTC calendar day."""
    if now.tzinfo is None:
        now = now.replace(tzinfo=UTC)
    start = now.astimezone(UTC).replace(hour=0, minute=0, second=0, microsecond=0)
    return start, start + timedelta(days=1)


# ---------------------------------------------------------------------------
# Pure rules
# ---------------------------------------------------------------------------
def evaluate_daily_earn(earned_today: int, amount: int, daily_max: int) -> LimitDecision:
    remaining = max(0, daily_max - earned_today)
    if earned_today + amount > daily_max:
        return LimitDecision(
            allowed=False,
            message=(
                f"Daily limit of {daily_max} exceeded. "
                f"Already earned: {earned_today}, Remaining: {remaining}"
            ),
            used=earned_today,
            remaining=remaining,
            limit=daily_max,
        )
    return LimitDecision(True, "", earned_today, remaining, daily_max)


def evaluate_transfer(
    transferred_today: int,
    amount: int,
    *,
    min_amount: int,
    max_amount: int,
    daily_max: int,
) -> LimitDecision:
    remaining = max(0, daily_max - transferred_today)
    if amount < min_amount:
        message = f"Minimum transfer is {min_amount}"
    elif amount > max_amount:
        message = f"Maximum transfer is {max_amount}"
    elif transferred_today + amount > daily_max:
        message = (
            f"Daily transfer limit of {daily_max} exceeded. "
            f"Already sent today: {transferred_today}, Remaining: {remaining}"
        )
    else:
        return LimitDecision(True, "", transferred_today, remaining, daily_max)
    return LimitDecision(False, message, transferred_today, remaining, daily_max)


# ---------------------------------------------------------------------------
# Policy backed by settings + ledger
# ---------------------------------------------------------------------------
class LimitPolicy:
    """Reads caps from :class:`SettingsStore` and today's sums from the ledger.

    Checks run inside the caller's session so the sum is read in the same
    transaction as the mutation it guards.
    """

    def __init__(self, settings: SettingsStore, ledger: TransactionLedger) -> None:
        self.settings = settings
        self.ledger = ledger

    def earned_today(self, session: Session, account_id: str, now: datetime) -> int:
        start, end = utc_day_bounds(now)
        return self.ledger.aggregate(session, account_id, TransactionType.EARNED, start, end)

    def transferred_today(self, session: Session, account_id: str, now: datetime) -> int:
        start, end = utc_day_bounds(now)
        return self.ledger.aggregate(
            session, account_id, TransactionType.SPENT, start, end,
            source=TransactionSource.TIP,
        )

    def check_daily_earn(
        self, session: Session, account_id: str, amount: int, now: datetime,
    ) -> LimitDecision:
        daily_max = self.settings.get_int(
            "limits.earning.daily_max", DEFAULT_EARN_DAILY_MAX, session=session,
        )
        earned = self.earned_today(session, account_id, now)
        decision = evaluate_daily_earn(earned, amount, daily_max)
        if not decision.allowed:
            logger.warning(
                "Daily earn cap hit for %s: requested %d, earned %d/%d",
                account_id, amount, earned, daily_max,
            )
            raise DailyLimitExceeded(account_id, amount, earned, daily_max)
        return decision

    def check_transfer(
        self, session: Session, account_id: str, amount: int, now: datetime,
    ) -> LimitDecision:
        get = self.settings.get_int
        min_amount = get("limits.tip.min_amount", DEFAULT_TIP_MIN, session=session)
        max_amount = get("limits.tip.max_amount", DEFAULT_TIP_MAX, session=session)
        daily_max = get("limits.tip.daily_max", DEFAULT_TIP_DAILY_MAX, session=session)
        sent = self.transferred_today(session, account_id, now)
        decision = evaluate_transfer(
            sent, amount, min_amount=min_amount, max_amount=max_amount, daily_max=daily_max,
        )
        if not decision.allowed:
            logger.warning(
                "Transfer limit hit for %s: requested %d (%s)",
                account_id, amount, decision.message,
            )
            raise TransferLimitExceeded(
                account_id, amount, decision.message,
                min_amount=min_amount,
                max_amount=max_amount,
                daily_max=daily_max,
                transferred_today=sent,
            )
        return decision
