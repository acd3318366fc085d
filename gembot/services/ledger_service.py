"""
gembot.services.ledger_service — GEMS Ledger Orchestration
===========================================================

The single entry point for every GEMS balance change.  Command handlers and
API routes call the async methods here; each one runs a synchronous unit of
work on a worker thread (``run_db_bounded``) so the event loop never blocks.

Unit-of-work shape:
  * ``credit``  — validate → get_or_create → lock the account row → daily
    earn cap → guarded UPDATE → append ``earned`` row, all in one DB
    transaction.  The row lock keeps two credits from both passing the cap.
  * ``debit``   — validate → guarded UPDATE (``balance >= amount``) →
    append ``spent`` row.
  * ``transfer`` — two single-account legs tied by a ``transfer_id``:

        leg 1  debit sender      (spent,  source=tip, related=recipient)
        leg 2  credit recipient  (earned, source=tip, related=sender)

    If leg 2 fails the sender is refunded with a ``transferred`` row
    flagged ``reversal``.  If the refund fails too the transfer is stranded;
    :class:`~gembot.errors.PartialTransferFailure` is raised and logged at
    CRITICAL, and :meth:`LedgerService.complete_transfer` re-drives it.
    The unique ``(transfer_id, account_id, type)`` index makes every leg
    apply at most once no matter how often a transfer is replayed.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, ParamSpec, TypeVar

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from gembot.database.engine import Database, get_session, run_db_bounded
from gembot.database.models import (
    AdminActionType,
    AdminLog,
    GemsTransaction,
    TransactionSource,
    TransactionType,
)
from gembot.engine.limits import LimitPolicy, utc_day_bounds
from gembot.errors import (
    InvalidInput,
    PartialTransferFailure,
    SameAccount,
    StorageUnavailable,
)
from gembot.services.balance_store import BalanceStore, BalanceView
from gembot.services.leaderboard_service import (
    EconomyStats,
    LeaderboardEntry,
    LeaderboardIndex,
    RankInfo,
    economy_totals,
)
from gembot.services.settings_service import SettingsStore, SettingValue
from gembot.services.transaction_ledger import (
    HistoryFilter,
    HistoryPage,
    TransactionLedger,
    TransactionRecord,
)

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")

DEFAULT_TRANSFER_REASON = "GEMS transfer"
MAX_TRANSFER_ID_LENGTH = 64


def _utcnow() -> datetime:
    return datetime.now(UTC)


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class TransferResult:
    """Outcome of :meth:`LedgerService.transfer` / ``complete_transfer``.

    ``status`` is ``"completed"`` when the recipient holds the funds and
    ``"reversed"`` when the sender was refunded instead.
    """

    transfer_id: str
    from_id: str
    to_id: str
    amount: int
    status: str
    from_balance: int
    to_balance: int

    def to_dict(self) -> dict:
        return {
            "transfer_id": self.transfer_id,
            "from_id": self.from_id,
            "to_id": self.to_id,
            "amount": self.amount,
            "status": self.status,
            "from_balance": self.from_balance,
            "to_balance": self.to_balance,
        }


@dataclass(frozen=True, slots=True)
class TransferState:
    """What the ledger already holds for one ``transfer_id``."""

    transfer_id: str
    from_id: str
    to_id: str
    amount: int
    reason: str
    debited: bool
    credited: bool
    reversed: bool

    @property
    def status(self) -> str:
        if self.credited:
            return "completed"
        if self.reversed:
            return "reversed"
        return "pending"


def _transfer_state(session: Session, ledger: TransactionLedger, transfer_id: str,
                    ) -> TransferState | None:
    legs: dict[str, GemsTransaction] = {
        row.type: row for row in ledger.find_transfer_legs(session, transfer_id)
    }
    debit = legs.get(TransactionType.SPENT)
    if debit is None:
        return None
    return TransferState(
        transfer_id=transfer_id,
        from_id=debit.account_id,
        to_id=debit.related_account_id or "",
        amount=debit.amount,
        reason=debit.reason,
        debited=True,
        credited=TransactionType.EARNED in legs,
        reversed=TransactionType.TRANSFERRED in legs,
    )


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------
class LedgerService:
    """Async facade over the balance store, ledger, limits and leaderboard.

    Usage::

        db = Database.open()
        ledger = LedgerService(db, SettingsStore(db.engine, SettingsCache(300)))
        view = await ledger.credit("1234", 5, "Daily activity", "message")
        result = await ledger.transfer("1234", "5678", 3, "thanks!")
    """

    def __init__(
        self,
        db: Database,
        settings: SettingsStore | None = None,
        *,
        clock: Callable[[], datetime] = _utcnow,
        timeout_seconds: float | None = None,
    ) -> None:
        self.db = db
        self.engine = db.engine
        self.timeout_seconds = (
            timeout_seconds if timeout_seconds is not None else db.timeout_seconds
        )
        self.ledger = TransactionLedger(self.engine)
        self.balances = BalanceStore(self.ledger)
        self.settings = settings if settings is not None else SettingsStore(self.engine)
        self.limits = LimitPolicy(self.settings, self.ledger)
        self.rankings = LeaderboardIndex()
        self._clock = clock

    async def _run(self, func: Callable[P, T], *args: P.args, **kwargs: P.kwargs) -> T:
        if self.db.closed:
            raise StorageUnavailable("Database handle is closed.")
        return await run_db_bounded(self.timeout_seconds, func, *args, **kwargs)

    def now(self) -> datetime:
        return self._clock()

    # -------------------------------------------------------------------
    # Shared mutation steps (caller owns the session)
    # -------------------------------------------------------------------
    def _apply_credit(
        self,
        session: Session,
        account_id: str,
        amount: int,
        reason: str,
        source: str,
        now: datetime,
        *,
        tx_type: str = TransactionType.EARNED,
        metadata: dict[str, Any] | None = None,
        bypass_limits: bool = False,
        enforce_cap: bool = True,
        related_account_id: str | None = None,
        transfer_id: str | None = None,
    ) -> BalanceView:
        self.balances.get_or_create(session, account_id, now)
        if tx_type == TransactionType.EARNED and enforce_cap:
            if bypass_limits:
                metadata = {**(metadata or {}), "limits_bypassed": True}
                logger.info(
                    "Daily earn cap bypassed for %s: %d GEMS (%s)", account_id, amount, reason,
                )
            else:
                # Concurrent credits to this account wait here until we commit
                self.balances.lock(session, account_id)
                self.limits.check_daily_earn(session, account_id, amount, now)

        view = self.balances.credit(session, account_id, amount, now)
        self.ledger.append(
            session,
            account_id=account_id,
            type=tx_type,
            amount=amount,
            reason=reason,
            source=source,
            related_account_id=related_account_id,
            transfer_id=transfer_id,
            metadata=metadata,
            timestamp=now,
        )
        return view

    def _apply_debit(
        self,
        session: Session,
        account_id: str,
        amount: int,
        reason: str,
        source: str,
        now: datetime,
        *,
        tx_type: str = TransactionType.SPENT,
        metadata: dict[str, Any] | None = None,
        related_account_id: str | None = None,
        transfer_id: str | None = None,
    ) -> BalanceView:
        view = self.balances.debit(session, account_id, amount, now)
        self.ledger.append(
            session,
            account_id=account_id,
            type=tx_type,
            amount=amount,
            reason=reason,
            source=source,
            related_account_id=related_account_id,
            transfer_id=transfer_id,
            metadata=metadata,
            timestamp=now,
        )
        return view

    def _current(self, session: Session, account_id: str) -> int:
        view = self.balances.get(session, account_id)
        return view.balance if view is not None else 0

    # -------------------------------------------------------------------
    # Balance reads
    # -------------------------------------------------------------------
    def _get_balance(self, account_id: str) -> BalanceView:
        with get_session(self.engine) as session:
            return self.balances.get_or_create(session, account_id, self.now())

    async def get_balance(self, account_id: str) -> BalanceView:
        """Balance and lifetime totals; creates a zero account on first read."""
        account_id = _account(account_id)
        return await self._run(self._get_balance, account_id)

    # -------------------------------------------------------------------
    # Credit / debit
    # -------------------------------------------------------------------
    def _credit(self, account_id, amount, reason, source, metadata, bypass_limits) -> BalanceView:
        with get_session(self.engine) as session:
            view = self._apply_credit(
                session, account_id, amount, reason, source, self.now(),
                metadata=metadata, bypass_limits=bypass_limits,
            )
        logger.info("Credited %d GEMS to %s (%s): balance %d", amount, account_id, source,
                    view.balance)
        return view

    async def credit(
        self,
        account_id: str,
        amount: int,
        reason: str,
        source: str,
        metadata: dict[str, Any] | None = None,
        bypass_limits: bool = False,
    ) -> BalanceView:
        """Add *amount* GEMS earned from *source*.

        Raises InvalidInput or DailyLimitExceeded.  ``bypass_limits`` skips
        the daily cap for system bonuses and is recorded on the row.
        """
        account_id = _account(account_id)
        self.ledger.validate(account_id, TransactionType.EARNED, amount, reason, source)
        return await self._run(
            self._credit, account_id, amount, reason, source, metadata, bypass_limits,
        )

    def _debit(self, account_id, amount, reason, source, metadata) -> BalanceView:
        with get_session(self.engine) as session:
            view = self._apply_debit(
                session, account_id, amount, reason, source, self.now(), metadata=metadata,
            )
        logger.info("Debited %d GEMS from %s (%s): balance %d", amount, account_id, source,
                    view.balance)
        return view

    async def debit(
        self,
        account_id: str,
        amount: int,
        reason: str,
        source: str,
        metadata: dict[str, Any] | None = None,
    ) -> BalanceView:
        """Spend *amount* GEMS.  Raises InvalidInput or InsufficientFunds."""
        account_id = _account(account_id)
        self.ledger.validate(account_id, TransactionType.SPENT, amount, reason, source)
        return await self._run(self._debit, account_id, amount, reason, source, metadata)

    # -------------------------------------------------------------------
    # Transfers
    # -------------------------------------------------------------------
    def _transfer_debit_leg(
        self, transfer_id: str, from_id: str, to_id: str, amount: int, reason: str,
    ) -> TransferState:
        """Leg 1.  Returns the ledger's view of the transfer afterwards."""
        now = self.now()
        try:
            with get_session(self.engine) as session:
                state = _transfer_state(session, self.ledger, transfer_id)
                if state is not None:
                    _check_replay(state, from_id, to_id, amount)
                    return state

                if not self.settings.get_bool("features.tips_enabled", True, session=session):
                    raise InvalidInput("Tips are currently disabled.")
                self.balances.lock(session, from_id)
                self.limits.check_transfer(session, from_id, amount, now)
                self._apply_debit(
                    session, from_id, amount, reason, TransactionSource.TIP, now,
                    related_account_id=to_id,
                    transfer_id=transfer_id,
                )
        except IntegrityError:
            # Another caller recorded this leg first
            logger.info("Transfer %s debit leg already recorded", transfer_id)
            with get_session(self.engine) as session:
                state = _transfer_state(session, self.ledger, transfer_id)
            if state is None:
                raise
            _check_replay(state, from_id, to_id, amount)
            return state

        return TransferState(
            transfer_id, from_id, to_id, amount, reason,
            debited=True, credited=False, reversed=False,
        )

    def _transfer_credit_leg(
        self, transfer_id: str, from_id: str, to_id: str, amount: int, reason: str,
    ) -> TransferResult:
        """Leg 2.  The recipient's daily earn cap is not consulted."""
        now = self.now()
        try:
            with get_session(self.engine) as session:
                state = _transfer_state(session, self.ledger, transfer_id)
                if state is not None and state.reversed:
                    raise InvalidInput(
                        f"Transfer {transfer_id} was reversed and cannot be completed.",
                        {"transfer_id": transfer_id},
                    )
                if state is None or not state.credited:
                    self._apply_credit(
                        session, to_id, amount, reason, TransactionSource.TIP, now,
                        enforce_cap=False,
                        related_account_id=from_id,
                        transfer_id=transfer_id,
                    )
                from_balance = self._current(session, from_id)
                to_balance = self._current(session, to_id)
        except IntegrityError:
            logger.info("Transfer %s credit leg already recorded", transfer_id)
            with get_session(self.engine) as session:
                from_balance = self._current(session, from_id)
                to_balance = self._current(session, to_id)

        return TransferResult(
            transfer_id, from_id, to_id, amount, "completed", from_balance, to_balance,
        )

    def _reverse_transfer(
        self, transfer_id: str, from_id: str, to_id: str, amount: int, cause: str,
    ) -> TransferResult:
        """Refund the sender unless the credit leg landed after all."""
        now = self.now()
        with get_session(self.engine) as session:
            state = _transfer_state(session, self.ledger, transfer_id)
            if state is not None and state.credited:
                status = "completed"
            else:
                status = "reversed"
                if state is None or not state.reversed:
                    self._apply_credit(
                        session, from_id, amount,
                        f"Reversal of transfer {transfer_id}", TransactionSource.TIP, now,
                        tx_type=TransactionType.TRANSFERRED,
                        related_account_id=to_id,
                        transfer_id=transfer_id,
                        metadata={"reversal": True, "cause": cause[:200]},
                    )
            from_balance = self._current(session, from_id)
            to_balance = self._current(session, to_id)
        return TransferResult(
            transfer_id, from_id, to_id, amount, status, from_balance, to_balance,
        )

    def _settled_result(self, state: TransferState) -> TransferResult:
        with get_session(self.engine) as session:
            return TransferResult(
                state.transfer_id, state.from_id, state.to_id, state.amount, state.status,
                self._current(session, state.from_id),
                self._current(session, state.to_id),
            )

    async def _finish_transfer(self, state: TransferState) -> TransferResult:
        """Run leg 2 for a debited transfer, compensating if it fails."""
        args = (state.transfer_id, state.from_id, state.to_id, state.amount)
        try:
            result = await self._run(self._transfer_credit_leg, *args, state.reason)
        except InvalidInput:
            raise
        except Exception as exc:
            logger.warning(
                "Transfer %s: credit to %s failed (%s); refunding %d GEMS to %s",
                state.transfer_id, state.to_id, exc, state.amount, state.from_id,
            )
            try:
                refund = await self._run(self._reverse_transfer, *args, repr(exc))
            except Exception as comp_exc:
                logger.critical(
                    "Transfer %s STRANDED: %s debited %d GEMS, %s not credited, "
                    "refund failed: %s",
                    state.transfer_id, state.from_id, state.amount, state.to_id, comp_exc,
                )
                raise PartialTransferFailure(
                    state.transfer_id, state.from_id, state.to_id, state.amount, repr(comp_exc),
                ) from comp_exc
            if refund.status == "completed":
                logger.info("Transfer %s: credit leg had landed; no refund needed",
                            state.transfer_id)
                return refund
            logger.warning("Transfer %s reversed", state.transfer_id)
            raise

        logger.info(
            "Transfer %s: %s → %s, %d GEMS", state.transfer_id, state.from_id, state.to_id,
            state.amount,
        )
        return result

    async def transfer(
        self,
        from_id: str,
        to_id: str,
        amount: int,
        reason: str = DEFAULT_TRANSFER_REASON,
        transfer_id: str | None = None,
    ) -> TransferResult:
        """Move *amount* GEMS from *from_id* to *to_id*.

        Raises InvalidInput, SameAccount, TransferLimitExceeded or
        InsufficientFunds before anything is written.  Passing the same
        *transfer_id* again never applies a leg twice.
        """
        from_id, to_id = _account(from_id), _account(to_id)
        if from_id == to_id:
            raise SameAccount(from_id)
        self.ledger.validate(from_id, TransactionType.SPENT, amount, reason, TransactionSource.TIP)
        transfer_id = transfer_id or uuid.uuid4().hex
        if len(transfer_id) > MAX_TRANSFER_ID_LENGTH:
            raise InvalidInput("transfer_id is too long", {"transfer_id": transfer_id})

        state = await self._run(
            self._transfer_debit_leg, transfer_id, from_id, to_id, amount, reason,
        )
        if state.reversed and not state.credited:
            raise InvalidInput(
                f"Transfer {transfer_id} was reversed; submit a new transfer.",
                {"transfer_id": transfer_id},
            )
        if state.credited:
            return await self._run(self._settled_result, state)
        return await self._finish_transfer(state)

    def _load_transfer(self, transfer_id: str) -> TransferState | None:
        with get_session(self.engine) as session:
            return _transfer_state(session, self.ledger, transfer_id)

    async def complete_transfer(self, transfer_id: str) -> TransferResult:
        """Re-drive a transfer whose sender was debited but never settled."""
        state = await self._run(self._load_transfer, transfer_id)
        if state is None:
            raise InvalidInput(f"Unknown transfer: {transfer_id}", {"transfer_id": transfer_id})
        if state.credited or state.reversed:
            return await self._run(self._settled_result, state)
        logger.info("Re-driving stranded transfer %s", transfer_id)
        return await self._finish_transfer(state)

    # -------------------------------------------------------------------
    # Admin adjustments
    # -------------------------------------------------------------------
    def _admin_adjust(self, account_id: str, amount: int, reason: str, actor_id: str,
                      ) -> BalanceView:
        now = self.now()
        with get_session(self.engine) as session:
            before = self.balances.get(session, account_id)
            if amount > 0:
                view = self._apply_credit(
                    session, account_id, amount, reason, TransactionSource.ADMIN, now,
                    tx_type=TransactionType.ADMIN_ADD,
                    metadata={"actor_id": actor_id},
                )
                action = AdminActionType.MANUAL_ADD
            else:
                view = self._apply_debit(
                    session, account_id, -amount, reason, TransactionSource.ADMIN, now,
                    tx_type=TransactionType.ADMIN_REMOVE,
                    metadata={"actor_id": actor_id},
                )
                action = AdminActionType.MANUAL_REMOVE
            session.add(AdminLog(
                actor_id=actor_id,
                action_type=action.value,
                target_table="gems_balances",
                target_id=account_id,
                before_snapshot=before.to_dict() if before else None,
                after_snapshot=view.to_dict(),
                reason=reason,
                timestamp=now,
            ))
        logger.info("Admin %s adjusted %s by %+d GEMS: %s", actor_id, account_id, amount, reason)
        return view

    async def admin_adjust(
        self, account_id: str, amount: int, reason: str, actor_id: str,
    ) -> BalanceView:
        """Positive *amount* → ``admin_add``; negative → ``admin_remove``.

        Not subject to earning caps.  Removing more than the balance raises
        InsufficientFunds.
        """
        account_id, actor_id = _account(account_id), str(actor_id)
        if isinstance(amount, bool) or not isinstance(amount, int) or amount == 0:
            raise InvalidInput("Adjustment must be a non-zero whole number", {"amount": amount})
        tx_type = TransactionType.ADMIN_ADD if amount > 0 else TransactionType.ADMIN_REMOVE
        self.ledger.validate(account_id, tx_type, abs(amount), reason, TransactionSource.ADMIN)
        return await self._run(self._admin_adjust, account_id, amount, reason, actor_id)

    def _reset_account(self, account_id: str, actor_id: str, reason: str) -> bool:
        with get_session(self.engine) as session:
            removed = self.balances.delete(session, account_id)
            if removed is None:
                return False
            session.add(AdminLog(
                actor_id=actor_id,
                action_type=AdminActionType.DELETE.value,
                target_table="gems_balances",
                target_id=account_id,
                before_snapshot=removed.to_dict(),
                after_snapshot=None,
                reason=reason,
                timestamp=self.now(),
            ))
        logger.warning("Admin %s reset GEMS account %s: %s", actor_id, account_id, reason)
        return True

    async def reset_account(self, account_id: str, actor_id: str, reason: str) -> bool:
        """Delete the balance row (transactions are kept).  False if absent."""
        if not (reason or "").strip():
            raise InvalidInput("A reason is required to reset an account")
        return await self._run(self._reset_account, _account(account_id), str(actor_id), reason)

    # -------------------------------------------------------------------
    # History & stats
    # -------------------------------------------------------------------
    def history_page(
        self,
        account_id: str,
        limit: int = 20,
        offset: int = 0,
        type: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> HistoryPage:
        """Lazy page; iterating it queries the database (blocking)."""
        filters = HistoryFilter(limit=limit, offset=offset, type=type, start=start, end=end)
        return self.ledger.history(_account(account_id), filters)

    async def history(
        self,
        account_id: str,
        limit: int = 20,
        offset: int = 0,
        type: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[TransactionRecord]:
        """Newest-first transactions for one account, materialised off-loop."""
        page = self.history_page(account_id, limit, offset, type, start, end)
        return await self._run(page.to_list)

    async def transaction_stats(
        self, account_id: str, start: datetime | None = None, end: datetime | None = None,
    ) -> dict[str, dict[str, int]]:
        return await self._run(self.ledger.stats, _account(account_id), start, end)

    async def recent_transactions(self, limit: int = 10) -> list[TransactionRecord]:
        return await self._run(self.ledger.recent, limit)

    # -------------------------------------------------------------------
    # Leaderboard
    # -------------------------------------------------------------------
    def _top(self, metric: str, limit: int) -> list[LeaderboardEntry]:
        with get_session(self.engine) as session:
            return self.rankings.top(session, metric, limit)

    async def leaderboard(self, metric: str = "balance", limit: int = 10,
                          ) -> list[LeaderboardEntry]:
        return await self._run(self._top, metric, limit)

    def _rank(self, account_id: str, metric: str) -> RankInfo:
        with get_session(self.engine) as session:
            self.balances.get_or_create(session, account_id, self.now())
            return self.rankings.position(session, account_id, metric)

    async def rank(self, account_id: str, metric: str = "balance") -> RankInfo:
        return await self._run(self._rank, _account(account_id), metric)

    def _economy_stats(self) -> EconomyStats:
        now = self.now()
        start, _end = utc_day_bounds(now)
        with get_session(self.engine) as session:
            accounts, circulating, earned, spent = economy_totals(session)
            today = self.ledger.count_since(session, start)
        return EconomyStats(accounts, circulating, earned, spent, today, now)

    async def economy_stats(self) -> EconomyStats:
        return await self._run(self._economy_stats)

    # -------------------------------------------------------------------
    # Settings
    # -------------------------------------------------------------------
    def _get_setting(self, key: str) -> Any:
        setting = self.settings.get(key)
        if setting is None:
            raise InvalidInput(f"Unknown setting: {key}", {"key": key})
        return setting.value

    async def get_setting(self, key: str) -> Any:
        return await self._run(self._get_setting, key)

    async def set_setting(self, key: str, value: Any, updated_by: str) -> SettingValue:
        return await self._run(self.settings.set, key, value, str(updated_by))

    async def all_settings(self) -> list[SettingValue]:
        return await self._run(self.settings.all)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _account(account_id: str | int) -> str:
    account_id = str(account_id).strip() if account_id is not None else ""
    if not account_id or len(account_id) > 32:
        raise InvalidInput("Invalid account id", {"account_id": account_id})
    return account_id


def _check_replay(state: TransferState, from_id: str, to_id: str, amount: int) -> None:
    if (state.from_id, state.to_id, state.amount) != (from_id, to_id, amount):
        raise InvalidInput(
            f"transfer_id {state.transfer_id} belongs to a different transfer",
            {"transfer_id": state.transfer_id},
        )
