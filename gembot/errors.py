"""
gembot.errors — Ledger Error Taxonomy
======================================

Every failure the ledger reports is a :class:`LedgerError` carrying a stable
``code``, a human-readable ``message`` and a ``details`` dict with the
numbers a caller needs to render a helpful reply (amount requested, amount
available, remaining allowance).

``retryable`` tells callers whether repeating the whole operation is safe:
only :class:`StorageUnavailable` is, because nothing is committed when it
is raised.
"""

from __future__ import annotations

from typing import Any


class LedgerError(Exception):
    """Base class for all ledger failures."""

    code: str = "LEDGER_ERROR"
    retryable: bool = False

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}


class InvalidInput(LedgerError):
    """Malformed amount, empty reason, unknown source/type/setting."""

    code = "INVALID_INPUT"


class SameAccount(InvalidInput):
    """A transfer whose sender and recipient are the same account."""

    code = "SAME_ACCOUNT"

    def __init__(self, account_id: str) -> None:
        super().__init__(
            "Cannot transfer GEMS to yourself.",
            {"account_id": account_id},
        )


class InsufficientFunds(LedgerError):
    """The account balance is lower than the requested debit."""

    code = "INSUFFICIENT_FUNDS"

    def __init__(self, account_id: str, requested: int, available: int) -> None:
        self.account_id = account_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient balance. Current: {available}, Required: {requested}",
            {"account_id": account_id, "requested": requested, "available": available},
        )


class DailyLimitExceeded(LedgerError):
    """Crediting *requested* would push today's earnings over the cap."""

    code = "DAILY_LIMIT_EXCEEDED"

    def __init__(
        self, account_id: str, requested: int, earned_today: int, daily_max: int,
    ) -> None:
        self.account_id = account_id
        self.requested = requested
        self.earned_today = earned_today
        self.daily_max = daily_max
        self.remaining = max(0, daily_max - earned_today)
        super().__init__(
            f"Daily limit of {daily_max} GEMS exceeded. "
            f"Already earned: {earned_today}, Remaining: {self.remaining}",
            {
                "account_id": account_id,
                "requested": requested,
                "earned_today": earned_today,
                "remaining": self.remaining,
                "daily_max": daily_max,
            },
        )


class TransferLimitExceeded(LedgerError):
    """Transfer amount outside [min, max] or over the sender's daily tip cap."""

    code = "TRANSFER_LIMIT_EXCEEDED"

    def __init__(
        self,
        account_id: str,
        requested: int,
        message: str,
        *,
        min_amount: int,
        max_amount: int,
        daily_max: int,
        transferred_today: int = 0,
    ) -> None:
        self.account_id = account_id
        self.requested = requested
        self.remaining = max(0, daily_max - transferred_today)
        super().__init__(
            message,
            {
                "account_id": account_id,
                "requested": requested,
                "min_amount": min_amount,
                "max_amount": max_amount,
                "daily_max": daily_max,
                "transferred_today": transferred_today,
                "remaining": self.remaining,
            },
        )


class StorageUnavailable(LedgerError):
    """The database did not answer in time or the connection failed.

    Nothing was committed; the whole operation may be retried.
    """

    code = "STORAGE_UNAVAILABLE"
    retryable = True

    def __init__(self, message: str = "Storage is temporarily unavailable.",
                 details: dict[str, Any] | None = None) -> None:
        super().__init__(message, details)


class PartialTransferFailure(LedgerError):
    """The sender was debited but neither the credit nor the reversal landed.

    Must be escalated for reconciliation; the ``transfer_id`` can be handed
    to :meth:`LedgerService.complete_transfer` once storage recovers.
    """

    code = "PARTIAL_TRANSFER_FAILURE"

    def __init__(
        self, transfer_id: str, from_id: str, to_id: str, amount: int, cause: str,
    ) -> None:
        self.transfer_id = transfer_id
        super().__init__(
            f"Transfer {transfer_id} debited {from_id} but could not credit "
            f"{to_id} or refund the sender: {cause}",
            {
                "transfer_id": transfer_id,
                "from_id": from_id,
                "to_id": to_id,
                "amount": amount,
                "cause": cause,
            },
        )
