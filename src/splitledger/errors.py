"""SplitLedger exception hierarchy.

Components raise these; the service facade converts them into
ServiceResult failures carrying the exception class name as error_code.
Every precondition error is raised before any state is touched.
"""

from __future__ import annotations

from typing import Any, Optional


class SplitLedgerError(Exception):
    """Base exception for all SplitLedger errors."""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    @property
    def code(self) -> str:
        return type(self).__name__

    def __str__(self) -> str:
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({details_str})"
        return self.message


class DuplicateParticipant(SplitLedgerError):
    """Raised when registering an identity that is already known."""


class ParticipantsNotRegistered(SplitLedgerError):
    """Raised when an expense references an unregistered identity."""


class InsufficientBalance(SplitLedgerError):
    """Raised when the debtor's reported balance is below the expense amount."""


class SettlementError(SplitLedgerError):
    """Raised when a settlement round cannot run to completion."""


class TransferExecutionFailed(SettlementError):
    """Raised when the external transfer for a settlement leg fails.

    Legs in executed_legs were already applied by the transfer port and
    are not rolled back. failed_leg is the leg that was refused.
    """

    def __init__(
        self,
        message: str,
        executed_legs: tuple = (),
        failed_leg: Optional[object] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, details)
        self.executed_legs = tuple(executed_legs)
        self.failed_leg = failed_leg
