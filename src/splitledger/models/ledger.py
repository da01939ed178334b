"""Ledger models — participants, expense entries, transfer plans, notifications.

All amounts are integers in the base unit of the value-holding account.
No floats in finance.

Invariants enforced by these models:
- Participant ordinals start at 1 and are never reused
- Expense entries and transfer legs carry strictly positive amounts
- A transfer plan's legs are replayed in order, never reordered
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional


def require_positive_amount(amount: Any) -> None:
    # bool is an int subclass; True is not a valid amount
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise ValueError(f"Amount must be an integer, got {type(amount).__name__}")
    if amount <= 0:
        raise ValueError(f"Amount must be positive, got {amount}")


@dataclass(frozen=True)
class Participant:
    """A registered participant. Identity and name are fixed after creation."""
    ordinal: int
    identity: str
    display_name: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "ordinal": self.ordinal,
            "identity": self.identity,
            "display_name": self.display_name,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Participant:
        return cls(
            ordinal=int(data["ordinal"]),
            identity=data["identity"],
            display_name=data["display_name"],
        )


@dataclass(frozen=True)
class ExpenseEntry:
    """A recorded debt: debtor owes payer a fixed amount.

    index is the entry reference returned at record time. It keeps
    increasing across settlement rounds.
    """
    index: int
    debtor: str
    payer: str
    amount: int

    def __post_init__(self) -> None:
        require_positive_amount(self.amount)

    @property
    def is_self_loop(self) -> bool:
        return self.debtor == self.payer

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "debtor": self.debtor,
            "payer": self.payer,
            "amount": self.amount,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ExpenseEntry:
        return cls(
            index=int(data["index"]),
            debtor=data["debtor"],
            payer=data["payer"],
            amount=int(data["amount"]),
        )


@dataclass(frozen=True)
class SettledRound:
    """Entries that were netted and paid out by one successful settlement."""
    round_number: int
    entries: tuple[ExpenseEntry, ...]
    closed_utc: Optional[datetime] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "round_number": self.round_number,
            "entries": [e.to_dict() for e in self.entries],
            "closed_utc": self.closed_utc.isoformat() if self.closed_utc else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SettledRound:
        closed = data.get("closed_utc")
        return cls(
            round_number=int(data["round_number"]),
            entries=tuple(ExpenseEntry.from_dict(e) for e in data["entries"]),
            closed_utc=datetime.fromisoformat(closed) if closed else None,
        )


@dataclass(frozen=True)
class TransferLeg:
    """One debtor → creditor instruction within a transfer plan."""
    from_identity: str
    to_identity: str
    amount: int

    def __post_init__(self) -> None:
        require_positive_amount(self.amount)

    def to_dict(self) -> dict[str, Any]:
        return {
            "from": self.from_identity,
            "to": self.to_identity,
            "amount": self.amount,
        }


@dataclass(frozen=True)
class TransferPlan:
    """Ordered legs produced by one settlement run.

    complete is False only for a dry-run that was never executed;
    an executed plan that failed part-way is reported through
    TransferExecutionFailed instead.
    """
    legs: tuple[TransferLeg, ...] = ()
    complete: bool = True

    def __len__(self) -> int:
        return len(self.legs)

    def __iter__(self):
        return iter(self.legs)

    @property
    def total_transferred(self) -> int:
        return sum(leg.amount for leg in self.legs)

    def to_list(self) -> list[dict[str, Any]]:
        return [leg.to_dict() for leg in self.legs]


class NotificationKind(str, enum.Enum):
    """Notifications emitted by a settlement run."""
    TRANSACTION = "Transaction"
    CALCULATION_FINISHED = "CalculationFinished"


@dataclass(frozen=True)
class TransactionNotification:
    """Emitted once per executed settlement leg."""
    from_identity: str
    to_identity: str
    amount: int
    kind: NotificationKind = field(default=NotificationKind.TRANSACTION, init=False)

    def to_dict(self) -> dict[str, Any]:
        return {"from": self.from_identity, "to": self.to_identity, "amount": self.amount}


@dataclass(frozen=True)
class CalculationFinished:
    """Emitted once after every balance has been driven to zero."""
    leg_count: int
    total_transferred: int
    kind: NotificationKind = field(
        default=NotificationKind.CALCULATION_FINISHED, init=False,
    )

    def to_dict(self) -> dict[str, Any]:
        return {"leg_count": self.leg_count, "total_transferred": self.total_transferred}


@dataclass(frozen=True)
class ParticipantView:
    """Snapshot row for one participant. balance is the external balance."""
    ordinal: int
    identity: str
    display_name: str
    balance: int


@dataclass(frozen=True)
class TrackerSnapshot:
    """Read-only view of the tracker.

    participants are in registration order and entries in record order.
    """
    participant_count: int
    participants: tuple[ParticipantView, ...]
    entries: tuple[ExpenseEntry, ...]

    def to_dict(self) -> dict[str, Any]:
        return {
            "participant_count": self.participant_count,
            "participants": [
                {
                    "ordinal": p.ordinal,
                    "identity": p.identity,
                    "display_name": p.display_name,
                    "balance": p.balance,
                }
                for p in self.participants
            ],
            "entries": [
                {"debtor": e.debtor, "payer": e.payer, "amount": e.amount}
                for e in self.entries
            ],
        }
