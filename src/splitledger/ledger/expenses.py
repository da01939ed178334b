"""Expense ledger — append-only record of debts between participants.

Each entry states that a debtor owes a payer a fixed amount. Entries are
validated at record time against the participant registry and against
the debtor's externally reported balance, then appended and never
modified.

The balance check looks at the debtor's balance at call time only. It
does not reserve or lock funds, so several entries against the same
debtor can each pass even when their sum exceeds what the debtor holds.
Settlement then fails part-way with TransferExecutionFailed.

Rounds:
- Pending entries are the input to the next settlement.
- close_round() archives the pending entries as a SettledRound and
  removes them from the pending list. Given a count, only the oldest
  count entries are archived; anything recorded after a settlement took
  its input stays pending. Entry indices keep increasing across rounds.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable, List, Optional

from splitledger.errors import InsufficientBalance, ParticipantsNotRegistered
from splitledger.models.ledger import ExpenseEntry, SettledRound, require_positive_amount
from splitledger.registry.participants import ParticipantRegistry
from splitledger.settlement.transfer_port import ValueTransferPort


class ExpenseLedger:
    """In-memory ledger of expense entries.

    Usage:
        ledger = ExpenseLedger(registry)
        ref = ledger.record("alice", "bob", 50, port)

        # For settlement:
        entries = ledger.all()
        ledger.close_round()
    """

    def __init__(self, registry: ParticipantRegistry) -> None:
        self._registry = registry
        self._entries: List[ExpenseEntry] = []
        self._rounds: List[SettledRound] = []
        self._next_index = 0

    def record(
        self,
        debtor: str,
        payer: str,
        amount: int,
        port: ValueTransferPort,
    ) -> int:
        """Validate and append an expense entry. Returns its index.

        Checks run in order and all precede the append:
        1. amount is a positive integer (ValueError).
        2. debtor and payer are registered (ParticipantsNotRegistered).
        3. debtor's reported balance covers amount (InsufficientBalance).
        """
        require_positive_amount(amount)

        debtor_p = self._registry.lookup(debtor)
        payer_p = self._registry.lookup(payer)
        if debtor_p is None or payer_p is None:
            missing = [
                ident for ident, p in ((debtor, debtor_p), (payer, payer_p))
                if p is None
            ]
            raise ParticipantsNotRegistered(
                "Expense references unregistered participants",
                details={"missing": ",".join(missing)},
            )

        balance = port.balance_of(debtor_p.identity)
        if balance < amount:
            raise InsufficientBalance(
                "Balance of debtor is less than the debit",
                details={
                    "debtor": debtor_p.identity,
                    "balance": balance,
                    "amount": amount,
                },
            )

        entry = ExpenseEntry(
            index=self._next_index,
            debtor=debtor_p.identity,
            payer=payer_p.identity,
            amount=amount,
        )
        self._entries.append(entry)
        self._next_index += 1
        return entry.index

    def all(self) -> List[ExpenseEntry]:
        """Return pending entries in append order."""
        return list(self._entries)

    def get(self, index: int) -> Optional[ExpenseEntry]:
        """Find a pending or settled entry by its index."""
        for entry in self._entries:
            if entry.index == index:
                return entry
        for settled in self._rounds:
            for entry in settled.entries:
                if entry.index == index:
                    return entry
        return None

    @property
    def count(self) -> int:
        return len(self._entries)

    def total_amount(self) -> int:
        """Sum of all pending entry amounts (self-loops included)."""
        return sum(e.amount for e in self._entries)

    def close_round(
        self,
        count: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> SettledRound:
        """Archive the oldest count pending entries (all when None) as a round."""
        if count is None:
            count = len(self._entries)
        if count < 0 or count > len(self._entries):
            raise ValueError(
                f"Cannot close a round of {count} entries; {len(self._entries)} pending"
            )
        if now is None:
            now = datetime.now(timezone.utc)
        settled = SettledRound(
            round_number=len(self._rounds) + 1,
            entries=tuple(self._entries[:count]),
            closed_utc=now,
        )
        self._rounds.append(settled)
        self._entries = self._entries[count:]
        return settled

    def settled_rounds(self) -> List[SettledRound]:
        return list(self._rounds)

    @property
    def next_index(self) -> int:
        return self._next_index

    def restore(
        self,
        entries: Iterable[ExpenseEntry],
        rounds: Iterable[SettledRound] = (),
        next_index: Optional[int] = None,
    ) -> None:
        """Load persisted entries and rounds into an empty ledger."""
        if self._entries or self._rounds:
            raise ValueError("Cannot restore into a non-empty ledger")
        self._entries = list(entries)
        self._rounds = list(rounds)
        seen = [e.index for e in self._entries]
        seen.extend(e.index for r in self._rounds for e in r.entries)
        floor = max(seen) + 1 if seen else 0
        self._next_index = max(floor, next_index or 0)
