"""Value transfer port — the contract the core needs from an account ledger.

The tracker never holds funds. Balances live in an external ledger that
can report a participant's available balance and move value between two
participants on the settlement operator's behalf. The expense ledger and
the settlement engine interact with that ledger only through this
interface.

Adding a new backend = implement this Protocol. Zero changes to the
registry, the expense ledger or the settlement engine.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class ValueTransferPort(Protocol):
    """Abstract contract for value-holding account backends."""

    def balance_of(self, identity: str) -> int:
        """Current available balance for a participant (0 if unknown)."""
        ...

    def transfer(self, from_identity: str, to_identity: str, amount: int) -> bool:
        """Move amount from one participant to another.

        Returns True on success and False if the sender lacks sufficient
        authorised balance. A False return must leave both accounts
        untouched.
        """
        ...
