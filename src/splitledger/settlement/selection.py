"""Creditor / debtor selection for the settlement loop.

Each round of the settlement loop needs the participant with the greatest
positive net balance and the participant with the most negative one.
Ties on either side go to the smallest ordinal.

Two interchangeable strategies:
- LinearSelector: scans every balance each round. O(n) per round.
- HeapSelector: two priority queues keyed by (balance, ordinal).
  O(log n) per round.

Both produce identical creditor/debtor sequences for the same input.
"""

from __future__ import annotations

import heapq
from typing import Mapping, Optional, Protocol


class BalanceSelector(Protocol):
    """Tracks net balances and yields the next creditor/debtor pair."""

    def next_pair(self) -> Optional[tuple[str, str]]:
        """Return (creditor, debtor) or None once every balance is zero."""
        ...

    def balance(self, identity: str) -> int:
        ...

    def settle(self, creditor: str, debtor: str, amount: int) -> None:
        """Apply a leg: creditor balance falls, debtor balance rises."""
        ...


class LinearSelector:
    """Full scan of all balances on every round."""

    def __init__(self, balances: Mapping[str, int], ordinals: Mapping[str, int]) -> None:
        self._balances = dict(balances)
        self._ordinals = dict(ordinals)
        # scan in ordinal order so the first strict maximum wins ties
        self._order = sorted(self._balances, key=lambda i: self._ordinals[i])

    def next_pair(self) -> Optional[tuple[str, str]]:
        creditor: Optional[str] = None
        debtor: Optional[str] = None
        for identity in self._order:
            value = self._balances[identity]
            if value > 0 and (creditor is None or value > self._balances[creditor]):
                creditor = identity
            elif value < 0 and (debtor is None or value < self._balances[debtor]):
                debtor = identity
        if creditor is None and debtor is None:
            return None
        if creditor is None or debtor is None:
            raise RuntimeError("Net balances are not conserved")
        return creditor, debtor

    def balance(self, identity: str) -> int:
        return self._balances[identity]

    def settle(self, creditor: str, debtor: str, amount: int) -> None:
        self._balances[creditor] -= amount
        self._balances[debtor] += amount


class HeapSelector:
    """Max-creditor and max-debtor priority queues.

    Only the two participants touched by a leg change balance, and both
    are popped before the leg is applied, so the heaps never hold stale
    entries.
    """

    def __init__(self, balances: Mapping[str, int], ordinals: Mapping[str, int]) -> None:
        self._balances = dict(balances)
        self._ordinals = dict(ordinals)
        self._creditors: list[tuple[int, int, str]] = []
        self._debtors: list[tuple[int, int, str]] = []
        self._pending: Optional[tuple[str, str]] = None
        for identity in self._balances:
            self._push(identity)

    def _push(self, identity: str) -> None:
        value = self._balances[identity]
        ordinal = self._ordinals[identity]
        if value > 0:
            heapq.heappush(self._creditors, (-value, ordinal, identity))
        elif value < 0:
            heapq.heappush(self._debtors, (value, ordinal, identity))

    def next_pair(self) -> Optional[tuple[str, str]]:
        if self._pending is not None:
            return self._pending
        if not self._creditors and not self._debtors:
            return None
        if not self._creditors or not self._debtors:
            raise RuntimeError("Net balances are not conserved")
        _, _, creditor = heapq.heappop(self._creditors)
        _, _, debtor = heapq.heappop(self._debtors)
        self._pending = (creditor, debtor)
        return self._pending

    def balance(self, identity: str) -> int:
        return self._balances[identity]

    def settle(self, creditor: str, debtor: str, amount: int) -> None:
        if self._pending != (creditor, debtor):
            raise RuntimeError(
                f"settle() must follow next_pair(): expected {self._pending}, "
                f"got {(creditor, debtor)}",
            )
        self._balances[creditor] -= amount
        self._balances[debtor] += amount
        self._pending = None
        self._push(creditor)
        self._push(debtor)


SELECTION_STRATEGIES = {
    "linear": LinearSelector,
    "heap": HeapSelector,
}


def make_selector(
    strategy: str,
    balances: Mapping[str, int],
    ordinals: Mapping[str, int],
) -> BalanceSelector:
    """Build a selector by strategy name ("linear" or "heap")."""
    try:
        cls = SELECTION_STRATEGIES[strategy]
    except KeyError:
        raise ValueError(
            f"Unknown selection strategy: {strategy!r} "
            f"(expected one of {sorted(SELECTION_STRATEGIES)})"
        ) from None
    return cls(balances, ordinals)
