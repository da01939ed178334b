"""Participant registry — the set of known participants and their ordinals.

The registry is the source of truth for who may appear in an expense.
Ordinals are assigned at registration time, start at 1, strictly
increase and are never reused. There is no removal or rename operation:
an identity is permanent once registered.

Invariants enforced:
- An identity can be registered at most once.
- Ordinal order equals registration order.
"""

from __future__ import annotations

from typing import Iterable, Iterator, Optional

from splitledger.errors import DuplicateParticipant
from splitledger.models.ledger import Participant


class ParticipantRegistry:
    """Registry of all participants in a tracker.

    Thread-safety: this class is not thread-safe. The caller must
    synchronise access if used from multiple threads.
    """

    def __init__(self) -> None:
        self._participants: dict[str, Participant] = {}
        self._next_ordinal = 1

    def register(self, identity: str, display_name: str) -> int:
        """Register a new participant and return its ordinal.

        Raises:
            ValueError: identity is blank.
            DuplicateParticipant: identity is already registered.
        """
        canonical_id = identity.strip()
        if not canonical_id:
            raise ValueError("Cannot register participant with blank identity")
        if canonical_id in self._participants:
            existing = self._participants[canonical_id]
            raise DuplicateParticipant(
                f"Participant already registered: {canonical_id}",
                details={"ordinal": existing.ordinal},
            )
        participant = Participant(
            ordinal=self._next_ordinal,
            identity=canonical_id,
            display_name=display_name,
        )
        self._participants[canonical_id] = participant
        self._next_ordinal += 1
        return participant.ordinal

    def restore(self, participants: Iterable[Participant]) -> None:
        """Load previously persisted participants into an empty registry."""
        if self._participants:
            raise ValueError("Cannot restore into a non-empty registry")
        ordered = sorted(participants, key=lambda p: p.ordinal)
        for p in ordered:
            if p.identity in self._participants:
                raise DuplicateParticipant(
                    f"Duplicate participant in persisted state: {p.identity}",
                )
            self._participants[p.identity] = p
        if ordered:
            self._next_ordinal = ordered[-1].ordinal + 1

    def lookup(self, identity: str) -> Optional[Participant]:
        """Look up a participant by identity."""
        return self._participants.get(identity.strip())

    def ordinal_of(self, identity: str) -> int:
        participant = self.lookup(identity)
        if participant is None:
            raise KeyError(identity)
        return participant.ordinal

    def all(self) -> list[Participant]:
        """Return all participants in ordinal order."""
        # dict preserves insertion order and ordinals are assigned in that order
        return list(self._participants.values())

    def identities(self) -> list[str]:
        return list(self._participants.keys())

    @property
    def count(self) -> int:
        return len(self._participants)

    @property
    def next_ordinal(self) -> int:
        return self._next_ordinal

    def __contains__(self, identity: object) -> bool:
        return isinstance(identity, str) and identity.strip() in self._participants

    def __iter__(self) -> Iterator[Participant]:
        return iter(self.all())

    def __len__(self) -> int:
        return self.count
