"""In-memory token ledger — reference ValueTransferPort backend.

Models a fungible token with per-holder balances and an allowance each
holder grants to the settlement operator. Settlement transfers can only
spend what the holder has both minted and approved, mirroring the way a
token contract guards transfers made on a holder's behalf.

Used by the CLI and by tests. total_supply is conserved by transfer().
"""

from __future__ import annotations

import logging
from typing import Any, Optional

logger = logging.getLogger(__name__)


class InMemoryTokenLedger:
    """Balances and operator allowances held in memory.

    Usage:
        tokens = InMemoryTokenLedger()
        tokens.mint("alice", 1000)
        tokens.approve("alice", 1000)
        tokens.transfer("alice", "bob", 250)   # True
    """

    def __init__(self, require_allowance: bool = True) -> None:
        self._balances: dict[str, int] = {}
        self._allowances: dict[str, int] = {}
        self._require_allowance = require_allowance

    @property
    def require_allowance(self) -> bool:
        return self._require_allowance

    def mint(self, identity: str, amount: int) -> int:
        """Credit new units to a holder. Returns the new balance."""
        if amount <= 0:
            raise ValueError(f"Mint amount must be positive, got {amount}")
        balance = self._balances.get(identity, 0) + amount
        self._balances[identity] = balance
        logger.debug("minted %d to %s (balance %d)", amount, identity, balance)
        return balance

    def approve(self, owner: str, amount: int) -> None:
        """Set the amount the settlement operator may move from owner."""
        if amount < 0:
            raise ValueError(f"Allowance cannot be negative, got {amount}")
        self._allowances[owner] = amount

    def allowance(self, owner: str) -> int:
        return self._allowances.get(owner, 0)

    def balance_of(self, identity: str) -> int:
        return self._balances.get(identity, 0)

    def transfer(self, from_identity: str, to_identity: str, amount: int) -> bool:
        if amount <= 0:
            return False
        balance = self._balances.get(from_identity, 0)
        if balance < amount:
            logger.warning(
                "transfer refused: %s balance %d < %d", from_identity, balance, amount,
            )
            return False
        if self._require_allowance:
            allowance = self._allowances.get(from_identity, 0)
            if allowance < amount:
                logger.warning(
                    "transfer refused: %s allowance %d < %d",
                    from_identity, allowance, amount,
                )
                return False
            self._allowances[from_identity] = allowance - amount
        self._balances[from_identity] = balance - amount
        self._balances[to_identity] = self._balances.get(to_identity, 0) + amount
        return True

    @property
    def total_supply(self) -> int:
        return sum(self._balances.values())

    def holders(self) -> list[str]:
        return list(self._balances.keys())

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        return {
            "require_allowance": self._require_allowance,
            "balances": dict(self._balances),
            "allowances": dict(self._allowances),
        }

    @classmethod
    def from_dict(
        cls,
        data: dict[str, Any],
        require_allowance: Optional[bool] = None,
    ) -> InMemoryTokenLedger:
        if require_allowance is None:
            require_allowance = bool(data.get("require_allowance", True))
        ledger = cls(require_allowance=require_allowance)
        ledger._balances = {k: int(v) for k, v in data.get("balances", {}).items()}
        ledger._allowances = {k: int(v) for k, v in data.get("allowances", {}).items()}
        return ledger
