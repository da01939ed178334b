"""SplitLedger — expense tracking with multilateral debt settlement.

Participants record who owes whom; a settlement round nets every debt
into per-participant balances and pays them off with at most N - 1
point-to-point transfers through an external account ledger.
"""

__version__ = "0.1.0"

from splitledger.errors import (
    DuplicateParticipant,
    InsufficientBalance,
    ParticipantsNotRegistered,
    SettlementError,
    SplitLedgerError,
    TransferExecutionFailed,
)
from splitledger.ledger.expenses import ExpenseLedger
from splitledger.registry.participants import ParticipantRegistry
from splitledger.settlement.engine import SettlementEngine
from splitledger.settlement.token_ledger import InMemoryTokenLedger
from splitledger.settlement.transfer_port import ValueTransferPort

__all__ = [
    "DuplicateParticipant",
    "ExpenseLedger",
    "InMemoryTokenLedger",
    "InsufficientBalance",
    "ParticipantRegistry",
    "ParticipantsNotRegistered",
    "SettlementEngine",
    "SettlementError",
    "SplitLedgerError",
    "TransferExecutionFailed",
    "ValueTransferPort",
]
