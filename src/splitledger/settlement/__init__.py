"""Settlement subsystem — netting engine, selection strategies, transfer port.

The engine depends on the value-holding ledger only through the
ValueTransferPort Protocol. InMemoryTokenLedger is the bundled backend.
"""

from splitledger.settlement.engine import SettlementEngine
from splitledger.settlement.selection import HeapSelector, LinearSelector
from splitledger.settlement.token_ledger import InMemoryTokenLedger
from splitledger.settlement.transfer_port import ValueTransferPort

__all__ = [
    "HeapSelector",
    "InMemoryTokenLedger",
    "LinearSelector",
    "SettlementEngine",
    "ValueTransferPort",
]
