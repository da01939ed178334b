"""State store — JSON snapshot of registry, ledger and account balances.

The event log is the audit trail; the state store is what a fresh
process loads to carry on where the last one stopped. One JSON document
holds three sections (participants, ledger, accounts), each written by
its own save_* method. Writes go to a temp file that is then renamed
over the document, so a crash mid-write leaves the previous state intact.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Optional

from splitledger.ledger.expenses import ExpenseLedger
from splitledger.models.ledger import ExpenseEntry, Participant, SettledRound
from splitledger.registry.participants import ParticipantRegistry
from splitledger.settlement.token_ledger import InMemoryTokenLedger

STATE_VERSION = 1


def _participants_section(registry: ParticipantRegistry) -> list[dict[str, Any]]:
    return [p.to_dict() for p in registry.all()]


def _ledger_section(ledger: ExpenseLedger) -> dict[str, Any]:
    return {
        "next_index": ledger.next_index,
        "entries": [e.to_dict() for e in ledger.all()],
        "rounds": [r.to_dict() for r in ledger.settled_rounds()],
    }


class StateStore:
    """File-backed store for tracker state.

    Usage:
        store = StateStore(data_dir / "state.json")
        store.save_participants(registry)
        store.save_ledger(ledger)

        registry = store.load_participants()
        ledger = store.load_ledger(registry)
    """

    def __init__(self, storage_path: Path) -> None:
        self._storage_path = Path(storage_path)

    @property
    def storage_path(self) -> Path:
        return self._storage_path

    # ------------------------------------------------------------------
    # Save
    # ------------------------------------------------------------------

    def save_all(
        self,
        registry: ParticipantRegistry,
        ledger: ExpenseLedger,
        tokens: Optional[InMemoryTokenLedger] = None,
    ) -> None:
        """Write every section in a single replace of the document."""
        doc = self._read()
        doc["participants"] = _participants_section(registry)
        doc["ledger"] = _ledger_section(ledger)
        if tokens is not None:
            doc["accounts"] = tokens.to_dict()
        self._write(doc)

    def save_participants(self, registry: ParticipantRegistry) -> None:
        doc = self._read()
        doc["participants"] = _participants_section(registry)
        self._write(doc)

    def save_ledger(self, ledger: ExpenseLedger) -> None:
        doc = self._read()
        doc["ledger"] = _ledger_section(ledger)
        self._write(doc)

    def save_accounts(self, tokens: InMemoryTokenLedger) -> None:
        doc = self._read()
        doc["accounts"] = tokens.to_dict()
        self._write(doc)

    # ------------------------------------------------------------------
    # Load
    # ------------------------------------------------------------------

    def load_participants(self) -> ParticipantRegistry:
        registry = ParticipantRegistry()
        data = self._read().get("participants", [])
        registry.restore(Participant.from_dict(p) for p in data)
        return registry

    def load_ledger(self, registry: ParticipantRegistry) -> ExpenseLedger:
        ledger = ExpenseLedger(registry)
        data = self._read().get("ledger")
        if data:
            ledger.restore(
                entries=[ExpenseEntry.from_dict(e) for e in data.get("entries", [])],
                rounds=[SettledRound.from_dict(r) for r in data.get("rounds", [])],
                next_index=data.get("next_index"),
            )
        return ledger

    def load_accounts(
        self, require_allowance: Optional[bool] = None,
    ) -> InMemoryTokenLedger:
        data = self._read().get("accounts")
        if not data:
            return InMemoryTokenLedger(
                require_allowance=True if require_allowance is None else require_allowance,
            )
        return InMemoryTokenLedger.from_dict(data, require_allowance=require_allowance)

    # ------------------------------------------------------------------
    # File helpers
    # ------------------------------------------------------------------

    def _read(self) -> dict[str, Any]:
        if not self._storage_path.exists():
            return {"version": STATE_VERSION}
        doc = json.loads(self._storage_path.read_text(encoding="utf-8"))
        version = doc.get("version")
        if version != STATE_VERSION:
            raise ValueError(
                f"Unsupported state version {version!r} in {self._storage_path}"
            )
        return doc

    def _write(self, doc: dict[str, Any]) -> None:
        self._storage_path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = self._storage_path.with_suffix(".tmp")
        with temp_path.open("w", encoding="utf-8") as f:
            json.dump(doc, f, indent=2, sort_keys=True, ensure_ascii=False)
            f.flush()
            os.fsync(f.fileno())
        os.replace(temp_path, self._storage_path)
