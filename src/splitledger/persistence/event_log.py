"""Audit log — hash-chained JSONL record of everything a tracker did.

One line per AuditRecord. A record's digest covers its own fields plus the
digest of the record before it, so editing, dropping or reordering any
line breaks the chain from that point on. Reopening a log file walks the
whole chain and refuses to load a broken one.

The log is where Transaction and CalculationFinished notifications are
delivered durably, and what an operator reconciles against the external
account ledger.
"""

from __future__ import annotations

import enum
import hashlib
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping, Optional

CHAIN_ROOT = "sha256:" + "0" * 64

# payload keys that name a participant
_IDENTITY_KEYS = ("identity", "debtor", "payer", "from", "to")


class EventKind(str, enum.Enum):
    """What an audit record is about."""
    PARTICIPANT_REGISTERED = "participant_registered"
    EXPENSE_RECORDED = "expense_recorded"
    TRANSACTION = "transaction"
    CALCULATION_FINISHED = "calculation_finished"
    SETTLEMENT_FAILED = "settlement_failed"
    ROUND_CLOSED = "round_closed"
    ACCOUNT_MINTED = "account_minted"
    ALLOWANCE_APPROVED = "allowance_approved"


def _digest(body: Mapping[str, Any]) -> str:
    blob = json.dumps(body, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return "sha256:" + hashlib.sha256(blob.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class AuditRecord:
    """One link in the audit chain."""
    seq: int
    event_id: str
    kind: EventKind
    recorded_utc: str
    subject: str
    payload: dict[str, Any]
    prev_digest: str
    digest: str

    def body(self) -> dict[str, Any]:
        """The fields covered by digest."""
        return {
            "seq": self.seq,
            "event_id": self.event_id,
            "kind": self.kind.value,
            "recorded_utc": self.recorded_utc,
            "subject": self.subject,
            "payload": self.payload,
            "prev_digest": self.prev_digest,
        }

    def to_dict(self) -> dict[str, Any]:
        return {**self.body(), "digest": self.digest}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> AuditRecord:
        return cls(
            seq=int(data["seq"]),
            event_id=data["event_id"],
            kind=EventKind(data["kind"]),
            recorded_utc=data["recorded_utc"],
            subject=data["subject"],
            payload=dict(data["payload"]),
            prev_digest=data["prev_digest"],
            digest=data["digest"],
        )

    def involves(self, identity: str) -> bool:
        if self.subject == identity:
            return True
        return any(self.payload.get(key) == identity for key in _IDENTITY_KEYS)


class EventLog:
    """Append-only audit chain, optionally mirrored to a JSONL file.

    Usage:
        log = EventLog(data_dir / "events.jsonl")
        log.record("EVT-00000001", EventKind.EXPENSE_RECORDED, "0xA1",
                   {"debtor": "0xA1", "payer": "0xB2", "amount": 33})
        log.events(EventKind.TRANSACTION)
        log.involving("0xB2")
    """

    def __init__(self, storage_path: Optional[Path] = None) -> None:
        self._records: list[AuditRecord] = []
        self._event_ids: set[str] = set()
        self._storage_path = Path(storage_path) if storage_path is not None else None

        if self._storage_path is not None and self._storage_path.exists():
            self._replay(self._storage_path)

    @property
    def count(self) -> int:
        return len(self._records)

    @property
    def head_digest(self) -> str:
        return self._records[-1].digest if self._records else CHAIN_ROOT

    def record(
        self,
        event_id: str,
        kind: EventKind,
        subject: str,
        payload: Mapping[str, Any],
        now: Optional[datetime] = None,
    ) -> AuditRecord:
        """Chain a new record onto the log and return it.

        Raises ValueError on a reused event_id. The file line is written
        before the record becomes visible in memory.
        """
        if event_id in self._event_ids:
            raise ValueError(f"Duplicate event ID: {event_id}")
        stamp = (now or datetime.now(timezone.utc)).strftime("%Y-%m-%dT%H:%M:%SZ")
        body = {
            "seq": len(self._records) + 1,
            "event_id": event_id,
            "kind": kind.value,
            "recorded_utc": stamp,
            "subject": subject,
            "payload": dict(payload),
            "prev_digest": self.head_digest,
        }
        entry = AuditRecord.from_dict({**body, "digest": _digest(body)})

        if self._storage_path is not None:
            self._write_line(entry)
        self._records.append(entry)
        self._event_ids.add(event_id)
        return entry

    def events(self, kind: Optional[EventKind] = None) -> list[AuditRecord]:
        if kind is None:
            return list(self._records)
        return [r for r in self._records if r.kind == kind]

    def involving(self, identity: str) -> list[AuditRecord]:
        """Records whose subject or payload names identity."""
        return [r for r in self._records if r.involves(identity)]

    def verify(self) -> None:
        """Walk the chain; raise ValueError at the first broken link."""
        prev = CHAIN_ROOT
        for position, entry in enumerate(self._records, 1):
            if entry.seq != position:
                raise ValueError(
                    f"Audit chain out of order at record {position}: seq {entry.seq}"
                )
            if entry.prev_digest != prev:
                raise ValueError(
                    f"Audit chain broken at record {position} ({entry.event_id}): "
                    f"expected previous digest {prev}"
                )
            computed = _digest(entry.body())
            if entry.digest != computed:
                raise ValueError(
                    f"Audit record {position} ({entry.event_id}) was altered: "
                    f"stored {entry.digest} != computed {computed}"
                )
            prev = entry.digest

    def _write_line(self, entry: AuditRecord) -> None:
        self._storage_path.parent.mkdir(parents=True, exist_ok=True)
        with self._storage_path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(entry.to_dict(), sort_keys=True, ensure_ascii=False) + "\n")

    def _replay(self, path: Path) -> None:
        with path.open("r", encoding="utf-8") as f:
            for line_num, line in enumerate(f, 1):
                if not line.strip():
                    continue
                entry = AuditRecord.from_dict(json.loads(line))
                if entry.event_id in self._event_ids:
                    raise ValueError(
                        f"{path}:{line_num}: duplicate event ID {entry.event_id}"
                    )
                self._records.append(entry)
                self._event_ids.add(entry.event_id)
        self.verify()
