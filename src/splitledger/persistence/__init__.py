"""Persistence — hash-chained audit log and JSON state store."""

from splitledger.persistence.event_log import AuditRecord, EventKind, EventLog
from splitledger.persistence.state_store import StateStore

__all__ = ["AuditRecord", "EventKind", "EventLog", "StateStore"]
