"""Core data models for SplitLedger."""

from splitledger.models.ledger import (
    CalculationFinished,
    ExpenseEntry,
    NotificationKind,
    Participant,
    ParticipantView,
    SettledRound,
    TrackerSnapshot,
    TransactionNotification,
    TransferLeg,
    TransferPlan,
)

__all__ = [
    "CalculationFinished",
    "ExpenseEntry",
    "NotificationKind",
    "Participant",
    "ParticipantView",
    "SettledRound",
    "TrackerSnapshot",
    "TransactionNotification",
    "TransferLeg",
    "TransferPlan",
]
