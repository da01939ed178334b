"""Expense ledger."""

from splitledger.ledger.expenses import ExpenseLedger

__all__ = ["ExpenseLedger"]
