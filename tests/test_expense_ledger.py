"""Tests for expense ledger — proves record-time validation and round archiving."""

import pytest
from datetime import datetime, timezone

from splitledger.errors import InsufficientBalance, ParticipantsNotRegistered
from splitledger.ledger.expenses import ExpenseLedger
from splitledger.models.ledger import ExpenseEntry
from splitledger.registry.participants import ParticipantRegistry
from splitledger.settlement.token_ledger import InMemoryTokenLedger


def _now() -> datetime:
    return datetime(2026, 2, 16, 12, 0, 0, tzinfo=timezone.utc)


def _make_ledger(*identities: str) -> tuple[ExpenseLedger, InMemoryTokenLedger]:
    registry = ParticipantRegistry()
    for ident in identities:
        registry.register(ident, ident.upper())
    return ExpenseLedger(registry), InMemoryTokenLedger()


class TestRecordValidation:
    def test_unregistered_debtor_and_payer(self) -> None:
        ledger, tokens = _make_ledger()
        with pytest.raises(ParticipantsNotRegistered):
            ledger.record("p1", "p2", 1, tokens)
        assert ledger.count == 0

    def test_unregistered_payer(self) -> None:
        ledger, tokens = _make_ledger("p1")
        tokens.mint("p1", 100)
        with pytest.raises(ParticipantsNotRegistered) as exc:
            ledger.record("p1", "p2", 1, tokens)
        assert exc.value.details["missing"] == "p2"
        assert ledger.count == 0

    def test_unregistered_debtor(self) -> None:
        ledger, tokens = _make_ledger("p2")
        tokens.mint("p1", 100)
        with pytest.raises(ParticipantsNotRegistered) as exc:
            ledger.record("p1", "p2", 1, tokens)
        assert exc.value.details["missing"] == "p1"
        assert ledger.count == 0

    def test_insufficient_balance(self) -> None:
        ledger, tokens = _make_ledger("p1", "p2")
        assert tokens.balance_of("p1") == 0
        with pytest.raises(InsufficientBalance):
            ledger.record("p1", "p2", 1, tokens)
        assert ledger.count == 0

    def test_balance_equal_to_amount_passes(self) -> None:
        ledger, tokens = _make_ledger("p1", "p2")
        tokens.mint("p1", 50)
        assert ledger.record("p1", "p2", 50, tokens) == 0

    def test_only_debtor_balance_is_checked(self) -> None:
        ledger, tokens = _make_ledger("p1", "p2")
        tokens.mint("p1", 10)
        # payer holds nothing; that is irrelevant
        ledger.record("p1", "p2", 10, tokens)
        assert ledger.count == 1

    @pytest.mark.parametrize("amount", [0, -5, 1.5, True, "10"])
    def test_invalid_amount_rejected(self, amount) -> None:
        ledger, tokens = _make_ledger("p1", "p2")
        tokens.mint("p1", 100)
        with pytest.raises(ValueError):
            ledger.record("p1", "p2", amount, tokens)
        assert ledger.count == 0

    def test_no_reservation_across_entries(self) -> None:
        """Each entry is checked alone; their sum may exceed the balance."""
        ledger, tokens = _make_ledger("p1", "p2")
        tokens.mint("p1", 100)
        ledger.record("p1", "p2", 80, tokens)
        ledger.record("p1", "p2", 80, tokens)
        assert ledger.total_amount() == 160


class TestRecording:
    def test_saves_the_expense(self) -> None:
        ledger, tokens = _make_ledger("p1", "p2")
        tokens.mint("p1", 100)
        ref = ledger.record("p1", "p2", 50, tokens)
        assert ledger.all() == [ExpenseEntry(index=ref, debtor="p1", payer="p2", amount=50)]

    def test_append_order_preserved(self) -> None:
        ledger, tokens = _make_ledger("p1", "p2", "p3")
        for ident in ("p1", "p2", "p3"):
            tokens.mint(ident, 1000)
        ledger.record("p3", "p1", 3, tokens)
        ledger.record("p1", "p2", 1, tokens)
        ledger.record("p2", "p3", 2, tokens)
        assert [e.amount for e in ledger.all()] == [3, 1, 2]
        assert [e.index for e in ledger.all()] == [0, 1, 2]

    def test_self_loop_is_recorded(self) -> None:
        ledger, tokens = _make_ledger("p1")
        tokens.mint("p1", 100)
        ledger.record("p1", "p1", 33, tokens)
        entry = ledger.all()[0]
        assert entry.is_self_loop

    def test_all_returns_a_copy(self) -> None:
        ledger, tokens = _make_ledger("p1", "p2")
        tokens.mint("p1", 100)
        ledger.record("p1", "p2", 5, tokens)
        ledger.all().clear()
        assert ledger.count == 1


class TestRounds:
    def test_close_round_archives_and_clears(self) -> None:
        ledger, tokens = _make_ledger("p1", "p2")
        tokens.mint("p1", 100)
        ledger.record("p1", "p2", 5, tokens)
        ledger.record("p1", "p2", 7, tokens)
        settled = ledger.close_round(now=_now())
        assert settled.round_number == 1
        assert [e.amount for e in settled.entries] == [5, 7]
        assert settled.closed_utc == _now()
        assert ledger.count == 0
        assert ledger.settled_rounds() == [settled]

    def test_close_round_keeps_later_entries_pending(self) -> None:
        ledger, tokens = _make_ledger("p1", "p2")
        tokens.mint("p1", 100)
        ledger.record("p1", "p2", 5, tokens)
        ledger.record("p1", "p2", 7, tokens)
        ledger.record("p1", "p2", 9, tokens)
        settled = ledger.close_round(count=2, now=_now())
        assert [e.amount for e in settled.entries] == [5, 7]
        assert [e.amount for e in ledger.all()] == [9]
        assert ledger.close_round().entries[0].index == 2

    @pytest.mark.parametrize("count", [-1, 3])
    def test_close_round_count_out_of_range(self, count) -> None:
        ledger, tokens = _make_ledger("p1", "p2")
        tokens.mint("p1", 100)
        ledger.record("p1", "p2", 5, tokens)
        ledger.record("p1", "p2", 7, tokens)
        with pytest.raises(ValueError, match="Cannot close"):
            ledger.close_round(count=count)
        assert ledger.count == 2
        assert ledger.settled_rounds() == []

    def test_indices_continue_after_round(self) -> None:
        ledger, tokens = _make_ledger("p1", "p2")
        tokens.mint("p1", 100)
        ledger.record("p1", "p2", 5, tokens)
        ledger.close_round()
        assert ledger.record("p1", "p2", 5, tokens) == 1

    def test_get_finds_settled_entries(self) -> None:
        ledger, tokens = _make_ledger("p1", "p2")
        tokens.mint("p1", 100)
        ref = ledger.record("p1", "p2", 5, tokens)
        ledger.close_round()
        assert ledger.get(ref).amount == 5
        assert ledger.get(99) is None

    def test_restore_sets_next_index(self) -> None:
        ledger, _ = _make_ledger("p1", "p2")
        ledger.restore([ExpenseEntry(index=4, debtor="p1", payer="p2", amount=1)])
        assert ledger.next_index == 5
