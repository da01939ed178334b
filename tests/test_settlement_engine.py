"""Tests for settlement engine — proves netting, greedy ordering and failure semantics.

Covers:
- Net balances are conserved (sum to zero) for any recorded ledger
- Chain netting collapses A→B→C into a single A→C leg
- Four-party reference scenario yields exactly the reference legs
- Ties go to the smallest ordinal on both sides
- A plan never exceeds (non-zero participants - 1) legs
- A refused transfer aborts the round, keeping already executed legs
"""

import random

import pytest

from splitledger.errors import SettlementError, TransferExecutionFailed
from splitledger.ledger.expenses import ExpenseLedger
from splitledger.models.ledger import (
    CalculationFinished,
    ExpenseEntry,
    NotificationKind,
    TransactionNotification,
    TransferLeg,
)
from splitledger.registry.participants import ParticipantRegistry
from splitledger.settlement.engine import SettlementEngine
from splitledger.settlement.token_ledger import InMemoryTokenLedger

STRATEGIES = ["linear", "heap"]


def _make_tracker(
    names: list[str], funding: int = 1000,
) -> tuple[ParticipantRegistry, ExpenseLedger, InMemoryTokenLedger]:
    registry = ParticipantRegistry()
    tokens = InMemoryTokenLedger()
    for name in names:
        registry.register(name, name.title())
        tokens.mint(name, funding)
        tokens.approve(name, funding)
    return registry, ExpenseLedger(registry), tokens


def _four_party(
    funding: int = 1000,
) -> tuple[ParticipantRegistry, ExpenseLedger, InMemoryTokenLedger]:
    # P1 Marco, P2 Daniel, P3 Lorenzo, P4 Giorgio
    registry, ledger, tokens = _make_tracker(["p1", "p2", "p3", "p4"], funding)
    ledger.record("p4", "p2", 33, tokens)
    ledger.record("p2", "p2", 33, tokens)
    ledger.record("p1", "p2", 33, tokens)
    ledger.record("p4", "p1", 19, tokens)
    ledger.record("p3", "p1", 19, tokens)
    return registry, ledger, tokens


def _legs(plan) -> list[tuple[str, str, int]]:
    return [(leg.from_identity, leg.to_identity, leg.amount) for leg in plan]


class TestNetBalances:
    def test_empty_ledger_all_zero(self) -> None:
        registry, ledger, _ = _make_tracker(["p1", "p2"])
        assert SettlementEngine().net_balances(registry, ledger) == {"p1": 0, "p2": 0}

    def test_four_party_balances(self) -> None:
        registry, ledger, _ = _four_party()
        balances = SettlementEngine().net_balances(registry, ledger)
        assert balances == {"p1": 5, "p2": 66, "p3": -19, "p4": -52}

    def test_self_loop_is_neutral(self) -> None:
        registry, ledger, tokens = _make_tracker(["p1"])
        ledger.record("p1", "p1", 500, tokens)
        assert SettlementEngine().net_balances(registry, ledger) == {"p1": 0}

    def test_keys_in_ordinal_order(self) -> None:
        registry, ledger, _ = _make_tracker(["zed", "amy", "bob"])
        assert list(SettlementEngine().net_balances(registry, ledger)) == ["zed", "amy", "bob"]

    def test_conservation_for_random_ledgers(self) -> None:
        rng = random.Random(7)
        for _ in range(50):
            names = [f"p{i}" for i in range(rng.randint(1, 8))]
            registry, ledger, tokens = _make_tracker(names, funding=10_000)
            for _ in range(rng.randint(0, 20)):
                ledger.record(rng.choice(names), rng.choice(names), rng.randint(1, 500), tokens)
            balances = SettlementEngine().net_balances(registry, ledger)
            assert sum(balances.values()) == 0

    def test_unregistered_entry_raises(self) -> None:
        registry, ledger, _ = _make_tracker(["p1"])
        ledger.restore([ExpenseEntry(index=0, debtor="p1", payer="ghost", amount=5)])
        with pytest.raises(SettlementError):
            SettlementEngine().net_balances(registry, ledger)


@pytest.mark.parametrize("strategy", STRATEGIES)
class TestReferenceScenarios:
    def test_empty_ledger_empty_plan(self, strategy: str) -> None:
        registry, ledger, tokens = _make_tracker(["p1", "p2", "p3"])
        notes = []
        plan = SettlementEngine(strategy).calculate(registry, ledger, tokens, notes.append)
        assert len(plan) == 0
        assert plan.complete
        assert notes == [CalculationFinished(leg_count=0, total_transferred=0)]

    def test_chain_netting(self, strategy: str) -> None:
        registry, ledger, tokens = _make_tracker(["p1", "p2", "p3"])
        ledger.record("p1", "p2", 1000, tokens)
        ledger.record("p2", "p3", 1000, tokens)
        notes = []
        plan = SettlementEngine(strategy).calculate(registry, ledger, tokens, notes.append)
        assert _legs(plan) == [("p1", "p3", 1000)]
        assert notes[0] == TransactionNotification("p1", "p3", 1000)
        assert notes[-1].kind == NotificationKind.CALCULATION_FINISHED
        assert tokens.balance_of("p1") == 0
        assert tokens.balance_of("p2") == 1000
        assert tokens.balance_of("p3") == 2000

    def test_four_party_reference(self, strategy: str) -> None:
        registry, ledger, tokens = _four_party()
        notes = []
        plan = SettlementEngine(strategy).calculate(registry, ledger, tokens, notes.append)
        assert _legs(plan) == [
            ("p4", "p2", 52),
            ("p3", "p2", 14),
            ("p3", "p1", 5),
        ]
        kinds = [n.kind for n in notes]
        assert kinds == [NotificationKind.TRANSACTION] * 3 + [
            NotificationKind.CALCULATION_FINISHED,
        ]
        assert notes[-1] == CalculationFinished(leg_count=3, total_transferred=71)
        assert tokens.balance_of("p1") == 1005
        assert tokens.balance_of("p2") == 1066
        assert tokens.balance_of("p3") == 981
        assert tokens.balance_of("p4") == 948

    def test_creditor_tie_goes_to_smallest_ordinal(self, strategy: str) -> None:
        registry, ledger, tokens = _make_tracker(["p1", "p2", "p3"])
        ledger.record("p3", "p2", 10, tokens)
        ledger.record("p3", "p1", 10, tokens)
        plan = SettlementEngine(strategy).plan(registry, ledger)
        assert _legs(plan) == [("p3", "p1", 10), ("p3", "p2", 10)]

    def test_debtor_tie_goes_to_smallest_ordinal(self, strategy: str) -> None:
        registry, ledger, tokens = _make_tracker(["p1", "p2", "p3"])
        ledger.record("p2", "p3", 10, tokens)
        ledger.record("p1", "p3", 10, tokens)
        plan = SettlementEngine(strategy).plan(registry, ledger)
        assert _legs(plan) == [("p1", "p3", 10), ("p2", "p3", 10)]

    def test_plan_does_not_touch_port(self, strategy: str) -> None:
        registry, ledger, tokens = _four_party()
        plan = SettlementEngine(strategy).plan(registry, ledger)
        assert not plan.complete
        assert len(plan) == 3
        assert tokens.balance_of("p4") == 1000


@pytest.mark.parametrize("strategy", STRATEGIES)
class TestPlanProperties:
    def test_random_plans_zero_every_balance(self, strategy: str) -> None:
        rng = random.Random(2024)
        engine = SettlementEngine(strategy)
        for _ in range(100):
            names = [f"p{i}" for i in range(rng.randint(2, 9))]
            registry, ledger, tokens = _make_tracker(names, funding=100_000)
            for _ in range(rng.randint(1, 25)):
                ledger.record(rng.choice(names), rng.choice(names), rng.randint(1, 300), tokens)

            balances = engine.net_balances(registry, ledger)
            nonzero = sum(1 for v in balances.values() if v != 0)
            plan = engine.calculate(registry, ledger, tokens)

            assert len(plan) <= max(nonzero - 1, 0)
            remaining = dict(balances)
            for leg in plan:
                assert leg.amount <= min(remaining[leg.to_identity], -remaining[leg.from_identity])
                remaining[leg.from_identity] += leg.amount
                remaining[leg.to_identity] -= leg.amount
            assert all(v == 0 for v in remaining.values())

    def test_deterministic(self, strategy: str) -> None:
        first = SettlementEngine(strategy).plan(*_four_party()[:2])
        second = SettlementEngine(strategy).plan(*_four_party()[:2])
        assert first.legs == second.legs


class TestStrategiesAgree:
    def test_linear_and_heap_identical(self) -> None:
        rng = random.Random(99)
        for _ in range(100):
            names = [f"p{i}" for i in range(rng.randint(2, 12))]
            registry, ledger, tokens = _make_tracker(names, funding=100_000)
            for _ in range(rng.randint(1, 30)):
                # small amounts force plenty of ties
                ledger.record(rng.choice(names), rng.choice(names), rng.randint(1, 4), tokens)
            linear = SettlementEngine("linear").plan(registry, ledger)
            heap = SettlementEngine("heap").plan(registry, ledger)
            assert linear.legs == heap.legs

    def test_unknown_strategy_rejected(self) -> None:
        with pytest.raises(ValueError):
            SettlementEngine("quantum")


class TestTransferFailure:
    def test_partial_execution_preserved(self) -> None:
        registry, ledger, tokens = _four_party()
        # Lorenzo can cover the first leg to Daniel but not the second to Marco
        tokens.approve("p3", 14)
        notes = []
        with pytest.raises(TransferExecutionFailed) as exc:
            SettlementEngine().calculate(registry, ledger, tokens, notes.append)

        err = exc.value
        assert [(l.from_identity, l.to_identity, l.amount) for l in err.executed_legs] == [
            ("p4", "p2", 52),
            ("p3", "p2", 14),
        ]
        assert err.failed_leg == TransferLeg("p3", "p1", 5)
        # executed legs stay applied
        assert tokens.balance_of("p2") == 1066
        assert tokens.balance_of("p1") == 1000
        # one notification per executed leg, no completion
        assert len(notes) == 2
        assert all(n.kind == NotificationKind.TRANSACTION for n in notes)

    def test_first_leg_failure_executes_nothing(self) -> None:
        registry, ledger, tokens = _make_tracker(["p1", "p2"])
        ledger.record("p1", "p2", 600, tokens)
        ledger.record("p1", "p2", 600, tokens)
        # recorded individually against a balance of 1000, jointly 1200
        with pytest.raises(TransferExecutionFailed) as exc:
            SettlementEngine().calculate(registry, ledger, tokens)
        assert exc.value.executed_legs == ()
        assert tokens.balance_of("p1") == 1000
        assert tokens.balance_of("p2") == 1000
