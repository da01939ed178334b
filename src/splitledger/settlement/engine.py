"""Settlement engine — nets expense entries into a short list of transfers.

Step 1 derives net balances. Every registered participant starts at zero;
each entry, in ledger order, lowers the debtor's net by its amount and
raises the payer's by the same amount. Self-loops cancel out. The sum of
all net balances is therefore always zero.

Step 2 is the greedy "largest credit meets largest debt" loop:

    while any balance is non-zero:
        C = participant with the greatest positive balance
        D = participant with the most negative balance
        (ties on either side go to the smallest ordinal)
        leg = min(C.balance, -D.balance)
        transfer D → C for leg
        C.balance -= leg; D.balance += leg
        emit Transaction(D, C, leg)
    emit CalculationFinished

Each round zeroes at least one participant, so a run with N non-zero
balances ends after at most N - 1 legs. The result is deterministic but
not guaranteed minimal; the general minimum-transfer problem is NP-hard.

If a transfer is refused, the run stops with TransferExecutionFailed.
Legs already transferred stay applied and CalculationFinished is not
emitted.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Callable, Optional, Union

from splitledger.errors import SettlementError, TransferExecutionFailed
from splitledger.models.ledger import (
    CalculationFinished,
    TransactionNotification,
    TransferLeg,
    TransferPlan,
)
from splitledger.settlement.selection import SELECTION_STRATEGIES, make_selector
from splitledger.settlement.transfer_port import ValueTransferPort

if TYPE_CHECKING:
    from splitledger.ledger.expenses import ExpenseLedger
    from splitledger.registry.participants import ParticipantRegistry

logger = logging.getLogger(__name__)

Notification = Union[TransactionNotification, CalculationFinished]
NotificationListener = Callable[[Notification], None]


class SettlementEngine:
    """Computes and executes transfer plans.

    Usage:
        engine = SettlementEngine()
        balances = engine.net_balances(registry, ledger)
        preview = engine.plan(registry, ledger)
        plan = engine.calculate(registry, ledger, port, listener=events.append)
    """

    def __init__(self, strategy: str = "linear") -> None:
        if strategy not in SELECTION_STRATEGIES:
            raise ValueError(
                f"Unknown selection strategy: {strategy!r} "
                f"(expected one of {sorted(SELECTION_STRATEGIES)})"
            )
        self._strategy = strategy

    @property
    def strategy(self) -> str:
        return self._strategy

    def net_balances(
        self,
        registry: ParticipantRegistry,
        ledger: ExpenseLedger,
    ) -> dict[str, int]:
        """Derive per-participant net balances from the pending entries.

        Positive = owed money (creditor). Negative = owes money (debtor).
        Keys are in ordinal order and cover every registered participant.

        Raises SettlementError if an entry references an unknown
        participant or the balances do not sum to zero.
        """
        balances = {p.identity: 0 for p in registry.all()}
        for entry in ledger.all():
            if entry.debtor not in balances or entry.payer not in balances:
                raise SettlementError(
                    f"Entry {entry.index} references an unregistered participant",
                    details={"debtor": entry.debtor, "payer": entry.payer},
                )
            balances[entry.debtor] -= entry.amount
            balances[entry.payer] += entry.amount

        total = sum(balances.values())
        if total != 0:
            raise SettlementError(
                "Net balances are not conserved", details={"sum": total},
            )
        return balances

    def plan(
        self,
        registry: ParticipantRegistry,
        ledger: ExpenseLedger,
    ) -> TransferPlan:
        """Compute the legs a settlement would produce, without executing them."""
        legs = list(self._run(registry, ledger))
        return TransferPlan(legs=tuple(legs), complete=False)

    def calculate(
        self,
        registry: ParticipantRegistry,
        ledger: ExpenseLedger,
        port: ValueTransferPort,
        listener: Optional[NotificationListener] = None,
    ) -> TransferPlan:
        """Run a settlement round against the transfer port.

        Returns the executed TransferPlan. Raises TransferExecutionFailed
        (carrying the legs executed so far) if the port refuses a leg.
        """
        executed: list[TransferLeg] = []
        for leg in self._run(registry, ledger):
            ok = port.transfer(leg.from_identity, leg.to_identity, leg.amount)
            if not ok:
                logger.error(
                    "settlement leg refused: %s -> %s %d (after %d executed legs)",
                    leg.from_identity, leg.to_identity, leg.amount, len(executed),
                )
                raise TransferExecutionFailed(
                    "Transfer for settlement leg failed",
                    executed_legs=tuple(executed),
                    failed_leg=leg,
                    details={
                        "from": leg.from_identity,
                        "to": leg.to_identity,
                        "amount": leg.amount,
                        "executed": len(executed),
                    },
                )
            executed.append(leg)
            logger.info(
                "settlement leg %d: %s -> %s %d",
                len(executed), leg.from_identity, leg.to_identity, leg.amount,
            )
            if listener is not None:
                listener(TransactionNotification(
                    from_identity=leg.from_identity,
                    to_identity=leg.to_identity,
                    amount=leg.amount,
                ))

        plan = TransferPlan(legs=tuple(executed), complete=True)
        if listener is not None:
            listener(CalculationFinished(
                leg_count=len(plan), total_transferred=plan.total_transferred,
            ))
        logger.info(
            "settlement finished: %d legs, %d transferred",
            len(plan), plan.total_transferred,
        )
        return plan

    def _run(self, registry: ParticipantRegistry, ledger: ExpenseLedger):
        """Yield legs one at a time, updating balances as each is consumed.

        The generator is lazy: the caller executes a leg before the next
        one is selected, and stops iterating to abort the round.
        """
        balances = self.net_balances(registry, ledger)
        ordinals = {p.identity: p.ordinal for p in registry.all()}
        selector = make_selector(self._strategy, balances, ordinals)

        while True:
            try:
                pair = selector.next_pair()
            except RuntimeError as e:
                raise SettlementError(str(e)) from e
            if pair is None:
                return
            creditor, debtor = pair
            amount = min(selector.balance(creditor), -selector.balance(debtor))
            yield TransferLeg(from_identity=debtor, to_identity=creditor, amount=amount)
            selector.settle(creditor, debtor, amount)
