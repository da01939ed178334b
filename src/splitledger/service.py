"""SplitLedger service — unified facade for an expense tracker.

This is the primary interface for programmatic access. It orchestrates:
- Participant registration (ParticipantRegistry)
- Expense recording with balance checks (ExpenseLedger + ValueTransferPort)
- Settlement rounds (SettlementEngine)
- Notifications (Transaction per leg, CalculationFinished per round)
- Durability (hash-chained audit log, JSON state store)

All operations produce typed results. Registry, ledger, listener and
settlement state are guarded by one reentrant lock, so calls from other
threads wait for a running operation. Subscribers run on the settling
thread and may record expenses, which stay pending for the next round.
Settlement itself does not nest.

Audit events are never silently dropped. Mutations are saved to the
state store first and audited second; a failure at either step rolls
the in-memory change back and fails the operation. Once transfers have
been executed, failures are reported as warnings and the operation's
outcome stands.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from splitledger.config import TrackerConfig
from splitledger.errors import (
    SettlementError,
    SplitLedgerError,
    TransferExecutionFailed,
)
from splitledger.ledger.expenses import ExpenseLedger
from splitledger.models.ledger import (
    ParticipantView,
    TrackerSnapshot,
    TransactionNotification,
)
from splitledger.persistence.event_log import EventKind, EventLog
from splitledger.persistence.state_store import StateStore
from splitledger.registry.participants import ParticipantRegistry
from splitledger.settlement.engine import Notification, SettlementEngine
from splitledger.settlement.token_ledger import InMemoryTokenLedger
from splitledger.settlement.transfer_port import ValueTransferPort

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"


@dataclass(frozen=True)
class ServiceResult:
    """Result of a service operation."""
    success: bool
    errors: list[str] = field(default_factory=list)
    data: dict[str, Any] = field(default_factory=dict)
    error_code: Optional[str] = None

    @classmethod
    def failure(cls, error: Exception, **data: Any) -> ServiceResult:
        code = error.code if isinstance(error, SplitLedgerError) else type(error).__name__
        return cls(success=False, errors=[str(error)], data=data, error_code=code)


class SplitLedgerService:
    """Expense tracker facade.

    Usage:
        tokens = InMemoryTokenLedger()
        service = SplitLedgerService(port=tokens)

        service.register_participant("0xA1", "Marco")
        service.register_participant("0xB2", "Daniel")
        service.record_expense("0xA1", "0xB2", 33)

        result = service.settle()
        result.data["legs"]   # [{"from": "0xA1", "to": "0xB2", "amount": 33}]

    Persistence (optional):
        service = SplitLedgerService(config, event_log=log, state_store=store)
        # tracker state is reloaded here and rewritten after every change
    """

    def __init__(
        self,
        config: Optional[TrackerConfig] = None,
        port: Optional[ValueTransferPort] = None,
        event_log: Optional[EventLog] = None,
        state_store: Optional[StateStore] = None,
    ) -> None:
        self._config = config or TrackerConfig()
        self._engine = SettlementEngine(self._config.selection_strategy)
        self._event_log = event_log
        self._state_store = state_store
        # reentrant so subscribers may query or record expenses mid-settlement
        self._lock = threading.RLock()
        self._listeners: list[Callable[[Notification], None]] = []
        self._settling = False

        # resume a stored tracker when a state store is wired
        if state_store is not None:
            self._registry = state_store.load_participants()
            self._ledger = state_store.load_ledger(self._registry)
            if port is None:
                port = state_store.load_accounts(self._config.require_allowance)
        else:
            self._registry = ParticipantRegistry()
            self._ledger = ExpenseLedger(self._registry)
        if port is None:
            port = InMemoryTokenLedger(require_allowance=self._config.require_allowance)

        if not isinstance(port, ValueTransferPort):
            raise TypeError(
                f"port must implement ValueTransferPort, got {type(port)}",
            )
        self._port = port
        # Account management (mint/approve) only exists for the bundled backend
        self._tokens = port if isinstance(port, InMemoryTokenLedger) else None

        # event IDs continue after the last record already in the log
        self._event_counter = event_log.count if event_log is not None else 0
        self._persistence_degraded = False

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def config(self) -> TrackerConfig:
        return self._config

    @property
    def registry(self) -> ParticipantRegistry:
        return self._registry

    @property
    def ledger(self) -> ExpenseLedger:
        return self._ledger

    @property
    def port(self) -> ValueTransferPort:
        return self._port

    @property
    def event_log(self) -> Optional[EventLog]:
        return self._event_log

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    def subscribe(self, listener: Callable[[Notification], None]) -> None:
        """Receive Transaction and CalculationFinished notifications."""
        with self._lock:
            self._listeners.append(listener)

    def unsubscribe(self, listener: Callable[[Notification], None]) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    # ------------------------------------------------------------------
    # Participants
    # ------------------------------------------------------------------

    def register_participant(self, identity: str, display_name: str) -> ServiceResult:
        """Register a participant. data["ordinal"] holds the assigned ordinal."""
        with self._lock:
            try:
                ordinal = self._registry.register(identity, display_name)
            except (SplitLedgerError, ValueError) as e:
                logger.warning("registration rejected for %r: %s", identity, e)
                return ServiceResult.failure(e)

            participant = self._registry.lookup(identity)

            def _rollback() -> None:
                self._registry._participants.pop(participant.identity, None)
                self._registry._next_ordinal = ordinal

            err = self._commit(
                EventKind.PARTICIPANT_REGISTERED,
                participant.identity,
                participant.to_dict(),
                _rollback,
            )
            if err:
                return ServiceResult(success=False, errors=[err], error_code="PersistenceError")

            logger.info(
                "registered participant %s (%s) as #%d",
                participant.identity, display_name, ordinal,
            )
            return ServiceResult(
                success=True,
                data={"ordinal": ordinal, "identity": participant.identity},
            )

    def get_participant(self, identity: str):
        """Look up a participant."""
        with self._lock:
            return self._registry.lookup(identity)

    # ------------------------------------------------------------------
    # Expenses
    # ------------------------------------------------------------------

    def record_expense(self, debtor: str, payer: str, amount: int) -> ServiceResult:
        """Record that debtor owes payer amount. data["entry_ref"] is its index."""
        with self._lock:
            try:
                index = self._ledger.record(debtor, payer, amount, self._port)
            except (SplitLedgerError, ValueError) as e:
                logger.warning(
                    "expense rejected (%s -> %s, %r): %s", debtor, payer, amount, e,
                )
                return ServiceResult.failure(e)

            entry = self._ledger.get(index)

            def _rollback() -> None:
                self._ledger._entries.pop()
                self._ledger._next_index = index

            err = self._commit(
                EventKind.EXPENSE_RECORDED, entry.debtor, entry.to_dict(), _rollback,
            )
            if err:
                return ServiceResult(success=False, errors=[err], error_code="PersistenceError")

            logger.info(
                "recorded expense #%d: %s owes %s %d",
                index, entry.debtor, entry.payer, entry.amount,
            )
            return ServiceResult(success=True, data={"entry_ref": index})

    # ------------------------------------------------------------------
    # Settlement
    # ------------------------------------------------------------------

    def net_balances(self) -> dict[str, int]:
        """Derived net balances of the pending ledger."""
        with self._lock:
            return self._engine.net_balances(self._registry, self._ledger)

    def preview_settlement(self) -> ServiceResult:
        """Compute the legs the next settle() would execute, without executing."""
        with self._lock:
            try:
                balances = self._engine.net_balances(self._registry, self._ledger)
                plan = self._engine.plan(self._registry, self._ledger)
            except SettlementError as e:
                return ServiceResult.failure(e)
            return ServiceResult(
                success=True,
                data={"net_balances": balances, "legs": plan.to_list()},
            )

    def settle(self) -> ServiceResult:
        """Run a settlement round.

        On success data holds the executed legs and the closed round
        number. On transfer failure the result fails with
        TransferExecutionFailed and data["executed_legs"] lists the legs
        that were already applied.

        Subscribers may record expenses while the round runs. Those
        entries are not part of the round and stay pending. A settle()
        issued from a subscriber is refused with SettlementInProgress.
        """
        with self._lock:
            if self._settling:
                return ServiceResult(
                    success=False,
                    errors=["A settlement round is already running"],
                    error_code="SettlementInProgress",
                )
            self._settling = True
            try:
                return self._settle_round()
            finally:
                self._settling = False

    def _settle_round(self) -> ServiceResult:
        warnings: list[str] = []

        def _on_notification(note: Notification) -> None:
            if isinstance(note, TransactionNotification):
                err = self._record_event(
                    EventKind.TRANSACTION, note.from_identity, note.to_dict(),
                )
            else:
                err = self._record_event(
                    EventKind.CALCULATION_FINISHED, SYSTEM_ACTOR, note.to_dict(),
                )
            if err:
                warnings.append(err)
            self._notify(note)

        # entries appended after this point belong to the next round
        netted = self._ledger.count
        try:
            plan = self._engine.calculate(
                self._registry, self._ledger, self._port,
                listener=_on_notification,
            )
        except TransferExecutionFailed as e:
            executed = [leg.to_dict() for leg in e.executed_legs]
            err = self._record_event(
                EventKind.SETTLEMENT_FAILED,
                SYSTEM_ACTOR,
                {
                    "executed_legs": executed,
                    "failed_leg": e.failed_leg.to_dict() if e.failed_leg else None,
                },
            )
            if err:
                warnings.append(err)
            # Executed transfers are irreversible, persist what happened
            warning = self._safe_persist_post_audit()
            if warning:
                warnings.append(warning)
            return ServiceResult(
                success=False,
                errors=[str(e)] + warnings,
                data={"executed_legs": executed},
                error_code=e.code,
            )
        except SettlementError as e:
            logger.error("settlement aborted before any transfer: %s", e)
            return ServiceResult.failure(e)

        settled = self._ledger.close_round(count=netted)
        err = self._record_event(
            EventKind.ROUND_CLOSED,
            SYSTEM_ACTOR,
            {
                "round_number": settled.round_number,
                "entry_count": len(settled.entries),
            },
        )
        if err:
            warnings.append(err)

        data: dict[str, Any] = {
            "legs": plan.to_list(),
            "complete": plan.complete,
            "total_transferred": plan.total_transferred,
            "round": settled.round_number,
        }
        if self._ledger.count:
            data["pending_entries"] = self._ledger.count
        warning = self._safe_persist_post_audit()
        if warning:
            warnings.append(warning)
        if warnings:
            data["warnings"] = warnings
        return ServiceResult(success=True, data=data)

    # ------------------------------------------------------------------
    # Accounts (bundled token backend only)
    # ------------------------------------------------------------------

    def mint(self, identity: str, amount: int) -> ServiceResult:
        """Credit units to an account on the bundled token ledger."""
        with self._lock:
            tokens = self._tokens
            if tokens is None:
                return self._no_token_backend()
            try:
                balance = tokens.mint(identity, amount)
            except ValueError as e:
                return ServiceResult.failure(e)

            def _rollback() -> None:
                tokens._balances[identity] = balance - amount

            err = self._commit(
                EventKind.ACCOUNT_MINTED,
                identity,
                {"amount": amount, "balance": balance},
                _rollback,
            )
            if err:
                return ServiceResult(success=False, errors=[err], error_code="PersistenceError")
            return ServiceResult(success=True, data={"identity": identity, "balance": balance})

    def approve(self, identity: str, amount: int) -> ServiceResult:
        """Set the allowance the settlement operator may spend from identity."""
        with self._lock:
            tokens = self._tokens
            if tokens is None:
                return self._no_token_backend()
            previous = tokens.allowance(identity)
            try:
                tokens.approve(identity, amount)
            except ValueError as e:
                return ServiceResult.failure(e)

            def _rollback() -> None:
                tokens._allowances[identity] = previous

            err = self._commit(
                EventKind.ALLOWANCE_APPROVED, identity, {"amount": amount}, _rollback,
            )
            if err:
                return ServiceResult(success=False, errors=[err], error_code="PersistenceError")
            return ServiceResult(success=True, data={"identity": identity, "allowance": amount})

    @staticmethod
    def _no_token_backend() -> ServiceResult:
        return ServiceResult(
            success=False,
            errors=["Account management requires the in-memory token backend"],
            error_code="UnsupportedOperation",
        )

    # ------------------------------------------------------------------
    # Status and queries
    # ------------------------------------------------------------------

    def snapshot(self) -> TrackerSnapshot:
        """Participants with their external balances, and pending entries."""
        with self._lock:
            participants = tuple(
                ParticipantView(
                    ordinal=p.ordinal,
                    identity=p.identity,
                    display_name=p.display_name,
                    balance=self._port.balance_of(p.identity),
                )
                for p in self._registry.all()
            )
            return TrackerSnapshot(
                participant_count=self._registry.count,
                participants=participants,
                entries=tuple(self._ledger.all()),
            )

    def status(self) -> dict[str, Any]:
        """Return a tracker-wide status summary."""
        with self._lock:
            return {
                "participants": self._registry.count,
                "pending_entries": self._ledger.count,
                "pending_amount": self._ledger.total_amount(),
                "settled_rounds": len(self._ledger.settled_rounds()),
                "selection_strategy": self._engine.strategy,
                "events": self._event_log.count if self._event_log is not None else 0,
                "persistence_degraded": self._persistence_degraded,
            }

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _notify(self, note: Notification) -> None:
        for listener in list(self._listeners):
            try:
                listener(note)
            except Exception:
                # a subscriber must not abort a round whose transfers already ran
                logger.exception("notification listener %r failed", listener)

    def _next_event_id(self) -> str:
        """Next audit event ID, EVT-00000001 onwards."""
        self._event_counter += 1
        return f"EVT-{self._event_counter:08d}"

    def _record_event(
        self, kind: EventKind, subject: str, payload: dict[str, Any],
    ) -> Optional[str]:
        """Chain an audit record (if a log is wired). Returns error string or None."""
        if self._event_log is None:
            return None
        try:
            self._event_log.record(self._next_event_id(), kind, subject, payload)
        except (ValueError, OSError) as e:
            logger.error("event log failure (%s): %s", kind.value, e)
            return f"Event log failure: {e}"
        return None

    def _commit(
        self,
        kind: EventKind,
        subject: str,
        payload: dict[str, Any],
        rollback: Callable[[], None],
    ) -> Optional[str]:
        """Make an in-memory change durable, then audit it.

        State is written first so the log never records a change that was
        rolled back. If the audit record cannot be written, the change is
        undone and the state rewritten without it. Returns an error string
        or None.
        """
        err = self._safe_persist(on_rollback=rollback)
        if err:
            return err
        err = self._record_event(kind, subject, payload)
        if err:
            rollback()
            restore_err = self._safe_persist()
            if restore_err:
                self._persistence_degraded = True
                return f"{err}; {restore_err}"
        return err

    def _persist_state(self) -> None:
        """Write registry, ledger and accounts in one state-store write.

        Raises OSError. Mutators go through _safe_persist() or
        _safe_persist_post_audit().
        """
        if self._state_store is None:
            return
        self._state_store.save_all(self._registry, self._ledger, self._tokens)

    def _safe_persist(
        self,
        on_rollback: Optional[Callable[[], None]] = None,
    ) -> Optional[str]:
        """Persist before a change is final; undo it if the write fails.

        Returns None on success, otherwise an error string after running
        on_rollback.
        """
        try:
            self._persist_state()
            return None
        except OSError as e:
            if on_rollback is not None:
                on_rollback()
            logger.error("state write failed, change rolled back: %s", e)
            return f"Persistence failure: {e}"

    def _safe_persist_post_audit(self) -> Optional[str]:
        """Persist after transfers ran. The in-memory outcome always stands.

        A failed write marks the tracker degraded and returns a warning.
        """
        try:
            self._persist_state()
            return None
        except OSError as e:
            self._persistence_degraded = True
            logger.error("state write failed after settlement: %s", e)
            return f"Persistence degraded: {e}; transfers executed but saved state is stale"
