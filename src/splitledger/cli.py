"""SplitLedger CLI — command-line interface for an expense tracker.

Usage:
    splitledger status
    splitledger register --id 0xA1 --name Marco
    splitledger mint --id 0xA1 --amount 1000
    splitledger approve --id 0xA1 --amount 1000
    splitledger record-expense --debtor 0xA1 --payer 0xB2 --amount 33
    splitledger preview
    splitledger settle
    splitledger snapshot
    splitledger events --kind transaction --identity 0xB2

State lives in the configured data directory (events.jsonl + state.json)
so successive invocations operate on the same tracker.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import replace
from pathlib import Path

from splitledger.config import DEFAULT_CONFIG_DIR, TrackerConfig
from splitledger.persistence.event_log import EventKind, EventLog
from splitledger.persistence.state_store import StateStore
from splitledger.service import ServiceResult, SplitLedgerService

logger = logging.getLogger(__name__)


def _load_config(args: argparse.Namespace) -> TrackerConfig:
    config = TrackerConfig.from_env(config_dir=args.config)
    if args.data_dir is not None:
        config = replace(config, data_dir=args.data_dir)
    return config


def _make_service(config: TrackerConfig) -> SplitLedgerService:
    """Create a SplitLedgerService with durable persistence."""
    config.data_dir.mkdir(parents=True, exist_ok=True)
    event_log = EventLog(storage_path=config.events_path)
    state_store = StateStore(config.state_path)
    return SplitLedgerService(config, event_log=event_log, state_store=state_store)


def _report(result: ServiceResult, message: str) -> int:
    if result.success:
        print(message)
        warnings = result.data.get("warnings")
        if warnings:
            print(f"Warning: {'; '.join(warnings)}", file=sys.stderr)
        return 0
    code = f"[{result.error_code}] " if result.error_code else ""
    print(f"Failed: {code}{'; '.join(result.errors)}", file=sys.stderr)
    return 1


def cmd_status(args: argparse.Namespace, service: SplitLedgerService) -> int:
    print(json.dumps(service.status(), indent=2))
    return 0


def cmd_register(args: argparse.Namespace, service: SplitLedgerService) -> int:
    result = service.register_participant(args.id, args.name)
    return _report(
        result,
        f"Registered participant #{result.data.get('ordinal')}: {args.id} ({args.name})",
    )


def cmd_mint(args: argparse.Namespace, service: SplitLedgerService) -> int:
    result = service.mint(args.id, args.amount)
    return _report(result, f"Minted {args.amount} to {args.id} (balance {result.data.get('balance')})")


def cmd_approve(args: argparse.Namespace, service: SplitLedgerService) -> int:
    result = service.approve(args.id, args.amount)
    return _report(result, f"Approved allowance of {args.amount} for {args.id}")


def cmd_record_expense(args: argparse.Namespace, service: SplitLedgerService) -> int:
    result = service.record_expense(args.debtor, args.payer, args.amount)
    return _report(
        result,
        f"Recorded expense #{result.data.get('entry_ref')}: "
        f"{args.debtor} owes {args.payer} {args.amount}",
    )


def cmd_preview(args: argparse.Namespace, service: SplitLedgerService) -> int:
    result = service.preview_settlement()
    if result.success:
        print(json.dumps(result.data, indent=2))
        return 0
    return _report(result, "")


def cmd_settle(args: argparse.Namespace, service: SplitLedgerService) -> int:
    result = service.settle()
    if result.success:
        print(json.dumps(result.data, indent=2))
        return 0
    if result.data.get("executed_legs"):
        print(json.dumps({"executed_legs": result.data["executed_legs"]}, indent=2))
    return _report(result, "")


def cmd_snapshot(args: argparse.Namespace, service: SplitLedgerService) -> int:
    print(json.dumps(service.snapshot().to_dict(), indent=2))
    return 0


def cmd_events(args: argparse.Namespace, service: SplitLedgerService) -> int:
    if service.event_log is None:
        return 0
    if args.identity:
        records = service.event_log.involving(args.identity)
    else:
        records = service.event_log.events()
    if args.kind:
        records = [r for r in records if r.kind == EventKind(args.kind)]
    for record in records:
        print(json.dumps(record.to_dict(), sort_keys=True))
    return 0


def _positive_int(raw: str) -> int:
    try:
        value = int(raw)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not an integer: {raw!r}") from None
    if value <= 0:
        raise argparse.ArgumentTypeError(f"must be positive: {raw!r}")
    return value


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="splitledger",
        description="SplitLedger — expense tracking and debt settlement",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_CONFIG_DIR,
        help="Path to config directory (default: config/)",
    )
    parser.add_argument(
        "--data-dir",
        type=Path,
        default=None,
        help="Override the data directory holding events.jsonl and state.json",
    )
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("status", help="Show tracker status")

    p_reg = sub.add_parser("register", help="Register a participant")
    p_reg.add_argument("--id", required=True, help="Participant identity (address)")
    p_reg.add_argument("--name", required=True, help="Display name")

    p_mint = sub.add_parser("mint", help="Credit tokens to an account")
    p_mint.add_argument("--id", required=True, help="Account identity")
    p_mint.add_argument("--amount", required=True, type=_positive_int)

    p_appr = sub.add_parser("approve", help="Allow settlement to spend from an account")
    p_appr.add_argument("--id", required=True, help="Account identity")
    p_appr.add_argument("--amount", required=True, type=int)

    p_exp = sub.add_parser("record-expense", help="Record that debtor owes payer")
    p_exp.add_argument("--debtor", required=True, help="Debtor identity")
    p_exp.add_argument("--payer", required=True, help="Payer identity")
    p_exp.add_argument("--amount", required=True, type=_positive_int)

    sub.add_parser("preview", help="Show net balances and the legs settle would run")
    sub.add_parser("settle", help="Run a settlement round")
    sub.add_parser("snapshot", help="Show participants, balances and pending entries")

    p_ev = sub.add_parser("events", help="Print the audit log")
    p_ev.add_argument("--kind", choices=[k.value for k in EventKind], help="Filter by kind")
    p_ev.add_argument("--identity", help="Only records naming this participant")

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    commands = {
        "status": cmd_status,
        "register": cmd_register,
        "mint": cmd_mint,
        "approve": cmd_approve,
        "record-expense": cmd_record_expense,
        "preview": cmd_preview,
        "settle": cmd_settle,
        "snapshot": cmd_snapshot,
        "events": cmd_events,
    }

    handler = commands.get(args.command)
    if handler is None:
        print(f"Unknown command: {args.command}", file=sys.stderr)
        return 1

    try:
        config = _load_config(args)
    except ValueError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 1
    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    try:
        service = _make_service(config)
    except (ValueError, OSError) as e:
        logger.error("could not load tracker state from %s: %s", config.data_dir, e)
        print(f"Failed to load state: {e}", file=sys.stderr)
        return 1
    return handler(args, service)


if __name__ == "__main__":
    raise SystemExit(main())
