"""
Command-line interface for the bridge ledger.

Provides operator commands against one ledger database:
- init-db: Initialize the database schema
- checkpoint: Read or overwrite a named checkpoint
- transfer / transfers / pending: Inspect reconciled transfers
- balances: Import a router balance snapshot or print the aggregated view
- root-messages: List root messages

Usage:
    bridge-ledger init-db
    bridge-ledger checkpoint get NAME
    bridge-ledger checkpoint set NAME VALUE
    bridge-ledger transfer TRANSFER_ID
    bridge-ledger transfers STATUS [--limit N] [--offset N] [--order ASC|DESC]
    bridge-ledger pending {origin,destination} DOMAIN [--limit N] [--order ASC|DESC]
    bridge-ledger balances import FILE
    bridge-ledger balances show
    bridge-ledger root-messages [--processed true|false] [--limit N] [--order ASC|DESC]

Every command accepts ``--db PATH`` to override the configured database.
"""

import argparse
import json
import logging
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Any

import yaml

from bridge_ledger.config import config
from bridge_ledger.db.connection import Store
from bridge_ledger.entities import RouterBalance
from bridge_ledger.status import XTransferStatus

LOG_FORMATS = {
    "simple": "%(levelname)s %(message)s",
    "detailed": "%(asctime)s %(levelname)s [%(name)s] %(message)s",
}


def configure_logging() -> None:
    """Configure the root logger from the ``[logging]`` settings."""
    logging.basicConfig(
        level=getattr(logging, config.logging.level.upper(), logging.INFO),
        format=LOG_FORMATS[config.logging.format],
    )


def _store(args: argparse.Namespace) -> Store:
    return Store.from_config(config, path=args.db)


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2, sort_keys=True))


def load_balance_snapshot(path: Path) -> list[RouterBalance]:
    """
    Read a router balance snapshot from YAML.

    Expected layout::

        routers:
          - router: "0xabc..."
            assets:
              - canonical_id: "0x..."
                domain: "1111"
                balance: "100"

    A missing file or empty document yields an empty snapshot.
    """
    if not path.exists():
        return []
    with path.open("r", encoding="utf-8") as handle:
        payload = yaml.safe_load(handle) or {}
    entries = payload.get("routers") if isinstance(payload, dict) else None
    if not isinstance(entries, list):
        return []
    return [RouterBalance.from_mapping(entry) for entry in entries if isinstance(entry, dict)]


# ============================================================================
# COMMANDS
# ============================================================================


def cmd_init_db(args: argparse.Namespace) -> int:
    """
    Initialize the database schema.

    Returns:
        0 on success, 1 on error
    """
    from bridge_ledger.db.schema import init_schema

    store = _store(args)
    try:
        store.path.parent.mkdir(parents=True, exist_ok=True)
        init_schema(store)
        print(f"Database initialized at {store.path}.")
        return 0
    except Exception as e:
        print(f"Error initializing database: {e}", file=sys.stderr)
        return 1


def cmd_checkpoint_get(args: argparse.Namespace) -> int:
    from bridge_ledger.db.checkpoints_repo import get_checkpoint

    try:
        print(get_checkpoint(_store(args), args.name))
        return 0
    except Exception as e:
        print(f"Error reading checkpoint: {e}", file=sys.stderr)
        return 1


def cmd_checkpoint_set(args: argparse.Namespace) -> int:
    from bridge_ledger.db.checkpoints_repo import save_checkpoint

    try:
        save_checkpoint(_store(args), args.name, args.value)
        print(f"Checkpoint {args.name} = {args.value}")
        return 0
    except Exception as e:
        print(f"Error saving checkpoint: {e}", file=sys.stderr)
        return 1


def cmd_transfer(args: argparse.Namespace) -> int:
    """
    Print one merged transfer, including its derived status.

    Returns:
        0 when found, 1 when missing or on error
    """
    from bridge_ledger.db.transfers_repo import get_transfer_by_transfer_id

    try:
        transfer = get_transfer_by_transfer_id(_store(args), args.transfer_id)
    except Exception as e:
        print(f"Error reading transfer: {e}", file=sys.stderr)
        return 1
    if transfer is None:
        print(f"Transfer {args.transfer_id} not found.", file=sys.stderr)
        return 1
    status = transfer.status
    _print_json({**asdict(transfer), "status": status.value if status else None})
    return 0


def cmd_transfers(args: argparse.Namespace) -> int:
    from bridge_ledger.db.transfers_repo import get_transfers_by_status

    try:
        transfers = get_transfers_by_status(_store(args), args.status, args.limit, args.offset, args.order)
    except Exception as e:
        print(f"Error listing transfers: {e}", file=sys.stderr)
        return 1
    _print_json([asdict(transfer) for transfer in transfers])
    return 0


def cmd_pending(args: argparse.Namespace) -> int:
    """
    Print transfer ids still missing one side.

    ``origin`` lists transfers from DOMAIN that only the destination has
    reported; ``destination`` lists transfers bound for DOMAIN that only the
    origin has reported.
    """
    from bridge_ledger.db.transfers_repo import (
        get_transfers_with_destination_pending,
        get_transfers_with_origin_pending,
    )

    query = get_transfers_with_origin_pending if args.side == "origin" else get_transfers_with_destination_pending
    try:
        transfer_ids = query(_store(args), args.domain, args.limit, args.order)
    except Exception as e:
        print(f"Error listing pending transfers: {e}", file=sys.stderr)
        return 1
    for transfer_id in transfer_ids:
        print(transfer_id)
    return 0


def cmd_balances_import(args: argparse.Namespace) -> int:
    from bridge_ledger.db.routers_repo import save_router_balances

    try:
        snapshot = load_balance_snapshot(Path(args.file))
        applied = save_router_balances(_store(args), snapshot)
    except Exception as e:
        print(f"Error importing balances: {e}", file=sys.stderr)
        return 1
    if snapshot and not applied:
        print("Balance snapshot rejected as malformed; nothing imported.", file=sys.stderr)
        return 1
    print(f"Imported balances for {applied} routers.")
    return 0


def cmd_balances_show(args: argparse.Namespace) -> int:
    from bridge_ledger.db.routers_repo import get_router_balances

    try:
        balances = get_router_balances(_store(args))
    except Exception as e:
        print(f"Error reading balances: {e}", file=sys.stderr)
        return 1
    _print_json([asdict(entry) for entry in balances])
    return 0


def cmd_root_messages(args: argparse.Namespace) -> int:
    from bridge_ledger.db.root_messages_repo import get_root_messages

    processed = None if args.processed is None else args.processed == "true"
    try:
        messages = get_root_messages(_store(args), processed, args.limit, args.order)
    except Exception as e:
        print(f"Error listing root messages: {e}", file=sys.stderr)
        return 1
    _print_json([asdict(message) for message in messages])
    return 0


# ============================================================================
# PARSER
# ============================================================================


def _add_paging(parser: argparse.ArgumentParser, *, offset: bool = False) -> None:
    parser.add_argument("--limit", type=int, help="Page size (default from [queries] default_limit)")
    if offset:
        parser.add_argument("--offset", type=int, default=0, help="Rows to skip (default: 0)")
    parser.add_argument(
        "--order",
        type=str.upper,
        choices=("ASC", "DESC"),
        default="ASC",
        help="Sort direction (default: ASC)",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="bridge-ledger",
        description="Bridge ledger - cross-domain transfer reconciliation store",
    )
    parser.add_argument(
        "--db",
        type=str,
        help="SQLite database path (default: [database] path, or BRIDGE_LEDGER_DB_PATH env var)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # init-db command
    init_parser = subparsers.add_parser("init-db", help="Initialize the database schema")
    init_parser.set_defaults(func=cmd_init_db)

    # checkpoint commands
    checkpoint_parser = subparsers.add_parser("checkpoint", help="Read or write a named checkpoint")
    checkpoint_sub = checkpoint_parser.add_subparsers(dest="checkpoint_command", required=True)
    get_parser = checkpoint_sub.add_parser("get", help="Print a checkpoint (0 when unset)")
    get_parser.add_argument("name")
    get_parser.set_defaults(func=cmd_checkpoint_get)
    set_parser = checkpoint_sub.add_parser("set", help="Overwrite a checkpoint")
    set_parser.add_argument("name")
    set_parser.add_argument("value", type=int)
    set_parser.set_defaults(func=cmd_checkpoint_set)

    # transfer commands
    transfer_parser = subparsers.add_parser("transfer", help="Show one transfer as JSON")
    transfer_parser.add_argument("transfer_id")
    transfer_parser.set_defaults(func=cmd_transfer)

    transfers_parser = subparsers.add_parser("transfers", help="List transfers by derived status")
    transfers_parser.add_argument("status", choices=[status.value for status in XTransferStatus])
    _add_paging(transfers_parser, offset=True)
    transfers_parser.set_defaults(func=cmd_transfers)

    pending_parser = subparsers.add_parser("pending", help="List transfer ids awaiting one side")
    pending_parser.add_argument("side", choices=("origin", "destination"))
    pending_parser.add_argument("domain")
    _add_paging(pending_parser)
    pending_parser.set_defaults(func=cmd_pending)

    # balances commands
    balances_parser = subparsers.add_parser("balances", help="Router balance ledger")
    balances_sub = balances_parser.add_subparsers(dest="balances_command", required=True)
    import_parser = balances_sub.add_parser("import", help="Apply a YAML balance snapshot")
    import_parser.add_argument("file")
    import_parser.set_defaults(func=cmd_balances_import)
    show_parser = balances_sub.add_parser("show", help="Print balances grouped by router")
    show_parser.set_defaults(func=cmd_balances_show)

    # root-messages command
    root_parser = subparsers.add_parser("root-messages", help="List root messages")
    root_parser.add_argument("--processed", choices=("true", "false"), help="Filter on processed state")
    _add_paging(root_parser)
    root_parser.set_defaults(func=cmd_root_messages)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    configure_logging()
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
