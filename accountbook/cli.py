#!/usr/bin/env python3
"""Command-line interface for Account Book.

This module provides CLI commands for the local record store and for
syncing it with a sync server.

Commands:
    list-records                    List all records
    show-record <id>                Show details of a specific record
    new-record                      Create a new record
    edit-record <id>                Edit an existing record
    delete-record <id>              Delete a record
    stats                           Show income, expense and balance
    export <file>                   Export records to JSON
    import <file>                   Import records from JSON
    sync register|login|logout      Manage the sync account
    sync status|pull|push|now       Sync with the server
"""

from __future__ import annotations

import argparse
import getpass
import json
import sys
from pathlib import Path
from typing import Any, Dict, Optional

from accountbook.core.config import Config
from accountbook.core.export import export_records, import_records
from accountbook.core.models import Record, get_category_label
from accountbook.core.record_store import RecordStore
from accountbook.core.sync_client import AuthError, SyncClient, SyncError
from accountbook.core.timestamp_utils import format_timestamp
from accountbook.core.validation import ValidationError


def record_to_json(record: Record) -> Dict[str, Any]:
    """Convert a record to a dict for JSON output."""
    data = record.to_dict()
    data["synced"] = record.version is not None
    return data


def format_record(record: Record, format_type: str = "text") -> str:
    """Format a single record for display.

    Args:
        record: Record to format
        format_type: Output format (text, json)

    Returns:
        Formatted record string
    """
    if format_type == "json":
        return json.dumps(record_to_json(record), indent=2, ensure_ascii=False)

    sign = "+" if record.type == "income" else "-"
    lines = [
        f"ID: {record.id}",
        f"Type: {record.type}",
        f"Amount: {sign}{record.amount:.2f}",
        f"Category: {get_category_label(record.category) or '-'}",
        f"Created: {format_timestamp(record.create_time)}",
        f"Modified: {format_timestamp(record.update_time)}",
        f"Version: {record.version if record.version is not None else 'not synced'}",
    ]
    if record.remark:
        lines.append(f"\n{record.remark}")
    return "\n".join(lines)


def cmd_list_records(store: RecordStore, args: argparse.Namespace) -> int:
    """List all records.

    Args:
        store: Local record store
        args: Parsed command-line arguments

    Returns:
        Exit code (0 for success)
    """
    records = store.get_all()

    if args.format == "json":
        print(json.dumps([record_to_json(r) for r in records], indent=2, ensure_ascii=False))
        return 0

    if not records:
        print("No records found.")
        return 0

    for record in records:
        sign = "+" if record.type == "income" else "-"
        pending = "" if record.version is not None else " *"
        remark = record.remark if len(record.remark) <= 40 else record.remark[:40] + "..."
        print(
            f"{record.id} | {format_timestamp(record.create_time)} | "
            f"{sign}{record.amount:.2f} | {get_category_label(record.category) or '-'}"
            f"{' | ' + remark if remark else ''}{pending}"
        )
    return 0


def cmd_show_record(store: RecordStore, args: argparse.Namespace) -> int:
    """Show details of a specific record.

    Returns:
        Exit code (0 for success, 1 for not found)
    """
    record = store.get(args.record_id)
    if not record:
        print(f"Error: Record with ID {args.record_id} not found.", file=sys.stderr)
        return 1

    print(format_record(record, args.format))
    return 0


def cmd_new_record(store: RecordStore, args: argparse.Namespace) -> int:
    """Create a new record.

    Returns:
        Exit code (0 for success)
    """
    record = store.add_record(
        args.type,
        args.amount,
        category=args.category or "",
        remark=args.remark or "",
        create_time=args.time,
    )
    if args.format == "json":
        print(json.dumps(record_to_json(record), ensure_ascii=False))
    else:
        print(f"Created record {record.id}")
    return 0


def cmd_edit_record(store: RecordStore, args: argparse.Namespace) -> int:
    """Edit an existing record.

    Returns:
        Exit code (0 for success, 1 for error)
    """
    changes = {
        name: getattr(args, name)
        for name in ("type", "amount", "category", "remark")
        if getattr(args, name) is not None
    }
    if not changes:
        print("Error: Nothing to change. Use --type, --amount, --category or --remark.", file=sys.stderr)
        return 1

    record = store.update_record(args.record_id, **changes)
    if not record:
        print(f"Error: Record with ID {args.record_id} not found.", file=sys.stderr)
        return 1

    if args.format == "json":
        print(json.dumps(record_to_json(record), ensure_ascii=False))
    else:
        print(f"Updated record {record.id}")
    return 0


def cmd_delete_record(store: RecordStore, args: argparse.Namespace) -> int:
    """Delete a record.

    Returns:
        Exit code (0 for success, 1 for not found)
    """
    if not store.delete(args.record_id):
        print(f"Error: Record with ID {args.record_id} not found.", file=sys.stderr)
        return 1

    if args.format == "json":
        print(json.dumps({"id": args.record_id, "deleted": True}))
    else:
        print(f"Deleted record {args.record_id}")
    return 0


def cmd_stats(store: RecordStore, args: argparse.Namespace) -> int:
    """Show total income, total expense and balance."""
    stats = store.get_stats()
    if args.format == "json":
        print(json.dumps(stats, indent=2))
    else:
        print(f"Income:  {stats['total_income']:.2f}")
        print(f"Expense: {stats['total_expense']:.2f}")
        print(f"Balance: {stats['balance']:.2f}")
    return 0


def cmd_export(store: RecordStore, args: argparse.Namespace) -> int:
    """Export records to a JSON file."""
    count = export_records(store, args.file)
    if args.format == "json":
        print(json.dumps({"file": str(args.file), "exported": count}))
    else:
        print(f"Exported {count} records to {args.file}")
    return 0


def cmd_import(store: RecordStore, args: argparse.Namespace) -> int:
    """Import records from a JSON file.

    Returns:
        Exit code (0 for success, 1 if the file cannot be read)
    """
    try:
        count = import_records(store, args.file)
    except (OSError, ValueError) as e:
        print(f"Error: Cannot import {args.file}: {e}", file=sys.stderr)
        return 1

    if args.format == "json":
        print(json.dumps({"file": str(args.file), "imported": count}))
    else:
        print(f"Imported {count} records from {args.file}")
    return 0


# ===== Sync commands =====


def _read_password(args: argparse.Namespace) -> str:
    if args.password is not None:
        return args.password
    return getpass.getpass("Password: ")


def _apply_server_option(config: Config, args: argparse.Namespace) -> None:
    server = getattr(args, "server", None)
    if server:
        config.set_server_url(server)


def cmd_sync_register(store: RecordStore, config: Config, args: argparse.Namespace) -> int:
    """Create an account on the sync server."""
    _apply_server_option(config, args)
    client = SyncClient.from_config(store, config)
    user_id = client.register(args.username, _read_password(args))

    if args.format == "json":
        print(json.dumps({"username": args.username, "user_id": user_id}))
    else:
        print(f"Registered {args.username} on {client.server_url}")
    return 0


def cmd_sync_login(store: RecordStore, config: Config, args: argparse.Namespace) -> int:
    """Log in and store the token in the config file."""
    _apply_server_option(config, args)
    client = SyncClient.from_config(store, config)
    token = client.login(args.username, _read_password(args))
    config.set_credentials(args.username, token)

    if args.format == "json":
        print(json.dumps({"username": args.username, "logged_in": True}))
    else:
        print(f"Logged in to {client.server_url} as {args.username}")
    return 0


def cmd_sync_logout(config: Config, args: argparse.Namespace) -> int:
    """Forget the stored token."""
    config.clear_credentials()
    if args.format == "json":
        print(json.dumps({"logged_in": False}))
    else:
        print("Logged out")
    return 0


def cmd_sync_status(store: RecordStore, config: Config, args: argparse.Namespace) -> int:
    """Show sync account, watermark and pending changes.

    Args:
        store: Local record store
        config: Config instance
        args: Parsed command-line arguments

    Returns:
        Exit code (0 for success)
    """
    watermark = store.get_watermark()
    status = {
        "server_url": config.get_server_url(),
        "username": config.get_username(),
        "logged_in": bool(config.get_token()),
        "last_sync_version": watermark,
        "pending_changes": len(store.select_dirty(watermark)),
    }

    if args.format == "json":
        print(json.dumps(status, indent=2))
    else:
        print(f"Server: {status['server_url']}")
        if status["logged_in"]:
            print(f"Account: {status['username']}")
        else:
            print("Account: not logged in")
        print(f"Last Sync Version: {watermark}")
        print(f"Pending Changes: {status['pending_changes']}")
    return 0


def cmd_sync_pull(store: RecordStore, config: Config, args: argparse.Namespace) -> int:
    """Pull and merge records changed on the server."""
    client = SyncClient.from_config(store, config)
    merged = client.merge(client.pull(store.get_watermark()))

    if args.format == "json":
        print(json.dumps({"pulled": merged, "last_sync_version": store.get_watermark()}))
    else:
        print(f"Pulled {merged} records (last sync version {store.get_watermark()})")
    return 0


def cmd_sync_push(store: RecordStore, config: Config, args: argparse.Namespace) -> int:
    """Push local changes.

    Returns:
        Exit code (0 for success, 1 if any record was rejected)
    """
    client = SyncClient.from_config(store, config)
    result = client.push(client.select_dirty(store.get_watermark()))

    if args.format == "json":
        print(json.dumps({
            "pushed": result.applied,
            "errors": result.errors,
            "last_sync_version": store.get_watermark(),
        }, indent=2))
    else:
        print(f"Pushed {result.applied} records")
        for error in result.errors:
            print(f"  - Record {error.get('id')}: {error.get('error')}")
    return 1 if result.errors else 0


def cmd_sync_now(store: RecordStore, config: Config, args: argparse.Namespace) -> int:
    """Pull then push.

    Returns:
        Exit code (0 for success, 1 for any failures)
    """
    client = SyncClient.from_config(store, config)
    result = client.auto_sync()

    if args.format == "json":
        print(json.dumps({
            "success": result.success,
            "pulled": result.pulled,
            "pushed": result.pushed,
            "errors": result.errors,
            "last_sync_version": store.get_watermark(),
        }, indent=2))
    elif result.success:
        print("Sync completed:")
        print(f"  Pulled: {result.pulled} records")
        print(f"  Pushed: {result.pushed} records")
    else:
        print("Sync finished with errors:")
        print(f"  Pulled: {result.pulled} records")
        print(f"  Pushed: {result.pushed} records")
        for error in result.errors:
            print(f"  - {error}")

    return 0 if result.success else 1


def add_cli_subparser(subparsers: argparse._SubParsersAction[argparse.ArgumentParser]) -> None:
    """Add CLI subparser and its nested subcommands.

    Args:
        subparsers: Parent subparsers object to add CLI parser to
    """
    cli_parser = subparsers.add_parser(
        "cli",
        help="Command-line interface",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    cli_parser.add_argument(
        "--format",
        choices=["text", "json"],
        default="text",
        help="Output format (default: text)"
    )

    cli_subparsers = cli_parser.add_subparsers(dest="cli_command", help="CLI commands")

    cli_subparsers.add_parser("list-records", help="List all records")

    show_parser = cli_subparsers.add_parser("show-record", help="Show details of a specific record")
    show_parser.add_argument("record_id", type=str, help="Record ID")

    new_parser = cli_subparsers.add_parser("new-record", help="Create a new record")
    new_parser.add_argument(
        "--type", choices=["income", "expense"], required=True, help="Record type"
    )
    new_parser.add_argument("--amount", type=str, required=True, help="Amount (non-negative)")
    new_parser.add_argument("--category", type=str, default="", help="Category (e.g. salary, food)")
    new_parser.add_argument("--remark", type=str, default="", help="Free-text remark")
    new_parser.add_argument(
        "--time", type=str, default=None, help="Creation time (default: now, UTC)"
    )

    edit_parser = cli_subparsers.add_parser("edit-record", help="Edit an existing record")
    edit_parser.add_argument("record_id", type=str, help="Record ID")
    edit_parser.add_argument("--type", choices=["income", "expense"], default=None)
    edit_parser.add_argument("--amount", type=str, default=None)
    edit_parser.add_argument("--category", type=str, default=None)
    edit_parser.add_argument("--remark", type=str, default=None)

    delete_parser = cli_subparsers.add_parser("delete-record", help="Delete a record")
    delete_parser.add_argument("record_id", type=str, help="Record ID")

    cli_subparsers.add_parser("stats", help="Show total income, expense and balance")

    export_parser = cli_subparsers.add_parser("export", help="Export records to a JSON file")
    export_parser.add_argument("file", type=Path, help="Output file")

    import_parser = cli_subparsers.add_parser("import", help="Import records from a JSON file")
    import_parser.add_argument("file", type=Path, help="Input file")

    # sync command with subcommands
    sync_parser = cli_subparsers.add_parser(
        "sync",
        help="Sync operations (account, status, pull, push)"
    )
    sync_subparsers = sync_parser.add_subparsers(dest="sync_command", help="Sync commands")

    for name, help_text in (("register", "Create an account"), ("login", "Log in")):
        account_parser = sync_subparsers.add_parser(name, help=help_text)
        account_parser.add_argument("username", type=str, help="Account name")
        account_parser.add_argument(
            "--password", type=str, default=None, help="Password (prompted if omitted)"
        )
        account_parser.add_argument(
            "--server", type=str, default=None, help="Sync server URL (saved to config)"
        )

    sync_subparsers.add_parser("logout", help="Forget the stored token")
    sync_subparsers.add_parser("status", help="Show sync status")
    sync_subparsers.add_parser("pull", help="Download and merge server changes")
    sync_subparsers.add_parser("push", help="Upload local changes")
    sync_subparsers.add_parser("now", help="Pull then push")


def run_sync_command(store: RecordStore, config: Config, args: argparse.Namespace) -> int:
    """Dispatch a sync subcommand."""
    sync_cmd = getattr(args, 'sync_command', None)
    if not sync_cmd:
        print("Error: No sync command specified. Use 'sync --help'.", file=sys.stderr)
        return 1

    try:
        if sync_cmd == "register":
            return cmd_sync_register(store, config, args)
        elif sync_cmd == "login":
            return cmd_sync_login(store, config, args)
        elif sync_cmd == "logout":
            return cmd_sync_logout(config, args)
        elif sync_cmd == "status":
            return cmd_sync_status(store, config, args)
        elif sync_cmd == "pull":
            return cmd_sync_pull(store, config, args)
        elif sync_cmd == "push":
            return cmd_sync_push(store, config, args)
        elif sync_cmd == "now":
            return cmd_sync_now(store, config, args)
        else:
            print(f"Error: Unknown sync command '{sync_cmd}'", file=sys.stderr)
            return 1
    except AuthError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1
    except SyncError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1


def run(config_dir: Optional[Path], args: argparse.Namespace) -> int:
    """Run CLI with given arguments.

    Args:
        config_dir: Custom configuration directory or None for default
        args: Parsed command-line arguments (should have cli_command attribute)

    Returns:
        Exit code (0 for success, 1 for error)
    """
    if not hasattr(args, 'cli_command') or not args.cli_command:
        print("Error: No CLI command specified. Use --help for available commands.", file=sys.stderr)
        return 1

    config = Config(config_dir=config_dir)
    store_path = config.get_local_database_file()
    store_path.parent.mkdir(parents=True, exist_ok=True)
    store = RecordStore(store_path)

    try:
        if args.cli_command == "list-records":
            return cmd_list_records(store, args)
        elif args.cli_command == "show-record":
            return cmd_show_record(store, args)
        elif args.cli_command == "new-record":
            return cmd_new_record(store, args)
        elif args.cli_command == "edit-record":
            return cmd_edit_record(store, args)
        elif args.cli_command == "delete-record":
            return cmd_delete_record(store, args)
        elif args.cli_command == "stats":
            return cmd_stats(store, args)
        elif args.cli_command == "export":
            return cmd_export(store, args)
        elif args.cli_command == "import":
            return cmd_import(store, args)
        elif args.cli_command == "sync":
            return run_sync_command(store, config, args)
        else:
            print(f"Error: Unknown command '{args.cli_command}'", file=sys.stderr)
            return 1
    except ValidationError as e:
        print(f"Error: Invalid {e.field} - {e.message}", file=sys.stderr)
        return 1
    finally:
        store.close()
