"""Command line front end for Nova inventory sheets."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from nova import app_paths
from nova.google_credentials import CredentialsFileInvalidError
from nova.inventory_session import InventorySession
from nova.local_storage import JsonFileStorage
from nova.logging_config import configure_logging
from nova.sheets_client import SheetsClientError, build_client
from nova.version import __version__
from settings import InventorySettings, load_settings

logger = logging.getLogger(__name__)


def _build_client(settings: InventorySettings):
    return build_client(settings.spreadsheet_id, Path(settings.credential_path))


def _build_storage():
    return JsonFileStorage(app_paths.STORAGE_DIR)


def _open_session(args: argparse.Namespace) -> InventorySession:
    settings = load_settings(args.settings)
    title = args.sheet or settings.worksheet_title
    session = InventorySession(
        _build_client(settings),
        title,
        mappings=settings.column_mapping,
        user=settings.user,
        storage=_build_storage(),
        timezone_name=settings.timezone,
        project_name=settings.project_name,
        highlight_missing=settings.highlight_missing,
    )
    result = session.open()
    if result.show_warning:
        print(f"Recovered {result.restored_count} unsaved change(s) from a previous session.")
    if args.filter:
        session.set_filter(args.filter)
    return session


def _print_rows(session: InventorySession, limit: int) -> None:
    columns = session.visible_columns()
    names = session.display_names()
    print("     " + " | ".join(names.get(column, column) for column in columns))
    for position, row in enumerate(session.view.rows[:limit] if limit else session.view.rows):
        values = " | ".join(row.get(column, "") for column in columns)
        print(f"[{position:>3}] {values}")


def command_pull(args: argparse.Namespace) -> int:
    session = _open_session(args)
    context = session.context
    print(f"Worksheet     : {session.worksheet_title}")
    print(f"Header row    : {context.header_row_index + 1}")
    print(f"Visible rows  : {len(session.view)} (filter: {session.filter_value})")
    print(f"Local changes : {session.change_summary().message}")
    if args.show:
        _print_rows(session, args.limit)
    return 0


def command_status(args: argparse.Namespace) -> int:
    session = _open_session(args)
    summary = session.change_summary()
    print(summary.message)
    for cell in session.tracker.changes:
        sheet_row = (cell.actual_row_index if cell.actual_row_index is not None else cell.row_index) + 1
        print(f"  row {sheet_row} {cell.column}: {cell.old_value!r} -> {cell.new_value!r}")
    return 0


def command_edit(args: argparse.Namespace) -> int:
    session = _open_session(args)
    if args.select:
        for row in [args.row, *args.select]:
            session.selection.toggle(row, True)
    result = session.edit(args.row, args.column.strip().upper(), args.value)
    if not result.changed:
        print("No changes.")
        return 0
    for change in result.changes:
        print(f"  row {change.absolute_row_index + 1} {change.column}: {change.old_value!r} -> {change.new_value!r}")
    print(session.change_summary().message)
    return 0


def command_scan(args: argparse.Namespace) -> int:
    session = _open_session(args)
    position = session.find_scanned(args.code)
    if position is None:
        print(f"Error: no row found for {args.code!r}", file=sys.stderr)
        return 1
    sheet_row = (session.view.to_absolute(position) or 0) + 1
    result = session.scan(
        position,
        args.status,
        args.scanned_column.strip().upper(),
        args.scanned_value or args.code,
    )
    print(f"Scanned {args.code} (sheet row {sheet_row}): {len(result.changes)} cell(s) updated")
    print(session.change_summary().message)
    return 0


def command_push(args: argparse.Namespace) -> int:
    session = _open_session(args)
    if args.all:
        count = session.push_all()
    else:
        count = session.sync()
    if count:
        print(f"Pushed {count} row(s) to {session.worksheet_title}.")
    else:
        print("Nothing to push.")
    return 0


def command_discard(args: argparse.Namespace) -> int:
    session = _open_session(args)
    summary = session.change_summary()
    session.discard()
    print(f"Discarded: {summary.message}")
    return 0


def command_refresh(args: argparse.Namespace) -> int:
    session = _open_session(args)
    session.refresh()
    print(f"Reloaded {len(session.view)} row(s) from {session.worksheet_title}.")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Nova inventory sheet editor")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--settings", help="Path to settings.json")
    parser.add_argument("--sheet", help="Worksheet title (defaults to the configured one)")
    parser.add_argument("--filter", help="Row filter: all, a device type or printer-epson")
    parser.add_argument("--verbose", action="store_true", help="Write debug details to the log file")
    subparsers = parser.add_subparsers(dest="command", required=True)

    pull_parser = subparsers.add_parser("pull", help="Load the worksheet and show a summary")
    pull_parser.add_argument("--show", action="store_true", help="Print the visible rows")
    pull_parser.add_argument("--limit", type=int, default=50, help="Maximum rows to print (0 for all)")
    pull_parser.set_defaults(func=command_pull)

    status_parser = subparsers.add_parser("status", help="List unsaved local changes")
    status_parser.set_defaults(func=command_status)

    edit_parser = subparsers.add_parser("edit", help="Edit one cell, applying the inventory rules")
    edit_parser.add_argument("row", type=int, help="Row position in the filtered view")
    edit_parser.add_argument("column", help="Column letter")
    edit_parser.add_argument("value", help="New cell value")
    edit_parser.add_argument(
        "--select",
        type=int,
        action="append",
        help="Additional selected row positions that receive the same value",
    )
    edit_parser.set_defaults(func=command_edit)

    scan_parser = subparsers.add_parser("scan", help="Record a scanned asset tag or serial number")
    scan_parser.add_argument("code", help="Scanned asset tag or serial number")
    scan_parser.add_argument("--status", default="Installed", help="Status to record")
    scan_parser.add_argument("--scanned-column", required=True, help="Column receiving the scanned value")
    scan_parser.add_argument("--scanned-value", help="Value written to the scanned column")
    scan_parser.set_defaults(func=command_scan)

    push_parser = subparsers.add_parser("push", help="Push unsaved changes to Google Sheets")
    push_parser.add_argument("--all", action="store_true", help="Overwrite the whole worksheet")
    push_parser.set_defaults(func=command_push)

    discard_parser = subparsers.add_parser("discard", help="Drop unsaved local changes")
    discard_parser.set_defaults(func=command_discard)

    refresh_parser = subparsers.add_parser("refresh", help="Reload the worksheet, dropping local changes")
    refresh_parser.set_defaults(func=command_refresh)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(logging.DEBUG if args.verbose else logging.INFO)
    try:
        return args.func(args)
    except (SheetsClientError, CredentialsFileInvalidError) as exc:
        logger.error("%s failed: %s", args.command, exc)
        print(f"Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
