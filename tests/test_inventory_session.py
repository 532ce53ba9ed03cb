import logging
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from nova.columns import ROW_INDEX_KEY, ColumnMapping
from nova.header_resolver import to_sheet_rows
from nova.inventory_session import InventorySession
from nova.local_storage import MemoryStorage
from nova.row_classifier import FILTER_PRINTER_EPSON
from nova.sheet_editor import User
from nova.sheets_client import HIGHLIGHT_YELLOW, SheetsApiResponseError


HEADER = [
    "Asset Tag",
    "Serial Number",
    "Type",
    "Manufacturer",
    "Status",
    "Equipment Move",
    "Description",
    "Last Verified Inventory Date",
    "Technician",
    "Scanned Status",
]
SHEET = [
    ["Branch 7 inventory"],
    HEADER,
    ["1001", "S1", "Laptop", "Dell", "Installed"],
    ["1002", "S2", "Printer", "Epson", "Installed"],
    ["1003", "S3", "Laptop", "HP", "Installed"],
    ["1004", "S4", "Printer", "Epson", "Missing", "Yes"],
]
NOW = datetime(2025, 10, 2, 15, 0, tzinfo=timezone.utc)
TODAY = "10/2/2025"
NOT_FOUND = "Equipment not found during Project Nova 2025."


class _FakeClient:
    spreadsheet_id = "sheet-1"

    def __init__(self, rows: List[List[str]]) -> None:
        self.sheet = [list(row) for row in rows]
        self.pushes: List[Dict[str, Any]] = []
        self.highlights: List[Dict[str, Any]] = []
        self.fail_push = False
        self.fail_highlight = False

    def fetch_rows(self, title: str):
        return to_sheet_rows(self.sheet)

    def push_rows(self, rows, title: str) -> int:
        if self.fail_push:
            raise SheetsApiResponseError("Sheets API values.batchUpdate failed (503)", status=503)
        self.pushes.append({"title": title, "rows": [dict(row) for row in rows]})
        return len(rows)

    def highlight_rows(self, row_indices, title: str, color) -> None:
        if self.fail_highlight:
            raise SheetsApiResponseError("Sheets API spreadsheets.batchUpdate failed (403)", status=403)
        self.highlights.append({"rows": list(row_indices), "title": title, "color": dict(color)})


class _Clock:
    def __init__(self) -> None:
        self.now = NOW

    def __call__(self) -> datetime:
        return self.now


def _session(client=None, storage=None, **kwargs) -> InventorySession:
    session = InventorySession(
        client if client is not None else _FakeClient(SHEET),
        "Inventory",
        storage=storage if storage is not None else MemoryStorage(),
        clock=kwargs.pop("clock", _Clock()),
        **kwargs,
    )
    session.open()
    return session


def test_open_detects_header_below_banner() -> None:
    session = _session()

    assert session.context.header_row_index == 1
    assert session.context.total_offset == 2
    assert len(session.view) == 4
    assert session.selection.total_rows == 4
    assert session.display_names()["E"] == "Status"
    assert not session.has_unsynced_changes


def test_tracker_requires_open() -> None:
    session = InventorySession(_FakeClient(SHEET), "Inventory")

    with pytest.raises(RuntimeError):
        session.tracker


def test_filtered_edit_lands_on_the_right_sheet_row() -> None:
    session = _session()
    session.set_filter(FILTER_PRINTER_EPSON)
    assert [row["A"] for row in session.view.rows] == ["1002", "1004"]

    result = session.edit(1, "B", "S4-new")

    assert result.row_indices == [3]
    rows = session.rows
    assert rows[5]["B"] == "S4-new"
    assert rows[3]["B"] == "S2"
    cell = session.tracker.get_change(3, "B")
    assert cell is not None
    assert cell.actual_row_index == 5


def test_filtered_multi_row_edit_translates_selection() -> None:
    session = _session()
    session.set_filter(FILTER_PRINTER_EPSON)
    session.selection.toggle(0, True)
    session.selection.toggle(1, True)

    session.edit(0, "E", "Decommissioned")

    rows = session.rows
    assert rows[3]["E"] == "Decommissioned"
    assert rows[5]["E"] == "Decommissioned"
    assert rows[2]["E"] == "Installed"
    assert session.tracker.changed_rows == {1, 3}


def test_missing_status_highlights_rows() -> None:
    client = _FakeClient(SHEET)
    session = _session(client)

    session.edit(0, "E", "Missing")

    row = session.rows[2]
    assert (row["E"], row["F"], row["G"], row["H"]) == ("Missing", "Yes", NOT_FOUND, TODAY)
    assert client.highlights == [{"rows": [2], "title": "Inventory", "color": dict(HIGHLIGHT_YELLOW)}]


def test_highlight_can_be_disabled() -> None:
    client = _FakeClient(SHEET)
    session = _session(client, highlight_missing=False)

    session.edit(0, "E", "Missing")

    assert client.highlights == []


def test_highlight_failure_is_logged(caplog: pytest.LogCaptureFixture) -> None:
    client = _FakeClient(SHEET)
    client.fail_highlight = True
    session = _session(client)

    with caplog.at_level(logging.WARNING):
        session.edit(0, "E", "Missing")

    assert session.rows[2]["E"] == "Missing"
    assert "Unable to highlight" in caplog.text


def test_sync_pushes_only_changed_rows_and_clears_state() -> None:
    client = _FakeClient(SHEET)
    storage = MemoryStorage()
    clock = _Clock()
    pushed_to_hook: List[List[Dict[str, str]]] = []
    session = _session(client, storage, clock=clock, post_push_hook=pushed_to_hook.append)
    session.edit(1, "E", "Missing")
    session.selection.toggle(2, True)

    assert session.sync() == 1

    rows = client.pushes[0]["rows"]
    assert [row[ROW_INDEX_KEY] for row in rows] == ["3"]
    assert rows[0]["A"] == "1002"
    assert rows[0]["E"] == "Missing"
    assert not any(key.startswith("_") for key in rows[0] if key != ROW_INDEX_KEY)
    assert pushed_to_hook == [rows]
    assert not session.has_unsynced_changes
    assert storage.get_item("unsaved_changes_sheet-1_Inventory") is None
    assert session.selection.selected == frozenset()
    assert session.last_sync_at == NOW

    assert session.sync() == 0
    assert len(client.pushes) == 1


def test_failed_sync_keeps_everything() -> None:
    client = _FakeClient(SHEET)
    storage = MemoryStorage()
    session = _session(client, storage)
    session.edit(0, "B", "S1-new")
    session.selection.toggle(1, True)
    client.fail_push = True

    with pytest.raises(SheetsApiResponseError):
        session.sync()

    assert session.has_unsynced_changes
    assert session.rows[2]["B"] == "S1-new"
    assert session.selection.selected == {1}
    assert storage.get_item("unsaved_changes_sheet-1_Inventory") is not None
    assert session.last_sync_at is None


def test_push_all_sends_every_row_without_row_indices() -> None:
    client = _FakeClient(SHEET)
    session = _session(client)
    session.edit(0, "B", "S1-new")

    assert session.push_all() == len(SHEET)

    rows = client.pushes[0]["rows"]
    assert rows[0]["A"] == "Branch 7 inventory"
    assert rows[2]["B"] == "S1-new"
    assert all(ROW_INDEX_KEY not in row for row in rows)
    assert not session.has_unsynced_changes


def test_unsaved_changes_are_restored_on_open() -> None:
    client = _FakeClient(SHEET)
    storage = MemoryStorage()
    first = _session(client, storage)
    first.edit(2, "E", "Missing")

    second = InventorySession(client, "Inventory", storage=storage, clock=_Clock())
    result = second.open()

    assert result.restored_count == 4
    assert result.show_warning
    assert second.rows[4]["E"] == "Missing"
    assert second.has_unsynced_changes
    assert second.tracker.get_change(2, "E").old_value == "Installed"


def test_refresh_drops_changes_and_reloads() -> None:
    client = _FakeClient(SHEET)
    session = _session(client)
    session.edit(0, "B", "S1-new")
    client.sheet.append(["1005", "S5", "Monitor", "Dell", "Installed"])

    session.refresh()

    assert not session.has_unsynced_changes
    assert session.rows[2]["B"] == "S1"
    assert len(session.view) == 5
    assert session.selection.total_rows == 5


def test_discard_returns_to_last_synced_rows() -> None:
    storage = MemoryStorage()
    session = _session(storage=storage)
    session.edit(0, "E", "Decommissioned")

    session.discard()

    assert session.rows == to_sheet_rows(SHEET)
    assert storage.keys() == []


def test_find_scanned_matches_asset_tag_or_serial() -> None:
    session = _session()

    assert session.find_scanned("1002") == 1
    assert session.find_scanned(" s4 ") == 3
    assert session.find_scanned("unknown") is None
    assert session.find_scanned("") is None

    session.set_filter(FILTER_PRINTER_EPSON)
    assert session.find_scanned("1004") == 1
    assert session.find_scanned("1001") is None


def test_scan_records_status_and_scanned_value() -> None:
    client = _FakeClient(SHEET)
    session = _session(client, user=User(email="tech@branch.example", role="technician"))

    session.scan(0, "Missing", "J", "Missing")

    row = session.rows[2]
    assert row["E"] == "Missing"
    assert row["F"] == "Yes"
    assert row["I"] == "tech@branch.example"
    assert row["J"] == "Missing"
    assert client.highlights[0]["rows"] == [2]


def test_sync_status_text() -> None:
    clock = _Clock()
    session = _session(clock=clock)
    assert session.sync_status_text() is None

    session.edit(0, "B", "S1-new")
    session.sync()

    assert session.sync_status_text(NOW + timedelta(seconds=30)) == "Synced just now"
    assert session.sync_status_text(NOW + timedelta(minutes=5)) == "Synced 5m ago"
    assert session.sync_status_text(NOW + timedelta(hours=3)) == "Synced 3h ago"
    clock.now = NOW + timedelta(days=2)
    assert session.sync_status_text() == "Synced 2d ago"


def test_selection_follows_rows_when_an_edit_hides_one() -> None:
    session = _session()
    session.set_filter("laptop")
    assert session.view.original_index_map == [0, 2]
    session.selection.toggle(1, True)

    session.edit(0, "C", "Printer")

    assert session.view.original_index_map == [2]
    assert session.selection.selected == {0}
    session.edit(0, "B", "S3-new")
    assert session.rows[4]["B"] == "S3-new"
    assert session.rows[2]["B"] == "S1"


def test_visible_columns_follow_mappings() -> None:
    mapped = _session(mappings=[ColumnMapping("Status", "E"), ColumnMapping("Asset Tag", "A")])

    assert mapped.context.header_row_index == 1
    assert mapped.visible_columns() == ["A", "E"]
    assert _session().visible_columns() == [chr(code) for code in range(ord("A"), ord("K"))]
