import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from nova.change_tracker import ChangeTracker
from nova.columns import ColumnResolver
from nova.local_storage import MemoryStorage
from nova.sheet_editor import SheetEditor, User, equipment_move_for_status


HEADERS = {
    "A": "Asset Tag",
    "B": "Serial Number",
    "C": "Status",
    "D": "Equipment Move",
    "E": "Description",
    "F": "Last Verified Inventory Date",
    "G": "Technician",
    "H": "Scanned Status",
    "I": "Image",
}
TODAY = "10/2/2025"
DECOMMISSIONED = "Equipment was decommissioned during Project Nova 2025"
NOT_FOUND = "Equipment not found during Project Nova 2025."
FOUND_AT_BRANCH = "Equipment found at branch during Project Nova 2025. Will remain at branch."

ADMIN = User(email="admin@branch.example", role="admin")
TECH = User(email="tech@branch.example", role="technician")


def _clock() -> datetime:
    # 11:00 in New York, still October 2nd.
    return datetime(2025, 10, 2, 15, 0, tzinfo=timezone.utc)


def _rows() -> List[Dict[str, str]]:
    blank = {letter: "" for letter in HEADERS}
    return [
        dict(blank, A="Branch 7 inventory"),
        dict(HEADERS),
        dict(blank, A="1001", B="S1", C="Installed"),
        dict(blank, A="1002", B="S2", C="Installed", G="someone@branch.example"),
        dict(blank, A="1003", B="S3", C="Missing", D="Yes"),
    ]


def _editor(user: User = ADMIN, tracker=None, headers=HEADERS) -> SheetEditor:
    resolver = ColumnResolver(list(headers), headers)
    return SheetEditor(resolver, user=user, header_offset=2, tracker=tracker, clock=_clock)


def _tracker() -> ChangeTracker:
    return ChangeTracker("sheet", _rows(), storage=MemoryStorage(), header_offset=2, clock=lambda: 1.0)


def test_equipment_move_for_status() -> None:
    assert equipment_move_for_status("Decommissioned") == "Yes"
    assert equipment_move_for_status("missing - not on site") == "Yes"
    assert equipment_move_for_status("Damaged") == "Yes"
    assert equipment_move_for_status("Disconnected") == "Yes"
    assert equipment_move_for_status("Installed") == "No"
    assert equipment_move_for_status("In storage") is None


def test_decommission_edit_fills_derived_fields() -> None:
    tracker = _tracker()
    editor = _editor(tracker=tracker)
    rows = _rows()

    result = editor.apply_edit(rows, 0, "C", "Decommissioned")

    row = result.rows[2]
    assert row["C"] == "Decommissioned"
    assert row["D"] == "Yes"
    assert row["E"] == DECOMMISSIONED
    assert row["F"] == TODAY
    assert [change.column for change in result.changes] == ["C", "D", "E", "F"]
    assert {change.row_index for change in result.changes} == {0}
    assert {cell.column for cell in tracker.changes} == {"C", "D", "E", "F"}
    assert all(cell.row_index == 0 and cell.actual_row_index == 2 for cell in tracker.changes)
    # The input rows are never mutated.
    assert rows == _rows()


def test_reverting_status_keeps_only_real_differences() -> None:
    tracker = _tracker()
    editor = _editor(tracker=tracker)
    first = editor.apply_edit(_rows(), 0, "C", "Decommissioned")

    second = editor.apply_edit(first.rows, 0, "C", "Installed")

    row = second.rows[2]
    assert row["C"] == "Installed"
    assert row["D"] == "No"
    assert row["E"] == FOUND_AT_BRANCH
    assert row["F"] == TODAY
    assert not tracker.is_cell_changed(0, "C")
    assert tracker.get_change(0, "D").new_value == "No"
    assert tracker.get_change(0, "E").new_value == FOUND_AT_BRANCH
    assert tracker.get_change(0, "F").old_value == ""


def test_missing_status_writes_not_found_description() -> None:
    result = _editor().apply_edit(_rows(), 1, "C", "Missing")

    row = result.rows[3]
    assert row["D"] == "Yes"
    assert row["E"] == NOT_FOUND


def test_damaged_status_sets_move_without_description() -> None:
    result = _editor().apply_edit(_rows(), 0, "C", "Damaged")

    row = result.rows[2]
    assert row["D"] == "Yes"
    assert row["E"] == ""


def test_equipment_move_edit_can_trigger_found_at_branch_description() -> None:
    result = _editor().apply_edit(_rows(), 0, "D", "No")

    row = result.rows[2]
    assert row["E"] == FOUND_AT_BRANCH
    assert row["F"] == TODAY


def test_unrelated_edit_does_not_write_description() -> None:
    rows = _rows()
    rows[2]["D"] = "No"

    result = _editor().apply_edit(rows, 0, "B", "S1-new")

    assert result.rows[2]["E"] == ""
    assert [change.column for change in result.changes] == ["B", "F"]


def test_no_op_edit_changes_nothing() -> None:
    tracker = _tracker()

    result = _editor(user=TECH, tracker=tracker).apply_edit(_rows(), 0, "C", "Installed")

    assert result.changes == []
    assert not tracker.has_changes


def test_editing_the_date_column_does_not_restamp_it() -> None:
    result = _editor().apply_edit(_rows(), 0, "F", "1/1/2024")

    assert result.rows[2]["F"] == "1/1/2024"
    assert [change.column for change in result.changes] == ["F"]


def test_technician_is_filled_once_for_non_admin_users() -> None:
    editor = _editor(user=TECH)

    result = editor.apply_edit(_rows(), 0, "B", "S1-new")
    other = editor.apply_edit(_rows(), 1, "B", "S2-new")

    assert result.rows[2]["G"] == "tech@branch.example"
    assert other.rows[3]["G"] == "someone@branch.example"
    assert _editor(user=ADMIN).apply_edit(_rows(), 0, "B", "S1-new").rows[2]["G"] == ""


def test_multi_row_selection_applies_rules_to_every_row() -> None:
    tracker = _tracker()
    editor = _editor(user=TECH, tracker=tracker)

    result = editor.apply_edit(_rows(), 1, "C", "Missing", selection={0, 1})

    for absolute in (2, 3):
        row = result.rows[absolute]
        assert row["C"] == "Missing"
        assert row["D"] == "Yes"
        assert row["E"] == NOT_FOUND
        assert row["F"] == TODAY
    assert result.rows[2]["G"] == "tech@branch.example"
    assert result.rows[4] == _rows()[4]
    assert tracker.changed_rows == {0, 1}


def test_selection_not_containing_edited_row_edits_single_row() -> None:
    result = _editor().apply_edit(_rows(), 0, "B", "S1-new", selection={1, 2})

    assert result.row_indices == [0]


def test_missing_columns_are_skipped() -> None:
    headers = {"A": "Asset Tag", "B": "Serial Number", "C": "Status"}
    result = _editor(user=TECH, headers=headers).apply_edit(_rows(), 0, "C", "Decommissioned")

    assert [change.column for change in result.changes] == ["C"]


def test_out_of_range_rows_are_ignored() -> None:
    rows = _rows()

    result = _editor().apply_edit(rows, 10, "C", "Missing")

    assert result.changes == []
    assert result.rows == rows


def test_scan_sets_move_even_when_status_is_unchanged() -> None:
    tracker = _tracker()
    editor = _editor(tracker=tracker)

    result = editor.apply_scan(_rows(), 0, "C", "Installed", "H", "Installed", "I", "photo-1.jpg")

    row = result.rows[2]
    assert row["D"] == "No"
    assert row["H"] == "Installed"
    assert row["I"] == "photo-1.jpg"
    assert {cell.column for cell in tracker.changes} == {"D", "H", "I"}


def test_scan_with_status_change_runs_edit_rules() -> None:
    result = _editor().apply_scan(_rows(), 1, "C", "Missing", "H", "Missing")

    row = result.rows[3]
    assert row["C"] == "Missing"
    assert row["D"] == "Yes"
    assert row["E"] == NOT_FOUND
    assert row["F"] == TODAY
    assert row["H"] == "Missing"


def test_date_uses_configured_timezone() -> None:
    resolver = ColumnResolver(list(HEADERS), HEADERS)
    late = lambda: datetime(2025, 10, 3, 2, 30, tzinfo=timezone.utc)  # noqa: E731

    new_york = SheetEditor(resolver, header_offset=2, clock=late)
    utc = SheetEditor(resolver, header_offset=2, clock=late, timezone_name="UTC")

    assert new_york.apply_edit(_rows(), 0, "B", "x").rows[2]["F"] == "10/2/2025"
    assert utc.apply_edit(_rows(), 0, "B", "x").rows[2]["F"] == "10/3/2025"
