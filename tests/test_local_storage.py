import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from nova import date_utils
from nova.change_tracker import ChangeTracker
from nova.local_storage import JsonFileStorage, MemoryStorage


def test_json_file_storage_round_trip(tmp_path: Path) -> None:
    storage = JsonFileStorage(tmp_path / "storage")

    assert storage.get_item("unsaved_changes_abc") is None
    storage.set_item("unsaved_changes_abc", '{"changes": []}')

    assert storage.get_item("unsaved_changes_abc") == '{"changes": []}'
    assert (tmp_path / "storage" / "unsaved_changes_abc.json").exists()

    storage.remove_item("unsaved_changes_abc")
    storage.remove_item("unsaved_changes_abc")
    assert storage.get_item("unsaved_changes_abc") is None


def test_json_file_storage_sanitises_keys(tmp_path: Path) -> None:
    storage = JsonFileStorage(tmp_path)

    storage.set_item("unsaved_changes_1AbC:Inventory/2024", "x")

    assert [path.name for path in tmp_path.iterdir()] == ["unsaved_changes_1AbC_Inventory_2024.json"]


def test_tracker_survives_restart_with_file_storage(tmp_path: Path) -> None:
    snapshot = [{"A": "Asset", "B": "Status"}, {"A": "1001", "B": "Installed"}]
    first = ChangeTracker("sheet", snapshot, storage=JsonFileStorage(tmp_path), header_offset=1)
    first.track_cell_change(0, "B", "Installed", "Missing")

    second = ChangeTracker("sheet", snapshot, storage=JsonFileStorage(tmp_path), header_offset=1)
    result = second.restore()

    assert result.restored_count == 1
    assert result.rows[1]["B"] == "Missing"


def test_memory_storage_keys() -> None:
    storage = MemoryStorage({"b": "2"})
    storage.set_item("a", "1")

    assert storage.keys() == ["a", "b"]


def test_format_last_verified_date_is_not_zero_padded() -> None:
    moment = datetime(2025, 3, 5, 16, 0, tzinfo=timezone.utc)

    assert date_utils.format_last_verified_date(moment) == "3/5/2025"


def test_naive_datetimes_are_treated_as_utc() -> None:
    # 01:00 UTC on New Year's Day is still New Year's Eve in New York.
    moment = datetime(2026, 1, 1, 1, 0)

    assert date_utils.format_last_verified_date(moment) == "12/31/2025"
    assert date_utils.current_year(moment) == 2025
    assert date_utils.current_year(moment, "UTC") == 2026


def test_unknown_timezone_is_rejected() -> None:
    with pytest.raises(ValueError):
        date_utils.local_now(tz="Mars/Olympus_Mons")
