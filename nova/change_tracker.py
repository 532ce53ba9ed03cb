"""Per-cell change tracking with crash recovery.

The tracker keeps the minimal difference between the last synced snapshot of
a worksheet and the rows being edited locally.  Each tracked cell stores the
value from the snapshot (never an intermediate edit), so editing a cell back
to its original value removes it from the change set and the row is not sent
on the next push.

Every mutation is persisted to a key/value store under
``unsaved_changes_<sheet id>`` so edits survive a crash or restart::

    {"sheetId": ..., "timestamp": ..., "headerOffset": 2,
     "changes": [{"rowIndex": 0, "column": "C", "oldValue": "Installed",
                  "newValue": "Missing", "timestamp": ..., "actualRowIndex": 2}]}

Storage failures are logged and never propagate: a corrupt entry is dropped,
and a failed write leaves the in-memory state intact.
"""
from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, FrozenSet, List, Mapping, Optional, Sequence, Tuple

from nova.columns import ROW_INDEX_KEY, SheetRow, is_cell_key
from nova.local_storage import MemoryStorage

logger = logging.getLogger(__name__)

STORAGE_KEY_PREFIX = "unsaved_changes_"
WARNING_SHOWN_KEY_PREFIX = "change_warning_shown_"

Clock = Callable[[], float]
CellKey = Tuple[int, str]


@dataclass
class ChangedCell:
    """A single edited cell relative to the last synced snapshot."""

    row_index: int
    column: str
    old_value: str
    new_value: str
    timestamp: int
    actual_row_index: Optional[int] = None

    @property
    def key(self) -> CellKey:
        """``(absolute row, column)``; unique even when clean indices collide."""

        row = self.actual_row_index if self.actual_row_index is not None else self.row_index
        return (row, self.column)

    def to_json(self) -> Dict[str, object]:
        payload: Dict[str, object] = {
            "rowIndex": self.row_index,
            "column": self.column,
            "oldValue": self.old_value,
            "newValue": self.new_value,
            "timestamp": self.timestamp,
        }
        if self.actual_row_index is not None:
            payload["actualRowIndex"] = self.actual_row_index
        return payload

    @classmethod
    def from_json(cls, data: Mapping[str, object]) -> "ChangedCell":
        actual = data.get("actualRowIndex")
        return cls(
            row_index=int(data["rowIndex"]),  # type: ignore[arg-type]
            column=str(data["column"]),
            old_value=str(data.get("oldValue", "") or ""),
            new_value=str(data.get("newValue", "") or ""),
            timestamp=int(data.get("timestamp", 0) or 0),  # type: ignore[arg-type]
            actual_row_index=int(actual) if actual is not None else None,  # type: ignore[arg-type]
        )


@dataclass(frozen=True)
class ChangeSummary:
    cell_count: int
    row_count: int
    message: str


@dataclass
class RestoreResult:
    """Outcome of :meth:`ChangeTracker.restore`."""

    rows: List[SheetRow]
    restored_count: int = 0
    show_warning: bool = False


def _copy_rows(rows: Sequence[Mapping[str, str]]) -> List[SheetRow]:
    return [dict(row) for row in rows]


class ChangeTracker:
    """Track edited cells of one worksheet and persist them durably."""

    def __init__(
        self,
        sheet_id: str,
        original_rows: Sequence[Mapping[str, str]] = (),
        storage=None,
        header_offset: int = 0,
        clock: Optional[Clock] = None,
    ) -> None:
        self._sheet_id = sheet_id
        self._original_rows: List[SheetRow] = _copy_rows(original_rows)
        self._storage = storage if storage is not None else MemoryStorage()
        self._header_offset = max(0, int(header_offset))
        self._clock: Clock = clock or time.time
        self._changes: Dict[CellKey, ChangedCell] = {}

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------
    @property
    def sheet_id(self) -> str:
        return self._sheet_id

    @property
    def storage_key(self) -> str:
        return f"{STORAGE_KEY_PREFIX}{self._sheet_id}"

    @property
    def warning_key(self) -> str:
        return f"{WARNING_SHOWN_KEY_PREFIX}{self._sheet_id}"

    @property
    def header_offset(self) -> int:
        return self._header_offset

    @property
    def original_rows(self) -> List[SheetRow]:
        return _copy_rows(self._original_rows)

    @property
    def changes(self) -> List[ChangedCell]:
        return [self._changes[key] for key in sorted(self._changes)]

    @property
    def changed_rows(self) -> FrozenSet[int]:
        """Clean indices of rows with at least one tracked cell.

        Rows restored above the current header offset come out negative.
        """

        return frozenset(row - self._header_offset for row, _column in self._changes)

    @property
    def has_changes(self) -> bool:
        return bool(self._changes)

    def get_change(self, row_index: int, column: str) -> Optional[ChangedCell]:
        return self._changes.get((row_index + self._header_offset, column))

    def is_cell_changed(self, row_index: int, column: str) -> bool:
        return (row_index + self._header_offset, column) in self._changes

    # ------------------------------------------------------------------
    # Snapshot management
    # ------------------------------------------------------------------
    def set_original_rows(self, rows: Sequence[Mapping[str, str]]) -> None:
        self._original_rows = _copy_rows(rows)

    def set_header_offset(self, offset: int) -> None:
        self._header_offset = max(0, int(offset))

    def _original_value(self, absolute_index: int, column: str) -> str:
        if 0 <= absolute_index < len(self._original_rows):
            return str(self._original_rows[absolute_index].get(column, "") or "")
        return ""

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    # ------------------------------------------------------------------
    # Tracking
    # ------------------------------------------------------------------
    def track_cell_change(self, row_index: int, column: str, old_value: str, new_value: str) -> None:
        """Record that ``column`` of clean row ``row_index`` changed.

        ``old_value`` is only used to skip no-op edits; the value stored on the
        change is always read from the synced snapshot.
        """

        old_value = "" if old_value is None else str(old_value)
        new_value = "" if new_value is None else str(new_value)
        if old_value == new_value:
            return

        absolute_index = row_index + self._header_offset
        original = self._original_value(absolute_index, column)
        key = (absolute_index, column)

        if new_value == original:
            if self._changes.pop(key, None) is not None:
                logger.debug("Change to row %s column %s reverted", row_index, column)
                self.persist()
            return

        self._changes[key] = ChangedCell(
            row_index=row_index,
            column=column,
            old_value=original,
            new_value=new_value,
            timestamp=self._now_ms(),
            actual_row_index=absolute_index,
        )
        self.persist()

    def _absolute_index(self, cell: ChangedCell) -> int:
        if cell.actual_row_index is not None:
            return cell.actual_row_index
        return cell.row_index + self._header_offset

    def get_changed_rows_for_sync(self, local_rows: Sequence[Mapping[str, str]]) -> List[SheetRow]:
        """Return full copies of every changed row tagged with ``_rowIndex``.

        ``local_rows`` are the current rows including banner and header rows,
        indexed by absolute position.  The result is ordered by sheet row.
        """

        absolute_indices = sorted({self._absolute_index(cell) for cell in self._changes.values()})
        rows: List[SheetRow] = []
        for absolute_index in absolute_indices:
            if not 0 <= absolute_index < len(local_rows):
                logger.warning(
                    "Skipping changed row %s for sheet %s: outside the %s loaded rows",
                    absolute_index,
                    self._sheet_id,
                    len(local_rows),
                )
                continue
            source = local_rows[absolute_index]
            row: SheetRow = {key: str(value) for key, value in source.items() if is_cell_key(key)}
            row[ROW_INDEX_KEY] = str(absolute_index)
            rows.append(row)
        return rows

    def get_change_summary(self) -> ChangeSummary:
        cell_count = len(self._changes)
        row_count = len(self.changed_rows)
        if cell_count == 0:
            message = "No unsaved changes"
        else:
            message = (
                f"{cell_count} change{'' if cell_count == 1 else 's'} "
                f"in {row_count} row{'' if row_count == 1 else 's'}"
            )
        return ChangeSummary(cell_count=cell_count, row_count=row_count, message=message)

    def clear_changes(self) -> None:
        """Forget all tracked cells and remove the recovery entries."""

        self._changes.clear()
        for key in (self.storage_key, self.warning_key):
            try:
                self._storage.remove_item(key)
            except OSError as exc:
                logger.warning("Unable to remove %s from local storage: %s", key, exc)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------
    def _payload(self) -> Dict[str, object]:
        return {
            "sheetId": self._sheet_id,
            "timestamp": self._now_ms(),
            "headerOffset": self._header_offset,
            "changes": [cell.to_json() for cell in self.changes],
        }

    def persist(self) -> None:
        """Write the change set to storage, removing the entry when empty."""

        try:
            if not self._changes:
                self._storage.remove_item(self.storage_key)
                return
            self._storage.set_item(self.storage_key, json.dumps(self._payload()))
        except OSError as exc:
            logger.warning("Unable to persist unsaved changes for %s: %s", self._sheet_id, exc)

    def _load_payload(self) -> Optional[Mapping[str, object]]:
        try:
            raw = self._storage.get_item(self.storage_key)
        except OSError as exc:
            logger.warning("Unable to read unsaved changes for %s: %s", self._sheet_id, exc)
            self._drop_entry()
            return None
        if not raw:
            return None
        try:
            payload = json.loads(raw)
        except ValueError as exc:
            logger.warning("Discarding corrupt unsaved changes for %s: %s", self._sheet_id, exc)
            self._drop_entry()
            return None
        if not isinstance(payload, dict) or not isinstance(payload.get("changes"), list):
            logger.warning("Discarding malformed unsaved changes for %s", self._sheet_id)
            self._drop_entry()
            return None
        return payload

    def _drop_entry(self) -> None:
        try:
            self._storage.remove_item(self.storage_key)
        except OSError as exc:
            logger.warning("Unable to remove %s from local storage: %s", self.storage_key, exc)

    def restore(self, original_rows: Optional[Sequence[Mapping[str, str]]] = None) -> RestoreResult:
        """Rebuild the change set from storage and replay it on the snapshot.

        Each cell is replayed at its stored absolute row so that banner rows
        added to the sheet since the changes were saved cannot shift the edits
        onto other rows.  Restoring twice yields the same rows and change set.
        """

        if original_rows is not None:
            self.set_original_rows(original_rows)
        rows = _copy_rows(self._original_rows)
        self._changes = {}

        payload = self._load_payload()
        if payload is None:
            return RestoreResult(rows=rows)

        try:
            stored_offset = int(payload.get("headerOffset", self._header_offset))  # type: ignore[arg-type]
            cells = [ChangedCell.from_json(entry) for entry in payload["changes"]]  # type: ignore[union-attr]
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning("Discarding unreadable unsaved changes for %s: %s", self._sheet_id, exc)
            self._drop_entry()
            return RestoreResult(rows=rows)

        for cell in cells:
            absolute_index = cell.actual_row_index
            if absolute_index is None:
                absolute_index = cell.row_index + stored_offset
            if not 0 <= absolute_index < len(rows):
                logger.warning(
                    "Dropping recovered change at row %s column %s: row no longer exists",
                    absolute_index,
                    cell.column,
                )
                continue
            original = self._original_value(absolute_index, cell.column)
            if cell.new_value == original:
                continue
            relative_index = cell.row_index
            if absolute_index >= self._header_offset:
                relative_index = absolute_index - self._header_offset
            rows[absolute_index][cell.column] = cell.new_value
            restored = ChangedCell(
                row_index=relative_index,
                column=cell.column,
                old_value=original,
                new_value=cell.new_value,
                timestamp=cell.timestamp,
                actual_row_index=absolute_index,
            )
            self._changes[restored.key] = restored

        restored_count = len(self._changes)
        show_warning = False
        if restored_count:
            logger.info("Recovered %s unsaved change(s) for sheet %s", restored_count, self._sheet_id)
            show_warning = self._mark_warning_shown()
        self.persist()
        return RestoreResult(rows=rows, restored_count=restored_count, show_warning=show_warning)

    def _mark_warning_shown(self) -> bool:
        try:
            if self._storage.get_item(self.warning_key):
                return False
            self._storage.set_item(self.warning_key, "true")
        except OSError as exc:
            logger.warning("Unable to update %s: %s", self.warning_key, exc)
        return True


__all__ = [
    "ChangeSummary",
    "ChangeTracker",
    "ChangedCell",
    "RestoreResult",
    "STORAGE_KEY_PREFIX",
    "WARNING_SHOWN_KEY_PREFIX",
]
