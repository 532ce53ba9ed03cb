"""Business rules applied to every cell edit of the inventory grid.

:meth:`SheetEditor.apply_edit` is the single entry point for changing cells.
It never mutates its input: the caller receives a new row list together with
every cell the edit touched, including the derived fields filled in by the
rules below.  When a :class:`~nova.change_tracker.ChangeTracker` is attached,
each of those cells is reported to it exactly like a manual edit.

Rules, applied per row in this order:

1. the edited cell itself (no-op edits stop here);
2. a Status edit sets Equipment Move (``Yes`` for decommissioned, missing,
   damaged or disconnected equipment, ``No`` for installed equipment);
3. a decommissioned or missing Status writes the matching Description;
4. when Status or Equipment Move was edited and the row now reads
   installed / ``No``, the "found at branch" Description is written;
5. the Last Verified Inventory Date is stamped with today's date;
6. an empty Technician cell receives the email of a non-admin user.

Columns that cannot be resolved skip their rule silently.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Iterable, List, Mapping, Optional, Sequence

from nova import date_utils
from nova.columns import (
    DESCRIPTION,
    EQUIPMENT_MOVE,
    LAST_VERIFIED_DATE,
    STATUS,
    TECHNICIAN,
    ColumnResolver,
    SheetRow,
)

logger = logging.getLogger(__name__)

DEFAULT_PROJECT_NAME = "Project Nova"
PRIVILEGED_ROLES = frozenset({"admin"})

MOVE_YES_KEYWORDS = ("decommission", "missing", "damaged", "disconnected")
MOVE_NO_KEYWORDS = ("installed",)


@dataclass(frozen=True)
class User:
    email: str
    role: str = "user"

    @property
    def is_privileged(self) -> bool:
        return (self.role or "").strip().lower() in PRIVILEGED_ROLES


@dataclass(frozen=True)
class CellChange:
    """One cell written by an edit."""

    row_index: int
    absolute_row_index: int
    column: str
    old_value: str
    new_value: str


@dataclass
class EditResult:
    rows: List[SheetRow]
    changes: List[CellChange] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.changes)

    @property
    def row_indices(self) -> List[int]:
        return sorted({change.row_index for change in self.changes})


def equipment_move_for_status(status: str) -> Optional[str]:
    """Return the Equipment Move value implied by ``status`` or ``None``."""

    lowered = (status or "").lower()
    if any(keyword in lowered for keyword in MOVE_YES_KEYWORDS):
        return "Yes"
    if any(keyword in lowered for keyword in MOVE_NO_KEYWORDS):
        return "No"
    return None


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SheetEditor:
    """Apply edits and their derived field rules to letter-keyed rows.

    ``rows`` passed to the editor are the full worksheet rows indexed by
    absolute position; ``clean_row_index`` values are relative to the first
    data row (``header_offset`` rows below the top of the sheet).
    """

    def __init__(
        self,
        columns: ColumnResolver,
        user: Optional[User] = None,
        header_offset: int = 0,
        tracker=None,
        clock: Optional[Callable[[], datetime]] = None,
        timezone_name: str = date_utils.DEFAULT_TIMEZONE,
        project_name: str = DEFAULT_PROJECT_NAME,
    ) -> None:
        self.columns = columns
        self.user = user
        self.header_offset = max(0, int(header_offset))
        self.tracker = tracker
        self._clock = clock or _utc_now
        self.timezone_name = timezone_name
        self.project_name = project_name or DEFAULT_PROJECT_NAME

    # ------------------------------------------------------------------
    # Description templates
    # ------------------------------------------------------------------
    def decommissioned_description(self, year: int) -> str:
        return f"Equipment was decommissioned during {self.project_name} {year}"

    def missing_description(self, year: int) -> str:
        return f"Equipment not found during {self.project_name} {year}."

    def found_at_branch_description(self, year: int) -> str:
        return f"Equipment found at branch during {self.project_name} {year}. Will remain at branch."

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def apply_edit(
        self,
        rows: Sequence[Mapping[str, str]],
        clean_row_index: int,
        column: str,
        new_value: str,
        selection: Iterable[int] = (),
    ) -> EditResult:
        """Set ``column`` of ``clean_row_index`` and run the derived field rules.

        When the edited row belongs to a multi-row ``selection`` (clean
        indices), the same value is applied to every selected row.
        """

        selected = set(selection or ())
        if clean_row_index in selected and len(selected) > 1:
            targets = sorted(selected)
        else:
            targets = [clean_row_index]

        working: List[SheetRow] = list(rows)  # type: ignore[arg-type]
        changes: List[CellChange] = []
        now = self._clock()
        value = "" if new_value is None else str(new_value)
        for target in targets:
            self._edit_row(working, target, column, value, now, changes)
        return EditResult(rows=working, changes=changes)

    def apply_scan(
        self,
        rows: Sequence[Mapping[str, str]],
        clean_row_index: int,
        status_column: str,
        status_value: str,
        scanned_column: str,
        scanned_value: str,
        image_column: Optional[str] = None,
        image_value: Optional[str] = None,
    ) -> EditResult:
        """Record a scanned item: status edit plus the scan columns, in one result.

        Equipment Move is always set from ``status_value`` here, even when the
        status itself did not change.
        """

        result = self.apply_edit(rows, clean_row_index, status_column, status_value)
        working = result.rows
        changes = list(result.changes)
        absolute_index = self._absolute_index(working, clean_row_index)
        if absolute_index is None:
            return result

        row = working[absolute_index] = dict(working[absolute_index])
        move_column = self.columns.find(EQUIPMENT_MOVE)
        move_value = equipment_move_for_status(status_value)
        if move_column and move_value:
            self._write(row, clean_row_index, absolute_index, move_column, move_value, changes)
        self._write(row, clean_row_index, absolute_index, scanned_column, scanned_value or "", changes)
        if image_column and image_value:
            self._write(row, clean_row_index, absolute_index, image_column, image_value, changes)
        return EditResult(rows=working, changes=changes)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _absolute_index(self, rows: Sequence[Mapping[str, str]], clean_row_index: int) -> Optional[int]:
        absolute_index = clean_row_index + self.header_offset
        if clean_row_index < 0 or absolute_index >= len(rows):
            logger.debug("Ignoring edit of row %s outside the loaded data", clean_row_index)
            return None
        return absolute_index

    def _write(
        self,
        row: SheetRow,
        clean_row_index: int,
        absolute_index: int,
        column: str,
        value: str,
        changes: List[CellChange],
    ) -> None:
        old_value = str(row.get(column, "") or "")
        if old_value == value:
            return
        row[column] = value
        changes.append(
            CellChange(
                row_index=clean_row_index,
                absolute_row_index=absolute_index,
                column=column,
                old_value=old_value,
                new_value=value,
            )
        )
        if self.tracker is not None:
            self.tracker.track_cell_change(clean_row_index, column, old_value, value)

    def _edit_row(
        self,
        rows: List[SheetRow],
        clean_row_index: int,
        column: str,
        new_value: str,
        now: datetime,
        changes: List[CellChange],
    ) -> None:
        absolute_index = self._absolute_index(rows, clean_row_index)
        if absolute_index is None:
            return
        if str(rows[absolute_index].get(column, "") or "") == new_value:
            return

        row = rows[absolute_index] = dict(rows[absolute_index])
        self._write(row, clean_row_index, absolute_index, column, new_value, changes)

        status_column = self.columns.find(STATUS)
        move_column = self.columns.find(EQUIPMENT_MOVE)
        description_column = self.columns.find(DESCRIPTION)
        date_column = self.columns.find(LAST_VERIFIED_DATE)
        technician_column = self.columns.find(TECHNICIAN)
        year = date_utils.current_year(now, self.timezone_name)

        if status_column is not None and column == status_column:
            move_value = equipment_move_for_status(new_value)
            if move_column and move_value:
                self._write(row, clean_row_index, absolute_index, move_column, move_value, changes)
            if description_column:
                lowered = new_value.lower()
                description = None
                if "decommission" in lowered:
                    description = self.decommissioned_description(year)
                elif "missing" in lowered:
                    description = self.missing_description(year)
                if description:
                    self._write(row, clean_row_index, absolute_index, description_column, description, changes)

        if (
            description_column
            and status_column
            and move_column
            and column in (status_column, move_column)
        ):
            status_now = str(row.get(status_column, "") or "").lower()
            move_now = str(row.get(move_column, "") or "").strip().lower()
            if "installed" in status_now and move_now == "no":
                self._write(
                    row,
                    clean_row_index,
                    absolute_index,
                    description_column,
                    self.found_at_branch_description(year),
                    changes,
                )

        if date_column and column != date_column:
            stamp = date_utils.format_last_verified_date(now, self.timezone_name)
            self._write(row, clean_row_index, absolute_index, date_column, stamp, changes)

        user = self.user
        if user is not None and user.email and not user.is_privileged and technician_column:
            if not str(row.get(technician_column, "") or "").strip():
                self._write(row, clean_row_index, absolute_index, technician_column, user.email, changes)


__all__ = [
    "CellChange",
    "DEFAULT_PROJECT_NAME",
    "EditResult",
    "SheetEditor",
    "User",
    "equipment_move_for_status",
]
