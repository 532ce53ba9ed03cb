"""Editing session for one inventory worksheet.

An :class:`InventorySession` owns the rows of a worksheet and wires the
building blocks together: header detection, type tagging, the filtered view,
row selection, the business-rule editor and the change tracker.  Grid
coordinates (filtered indices) are always translated to clean and absolute
indices here before they reach the editor, the tracker or the Sheets client.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Sequence

from nova import date_utils
from nova.change_tracker import ChangeSummary, ChangeTracker, RestoreResult
from nova.columns import (
    ASSET_TAG,
    MANUFACTURER,
    SERIAL,
    STATUS,
    TYPE,
    ColumnMapping,
    ColumnResolver,
    SheetRow,
    is_cell_key,
)
from nova.header_resolver import (
    HeaderContext,
    column_display_names,
    compute_header_context,
    data_rows_only,
    selected_columns,
)
from nova.index_map import FilteredView, build_filtered_view
from nova.row_classifier import FILTER_ALL, add_type_tags, row_matches_filter
from nova.row_selection import RowSelection
from nova.sheet_editor import DEFAULT_PROJECT_NAME, EditResult, SheetEditor, User
from nova.sheets_client import HIGHLIGHT_YELLOW, SheetsClientError

logger = logging.getLogger(__name__)

PostPushHook = Callable[[List[SheetRow]], None]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class InventorySession:
    """Pull, edit and push one worksheet."""

    def __init__(
        self,
        client,
        worksheet_title: str,
        *,
        mappings: Sequence[ColumnMapping] = (),
        user: Optional[User] = None,
        storage=None,
        sheet_id: Optional[str] = None,
        timezone_name: str = date_utils.DEFAULT_TIMEZONE,
        project_name: str = DEFAULT_PROJECT_NAME,
        highlight_missing: bool = True,
        post_push_hook: Optional[PostPushHook] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._client = client
        self._title = worksheet_title
        self._mappings = list(mappings)
        self._user = user
        self._storage = storage
        self._sheet_id = sheet_id or f"{getattr(client, 'spreadsheet_id', 'sheet')}_{worksheet_title}"
        self._timezone_name = timezone_name
        self._project_name = project_name
        self._highlight_missing = highlight_missing
        self._post_push_hook = post_push_hook
        self._clock = clock or _utc_now

        self._rows: List[SheetRow] = []
        self._context = HeaderContext(header_row_index=0)
        self._columns = ColumnResolver((), {}, self._mappings)
        self._tracker: Optional[ChangeTracker] = None
        self._editor: Optional[SheetEditor] = None
        self._filter = FILTER_ALL
        self._view = build_filtered_view([], 0)
        self._selection = RowSelection()
        self.last_sync_at: Optional[datetime] = None

    # ------------------------------------------------------------------
    # Read-only state
    # ------------------------------------------------------------------
    @property
    def worksheet_title(self) -> str:
        return self._title

    @property
    def rows(self) -> List[SheetRow]:
        """All rows of the worksheet by absolute index (banner and header included)."""

        return [dict(row) for row in self._rows]

    @property
    def context(self) -> HeaderContext:
        return self._context

    @property
    def columns(self) -> ColumnResolver:
        return self._columns

    @property
    def view(self) -> FilteredView:
        return self._view

    @property
    def selection(self) -> RowSelection:
        return self._selection

    @property
    def filter_value(self) -> str:
        return self._filter

    @property
    def tracker(self) -> ChangeTracker:
        if self._tracker is None:
            raise RuntimeError("Inventory session has not been opened")
        return self._tracker

    @property
    def has_unsynced_changes(self) -> bool:
        return self._tracker is not None and self._tracker.has_changes

    def change_summary(self) -> ChangeSummary:
        return self.tracker.get_change_summary()

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------
    def _load_structure(self, raw_rows: Sequence[SheetRow]) -> None:
        self._context = compute_header_context(raw_rows, self._mappings, self._title)
        display_names = column_display_names(raw_rows, self._mappings, self._context)
        self._columns = ColumnResolver(self._context.ordered_columns, display_names, self._mappings)
        logger.info(
            "Worksheet %s: header row %s, %s data rows",
            self._title,
            self._context.header_row_index,
            max(0, len(raw_rows) - self._context.total_offset),
        )

    def _tracker_clock(self) -> float:
        return self._clock().timestamp()

    def _build_editor(self) -> None:
        self._editor = SheetEditor(
            self._columns,
            user=self._user,
            header_offset=self._context.total_offset,
            tracker=self._tracker,
            clock=self._clock,
            timezone_name=self._timezone_name,
            project_name=self._project_name,
        )

    def _rebuild_view(self, reset_selection: bool = False) -> None:
        clean_rows = data_rows_only(self._rows, self._context)
        type_column = self._columns.find(TYPE)
        manufacturer_column = self._columns.find(MANUFACTURER)
        tagged = add_type_tags(clean_rows, type_column)
        selected_filter = self._filter

        def predicate(row) -> bool:
            return row_matches_filter(row, selected_filter, type_column, manufacturer_column)

        previous = self._view
        self._view = build_filtered_view(tagged, self._context.total_offset, predicate)
        if reset_selection:
            self._selection.reset(len(self._view))
            return
        # Keep the same clean rows selected even when they moved in or out of the filter.
        kept_clean = previous.translate(sorted(self._selection.selected))
        self._selection.reset(len(self._view))
        for clean_index in kept_clean:
            position = self._view.filtered_index_of(clean_index)
            if position is not None:
                self._selection.toggle(position, True)

    def open(self) -> RestoreResult:
        """Pull the worksheet and recover any unsaved changes from storage."""

        raw_rows = self._client.fetch_rows(self._title)
        self._load_structure(raw_rows)
        self._tracker = ChangeTracker(
            self._sheet_id,
            raw_rows,
            storage=self._storage,
            header_offset=self._context.total_offset,
            clock=self._tracker_clock,
        )
        result = self._tracker.restore()
        self._rows = result.rows
        self._build_editor()
        self._filter = FILTER_ALL
        self._rebuild_view(reset_selection=True)
        return result

    def set_filter(self, value: str) -> None:
        self._filter = (value or FILTER_ALL).strip().lower()
        self._rebuild_view(reset_selection=True)

    # ------------------------------------------------------------------
    # Editing
    # ------------------------------------------------------------------
    def _require_editor(self) -> SheetEditor:
        if self._editor is None:
            raise RuntimeError("Inventory session has not been opened")
        return self._editor

    def _highlight_missing_rows(self, result: EditResult, column: str, value: str) -> None:
        if not self._highlight_missing or value.strip().lower() != "missing":
            return
        indices = sorted(
            {change.absolute_row_index for change in result.changes if change.column == column}
        )
        if not indices:
            return
        try:
            self._client.highlight_rows(indices, self._title, HIGHLIGHT_YELLOW)
        except SheetsClientError as exc:
            logger.warning("Unable to highlight missing rows %s: %s", indices, exc)

    def edit(self, filtered_index: int, column: str, value: str) -> EditResult:
        """Edit a cell addressed by its position in the filtered grid."""

        editor = self._require_editor()
        clean_index = self._view.to_clean(filtered_index)
        if clean_index is None:
            return EditResult(rows=self.rows)
        selection = self._view.translate(sorted(self._selection.selected))
        result = editor.apply_edit(self._rows, clean_index, column, value, selection)
        self._rows = result.rows
        if self._columns.is_column(column, STATUS):
            self._highlight_missing_rows(result, column, value)
        self._rebuild_view()
        return result

    def scan(
        self,
        filtered_index: int,
        status_value: str,
        scanned_column: str,
        scanned_value: str,
        image_column: Optional[str] = None,
        image_value: Optional[str] = None,
    ) -> EditResult:
        """Record a scan of the item shown at ``filtered_index``."""

        editor = self._require_editor()
        clean_index = self._view.to_clean(filtered_index)
        status_column = self._columns.find(STATUS)
        if clean_index is None or status_column is None:
            logger.warning("Scan ignored: row %s or Status column not available", filtered_index)
            return EditResult(rows=self.rows)
        result = editor.apply_scan(
            self._rows,
            clean_index,
            status_column,
            status_value,
            scanned_column,
            scanned_value,
            image_column,
            image_value,
        )
        self._rows = result.rows
        self._highlight_missing_rows(result, status_column, status_value)
        self._rebuild_view()
        return result

    def find_scanned(self, code: str) -> Optional[int]:
        """Return the filtered index of the row whose asset tag or serial is ``code``."""

        wanted = (code or "").strip().lower()
        if not wanted:
            return None
        lookup_columns = [
            column for column in (self._columns.find(ASSET_TAG), self._columns.find(SERIAL)) if column
        ]
        for position, row in enumerate(self._view.rows):
            for column in lookup_columns:
                if str(row.get(column, "") or "").strip().lower() == wanted:
                    return position
        return None

    # ------------------------------------------------------------------
    # Sync
    # ------------------------------------------------------------------
    def _after_push(self, pushed: List[SheetRow]) -> None:
        tracker = self.tracker
        tracker.clear_changes()
        tracker.set_original_rows(self._rows)
        self._selection.clear()
        self.last_sync_at = self._clock()
        if self._post_push_hook is not None:
            self._post_push_hook(pushed)

    def sync(self) -> int:
        """Push only the rows with tracked changes.

        Any client error propagates and leaves rows, tracked changes and the
        selection exactly as they were.
        """

        rows = self.tracker.get_changed_rows_for_sync(self._rows)
        if not rows:
            logger.info("Nothing to sync for %s", self._title)
            return 0
        pushed = self._client.push_rows(rows, self._title)
        self._after_push(rows)
        return pushed

    def push_all(self) -> int:
        """Overwrite the whole worksheet with the local rows."""

        rows = [{key: value for key, value in row.items() if is_cell_key(key)} for row in self._rows]
        pushed = self._client.push_rows(rows, self._title)
        self._after_push(rows)
        return pushed

    def refresh(self) -> None:
        """Re-pull the worksheet, dropping any unsynced changes."""

        raw_rows = self._client.fetch_rows(self._title)
        tracker = self.tracker
        tracker.clear_changes()
        self._load_structure(raw_rows)
        tracker.set_original_rows(raw_rows)
        tracker.set_header_offset(self._context.total_offset)
        self._rows = [dict(row) for row in raw_rows]
        self._build_editor()
        self._rebuild_view(reset_selection=True)

    def discard(self) -> None:
        """Drop unsynced changes and return to the last synced rows."""

        tracker = self.tracker
        tracker.clear_changes()
        self._rows = tracker.original_rows
        self._rebuild_view(reset_selection=True)

    def sync_status_text(self, now: Optional[datetime] = None) -> Optional[str]:
        if self.last_sync_at is None:
            return None
        moment = now or self._clock()
        seconds = max(0, int((moment - self.last_sync_at).total_seconds()))
        if seconds < 60:
            return "Synced just now"
        if seconds < 3600:
            return f"Synced {seconds // 60}m ago"
        if seconds < 86400:
            return f"Synced {seconds // 3600}h ago"
        return f"Synced {seconds // 86400}d ago"

    def display_names(self) -> Dict[str, str]:
        return {column: self._columns.display_name(column) for column in self._columns.columns}

    def visible_columns(self) -> List[str]:
        """Columns shown in the grid: the mapped ones, or all without mappings."""

        return selected_columns(self._rows, self._mappings)


__all__ = ["InventorySession", "PostPushHook"]
