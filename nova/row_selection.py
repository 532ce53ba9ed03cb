"""Row selection state for the inventory grid (filtered-view coordinates)."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import FrozenSet, List, Optional, Set

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SelectionDelta:
    """Rows whose selection state changed during one drag step."""

    to_select: List[int]
    to_deselect: List[int]

    def __bool__(self) -> bool:
        return bool(self.to_select or self.to_deselect)


class RowSelection:
    """Track selected rows with single, shift-range and drag toggles.

    ``select_all`` is derived from the selected set so it always equals
    ``len(selected) == total_rows``.  Indices outside ``[0, total_rows)`` are
    ignored.
    """

    def __init__(self, total_rows: int = 0) -> None:
        self._total_rows = max(0, int(total_rows))
        self._selected: Set[int] = set()
        self._anchor: Optional[int] = None
        self._drag_start: Optional[int] = None
        self._drag_checked = True
        self._drag_extent: Set[int] = set()

    # ------------------------------------------------------------------
    # Read-only state
    # ------------------------------------------------------------------
    @property
    def selected(self) -> FrozenSet[int]:
        return frozenset(self._selected)

    @property
    def total_rows(self) -> int:
        return self._total_rows

    @property
    def anchor(self) -> Optional[int]:
        return self._anchor

    @property
    def select_all(self) -> bool:
        return len(self._selected) == self._total_rows

    @property
    def dragging(self) -> bool:
        return self._drag_start is not None

    def __contains__(self, row: object) -> bool:
        return row in self._selected

    def __len__(self) -> int:
        return len(self._selected)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------
    def _in_range(self, row: int) -> bool:
        if 0 <= row < self._total_rows:
            return True
        logger.debug("Ignoring selection of row %s outside 0..%s", row, self._total_rows)
        return False

    def _apply(self, row: int, checked: bool) -> None:
        if checked:
            self._selected.add(row)
        else:
            self._selected.discard(row)

    def toggle(self, row: int, checked: bool) -> None:
        if not self._in_range(row):
            return
        self._apply(row, checked)
        self._anchor = row

    def range_toggle(self, row: int, checked: bool, anchor: Optional[int] = None) -> None:
        """Apply ``checked`` to every row between the anchor and ``row``."""

        start = self._anchor if anchor is None else anchor
        if start is None or not (0 <= start < self._total_rows):
            self.toggle(row, checked)
            return
        if not self._in_range(row):
            return
        low, high = sorted((start, row))
        for index in range(low, high + 1):
            self._apply(index, checked)
        self._anchor = row

    def begin_drag(self, start: int, checked: bool = True) -> SelectionDelta:
        """Start a drag selection at ``start`` and include that row."""

        self._drag_start = None
        self._drag_extent = set()
        if not self._in_range(start):
            return SelectionDelta([], [])
        self._drag_start = start
        self._drag_checked = checked
        self._anchor = start
        return self.drag_to(start)

    def drag_to(self, current: int) -> SelectionDelta:
        """Extend the active drag to ``current`` and return only what changed."""

        if self._drag_start is None:
            return SelectionDelta([], [])
        current = min(max(current, 0), self._total_rows - 1)
        low, high = sorted((self._drag_start, current))
        extent = set(range(low, high + 1))
        entered = sorted(extent - self._drag_extent)
        left = sorted(self._drag_extent - extent)
        self._drag_extent = extent

        for index in entered:
            self._apply(index, self._drag_checked)
        for index in left:
            self._apply(index, not self._drag_checked)

        if self._drag_checked:
            return SelectionDelta(to_select=entered, to_deselect=left)
        return SelectionDelta(to_select=left, to_deselect=entered)

    def drag_range(self, start: int, current: int, checked: bool = True) -> SelectionDelta:
        """Convenience wrapper that starts a drag when needed and extends it."""

        if self._drag_start != start:
            first = self.begin_drag(start, checked)
            step = self.drag_to(current)
            return SelectionDelta(
                to_select=sorted(set(first.to_select) | set(step.to_select)),
                to_deselect=sorted(set(first.to_deselect) | set(step.to_deselect)),
            )
        return self.drag_to(current)

    def end_drag(self) -> FrozenSet[int]:
        self._drag_start = None
        self._drag_extent = set()
        return self.selected

    def toggle_all(self, checked: bool) -> None:
        if checked:
            self._selected = set(range(self._total_rows))
        else:
            self._selected = set()

    def clear(self) -> None:
        self._selected = set()
        self._anchor = None
        self.end_drag()

    def reset(self, total_rows: int) -> None:
        """Clear the selection for a grid that now has ``total_rows`` rows."""

        self._total_rows = max(0, int(total_rows))
        self.clear()


__all__ = ["RowSelection", "SelectionDelta"]
