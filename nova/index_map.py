"""Translation between filtered, clean and absolute row coordinates.

* absolute: position in the rows fetched from the sheet, banner and header
  rows included (sheet row number minus one);
* clean: ``absolute - total_offset``, the position among data rows;
* filtered: position among the clean rows passing the active filter.

Every edit and selection that starts in the filtered grid must be translated
through :class:`FilteredView` before it reaches the change tracker or the
Sheets client.  Out-of-range input returns ``None`` instead of raising.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence

from nova.columns import SheetRow

logger = logging.getLogger(__name__)

RowPredicate = Callable[[Mapping[str, str]], bool]


@dataclass
class FilteredView:
    rows: List[SheetRow] = field(default_factory=list)
    original_index_map: List[int] = field(default_factory=list)
    total_offset: int = 0
    clean_row_count: int = 0
    _reverse: Dict[int, int] = field(default_factory=dict, init=False, repr=False)

    def __post_init__(self) -> None:
        if len(self.original_index_map) != len(self.rows):
            raise ValueError("original_index_map must have one entry per filtered row")
        self._reverse = {clean: position for position, clean in enumerate(self.original_index_map)}

    def __len__(self) -> int:
        return len(self.rows)

    def to_clean(self, filtered_index: int) -> Optional[int]:
        if 0 <= filtered_index < len(self.original_index_map):
            return self.original_index_map[filtered_index]
        logger.debug("Filtered index %s out of range (%s rows)", filtered_index, len(self.rows))
        return None

    def to_absolute(self, filtered_index: int) -> Optional[int]:
        clean = self.to_clean(filtered_index)
        if clean is None:
            return None
        return clean + self.total_offset

    def filtered_index_of(self, clean_index: int) -> Optional[int]:
        """Return the grid position of ``clean_index`` or ``None`` when hidden."""

        return self._reverse.get(clean_index)

    def translate(self, filtered_indices: Iterable[int]) -> List[int]:
        """Translate filtered indices to clean ones, skipping invalid entries."""

        clean: List[int] = []
        for index in filtered_indices:
            value = self.to_clean(index)
            if value is not None:
                clean.append(value)
        return clean


def build_filtered_view(
    clean_rows: Sequence[SheetRow],
    total_offset: int,
    predicate: Optional[RowPredicate] = None,
) -> FilteredView:
    """Return the rows passing ``predicate`` along with their clean indices."""

    rows: List[SheetRow] = []
    index_map: List[int] = []
    for clean_index, row in enumerate(clean_rows):
        if predicate is None or predicate(row):
            rows.append(row)
            index_map.append(clean_index)
    return FilteredView(
        rows=rows,
        original_index_map=index_map,
        total_offset=total_offset,
        clean_row_count=len(clean_rows),
    )


__all__ = ["FilteredView", "RowPredicate", "build_filtered_view"]
