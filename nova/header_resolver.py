"""Detection of the real header row of an inventory worksheet.

Exported sheets frequently carry banner rows ("Branch 12 inventory"), blank
spacer rows or instruction rows above the actual column labels.  The helpers
in this module find the header row so that everything below it can be treated
as editable data.  All functions are pure and deterministic.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Pattern, Sequence, Tuple, Union

from nova.columns import (
    ColumnMapping,
    SheetRow,
    are_field_names_equivalent,
    column_letter,
    column_number,
    is_cell_key,
    sort_columns,
)

logger = logging.getLogger(__name__)

HEADER_SCAN_LIMIT = 11
MIN_MAPPED_HEADER_CELLS = 3
MIN_NAME_MATCH_LENGTH = 3

# Worksheets generated from a template with instruction rows above the labels.
FIXED_HEADER_ROWS: Mapping[str, int] = {
    "Decommission Sync": 2,
}

GENERIC_HEADER_PATTERNS: Tuple[Pattern[str], ...] = (
    re.compile(r"^column\s*\d+$", re.IGNORECASE),
    re.compile(r"^field\s*\d+$", re.IGNORECASE),
    re.compile(r"selects?\s+from\s+drop[-\s]?down", re.IGNORECASE),
    re.compile(r"this\s+field\s+prefills?", re.IGNORECASE),
    re.compile(r"^untitled", re.IGNORECASE),
    re.compile(r"^sheet\s*\d*$", re.IGNORECASE),
    re.compile(r"^inventory$", re.IGNORECASE),
)

_NUMERIC_PATTERN = re.compile(r"^[\d\s.,:/%$+-]+$")

RawRow = Union[Mapping[str, object], Sequence[object]]


@dataclass(frozen=True)
class HeaderContext:
    """Location of the header row and the sheet's column order."""

    header_row_index: int
    ordered_columns: Tuple[str, ...] = ()

    @property
    def total_offset(self) -> int:
        """Number of leading non-data rows (banner rows plus the header)."""

        return self.header_row_index + 1


def _cell_text(value: object) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _is_numeric(text: str) -> bool:
    return bool(text) and bool(_NUMERIC_PATTERN.match(text)) and any(ch.isdigit() for ch in text)


def _is_generic(text: str) -> bool:
    return any(pattern.search(text) for pattern in GENERIC_HEADER_PATTERNS)


def to_sheet_rows(values: Sequence[RawRow]) -> List[SheetRow]:
    """Return letter-keyed rows for ``values``.

    List rows are padded to the widest row so every row carries the same
    column keys.  Mapping rows are copied with their values coerced to text.
    """

    rows: List[SheetRow] = []
    width = 0
    for raw in values:
        if not isinstance(raw, Mapping):
            width = max(width, len(raw))
    letters = [column_letter(index) for index in range(1, width + 1)]

    for raw in values:
        if isinstance(raw, Mapping):
            rows.append({str(key): _cell_text(value) for key, value in raw.items()})
            continue
        row: SheetRow = {}
        for position, letter in enumerate(letters):
            row[letter] = _cell_text(raw[position]) if position < len(raw) else ""
        rows.append(row)
    return rows


def ordered_columns(rows: Sequence[Mapping[str, object]]) -> List[str]:
    """Return every cell column present in ``rows`` in sheet order."""

    keys: set = set()
    for row in rows:
        keys.update(key for key in row.keys() if is_cell_key(key))
    return sort_columns(keys)


def _non_empty_cells(row: Mapping[str, object], columns: Sequence[str]) -> List[str]:
    cells = []
    for column in columns:
        text = _cell_text(row.get(column))
        if text:
            cells.append(text)
    return cells


def _names_match(cell: str, name: str) -> bool:
    if _is_numeric(cell):
        return False
    if are_field_names_equivalent(cell, name):
        return True
    left, right = cell.lower(), name.lower()
    shorter = min(len(left), len(right))
    if shorter < MIN_NAME_MATCH_LENGTH:
        return False
    return left in right or right in left


def _match_by_names(
    rows: Sequence[SheetRow], columns: Sequence[str], mappings: Sequence[ColumnMapping]
) -> Optional[int]:
    """Return the scanned row matching the most mapping names (earliest on ties).

    Rows matching fewer than half of the names never qualify.
    """

    names = [mapping.field_name for mapping in mappings if mapping.field_name]
    if not names:
        return None
    best_index: Optional[int] = None
    best_count = 0
    for index, row in enumerate(rows[:HEADER_SCAN_LIMIT]):
        cells = _non_empty_cells(row, columns)
        if not cells:
            continue
        matched = sum(1 for name in names if any(_names_match(cell, name) for cell in cells))
        if matched * 2 >= len(names) and matched > best_count:
            best_index, best_count = index, matched
    return best_index


def _match_by_mapped_columns(
    rows: Sequence[SheetRow], mappings: Sequence[ColumnMapping]
) -> Optional[int]:
    letters = [mapping.column_letter for mapping in mappings if mapping.column_letter]
    if not letters:
        return None
    best_index = 0
    best_count = 0
    for index, row in enumerate(rows[:HEADER_SCAN_LIMIT]):
        count = sum(1 for letter in letters if _cell_text(row.get(letter)))
        if count > best_count:
            best_index, best_count = index, count
    if best_count >= MIN_MAPPED_HEADER_CELLS:
        return best_index
    return None


def _match_by_heuristic(rows: Sequence[SheetRow], columns: Sequence[str]) -> Optional[int]:
    width = len(columns)
    if width == 0:
        return None
    for index, row in enumerate(rows[:HEADER_SCAN_LIMIT]):
        cells = _non_empty_cells(row, columns)
        if len(cells) * 2 <= width:
            continue
        textual = [cell for cell in cells if not _is_numeric(cell)]
        if len(textual) * 2 <= len(cells):
            continue
        generic = [cell for cell in cells if _is_generic(cell)]
        if len(generic) * 2 >= len(cells):
            continue
        return index
    return None


def compute_header_context(
    raw_rows: Sequence[RawRow],
    mappings: Optional[Sequence[ColumnMapping]] = None,
    sheet_tab_name: Optional[str] = None,
) -> HeaderContext:
    """Return the :class:`HeaderContext` for ``raw_rows``.

    Strategies are tried in order: fixed template tabs, matching the mapping
    display names, counting labels in the mapped columns and finally a plain
    "looks like a header" heuristic.  When nothing matches, row 0 is used.
    """

    rows = to_sheet_rows(raw_rows)
    columns = tuple(ordered_columns(rows))
    if not rows:
        return HeaderContext(header_row_index=0, ordered_columns=columns)

    if sheet_tab_name and sheet_tab_name.strip() in FIXED_HEADER_ROWS:
        fixed = FIXED_HEADER_ROWS[sheet_tab_name.strip()]
        logger.debug("Using fixed header row %s for tab %s", fixed, sheet_tab_name)
        return HeaderContext(header_row_index=fixed, ordered_columns=columns)

    mapping_list = list(mappings or ())
    detected: Optional[int] = None
    if mapping_list:
        detected = _match_by_names(rows, columns, mapping_list)
        if detected is None:
            detected = _match_by_mapped_columns(rows, mapping_list)
    if detected is None:
        detected = _match_by_heuristic(rows, columns)
    if detected is None:
        logger.debug("No header-like row found, falling back to row 0")
        detected = 0
    return HeaderContext(header_row_index=detected, ordered_columns=columns)


def data_rows_only(rows: Sequence[SheetRow], context: HeaderContext) -> List[SheetRow]:
    """Return copies of the rows below the header."""

    return [dict(row) for row in rows[context.total_offset:]]


def column_display_names(
    rows: Sequence[SheetRow],
    mappings: Sequence[ColumnMapping],
    context: HeaderContext,
) -> Dict[str, str]:
    """Map every column to the label shown for it.

    The header row wins, then the mapped field name, then ``Column N``.
    """

    header: Mapping[str, object] = {}
    if 0 <= context.header_row_index < len(rows):
        header = rows[context.header_row_index]
    by_letter = {mapping.column_letter: mapping for mapping in mappings}
    names: Dict[str, str] = {}
    for column in context.ordered_columns:
        label = _cell_text(header.get(column))
        if not label and column in by_letter:
            label = by_letter[column].field_name
        if not label:
            label = f"Column {column_number(column)}"
        names[column] = label
    return names


def selected_columns(rows: Sequence[SheetRow], mappings: Sequence[ColumnMapping]) -> List[str]:
    """Return the mapped columns in sheet order, or every column without mappings."""

    columns = ordered_columns(rows)
    if not mappings:
        return columns
    mapped = {mapping.column_letter for mapping in mappings}
    return [column for column in columns if column in mapped]


__all__ = [
    "FIXED_HEADER_ROWS",
    "HEADER_SCAN_LIMIT",
    "HeaderContext",
    "column_display_names",
    "compute_header_context",
    "data_rows_only",
    "ordered_columns",
    "selected_columns",
    "to_sheet_rows",
]
