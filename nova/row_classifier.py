"""Derive device type and manufacturer tags used by the grid filters."""
from __future__ import annotations

import re
from typing import List, Mapping, Optional, Pattern, Sequence, Tuple

from nova.columns import SheetRow, is_cell_key

TYPE_KEY = "_type"
MANUFACTURER_KEY = "_manufacturer"

FILTER_ALL = "all"
FILTER_PRINTER_EPSON = "printer-epson"


def _keywords(*words: str) -> Pattern[str]:
    return re.compile(r"\b(?:%s)\b" % "|".join(re.escape(word) for word in words))


TYPE_KEYWORDS: Tuple[Tuple[str, Pattern[str]], ...] = (
    ("laptop", _keywords("laptop", "notebook")),
    ("tablet", _keywords("tablet", "ipad")),
    ("desktop", _keywords("desktop", "pc", "workstation")),
    ("monitor", _keywords("monitor", "display", "screen")),
    ("printer", _keywords("printer")),
    ("phone", _keywords("phone", "mobile")),
    ("server", _keywords("server")),
)

MANUFACTURER_KEYWORDS: Tuple[Tuple[str, Pattern[str]], ...] = (
    ("epson", _keywords("epson")),
    ("hp", _keywords("hp", "hewlett")),
    ("dell", _keywords("dell")),
    ("lenovo", _keywords("lenovo")),
    ("apple", _keywords("apple")),
    ("canon", _keywords("canon")),
    ("brother", _keywords("brother")),
    ("asus", _keywords("asus")),
)


def _row_text(row: Mapping[str, str]) -> str:
    return " ".join(str(value) for key, value in row.items() if is_cell_key(key) and value).lower()


def _first_match(text: str, table: Sequence[Tuple[str, Pattern[str]]]) -> str:
    for tag, pattern in table:
        if pattern.search(text):
            return tag
    return ""


def classify_row(row: Mapping[str, str], type_column: Optional[str] = None) -> Tuple[str, str]:
    """Return ``(type, manufacturer)`` for ``row``.

    The Type column is trusted when it has a value; keyword detection over the
    whole row is only used when it is empty or absent, so a tablet stored on a
    "Laptop Cart" is not reported as a laptop.
    """

    text = _row_text(row)
    detected_type = ""
    if type_column:
        detected_type = str(row.get(type_column, "") or "").strip().lower()
    if not detected_type:
        detected_type = _first_match(text, TYPE_KEYWORDS)
    return detected_type, _first_match(text, MANUFACTURER_KEYWORDS)


def add_type_tags(rows: Sequence[SheetRow], type_column: Optional[str] = None) -> List[SheetRow]:
    tagged: List[SheetRow] = []
    for row in rows:
        detected_type, manufacturer = classify_row(row, type_column)
        copy = dict(row)
        copy[TYPE_KEY] = detected_type
        copy[MANUFACTURER_KEY] = manufacturer
        tagged.append(copy)
    return tagged


def row_matches_filter(
    row: Mapping[str, str],
    filter_value: str,
    type_column: Optional[str] = None,
    manufacturer_column: Optional[str] = None,
) -> bool:
    """Return ``True`` when ``row`` passes the grid filter ``filter_value``."""

    selected = (filter_value or FILTER_ALL).strip().lower()
    if selected == FILTER_ALL:
        return True

    if type_column:
        row_type = str(row.get(type_column, "") or "").strip().lower()
    else:
        row_type = str(row.get(TYPE_KEY, "") or "").lower()

    if selected == FILTER_PRINTER_EPSON:
        if manufacturer_column and str(row.get(manufacturer_column, "") or "").strip():
            manufacturer = str(row.get(manufacturer_column, "")).strip().lower()
        else:
            manufacturer = str(row.get(MANUFACTURER_KEY, "") or "").lower()
        return "printer" in row_type and "epson" in manufacturer

    if type_column:
        return selected in row_type
    return row_type == selected


__all__ = [
    "FILTER_ALL",
    "FILTER_PRINTER_EPSON",
    "MANUFACTURER_KEY",
    "TYPE_KEY",
    "add_type_tags",
    "classify_row",
    "row_matches_filter",
]
