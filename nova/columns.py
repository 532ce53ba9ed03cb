"""Column letters, column mappings and the named column rule table.

Inventory sheets are edited by people, so the columns the business rules need
(Status, Equipment Move, Description, ...) are found by label rather than by a
fixed position.  Every lookup goes through :data:`COLUMN_RULES`, an ordered
table of named predicates.  A rule matches a label (lower-cased) when:

* at least one ``any_of`` substring is present, and
* every ``all_of`` substring is present, and
* no ``exclude`` substring is present.

Mapping entries are consulted first (exact ``field_key`` or a matching
``field_name``) followed by the display names read from the detected header
row, in sheet column order.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, MutableSequence, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)

SheetRow = Dict[str, str]

ROW_INDEX_KEY = "_rowIndex"
INTERNAL_PREFIX = "_"

STATUS = "status"
EQUIPMENT_MOVE = "equipment_move"
DESCRIPTION = "description"
LAST_VERIFIED_DATE = "last_verified_date"
TECHNICIAN = "technician"
TYPE = "type"
MANUFACTURER = "manufacturer"
NAME = "name"
SERIAL = "serial"
ASSET_TAG = "asset_tag"
MODEL_ID = "model_id"


def column_letter(index: int) -> str:
    """Return the spreadsheet column letter for a 1-indexed column index."""

    if index < 1:
        raise ValueError("Column index must be >= 1")
    letters: MutableSequence[str] = []
    while index:
        index, remainder = divmod(index - 1, 26)
        letters.append(chr(65 + remainder))
    return "".join(reversed(letters))


def column_number(letter: str) -> int:
    """Return the 1-indexed column number for ``letter`` (``"AA"`` -> 27)."""

    text = (letter or "").strip().upper()
    if not text or not text.isalpha() or not text.isascii():
        raise ValueError(f"Invalid column letter: {letter!r}")
    number = 0
    for char in text:
        number = number * 26 + (ord(char) - 64)
    return number


def is_cell_key(key: str) -> bool:
    """Return ``True`` for keys that hold sheet cell values."""

    return bool(key) and not key.startswith(INTERNAL_PREFIX)


def sort_columns(keys: Iterable[str]) -> List[str]:
    """Return cell keys in sheet order (``B`` before ``AA``)."""

    letters = {key for key in keys if is_cell_key(key)}
    return sorted(letters, key=lambda key: (len(key), key))


# ---------------------------------------------------------------------------
# Field name aliases
# ---------------------------------------------------------------------------
FIELD_NAME_ALIASES: Mapping[str, Tuple[str, ...]] = {
    "Manager sign-off": ("Manager sign-off", "Assistant Manager sign-off"),
    "Serial Number": ("Serial Number", "Serial No", "Serial #", "SN"),
    "Asset Tag": ("Asset Tag", "Asset #", "Asset Number", "Inventory Tag"),
}


def normalize_field_name(field_name: str) -> str:
    """Return the canonical name for ``field_name`` taking aliases into account."""

    normalized = (field_name or "").strip()
    lowered = normalized.lower()
    for canonical, aliases in FIELD_NAME_ALIASES.items():
        if any(alias.lower() == lowered for alias in aliases):
            return canonical
    return normalized


def are_field_names_equivalent(first: str, second: str) -> bool:
    return normalize_field_name(first).lower() == normalize_field_name(second).lower()


# ---------------------------------------------------------------------------
# Column mappings
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class ColumnMapping:
    """A user-selected field bound to a sheet column."""

    field_name: str
    column_letter: str
    order: int = 0
    field_key: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> "ColumnMapping":
        letter = str(data.get("columnLetter") or data.get("column_letter") or "").strip().upper()
        name = str(data.get("fieldName") or data.get("field_name") or "").strip()
        key = data.get("fieldKey", data.get("field_key"))
        try:
            order = int(data.get("order", 0) or 0)  # type: ignore[arg-type]
        except (TypeError, ValueError):
            order = 0
        return cls(
            field_name=name,
            column_letter=letter,
            order=order,
            field_key=str(key).strip() if key else None,
        )

    def to_dict(self) -> Dict[str, object]:
        payload: Dict[str, object] = {
            "fieldName": self.field_name,
            "columnLetter": self.column_letter,
            "order": self.order,
        }
        if self.field_key:
            payload["fieldKey"] = self.field_key
        return payload


def parse_mappings(entries: Iterable[object]) -> List[ColumnMapping]:
    """Build mappings from raw entries keeping column letters unique."""

    mappings: List[ColumnMapping] = []
    seen: set = set()
    for entry in entries or ():
        if isinstance(entry, ColumnMapping):
            mapping = entry
        elif isinstance(entry, Mapping):
            mapping = ColumnMapping.from_dict(entry)
        else:
            continue
        if not mapping.column_letter:
            continue
        if mapping.column_letter in seen:
            logger.warning(
                "Ignoring duplicate mapping for column %s (%s)",
                mapping.column_letter,
                mapping.field_name,
            )
            continue
        seen.add(mapping.column_letter)
        mappings.append(mapping)
    return sorted(mappings, key=lambda item: item.order)


# ---------------------------------------------------------------------------
# Rule table
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class ColumnRule:
    name: str
    field_keys: Tuple[str, ...] = ()
    any_of: Tuple[str, ...] = ()
    all_of: Tuple[str, ...] = ()
    exclude: Tuple[str, ...] = ()

    def matches(self, label: str) -> bool:
        text = (label or "").strip().lower()
        if not text or not (self.any_of or self.all_of):
            return False
        if self.any_of and not any(part in text for part in self.any_of):
            return False
        if not all(part in text for part in self.all_of):
            return False
        return not any(part in text for part in self.exclude)

    def matches_mapping(self, mapping: ColumnMapping) -> bool:
        key = (mapping.field_key or "").strip().lower()
        if key and key in self.field_keys:
            return True
        return self.matches(normalize_field_name(mapping.field_name))


COLUMN_RULES: Tuple[ColumnRule, ...] = (
    ColumnRule(STATUS, field_keys=("status",), any_of=("status",), exclude=("scanned",)),
    ColumnRule(EQUIPMENT_MOVE, field_keys=("equipmentmove",), all_of=("equipment", "move")),
    ColumnRule(DESCRIPTION, field_keys=("description",), any_of=("description",)),
    ColumnRule(
        LAST_VERIFIED_DATE,
        field_keys=("lastverifieddate",),
        all_of=("last verified", "date"),
    ),
    ColumnRule(TECHNICIAN, field_keys=("technician",), any_of=("technician",)),
    ColumnRule(TYPE, field_keys=("type",), any_of=("type",), exclude=("scanned",)),
    ColumnRule(MANUFACTURER, field_keys=("manufacturer",), any_of=("manufacturer", "brand")),
    ColumnRule(NAME, field_keys=("name",), any_of=("name",), exclude=("column",)),
    ColumnRule(SERIAL, field_keys=("serialnumber",), any_of=("serial",)),
    ColumnRule(ASSET_TAG, field_keys=("assettag",), all_of=("asset", "tag")),
    ColumnRule(MODEL_ID, field_keys=("modelid",), any_of=("model id", "model")),
)

RULES_BY_NAME: Mapping[str, ColumnRule] = {rule.name: rule for rule in COLUMN_RULES}


class ColumnResolver:
    """Resolve rule names to column letters for one sheet."""

    def __init__(
        self,
        columns: Sequence[str],
        display_names: Mapping[str, str],
        mappings: Sequence[ColumnMapping] = (),
    ) -> None:
        self._columns = list(columns)
        self._display_names = dict(display_names)
        self._mappings = list(mappings)
        self._cache: Dict[str, Optional[str]] = {}

    @property
    def columns(self) -> List[str]:
        return list(self._columns)

    def display_name(self, column: str) -> str:
        return self._display_names.get(column, "")

    def find(self, rule_name: str) -> Optional[str]:
        """Return the column letter for ``rule_name`` or ``None``."""

        if rule_name in self._cache:
            return self._cache[rule_name]
        rule = RULES_BY_NAME[rule_name]
        found: Optional[str] = None
        for mapping in self._mappings:
            if rule.matches_mapping(mapping):
                found = mapping.column_letter
                break
        if found is None:
            for column in self._columns:
                if rule.matches(self._display_names.get(column, "")):
                    found = column
                    break
        self._cache[rule_name] = found
        return found

    def is_column(self, column: str, rule_name: str) -> bool:
        return column is not None and self.find(rule_name) == column


__all__ = [
    "ASSET_TAG",
    "COLUMN_RULES",
    "ColumnMapping",
    "ColumnResolver",
    "ColumnRule",
    "DESCRIPTION",
    "EQUIPMENT_MOVE",
    "LAST_VERIFIED_DATE",
    "MANUFACTURER",
    "MODEL_ID",
    "NAME",
    "ROW_INDEX_KEY",
    "SERIAL",
    "STATUS",
    "SheetRow",
    "TECHNICIAN",
    "TYPE",
    "are_field_names_equivalent",
    "column_letter",
    "column_number",
    "is_cell_key",
    "normalize_field_name",
    "parse_mappings",
    "sort_columns",
]
