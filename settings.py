"""Application configuration helpers for Nova inventory."""
from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional
from zoneinfo import ZoneInfo

from nova import app_paths
from nova.columns import ColumnMapping, parse_mappings
from nova.date_utils import DEFAULT_TIMEZONE
from nova.sheet_editor import DEFAULT_PROJECT_NAME, User


logger = logging.getLogger(__name__)


DEFAULT_WORKSHEET_TITLE = "Inventory"
DEFAULT_USER_ROLE = "technician"
SETTINGS_FILENAME = "settings.json"

ENV_OVERRIDES: Mapping[str, str] = {
    "NOVA_SPREADSHEET_ID": "spreadsheet_id",
    "NOVA_CREDENTIALS_PATH": "credential_path",
    "NOVA_USER_EMAIL": "user_email",
    "NOVA_USER_ROLE": "user_role",
}


def default_settings_path() -> str:
    return str(app_paths.APP_DIR / SETTINGS_FILENAME)


def default_credentials_path() -> str:
    return str(app_paths.APP_DIR / "service_account.json")


@dataclass
class InventorySettings:
    spreadsheet_id: str = ""
    worksheet_title: str = DEFAULT_WORKSHEET_TITLE
    credential_path: str = field(default_factory=default_credentials_path)
    timezone: str = DEFAULT_TIMEZONE
    project_name: str = DEFAULT_PROJECT_NAME
    user_email: str = ""
    user_role: str = DEFAULT_USER_ROLE
    highlight_missing: bool = True
    column_mapping: List[ColumnMapping] = field(default_factory=list)

    @property
    def user(self) -> User:
        return User(email=self.user_email, role=self.user_role)

    def update_mapping(self, entries: List[Mapping[str, object]]) -> None:
        self.column_mapping = parse_mappings(entries)

    def to_json(self) -> Dict[str, object]:
        return {
            "spreadsheet_id": self.spreadsheet_id,
            "worksheet_title": self.worksheet_title,
            "credential_path": self.credential_path,
            "timezone": self.timezone,
            "project_name": self.project_name,
            "user_email": self.user_email,
            "user_role": self.user_role,
            "highlight_missing": self.highlight_missing,
            "column_mapping": [entry.to_dict() for entry in self.column_mapping],
        }


def _ensure_settings_file(path: str) -> Dict[str, object]:
    if not os.path.exists(path):
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        defaults = InventorySettings().to_json()
        with open(path, "w", encoding="utf-8") as handle:
            json.dump(defaults, handle, indent=2)
        return defaults

    with open(path, "r", encoding="utf-8") as handle:
        try:
            data = json.load(handle)
        except json.JSONDecodeError as exc:
            logger.warning("Ignoring unreadable settings file %s: %s", path, exc)
            return {}
    if not isinstance(data, dict):
        logger.warning("Ignoring settings file %s: expected a JSON object", path)
        return {}
    return data


def _text(value: object, default: str) -> str:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return default


def _valid_timezone(value: object) -> str:
    name = _text(value, DEFAULT_TIMEZONE)
    try:
        ZoneInfo(name)
    except (ValueError, LookupError) as exc:
        logger.warning("Unknown timezone %r in settings (%s); using %s", name, exc, DEFAULT_TIMEZONE)
        return DEFAULT_TIMEZONE
    return name


def _coerce_bool(value: object, default: bool) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off"}:
            return False
    return default


def load_settings(path: Optional[str] = None) -> InventorySettings:
    """Load settings from ``path`` creating the file with defaults if needed.

    Environment variables (``NOVA_SPREADSHEET_ID``, ``NOVA_CREDENTIALS_PATH``,
    ``NOVA_USER_EMAIL`` and ``NOVA_USER_ROLE``) take precedence over the file.
    """

    target = path or default_settings_path()
    data: Dict[str, object] = dict(_ensure_settings_file(target))
    for env_var, key in ENV_OVERRIDES.items():
        value = os.getenv(env_var)
        if value:
            data[key] = value

    defaults = InventorySettings()
    raw_mapping = data.get("column_mapping", [])
    mapping_entries = parse_mappings(raw_mapping if isinstance(raw_mapping, list) else [])

    return InventorySettings(
        spreadsheet_id=_text(data.get("spreadsheet_id"), defaults.spreadsheet_id),
        worksheet_title=_text(data.get("worksheet_title"), DEFAULT_WORKSHEET_TITLE),
        credential_path=_text(data.get("credential_path"), defaults.credential_path),
        timezone=_valid_timezone(data.get("timezone")),
        project_name=_text(data.get("project_name"), DEFAULT_PROJECT_NAME),
        user_email=_text(data.get("user_email"), ""),
        user_role=_text(data.get("user_role"), DEFAULT_USER_ROLE).lower(),
        highlight_missing=_coerce_bool(data.get("highlight_missing"), True),
        column_mapping=mapping_entries,
    )


def save_settings(settings: InventorySettings, path: Optional[str] = None) -> None:
    target = path or default_settings_path()
    directory = os.path.dirname(target)
    if directory:
        os.makedirs(directory, exist_ok=True)

    with open(target, "w", encoding="utf-8") as handle:
        json.dump(settings.to_json(), handle, indent=2)


__all__ = [
    "DEFAULT_USER_ROLE",
    "DEFAULT_WORKSHEET_TITLE",
    "ENV_OVERRIDES",
    "InventorySettings",
    "default_credentials_path",
    "default_settings_path",
    "load_settings",
    "save_settings",
]
