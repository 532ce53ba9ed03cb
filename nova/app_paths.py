"""Centralised helpers for managing Nova application directories."""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Iterable

logger = logging.getLogger(__name__)

_APP_ENV_VARS: Iterable[str] = ("LOCALAPPDATA", "APPDATA")


def _detect_base_directory() -> Path:
    override = os.environ.get("NOVA_DATA_DIR")
    if override:
        return Path(override).expanduser().resolve()
    for env_var in _APP_ENV_VARS:
        value = os.environ.get(env_var)
        if value:
            return Path(value).expanduser().resolve() / "Nova"
    return Path.home().resolve() / ".nova"


APP_DIR: Path = _detect_base_directory()
STORAGE_DIR: Path = APP_DIR / "storage"
LOG_DIR: Path = APP_DIR / "logs"


def ensure_directory(path: Path) -> Path:
    """Ensure that ``path`` exists, returning the :class:`~pathlib.Path`."""

    path.mkdir(parents=True, exist_ok=True)
    return path


def logs_path(*parts: str) -> Path:
    """Return a path inside :data:`LOG_DIR`."""

    ensure_directory(LOG_DIR)
    return LOG_DIR.joinpath(*parts)


__all__ = [
    "APP_DIR",
    "STORAGE_DIR",
    "LOG_DIR",
    "logs_path",
    "ensure_directory",
]
