"""Durable key/value storage used for crash recovery of unsaved edits."""
from __future__ import annotations

import logging
import re
import threading
from pathlib import Path
from typing import Dict, Optional

from nova import app_paths

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")


class StorageError(OSError):
    """Raised when a storage entry cannot be read or written."""


class JsonFileStorage:
    """Persist each key as its own file inside ``directory``.

    Values are opaque strings (callers serialise JSON themselves).  Reads and
    writes are guarded by a lock so a background caller never observes a
    partially written entry.
    """

    def __init__(self, directory: Optional[Path] = None) -> None:
        self._directory = Path(directory) if directory is not None else app_paths.STORAGE_DIR
        self._lock = threading.Lock()
        self._directory.mkdir(parents=True, exist_ok=True)

    @property
    def directory(self) -> Path:
        return self._directory

    def _path_for(self, key: str) -> Path:
        safe = _UNSAFE_CHARS.sub("_", key)
        return self._directory / f"{safe}.json"

    def get_item(self, key: str) -> Optional[str]:
        path = self._path_for(key)
        with self._lock:
            if not path.exists():
                return None
            try:
                return path.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as exc:
                raise StorageError(f"Unable to read {path}: {exc}") from exc

    def set_item(self, key: str, value: str) -> None:
        path = self._path_for(key)
        temp_path = path.with_suffix(".tmp")
        with self._lock:
            try:
                temp_path.write_text(value, encoding="utf-8")
                temp_path.replace(path)
            except OSError as exc:
                raise StorageError(f"Unable to write {path}: {exc}") from exc

    def remove_item(self, key: str) -> None:
        path = self._path_for(key)
        with self._lock:
            try:
                path.unlink()
            except FileNotFoundError:
                pass
            except OSError as exc:
                raise StorageError(f"Unable to remove {path}: {exc}") from exc


class MemoryStorage:
    """In-process storage with the same interface as :class:`JsonFileStorage`."""

    def __init__(self, initial: Optional[Dict[str, str]] = None) -> None:
        self._items: Dict[str, str] = dict(initial or {})
        self._lock = threading.Lock()

    def get_item(self, key: str) -> Optional[str]:
        with self._lock:
            return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        with self._lock:
            self._items[key] = value

    def remove_item(self, key: str) -> None:
        with self._lock:
            self._items.pop(key, None)

    def keys(self):
        with self._lock:
            return sorted(self._items)


__all__ = ["JsonFileStorage", "MemoryStorage", "StorageError"]
