"""
Per-extension persistent key/value storage.

Each extension owns one JSON document at ``<data_dir>/<name>.json``. Every
operation reads, modifies, and writes the whole document, which is only safe
because all callers run on the runtime's single event loop.

Storage never raises to extension code: unreadable documents are treated as
empty and failed writes are reported through the return value.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from extension_runtime.errors import StorageError
from extension_runtime.logging import get_logger

logger = get_logger("storage")


class ExtensionStorage:
    """Namespaced record of a single extension."""

    def __init__(self, name: str, path: Path) -> None:
        self.name = name
        self.path = path

    def get(self, key: str | None = None, default: Any = None) -> Any:
        """
        Read a value, or the whole record when ``key`` is omitted.

        Args:
            key: Key to read (None returns a copy of the record)
            default: Returned when the key is absent

        Returns:
            The stored value, the record, or ``default``
        """
        try:
            data = self._read()
        except StorageError as e:
            logger.warning("Storage read failed for %s: %s", self.name, e)
            data = {}

        if key is None:
            return data
        return data.get(key, default)

    def set(self, key: str | Mapping[str, Any], value: Any = None) -> bool:
        """Set one key, or merge a mapping into the record. Returns True on success."""
        try:
            data = self._read()
        except StorageError as e:
            logger.warning("Storage for %s is corrupt, resetting: %s", self.name, e)
            data = {}

        if isinstance(key, Mapping):
            data.update(key)
        else:
            data[key] = value

        try:
            self._write(data)
        except StorageError as e:
            logger.error("Storage write failed for %s: %s", self.name, e)
            return False
        return True

    def delete(self, key: str) -> bool:
        """Remove a key. Returns True on success (including when absent)."""
        if not self.path.exists():
            return True
        try:
            data = self._read()
            data.pop(key, None)
            self._write(data)
        except StorageError as e:
            logger.error("Storage delete failed for %s: %s", self.name, e)
            return False
        return True

    def clear(self) -> bool:
        """Remove the whole record. Returns True on success."""
        try:
            self.path.unlink(missing_ok=True)
        except OSError as e:
            logger.error("Storage clear failed for %s: %s", self.name, e)
            return False
        return True

    def _read(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise StorageError(f"Cannot read {self.path}: {e}", self.name) from e
        if not isinstance(data, dict):
            raise StorageError(f"Record in {self.path} is not an object", self.name)
        return data

    def _write(self, data: dict[str, Any]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(data, indent=2, default=str), encoding="utf-8")
        except (OSError, TypeError, ValueError) as e:
            raise StorageError(f"Cannot write {self.path}: {e}", self.name) from e


class StorageProvider:
    """Hands out storage records rooted at one data directory."""

    def __init__(self, data_dir: Path) -> None:
        self.data_dir = Path(data_dir)

    def for_extension(self, name: str) -> ExtensionStorage:
        return ExtensionStorage(name, self.data_dir / f"{name}.json")
