"""Tests for per-extension storage."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from extension_runtime.storage import ExtensionStorage, StorageProvider


@pytest.fixture
def storage(tmp_path: Path) -> ExtensionStorage:
    return StorageProvider(tmp_path / "data").for_extension("analytics")


class TestExtensionStorage:
    def test_path_per_extension(self, tmp_path: Path) -> None:
        storage = StorageProvider(tmp_path).for_extension("auth")

        assert storage.path == tmp_path / "auth.json"

    def test_set_then_get(self, storage: ExtensionStorage) -> None:
        assert storage.set("k", {"nested": [1, 2]}) is True

        assert storage.get("k") == {"nested": [1, 2]}
        assert json.loads(storage.path.read_text()) == {"k": {"nested": [1, 2]}}

    def test_clear_then_default(self, storage: ExtensionStorage) -> None:
        storage.set("k", "v")

        assert storage.clear() is True
        assert storage.get("k", "d") == "d"
        assert not storage.path.exists()

    def test_get_whole_record(self, storage: ExtensionStorage) -> None:
        assert storage.get() == {}

        storage.set({"a": 1, "b": 2})
        storage.set({"b": 3})

        assert storage.get() == {"a": 1, "b": 3}

    def test_delete(self, storage: ExtensionStorage) -> None:
        storage.set({"a": 1, "b": 2})

        assert storage.delete("a") is True
        assert storage.get() == {"b": 2}
        assert storage.delete("missing") is True

    def test_delete_without_record(self, storage: ExtensionStorage) -> None:
        assert storage.delete("a") is True
        assert not storage.path.exists()

    def test_corrupt_record_reads_as_empty(
        self, storage: ExtensionStorage, caplog: pytest.LogCaptureFixture
    ) -> None:
        storage.path.parent.mkdir(parents=True)
        storage.path.write_text("{not json")

        assert storage.get("k", "fallback") == "fallback"
        assert "Storage read failed for analytics" in caplog.text

    def test_set_over_corrupt_record_resets(self, storage: ExtensionStorage) -> None:
        storage.path.parent.mkdir(parents=True)
        storage.path.write_text("[1, 2, 3]")

        assert storage.set("k", 1) is True
        assert storage.get() == {"k": 1}

    def test_unwritable_value_returns_false(self, storage: ExtensionStorage) -> None:
        storage.set("ok", 1)

        assert storage.set("cycle", _cyclic()) is False
        assert storage.get("ok") == 1


def _cyclic() -> dict:
    data: dict = {}
    data["self"] = data
    return data
