"""key-value ストア（メモリ版 / JSON ファイル版）のテスト。"""

from __future__ import annotations

import logging
from pathlib import Path

import pytest

from rasterboard.core.errors import StorageUnavailable
from rasterboard.core.kv_store import (
    JsonFileStore,
    MemoryStore,
    read_json_mapping,
    write_json_mapping,
)


def test_memory_store_quota_counts_other_keys_but_not_the_overwritten_value() -> None:
    store = MemoryStore(quota=10)
    store.set_item("a", "12345")
    store.set_item("a", "1234567890")

    with pytest.raises(StorageUnavailable):
        store.set_item("b", "x")
    assert store.get_item("a") == "1234567890"
    assert store.get_item("b") is None


def test_json_file_store_round_trips_and_creates_parent(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "store.json"
    store = JsonFileStore(path)

    assert store.get_item("k") is None
    store.set_item("k", '{"x": 1}')
    store.set_item("other", "日本語")

    reopened = JsonFileStore(path)
    assert reopened.get_item("k") == '{"x": 1}'
    assert reopened.get_item("other") == "日本語"
    assert not path.with_suffix(".json.tmp").exists()


def test_json_file_store_treats_corrupt_file_as_empty(tmp_path: Path, caplog) -> None:
    path = tmp_path / "store.json"
    path.write_text("{not json", encoding="utf-8")
    store = JsonFileStore(path)

    with caplog.at_level(logging.WARNING, logger="rasterboard.core.kv_store"):
        assert store.get_item("k") is None
    assert any("破損" in r.getMessage() for r in caplog.records)

    store.set_item("k", "v")
    assert store.get_item("k") == "v"


def test_json_file_store_raises_when_path_is_unwritable(tmp_path: Path) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("", encoding="utf-8")
    store = JsonFileStore(blocker / "store.json")

    with pytest.raises(StorageUnavailable):
        store.set_item("k", "v")


def test_read_json_mapping_skips_non_object_entries() -> None:
    store = MemoryStore()
    store.set_item("lib", '{"a": {"x": 1}, "b": 3}')

    assert read_json_mapping(store, "lib") == {"a": {"x": 1}}


@pytest.mark.parametrize("raw", ["[1, 2]", "{oops", ""])
def test_read_json_mapping_returns_empty_for_unusable_payloads(raw: str) -> None:
    store = MemoryStore()
    store.set_item("lib", raw)

    assert read_json_mapping(store, "lib") == {}


def test_write_then_read_mapping() -> None:
    store = MemoryStore()
    write_json_mapping(store, "lib", {"id-1": {"name": "ボード"}})

    assert read_json_mapping(store, "lib") == {"id-1": {"name": "ボード"}}
