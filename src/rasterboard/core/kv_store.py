# どこで: `src/rasterboard/core/kv_store.py`。
# 何を: 文字列 key → JSON テキストの単純な key-value ストア（ファイル版 / メモリ版）を提供する。
# なぜ: スナップショット/字模ライブラリの永続先を差し替え可能にし、テストで容量超過も再現できるようにするため。

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Protocol

from rasterboard.core.errors import StorageUnavailable

_logger = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    """名前空間 key ごとに 1 つのテキスト値を保持するストア。"""

    def get_item(self, key: str) -> str | None: ...

    def set_item(self, key: str, value: str) -> None: ...


class MemoryStore:
    """プロセス内メモリに保持する KeyValueStore。

    Parameters
    ----------
    quota : int or None
        全値の合計文字数の上限。超える書き込みは StorageUnavailable。
    """

    def __init__(self, *, quota: int | None = None) -> None:
        self._items: dict[str, str] = {}
        self._quota = None if quota is None else int(quota)

    def get_item(self, key: str) -> str | None:
        return self._items.get(str(key))

    def set_item(self, key: str, value: str) -> None:
        k = str(key)
        v = str(value)
        if self._quota is not None:
            used = sum(len(x) for kk, x in self._items.items() if kk != k)
            if used + len(v) > self._quota:
                raise StorageUnavailable(
                    f"ストア容量を超過しました: quota={self._quota}, required={used + len(v)}"
                )
        self._items[k] = v


class JsonFileStore:
    """1 つの JSON ファイル（`{key: text}`）に保持する KeyValueStore。"""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def _read_all(self) -> dict[str, str]:
        try:
            payload = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except OSError as exc:
            raise StorageUnavailable(f"ストアを読めません: {self.path}") from exc

        try:
            data = json.loads(payload)
        except json.JSONDecodeError:
            _logger.warning("ストアファイルが破損しているため空として扱います: %s", self.path)
            return {}
        if not isinstance(data, dict):
            _logger.warning("ストアファイルが object ではないため空として扱います: %s", self.path)
            return {}
        return {str(k): str(v) for k, v in data.items() if isinstance(v, str)}

    def get_item(self, key: str) -> str | None:
        return self._read_all().get(str(key))

    def set_item(self, key: str, value: str) -> None:
        data = self._read_all()
        data[str(key)] = str(value)
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self.path.with_suffix(self.path.suffix + ".tmp")
            tmp.write_text(json.dumps(data, ensure_ascii=False) + "\n", encoding="utf-8")
            tmp.replace(self.path)
        except OSError as exc:
            raise StorageUnavailable(f"ストアへ書き込めません: {self.path}") from exc


def read_json_mapping(store: KeyValueStore, key: str) -> dict[str, dict]:
    """store[key] を `{entry_id: record}` として読み、壊れていれば空 dict を返す。

    Raises
    ------
    StorageUnavailable
        ストア自体にアクセスできない場合。
    """

    raw = store.get_item(key)
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        _logger.warning("ライブラリ %s の JSON が壊れているため空として扱います", key)
        return {}
    if not isinstance(parsed, dict):
        _logger.warning("ライブラリ %s が object ではないため空として扱います", key)
        return {}
    return {str(k): v for k, v in parsed.items() if isinstance(v, dict)}


def write_json_mapping(store: KeyValueStore, key: str, mapping: dict[str, dict]) -> None:
    """`{entry_id: record}` を JSON テキストとして store[key] に書き込む。"""

    store.set_item(key, json.dumps(mapping, ensure_ascii=False))


__all__ = [
    "JsonFileStore",
    "KeyValueStore",
    "MemoryStore",
    "read_json_mapping",
    "write_json_mapping",
]
