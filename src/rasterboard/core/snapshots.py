"""
どこで: `src/rasterboard/core/snapshots.py`。
何を: ボードのスナップショット（grid + 要素列）の JSON encode/decode と、名前で重複排除するライブラリを提供する。
なぜ: 永続化仕様を live な編集状態から分離し、不正データを復元前に必ず弾けるようにするため。
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Sequence
from copy import deepcopy
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any

from rasterboard.core.color import BACKGROUND, Color, normalize_hex
from rasterboard.core.elements import Element, element_from_dict, element_to_dict
from rasterboard.core.errors import SnapshotNotFound, StorageUnavailable, ValidationError
from rasterboard.core.kv_store import KeyValueStore, read_json_mapping, write_json_mapping
from rasterboard.core.pixel_grid import PixelGrid

_logger = logging.getLogger(__name__)

SCHEMA = "rasterizer-board@1.0"
BOARD_LIBRARY_KEY = "rasterizer-board-library"
UNTITLED_PREFIX = "無題のボード"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(dt: datetime) -> str:
    """datetime を `2024-01-02T03:04:05.678Z` 形式の文字列にして返す。"""

    return dt.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_timestamp(text: object) -> datetime | None:
    """ISO-8601 文字列を datetime に変換する。解釈できなければ None を返す。"""

    if not isinstance(text, str) or not text.strip():
        return None
    try:
        dt = datetime.fromisoformat(text.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


@dataclass(frozen=True, slots=True)
class Snapshot:
    """名前付きのボード状態（値コピー）。"""

    name: str
    width: int
    height: int
    pixels: tuple[tuple[Color, ...], ...]
    elements: tuple[Element, ...] = ()
    current_color: Color = BACKGROUND
    created_at: str = ""
    saved_at: str | None = None
    id: str | None = None
    schema: str = SCHEMA


@dataclass(frozen=True, slots=True)
class SnapshotSummary:
    """ライブラリ一覧の 1 行分。"""

    id: str
    name: str
    created_at: str
    saved_at: str | None = None
    sort_key: datetime = field(default=datetime.min.replace(tzinfo=timezone.utc), compare=False)


def build_snapshot(
    grid: PixelGrid,
    elements: Sequence[Element],
    *,
    name: str = "",
    current_color: Color = BACKGROUND,
    now: Callable[[], datetime] = utc_now,
) -> Snapshot:
    """live な grid/要素列からスナップショット（値コピー）を作って返す。"""

    return Snapshot(
        name=str(name).strip(),
        width=grid.width,
        height=grid.height,
        pixels=tuple(tuple(row) for row in grid.to_hex_rows()),
        elements=tuple(deepcopy(e) for e in elements),
        current_color=normalize_hex(current_color),
        created_at=format_timestamp(now()),
    )


def encode_snapshot(snapshot: Snapshot) -> dict[str, Any]:
    """Snapshot をボードファイル形式の dict に変換して返す。"""

    out: dict[str, Any] = {
        "schema": snapshot.schema,
        "createdAt": snapshot.created_at,
        "grid": {"width": snapshot.width, "height": snapshot.height},
        "name": snapshot.name,
        "currentColor": snapshot.current_color,
        "pixels": [list(row) for row in snapshot.pixels],
        "elements": [element_to_dict(e) for e in snapshot.elements],
    }
    if snapshot.id is not None:
        out["id"] = snapshot.id
    if snapshot.saved_at is not None:
        out["savedAt"] = snapshot.saved_at
    return out


def _is_int(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def decode_snapshot(obj: object, *, width: int, height: int) -> Snapshot:
    """ボードファイル形式の dict を検証して Snapshot を返す。

    Parameters
    ----------
    obj : object
        `json.loads` の結果。
    width, height : int
        live な grid の寸法。`grid.width/height` がこれと一致しなければ拒否する。

    Raises
    ------
    ValidationError
        形状・寸法・色・要素のいずれかが不正な場合。部分的な Snapshot は返さない。
    """

    if not isinstance(obj, dict):
        raise ValidationError("スナップショットは object である必要があります")

    schema = obj.get("schema", SCHEMA)
    if not isinstance(schema, str) or not schema.startswith("rasterizer-board@1."):
        raise ValidationError(f"未対応のスキーマです: {schema!r}")

    grid = obj.get("grid")
    if not isinstance(grid, dict):
        raise ValidationError("grid が object ではありません")
    gw, gh = grid.get("width"), grid.get("height")
    if not (_is_int(gw) and _is_int(gh)) or gw != width or gh != height:
        raise ValidationError(
            f"grid 寸法が一致しません: got={gw}x{gh}, expected={width}x{height}"
        )

    raw_pixels = obj.get("pixels")
    if not isinstance(raw_pixels, list) or len(raw_pixels) != height:
        raise ValidationError(f"pixels は {height} 行である必要があります")
    pixels: list[tuple[Color, ...]] = []
    for r, row in enumerate(raw_pixels):
        if not isinstance(row, list) or len(row) != width:
            raise ValidationError(f"pixels の {r + 1} 行目は {width} 列である必要があります")
        pixels.append(tuple(BACKGROUND if c is None else normalize_hex(c) for c in row))

    raw_elements = obj.get("elements", [])
    if raw_elements is None:
        raw_elements = []
    if not isinstance(raw_elements, list):
        raise ValidationError("elements は配列である必要があります")
    elements = tuple(element_from_dict(e) for e in raw_elements)

    raw_color = obj.get("currentColor")
    current_color = normalize_hex(raw_color) if isinstance(raw_color, str) else BACKGROUND

    raw_name = obj.get("name")
    name = raw_name.strip() if isinstance(raw_name, str) else ""

    raw_id = obj.get("id")
    raw_created = obj.get("createdAt")
    raw_saved = obj.get("savedAt")
    return Snapshot(
        name=name,
        width=width,
        height=height,
        pixels=tuple(pixels),
        elements=elements,
        current_color=current_color,
        created_at=raw_created if isinstance(raw_created, str) else "",
        saved_at=raw_saved if isinstance(raw_saved, str) else None,
        id=str(raw_id) if raw_id else None,
        schema=schema,
    )


def new_snapshot_id() -> str:
    return str(uuid.uuid4())


class SnapshotLibrary:
    """key-value ストア上のスナップショットライブラリ（`id -> record`）。

    Notes
    -----
    - 同じ（前後空白を除いた）名前で保存すると既存エントリの id を再利用して上書きする。
    - 一覧は `savedAt`（無ければ `createdAt`）の降順。
    """

    def __init__(
        self,
        store: KeyValueStore,
        *,
        width: int,
        height: int,
        key: str = BOARD_LIBRARY_KEY,
        now: Callable[[], datetime] = utc_now,
        id_factory: Callable[[], str] = new_snapshot_id,
    ) -> None:
        self._store = store
        self._width = int(width)
        self._height = int(height)
        self._key = str(key)
        self._now = now
        self._id_factory = id_factory

    def available(self) -> bool:
        """ストアへアクセスできるなら True を返す。"""

        try:
            self._store.get_item(self._key)
        except StorageUnavailable:
            return False
        return True

    def _read(self) -> dict[str, dict]:
        return read_json_mapping(self._store, self._key)

    def save(self, snapshot: Snapshot) -> str:
        """スナップショットを保存して id を返す。

        Raises
        ------
        StorageUnavailable
            ストアへ書き込めない場合（容量超過を含む）。
        """

        library = self._read()
        saved_at = format_timestamp(self._now())
        name = snapshot.name.strip()

        existing_id: str | None = None
        if name:
            for entry_id, record in library.items():
                if record.get("name") == name:
                    existing_id = str(record.get("id") or entry_id)
                    break

        snapshot_id = existing_id or snapshot.id or self._id_factory()
        stored = replace(
            snapshot,
            id=snapshot_id,
            name=name or f"{UNTITLED_PREFIX} {saved_at}",
            saved_at=saved_at,
            created_at=snapshot.created_at or saved_at,
        )
        library[snapshot_id] = encode_snapshot(stored)
        write_json_mapping(self._store, self._key, library)
        _logger.debug("スナップショットを保存しました: id=%s name=%s", snapshot_id, stored.name)
        return snapshot_id

    def list(self) -> list[SnapshotSummary]:
        """保存済みスナップショットの要約を新しい順に返す。"""

        out: list[SnapshotSummary] = []
        for entry_id, record in self._read().items():
            created = record.get("createdAt")
            saved = record.get("savedAt")
            stamp = parse_timestamp(saved) or parse_timestamp(created)
            out.append(
                SnapshotSummary(
                    id=str(record.get("id") or entry_id),
                    name=str(record.get("name") or UNTITLED_PREFIX),
                    created_at=created if isinstance(created, str) else "",
                    saved_at=saved if isinstance(saved, str) else None,
                    sort_key=stamp or datetime.min.replace(tzinfo=timezone.utc),
                )
            )
        out.sort(key=lambda s: s.sort_key, reverse=True)
        return out

    def load(self, snapshot_id: str) -> Snapshot:
        """id のスナップショットを検証して返す。

        Raises
        ------
        SnapshotNotFound
            id が無い場合。
        ValidationError
            保存データが壊れている、または寸法が live grid と一致しない場合。
        """

        record = self._read().get(str(snapshot_id))
        if record is None:
            raise SnapshotNotFound(snapshot_id)
        return decode_snapshot(record, width=self._width, height=self._height)

    def remove(self, snapshot_id: str) -> None:
        library = self._read()
        if str(snapshot_id) not in library:
            raise SnapshotNotFound(snapshot_id)
        del library[str(snapshot_id)]
        write_json_mapping(self._store, self._key, library)


__all__ = [
    "BOARD_LIBRARY_KEY",
    "SCHEMA",
    "Snapshot",
    "SnapshotLibrary",
    "SnapshotSummary",
    "build_snapshot",
    "decode_snapshot",
    "encode_snapshot",
    "format_timestamp",
    "parse_timestamp",
    "utc_now",
]
