"""
どこで: `src/rasterboard/core/glyphs.py`。
何を: 字模（ビットマップフォント）定義テキストの解析と、セッション非依存の字模ライブラリを提供する。
なぜ: テキスト要素のスタンプと字模の貼り付けが、同じ Glyph レコードを参照できるようにするため。
"""

from __future__ import annotations

import logging
import re
import time
from collections.abc import Callable
from dataclasses import dataclass

from rasterboard.core.errors import FormatError, StorageUnavailable, ValidationError
from rasterboard.core.kv_store import KeyValueStore, read_json_mapping, write_json_mapping

_logger = logging.getLogger(__name__)

FONT_LIBRARY_KEY = "rasterizer-font-library"

_HEADER_RE = re.compile(r"^(.+?)\s*\(\d+\)$")
_BRACED_RE = re.compile(r"\{([\s\S]*?)\}")


@dataclass(frozen=True, slots=True)
class Glyph:
    """解析済みの字模。

    Notes
    -----
    - `rows[i]` は i 行目のビットマスク。bit c（LSB 側）が立っていれば c 列目を塗る。
    - `widths[i]` は i 行目の列数（データ行のトークン数）。行ごとに異なってよい。
    - `id` は `"<character>-<created_ms>"`。同じ文字の別バリアントが共存できる。
    """

    character: str
    rows: tuple[int, ...]
    widths: tuple[int, ...]
    id: str = ""
    created_ms: int = 0

    @property
    def height(self) -> int:
        return len(self.rows)

    @property
    def width(self) -> int:
        return max(self.widths, default=0)

    def iter_set_cells(self) -> list[tuple[int, int]]:
        """塗るセルの 0-indexed `(dc, dr)` オフセット列を返す。"""

        out: list[tuple[int, int]] = []
        for dr, (mask, width) in enumerate(zip(self.rows, self.widths)):
            for dc in range(width):
                if (mask >> dc) & 1:
                    out.append((dc, dr))
        return out


def _parse_hex_token(token: str, *, line: str) -> int:
    try:
        return int(token, 16)
    except ValueError as exc:
        raise FormatError(f"16 進数として解釈できないトークン {token!r}: {line}") from exc


def parse_glyph(text: str) -> Glyph:
    """字模定義テキストを解析して Glyph を返す（id は未採番）。

    Parameters
    ----------
    text : str
        1 行目が文字（`測` や `測(0)`）、2 行目以降が `{0x00, 0xFF, ...}` 形式のデータ行。

    Returns
    -------
    Glyph
        行ごとのビットマスクを持つ字模。非ゼロのトークンが「塗る」列になる。

    Raises
    ------
    FormatError
        非空行が 3 行未満、1 行目が単一文字でない、データ行を解析できない場合。
    """

    lines = [line.strip() for line in str(text).splitlines()]
    lines = [line for line in lines if line]
    if len(lines) < 3:
        raise FormatError("文字行と 2 行以上のデータ行が必要です")

    header = lines[0]
    m = _HEADER_RE.match(header)
    character = (m.group(1) if m else header).strip()
    if len(character) != 1 or character in "{}":
        raise FormatError(f"1 行目は単一の文字である必要があります: {header!r}")

    rows: list[int] = []
    widths: list[int] = []
    for line in lines[1:]:
        braced = _BRACED_RE.search(line)
        if braced is None:
            raise FormatError(f"データ行を解析できません: {line}")
        tokens = [t.strip() for t in braced.group(1).split(",")]
        tokens = [t for t in tokens if t]
        mask = 0
        for c, token in enumerate(tokens):
            if _parse_hex_token(token, line=line):
                mask |= 1 << c
        rows.append(mask)
        widths.append(len(tokens))

    return Glyph(character=character, rows=tuple(rows), widths=tuple(widths))


def glyph_to_record(glyph: Glyph) -> dict[str, object]:
    return {
        "id": glyph.id,
        "char": glyph.character,
        "rows": list(glyph.rows),
        "widths": list(glyph.widths),
        "createdAt": glyph.created_ms,
    }


def glyph_from_record(record: dict) -> Glyph:
    """ライブラリのレコードから Glyph を復元する。"""

    try:
        rows = tuple(int(v) for v in record["rows"])
        widths = tuple(int(v) for v in record["widths"])
        character = str(record["char"])
        created_ms = int(record.get("createdAt") or 0)
    except (KeyError, TypeError, ValueError) as exc:
        raise ValidationError(f"字模レコードが不正です: {record!r}") from exc
    if len(rows) != len(widths):
        raise ValidationError(f"字模レコードの rows/widths の長さが一致しません: {record!r}")
    return Glyph(
        character=character,
        rows=rows,
        widths=widths,
        id=str(record.get("id") or ""),
        created_ms=created_ms,
    )


def _default_now_ms() -> int:
    return time.time_ns() // 1_000_000


class GlyphLibrary:
    """key-value ストアに永続化される字模ライブラリ（`id -> Glyph`）。"""

    def __init__(
        self,
        store: KeyValueStore,
        *,
        key: str = FONT_LIBRARY_KEY,
        now_ms: Callable[[], int] = _default_now_ms,
    ) -> None:
        self._store = store
        self._key = str(key)
        self._now_ms = now_ms

    def _read(self) -> dict[str, dict]:
        return read_json_mapping(self._store, self._key)

    def available(self) -> bool:
        """ストアへアクセスできるなら True を返す。"""

        try:
            self._store.get_item(self._key)
        except StorageUnavailable:
            return False
        return True

    def entries(self) -> list[Glyph]:
        """登録済み字模を作成順に返す。壊れたレコードは読み飛ばす。"""

        out: list[Glyph] = []
        for entry_id, record in self._read().items():
            try:
                glyph = glyph_from_record({**record, "id": record.get("id") or entry_id})
            except ValidationError:
                _logger.warning("字模レコードを読み飛ばします: id=%s", entry_id)
                continue
            out.append(glyph)
        out.sort(key=lambda g: (g.created_ms, g.id))
        return out

    def get(self, glyph_id: str) -> Glyph:
        for glyph in self.entries():
            if glyph.id == glyph_id:
                return glyph
        raise KeyError(glyph_id)

    def add_text(self, text: str) -> Glyph:
        """字模定義テキストを解析してライブラリへ追加し、採番済み Glyph を返す。"""

        return self.add(parse_glyph(text))

    def add(self, glyph: Glyph) -> Glyph:
        """Glyph に `"<char>-<ms>"` の id を採番して保存する。"""

        library = self._read()
        created = int(self._now_ms())
        glyph_id = f"{glyph.character}-{created}"
        while glyph_id in library:
            created += 1
            glyph_id = f"{glyph.character}-{created}"
        stored = Glyph(
            character=glyph.character,
            rows=glyph.rows,
            widths=glyph.widths,
            id=glyph_id,
            created_ms=created,
        )
        library[glyph_id] = glyph_to_record(stored)
        write_json_mapping(self._store, self._key, library)
        return stored

    def remove(self, glyph_id: str) -> None:
        library = self._read()
        if glyph_id not in library:
            raise KeyError(glyph_id)
        del library[glyph_id]
        write_json_mapping(self._store, self._key, library)

    def resolver(self) -> GlyphResolver:
        """現在の内容から文字 → 最新バリアントの対応表を作って返す。"""

        latest: dict[str, Glyph] = {}
        for glyph in self.entries():
            latest[glyph.character] = glyph
        return GlyphResolver(latest)

    def resolve(self, character: str) -> Glyph | None:
        return self.resolver().get(character)


class GlyphResolver:
    """文字 → Glyph の読み取り専用対応表。合成 1 回分で使い回す。"""

    def __init__(self, glyphs: dict[str, Glyph] | None = None) -> None:
        self._glyphs = dict(glyphs or {})

    def get(self, character: str) -> Glyph | None:
        return self._glyphs.get(character)

    def __len__(self) -> int:
        return len(self._glyphs)


__all__ = [
    "FONT_LIBRARY_KEY",
    "Glyph",
    "GlyphLibrary",
    "GlyphResolver",
    "glyph_from_record",
    "glyph_to_record",
    "parse_glyph",
]
