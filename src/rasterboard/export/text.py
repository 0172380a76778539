"""
どこで: `src/rasterboard/export/text.py`。
何を: PixelGrid をテキスト（plain / C 配列）として書き出し、plain 形式を読み戻す。
なぜ: マトリクス表示側のファームウェアへ、そのまま取り込める形式で受け渡すため。
"""

from __future__ import annotations

import re
from collections.abc import Callable
from datetime import datetime
from pathlib import Path

from rasterboard.core.color import Color
from rasterboard.core.errors import ValidationError
from rasterboard.core.pixel_grid import PixelGrid
from rasterboard.core.runtime_config import output_root_dir
from rasterboard.core.snapshots import format_timestamp, utc_now

PLAIN_MAGIC = "FONT64x32 RGB888"

EXPORT_FORMATS: dict[str, str] = {
    "plain": ".txt",
    "c-array": ".c",
}
"""書き出し形式 → 拡張子。"""

DEFAULT_TEXT_BASENAME = "font64x32"

_TOKEN_RE = re.compile(r"^[0-9A-Fa-f]{6}$")


def format_plain(grid: PixelGrid) -> str:
    """grid を plain 形式（ヘッダ 4 行 + H 行の 16 進色）にして返す。"""

    lines = [PLAIN_MAGIC, f"WIDTH {grid.width}", f"HEIGHT {grid.height}", "DATA"]
    for row in grid.to_hex_rows():
        lines.append(" ".join(color[1:] for color in row))
    return "\n".join(lines)


def format_c_array(grid: PixelGrid, *, name: str = "FONT_64x32") -> str:
    """grid を `uint32_t` の 2 次元配列宣言にして返す。"""

    lines = [f"const uint32_t {name}[{grid.height}][{grid.width}] = {{"]
    for row in grid.to_hex_rows():
        lines.append("    { " + ", ".join(f"0x{color[1:]}" for color in row) + " },")
    lines.append("};")
    return "\n".join(lines)


def format_grid(grid: PixelGrid, fmt: str) -> str:
    """形式名に応じて grid をテキスト化して返す。"""

    if fmt == "plain":
        return format_plain(grid)
    if fmt == "c-array":
        return format_c_array(grid)
    raise ValueError(f"未対応の書き出し形式: {fmt!r}")


def _expect_header(line: str | None, key: str) -> int:
    if line is None:
        raise ValidationError(f"{key} 行がありません")
    parts = line.split()
    if len(parts) != 2 or parts[0] != key:
        raise ValidationError(f"{key} 行を解釈できません: {line!r}")
    try:
        return int(parts[1])
    except ValueError as exc:
        raise ValidationError(f"{key} は整数である必要があります: {line!r}") from exc


def parse_plain(text: str, *, width: int, height: int) -> list[list[Color]]:
    """plain 形式のテキストを H 行 × W 列の色行列へ戻す。

    Raises
    ------
    ValidationError
        ヘッダ・寸法・トークンのいずれかが不正な場合。
    """

    lines = [line.strip() for line in str(text).splitlines()]
    while lines and not lines[-1]:
        lines.pop()
    if not lines or lines[0] != PLAIN_MAGIC:
        raise ValidationError(f"1 行目は {PLAIN_MAGIC!r} である必要があります")

    w = _expect_header(lines[1] if len(lines) > 1 else None, "WIDTH")
    h = _expect_header(lines[2] if len(lines) > 2 else None, "HEIGHT")
    if (w, h) != (int(width), int(height)):
        raise ValidationError(f"寸法が一致しません: got={w}x{h}, expected={width}x{height}")
    if len(lines) < 4 or lines[3] != "DATA":
        raise ValidationError("DATA 行がありません")

    data = lines[4:]
    if len(data) != h:
        raise ValidationError(f"データ行は {h} 行である必要があります: got={len(data)}")

    rows: list[list[Color]] = []
    for r, line in enumerate(data):
        tokens = line.split()
        if len(tokens) != w:
            raise ValidationError(f"{r + 1} 行目は {w} 個の色である必要があります: got={len(tokens)}")
        for token in tokens:
            if not _TOKEN_RE.match(token):
                raise ValidationError(f"{r + 1} 行目の色を解釈できません: {token!r}")
        rows.append([f"#{token.upper()}" for token in tokens])
    return rows


def sanitize_basename(name: str) -> str:
    """ファイル名の基部として使えない文字を `_` に置き換えて返す。"""

    return re.sub(r"[^A-Za-z0-9_-]", "_", str(name).strip())


def timestamp_slug(dt: datetime) -> str:
    """ファイル名用のタイムスタンプ（`:` と `.` を `-` に置換）を返す。"""

    return re.sub(r"[:.]", "-", format_timestamp(dt))


def export_filename(name: str, ext: str, *, default: str, when: datetime) -> str:
    """`<sanitized base>-<timestamp><ext>` 形式のファイル名を返す。"""

    ext_norm = str(ext).strip()
    if not ext_norm.startswith("."):
        ext_norm = f".{ext_norm}"
    base = sanitize_basename(name) or default
    return f"{base}-{timestamp_slug(when)}{ext_norm}"


def default_export_dir(kind: str) -> Path:
    """`{output_root}/{kind}` を返す。"""

    return output_root_dir() / str(kind)


def export_text(
    grid: PixelGrid,
    *,
    fmt: str = "plain",
    name: str = "",
    directory: str | Path | None = None,
    now: Callable[[], datetime] = utc_now,
) -> Path:
    """grid をテキスト形式で書き出し、保存先パスを返す。

    Notes
    -----
    保存先は `directory`（未指定なら `{output_root}/text`）配下の
    `<name>-<timestamp>.txt|.c`。
    """

    ext = EXPORT_FORMATS.get(fmt)
    if ext is None:
        raise ValueError(f"未対応の書き出し形式: {fmt!r}")
    out_dir = Path(directory) if directory is not None else default_export_dir("text")
    path = out_dir / export_filename(name, ext, default=DEFAULT_TEXT_BASENAME, when=now())
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(format_grid(grid, fmt) + "\n", encoding="utf-8")
    return path


__all__ = [
    "DEFAULT_TEXT_BASENAME",
    "EXPORT_FORMATS",
    "PLAIN_MAGIC",
    "default_export_dir",
    "export_filename",
    "export_text",
    "format_c_array",
    "format_grid",
    "format_plain",
    "parse_plain",
    "sanitize_basename",
    "timestamp_slug",
]
