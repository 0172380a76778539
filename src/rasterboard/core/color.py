"""
どこで: `src/rasterboard/core/color.py`。
何を: 色表現（`#RRGGBB` / RGB255 / 24bit 整数）の正規化と相互変換を提供する。
なぜ: 比較・保存の前に全入力を 1 つの正準形へ寄せ、表記揺れで差分が出ないようにするため。
"""

from __future__ import annotations

import re
from typing import Any, cast

from rasterboard.core.errors import ValidationError

Color = str
"""正規化済みの色（`#RRGGBB`, 大文字 7 文字）。"""

BACKGROUND: Color = "#000000"
BACKGROUND_INT = 0x000000

_HEX6_RE = re.compile(r"^#[0-9A-F]{6}$")


def normalize_hex(value: str) -> Color:
    """色文字列を `#RRGGBB`（大文字）へ正規化して返す。

    Parameters
    ----------
    value : str
        `#abc` / `abc` / `#aabbcc` / `AABBCC` などの表記。

    Returns
    -------
    Color
        正規化済みの 7 文字の色。

    Raises
    ------
    ValidationError
        正規化後も 6 桁の 16 進数にならない場合。

    Notes
    -----
    前後空白を除き、`#` を補い、3 桁表記は各桁を 2 倍に展開する。
    7 文字を超える入力は先頭 7 文字だけを使い、残りは検査せず捨てる。
    `#RRGGBBAA` も `#AABBCCjunk` も `#RRGGBB` 部分として受理されるため、
    `.board.json` から読み込む画素値も同じ規則で切り詰められる。
    """

    if not isinstance(value, str):
        raise ValidationError(f"色は文字列である必要がある: {value!r}")
    s = value.strip()
    if not s.startswith("#"):
        s = f"#{s}"
    if len(s) == 4:
        s = f"#{s[1] * 2}{s[2] * 2}{s[3] * 2}"
    s = s[:7].upper()
    if not _HEX6_RE.match(s):
        raise ValidationError(f"色として解釈できない: {value!r}")
    return s


def coerce_rgb255(value: object) -> tuple[int, int, int]:
    """値を RGB255 タプル `(r, g, b)`（0..255）に正規化して返す。

    Raises
    ------
    ValidationError
        長さ 3 のシーケンスでない場合。
    """

    r: object
    g: object
    b: object
    try:
        r, g, b = value  # type: ignore[misc]
    except Exception as exc:
        raise ValidationError(f"rgb value must be a length-3 sequence: {value!r}") from exc

    def _clamp(v: object) -> int:
        iv = int(cast(Any, v))
        return 0 if iv < 0 else 255 if iv > 255 else iv

    return _clamp(r), _clamp(g), _clamp(b)


def rgb_to_hex(r: int, g: int, b: int) -> Color:
    """RGB255 を `#RRGGBB` に変換して返す（各成分は 0..255 に clamp）。"""

    cr, cg, cb = coerce_rgb255((r, g, b))
    return f"#{cr:02X}{cg:02X}{cb:02X}"


def hex_to_rgb(value: str) -> tuple[int, int, int]:
    """色文字列を RGB255 タプルに変換して返す。"""

    v = hex_to_int(value)
    return (v >> 16) & 0xFF, (v >> 8) & 0xFF, v & 0xFF


def hex_to_int(value: str) -> int:
    """色文字列を 24bit 整数 `0xRRGGBB` に変換して返す。"""

    return int(normalize_hex(value)[1:], 16)


def int_to_hex(value: int) -> Color:
    """24bit 整数を `#RRGGBB` に変換して返す。"""

    return f"#{int(value) & 0xFFFFFF:06X}"


def coerce_color(value: object) -> Color:
    """色文字列または `(r, g, b)` を正規化済みの色へ変換して返す。"""

    if isinstance(value, str):
        return normalize_hex(value)
    r, g, b = coerce_rgb255(value)
    return rgb_to_hex(r, g, b)


__all__ = [
    "BACKGROUND",
    "BACKGROUND_INT",
    "Color",
    "coerce_color",
    "coerce_rgb255",
    "hex_to_int",
    "hex_to_rgb",
    "int_to_hex",
    "normalize_hex",
    "rgb_to_hex",
]
