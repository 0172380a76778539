"""
どこで: `src/rasterboard/core/compositor.py`。
何を: 要素列を PixelGrid へラスタライズする（全消去 → 描画順に再描画、後勝ち）。
なぜ: 書き出し・永続化に使う正準グリッドを、要素列だけから決定的に再構成できるようにするため。
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence

import numpy as np

from rasterboard.core.color import BACKGROUND_INT, hex_to_int
from rasterboard.core.elements import Circle, Element, Rectangle, Text
from rasterboard.core.glyphs import Glyph, GlyphResolver
from rasterboard.core.pixel_grid import PixelGrid

_logger = logging.getLogger(__name__)

GLYPH_SPACING = 1
"""テキスト要素で文字間に挟む空き列数。"""


def _rectangle_mask(element: Rectangle, *, width: int, height: int) -> np.ndarray:
    mask = np.zeros((height, width), dtype=bool)
    c0 = max(0, element.x - 1)
    r0 = max(0, element.y - 1)
    c1 = min(width, element.x - 1 + element.w)
    r1 = min(height, element.y - 1 + element.h)
    if c0 < c1 and r0 < r1:
        mask[r0:r1, c0:c1] = True
    return mask


def _circle_mask(element: Circle, *, width: int, height: int) -> np.ndarray:
    # セル中心 (c+1, r+1) が円の内側または円周上にあれば塗る。
    dx = np.arange(width, dtype=np.int64) + 1 - int(element.cx)
    dy = np.arange(height, dtype=np.int64) + 1 - int(element.cy)
    r2 = int(element.r) * int(element.r)
    return (dy[:, None] ** 2 + dx[None, :] ** 2) <= r2


def text_cells(element: Text, glyphs: GlyphResolver | None) -> list[tuple[int, int]]:
    """テキスト要素が塗るセルの 0-indexed `(col, row)` 列を返す（grid clip 前）。

    Notes
    -----
    文字は左から順に並べ、字模幅 + `GLYPH_SPACING` 列ずつ進める。
    字模が無い文字は描かない（幅 0 として扱う）。
    """

    out: list[tuple[int, int]] = []
    if glyphs is None:
        return out
    cursor = element.x - 1
    top = element.y - 1
    for ch in element.text:
        glyph = glyphs.get(ch)
        if glyph is None:
            _logger.debug("字模が見つからない文字をスキップします: %r", ch)
            continue
        for dc, dr in glyph.iter_set_cells():
            out.append((cursor + dc, top + dr))
        cursor += glyph.width + GLYPH_SPACING
    return out


def _text_mask(
    element: Text, *, width: int, height: int, glyphs: GlyphResolver | None
) -> np.ndarray:
    mask = np.zeros((height, width), dtype=bool)
    for c, r in text_cells(element, glyphs):
        if 0 <= c < width and 0 <= r < height:
            mask[r, c] = True
    return mask


def element_mask(
    element: Element,
    *,
    width: int,
    height: int,
    glyphs: GlyphResolver | None = None,
) -> np.ndarray:
    """要素が覆うセルの bool 配列（shape `(height, width)`）を返す。grid 外は黙って clip する。"""

    if isinstance(element, Rectangle):
        return _rectangle_mask(element, width=width, height=height)
    if isinstance(element, Circle):
        return _circle_mask(element, width=width, height=height)
    if isinstance(element, Text):
        return _text_mask(element, width=width, height=height, glyphs=glyphs)
    raise TypeError(f"未対応の要素型: {type(element)!r}")


def _sample_indices(out_size: int, scene_size: int) -> np.ndarray:
    """出力セル中心が落ちるシーンセルの 0-indexed インデックス列を返す。"""

    scale = float(out_size) / float(scene_size)
    idx = np.floor((np.arange(out_size, dtype=np.float64) + 0.5) / scale).astype(np.int64)
    return np.clip(idx, 0, scene_size - 1)


def rasterize_elements(
    elements: Iterable[Element],
    *,
    width: int,
    height: int,
    out_size: tuple[int, int] | None = None,
    glyphs: GlyphResolver | None = None,
) -> np.ndarray:
    """要素列を `0xRRGGBB` 配列へラスタライズして返す。

    Parameters
    ----------
    elements : Iterable[Element]
        描画順の要素列（後勝ち）。
    width, height : int
        要素座標系（シーン）のセル数。
    out_size : tuple[int, int] or None
        出力の `(width, height)`。None ならシーンと同じ。
        異なる場合は各出力セル中心をシーン座標へ戻して同じ規則で点サンプルする。
    glyphs : GlyphResolver or None
        テキスト要素の字模解決。None ならテキストは描かない。

    Returns
    -------
    np.ndarray
        shape `(out_h, out_w)` の `np.uint32` 配列。未塗りは背景色。
    """

    out_w, out_h = (width, height) if out_size is None else (int(out_size[0]), int(out_size[1]))
    if out_w <= 0 or out_h <= 0:
        raise ValueError("out_size は正の (width, height) である必要がある")

    cols = _sample_indices(out_w, width)
    rows = _sample_indices(out_h, height)
    identity = out_w == width and out_h == height

    canvas = np.full((out_h, out_w), BACKGROUND_INT, dtype=np.uint32)
    for element in elements:
        mask = element_mask(element, width=width, height=height, glyphs=glyphs)
        if not identity:
            mask = mask[np.ix_(rows, cols)]
        canvas[mask] = hex_to_int(element.color)
    return canvas


def composite(
    elements: Sequence[Element],
    grid: PixelGrid,
    *,
    glyphs: GlyphResolver | None = None,
) -> PixelGrid:
    """grid を背景色で初期化し、要素列を描画順に塗って返す。

    Notes
    -----
    描画後に `painted_count` を全走査で再計算する（差分更新は使わない）。
    同じ要素列で 2 回続けて呼んでも結果は同一。
    """

    values = rasterize_elements(
        elements, width=grid.width, height=grid.height, glyphs=glyphs
    )
    grid.fill_array(values)
    return grid


def overlay(
    elements: Sequence[Element],
    grid: PixelGrid,
    *,
    glyphs: GlyphResolver | None = None,
) -> PixelGrid:
    """grid を初期化せずに要素列を上から塗り重ねる（スナップショット復元用）。"""

    values = np.array(grid.as_array(), dtype=np.uint32)
    for element in elements:
        mask = element_mask(element, width=grid.width, height=grid.height, glyphs=glyphs)
        values[mask] = hex_to_int(element.color)
    grid.fill_array(values)
    return grid


def stamp_glyph(
    glyph: Glyph,
    grid: PixelGrid,
    *,
    col: int = 1,
    row: int = 1,
    color: str,
) -> PixelGrid:
    """字模を `(col, row)`（1-indexed, 左上）に貼り付ける。0 ビットは透過。"""

    values = np.array(grid.as_array(), dtype=np.uint32)
    value = hex_to_int(color)
    for dc, dr in glyph.iter_set_cells():
        c = int(col) - 1 + dc
        r = int(row) - 1 + dr
        if 0 <= c < grid.width and 0 <= r < grid.height:
            values[r, c] = value
    grid.fill_array(values)
    return grid


__all__ = [
    "GLYPH_SPACING",
    "composite",
    "element_mask",
    "overlay",
    "rasterize_elements",
    "stamp_glyph",
    "text_cells",
]
