"""
どこで: `src/rasterboard/interactive/tools.py`。
何を: 描画面（連続座標）とセル座標の変換、要素の外接矩形・ハンドル・当たり判定、
      および draw / drag / resize / marquee の各状態機械を提供する。
      状態機械は要素列を持たず、渡された要素の幾何だけを書き換える。
なぜ: ポインタ入力の解釈を UI から切り離し、イベント列だけでテストできるようにするため。
"""

from __future__ import annotations

import copy
import math
from dataclasses import dataclass, fields

from rasterboard.core.compositor import GLYPH_SPACING
from rasterboard.core.elements import Circle, Element, Rectangle, Text, update_element
from rasterboard.core.glyphs import GlyphResolver
from rasterboard.core.pixel_grid import GRID_HEIGHT, GRID_WIDTH, Cell, region_cells

TOOLS = ("select", "rectangle", "circle", "paint")
SHAPE_TOOLS = ("rectangle", "circle")
HANDLES = ("nw", "n", "ne", "e", "se", "s", "sw", "w")

IDLE = "idle"


@dataclass(frozen=True, slots=True)
class Bounds:
    """描画面上の軸平行矩形（左上原点、単位は surface unit）。"""

    left: float
    top: float
    width: float
    height: float

    @property
    def right(self) -> float:
        return self.left + self.width

    @property
    def bottom(self) -> float:
        return self.top + self.height

    def contains(self, x: float, y: float) -> bool:
        return self.left <= x <= self.right and self.top <= y <= self.bottom

    @staticmethod
    def from_points(x0: float, y0: float, x1: float, y1: float) -> Bounds:
        """2 点（任意順）を対角とする矩形を返す。"""

        return Bounds(min(x0, x1), min(y0, y1), abs(x1 - x0), abs(y1 - y0))


def _clamp(v: int, lo: int, hi: int) -> int:
    hi = max(lo, hi)
    return lo if v < lo else hi if v > hi else v


@dataclass(frozen=True, slots=True)
class Viewport:
    """描画面とセル grid の対応。

    Notes
    -----
    セル `(col, row)` は描画面の `[(col-1)*cell_size, col*cell_size)` を占める。
    """

    cell_size: float = 10.0
    width: int = GRID_WIDTH
    height: int = GRID_HEIGHT

    def cell_at(self, x: float, y: float) -> Cell:
        """描画面の点を含むセル（grid 内に clamp）を返す。"""

        col = math.floor(float(x) / self.cell_size) + 1
        row = math.floor(float(y) / self.cell_size) + 1
        return _clamp(col, 1, self.width), _clamp(row, 1, self.height)

    def snap(self, v: float) -> int:
        """描画面の座標を最寄りのセル境界に丸めた 1-indexed 番号を返す。"""

        return int(round(float(v) / self.cell_size)) + 1

    def cell_origin(self, col: int, row: int) -> tuple[float, float]:
        """セルの左上の描画面座標を返す。"""

        return (int(col) - 1) * self.cell_size, (int(row) - 1) * self.cell_size


def text_extent(element: Text, glyphs: GlyphResolver | None) -> tuple[int, int]:
    """テキスト要素が占めるセル数 `(width, height)` を返す。

    Notes
    -----
    字模の無い文字は `font_size` 四方の半分幅として見積もる。
    """

    width = 0
    height = 0
    for i, ch in enumerate(element.text):
        glyph = glyphs.get(ch) if glyphs is not None else None
        if glyph is not None:
            width += glyph.width
            height = max(height, glyph.height)
        else:
            width += max(1, element.font_size // 2)
            height = max(height, element.font_size)
        if i < len(element.text) - 1:
            width += GLYPH_SPACING
    return max(1, width), max(1, height)


def element_bounds(
    element: Element, viewport: Viewport, glyphs: GlyphResolver | None = None
) -> Bounds:
    """要素の外接矩形（描画面座標）を返す。"""

    cs = viewport.cell_size
    if isinstance(element, Rectangle):
        return Bounds((element.x - 1) * cs, (element.y - 1) * cs, element.w * cs, element.h * cs)
    if isinstance(element, Circle):
        span = (2 * element.r + 1) * cs
        return Bounds((element.cx - 1 - element.r) * cs, (element.cy - 1 - element.r) * cs, span, span)
    if isinstance(element, Text):
        w, h = text_extent(element, glyphs)
        return Bounds((element.x - 1) * cs, (element.y - 1) * cs, w * cs, h * cs)
    raise TypeError(f"未対応の要素型: {type(element)!r}")


def handle_points(bounds: Bounds) -> dict[str, tuple[float, float]]:
    """8 個のリサイズハンドル（4 隅 + 4 辺中点）の位置を返す。"""

    cx = bounds.left + bounds.width / 2.0
    cy = bounds.top + bounds.height / 2.0
    return {
        "nw": (bounds.left, bounds.top),
        "n": (cx, bounds.top),
        "ne": (bounds.right, bounds.top),
        "e": (bounds.right, cy),
        "se": (bounds.right, bounds.bottom),
        "s": (cx, bounds.bottom),
        "sw": (bounds.left, bounds.bottom),
        "w": (bounds.left, cy),
    }


def handle_at(bounds: Bounds, x: float, y: float, *, radius: float) -> str | None:
    """点が乗っているハンドル名を返す。どれにも乗っていなければ None。"""

    for name, (hx, hy) in handle_points(bounds).items():
        if abs(x - hx) <= radius and abs(y - hy) <= radius:
            return name
    return None


def hit_test(
    elements: list[Element],
    x: float,
    y: float,
    viewport: Viewport,
    glyphs: GlyphResolver | None = None,
) -> Element | None:
    """点の下にある最前面の要素を返す（描画順の逆に探す）。"""

    for element in reversed(elements):
        if isinstance(element, Circle):
            cs = viewport.cell_size
            ccx = (element.cx - 0.5) * cs
            ccy = (element.cy - 0.5) * cs
            if math.hypot(x - ccx, y - ccy) <= (element.r + 0.5) * cs:
                return element
            continue
        if element_bounds(element, viewport, glyphs).contains(x, y):
            return element
    return None


def is_resizable(element: Element) -> bool:
    return isinstance(element, (Rectangle, Text))


class DrawMachine:
    """新規図形の描画（`idle → drawing → idle`）。"""

    def __init__(self, viewport: Viewport, *, min_size: float) -> None:
        self._viewport = viewport
        self._min_size = float(min_size)
        self.state = IDLE
        self._tool: str | None = None
        self._color = "#000000"
        self._anchor = (0.0, 0.0)

    @property
    def active(self) -> bool:
        return self.state != IDLE

    def begin(self, tool: str, x: float, y: float, *, color: str) -> None:
        if tool not in SHAPE_TOOLS:
            raise ValueError(f"図形ツールではありません: {tool!r}")
        self._tool = tool
        self._color = color
        self._anchor = (float(x), float(y))
        self.state = "drawing"

    def _shape(self, box: Bounds) -> Element:
        vp = self._viewport
        col, row = vp.cell_at(box.left, box.top)
        if self._tool == "circle":
            ccol, crow = vp.cell_at(box.left + box.width / 2.0, box.top + box.height / 2.0)
            r = max(1, int(round(max(box.width, box.height) / (2.0 * vp.cell_size))))
            return Circle(cx=ccol, cy=crow, r=r, color=self._color)
        w = max(1, int(round(box.width / vp.cell_size)))
        h = max(1, int(round(box.height / vp.cell_size)))
        return Rectangle(x=col, y=row, w=w, h=h, color=self._color)

    def move(self, x: float, y: float) -> Element | None:
        """アンカーから現在点までの確定前プレビュー図形を返す。"""

        if not self.active:
            return None
        return self._shape(Bounds.from_points(*self._anchor, float(x), float(y)))

    def end(self, x: float, y: float) -> Element | None:
        """描画を終え、最小サイズを超えていれば確定図形を返す。"""

        if not self.active:
            return None
        box = Bounds.from_points(*self._anchor, float(x), float(y))
        shape = None
        if box.width > self._min_size and box.height > self._min_size:
            shape = self._shape(box)
        self.cancel()
        return shape

    def cancel(self) -> None:
        self.state = IDLE
        self._tool = None


class DragMachine:
    """要素の移動（`idle → dragging → idle`）。

    Notes
    -----
    開始時の幾何を保持し、毎回「開始位置 + ポインタ差分」から位置を決め直す。
    `cancel` は開始時の幾何へ戻す。
    """

    def __init__(self, viewport: Viewport) -> None:
        self._viewport = viewport
        self.state = IDLE
        self._element: Element | None = None
        self._original: Element | None = None
        self._start = (0.0, 0.0)
        self._origin = (0.0, 0.0)

    @property
    def active(self) -> bool:
        return self.state != IDLE

    @property
    def element(self) -> Element | None:
        return self._element

    def begin(self, element: Element, x: float, y: float) -> None:
        vp = self._viewport
        self._element = element
        self._original = copy.deepcopy(element)
        self._start = (float(x), float(y))
        if isinstance(element, Circle):
            self._origin = vp.cell_origin(element.cx, element.cy)
        else:
            self._origin = vp.cell_origin(element.x, element.y)
        self.state = "dragging"

    def move(self, x: float, y: float) -> Element | None:
        element = self._element
        if not self.active or element is None:
            return None
        vp = self._viewport
        col = vp.snap(self._origin[0] + float(x) - self._start[0])
        row = vp.snap(self._origin[1] + float(y) - self._start[1])
        if isinstance(element, Rectangle):
            update_element(
                element,
                x=_clamp(col, 1, vp.width - element.w + 1),
                y=_clamp(row, 1, vp.height - element.h + 1),
            )
        elif isinstance(element, Circle):
            update_element(
                element,
                cx=_clamp(col, element.r + 1, vp.width - element.r),
                cy=_clamp(row, element.r + 1, vp.height - element.r),
            )
        else:
            update_element(element, x=_clamp(col, 1, vp.width), y=_clamp(row, 1, vp.height))
        return element

    def end(self, x: float, y: float) -> Element | None:
        element = self.move(x, y)
        self._reset()
        return element

    def cancel(self) -> None:
        _restore(self._element, self._original)
        self._reset()

    def _reset(self) -> None:
        self.state = IDLE
        self._element = None
        self._original = None


def _restore(element: Element | None, original: Element | None) -> None:
    if element is None or original is None:
        return
    changes = {
        name: getattr(original, name)
        for name in (f.name for f in fields(element))
        if name not in ("id", "color")
    }
    update_element(element, **changes)


def _dominant_scale(sx: float, sy: float) -> float:
    return sx if abs(sx - 1.0) >= abs(sy - 1.0) else sy


class ResizeMachine:
    """矩形・テキストのリサイズ（`idle → resizing → idle`）。

    Notes
    -----
    - 隅ハンドルは 2 辺、辺ハンドルは 1 辺を動かす。反対側の辺は固定。
    - 毎回の更新で幅・高さを `min_size` 以上に保つ。
    - テキストは幅・高さではなく、変化の大きい方の倍率で `font_size` を拡縮する。
    """

    def __init__(
        self, viewport: Viewport, *, min_size: float, glyphs: GlyphResolver | None = None
    ) -> None:
        self._viewport = viewport
        self._min_size = float(min_size)
        self.glyphs = glyphs
        self.state = IDLE
        self._element: Element | None = None
        self._original: Element | None = None
        self._handle = ""
        self._start = (0.0, 0.0)
        self._start_bounds = Bounds(0.0, 0.0, 0.0, 0.0)

    @property
    def active(self) -> bool:
        return self.state != IDLE

    @property
    def element(self) -> Element | None:
        return self._element

    def begin(self, element: Element, handle: str, x: float, y: float) -> None:
        if not is_resizable(element):
            raise ValueError(f"{element.kind} 要素はリサイズできません")
        if handle not in HANDLES:
            raise ValueError(f"未知のハンドル: {handle!r}")
        self._element = element
        self._original = copy.deepcopy(element)
        self._handle = handle
        self._start = (float(x), float(y))
        self._start_bounds = element_bounds(element, self._viewport, self.glyphs)
        self.state = "resizing"

    def bounds_for(self, x: float, y: float) -> Bounds:
        """現在のポインタ位置に対応する新しい外接矩形を返す。"""

        b = self._start_bounds
        dx = float(x) - self._start[0]
        dy = float(y) - self._start[1]
        left, top, right, bottom = b.left, b.top, b.right, b.bottom
        if "w" in self._handle:
            left = min(left + dx, right - self._min_size)
        if "e" in self._handle:
            right = max(right + dx, left + self._min_size)
        if "n" in self._handle:
            top = min(top + dy, bottom - self._min_size)
        if "s" in self._handle:
            bottom = max(bottom + dy, top + self._min_size)
        return Bounds(left, top, right - left, bottom - top)

    def move(self, x: float, y: float) -> Element | None:
        element = self._element
        original = self._original
        if not self.active or element is None or original is None:
            return None
        vp = self._viewport
        box = self.bounds_for(x, y)
        if isinstance(element, Rectangle):
            # 動かす辺だけを grid 内へ clamp する。反対側の辺は開始時の値のまま。
            c_left, c_right = vp.snap(box.left), vp.snap(box.right) - 1
            r_top, r_bottom = vp.snap(box.top), vp.snap(box.bottom) - 1
            if "w" in self._handle:
                c_left = min(_clamp(c_left, 1, vp.width), c_right)
            if "e" in self._handle:
                c_right = max(_clamp(c_right, 1, vp.width), c_left)
            if "n" in self._handle:
                r_top = min(_clamp(r_top, 1, vp.height), r_bottom)
            if "s" in self._handle:
                r_bottom = max(_clamp(r_bottom, 1, vp.height), r_top)
            update_element(
                element,
                x=c_left,
                y=r_top,
                w=c_right - c_left + 1,
                h=r_bottom - r_top + 1,
            )
        elif isinstance(element, Text) and isinstance(original, Text):
            col = _clamp(vp.snap(box.left), 1, vp.width)
            row = _clamp(vp.snap(box.top), 1, vp.height)
            sb = self._start_bounds
            factor = _dominant_scale(box.width / sb.width, box.height / sb.height)
            update_element(
                element,
                x=col,
                y=row,
                font_size=max(1, int(round(original.font_size * factor))),
            )
        return element

    def end(self, x: float, y: float) -> Element | None:
        element = self.move(x, y)
        self._reset()
        return element

    def cancel(self) -> None:
        _restore(self._element, self._original)
        self._reset()

    def _reset(self) -> None:
        self.state = IDLE
        self._element = None
        self._original = None
        self._handle = ""


class MarqueeMachine:
    """背景からの範囲選択（`idle → selecting → idle`）。"""

    def __init__(self, viewport: Viewport, *, min_size: float) -> None:
        self._viewport = viewport
        self._min_size = float(min_size)
        self.state = IDLE
        self._anchor = (0.0, 0.0)

    @property
    def active(self) -> bool:
        return self.state != IDLE

    def begin(self, x: float, y: float) -> None:
        self._anchor = (float(x), float(y))
        self.state = "selecting"

    def move(self, x: float, y: float) -> Bounds | None:
        if not self.active:
            return None
        return Bounds.from_points(*self._anchor, float(x), float(y))

    def end(self, x: float, y: float) -> list[Cell] | None:
        """選択を終え、覆ったセル列を返す。小さすぎる箱は背景クリック扱いで None。"""

        if not self.active:
            return None
        box = Bounds.from_points(*self._anchor, float(x), float(y))
        self.cancel()
        if box.width <= self._min_size and box.height <= self._min_size:
            return None
        vp = self._viewport
        c0, r0 = vp.cell_at(box.left, box.top)
        # 右端・下端ちょうどの境界は内側のセルに含める。
        c1, r1 = vp.cell_at(max(box.left, box.right - 1e-9), max(box.top, box.bottom - 1e-9))
        return region_cells(c0, r0, c1, r1, width=vp.width, height=vp.height)

    def cancel(self) -> None:
        self.state = IDLE


__all__ = [
    "Bounds",
    "DragMachine",
    "DrawMachine",
    "HANDLES",
    "MarqueeMachine",
    "ResizeMachine",
    "SHAPE_TOOLS",
    "TOOLS",
    "Viewport",
    "element_bounds",
    "handle_at",
    "handle_points",
    "hit_test",
    "is_resizable",
    "text_extent",
]
