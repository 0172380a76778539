# どこで: `src/rasterboard/interactive/controller.py`。
# 何を: 現在のツールとポインタ入力から、draw/drag/resize/marquee のどれを動かすかを決める。
# なぜ: 「同時に動く状態機械は 1 つだけ」「ツール切替で全て idle に戻る」を 1 か所で保証するため。

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from rasterboard.core.elements import Element
from rasterboard.core.glyphs import GlyphResolver
from rasterboard.core.pixel_grid import Cell
from rasterboard.core.runtime_config import RuntimeConfig
from rasterboard.interactive.tools import (
    IDLE,
    SHAPE_TOOLS,
    TOOLS,
    Bounds,
    DragMachine,
    DrawMachine,
    MarqueeMachine,
    ResizeMachine,
    Viewport,
    element_bounds,
    handle_at,
    handle_points,
    hit_test,
    is_resizable,
)


@dataclass(frozen=True, slots=True)
class PointerResult:
    """ポインタイベント 1 件の解釈結果。

    Notes
    -----
    kind:
    - "none": 何もしない
    - "paint" / "toggle": `cells[0]` を塗る / 選択を反転する
    - "preview": 確定前の図形 `element` を表示する
    - "add": 確定した新規図形 `element` を要素列へ追加する
    - "select_element": `element` を選択した（ドラッグ開始）
    - "resize_start": `element` の `handle` をつかんだ
    - "move": ドラッグ/リサイズ中に `element` の幾何が変わった
    - "commit": ドラッグ/リサイズが終わり `element` の幾何が確定した
    - "cancel": ドラッグ/リサイズを取り消し `element` を元の幾何へ戻した
    - "marquee": 範囲選択の枠 `bounds` を表示する
    - "select_cells": `cells` をセル選択にする
    - "cancel_selection": セル選択を解除する
    """

    kind: str
    element: Element | None = None
    cells: tuple[Cell, ...] = ()
    bounds: Bounds | None = None
    handle: str | None = None


NOTHING = PointerResult("none")


class InteractionController:
    """ツール状態と 4 つの状態機械を束ねる。"""

    def __init__(
        self,
        viewport: Viewport | None = None,
        *,
        min_draw_size: float = 5.0,
        min_resize_size: float = 10.0,
        handle_radius: float = 4.0,
    ) -> None:
        self.viewport = viewport or Viewport()
        self.handle_radius = float(handle_radius)
        self.tool = "select"
        self.selected_id: str | None = None
        self.draw = DrawMachine(self.viewport, min_size=min_draw_size)
        self.drag = DragMachine(self.viewport)
        self.resize = ResizeMachine(self.viewport, min_size=min_resize_size)
        self.marquee = MarqueeMachine(self.viewport, min_size=min_draw_size)

    @classmethod
    def from_config(cls, cfg: RuntimeConfig, *, width: int, height: int) -> InteractionController:
        return cls(
            Viewport(cell_size=cfg.cell_size, width=width, height=height),
            min_draw_size=cfg.min_draw_size,
            min_resize_size=cfg.min_resize_size,
            handle_radius=cfg.handle_radius,
        )

    @property
    def state(self) -> str:
        """動作中の状態機械の状態名（どれも動いていなければ "idle"）を返す。"""

        for machine in (self.draw, self.drag, self.resize, self.marquee):
            if machine.active:
                return machine.state
        return IDLE

    def cancel(self) -> PointerResult:
        """動作中の状態機械を止める。ドラッグ/リサイズは元の幾何へ戻す。"""

        element: Element | None = None
        if self.drag.active:
            element = self.drag.element
            self.drag.cancel()
        elif self.resize.active:
            element = self.resize.element
            self.resize.cancel()
        self.draw.cancel()
        self.marquee.cancel()
        if element is not None:
            return PointerResult("cancel", element=element)
        return NOTHING

    def set_tool(self, tool: str) -> PointerResult:
        """ツールを切り替え、全状態機械を idle に戻して選択を解除する。"""

        if tool not in TOOLS:
            raise ValueError(f"未知のツール: {tool!r}")
        self.cancel()
        self.tool = tool
        self.selected_id = None
        return PointerResult("cancel_selection")

    def selected(self, elements: Sequence[Element]) -> Element | None:
        for element in elements:
            if element.id == self.selected_id:
                return element
        return None

    def handles(
        self, elements: Sequence[Element], glyphs: GlyphResolver | None = None
    ) -> dict[str, tuple[float, float]]:
        """選択中の要素のハンドル位置を現在の幾何から返す（リサイズ不可なら空）。"""

        element = self.selected(elements)
        if element is None or not is_resizable(element):
            return {}
        return handle_points(element_bounds(element, self.viewport, glyphs))

    def pointer_down(
        self,
        x: float,
        y: float,
        elements: Sequence[Element],
        *,
        color: str,
        glyphs: GlyphResolver | None = None,
        toggle: bool = False,
    ) -> PointerResult:
        self.cancel()
        cell = self.viewport.cell_at(x, y)

        if self.tool == "paint":
            return PointerResult("toggle" if toggle else "paint", cells=(cell,))
        if self.tool in SHAPE_TOOLS:
            self.draw.begin(self.tool, x, y, color=color)
            return NOTHING

        if toggle:
            return PointerResult("toggle", cells=(cell,))

        current = self.selected(elements)
        if current is not None and is_resizable(current):
            self.resize.glyphs = glyphs
            bounds = element_bounds(current, self.viewport, glyphs)
            handle = handle_at(bounds, x, y, radius=self.handle_radius)
            if handle is not None:
                self.resize.begin(current, handle, x, y)
                return PointerResult("resize_start", element=current, handle=handle)

        hit = hit_test(list(elements), x, y, self.viewport, glyphs)
        if hit is not None:
            self.selected_id = hit.id
            self.drag.begin(hit, x, y)
            return PointerResult("select_element", element=hit)

        self.selected_id = None
        self.marquee.begin(x, y)
        return NOTHING

    def pointer_move(self, x: float, y: float) -> PointerResult:
        if self.draw.active:
            return PointerResult("preview", element=self.draw.move(x, y))
        if self.drag.active:
            return PointerResult("move", element=self.drag.move(x, y))
        if self.resize.active:
            return PointerResult("move", element=self.resize.move(x, y))
        if self.marquee.active:
            return PointerResult("marquee", bounds=self.marquee.move(x, y))
        return NOTHING

    def pointer_up(self, x: float, y: float) -> PointerResult:
        if self.draw.active:
            shape = self.draw.end(x, y)
            return NOTHING if shape is None else PointerResult("add", element=shape)
        if self.drag.active:
            return PointerResult("commit", element=self.drag.end(x, y))
        if self.resize.active:
            return PointerResult("commit", element=self.resize.end(x, y))
        if self.marquee.active:
            cells = self.marquee.end(x, y)
            if cells is None:
                return PointerResult("cancel_selection")
            return PointerResult("select_cells", cells=tuple(cells))
        return NOTHING


__all__ = ["InteractionController", "NOTHING", "PointerResult"]
