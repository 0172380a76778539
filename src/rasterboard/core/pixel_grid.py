"""
どこで: `src/rasterboard/core/pixel_grid.py`。
何を: 固定サイズ W×H の色バッファ（正準ラスタ状態）と塗り済みセル数を管理する。
なぜ: 合成・直接編集・スナップショット復元のすべてが同じ 1 つの書き込み経路を通るようにするため。
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence

import numpy as np

from rasterboard.core.color import BACKGROUND, BACKGROUND_INT, Color, hex_to_int, int_to_hex
from rasterboard.core.errors import ValidationError

GRID_WIDTH = 64
GRID_HEIGHT = 32

Cell = tuple[int, int]
"""1-indexed のセル座標 `(col, row)`。"""


class PixelGrid:
    """W×H の色バッファ。

    Notes
    -----
    - 内部表現は row-major の `np.uint32` 配列（値は `0xRRGGBB`）で 0-indexed。
    - 外部 API の座標は 1-indexed `(col, row)`。
    - `painted_count` は「背景色以外のセル数」。
      一括更新（`fill_array` / `clear`）は全走査で再計算し、
      セル単位の更新（`paint`）は差分で増減する。
    """

    def __init__(self, width: int = GRID_WIDTH, height: int = GRID_HEIGHT) -> None:
        w = int(width)
        h = int(height)
        if w <= 0 or h <= 0:
            raise ValueError("grid の寸法は正の値である必要がある")
        self._width = w
        self._height = h
        self._cells = np.full((h, w), BACKGROUND_INT, dtype=np.uint32)
        self._painted = 0

    @property
    def width(self) -> int:
        return self._width

    @property
    def height(self) -> int:
        return self._height

    @property
    def shape(self) -> tuple[int, int]:
        """`(height, width)` を返す。"""

        return self._height, self._width

    @property
    def painted_count(self) -> int:
        """背景色以外のセル数を返す。"""

        return self._painted

    def scan_painted_count(self) -> int:
        """全セルを走査して背景色以外のセル数を数え直す（状態は変更しない）。"""

        return int(np.count_nonzero(self._cells != BACKGROUND_INT))

    def in_bounds(self, col: int, row: int) -> bool:
        """1-indexed `(col, row)` が grid 内なら True を返す。"""

        return 1 <= int(col) <= self._width and 1 <= int(row) <= self._height

    def get(self, col: int, row: int) -> Color:
        """1-indexed `(col, row)` の色を返す。"""

        if not self.in_bounds(col, row):
            raise IndexError(f"grid 外のセル: ({col}, {row})")
        return int_to_hex(int(self._cells[int(row) - 1, int(col) - 1]))

    def as_array(self) -> np.ndarray:
        """内部配列の読み取り専用ビューを返す。"""

        view = self._cells.view()
        view.flags.writeable = False
        return view

    def paint(self, cells: Iterable[Cell], color: Color) -> int:
        """セル集合を 1 色で塗り、実際に色が変わったセル数を返す。

        Parameters
        ----------
        cells : Iterable[Cell]
            1-indexed `(col, row)` の列。grid 外・重複は無視する。
        color : Color
            塗る色。背景色を渡すと消去になる。

        Returns
        -------
        int
            色が変化したセル数。
        """

        value = hex_to_int(color)
        changed = 0
        for col, row in dict.fromkeys((int(c), int(r)) for c, r in cells):
            if not self.in_bounds(col, row):
                continue
            r0 = row - 1
            c0 = col - 1
            previous = int(self._cells[r0, c0])
            if previous == value:
                continue
            self._cells[r0, c0] = value
            if previous == BACKGROUND_INT:
                self._painted += 1
            elif value == BACKGROUND_INT:
                self._painted = max(0, self._painted - 1)
            changed += 1
        return changed

    def fill_array(self, values: np.ndarray) -> None:
        """grid 全体を `0xRRGGBB` 配列で置き換え、塗り済み数を再計算する。"""

        arr = np.asarray(values)
        if arr.shape != self.shape:
            raise ValidationError(
                f"配列の形状が grid と一致しない: got={arr.shape}, expected={self.shape}"
            )
        self._cells[...] = arr.astype(np.uint32, copy=False) & 0xFFFFFF
        self._painted = self.scan_painted_count()

    def clear(self) -> None:
        """全セルを背景色へ戻す。"""

        self._cells.fill(BACKGROUND_INT)
        self._painted = 0

    def to_hex_rows(self) -> list[list[Color]]:
        """H 行 × W 列の `#RRGGBB` 行列を返す。"""

        return [[int_to_hex(int(v)) for v in row] for row in self._cells]

    def load_hex_rows(self, rows: Sequence[Sequence[str]]) -> None:
        """H 行 × W 列の色文字列行列で grid を置き換える。

        Raises
        ------
        ValidationError
            行数・列数が一致しない、または色が解釈できない場合。
            このとき grid は変更されない。
        """

        if len(rows) != self._height:
            raise ValidationError(f"行数が一致しない: got={len(rows)}, expected={self._height}")
        values = np.empty(self.shape, dtype=np.uint32)
        for r, row in enumerate(rows):
            if isinstance(row, (str, bytes)) or len(row) != self._width:
                raise ValidationError(f"{r + 1} 行目の列数が {self._width} ではない")
            for c, color in enumerate(row):
                values[r, c] = hex_to_int(color) if color is not None else BACKGROUND_INT
        self.fill_array(values)

    def copy(self) -> PixelGrid:
        """値コピーを返す（エイリアスしない）。"""

        out = PixelGrid(self._width, self._height)
        out._cells[...] = self._cells
        out._painted = self._painted
        return out

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PixelGrid):
            return NotImplemented
        return self.shape == other.shape and bool(np.array_equal(self._cells, other._cells))

    def __repr__(self) -> str:
        return f"PixelGrid(width={self._width}, height={self._height}, painted={self._painted})"


def region_cells(x1: int, y1: int, x2: int, y2: int, *, width: int, height: int) -> list[Cell]:
    """2 隅（任意順）で囲まれる矩形のセル列を返す（grid 内に clamp）。"""

    def _clamp(v: int, hi: int) -> int:
        return 1 if v < 1 else hi if v > hi else v

    cx1, cx2 = sorted((_clamp(int(x1), width), _clamp(int(x2), width)))
    cy1, cy2 = sorted((_clamp(int(y1), height), _clamp(int(y2), height)))
    return [(c, r) for r in range(cy1, cy2 + 1) for c in range(cx1, cx2 + 1)]


__all__ = ["BACKGROUND", "Cell", "GRID_HEIGHT", "GRID_WIDTH", "PixelGrid", "region_cells"]
