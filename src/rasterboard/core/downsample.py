"""
どこで: `src/rasterboard/core/downsample.py`。
何を: シーンを高解像度でレンダし、固定解像度のセルへ縮小サンプルして離散色バケットへ分類する。
なぜ: 低解像度マトリクス表示での見え方を、正準グリッドとは独立に低忠実度でプレビューするため。
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass

import numpy as np

from rasterboard.core.color import BACKGROUND_INT, hex_to_rgb, int_to_hex
from rasterboard.core.compositor import rasterize_elements
from rasterboard.core.elements import Circle, Element, Rectangle, Text
from rasterboard.core.errors import RenderFallback
from rasterboard.core.glyphs import GlyphResolver

_logger = logging.getLogger(__name__)

CHANNEL_MIDPOINT = 127
"""チャネル値がこれを超えると "high"。"""

ORANGE_GREEN_RANGE = (64, 191)
"""orange とみなす green の "moderate" 範囲（両端含む）。"""

BUCKET_COLORS: dict[str, str] = {
    "white": "#FFFFFF",
    "yellow": "#FFFF00",
    "magenta": "#FF00FF",
    "cyan": "#00FFFF",
    "red": "#FF0000",
    "green": "#00FF00",
    "blue": "#0000FF",
    "orange": "#FF8000",
}

# (r_high, g_high, b_high) -> bucket。orange は別判定。全 low は該当なし。
_BUCKET_BY_PATTERN: dict[tuple[bool, bool, bool], str] = {
    (True, True, True): "white",
    (True, True, False): "yellow",
    (True, False, True): "magenta",
    (False, True, True): "cyan",
    (True, False, False): "red",
    (False, True, False): "green",
    (False, False, True): "blue",
}

SceneRenderer = Callable[..., np.ndarray]


@dataclass(frozen=True, slots=True)
class PreviewCell:
    """プレビュー 1 セル分の分類結果。`color` が None なら消灯。"""

    bucket: str | None
    color: str | None

    @property
    def lit(self) -> bool:
        return self.color is not None


@dataclass(frozen=True, slots=True)
class PreviewGrid:
    """W×H の離散色プレビュー。

    Notes
    -----
    - `colors` は表示色（`0xRRGGBB`）。消灯セルは背景色。
    - `lit` は点灯セルの bool 配列。
    - `buckets[r][c]` はバケット名。消灯またはバケット外（実色表示）なら None。
    """

    width: int
    height: int
    colors: np.ndarray
    lit: np.ndarray
    buckets: tuple[tuple[str | None, ...], ...]

    def cell(self, col: int, row: int) -> PreviewCell:
        """1-indexed `(col, row)` のセルを返す。"""

        r0 = int(row) - 1
        c0 = int(col) - 1
        if not (0 <= r0 < self.height and 0 <= c0 < self.width):
            raise IndexError(f"preview 外のセル: ({col}, {row})")
        if not bool(self.lit[r0, c0]):
            return PreviewCell(bucket=None, color=None)
        return PreviewCell(
            bucket=self.buckets[r0][c0], color=int_to_hex(int(self.colors[r0, c0]))
        )

    def to_rows(self) -> list[list[str | None]]:
        """消灯セルを None とした `#RRGGBB` 行列を返す。"""

        return [
            [int_to_hex(int(v)) if on else None for v, on in zip(row, lit_row)]
            for row, lit_row in zip(self.colors, self.lit)
        ]


@dataclass(frozen=True, slots=True)
class PreviewResult:
    """1 回分のダウンサンプル結果。"""

    grid: PreviewGrid
    fallback: bool


_FONT_CACHE: dict[int, object] = {}


def _font(size_px: int):
    from PIL import ImageFont

    font = _FONT_CACHE.get(size_px)
    if font is None:
        font = ImageFont.load_default(size=max(1, int(size_px)))
        _FONT_CACHE[size_px] = font
    return font


def render_scene_rgba(
    elements: Sequence[Element],
    *,
    width: int,
    height: int,
    scale: int,
    glyphs: GlyphResolver | None = None,
) -> np.ndarray:
    """要素列を `scale` 倍の RGBA ラスタとしてレンダして返す。

    Returns
    -------
    np.ndarray
        shape `(height*scale, width*scale, 4)` の `np.uint8` 配列。未描画部は透明。

    Notes
    -----
    字模のある文字は各ビットを `scale` 四方の矩形で描き、
    字模の無い文字は `font_size` セル相当の既定フォントで描く。
    """

    from PIL import Image, ImageDraw

    s = int(scale)
    if s <= 0:
        raise ValueError("scale は正の値である必要がある")
    img = Image.new("RGBA", (int(width) * s, int(height) * s), (0, 0, 0, 0))
    draw = ImageDraw.Draw(img)

    for element in elements:
        fill = (*hex_to_rgb(element.color), 255)
        if isinstance(element, Rectangle):
            x0 = (element.x - 1) * s
            y0 = (element.y - 1) * s
            draw.rectangle(
                [x0, y0, x0 + element.w * s - 1, y0 + element.h * s - 1], fill=fill
            )
        elif isinstance(element, Circle):
            cx = (element.cx - 0.5) * s
            cy = (element.cy - 0.5) * s
            radius = max(float(element.r) * s, s / 2.0)
            draw.ellipse([cx - radius, cy - radius, cx + radius, cy + radius], fill=fill)
        elif isinstance(element, Text):
            cursor = float(element.x - 1)
            top = element.y - 1
            for ch in element.text:
                glyph = glyphs.get(ch) if glyphs is not None else None
                if glyph is not None:
                    for dc, dr in glyph.iter_set_cells():
                        px = int(round((cursor + dc) * s))
                        py = (top + dr) * s
                        draw.rectangle([px, py, px + s - 1, py + s - 1], fill=fill)
                    cursor += glyph.width + 1
                    continue
                font = _font(element.font_size * s)
                draw.text((cursor * s, top * s), ch, font=font, fill=fill)
                cursor += float(draw.textlength(ch, font=font)) / s
        else:
            raise TypeError(f"未対応の要素型: {type(element)!r}")

    return np.asarray(img, dtype=np.uint8)


def _bin_edges(out_size: int, src_size: int) -> np.ndarray:
    edges = np.floor(np.arange(out_size + 1, dtype=np.float64) * src_size / out_size)
    return edges.astype(np.int64)


def sample_cells(
    rgba: np.ndarray,
    *,
    out_width: int,
    out_height: int,
    policy: str = "area",
) -> tuple[np.ndarray, np.ndarray]:
    """高解像度 RGBA を出力セルごとにサンプルし、`(rgb, alpha)` を返す。

    Parameters
    ----------
    rgba : np.ndarray
        shape `(H', W', 4)` の配列。`H' >= out_height` かつ `W' >= out_width`。
        倍率は非整数でもよい。
    policy : {"area", "point"}
        "area" はセル領域の平均（RGB は alpha 重み付き）、"point" はセル中心の 1 画素。

    Returns
    -------
    tuple[np.ndarray, np.ndarray]
        shape `(out_h, out_w, 3)` の float64 RGB（0..255）と、shape `(out_h, out_w)` の alpha。
    """

    src = np.asarray(rgba, dtype=np.float64)
    if src.ndim != 3 or src.shape[2] != 4:
        raise ValueError("rgba は shape (H, W, 4) である必要がある")
    src_h, src_w = int(src.shape[0]), int(src.shape[1])
    if src_h < out_height or src_w < out_width:
        raise ValueError("レンダ解像度は出力グリッド以上である必要がある")

    if policy == "point":
        rows = np.floor((np.arange(out_height) + 0.5) * src_h / out_height).astype(np.int64)
        cols = np.floor((np.arange(out_width) + 0.5) * src_w / out_width).astype(np.int64)
        picked = src[np.ix_(rows, cols)]
        return picked[..., :3], picked[..., 3]
    if policy != "area":
        raise ValueError(f"未対応のサンプリング方式: {policy!r}")

    row_edges = _bin_edges(out_height, src_h)
    col_edges = _bin_edges(out_width, src_w)
    alpha = src[..., 3:4]
    weighted = np.concatenate([src[..., :3] * alpha, alpha], axis=2)

    sums = np.add.reduceat(weighted, row_edges[:-1], axis=0)
    sums = np.add.reduceat(sums, col_edges[:-1], axis=1)
    counts = np.diff(row_edges)[:, None] * np.diff(col_edges)[None, :]

    alpha_sum = sums[..., 3]
    with np.errstate(invalid="ignore", divide="ignore"):
        rgb = np.where(alpha_sum[..., None] > 0, sums[..., :3] / alpha_sum[..., None], 0.0)
    return rgb, alpha_sum / counts


def classify_cells(
    rgb: np.ndarray,
    alpha: np.ndarray,
    *,
    alpha_threshold: int,
    dark_threshold: int,
) -> PreviewGrid:
    """サンプル済みのセル色を 8 バケットへ分類して PreviewGrid を返す。

    Notes
    -----
    - alpha がしきい値未満、または最大チャネルが `dark_threshold` 未満なら消灯。
    - 各チャネルは `CHANNEL_MIDPOINT` を超えると high。
    - red high + blue low + green が `ORANGE_GREEN_RANGE` 内なら orange（yellow/red より優先）。
    - どのバケットにも当てはまらない（全チャネル low で暗くない）場合は実色をそのまま表示する。
    """

    rgb_i = np.clip(np.rint(rgb), 0, 255).astype(np.int64)
    height, width = int(alpha.shape[0]), int(alpha.shape[1])
    r, g, b = rgb_i[..., 0], rgb_i[..., 1], rgb_i[..., 2]

    off = (alpha < float(alpha_threshold)) | (rgb_i.max(axis=2) < int(dark_threshold))
    r_hi = r > CHANNEL_MIDPOINT
    g_hi = g > CHANNEL_MIDPOINT
    b_hi = b > CHANNEL_MIDPOINT
    orange = r_hi & ~b_hi & (g >= ORANGE_GREEN_RANGE[0]) & (g <= ORANGE_GREEN_RANGE[1])

    exact = (r << 16) | (g << 8) | b
    colors = np.full((height, width), BACKGROUND_INT, dtype=np.uint32)
    buckets: list[list[str | None]] = [[None] * width for _ in range(height)]

    for rr in range(height):
        for cc in range(width):
            if off[rr, cc]:
                continue
            if orange[rr, cc]:
                name: str | None = "orange"
            else:
                name = _BUCKET_BY_PATTERN.get(
                    (bool(r_hi[rr, cc]), bool(g_hi[rr, cc]), bool(b_hi[rr, cc]))
                )
            buckets[rr][cc] = name
            if name is None:
                colors[rr, cc] = int(exact[rr, cc])
            else:
                colors[rr, cc] = int(BUCKET_COLORS[name][1:], 16)

    return PreviewGrid(
        width=width,
        height=height,
        colors=colors,
        lit=~off,
        buckets=tuple(tuple(row) for row in buckets),
    )


class Downsampler:
    """シーン → 離散色プレビューの変換器。

    Parameters
    ----------
    width, height : int
        シーン（要素座標系）のセル数。
    out_size : tuple[int, int] or None
        プレビューの `(width, height)`。None ならシーンと同じ。
    scale : int
        中間レンダの倍率（出力セルあたりの画素数の目安）。
    renderer : SceneRenderer
        中間 RGBA を返すレンダ関数。失敗時は幾何ラスタライズへ切り替える。
    """

    def __init__(
        self,
        *,
        width: int,
        height: int,
        out_size: tuple[int, int] | None = None,
        scale: int = 8,
        policy: str = "area",
        alpha_threshold: int = 128,
        dark_threshold: int = 32,
        fallback_warn_after: int = 5,
        renderer: SceneRenderer = render_scene_rgba,
    ) -> None:
        self.width = int(width)
        self.height = int(height)
        self.out_width, self.out_height = (
            (self.width, self.height) if out_size is None else (int(out_size[0]), int(out_size[1]))
        )
        self.scale = max(1, int(scale))
        self.policy = str(policy)
        self.alpha_threshold = int(alpha_threshold)
        self.dark_threshold = int(dark_threshold)
        self.fallback_warn_after = max(1, int(fallback_warn_after))
        self._renderer = renderer
        self._fallback_streak = 0

    @property
    def fallback_streak(self) -> int:
        """連続してフォールバックした回数を返す。"""

        return self._fallback_streak

    def _render(
        self, elements: Sequence[Element], glyphs: GlyphResolver | None
    ) -> tuple[np.ndarray, np.ndarray]:
        try:
            rgba = self._renderer(
                elements,
                width=self.width,
                height=self.height,
                scale=self.scale,
                glyphs=glyphs,
            )
            return sample_cells(
                rgba,
                out_width=self.out_width,
                out_height=self.out_height,
                policy=self.policy,
            )
        except Exception as exc:
            raise RenderFallback("中間レンダに失敗しました") from exc

    def _fallback(
        self, elements: Sequence[Element], glyphs: GlyphResolver | None
    ) -> tuple[np.ndarray, np.ndarray]:
        values = rasterize_elements(
            elements,
            width=self.width,
            height=self.height,
            out_size=(self.out_width, self.out_height),
            glyphs=glyphs,
        ).astype(np.int64)
        rgb = np.stack([(values >> 16) & 0xFF, (values >> 8) & 0xFF, values & 0xFF], axis=2)
        alpha = np.where(values != BACKGROUND_INT, 255.0, 0.0)
        return rgb.astype(np.float64), alpha

    def downsample(
        self,
        elements: Sequence[Element],
        *,
        glyphs: GlyphResolver | None = None,
    ) -> PreviewResult:
        """要素列からプレビューを 1 回生成して返す。"""

        fallback = False
        try:
            rgb, alpha = self._render(elements, glyphs)
            self._fallback_streak = 0
        except RenderFallback as exc:
            fallback = True
            self._fallback_streak += 1
            _logger.debug("幾何ラスタライズへフォールバックします: %s", exc.__cause__)
            if self._fallback_streak == self.fallback_warn_after:
                _logger.warning(
                    "プレビューのレンダが %d 回連続で失敗しています: %s",
                    self._fallback_streak,
                    exc.__cause__,
                )
            rgb, alpha = self._fallback(elements, glyphs)

        grid = classify_cells(
            rgb,
            alpha,
            alpha_threshold=self.alpha_threshold,
            dark_threshold=self.dark_threshold,
        )
        return PreviewResult(grid=grid, fallback=fallback)


__all__ = [
    "BUCKET_COLORS",
    "CHANNEL_MIDPOINT",
    "Downsampler",
    "ORANGE_GREEN_RANGE",
    "PreviewCell",
    "PreviewGrid",
    "PreviewResult",
    "classify_cells",
    "render_scene_rgba",
    "sample_cells",
]
