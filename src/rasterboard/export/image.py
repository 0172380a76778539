"""
どこで: `src/rasterboard/export/image.py`。
何を: PixelGrid / プレビューを PNG として保存する関数を提供する。
なぜ: マトリクス表示での見え方を、拡大した画像として共有・確認できるようにするため。
"""

from __future__ import annotations

from pathlib import Path

import numpy as np

from rasterboard.core.downsample import PreviewGrid
from rasterboard.core.pixel_grid import PixelGrid
from rasterboard.core.runtime_config import runtime_config


def png_output_size(grid_size: tuple[int, int], *, scale: int | None = None) -> tuple[int, int]:
    """grid の `(width, height)` を基準に PNG 出力ピクセルサイズを返す。"""

    grid_w, grid_h = grid_size
    if int(grid_w) <= 0 or int(grid_h) <= 0:
        raise ValueError("grid_size は正の (width, height) である必要がある")
    s = int(runtime_config().png_scale if scale is None else scale)
    if s <= 0:
        raise ValueError("scale は正の値である必要がある")
    return int(grid_w) * s, int(grid_h) * s


def rgb_image_array(values: np.ndarray) -> np.ndarray:
    """`0xRRGGBB` 配列を shape `(H, W, 3)` の uint8 配列に変換して返す。"""

    v = np.asarray(values, dtype=np.uint32)
    return np.stack([(v >> 16) & 0xFF, (v >> 8) & 0xFF, v & 0xFF], axis=2).astype(np.uint8)


def _save_values_png(values: np.ndarray, path: str | Path, *, scale: int | None) -> Path:
    from PIL import Image

    _path = Path(path)
    if _path.suffix.lower() != ".png":
        raise ValueError(f"未対応の画像フォーマット: {_path.suffix!r}")
    height, width = int(values.shape[0]), int(values.shape[1])
    out_size = png_output_size((width, height), scale=scale)

    img = Image.fromarray(rgb_image_array(values))
    img = img.resize(out_size, resample=Image.Resampling.NEAREST)
    _path.parent.mkdir(parents=True, exist_ok=True)
    img.save(_path, format="PNG")
    return _path


def export_grid_png(grid: PixelGrid, path: str | Path, *, scale: int | None = None) -> Path:
    """grid をセルごとの正方形ブロックとして PNG 保存する。

    Notes
    -----
    拡大は最近傍補間。`scale` 未指定なら `export.png.scale` を使う。
    """

    return _save_values_png(grid.as_array(), path, scale=scale)


def export_preview_png(preview: PreviewGrid, path: str | Path, *, scale: int | None = None) -> Path:
    """離散色プレビューを PNG 保存する（消灯セルは背景色）。"""

    return _save_values_png(preview.colors, path, scale=scale)


__all__ = ["export_grid_png", "export_preview_png", "png_output_size", "rgb_image_array"]
