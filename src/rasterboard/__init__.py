# どこで: `src/rasterboard/__init__.py`。
# 何を: ルート `rasterboard` パッケージを定義する。
# なぜ: よく使う入口（セッション・要素・grid）を `rasterboard` から import できるようにするため。

from __future__ import annotations

from rasterboard.core.elements import Circle, Rectangle, Text
from rasterboard.core.pixel_grid import GRID_HEIGHT, GRID_WIDTH, PixelGrid
from rasterboard.core.runtime_config import set_config_path
from rasterboard.interactive.session import BoardSession, Notice

__all__ = [
    "BoardSession",
    "Circle",
    "GRID_HEIGHT",
    "GRID_WIDTH",
    "Notice",
    "PixelGrid",
    "Rectangle",
    "Text",
    "set_config_path",
]
