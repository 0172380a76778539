# どこで: `src/rasterboard/core/errors.py`。
# 何を: rasterboard 全体で共有する例外階層を定義する。
# なぜ: 「ユーザーへ通知して中断」「機能だけ無効化」「自動回復」を型で区別するため。

from __future__ import annotations


class RasterboardError(Exception):
    """rasterboard が送出する例外の基底クラス。"""


class ValidationError(RasterboardError, ValueError):
    """スナップショット形状・寸法・入力テキストが不正な場合の例外。

    Notes
    -----
    送出時点では live な grid/要素列は一切変更されていないことを保証する。
    """


class FormatError(ValidationError):
    """字模（glyph）定義テキストを解析できない場合の例外。"""


class StorageUnavailable(RasterboardError, RuntimeError):
    """永続 key-value ストアが存在しない、または容量超過の場合の例外。"""


class RenderFallback(RasterboardError, RuntimeError):
    """高解像度レンダが失敗し、幾何ラスタライズへ切り替えるべき場合の例外。"""


class SnapshotNotFound(RasterboardError, KeyError):
    """指定 id のスナップショットがライブラリに無い場合の例外。"""


__all__ = [
    "FormatError",
    "RasterboardError",
    "RenderFallback",
    "SnapshotNotFound",
    "StorageUnavailable",
    "ValidationError",
]
