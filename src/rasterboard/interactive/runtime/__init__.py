# どこで: `src/rasterboard/interactive/runtime/__init__.py`。
# 何を: interactive 実行時の時間駆動部（プレビュー更新スケジューラ）をまとめるパッケージ定義。
# なぜ: セッションの状態操作と、時刻に依存する処理を分けて差し替えやすくするため。

from __future__ import annotations

__all__ = []
