# どこで: `src/rasterboard/export/board_file.py`。
# 何を: スナップショットを `.board.json` として書き出し/読み込みする。
# なぜ: ライブラリ（key-value ストア）の外へボードを持ち出し、別環境で復元できるようにするため。

from __future__ import annotations

import json
from collections.abc import Callable
from datetime import datetime
from pathlib import Path

from rasterboard.core.errors import ValidationError
from rasterboard.core.snapshots import Snapshot, decode_snapshot, encode_snapshot, utc_now
from rasterboard.export.text import default_export_dir, export_filename

BOARD_SUFFIX = ".board.json"
DEFAULT_BOARD_BASENAME = "font64x32-board"


def dumps_board(snapshot: Snapshot) -> str:
    """Snapshot をボードファイルの JSON テキストにして返す。"""

    return json.dumps(encode_snapshot(snapshot), ensure_ascii=False, indent=2)


def loads_board(text: str, *, width: int, height: int) -> Snapshot:
    """ボードファイルの JSON テキストを検証して Snapshot を返す。

    Raises
    ------
    ValidationError
        JSON として読めない、または形状・寸法が不正な場合。
    """

    try:
        obj = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ValidationError(f"ボードファイルを JSON として解釈できません: {exc}") from exc
    return decode_snapshot(obj, width=width, height=height)


def write_board_file(
    snapshot: Snapshot,
    *,
    directory: str | Path | None = None,
    now: Callable[[], datetime] = utc_now,
) -> Path:
    """Snapshot を `<name>-<timestamp>.board.json` として保存し、パスを返す。"""

    out_dir = Path(directory) if directory is not None else default_export_dir("board")
    path = out_dir / export_filename(
        snapshot.name, BOARD_SUFFIX, default=DEFAULT_BOARD_BASENAME, when=now()
    )
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(dumps_board(snapshot) + "\n", encoding="utf-8")
    return path


def read_board_file(path: str | Path, *, width: int, height: int) -> Snapshot:
    """`.board.json` を読み込んで検証済みの Snapshot を返す。

    Raises
    ------
    OSError
        ファイルを開けない場合。
    ValidationError
        UTF-8 として読めない、または内容が不正な場合。
    """

    try:
        text = Path(path).read_text(encoding="utf-8")
    except UnicodeDecodeError as exc:
        raise ValidationError(f"ボードファイルを UTF-8 として読めません: {path}") from exc
    return loads_board(text, width=width, height=height)


__all__ = [
    "BOARD_SUFFIX",
    "DEFAULT_BOARD_BASENAME",
    "dumps_board",
    "loads_board",
    "read_board_file",
    "write_board_file",
]
