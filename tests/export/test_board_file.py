"""`.board.json` の書き出し/読み込みのテスト。"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path

import pytest

from rasterboard.core.elements import Rectangle, Text
from rasterboard.core.errors import ValidationError
from rasterboard.core.pixel_grid import PixelGrid
from rasterboard.core.snapshots import build_snapshot
from rasterboard.export.board_file import (
    BOARD_SUFFIX,
    dumps_board,
    loads_board,
    read_board_file,
    write_board_file,
)

WHEN = datetime(2024, 5, 6, 7, 8, 9, tzinfo=timezone.utc)


def _snapshot(name: str = "logo"):
    grid = PixelGrid(4, 2)
    grid.paint([(2, 2)], "#00FF00")
    return build_snapshot(
        grid,
        [Rectangle(x=1, y=1, w=2, h=1, color="#FF0000", id="r"), Text(text="A", x=3, y=1, id="t")],
        name=name,
        current_color="#00FF00",
        now=lambda: WHEN,
    )


def test_dumps_board_is_indented_json_with_schema() -> None:
    text = dumps_board(_snapshot())
    data = json.loads(text)

    assert text.startswith("{\n  ")
    assert data["schema"].startswith("rasterizer-board@1.")
    assert data["createdAt"] == "2024-05-06T07:08:09.000Z"
    assert [e["type"] for e in data["elements"]] == ["rectangle", "text"]


def test_write_then_read_board_file(tmp_path: Path) -> None:
    snap = _snapshot()

    path = write_board_file(snap, directory=tmp_path, now=lambda: WHEN)
    restored = read_board_file(path, width=4, height=2)

    assert path.name == "logo-2024-05-06T07-08-09-000Z" + BOARD_SUFFIX
    assert restored == snap


def test_unnamed_board_uses_default_basename(tmp_path: Path) -> None:
    path = write_board_file(_snapshot(name=""), directory=tmp_path, now=lambda: WHEN)

    assert path.name.startswith("font64x32-board-")
    assert path.name.endswith(".board.json")


def test_loads_board_rejects_invalid_json() -> None:
    with pytest.raises(ValidationError):
        loads_board("{not json", width=4, height=2)


def test_read_board_file_rejects_non_utf8_bytes(tmp_path: Path) -> None:
    path = tmp_path / "broken.board.json"
    path.write_bytes(b'{"name": "\xff\xfe"}')

    with pytest.raises(ValidationError):
        read_board_file(path, width=4, height=2)


def test_loads_board_rejects_other_grid_sizes() -> None:
    with pytest.raises(ValidationError):
        loads_board(dumps_board(_snapshot()), width=64, height=32)
