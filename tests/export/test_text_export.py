"""テキスト書き出し（plain / C 配列）とファイル名規則のテスト。"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

import pytest

from rasterboard.core.errors import ValidationError
from rasterboard.core.pixel_grid import PixelGrid
from rasterboard.core.runtime_config import set_config_path
from rasterboard.export.text import (
    PLAIN_MAGIC,
    export_filename,
    export_text,
    format_c_array,
    format_grid,
    format_plain,
    parse_plain,
    sanitize_basename,
    timestamp_slug,
)

WHEN = datetime(2024, 1, 2, 3, 4, 5, 678000, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def _isolate(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    set_config_path(None)
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path))
    yield
    set_config_path(None)


def _grid() -> PixelGrid:
    grid = PixelGrid(3, 2)
    grid.paint([(1, 1)], "#FF0000")
    grid.paint([(3, 2)], "#00ff7f")
    return grid


def test_format_plain_layout() -> None:
    assert format_plain(_grid()).splitlines() == [
        PLAIN_MAGIC,
        "WIDTH 3",
        "HEIGHT 2",
        "DATA",
        "FF0000 000000 000000",
        "000000 000000 00FF7F",
    ]


def test_format_c_array_layout() -> None:
    assert format_c_array(_grid()).splitlines() == [
        "const uint32_t FONT_64x32[2][3] = {",
        "    { 0xFF0000, 0x000000, 0x000000 },",
        "    { 0x000000, 0x000000, 0x00FF7F },",
        "};",
    ]


def test_format_grid_rejects_unknown_format() -> None:
    with pytest.raises(ValueError):
        format_grid(_grid(), "bmp")


def test_parse_plain_reads_back_the_grid() -> None:
    grid = _grid()

    rows = parse_plain(format_plain(grid) + "\n\n", width=3, height=2)

    assert rows == grid.to_hex_rows()


def test_parse_plain_accepts_lowercase_tokens() -> None:
    text = "\n".join([PLAIN_MAGIC, "WIDTH 1", "HEIGHT 1", "DATA", "abcdef"])

    assert parse_plain(text, width=1, height=1) == [["#ABCDEF"]]


@pytest.mark.parametrize(
    "lines",
    [
        ["FONT RGB", "WIDTH 1", "HEIGHT 1", "DATA", "000000"],
        [PLAIN_MAGIC, "WIDTH x", "HEIGHT 1", "DATA", "000000"],
        [PLAIN_MAGIC, "WIDTH 2", "HEIGHT 1", "DATA", "000000 000000"],
        [PLAIN_MAGIC, "WIDTH 1", "HEIGHT 1", "PIXELS", "000000"],
        [PLAIN_MAGIC, "WIDTH 1", "HEIGHT 1", "DATA"],
        [PLAIN_MAGIC, "WIDTH 1", "HEIGHT 1", "DATA", "000000 000000"],
        [PLAIN_MAGIC, "WIDTH 1", "HEIGHT 1", "DATA", "GG0000"],
        [PLAIN_MAGIC],
    ],
)
def test_parse_plain_rejects_malformed_text(lines: list[str]) -> None:
    with pytest.raises(ValidationError):
        parse_plain("\n".join(lines), width=1, height=1)


def test_sanitize_and_timestamp_slug() -> None:
    assert sanitize_basename(" my font/v2.0 ") == "my_font_v2_0"
    assert sanitize_basename("日本") == "__"
    assert timestamp_slug(WHEN) == "2024-01-02T03-04-05-678Z"


def test_export_filename_falls_back_to_default_base() -> None:
    assert export_filename("", "txt", default="font64x32", when=WHEN) == (
        "font64x32-2024-01-02T03-04-05-678Z.txt"
    )
    assert export_filename("logo", ".c", default="font64x32", when=WHEN) == (
        "logo-2024-01-02T03-04-05-678Z.c"
    )


def test_export_text_writes_into_given_directory(tmp_path: Path) -> None:
    path = export_text(_grid(), fmt="c-array", name="logo", directory=tmp_path / "out", now=lambda: WHEN)

    assert path == tmp_path / "out" / "logo-2024-01-02T03-04-05-678Z.c"
    assert path.read_text(encoding="utf-8") == format_c_array(_grid()) + "\n"


def test_export_text_defaults_to_output_root() -> None:
    path = export_text(_grid(), now=lambda: WHEN)

    assert path == Path("data") / "output" / "text" / "font64x32-2024-01-02T03-04-05-678Z.txt"
    assert path.is_file()


def test_export_text_rejects_unknown_format(tmp_path: Path) -> None:
    with pytest.raises(ValueError):
        export_text(_grid(), fmt="bmp", directory=tmp_path)
