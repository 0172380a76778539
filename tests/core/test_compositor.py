"""要素列 → PixelGrid の合成（後勝ち）のテスト。"""

from __future__ import annotations

import numpy as np

from rasterboard.core.compositor import (
    GLYPH_SPACING,
    composite,
    element_mask,
    overlay,
    rasterize_elements,
    stamp_glyph,
    text_cells,
)
from rasterboard.core.elements import Circle, Rectangle, Text
from rasterboard.core.glyphs import GlyphResolver, parse_glyph
from rasterboard.core.pixel_grid import PixelGrid

BAR = parse_glyph("I\n{0x01, 0x00}\n{0x01, 0x01}\n{0x01, 0x00}")


def test_rectangle_then_circle_overlap_is_last_wins() -> None:
    grid = PixelGrid(8, 8)
    elements = [
        Rectangle(x=1, y=1, w=4, h=4, color="#FF0000"),
        Circle(cx=2, cy=2, r=2, color="#00FF00"),
    ]

    composite(elements, grid)

    green = {
        (c, r)
        for r in range(1, 9)
        for c in range(1, 9)
        if (c - 2) ** 2 + (r - 2) ** 2 <= 4
    }
    for r in range(1, 9):
        for c in range(1, 9):
            if (c, r) in green:
                expected = "#00FF00"
            elif c <= 4 and r <= 4:
                expected = "#FF0000"
            else:
                expected = "#000000"
            assert grid.get(c, r) == expected, (c, r)
    assert (4, 2) in green and (4, 3) not in green
    assert grid.painted_count == grid.scan_painted_count() == 16


def test_circle_boundary_is_inclusive() -> None:
    mask = element_mask(Circle(cx=10, cy=10, r=3, color="#FFFFFF"), width=20, height=20)

    assert mask[9, 12]
    assert not mask[9, 13]
    assert mask[12, 9]
    assert not mask[13, 9]


def test_rectangle_is_clipped_silently() -> None:
    grid = PixelGrid(4, 4)

    composite([Rectangle(x=3, y=3, w=10, h=10, color="#0000FF")], grid)

    assert grid.painted_count == 4
    assert grid.get(4, 4) == "#0000FF"
    assert grid.get(2, 2) == "#000000"


def test_composite_is_idempotent_and_clears_direct_edits() -> None:
    grid = PixelGrid(8, 4)
    grid.paint([(8, 4)], "#FFFFFF")
    elements = [Rectangle(x=2, y=2, w=3, h=2, color="#123456"), Circle(cx=6, cy=2, r=1, color="#ABCDEF")]

    composite(elements, grid)
    first = grid.copy()
    composite(elements, grid)

    assert grid == first
    assert grid.get(8, 4) == "#000000"
    assert grid.painted_count == grid.scan_painted_count()


def test_overlay_keeps_existing_pixels() -> None:
    grid = PixelGrid(4, 4)
    grid.paint([(4, 4)], "#FFFFFF")

    overlay([Rectangle(x=1, y=1, w=1, h=1, color="#FF0000")], grid)

    assert grid.get(4, 4) == "#FFFFFF"
    assert grid.get(1, 1) == "#FF0000"
    assert grid.painted_count == 2


def test_text_stamps_glyphs_left_to_right_and_skips_unknown_characters() -> None:
    glyphs = GlyphResolver({"I": BAR})
    text = Text(text="I?I", x=2, y=1, color="#FFFF00")

    cells = text_cells(text, glyphs)
    second = 1 + BAR.width + GLYPH_SPACING

    assert (1, 0) in cells and (2, 1) in cells
    assert (second, 0) in cells and (second + 1, 1) in cells
    assert len(cells) == 8

    grid = PixelGrid(10, 4)
    composite([text], grid, glyphs=glyphs)
    assert grid.painted_count == 8
    assert grid.get(2, 1) == "#FFFF00"
    assert grid.get(3, 1) == "#000000"


def test_text_without_glyphs_paints_nothing() -> None:
    grid = PixelGrid(4, 4)

    composite([Text(text="A", x=1, y=1, color="#FFFFFF")], grid)

    assert grid.painted_count == 0


def test_stamp_glyph_leaves_zero_bits_transparent() -> None:
    grid = PixelGrid(4, 4)
    grid.paint([(2, 1)], "#0000FF")

    stamp_glyph(BAR, grid, col=1, row=1, color="#FF0000")

    assert grid.get(1, 1) == "#FF0000"
    assert grid.get(2, 1) == "#0000FF"
    assert grid.get(2, 2) == "#FF0000"
    assert grid.painted_count == 5


def test_rasterize_scales_by_point_sampling_cell_centers() -> None:
    values = rasterize_elements(
        [Rectangle(x=1, y=1, w=2, h=2, color="#FF0000")],
        width=4,
        height=4,
        out_size=(8, 8),
    )

    expected = np.zeros((8, 8), dtype=np.uint32)
    expected[:4, :4] = 0xFF0000
    np.testing.assert_array_equal(values, expected)
