"""ダウンサンプル（中間レンダ → セル平均 → 8 色バケット）のテスト。"""

from __future__ import annotations

import logging

import numpy as np
import pytest

from rasterboard.core.downsample import (
    BUCKET_COLORS,
    Downsampler,
    classify_cells,
    render_scene_rgba,
    sample_cells,
)
from rasterboard.core.elements import Circle, Rectangle


def _classify(colors: list[tuple[int, int, int]], alpha: float = 255.0):
    rgb = np.array([colors], dtype=np.float64)
    a = np.full((1, len(colors)), alpha, dtype=np.float64)
    return classify_cells(rgb, a, alpha_threshold=128, dark_threshold=32)


@pytest.mark.parametrize(
    ("rgb", "bucket"),
    [
        ((255, 255, 255), "white"),
        ((200, 200, 0), "yellow"),
        ((255, 0, 255), "magenta"),
        ((0, 255, 255), "cyan"),
        ((255, 0, 0), "red"),
        ((0, 255, 0), "green"),
        ((0, 0, 255), "blue"),
        ((255, 128, 0), "orange"),
        ((255, 64, 0), "orange"),
        ((255, 191, 10), "orange"),
        ((255, 63, 0), "red"),
        ((255, 192, 0), "yellow"),
    ],
)
def test_classify_maps_channels_to_buckets(rgb, bucket) -> None:
    grid = _classify([rgb])
    cell = grid.cell(1, 1)

    assert cell.lit
    assert cell.bucket == bucket
    assert cell.color == BUCKET_COLORS[bucket]


def test_classify_shows_exact_color_when_all_channels_are_low_but_not_dark() -> None:
    cell = _classify([(100, 90, 80)]).cell(1, 1)

    assert cell.lit
    assert cell.bucket is None
    assert cell.color == "#645A50"


def test_classify_turns_off_dark_and_transparent_cells() -> None:
    dark = _classify([(20, 31, 0)])
    transparent = _classify([(255, 0, 0)], alpha=127.0)

    assert not dark.cell(1, 1).lit
    assert not transparent.cell(1, 1).lit
    assert transparent.to_rows() == [[None]]
    assert int(transparent.colors[0, 0]) == 0


def test_preview_cell_out_of_range_raises() -> None:
    with pytest.raises(IndexError):
        _classify([(255, 0, 0)]).cell(2, 1)


def test_area_sampling_weights_by_coverage() -> None:
    rgba = np.zeros((2, 2, 4), dtype=np.uint8)
    rgba[0, 0] = (255, 0, 0, 255)

    rgb, alpha = sample_cells(rgba, out_width=1, out_height=1, policy="area")

    assert alpha[0, 0] == pytest.approx(63.75)
    np.testing.assert_allclose(rgb[0, 0], (255.0, 0.0, 0.0))

    rgba[0, 1] = rgba[1, 0] = (255, 0, 0, 255)
    _, alpha = sample_cells(rgba, out_width=1, out_height=1, policy="area")
    assert alpha[0, 0] == pytest.approx(191.25)


def test_point_sampling_reads_cell_center_pixel() -> None:
    rgba = np.zeros((2, 2, 4), dtype=np.uint8)
    rgba[1, 1] = (0, 0, 255, 255)

    rgb, alpha = sample_cells(rgba, out_width=1, out_height=1, policy="point")

    assert alpha[0, 0] == 255
    np.testing.assert_array_equal(rgb[0, 0], (0, 0, 255))


def test_sample_cells_rejects_unknown_policy_and_small_sources() -> None:
    rgba = np.zeros((2, 2, 4), dtype=np.uint8)

    with pytest.raises(ValueError):
        sample_cells(rgba, out_width=1, out_height=1, policy="bicubic")
    with pytest.raises(ValueError):
        sample_cells(rgba, out_width=4, out_height=1)


def test_render_scene_rgba_shape_and_transparent_background() -> None:
    rgba = render_scene_rgba(
        [Rectangle(x=1, y=1, w=1, h=1, color="#00FF00")], width=4, height=2, scale=3
    )

    assert rgba.shape == (6, 12, 4)
    assert tuple(rgba[0, 0]) == (0, 255, 0, 255)
    assert rgba[5, 11, 3] == 0


def test_downsampler_full_rectangle_lights_every_cell_red() -> None:
    ds = Downsampler(width=4, height=2, scale=4)

    result = ds.downsample([Rectangle(x=1, y=1, w=4, h=2, color="#FF0000")])

    assert not result.fallback
    assert bool(result.grid.lit.all())
    assert {b for row in result.grid.buckets for b in row} == {"red"}


def test_downsampler_circle_lights_center_only() -> None:
    ds = Downsampler(width=8, height=8, scale=8)

    grid = ds.downsample([Circle(cx=4, cy=4, r=2, color="#0000FF")]).grid

    assert grid.cell(4, 4).bucket == "blue"
    assert not grid.cell(1, 1).lit
    assert not grid.cell(8, 8).lit


def test_downsampler_can_shrink_to_a_smaller_output() -> None:
    ds = Downsampler(width=8, height=4, out_size=(4, 2), scale=2, policy="point")

    grid = ds.downsample([Rectangle(x=1, y=1, w=4, h=4, color="#FFFFFF")]).grid

    assert (grid.width, grid.height) == (4, 2)
    assert grid.cell(1, 1).bucket == "white"
    assert grid.cell(2, 2).bucket == "white"
    assert not grid.cell(3, 1).lit


def test_downsampler_falls_back_to_geometry_and_warns_after_streak(caplog) -> None:
    def broken(*_args, **_kwargs):
        raise RuntimeError("no renderer")

    ds = Downsampler(width=4, height=2, fallback_warn_after=3, renderer=broken)
    elements = [Rectangle(x=2, y=1, w=1, h=1, color="#00FFFF")]

    with caplog.at_level(logging.WARNING, logger="rasterboard.core.downsample"):
        results = [ds.downsample(elements) for _ in range(3)]

    assert all(r.fallback for r in results)
    assert ds.fallback_streak == 3
    assert results[0].grid.cell(2, 1).bucket == "cyan"
    assert not results[0].grid.cell(1, 1).lit
    warnings = [r for r in caplog.records if r.levelno == logging.WARNING]
    assert len(warnings) == 1


def test_fallback_streak_resets_after_a_successful_render() -> None:
    calls = {"n": 0}

    def flaky(elements, **kwargs):
        calls["n"] += 1
        if calls["n"] == 1:
            raise RuntimeError("first frame fails")
        return render_scene_rgba(elements, **kwargs)

    ds = Downsampler(width=2, height=2, scale=2, renderer=flaky)

    assert ds.downsample([]).fallback
    assert ds.fallback_streak == 1
    assert not ds.downsample([]).fallback
    assert ds.fallback_streak == 0
