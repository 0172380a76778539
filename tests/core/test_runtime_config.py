"""config.yaml の探索・マージ・検証のテスト。"""

from pathlib import Path

import pytest

from rasterboard.core.runtime_config import output_root_dir, runtime_config, set_config_path


@pytest.fixture(autouse=True)
def _reset_runtime_config() -> None:
    set_config_path(None)
    yield
    set_config_path(None)


def _isolate_config_discovery(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path))


def _write(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


def test_packaged_defaults(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    _isolate_config_discovery(tmp_path, monkeypatch)

    assert output_root_dir() == Path("data") / "output"
    cfg = runtime_config()
    assert cfg.config_path is None
    assert cfg.store_path == Path("data") / "store" / "rasterboard.json"
    assert cfg.preview_interval_s == pytest.approx(0.2)
    assert cfg.preview_debounce_s == pytest.approx(0.1)
    assert cfg.preview_scale == 8
    assert cfg.preview_sampling == "area"
    assert (cfg.alpha_threshold, cfg.dark_threshold) == (128, 32)
    assert cfg.fallback_warn_after == 5
    assert cfg.cell_size == 10.0
    assert (cfg.min_draw_size, cfg.min_resize_size, cfg.handle_radius) == (5.0, 10.0, 4.0)
    assert cfg.png_scale == 16


def test_runtime_config_is_cached(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    _isolate_config_discovery(tmp_path, monkeypatch)

    assert runtime_config() is runtime_config()


def test_discovered_config_overrides_only_given_keys(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    _isolate_config_discovery(tmp_path, monkeypatch)
    discovered = _write(
        tmp_path / ".rasterboard" / "config.yaml",
        'paths:\n  output_dir: "./out_discovered"\npreview:\n  interval_ms: 500\n',
    )

    cfg = runtime_config()

    assert cfg.config_path == discovered
    assert output_root_dir() == Path("out_discovered")
    assert cfg.store_path == Path("data") / "store" / "rasterboard.json"
    assert cfg.preview_interval_s == pytest.approx(0.5)
    assert cfg.preview_debounce_s == pytest.approx(0.1)


def test_home_config_is_discovered(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    _isolate_config_discovery(tmp_path, monkeypatch)
    home_cfg = _write(
        tmp_path / ".config" / "rasterboard" / "config.yaml",
        "interaction:\n  cell_size: 12\n",
    )

    cfg = runtime_config()

    assert cfg.config_path == home_cfg
    assert cfg.cell_size == 12.0


def test_explicit_config_overrides_discovered_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    _isolate_config_discovery(tmp_path, monkeypatch)
    _write(tmp_path / ".rasterboard" / "config.yaml", 'paths:\n  output_dir: "./out_discovered"\n')
    explicit = _write(
        tmp_path / "explicit.yaml",
        'paths:\n  output_dir: "./out_explicit"\nexport:\n  png:\n    scale: 4\n',
    )

    set_config_path(explicit)
    cfg = runtime_config()

    assert cfg.config_path == explicit
    assert cfg.output_dir == Path("out_explicit")
    assert cfg.png_scale == 4


def test_missing_explicit_config_raises(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    _isolate_config_discovery(tmp_path, monkeypatch)
    set_config_path(tmp_path / "missing.yaml")

    with pytest.raises(FileNotFoundError):
        runtime_config()


@pytest.mark.parametrize(
    ("text", "exc"),
    [
        ("version: 2\n", RuntimeError),
        ('preview:\n  sampling: "bicubic"\n', RuntimeError),
        ("preview:\n  alpha_threshold: 300\n", ValueError),
        ("interaction:\n  cell_size: 0\n", ValueError),
        ("interaction:\n  cell_size: big\n", RuntimeError),
        ("- just\n- a list\n", RuntimeError),
        ("paths: [1, 2]\n", RuntimeError),
    ],
)
def test_invalid_values_are_rejected(tmp_path: Path, monkeypatch: pytest.MonkeyPatch, text, exc):
    _isolate_config_discovery(tmp_path, monkeypatch)
    set_config_path(_write(tmp_path / "bad.yaml", text))

    with pytest.raises(exc):
        runtime_config()
