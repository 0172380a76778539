# どこで: `src/rasterboard/core/runtime_config.py`。
# 何を: config.yaml による実行時設定（探索・ロード・キャッシュ）を提供する。
# なぜ: プレビュー周期や操作しきい値、保存先をコードを変えずに調整できるようにするため。

from __future__ import annotations

import os
from dataclasses import dataclass
from importlib import resources
from pathlib import Path
from typing import Any

SAMPLING_POLICIES = ("area", "point")


@dataclass(frozen=True, slots=True)
class RuntimeConfig:
    """rasterboard の実行時設定。"""

    config_path: Path | None
    output_dir: Path
    store_path: Path
    preview_interval_s: float
    preview_debounce_s: float
    preview_scale: int
    preview_sampling: str
    alpha_threshold: int
    dark_threshold: int
    fallback_warn_after: int
    cell_size: float
    min_draw_size: float
    min_resize_size: float
    handle_radius: float
    png_scale: int


_EXPLICIT_CONFIG_PATH: Path | None = None
_CONFIG_CACHE: RuntimeConfig | None = None


def set_config_path(path: str | Path | None) -> None:
    """以降の設定探索で使う明示 config パスを設定する。

    Notes
    -----
    `path` を None にすると明示指定を解除し、既定の探索に戻る。
    """

    global _EXPLICIT_CONFIG_PATH, _CONFIG_CACHE
    if path is None:
        _EXPLICIT_CONFIG_PATH = None
        _CONFIG_CACHE = None
        return
    _EXPLICIT_CONFIG_PATH = Path(str(path)).expanduser()
    _CONFIG_CACHE = None


def _default_config_candidates() -> tuple[Path, ...]:
    cwd = Path.cwd()
    home = Path.home()
    return (
        cwd / ".rasterboard" / "config.yaml",
        home / ".config" / "rasterboard" / "config.yaml",
    )


def _expand_path_text(text: str) -> str:
    return os.path.expandvars(os.path.expanduser(str(text)))


def _as_optional_path(value: Any) -> Path | None:
    if value is None:
        return None
    s = str(value).strip()
    if not s:
        return None
    return Path(_expand_path_text(s))


def _as_mapping(value: Any, *, key: str) -> dict[str, Any]:
    if value is None:
        return {}
    if isinstance(value, dict):
        return dict(value)
    raise RuntimeError(f"{key} は mapping である必要があります: got={value!r}")


def _as_positive_float(value: Any, *, key: str) -> float:
    if value is None:
        raise RuntimeError(f"{key} が未設定です（同梱 default_config.yaml を確認してください）")
    try:
        f = float(value)
    except Exception as exc:
        raise RuntimeError(f"{key} は数値である必要があります: got={value!r}") from exc
    if f <= 0:
        raise ValueError(f"{key} は正の値である必要があります: got={f}")
    return f


def _as_channel(value: Any, *, key: str) -> int:
    if value is None:
        raise RuntimeError(f"{key} が未設定です（同梱 default_config.yaml を確認してください）")
    try:
        i = int(value)
    except Exception as exc:
        raise RuntimeError(f"{key} は整数である必要があります: got={value!r}") from exc
    if not 0 <= i <= 255:
        raise ValueError(f"{key} は 0..255 の範囲である必要があります: got={i}")
    return i


def _load_yaml_text(text: str, *, source: str) -> dict[str, Any]:
    import yaml

    try:
        data = yaml.safe_load(text)
    except Exception as exc:
        raise RuntimeError(f"config.yaml の読み込みに失敗しました: source={source}") from exc

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise RuntimeError(f"config.yaml は mapping である必要があります: source={source}")

    return dict(data)


def _load_yaml_config(path: Path) -> dict[str, Any]:
    text = path.read_text(encoding="utf-8")
    return _load_yaml_text(text, source=str(path))


def _load_packaged_default_config() -> dict[str, Any]:
    """同梱デフォルト config をロードして dict を返す。"""

    try:
        blob = (
            resources.files("rasterboard")
            .joinpath("resource", "default_config.yaml")
            .read_text(encoding="utf-8")
        )
    except Exception as exc:  # pragma: no cover
        raise RuntimeError(
            "同梱 default_config.yaml の読み込みに失敗しました"
            "（パッケージ配布物の package-data を確認してください）"
        ) from exc

    return _load_yaml_text(blob, source="rasterboard/resource/default_config.yaml")


def _merge_sections(base: dict[str, Any], override: dict[str, Any]) -> None:
    """1 階層目の mapping をセクション単位でマージする（後勝ち）。"""

    for key, value in override.items():
        current = base.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            merged = dict(current)
            merged.update(value)
            base[key] = merged
        else:
            base[key] = value


def runtime_config() -> RuntimeConfig:
    """実行時設定をロードして返す（キャッシュ）。"""

    global _CONFIG_CACHE
    if _CONFIG_CACHE is not None:
        return _CONFIG_CACHE

    explicit_path = _EXPLICIT_CONFIG_PATH
    if explicit_path is not None and not explicit_path.is_file():
        raise FileNotFoundError(f"config.yaml が見つかりません: {explicit_path}")

    discovered_path: Path | None = None
    for p in _default_config_candidates():
        if p.is_file():
            discovered_path = p
            break

    payload = _load_packaged_default_config()
    if discovered_path is not None:
        _merge_sections(payload, _load_yaml_config(discovered_path))
    if explicit_path is not None:
        _merge_sections(payload, _load_yaml_config(explicit_path))

    version = payload.get("version")
    if version is None:
        raise RuntimeError(
            "config.yaml の version が未設定です（同梱 default_config.yaml を確認してください）"
        )
    try:
        version_i = int(version)
    except Exception as exc:
        raise RuntimeError(f"config.yaml の version は整数である必要があります: got={version!r}") from exc
    if version_i != 1:
        raise RuntimeError(f"未対応の config.yaml version です: got={version_i}")

    paths = _as_mapping(payload.get("paths"), key="paths")
    output_dir = _as_optional_path(paths.get("output_dir"))
    if output_dir is None:
        raise RuntimeError(
            "paths.output_dir が未設定です（同梱 default_config.yaml を確認してください）"
        )
    store_path = _as_optional_path(paths.get("store_path"))
    if store_path is None:
        raise RuntimeError(
            "paths.store_path が未設定です（同梱 default_config.yaml を確認してください）"
        )

    preview = _as_mapping(payload.get("preview"), key="preview")
    sampling = str(preview.get("sampling", "area")).strip().lower()
    if sampling not in SAMPLING_POLICIES:
        raise RuntimeError(
            f"preview.sampling は {SAMPLING_POLICIES} のいずれかである必要があります: got={sampling!r}"
        )
    preview_scale = _as_positive_float(preview.get("scale"), key="preview.scale")
    fallback_warn_after = _as_positive_float(
        preview.get("fallback_warn_after"), key="preview.fallback_warn_after"
    )

    interaction = _as_mapping(payload.get("interaction"), key="interaction")

    export = _as_mapping(payload.get("export"), key="export")
    png = _as_mapping(export.get("png"), key="export.png")
    png_scale = _as_positive_float(png.get("scale"), key="export.png.scale")

    cfg = RuntimeConfig(
        config_path=explicit_path or discovered_path,
        output_dir=output_dir,
        store_path=store_path,
        preview_interval_s=_as_positive_float(
            preview.get("interval_ms"), key="preview.interval_ms"
        )
        / 1000.0,
        preview_debounce_s=_as_positive_float(
            preview.get("debounce_ms"), key="preview.debounce_ms"
        )
        / 1000.0,
        preview_scale=max(1, int(round(preview_scale))),
        preview_sampling=sampling,
        alpha_threshold=_as_channel(preview.get("alpha_threshold"), key="preview.alpha_threshold"),
        dark_threshold=_as_channel(preview.get("dark_threshold"), key="preview.dark_threshold"),
        fallback_warn_after=int(fallback_warn_after),
        cell_size=_as_positive_float(interaction.get("cell_size"), key="interaction.cell_size"),
        min_draw_size=_as_positive_float(
            interaction.get("min_draw_size"), key="interaction.min_draw_size"
        ),
        min_resize_size=_as_positive_float(
            interaction.get("min_resize_size"), key="interaction.min_resize_size"
        ),
        handle_radius=_as_positive_float(
            interaction.get("handle_radius"), key="interaction.handle_radius"
        ),
        png_scale=max(1, int(round(png_scale))),
    )
    _CONFIG_CACHE = cfg
    return cfg


def output_root_dir() -> Path:
    """出力ファイルを保存する既定ルートディレクトリを返す。

    上書き順（後勝ち）:
    1) 同梱 default_config.yaml
    2) `./.rasterboard/config.yaml` / `~/.config/rasterboard/config.yaml`
    3) `set_config_path(...)` で指定したパス
    """

    cfg = runtime_config()
    return Path(cfg.output_dir)


__all__ = [
    "RuntimeConfig",
    "SAMPLING_POLICIES",
    "output_root_dir",
    "runtime_config",
    "set_config_path",
]
