"""
どこで: `src/rasterboard/interactive/session.py`。
何を: 1 枚のボードの編集状態（grid・要素列・色・選択・名前）と、ライブラリ/プレビュー/操作系を束ねる。
なぜ: 大域状態を持たずに、複数の独立したセッションをそれぞれテストできるようにするため。
"""

from __future__ import annotations

import copy
import logging
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

from rasterboard.core.color import BACKGROUND, Color, coerce_color
from rasterboard.core.compositor import composite, overlay, stamp_glyph
from rasterboard.core.downsample import Downsampler, PreviewResult
from rasterboard.core.elements import Element, ElementList, update_element
from rasterboard.core.errors import (
    FormatError,
    SnapshotNotFound,
    StorageUnavailable,
    ValidationError,
)
from rasterboard.core.glyphs import Glyph, GlyphLibrary, GlyphResolver
from rasterboard.core.kv_store import JsonFileStore, KeyValueStore
from rasterboard.core.pixel_grid import GRID_HEIGHT, GRID_WIDTH, Cell, PixelGrid, region_cells
from rasterboard.core.runtime_config import RuntimeConfig, runtime_config
from rasterboard.core.snapshots import (
    Snapshot,
    SnapshotLibrary,
    SnapshotSummary,
    build_snapshot,
    utc_now,
)
from rasterboard.export.board_file import read_board_file, write_board_file
from rasterboard.export.image import export_grid_png
from rasterboard.export.text import export_text
from rasterboard.interactive.controller import InteractionController, PointerResult
from rasterboard.interactive.runtime.preview_scheduler import PreviewScheduler

_logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Notice:
    """UI へ返す通知 1 件。level は "info" / "warning" / "error"。"""

    level: str
    message: str


class BoardSession:
    """編集セッション。

    Notes
    -----
    - grid と要素列へ書き込むのはこのオブジェクトだけ。
    - UI から呼ばれる操作は失敗を例外ではなく `notices` への追記で返す。
      失敗した読み込み/検証は grid・要素列・色・名前を一切変更しない。
    - 要素列を変更する操作は grid を合成し直し、デバウンス付きでプレビュー更新を予約する。
    """

    def __init__(
        self,
        *,
        store: KeyValueStore | None = None,
        config: RuntimeConfig | None = None,
        width: int = GRID_WIDTH,
        height: int = GRID_HEIGHT,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = utc_now,
        downsampler: Downsampler | None = None,
        live_preview: bool = True,
    ) -> None:
        cfg = config if config is not None else runtime_config()
        self.config = cfg
        self.grid = PixelGrid(width, height)
        self.elements = ElementList()
        self.current_color: Color = BACKGROUND
        self.name = ""
        self.selection: set[Cell] = set()
        self.notices: list[Notice] = []
        self.preview: PreviewResult | None = None
        self._now = now
        self._resolver: GlyphResolver | None = None

        self.store = store if store is not None else JsonFileStore(cfg.store_path)
        self.glyph_library = GlyphLibrary(self.store)
        self.snapshot_library = SnapshotLibrary(self.store, width=width, height=height, now=now)
        self.library_enabled = self.snapshot_library.available()
        if not self.library_enabled:
            _logger.warning("ストアにアクセスできないためライブラリ機能を無効化します")

        self.downsampler = downsampler or Downsampler(
            width=width,
            height=height,
            scale=cfg.preview_scale,
            policy=cfg.preview_sampling,
            alpha_threshold=cfg.alpha_threshold,
            dark_threshold=cfg.dark_threshold,
            fallback_warn_after=cfg.fallback_warn_after,
        )
        self.controller = InteractionController.from_config(cfg, width=width, height=height)
        self.scheduler = PreviewScheduler(
            self.refresh_preview,
            interval_s=cfg.preview_interval_s,
            debounce_s=cfg.preview_debounce_s,
            clock=clock,
            live=live_preview,
        )

    # --- notices -----------------------------------------------------------

    def _notify(self, level: str, message: str) -> None:
        self.notices.append(Notice(level=level, message=message))

    def drain_notices(self) -> list[Notice]:
        """溜まった通知を取り出して空にする。"""

        out = list(self.notices)
        self.notices.clear()
        return out

    # --- state -------------------------------------------------------------

    @property
    def painted_count(self) -> int:
        return self.grid.painted_count

    def set_color(self, value: object) -> Color:
        """現在色を設定して返す。解釈できない値なら現在色を維持して通知する。"""

        try:
            self.current_color = coerce_color(value)
        except ValidationError as exc:
            self._notify("error", f"色を解釈できません: {exc}")
        return self.current_color

    def set_name(self, name: str) -> None:
        self.name = str(name).strip()

    def glyphs(self) -> GlyphResolver:
        """字模の対応表（文字 → 最新バリアント）を返す。ストア不可なら空。"""

        if self._resolver is None:
            try:
                self._resolver = self.glyph_library.resolver()
            except StorageUnavailable:
                _logger.warning("字模ライブラリを読めないため字模無しで描画します")
                self._resolver = GlyphResolver()
        return self._resolver

    def _edited(self) -> None:
        self.scheduler.notify_edit()

    def recomposite(self) -> None:
        """要素列から grid を合成し直す。"""

        composite(list(self.elements), self.grid, glyphs=self.glyphs())
        self._edited()

    # --- elements ----------------------------------------------------------

    def add_element(self, element: Element) -> Element:
        """要素を最前面に追加して合成し直す。"""

        added = self.elements.add(element)
        self.recomposite()
        return added

    def update_element(self, element_id: str, **changes: Any) -> Element | None:
        """id の要素のフィールドを更新する。失敗時は通知して None を返す。"""

        try:
            element = self.elements.get(element_id)
            update_element(element, **changes)
        except KeyError:
            self._notify("error", f"要素が見つかりません: {element_id}")
            return None
        except ValidationError as exc:
            self._notify("error", f"要素を更新できません: {exc}")
            return None
        self.recomposite()
        return element

    def remove_element(self, element_id: str) -> Element | None:
        try:
            removed = self.elements.remove(element_id)
        except KeyError:
            self._notify("error", f"要素が見つかりません: {element_id}")
            return None
        if self.controller.selected_id == element_id:
            self.controller.selected_id = None
        self.recomposite()
        return removed

    def list_elements(self) -> list[Element]:
        return list(self.elements)

    # --- cells -------------------------------------------------------------

    def paint_cell(self, col: int, row: int) -> int:
        """セルを現在色で塗る。選択があれば選択全体を塗って選択を解除する。"""

        if self.selection:
            return self.apply_selection()
        changed = self.grid.paint([(col, row)], self.current_color)
        self._edited()
        return changed

    def toggle_cell(self, col: int, row: int) -> bool:
        """セルの選択を反転し、選択状態になったら True を返す。"""

        cell = (int(col), int(row))
        if not self.grid.in_bounds(*cell):
            return False
        if cell in self.selection:
            self.selection.discard(cell)
            return False
        self.selection.add(cell)
        return True

    def select_cells(self, cells: Iterable[Cell]) -> None:
        self.selection = {
            (int(c), int(r)) for c, r in cells if self.grid.in_bounds(c, r)
        }

    def clear_selection(self) -> None:
        self.selection.clear()

    def apply_selection(self) -> int:
        """選択セルを現在色で塗り、選択を解除する。"""

        changed = self.grid.paint(sorted(self.selection), self.current_color)
        self.clear_selection()
        self._edited()
        return changed

    def erase_selection(self) -> int:
        """選択セルを背景色へ戻し、選択を解除する。"""

        changed = self.grid.paint(sorted(self.selection), BACKGROUND)
        self.clear_selection()
        self._edited()
        return changed

    def fill_region(self, x1: int, y1: int, x2: int, y2: int) -> int:
        """2 隅（任意順、grid 内に clamp）の矩形を現在色で塗る。"""

        cells = region_cells(x1, y1, x2, y2, width=self.grid.width, height=self.grid.height)
        changed = self.grid.paint(cells, self.current_color)
        self._edited()
        return changed

    def clear_canvas(self) -> None:
        """全セルを背景色へ戻し、選択を解除する（要素列は残す）。"""

        self.grid.clear()
        self.clear_selection()
        self._edited()

    # --- glyphs ------------------------------------------------------------

    def add_glyph(self, text: str) -> Glyph | None:
        """字模定義テキストを解析してライブラリへ追加する。"""

        try:
            glyph = self.glyph_library.add_text(text)
        except FormatError as exc:
            self._notify("error", f"字模を解析できません: {exc}")
            return None
        except StorageUnavailable as exc:
            _logger.warning("字模を保存できません: %s", exc)
            self._notify("warning", f"字模を保存できません: {exc}")
            return None
        self._resolver = None
        self._notify("info", f"字模 {glyph.character} を追加しました")
        return glyph

    def list_glyphs(self) -> list[Glyph]:
        try:
            return self.glyph_library.entries()
        except StorageUnavailable as exc:
            self._notify("warning", f"字模ライブラリを読めません: {exc}")
            return []

    def remove_glyph(self, glyph_id: str) -> bool:
        try:
            self.glyph_library.remove(glyph_id)
        except KeyError:
            self._notify("error", f"字模が見つかりません: {glyph_id}")
            return False
        except StorageUnavailable as exc:
            self._notify("warning", f"字模ライブラリへ書き込めません: {exc}")
            return False
        self._resolver = None
        return True

    def stamp_glyph(self, glyph_id: str, *, col: int = 1, row: int = 1) -> bool:
        """字模を `(col, row)` を左上として現在色で貼り付ける。"""

        try:
            glyph = self.glyph_library.get(glyph_id)
        except KeyError:
            self._notify("error", f"字模が見つかりません: {glyph_id}")
            return False
        except StorageUnavailable as exc:
            self._notify("warning", f"字模ライブラリを読めません: {exc}")
            return False
        stamp_glyph(glyph, self.grid, col=col, row=row, color=self.current_color)
        self._edited()
        return True

    # --- snapshots ---------------------------------------------------------

    def build_snapshot(self) -> Snapshot:
        return build_snapshot(
            self.grid,
            list(self.elements),
            name=self.name,
            current_color=self.current_color,
            now=self._now,
        )

    def apply_snapshot(self, snapshot: Snapshot) -> None:
        """検証済みスナップショットを live 状態へ反映する。

        Notes
        -----
        pixels を写した上に、要素列を初期化せずに重ね塗りする。
        名前は空でない場合だけ置き換える。
        """

        if (snapshot.width, snapshot.height) != (self.grid.width, self.grid.height):
            raise ValidationError(
                "grid 寸法が一致しません: "
                f"got={snapshot.width}x{snapshot.height}, expected={self.grid.width}x{self.grid.height}"
            )
        self.controller.cancel()
        self.controller.selected_id = None
        self.grid.load_hex_rows(snapshot.pixels)
        self.clear_selection()
        if snapshot.name:
            self.name = snapshot.name
        self.current_color = snapshot.current_color
        self.elements.reset([copy.deepcopy(e) for e in snapshot.elements])
        overlay(list(self.elements), self.grid, glyphs=self.glyphs())
        self._edited()

    def _disable_library(self, exc: StorageUnavailable) -> None:
        _logger.warning("ボードライブラリを利用できません: %s", exc)
        self.library_enabled = False
        self._notify("warning", f"ボードライブラリを利用できません: {exc}")

    def save_snapshot(self, snapshot: Snapshot | None = None) -> str | None:
        """スナップショット（未指定なら現在の状態）をライブラリへ保存して id を返す。"""

        if not self.library_enabled:
            return None
        try:
            return self.snapshot_library.save(snapshot or self.build_snapshot())
        except StorageUnavailable as exc:
            self._disable_library(exc)
            return None

    def list_snapshots(self) -> list[SnapshotSummary]:
        if not self.library_enabled:
            return []
        try:
            return self.snapshot_library.list()
        except StorageUnavailable as exc:
            self._disable_library(exc)
            return []

    def load_snapshot(self, snapshot_id: str) -> bool:
        """ライブラリのスナップショットを適用する。"""

        if not self.library_enabled:
            return False
        try:
            snapshot = self.snapshot_library.load(snapshot_id)
        except SnapshotNotFound:
            self._notify("error", f"ボードが見つかりません: {snapshot_id}")
            return False
        except ValidationError as exc:
            self._notify("error", f"ボードを読み込めません: {exc}")
            return False
        except StorageUnavailable as exc:
            self._disable_library(exc)
            return False
        self.apply_snapshot(snapshot)
        return True

    def switch_to_snapshot(self, snapshot_id: str) -> bool:
        """現在のボードを自動保存してから、選んだボードへ切り替える。"""

        self.save_snapshot()
        return self.load_snapshot(snapshot_id)

    def remove_snapshot(self, snapshot_id: str) -> bool:
        if not self.library_enabled:
            return False
        try:
            self.snapshot_library.remove(snapshot_id)
        except SnapshotNotFound:
            self._notify("error", f"ボードが見つかりません: {snapshot_id}")
            return False
        except StorageUnavailable as exc:
            self._disable_library(exc)
            return False
        return True

    # --- files -------------------------------------------------------------

    def export_text(self, fmt: str = "plain", *, directory: str | Path | None = None) -> Path | None:
        """grid をテキスト形式で書き出す。"""

        try:
            return export_text(
                self.grid, fmt=fmt, name=self.name, directory=directory, now=self._now
            )
        except (OSError, ValueError) as exc:
            _logger.exception("テキストの書き出しに失敗しました")
            self._notify("error", f"書き出しに失敗しました: {exc}")
            return None

    def export_board(self, *, directory: str | Path | None = None) -> Path | None:
        """現在のボードを `.board.json` に書き出し、ライブラリにも保存する。"""

        snapshot = self.build_snapshot()
        self.save_snapshot(snapshot)
        try:
            return write_board_file(snapshot, directory=directory, now=self._now)
        except OSError as exc:
            _logger.exception("ボードの書き出しに失敗しました")
            self._notify("error", f"ボードの書き出しに失敗しました: {exc}")
            return None

    def export_png(self, path: str | Path, *, scale: int | None = None) -> Path | None:
        try:
            return export_grid_png(self.grid, path, scale=scale)
        except (OSError, ValueError) as exc:
            _logger.exception("PNG の書き出しに失敗しました")
            self._notify("error", f"PNG の書き出しに失敗しました: {exc}")
            return None

    def import_board(self, path: str | Path) -> bool:
        """`.board.json` を読み込んで適用し、ライブラリへ保存する。"""

        try:
            snapshot = read_board_file(path, width=self.grid.width, height=self.grid.height)
        except (OSError, ValidationError) as exc:
            _logger.exception("ボードの読み込みに失敗しました: %s", path)
            self._notify("error", f"ボードを読み込めません: {exc}")
            return False
        self.apply_snapshot(snapshot)
        self.save_snapshot(snapshot)
        return True

    # --- pointer -----------------------------------------------------------

    def set_tool(self, tool: str) -> None:
        had_active = self.controller.state != "idle"
        self._apply_pointer(self.controller.set_tool(tool))
        if had_active:
            self.recomposite()

    def pointer_down(self, x: float, y: float, *, toggle: bool = False) -> PointerResult:
        result = self.controller.pointer_down(
            x,
            y,
            list(self.elements),
            color=self.current_color,
            glyphs=self.glyphs(),
            toggle=toggle,
        )
        self._apply_pointer(result)
        return result

    def pointer_move(self, x: float, y: float) -> PointerResult:
        result = self.controller.pointer_move(x, y)
        self._apply_pointer(result)
        return result

    def pointer_up(self, x: float, y: float) -> PointerResult:
        result = self.controller.pointer_up(x, y)
        self._apply_pointer(result)
        return result

    def cancel_interaction(self) -> PointerResult:
        result = self.controller.cancel()
        self._apply_pointer(result)
        return result

    def _apply_pointer(self, result: PointerResult) -> None:
        kind = result.kind
        if kind == "paint":
            self.paint_cell(*result.cells[0])
        elif kind == "toggle":
            self.toggle_cell(*result.cells[0])
        elif kind == "add" and result.element is not None:
            self.add_element(result.element)
            self.controller.selected_id = result.element.id
        elif kind == "move":
            self._edited()
        elif kind in ("commit", "cancel"):
            self.recomposite()
        elif kind == "select_cells":
            self.select_cells(result.cells)
        elif kind == "cancel_selection":
            self.clear_selection()

    # --- preview -----------------------------------------------------------

    def refresh_preview(self) -> PreviewResult:
        """要素列のコピーからプレビューを 1 回生成する。"""

        self.preview = self.downsampler.downsample(
            self.elements.snapshot(), glyphs=self.glyphs()
        )
        return self.preview

    def set_live_preview(self, enabled: bool) -> None:
        self.scheduler.set_live(enabled)

    def tick(self) -> bool:
        """ホストのイベントループから呼ぶ。プレビューを更新したら True。"""

        return self.scheduler.tick()

    def close(self) -> None:
        """スケジューラを止め、操作中の状態機械を取り消す。"""

        self.controller.cancel()
        self.scheduler.close()


__all__ = ["BoardSession", "Notice"]
