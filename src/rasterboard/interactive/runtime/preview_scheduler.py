# どこで: `src/rasterboard/interactive/runtime/preview_scheduler.py`。
# 何を: 周期更新と編集後のデバウンス更新の 2 系統から、プレビュー更新を 1 本化して呼び出す。
# なぜ: タイマーの取り消し・再入防止をスレッド無しで扱い、時計を差し替えてテストできるようにするため。

from __future__ import annotations

import logging
import time
from collections.abc import Callable

_logger = logging.getLogger(__name__)


class PreviewScheduler:
    """プレビュー更新のスケジューラ。

    Parameters
    ----------
    refresh : Callable[[], None]
        プレビューを 1 回更新する処理。
    interval_s : float
        live preview 有効時の周期（秒）。
    debounce_s : float
        編集完了からの遅延（秒）。期間中の新しい編集は期限を延ばす。
    clock : Callable[[], float]
        単調増加する時刻（秒）を返す関数。

    Notes
    -----
    ホストのイベントループが `tick()` を呼ぶ。期限の来た周期更新とデバウンス更新は
    同じ tick では 1 回の `refresh()` にまとめる。更新中に届いた tick は無視する。
    """

    def __init__(
        self,
        refresh: Callable[[], None],
        *,
        interval_s: float,
        debounce_s: float,
        clock: Callable[[], float] = time.monotonic,
        live: bool = True,
    ) -> None:
        if float(interval_s) <= 0:
            raise ValueError("interval_s は正の値である必要がある")
        if float(debounce_s) < 0:
            raise ValueError("debounce_s は 0 以上である必要がある")
        self._refresh = refresh
        self._interval_s = float(interval_s)
        self._debounce_s = float(debounce_s)
        self._clock = clock
        self._running = False
        self._closed = False
        self._refresh_count = 0
        self._debounce_due: float | None = None
        self._periodic_due: float | None = None
        if live:
            self.set_live(True)

    @property
    def live(self) -> bool:
        return self._periodic_due is not None

    @property
    def pending(self) -> bool:
        """デバウンス更新が待機中なら True を返す。"""

        return self._debounce_due is not None

    @property
    def refresh_count(self) -> int:
        return self._refresh_count

    @property
    def closed(self) -> bool:
        return self._closed

    def set_live(self, enabled: bool) -> None:
        """周期更新を開始/停止する。停止してもデバウンス更新は残る。"""

        if self._closed:
            return
        if enabled:
            if self._periodic_due is None:
                self._periodic_due = self._clock() + self._interval_s
        else:
            self._periodic_due = None

    def notify_edit(self) -> None:
        """編集完了を通知し、デバウンス期限を今から張り直す。"""

        if self._closed:
            return
        self._debounce_due = self._clock() + self._debounce_s

    def next_deadline(self) -> float | None:
        """次に tick すべき時刻を返す。待機中のものが無ければ None。"""

        candidates = [t for t in (self._debounce_due, self._periodic_due) if t is not None]
        return min(candidates) if candidates else None

    def tick(self) -> bool:
        """期限の来た更新を実行し、`refresh()` を呼んだら True を返す。"""

        if self._closed or self._running:
            return False
        now = self._clock()
        debounce_due = self._debounce_due is not None and now >= self._debounce_due
        periodic_due = self._periodic_due is not None and now >= self._periodic_due
        if not (debounce_due or periodic_due):
            return False

        if debounce_due:
            self._debounce_due = None
        if self._periodic_due is not None and periodic_due:
            self._periodic_due = now + self._interval_s

        self._running = True
        try:
            self._refresh()
        finally:
            self._running = False
        self._refresh_count += 1
        return True

    def flush(self) -> bool:
        """待機中のデバウンス更新を即座に実行する。"""

        if self._debounce_due is None:
            return False
        self._debounce_due = self._clock()
        return self.tick()

    def close(self) -> None:
        """全ての待機を取り消し、以降の tick/通知を無視する。"""

        self._debounce_due = None
        self._periodic_due = None
        self._closed = True
        _logger.debug("プレビュースケジューラを停止しました: refreshes=%d", self._refresh_count)


__all__ = ["PreviewScheduler"]
