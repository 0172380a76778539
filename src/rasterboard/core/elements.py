"""
どこで: `src/rasterboard/core/elements.py`。
何を: ベクタ要素（矩形・円・テキスト）と、描画順を保持する要素列を定義する。
なぜ: 重なりの解決規則（後勝ち）を挿入順ではなく明示的な順序付き列として扱うため。
"""

from __future__ import annotations

import copy
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field, fields
from typing import Any, ClassVar, TypeAlias

from rasterboard.core.color import BACKGROUND, Color, normalize_hex
from rasterboard.core.errors import ValidationError

DEFAULT_FONT_SIZE = 8


def _non_negative_int(value: Any, *, name: str) -> int:
    try:
        iv = int(round(float(value)))
    except Exception as exc:
        raise ValidationError(f"{name} は整数である必要がある: got={value!r}") from exc
    return iv if iv > 0 else 0


@dataclass(slots=True)
class Rectangle:
    """塗りつぶし矩形。`(x, y)` は左上セル（1-indexed）。"""

    kind: ClassVar[str] = "rectangle"

    x: int
    y: int
    w: int
    h: int
    color: Color = BACKGROUND
    id: str = ""

    def __post_init__(self) -> None:
        self.x = _non_negative_int(self.x, name="x")
        self.y = _non_negative_int(self.y, name="y")
        self.w = max(1, _non_negative_int(self.w, name="w"))
        self.h = max(1, _non_negative_int(self.h, name="h"))
        self.color = normalize_hex(self.color)


@dataclass(slots=True)
class Circle:
    """塗りつぶし円。`(cx, cy)` は中心セル（1-indexed）、`r` は整数半径。"""

    kind: ClassVar[str] = "circle"

    cx: int
    cy: int
    r: int
    color: Color = BACKGROUND
    id: str = ""

    def __post_init__(self) -> None:
        self.cx = _non_negative_int(self.cx, name="cx")
        self.cy = _non_negative_int(self.cy, name="cy")
        self.r = _non_negative_int(self.r, name="r")
        self.color = normalize_hex(self.color)


@dataclass(slots=True)
class Text:
    """字模スタンプとして描くテキスト。`(x, y)` はアンカーセル（1-indexed）。"""

    kind: ClassVar[str] = "text"

    text: str
    x: int
    y: int
    color: Color = BACKGROUND
    font_size: int = DEFAULT_FONT_SIZE
    id: str = ""

    def __post_init__(self) -> None:
        self.text = str(self.text)
        self.x = _non_negative_int(self.x, name="x")
        self.y = _non_negative_int(self.y, name="y")
        self.font_size = max(1, _non_negative_int(self.font_size, name="font_size"))
        self.color = normalize_hex(self.color)


Element: TypeAlias = Rectangle | Circle | Text

ELEMENT_TYPES: dict[str, type[Rectangle] | type[Circle] | type[Text]] = {
    Rectangle.kind: Rectangle,
    Circle.kind: Circle,
    Text.kind: Text,
}


def element_to_dict(element: Element) -> dict[str, Any]:
    """要素を JSON 化可能な dict（`type` タグ付き）に変換して返す。"""

    out: dict[str, Any] = {"id": element.id, "type": element.kind}
    for f in fields(element):
        if f.name == "id":
            continue
        out[f.name] = getattr(element, f.name)
    return out


def element_from_dict(obj: object) -> Element:
    """`type` タグ付き dict から要素を復元して返す。

    Raises
    ------
    ValidationError
        未知の type、必須フィールド欠落、値が解釈できない場合。
    """

    if not isinstance(obj, Mapping):
        raise ValidationError(f"要素は object である必要がある: {obj!r}")
    kind = obj.get("type")
    cls = ELEMENT_TYPES.get(str(kind))
    if cls is None:
        raise ValidationError(f"未知の要素 type: {kind!r}")

    kwargs: dict[str, Any] = {}
    for f in fields(cls):
        if f.name in obj:
            kwargs[f.name] = obj[f.name]
    kwargs["id"] = str(obj.get("id") or "")
    try:
        return cls(**kwargs)
    except TypeError as exc:
        raise ValidationError(f"{kind} 要素のフィールドが不足している: {obj!r}") from exc


def update_element(element: Element, **changes: Any) -> Element:
    """要素のフィールドをその場で更新し、正規化し直して返す。

    Raises
    ------
    ValidationError
        要素に存在しないフィールド名が含まれる、または値を解釈できない場合。
        このとき要素は変更されない。
    """

    names = {f.name for f in fields(element)} - {"id"}
    unknown = sorted(set(changes) - names)
    if unknown:
        raise ValidationError(f"{element.kind} 要素に無いフィールド: {unknown}")
    # コピー上で正規化し、成功した場合だけ元の要素へ反映する。
    candidate = copy.copy(element)
    for name, value in changes.items():
        setattr(candidate, name, value)
    candidate.__post_init__()
    for f in fields(element):
        setattr(element, f.name, getattr(candidate, f.name))
    return element


@dataclass(slots=True)
class ElementList:
    """描画順（先頭が最背面）を持つ要素列。

    Notes
    -----
    - 重なりは後勝ち（painter's algorithm）。列の後ろの要素が前の要素を上書きする。
    - id は列内で一意。`add` は id 未設定なら `"<kind>-<n>"` を採番する。
    - 明示的な `remove` 以外で要素が消えることはない。
    """

    _items: list[Element] = field(default_factory=list)
    _counter: int = 0

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[Element]:
        return iter(list(self._items))

    def __contains__(self, element_id: object) -> bool:
        return any(e.id == element_id for e in self._items)

    def ids(self) -> list[str]:
        return [e.id for e in self._items]

    def _next_id(self, kind: str) -> str:
        existing = set(self.ids())
        while True:
            self._counter += 1
            candidate = f"{kind}-{self._counter}"
            if candidate not in existing:
                return candidate

    def add(self, element: Element) -> Element:
        """要素を最前面に追加し、確定した要素を返す。"""

        if not element.id or element.id in self:
            element.id = self._next_id(element.kind)
        self._items.append(element)
        return element

    def index_of(self, element_id: str) -> int:
        """id の描画順インデックスを返す。無ければ KeyError。"""

        for i, e in enumerate(self._items):
            if e.id == element_id:
                return i
        raise KeyError(element_id)

    def get(self, element_id: str) -> Element:
        return self._items[self.index_of(element_id)]

    def replace(self, element_id: str, element: Element) -> Element:
        """同じ描画位置の要素を差し替える（id は引き継ぐ）。"""

        idx = self.index_of(element_id)
        element.id = element_id
        self._items[idx] = element
        return element

    def remove(self, element_id: str) -> Element:
        idx = self.index_of(element_id)
        return self._items.pop(idx)

    def clear(self) -> None:
        self._items.clear()

    def reset(self, elements: Iterator[Element] | list[Element]) -> None:
        """列全体を置き換える（id 重複・欠落は採番し直す）。"""

        self._items.clear()
        for e in elements:
            self.add(e)

    def snapshot(self) -> tuple[Element, ...]:
        """現在の列のディープコピーを返す（以降の編集と共有しない）。"""

        return tuple(copy.deepcopy(e) for e in self._items)


__all__ = [
    "DEFAULT_FONT_SIZE",
    "ELEMENT_TYPES",
    "Circle",
    "Element",
    "ElementList",
    "Rectangle",
    "Text",
    "element_from_dict",
    "element_to_dict",
    "update_element",
]
