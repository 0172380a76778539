"""rasterboard のパッケージ間依存と、宣言済み依存ライブラリの境界を検査するテスト。"""

from __future__ import annotations

import ast
import re
import sys
import tomllib
from pathlib import Path

# 配布名 → import 名
_DIST_IMPORT_NAMES = {"numpy": "numpy", "PyYAML": "yaml", "Pillow": "PIL"}


def _repo_root() -> Path:
    path = Path(__file__).resolve()
    for parent in path.parents:
        if (parent / "src").is_dir() and (parent / "tests").is_dir():
            return parent
    raise RuntimeError("repo root が見つからない")


def _package_root() -> Path:
    return _repo_root() / "src" / "rasterboard"


def _iter_py_files(root: Path) -> list[Path]:
    if root.is_file():
        return [root]
    return sorted(p for p in root.rglob("*.py") if p.is_file())


def _imports_in_file(path: Path) -> tuple[set[str], list[int]]:
    """ファイル内の absolute import 先と、相対 import の行番号を返す。

    関数内の遅延 import（`import yaml` など）も対象に含める。
    """

    tree = ast.parse(path.read_text(encoding="utf-8"))
    modules: set[str] = set()
    relative: list[int] = []
    for node in ast.walk(tree):
        if isinstance(node, ast.Import):
            modules.update(str(alias.name) for alias in node.names)
        elif isinstance(node, ast.ImportFrom):
            if node.level:
                relative.append(node.lineno)
                continue
            base = str(node.module)
            modules.add(base)
            modules.update(f"{base}.{alias.name}" for alias in node.names if alias.name != "*")
    return modules, relative


def _assert_no_forbidden_imports(*, root: Path, forbidden_prefixes: tuple[str, ...]) -> None:
    repo_root = _repo_root()
    violations: list[str] = []
    for path in _iter_py_files(root):
        modules, _ = _imports_in_file(path)
        bad = sorted(m for m in modules if m.startswith(forbidden_prefixes))
        if bad:
            violations.append(f"{path.relative_to(repo_root)}: {', '.join(bad)}")
    if violations:
        joined = "\n".join(violations)
        raise AssertionError(f"依存境界違反の import を検出:\n{joined}")


def _declared_import_names() -> set[str]:
    data = tomllib.loads((_repo_root() / "pyproject.toml").read_text(encoding="utf-8"))
    names = set()
    for spec in data["project"]["dependencies"]:
        dist = re.split(r"[<>=!~;\[ ]", spec, maxsplit=1)[0]
        names.add(_DIST_IMPORT_NAMES[dist])
    return names


def test_core_does_not_depend_on_export_or_interactive() -> None:
    _assert_no_forbidden_imports(
        root=_package_root() / "core",
        forbidden_prefixes=("rasterboard.export", "rasterboard.interactive"),
    )


def test_export_does_not_depend_on_interactive() -> None:
    _assert_no_forbidden_imports(
        root=_package_root() / "export",
        forbidden_prefixes=("rasterboard.interactive",),
    )


def test_pointer_state_machines_do_not_touch_files_or_storage() -> None:
    interactive = _package_root() / "interactive"
    for name in ("tools.py", "controller.py"):
        _assert_no_forbidden_imports(
            root=interactive / name,
            forbidden_prefixes=(
                "rasterboard.export",
                "rasterboard.core.kv_store",
                "rasterboard.core.snapshots",
            ),
        )


def test_preview_scheduler_is_independent_of_board_state() -> None:
    _assert_no_forbidden_imports(
        root=_package_root() / "interactive" / "runtime",
        forbidden_prefixes=("rasterboard.interactive.session", "rasterboard.interactive.controller"),
    )


def test_package_uses_absolute_imports_only() -> None:
    repo_root = _repo_root()
    found = []
    for path in _iter_py_files(_package_root()):
        _, relative = _imports_in_file(path)
        found.extend(f"{path.relative_to(repo_root)}:{line}" for line in relative)

    assert found == []


def test_third_party_imports_are_declared_in_pyproject() -> None:
    allowed = set(sys.stdlib_module_names) | {"rasterboard"} | _declared_import_names()
    repo_root = _repo_root()
    undeclared = []
    for path in _iter_py_files(_package_root()):
        modules, _ = _imports_in_file(path)
        for top in sorted({m.split(".", 1)[0] for m in modules}):
            if top not in allowed:
                undeclared.append(f"{path.relative_to(repo_root)}: {top}")

    assert undeclared == []
    assert _declared_import_names() == {"numpy", "yaml", "PIL"}
