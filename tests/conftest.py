"""Shared pytest fixtures for wiregen tests."""

from __future__ import annotations

import importlib
import sys
import uuid
from collections.abc import Callable, Iterator, Mapping
from pathlib import Path
from textwrap import dedent
from types import ModuleType
from typing import Any

import pytest

from wiregen.settings import GeneratorSettings


class SourceTree:
    """Writes a throwaway importable package and imports generated code from it."""

    def __init__(self, root: Path, package: str) -> None:
        self.root = root
        self.package = package
        self.path = root / package

    def write(self, files: Mapping[str, str]) -> Path:
        """Write ``files`` under the package; ``{pkg}`` is replaced by the package name."""
        self._ensure_package(self.path)
        for relative_path, text in files.items():
            path = self.path / relative_path
            path.parent.mkdir(parents=True, exist_ok=True)
            self._ensure_package(path.parent)
            path.write_text(dedent(text).lstrip().replace("{pkg}", self.package), encoding="utf-8")
        return self.path

    def write_generated(self, files: Mapping[str, str], *, subpackage: str = "di") -> None:
        target = self.path / subpackage
        target.mkdir(parents=True, exist_ok=True)
        self._ensure_package(target)
        for file_name, source in files.items():
            (target / file_name).write_text(source, encoding="utf-8")

    def import_generated(self, module: str, *, subpackage: str = "di") -> ModuleType:
        importlib.invalidate_caches()
        return importlib.import_module(f"{self.package}.{subpackage}.{module}")

    def settings(self, **values: Any) -> GeneratorSettings:
        values.setdefault("source_root", self.path)
        values.setdefault("import_root", self.package)
        return GeneratorSettings(**values)

    def _ensure_package(self, directory: Path) -> None:
        directory.mkdir(parents=True, exist_ok=True)
        init_file = directory / "__init__.py"
        if not init_file.exists():
            init_file.write_text("", encoding="utf-8")


@pytest.fixture()
def source_tree(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[SourceTree]:
    """Importable package under ``tmp_path`` with a unique name per test."""
    package = f"wiregen_app_{uuid.uuid4().hex[:12]}"
    monkeypatch.syspath_prepend(str(tmp_path))
    yield SourceTree(tmp_path, package)
    for module_name in list(sys.modules):
        if module_name == package or module_name.startswith(f"{package}."):
            del sys.modules[module_name]


@pytest.fixture()
def make_settings(tmp_path: Path) -> Callable[..., GeneratorSettings]:
    """Build settings rooted at ``tmp_path`` for in-memory generation."""

    def _make_settings(**values: Any) -> GeneratorSettings:
        values.setdefault("source_root", tmp_path)
        return GeneratorSettings(**values)

    return _make_settings

