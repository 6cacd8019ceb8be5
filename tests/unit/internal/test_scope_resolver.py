from __future__ import annotations

import logging
from textwrap import dedent

import pytest

from wiregen._internal.graph import DependencyGraphBuilder
from wiregen._internal.matcher import ContractMatcher
from wiregen._internal.partitioner import ModulePartitioner
from wiregen._internal.scanner import SourceScanner
from wiregen._internal.scopes import ScopeResolver, ScopeTable
from wiregen.declarations import Declaration, DeclarationIndex, ExportKind, Lifetime
from wiregen.settings import GeneratorSettings

_SOURCES = {
    "app.py": """
    class Config:
        pass


    # @scope transient
    config: Config = Config()


    class Repo:
        def __init__(self, config: Config) -> None:
            self.config = config


    # @scope singleton
    class Service:
        def __init__(self, repo: Repo) -> None:
            self.repo = repo


    class Handler:
        \"\"\"@scope transient\"\"\"

        def __init__(self, service: Service) -> None:
            self.service = service
    """,
}


def _resolve(default_lifetime: Lifetime = Lifetime.TRANSIENT) -> ScopeTable:
    settings = GeneratorSettings(default_lifetime=default_lifetime)
    sources = {path: dedent(text).lstrip() for path, text in _SOURCES.items()}
    index = SourceScanner(settings).scan_sources(sources).index
    partition = ModulePartitioner(settings).partition(index)
    graph = DependencyGraphBuilder(ContractMatcher(index, naming_pattern=None), partition).build()
    return ScopeResolver(index, default_lifetime=default_lifetime).resolve(graph)


def test_markers_override_the_default_lifetime() -> None:
    table = _resolve()

    assert dict(table.lifetimes) == {
        "Handler": Lifetime.TRANSIENT,
        "Repo": Lifetime.TRANSIENT,
        "Service": Lifetime.SINGLETON,
        "config": Lifetime.SINGLETON,
    }
    assert table.is_singleton("Service")
    assert table.lifetime_of("Repo") is Lifetime.TRANSIENT


def test_default_lifetime_applies_to_unmarked_providers() -> None:
    table = _resolve(Lifetime.SINGLETON)

    assert table.lifetime_of("Repo") is Lifetime.SINGLETON
    assert table.lifetime_of("Handler") is Lifetime.TRANSIENT
    assert dict(table.captured) == {}


def test_singleton_capturing_a_transient_is_kept_and_logged(
    caplog: pytest.LogCaptureFixture,
) -> None:
    caplog.set_level(logging.WARNING, logger="wiregen")

    table = _resolve()

    (edge,) = table.captured["Service"]
    assert edge.provider == "Repo"
    assert edge.parameter == "repo"
    assert list(table.captured) == ["Service"]
    assert any(
        "Singleton Service captures transient Repo" in record.getMessage()
        for record in caplog.records
    )


def test_values_are_always_singletons(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.WARNING, logger="wiregen")
    resolver = ScopeResolver(DeclarationIndex(), default_lifetime=Lifetime.TRANSIENT)
    value = Declaration(
        name="config",
        file_path="app.py",
        import_path="app",
        export_kind=ExportKind.VALUE,
        provides="Config",
        annotations={"scope": "transient"},
    )

    assert resolver.lifetime_for(value) is Lifetime.SINGLETON
    assert "values are always singleton" in caplog.text
