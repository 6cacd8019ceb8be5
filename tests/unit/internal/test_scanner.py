from __future__ import annotations

import ast
from collections.abc import Callable
from pathlib import Path
from textwrap import dedent

import pytest

from wiregen._internal.scanner import SourceScanner, type_token
from wiregen.declarations import DeclarationKind, ExportKind, Parameter, ParameterKind
from wiregen.diagnostics import DiagnosticKind, Severity
from wiregen.exceptions import DuplicateDeclarationError
from wiregen.settings import GeneratorSettings


def _scan(settings: GeneratorSettings, files: dict[str, str]):
    sources = {path: dedent(text).lstrip() for path, text in files.items()}
    return SourceScanner(settings).scan_sources(sources)


def _token(annotation: str) -> str | None:
    expression = ast.parse(annotation, mode="eval").body
    return type_token(expression)


@pytest.mark.parametrize(
    ("annotation", "expected"),
    [
        ("Repo", "Repo"),
        ("repos.Repo", "Repo"),
        ("'Repo'", "Repo"),
        ("Optional[Repo]", "Repo"),
        ("typing.Optional[Repo]", "Repo"),
        ("Repo | None", "Repo"),
        ("None | Repo", "Repo"),
        ("Union[Repo, None]", "Repo"),
        ("Annotated[Repo, 'meta']", "Repo"),
        ("Repository[User]", "Repository"),
        ("'Optional[Repo]'", "Repo"),
        ("Repo | Cache", None),
        ("Union[Repo, Cache]", None),
        ("'not valid ('", None),
        ("42", None),
    ],
)
def test_type_token_reduces_annotations(annotation: str, expected: str | None) -> None:
    assert _token(annotation) == expected


def test_scanner_captures_constructor_parameters(
    make_settings: Callable[..., GeneratorSettings],
) -> None:
    result = _scan(
        make_settings(),
        {
            "services.py": """
            class Service:
                def __init__(
                    self,
                    repo: Repo,
                    /,
                    clock: "Clock",
                    *args: int,
                    retries: int = 3,
                    logger: Logger | None = None,
                    **kwargs: str,
                ) -> None:
                    self.repo = repo
            """,
        },
    )

    service = result.index.get("Service")
    assert service.kind is DeclarationKind.CLASS
    assert service.export_kind is ExportKind.CLASS
    assert service.import_path == "services"
    assert service.parameters == (
        Parameter(name="repo", type_ref="Repo", kind=ParameterKind.POSITIONAL),
        Parameter(name="clock", type_ref="Clock"),
        Parameter(name="retries", type_ref="int", has_default=True),
        Parameter(name="logger", type_ref="Logger", has_default=True),
    )
    assert result.diagnostics == ()


def test_scanner_detects_contracts(make_settings: Callable[..., GeneratorSettings]) -> None:
    result = _scan(
        make_settings(),
        {
            "contracts.py": """
            import abc
            from abc import ABC, ABCMeta, abstractmethod
            from typing import Protocol


            class IRepo(ABC):
                pass


            class IClock(Protocol):
                def now(self) -> float: ...


            class IMailer(metaclass=abc.ABCMeta):
                pass


            class ICache:
                @abstractmethod
                def get(self, key: str) -> str: ...


            class Plain:
                def get(self, key: str) -> str:
                    return key
            """,
        },
    )

    contracts = [declaration.name for declaration in result.index.contracts()]
    assert contracts == ["ICache", "IClock", "IMailer", "IRepo"]
    assert [declaration.name for declaration in result.index.providers()] == ["Plain"]
    assert result.index.get("IRepo").parameters == ()


def test_scanner_records_direct_supertypes(
    make_settings: Callable[..., GeneratorSettings],
) -> None:
    result = _scan(
        make_settings(),
        {
            "repos.py": """
            from typing import Generic, TypeVar

            T = TypeVar("T")


            class SqlRepo(contracts.IRepo, Generic[T], object):
                pass
            """,
        },
    )

    assert result.index.get("SqlRepo").supertypes == ("IRepo",)


def test_scanner_detects_factories_and_values(
    make_settings: Callable[..., GeneratorSettings],
) -> None:
    result = _scan(
        make_settings(),
        {
            "app.py": """
            class Settings:
                pass


            def create_engine(settings: Settings) -> "Engine":
                return Engine(settings)


            def makeClock() -> Clock:
                return Clock()


            def build_helper():
                return None


            # @factory
            def default_mailer(settings: Settings) -> Mailer:
                return Mailer(settings)


            def helper() -> Settings:
                return Settings()


            settings: Settings = Settings()
            timeout: int = 5

            # @value
            engine_options: EngineOptions = EngineOptions()
            """,
        },
    )

    index = result.index
    assert index.names() == [
        "Settings",
        "create_engine",
        "default_mailer",
        "engine_options",
        "makeClock",
        "settings",
    ]
    create_engine = index.get("create_engine")
    assert create_engine.export_kind is ExportKind.FACTORY
    assert create_engine.provides == "Engine"
    assert create_engine.parameters == (Parameter(name="settings", type_ref="Settings"),)
    assert index.get("default_mailer").annotations == {"factory": ""}
    assert index.get("settings").export_kind is ExportKind.VALUE
    assert index.get("settings").provides == "Settings"
    assert index.get("engine_options").provides == "EngineOptions"


def test_scanner_warns_about_marked_factory_without_return_annotation(
    make_settings: Callable[..., GeneratorSettings],
) -> None:
    result = _scan(
        make_settings(),
        {
            "app.py": '''
            def default_mailer():
                """Build the mailer.

                @factory
                """
                return None
            ''',
        },
    )

    assert len(result.index) == 0
    (diagnostic,) = result.diagnostics
    assert diagnostic.kind is DiagnosticKind.PARSE_ERROR
    assert diagnostic.severity is Severity.WARNING
    assert "return annotation" in diagnostic.message
    assert diagnostic.locations == ("app.py:1",)


def test_scanner_respects_all_and_private_names(
    make_settings: Callable[..., GeneratorSettings],
) -> None:
    result = _scan(
        make_settings(),
        {
            "public.py": """
            __all__ = ["Exported"]


            class Exported:
                pass


            class NotListed:
                pass
            """,
            "private.py": """
            class _Hidden:
                pass


            class Visible:
                pass
            """,
        },
    )

    assert result.index.names() == ["Exported", "Visible"]


def test_scanner_reads_scope_markers_from_comments_and_docstrings(
    make_settings: Callable[..., GeneratorSettings],
) -> None:
    result = _scan(
        make_settings(),
        {
            "services.py": '''
            from dataclasses import dataclass


            # Stores users.
            # @scope singleton
            @dataclass
            class Repo:
                pass


            class Service:
                """Business logic.

                @scope Transient
                """


            class Cache:
                """@scope forever"""
            ''',
        },
    )

    repo = result.index.get("Repo")
    assert repo.annotations == {"scope": "singleton"}
    assert repo.line == 6
    assert result.index.get("Service").annotations == {"scope": "transient"}
    assert result.index.get("Cache").annotations == {}
    (diagnostic,) = result.diagnostics
    assert diagnostic.kind is DiagnosticKind.PARSE_ERROR
    assert "unknown scope 'forever'" in diagnostic.message
    assert diagnostic.locations == ("services.py:18",)


def test_scanner_takes_dataclass_fields_as_parameters(
    make_settings: Callable[..., GeneratorSettings],
) -> None:
    result = _scan(
        make_settings(),
        {
            "models.py": """
            import dataclasses
            from dataclasses import dataclass, field
            from typing import ClassVar


            @dataclasses.dataclass(frozen=True)
            class Report:
                repo: Repo
                registry: ClassVar[Registry]
                clock: Clock = field(default_factory=Clock)
                cache: Cache = field(init=False)
                retries: int = 3


            class NoInit:
                repo: Repo
            """,
        },
    )

    assert result.index.get("Report").parameters == (
        Parameter(name="repo", type_ref="Repo"),
        Parameter(name="clock", type_ref="Clock", has_default=True),
        Parameter(name="retries", type_ref="int", has_default=True),
    )
    assert result.index.get("NoInit").parameters == ()


def test_scanner_reports_syntax_errors_and_continues(
    make_settings: Callable[..., GeneratorSettings],
) -> None:
    result = _scan(
        make_settings(),
        {
            "broken.py": """
            class Broken(
            """,
            "fine.py": """
            class Fine:
                pass
            """,
        },
    )

    assert result.index.names() == ["Fine"]
    (diagnostic,) = result.diagnostics
    assert diagnostic.kind is DiagnosticKind.PARSE_ERROR
    assert diagnostic.locations[0].startswith("broken.py")
    assert result.file_count == 2


def test_scanner_rejects_duplicate_declarations_across_files(
    make_settings: Callable[..., GeneratorSettings],
) -> None:
    with pytest.raises(DuplicateDeclarationError) as exc_info:
        _scan(
            make_settings(),
            {
                "a.py": "class Repo:\n    pass\n",
                "b.py": "# repo\n\nclass Repo:\n    pass\n",
                "c.py": "class Broken(\n",
            },
        )

    error = exc_info.value
    assert error.names == ("Repo",)
    assert error.diagnostic.locations == ("a.py:1", "b.py:3")
    assert [diagnostic.kind for diagnostic in error.diagnostics] == [
        DiagnosticKind.PARSE_ERROR,
        DiagnosticKind.DUPLICATE_DECLARATION,
    ]


def test_scanner_builds_import_paths(make_settings: Callable[..., GeneratorSettings]) -> None:
    files = {
        "__init__.py": "class Root:\n    pass\n",
        "users/__init__.py": "class UsersPackage:\n    pass\n",
        "users/repo.py": "class UserRepo:\n    pass\n",
    }

    rooted = _scan(make_settings(import_root="app.core"), files)
    assert rooted.index.get("Root").import_path == "app.core"
    assert rooted.index.get("UsersPackage").import_path == "app.core.users"
    assert rooted.index.get("UserRepo").import_path == "app.core.users.repo"

    unrooted = _scan(make_settings(), files)
    assert unrooted.index.names() == ["UserRepo", "UsersPackage"]
    (diagnostic,) = unrooted.diagnostics
    assert "import_root" in diagnostic.message


def test_scanner_skips_unimportable_files_without_declarations(
    make_settings: Callable[..., GeneratorSettings],
) -> None:
    result = _scan(
        make_settings(),
        {
            "__init__.py": "",
            "my-scripts/run.py": "class Runner:\n    pass\n",
        },
    )

    assert len(result.index) == 0
    (diagnostic,) = result.diagnostics
    assert diagnostic.locations == ("my-scripts/run.py",)
    assert "not an importable module" in diagnostic.message


def test_scanner_discovers_files_with_include_and_exclude(tmp_path: Path) -> None:
    for relative_path in [
        "app/users/repo.py",
        "app/users/test_repo.py",
        "app/todos/service.py",
        "scripts/run.py",
        "app/readme.txt",
    ]:
        path = tmp_path / relative_path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("", encoding="utf-8")

    scanner = SourceScanner(
        GeneratorSettings(
            source_root=tmp_path,
            include=("app/**/*.py",),
            exclude=("test_*.py",),
        ),
    )

    assert scanner.discover() == ["app/todos/service.py", "app/users/repo.py"]


def test_scanner_reports_undecodable_files(tmp_path: Path) -> None:
    (tmp_path / "binary.py").write_bytes(b"\xff\xfe\x00class")
    (tmp_path / "fine.py").write_text("class Fine:\n    pass\n", encoding="utf-8")

    result = SourceScanner(GeneratorSettings(source_root=tmp_path)).scan()

    assert result.index.names() == ["Fine"]
    (diagnostic,) = result.diagnostics
    assert diagnostic.kind is DiagnosticKind.PARSE_ERROR
    assert diagnostic.locations == ("binary.py",)


def test_scanner_thread_pool_matches_sequential_scan(tmp_path: Path) -> None:
    for index in range(12):
        (tmp_path / f"module_{index:02d}.py").write_text(
            f"class Service{index:02d}:\n"
            "    def __init__(self, repo: Repo) -> None:\n"
            "        pass\n",
            encoding="utf-8",
        )
    (tmp_path / "broken.py").write_text("def broken(:\n", encoding="utf-8")

    sequential = SourceScanner(GeneratorSettings(source_root=tmp_path)).scan()
    threaded = SourceScanner(GeneratorSettings(source_root=tmp_path, max_workers=4)).scan()

    assert threaded.index.names() == sequential.index.names()
    assert [item.location for item in threaded.index] == [
        item.location for item in sequential.index
    ]
    assert threaded.diagnostics == sequential.diagnostics
    assert threaded.file_count == 13


def test_scanner_takes_constructor_of_nearest_base(
    make_settings: Callable[..., GeneratorSettings],
) -> None:
    result = _scan(
        make_settings(),
        {
            "base.py": """
            from abc import ABC, abstractmethod


            class _Base:
                def __init__(self, clock: Clock) -> None:
                    self.clock = clock


            class Derived(_Base):
                pass


            class IHandler(ABC):
                def __init__(self, repo: Repo) -> None:
                    self.repo = repo

                @abstractmethod
                def handle(self) -> None: ...
            """,
            "other.py": """
            class Child(Derived):
                pass


            class Handler(IHandler):
                def handle(self) -> None:
                    pass


            class Own(Derived):
                def __init__(self) -> None:
                    super().__init__(Clock())


            class Foreign(External):
                pass
            """,
        },
    )

    clock = (Parameter(name="clock", type_ref="Clock"),)
    assert result.index.get("Derived").parameters == clock
    assert result.index.get("Child").parameters == clock
    assert result.index.get("Handler").parameters == (Parameter(name="repo", type_ref="Repo"),)
    assert result.index.get("Own").parameters == ()
    assert result.index.get("Foreign").parameters == ()
    assert result.index.get("IHandler").parameters == ()


def test_scanner_skips_generated_container_sources(
    make_settings: Callable[..., GeneratorSettings],
) -> None:
    result = _scan(
        make_settings(),
        {
            "di/container.py": '''
            """
            Generated dependency injection composition root.

            Generated by: wiregen.generator.ContainerGenerator.generate
            """

            from __future__ import annotations


            class Container:
                pass


            def build_container() -> Container:
                return Container()
            ''',
            "repo.py": """
            class Repo:
                pass
            """,
        },
    )

    assert result.index.names() == ["Repo"]
    assert result.diagnostics == ()
    assert result.file_count == 2


def test_scanner_skips_tests_and_virtual_environments_by_default(tmp_path: Path) -> None:
    for relative_path in [
        "app/repo.py",
        "app/test_repo.py",
        "app/repo_test.py",
        "app/tests/fixtures.py",
        "conftest.py",
        "tests/helpers.py",
        ".venv/lib/site.py",
    ]:
        path = tmp_path / relative_path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("", encoding="utf-8")

    scanner = SourceScanner(GeneratorSettings(source_root=tmp_path))

    assert scanner.discover() == ["app/repo.py"]
