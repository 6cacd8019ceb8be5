from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import TypeAlias

from wiregen.diagnostics import Diagnostic, DiagnosticKind, Severity
from wiregen.exceptions import DuplicateDeclarationError

QualifiedName: TypeAlias = str
"""The exported identifier of a declaration; type references use the same token."""


class Lifetime(str, Enum):
    """Defines how often a provider is invoked by the generated container."""

    TRANSIENT = "transient"
    """A new instance is created every time the accessor is read."""

    SINGLETON = "singleton"
    """A single instance is created on first access and cached by the module container."""


class DeclarationKind(str, Enum):
    """Whether a declaration can be constructed or only implemented."""

    CLASS = "class"
    CONTRACT = "contract"


class ExportKind(str, Enum):
    """How an exported declaration produces its instance."""

    CLASS = "class"
    """Constructed by calling the class with its wired parameters."""

    FACTORY = "factory"
    """Produced by calling an exported factory function."""

    VALUE = "value"
    """A pre-built module-level object, imported as is."""


class ParameterKind(str, Enum):
    """Call convention for a wired parameter."""

    POSITIONAL = "positional"
    KEYWORD = "keyword"


@dataclass(frozen=True, slots=True)
class Parameter:
    """A constructor or factory parameter."""

    name: str
    type_ref: str | None
    """Bare type token the annotation reduces to, or ``None`` when unannotated."""
    kind: ParameterKind = ParameterKind.KEYWORD
    has_default: bool = False


@dataclass(frozen=True, slots=True, kw_only=True)
class Declaration:
    """One exported class, contract, factory function or pre-built value.

    Declarations are created once per scan and never mutated afterwards.
    Every downstream structure refers to them by ``name``.
    """

    name: QualifiedName
    file_path: str
    """Path relative to the source root, in POSIX form."""
    import_path: str
    """Dotted module path used by generated imports."""
    kind: DeclarationKind = DeclarationKind.CLASS
    export_kind: ExportKind = ExportKind.CLASS
    parameters: tuple[Parameter, ...] = ()
    supertypes: tuple[str, ...] = ()
    provides: str = ""
    """Type token this declaration provides; defaults to ``name``."""
    annotations: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    line: int = 1

    def __post_init__(self) -> None:
        if not self.provides:
            object.__setattr__(self, "provides", self.name)
        if not isinstance(self.annotations, MappingProxyType):
            object.__setattr__(self, "annotations", MappingProxyType(dict(self.annotations)))

    @property
    def location(self) -> str:
        return f"{self.file_path}:{self.line}"

    @property
    def is_contract(self) -> bool:
        return self.kind is DeclarationKind.CONTRACT

    @property
    def is_provider(self) -> bool:
        """Return whether the declaration can produce an instance."""
        return self.kind is DeclarationKind.CLASS


class DeclarationIndex:
    """Flattened table of every declaration found in a source tree.

    ``add`` is the only way declarations enter the index and rejects a second
    declaration with an already indexed name, so the index can be filled by the
    bundled scanner or by any external parser.
    """

    def __init__(self, declarations: list[Declaration] | tuple[Declaration, ...] = ()) -> None:
        self._by_name: dict[QualifiedName, Declaration] = {}
        for declaration in declarations:
            self.add(declaration)

    def add(self, declaration: Declaration) -> None:
        """Add a declaration, rejecting duplicate qualified names.

        Raises:
            DuplicateDeclarationError: If a declaration with the same name exists.

        """
        existing = self._by_name.get(declaration.name)
        if existing is not None:
            locations = tuple(sorted((existing.location, declaration.location)))
            message = (
                f"'{declaration.name}' is declared more than once: "
                f"{' and '.join(locations)}."
            )
            raise DuplicateDeclarationError(
                Diagnostic(
                    severity=Severity.FATAL,
                    kind=DiagnosticKind.DUPLICATE_DECLARATION,
                    message=message,
                    names=(declaration.name,),
                    locations=locations,
                ),
            )
        self._by_name[declaration.name] = declaration

    def get(self, name: QualifiedName) -> Declaration:
        return self._by_name[name]

    def find(self, name: QualifiedName) -> Declaration | None:
        return self._by_name.get(name)

    def contracts(self) -> list[Declaration]:
        return [item for item in self if item.is_contract]

    def providers(self) -> list[Declaration]:
        return [item for item in self if item.is_provider]

    def names(self) -> list[QualifiedName]:
        return sorted(self._by_name)

    def __iter__(self) -> Iterator[Declaration]:
        for name in sorted(self._by_name):
            yield self._by_name[name]

    def __contains__(self, name: object) -> bool:
        return name in self._by_name

    def __len__(self) -> int:
        return len(self._by_name)
