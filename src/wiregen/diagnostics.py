from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class Severity(str, Enum):
    """Severity of a diagnostic produced during a generation run."""

    FATAL = "fatal"
    """The run was aborted and no source was emitted."""

    WARNING = "warning"
    """The run continued; the affected input was skipped or defaulted."""


class DiagnosticKind(str, Enum):
    """Machine-readable category of a diagnostic."""

    DUPLICATE_DECLARATION = "DuplicateDeclaration"
    UNRESOLVED_DEPENDENCY = "UnresolvedDependency"
    DUPLICATE_IMPLEMENTATION = "DuplicateImplementation"
    CIRCULAR_DEPENDENCY = "CircularDependency"
    MODULE_CYCLE = "ModuleCycle"
    PARSE_ERROR = "ParseError"


@dataclass(frozen=True, slots=True)
class Diagnostic:
    """A single finding reported by the generator.

    ``names`` holds the qualified declaration (or module) names involved, in the
    order that best explains the problem: the cycle path for cycles, the
    candidate list for duplicate implementations, the consumer first for
    unresolved dependencies. ``locations`` holds ``path:line`` strings relative
    to the source root.
    """

    severity: Severity
    kind: DiagnosticKind
    message: str
    names: tuple[str, ...] = field(default=())
    locations: tuple[str, ...] = field(default=())

    @property
    def is_fatal(self) -> bool:
        return self.severity is Severity.FATAL

    def format(self) -> str:
        """Render the diagnostic as a single human-readable block."""
        lines = [f"[{self.severity.value}] {self.kind.value}: {self.message}"]
        lines.extend(f"    at {location}" for location in self.locations)
        return "\n".join(lines)


class DiagnosticCollector:
    """Ordered, append-only list of diagnostics for one run."""

    def __init__(self) -> None:
        self._items: list[Diagnostic] = []

    def add(self, diagnostic: Diagnostic) -> None:
        self._items.append(diagnostic)

    def extend(self, diagnostics: list[Diagnostic] | tuple[Diagnostic, ...]) -> None:
        self._items.extend(diagnostics)

    def snapshot(self) -> tuple[Diagnostic, ...]:
        return tuple(self._items)

    def warnings(self) -> tuple[Diagnostic, ...]:
        return tuple(item for item in self._items if not item.is_fatal)

    def __len__(self) -> int:
        return len(self._items)
