from __future__ import annotations

from wiregen.diagnostics import Diagnostic, DiagnosticKind, Severity


class WiregenError(Exception):
    """Represent a base class for all wiregen-specific failures.

    Catch this type when you want to handle any wiregen error path without
    matching each concrete exception class individually.
    """


class WiregenConfigurationError(WiregenError):
    """Signal invalid generator settings.

    Raised by ``ContainerGenerator`` before any source file is scanned, for
    example when a module pattern cannot be compiled, a module name is not a
    valid identifier, or the contract naming pattern is not a valid regular
    expression.

    Typical fixes include correcting the ``modules`` table or the
    ``contract_naming_pattern`` setting.
    """


class WiregenParseError(WiregenError):
    """Signal that a single source file could not be parsed.

    This error never escapes a generation run: it is converted into a
    ``ParseError`` warning diagnostic and the file, or the unreadable marker,
    is skipped.
    """

    def __init__(self, file_path: str, reason: str, *, line: int | None = None) -> None:
        self.file_path = file_path
        self.reason = reason
        self.line = line
        location = file_path if line is None else f"{file_path}:{line}"
        super().__init__(f"Could not parse {location}: {reason}")

    def to_diagnostic(self) -> Diagnostic:
        """Return the ``ParseError`` warning reported for this failure."""
        location = self.file_path if self.line is None else f"{self.file_path}:{self.line}"
        return Diagnostic(
            severity=Severity.WARNING,
            kind=DiagnosticKind.PARSE_ERROR,
            message=str(self),
            locations=(location,),
        )


class WiregenAnalysisError(WiregenError):
    """Signal a structural problem that aborts a generation run.

    ``diagnostic`` is the fatal finding; ``diagnostics`` holds every diagnostic
    collected up to and including it, so callers can render parse warnings
    next to the fatal error.
    """

    kind: DiagnosticKind

    def __init__(
        self,
        diagnostic: Diagnostic,
        diagnostics: tuple[Diagnostic, ...] = (),
    ) -> None:
        self.diagnostic = diagnostic
        self.diagnostics = diagnostics or (diagnostic,)
        super().__init__(diagnostic.message)

    @property
    def names(self) -> tuple[str, ...]:
        return self.diagnostic.names


class DuplicateDeclarationError(WiregenAnalysisError):
    """Signal that two declarations share a qualified name.

    Raised while merging parsed files into the declaration index, and by the
    emitter when two providers of one module map to the same accessor name.

    Typical fixes include renaming one of the declarations or making it
    private with a leading underscore.
    """

    kind = DiagnosticKind.DUPLICATE_DECLARATION


class UnresolvedDependencyError(WiregenAnalysisError):
    """Signal that a constructor or factory parameter has no provider.

    The diagnostic names the consumer, the parameter and the expected type.

    Typical fixes include exporting the missing class, adding an implementor
    for the contract, giving the parameter a default value, or moving the
    provider into a configured module.
    """

    kind = DiagnosticKind.UNRESOLVED_DEPENDENCY


class DuplicateImplementationError(WiregenAnalysisError):
    """Signal competing implementors of one contract.

    Raised when a module holds more than one implementor of a contract, or
    when a consumer outside those modules depends on a contract whose global
    implementors are ambiguous. The diagnostic names every candidate.
    """

    kind = DiagnosticKind.DUPLICATE_IMPLEMENTATION


class CircularDependencyError(WiregenAnalysisError):
    """Signal a dependency cycle confined to one module.

    The diagnostic lists the full cycle, for example ``A -> B -> A``.

    Typical fixes include extracting the shared behaviour into a third class
    or inverting one of the dependencies through a contract.
    """

    kind = DiagnosticKind.CIRCULAR_DEPENDENCY


class ModuleCycleError(WiregenAnalysisError):
    """Signal modules that depend on each other.

    Cross-module edges must point in one direction only. The diagnostic lists
    the module cycle, for example ``UserModule -> TodoModule -> UserModule``.
    """

    kind = DiagnosticKind.MODULE_CYCLE


__all__ = [
    "CircularDependencyError",
    "DuplicateDeclarationError",
    "DuplicateImplementationError",
    "ModuleCycleError",
    "UnresolvedDependencyError",
    "WiregenAnalysisError",
    "WiregenConfigurationError",
    "WiregenError",
    "WiregenParseError",
]
