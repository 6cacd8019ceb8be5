from wiregen._internal.policies import OutputLayout, UnmatchedPolicy
from wiregen.declarations import (
    Declaration,
    DeclarationIndex,
    DeclarationKind,
    ExportKind,
    Lifetime,
    Parameter,
    ParameterKind,
)
from wiregen.diagnostics import Diagnostic, DiagnosticKind, Severity
from wiregen.exceptions import (
    CircularDependencyError,
    DuplicateDeclarationError,
    DuplicateImplementationError,
    ModuleCycleError,
    UnresolvedDependencyError,
    WiregenAnalysisError,
    WiregenConfigurationError,
    WiregenError,
    WiregenParseError,
)
from wiregen.generator import ContainerGenerator, GeneratedContainer, GeneratedModule
from wiregen.settings import DEFAULT_EXCLUDE, GeneratorSettings

__all__ = [
    "DEFAULT_EXCLUDE",
    "CircularDependencyError",
    "ContainerGenerator",
    "Declaration",
    "DeclarationIndex",
    "DeclarationKind",
    "Diagnostic",
    "DiagnosticKind",
    "DuplicateDeclarationError",
    "DuplicateImplementationError",
    "ExportKind",
    "GeneratedContainer",
    "GeneratedModule",
    "GeneratorSettings",
    "Lifetime",
    "ModuleCycleError",
    "OutputLayout",
    "Parameter",
    "ParameterKind",
    "Severity",
    "UnmatchedPolicy",
    "UnresolvedDependencyError",
    "WiregenAnalysisError",
    "WiregenConfigurationError",
    "WiregenError",
    "WiregenParseError",
]
