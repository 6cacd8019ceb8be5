from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from types import MappingProxyType

from wiregen._internal.graph import DependencyEdge, DependencyGraph
from wiregen.declarations import Declaration, DeclarationIndex, ExportKind, Lifetime, QualifiedName
from wiregen.diagnostics import Diagnostic
from wiregen.exceptions import WiregenParseError

logger = logging.getLogger(__name__)

SCOPE_ANNOTATION = "scope"


@dataclass(frozen=True, slots=True)
class ScopeTable:
    """Resolved lifetime of every provider in the graph.

    ``captured`` maps a singleton to the edges through which it receives a
    transient. The singleton is built once, so it keeps the single transient
    instance it was built with. ``diagnostics`` holds a ``ParseError`` warning
    for every unknown ``scope`` annotation, which falls back to the default.
    """

    lifetimes: Mapping[QualifiedName, Lifetime]
    captured: Mapping[QualifiedName, tuple[DependencyEdge, ...]]
    diagnostics: tuple[Diagnostic, ...] = ()

    def lifetime_of(self, name: QualifiedName) -> Lifetime:
        return self.lifetimes[name]

    def is_singleton(self, name: QualifiedName) -> bool:
        return self.lifetimes[name] is Lifetime.SINGLETON


class ScopeResolver:
    """Reads ``@scope`` markers and applies lifetime defaults."""

    def __init__(self, index: DeclarationIndex, *, default_lifetime: Lifetime) -> None:
        self._index = index
        self._default_lifetime = default_lifetime
        self._diagnostics: list[Diagnostic] = []

    def resolve(self, graph: DependencyGraph) -> ScopeTable:
        self._diagnostics = []
        lifetimes = {name: self.lifetime_for(self._index.get(name)) for name in graph.arguments}
        captured: dict[QualifiedName, tuple[DependencyEdge, ...]] = {}
        for name, edges in graph.arguments.items():
            if lifetimes[name] is not Lifetime.SINGLETON:
                continue
            transient_edges = tuple(
                edge for edge in edges if lifetimes[edge.provider] is Lifetime.TRANSIENT
            )
            if not transient_edges:
                continue
            captured[name] = transient_edges
            for edge in transient_edges:
                logger.warning(
                    "Singleton %s captures transient %s through parameter '%s'; "
                    "the same %s instance is reused for the singleton's whole lifetime",
                    name,
                    edge.provider,
                    edge.parameter,
                    edge.provider,
                )

        singleton_count = sum(lifetime is Lifetime.SINGLETON for lifetime in lifetimes.values())
        logger.info(
            "Resolved lifetimes: %d singleton, %d transient",
            singleton_count,
            len(lifetimes) - singleton_count,
        )
        return ScopeTable(
            lifetimes=MappingProxyType(lifetimes),
            captured=MappingProxyType(captured),
            diagnostics=tuple(self._diagnostics),
        )

    def lifetime_for(self, declaration: Declaration) -> Lifetime:
        """Return the lifetime of a single provider declaration."""
        annotated = declaration.annotations.get(SCOPE_ANNOTATION)
        if declaration.export_kind is ExportKind.VALUE:
            if annotated == Lifetime.TRANSIENT.value:
                logger.warning(
                    "Ignoring '@scope transient' on value %s at %s: values are always singleton",
                    declaration.name,
                    declaration.location,
                )
            return Lifetime.SINGLETON
        if not annotated:
            return self._default_lifetime
        try:
            return Lifetime(annotated)
        except ValueError:
            error = WiregenParseError(
                declaration.file_path,
                f"unknown scope {annotated!r} on '{declaration.name}'",
                line=declaration.line,
            )
            logger.warning("%s; using %s", error, self._default_lifetime.value)
            self._diagnostics.append(error.to_diagnostic())
            return self._default_lifetime
