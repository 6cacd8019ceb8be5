from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import NoReturn

from wiregen._internal.matcher import ContractMatcher
from wiregen._internal.partitioner import ModulePartition
from wiregen.declarations import Declaration, Parameter, ParameterKind, QualifiedName
from wiregen.diagnostics import Diagnostic, DiagnosticKind, Severity
from wiregen.exceptions import UnresolvedDependencyError

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class DependencyEdge:
    """``consumer -> provider`` created by one wired parameter."""

    consumer: QualifiedName
    provider: QualifiedName
    parameter: str
    type_ref: str
    positional: bool
    consumer_module: str
    provider_module: str

    @property
    def is_cross_module(self) -> bool:
        return self.consumer_module != self.provider_module


@dataclass(frozen=True, slots=True)
class DependencyGraph:
    """Directed provider graph split into per-module subgraphs.

    ``arguments`` lists, per provider, the edges of its wired parameters in
    call order. Parameters left to their default have no edge.
    """

    modules: tuple[str, ...]
    nodes: Mapping[str, tuple[QualifiedName, ...]]
    """Providers of each module, in qualified-name order."""
    arguments: Mapping[QualifiedName, tuple[DependencyEdge, ...]]
    module_dependencies: Mapping[str, tuple[str, ...]]
    """Modules each module needs as constructor inputs, sorted."""
    module_by_name: Mapping[QualifiedName, str]

    @property
    def edges(self) -> tuple[DependencyEdge, ...]:
        return tuple(edge for name in sorted(self.arguments) for edge in self.arguments[name])

    def internal_edges(self, module_name: str) -> tuple[DependencyEdge, ...]:
        """Return edges whose consumer and provider both live in ``module_name``."""
        return tuple(
            edge
            for name in self.nodes[module_name]
            for edge in self.arguments[name]
            if not edge.is_cross_module
        )

    def cross_module_edges(self, module_name: str) -> tuple[DependencyEdge, ...]:
        """Return edges leaving ``module_name`` towards another module."""
        return tuple(
            edge
            for name in self.nodes[module_name]
            for edge in self.arguments[name]
            if edge.is_cross_module
        )


class DependencyGraphBuilder:
    """Resolves every provider parameter to exactly one provider."""

    def __init__(self, matcher: ContractMatcher, partition: ModulePartition) -> None:
        self._matcher = matcher
        self._partition = partition

    def build(self) -> DependencyGraph:
        """Build the provider graph.

        Raises:
            UnresolvedDependencyError: If a required parameter has no provider.
            DuplicateImplementationError: If a parameter type is ambiguous.

        """
        nodes: dict[str, list[QualifiedName]] = {name: [] for name in self._partition.modules}
        arguments: dict[QualifiedName, tuple[DependencyEdge, ...]] = {}
        module_dependencies: dict[str, set[str]] = {
            name: set() for name in self._partition.modules
        }

        for declaration in self._matcher.active_providers():
            module_name = self._partition.module_of(declaration.name)
            if module_name is None:
                continue
            nodes[module_name].append(declaration.name)
            edges = self._resolve_parameters(declaration, module_name)
            arguments[declaration.name] = edges
            for edge in edges:
                if edge.is_cross_module:
                    module_dependencies[module_name].add(edge.provider_module)

        graph = DependencyGraph(
            modules=self._partition.modules,
            nodes=MappingProxyType({name: tuple(items) for name, items in nodes.items()}),
            arguments=MappingProxyType(arguments),
            module_dependencies=MappingProxyType(
                {name: tuple(sorted(items)) for name, items in module_dependencies.items()},
            ),
            module_by_name=MappingProxyType(
                {name: module for module, names in nodes.items() for name in names},
            ),
        )
        logger.info(
            "Built dependency graph with %d providers and %d edges",
            len(arguments),
            len(graph.edges),
        )
        return graph

    def _resolve_parameters(
        self,
        declaration: Declaration,
        module_name: str,
    ) -> tuple[DependencyEdge, ...]:
        edges: list[DependencyEdge] = []
        positional_open = True
        for parameter in declaration.parameters:
            positional = parameter.kind is ParameterKind.POSITIONAL
            if positional and not positional_open:
                continue
            edge = self._resolve_parameter(declaration, parameter, module_name)
            if edge is None:
                if positional:
                    positional_open = False
                continue
            edges.append(edge)
        return tuple(edges)

    def _resolve_parameter(
        self,
        declaration: Declaration,
        parameter: Parameter,
        module_name: str,
    ) -> DependencyEdge | None:
        type_ref = parameter.type_ref
        if type_ref is None:
            if parameter.has_default:
                return None
            self._raise_unresolved(declaration, parameter, reason="has no type annotation")
        provider = self._matcher.resolve(
            type_ref,
            module_name=module_name,
            partition=self._partition,
        )
        if provider is not None:
            logger.debug(
                "Wired %s.%s to %s",
                declaration.name,
                parameter.name,
                provider,
            )
            return DependencyEdge(
                consumer=declaration.name,
                provider=provider,
                parameter=parameter.name,
                type_ref=type_ref,
                positional=parameter.kind is ParameterKind.POSITIONAL,
                consumer_module=module_name,
                provider_module=self._partition.module_by_name[provider],
            )
        if parameter.has_default:
            logger.debug(
                "Leaving %s.%s to its default: no provider for %s",
                declaration.name,
                parameter.name,
                type_ref,
            )
            return None
        excluded = [
            name
            for name in self._matcher.candidates(type_ref)
            if self._partition.is_excluded(name)
        ]
        if excluded:
            reason = (
                f"expects '{type_ref}', whose provider "
                f"{', '.join(excluded)} matches no module"
            )
        else:
            reason = f"expects '{type_ref}', which has no provider"
        self._raise_unresolved(declaration, parameter, reason=reason)

    def _raise_unresolved(
        self,
        declaration: Declaration,
        parameter: Parameter,
        *,
        reason: str,
    ) -> NoReturn:
        names = (declaration.name,) if parameter.type_ref is None else (
            declaration.name,
            parameter.type_ref,
        )
        raise UnresolvedDependencyError(
            Diagnostic(
                severity=Severity.FATAL,
                kind=DiagnosticKind.UNRESOLVED_DEPENDENCY,
                message=f"Parameter '{parameter.name}' of '{declaration.name}' {reason}.",
                names=names,
                locations=(declaration.location,),
            ),
        )
