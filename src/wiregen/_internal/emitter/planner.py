from __future__ import annotations

import heapq
import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass

from wiregen._internal.emitter.templates import BUILD_FUNCTION_NAME
from wiregen._internal.graph import DependencyEdge, DependencyGraph
from wiregen._internal.matcher import ContractMatcher
from wiregen._internal.naming import (
    factory_accessor_name,
    module_container_class_name,
    module_file_name,
    module_key,
    snake_case,
)
from wiregen._internal.policies import OutputLayout
from wiregen._internal.scopes import ScopeTable
from wiregen.declarations import Declaration, DeclarationIndex, ExportKind, Lifetime, QualifiedName
from wiregen.diagnostics import Diagnostic, DiagnosticKind, Severity
from wiregen.exceptions import DuplicateDeclarationError
from wiregen.settings import GeneratorSettings

logger = logging.getLogger(__name__)

_ANY_ANNOTATION = "Any"


@dataclass(frozen=True, slots=True)
class ArgumentPlan:
    """One argument passed to a provider call."""

    parameter: str
    expression: str
    positional: bool


@dataclass(frozen=True, slots=True)
class AccessorPlan:
    """Accessor metadata used during class rendering."""

    accessor_name: str
    provider: QualifiedName
    symbol: str
    reference: str
    """Name bound to ``symbol`` in generated source, aliased if it shadows a generated name."""
    export_kind: ExportKind
    lifetime: Lifetime
    return_annotation: str
    arguments: tuple[ArgumentPlan, ...]
    captured_transients: tuple[QualifiedName, ...]

    @property
    def cache_attr(self) -> str:
        return f"_{self.accessor_name}"

    @property
    def is_cached(self) -> bool:
        return self.lifetime is Lifetime.SINGLETON and self.export_kind is not ExportKind.VALUE


@dataclass(frozen=True, slots=True)
class AliasPlan:
    """Contract accessor pointing at the accessor of its bound provider."""

    alias_name: str
    contract: QualifiedName
    target_accessor: str


@dataclass(frozen=True, slots=True)
class ModuleInputPlan:
    """Provider module container received by a module container."""

    module_name: str
    key: str
    class_name: str
    file_name: str


@dataclass(frozen=True, slots=True)
class ModuleContainerPlan:
    """Everything needed to render one module container class."""

    module_name: str
    key: str
    class_name: str
    file_name: str
    inputs: tuple[ModuleInputPlan, ...]
    accessors: tuple[AccessorPlan, ...]
    aliases: tuple[AliasPlan, ...]
    imports: tuple[tuple[str, tuple[str, ...]], ...]
    """``(import path, names)`` pairs sorted by import path; names may carry an ``as`` alias."""


@dataclass(frozen=True, slots=True)
class ContainerGenerationPlan:
    """Deterministic plan consumed by the renderer."""

    modules: tuple[ModuleContainerPlan, ...]
    """Module containers in dependency order, providers first."""
    container_class_name: str
    root_file_name: str
    layout: OutputLayout

    @property
    def provider_count(self) -> int:
        return sum(len(module.accessors) for module in self.modules)


class ContainerGenerationPlanner:
    """Builds deterministic metadata for container code generation."""

    def __init__(
        self,
        *,
        settings: GeneratorSettings,
        index: DeclarationIndex,
        matcher: ContractMatcher,
        graph: DependencyGraph,
        scopes: ScopeTable,
    ) -> None:
        self._settings = settings
        self._index = index
        self._matcher = matcher
        self._graph = graph
        self._scopes = scopes
        self._generated_names = frozenset(
            {
                _ANY_ANNOTATION,
                BUILD_FUNCTION_NAME,
                settings.container_class_name,
                *(module_container_class_name(name) for name in graph.modules),
            },
        )
        self._accessor_names = {
            name: self._accessor_name(index.get(name)) for name in graph.arguments
        }

    def build(self) -> ContainerGenerationPlan:
        """Build container generation metadata.

        Raises:
            DuplicateDeclarationError: If two accessors of a module share a name.

        """
        module_plans = tuple(
            self._module_plan(module_name) for module_name in self._module_order()
        )
        plan = ContainerGenerationPlan(
            modules=module_plans,
            container_class_name=self._settings.container_class_name,
            root_file_name=self._settings.root_file_name,
            layout=self._settings.layout,
        )
        logger.info(
            "Planned %d module containers with %d accessors",
            len(plan.modules),
            plan.provider_count,
        )
        return plan

    def _module_order(self) -> list[str]:
        position = {name: index for index, name in enumerate(self._graph.modules)}
        dependencies = self._graph.module_dependencies
        dependents: dict[str, list[str]] = {name: [] for name in self._graph.modules}
        for name in self._graph.modules:
            for dependency in dependencies[name]:
                dependents[dependency].append(name)
        return _kahn_order(
            self._graph.modules,
            in_degree={name: len(dependencies[name]) for name in self._graph.modules},
            dependents=dependents,
            sort_key=position.__getitem__,
        )

    def _provider_order(self, module_name: str) -> list[QualifiedName]:
        names = self._graph.nodes[module_name]
        in_degree = dict.fromkeys(names, 0)
        dependents: dict[str, list[str]] = {name: [] for name in names}
        for edge in self._graph.internal_edges(module_name):
            in_degree[edge.consumer] += 1
            dependents[edge.provider].append(edge.consumer)
        return _kahn_order(names, in_degree=in_degree, dependents=dependents, sort_key=_by_name)

    def _module_plan(self, module_name: str) -> ModuleContainerPlan:
        inputs = tuple(
            self._module_input(dependency)
            for dependency in self._graph.module_dependencies[module_name]
        )
        accessors = tuple(
            self._accessor_plan(name) for name in self._provider_order(module_name)
        )
        aliases = self._alias_plans(accessors)
        self._check_accessor_names(module_name, accessors, aliases)
        return ModuleContainerPlan(
            module_name=module_name,
            key=module_key(module_name),
            class_name=module_container_class_name(module_name),
            file_name=module_file_name(module_name),
            inputs=inputs,
            accessors=accessors,
            aliases=aliases,
            imports=self._imports(accessors),
        )

    def _module_input(self, module_name: str) -> ModuleInputPlan:
        return ModuleInputPlan(
            module_name=module_name,
            key=module_key(module_name),
            class_name=module_container_class_name(module_name),
            file_name=module_file_name(module_name),
        )

    def _accessor_plan(self, name: QualifiedName) -> AccessorPlan:
        declaration = self._index.get(name)
        captured = tuple(edge.provider for edge in self._scopes.captured.get(name, ()))
        return AccessorPlan(
            accessor_name=self._accessor_names[name],
            provider=name,
            symbol=declaration.name,
            reference=self._reference(declaration.name),
            export_kind=declaration.export_kind,
            lifetime=self._scopes.lifetime_of(name),
            return_annotation=self._annotation_for(declaration),
            arguments=tuple(self._argument_plan(edge) for edge in self._graph.arguments[name]),
            captured_transients=captured,
        )

    def _argument_plan(self, edge: DependencyEdge) -> ArgumentPlan:
        accessor = self._accessor_names[edge.provider]
        if edge.is_cross_module:
            expression = f"self._{module_key(edge.provider_module)}.{accessor}"
        else:
            expression = f"self.{accessor}"
        return ArgumentPlan(
            parameter=edge.parameter,
            expression=expression,
            positional=edge.positional,
        )

    def _alias_plans(
        self,
        accessors: Sequence[AccessorPlan],
    ) -> tuple[AliasPlan, ...]:
        accessor_by_provider = {accessor.provider: accessor for accessor in accessors}
        aliases: list[AliasPlan] = []
        for contract in self._index.contracts():
            local = [
                accessor_by_provider[name]
                for name in self._matcher.candidates(contract.name)
                if name in accessor_by_provider
            ]
            if not local:
                continue
            bound = local[0]
            alias_name = snake_case(contract.name)
            if alias_name == bound.accessor_name:
                continue
            aliases.append(
                AliasPlan(
                    alias_name=alias_name,
                    contract=contract.name,
                    target_accessor=bound.accessor_name,
                ),
            )
        return tuple(aliases)

    def _check_accessor_names(
        self,
        module_name: str,
        accessors: Sequence[AccessorPlan],
        aliases: Sequence[AliasPlan],
    ) -> None:
        owners: dict[str, QualifiedName] = {}
        entries = [
            *((accessor.accessor_name, accessor.provider) for accessor in accessors),
            *((alias.alias_name, alias.contract) for alias in aliases),
        ]
        for accessor_name, owner in entries:
            clashing = owners.get(accessor_name)
            if clashing is None:
                owners[accessor_name] = owner
                continue
            names = tuple(sorted((owner, clashing)))
            raise DuplicateDeclarationError(
                Diagnostic(
                    severity=Severity.FATAL,
                    kind=DiagnosticKind.DUPLICATE_DECLARATION,
                    message=(
                        f"Accessor '{accessor_name}' of module '{module_name}' is generated "
                        f"for more than one declaration: {', '.join(names)}."
                    ),
                    names=names,
                    locations=tuple(self._index.get(name).location for name in names),
                ),
            )

    def _imports(
        self,
        accessors: Sequence[AccessorPlan],
    ) -> tuple[tuple[str, tuple[str, ...]], ...]:
        names_by_path: dict[str, set[str]] = {}
        for accessor in accessors:
            declaration = self._index.get(accessor.provider)
            names_by_path.setdefault(declaration.import_path, set()).add(
                self._import_name(declaration.name),
            )
            annotated = self._index.find(declaration.provides)
            if annotated is not None:
                names_by_path.setdefault(annotated.import_path, set()).add(
                    self._import_name(annotated.name),
                )
        return tuple(
            (import_path, tuple(sorted(names)))
            for import_path, names in sorted(names_by_path.items())
        )

    def _accessor_name(self, declaration: Declaration) -> str:
        if declaration.export_kind is ExportKind.FACTORY:
            return factory_accessor_name(declaration.name)
        return snake_case(declaration.name)

    def _annotation_for(self, declaration: Declaration) -> str:
        if declaration.provides in self._index:
            return self._reference(declaration.provides)
        return _ANY_ANNOTATION

    def _reference(self, name: str) -> str:
        if name in self._generated_names:
            return f"_{name}"
        return name

    def _import_name(self, name: str) -> str:
        reference = self._reference(name)
        if reference == name:
            return name
        return f"{name} as {reference}"


def _kahn_order(
    names: Sequence[str],
    *,
    in_degree: Mapping[str, int],
    dependents: Mapping[str, Sequence[str]],
    sort_key: Callable[[str], int | str],
) -> list[str]:
    remaining = dict(in_degree)
    ready = [(sort_key(name), name) for name in names if remaining[name] == 0]
    heapq.heapify(ready)
    ordered: list[str] = []
    while ready:
        _, name = heapq.heappop(ready)
        ordered.append(name)
        for dependent in dependents[name]:
            remaining[dependent] -= 1
            if remaining[dependent] == 0:
                heapq.heappush(ready, (sort_key(dependent), dependent))
    return ordered


def _by_name(name: str) -> str:
    return name
