from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from types import MappingProxyType

from wiregen._internal.cycles import CycleAnalyzer
from wiregen._internal.emitter.planner import ContainerGenerationPlan, ContainerGenerationPlanner
from wiregen._internal.emitter.renderer import ContainerTemplateRenderer
from wiregen._internal.graph import DependencyGraph, DependencyGraphBuilder
from wiregen._internal.matcher import ContractMatcher
from wiregen._internal.partitioner import ModulePartitioner
from wiregen._internal.policies import OutputLayout
from wiregen._internal.scanner import SourceScanner
from wiregen._internal.scopes import ScopeResolver, ScopeTable
from wiregen.declarations import DeclarationIndex
from wiregen.diagnostics import Diagnostic, DiagnosticCollector
from wiregen.exceptions import WiregenAnalysisError
from wiregen.settings import GeneratorSettings

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class GeneratedModule:
    """Generated source of one module container or of the root composition."""

    name: str
    file_name: str
    source: str


@dataclass(frozen=True, slots=True)
class GeneratedContainer:
    """Result of a successful generation run.

    ``modules`` always holds one standalone source per module container and
    ``root`` the root composition for the configured layout. Writing them to
    disk is left to the caller; ``files`` returns the mapping to write.
    """

    modules: tuple[GeneratedModule, ...]
    root: GeneratedModule
    diagnostics: tuple[Diagnostic, ...]
    layout: OutputLayout

    def files(self) -> Mapping[str, str]:
        """Return file name to source for the configured layout."""
        if self.layout is OutputLayout.SINGLE_FILE:
            return MappingProxyType({self.root.file_name: self.root.source})
        files = {module.file_name: module.source for module in self.modules}
        files[self.root.file_name] = self.root.source
        return MappingProxyType(files)

    def module(self, name: str) -> GeneratedModule:
        for generated in self.modules:
            if generated.name == name:
                return generated
        raise KeyError(name)


@dataclass(frozen=True, slots=True)
class _Analysis:
    index: DeclarationIndex
    matcher: ContractMatcher
    graph: DependencyGraph
    scopes: ScopeTable


class ContainerGenerator:
    """Scan, analyze and emit a composition root in one batch run.

    Each call to ``generate`` or ``generate_from_index`` is an independent,
    single-threaded run. Only file parsing may use worker threads, see
    ``GeneratorSettings.max_workers``. A run either returns a
    ``GeneratedContainer`` carrying the non-fatal diagnostics, or raises a
    ``WiregenAnalysisError`` subclass before anything is rendered.

    Examples:
        >>> settings = GeneratorSettings.from_values(source_root=Path("app"), import_root="app")
        >>> generated = ContainerGenerator(settings).generate()
        >>> for file_name, source in generated.files().items():
        ...     (output_dir / file_name).write_text(source)

    """

    def __init__(self, settings: GeneratorSettings) -> None:
        self._settings = settings
        self._renderer = ContainerTemplateRenderer()

    @property
    def settings(self) -> GeneratorSettings:
        return self._settings

    def generate(self) -> GeneratedContainer:
        """Scan the configured source root and generate the container.

        Raises:
            WiregenAnalysisError: If the sources contain a structural problem.

        """
        collector = DiagnosticCollector()
        result = SourceScanner(self._settings).scan()
        collector.extend(result.diagnostics)
        return self._generate(result.index, collector)

    def generate_from_sources(self, sources: Mapping[str, str]) -> GeneratedContainer:
        """Generate from in-memory sources keyed by source-root relative path.

        Raises:
            WiregenAnalysisError: If the sources contain a structural problem.

        """
        collector = DiagnosticCollector()
        result = SourceScanner(self._settings).scan_sources(sources)
        collector.extend(result.diagnostics)
        return self._generate(result.index, collector)

    def generate_from_index(self, index: DeclarationIndex) -> GeneratedContainer:
        """Generate from a declaration index built by an external parser.

        Raises:
            WiregenAnalysisError: If the index contains a structural problem.

        """
        return self._generate(index, DiagnosticCollector())

    def plan(self, index: DeclarationIndex) -> ContainerGenerationPlan:
        """Analyze an index and return the generation plan without rendering it."""
        analysis = self._analyze(index)
        return self._plan(analysis)

    def _generate(
        self,
        index: DeclarationIndex,
        collector: DiagnosticCollector,
    ) -> GeneratedContainer:
        try:
            analysis = self._analyze(index)
            collector.extend(analysis.scopes.diagnostics)
            plan = self._plan(analysis)
        except WiregenAnalysisError as error:
            logger.error("Generation aborted: %s", error.diagnostic.format())
            diagnostics = (*collector.snapshot(), *error.diagnostics)
            raise type(error)(error.diagnostic, diagnostics) from error

        rendered = self._renderer.render(plan=plan)
        modules = tuple(
            GeneratedModule(
                name=module_plan.module_name,
                file_name=module_plan.file_name,
                source=rendered.modules[module_plan.module_name],
            )
            for module_plan in plan.modules
        )
        root = GeneratedModule(
            name=plan.container_class_name,
            file_name=plan.root_file_name,
            source=rendered.root,
        )
        logger.info(
            "Generated %d module containers (%s layout) with %d warnings",
            len(modules),
            plan.layout.value,
            len(collector.warnings()),
        )
        return GeneratedContainer(
            modules=modules,
            root=root,
            diagnostics=collector.snapshot(),
            layout=plan.layout,
        )

    def _analyze(self, index: DeclarationIndex) -> _Analysis:
        matcher = ContractMatcher(index, naming_pattern=self._settings.contract_naming_pattern)
        partition = ModulePartitioner(self._settings).partition(index)
        matcher.check_duplicates(partition)
        graph = DependencyGraphBuilder(matcher, partition).build()
        CycleAnalyzer(index).check(graph)
        scopes = ScopeResolver(
            index,
            default_lifetime=self._settings.default_lifetime,
        ).resolve(graph)
        return _Analysis(
            index=index,
            matcher=matcher,
            graph=graph,
            scopes=scopes,
        )

    def _plan(self, analysis: _Analysis) -> ContainerGenerationPlan:
        return ContainerGenerationPlanner(
            settings=self._settings,
            index=analysis.index,
            matcher=analysis.matcher,
            graph=analysis.graph,
            scopes=analysis.scopes,
        ).build()
