from __future__ import annotations

import logging
from collections import deque
from collections.abc import Mapping, Sequence

from wiregen._internal.graph import DependencyGraph
from wiregen.declarations import DeclarationIndex
from wiregen.diagnostics import Diagnostic, DiagnosticKind, Severity
from wiregen.exceptions import CircularDependencyError, ModuleCycleError

logger = logging.getLogger(__name__)

_ARROW = " -> "


def strongly_connected_components(
    successors: Mapping[str, Sequence[str]],
) -> list[tuple[str, ...]]:
    """Return the strongly connected components of a directed graph (Tarjan).

    Nodes are visited in sorted order and successors in the given order, so the
    result is deterministic. Each component is sorted; components are returned
    sorted by their first member.
    """
    index_of: dict[str, int] = {}
    low_link: dict[str, int] = {}
    on_stack: set[str] = set()
    stack: list[str] = []
    components: list[tuple[str, ...]] = []
    counter = 0

    for root in sorted(successors):
        if root in index_of:
            continue
        work: list[tuple[str, int]] = [(root, 0)]
        while work:
            node, position = work.pop()
            if position == 0:
                index_of[node] = low_link[node] = counter
                counter += 1
                stack.append(node)
                on_stack.add(node)
            children = successors.get(node, ())
            if position < len(children):
                work.append((node, position + 1))
                child = children[position]
                if child not in index_of:
                    work.append((child, 0))
                elif child in on_stack:
                    low_link[node] = min(low_link[node], index_of[child])
                continue
            if low_link[node] == index_of[node]:
                component: list[str] = []
                while True:
                    member = stack.pop()
                    on_stack.discard(member)
                    component.append(member)
                    if member == node:
                        break
                components.append(tuple(sorted(component)))
            if work:
                parent = work[-1][0]
                low_link[parent] = min(low_link[parent], low_link[node])

    return sorted(components)


def cycle_path(successors: Mapping[str, Sequence[str]], component: Sequence[str]) -> list[str]:
    """Return the shortest cycle through the first member of ``component``.

    The path starts and ends with the same node: ``["A", "B", "A"]``.
    """
    members = set(component)
    start = component[0]
    parents: dict[str, str] = {}
    queue: deque[str] = deque([start])
    while queue:
        node = queue.popleft()
        for child in successors.get(node, ()):
            if child not in members:
                continue
            if child == start:
                path = [start]
                while node != start:
                    path.append(node)
                    node = parents[node]
                path.append(start)
                path.reverse()
                return path
            if child not in parents:
                parents[child] = node
                queue.append(child)
    return [start, start]


class CycleAnalyzer:
    """Rejects module cycles and dependency cycles confined to one module."""

    def __init__(self, index: DeclarationIndex) -> None:
        self._index = index

    def check(self, graph: DependencyGraph) -> None:
        """Validate the module graph first, then each module's internal subgraph.

        Raises:
            ModuleCycleError: If modules depend on each other.
            CircularDependencyError: If providers of one module form a cycle.

        """
        self._check_modules(graph)
        for module_name in graph.modules:
            self._check_module(graph, module_name)
        logger.info("No dependency cycles found across %d modules", len(graph.modules))

    def _check_modules(self, graph: DependencyGraph) -> None:
        successors = {name: list(graph.module_dependencies[name]) for name in graph.modules}
        diagnostics = [
            Diagnostic(
                severity=Severity.FATAL,
                kind=DiagnosticKind.MODULE_CYCLE,
                message=f"Modules depend on each other: {_ARROW.join(path)}.",
                names=tuple(path),
                locations=self._module_cycle_locations(graph, path),
            )
            for path in self._cycles(successors)
        ]
        if diagnostics:
            raise ModuleCycleError(diagnostics[0], tuple(diagnostics))

    def _check_module(self, graph: DependencyGraph, module_name: str) -> None:
        successors: dict[str, list[str]] = {name: [] for name in graph.nodes[module_name]}
        for edge in graph.internal_edges(module_name):
            successors[edge.consumer].append(edge.provider)
        diagnostics = [
            Diagnostic(
                severity=Severity.FATAL,
                kind=DiagnosticKind.CIRCULAR_DEPENDENCY,
                message=(
                    f"Circular dependency in module '{module_name}': {_ARROW.join(path)}."
                ),
                names=tuple(path),
                locations=tuple(self._index.get(name).location for name in path[:-1]),
            )
            for path in self._cycles(successors)
        ]
        if diagnostics:
            raise CircularDependencyError(diagnostics[0], tuple(diagnostics))

    def _cycles(self, successors: Mapping[str, Sequence[str]]) -> list[list[str]]:
        paths: list[list[str]] = []
        for component in strongly_connected_components(successors):
            first = component[0]
            if len(component) == 1 and first not in successors.get(first, ()):
                continue
            path = cycle_path(successors, component)
            logger.debug("Found cycle %s", _ARROW.join(path))
            paths.append(path)
        return paths

    def _module_cycle_locations(
        self,
        graph: DependencyGraph,
        path: list[str],
    ) -> tuple[str, ...]:
        locations: list[str] = []
        for consumer_module, provider_module in zip(path, path[1:]):
            for edge in graph.cross_module_edges(consumer_module):
                if edge.provider_module == provider_module:
                    locations.append(self._index.get(edge.consumer).location)
                    break
        return tuple(locations)
