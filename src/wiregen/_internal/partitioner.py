from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from types import MappingProxyType

from wiregen._internal.policies import UnmatchedPolicy
from wiregen.declarations import DeclarationIndex, QualifiedName
from wiregen.settings import GeneratorSettings

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ModulePartition:
    """Assignment of every indexed declaration to at most one module.

    ``modules`` keeps configured modules in declaration order, followed by the
    default module when it received any declaration.
    """

    modules: tuple[str, ...]
    members: Mapping[str, tuple[QualifiedName, ...]]
    module_by_name: Mapping[QualifiedName, str]
    excluded: tuple[QualifiedName, ...]

    def module_of(self, name: QualifiedName) -> str | None:
        return self.module_by_name.get(name)

    def is_excluded(self, name: QualifiedName) -> bool:
        return name in self.excluded


class ModulePartitioner:
    """Assigns declarations to modules by first-match-wins path patterns."""

    def __init__(self, settings: GeneratorSettings) -> None:
        self._patterns = settings.module_patterns()
        self._default_module_name = settings.default_module_name
        self._unmatched_policy = settings.unmatched_policy

    def partition(self, index: DeclarationIndex) -> ModulePartition:
        members: dict[str, list[QualifiedName]] = {name: [] for name, _ in self._patterns}
        module_by_name: dict[QualifiedName, str] = {}
        excluded: list[QualifiedName] = []

        for declaration in index:
            module_name = self._match(declaration.file_path)
            if module_name is None:
                if self._unmatched_policy is UnmatchedPolicy.EXCLUDE:
                    logger.debug(
                        "Excluding %s at %s: no module pattern matches",
                        declaration.name,
                        declaration.location,
                    )
                    excluded.append(declaration.name)
                    continue
                module_name = self._default_module_name
            members.setdefault(module_name, []).append(declaration.name)
            module_by_name[declaration.name] = module_name

        modules = tuple(members)
        logger.info(
            "Partitioned %d declarations into %d modules (%d excluded)",
            len(module_by_name),
            len(modules),
            len(excluded),
        )
        return ModulePartition(
            modules=modules,
            members=MappingProxyType({name: tuple(items) for name, items in members.items()}),
            module_by_name=MappingProxyType(module_by_name),
            excluded=tuple(excluded),
        )

    def _match(self, relative_path: str) -> str | None:
        for module_name, patterns in self._patterns:
            if any(pattern.matches(relative_path) for pattern in patterns):
                return module_name
        return None
