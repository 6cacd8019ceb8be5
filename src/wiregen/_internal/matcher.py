from __future__ import annotations

import logging
import re
from collections import defaultdict
from collections.abc import Mapping
from types import MappingProxyType

from wiregen._internal.partitioner import ModulePartition
from wiregen.declarations import Declaration, DeclarationIndex, ExportKind, QualifiedName
from wiregen.diagnostics import Diagnostic, DiagnosticKind, Severity
from wiregen.exceptions import DuplicateImplementationError

logger = logging.getLogger(__name__)


class ContractMatcher:
    """Lookup table from a type token to the providers able to produce it.

    The table is computed once from the index:

    - factories and values are explicit providers of the type they return or
      are annotated with, and a concrete class provided that way is built
      through them instead of being constructed directly;
    - a concrete class listing a contract among its bases implements it;
    - a contract without explicit implementors binds to the concrete class
      named after it by the contract naming pattern.

    Module-scoped resolution happens in ``resolve``.
    """

    def __init__(self, index: DeclarationIndex, *, naming_pattern: str | None) -> None:
        self._index = index
        self._naming_pattern = re.compile(naming_pattern) if naming_pattern else None
        self._explicit = self._collect_explicit_providers()
        self._bindings = self._build_bindings()

    @property
    def bindings(self) -> Mapping[str, tuple[QualifiedName, ...]]:
        return MappingProxyType(self._bindings)

    def active_providers(self) -> list[Declaration]:
        """Return providers that receive an accessor, in qualified-name order."""
        return [item for item in self._index.providers() if not self.is_shadowed(item.name)]

    def is_shadowed(self, name: QualifiedName) -> bool:
        """Return whether a concrete class is built by a factory or value instead."""
        declaration = self._index.find(name)
        return (
            declaration is not None
            and declaration.export_kind is ExportKind.CLASS
            and name in self._explicit
        )

    def candidates(self, token: str) -> tuple[QualifiedName, ...]:
        """Return every provider able to satisfy ``token``, sorted by name."""
        bound = self._bindings.get(token)
        if bound:
            return bound
        declaration = self._index.find(token)
        if declaration is not None and declaration.is_provider:
            if declaration.export_kind is ExportKind.CLASS:
                return (declaration.name,)
        return ()

    def check_duplicates(self, partition: ModulePartition) -> None:
        """Reject tokens with more than one provider inside a single module.

        Raises:
            DuplicateImplementationError: For the first offending token.

        """
        for token in sorted(self._bindings):
            by_module: dict[str, list[QualifiedName]] = defaultdict(list)
            for candidate in self._bindings[token]:
                module_name = partition.module_of(candidate)
                if module_name is not None:
                    by_module[module_name].append(candidate)
            for module_name in sorted(by_module):
                competing = by_module[module_name]
                if len(competing) > 1:
                    raise DuplicateImplementationError(
                        self._duplicate_diagnostic(
                            token,
                            competing,
                            context=f"in module '{module_name}'",
                        ),
                    )

    def resolve(
        self,
        token: str,
        *,
        module_name: str,
        partition: ModulePartition,
    ) -> QualifiedName | None:
        """Pick the provider of ``token`` for a consumer living in ``module_name``.

        A provider local to the consumer's module wins; otherwise the single
        provider among all partitioned modules is used. Excluded providers are
        never returned.

        Raises:
            DuplicateImplementationError: If several modules provide the token
                and none of them is the consumer's module.

        """
        candidates = self.candidates(token)
        included = [name for name in candidates if partition.module_of(name) is not None]
        local = [name for name in included if partition.module_of(name) == module_name]
        if local:
            return local[0]
        if len(included) == 1:
            return included[0]
        if included:
            raise DuplicateImplementationError(
                self._duplicate_diagnostic(
                    token,
                    included,
                    context=f"across modules with none local to '{module_name}'",
                ),
            )
        return None

    def _collect_explicit_providers(self) -> dict[str, list[QualifiedName]]:
        explicit: dict[str, list[QualifiedName]] = defaultdict(list)
        for declaration in self._index.providers():
            if declaration.export_kind is not ExportKind.CLASS:
                explicit[declaration.provides].append(declaration.name)
        return explicit

    def _self_candidates(self, name: QualifiedName) -> list[QualifiedName]:
        if name in self._explicit:
            return list(self._explicit[name])
        return [name]

    def _build_bindings(self) -> dict[str, tuple[QualifiedName, ...]]:
        bindings: dict[str, set[QualifiedName]] = defaultdict(set)
        for token, names in self._explicit.items():
            bindings[token].update(names)

        for declaration in self._index.providers():
            if declaration.export_kind is not ExportKind.CLASS:
                continue
            for supertype in declaration.supertypes:
                contract = self._index.find(supertype)
                if contract is None or not contract.is_contract:
                    continue
                bindings[contract.name].update(self._self_candidates(declaration.name))

        for contract in self._index.contracts():
            if bindings.get(contract.name):
                continue
            implementor = self._conventional_implementor(contract.name)
            if implementor is None:
                logger.debug("Contract %s has no implementor", contract.name)
                continue
            logger.debug(
                "Contract %s bound to %s by naming convention",
                contract.name,
                implementor,
            )
            bindings[contract.name].update(self._self_candidates(implementor))

        return {token: tuple(sorted(names)) for token, names in bindings.items() if names}

    def _conventional_implementor(self, contract_name: str) -> QualifiedName | None:
        if self._naming_pattern is None:
            return None
        match = self._naming_pattern.match(contract_name)
        if match is None or match.end() == 0:
            return None
        declaration = self._index.find(contract_name[match.end() :])
        if declaration is None or declaration.export_kind is not ExportKind.CLASS:
            return None
        if not declaration.is_provider:
            return None
        return declaration.name

    def _duplicate_diagnostic(
        self,
        token: str,
        candidates: list[QualifiedName],
        *,
        context: str,
    ) -> Diagnostic:
        names = tuple(sorted(candidates))
        return Diagnostic(
            severity=Severity.FATAL,
            kind=DiagnosticKind.DUPLICATE_IMPLEMENTATION,
            message=f"'{token}' has multiple implementations {context}: {', '.join(names)}.",
            names=names,
            locations=tuple(self._index.get(name).location for name in names),
        )
