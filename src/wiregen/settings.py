from __future__ import annotations

import keyword
import re
from pathlib import Path
from typing import Any

from pydantic import ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing_extensions import Self

from wiregen._internal.naming import module_key
from wiregen._internal.patterns import ModulePattern, compile_spec
from wiregen._internal.policies import OutputLayout, UnmatchedPolicy
from wiregen.declarations import Lifetime
from wiregen.exceptions import WiregenConfigurationError

DEFAULT_MODULE_NAME = "CoreModule"
DEFAULT_INCLUDE = ("**/*.py",)
DEFAULT_EXCLUDE = (
    "test_*.py",
    "*_test.py",
    "conftest.py",
    "tests/",
    "dist/",
    ".venv/",
    "venv/",
)
DEFAULT_CONTRACT_NAMING_PATTERN = r"I(?=[A-Z])"


class GeneratorSettings(BaseSettings):
    """Resolved configuration consumed by ``ContainerGenerator``.

    Values can be passed directly or read from ``WIREGEN_*`` environment
    variables (list and mapping fields are JSON encoded). All validation runs
    when the model is built, so a settings object that exists is safe to scan
    with.

    Attributes:
        source_root: Directory scanned for declarations.
        include: Gitignore-style globs selecting files under ``source_root``.
        exclude: Gitignore-style globs removing files from the selection. The
            default skips test modules and virtual environments; pass
            ``(*DEFAULT_EXCLUDE, ...)`` to extend it rather than replace it.
        import_root: Dotted package prefix of ``source_root`` used in generated
            imports; empty when ``source_root`` is itself on ``sys.path``.
        contract_naming_pattern: Regular expression matched at the start of a
            contract name; the remainder names the conventional implementor.
            ``None`` disables convention matching.
        modules: Module name to ordered membership patterns, first match wins.
        default_module_name: Module receiving unmatched declarations.
        unmatched_policy: What to do with declarations that match no module.
        default_lifetime: Lifetime of classes and factories without a
            ``@scope`` marker.
        layout: File layout of the generated source.
        container_class_name: Name of the generated root composition class.
        root_file_name: File name of the root composition.
        max_workers: Number of threads parsing files; ``1`` parses sequentially.

    """

    model_config = SettingsConfigDict(
        env_prefix="WIREGEN_",
        frozen=True,
        extra="forbid",
    )

    source_root: Path = Path()
    include: tuple[str, ...] = DEFAULT_INCLUDE
    exclude: tuple[str, ...] = DEFAULT_EXCLUDE
    import_root: str = ""
    contract_naming_pattern: str | None = DEFAULT_CONTRACT_NAMING_PATTERN
    modules: dict[str, tuple[str, ...]] = {}
    default_module_name: str = DEFAULT_MODULE_NAME
    unmatched_policy: UnmatchedPolicy = UnmatchedPolicy.DEFAULT_MODULE
    default_lifetime: Lifetime = Lifetime.TRANSIENT
    layout: OutputLayout = OutputLayout.SPLIT
    container_class_name: str = "Container"
    root_file_name: str = "container.py"
    max_workers: int = 1

    @classmethod
    def from_values(cls, **values: Any) -> Self:
        """Build settings, converting validation failures to a wiregen error.

        Raises:
            WiregenConfigurationError: If any value is invalid.

        """
        try:
            return cls(**values)
        except ValidationError as error:
            msg = f"Invalid wiregen settings:\n{error}"
            raise WiregenConfigurationError(msg) from error

    @field_validator("include", "exclude")
    @classmethod
    def _validate_globs(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        compile_spec(value)
        return value

    @field_validator("import_root")
    @classmethod
    def _validate_import_root(cls, value: str) -> str:
        if value and not all(part.isidentifier() for part in value.split(".")):
            msg = f"import_root must be a dotted module path, got {value!r}."
            raise ValueError(msg)
        return value

    @field_validator("contract_naming_pattern")
    @classmethod
    def _validate_contract_pattern(cls, value: str | None) -> str | None:
        if value is None:
            return None
        try:
            re.compile(value)
        except re.error as error:
            msg = f"contract_naming_pattern is not a valid regular expression: {error}."
            raise ValueError(msg) from error
        return value

    @field_validator("modules")
    @classmethod
    def _validate_modules(cls, value: dict[str, tuple[str, ...]]) -> dict[str, tuple[str, ...]]:
        keys: dict[str, str] = {}
        owners: dict[str, str] = {}
        for module_name, patterns in value.items():
            _validate_identifier(module_name, label="Module name")
            key = module_key(module_name)
            if key in keys:
                msg = (
                    f"Module names '{keys[key]}' and '{module_name}' map to the same "
                    f"container attribute '{key}'."
                )
                raise ValueError(msg)
            keys[key] = module_name
            if not patterns:
                msg = f"Module '{module_name}' must declare at least one pattern."
                raise ValueError(msg)
            for pattern in patterns:
                ModulePattern.compile(pattern)
                owner = owners.get(pattern)
                if owner is not None:
                    msg = (
                        f"Duplicate pattern '{pattern}' found in module '{module_name}' "
                        f"(already used by '{owner}')."
                    )
                    raise ValueError(msg)
                owners[pattern] = module_name
        return value

    @field_validator("default_module_name", "container_class_name")
    @classmethod
    def _validate_names(cls, value: str) -> str:
        _validate_identifier(value, label="Name")
        return value

    @field_validator("max_workers")
    @classmethod
    def _validate_max_workers(cls, value: int) -> int:
        if value < 1:
            msg = "max_workers must be at least 1."
            raise ValueError(msg)
        return value

    @model_validator(mode="after")
    def _validate_default_module(self) -> Self:
        if (
            self.unmatched_policy is UnmatchedPolicy.DEFAULT_MODULE
            and module_key(self.default_module_name) in {module_key(name) for name in self.modules}
        ):
            msg = (
                f"default_module_name '{self.default_module_name}' collides with a "
                "configured module."
            )
            raise ValueError(msg)
        return self

    def module_patterns(self) -> list[tuple[str, tuple[ModulePattern, ...]]]:
        """Return compiled module patterns in declaration order."""
        return [
            (name, tuple(ModulePattern.compile(pattern) for pattern in patterns))
            for name, patterns in self.modules.items()
        ]


def _validate_identifier(value: str, *, label: str) -> None:
    if not value.isidentifier() or keyword.iskeyword(value):
        msg = f"{label} {value!r} is not a valid Python identifier."
        raise ValueError(msg)


__all__ = [
    "DEFAULT_CONTRACT_NAMING_PATTERN",
    "DEFAULT_EXCLUDE",
    "DEFAULT_MODULE_NAME",
    "GeneratorSettings",
    "OutputLayout",
    "UnmatchedPolicy",
]
