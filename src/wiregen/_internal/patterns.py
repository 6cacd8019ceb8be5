from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from typing import cast

from pathspec import PathSpec

_WILDCARD_CHARACTERS = frozenset("*?[")
_SOURCE_SUFFIX = ".py"


def compile_spec(patterns: Sequence[str]) -> PathSpec | None:
    """Compile gitignore-style patterns, returning ``None`` for an empty list.

    Raises:
        ValueError: If a pattern is malformed.

    """
    lines = list(patterns)
    if not lines:
        return None
    from_lines = cast("Callable[[str, Iterable[str]], PathSpec]", PathSpec.from_lines)
    return from_lines("gitignore", lines)


@dataclass(frozen=True, slots=True)
class ModulePattern:
    """One module membership pattern matched against source-root relative paths.

    A pattern naming a ``.py`` file matches that file wherever it sits under the
    root; a pattern without wildcards matches a folder and everything below
    it; anything else is a gitignore-style glob.
    """

    text: str
    spec: PathSpec | None

    @classmethod
    def compile(cls, text: str) -> ModulePattern:
        """Compile a module pattern.

        Raises:
            ValueError: If the pattern is empty or malformed.

        """
        normalized = text.strip().replace("\\", "/")
        if not normalized:
            msg = "Module patterns cannot be empty."
            raise ValueError(msg)
        if _is_plain(normalized):
            return cls(text=normalized.strip("/"), spec=None)
        return cls(text=normalized, spec=compile_spec([normalized]))

    def matches(self, relative_path: str) -> bool:
        if self.spec is not None:
            return self.spec.match_file(relative_path)
        if self.text.endswith(_SOURCE_SUFFIX):
            return relative_path == self.text or relative_path.endswith(f"/{self.text}")
        return relative_path == self.text or relative_path.startswith(f"{self.text}/")


def _is_plain(pattern: str) -> bool:
    return not any(character in _WILDCARD_CHARACTERS for character in pattern)
