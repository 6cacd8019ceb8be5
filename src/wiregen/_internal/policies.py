from enum import Enum


class UnmatchedPolicy(str, Enum):
    """Policy for declarations that match no configured module."""

    DEFAULT_MODULE = "default_module"
    """Assign the declaration to the implicit default module."""

    EXCLUDE = "exclude"
    """Leave the declaration out; depending on it is an unresolved dependency."""


class OutputLayout(str, Enum):
    """Policy for splitting generated source into files."""

    SPLIT = "split"
    """One file per module container plus a root composition file."""

    SINGLE_FILE = "single_file"
    """Module containers and the root composition in one file."""
