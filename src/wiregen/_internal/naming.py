from __future__ import annotations

import keyword
import re

_WORD_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])")
_FACTORY_NAME_PREFIX = re.compile(r"^(?i:create|make|build)(?:_(?=[A-Za-z])|(?=[A-Z]))")
_CONTAINER_SUFFIX = "Container"


def snake_case(name: str) -> str:
    """Convert ``UserRepository`` or ``IUserRepository`` style names to snake case.

    Names that are already snake case are returned unchanged. A trailing
    underscore is added when the result is a Python keyword.
    """
    converted = _WORD_BOUNDARY.sub("_", name).lower()
    if keyword.iskeyword(converted):
        return f"{converted}_"
    return converted


def factory_accessor_name(function_name: str) -> str:
    """Return the accessor name for a factory: ``create_user_service`` -> ``user_service``."""
    return snake_case(_FACTORY_NAME_PREFIX.sub("", function_name))


def module_key(module_name: str) -> str:
    """Return the root container attribute exposing a module container."""
    return snake_case(module_name)


def module_container_class_name(module_name: str) -> str:
    """Return the generated class name: ``UserModule`` -> ``UserModuleContainer``."""
    pascal = "".join(part[:1].upper() + part[1:] for part in module_name.split("_") if part)
    if pascal.endswith(_CONTAINER_SUFFIX):
        return pascal
    return f"{pascal}{_CONTAINER_SUFFIX}"


def module_file_name(module_name: str) -> str:
    """Return the file name of a module container in the split layout."""
    return f"{snake_case(module_name)}_container.py"
