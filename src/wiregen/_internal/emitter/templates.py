from textwrap import dedent

GENERATED_BY_MARKER = "Generated by: wiregen.generator.ContainerGenerator.generate"
"""Docstring line identifying generated sources; the scanner skips files carrying it."""
BUILD_FUNCTION_NAME = "build_container"

MODULE_TEMPLATE = dedent(
    """
    {{ module_docstring_block }}

    {{ imports_block }}
    {% if globals_block %}

    {{ globals_block }}
    {% endif %}
    {% if classes_block %}


    {{ classes_block }}
    {% endif %}
    {% if build_block %}


    {{ build_block }}
    {% endif %}
    """,
).strip()

IMPORTS_TEMPLATE = dedent(
    """
    from __future__ import annotations
    {% if uses_any %}

    from typing import Any
    {% endif %}
    {% if symbol_imports %}

    {% for import_line in symbol_imports %}
    {{ import_line }}
    {% endfor %}
    {% endif %}
    {% if container_imports %}

    {% for import_line in container_imports %}
    {{ import_line }}
    {% endfor %}
    {% endif %}
    """,
).strip()

GLOBALS_TEMPLATE = dedent(
    """
    _MISSING: Any = object()
    """,
).strip()

CLASS_TEMPLATE = dedent(
    """
    class {{ class_name }}:
    {{ class_docstring_block }}

    {{ slots_block }}

    {{ init_method_block }}
    {% for accessor_block in accessor_blocks %}

    {{ accessor_block }}
    {% endfor %}
    {% if alias_block %}

    {{ alias_block }}
    {% endif %}
    """,
).strip()

INIT_METHOD_TEMPLATE = dedent(
    """
    {% if signature_block %}
    def __init__(
        self,
        *,
    {{ signature_block }}
    ) -> None:
    {% else %}
    def __init__(self) -> None:
    {% endif %}
    {{ body_block }}
    """,
).strip()

SINGLETON_ACCESSOR_TEMPLATE = dedent(
    """
    @property
    def {{ accessor_name }}(self) -> {{ return_annotation }}:
    {% if docstring_block %}
    {{ docstring_block }}
    {% endif %}
        if self.{{ cache_attr }} is _MISSING:
    {% for comment_line in comment_lines %}
            # {{ comment_line }}
    {% endfor %}
            self.{{ cache_attr }} = {{ construct_expression }}
        return self.{{ cache_attr }}
    """,
).strip()

TRANSIENT_ACCESSOR_TEMPLATE = dedent(
    """
    @property
    def {{ accessor_name }}(self) -> {{ return_annotation }}:
    {% if docstring_block %}
    {{ docstring_block }}
    {% endif %}
        return {{ construct_expression }}
    """,
).strip()

BUILD_FUNCTION_TEMPLATE = dedent(
    """
    def {{ function_name }}() -> {{ return_annotation }}:
    {{ docstring_block }}
        return {{ return_annotation }}()
    """,
).strip()
