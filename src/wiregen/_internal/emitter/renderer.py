from __future__ import annotations

from dataclasses import dataclass
from importlib.metadata import PackageNotFoundError, version
from textwrap import indent

from jinja2 import Environment, StrictUndefined, Template

from wiregen._internal.emitter.planner import (
    AccessorPlan,
    ArgumentPlan,
    ContainerGenerationPlan,
    ModuleContainerPlan,
)
from wiregen._internal.emitter.templates import (
    BUILD_FUNCTION_NAME,
    BUILD_FUNCTION_TEMPLATE,
    CLASS_TEMPLATE,
    GENERATED_BY_MARKER,
    GLOBALS_TEMPLATE,
    IMPORTS_TEMPLATE,
    INIT_METHOD_TEMPLATE,
    MODULE_TEMPLATE,
    SINGLETON_ACCESSOR_TEMPLATE,
    TRANSIENT_ACCESSOR_TEMPLATE,
)
from wiregen._internal.policies import OutputLayout
from wiregen.declarations import ExportKind

_INDENT = " " * 4
_MAX_LINE_LENGTH = 99


@dataclass(frozen=True, slots=True)
class RenderedSources:
    """Module container sources keyed by module name plus the root source."""

    modules: dict[str, str]
    root: str


class ContainerTemplateRenderer:
    """Renderer for generated container code."""

    def __init__(self) -> None:
        self._env = Environment(
            autoescape=False,
            trim_blocks=True,
            lstrip_blocks=True,
            undefined=StrictUndefined,
        )
        self._module_template = self._template(MODULE_TEMPLATE)
        self._imports_template = self._template(IMPORTS_TEMPLATE)
        self._globals_template = self._template(GLOBALS_TEMPLATE)
        self._class_template = self._template(CLASS_TEMPLATE)
        self._init_method_template = self._template(INIT_METHOD_TEMPLATE)
        self._singleton_accessor_template = self._template(SINGLETON_ACCESSOR_TEMPLATE)
        self._transient_accessor_template = self._template(TRANSIENT_ACCESSOR_TEMPLATE)
        self._build_function_template = self._template(BUILD_FUNCTION_TEMPLATE)

    def render(self, *, plan: ContainerGenerationPlan) -> RenderedSources:
        """Render every module container and the root composition."""
        return RenderedSources(
            modules={
                module_plan.module_name: self.render_module(plan=plan, module_plan=module_plan)
                for module_plan in plan.modules
            },
            root=self.render_root(plan=plan),
        )

    def render_module(
        self,
        *,
        plan: ContainerGenerationPlan,
        module_plan: ModuleContainerPlan,
    ) -> str:
        """Render a standalone file holding one module container."""
        module_docstring_block = self._docstring_block(
            lines=self._module_docstring_lines(plan=plan, module_plan=module_plan),
            depth=0,
        )
        imports_block = self._render_imports(
            symbol_imports=module_plan.imports,
            container_imports=[
                self._relative_import(module_input.file_name, module_input.class_name)
                for module_input in module_plan.inputs
            ],
            uses_any=True,
        )
        return self._finish(
            self._module_template.render(
                module_docstring_block=module_docstring_block,
                imports_block=imports_block,
                globals_block=self._globals_template.render().strip(),
                classes_block=self._render_module_class(module_plan=module_plan),
                build_block="",
            ),
        )

    def render_root(self, *, plan: ContainerGenerationPlan) -> str:
        """Render the root composition according to the plan's layout."""
        if plan.layout is OutputLayout.SINGLE_FILE:
            return self._render_single_file(plan=plan)
        module_docstring_block = self._docstring_block(
            lines=self._root_docstring_lines(plan=plan),
            depth=0,
        )
        imports_block = self._render_imports(
            symbol_imports=(),
            container_imports=[
                self._relative_import(module_plan.file_name, module_plan.class_name)
                for module_plan in plan.modules
            ],
            uses_any=False,
        )
        return self._finish(
            self._module_template.render(
                module_docstring_block=module_docstring_block,
                imports_block=imports_block,
                globals_block="",
                classes_block=self._render_root_class(plan=plan),
                build_block=self._render_build_function(plan=plan),
            ),
        )

    def _render_single_file(self, *, plan: ContainerGenerationPlan) -> str:
        lines = self._root_docstring_lines(plan=plan)
        module_docstring_block = self._docstring_block(lines=lines, depth=0)
        names_by_path: dict[str, list[str]] = {}
        for module_plan in plan.modules:
            for import_path, names in module_plan.imports:
                names_by_path.setdefault(import_path, []).extend(names)
        symbol_imports = tuple(
            (import_path, tuple(sorted(self._unique_ordered(names))))
            for import_path, names in sorted(names_by_path.items())
        )
        imports_block = self._render_imports(
            symbol_imports=symbol_imports,
            container_imports=[],
            uses_any=True,
        )
        class_blocks = [
            self._render_module_class(module_plan=module_plan) for module_plan in plan.modules
        ]
        class_blocks.append(self._render_root_class(plan=plan))
        return self._finish(
            self._module_template.render(
                module_docstring_block=module_docstring_block,
                imports_block=imports_block,
                globals_block=self._globals_template.render().strip(),
                classes_block="\n\n\n".join(class_blocks),
                build_block=self._render_build_function(plan=plan),
            ),
        )

    def _render_imports(
        self,
        *,
        symbol_imports: tuple[tuple[str, tuple[str, ...]], ...],
        container_imports: list[str],
        uses_any: bool,
    ) -> str:
        return self._imports_template.render(
            uses_any=uses_any,
            symbol_imports=[
                self._import_line(import_path, names) for import_path, names in symbol_imports
            ],
            container_imports=container_imports,
        ).strip()

    def _relative_import(self, file_name: str, class_name: str) -> str:
        return f"from .{file_name.removesuffix('.py')} import {class_name}"

    def _import_line(self, import_path: str, names: tuple[str, ...]) -> str:
        line = f"from {import_path} import {', '.join(names)}"
        if len(line) <= _MAX_LINE_LENGTH:
            return line
        body = self._join_lines(self._indent_lines([f"{name}," for name in names], 1))
        return f"from {import_path} import (\n{body}\n)"

    def _render_module_class(self, *, module_plan: ModuleContainerPlan) -> str:
        docstring_lines = [f"Providers of module ``{module_plan.module_name}``."]
        if module_plan.inputs:
            docstring_lines.extend(
                [
                    "",
                    "Receives the containers of modules it depends on: "
                    f"{', '.join(module_input.key for module_input in module_plan.inputs)}.",
                ],
            )
        slot_names = [f"_{module_input.key}" for module_input in module_plan.inputs]
        slot_names.extend(
            accessor.cache_attr for accessor in module_plan.accessors if accessor.is_cached
        )
        signature_lines = [
            f"{module_input.key}: {module_input.class_name},"
            for module_input in module_plan.inputs
        ]
        body_lines = [
            f"self._{module_input.key} = {module_input.key}" for module_input in module_plan.inputs
        ]
        body_lines.extend(
            f"self.{accessor.cache_attr} = _MISSING"
            for accessor in module_plan.accessors
            if accessor.is_cached
        )
        alias_lines = [
            f"{alias.alias_name} = {alias.target_accessor}" for alias in module_plan.aliases
        ]
        return self._class_template.render(
            class_name=module_plan.class_name,
            class_docstring_block=self._indent_block(
                self._docstring_block(lines=docstring_lines, depth=0),
            ),
            slots_block=self._indent_block(self._render_slots(slot_names)),
            init_method_block=self._indent_block(
                self._render_init_method(signature_lines=signature_lines, body_lines=body_lines),
            ),
            accessor_blocks=[
                self._indent_block(self._render_accessor(accessor))
                for accessor in module_plan.accessors
            ],
            alias_block=self._indent_block(self._join_lines(alias_lines)),
        ).strip()

    def _render_root_class(self, *, plan: ContainerGenerationPlan) -> str:
        docstring_lines = [
            "Composition root holding one container per module.",
            "",
            "Each instance owns its own singletons; build one per application.",
        ]
        body_lines: list[str] = []
        for module_plan in plan.modules:
            arguments = [
                ArgumentPlan(
                    parameter=module_input.key,
                    expression=f"self.{module_input.key}",
                    positional=False,
                )
                for module_input in module_plan.inputs
            ]
            assignment = f"self.{module_plan.key} = "
            expression = self._call_expression(
                module_plan.class_name,
                arguments,
                prefix=assignment,
            )
            body_lines.extend(f"{assignment}{expression}".split("\n"))
        return self._class_template.render(
            class_name=plan.container_class_name,
            class_docstring_block=self._indent_block(
                self._docstring_block(lines=docstring_lines, depth=0),
            ),
            slots_block=self._indent_block(
                self._render_slots([module_plan.key for module_plan in plan.modules]),
            ),
            init_method_block=self._indent_block(
                self._render_init_method(signature_lines=[], body_lines=body_lines),
            ),
            accessor_blocks=[],
            alias_block="",
        ).strip()

    def _render_init_method(self, *, signature_lines: list[str], body_lines: list[str]) -> str:
        return self._init_method_template.render(
            signature_block=self._join_lines(self._indent_lines(signature_lines, 1)),
            body_block=self._join_lines(self._indent_lines(body_lines or ["pass"], 1)),
        ).strip()

    def _render_slots(self, slot_names: list[str]) -> str:
        if not slot_names:
            return "__slots__ = ()"
        entries = self._indent_lines([f'"{name}",' for name in slot_names], 1)
        return self._join_lines(["__slots__ = (", *entries, ")"])

    def _render_accessor(self, accessor: AccessorPlan) -> str:
        docstring_block = self._docstring_block(
            lines=[self._accessor_summary(accessor)],
            depth=1,
        )
        if accessor.is_cached:
            assignment = f"self.{accessor.cache_attr} = "
            return self._singleton_accessor_template.render(
                accessor_name=accessor.accessor_name,
                return_annotation=accessor.return_annotation,
                docstring_block=docstring_block,
                cache_attr=accessor.cache_attr,
                comment_lines=[
                    f"Keeps the transient {provider} it is built with for its whole lifetime."
                    for provider in accessor.captured_transients
                ],
                construct_expression=self._construct_expression(
                    accessor,
                    depth=2,
                    prefix=assignment,
                ),
            ).strip()
        return self._transient_accessor_template.render(
            accessor_name=accessor.accessor_name,
            return_annotation=accessor.return_annotation,
            docstring_block=docstring_block,
            construct_expression=self._construct_expression(accessor, depth=1, prefix="return "),
        ).strip()

    def _accessor_summary(self, accessor: AccessorPlan) -> str:
        if accessor.export_kind is ExportKind.VALUE:
            return f"Return the pre-built ``{accessor.symbol}`` value."
        if accessor.export_kind is ExportKind.FACTORY:
            made = "the cached" if accessor.is_cached else "a new"
            return f"Return {made} instance built by ``{accessor.symbol}``."
        if accessor.is_cached:
            return f"Return the ``{accessor.symbol}`` singleton, built on first access."
        return f"Return a new ``{accessor.symbol}`` instance."

    def _construct_expression(self, accessor: AccessorPlan, *, depth: int, prefix: str) -> str:
        if accessor.export_kind is ExportKind.VALUE:
            return accessor.reference
        expression = self._call_expression(accessor.reference, accessor.arguments, prefix=prefix)
        first, *rest = expression.split("\n")
        return self._join_lines([first, *self._indent_lines(rest, depth)])

    def _call_expression(
        self,
        callee: str,
        arguments: list[ArgumentPlan] | tuple[ArgumentPlan, ...],
        *,
        prefix: str,
    ) -> str:
        rendered = [
            (
                argument.expression
                if argument.positional
                else f"{argument.parameter}={argument.expression}"
            )
            for argument in arguments
        ]
        inline = f"{callee}({', '.join(rendered)})"
        if len(rendered) <= 1 and len(prefix) + len(inline) + len(_INDENT) * 2 <= _MAX_LINE_LENGTH:
            return inline
        lines = [f"{callee}(", *self._indent_lines([f"{item}," for item in rendered], 1), ")"]
        return self._join_lines(lines)

    def _render_build_function(self, *, plan: ContainerGenerationPlan) -> str:
        return self._build_function_template.render(
            function_name=BUILD_FUNCTION_NAME,
            return_annotation=plan.container_class_name,
            docstring_block=self._docstring_block(
                lines=[f"Build a new ``{plan.container_class_name}`` and its module containers."],
                depth=1,
            ),
        ).strip()

    def _module_docstring_lines(
        self,
        *,
        plan: ContainerGenerationPlan,
        module_plan: ModuleContainerPlan,
    ) -> list[str]:
        accessors = module_plan.accessors
        singleton_count = sum(accessor.is_cached for accessor in accessors)
        inputs = ", ".join(module_input.key for module_input in module_plan.inputs) or "none"
        lines = [
            f"Generated dependency injection container for module ``{module_plan.module_name}``.",
            "",
            GENERATED_BY_MARKER,
            f"wiregen version used for generation: {self._resolve_wiregen_version()}",
            "",
            "Generation summary:",
            f"- accessors: {len(accessors)} (cached singletons: {singleton_count})",
            f"- contract aliases: {len(module_plan.aliases)}",
            f"- module inputs: {inputs}",
            f"- root composition: {plan.root_file_name}",
        ]
        lines.extend(self._capture_note_lines((module_plan,)))
        return lines

    def _root_docstring_lines(self, *, plan: ContainerGenerationPlan) -> list[str]:
        module_keys = ", ".join(module_plan.key for module_plan in plan.modules) or "none"
        lines = [
            "Generated dependency injection composition root.",
            "",
            GENERATED_BY_MARKER,
            f"wiregen version used for generation: {self._resolve_wiregen_version()}",
            "",
            "Generation summary:",
            f"- layout: {plan.layout.value}",
            f"- modules: {module_keys}",
            f"- accessors: {plan.provider_count}",
        ]
        lines.extend(self._capture_note_lines(plan.modules))
        example = self._example_accessor(plan=plan)
        lines.extend(["", "Examples:", f">>> container = {BUILD_FUNCTION_NAME}()"])
        if example is not None:
            lines.append(f">>> instance = container.{example}")
        return lines

    def _capture_note_lines(self, module_plans: tuple[ModuleContainerPlan, ...]) -> list[str]:
        if not any(
            accessor.captured_transients
            for module_plan in module_plans
            for accessor in module_plan.accessors
        ):
            return []
        return [
            "",
            "Singletons depending on transients keep the transient instance they are",
            "built with for their whole lifetime; see the comments on those accessors.",
        ]

    def _example_accessor(self, *, plan: ContainerGenerationPlan) -> str | None:
        for module_plan in reversed(plan.modules):
            if module_plan.accessors:
                return f"{module_plan.key}.{module_plan.accessors[-1].accessor_name}"
        return None

    def _resolve_wiregen_version(self) -> str:
        try:
            return version("wiregen")
        except PackageNotFoundError:
            return "unknown"

    def _finish(self, source: str) -> str:
        return f"{source.rstrip()}\n"

    def _docstring_lines(self, lines: list[str]) -> list[str]:
        return ['"""', *lines, '"""']

    def _docstring_block(self, *, lines: list[str], depth: int) -> str:
        if len(lines) == 1:
            return self._join_lines(self._indent_lines([f'"""{lines[0]}"""'], depth))
        return self._join_lines(self._indent_lines(self._docstring_lines(lines), depth))

    def _template(self, text: str) -> Template:
        return self._env.from_string(text)

    def _indent_block(self, block: str) -> str:
        return indent(block, _INDENT)

    def _indent_lines(self, lines: list[str], depth: int) -> list[str]:
        prefix = _INDENT * depth
        return [f"{prefix}{line}" if line else "" for line in lines]

    def _join_lines(self, lines: list[str]) -> str:
        return "\n".join(lines)

    def _unique_ordered(self, values: list[str]) -> list[str]:
        seen: set[str] = set()
        unique_values: list[str] = []
        for value in values:
            if value in seen:
                continue
            seen.add(value)
            unique_values.append(value)
        return unique_values
