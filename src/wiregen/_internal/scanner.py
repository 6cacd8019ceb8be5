from __future__ import annotations

import ast
import logging
import re
from collections.abc import Mapping
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from pathlib import PurePosixPath

from wiregen._internal.emitter.templates import GENERATED_BY_MARKER
from wiregen._internal.patterns import compile_spec
from wiregen.declarations import (
    Declaration,
    DeclarationIndex,
    DeclarationKind,
    ExportKind,
    Lifetime,
    Parameter,
    ParameterKind,
)
from wiregen.diagnostics import Diagnostic
from wiregen.exceptions import WiregenAnalysisError, WiregenParseError
from wiregen.settings import GeneratorSettings

logger = logging.getLogger(__name__)

_MARKER_PATTERN = re.compile(
    r"@(?P<tag>scope|factory|value)\b(?:[ \t]+(?P<argument>[A-Za-z_]\w*))?",
)
_FACTORY_PREFIXES = ("create", "make", "build")
_CONTRACT_BASES = frozenset({"ABC", "Protocol"})
_CONTRACT_METACLASSES = frozenset({"ABCMeta"})
_IGNORED_BASES = frozenset({"ABC", "Protocol", "Generic", "object"})
_ABSTRACT_DECORATORS = frozenset({"abstractmethod", "abstractproperty"})
_TRANSPARENT_WRAPPERS = frozenset({"Optional", "Annotated", "Final"})
_IMPLICIT_FIRST_PARAMETER_NAMES = frozenset({"self", "cls"})
_INIT_MODULE = "__init__"


@dataclass(frozen=True, slots=True)
class ClassShape:
    """Bases and own constructor of one top-level class, exported or not."""

    bases: tuple[str, ...]
    constructor: tuple[Parameter, ...] | None
    """Own ``__init__`` parameters or dataclass fields; ``None`` when the class has neither."""


@dataclass(slots=True)
class ParsedFile:
    """Declarations and warnings extracted from one source file."""

    relative_path: str
    declarations: list[Declaration] = field(default_factory=list)
    value_candidates: list[tuple[Declaration, bool]] = field(default_factory=list)
    """Annotated module-level assignments and whether they carry a ``@value`` marker."""
    diagnostics: list[Diagnostic] = field(default_factory=list)
    class_shapes: dict[str, ClassShape] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class ScanResult:
    index: DeclarationIndex
    diagnostics: tuple[Diagnostic, ...]
    file_count: int


class SourceScanner:
    """Builds a ``DeclarationIndex`` from the Python files of a source tree."""

    def __init__(self, settings: GeneratorSettings) -> None:
        self._settings = settings
        self._include = compile_spec(settings.include)
        self._exclude = compile_spec(settings.exclude)

    def scan(self) -> ScanResult:
        """Discover, parse and index every selected file under the source root.

        Raises:
            DuplicateDeclarationError: If two files export the same name.

        """
        relative_paths = self.discover()
        logger.info(
            "Scanning %d source files under %s (max_workers=%d)",
            len(relative_paths),
            self._settings.source_root,
            self._settings.max_workers,
        )
        if self._settings.max_workers > 1:
            with ThreadPoolExecutor(max_workers=self._settings.max_workers) as executor:
                parsed_files = list(executor.map(self._parse_path, relative_paths))
        else:
            parsed_files = [self._parse_path(relative_path) for relative_path in relative_paths]
        return self._merge(parsed_files)

    def scan_sources(self, sources: Mapping[str, str]) -> ScanResult:
        """Index in-memory sources keyed by source-root relative path."""
        parsed_files = [
            self.parse_source(relative_path, sources[relative_path])
            for relative_path in sorted(sources)
        ]
        return self._merge(parsed_files)

    def discover(self) -> list[str]:
        """Return selected file paths relative to the source root, sorted."""
        root = self._settings.source_root
        selected: list[str] = []
        for path in root.rglob("*.py"):
            if not path.is_file():
                continue
            relative_path = path.relative_to(root).as_posix()
            if self._include is not None and not self._include.match_file(relative_path):
                continue
            if self._exclude is not None and self._exclude.match_file(relative_path):
                continue
            selected.append(relative_path)
        return sorted(selected)

    def parse_source(self, relative_path: str, text: str) -> ParsedFile:
        """Parse one file's text; problems are reported as warning diagnostics."""
        try:
            tree = _parse_tree(relative_path, text)
        except WiregenParseError as error:
            logger.warning("%s", error)
            return ParsedFile(relative_path=relative_path, diagnostics=[error.to_diagnostic()])
        if _is_generated(tree):
            logger.debug("Skipping generated container source %s", relative_path)
            return ParsedFile(relative_path=relative_path)
        try:
            import_path = self._import_path(relative_path)
        except WiregenParseError as error:
            import_path = ""
            import_error: WiregenParseError | None = error
        else:
            import_error = None
        parsed = _ModuleVisitor(
            relative_path=relative_path,
            import_path=import_path,
            lines=text.splitlines(),
        ).visit(tree)
        if import_error is None:
            return parsed
        if not parsed.declarations and not parsed.value_candidates:
            # Nothing to import from this file.
            return ParsedFile(relative_path=relative_path)
        logger.warning("%s", import_error)
        return ParsedFile(relative_path=relative_path, diagnostics=[import_error.to_diagnostic()])

    def _parse_path(self, relative_path: str) -> ParsedFile:
        path = self._settings.source_root / relative_path
        try:
            text = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as error:
            parse_error = WiregenParseError(relative_path, str(error))
            logger.warning("%s", parse_error)
            return ParsedFile(
                relative_path=relative_path,
                diagnostics=[parse_error.to_diagnostic()],
            )
        return self.parse_source(relative_path, text)

    def _merge(self, parsed_files: list[ParsedFile]) -> ScanResult:
        # Single merge point; runs on the calling thread in sorted path order.
        shapes_by_export = {
            declaration.name: parsed.class_shapes
            for parsed in parsed_files
            for declaration in parsed.declarations
            if declaration.name in parsed.class_shapes
        }
        index = DeclarationIndex()
        diagnostics: list[Diagnostic] = []
        value_candidates: list[tuple[Declaration, bool]] = []
        file_count = 0
        declarations: list[Declaration] = []
        for parsed in parsed_files:
            file_count += 1
            diagnostics.extend(parsed.diagnostics)
            declarations.extend(
                _with_inherited_constructor(declaration, parsed.class_shapes, shapes_by_export)
                for declaration in parsed.declarations
            )
            value_candidates.extend(parsed.value_candidates)

        try:
            for declaration in declarations:
                index.add(declaration)
            known_types = set(index.names())
            for candidate, marked in value_candidates:
                if marked or candidate.provides in known_types:
                    index.add(candidate)
                    continue
                logger.debug(
                    "Skipping module attribute %s at %s: %s is not a scanned type",
                    candidate.name,
                    candidate.location,
                    candidate.provides,
                )
        except WiregenAnalysisError as error:
            raise type(error)(error.diagnostic, (*diagnostics, *error.diagnostics)) from error

        logger.info(
            "Indexed %d declarations (%d contracts) from %d files with %d warnings",
            len(index),
            len(index.contracts()),
            file_count,
            len(diagnostics),
        )
        return ScanResult(index=index, diagnostics=tuple(diagnostics), file_count=file_count)

    def _import_path(self, relative_path: str) -> str:
        parts = list(PurePosixPath(relative_path).with_suffix("").parts)
        if parts and parts[-1] == _INIT_MODULE:
            parts.pop()
        if not all(part.isidentifier() for part in parts):
            raise WiregenParseError(relative_path, "path is not an importable module")
        if self._settings.import_root:
            parts.insert(0, self._settings.import_root)
        if not parts:
            raise WiregenParseError(relative_path, "package root needs an import_root setting")
        return ".".join(parts)


def _parse_tree(relative_path: str, text: str) -> ast.Module:
    try:
        return ast.parse(text, filename=relative_path)
    except SyntaxError as error:
        raise WiregenParseError(relative_path, error.msg, line=error.lineno) from error
    except ValueError as error:
        raise WiregenParseError(relative_path, str(error)) from error


def _is_generated(tree: ast.Module) -> bool:
    docstring = ast.get_docstring(tree)
    return docstring is not None and GENERATED_BY_MARKER in docstring


def _with_inherited_constructor(
    declaration: Declaration,
    local_shapes: Mapping[str, ClassShape],
    shapes_by_export: Mapping[str, Mapping[str, ClassShape]],
) -> Declaration:
    shape = local_shapes.get(declaration.name)
    if shape is None or shape.constructor is not None or declaration.is_contract:
        return declaration
    parameters = _inherited_parameters(declaration.name, local_shapes, shapes_by_export)
    if not parameters:
        return declaration
    logger.debug(
        "%s inherits constructor parameters %s",
        declaration.name,
        [parameter.name for parameter in parameters],
    )
    return replace(declaration, parameters=parameters)


def _inherited_parameters(
    name: str,
    local_shapes: Mapping[str, ClassShape],
    shapes_by_export: Mapping[str, Mapping[str, ClassShape]],
) -> tuple[Parameter, ...]:
    # Depth-first through the bases, left to right. A base resolves in the file
    # of the class naming it first, then among exported classes.
    seen = {name}
    pending = [(base, local_shapes) for base in local_shapes[name].bases]
    while pending:
        base, shapes = pending.pop(0)
        if base in seen:
            continue
        seen.add(base)
        owner = shapes if base in shapes else shapes_by_export.get(base)
        if owner is None:
            continue
        shape = owner[base]
        if shape.constructor is not None:
            return shape.constructor
        pending[:0] = [(item, owner) for item in shape.bases]
    return ()


class _ModuleVisitor:
    """Extracts exported declarations from the top level of one module."""

    def __init__(self, *, relative_path: str, import_path: str, lines: list[str]) -> None:
        self._relative_path = relative_path
        self._import_path = import_path
        self._lines = lines
        self._result = ParsedFile(relative_path=relative_path)

    def visit(self, tree: ast.Module) -> ParsedFile:
        exported = _literal_all(tree)
        for node in tree.body:
            if isinstance(node, ast.ClassDef):
                self._result.class_shapes[node.name] = ClassShape(
                    bases=_base_names(node),
                    constructor=_class_parameters(node),
                )
            name = _declared_name(node)
            if name is None or not _is_exported(name, exported):
                continue
            if isinstance(node, ast.ClassDef):
                self._visit_class(node)
            elif isinstance(node, ast.FunctionDef):
                self._visit_function(node)
            elif isinstance(node, ast.AnnAssign):
                self._visit_value(node, name)
        return self._result

    def _visit_class(self, node: ast.ClassDef) -> None:
        constructor = self._result.class_shapes[node.name].constructor
        annotations = self._annotations(node, docstring=ast.get_docstring(node))
        base_tokens = [token for token in map(type_token, node.bases) if token is not None]
        metaclass_tokens = {
            type_token(item.value) for item in node.keywords if item.arg == "metaclass"
        }
        is_contract = (
            any(token in _CONTRACT_BASES for token in base_tokens)
            or bool(metaclass_tokens & _CONTRACT_METACLASSES)
            or _has_abstract_members(node)
        )
        declaration = Declaration(
            name=node.name,
            file_path=self._relative_path,
            import_path=self._import_path,
            kind=DeclarationKind.CONTRACT if is_contract else DeclarationKind.CLASS,
            export_kind=ExportKind.CLASS,
            parameters=() if is_contract else constructor or (),
            supertypes=_base_names(node),
            annotations=annotations,
            line=_first_line(node),
        )
        logger.debug(
            "Found %s %s at %s with parameters %s",
            declaration.kind.value,
            declaration.name,
            declaration.location,
            [parameter.name for parameter in declaration.parameters],
        )
        self._result.declarations.append(declaration)

    def _visit_function(self, node: ast.FunctionDef) -> None:
        annotations = self._annotations(node, docstring=ast.get_docstring(node))
        marked = "factory" in annotations
        if not marked and not node.name.lower().startswith(_FACTORY_PREFIXES):
            return
        provides = type_token(node.returns) if node.returns is not None else None
        if provides is None:
            if marked:
                self._warn(node, f"factory '{node.name}' needs a return annotation naming a type")
            return
        self._result.declarations.append(
            Declaration(
                name=node.name,
                file_path=self._relative_path,
                import_path=self._import_path,
                export_kind=ExportKind.FACTORY,
                parameters=_function_parameters(node.args, skip_first=False),
                provides=provides,
                annotations=annotations,
                line=_first_line(node),
            ),
        )

    def _visit_value(self, node: ast.AnnAssign, name: str) -> None:
        if node.value is None:
            return
        provides = type_token(node.annotation)
        annotations = self._annotations(node, docstring=None)
        if provides is None:
            if "value" in annotations:
                self._warn(node, f"value '{name}' needs an annotation naming a type")
            return
        declaration = Declaration(
            name=name,
            file_path=self._relative_path,
            import_path=self._import_path,
            export_kind=ExportKind.VALUE,
            provides=provides,
            annotations=annotations,
            line=node.lineno,
        )
        self._result.value_candidates.append((declaration, "value" in annotations))

    def _annotations(self, node: ast.stmt, *, docstring: str | None) -> dict[str, str]:
        sources = [*self._leading_comments(node)]
        if docstring:
            sources.extend(docstring.splitlines())
        annotations: dict[str, str] = {}
        for text in sources:
            for match in _MARKER_PATTERN.finditer(text):
                tag = match.group("tag")
                argument = (match.group("argument") or "").lower()
                if tag != "scope":
                    annotations[tag] = argument
                    continue
                if argument not in {lifetime.value for lifetime in Lifetime}:
                    self._warn(node, f"unknown scope {argument or '<missing>'!r}")
                    continue
                annotations["scope"] = argument
        return annotations

    def _leading_comments(self, node: ast.stmt) -> list[str]:
        # Comment lines directly above the statement (or its first decorator).
        comments: list[str] = []
        index = _first_line(node) - 2
        while index >= 0:
            stripped = self._lines[index].strip()
            if not stripped.startswith("#"):
                break
            comments.append(stripped.lstrip("#").strip())
            index -= 1
        comments.reverse()
        return comments

    def _warn(self, node: ast.stmt, reason: str) -> None:
        error = WiregenParseError(self._relative_path, reason, line=_first_line(node))
        logger.warning("%s", error)
        self._result.diagnostics.append(error.to_diagnostic())


def type_token(node: ast.expr | None) -> str | None:
    """Reduce an annotation expression to the bare type name it refers to.

    ``pkg.Name`` yields ``Name``, ``"Name"`` is parsed as a forward reference,
    ``Optional[Name]``/``Name | None`` unwrap to ``Name`` and other subscripted
    generics reduce to their origin. Unions of several types yield ``None``.
    """
    if node is None:
        return None
    if isinstance(node, ast.Constant) and isinstance(node.value, str):
        try:
            expression = ast.parse(node.value, mode="eval")
        except SyntaxError:
            return None
        return type_token(expression.body)
    if isinstance(node, ast.Name):
        return node.id
    if isinstance(node, ast.Attribute):
        return node.attr
    if isinstance(node, ast.BinOp) and isinstance(node.op, ast.BitOr):
        return _single_member([node.left, node.right])
    if isinstance(node, ast.Subscript):
        origin = type_token(node.value)
        arguments = node.slice.elts if isinstance(node.slice, ast.Tuple) else [node.slice]
        if origin in _TRANSPARENT_WRAPPERS:
            return type_token(arguments[0])
        if origin == "Union":
            return _single_member(arguments)
        return origin
    return None


def _single_member(members: list[ast.expr]) -> str | None:
    flattened: list[ast.expr] = []
    pending = list(members)
    while pending:
        member = pending.pop(0)
        if isinstance(member, ast.BinOp) and isinstance(member.op, ast.BitOr):
            pending[:0] = [member.left, member.right]
            continue
        if isinstance(member, ast.Constant) and member.value is None:
            continue
        if isinstance(member, ast.Name) and member.id == "None":
            continue
        flattened.append(member)
    if len(flattened) != 1:
        return None
    return type_token(flattened[0])


def _declared_name(node: ast.stmt) -> str | None:
    if isinstance(node, ast.ClassDef | ast.FunctionDef):
        return node.name
    if isinstance(node, ast.AnnAssign) and isinstance(node.target, ast.Name):
        return node.target.id
    return None


def _is_exported(name: str, exported: frozenset[str] | None) -> bool:
    if name.startswith("_"):
        return False
    return exported is None or name in exported


def _literal_all(tree: ast.Module) -> frozenset[str] | None:
    for node in tree.body:
        if not isinstance(node, ast.Assign):
            continue
        targets = [target.id for target in node.targets if isinstance(target, ast.Name)]
        if "__all__" not in targets:
            continue
        if not isinstance(node.value, ast.List | ast.Tuple):
            return None
        return frozenset(
            element.value
            for element in node.value.elts
            if isinstance(element, ast.Constant) and isinstance(element.value, str)
        )
    return None


def _first_line(node: ast.stmt) -> int:
    decorators = getattr(node, "decorator_list", None)
    if decorators:
        return min(decorator.lineno for decorator in decorators)
    return node.lineno


def _has_abstract_members(node: ast.ClassDef) -> bool:
    for member in node.body:
        if not isinstance(member, ast.FunctionDef | ast.AsyncFunctionDef):
            continue
        decorators = {type_token(decorator) for decorator in member.decorator_list}
        if decorators & _ABSTRACT_DECORATORS:
            return True
    return False


def _base_names(node: ast.ClassDef) -> tuple[str, ...]:
    tokens = (type_token(base) for base in node.bases)
    return tuple(token for token in tokens if token is not None and token not in _IGNORED_BASES)


def _class_parameters(node: ast.ClassDef) -> tuple[Parameter, ...] | None:
    for member in node.body:
        if isinstance(member, ast.FunctionDef) and member.name == "__init__":
            return _function_parameters(member.args, skip_first=True)
    if any(_decorator_name(decorator) == "dataclass" for decorator in node.decorator_list):
        return _dataclass_parameters(node)
    return None


def _function_parameters(arguments: ast.arguments, *, skip_first: bool) -> tuple[Parameter, ...]:
    positional = [*arguments.posonlyargs, *arguments.args]
    defaults_start = len(positional) - len(arguments.defaults)
    parameters: list[Parameter] = []
    for position, argument in enumerate(positional):
        if skip_first and position == 0 and argument.arg in _IMPLICIT_FIRST_PARAMETER_NAMES:
            continue
        parameters.append(
            Parameter(
                name=argument.arg,
                type_ref=type_token(argument.annotation),
                kind=(
                    ParameterKind.POSITIONAL
                    if position < len(arguments.posonlyargs)
                    else ParameterKind.KEYWORD
                ),
                has_default=position >= defaults_start,
            ),
        )
    for argument, default in zip(arguments.kwonlyargs, arguments.kw_defaults, strict=True):
        parameters.append(
            Parameter(
                name=argument.arg,
                type_ref=type_token(argument.annotation),
                has_default=default is not None,
            ),
        )
    return tuple(parameters)


def _dataclass_parameters(node: ast.ClassDef) -> tuple[Parameter, ...]:
    parameters: list[Parameter] = []
    for member in node.body:
        if not isinstance(member, ast.AnnAssign) or not isinstance(member.target, ast.Name):
            continue
        if type_token(member.annotation) in {"ClassVar", "InitVar"}:
            continue
        field_call = _field_call(member.value)
        if field_call is not None and _field_keyword(field_call, "init") is False:
            continue
        parameters.append(
            Parameter(
                name=member.target.id,
                type_ref=type_token(member.annotation),
                has_default=_dataclass_field_has_default(member.value),
            ),
        )
    return tuple(parameters)


def _dataclass_field_has_default(value: ast.expr | None) -> bool:
    if value is None:
        return False
    field_call = _field_call(value)
    if field_call is None:
        return True
    return any(keyword.arg in {"default", "default_factory"} for keyword in field_call.keywords)


def _field_call(value: ast.expr | None) -> ast.Call | None:
    if isinstance(value, ast.Call) and type_token(value.func) == "field":
        return value
    return None


def _field_keyword(call: ast.Call, name: str) -> object:
    for keyword in call.keywords:
        if keyword.arg == name and isinstance(keyword.value, ast.Constant):
            return keyword.value.value
    return None


def _decorator_name(decorator: ast.expr) -> str | None:
    if isinstance(decorator, ast.Call):
        return type_token(decorator.func)
    return type_token(decorator)

