"""Source analyzer built on Tree-sitter syntax trees.

Extracts a shallow structural record per file: import specifiers, exported
names, top-level functions / classes / variables and simple metrics.  Nothing
is resolved or type-checked; nested and dynamic declarations are ignored.

======================= ============================ ======================
Extension               Grammar                      Extractor
======================= ============================ ======================
.ts                     tree_sitter_typescript       JavaScriptExtractor
.tsx                    tree_sitter_typescript (tsx) JavaScriptExtractor
.js .jsx .mjs .cjs      tree_sitter_javascript       JavaScriptExtractor
.py                     tree_sitter_python           PythonExtractor
======================= ============================ ======================

Everything else bypasses parsing and receives a fixed description.
"""

from __future__ import annotations

import importlib
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Any, Dict, List, Optional, Tuple

from tree_sitter import Language, Parser as TSParser

from .models import ClassInfo, FileRecord, FunctionInfo

logger = logging.getLogger(__name__)

PARSE_FAILURE_DESCRIPTION = "Could not analyze file content"
READ_FAILURE_DESCRIPTION = "Could not read file content"

# ---------------------------------------------------------------------------
# Extension tables
# ---------------------------------------------------------------------------
LANGUAGE_MAP: Dict[str, str] = {
    ".js": "javascript",
    ".jsx": "javascript",
    ".mjs": "javascript",
    ".cjs": "javascript",
    ".ts": "typescript",
    ".tsx": "typescript",
    ".py": "python",
    ".java": "java",
    ".go": "go",
    ".rb": "ruby",
    ".php": "php",
    ".cpp": "cpp",
    ".c": "c",
    ".cs": "csharp",
    ".swift": "swift",
    ".kt": "kotlin",
    ".rs": "rust",
    ".dart": "dart",
    ".scala": "scala",
    ".html": "html",
    ".css": "css",
    ".scss": "scss",
    ".json": "json",
    ".yaml": "yaml",
    ".yml": "yaml",
    ".md": "markdown",
}

# Extension -> grammar key in _GRAMMARS
GRAMMAR_FOR_EXTENSION: Dict[str, str] = {
    ".ts": "typescript",
    ".tsx": "tsx",
    ".js": "javascript",
    ".jsx": "javascript",
    ".mjs": "javascript",
    ".cjs": "javascript",
    ".py": "python",
}

SOURCE_LANGUAGE_NAMES: Dict[str, str] = {
    "java": "Java",
    "go": "Go",
    "ruby": "Ruby",
    "php": "PHP",
    "cpp": "C++",
    "c": "C",
    "csharp": "C#",
    "swift": "Swift",
    "kotlin": "Kotlin",
    "rust": "Rust",
    "dart": "Dart",
    "scala": "Scala",
}


def language_for_path(path: str) -> str:
    return LANGUAGE_MAP.get(PurePosixPath(path).suffix.lower(), "unknown")


def count_lines(text: str) -> int:
    """Newline-delimited segments, so a trailing newline adds an empty line."""
    return len(text.split("\n"))


def describe_non_code(path: str) -> str:
    language = language_for_path(path)
    if language == "json":
        return "JSON configuration or data file"
    if language == "markdown":
        return "Markdown documentation file"
    if language == "yaml":
        return "YAML configuration file"
    if language in SOURCE_LANGUAGE_NAMES:
        return f"{SOURCE_LANGUAGE_NAMES[language]} source file"
    return "Non-code file"


def describe_structure(
    functions: List[FunctionInfo],
    classes: List[ClassInfo],
    variables: List[str],
    imports: List[str],
    exports: List[str],
) -> str:
    parts: List[str] = []
    if functions:
        parts.append("functions " + ", ".join(f.name for f in functions))
    if classes:
        parts.append("classes " + ", ".join(c.name for c in classes))
    if variables:
        parts.append("variables " + ", ".join(variables))
    if parts:
        return "Contains " + " and ".join(parts) + "."
    if imports:
        return "Imports modules: " + ", ".join(imports)
    if exports:
        return "Exports: " + ", ".join(exports)
    return "File contains basic code structure"


def _text(node: Any) -> str:
    return node.text.decode("utf-8", errors="replace")


def _unquote(node: Any) -> str:
    return _text(node).strip("\"'`")


@dataclass
class Extraction:
    imports: List[str] = field(default_factory=list)
    exports: List[str] = field(default_factory=list)
    functions: List[FunctionInfo] = field(default_factory=list)
    classes: List[ClassInfo] = field(default_factory=list)
    variables: List[str] = field(default_factory=list)

    def add_export(self, name: str) -> None:
        if name and name not in self.exports:
            self.exports.append(name)


# ===================================================================
# Extractors
# ===================================================================

class LanguageExtractor(ABC):
    """Walks the top level of one syntax tree."""

    @abstractmethod
    def extract(self, root: Any) -> Extraction:
        ...


class JavaScriptExtractor(LanguageExtractor):
    """Handles JavaScript, TypeScript and TSX trees (shared node vocabulary)."""

    FUNCTION_TYPES = ("function_declaration", "generator_function_declaration")
    ANONYMOUS_FUNCTION_TYPES = ("function_expression", "function", "generator_function")
    CLASS_TYPES = ("class_declaration", "abstract_class_declaration")
    VARIABLE_TYPES = ("lexical_declaration", "variable_declaration")
    METHOD_TYPES = ("method_definition", "method_signature", "abstract_method_signature")
    FIELD_TYPES = ("public_field_definition", "field_definition")

    def extract(self, root: Any) -> Extraction:
        out = Extraction()
        for child in root.named_children:
            kind = child.type
            if kind == "import_statement":
                source = child.child_by_field_name("source")
                if source is not None:
                    out.imports.append(_unquote(source))
            elif kind == "export_statement":
                self._export(child, out)
            elif kind in self.FUNCTION_TYPES:
                out.functions.append(self._function(child, exported=False))
            elif kind in self.CLASS_TYPES:
                out.classes.append(self._class(child, exported=False))
            elif kind in self.VARIABLE_TYPES:
                out.variables.extend(self._variable_names(child))
        return out

    def _export(self, node: Any, out: Extraction) -> None:
        declaration = node.child_by_field_name("declaration")
        if declaration is not None:
            kind = declaration.type
            if kind in self.FUNCTION_TYPES:
                info = self._function(declaration, exported=True)
                out.functions.append(info)
                out.add_export(info.name)
            elif kind in self.CLASS_TYPES:
                cls = self._class(declaration, exported=True)
                out.classes.append(cls)
                out.add_export(cls.name)
            elif kind in self.VARIABLE_TYPES:
                for name in self._variable_names(declaration):
                    out.variables.append(name)
                    out.add_export(name)
            return

        value = node.child_by_field_name("value")
        if value is not None and value.type in self.ANONYMOUS_FUNCTION_TYPES:
            out.functions.append(self._function(value, exported=True))
            return

        for child in node.named_children:
            if child.type != "export_clause":
                continue
            for spec in child.named_children:
                if spec.type != "export_specifier":
                    continue
                target = spec.child_by_field_name("alias") or spec.child_by_field_name("name")
                if target is not None:
                    out.add_export(_unquote(target))

    def _function(self, node: Any, exported: bool) -> FunctionInfo:
        name_node = node.child_by_field_name("name")
        params_node = node.child_by_field_name("parameters")
        return_node = node.child_by_field_name("return_type")
        params: List[str] = []
        if params_node is not None:
            params = [
                self._parameter_name(p)
                for p in params_node.named_children
                if p.type != "comment"
            ]
        return FunctionInfo(
            name=_text(name_node) if name_node is not None else "<anonymous>",
            parameters=params,
            return_type=_text(return_node).lstrip(":").strip() if return_node is not None else "unknown",
            is_async=any(c.type == "async" for c in node.children),
            is_exported=exported,
        )

    @staticmethod
    def _parameter_name(node: Any) -> str:
        pattern = node.child_by_field_name("pattern")
        if pattern is not None:
            return _text(pattern)
        if node.type == "assignment_pattern":
            left = node.child_by_field_name("left")
            if left is not None:
                return _text(left)
        return _text(node)

    def _class(self, node: Any, exported: bool) -> ClassInfo:
        name_node = node.child_by_field_name("name")
        body = node.child_by_field_name("body")
        methods: List[str] = []
        properties: List[str] = []
        if body is not None:
            for member in body.named_children:
                if member.type in self.METHOD_TYPES:
                    member_name = member.child_by_field_name("name")
                    if member_name is not None:
                        methods.append(_text(member_name))
                elif member.type in self.FIELD_TYPES:
                    member_name = (
                        member.child_by_field_name("name")
                        or member.child_by_field_name("property")
                    )
                    if member_name is not None:
                        properties.append(_text(member_name))
        return ClassInfo(
            name=_text(name_node) if name_node is not None else "<anonymous>",
            methods=methods,
            properties=properties,
            is_exported=exported,
        )

    @staticmethod
    def _variable_names(node: Any) -> List[str]:
        names: List[str] = []
        for declarator in node.named_children:
            if declarator.type != "variable_declarator":
                continue
            name_node = declarator.child_by_field_name("name")
            if name_node is not None:
                names.append(_text(name_node))
        return names


class PythonExtractor(LanguageExtractor):
    """Top-level Python definitions; ``__all__`` drives the export list."""

    def extract(self, root: Any) -> Extraction:
        out = Extraction()
        declared_all: Optional[List[str]] = None

        for child in root.named_children:
            node = child
            # Unwrap @decorated_definition -> inner function/class
            if child.type == "decorated_definition":
                node = child.child_by_field_name("definition")
                if node is None:
                    continue

            if node.type == "import_statement":
                for name in node.children_by_field_name("name"):
                    if name.type == "aliased_import":
                        name = name.child_by_field_name("name")
                    if name is not None:
                        out.imports.append(_text(name))
            elif node.type == "import_from_statement":
                module = node.child_by_field_name("module_name")
                if module is not None:
                    out.imports.append(_text(module))
            elif node.type == "future_import_statement":
                out.imports.append("__future__")
            elif node.type == "function_definition":
                out.functions.append(self._function(node))
            elif node.type == "class_definition":
                out.classes.append(self._class(node))
            elif node.type == "expression_statement":
                for target, value in self._assignments(node):
                    if target == "__all__" and value is not None:
                        declared_all = [
                            _unquote(item) for item in value.named_children
                            if item.type == "string"
                        ]
                    out.variables.append(target)

        if declared_all is not None:
            for name in declared_all:
                out.add_export(name)
        else:
            for info in out.functions:
                if not info.name.startswith("_"):
                    out.add_export(info.name)
            for cls in out.classes:
                if not cls.name.startswith("_"):
                    out.add_export(cls.name)

        exported = set(out.exports)
        for info in out.functions:
            info.is_exported = info.name in exported
        for cls in out.classes:
            cls.is_exported = cls.name in exported
        return out

    @staticmethod
    def _assignments(statement: Any) -> List[Tuple[str, Any]]:
        found: List[Tuple[str, Any]] = []
        for expr in statement.named_children:
            if expr.type != "assignment":
                continue
            left = expr.child_by_field_name("left")
            if left is not None and left.type == "identifier":
                found.append((_text(left), expr.child_by_field_name("right")))
        return found

    @staticmethod
    def _parameter_name(node: Any) -> Optional[str]:
        if node.type in ("keyword_separator", "positional_separator", "comment"):
            return None
        if node.type in ("default_parameter", "typed_default_parameter"):
            name = node.child_by_field_name("name")
            return _text(name) if name is not None else None
        if node.type == "typed_parameter" and node.named_children:
            return _text(node.named_children[0])
        return _text(node)

    def _function(self, node: Any) -> FunctionInfo:
        name_node = node.child_by_field_name("name")
        params_node = node.child_by_field_name("parameters")
        return_node = node.child_by_field_name("return_type")
        params: List[str] = []
        if params_node is not None:
            for p in params_node.named_children:
                param = self._parameter_name(p)
                if param:
                    params.append(param)
        return FunctionInfo(
            name=_text(name_node) if name_node is not None else "<anonymous>",
            parameters=params,
            return_type=_text(return_node) if return_node is not None else "unknown",
            is_async=any(c.type == "async" for c in node.children),
        )

    def _class(self, node: Any) -> ClassInfo:
        name_node = node.child_by_field_name("name")
        body = node.child_by_field_name("body")
        methods: List[str] = []
        properties: List[str] = []
        if body is not None:
            for member in body.named_children:
                if member.type == "decorated_definition":
                    member = member.child_by_field_name("definition")
                    if member is None:
                        continue
                if member.type == "function_definition":
                    member_name = member.child_by_field_name("name")
                    if member_name is not None:
                        methods.append(_text(member_name))
                elif member.type == "expression_statement":
                    properties.extend(target for target, _ in self._assignments(member))
        return ClassInfo(
            name=_text(name_node) if name_node is not None else "<anonymous>",
            methods=methods,
            properties=properties,
        )


# ===================================================================
# Analyzer
# ===================================================================

class SourceAnalyzer:
    """Turns ``(path, text)`` into a :class:`FileRecord`.

    Grammars load once per analyzer.  A grammar that fails to load is logged
    and files needing it degrade exactly like parse failures.
    """

    # grammar key -> (module, function returning the Language capsule)
    _GRAMMARS: Dict[str, Tuple[str, str]] = {
        "typescript": ("tree_sitter_typescript", "language_typescript"),
        "tsx": ("tree_sitter_typescript", "language_tsx"),
        "javascript": ("tree_sitter_javascript", "language"),
        "python": ("tree_sitter_python", "language"),
    }

    def __init__(self) -> None:
        self._parsers: Dict[str, TSParser] = {}
        self._extractors: Dict[str, LanguageExtractor] = {
            "typescript": JavaScriptExtractor(),
            "tsx": JavaScriptExtractor(),
            "javascript": JavaScriptExtractor(),
            "python": PythonExtractor(),
        }
        self._init_parsers()

    def _init_parsers(self) -> None:
        for key, (mod_name, func_name) in self._GRAMMARS.items():
            try:
                mod = importlib.import_module(mod_name)
                self._parsers[key] = TSParser(Language(getattr(mod, func_name)()))
                logger.debug("Loaded tree-sitter grammar %s", key)
            except (ImportError, AttributeError, ValueError) as exc:
                logger.warning("Could not load tree-sitter grammar '%s': %s", key, exc)

    @staticmethod
    def is_code_file(path: str) -> bool:
        return PurePosixPath(path).suffix.lower() in GRAMMAR_FOR_EXTENSION

    def analyze(
        self,
        path: str,
        text: str,
        size_bytes: Optional[int] = None,
        last_modified: str = "",
    ) -> FileRecord:
        """Analyse one file.  Never raises for bad input; degrades instead."""
        record = FileRecord(
            path=path,
            language=language_for_path(path),
            lines_of_code=count_lines(text),
            size_bytes=len(text.encode("utf-8")) if size_bytes is None else size_bytes,
            last_modified=last_modified,
            content=text,
        )

        grammar = GRAMMAR_FOR_EXTENSION.get(PurePosixPath(path).suffix.lower())
        if grammar is None:
            record.description = describe_non_code(path)
            return record

        try:
            parser = self._parsers[grammar]
            tree = parser.parse(text.encode("utf-8"))
            found = self._extractors[grammar].extract(tree.root_node)
        except Exception as exc:
            logger.warning("Failed to analyze %s: %s", path, exc)
            record.description = PARSE_FAILURE_DESCRIPTION
            return record

        record.imports = found.imports
        record.exports = found.exports
        record.functions = found.functions
        record.classes = found.classes
        record.variables = found.variables
        record.description = describe_structure(
            found.functions, found.classes, found.variables, found.imports, found.exports,
        )
        return record
