"""JavaScript/TypeScript unit extraction on tree-sitter syntax trees.

Units are:

- ``function`` declarations, expressions and generators (unnamed ones are
  anonymous)
- arrow functions, named after the binding they are assigned to
- class and object methods, qualified as ``Class.method``
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

from llm_context.errors import UnparseableFileError
from llm_context.hashing import DEFAULT_ALGORITHM, hash_unit_source, normalize_source
from llm_context.parsers.base import (
    ParsedFile,
    ParsedUnit,
    UnitKeyAllocator,
    unit_identifier,
)
from llm_context.parsers.grammars import new_parser

if TYPE_CHECKING:
    from tree_sitter import Node

logger = logging.getLogger(__name__)

UNIT_NODE_TYPES = frozenset({
    "function_declaration",
    "generator_function_declaration",
    "function_expression",
    "function",
    "generator_function",
    "arrow_function",
    "method_definition",
})
CLASS_NODE_TYPES = frozenset({"class_declaration", "abstract_class_declaration", "class"})

# Parent node type -> field holding the name a function value is bound to
_BINDING_FIELDS = {
    "variable_declarator": ("name",),
    "assignment_expression": ("left",),
    "pair": ("key",),
    "field_definition": ("property",),
    "public_field_definition": ("name",),
}
_NAME_NODE_TYPES = frozenset({
    "identifier",
    "property_identifier",
    "private_property_identifier",
    "shorthand_property_identifier",
    "type_identifier",
})


def _text(node: "Node") -> str:
    return node.text.decode("utf-8")


def _is_unit(node: "Node") -> bool:
    # Keyword tokens share some type names ("function", "class") but are unnamed
    return node.is_named and node.type in UNIT_NODE_TYPES


def _name_of(node: Optional["Node"]) -> Optional[str]:
    if node is None:
        return None
    if node.type == "member_expression":
        node = node.child_by_field_name("property")
        if node is None:
            return None
    if node.type in _NAME_NODE_TYPES:
        return _text(node)
    if node.type == "string":
        return _text(node)[1:-1] or None
    return None


def _binding_name(node: "Node") -> Optional[str]:
    """Name a function value is assigned to, from its parent node."""
    parent = node.parent
    if parent is None:
        return None
    for field_name in _BINDING_FIELDS.get(parent.type, ()):
        name = _name_of(parent.child_by_field_name(field_name))
        if name:
            return name
    return None


def _unit_name(node: "Node") -> Optional[str]:
    name = _name_of(node.child_by_field_name("name"))
    if name is None and node.type == "method_definition":
        # Computed member names such as [Symbol.iterator]
        name_node = node.child_by_field_name("name")
        return _text(name_node) if name_node is not None else None
    if name is None and node.type != "function_declaration":
        name = _binding_name(node)
    return name


def _parameters(node: "Node") -> str:
    params = node.child_by_field_name("parameters")
    if params is not None:
        return f"({normalize_source(_text(params)[1:-1])})"
    single = node.child_by_field_name("parameter")
    if single is not None:
        return f"({_text(single)})"
    return "()"


def _is_async(node: "Node") -> bool:
    return any(child.type == "async" for child in node.children)


def _callee_name(node: "Node") -> Optional[str]:
    """Dotted name of a call target; None unless it is a plain member chain."""
    if node.type == "identifier":
        return _text(node)
    if node.type != "member_expression":
        return None
    prop = node.child_by_field_name("property")
    obj = node.child_by_field_name("object")
    if prop is None or obj is None:
        return None
    if obj.type == "this":
        return _text(prop)
    base = _callee_name(obj)
    if base is None:
        return None
    return f"{base}.{_text(prop)}"


def _first_error(root: "Node") -> Optional["Node"]:
    stack = [root]
    while stack:
        node = stack.pop()
        if node.type == "ERROR" or node.is_missing:
            return node
        if node.has_error:
            stack.extend(reversed(node.children))
    return None


@dataclass
class _Candidate:
    node: "Node"
    name: Optional[str]
    qualified: Optional[str]


class JavaScriptParser:
    """Extracts functions, arrows and class methods from JS/TS source."""

    def __init__(self, language: str = "javascript", hash_algorithm: str = DEFAULT_ALGORITHM):
        self.language = language
        self.hash_algorithm = hash_algorithm

    def parse(self, file_path: str, source: str) -> ParsedFile:
        tree = new_parser(self.language).parse(source.encode("utf-8"))
        root = tree.root_node
        if root.has_error:
            error = _first_error(root) or root
            line = error.start_point[0] + 1
            raise UnparseableFileError(file_path, f"syntax error at line {line}")

        parsed = ParsedFile(path=file_path, language=self.language, imports=self._find_imports(root))
        keys = UnitKeyAllocator()

        for candidate in self._find_units(root):
            node = candidate.node
            start_line = node.start_point[0] + 1
            key = keys.allocate(candidate.qualified, start_line)
            text = _text(node)
            name = candidate.name or "anonymous"
            parsed.units.append(
                ParsedUnit(
                    identifier=unit_identifier(file_path, key, start_line),
                    name=name,
                    key=key,
                    start_line=start_line,
                    end_line=node.end_point[0] + 1,
                    source=text,
                    normalized_hash=hash_unit_source(text, self.hash_algorithm),
                    parameters=_parameters(node),
                    is_async=_is_async(node),
                    called_names=self._find_calls(node, name),
                    imported_modules=list(parsed.imports),
                )
            )

        logger.debug(f"{file_path}: {len(parsed.units)} units")
        return parsed

    def _find_units(self, root: "Node") -> list[_Candidate]:
        """Unit nodes in source order, qualified by enclosing classes and named units."""
        found: list[_Candidate] = []
        stack: list[tuple["Node", tuple[str, ...]]] = [(root, ())]
        while stack:
            node, prefix = stack.pop()
            child_prefix = prefix
            if _is_unit(node):
                name = _unit_name(node)
                qualified = ".".join(prefix + (name,)) if name else None
                found.append(_Candidate(node=node, name=name, qualified=qualified))
                if name:
                    child_prefix = prefix + (name,)
            elif node.is_named and node.type in CLASS_NODE_TYPES:
                class_name = _name_of(node.child_by_field_name("name"))
                if class_name:
                    child_prefix = prefix + (class_name,)
            stack.extend((child, child_prefix) for child in reversed(node.children))
        return found

    def _find_calls(self, unit: "Node", own_name: str) -> list[str]:
        """Called names in a unit's body, leaving out nested units."""
        body = unit.child_by_field_name("body")
        if body is None:
            return []

        calls: list[str] = []
        stack = [body]
        while stack:
            node = stack.pop()
            if _is_unit(node):
                continue
            if node.type == "call_expression":
                target = node.child_by_field_name("function")
                name = _callee_name(target) if target is not None else None
                if name and name != own_name:
                    calls.append(name)
            stack.extend(reversed(node.children))
        return list(dict.fromkeys(calls))

    def _find_imports(self, root: "Node") -> list[str]:
        modules: list[str] = []
        stack = [root]
        while stack:
            node = stack.pop()
            if node.type in ("import_statement", "export_statement"):
                module = _name_of(node.child_by_field_name("source"))
                if module:
                    modules.append(module)
            elif node.type == "call_expression":
                target = node.child_by_field_name("function")
                args = node.child_by_field_name("arguments")
                if (
                    target is not None
                    and args is not None
                    and (target.type == "import" or _text(target) == "require")
                    and args.named_child_count
                    and args.named_children[0].type == "string"
                ):
                    modules.append(_text(args.named_children[0])[1:-1])
            stack.extend(reversed(node.children))
        return list(dict.fromkeys(modules))
