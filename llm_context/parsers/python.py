"""Python unit extraction using the standard library ``ast`` module."""

from __future__ import annotations

import ast
from typing import Optional, Union

from llm_context.errors import UnparseableFileError
from llm_context.hashing import DEFAULT_ALGORITHM, hash_unit_source
from llm_context.parsers.base import (
    ParsedFile,
    ParsedUnit,
    UnitKeyAllocator,
    unit_identifier,
)

FunctionNode = Union[ast.FunctionDef, ast.AsyncFunctionDef]

# Receivers stripped from method calls so self.save() is recorded as save
_SELF_NAMES = ("self", "cls")

_SCOPE_NODES = (ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef, ast.Lambda)


def extract_imports(tree: ast.AST) -> list[str]:
    """Extract imported module names from an AST.

    Args:
        tree: Module or function node.

    Returns:
        Module names in source order, deduplicated (e.g. ['os', '.utils']).
    """
    imports: list[str] = []

    for node in ast.walk(tree):
        if isinstance(node, ast.Import):
            # import os, sys
            for alias in node.names:
                imports.append(alias.name)

        elif isinstance(node, ast.ImportFrom):
            prefix = "." * node.level
            if node.module:
                # from os import path / from .utils import x
                imports.append(f"{prefix}{node.module}")
            else:
                # from . import utils
                for alias in node.names:
                    imports.append(prefix if alias.name == "*" else f"{prefix}{alias.name}")

    return list(dict.fromkeys(imports))


def _attribute_chain(node: ast.Attribute) -> tuple[Optional[str], list[str]]:
    """Split ``a.b.c`` into ("a", ["b", "c"]); base is None if not a plain name."""
    parts = []
    current: ast.expr = node
    while isinstance(current, ast.Attribute):
        parts.append(current.attr)
        current = current.value
    parts.reverse()
    if isinstance(current, ast.Name):
        return current.id, parts
    return None, parts


def call_name(node: ast.Call) -> Optional[str]:
    """Name recorded for a call expression.

    ``foo()`` -> ``foo``; ``self.foo()`` -> ``foo``; ``self.repo.save()`` ->
    ``repo.save``; ``obj.bar()`` -> ``obj.bar``; ``make().bar()`` -> ``bar``.
    Calls on subscripts, literals and other expressions without a name
    return None.
    """
    func = node.func
    if isinstance(func, ast.Name):
        return func.id
    if isinstance(func, ast.Attribute):
        base, parts = _attribute_chain(func)
        if base is None:
            return parts[-1]
        if base in _SELF_NAMES:
            return ".".join(parts)
        return ".".join([base] + parts)
    return None


def _iter_own_nodes(node: ast.AST):
    """Walk a unit's body without entering nested functions, classes or lambdas."""
    if isinstance(node, ast.Lambda):
        stack: list[ast.AST] = [node.body]
    else:
        stack = list(reversed(node.body))
    while stack:
        current = stack.pop()
        yield current
        for child in reversed(list(ast.iter_child_nodes(current))):
            if isinstance(child, _SCOPE_NODES):
                continue
            stack.append(child)


def extract_calls(node: ast.AST, own_name: str) -> list[str]:
    """Called names of one unit, deduplicated in first-seen order."""
    calls: list[str] = []
    for child in _iter_own_nodes(node):
        if isinstance(child, ast.Call):
            name = call_name(child)
            if name and name != own_name:
                calls.append(name)
    return list(dict.fromkeys(calls))


class PythonParser:
    """Extracts functions, methods and named lambdas from Python source."""

    language = "python"

    def __init__(self, hash_algorithm: str = DEFAULT_ALGORITHM):
        self.hash_algorithm = hash_algorithm

    def parse(self, file_path: str, source: str) -> ParsedFile:
        try:
            tree = ast.parse(source, filename=file_path)
        except (SyntaxError, ValueError) as e:
            raise UnparseableFileError(file_path, str(e))

        module_imports = extract_imports(tree)
        parsed = ParsedFile(path=file_path, language=self.language, imports=module_imports)
        keys = UnitKeyAllocator()

        def visit(body: list[ast.stmt], scope: list[str]) -> None:
            for stmt in body:
                for node in _statement_units(stmt):
                    if isinstance(node, ast.ClassDef):
                        visit(node.body, scope + [node.name])
                        continue
                    name, func = node
                    qualified = ".".join(scope + [name])
                    parsed.units.append(
                        self._build_unit(file_path, source, func, name, qualified, keys, module_imports)
                    )
                    if isinstance(func, (ast.FunctionDef, ast.AsyncFunctionDef)):
                        visit(func.body, scope + [name])
                # Compound statements (if/for/try/with) may hold definitions too
                for child_body in _nested_bodies(stmt):
                    visit(child_body, scope)

        visit(tree.body, [])
        return parsed

    def _build_unit(
        self,
        file_path: str,
        source: str,
        node: Union[FunctionNode, ast.Lambda],
        name: str,
        qualified: str,
        keys: UnitKeyAllocator,
        module_imports: list[str],
    ) -> ParsedUnit:
        segment = ast.get_source_segment(source, node) or ""
        key = keys.allocate(qualified, node.lineno)
        return ParsedUnit(
            identifier=unit_identifier(file_path, key, node.lineno),
            name=name,
            key=key,
            start_line=node.lineno,
            end_line=node.end_lineno or node.lineno,
            source=segment,
            normalized_hash=hash_unit_source(segment, self.hash_algorithm),
            parameters=f"({ast.unparse(node.args)})",
            is_async=isinstance(node, ast.AsyncFunctionDef),
            called_names=extract_calls(node, name),
            imported_modules=list(module_imports),
        )


def _statement_units(stmt: ast.stmt) -> list:
    """Definitions introduced directly by one statement.

    Returns ClassDef nodes as-is and (name, node) pairs for units.
    """
    if isinstance(stmt, (ast.FunctionDef, ast.AsyncFunctionDef)):
        return [(stmt.name, stmt)]
    if isinstance(stmt, ast.ClassDef):
        return [stmt]
    # handler = lambda event: ...
    if isinstance(stmt, ast.Assign) and isinstance(stmt.value, ast.Lambda):
        if len(stmt.targets) == 1 and isinstance(stmt.targets[0], ast.Name):
            return [(stmt.targets[0].id, stmt.value)]
    if isinstance(stmt, ast.AnnAssign) and isinstance(stmt.value, ast.Lambda):
        if isinstance(stmt.target, ast.Name):
            return [(stmt.target.id, stmt.value)]
    return []


def _nested_bodies(stmt: ast.stmt) -> list[list[ast.stmt]]:
    """Statement lists nested in compound statements other than def/class."""
    if isinstance(stmt, (ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef)):
        return []
    bodies = []
    for attr in ("body", "orelse", "finalbody"):
        value = getattr(stmt, attr, None)
        if isinstance(value, list) and value and isinstance(value[0], ast.stmt):
            bodies.append(value)
    for handler in getattr(stmt, "handlers", []) or []:
        bodies.append(handler.body)
    for case in getattr(stmt, "cases", []) or []:
        bodies.append(case.body)
    return bodies
