"""Splice merge oracle — deterministic, AST-guided merges.

Replacements swap the source span of the existing declaration (or of the
inline builder call) for the canonical text, and removals cut a declaration
out together with the blank lines after it. Additions are inserted before
the first top-level statement that refers to them, or appended; an addition
used by another addition lands before it. Imports of removed declarations
are dropped. Missing imports extend an existing single-line
``from m import ...`` or are added after the last top-level import. Nothing
else in the file is touched.
"""

from __future__ import annotations

import ast
import dataclasses
import io
import logging
import tokenize

from agentsync.codegen.renderer import ImportSpec
from agentsync.errors import MergeError
from agentsync.merge import CanonicalComponent, MergeMode, MergeRequest, MergeResponse
from agentsync.sync.locator import builder_kind, declared_identifier, top_level_binding

logger = logging.getLogger(__name__)


class SpliceMergeOracle:
    name = "splice"

    def merge(self, request: MergeRequest) -> MergeResponse:
        text = request.existing_text
        tree = _parse(text, request.path, "existing file")

        edits = []
        for comp in request.components:
            if comp.mode is MergeMode.REPLACE:
                edits.append(_replacement(text, tree, comp, request.path))
            elif comp.mode is MergeMode.REMOVE:
                edits.append(_removal(text, tree, comp, request.path))
        text = _apply_edits(text, edits, request.path)

        adds = [c for c in request.components if c.mode is MergeMode.ADD]
        for comp in insertion_order(adds, request.path):
            text = _insert_declaration(text, comp, request.path)

        text = drop_imports(text, request.drop_imports, request.path)
        text = reconcile_imports(text, request.imports, request.path)
        _parse(text, request.path, "merged result")
        logger.debug(
            "Spliced %d component(s) into %s", len(request.components), request.path
        )
        return MergeResponse(merged_text=text)


# ---------------------------------------------------------------------------
# Offsets
# ---------------------------------------------------------------------------


class _Lines:
    """Line table mapping ast positions (UTF-8 byte columns) to str offsets."""

    def __init__(self, text: str) -> None:
        self.lines = io.StringIO(text, newline="").readlines()
        self.starts = [0]
        for line in self.lines:
            self.starts.append(self.starts[-1] + len(line))

    def offset(self, lineno: int, col: int) -> int:
        index = lineno - 1
        if index >= len(self.lines):
            return self.starts[-1]
        prefix = self.lines[index].encode("utf-8")[:col].decode("utf-8", errors="ignore")
        return self.starts[index] + len(prefix)

    def indent_of(self, lineno: int) -> str:
        line = self.lines[lineno - 1]
        return line[: len(line) - len(line.lstrip(" \t"))]


def _parse(text: str, path: str, what: str) -> ast.Module:
    try:
        return ast.parse(text, filename=path)
    except SyntaxError as exc:
        raise MergeError(f"{path}: {what} does not parse: {exc}") from exc


# ---------------------------------------------------------------------------
# Replacement
# ---------------------------------------------------------------------------


def _find_declaration(tree: ast.Module, comp: CanonicalComponent) -> ast.stmt | None:
    for stmt in tree.body:
        _name, value = top_level_binding(stmt)
        if isinstance(value, ast.Call) and _matches(value, comp):
            return stmt
    return None


def _find_call(tree: ast.Module, comp: CanonicalComponent) -> ast.Call | None:
    for node in ast.walk(tree):
        if isinstance(node, ast.Call) and _matches(node, comp):
            return node
    return None


def _matches(call: ast.Call, comp: CanonicalComponent) -> bool:
    return builder_kind(call) is comp.kind and declared_identifier(call) == comp.identifier


def _replacement(
    text: str, tree: ast.Module, comp: CanonicalComponent, path: str
) -> tuple[int, int, str]:
    node = _find_call(tree, comp) if comp.is_inline else _find_declaration(tree, comp)
    if node is None:
        where = "inline call" if comp.is_inline else "declaration"
        raise MergeError(f"{path}: no {where} of {comp.kind.value} '{comp.identifier}' to replace")
    lines = _Lines(text)
    start = lines.offset(node.lineno, node.col_offset)
    end = lines.offset(node.end_lineno, node.end_col_offset)
    new_text = comp.text
    if comp.is_inline:
        new_text = reindent(comp.text, lines.indent_of(node.lineno))
    return start, end, new_text


def _apply_edits(text: str, edits: list[tuple[int, int, str]], path: str) -> str:
    ordered = sorted(edits)
    for before, after in zip(ordered, ordered[1:]):
        if after[0] < before[1]:
            raise MergeError(f"{path}: overlapping replacements")
    for start, end, new_text in reversed(ordered):
        text = text[:start] + new_text + text[end:]
    return text


def _removal(
    text: str, tree: ast.Module, comp: CanonicalComponent, path: str
) -> tuple[int, int, str]:
    node = _find_declaration(tree, comp)
    if node is None:
        raise MergeError(f"{path}: no declaration of {comp.kind.value} '{comp.identifier}' to remove")
    lines = _Lines(text)

    def blank(index: int) -> bool:
        return not lines.lines[index].strip()

    first, last = node.lineno - 1, node.end_lineno
    if first == 0 or blank(first - 1):
        while last < len(lines.lines) and blank(last):
            last += 1
    if last == len(lines.lines):
        while first > 0 and blank(first - 1):
            first -= 1
    return lines.starts[first], lines.starts[last], ""


def reindent(text: str, indent: str) -> str:
    """Prefix continuation lines of *text* with *indent*.

    Lines inside multiline string literals are left alone so the literal's
    value does not change.
    """
    if not indent:
        return text
    protected: set[int] = set()
    try:
        for tok in tokenize.generate_tokens(io.StringIO(text).readline):
            if tok.type == tokenize.STRING and tok.start[0] != tok.end[0]:
                protected.update(range(tok.start[0] + 1, tok.end[0] + 1))
    except (tokenize.TokenError, SyntaxError):
        pass
    out = []
    for number, line in enumerate(text.split("\n"), start=1):
        if number == 1 or number in protected or not line:
            out.append(line)
        else:
            out.append(indent + line)
    return "\n".join(out)


# ---------------------------------------------------------------------------
# Insertion
# ---------------------------------------------------------------------------


def _eager_names(tree: ast.AST) -> set[str]:
    """Names that must be bound when *tree* runs; lambda bodies run later."""
    found: set[str] = set()
    stack = [tree]
    while stack:
        node = stack.pop()
        if isinstance(node, ast.Lambda):
            continue
        if isinstance(node, ast.Name):
            found.add(node.id)
        stack.extend(ast.iter_child_nodes(node))
    return found


def insertion_order(adds: list[CanonicalComponent], path: str) -> list[CanonicalComponent]:
    """Order additions so that each is inserted after the additions using it.

    Every addition goes before its first user, so inserting users first puts
    a dependency ahead of everything that needs it.
    """
    by_name = {c.declared_name: c for c in adds}
    uses = {
        c.declared_name: sorted(
            (_eager_names(_parse(c.text, path, "canonical text")) & set(by_name)) - {c.declared_name}
        )
        for c in adds
    }
    ordered: list[CanonicalComponent] = []
    done: set[str] = set()

    def visit(name: str, active: set[str]) -> None:
        if name in done or name in active:
            return
        active.add(name)
        for dep in uses[name]:
            visit(dep, active)
        active.discard(name)
        done.add(name)
        ordered.append(by_name[name])

    for comp in adds:
        visit(comp.declared_name, set())
    ordered.reverse()
    return ordered


def _refers_to(stmt: ast.stmt, name: str) -> bool:
    return any(isinstance(n, ast.Name) and n.id == name for n in ast.walk(stmt))


def _insert_declaration(text: str, comp: CanonicalComponent, path: str) -> str:
    tree = _parse(text, path, "intermediate result")
    if _find_declaration(tree, comp) is not None:
        as_replacement = dataclasses.replace(comp, mode=MergeMode.REPLACE, is_inline=False)
        return _apply_edits(text, [_replacement(text, tree, as_replacement, path)], path)

    lines = _Lines(text)
    for stmt in tree.body:
        if isinstance(stmt, (ast.Import, ast.ImportFrom)):
            continue
        if _refers_to(stmt, comp.declared_name):
            first = min([stmt.lineno] + [d.lineno for d in getattr(stmt, "decorator_list", [])])
            pos = lines.offset(first, 0)
            return text[:pos] + comp.text + "\n\n" + text[pos:]

    body = text.rstrip("\n")
    return (body + "\n\n" if body else "") + comp.text + "\n"


# ---------------------------------------------------------------------------
# Imports
# ---------------------------------------------------------------------------


def _bound_names(stmt: ast.stmt) -> set[str]:
    if isinstance(stmt, (ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef)):
        return {stmt.name}
    names = set()
    targets = stmt.targets if isinstance(stmt, ast.Assign) else [getattr(stmt, "target", None)]
    for target in targets:
        if target is None:
            continue
        names.update(n.id for n in ast.walk(target) if isinstance(n, ast.Name))
    return names


def reconcile_imports(text: str, imports: list[ImportSpec], path: str) -> str:
    """Add the imports in *imports* that *text* does not already have."""
    if not imports:
        return text
    tree = _parse(text, path, "intermediate result")

    present: set[tuple[str, str]] = set()
    bound: set[str] = set()
    extendable: dict[str, ast.ImportFrom] = {}
    last_import_line = 0
    for stmt in tree.body:
        if isinstance(stmt, ast.ImportFrom):
            last_import_line = stmt.end_lineno
            if stmt.level or not stmt.module:
                continue
            for alias in stmt.names:
                if alias.asname in (None, alias.name):
                    present.add((stmt.module, alias.name))
            single_line = stmt.lineno == stmt.end_lineno
            if single_line and all(a.name != "*" for a in stmt.names):
                extendable.setdefault(stmt.module, stmt)
        elif isinstance(stmt, ast.Import):
            last_import_line = stmt.end_lineno
        else:
            bound |= _bound_names(stmt)

    missing: dict[str, list[str]] = {}
    for spec in imports:
        if (spec.module, spec.name) in present or spec.name in bound:
            continue
        names = missing.setdefault(spec.module, [])
        if spec.name not in names:
            names.append(spec.name)
    if not missing:
        return text

    table = _Lines(text)
    lines = list(table.lines)
    new_lines: list[str] = []
    for module in sorted(missing):
        names = sorted(missing[module])
        node = extendable.get(module)
        if node is None:
            new_lines.append(f"from {module} import {', '.join(names)}\n")
            continue
        line = lines[node.lineno - 1]
        end = len(
            line.encode("utf-8")[: node.end_col_offset].decode("utf-8", errors="ignore")
        )
        existing = [a.name if not a.asname else f"{a.name} as {a.asname}" for a in node.names]
        lines[node.lineno - 1] = f"from {module} import {', '.join(existing + names)}" + line[end:]

    if new_lines:
        if last_import_line:
            at = last_import_line
        elif tree.body and _is_docstring(tree.body[0]):
            at = tree.body[0].end_lineno
            new_lines.insert(0, "\n")
            new_lines.append("\n")
        else:
            at = 0
            new_lines.append("\n")
        if at and not lines[at - 1].endswith(("\n", "\r")):
            lines[at - 1] += "\n"
        lines[at:at] = new_lines
    return "".join(lines)


def drop_imports(text: str, imports: list[ImportSpec], path: str) -> str:
    """Remove the names in *imports* from top-level ``from m import ...`` statements.

    A statement left with no names is deleted with its line.
    """
    if not imports:
        return text
    drop = {(spec.module, spec.name) for spec in imports}
    tree = _parse(text, path, "intermediate result")
    lines = _Lines(text)
    edits = []
    for stmt in tree.body:
        if not isinstance(stmt, ast.ImportFrom) or stmt.level or not stmt.module:
            continue
        kept = [a for a in stmt.names if (stmt.module, a.name) not in drop]
        if len(kept) == len(stmt.names):
            continue
        if kept:
            names = ", ".join(a.name if not a.asname else f"{a.name} as {a.asname}" for a in kept)
            edits.append((
                lines.offset(stmt.lineno, stmt.col_offset),
                lines.offset(stmt.end_lineno, stmt.end_col_offset),
                f"from {stmt.module} import {names}",
            ))
        else:
            edits.append((lines.starts[stmt.lineno - 1], lines.starts[stmt.end_lineno], ""))
    return _apply_edits(text, edits, path)


def _is_docstring(stmt: ast.stmt) -> bool:
    return (
        isinstance(stmt, ast.Expr)
        and isinstance(stmt.value, ast.Constant)
        and isinstance(stmt.value.value, str)
    )
