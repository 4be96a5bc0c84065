"""Deterministic formatting of Python literals and builder calls.

Output depends only on the value passed in: dict order is preserved as
given, strings without newlines use ``repr`` and multiline strings become
triple-quoted literals that evaluate back to the same text.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

INDENT = "    "
LINE_WIDTH = 88


@dataclass(frozen=True)
class Ref:
    """A bare name reference to another declaration."""

    name: str


@dataclass(frozen=True)
class Lambda:
    """``lambda: <body>``"""

    body: Any


@dataclass(frozen=True)
class Call:
    func: str
    args: tuple = ()
    kwargs: tuple[tuple[str, Any], ...] = field(default=())
    multiline: bool = False


def format_value(value: Any, indent: int = 0) -> str:
    """Format *value* as Python source starting at nesting level *indent*."""
    if not getattr(value, "multiline", False):
        inline = _inline(value)
        if inline is not None and len(INDENT * indent) + len(inline) <= LINE_WIDTH:
            return inline
    return _block(value, indent)


def format_string(value: str) -> str:
    if "\n" in value and all(c in "\n\t" or c.isprintable() for c in value):
        body = value.replace("\\", "\\\\").replace('"""', '\\"\\"\\"')
        if body.endswith('"'):
            body = body[:-1] + '\\"'
        return f'"""{body}"""'
    return repr(value)


def _inline(value: Any) -> str | None:
    """Single-line rendering, or None when *value* cannot fit on one line."""
    if isinstance(value, Ref):
        return value.name
    if isinstance(value, str):
        text = format_string(value)
        return None if "\n" in text else text
    if value is None or isinstance(value, (bool, int, float)):
        return repr(value)
    if isinstance(value, Lambda):
        body = _inline(value.body)
        return None if body is None else f"lambda: {body}"
    if isinstance(value, Call):
        if value.multiline:
            return None
        parts = [_inline(a) for a in value.args]
        parts += [_kw(k, _inline(v)) for k, v in value.kwargs]
        if any(p is None for p in parts):
            return None
        return f"{value.func}({', '.join(parts)})"
    if isinstance(value, (list, tuple)):
        items = [_inline(v) for v in value]
        if any(i is None for i in items):
            return None
        return f"[{', '.join(items)}]"
    if isinstance(value, dict):
        items = [_inline(v) for v in value.values()]
        if any(i is None for i in items):
            return None
        pairs = [f"{repr(k)}: {v}" for k, v in zip(value.keys(), items)]
        return "{" + ", ".join(pairs) + "}"
    raise TypeError(f"Cannot format value of type {type(value).__name__}")


def _kw(name: str, text: str | None) -> str | None:
    return None if text is None else f"{name}={text}"


def _block(value: Any, indent: int) -> str:
    pad = INDENT * indent
    inner = INDENT * (indent + 1)
    if isinstance(value, Call):
        if not value.args and not value.kwargs:
            return f"{value.func}()"
        lines = [f"{inner}{format_value(a, indent + 1)}," for a in value.args]
        lines += [f"{inner}{k}={format_value(v, indent + 1)}," for k, v in value.kwargs]
        return f"{value.func}(\n" + "\n".join(lines) + f"\n{pad})"
    if isinstance(value, Lambda):
        return f"lambda: {format_value(value.body, indent)}"
    if isinstance(value, (list, tuple)):
        if not value:
            return "[]"
        lines = [f"{inner}{format_value(v, indent + 1)}," for v in value]
        return "[\n" + "\n".join(lines) + f"\n{pad}]"
    if isinstance(value, dict):
        if not value:
            return "{}"
        lines = [f"{inner}{repr(k)}: {format_value(v, indent + 1)}," for k, v in value.items()]
        return "{\n" + "\n".join(lines) + f"\n{pad}}}"
    if isinstance(value, str):
        return format_string(value)
    inline = _inline(value)
    if inline is None:
        raise TypeError(f"Cannot format value of type {type(value).__name__}")
    return inline
