"""Prompt templates for the LLM merge oracle.

Each template uses ``{placeholder}`` syntax for variable substitution via
``str.format()``.
"""

from __future__ import annotations

from agentsync.merge import MergeMode, MergeRequest

# ---------------------------------------------------------------------------
# File merge
# ---------------------------------------------------------------------------

MERGE_SYSTEM_PROMPT = """\
You integrate generated Python declarations into an existing hand-edited \
source file. You return the complete file and nothing else: no markdown \
fences, no commentary.
"""

MERGE_PROMPT = """\
Merge the canonical component declarations below into the existing file `{path}`.

Rules:
1. Insert or replace each canonical text EXACTLY as given, character for \
character. Do not reformat, reorder keyword arguments or edit string contents.
2. A component marked REPLACE already exists in the file: swap out its whole \
existing declaration for the canonical text and keep the declared name.
3. A component marked REPLACE INLINE is a builder call nested inside another \
expression: swap out only that call, keeping the surrounding expression.
4. A component marked ADD is new: place it before the first statement that \
uses its name, or at the end of the file. When one ADD component uses another, \
the one used comes first.
5. A component marked REMOVE no longer exists: delete its whole declaration. \
Also delete the imports listed under "Imports to remove".
6. Touch nothing else. Keep every other declaration, comment, helper and \
blank line as it is.
7. Keep all imports at the top of the file. Add exactly the missing imports \
listed below; do not import names that are declared in this file.
8. The result must be valid Python 3.

## Required imports
{imports}

## Imports to remove
{drop_imports}

## Canonical components
{components}

## Existing file
```python
{existing}
```
"""

_COMPONENT_BLOCK = """\
### {label}: {kind} '{identifier}' (declared as `{declared_name}`)
```python
{text}
```
"""


def build_merge_prompt(request: MergeRequest) -> str:
    """Render :data:`MERGE_PROMPT` for one merge request."""
    blocks = []
    for comp in request.components:
        if comp.mode is MergeMode.ADD:
            label = "ADD"
        elif comp.mode is MergeMode.REMOVE:
            label = "REMOVE"
        elif comp.is_inline:
            label = "REPLACE INLINE"
        else:
            label = "REPLACE"
        blocks.append(
            _COMPONENT_BLOCK.format(
                label=label,
                kind=comp.kind.value,
                identifier=comp.identifier,
                declared_name=comp.declared_name,
                text=comp.text or "# (delete this declaration)",
            )
        )
    imports = "\n".join(spec.render() for spec in request.imports) or "(none)"
    drop_imports = "\n".join(spec.render() for spec in request.drop_imports) or "(none)"
    return MERGE_PROMPT.format(
        path=request.path,
        imports=imports,
        drop_imports=drop_imports,
        components="\n".join(blocks),
        existing=request.existing_text,
    )
