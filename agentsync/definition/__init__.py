"""Definition layer — typed records, SDK-form normalization, and structural comparison."""

from agentsync.definition.models import (
    ComponentKind,
    ProjectDefinition,
    component_key,
    decode_definition,
    iter_components,
)

__all__ = [
    "ComponentKind",
    "ProjectDefinition",
    "component_key",
    "decode_definition",
    "iter_components",
]
