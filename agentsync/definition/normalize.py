"""Normalize SDK-form definitions to the API form.

A definition derived from source carries the SDK's shorthand encodings for
cross references. The remote API spells the same references out with
explicit identifier fields. Both must agree before they are compared:

- ``credential: {id: ...}`` on a tool  -> ``credentialReferenceId: id``
- bare tool id in ``canUse``           -> ``{toolId: id}``
- bare sub-agent id in ``canDelegateTo`` -> ``{subAgentId: id}``

Only those record fields are rewritten. Free-form values (schemas, props,
retrieval parameters) may use the same key names and pass through as is.
"""

from __future__ import annotations

from typing import Any

from agentsync.definition.models import ProjectDefinition, decode_definition


def normalize_sdk_definition(data: Any) -> Any:
    """Return a copy of *data* with SDK shorthands rewritten to API form."""
    if not isinstance(data, dict):
        return data

    normalized = dict(data)
    if isinstance(data.get("tools"), dict):
        normalized["tools"] = {
            tool_id: _normalize_tool(tool) for tool_id, tool in data["tools"].items()
        }
    if isinstance(data.get("agents"), dict):
        normalized["agents"] = {
            agent_id: _normalize_agent(agent) for agent_id, agent in data["agents"].items()
        }
    return normalized


def _normalize_tool(tool: Any) -> Any:
    if not isinstance(tool, dict) or not isinstance(tool.get("credential"), dict):
        return tool
    normalized = {k: v for k, v in tool.items() if k != "credential"}
    normalized["credentialReferenceId"] = tool["credential"].get("id")
    return normalized


def _normalize_agent(agent: Any) -> Any:
    if not isinstance(agent, dict) or not isinstance(agent.get("subAgents"), dict):
        return agent
    normalized = dict(agent)
    normalized["subAgents"] = {
        sub_id: _normalize_sub_agent(sub) for sub_id, sub in agent["subAgents"].items()
    }
    return normalized


def _normalize_sub_agent(sub: Any) -> Any:
    if not isinstance(sub, dict):
        return sub
    normalized = dict(sub)
    if isinstance(sub.get("canUse"), list):
        normalized["canUse"] = [
            {"toolId": item} if isinstance(item, str) else item for item in sub["canUse"]
        ]
    if isinstance(sub.get("canDelegateTo"), list):
        normalized["canDelegateTo"] = [
            {"subAgentId": item} if isinstance(item, str) else item
            for item in sub["canDelegateTo"]
        ]
    return normalized


def derive_definition(sdk_form: dict[str, Any]) -> ProjectDefinition:
    """Normalize a definition produced by the builder SDK and decode it.

    Raises ``pydantic.ValidationError`` when the result is not a valid
    definition.
    """
    return decode_definition(normalize_sdk_definition(sdk_form))
