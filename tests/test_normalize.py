"""Tests for definition decoding and SDK-form normalization."""

import pytest
from pydantic import ValidationError

from agentsync.definition.models import ComponentKind, decode_definition, iter_components
from agentsync.definition.normalize import derive_definition, normalize_sdk_definition


# --- Normalization ---


def test_normalize_rewrites_shorthands():
    sdk_form = {
        "tools": {
            "kb": {"name": "KB", "credential": {"id": "kb-key", "type": "memory"}},
        },
        "agents": {
            "a": {
                "subAgents": {
                    "s": {
                        "canUse": ["kb", {"toolId": "other", "headers": {"x": "1"}}],
                        "canDelegateTo": ["t", {"subAgentId": "u"}],
                    }
                }
            }
        },
    }
    normalized = normalize_sdk_definition(sdk_form)

    assert normalized["tools"]["kb"] == {"name": "KB", "credentialReferenceId": "kb-key"}
    sub = normalized["agents"]["a"]["subAgents"]["s"]
    assert sub["canUse"] == [{"toolId": "kb"}, {"toolId": "other", "headers": {"x": "1"}}]
    assert sub["canDelegateTo"] == [{"subAgentId": "t"}, {"subAgentId": "u"}]
    # Input is left untouched.
    assert sdk_form["tools"]["kb"]["credential"] == {"id": "kb-key", "type": "memory"}


def test_normalize_leaves_api_form_alone(definition_data):
    assert normalize_sdk_definition(definition_data) == definition_data


def test_normalize_leaves_free_form_values_alone():
    schema = {
        "type": "object",
        "properties": {
            "credential": {"type": "object"},
            "canUse": ["a", "b"],
            "canDelegateTo": ["c"],
        },
    }
    sdk_form = {
        "id": "p",
        "dataComponents": {"card": {"name": "Card", "props": schema}},
        "functions": {"f": {"executeCode": "x", "inputSchema": schema}},
        "credentialReferences": {
            "k": {"retrievalParams": {"credential": {"id": "nested"}}},
        },
    }
    assert normalize_sdk_definition(sdk_form) == sdk_form


def test_derive_definition_decodes(definition_data):
    definition = derive_definition(definition_data)
    assert definition.id == "support-desk"
    assert definition.tools["knowledge-base"].credential_reference_id == "kb-key"


# --- Decoding ---


def test_decode_fills_ids_from_keys(definition_data):
    definition = decode_definition(definition_data)
    assert definition.agents["support-agent"].id == "support-agent"
    assert definition.agents["support-agent"].sub_agents["triage"].id == "triage"
    assert definition.functions["lookup-refund"].id == "lookup-refund"


def test_decode_rejects_key_id_mismatch(definition_data):
    definition_data["tools"]["knowledge-base"]["id"] = "kb"
    with pytest.raises(ValidationError, match="stored under 'knowledge-base'"):
        decode_definition(definition_data)


def test_decode_rejects_sub_agent_key_id_mismatch(definition_data):
    definition_data["agents"]["support-agent"]["subAgents"]["billing"]["id"] = "payments"
    with pytest.raises(ValidationError, match="subAgents"):
        decode_definition(definition_data)


def test_decode_ignores_unknown_keys(definition_data):
    definition_data["tenantId"] = "acme"
    definition_data["tools"]["knowledge-base"]["lastError"] = "timeout"
    definition = decode_definition(definition_data)
    assert "tenantId" not in definition.to_dict()
    assert "lastError" not in definition.tools["knowledge-base"].to_dict()


def test_status_updates_accept_embedded_records(definition_data):
    definition_data["agents"]["support-agent"]["statusUpdates"] = {
        "numEvents": 3,
        "statusComponents": [{"id": "progress", "name": "Progress"}, "done"],
    }
    definition = decode_definition(definition_data)
    updates = definition.agents["support-agent"].status_updates
    assert updates.status_components == ["progress", "done"]


def test_iter_components_order(definition_data):
    definition = decode_definition(definition_data)
    keys = [(kind, identifier) for kind, identifier, _r, _p in iter_components(definition)]
    assert keys[:4] == [
        (ComponentKind.PROJECT, "support-desk"),
        (ComponentKind.AGENT, "support-agent"),
        (ComponentKind.SUB_AGENT, "triage"),
        (ComponentKind.SUB_AGENT, "billing"),
    ]
    assert (ComponentKind.CREDENTIAL, "kb-key") == keys[-1]
    assert definition.get_component(ComponentKind.SUB_AGENT, "billing").name == "Billing"
    assert definition.parent_agent_of("billing") == "support-agent"
    assert definition.find_tool_kind("refund-lookup") is ComponentKind.FUNCTION_TOOL
