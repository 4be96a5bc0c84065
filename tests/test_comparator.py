"""Tests for the definition comparator."""

from agentsync.definition.comparator import (
    DifferenceKind,
    WarningKind,
    attribute_path,
    compare_definitions,
    record_field_path,
)
from agentsync.definition.models import ComponentKind, decode_definition


def test_identical_definitions_match(definition_data):
    remote = decode_definition(definition_data)
    local = decode_definition(definition_data)
    result = compare_definitions(remote, local)
    assert result.matches
    assert result.changed_components() == []


def test_volatile_timestamp_is_a_warning_only(definition_data):
    remote = decode_definition(definition_data)
    definition_data["updatedAt"] = "2030-06-01T00:00:00Z"
    definition_data["agents"]["support-agent"]["createdAt"] = "2030-06-01T00:00:00Z"
    local = decode_definition(definition_data)

    result = compare_definitions(remote, local)
    assert result.matches
    assert {w.kind for w in result.warnings} == {WarningKind.VOLATILE}
    assert {w.path for w in result.warnings} == {"updatedAt", "agents.support-agent.createdAt"}


def test_empty_and_absent_are_equal():
    remote = {"id": "p", "name": "P", "description": "", "agents": {}}
    local = {"id": "p", "name": "P", "tools": {}}
    assert compare_definitions(remote, local).matches


def test_reordered_id_list_is_a_warning(definition_data):
    definition_data["agents"]["support-agent"]["subAgents"]["triage"]["canTransferTo"] = [
        "billing",
        "triage",
    ]
    remote = decode_definition(definition_data)
    definition_data["agents"]["support-agent"]["subAgents"]["triage"]["canTransferTo"] = [
        "triage",
        "billing",
    ]
    local = decode_definition(definition_data)

    result = compare_definitions(remote, local)
    assert result.matches
    assert result.warnings[0].kind == WarningKind.REORDERED


def test_changed_prompt_is_attributed_to_agent(definition_data):
    local = decode_definition(definition_data)
    definition_data["agents"]["support-agent"]["prompt"] = "Be kind."
    remote = decode_definition(definition_data)

    result = compare_definitions(remote, local)
    assert not result.matches
    assert len(result.differences) == 1
    diff = result.differences[0]
    assert diff.path == "agents.support-agent.prompt"
    assert diff.kind == DifferenceKind.CHANGED
    assert diff.remote == "Be kind."
    assert result.changed_components() == [(ComponentKind.AGENT, "support-agent")]


def test_new_tool_and_sub_agent_change(definition_data):
    local = decode_definition(definition_data)
    definition_data["tools"]["weather-forecast"] = {
        "name": "Weather",
        "config": {"type": "mcp", "mcp": {"server": {"url": "https://w.example.com"}}},
    }
    definition_data["agents"]["support-agent"]["subAgents"]["billing"]["prompt"] = "Refunds."
    remote = decode_definition(definition_data)

    changed = compare_definitions(remote, local).changed_components()
    assert (ComponentKind.TOOL, "weather-forecast") in changed
    assert (ComponentKind.SUB_AGENT, "billing") in changed
    assert (ComponentKind.AGENT, "support-agent") not in changed


def test_missing_local_reports_everything_added(definition_data):
    remote = decode_definition(definition_data)
    result = compare_definitions(remote, None)
    assert not result.matches
    assert all(d.kind == DifferenceKind.ADDED for d in result.differences)
    changed = result.changed_components()
    assert (ComponentKind.PROJECT, "support-desk") in changed
    assert (ComponentKind.FUNCTION, "lookup-refund") in changed
    assert (ComponentKind.CREDENTIAL, "kb-key") in changed


def test_removed_component(definition_data):
    local = decode_definition(definition_data)
    del definition_data["dataComponents"]["ticket-card"]
    definition_data["agents"]["support-agent"]["subAgents"]["triage"]["dataComponents"] = []
    remote = decode_definition(definition_data)

    result = compare_definitions(remote, local)
    kinds = {d.path: d.kind for d in result.differences}
    assert kinds["dataComponents.ticket-card.id"] == DifferenceKind.REMOVED
    assert (ComponentKind.DATA_COMPONENT, "ticket-card") in result.changed_components()


def test_custom_volatile_paths(definition_data):
    local = decode_definition(definition_data)
    definition_data["description"] = "Changed"
    remote = decode_definition(definition_data)
    assert not compare_definitions(remote, local).matches
    assert compare_definitions(remote, local, volatile_paths=["description"]).matches


def test_attribute_path():
    assert attribute_path(("agents", "a", "subAgents", "s", "prompt"), "p") == (
        ComponentKind.SUB_AGENT,
        "s",
    )
    assert attribute_path(("agents", "a", "prompt"), "p") == (ComponentKind.AGENT, "a")
    assert attribute_path(("functionTools", "f", "name"), "p") == (
        ComponentKind.FUNCTION_TOOL,
        "f",
    )
    assert attribute_path(("name",), "p") == (ComponentKind.PROJECT, "p")
    assert attribute_path((), "p") is None


def test_timestamp_named_schema_property_is_a_real_difference(definition_data):
    definition_data["dataComponents"]["ticket-card"]["props"] = {
        "type": "object",
        "properties": {"createdAt": {"type": "string"}},
    }
    local = decode_definition(definition_data)
    definition_data["dataComponents"]["ticket-card"]["props"]["properties"]["createdAt"] = {
        "type": "integer"
    }
    remote = decode_definition(definition_data)

    result = compare_definitions(remote, local)
    assert [d.path for d in result.differences] == [
        "dataComponents.ticket-card.props.properties.createdAt.type"
    ]
    assert result.warnings == []


def test_component_with_timestamp_like_id_is_not_volatile(definition_data):
    local = decode_definition(definition_data)
    definition_data["dataComponents"]["updatedAt"] = {"name": "Update marker"}
    remote = decode_definition(definition_data)

    result = compare_definitions(remote, local)
    assert not result.matches
    assert (ComponentKind.DATA_COMPONENT, "updatedAt") in result.changed_components()


def test_sub_agent_timestamp_is_volatile():
    remote = {
        "id": "p",
        "name": "P",
        "agents": {"a": {"id": "a", "subAgents": {"s": {"id": "s", "createdAt": "2030"}}}},
    }
    local = {"id": "p", "name": "P", "agents": {"a": {"id": "a", "subAgents": {"s": {"id": "s"}}}}}
    result = compare_definitions(remote, local)
    assert result.matches
    assert [w.path for w in result.warnings] == ["agents.a.subAgents.s.createdAt"]


def test_record_field_path():
    assert record_field_path(("updatedAt",)) == "updatedAt"
    assert record_field_path(("tools",)) is None
    assert record_field_path(("tools", "kb", "createdAt")) == "tools.createdAt"
    assert record_field_path(("tools", "createdAt")) is None
    assert record_field_path(("agents", "a", "subAgents", "s", "createdAt")) == (
        "agents.subAgents.createdAt"
    )
    assert record_field_path(("dataComponents", "c", "props", "createdAt")) is None
