"""Tests for the builder SDK and the definition loader."""

import tempfile
from pathlib import Path

import pytest

from agentsync.errors import CredentialNotFoundError, LoaderError
from agentsync.sdk import (
    agent,
    credential,
    data_component,
    function,
    function_tool,
    mcp_tool,
    project,
    status_component,
    status_updates,
    sub_agent,
    use,
)
from agentsync.sdk.loader import SubprocessDefinitionLoader, find_project, load_definition


def _kb_key():
    return credential(
        id="kb-key",
        name="KB key",
        type="memory",
        credential_store_id="memory-default",
        retrieval_params={"key": "KB_API_KEY"},
    )


def _support_desk():
    kb = mcp_tool(
        id="knowledge-base",
        name="Knowledge Base",
        server_url="https://kb.example.com/mcp",
        credential=_kb_key(),
    )
    refund = function_tool(
        id="refund-lookup",
        name="Refund Lookup",
        function=function(id="lookup-refund", execute_code="() => 1"),
    )
    triage = sub_agent(
        id="triage",
        name="Triage",
        can_use=[kb],
        can_transfer_to=lambda: [billing],
        data_components=[data_component(id="ticket-card", name="Ticket Card")],
    )
    billing = sub_agent(
        id="billing",
        name="Billing",
        can_use=[use(refund, headers={"x-team": "billing"})],
        can_delegate_to=[triage],
    )
    support = agent(
        id="support-agent",
        name="Support Agent",
        default_sub_agent=triage,
        sub_agents=[triage, billing],
        status_updates=status_updates(
            num_events=5, status_components=[status_component(id="progress", name="Progress")]
        ),
    )
    return project(id="support-desk", name="Support Desk", agents=[support])


# --- Builders ---


def test_full_definition_collects_reachable_components():
    data = _support_desk().get_full_definition()

    assert data["id"] == "support-desk"
    assert set(data["tools"]) == {"knowledge-base"}
    assert set(data["functionTools"]) == {"refund-lookup"}
    assert data["functionTools"]["refund-lookup"]["functionId"] == "lookup-refund"
    assert set(data["functions"]) == {"lookup-refund"}
    assert set(data["dataComponents"]) == {"ticket-card"}
    assert set(data["statusComponents"]) == {"progress"}
    assert set(data["credentialReferences"]) == {"kb-key"}
    assert data["artifactComponents"] == {}

    agent_data = data["agents"]["support-agent"]
    assert agent_data["defaultSubAgentId"] == "triage"
    assert agent_data["statusUpdates"] == {"numEvents": 5, "statusComponents": ["progress"]}
    triage = agent_data["subAgents"]["triage"]
    assert triage["canUse"] == ["knowledge-base"]
    assert triage["canTransferTo"] == ["billing"]
    billing = agent_data["subAgents"]["billing"]
    assert billing["canUse"] == [{"toolId": "refund-lookup", "headers": {"x-team": "billing"}}]
    assert billing["canDelegateTo"] == ["triage"]
    assert data["tools"]["knowledge-base"]["credential"]["id"] == "kb-key"


def test_unreachable_components_come_from_explicit_lists():
    weather = mcp_tool(id="weather-forecast", name="Weather", server_url="https://w")
    data = project(id="p", name="P", tools=[weather]).get_full_definition()
    assert data["tools"]["weather-forecast"]["config"] == {
        "type": "mcp",
        "mcp": {"server": {"url": "https://w"}},
    }
    assert data["agents"] == {}


def test_same_id_declared_twice_must_agree():
    first = mcp_tool(id="kb", name="KB", server_url="https://a")
    same = mcp_tool(id="kb", name="KB", server_url="https://a")
    project(id="p", name="P", tools=[first, same]).get_full_definition()

    other = mcp_tool(id="kb", name="KB", server_url="https://b")
    with pytest.raises(ValueError, match="Conflicting declarations for tools id 'kb'"):
        project(id="p", name="P", tools=[first, other]).get_full_definition()


def test_missing_credentials_and_secret(monkeypatch):
    monkeypatch.delenv("KB_API_KEY", raising=False)
    desk = _support_desk()
    assert desk.missing_credentials() == ["kb-key"]
    with pytest.raises(CredentialNotFoundError, match="KB_API_KEY"):
        _kb_key().secret()

    monkeypatch.setenv("KB_API_KEY", "s3cret")
    assert desk.missing_credentials() == []
    assert _kb_key().secret() == "s3cret"


def test_non_memory_credentials_are_not_checked():
    vault = credential(id="vault", name="Vault", type="nango", credential_store_id="nango")
    assert vault.env_key is None
    assert vault.is_configured()


# --- Loader ---


def test_find_project():
    desk = _support_desk()
    assert find_project({"supportDesk": desk, "alias": desk, "x": 1}) is desk
    with pytest.raises(LoaderError, match="does not declare"):
        find_project({"x": 1})
    with pytest.raises(LoaderError, match="more than one project"):
        find_project({"a": desk, "b": project(id="other", name="Other")})


def test_load_definition_in_process():
    with tempfile.TemporaryDirectory() as tmpdir:
        root = Path(tmpdir)
        (root / "index.py").write_text(
            "from agentsync.sdk import mcp_tool, project\n\n"
            "weather = mcp_tool(id='weather', name='Weather', server_url='https://w')\n\n"
            "desk = project(id='desk', name='Desk', tools=[weather])\n"
        )
        result = load_definition(root)
        assert result.definition["tools"]["weather"]["name"] == "Weather"
        assert result.missing_credentials == []

        with pytest.raises(LoaderError, match="not found"):
            load_definition(root, "main.py")


def _entry(root: Path, text: str) -> None:
    (root / "index.py").write_text(text)


def test_subprocess_loader_statuses(tmp_path, loader_env):
    loader = SubprocessDefinitionLoader(timeout=60)

    _entry(
        tmp_path,
        "from agentsync.sdk import project\n\n"
        "print('noise on stdout')\n"
        "desk = project(id='desk', name='Desk')\n",
    )
    assert loader.load(tmp_path).definition["id"] == "desk"

    _entry(
        tmp_path,
        "from agentsync.sdk import credential\n\n"
        "credential(id='k', name='K', type='memory', credential_store_id='m',\n"
        "           retrieval_params={'key': 'KB_API_KEY'}).secret()\n",
    )
    with pytest.raises(CredentialNotFoundError, match="KB_API_KEY"):
        loader.load(tmp_path)

    _entry(tmp_path, "from agentsync.sdk import project\n\nproject(id='desk', name=missing)\n")
    with pytest.raises(LoaderError, match="NameError") as info:
        loader.load(tmp_path)
    assert "Traceback" in info.value.details
    assert not (tmp_path / "__pycache__").exists()
