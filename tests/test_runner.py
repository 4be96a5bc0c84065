"""End-to-end sync tests: file-backed remote, real loader subprocess, splice merges."""

import hashlib
import json

import pytest

from agentsync.config import MergeStrategy, SyncConfig
from agentsync.definition.models import ComponentKind
from agentsync.errors import (
    ConfigError,
    MergeError,
    RetriesExhaustedError,
    SyncCancelledError,
    ValidationMismatchError,
)
from agentsync.merge import MergeMode, MergeResponse
from agentsync.merge.llm_oracle import LLMMergeOracle
from agentsync.merge.splice import SpliceMergeOracle
from agentsync.remote.file_source import FileDefinitionSource
from agentsync.sync.history import SyncHistory
from agentsync.sync.orchestrator import ChangeClassification
from agentsync.sync.runner import SyncRunner, SyncStatus, build_oracle

NEW_PROMPT = "Help customers politely.\nEscalate billing disputes."

WEATHER = {
    "name": "Weather Forecast",
    "config": {"type": "mcp", "mcp": {"server": {"url": "https://weather.example.com/mcp"}}},
}


class RecordingOracle:
    name = "recording"

    def __init__(self):
        self.inner = SpliceMergeOracle()
        self.requests = []

    def merge(self, request):
        self.requests.append(request)
        return self.inner.merge(request)


class TamperingOracle(RecordingOracle):
    """Merges correctly, then rewrites the new prompt."""

    def merge(self, request):
        response = super().merge(request)
        return MergeResponse(merged_text=response.merged_text.replace("politely", "rudely"))


class FailingOracle(RecordingOracle):
    def merge(self, request):
        self.requests.append(request)
        raise MergeError(f"{request.path}: merge request timed out")


def _hash_tree(root):
    digest = {}
    for path in sorted(root.rglob("*")):
        if path.is_file():
            digest[path.relative_to(root).as_posix()] = hashlib.sha256(path.read_bytes()).hexdigest()
    return digest


@pytest.fixture
def workspace(tmp_path, loader_env):
    root = tmp_path / "project"
    root.mkdir()
    scratch = tmp_path / "scratch"
    remote_file = tmp_path / "remote.json"
    config = SyncConfig(project_id="support-desk", scratch_dir=scratch)
    return root, scratch, remote_file, config


def _runner(workspace, data, oracle=None, confirm=None):
    root, _scratch, remote_file, config = workspace
    remote_file.write_text(json.dumps(data))
    return SyncRunner(
        root,
        config,
        FileDefinitionSource(remote_file),
        oracle=oracle or SpliceMergeOracle(),
        confirm=confirm,
    )


def _initial_pull(workspace, data):
    result = _runner(workspace, data).run()
    assert result.status is SyncStatus.PROMOTED
    return result


def _changed(data):
    data["agents"]["support-agent"]["prompt"] = NEW_PROMPT
    data["tools"]["weather-forecast"] = WEATHER
    return data


# --- Fresh tree and idempotence ---


def test_initial_pull_generates_tree(workspace, definition_data):
    root, scratch, _remote, _config = workspace
    result = _initial_pull(workspace, definition_data)

    assert result.files == [
        "agents/__init__.py",
        "agents/support_agent.py",
        "credentials/__init__.py",
        "credentials/kb_key.py",
        "data_components/__init__.py",
        "data_components/ticket_card.py",
        "functions/__init__.py",
        "functions/lookup_refund.py",
        "index.py",
        "tools/__init__.py",
        "tools/knowledge_base.py",
        "tools/refund_lookup.py",
    ]
    assert result.attempts == 1
    assert any("kb-key" in w for w in result.warnings)
    assert "supportDesk = project(" in (root / "index.py").read_text()
    assert "from credentials.kb_key import kbKey" in (root / "tools/knowledge_base.py").read_text()
    assert list(scratch.iterdir()) == []

    records = SyncHistory(root).get_history()
    assert len(records) == 1
    assert records[0].merge_strategy == "splice"
    assert records[0].files == result.files


def test_second_pull_writes_nothing(workspace, definition_data):
    root = workspace[0]
    _initial_pull(workspace, definition_data)
    before = _hash_tree(root)

    result = _runner(workspace, definition_data).run()

    assert result.status is SyncStatus.UP_TO_DATE
    assert result.comparison.matches
    assert result.files == []
    assert _hash_tree(root) == before
    assert len(SyncHistory(root).get_history()) == 1


def test_schema_keys_shaped_like_sdk_shorthands_round_trip(workspace, definition_data):
    definition_data["dataComponents"]["ticket-card"]["props"] = {
        "type": "object",
        "properties": {
            "credential": {"type": "object"},
            "createdAt": {"type": "string"},
        },
    }
    _initial_pull(workspace, definition_data)

    definition_data["dataComponents"]["ticket-card"]["props"]["properties"]["createdAt"] = {
        "type": "integer"
    }
    result = _runner(workspace, definition_data).run()
    assert result.status is SyncStatus.PROMOTED
    assert "data_components/ticket_card.py" in result.files
    assert _runner(workspace, definition_data).run().status is SyncStatus.UP_TO_DATE


def test_timestamp_only_change_is_up_to_date(workspace, definition_data):
    _initial_pull(workspace, definition_data)
    definition_data["updatedAt"] = "2031-01-01T00:00:00Z"
    result = _runner(workspace, definition_data).run()
    assert result.status is SyncStatus.UP_TO_DATE
    assert result.comparison.warnings


# --- Incremental changes ---


def test_new_tool_and_changed_agent_prompt(workspace, definition_data):
    root, scratch, _remote, _config = workspace
    _initial_pull(workspace, definition_data)
    (root / "agents/support_agent.py").write_text(
        (root / "agents/support_agent.py").read_text() + "\n\n# Reviewed by the support team.\n"
    )

    oracle = RecordingOracle()
    result = _runner(workspace, _changed(definition_data), oracle=oracle).run()

    assert result.status is SyncStatus.PROMOTED
    assert result.files == ["agents/support_agent.py", "index.py", "tools/weather_forecast.py"]
    changes = {(c.kind, c.identifier): c.classification for c in result.changes}
    assert changes == {
        (ComponentKind.AGENT, "support-agent"): ChangeClassification.MODIFIED,
        (ComponentKind.TOOL, "weather-forecast"): ChangeClassification.ADDED,
    }

    assert [r.path for r in oracle.requests] == ["agents/support_agent.py", "index.py"]
    request = oracle.requests[0]
    [component] = request.components
    assert component.mode is MergeMode.REPLACE
    assert component.kind is ComponentKind.AGENT
    assert '"""Help customers politely.\nEscalate billing disputes."""' in component.text

    weather = (root / "tools/weather_forecast.py").read_text()
    assert "weatherForecast = mcp_tool(" in weather
    assert "id='weather-forecast'," in weather
    agent_text = (root / "agents/support_agent.py").read_text()
    assert "# Reviewed by the support team." in agent_text
    assert "Escalate billing disputes." in agent_text
    assert list(scratch.iterdir()) == []

    again = _runner(workspace, definition_data).run()
    assert again.status is SyncStatus.UP_TO_DATE


def test_hand_edits_to_the_entry_point_survive(workspace, definition_data):
    root = workspace[0]
    _initial_pull(workspace, definition_data)
    index = root / "index.py"
    index.write_text(
        '"""Support desk entry point."""\n\n# my handwritten project\n' + index.read_text()
    )
    edited = index.read_text()

    kb = definition_data["tools"]["knowledge-base"]
    kb["config"]["mcp"]["server"]["url"] = "https://kb2.example.com/mcp"
    result = _runner(workspace, definition_data).run()
    assert result.status is SyncStatus.PROMOTED
    assert result.files == ["tools/knowledge_base.py"]
    assert index.read_text() == edited

    definition_data["tools"]["weather-forecast"] = WEATHER
    result = _runner(workspace, definition_data).run()
    assert result.files == ["index.py", "tools/weather_forecast.py"]
    text = index.read_text()
    assert text.startswith('"""Support desk entry point."""\n\n# my handwritten project\n')
    assert "tools=[weatherForecast]," in text
    assert _runner(workspace, definition_data).run().status is SyncStatus.UP_TO_DATE


def test_dry_run_validates_without_writing(workspace, definition_data):
    root = workspace[0]
    _initial_pull(workspace, definition_data)
    before = _hash_tree(root)

    result = _runner(workspace, _changed(definition_data)).run(dry_run=True)

    assert result.status is SyncStatus.DRY_RUN
    assert "tools/weather_forecast.py" in result.files
    assert _hash_tree(root) == before


def test_declined_confirmation_writes_nothing(workspace, definition_data):
    root = workspace[0]
    _initial_pull(workspace, definition_data)
    before = _hash_tree(root)
    seen = []

    def decline(changes, files, removed):
        seen.append(files)
        return False

    with pytest.raises(SyncCancelledError):
        _runner(workspace, _changed(definition_data), confirm=decline).run()
    assert seen and "index.py" in seen[0]
    assert _hash_tree(root) == before


# --- Pull modes ---


def _drop_ticket_card(data):
    del data["dataComponents"]["ticket-card"]
    del data["agents"]["support-agent"]["subAgents"]["triage"]["dataComponents"]
    return data


def test_clean_stale_deletes_files_of_removed_components(workspace, definition_data):
    root = workspace[0]
    _initial_pull(workspace, definition_data)
    remote = _drop_ticket_card(definition_data)

    result = _runner(workspace, remote).run(clean_stale=True)

    assert result.status is SyncStatus.PROMOTED
    assert result.removed == ["data_components/ticket_card.py"]
    assert not (root / "data_components/ticket_card.py").exists()
    assert "ticketCard" not in (root / "agents/support_agent.py").read_text()
    assert SyncHistory(root).get_latest("support-desk").removed == result.removed
    assert _runner(workspace, remote).run().status is SyncStatus.UP_TO_DATE


def test_stale_files_stay_without_clean_stale(workspace, definition_data):
    root = workspace[0]
    _initial_pull(workspace, definition_data)

    result = _runner(workspace, _drop_ticket_card(definition_data)).run()

    assert result.status is SyncStatus.PROMOTED
    assert result.removed == []
    assert (root / "data_components/ticket_card.py").is_file()


def test_regenerate_rewrites_an_up_to_date_tree(workspace, definition_data):
    root = workspace[0]
    _initial_pull(workspace, definition_data)
    agent_file = root / "agents/support_agent.py"
    pristine = agent_file.read_text()
    agent_file.write_text(pristine + "\n\n# Reviewed by the support team.\n")

    result = _runner(workspace, definition_data).run(regenerate=True)

    assert result.status is SyncStatus.PROMOTED
    assert result.changes == []
    assert result.files == ["agents/support_agent.py"]
    assert agent_file.read_text() == pristine
    assert SyncHistory(root).get_latest("support-desk").merge_strategy == "regenerate"


# --- Failure paths ---


def test_validation_failure_on_every_attempt_leaves_tree_untouched(workspace, definition_data):
    root, scratch, _remote, _config = workspace
    _initial_pull(workspace, definition_data)
    before = _hash_tree(root)

    oracle = TamperingOracle()
    with pytest.raises(RetriesExhaustedError) as info:
        _runner(workspace, _changed(definition_data), oracle=oracle).run()

    assert info.value.attempts == 3
    assert isinstance(info.value.last_error, ValidationMismatchError)
    assert len(oracle.requests) == 3
    assert _hash_tree(root) == before
    assert list(scratch.iterdir()) == []


def test_merge_failure_on_every_attempt_leaves_tree_untouched(workspace, definition_data):
    root = workspace[0]
    _initial_pull(workspace, definition_data)
    before = _hash_tree(root)

    oracle = FailingOracle()
    with pytest.raises(RetriesExhaustedError) as info:
        _runner(workspace, _changed(definition_data), oracle=oracle).run()

    assert isinstance(info.value.last_error, MergeError)
    assert info.value.last_error.failures == {
        "agents/support_agent.py": "agents/support_agent.py: merge request timed out"
    }
    assert len(oracle.requests) == 3
    assert _hash_tree(root) == before


def test_recovers_on_a_later_attempt(workspace, definition_data):
    _initial_pull(workspace, definition_data)

    class FlakyOracle(RecordingOracle):
        def merge(self, request):
            if not self.requests:
                self.requests.append(request)
                raise MergeError("transient")
            return super().merge(request)

    oracle = FlakyOracle()
    result = _runner(workspace, _changed(definition_data), oracle=oracle).run()
    assert result.status is SyncStatus.PROMOTED
    assert result.attempts == 2


# --- Diff and collaborators ---


def test_diff_reports_changes_with_paths(workspace, definition_data):
    _initial_pull(workspace, definition_data)
    report = _runner(workspace, _changed(definition_data)).diff()
    paths = {c.identifier: c.path for c in report.changes}
    assert paths == {
        "support-agent": "agents/support_agent.py",
        "weather-forecast": "tools/weather_forecast.py",
    }
    assert report.local_loaded


def test_runner_requires_project_id(tmp_path):
    with pytest.raises(ConfigError):
        SyncRunner(tmp_path, SyncConfig(), FileDefinitionSource(tmp_path / "x.json"))


def test_build_oracle(monkeypatch):
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
    assert isinstance(build_oracle(SyncConfig(merge_strategy=MergeStrategy.SPLICE)), SpliceMergeOracle)
    assert isinstance(build_oracle(SyncConfig()), SpliceMergeOracle)
    with pytest.raises(ConfigError):
        build_oracle(SyncConfig(merge_strategy=MergeStrategy.LLM))

    monkeypatch.setenv("ANTHROPIC_API_KEY", "test-key")
    assert isinstance(build_oracle(SyncConfig()), LLMMergeOracle)
