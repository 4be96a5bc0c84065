"""CLI tests through click's CliRunner."""

import json

import pytest
from click.testing import CliRunner

from agentsync.cli import main


@pytest.fixture
def project(tmp_path, loader_env, definition_data):
    root = tmp_path / "project"
    root.mkdir()
    definition = tmp_path / "remote.json"
    definition.write_text(json.dumps(definition_data))
    (root / "agentsync.yaml").write_text(
        "project_id: support-desk\nmerge_strategy: splice\nscratch_dir: ../scratch\n"
    )
    return root, definition


def _pull(root, definition, *extra, input=None):
    return CliRunner().invoke(
        main, ["pull", str(root), "--definition", str(definition), *extra], input=input
    )


def test_pull_then_up_to_date(project):
    root, definition = project

    result = _pull(root, definition, "--yes")
    assert result.exit_code == 0, result.output
    assert "Synced" in result.output
    assert (root / "index.py").is_file()

    again = _pull(root, definition, "--yes")
    assert again.exit_code == 0, again.output
    assert "Already up to date." in again.output


def test_pull_declined_writes_nothing(project):
    root, definition = project
    result = _pull(root, definition, input="n\n")
    assert result.exit_code == 1
    assert "Promotion declined" in result.output
    assert not (root / "index.py").exists()


def test_dry_run(project):
    root, definition = project
    result = _pull(root, definition, "--dry-run")
    assert result.exit_code == 0, result.output
    assert "nothing written" in result.output
    assert not (root / "index.py").exists()


def test_pull_without_project_id_fails(tmp_path):
    definition = tmp_path / "remote.json"
    definition.write_text("{}")
    result = _pull(tmp_path, definition, "--yes")
    assert result.exit_code == 1
    assert "project_id is not configured" in result.output


def test_invalid_max_attempts_is_a_usage_error(project):
    root, definition = project
    result = _pull(root, definition, "--max-attempts", "0")
    assert result.exit_code == 2


def test_pull_json_prints_the_remote_definition(project):
    root, definition = project
    result = _pull(root, definition, "--json")
    assert result.exit_code == 0, result.output
    assert '"id": "support-desk"' in result.output
    assert '"knowledge-base"' in result.output
    assert not (root / "index.py").exists()


def test_introspect_then_clean_stale(project):
    root, definition = project
    assert _pull(root, definition, "--yes").exit_code == 0
    (root / "index.py").write_text("# scribbled\n" + (root / "index.py").read_text())

    result = _pull(root, definition, "--introspect", "--yes")
    assert result.exit_code == 0, result.output
    assert "# scribbled" not in (root / "index.py").read_text()

    both = _pull(root, definition, "--force", "--clean-stale", "--yes")
    assert both.exit_code == 2


def test_diff_locate_and_history(project, definition_data):
    root, definition = project
    runner = CliRunner()

    before = runner.invoke(main, ["diff", str(root), "--definition", str(definition)])
    assert before.exit_code == 0, before.output
    assert "every component counts as new" in before.output

    assert _pull(root, definition, "--yes").exit_code == 0

    definition_data["agents"]["support-agent"]["prompt"] = "Changed."
    definition.write_text(json.dumps(definition_data))
    after = runner.invoke(main, ["diff", str(root), "--definition", str(definition)])
    assert after.exit_code == 0, after.output
    assert "Differences (1)" in after.output

    located = runner.invoke(main, ["locate", str(root)])
    assert located.exit_code == 0
    assert "Components (9 found)" in located.output

    history = runner.invoke(main, ["history", str(root)])
    assert history.exit_code == 0
    assert "Sync history (1 record(s))" in history.output
