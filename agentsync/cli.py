"""agentsync CLI — pull a project's remote definition into its local tree."""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import NoReturn

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from agentsync import __version__
from agentsync.config import MergeStrategy, SyncConfig, load_config
from agentsync.errors import RetriesExhaustedError, SyncCancelledError, SyncError

console = Console()

_STATUS_STYLE = {
    "added": "green",
    "modified": "yellow",
    "deleted": "red",
}


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=verbose)],
        force=True,
    )


def _common_options(func):
    func = click.option("--verbose", "-v", is_flag=True, help="Debug logging")(func)
    func = click.option("--definition", "definition_file", default=None,
                        type=click.Path(dir_okay=False),
                        help="Read the remote definition from a JSON/YAML file")(func)
    func = click.option("--project", "project_id", default=None, help="Project id (overrides config)")(func)
    func = click.option("--config", "config_path", default=None,
                        type=click.Path(dir_okay=False), help="Config file (default: ROOT/agentsync.yaml)")(func)
    func = click.argument("root", default=".", type=click.Path(file_okay=False))(func)
    return func


def _load(root: str, config_path: str | None, **overrides) -> SyncConfig:
    return load_config(root, config_path).with_overrides(**overrides)


def _runner(root, config, definition_file, confirm=None):
    from agentsync.sync.runner import SyncRunner, build_source

    return SyncRunner(root, config, build_source(config, definition_file), confirm=confirm)


def _fail(exc: SyncError) -> NoReturn:
    console.print(f"\n[red]Sync failed:[/] {exc}")
    if isinstance(exc, RetriesExhaustedError):
        last = exc.last_error
        for path, reason in getattr(last, "failures", {}).items():
            console.print(f"  [red]x[/] {path}: {reason}")
        for diff in getattr(last, "differences", [])[:20]:
            console.print(f"  [red]x[/] {diff.describe()}")
    sys.exit(1)


def _changes_table(changes, title: str) -> Table:
    table = Table(title=title)
    table.add_column("Change")
    table.add_column("Kind", style="dim")
    table.add_column("Id", style="cyan")
    table.add_column("File")
    for change in sorted(changes, key=lambda c: (c.classification.value, c.kind.value, c.identifier)):
        style = _STATUS_STYLE[change.classification.value]
        table.add_row(
            f"[{style}]{change.classification.value}[/]",
            change.kind.value,
            change.identifier,
            change.path or "",
        )
    return table


@click.group()
@click.version_option(version=__version__)
def main():
    """agentsync — keep a local agent project tree in sync with its remote definition.

    Changed components are regenerated, merged into the existing files and
    validated by a round trip in a scratch copy before anything is written.
    """


# ── Pull ─────────────────────────────────────────────────────────────


@main.command()
@_common_options
@click.option("--yes", "-y", is_flag=True, help="Promote without asking")
@click.option("--dry-run", is_flag=True, help="Validate, then stop before writing")
@click.option("--max-attempts", type=click.IntRange(min=1), default=None, help="Merge/validate attempts")
@click.option("--merge-strategy", type=click.Choice([s.value for s in MergeStrategy]), default=None)
@click.option("--clean-stale", is_flag=True, help="Remove declarations of components deleted remotely")
@click.option("--introspect", "--force", "regenerate", is_flag=True,
              help="Regenerate every component file from scratch (hand edits are lost)")
@click.option("--json", "as_json", is_flag=True, help="Print the remote definition as JSON and exit")
def pull(root, config_path, project_id, definition_file, verbose, yes, dry_run, max_attempts,
         merge_strategy, clean_stale, regenerate, as_json):
    """Sync the tree at ROOT with the remote definition."""
    from agentsync.sync.runner import SyncStatus

    if regenerate and clean_stale:
        raise click.UsageError(
            "--introspect regenerates every file; it cannot be combined with --clean-stale"
        )

    _setup_logging(verbose)

    def confirm(changes, files, removed) -> bool:
        console.print(_changes_table(changes, f"Changes ({len(changes)})"))
        console.print("Files to write: " + (", ".join(files) or "(none)"))
        if removed:
            console.print("[red]Files to remove:[/] " + ", ".join(removed))
        return click.confirm("Write these files?", default=False)

    try:
        config = _load(
            root, config_path,
            project_id=project_id, max_attempts=max_attempts, merge_strategy=merge_strategy,
        )
        if as_json:
            remote = _runner(root, config, definition_file).fetch_remote()
            click.echo(json.dumps(remote.to_dict(), indent=2))
            return
        console.print(f"\n[bold blue]agentsync[/] — Pulling '{config.project_id}' into {Path(root).resolve()}\n")
        if regenerate:
            console.print("[yellow]Introspect mode: every component file is regenerated from scratch[/]\n")
        runner = _runner(root, config, definition_file, confirm=None if yes else confirm)
        result = runner.run(dry_run=dry_run, clean_stale=clean_stale, regenerate=regenerate)
    except SyncCancelledError as exc:
        console.print(f"[yellow]{exc}[/]")
        sys.exit(1)
    except SyncError as exc:
        _fail(exc)

    if result.status is SyncStatus.UP_TO_DATE:
        console.print("[green]Already up to date.[/]")
        return

    for warning in result.warnings:
        console.print(f"  [yellow]![/] {warning}")

    if result.status is SyncStatus.DRY_RUN:
        console.print(_changes_table(result.changes, "Changes (dry run)"))
        lines = list(result.files) + [f"[red]remove[/] {path}" for path in result.removed]
        console.print(Panel(
            "\n".join(lines) or "(none)",
            title=f"Validated in {result.attempts} attempt(s), nothing written",
        ))
        return

    lines = list(result.files) + [f"[red]removed[/] {path}" for path in result.removed]
    console.print(Panel(
        "\n".join(lines) or "(no file content changed)",
        title=f"[green]Synced[/] in {result.attempts} attempt(s)",
    ))


# ── Diff ─────────────────────────────────────────────────────────────


@main.command()
@_common_options
def diff(root, config_path, project_id, definition_file, verbose):
    """Show how the tree at ROOT differs from the remote definition."""
    _setup_logging(verbose)
    try:
        config = _load(root, config_path, project_id=project_id)
        report = _runner(root, config, definition_file).diff()
    except SyncError as exc:
        _fail(exc)

    comparison = report.comparison
    if not report.local_loaded:
        console.print("[yellow]Local tree could not be loaded; every component counts as new.[/]")
    if comparison.matches:
        console.print("[green]No differences.[/]")
    else:
        table = Table(title=f"Differences ({len(comparison.differences)})")
        table.add_column("Path", style="cyan")
        table.add_column("Kind")
        table.add_column("Detail")
        for d in comparison.differences:
            table.add_row(d.path, d.kind.value, d.describe())
        console.print(table)
        console.print(_changes_table(report.changes, f"Components ({len(report.changes)})"))

    for w in comparison.warnings:
        console.print(f"  [yellow]![/] {w.message}")


# ── Locate ───────────────────────────────────────────────────────────


@main.command()
@click.argument("root", default=".", type=click.Path(exists=True, file_okay=False))
def locate(root):
    """List the component declarations found under ROOT."""
    from agentsync.sync.locator import locate_components

    locations = sorted(
        locate_components(Path(root)),
        key=lambda loc: (loc.file_path, loc.lineno),
    )
    if not locations:
        console.print("[yellow]No component declarations found.[/]")
        return

    table = Table(title=f"Components ({len(locations)} found)")
    table.add_column("Kind", style="dim")
    table.add_column("Id", style="cyan")
    table.add_column("Name")
    table.add_column("Location")
    table.add_column("Form")
    for loc in locations:
        form = f"inline in {loc.container}" if loc.is_inline and loc.container else (
            "inline" if loc.is_inline else "exported"
        )
        table.add_row(
            loc.kind.value,
            loc.identifier,
            loc.declared_name or "",
            f"{loc.file_path}:{loc.lineno}",
            form,
        )
    console.print(table)


# ── History ──────────────────────────────────────────────────────────


@main.command()
@click.argument("root", default=".", type=click.Path(exists=True, file_okay=False))
@click.option("--project", "project_id", default=None, help="Only this project")
def history(root, project_id):
    """Show the promoted syncs recorded under ROOT."""
    from agentsync.sync.history import SyncHistory

    records = SyncHistory(root).get_history(project_id)
    if not records:
        console.print("[yellow]No syncs recorded.[/]")
        return

    table = Table(title=f"Sync history ({len(records)} record(s))")
    table.add_column("When", style="dim")
    table.add_column("Project", style="cyan")
    table.add_column("Attempts", justify="right")
    table.add_column("Merge")
    table.add_column("Files")
    table.add_column("Warnings", justify="right")
    for r in records:
        table.add_row(
            r.synced_at,
            r.project_id,
            str(r.attempts),
            r.merge_strategy,
            "\n".join(r.files + [f"(removed) {path}" for path in r.removed]),
            str(len(r.warnings)),
        )
    console.print(table)


if __name__ == "__main__":
    main()
