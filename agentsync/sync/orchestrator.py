"""Two-pass orchestrator — turn a change set into candidate file contents.

Pass 1 renders new files deterministically: components that have no
location yet, a missing entry point, and any missing package ``__init__.py``.
It never calls out and runs once per sync; a failure there is a
structural defect.

Pass 2 builds one merge request per existing file that holds modified (or
newly added) components and hands it to the merge oracle. An existing
entry point is merged like any other file: its project declaration is
replaced only when the project record or the components it lists change.
Pass 2 runs on every attempt of the retry loop. Failures are collected per
file and raised together once all files have been tried.
"""

from __future__ import annotations

import ast
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from agentsync.codegen.naming import NamingContext, path_to_module
from agentsync.codegen.renderer import (
    SDK_MODULE,
    ImportSpec,
    RenderedComponent,
    order_for_module,
    project_members,
    render_declaration,
    render_entry_point,
    render_expression,
    render_module,
    render_project,
    unreachable_components,
)
from agentsync.definition.comparator import ComparisonResult
from agentsync.definition.models import (
    ComponentKind,
    ProjectDefinition,
    component_key,
    iter_components,
)
from agentsync.errors import MergeError, StructuralDefectError
from agentsync.merge import CanonicalComponent, MergeMode, MergeOracle, MergeRequest
from agentsync.sync.dependencies import (
    ComponentDependency,
    dependency_imports,
    resolve_dependencies,
)
from agentsync.sync.locator import (
    ComponentLocation,
    LocationIndex,
    builder_kind,
    declared_identifier,
)
from agentsync.utils.file_scanner import relative_posix, scan_python_files

logger = logging.getLogger(__name__)


class ChangeClassification(Enum):
    ADDED = "added"
    MODIFIED = "modified"
    DELETED = "deleted"


@dataclass
class ChangeRecord:
    kind: ComponentKind
    identifier: str
    classification: ChangeClassification
    payload: Any = None
    path: str | None = None

    def describe(self) -> str:
        where = f" ({self.path})" if self.path else ""
        return f"{self.classification.value:<8} {self.kind.value} '{self.identifier}'{where}"


def classify_changes(
    comparison: ComparisonResult,
    remote: ProjectDefinition,
    locations: LocationIndex,
    local: ProjectDefinition | None = None,
) -> list[ChangeRecord]:
    """Split the changed components into added, modified and deleted.

    In the remote definition and located in the tree: modified. In the remote
    definition only: added. Gone from the remote definition: deleted. A
    sub-agent that is added or deleted also modifies its parent agent, whose
    declaration lists its sub-agents.
    """
    records: dict[tuple[ComponentKind, str], ChangeRecord] = {}
    for kind, identifier in comparison.changed_components():
        payload = remote.get_component(kind, identifier)
        if payload is None:
            classification = ChangeClassification.DELETED
        elif kind is ComponentKind.PROJECT or locations.get(kind, identifier) is not None:
            classification = ChangeClassification.MODIFIED
        else:
            classification = ChangeClassification.ADDED
        records[(kind, identifier)] = ChangeRecord(kind, identifier, classification, payload)

    for (kind, identifier), change in list(records.items()):
        if kind is not ComponentKind.SUB_AGENT:
            continue
        if change.classification is ChangeClassification.ADDED:
            parent = remote.parent_agent_of(identifier)
        elif change.classification is ChangeClassification.DELETED:
            parent = local.parent_agent_of(identifier) if local is not None else None
        else:
            continue
        if parent is None or parent not in remote.agents:
            continue
        if (ComponentKind.AGENT, parent) not in records:
            located = locations.get(ComponentKind.AGENT, parent) is not None
            records[(ComponentKind.AGENT, parent)] = ChangeRecord(
                ComponentKind.AGENT,
                parent,
                ChangeClassification.MODIFIED if located else ChangeClassification.ADDED,
                remote.agents[parent],
            )

    return list(records.values())


@dataclass
class WorkItem:
    kind: ComponentKind
    identifier: str
    mode: MergeMode
    is_inline: bool = False

    @property
    def key(self) -> tuple[ComponentKind, str]:
        return self.kind, self.identifier


@dataclass
class SyncPlan:
    """Output of Pass 1 plus the merge requests Pass 2 will send."""

    changes: list[ChangeRecord]
    generated: dict[str, str] = field(default_factory=dict)
    merge_requests: list[MergeRequest] = field(default_factory=list)
    # Existing files every declaration of which is stale.
    removed: list[str] = field(default_factory=list)

    @property
    def paths(self) -> list[str]:
        return sorted(set(self.generated) | {r.path for r in self.merge_requests})


@dataclass
class MergeOutcome:
    files: dict[str, str] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)


Dependencies = dict[tuple[ComponentKind, str], list[ComponentDependency]]


class TwoPassOrchestrator:
    """Plans and merges one sync.

    Args:
        root: Project root of the local tree.
        remote: The canonical definition.
        naming: Declared names and paths for this sync.
        locations: Where components are declared in the tree.
        clean_stale: Remove declarations of components the remote
            definition no longer has, instead of leaving them in place.
    """

    def __init__(
        self,
        root: Path,
        remote: ProjectDefinition,
        naming: NamingContext,
        locations: LocationIndex,
        clean_stale: bool = False,
    ):
        self.root = Path(root)
        self.remote = remote
        self.naming = naming
        self.locations = locations
        self.clean_stale = clean_stale
        self._hoisted: set[tuple[ComponentKind, str]] = set()

    # -- Pass 1 ----------------------------------------------------------------

    def plan(self, changes: list[ChangeRecord]) -> SyncPlan:
        """Group work by file, render new files and prepare merge requests."""
        by_path = self._group(changes)
        keys = [
            item.key
            for items in by_path.values()
            for item in items.values()
            if item.mode is not MergeMode.REMOVE
        ]
        deps = resolve_dependencies(self.remote, keys)

        plan = SyncPlan(changes=changes)
        plan.removed = self._removed_files(by_path)
        drops = self._stale_imports(by_path, plan.removed)
        for path in sorted(set(by_path) | set(drops)):
            if path in plan.removed:
                continue
            items = list(by_path.get(path, {}).values())
            self._check_importable(path, items, deps)
            if (self.root / path).exists():
                plan.merge_requests.append(
                    self._merge_request(path, items, deps, drops.get(path, []))
                )
            else:
                plan.generated[path] = self._new_module(path, items, deps)

        if not (self.root / self.naming.entry_point).exists():
            plan.generated[self.naming.entry_point] = self._entry_point()

        for package in self._missing_packages(plan.generated):
            plan.generated[package] = ""

        logger.info(
            "Pass 1: %d generated file(s), %d file(s) to merge, %d file(s) to remove",
            len(plan.generated), len(plan.merge_requests), len(plan.removed),
        )
        return plan

    def regenerate(self, changes: list[ChangeRecord]) -> SyncPlan:
        """Render every component module and the entry point from scratch.

        Nothing is merged: files that hold components are overwritten whole,
        so hand edits in them are lost. Files holding only stale components
        are left in place.
        """
        entry = self.naming.entry_point
        by_path: dict[str, list[WorkItem]] = {}
        for kind, identifier, _record, _parent in iter_components(self.remote):
            if kind is ComponentKind.PROJECT:
                continue
            path = self.naming.path_for(kind, identifier)
            by_path.setdefault(path, []).append(WorkItem(kind, identifier, MergeMode.ADD))
        for change in changes:
            if change.classification is not ChangeClassification.DELETED:
                change.path = self.naming.path_for(change.kind, change.identifier)

        keys = [item.key for items in by_path.values() for item in items]
        deps = resolve_dependencies(self.remote, keys)
        plan = SyncPlan(changes=changes)
        for path in sorted(by_path):
            if path != entry:
                plan.generated[path] = self._new_module(path, by_path[path], deps)
        plan.generated[entry] = self._entry_point()
        for package in self._missing_packages(plan.generated):
            plan.generated[package] = ""

        logger.info("Regenerating %d file(s) from the remote definition", len(plan.generated))
        return plan

    def _group(self, changes: list[ChangeRecord]) -> dict[str, dict[tuple, WorkItem]]:
        by_path: dict[str, dict[tuple, WorkItem]] = {}
        for change in changes:
            if change.classification is ChangeClassification.DELETED:
                item = self._stale_item(change)
            elif change.kind is ComponentKind.PROJECT:
                continue
            elif change.classification is ChangeClassification.ADDED:
                change.path = self.naming.path_for(change.kind, change.identifier)
                item = WorkItem(change.kind, change.identifier, MergeMode.ADD)
            else:
                change.path = self.naming.path_for(change.kind, change.identifier)
                loc = self.locations.get(change.kind, change.identifier)
                item = WorkItem(
                    change.kind, change.identifier, MergeMode.REPLACE, loc.is_inline
                )
            if item is not None:
                by_path.setdefault(change.path, {})[item.key] = item

        project = self._project_item(changes)
        if project is not None:
            path, item = project
            by_path.setdefault(path, {})[item.key] = item

        self._hoist(by_path)
        return by_path

    def _stale_item(self, change: ChangeRecord) -> WorkItem | None:
        loc = self.locations.get(change.kind, change.identifier)
        change.path = loc.file_path if loc else None
        if loc is None:
            return None
        if not self.clean_stale:
            logger.info(
                "%s '%s' was removed remotely; its declaration is left in place",
                change.kind.value, change.identifier,
            )
            return None
        if loc.is_inline:
            logger.info(
                "%s '%s' is declared inline in %s; it goes only with its container",
                change.kind.value, change.identifier, loc.file_path,
            )
            return None
        return WorkItem(change.kind, change.identifier, MergeMode.REMOVE)

    def _project_item(self, changes: list[ChangeRecord]) -> tuple[str, WorkItem] | None:
        """The project declaration of an existing entry point, when it must change."""
        entry = self.naming.entry_point
        if not (self.root / entry).exists():
            return None
        change = next((c for c in changes if c.kind is ComponentKind.PROJECT), None)
        loc = self.locations.get(ComponentKind.PROJECT, self.remote.id)
        if loc is None:
            logger.info("No declaration of project '%s' found; adding one to %s", self.remote.id, entry)
            path, item = entry, WorkItem(ComponentKind.PROJECT, self.remote.id, MergeMode.ADD)
        elif change is not None or self._project_members_changed(loc):
            path = loc.file_path
            item = WorkItem(ComponentKind.PROJECT, self.remote.id, MergeMode.REPLACE, loc.is_inline)
        else:
            return None
        if change is not None:
            change.path = path
        return path, item

    def _project_members_changed(self, loc: ComponentLocation) -> bool:
        """Whether the components the project declaration lists differ from the remote's.

        A list argument that is not a literal list of names and builder calls
        is left to the validator.
        """
        text = (self.root / loc.file_path).read_text(encoding="utf-8")
        call = next(
            (
                node for node in ast.walk(ast.parse(text, filename=loc.file_path))
                if isinstance(node, ast.Call)
                and builder_kind(node) is ComponentKind.PROJECT
                and declared_identifier(node) == self.remote.id
            ),
            None,
        )
        if call is None:
            return True
        declared = {kw.arg: kw.value for kw in call.keywords if kw.arg}
        for kwarg, members in project_members(self.remote).items():
            expected = {component_key(kind, identifier) for kind, identifier in members}
            value = declared.get(kwarg)
            if value is None:
                listed = set()
            elif isinstance(value, (ast.List, ast.Tuple)):
                keys = [self._member_key(element) for element in value.elts]
                if None in keys:
                    continue
                listed = set(keys)
            else:
                continue
            if listed != expected:
                logger.debug("Project '%s' lists different %s", self.remote.id, kwarg)
                return True
        return False

    def _member_key(self, node: ast.expr) -> str | None:
        if isinstance(node, ast.Name):
            return self.naming.owner_of(node.id)
        if isinstance(node, ast.Call):
            kind = builder_kind(node)
            identifier = declared_identifier(node)
            if kind is not None and identifier is not None:
                return component_key(kind, identifier)
        return None

    def _hoist(self, by_path: dict[str, dict[tuple, WorkItem]]) -> None:
        # Inline declarations nested at any depth in a declaration being
        # replaced or removed would vanish with it; live ones are declared
        # on their own instead.
        for path, items in by_path.items():
            containers = {
                self.locations.get(i.kind, i.identifier).declared_name
                for i in items.values()
                if i.mode is not MergeMode.ADD and not i.is_inline
            }
            if not containers:
                continue
            for loc in self.locations:
                if loc.file_path != path or not loc.is_inline or loc.container not in containers:
                    continue
                if self.remote.get_component(loc.kind, loc.identifier) is None:
                    continue
                key = (loc.kind, loc.identifier)
                items[key] = WorkItem(loc.kind, loc.identifier, MergeMode.ADD)
                self._hoisted.add(key)

    def _removed_files(self, by_path: dict[str, dict[tuple, WorkItem]]) -> list[str]:
        """Files whose declarations are all being removed."""
        removed = []
        for path, items in by_path.items():
            if path == self.naming.entry_point:
                continue
            if any(i.mode is not MergeMode.REMOVE for i in items.values()):
                continue
            names = {self.locations.get(i.kind, i.identifier).declared_name for i in items.values()}
            held = [loc for loc in self.locations if loc.file_path == path]
            if all(
                (loc.kind, loc.identifier) in items or (loc.is_inline and loc.container in names)
                for loc in held
            ):
                removed.append(path)
        return sorted(removed)

    def _stale_imports(
        self, by_path: dict[str, dict[tuple, WorkItem]], removed: list[str]
    ) -> dict[str, list[ImportSpec]]:
        """Imports of declarations being removed, by importing file."""
        stale: dict[str, set[str]] = {}
        for path, items in by_path.items():
            for item in items.values():
                if item.mode is MergeMode.REMOVE:
                    name = self.locations.get(item.kind, item.identifier).declared_name
                    stale.setdefault(path_to_module(path), set()).add(name)
        if not stale:
            return {}

        drops: dict[str, list[ImportSpec]] = {}
        for file in scan_python_files(self.root):
            rel = relative_posix(file, self.root)
            if rel in removed:
                continue
            try:
                tree = ast.parse(file.read_text(encoding="utf-8"), filename=rel)
            except (SyntaxError, UnicodeDecodeError, ValueError) as exc:
                logger.debug("Not checking imports of %s: %s", rel, exc)
                continue
            for stmt in tree.body:
                if not isinstance(stmt, ast.ImportFrom) or stmt.level or stmt.module not in stale:
                    continue
                for alias in stmt.names:
                    if alias.name in stale[stmt.module]:
                        drops.setdefault(rel, []).append(ImportSpec(stmt.module, alias.name))
        return drops

    def _check_importable(self, path: str, items: list[WorkItem], deps: Dependencies) -> None:
        for item in items:
            for dep in deps.get(item.key, []):
                self._require_named(
                    dep.kind, dep.identifier, f"{item.kind.value} '{item.identifier}'", path
                )

    def _require_named(
        self, kind: ComponentKind, identifier: str, user: str, path: str | None = None
    ) -> None:
        loc = self.locations.get(kind, identifier)
        if loc is None or not loc.is_inline:
            return
        # The entry point imports the agents, so nothing else can import from it.
        if (kind, identifier) in self._hoisted and (
            loc.file_path == path or loc.file_path != self.naming.entry_point
        ):
            return
        raise StructuralDefectError(
            f"{user} references {kind.value} '{identifier}', which is declared inline "
            f"in {loc.file_path} and has no name to import"
        )

    def _render(self, item: WorkItem) -> RenderedComponent:
        if item.kind is ComponentKind.PROJECT:
            return render_project(self.remote, self.naming)
        record = self.remote.get_component(item.kind, item.identifier)
        if record is None:
            raise StructuralDefectError(f"{item.kind.value} '{item.identifier}' is not in the remote definition")
        if item.mode is MergeMode.REPLACE and item.is_inline:
            return render_expression(item.kind, item.identifier, record, self.naming)
        return render_declaration(item.kind, item.identifier, record, self.naming)

    def _ordered(self, items: list[WorkItem], deps: Dependencies) -> list[WorkItem]:
        """Module order, with every item after the items it depends on."""
        by_key = {i.key: i for i in items}
        ordered: list[WorkItem] = []
        done: set[tuple[ComponentKind, str]] = set()

        def visit(key: tuple[ComponentKind, str], active: set) -> None:
            if key in done or key in active:
                return
            active.add(key)
            for dep in deps.get(key, []):
                if (dep.kind, dep.identifier) in by_key:
                    visit((dep.kind, dep.identifier), active)
            active.discard(key)
            done.add(key)
            ordered.append(by_key[key])

        for key in order_for_module(self.remote, list(by_key)):
            visit(key, set())
        return ordered

    def _imports(
        self,
        path: str,
        rendered: list[RenderedComponent],
        items: list[WorkItem],
        deps: Dependencies,
        local_names: set[str],
    ) -> list[ImportSpec]:
        builders = sorted({b for r in rendered for b in r.builders})
        specs = [ImportSpec(SDK_MODULE, b) for b in builders]
        all_deps = [d for item in items for d in deps.get(item.key, [])]
        specs.extend(dependency_imports(all_deps, self.naming, path, local_names))
        return specs

    def _new_module(self, path: str, items: list[WorkItem], deps: Dependencies) -> str:
        ordered = self._ordered(items, deps)
        rendered = [self._render(item) for item in ordered]
        local_names = {r.declared_name for r in rendered}
        imports = self._imports(path, rendered, ordered, deps, local_names)
        return render_module(rendered, self.naming, path, imports=imports)

    def _merge_request(
        self,
        path: str,
        items: list[WorkItem],
        deps: Dependencies,
        drop_imports: list[ImportSpec],
    ) -> MergeRequest:
        ordered = self._ordered(items, deps)
        components = []
        rendered = []
        removed_names = set()
        for item in ordered:
            if item.mode is MergeMode.REMOVE:
                name = self.locations.get(item.kind, item.identifier).declared_name
                removed_names.add(name)
                components.append(
                    CanonicalComponent(item.kind, item.identifier, name, "", MergeMode.REMOVE)
                )
                continue
            r = self._render(item)
            rendered.append(r)
            text = r.expression if item.is_inline else r.declaration
            components.append(
                CanonicalComponent(
                    kind=item.kind,
                    identifier=item.identifier,
                    declared_name=r.declared_name,
                    text=text,
                    mode=item.mode,
                    is_inline=item.is_inline,
                )
            )
        live = [i for i in ordered if i.mode is not MergeMode.REMOVE]
        local_names = {
            loc.declared_name for loc in self.locations
            if loc.file_path == path and loc.declared_name
        } - removed_names
        local_names |= {r.declared_name for r, i in zip(rendered, live) if not i.is_inline}
        return MergeRequest(
            path=path,
            existing_text=(self.root / path).read_text(encoding="utf-8"),
            components=components,
            imports=self._imports(path, rendered, live, deps, local_names),
            drop_imports=drop_imports,
        )

    def _entry_point(self) -> str:
        entry = self.naming.entry_point
        local: list[tuple[ComponentKind, str]] = []
        for kind, identifier, _record, _parent in iter_components(self.remote):
            if kind is not ComponentKind.PROJECT and self.naming.path_for(kind, identifier) == entry:
                local.append((kind, identifier))
        local_keys = set(local)

        user = f"project '{self.remote.id}'"
        for agent_id in self.remote.agents:
            if (ComponentKind.AGENT, agent_id) not in local_keys:
                self._require_named(ComponentKind.AGENT, agent_id, user)
        for kind, identifier in unreachable_components(self.remote):
            if (kind, identifier) not in local_keys:
                self._require_named(kind, identifier, user)

        deps = resolve_dependencies(self.remote, local)
        items = [WorkItem(kind, identifier, MergeMode.ADD) for kind, identifier in local]
        declarations = [self._render(item) for item in self._ordered(items, deps)]
        return render_entry_point(self.remote, self.naming, declarations)

    def _missing_packages(self, generated: dict[str, str]) -> list[str]:
        packages = []
        for path in sorted(generated):
            parts = path.split("/")[:-1]
            for depth in range(1, len(parts) + 1):
                package = "/".join(parts[:depth]) + "/__init__.py"
                if package in generated or package in packages:
                    continue
                if not (self.root / package).exists():
                    packages.append(package)
        return packages

    # -- Pass 2 ----------------------------------------------------------------

    def merge(self, plan: SyncPlan, oracle: MergeOracle) -> MergeOutcome:
        """Send every merge request to *oracle*; raise ``MergeError`` if any fails."""
        outcome = MergeOutcome()
        failures: dict[str, str] = {}
        for request in plan.merge_requests:
            try:
                response = oracle.merge(request)
                ast.parse(response.merged_text, filename=request.path)
            except MergeError as exc:
                failures[request.path] = str(exc)
                logger.warning("Merge of %s failed: %s", request.path, exc)
                continue
            except SyntaxError as exc:
                failures[request.path] = f"merged file does not parse: {exc}"
                logger.warning("Merge of %s produced invalid Python: %s", request.path, exc)
                continue
            outcome.files[request.path] = response.merged_text
            outcome.warnings.extend(response.warnings)
            logger.debug(
                "Merged %s (%s, %d component(s))",
                request.path, request.mode.value, len(request.components),
            )

        if failures:
            raise MergeError(
                f"{len(failures)} of {len(plan.merge_requests)} file merge(s) failed",
                failures,
            )
        return outcome
