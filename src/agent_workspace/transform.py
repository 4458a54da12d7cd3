"""Copy/link engine.

Materialization is split in two steps:

* ``build_plan`` works out every destination the current configuration wants,
  without touching the filesystem beyond reading plugin sources.
* ``execute_plan`` applies the plan (or, for a dry run, reports what it would do).

The plan is also what the purge step uses to decide which previously synced paths
are still wanted, so a dry run and a real run always agree.
"""

import asyncio
import filecmp
import logging
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Set

from agent_workspace.clients import CANONICAL_SKILLS_PATH, group_clients_by_skills_path
from agent_workspace.links import COPIED, create_link, is_junction, is_link_to
from agent_workspace.purge import normalize_synced_path
from agent_workspace.skills import SkillEntry, SkillNameResolution, get_resolved_name, validate_skill_metadata
from agent_workspace.validator import ValidatedPlugin

logger = logging.getLogger(__name__)

COMMANDS_DIR = "commands"
HOOKS_DIR = "hooks"

GENERATED_HEADER = "<!-- Generated by agent-workspace from configured plugins -- do not edit directly -->"

# Operation kinds
FILE = "file"
SKILL = "skill"
LINK = "link"
AGENT_FILE = "agent_file"

# CopyResult actions
ACTION_COPIED = "copied"
ACTION_GENERATED = "generated"
ACTION_SKIPPED = "skipped"
ACTION_FAILED = "failed"

# Skip reasons
REASON_UP_TO_DATE = "up to date"
REASON_UNMANAGED = "unmanaged"
REASON_CONFLICT = "conflict"
REASON_DRY_RUN = "dry run"

_IGNORE = shutil.ignore_patterns(".git", ".DS_Store")


@dataclass
class CopyResult:
    source: Optional[str]
    destination: str
    action: str
    error: Optional[str] = None
    reason: Optional[str] = None
    plugin: Optional[str] = None
    synced_path: Optional[str] = None
    clients: List[str] = field(default_factory=list)
    managed: bool = False
    planned_action: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "source": self.source,
            "destination": self.destination,
            "action": self.action,
            "clients": list(self.clients),
        }
        for key in ("error", "reason", "plugin", "planned_action"):
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        return data


@dataclass
class PlannedOp:
    kind: str
    destination: str              # workspace-relative, no trailing slash
    plugin: Optional[str] = None  # plugin reference; None for generated files
    source: Optional[Path] = None
    content: Optional[str] = None
    clients: List[str] = field(default_factory=list)

    @property
    def planned_action(self) -> str:
        if self.kind == AGENT_FILE:
            return "generate"
        if self.kind == LINK:
            return "link"
        return "copy"

    def synced_path(self, as_dir: Optional[bool] = None) -> str:
        if as_dir is None:
            as_dir = self.kind == SKILL
        return self.destination + "/" if as_dir else self.destination


@dataclass
class SyncPlan:
    ops: Dict[str, PlannedOp] = field(default_factory=dict)
    conflicts: List[CopyResult] = field(default_factory=list)
    failures: List[CopyResult] = field(default_factory=list)  # plugin sources that could not be read

    def destinations(self) -> Set[str]:
        return set(self.ops)

    def generated(self) -> List[PlannedOp]:
        return [op for op in self.ops.values() if op.kind == AGENT_FILE]

    def add(self, op: PlannedOp) -> None:
        existing = self.ops.get(op.destination)
        if existing is None:
            self.ops[op.destination] = op
            return
        if existing.kind == op.kind and existing.plugin == op.plugin and existing.source == op.source:
            for client in op.clients:
                if client not in existing.clients:
                    existing.clients.append(client)
            return
        # First plugin in configured order keeps the destination
        self.conflicts.append(CopyResult(
            source=str(op.source) if op.source else None,
            destination=op.destination,
            action=ACTION_SKIPPED,
            reason=REASON_CONFLICT,
            error=f"{op.destination} is already provided by {existing.plugin or 'a generated file'}",
            plugin=op.plugin,
            clients=list(op.clients),
            planned_action=op.planned_action,
        ))


# =============================================================================
# Planning
# =============================================================================

def _command_files(plugin_path: Path) -> List[Path]:
    commands_dir = plugin_path / COMMANDS_DIR
    if not commands_dir.is_dir():
        return []
    return sorted(p for p in commands_dir.glob("*.md") if p.is_file())


def _hook_files(plugin_path: Path) -> List[Path]:
    hooks_dir = plugin_path / HOOKS_DIR
    if not hooks_dir.is_dir():
        return []
    return sorted(p for p in hooks_dir.rglob("*") if p.is_file() and ".git" not in p.parts)


def _agent_fragment(plugin_path: Path, agent_file: str, fallback: Optional[str]) -> Optional[str]:
    for name in (agent_file, fallback):
        if not name:
            continue
        candidate = plugin_path / name
        if candidate.is_file():
            return candidate.read_text(encoding="utf-8")
    return None


def render_agent_file(fragments: List[str]) -> str:
    parts = [GENERATED_HEADER, ""]
    for fragment in fragments:
        parts.append(fragment.strip())
        parts.append("")
    return "\n".join(parts)


def _read_failure(plugin: ValidatedPlugin, destination: str, client: Optional[str], error: Exception) -> CopyResult:
    return CopyResult(
        source=str(plugin.resolved_path),
        destination=destination,
        action=ACTION_FAILED,
        error=f"Could not read plugin files: {error}",
        plugin=plugin.reference,
        clients=[client] if client else [],
    )


def build_plan(
    plugins: List[ValidatedPlugin],
    skills: List[SkillEntry],
    resolution: SkillNameResolution,
    clients: List[str],
    table: Dict[str, Dict[str, Optional[str]]],
    sync_mode: str,
) -> SyncPlan:
    """Compute every destination for ``clients`` from the valid ``plugins``.

    A plugin file that cannot be read becomes a failed result in
    ``plan.failures``; the rest of the plan is still built.
    """
    plan = SyncPlan()
    valid = [p for p in plugins if p.ok and p.resolved_path is not None]
    groups = [g for g in group_clients_by_skills_path(clients, table) if g.skills_path]
    skill_clients = [c for g in groups for c in g.clients]

    for plugin in valid:
        root = plugin.resolved_path
        try:
            commands = _command_files(root)
            hooks = _hook_files(root)
        except OSError as e:
            logger.warning("Could not list files of %s: %s", plugin.reference, e)
            plan.failures.append(_read_failure(plugin, str(root), None, e))
            commands, hooks = [], []

        for client in clients:
            commands_path = table[client].get("commands_path")
            if commands_path:
                for cmd in commands:
                    plan.add(PlannedOp(FILE, commands_path + cmd.name, plugin.reference, cmd, clients=[client]))

            hooks_path = table[client].get("hooks_path")
            if hooks_path:
                for hook in hooks:
                    rel = hook.relative_to(root / HOOKS_DIR).as_posix()
                    plan.add(PlannedOp(FILE, hooks_path + rel, plugin.reference, hook, clients=[client]))

        for entry in skills:
            if entry.plugin_path != root or not groups:
                continue
            name = get_resolved_name(resolution, entry)
            if sync_mode == "copy":
                for group in groups:
                    dest = normalize_synced_path(group.skills_path + name)
                    plan.add(PlannedOp(SKILL, dest, plugin.reference, entry.skill_path, clients=list(group.clients)))
                continue

            canonical = normalize_synced_path(CANONICAL_SKILLS_PATH + name)
            plan.add(PlannedOp(SKILL, canonical, plugin.reference, entry.skill_path, clients=list(skill_clients)))
            for group in groups:
                if group.skills_path == CANONICAL_SKILLS_PATH:
                    continue
                dest = normalize_synced_path(group.skills_path + name)
                plan.add(PlannedOp(LINK, dest, plugin.reference, Path(canonical), clients=list(group.clients)))

    # One generated file per distinct destination
    for client in clients:
        agent_file = table[client].get("agent_file")
        if not agent_file:
            continue
        if agent_file in plan.ops and plan.ops[agent_file].kind == AGENT_FILE:
            plan.ops[agent_file].clients.append(client)
            continue
        fallback = table[client].get("agent_file_fallback")
        fragments = []
        unreadable = False
        for p in valid:
            try:
                fragment = _agent_fragment(p.resolved_path, agent_file, fallback)
            except (OSError, UnicodeDecodeError) as e:
                logger.warning("Could not read %s of %s: %s", agent_file, p.reference, e)
                plan.failures.append(_read_failure(p, agent_file, client, e))
                unreadable = True
                continue
            if fragment and fragment.strip():
                fragments.append(fragment)
        # Still planned when a fragment failed, so the file is not purged
        if fragments or unreadable:
            plan.add(PlannedOp(AGENT_FILE, agent_file, None, None, render_agent_file(fragments), [client]))

    return plan


# =============================================================================
# Execution
# =============================================================================

def same_tree(left: Path, right: Path) -> bool:
    """True if two directories hold the same files with the same bytes."""
    def files(root: Path) -> List[str]:
        return sorted(
            p.relative_to(root).as_posix()
            for p in root.rglob("*")
            if p.is_file() and ".git" not in p.relative_to(root).parts and p.name != ".DS_Store"
        )

    if not left.is_dir() or not right.is_dir() or right.is_symlink():
        return False
    left_files = files(left)
    if left_files != files(right):
        return False
    return all(filecmp.cmp(left / f, right / f, shallow=False) for f in left_files)


def _is_up_to_date(op: PlannedOp, dest: Path, root: Path) -> bool:
    if op.kind == FILE:
        return dest.is_file() and not dest.is_symlink() and filecmp.cmp(op.source, dest, shallow=False)
    if op.kind == SKILL:
        return same_tree(op.source, dest)
    if op.kind == LINK:
        return is_link_to(dest, root / op.source)
    if op.kind == AGENT_FILE:
        return dest.is_file() and not dest.is_symlink() and dest.read_text(encoding="utf-8") == op.content
    return False


def _remove_path(path: Path) -> None:
    if path.is_symlink() or path.is_file():
        path.unlink()
    elif is_junction(path):
        path.rmdir()
    elif path.is_dir():
        shutil.rmtree(path)


def _write(op: PlannedOp, dest: Path, root: Path) -> bool:
    """Perform the write. Returns True when the destination ended up a directory copy."""
    dest.parent.mkdir(parents=True, exist_ok=True)
    if op.kind == FILE:
        shutil.copy2(op.source, dest)
        return False
    if op.kind == SKILL:
        shutil.copytree(op.source, dest, ignore=_IGNORE)
        return True
    if op.kind == LINK:
        return create_link(root / op.source, dest) == COPIED
    dest.write_text(op.content, encoding="utf-8")
    return False


def apply_op(op: PlannedOp, root: Path, managed: Set[str], dry_run: bool = False) -> CopyResult:
    """Apply one planned operation and describe the outcome."""
    dest = root / op.destination
    result = CopyResult(
        source=str(op.source) if op.source is not None else None,
        destination=str(dest),
        action=ACTION_SKIPPED,
        plugin=op.plugin,
        synced_path=op.synced_path(),
        clients=list(op.clients),
        planned_action=op.planned_action,
    )
    exists = dest.exists() or dest.is_symlink()
    owned = op.destination in managed

    if op.kind == SKILL:
        problems = validate_skill_metadata(op.source)
        if problems:
            result.action = ACTION_FAILED
            result.error = f"Invalid skill {op.source.name}: " + "; ".join(problems)
            # A previously synced copy stays on disk, so it stays tracked
            result.managed = exists and owned
            return result

    if exists and not owned:
        result.reason = REASON_UNMANAGED
        return result

    try:
        up_to_date = exists and _is_up_to_date(op, dest, root)
    except (OSError, UnicodeDecodeError) as e:
        logger.debug("Could not compare %s: %s", dest, e)
        up_to_date = False
    if up_to_date:
        result.reason = REASON_UP_TO_DATE
        result.managed = True
        if op.kind == LINK and not dest.is_symlink():
            result.synced_path = op.synced_path(as_dir=True)
        return result

    if dry_run:
        result.reason = REASON_DRY_RUN
        return result

    try:
        if exists:
            _remove_path(dest)
        copied_dir = _write(op, dest, root)
    except OSError as e:
        result.action = ACTION_FAILED
        result.error = str(e)
        if dest.exists() or dest.is_symlink():
            try:
                _remove_path(dest)
            except OSError as cleanup_error:
                # Leftover stays tracked so a later purge can reclaim it
                logger.warning("Could not clean up %s: %s", dest, cleanup_error)
                result.managed = True
                result.synced_path = op.synced_path(as_dir=dest.is_dir() and not dest.is_symlink())
        logger.warning("Failed to write %s: %s", op.destination, e)
        return result

    result.action = ACTION_GENERATED if op.kind == AGENT_FILE else ACTION_COPIED
    result.managed = True
    if op.kind == LINK and copied_dir:
        result.synced_path = op.synced_path(as_dir=True)
    logger.debug("%s %s", result.action.capitalize(), op.destination)
    return result


def _blocked_link(op: PlannedOp, root: Path) -> CopyResult:
    return CopyResult(
        source=str(op.source),
        destination=str(root / op.destination),
        action=ACTION_FAILED,
        error=f"Canonical copy {op.source.as_posix()} was not written",
        plugin=op.plugin,
        synced_path=op.synced_path(),
        clients=list(op.clients),
        planned_action=op.planned_action,
    )


def _apply_all(ops: Iterable[PlannedOp], root: Path, managed: Set[str], dry_run: bool) -> List[CopyResult]:
    return [apply_op(op, root, managed, dry_run) for op in ops]


async def execute_plan(plan: SyncPlan, root: Path, managed: Iterable[str], dry_run: bool = False) -> List[CopyResult]:
    """Apply the plan, one concurrent task per plugin.

    Canonical copies are written before the links that point at them;
    generated files come last.
    """
    managed_set = {normalize_synced_path(p) for p in managed}
    root = Path(root)

    by_plugin: Dict[str, List[PlannedOp]] = {}
    links: Dict[str, List[PlannedOp]] = {}
    for op in plan.ops.values():
        if op.kind == AGENT_FILE:
            continue
        bucket = links if op.kind == LINK else by_plugin
        bucket.setdefault(op.plugin, []).append(op)

    results: List[CopyResult] = []
    batches = await asyncio.gather(
        *(asyncio.to_thread(_apply_all, ops, root, managed_set, dry_run) for ops in by_plugin.values())
    )
    for batch in batches:
        results.extend(batch)

    # Links to a canonical copy that was not written would dangle
    blocked = {
        normalize_synced_path(r.synced_path)
        for r in results
        if r.synced_path and (r.action == ACTION_FAILED or r.reason == REASON_UNMANAGED)
    }
    runnable: Dict[str, List[PlannedOp]] = {}
    for plugin, ops in links.items():
        for op in ops:
            if op.source.as_posix() in blocked:
                results.append(_blocked_link(op, root))
            else:
                runnable.setdefault(plugin, []).append(op)
    batches = await asyncio.gather(
        *(asyncio.to_thread(_apply_all, ops, root, managed_set, dry_run) for ops in runnable.values())
    )
    for batch in batches:
        results.extend(batch)

    results.extend(await asyncio.to_thread(_apply_all, plan.generated(), root, managed_set, dry_run))
    return results
