"""Reconciler: one sync pass over a workspace.

Stages run in a fixed order::

    validating -> (abort | purging) -> copying -> persisting -> done

Only "every configured plugin failed" aborts, and it does so before anything on
disk changes. Every other failure is collected into the result.
"""

import asyncio
import dataclasses
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

from agent_workspace.clients import get_client_table
from agent_workspace.config import get_config_path, get_sync_state_path, is_user_scope, load_config
from agent_workspace.errors import ConfigError
from agent_workspace.purge import (
    DELETED,
    FAILED,
    WOULD_DELETE,
    PurgeOutcome,
    compute_purge_paths,
    failed_purge_paths,
    normalize_synced_path,
    preview_outcomes,
    purge_paths,
)
from agent_workspace.skills import collect_skills, resolve_skill_names
from agent_workspace.state import FileSyncStateStore, SyncState, SyncStateStore, build_state
from agent_workspace.transform import (
    ACTION_COPIED,
    ACTION_FAILED,
    ACTION_GENERATED,
    ACTION_SKIPPED,
    CopyResult,
    build_plan,
    execute_plan,
)
from agent_workspace.validator import PluginResolver, ValidatedPlugin, validate_all_plugins

logger = logging.getLogger(__name__)


@dataclass
class SyncOptions:
    offline: bool = False
    dry_run: bool = False
    clients: List[str] = field(default_factory=list)         # empty means all configured clients
    disabled_skills: List[str] = field(default_factory=list)


@dataclass
class PluginSyncResult:
    plugin: str
    resolved_path: Optional[Path] = None
    success: bool = True
    error: Optional[str] = None
    copy_results: List[CopyResult] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "plugin": self.plugin,
            "resolvedPath": str(self.resolved_path) if self.resolved_path else None,
            "success": self.success,
            "error": self.error,
            "copyResults": [r.to_dict() for r in self.copy_results],
        }


@dataclass
class SyncResult:
    success: bool
    dry_run: bool = False
    copied: int = 0
    generated: int = 0
    failed: int = 0
    skipped: int = 0
    plugin_results: List[PluginSyncResult] = field(default_factory=list)
    generated_results: List[CopyResult] = field(default_factory=list)
    purged: List[str] = field(default_factory=list)
    purge_outcomes: List[PurgeOutcome] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    error: Optional[str] = None

    def all_results(self) -> List[CopyResult]:
        results = [r for p in self.plugin_results for r in p.copy_results]
        return results + list(self.generated_results)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "dryRun": self.dry_run,
            "copied": self.copied,
            "generated": self.generated,
            "failed": self.failed,
            "skipped": self.skipped,
            "plugins": [p.to_dict() for p in self.plugin_results],
            "generatedFiles": [r.to_dict() for r in self.generated_results],
            "purged": list(self.purged),
            "purgeOutcomes": [dataclasses.asdict(o) for o in self.purge_outcomes],
            "warnings": list(self.warnings),
            "error": self.error,
        }


def _plugin_results(plugins: List[ValidatedPlugin], results: List[CopyResult]) -> List[PluginSyncResult]:
    by_plugin: Dict[str, List[CopyResult]] = {}
    for result in results:
        if result.plugin is not None:
            by_plugin.setdefault(result.plugin, []).append(result)

    out = []
    seen: Set[str] = set()
    for plugin in plugins:
        if plugin.reference in seen:
            continue
        seen.add(plugin.reference)
        if not plugin.ok:
            out.append(PluginSyncResult(plugin=plugin.reference, success=False, error=plugin.error))
            continue
        copy_results = by_plugin.get(plugin.reference, [])
        out.append(PluginSyncResult(
            plugin=plugin.reference,
            resolved_path=plugin.resolved_path,
            success=not any(r.action == ACTION_FAILED for r in copy_results),
            copy_results=copy_results,
        ))
    return out


def collect_sync_state(
    results: List[CopyResult],
    carried: Dict[str, List[str]],
    purge_outcomes: List[PurgeOutcome],
) -> SyncState:
    """State after a pass: what this pass owns, plus untouched clients and failed purges."""
    files: Dict[str, Set[str]] = {client: set(paths) for client, paths in carried.items()}
    for result in results:
        if not result.managed or not result.synced_path:
            continue
        for client in result.clients:
            files.setdefault(client, set()).add(result.synced_path)
    for client, paths in failed_purge_paths(purge_outcomes).items():
        files.setdefault(client, set()).update(paths)
    return build_state({client: paths for client, paths in files.items() if paths})


async def sync_workspace(
    workspace_path: Path,
    options: Optional[SyncOptions] = None,
    state_store: Optional[SyncStateStore] = None,
    resolver: Optional[PluginResolver] = None,
) -> SyncResult:
    """Run one sync pass against ``workspace_path``."""
    options = options or SyncOptions()
    root = Path(workspace_path).resolve()

    try:
        config = load_config(get_config_path(root))
    except ConfigError as e:
        return SyncResult(success=False, dry_run=options.dry_run, error=str(e))

    if options.clients:
        unknown = [c for c in options.clients if c not in config.clients]
        if unknown:
            return SyncResult(
                success=False,
                dry_run=options.dry_run,
                error=(
                    f"Client(s) not in workspace config: {', '.join(unknown)}\n"
                    f"  Configured: {', '.join(config.clients) or '(none)'}"
                ),
            )
        targets = [c for c in config.clients if c in options.clients]
    else:
        targets = list(config.clients)
    full_scope = set(targets) == set(config.clients)
    table = get_client_table(is_user_scope(root))

    # validating
    logger.info("Validating %d plugin(s)", len(config.plugins))
    plugins = await validate_all_plugins(config.plugins, root, offline=options.offline, resolver=resolver)
    warnings = [f"{p.reference}: {p.error}" for p in plugins if not p.ok]

    if config.plugins and not any(p.ok for p in plugins):
        return SyncResult(
            success=False,
            dry_run=options.dry_run,
            plugin_results=_plugin_results(plugins, []),
            warnings=warnings,
            error="All plugins failed to resolve; nothing was changed",
        )

    disabled = set(config.disabled_skills) | set(options.disabled_skills)
    skills = collect_skills(plugins, disabled, warnings)
    resolution = resolve_skill_names(skills)
    plan = build_plan(plugins, skills, resolution, targets, table, config.sync_mode)

    store = state_store or FileSyncStateStore(get_sync_state_path(root))
    previous = store.load()
    carried: Dict[str, List[str]] = {}
    if previous is not None:
        carried = {
            client: list(paths)
            for client, paths in previous.files.items()
            if client not in targets and (not full_scope or client in config.clients)
        }

    keep = plan.destinations() | {normalize_synced_path(p) for paths in carried.values() for p in paths}
    purge_list = compute_purge_paths(previous, targets, config.clients, full_scope, keep)

    # purging
    if options.dry_run:
        purge_outcomes = preview_outcomes(root, purge_list)
    else:
        logger.info("Purging %d stale path(s)", sum(len(p.paths) for p in purge_list))
        purge_outcomes = await asyncio.to_thread(purge_paths, root, purge_list)
    for outcome in purge_outcomes:
        if outcome.action == FAILED:
            warnings.append(f"Could not remove {outcome.path}: {outcome.error}")

    # copying
    managed = previous.all_paths() if previous is not None else []
    results = await execute_plan(plan, root, managed, dry_run=options.dry_run)
    results.extend(plan.conflicts)
    results.extend(plan.failures)
    for problem in plan.conflicts + plan.failures:
        warnings.append(f"{problem.plugin}: {problem.error}")

    # persisting
    state_saved = True
    if not options.dry_run:
        state = collect_sync_state(results, carried, purge_outcomes)
        try:
            if store.save(state):
                logger.info("Sync state updated")
        except OSError as e:
            logger.warning("Could not save sync state: %s", e)
            warnings.append(f"Could not save sync state: {e}")
            state_saved = False

    counts = {ACTION_COPIED: 0, ACTION_GENERATED: 0, ACTION_FAILED: 0, ACTION_SKIPPED: 0}
    for result in results:
        counts[result.action] += 1

    return SyncResult(
        success=counts[ACTION_FAILED] == 0 and state_saved,
        dry_run=options.dry_run,
        copied=counts[ACTION_COPIED],
        generated=counts[ACTION_GENERATED],
        failed=counts[ACTION_FAILED],
        skipped=counts[ACTION_SKIPPED],
        plugin_results=_plugin_results(plugins, results),
        generated_results=[r for r in results if r.plugin is None],
        purged=[o.path for o in purge_outcomes if o.action in (DELETED, WOULD_DELETE)],
        purge_outcomes=purge_outcomes,
        warnings=warnings,
    )


async def dry_run_sync(
    workspace_path: Path,
    options: Optional[SyncOptions] = None,
    state_store: Optional[SyncStateStore] = None,
    resolver: Optional[PluginResolver] = None,
) -> SyncResult:
    """Same pass as ``sync_workspace`` with every mutation suppressed."""
    options = dataclasses.replace(options or SyncOptions(), dry_run=True)
    return await sync_workspace(workspace_path, options, state_store=state_store, resolver=resolver)
