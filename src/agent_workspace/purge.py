"""Selective purge: remove only paths an earlier sync recorded as its own."""

import logging
import shutil
from dataclasses import dataclass
from pathlib import Path, PurePath
from typing import Dict, Iterable, List, Optional, Set

from agent_workspace.links import is_junction
from agent_workspace.state import SyncState, get_previously_synced_files

logger = logging.getLogger(__name__)

DELETED = "deleted"
MISSING = "missing"
FAILED = "failed"
WOULD_DELETE = "would_delete"

OUTSIDE_WORKSPACE = "path is outside the workspace"


@dataclass
class PurgePaths:
    client: str
    paths: List[str]


@dataclass
class PurgeOutcome:
    client: str
    path: str
    action: str                   # deleted | missing | failed | would_delete
    error: Optional[str] = None


def normalize_synced_path(path: str) -> str:
    """Drop the directory marker so ``a/b/`` and ``a/b`` compare equal."""
    return path.rstrip("/")


def compute_purge_paths(
    previous: Optional[SyncState],
    target_clients: List[str],
    configured_clients: List[str],
    full_scope: bool,
    keep: Iterable[str] = (),
) -> List[PurgePaths]:
    """Work out which recorded paths to delete, per client.

    Targeted clients lose their recorded paths. On a full-scope run, clients
    no longer present in the configuration lose theirs too. Anything in
    ``keep`` (paths still wanted after this run) is never purged.
    """
    if previous is None:
        return []

    keep_set: Set[str] = {normalize_synced_path(p) for p in keep}
    clients: List[str] = list(target_clients)
    if full_scope:
        clients += [c for c in previous.files if c not in configured_clients and c not in clients]

    result: List[PurgePaths] = []
    for client in clients:
        paths = [
            p for p in get_previously_synced_files(previous, client)
            if normalize_synced_path(p) not in keep_set
        ]
        if paths:
            result.append(PurgePaths(client=client, paths=paths))
    return result


def _inside(root: Path, target: Path) -> bool:
    try:
        target.relative_to(root)
    except ValueError:
        return False
    return target != root


def _refusal(key: str) -> Optional[str]:
    """Why a recorded path may not be touched, or None if it may.

    The check is lexical: a client directory that is itself a symlink
    (a dotfiles checkout, say) still counts as inside the workspace.
    """
    rel = PurePath(key)
    if not key or rel.is_absolute() or rel.anchor or ".." in rel.parts:
        return OUTSIDE_WORKSPACE
    return None


def _remove(target: Path) -> None:
    # Links and junctions are removed as links, never followed
    if target.is_symlink() or target.is_file():
        target.unlink()
    elif is_junction(target):
        target.rmdir()
    elif target.is_dir():
        shutil.rmtree(target)
    else:
        target.unlink()


def cleanup_empty_parents(path: Path, root: Path) -> None:
    """Remove now-empty directories above ``path``, stopping at ``root``."""
    root = Path(root)
    parent = Path(path).parent
    while _inside(root, parent):
        if parent.is_symlink() or is_junction(parent):
            return
        try:
            if any(parent.iterdir()):
                return
            parent.rmdir()
        except OSError:
            return
        logger.debug("Removed empty directory %s", parent)
        parent = parent.parent


def purge_paths(workspace_path: Path, purge_list: List[PurgePaths]) -> List[PurgeOutcome]:
    """Delete every listed path, best effort.

    Each path yields one outcome; a failure is recorded and the pass moves on.
    """
    root = Path(workspace_path).resolve()
    outcomes: List[PurgeOutcome] = []
    done: Dict[str, PurgeOutcome] = {}

    for entry in purge_list:
        for rel in entry.paths:
            key = normalize_synced_path(rel)
            if key in done:
                continue
            target = root / key
            refused = _refusal(key)
            if refused:
                outcome = PurgeOutcome(entry.client, rel, FAILED, refused)
            elif not target.exists() and not target.is_symlink():
                outcome = PurgeOutcome(entry.client, rel, MISSING)
            else:
                try:
                    _remove(target)
                except OSError as e:
                    outcome = PurgeOutcome(entry.client, rel, FAILED, str(e))
                else:
                    outcome = PurgeOutcome(entry.client, rel, DELETED)
                    cleanup_empty_parents(target, root)

            if outcome.action == FAILED:
                logger.warning("Could not purge %s: %s", rel, outcome.error)
            else:
                logger.debug("Purge %s: %s", rel, outcome.action)
            done[key] = outcome
            outcomes.append(outcome)

    return outcomes


def failed_purge_paths(outcomes: Iterable[PurgeOutcome]) -> Dict[str, List[str]]:
    """Paths whose deletion failed, grouped by client, so they stay tracked."""
    failed: Dict[str, List[str]] = {}
    for outcome in outcomes:
        if outcome.action == FAILED and outcome.error != OUTSIDE_WORKSPACE:
            failed.setdefault(outcome.client, []).append(outcome.path)
    return failed


def preview_outcomes(workspace_path: Path, purge_list: List[PurgePaths]) -> List[PurgeOutcome]:
    """What ``purge_paths`` would do, without deleting anything."""
    root = Path(workspace_path).resolve()
    outcomes = []
    seen: Set[str] = set()
    for entry in purge_list:
        for rel in entry.paths:
            key = normalize_synced_path(rel)
            if key in seen:
                continue
            seen.add(key)
            refused = _refusal(key)
            if refused:
                outcomes.append(PurgeOutcome(entry.client, rel, FAILED, refused))
                continue
            target = root / key
            present = target.exists() or target.is_symlink()
            outcomes.append(PurgeOutcome(entry.client, rel, WOULD_DELETE if present else MISSING))
    return outcomes
