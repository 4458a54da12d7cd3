"""Remote plugin fetching and plugin metadata."""

import asyncio
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional

from agent_workspace import git
from agent_workspace.errors import NOT_FOUND, OTHER, GitCloneError
from agent_workspace.sources import GitHubRepo, get_plugin_cache_path, parse_github_url

logger = logging.getLogger(__name__)

PLUGIN_MANIFESTS = ("plugin.json", ".claude-plugin/plugin.json")

# Fetches in progress, keyed by cache path
_inflight: Dict[str, "asyncio.Task[FetchResult]"] = {}


@dataclass
class FetchResult:
    success: bool
    action: str                       # fetched | updated | cached | skipped
    cache_path: Optional[Path] = None
    error: Optional[str] = None
    kind: Optional[str] = None        # failure kind when success is False


async def fetch_remote(url: str, offline: bool = False, branch: Optional[str] = None) -> FetchResult:
    """Make a GitHub plugin available in the local cache.

    Concurrent calls for the same cache path share a single git operation.
    """
    repo = parse_github_url(url)
    if repo is None:
        return FetchResult(
            success=False,
            action="skipped",
            error=f"Invalid GitHub URL: {url}\n  Expected: https://github.com/owner/repo",
            kind=OTHER,
        )
    branch = branch or repo.branch
    cache_path = get_plugin_cache_path(repo.owner, repo.repo, branch)
    key = str(cache_path)

    task = _inflight.get(key)
    if task is None:
        task = asyncio.ensure_future(_do_fetch(repo, cache_path, offline, branch))
        _inflight[key] = task
        task.add_done_callback(lambda _t: _inflight.pop(key, None))
    return await asyncio.shield(task)


async def _do_fetch(repo: GitHubRepo, cache_path: Path, offline: bool, branch: Optional[str]) -> FetchResult:
    cached = cache_path.exists()

    if offline:
        if cached:
            return FetchResult(success=True, action="cached", cache_path=cache_path)
        return FetchResult(
            success=False,
            action="skipped",
            cache_path=cache_path,
            error=f"{repo.slug} is not cached and --offline was given",
            kind=OTHER,
        )

    if cached:
        # A failed pull still leaves a usable cached copy
        try:
            await git.pull(cache_path)
            return FetchResult(success=True, action="updated", cache_path=cache_path)
        except GitCloneError as e:
            logger.warning("Could not update %s, using cached copy: %s", repo.slug, e)
            return FetchResult(success=True, action="cached", cache_path=cache_path)

    cache_path.parent.mkdir(parents=True, exist_ok=True)
    try:
        await git.clone_to(repo.clone_url, cache_path, branch)
    except GitCloneError as e:
        if e.is_auth_error:
            message = f"Authentication failed for {repo.slug}.\n  Set GH_TOKEN or check your git credentials."
        elif e.is_timeout:
            message = f"Clone timed out for {repo.slug}.\n  Check your network connection."
        elif e.kind == NOT_FOUND:
            message = f"Repository {repo.slug} not found."
        else:
            message = f"Failed to fetch {repo.slug}: {e}"
        return FetchResult(success=False, action="skipped", cache_path=cache_path, error=message, kind=e.kind)

    return FetchResult(success=True, action="fetched", cache_path=cache_path)


def get_plugin_name(plugin_path: Path) -> str:
    """Plugin display name from plugin.json, falling back to the directory name."""
    plugin_path = Path(plugin_path)
    for manifest in PLUGIN_MANIFESTS:
        manifest_path = plugin_path / manifest
        if not manifest_path.is_file():
            continue
        try:
            with open(manifest_path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            logger.debug("Ignoring unreadable %s: %s", manifest_path, e)
            continue
        name = data.get("name") if isinstance(data, dict) else None
        if isinstance(name, str) and name.strip():
            return name.strip()
    return plugin_path.resolve().name
