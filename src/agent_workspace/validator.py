"""Resolve configured plugin references to local directories.

Validation never touches the workspace. Each reference is resolved as an
independent task; one failing reference does not affect the others.
"""

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from agent_workspace import marketplace
from agent_workspace.errors import AgentWorkspaceError
from agent_workspace.plugins import FetchResult, fetch_remote, get_plugin_name
from agent_workspace.sources import LocalPath, MarketplaceSpec, RemoteUrl, parse_plugin_source

logger = logging.getLogger(__name__)


@dataclass
class ValidatedPlugin:
    reference: str
    resolved_path: Optional[Path] = None
    display_name: Optional[str] = None
    ok: bool = False
    error: Optional[str] = None
    registered_as: Optional[str] = None   # marketplace name, when it differs from the reference


class PluginResolver:
    """Network-backed collaborators used during validation.

    Swap in a subclass (or any object with the same two coroutines) to keep
    tests off the network.
    """

    def __init__(self, registry: Optional[marketplace.MarketplaceRegistry] = None):
        self.registry = registry

    async def resolve_plugin_spec(self, reference: str, offline: bool = False) -> marketplace.ResolveResult:
        return await marketplace.resolve_plugin_spec(
            reference,
            offline=offline,
            registry=self.registry,
            fetch=self.fetch_remote,
        )

    async def fetch_remote(self, url: str, offline: bool = False, branch: Optional[str] = None) -> FetchResult:
        return await fetch_remote(url, offline=offline, branch=branch)


def _failed(reference: str, error: str) -> ValidatedPlugin:
    return ValidatedPlugin(reference=reference, ok=False, error=error)


def _resolved(reference: str, path: Path) -> ValidatedPlugin:
    path = Path(path).resolve()
    return ValidatedPlugin(
        reference=reference,
        resolved_path=path,
        display_name=get_plugin_name(path),
        ok=True,
    )


async def validate_plugin(
    reference: str,
    base_dir: Path,
    offline: bool = False,
    resolver: Optional[PluginResolver] = None,
) -> ValidatedPlugin:
    """Resolve a single plugin reference. Failures are returned, not raised."""
    resolver = resolver or PluginResolver()
    try:
        return await _validate(reference, base_dir, offline, resolver)
    except (OSError, AgentWorkspaceError) as e:
        return _failed(reference, f"Could not resolve {reference}: {e}")


async def _validate(reference: str, base_dir: Path, offline: bool, resolver: PluginResolver) -> ValidatedPlugin:
    source = parse_plugin_source(reference, base_dir)

    if source is None:
        return _failed(reference, f"Invalid plugin reference: {reference}")

    if isinstance(source, MarketplaceSpec):
        result = await resolver.resolve_plugin_spec(reference, offline=offline)
        if not result.success or result.path is None:
            return _failed(reference, result.error or f"Could not resolve {reference}")
        plugin = _resolved(reference, result.path)
        if result.registered_as:
            logger.info("%s resolved through marketplace '%s'", reference, result.registered_as)
            plugin.registered_as = result.registered_as
        return plugin

    if isinstance(source, RemoteUrl):
        result = await resolver.fetch_remote(reference, offline=offline, branch=source.repo.branch)
        if not result.success or result.cache_path is None:
            return _failed(reference, result.error or f"Could not fetch {reference}")
        path = Path(result.cache_path)
        if source.repo.subpath:
            path = path / source.repo.subpath
            if not path.is_dir():
                return _failed(reference, f"Path '{source.repo.subpath}' not found in {source.repo.slug}")
        return _resolved(reference, path)

    if isinstance(source, LocalPath):
        if not source.path.exists():
            return _failed(reference, f"Plugin not found: {source.path}")
        if not source.path.is_dir():
            return _failed(reference, f"Plugin path is not a directory: {source.path}")
        return _resolved(reference, source.path)

    return _failed(reference, f"Unsupported plugin source for {reference}")


async def validate_all_plugins(
    references: List[str],
    base_dir: Path,
    offline: bool = False,
    resolver: Optional[PluginResolver] = None,
) -> List[ValidatedPlugin]:
    """Validate every reference concurrently, preserving configured order."""
    resolver = resolver or PluginResolver()
    results = await asyncio.gather(
        *(validate_plugin(ref, base_dir, offline=offline, resolver=resolver) for ref in references)
    )
    for plugin in results:
        if plugin.ok:
            logger.debug("Resolved %s -> %s", plugin.reference, plugin.resolved_path)
        else:
            logger.warning("Plugin %s failed validation: %s", plugin.reference, plugin.error)
    return list(results)
