"""Marketplace registry and ``plugin@marketplace`` resolution.

Registry format (``~/.agent/known_marketplaces.json``)::

    {
      "claude-plugins-official": {
        "sourceType": "github",
        "sourceLocation": "anthropics/claude-plugins-official",
        "localPath": "/home/me/.agent/plugins/marketplaces/claude-plugins-official",
        "lastUpdated": "2026-01-05T10:00:00Z"
      }
    }
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional

from agent_workspace import git
from agent_workspace.config import get_agent_home, get_marketplaces_dir
from agent_workspace.errors import GitCloneError, MarketplaceError
from agent_workspace.plugins import FetchResult, fetch_remote
from agent_workspace.sources import MarketplaceSpec, get_plugin_cache_path, parse_github_url, parse_plugin_spec

logger = logging.getLogger(__name__)

MARKETPLACE_MANIFEST = ".claude-plugin/marketplace.json"
DEFAULT_PLUGINS_SUBPATH = "plugins"

WELL_KNOWN_MARKETPLACES: Dict[str, str] = {
    "claude-plugins-official": "anthropics/claude-plugins-official",
}

FetchFn = Callable[..., Awaitable[FetchResult]]


@dataclass
class MarketplaceEntry:
    name: str
    source_type: str              # github | local
    source_location: str
    local_path: Path
    last_updated: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sourceType": self.source_type,
            "sourceLocation": self.source_location,
            "localPath": str(self.local_path),
            "lastUpdated": self.last_updated,
        }


@dataclass
class ResolveResult:
    success: bool
    path: Optional[Path] = None
    plugin_name: Optional[str] = None
    registered_as: Optional[str] = None
    error: Optional[str] = None


@dataclass
class ManifestPlugin:
    name: str
    source: Any                   # str (relative path) or {"source": "url", "url": ...}


@dataclass
class MarketplaceManifest:
    name: Optional[str] = None
    plugins: List[ManifestPlugin] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


# =============================================================================
# Registry
# =============================================================================

def get_registry_path() -> Path:
    return get_agent_home() / "known_marketplaces.json"


class MarketplaceRegistry:
    """Registered marketplaces, read once and written back on change."""

    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path) if path else get_registry_path()
        self._entries: Optional[Dict[str, MarketplaceEntry]] = None

    def _load(self) -> Dict[str, MarketplaceEntry]:
        if self._entries is not None:
            return self._entries
        entries: Dict[str, MarketplaceEntry] = {}
        if self.path.exists():
            try:
                with open(self.path, "r", encoding="utf-8") as f:
                    data = json.load(f)
            except (json.JSONDecodeError, OSError) as e:
                logger.warning("Ignoring unreadable marketplace registry %s: %s", self.path, e)
                data = {}
            if isinstance(data, dict):
                for name, raw in data.items():
                    if not isinstance(raw, dict) or not raw.get("localPath"):
                        continue
                    entries[name] = MarketplaceEntry(
                        name=name,
                        source_type=raw.get("sourceType", "github"),
                        source_location=raw.get("sourceLocation", ""),
                        local_path=Path(raw["localPath"]),
                        last_updated=raw.get("lastUpdated"),
                    )
        self._entries = entries
        return entries

    def save(self) -> None:
        entries = self._load()
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump({name: e.to_dict() for name, e in entries.items()}, f, indent=2)

    def list(self) -> List[MarketplaceEntry]:
        return list(self._load().values())

    def get(self, name: str) -> Optional[MarketplaceEntry]:
        return self._load().get(name)

    def find(self, name: str, source_location: Optional[str] = None) -> Optional[MarketplaceEntry]:
        """Look up by name, then by source location (``owner/repo``)."""
        entry = self.get(name)
        if entry is not None:
            return entry
        if source_location:
            for candidate in self._load().values():
                if candidate.source_location == source_location:
                    return candidate
        return None

    def add(self, entry: MarketplaceEntry) -> None:
        self._load()[entry.name] = entry
        self.save()


def parse_marketplace_source(source: str) -> Optional[Dict[str, str]]:
    """Classify a marketplace source: well-known name, GitHub URL, owner/repo or local path."""
    if source in WELL_KNOWN_MARKETPLACES:
        return {"type": "github", "location": WELL_KNOWN_MARKETPLACES[source], "name": source}

    if source.startswith("https://github.com/"):
        repo = parse_github_url(source)
        if repo is None:
            return None
        return {"type": "github", "location": repo.slug, "name": repo.repo}

    if source.startswith("/") or source.startswith("."):
        path = Path(source).resolve()
        return {"type": "local", "location": str(path), "name": path.name or "local"}

    parts = source.split("/")
    if len(parts) == 2 and all(parts) and "://" not in source:
        return {"type": "github", "location": source, "name": parts[1]}

    return None


async def add_marketplace(source: str, registry: MarketplaceRegistry, offline: bool = False) -> MarketplaceEntry:
    """Register a marketplace, cloning it when it lives on GitHub."""
    parsed = parse_marketplace_source(source)
    if parsed is None:
        raise MarketplaceError(f"Invalid marketplace source: {source}")

    name = parsed["name"]
    existing = registry.get(name)
    if existing is not None:
        return existing

    if parsed["type"] == "local":
        local_path = Path(parsed["location"])
        if not local_path.is_dir():
            raise MarketplaceError(f"Marketplace directory not found: {local_path}")
    else:
        local_path = get_marketplaces_dir() / name
        if not local_path.exists():
            if offline:
                raise MarketplaceError(f"Marketplace '{name}' is not cached and --offline was given")
            local_path.parent.mkdir(parents=True, exist_ok=True)
            try:
                await git.clone_to(f"https://github.com/{parsed['location']}.git", local_path)
            except GitCloneError as e:
                raise MarketplaceError(f"Failed to clone marketplace {parsed['location']}: {e}") from e

    entry = MarketplaceEntry(
        name=name,
        source_type=parsed["type"],
        source_location=parsed["location"],
        local_path=local_path,
        last_updated=datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
    )
    registry.add(entry)
    logger.info("Registered marketplace %s (%s)", name, parsed["location"])
    return entry


# =============================================================================
# Manifest
# =============================================================================

def read_marketplace_manifest(marketplace_path: Path) -> Optional[MarketplaceManifest]:
    """Leniently parse ``.claude-plugin/marketplace.json``; unusable entries become warnings."""
    manifest_path = Path(marketplace_path) / MARKETPLACE_MANIFEST
    if not manifest_path.is_file():
        return None
    try:
        with open(manifest_path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (json.JSONDecodeError, OSError) as e:
        logger.warning("Could not read %s: %s", manifest_path, e)
        return None
    if not isinstance(data, dict):
        return None

    manifest = MarketplaceManifest(name=data.get("name") if isinstance(data.get("name"), str) else None)
    raw_plugins = data.get("plugins")
    if not isinstance(raw_plugins, list):
        return manifest

    for i, raw in enumerate(raw_plugins):
        if not isinstance(raw, dict):
            manifest.warnings.append(f"plugins[{i}]: not an object, skipped")
            continue
        name = raw.get("name")
        if not isinstance(name, str) or not name:
            manifest.warnings.append(f"plugins[{i}]: missing \"name\" field, skipped")
            continue
        source = raw.get("source")
        if isinstance(source, dict) and source.get("source") == "url" and isinstance(source.get("url"), str):
            manifest.plugins.append(ManifestPlugin(name=name, source=source))
        elif isinstance(source, str):
            manifest.plugins.append(ManifestPlugin(name=name, source=source))
        else:
            manifest.warnings.append(f"plugins[{i}] (\"{name}\"): missing or invalid \"source\" field")
    return manifest


# =============================================================================
# Resolution
# =============================================================================

async def _resolve_in_marketplace(
    spec: MarketplaceSpec,
    marketplace: MarketplaceEntry,
    offline: bool,
    fetch: FetchFn,
) -> Optional[Path]:
    mp_path = marketplace.local_path
    manifest = read_marketplace_manifest(mp_path)
    if manifest is not None:
        entry = next((p for p in manifest.plugins if p.name == spec.plugin), None)
        if entry is not None:
            if isinstance(entry.source, str):
                candidate = (mp_path / entry.source).resolve()
                if candidate.is_dir():
                    return candidate
            else:
                url = entry.source["url"]
                if offline:
                    repo = parse_github_url(url)
                    if repo is not None:
                        cached = get_plugin_cache_path(repo.owner, repo.repo, repo.branch)
                        if cached.is_dir():
                            return cached
                    return None
                result = await fetch(url, offline=offline)
                if result.success and result.cache_path:
                    return result.cache_path
                logger.warning("Could not fetch %s for %s: %s", url, spec.reference, result.error)

    subpath = spec.subpath or DEFAULT_PLUGINS_SUBPATH
    candidate = mp_path / subpath / spec.plugin
    return candidate if candidate.is_dir() else None


async def resolve_plugin_spec(
    reference: str,
    offline: bool = False,
    registry: Optional[MarketplaceRegistry] = None,
    fetch: Optional[FetchFn] = None,
) -> ResolveResult:
    """Resolve ``plugin@marketplace`` to a local plugin directory.

    Unregistered marketplaces are registered on the fly when they are a
    well-known name or an ``owner/repo`` pair.
    """
    spec = parse_plugin_spec(reference)
    if spec is None:
        return ResolveResult(
            success=False,
            error=f"Invalid plugin spec format: {reference}\n  Expected: plugin@marketplace or plugin@owner/repo[/subpath]",
        )
    registry = registry or MarketplaceRegistry()
    fetch = fetch or fetch_remote

    marketplace = registry.find(spec.marketplace, spec.source_location)
    if marketplace is None:
        source = spec.source_location or spec.marketplace
        if source not in WELL_KNOWN_MARKETPLACES and not spec.source_location:
            return ResolveResult(
                success=False,
                error=(
                    f"Marketplace '{spec.marketplace}' not found.\n"
                    f"  Use plugin@owner/repo, or one of: {', '.join(WELL_KNOWN_MARKETPLACES)}"
                ),
            )
        try:
            marketplace = await add_marketplace(source, registry, offline=offline)
        except MarketplaceError as e:
            return ResolveResult(success=False, error=str(e))

    path = await _resolve_in_marketplace(spec, marketplace, offline, fetch)
    if path is None:
        subpath = spec.subpath or DEFAULT_PLUGINS_SUBPATH
        return ResolveResult(
            success=False,
            error=(
                f"Plugin '{spec.plugin}' not found in marketplace '{spec.marketplace}'\n"
                f"  Expected at: {marketplace.local_path}/{subpath}/{spec.plugin}/"
            ),
        )

    return ResolveResult(
        success=True,
        path=path,
        plugin_name=spec.plugin,
        registered_as=marketplace.name if marketplace.name != spec.marketplace else None,
    )
