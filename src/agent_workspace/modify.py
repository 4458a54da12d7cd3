"""Edits to ``.agent/workspace.yaml``: plugins, clients and disabled skills.

Each edit loads and validates the config, applies one change and writes it
back with ``save_config``. A rejected edit raises ConfigError and leaves the
file as it was.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from agent_workspace.clients import SUPPORTED_CLIENTS
from agent_workspace.config import WorkspaceConfig, get_config_path, load_config, save_config
from agent_workspace.errors import ConfigError
from agent_workspace.marketplace import WELL_KNOWN_MARKETPLACES, MarketplaceRegistry
from agent_workspace.skills import collect_skills, get_resolved_name, resolve_skill_names
from agent_workspace.sources import MarketplaceSpec, is_plugin_spec, parse_plugin_spec
from agent_workspace.validator import PluginResolver, ValidatedPlugin, validate_all_plugins, validate_plugin

logger = logging.getLogger(__name__)


def _load(root: Path) -> WorkspaceConfig:
    return load_config(get_config_path(root))


def _save(root: Path, config: WorkspaceConfig) -> None:
    save_config(get_config_path(root), config)


# =============================================================================
# Plugins
# =============================================================================

async def add_plugin(
    root: Path,
    reference: str,
    offline: bool = False,
    resolver: Optional[PluginResolver] = None,
) -> ValidatedPlugin:
    """Append ``reference`` to the plugin list once it resolves.

    Marketplace references may register their marketplace as a side effect,
    the same way a sync would.
    """
    reference = reference.strip()
    config = _load(root)
    if reference in config.plugins:
        raise ConfigError(f"Plugin already configured: {reference}")

    plugin = await validate_plugin(reference, root, offline=offline, resolver=resolver)
    if not plugin.ok:
        raise ConfigError(plugin.error or f"Could not resolve {reference}")

    config.plugins.append(reference)
    _save(root, config)
    logger.info("Added plugin %s", reference)
    return plugin


def remove_plugin(root: Path, reference: str) -> str:
    """Remove a plugin by exact reference, or by plugin name for ``name@marketplace`` entries.

    Returns the reference that was removed.
    """
    reference = reference.strip()
    config = _load(root)
    match = reference if reference in config.plugins else None
    if match is None and not is_plugin_spec(reference):
        match = next((p for p in config.plugins if p.startswith(reference + "@")), None)
    if match is None:
        raise ConfigError(f"Plugin not configured: {reference}")

    config.plugins.remove(match)
    _save(root, config)
    logger.info("Removed plugin %s", match)
    return match


def _is_orphaned(spec: MarketplaceSpec, registry: MarketplaceRegistry) -> bool:
    if registry.find(spec.marketplace, spec.source_location) is not None:
        return False
    # Resolution registers these on demand
    return spec.source_location is None and spec.marketplace not in WELL_KNOWN_MARKETPLACES


def prune_orphaned_plugins(root: Path, registry: Optional[MarketplaceRegistry] = None) -> List[str]:
    """Drop ``plugin@marketplace`` references whose marketplace can never resolve.

    A marketplace is gone when it is not in the registry and is neither a
    well-known name nor an ``owner/repo`` pair. Returns the removed references.
    """
    registry = registry or MarketplaceRegistry()
    config = _load(root)

    removed: List[str] = []
    kept: List[str] = []
    for reference in config.plugins:
        spec = parse_plugin_spec(reference)
        if spec is not None and _is_orphaned(spec, registry):
            removed.append(reference)
        else:
            kept.append(reference)

    if removed:
        config.plugins = kept
        _save(root, config)
        logger.info("Pruned %d orphaned plugin(s)", len(removed))
    return removed


# =============================================================================
# Clients
# =============================================================================

def add_client(root: Path, client: str) -> None:
    if client not in SUPPORTED_CLIENTS:
        raise ConfigError(f"Unknown client '{client}' (supported: {', '.join(SUPPORTED_CLIENTS)})")
    config = _load(root)
    if client in config.clients:
        raise ConfigError(f"Client already configured: {client}")
    config.clients.append(client)
    _save(root, config)


def remove_client(root: Path, client: str) -> None:
    """Stop syncing to ``client``. Its files are purged by the next full sync."""
    config = _load(root)
    if client not in config.clients:
        raise ConfigError(f"Client not configured: {client}")
    config.clients.remove(client)
    _save(root, config)


# =============================================================================
# Skills
# =============================================================================

@dataclass
class SkillInfo:
    key: str                      # plugin:skill, the form stored in disabledSkills
    plugin: str                   # plugin display name
    reference: str                # configured plugin reference
    folder: str
    enabled: bool
    name: Optional[str] = None    # destination folder name, for enabled skills


async def list_skills(
    root: Path,
    offline: bool = False,
    resolver: Optional[PluginResolver] = None,
) -> List[SkillInfo]:
    """Every skill the configured plugins provide, with its enabled state."""
    config = _load(root)
    plugins = await validate_all_plugins(config.plugins, root, offline=offline, resolver=resolver)
    disabled = set(config.disabled_skills)

    entries = collect_skills(plugins)
    enabled = [e for e in entries if e.disable_key not in disabled]
    resolution = resolve_skill_names(enabled)

    return [
        SkillInfo(
            key=e.disable_key,
            plugin=e.plugin_name,
            reference=e.plugin_reference,
            folder=e.folder_name,
            enabled=e.disable_key not in disabled,
            name=get_resolved_name(resolution, e) if e.disable_key not in disabled else None,
        )
        for e in entries
    ]


def _pick(matches: List[str], skill: str) -> str:
    if not matches:
        raise ConfigError(f"Skill '{skill}' not found")
    if len(set(matches)) > 1:
        raise ConfigError(
            f"'{skill}' exists in more than one plugin; use --plugin or plugin:skill",
            sorted(set(matches)),
        )
    return matches[0]


async def disable_skill(
    root: Path,
    skill: str,
    plugin: Optional[str] = None,
    offline: bool = False,
    resolver: Optional[PluginResolver] = None,
) -> str:
    """Add a skill to ``disabledSkills``. Returns the stored ``plugin:skill`` key.

    ``skill`` is a folder name or a full ``plugin:skill`` key; the skill must
    exist in one of the configured plugins.
    """
    skills = await list_skills(root, offline=offline, resolver=resolver)
    if ":" in skill:
        matches = [s.key for s in skills if s.key == skill]
    else:
        matches = [s.key for s in skills if s.folder == skill and (plugin is None or s.plugin == plugin)]
    key = _pick(matches, skill)

    config = _load(root)
    if key in config.disabled_skills:
        raise ConfigError(f"Skill already disabled: {key}")
    config.disabled_skills.append(key)
    _save(root, config)
    logger.info("Disabled skill %s", key)
    return key


def enable_skill(root: Path, skill: str, plugin: Optional[str] = None) -> str:
    """Remove a skill from ``disabledSkills``. Returns the removed key."""
    config = _load(root)
    if ":" in skill:
        matches = [k for k in config.disabled_skills if k == skill]
    else:
        matches = [
            k for k in config.disabled_skills
            if k.partition(":")[2] == skill and (plugin is None or k.partition(":")[0] == plugin)
        ]
    if not matches:
        raise ConfigError(f"Skill is not disabled: {skill}")
    key = _pick(matches, skill)

    config.disabled_skills.remove(key)
    _save(root, config)
    logger.info("Enabled skill %s", key)
    return key
