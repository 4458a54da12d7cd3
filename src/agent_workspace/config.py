"""Workspace configuration (``.agent/workspace.yaml``) and global locations."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List

import yaml

from agent_workspace.clients import SUPPORTED_CLIENTS
from agent_workspace.errors import ConfigError


# Per-workspace config directory (also used under ~ for user scope)
CONFIG_DIR = ".agent"
WORKSPACE_CONFIG_FILE = "workspace.yaml"
SYNC_STATE_FILE = "sync-state.json"

SYNC_MODES = ("symlink", "copy")
DEFAULT_SYNC_MODE = "symlink"

DEFAULT_GIT_TIMEOUT = 60.0


def get_agent_home() -> Path:
    """Root for caches and the marketplace registry (``~/.agent`` by default)."""
    override = os.getenv("AGENT_WORKSPACE_HOME", "").strip()
    if override:
        return Path(override).expanduser()
    return Path.home() / CONFIG_DIR


def get_plugin_cache_dir() -> Path:
    return get_agent_home() / "plugins" / "cache"


def get_marketplaces_dir() -> Path:
    return get_agent_home() / "plugins" / "marketplaces"


def get_git_timeout() -> float:
    """Clone/pull timeout in seconds, from AGENT_WORKSPACE_GIT_TIMEOUT if set."""
    raw = os.getenv("AGENT_WORKSPACE_GIT_TIMEOUT", "").strip()
    if not raw:
        return DEFAULT_GIT_TIMEOUT
    try:
        value = float(raw)
    except ValueError:
        return DEFAULT_GIT_TIMEOUT
    return value if value > 0 else DEFAULT_GIT_TIMEOUT


def get_config_path(workspace_path: Path) -> Path:
    return Path(workspace_path) / CONFIG_DIR / WORKSPACE_CONFIG_FILE


def get_sync_state_path(workspace_path: Path) -> Path:
    return Path(workspace_path) / CONFIG_DIR / SYNC_STATE_FILE


def is_user_scope(workspace_path: Path) -> bool:
    """True when the workspace is the user's home directory."""
    try:
        return Path(workspace_path).resolve() == Path.home().resolve()
    except OSError:
        return False


@dataclass
class WorkspaceConfig:
    plugins: List[str] = field(default_factory=list)
    clients: List[str] = field(default_factory=list)
    sync_mode: str = DEFAULT_SYNC_MODE
    disabled_skills: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "plugins": list(self.plugins),
            "clients": list(self.clients),
            "syncMode": self.sync_mode,
        }
        if self.disabled_skills:
            data["disabledSkills"] = list(self.disabled_skills)
        return data


def _string_list(data: Dict[str, Any], key: str, problems: List[str], required: bool) -> List[str]:
    if key not in data or data[key] is None:
        if required:
            problems.append(f"{key}: required")
        return []
    value = data[key]
    if not isinstance(value, list):
        problems.append(f"{key}: expected a list")
        return []
    items = []
    for i, item in enumerate(value):
        if not isinstance(item, str) or not item.strip():
            problems.append(f"{key}[{i}]: expected a non-empty string")
            continue
        items.append(item.strip())
    return items


def parse_config(data: Any) -> WorkspaceConfig:
    """Validate a parsed YAML document into a WorkspaceConfig."""
    if data is None:
        raise ConfigError(f"{WORKSPACE_CONFIG_FILE} is empty")
    if not isinstance(data, dict):
        raise ConfigError(f"{WORKSPACE_CONFIG_FILE} must be a mapping")

    problems: List[str] = []
    plugins = _string_list(data, "plugins", problems, required=True)
    clients = _string_list(data, "clients", problems, required=True)
    disabled = _string_list(data, "disabledSkills", problems, required=False)

    for client in clients:
        if client not in SUPPORTED_CLIENTS:
            problems.append(
                f"clients: unknown client '{client}' (supported: {', '.join(SUPPORTED_CLIENTS)})"
            )

    sync_mode = data.get("syncMode", DEFAULT_SYNC_MODE) or DEFAULT_SYNC_MODE
    if sync_mode not in SYNC_MODES:
        problems.append(f"syncMode: expected one of {', '.join(SYNC_MODES)}, got '{sync_mode}'")

    for key in disabled:
        plugin, sep, skill = key.partition(":")
        if not sep or not plugin or not skill:
            problems.append(f"disabledSkills: '{key}' is not in plugin:skill form")

    if problems:
        raise ConfigError(f"{WORKSPACE_CONFIG_FILE} validation failed:", problems)

    # Keep configured order, drop repeats
    return WorkspaceConfig(
        plugins=list(dict.fromkeys(plugins)),
        clients=list(dict.fromkeys(clients)),
        sync_mode=sync_mode,
        disabled_skills=list(dict.fromkeys(disabled)),
    )


def load_config(path: Path) -> WorkspaceConfig:
    """Read and validate a workspace.yaml file."""
    path = Path(path)
    if not path.exists():
        raise ConfigError(
            f"{CONFIG_DIR}/{WORKSPACE_CONFIG_FILE} not found at {path}\n"
            f"  Run 'agent-workspace init' to create one"
        )
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e
    return parse_config(data)


def save_config(path: Path, config: WorkspaceConfig) -> None:
    """Write a WorkspaceConfig to workspace.yaml."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        yaml.safe_dump(config.to_dict(), f, sort_keys=False)
