"""Shared fixtures for agent-workspace tests."""

import json
from pathlib import Path
from typing import Dict, List, Optional

import pytest
import yaml

from agent_workspace.errors import OTHER
from agent_workspace.marketplace import ResolveResult
from agent_workspace.plugins import FetchResult
from agent_workspace.state import MemorySyncStateStore


def skill_md(name: str, description: str = "Does a thing") -> str:
    return f"---\nname: {name}\ndescription: {description}\n---\n\n# {name}\n\nInstructions.\n"


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def agent_home(tmp_path, monkeypatch):
    """Keep caches and the marketplace registry inside the test's temp dir."""
    home = tmp_path / "agent-home"
    monkeypatch.setenv("AGENT_WORKSPACE_HOME", str(home))
    monkeypatch.delenv("GH_TOKEN", raising=False)
    monkeypatch.delenv("GITHUB_TOKEN", raising=False)
    return home


@pytest.fixture
def workspace(tmp_path):
    ws = tmp_path / "workspace"
    ws.mkdir()
    return ws


@pytest.fixture
def make_plugin(tmp_path):
    """Factory that lays out a plugin directory and returns its path."""

    def _make(
        dirname: str,
        skills: Optional[List[str]] = None,
        commands: Optional[List[str]] = None,
        hooks: Optional[Dict[str, str]] = None,
        agents_md: Optional[str] = None,
        claude_md: Optional[str] = None,
        name: Optional[str] = None,
        root: Optional[Path] = None,
    ) -> Path:
        path = (root or tmp_path / "plugins") / dirname
        path.mkdir(parents=True)
        if name:
            (path / "plugin.json").write_text(json.dumps({"name": name}))
        for skill in skills or []:
            skill_dir = path / "skills" / skill
            skill_dir.mkdir(parents=True)
            (skill_dir / "SKILL.md").write_text(skill_md(skill))
        for command in commands or []:
            (path / "commands").mkdir(exist_ok=True)
            (path / "commands" / command).write_text(f"# {command}\n")
        for rel, body in (hooks or {}).items():
            hook = path / "hooks" / rel
            hook.parent.mkdir(parents=True, exist_ok=True)
            hook.write_text(body)
        if agents_md is not None:
            (path / "AGENTS.md").write_text(agents_md)
        if claude_md is not None:
            (path / "CLAUDE.md").write_text(claude_md)
        return path

    return _make


@pytest.fixture
def write_config(workspace):
    """Factory that writes .agent/workspace.yaml for the workspace fixture."""

    def _write(plugins, clients, sync_mode: Optional[str] = None, disabled: Optional[List[str]] = None):
        data = {"plugins": [str(p) for p in plugins], "clients": list(clients)}
        if sync_mode:
            data["syncMode"] = sync_mode
        if disabled:
            data["disabledSkills"] = list(disabled)
        config_dir = workspace / ".agent"
        config_dir.mkdir(exist_ok=True)
        (config_dir / "workspace.yaml").write_text(yaml.safe_dump(data))
        return config_dir / "workspace.yaml"

    return _write


@pytest.fixture
def state_store():
    return MemorySyncStateStore()


class StubResolver:
    """Resolver that never touches the network.

    ``remote`` maps URLs to local directories, ``specs`` maps
    ``plugin@marketplace`` references to local directories.
    """

    def __init__(self, remote: Optional[Dict[str, Path]] = None, specs: Optional[Dict[str, Path]] = None):
        self.remote = remote or {}
        self.specs = specs or {}
        self.fetch_calls: List[tuple] = []

    async def resolve_plugin_spec(self, reference, offline=False):
        if reference in self.specs:
            return ResolveResult(success=True, path=self.specs[reference], plugin_name=reference.split("@")[0])
        return ResolveResult(success=False, error=f"Marketplace for {reference} not found")

    async def fetch_remote(self, url, offline=False, branch=None):
        self.fetch_calls.append((url, offline, branch))
        if url in self.remote:
            return FetchResult(success=True, action="cached", cache_path=self.remote[url])
        return FetchResult(success=False, action="skipped", error=f"Could not fetch {url}", kind=OTHER)


@pytest.fixture
def resolver():
    return StubResolver()
