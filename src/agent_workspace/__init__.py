"""
Agent Workspace - keep AI coding agent directories in sync with plugins.

Reads .agent/workspace.yaml and writes each configured plugin's skills,
commands, hooks and agent-file fragments into the folders the configured
clients read:
- Claude Code (.claude/)
- Codex, OpenCode, Amp (.agents/)
- Gemini (.gemini/)
- And more...

Usage:
    uv tool install agent-workspace
    agent-workspace init --client claude --plugin ./plugins/review
    agent-workspace sync
"""

__version__ = "0.1.0"

from agent_workspace.cli import app, main  # noqa: E402
from agent_workspace.sync import (  # noqa: E402
    PluginSyncResult,
    SyncOptions,
    SyncResult,
    dry_run_sync,
    sync_workspace,
)

__all__ = [
    "PluginSyncResult",
    "SyncOptions",
    "SyncResult",
    "__version__",
    "app",
    "dry_run_sync",
    "main",
    "sync_workspace",
]


if __name__ == "__main__":
    main()
