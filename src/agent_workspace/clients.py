"""Client path table and skills-path deduplication.

Paths are relative to the workspace root (project scope) or to the user's home
directory (user scope). Directory paths end with ``/``.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional


# Single physical home for skills in symlink mode
CANONICAL_SKILLS_PATH = ".agents/skills/"

# Project-level client layouts
CLIENT_CONFIG: Dict[str, Dict[str, Optional[str]]] = {
    "claude": {
        "name": "Claude Code",
        "commands_path": ".claude/commands/",
        "skills_path": ".claude/skills/",
        "hooks_path": ".claude/hooks/",
        "agent_file": "CLAUDE.md",
        "agent_file_fallback": "AGENTS.md",
    },
    "copilot": {
        "name": "GitHub Copilot",
        "commands_path": None,
        "skills_path": ".github/skills/",
        "hooks_path": None,
        "agent_file": "AGENTS.md",
        "agent_file_fallback": None,
    },
    "codex": {
        "name": "Codex CLI",
        "commands_path": None,
        "skills_path": ".agents/skills/",
        "hooks_path": None,
        "agent_file": "AGENTS.md",
        "agent_file_fallback": None,
    },
    "cursor": {
        "name": "Cursor",
        "commands_path": None,
        "skills_path": ".cursor/skills/",
        "hooks_path": None,
        "agent_file": "AGENTS.md",
        "agent_file_fallback": None,
    },
    "opencode": {
        "name": "OpenCode",
        "commands_path": None,
        "skills_path": ".agents/skills/",
        "hooks_path": None,
        "agent_file": "AGENTS.md",
        "agent_file_fallback": None,
    },
    "gemini": {
        "name": "Gemini CLI",
        "commands_path": None,
        "skills_path": ".gemini/skills/",
        "hooks_path": None,
        "agent_file": "GEMINI.md",           # Gemini reads GEMINI.md first
        "agent_file_fallback": "AGENTS.md",
    },
    "factory": {
        "name": "Factory Droid",
        "commands_path": None,
        "skills_path": ".factory/skills/",
        "hooks_path": ".factory/hooks/",
        "agent_file": "AGENTS.md",
        "agent_file_fallback": None,
    },
    "ampcode": {
        "name": "Amp",
        "commands_path": None,
        "skills_path": ".agents/skills/",
        "hooks_path": None,
        "agent_file": "AGENTS.md",
        "agent_file_fallback": None,
    },
}

# User-level client layouts (relative to ~)
USER_CLIENT_CONFIG: Dict[str, Dict[str, Optional[str]]] = {
    **CLIENT_CONFIG,
    "copilot": {**CLIENT_CONFIG["copilot"], "skills_path": ".copilot/skills/"},
    "codex": {**CLIENT_CONFIG["codex"], "skills_path": ".codex/skills/"},
    "opencode": {**CLIENT_CONFIG["opencode"], "skills_path": ".config/opencode/skills/"},
    "ampcode": {**CLIENT_CONFIG["ampcode"], "skills_path": ".config/amp/skills/"},
}

SUPPORTED_CLIENTS = list(CLIENT_CONFIG)


def get_client_table(user_scope: bool = False) -> Dict[str, Dict[str, Optional[str]]]:
    """Return the client table for the given scope."""
    return USER_CLIENT_CONFIG if user_scope else CLIENT_CONFIG


@dataclass
class ClientGroup:
    """Clients that share one skills directory.

    ``representative`` performs the file operations; every entry in ``clients``
    is credited as an owner of what it writes.
    """

    representative: str
    clients: List[str] = field(default_factory=list)
    skills_path: Optional[str] = None


def group_clients_by_skills_path(
    clients: List[str],
    table: Dict[str, Dict[str, Optional[str]]],
) -> List[ClientGroup]:
    """Partition clients by identical skills path, preserving configured order.

    Clients without a skills path each get a singleton group.
    """
    groups: List[ClientGroup] = []
    by_path: Dict[str, ClientGroup] = {}

    for client in clients:
        if any(client in g.clients for g in groups):
            continue
        skills_path = table[client].get("skills_path")
        if not skills_path:
            groups.append(ClientGroup(representative=client, clients=[client]))
            continue
        group = by_path.get(skills_path)
        if group is None:
            group = ClientGroup(representative=client, clients=[client], skills_path=skills_path)
            by_path[skills_path] = group
            groups.append(group)
        else:
            group.clients.append(client)

    return groups
