"""Exception types shared across agent-workspace."""

from typing import List, Optional


class AgentWorkspaceError(Exception):
    """Base class for all agent-workspace errors."""


class ConfigError(AgentWorkspaceError):
    """The workspace config is missing or invalid.

    ``problems`` holds one line per issue so callers can print them all.
    """

    def __init__(self, message: str, problems: Optional[List[str]] = None):
        self.problems = problems or []
        if self.problems:
            message = message + "\n" + "\n".join(f"  - {p}" for p in self.problems)
        super().__init__(message)


class MarketplaceError(AgentWorkspaceError):
    """A marketplace could not be registered or read."""


# Remote fetch failure kinds
TIMEOUT = "timeout"
AUTH = "auth"
NOT_FOUND = "not_found"
OTHER = "other"


class GitCloneError(AgentWorkspaceError):
    """A git clone failed. ``kind`` is one of timeout, auth, not_found, other."""

    def __init__(self, message: str, url: str, kind: str = OTHER):
        super().__init__(message)
        self.url = url
        self.kind = kind

    @property
    def is_timeout(self) -> bool:
        return self.kind == TIMEOUT

    @property
    def is_auth_error(self) -> bool:
        return self.kind == AUTH
