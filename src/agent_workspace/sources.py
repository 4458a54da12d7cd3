"""Plugin reference parsing.

A plugin reference from workspace.yaml is one of three shapes, parsed once into a
tagged source object so later stages never re-inspect the raw string:

- ``LocalPath``        ``./plugins/review``, ``/abs/path``
- ``RemoteUrl``        ``https://github.com/o/r``, ``github.com/o/r``, ``gh:o/r``,
                       optionally ``.../tree/<branch>/<subpath>``
- ``MarketplaceSpec``  ``plugin@marketplace``, ``plugin@owner/repo[/subpath]``
"""

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

from agent_workspace.config import get_plugin_cache_dir


GITHUB_URL_PATTERNS = [
    re.compile(r"^https?://github\.com/"),
    re.compile(r"^https?://www\.github\.com/"),
    re.compile(r"^github\.com/"),
    re.compile(r"^gh:"),
]

_GITHUB_PARTS = re.compile(
    r"^https?://(?:www\.)?github\.com/([^/]+)/([^/]+?)(?:\.git)?(?:/(.*))?$"
)


@dataclass(frozen=True)
class GitHubRepo:
    owner: str
    repo: str
    branch: Optional[str] = None
    subpath: Optional[str] = None

    @property
    def clone_url(self) -> str:
        return f"https://github.com/{self.owner}/{self.repo}.git"

    @property
    def slug(self) -> str:
        return f"{self.owner}/{self.repo}"


@dataclass(frozen=True)
class LocalPath:
    reference: str
    path: Path


@dataclass(frozen=True)
class RemoteUrl:
    reference: str
    repo: GitHubRepo


@dataclass(frozen=True)
class MarketplaceSpec:
    reference: str
    plugin: str
    marketplace: str
    owner: Optional[str] = None
    repo: Optional[str] = None
    subpath: Optional[str] = None

    @property
    def source_location(self) -> Optional[str]:
        if self.owner and self.repo:
            return f"{self.owner}/{self.repo}"
        return None


PluginSource = Union[LocalPath, RemoteUrl, MarketplaceSpec]


def is_github_url(source: str) -> bool:
    return any(p.match(source) for p in GITHUB_URL_PATTERNS)


def parse_github_url(url: str) -> Optional[GitHubRepo]:
    """Extract owner, repo and optional branch/subpath from a GitHub URL."""
    normalized = url.strip()
    if normalized.startswith("gh:"):
        normalized = "https://github.com/" + normalized[3:]
    elif normalized.startswith("github.com/"):
        normalized = "https://" + normalized

    match = _GITHUB_PARTS.match(normalized.rstrip("/"))
    if not match:
        return None
    owner, repo, rest = match.group(1), match.group(2), match.group(3)
    if not owner or not repo:
        return None

    branch = None
    subpath = None
    if rest:
        parts = [p for p in rest.split("/") if p]
        # https://github.com/o/r/tree/<branch>/<subpath>
        if len(parts) >= 2 and parts[0] == "tree":
            branch = parts[1]
            if len(parts) > 2:
                subpath = "/".join(parts[2:])

    return GitHubRepo(owner=owner, repo=repo, branch=branch, subpath=subpath)


def is_plugin_spec(reference: str) -> bool:
    """True for ``plugin@marketplace`` shaped references."""
    if is_github_url(reference) or "://" in reference or reference.startswith((".", "/", "~")):
        return False
    at = reference.rfind("@")
    return 0 < at < len(reference) - 1


def parse_plugin_spec(reference: str) -> Optional[MarketplaceSpec]:
    if not is_plugin_spec(reference):
        return None
    at = reference.rfind("@")
    plugin, marketplace_part = reference[:at], reference[at + 1:]

    if "/" in marketplace_part:
        parts = marketplace_part.split("/")
        if len(parts) >= 2 and parts[0] and parts[1]:
            subpath = "/".join(parts[2:]) or None
            # Registered under the repo name
            return MarketplaceSpec(
                reference=reference,
                plugin=plugin,
                marketplace=parts[1],
                owner=parts[0],
                repo=parts[1],
                subpath=subpath,
            )
        return None

    return MarketplaceSpec(reference=reference, plugin=plugin, marketplace=marketplace_part)


def parse_plugin_source(reference: str, base_dir: Path) -> Optional[PluginSource]:
    """Classify a reference. Returns None for malformed GitHub URLs and specs."""
    reference = reference.strip()
    if is_github_url(reference):
        repo = parse_github_url(reference)
        return RemoteUrl(reference=reference, repo=repo) if repo else None
    if is_plugin_spec(reference):
        return parse_plugin_spec(reference)

    path = Path(reference).expanduser()
    if not path.is_absolute():
        path = Path(base_dir) / path
    return LocalPath(reference=reference, path=path)


def get_plugin_cache_path(owner: str, repo: str, branch: Optional[str] = None) -> Path:
    """Cache directory for a remote plugin, keyed by owner, repo and branch."""
    name = f"{owner}-{repo}"
    if branch:
        # Branch names may contain slashes
        name += "@" + branch.replace("/", "_")
    return get_plugin_cache_dir() / name
