"""Thin async wrapper around the ``git`` executable."""

import asyncio
import logging
import os
import shutil
from pathlib import Path
from typing import List, Optional, Tuple

from agent_workspace.config import get_git_timeout
from agent_workspace.errors import AUTH, NOT_FOUND, OTHER, TIMEOUT, GitCloneError

logger = logging.getLogger(__name__)


# =============================================================================
# GitHub Auth Helpers
# =============================================================================

def get_github_token(cli_token: Optional[str] = None) -> Optional[str]:
    """Return GitHub token from CLI arg, GH_TOKEN, or GITHUB_TOKEN env var."""
    token = (cli_token or os.getenv("GH_TOKEN") or os.getenv("GITHUB_TOKEN") or "").strip()
    return token if token else None


def get_authenticated_git_url(url: str, token: Optional[str] = None) -> str:
    """Embed a GitHub token in an HTTPS clone URL if one is available."""
    token = get_github_token(token)
    if not token:
        return url
    if url.startswith("https://github.com/"):
        return url.replace("https://github.com/", f"https://{token}@github.com/")
    return url


def redact_url(text: str, token: Optional[str] = None) -> str:
    """Strip an embedded token from git output before it reaches a user."""
    token = get_github_token(token)
    if token:
        text = text.replace(f"{token}@", "")
    return text


# =============================================================================
# Subprocess
# =============================================================================

async def _run_git(args: List[str], timeout: float, cwd: Optional[Path] = None) -> Tuple[int, str]:
    """Run git and return (returncode, stderr). Raises asyncio.TimeoutError."""
    env = dict(os.environ)
    # Never block on a credential prompt
    env["GIT_TERMINAL_PROMPT"] = "0"
    proc = await asyncio.create_subprocess_exec(
        "git", *args,
        cwd=str(cwd) if cwd else None,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        env=env,
    )
    try:
        _, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
        raise
    return proc.returncode, stderr.decode("utf-8", errors="replace")


def classify_git_error(stderr: str) -> str:
    """Map git stderr text onto a failure kind."""
    if "timed out" in stderr or "Operation timed out" in stderr:
        return TIMEOUT
    if (
        "Authentication failed" in stderr
        or "could not read Username" in stderr
        or "Permission denied" in stderr
        or "terminal prompts disabled" in stderr
    ):
        return AUTH
    if "Repository not found" in stderr or "not found" in stderr.lower() or "404" in stderr:
        return NOT_FOUND
    return OTHER


def _remove_partial_clone(dest: Path) -> None:
    if not dest.exists() and not dest.is_symlink():
        return
    try:
        if dest.is_symlink() or dest.is_file():
            dest.unlink()
        else:
            shutil.rmtree(dest)
    except OSError as e:
        logger.warning("Could not remove partial clone %s: %s", dest, e)


async def clone_to(url: str, dest: Path, branch: Optional[str] = None, timeout: Optional[float] = None) -> None:
    """Shallow-clone ``url`` into ``dest``.

    Raises GitCloneError with ``kind`` set; a failed clone never leaves
    ``dest`` behind.
    """
    dest = Path(dest)
    timeout = timeout if timeout is not None else get_git_timeout()
    args = ["clone", "--depth", "1"]
    if branch:
        args += ["--branch", branch]
    args += [get_authenticated_git_url(url), str(dest)]

    logger.info("Cloning %s", url)
    try:
        returncode, stderr = await _run_git(args, timeout)
    except asyncio.TimeoutError:
        _remove_partial_clone(dest)
        raise GitCloneError(f"Clone of {url} timed out after {timeout:g}s", url, TIMEOUT)
    except OSError as e:
        _remove_partial_clone(dest)
        raise GitCloneError(f"Could not run git: {e}", url, OTHER) from e

    if returncode != 0:
        _remove_partial_clone(dest)
        stderr = redact_url(stderr.strip())
        raise GitCloneError(stderr or f"git clone exited with {returncode}", url, classify_git_error(stderr))


async def pull(repo_path: Path, timeout: Optional[float] = None) -> None:
    """Fast-forward an existing clone. Raises GitCloneError on failure."""
    timeout = timeout if timeout is not None else get_git_timeout()
    try:
        returncode, stderr = await _run_git(["pull", "--ff-only"], timeout, cwd=Path(repo_path))
    except asyncio.TimeoutError:
        raise GitCloneError(f"Pull in {repo_path} timed out", str(repo_path), TIMEOUT)
    except OSError as e:
        raise GitCloneError(f"Could not run git: {e}", str(repo_path), OTHER) from e
    if returncode != 0:
        stderr = redact_url(stderr.strip())
        raise GitCloneError(stderr or f"git pull exited with {returncode}", str(repo_path), classify_git_error(stderr))
