"""Tests for git helpers and remote plugin fetching."""

import asyncio

import pytest

from agent_workspace import git, plugins
from agent_workspace.errors import AUTH, NOT_FOUND, OTHER, TIMEOUT, GitCloneError
from agent_workspace.sources import get_plugin_cache_path


class TestAuth:
    def test_token_embedded(self, monkeypatch):
        monkeypatch.setenv("GH_TOKEN", "secret")
        assert git.get_authenticated_git_url("https://github.com/acme/tools.git") == (
            "https://secret@github.com/acme/tools.git"
        )

    def test_no_token(self):
        assert git.get_authenticated_git_url("https://github.com/acme/tools.git") == (
            "https://github.com/acme/tools.git"
        )

    def test_redact(self, monkeypatch):
        monkeypatch.setenv("GITHUB_TOKEN", "secret")
        assert git.redact_url("fatal: https://secret@github.com/x") == "fatal: https://github.com/x"


@pytest.mark.parametrize("stderr,kind", [
    ("fatal: Authentication failed for 'https://github.com/a/b/'", AUTH),
    ("fatal: could not read Username for 'https://github.com': terminal prompts disabled", AUTH),
    ("remote: Repository not found.", NOT_FOUND),
    ("fatal: unable to access: Operation timed out", TIMEOUT),
    ("fatal: early EOF", OTHER),
])
def test_classify_git_error(stderr, kind):
    assert git.classify_git_error(stderr) == kind


class TestCloneTo:
    @pytest.mark.asyncio
    async def test_failed_clone_removes_partial_directory(self, tmp_path, monkeypatch):
        dest = tmp_path / "clone"

        async def fake_run_git(args, timeout, cwd=None):
            dest.mkdir()
            (dest / ".git").mkdir()
            return 128, "fatal: Authentication failed for 'https://github.com/a/b/'"

        monkeypatch.setattr(git, "_run_git", fake_run_git)

        with pytest.raises(GitCloneError) as exc:
            await git.clone_to("https://github.com/a/b.git", dest)

        assert exc.value.is_auth_error
        assert not dest.exists()

    @pytest.mark.asyncio
    async def test_timeout(self, tmp_path, monkeypatch):
        dest = tmp_path / "clone"

        async def fake_run_git(args, timeout, cwd=None):
            dest.mkdir()
            raise asyncio.TimeoutError()

        monkeypatch.setattr(git, "_run_git", fake_run_git)

        with pytest.raises(GitCloneError) as exc:
            await git.clone_to("https://github.com/a/b.git", dest, timeout=1)

        assert exc.value.is_timeout
        assert not dest.exists()

    @pytest.mark.asyncio
    async def test_branch_passed_through(self, tmp_path, monkeypatch):
        seen = []

        async def fake_run_git(args, timeout, cwd=None):
            seen.append(args)
            return 0, ""

        monkeypatch.setattr(git, "_run_git", fake_run_git)
        await git.clone_to("https://github.com/a/b.git", tmp_path / "clone", branch="dev")

        assert seen[0][:5] == ["clone", "--depth", "1", "--branch", "dev"]


class TestFetchRemote:
    @pytest.mark.asyncio
    async def test_offline_without_cache_fails_fast(self, monkeypatch):
        async def boom(*args, **kwargs):
            raise AssertionError("git must not run offline")

        monkeypatch.setattr(git, "clone_to", boom)
        result = await plugins.fetch_remote("gh:acme/tools", offline=True)

        assert not result.success
        assert "not cached" in result.error

    @pytest.mark.asyncio
    async def test_offline_uses_cache(self):
        cache = get_plugin_cache_path("acme", "tools")
        cache.mkdir(parents=True)

        result = await plugins.fetch_remote("gh:acme/tools", offline=True)
        assert result.success
        assert result.action == "cached"
        assert result.cache_path == cache

    @pytest.mark.asyncio
    async def test_failed_pull_falls_back_to_cache(self, monkeypatch):
        get_plugin_cache_path("acme", "tools").mkdir(parents=True)

        async def failing_pull(repo_path, timeout=None):
            raise GitCloneError("network down", str(repo_path), OTHER)

        monkeypatch.setattr(git, "pull", failing_pull)
        result = await plugins.fetch_remote("https://github.com/acme/tools")

        assert result.success
        assert result.action == "cached"

    @pytest.mark.asyncio
    async def test_clone_auth_failure_message(self, monkeypatch):
        async def failing_clone(url, dest, branch=None, timeout=None):
            raise GitCloneError("denied", url, AUTH)

        monkeypatch.setattr(git, "clone_to", failing_clone)
        result = await plugins.fetch_remote("gh:acme/private")

        assert not result.success
        assert result.kind == AUTH
        assert "GH_TOKEN" in result.error

    @pytest.mark.asyncio
    async def test_concurrent_fetches_share_one_clone(self, monkeypatch):
        calls = []

        async def slow_clone(url, dest, branch=None, timeout=None):
            calls.append(url)
            await asyncio.sleep(0.05)
            dest.mkdir(parents=True)

        monkeypatch.setattr(git, "clone_to", slow_clone)
        first, second = await asyncio.gather(
            plugins.fetch_remote("https://github.com/acme/tools"),
            plugins.fetch_remote("gh:acme/tools"),
        )

        assert len(calls) == 1
        assert first.success and second.success
        assert first.cache_path == second.cache_path
        assert plugins._inflight == {}

    @pytest.mark.asyncio
    async def test_invalid_url(self):
        result = await plugins.fetch_remote("https://gitlab.com/acme/tools")
        assert not result.success
        assert "Invalid GitHub URL" in result.error
