"""End-to-end tests for a sync pass."""

import json
import os
import shutil

import pytest

from agent_workspace.state import MemorySyncStateStore, build_state
from agent_workspace.sync import SyncOptions, dry_run_sync, sync_workspace


async def run(workspace, state_store, resolver, **options):
    return await sync_workspace(workspace, SyncOptions(**options), state_store=state_store, resolver=resolver)


class TestFirstSync:
    @pytest.mark.asyncio
    async def test_writes_outputs_and_records_them(self, workspace, make_plugin, write_config, state_store, resolver):
        plugin = make_plugin("alpha", skills=["setup"], commands=["review.md"], agents_md="Be nice.")
        write_config([plugin], ["claude"], sync_mode="copy")

        result = await run(workspace, state_store, resolver)

        assert result.success
        assert result.copied == 2
        assert result.generated == 1
        assert (workspace / ".claude" / "skills" / "setup" / "SKILL.md").is_file()
        assert (workspace / ".claude" / "commands" / "review.md").is_file()
        assert "Be nice." in (workspace / "CLAUDE.md").read_text()
        assert state_store.state.files == {
            "claude": [".claude/commands/review.md", ".claude/skills/setup/", "CLAUDE.md"],
        }

    @pytest.mark.asyncio
    async def test_state_file_written_by_default(self, workspace, make_plugin, write_config, resolver):
        plugin = make_plugin("alpha", commands=["review.md"])
        write_config([plugin], ["claude"])

        await sync_workspace(workspace, resolver=resolver)

        data = json.loads((workspace / ".agent" / "sync-state.json").read_text())
        assert data == {"version": 1, "files": {"claude": [".claude/commands/review.md"]}}

    @pytest.mark.asyncio
    async def test_missing_config(self, workspace, state_store, resolver):
        result = await run(workspace, state_store, resolver)
        assert not result.success
        assert "not found" in result.error
        assert state_store.saves == 0


class TestIdempotence:
    @pytest.mark.asyncio
    async def test_second_run_changes_nothing(self, workspace, make_plugin, write_config, state_store, resolver):
        plugin = make_plugin("alpha", skills=["setup"], commands=["review.md"], agents_md="rules")
        write_config([plugin], ["claude", "codex"], sync_mode="copy")

        await run(workspace, state_store, resolver)
        second = await run(workspace, state_store, resolver)

        assert second.success
        assert second.copied == 0
        assert second.generated == 0
        assert second.purged == []
        assert state_store.saves == 1


class TestNonDestructive:
    @pytest.mark.asyncio
    async def test_user_files_survive(self, workspace, make_plugin, write_config, state_store, resolver):
        plugin = make_plugin("alpha", skills=["setup"], agents_md="rules")
        write_config([plugin], ["claude"], sync_mode="copy")
        (workspace / "CLAUDE.md").write_text("mine")
        mine = workspace / ".claude" / "skills" / "handmade"
        mine.mkdir(parents=True)
        (mine / "SKILL.md").write_text("mine")

        await run(workspace, state_store, resolver)
        shutil.rmtree(plugin / "skills" / "setup")
        await run(workspace, state_store, resolver)

        assert (workspace / "CLAUDE.md").read_text() == "mine"
        assert (mine / "SKILL.md").read_text() == "mine"
        assert "CLAUDE.md" not in state_store.state.files.get("claude", [])

    @pytest.mark.asyncio
    async def test_orphaned_skill_removed(self, workspace, make_plugin, write_config, state_store, resolver):
        plugin = make_plugin("alpha", skills=["setup", "old"])
        write_config([plugin], ["claude"], sync_mode="copy")
        await run(workspace, state_store, resolver)

        shutil.rmtree(plugin / "skills" / "old")
        result = await run(workspace, state_store, resolver)

        assert result.purged == [".claude/skills/old/"]
        assert not (workspace / ".claude" / "skills" / "old").exists()
        assert (workspace / ".claude" / "skills" / "setup").is_dir()

    @pytest.mark.asyncio
    async def test_removed_plugin_outputs_purged(self, workspace, make_plugin, write_config, state_store, resolver):
        alpha = make_plugin("alpha", commands=["a.md"])
        beta = make_plugin("beta", commands=["b.md"])
        write_config([alpha, beta], ["claude"])
        await run(workspace, state_store, resolver)

        write_config([alpha], ["claude"])
        await run(workspace, state_store, resolver)

        assert (workspace / ".claude" / "commands" / "a.md").exists()
        assert not (workspace / ".claude" / "commands" / "b.md").exists()

    @pytest.mark.asyncio
    @pytest.mark.skipif(os.name == "nt", reason="symlinks need privileges on Windows")
    async def test_orphan_purged_through_symlinked_client_dir(
        self, workspace, make_plugin, write_config, state_store, resolver, tmp_path
    ):
        dotfiles = tmp_path / "dotfiles" / "claude"
        dotfiles.mkdir(parents=True)
        (workspace / ".claude").symlink_to(dotfiles, target_is_directory=True)
        plugin = make_plugin("alpha", commands=["a.md", "b.md"])
        write_config([plugin], ["claude"])
        await run(workspace, state_store, resolver)

        (plugin / "commands" / "b.md").unlink()
        result = await run(workspace, state_store, resolver)

        assert result.success
        assert result.purged == [".claude/commands/b.md"]
        assert not (dotfiles / "commands" / "b.md").exists()
        assert state_store.state.files == {"claude": [".claude/commands/a.md"]}

    @pytest.mark.asyncio
    async def test_removed_client_outputs_purged(self, workspace, make_plugin, write_config, state_store, resolver):
        plugin = make_plugin("alpha", agents_md="rules")
        write_config([plugin], ["claude", "gemini"])
        await run(workspace, state_store, resolver)
        assert (workspace / "GEMINI.md").exists()

        write_config([plugin], ["claude"])
        await run(workspace, state_store, resolver)

        assert not (workspace / "GEMINI.md").exists()
        assert set(state_store.state.files) == {"claude"}


class TestFailures:
    @pytest.mark.asyncio
    async def test_partial_failure_reported_once(self, workspace, make_plugin, write_config, state_store, resolver):
        plugin = make_plugin("alpha", commands=["review.md"])
        write_config([plugin, "gh:acme/missing"], ["claude"])

        result = await run(workspace, state_store, resolver)

        assert result.success
        assert result.copied == 1
        assert [w for w in result.warnings if "gh:acme/missing" in w] == [
            "gh:acme/missing: Could not fetch gh:acme/missing",
        ]
        failed = [p for p in result.plugin_results if not p.success]
        assert [p.plugin for p in failed] == ["gh:acme/missing"]

    @pytest.mark.asyncio
    async def test_undecodable_agents_md_fails_only_its_plugin(
        self, workspace, make_plugin, write_config, state_store, resolver
    ):
        good = make_plugin("alpha", commands=["review.md"], agents_md="Alpha rules")
        bad = make_plugin("beta", commands=["lint.md"])
        (bad / "AGENTS.md").write_bytes(b"caf\xe9 rules\n")
        write_config([good, bad], ["codex", "claude"])

        result = await run(workspace, state_store, resolver)

        assert not result.success
        assert (workspace / ".claude" / "commands" / "review.md").is_file()
        assert (workspace / ".claude" / "commands" / "lint.md").is_file()
        assert "Alpha rules" in (workspace / "AGENTS.md").read_text()
        failed = [p for p in result.plugin_results if not p.success]
        assert [p.plugin for p in failed] == [str(bad)]
        assert any("Could not read plugin files" in w for w in result.warnings)
        assert "AGENTS.md" in state_store.state.files["codex"]

    @pytest.mark.asyncio
    async def test_all_plugins_failing_changes_nothing(
        self, workspace, make_plugin, write_config, state_store, resolver
    ):
        plugin = make_plugin("alpha", commands=["review.md"])
        write_config([plugin], ["claude"])
        await run(workspace, state_store, resolver)
        before = state_store.state

        shutil.rmtree(plugin)
        result = await run(workspace, state_store, resolver)

        assert not result.success
        assert "nothing was changed" in result.error
        assert (workspace / ".claude" / "commands" / "review.md").exists()
        assert state_store.state is before

    @pytest.mark.asyncio
    async def test_empty_plugin_list_purges_everything(
        self, workspace, make_plugin, write_config, state_store, resolver
    ):
        plugin = make_plugin("alpha", commands=["review.md"])
        write_config([plugin], ["claude"])
        await run(workspace, state_store, resolver)

        write_config([], ["claude"])
        result = await run(workspace, state_store, resolver)

        assert result.success
        assert not (workspace / ".claude").exists()
        assert state_store.state.files == {}


class TestClientFilter:
    @pytest.mark.asyncio
    async def test_other_clients_untouched(self, workspace, make_plugin, write_config, state_store, resolver):
        plugin = make_plugin("alpha", commands=["review.md"], agents_md="rules")
        write_config([plugin], ["claude", "codex"])
        await run(workspace, state_store, resolver)

        (plugin / "AGENTS.md").write_text("new rules")
        result = await run(workspace, state_store, resolver, clients=["claude"])

        assert result.success
        assert "new rules" in (workspace / "CLAUDE.md").read_text()
        assert "new rules" not in (workspace / "AGENTS.md").read_text()
        assert state_store.state.files["codex"] == ["AGENTS.md"]

    @pytest.mark.asyncio
    async def test_unknown_client_rejected(self, workspace, make_plugin, write_config, state_store, resolver):
        write_config([make_plugin("alpha")], ["claude"])
        result = await run(workspace, state_store, resolver, clients=["codex"])
        assert not result.success
        assert "codex" in result.error


class TestDryRun:
    @pytest.mark.asyncio
    async def test_matches_real_run(self, workspace, make_plugin, write_config, state_store, resolver):
        plugin = make_plugin("alpha", skills=["setup", "old"], commands=["review.md"])
        write_config([plugin], ["claude"], sync_mode="copy")
        await run(workspace, state_store, resolver)
        shutil.rmtree(plugin / "skills" / "old")
        (plugin / "commands" / "new.md").write_text("# new\n")
        saves = state_store.saves

        preview = await dry_run_sync(workspace, state_store=state_store, resolver=resolver)

        assert preview.dry_run
        assert (workspace / ".claude" / "skills" / "old").exists()
        assert not (workspace / ".claude" / "commands" / "new.md").exists()
        assert state_store.saves == saves

        real = await run(workspace, state_store, resolver)
        assert real.purged == preview.purged == [".claude/skills/old/"]
        planned = {r.destination for r in preview.all_results() if r.reason == "dry run"}
        written = {r.destination for r in real.all_results() if r.action == "copied"}
        assert planned == written


class TestNaming:
    @pytest.mark.asyncio
    async def test_shared_folder_names_are_prefixed(self, workspace, make_plugin, write_config, state_store, resolver):
        alpha = make_plugin("alpha", skills=["setup", "lint"])
        beta = make_plugin("beta", skills=["setup"])
        write_config([alpha, beta], ["claude"], sync_mode="copy")

        await run(workspace, state_store, resolver)

        skills = sorted(p.name for p in (workspace / ".claude" / "skills").iterdir())
        assert skills == ["alpha-setup", "beta-setup", "lint"]

    @pytest.mark.asyncio
    async def test_disabled_skill_skipped(self, workspace, make_plugin, write_config, state_store, resolver):
        plugin = make_plugin("alpha", skills=["setup", "lint"])
        write_config([plugin], ["claude"], sync_mode="copy", disabled=["alpha:lint"])

        await run(workspace, state_store, resolver, disabled_skills=["alpha:setup"])

        assert not (workspace / ".claude" / "skills").exists()


@pytest.mark.skipif(os.name == "nt", reason="symlinks need privileges on Windows")
class TestSyncModes:
    @pytest.mark.asyncio
    async def test_symlink_mode(self, workspace, make_plugin, write_config, state_store, resolver):
        plugin = make_plugin("alpha", skills=["setup"])
        write_config([plugin], ["claude", "codex"], sync_mode="symlink")

        await run(workspace, state_store, resolver)

        assert (workspace / ".agents" / "skills" / "setup" / "SKILL.md").is_file()
        assert (workspace / ".claude" / "skills" / "setup").is_symlink()
        assert state_store.state.files == {
            "claude": [".agents/skills/setup/", ".claude/skills/setup"],
            "codex": [".agents/skills/setup/"],
        }

    @pytest.mark.asyncio
    async def test_switch_to_copy_replaces_links(self, workspace, make_plugin, write_config, state_store, resolver):
        plugin = make_plugin("alpha", skills=["setup"])
        write_config([plugin], ["claude"], sync_mode="symlink")
        await run(workspace, state_store, resolver)

        write_config([plugin], ["claude"], sync_mode="copy")
        result = await run(workspace, state_store, resolver)

        dest = workspace / ".claude" / "skills" / "setup"
        assert result.success
        assert dest.is_dir() and not dest.is_symlink()
        assert not (workspace / ".agents").exists()


@pytest.mark.asyncio
async def test_state_from_previous_tool_is_respected(workspace, make_plugin, write_config, resolver):
    stale = workspace / ".claude" / "commands" / "legacy.md"
    stale.parent.mkdir(parents=True)
    stale.write_text("old")
    store = MemorySyncStateStore(build_state({"claude": [".claude/commands/legacy.md"]}))
    write_config([make_plugin("alpha", commands=["review.md"])], ["claude"])

    result = await sync_workspace(workspace, state_store=store, resolver=resolver)

    assert result.purged == [".claude/commands/legacy.md"]
    assert not stale.exists()
