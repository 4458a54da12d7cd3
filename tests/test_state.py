"""Tests for sync state persistence."""

import json

from agent_workspace.state import (
    FileSyncStateStore,
    MemorySyncStateStore,
    SyncState,
    build_state,
    get_previously_synced_files,
    parse_state,
)


class TestBuildState:
    def test_sorted_and_deduplicated(self):
        state = build_state({"claude": ["b", "a", "b"]})
        assert state.files == {"claude": ["a", "b"]}
        assert state.version == 1

    def test_serialization_is_stable(self):
        one = build_state({"codex": ["x/"], "claude": ["b", "a"]})
        two = build_state({"claude": ["a", "b"], "codex": ["x/"]})
        assert one.dumps() == two.dumps()


class TestParseState:
    def test_valid(self):
        state = parse_state({"version": 1, "files": {"claude": ["CLAUDE.md"]}})
        assert state.files == {"claude": ["CLAUDE.md"]}

    def test_wrong_version(self):
        assert parse_state({"version": 2, "files": {}}) is None

    def test_wrong_shape(self):
        assert parse_state({"version": 1, "files": {"claude": "CLAUDE.md"}}) is None
        assert parse_state({"version": 1, "files": {"claude": [1]}}) is None
        assert parse_state([]) is None


class TestFileSyncStateStore:
    def test_missing_file_reads_as_none(self, tmp_path):
        assert FileSyncStateStore(tmp_path / "sync-state.json").load() is None

    def test_corrupt_file_reads_as_none(self, tmp_path):
        path = tmp_path / "sync-state.json"
        path.write_text("{not json")
        assert FileSyncStateStore(path).load() is None

    def test_non_utf8_file_reads_as_none_and_is_replaced(self, tmp_path):
        path = tmp_path / "sync-state.json"
        path.write_bytes(b"\xff\xfe\x00garbage")
        store = FileSyncStateStore(path)

        assert store.load() is None
        assert store.save(build_state({"claude": ["CLAUDE.md"]})) is True
        assert store.load().files == {"claude": ["CLAUDE.md"]}

    def test_round_trip(self, tmp_path):
        store = FileSyncStateStore(tmp_path / ".agent" / "sync-state.json")
        state = build_state({"claude": [".claude/skills/setup/", "CLAUDE.md"]})

        assert store.save(state) is True
        loaded = store.load()
        assert loaded.files == state.files
        assert json.loads(store.path.read_text())["version"] == 1

    def test_unchanged_state_not_rewritten(self, tmp_path):
        store = FileSyncStateStore(tmp_path / "sync-state.json")
        state = build_state({"claude": ["CLAUDE.md"]})
        store.save(state)
        mtime = store.path.stat().st_mtime_ns

        assert store.save(build_state({"claude": ["CLAUDE.md"]})) is False
        assert store.path.stat().st_mtime_ns == mtime


class TestMemoryStore:
    def test_counts_real_saves(self):
        store = MemorySyncStateStore()
        store.save(build_state({"claude": ["a"]}))
        store.save(build_state({"claude": ["a"]}))
        assert store.saves == 1


def test_previously_synced_files():
    state = SyncState(files={"claude": ["a", "b"]})
    assert get_previously_synced_files(state, "claude") == ["a", "b"]
    assert get_previously_synced_files(state, "codex") == []
    assert get_previously_synced_files(None, "claude") == []
