"""Tests for the client path table and skills-path grouping."""

from agent_workspace.clients import (
    CANONICAL_SKILLS_PATH,
    CLIENT_CONFIG,
    SUPPORTED_CLIENTS,
    USER_CLIENT_CONFIG,
    get_client_table,
    group_clients_by_skills_path,
)


class TestClientTable:
    def test_every_client_has_an_agent_file(self):
        for key, info in CLIENT_CONFIG.items():
            assert info["agent_file"], key

    def test_directory_paths_end_with_slash(self):
        for info in list(CLIENT_CONFIG.values()) + list(USER_CLIENT_CONFIG.values()):
            for path_key in ("commands_path", "skills_path", "hooks_path"):
                if info[path_key]:
                    assert info[path_key].endswith("/")

    def test_user_scope_overrides_skills_paths(self):
        assert get_client_table(user_scope=True)["codex"]["skills_path"] == ".codex/skills/"
        assert get_client_table(user_scope=False)["codex"]["skills_path"] == CANONICAL_SKILLS_PATH
        assert set(USER_CLIENT_CONFIG) == set(SUPPORTED_CLIENTS)


class TestGroupClients:
    def test_shared_skills_path_forms_one_group(self):
        groups = group_clients_by_skills_path(["codex", "claude", "opencode", "ampcode"], CLIENT_CONFIG)

        assert [g.representative for g in groups] == ["codex", "claude"]
        assert groups[0].clients == ["codex", "opencode", "ampcode"]
        assert groups[0].skills_path == CANONICAL_SKILLS_PATH
        assert groups[1].clients == ["claude"]

    def test_representative_is_first_configured(self):
        groups = group_clients_by_skills_path(["opencode", "codex"], CLIENT_CONFIG)
        assert len(groups) == 1
        assert groups[0].representative == "opencode"

    def test_clients_without_skills_path_are_singletons(self):
        table = {
            "a": {"skills_path": None},
            "b": {"skills_path": None},
            "c": {"skills_path": "x/"},
        }
        groups = group_clients_by_skills_path(["a", "b", "c"], table)
        assert [g.clients for g in groups] == [["a"], ["b"], ["c"]]
        assert groups[0].skills_path is None

    def test_duplicate_client_counted_once(self):
        groups = group_clients_by_skills_path(["claude", "claude"], CLIENT_CONFIG)
        assert len(groups) == 1
        assert groups[0].clients == ["claude"]
