import json

import pytest

from uzi.checkpoint import execute_checkpoint, find_session_for_agent


@pytest.fixture
def isolated(tmp_path, monkeypatch):
    home = tmp_path / "home"
    work = tmp_path / "work"
    home.mkdir()
    work.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("GIT_CEILING_DIRECTORIES", str(tmp_path))
    monkeypatch.chdir(work)
    return home


def test_find_session_matches_agent_part():
    sessions = ["agent-proj-abc123-emily", "agent-proj-abc123-john"]
    assert find_session_for_agent(sessions, "john") == "agent-proj-abc123-john"


def test_find_session_agent_with_hyphens():
    sessions = ["agent-proj-abc123-mary-jane"]
    assert find_session_for_agent(sessions, "mary-jane") == "agent-proj-abc123-mary-jane"
    assert find_session_for_agent(sessions, "jane") is None


def test_find_session_requires_agent_prefix_and_four_parts():
    sessions = ["other-proj-abc123-john", "agent-abc-john"]
    assert find_session_for_agent(sessions, "john") is None


def test_find_session_returns_first_match():
    sessions = ["agent-a-1-john", "agent-b-2-john"]
    assert find_session_for_agent(sessions, "john") == "agent-a-1-john"


def test_find_session_empty():
    assert find_session_for_agent([], "john") is None


@pytest.mark.parametrize("args", [[], ["john"]])
def test_requires_two_arguments(args):
    with pytest.raises(ValueError, match="agent name and commit message"):
        execute_checkpoint(args)


def test_no_state_file_means_no_session(isolated):
    with pytest.raises(RuntimeError, match="no active session found for agent: john"):
        execute_checkpoint(["john", "message"])


def test_state_outside_repo_is_not_active(isolated):
    state_dir = isolated / ".local" / "share" / "uzi"
    state_dir.mkdir(parents=True)
    state_file = state_dir / "state.json"
    content = json.dumps(
        {"agent-proj-abc123-john": {"git_repo": "origin", "worktree_path": "/tmp/w"}}
    )
    state_file.write_text(content)

    with pytest.raises(RuntimeError, match="no active session found for agent: john"):
        execute_checkpoint(["john", "message"])
    assert state_file.read_text() == content