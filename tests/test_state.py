import json
import subprocess
from datetime import datetime, timezone

import pytest

from uzi.state import AgentState, StateError, StateManager, data_dir

REPO = "git@example.com:team/repo.git"
SESSION = "agent-repo-abc123-john"


class FakeCommands:
    def __init__(self, responses):
        self.responses = responses
        self.calls = []

    def __call__(self, args, **kwargs):
        self.calls.append(list(args))
        code, out = self.responses.get(tuple(args), (1, ""))
        return subprocess.CompletedProcess(args, code, out, "")


def base_responses():
    return {
        ("git", "config", "--get", "remote.origin.url"): (0, REPO + "\n"),
        ("git", "symbolic-ref", "refs/remotes/origin/HEAD"): (0, "refs/remotes/origin/develop\n"),
        ("git", "branch", "--show-current"): (0, "feature\n"),
        ("tmux", "has-session", "-t", SESSION): (0, ""),
    }


@pytest.fixture
def commands(monkeypatch):
    fake = FakeCommands(base_responses())
    monkeypatch.setattr(subprocess, "run", fake)
    return fake


@pytest.fixture
def manager(tmp_path):
    return StateManager(tmp_path / "data" / "state.json")


def test_data_dir_under_home(monkeypatch, tmp_path):
    monkeypatch.setenv("HOME", str(tmp_path))
    assert data_dir() == tmp_path / ".local" / "share" / "uzi"


def test_default_state_path(monkeypatch, tmp_path):
    monkeypatch.setenv("HOME", str(tmp_path))
    assert StateManager().state_path == data_dir() / "state.json"


def test_save_and_read_back(commands, manager):
    manager.save_state("do it", "john-branch", SESSION, "/tmp/wt", "claude", 3000)
    info = manager.get_worktree_info(SESSION)
    assert info.prompt == "do it"
    assert info.branch_name == "john-branch"
    assert info.worktree_path == "/tmp/wt"
    assert info.model == "claude"
    assert info.port == 3000
    assert info.git_repo == REPO
    assert info.branch_from == "develop"
    assert info.has_worked is False
    assert info.created_at == info.updated_at


def test_branch_from_falls_back_to_main(monkeypatch, manager):
    responses = base_responses()
    del responses[("git", "symbolic-ref", "refs/remotes/origin/HEAD")]
    monkeypatch.setattr(subprocess, "run", FakeCommands(responses))
    manager.save_state("p", "b", SESSION, "/tmp/wt", "claude")
    assert manager.get_worktree_info(SESSION).branch_from == "main"


def test_save_stores_current_branch(commands, manager):
    manager.save_state("p", "b", SESSION, "/tmp/wt", "claude")
    tree = manager.state_path.parent / "worktree" / SESSION / "tree"
    assert tree.read_text() == "feature"


def test_resave_keeps_history(commands, manager):
    manager.save_state("first", "b", SESSION, "/tmp/wt", "claude")
    manager.mark_work_completed(SESSION)
    before = manager.get_worktree_info(SESSION)
    manager.save_state("second", "b", SESSION, "/tmp/wt", "claude")
    after = manager.get_worktree_info(SESSION)
    assert after.prompt == "second"
    assert after.created_at == before.created_at
    assert after.has_worked is True
    assert after.work_count == before.work_count
    assert after.last_worked_at == before.last_worked_at


def test_mark_work_completed_increments(commands, manager):
    manager.save_state("p", "b", SESSION, "/tmp/wt", "claude")
    before = manager.get_worktree_info(SESSION)
    manager.mark_work_completed(SESSION)
    after = manager.get_worktree_info(SESSION)
    assert after.has_worked is True
    assert after.work_count == before.work_count + 1
    assert after.last_worked_at == after.updated_at
    assert after.updated_at >= before.updated_at


def test_mark_as_merged_sets_time(commands, manager):
    manager.save_state("p", "b", SESSION, "/tmp/wt", "claude")
    manager.mark_as_merged(SESSION)
    info = manager.get_worktree_info(SESSION)
    assert info.last_merged_at == info.updated_at


def test_mark_without_state_file(manager):
    with pytest.raises(StateError, match="no state file found"):
        manager.mark_work_completed(SESSION)
    with pytest.raises(StateError, match="no state file found"):
        manager.mark_as_merged(SESSION)


def test_mark_unknown_session(commands, manager):
    manager.save_state("p", "b", SESSION, "/tmp/wt", "claude")
    with pytest.raises(StateError, match="session other not found"):
        manager.mark_work_completed("other")


def test_get_worktree_info_errors(commands, manager):
    with pytest.raises(StateError, match="error reading state file"):
        manager.get_worktree_info(SESSION)
    manager.save_state("p", "b", SESSION, "/tmp/wt", "claude")
    with pytest.raises(StateError, match="no state found for session: other"):
        manager.get_worktree_info("other")


def test_remove_state(commands, manager):
    manager.save_state("p", "b", SESSION, "/tmp/wt", "claude")
    manager.save_state("p", "b", "agent-x-y-z", "/tmp/wt2", "claude")
    manager.remove_state(SESSION)
    assert set(manager.load_states()) == {"agent-x-y-z"}


def test_remove_state_without_file(manager):
    manager.remove_state(SESSION)
    assert not manager.state_path.exists()


def test_active_sessions_filter(commands, manager):
    manager.save_state("p", "b", SESSION, "/tmp/wt", "claude")
    manager.save_state("p", "b", "agent-repo-abc123-emma", "/tmp/wt2", "claude")
    states = manager.load_states()
    states["agent-other"] = AgentState(git_repo="git@example.com:team/other.git")
    manager.state_path.write_text(
        json.dumps({name: state.to_dict() for name, state in states.items()})
    )
    assert manager.get_active_sessions_for_repo() == [SESSION]


def test_active_sessions_without_file(commands, manager):
    assert manager.get_active_sessions_for_repo() == []


def test_active_sessions_without_repo(monkeypatch, commands, manager):
    manager.save_state("p", "b", SESSION, "/tmp/wt", "claude")
    responses = base_responses()
    del responses[("git", "config", "--get", "remote.origin.url")]
    monkeypatch.setattr(subprocess, "run", FakeCommands(responses))
    assert manager.get_active_sessions_for_repo() == []


def test_active_sessions_bad_json(manager):
    manager.state_path.parent.mkdir(parents=True)
    manager.state_path.write_text("{not json")
    with pytest.raises(StateError):
        manager.get_active_sessions_for_repo()


def test_to_dict_omits_empty_optionals():
    data = AgentState(prompt="p").to_dict()
    assert "port" not in data
    assert "last_worked_at" not in data
    assert "last_merged_at" not in data
    assert data["created_at"] == "0001-01-01T00:00:00Z"


def test_round_trip():
    now = datetime.now().astimezone()
    state = AgentState(
        git_repo=REPO,
        branch_name="b",
        prompt="p",
        worktree_path="/tmp/wt",
        port=3001,
        model="claude",
        created_at=now,
        updated_at=now,
        has_worked=True,
        work_count=4,
        last_worked_at=now,
        last_merged_at=now,
    )
    assert AgentState.from_dict(state.to_dict()) == state
    assert AgentState.from_dict(json.loads(json.dumps(state.to_dict()))) == state


def test_from_dict_parses_nanoseconds():
    state = AgentState.from_dict({"created_at": "2024-05-01T10:20:30.123456789Z"})
    assert state.created_at == datetime(2024, 5, 1, 10, 20, 30, 123456, tzinfo=timezone.utc)


def test_from_dict_rejects_bad_values():
    with pytest.raises(StateError):
        AgentState.from_dict({"created_at": "yesterday"})
    with pytest.raises(StateError):
        AgentState.from_dict({"port": "3000"})
    with pytest.raises(StateError):
        AgentState.from_dict(["not", "an", "object"])