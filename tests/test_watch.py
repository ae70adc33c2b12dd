import subprocess
import threading
import time
from unittest import mock

import pytest

from uzi.watch import AgentWatcher, detect_prompt


class FakeManager:
    def __init__(self, sessions=()):
        self.sessions = list(sessions)
        self.calls = 0

    def get_active_sessions_for_repo(self):
        self.calls += 1
        return list(self.sessions)


class BrokenManager:
    def get_active_sessions_for_repo(self):
        raise OSError("state unreadable")


class Pane:
    def __init__(self, content):
        self.content = content
        self.calls = []
        self.lock = threading.Lock()

    def __call__(self, cmd, *args, **kwargs):
        with self.lock:
            self.calls.append(list(cmd))
        if cmd[:2] == ["tmux", "capture-pane"]:
            return subprocess.CompletedProcess(cmd, 0, self.content, "")
        return subprocess.CompletedProcess(cmd, 0, b"", b"")

    def seen(self, cmd):
        with self.lock:
            return cmd in self.calls


def wait_for(condition, timeout=3.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if condition():
            return True
        time.sleep(0.02)
    return condition()


@pytest.mark.parametrize(
    "content, expected",
    [
        ("Do you trust the files in this folder?", True),
        ("Press Enter to continue", True),
        ("Continue? (Y/n)", True),
        ("Proceed? (y/N)", True),
        ("Allow command ls", True),
        ("Allow command ls\nThinking", False),
        ("Working quietly", False),
    ],
)
def test_detect_prompt(content, expected):
    assert detect_prompt(content) is expected


def test_has_updated_tracks_changes():
    pane = Pane("first screen")
    watcher = AgentWatcher(FakeManager())
    with mock.patch("uzi.watch.subprocess.run", side_effect=pane):
        assert watcher.has_updated("s1") == (False, False)
        assert watcher.has_updated("s1") == (False, False)
        assert watcher.watched_sessions["s1"].no_update_count == 1
        pane.content = "Do you trust the files in this folder?"
        assert watcher.has_updated("s1") == (True, True)
    monitor = watcher.watched_sessions["s1"]
    assert monitor.update_count == 1
    assert monitor.no_update_count == 0


def test_has_updated_raises_when_tmux_fails():
    watcher = AgentWatcher(FakeManager())
    failing = subprocess.CalledProcessError(1, ["tmux"])
    with mock.patch("uzi.watch.subprocess.run", side_effect=failing):
        with pytest.raises(subprocess.CalledProcessError):
            watcher.has_updated("s1")
    assert "s1" not in watcher.watched_sessions


def test_refresh_drops_inactive_sessions():
    manager = FakeManager()
    watcher = AgentWatcher(manager)
    with mock.patch("uzi.watch.subprocess.run", side_effect=Pane("text")):
        watcher.has_updated("old")
    assert "old" in watcher.watched_sessions
    watcher.refresh_active_sessions()
    assert "old" not in watcher.watched_sessions


def test_refresh_starts_watching_and_answers_prompts():
    pane = Pane("Press Enter to continue")
    watcher = AgentWatcher(FakeManager(["s1"]))
    with mock.patch("uzi.watch.subprocess.run", side_effect=pane):
        try:
            watcher.refresh_active_sessions()
            started = wait_for(lambda: "s1" in watcher.watched_sessions)
            answered = wait_for(
                lambda: pane.seen(["tmux", "send-keys", "-t", "s1:agent", "Enter"])
            )
        finally:
            watcher.stop()
    assert started
    assert answered


def test_refresh_reports_state_errors():
    watcher = AgentWatcher(BrokenManager())
    with pytest.raises(RuntimeError, match="failed to get active sessions"):
        watcher.refresh_active_sessions()


def test_start_returns_after_stop():
    manager = FakeManager()
    watcher = AgentWatcher(manager)
    timer = threading.Timer(0.2, watcher.stop)
    timer.start()
    try:
        watcher.start()
    finally:
        timer.cancel()
    assert manager.calls >= 1