"""Working out what an agent session is currently doing."""

from __future__ import annotations

import subprocess
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import Protocol

from uzi.state import StateError, StateManager

MARKER_FILE_NAME = ".uzi-task-completed"
STUCK_AFTER = timedelta(minutes=5)


class Status(str, Enum):
    """The states an agent session can be in."""

    IDLE = "idle"
    RUNNING = "running"
    READY = "ready"
    MERGED = "merged"
    ERROR = "error"

    def __str__(self) -> str:
        return self.value

    @property
    def icon(self) -> str:
        """Return the icon shown next to this status."""
        return _ICONS[self]


_ICONS = {
    Status.IDLE: "💤",
    Status.RUNNING: "🏃",
    Status.READY: "✅",
    Status.MERGED: "🔀",
    Status.ERROR: "❌",
}


@dataclass
class WorktreeInfo:
    """The part of a session's state that status detection needs."""

    worktree_path: str
    updated_at: datetime
    is_merged: bool = False


@dataclass
class DetailedStatus:
    """A status together with its icon and staleness."""

    status: Status
    icon: str
    last_changed: datetime
    is_stuck: bool


class _PaneSource(Protocol):
    def get_pane_content(self, session_name: str) -> str: ...


class _WorktreeSource(Protocol):
    def get_worktree_info(self, session_name: str) -> WorktreeInfo: ...

    def mark_as_merged(self, session_name: str) -> None: ...


def marker_file_path(worktree_path: str) -> Path:
    """Return where an agent drops its task-completed marker."""
    return Path(worktree_path) / MARKER_FILE_NAME


def has_marker_file(worktree_path: str) -> bool:
    """Tell whether the task-completed marker exists in a worktree."""
    return marker_file_path(worktree_path).exists()


class TmuxClient:
    """Reads the agent pane of a tmux session."""

    def get_pane_content(self, session_name: str) -> str:
        """Return the visible text of the session's agent window.

        Raises OSError when tmux cannot be run and
        subprocess.CalledProcessError when it fails.
        """
        result = subprocess.run(
            ["tmux", "capture-pane", "-t", f"{session_name}:agent", "-p"],
            capture_output=True,
            text=True,
            check=True,
        )
        return result.stdout


class StateAdapter:
    """Presents a StateManager in the shape the status logic expects."""

    def __init__(self, state_manager: StateManager) -> None:
        self.state_manager = state_manager

    def get_worktree_info(self, session_name: str) -> WorktreeInfo:
        """Return the worktree info of a session.

        Raises FileNotFoundError when the state file or the session is
        missing and StateError when the file cannot be parsed.
        """
        states = self.state_manager.load_states()
        state = states.get(session_name)
        if state is None:
            raise FileNotFoundError(f"no state found for session: {session_name}")
        return WorktreeInfo(
            worktree_path=state.worktree_path,
            updated_at=state.updated_at,
            is_merged=state.last_merged_at is not None,
        )

    def mark_as_merged(self, session_name: str) -> None:
        """Record that the session's changes have been merged."""
        self.state_manager.mark_as_merged(session_name)


def _age(moment: datetime) -> timedelta:
    now = datetime.now() if moment.tzinfo is None else datetime.now(timezone.utc)
    return now - moment


class StatusManager:
    """Combines tmux output and stored state into a session status."""

    def __init__(self, tmux_client: _PaneSource, state_manager: _WorktreeSource) -> None:
        self.tmux_client = tmux_client
        self.state_manager = state_manager

    def _worktree_info(self, session_name: str) -> WorktreeInfo | None:
        try:
            return self.state_manager.get_worktree_info(session_name)
        except (OSError, StateError):
            return None

    def get_status(self, session_name: str) -> Status:
        """Return the status, checking error, running, merged and ready in turn."""
        try:
            content = self.tmux_client.get_pane_content(session_name)
        except (OSError, subprocess.SubprocessError):
            return Status.ERROR

        if "Error:" in content or "error:" in content:
            return Status.ERROR
        if "esc to interrupt" in content or "Thinking" in content:
            return Status.RUNNING

        info = self._worktree_info(session_name)
        if info is not None:
            if info.is_merged:
                return Status.MERGED
            if has_marker_file(info.worktree_path):
                return Status.READY
        return Status.IDLE

    def get_detailed_status(self, session_name: str) -> DetailedStatus:
        """Return the status with its icon and whether the session looks stuck."""
        status = self.get_status(session_name)
        info = self._worktree_info(session_name)
        if info is None:
            return DetailedStatus(status, status.icon, datetime.now(timezone.utc), False)
        return DetailedStatus(
            status=status,
            icon=status.icon,
            last_changed=info.updated_at,
            is_stuck=_age(info.updated_at) > STUCK_AFTER,
        )

    def mark_as_merged(self, session_name: str) -> None:
        """Record that the session's changes have been merged."""
        self.state_manager.mark_as_merged(session_name)

    def clear_marker_file(self, session_name: str) -> None:
        """Delete the task-completed marker of a session's worktree."""
        info = self.state_manager.get_worktree_info(session_name)
        marker_file_path(info.worktree_path).unlink()