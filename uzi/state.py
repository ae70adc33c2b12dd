"""Persistent record of the agent sessions that have been started."""

from __future__ import annotations

import json
import logging
import os
import re
import subprocess
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

log = logging.getLogger(__name__)

ZERO_TIME = datetime(1, 1, 1, tzinfo=timezone.utc)

_TIME_RE = re.compile(
    r"^(\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2})(?:\.(\d+))?(Z|[+-]\d{2}:\d{2})$"
)


class StateError(Exception):
    """Raised when the state file is missing, malformed or lacks a session."""


def data_dir() -> Path:
    """Return the directory where all data is kept."""
    return Path.home() / ".local" / "share" / "uzi"


def _now() -> datetime:
    return datetime.now().astimezone()


def _format_time(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.astimezone()
    text = value.isoformat()
    if value.utcoffset() == timedelta(0) and text.endswith("+00:00"):
        text = text[: -len("+00:00")] + "Z"
    return text


def _parse_time(value: Any, key: str) -> datetime:
    if not isinstance(value, str):
        raise StateError(f"field {key!r} must be a timestamp string")
    match = _TIME_RE.match(value)
    if match is None:
        raise StateError(f"field {key!r} holds an invalid timestamp: {value!r}")
    base, fraction, zone = match.groups()
    if zone == "Z":
        zone = "+00:00"
    text = base
    if fraction:
        text += "." + fraction[:6].ljust(6, "0")
    try:
        return datetime.fromisoformat(text + zone)
    except ValueError as exc:
        raise StateError(f"field {key!r} holds an invalid timestamp: {value!r}") from exc


def _field(data: dict[str, Any], key: str, kind: type, default: Any) -> Any:
    value = data.get(key)
    if value is None:
        return default
    if kind is int and isinstance(value, bool):
        raise StateError(f"field {key!r} must be an integer")
    if kind is int and isinstance(value, float) and value.is_integer():
        return int(value)
    if not isinstance(value, kind):
        raise StateError(f"field {key!r} has the wrong type")
    return value


def _optional_time(data: dict[str, Any], key: str) -> datetime | None:
    value = data.get(key)
    return None if value is None else _parse_time(value, key)


@dataclass
class AgentState:
    """What is known about one agent session."""

    git_repo: str = ""
    branch_from: str = ""
    branch_name: str = ""
    prompt: str = ""
    worktree_path: str = ""
    port: int = 0
    model: str = ""
    created_at: datetime = ZERO_TIME
    updated_at: datetime = ZERO_TIME
    has_worked: bool = False
    work_count: int = 0
    last_worked_at: datetime | None = None
    last_merged_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON form stored in the state file."""
        data: dict[str, Any] = {
            "git_repo": self.git_repo,
            "branch_from": self.branch_from,
            "branch_name": self.branch_name,
            "prompt": self.prompt,
            "worktree_path": self.worktree_path,
        }
        if self.port:
            data["port"] = self.port
        data["model"] = self.model
        data["created_at"] = _format_time(self.created_at)
        data["updated_at"] = _format_time(self.updated_at)
        data["has_worked"] = self.has_worked
        data["work_count"] = self.work_count
        if self.last_worked_at is not None:
            data["last_worked_at"] = _format_time(self.last_worked_at)
        if self.last_merged_at is not None:
            data["last_merged_at"] = _format_time(self.last_merged_at)
        return data

    @classmethod
    def from_dict(cls, data: Any) -> AgentState:
        """Build a state from its JSON form."""
        if data is None:
            return cls()
        if not isinstance(data, dict):
            raise StateError("agent state must be a JSON object")
        created = data.get("created_at")
        updated = data.get("updated_at")
        return cls(
            git_repo=_field(data, "git_repo", str, ""),
            branch_from=_field(data, "branch_from", str, ""),
            branch_name=_field(data, "branch_name", str, ""),
            prompt=_field(data, "prompt", str, ""),
            worktree_path=_field(data, "worktree_path", str, ""),
            port=_field(data, "port", int, 0),
            model=_field(data, "model", str, ""),
            created_at=ZERO_TIME if created is None else _parse_time(created, "created_at"),
            updated_at=ZERO_TIME if updated is None else _parse_time(updated, "updated_at"),
            has_worked=_field(data, "has_worked", bool, False),
            work_count=_field(data, "work_count", int, 0),
            last_worked_at=_optional_time(data, "last_worked_at"),
            last_merged_at=_optional_time(data, "last_merged_at"),
        )


def _command_output(*args: str) -> str | None:
    try:
        result = subprocess.run(list(args), capture_output=True, text=True, check=False)
    except OSError as exc:
        log.debug("Could not run %s: %s", args[0], exc)
        return None
    if result.returncode != 0:
        return None
    return result.stdout.strip()


class StateManager:
    """Reads and writes the JSON state file."""

    def __init__(self, state_path: str | os.PathLike[str] | None = None) -> None:
        self.state_path = (
            Path(state_path) if state_path is not None else data_dir() / "state.json"
        )

    def load_states(self) -> dict[str, AgentState]:
        """Return all stored sessions.

        Raises OSError (FileNotFoundError when absent) if the file cannot be
        read and StateError if it cannot be parsed.
        """
        text = self.state_path.read_text(encoding="utf-8")
        try:
            raw = json.loads(text)
        except json.JSONDecodeError as exc:
            raise StateError(f"error parsing state file: {exc}") from exc
        if raw is None:
            return {}
        if not isinstance(raw, dict):
            raise StateError("error parsing state file: expected a JSON object")
        return {name: AgentState.from_dict(entry) for name, entry in raw.items()}

    def _write_states(self, states: dict[str, AgentState]) -> None:
        payload = {name: states[name].to_dict() for name in sorted(states)}
        self.state_path.write_text(
            json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8"
        )

    def _ensure_dir(self) -> None:
        self.state_path.parent.mkdir(parents=True, exist_ok=True)

    @staticmethod
    def _git_repo() -> str:
        output = _command_output("git", "config", "--get", "remote.origin.url")
        if output is None:
            log.debug("Could not get git remote URL")
            return ""
        return output

    @staticmethod
    def _branch_from() -> str:
        output = _command_output("git", "symbolic-ref", "refs/remotes/origin/HEAD")
        if output is None:
            return "main"
        return output.split("/")[-1]

    @staticmethod
    def _is_active_in_tmux(session_name: str) -> bool:
        try:
            result = subprocess.run(
                ["tmux", "has-session", "-t", session_name],
                capture_output=True,
                check=False,
            )
        except OSError:
            return False
        return result.returncode == 0

    def _store_worktree_branch(self, session_name: str) -> None:
        agent_dir = self.state_path.parent / "worktree" / session_name
        agent_dir.mkdir(parents=True, exist_ok=True)
        current = _command_output("git", "branch", "--show-current")
        if not current:
            log.debug("Could not get current branch")
            return
        (agent_dir / "tree").write_text(current, encoding="utf-8")

    def get_active_sessions_for_repo(self) -> list[str]:
        """Return the sessions of the current repository that run in tmux."""
        try:
            states = self.load_states()
        except FileNotFoundError:
            return []
        current_repo = self._git_repo()
        if not current_repo:
            return []
        return [
            name
            for name, state in states.items()
            if state.git_repo == current_repo and self._is_active_in_tmux(name)
        ]

    def save_state(
        self,
        prompt: str,
        branch_name: str,
        session_name: str,
        worktree_path: str,
        model: str,
        port: int = 0,
    ) -> None:
        """Record a session, keeping its creation time and work history."""
        self._ensure_dir()
        try:
            states = self.load_states()
        except (OSError, StateError):
            states = {}

        now = _now()
        existing = states.get(session_name)
        states[session_name] = AgentState(
            git_repo=self._git_repo(),
            branch_from=self._branch_from(),
            branch_name=branch_name,
            prompt=prompt,
            worktree_path=worktree_path,
            port=port,
            model=model,
            created_at=existing.created_at if existing else now,
            updated_at=now,
            has_worked=existing.has_worked if existing else False,
            work_count=existing.work_count if existing else 0,
            last_worked_at=existing.last_worked_at if existing else None,
        )

        try:
            self._store_worktree_branch(session_name)
        except OSError as exc:
            log.error("Error storing worktree branch: %s", exc)

        self._write_states(states)

    def remove_state(self, session_name: str) -> None:
        """Forget a session; a missing state file is not an error."""
        try:
            states = self.load_states()
        except FileNotFoundError:
            return
        states.pop(session_name, None)
        self._write_states(states)

    def get_worktree_info(self, session_name: str) -> AgentState:
        """Return the stored state of one session."""
        try:
            states = self.load_states()
        except OSError as exc:
            raise StateError(f"error reading state file: {exc}") from exc
        try:
            return states[session_name]
        except KeyError:
            raise StateError(f"no state found for session: {session_name}") from None

    def _load_for_update(self, session_name: str) -> tuple[dict[str, AgentState], AgentState]:
        self._ensure_dir()
        try:
            states = self.load_states()
        except FileNotFoundError:
            raise StateError("no state file found") from None
        state = states.get(session_name)
        if state is None:
            raise StateError(f"session {session_name} not found")
        return states, state

    def mark_work_completed(self, session_name: str) -> None:
        """Record that the agent of a session has finished a piece of work."""
        states, state = self._load_for_update(session_name)
        now = _now()
        state.has_worked = True
        state.work_count += 1
        state.last_worked_at = now
        state.updated_at = now
        self._write_states(states)

    def mark_as_merged(self, session_name: str) -> None:
        """Record that the changes of a session have been merged."""
        states, state = self._load_for_update(session_name)
        now = _now()
        state.last_merged_at = now
        state.updated_at = now
        self._write_states(states)