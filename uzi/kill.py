"""The kill command: remove an agent's tmux session, worktree and state."""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import sys
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from uzi.state import StateManager, data_dir

log = logging.getLogger(__name__)


def _binary_dir() -> str:
    return os.path.dirname(sys.argv[0]) or "."


def _run(command: list[str], cwd: str | None = None) -> bool:
    try:
        result = subprocess.run(command, cwd=cwd, capture_output=True, check=False)
    except OSError as exc:
        log.debug("Could not run %s: %s", command[0], exc)
        return False
    return result.returncode == 0


def _remove_path(path: Path, what: str) -> None:
    if not path.exists():
        return
    try:
        if path.is_dir() and not path.is_symlink():
            shutil.rmtree(path)
        else:
            path.unlink()
    except OSError as exc:
        log.error("Error removing %s %s: %s", what, path, exc)
    else:
        log.debug("Removed %s %s", what, path)


def kill_session(session_name: str, agent_name: str, state_manager: Any) -> None:
    """Kill one session and clean up its worktree, branch and stored state.

    Raises RuntimeError when the worktree or branch cannot be removed.
    """
    log.debug("Deleting tmux session %s and git worktree of %s", session_name, agent_name)

    if _run(["tmux", "has-session", "-t", session_name]):
        if _run(["tmux", "kill-session", "-t", session_name]):
            log.debug("Killed tmux session %s", session_name)
        else:
            log.error("Error killing tmux session %s", session_name)

    base = _binary_dir()
    if os.path.exists(os.path.join(base, "..", agent_name)):
        try:
            info = state_manager.get_worktree_info(session_name)
        except Exception as exc:
            log.error("Error getting worktree info for %s: %s", session_name, exc)
            raise RuntimeError(f"failed to get worktree info: {exc}") from exc

        if not _run(["git", "worktree", "remove", "--force", info.worktree_path], cwd=base):
            log.error("Error removing git worktree %s", info.worktree_path)
            raise RuntimeError(f"failed to remove git worktree: {info.worktree_path}")
        log.debug("Removed git worktree %s", info.worktree_path)

        if not _run(["git", "branch", "-D", agent_name], cwd=base):
            log.error("Error deleting git branch %s", agent_name)
            raise RuntimeError(f"failed to delete git branch: {agent_name}")
        log.debug("Deleted git branch %s", agent_name)

    try:
        root = data_dir()
    except RuntimeError as exc:
        log.debug("No data directory: %s", exc)
        return

    _remove_path(root / "worktrees" / agent_name, "config worktree")
    _remove_path(root / "worktree" / session_name, "worktree state")

    try:
        state_manager.remove_state(session_name)
    except Exception as exc:
        log.error("Error removing state entry %s: %s", session_name, exc)
    else:
        log.debug("Removed state entry %s", session_name)


def kill_all(state_manager: Any) -> int:
    """Kill every active session of the current repository; return how many went."""
    log.debug("Deleting all agents for repository")
    try:
        sessions = state_manager.get_active_sessions_for_repo()
    except Exception as exc:
        log.error("Error getting active sessions: %s", exc)
        raise

    if not sessions:
        print("No active sessions found")
        return 0

    killed = 0
    for session_name in sessions:
        parts = session_name.split("-")
        if len(parts) < 2:
            log.warning("Unexpected session name format: %s", session_name)
            continue
        agent_name = parts[-1]
        try:
            kill_session(session_name, agent_name, state_manager)
        except RuntimeError as exc:
            log.error("Error killing session %s: %s", session_name, exc)
            continue
        killed += 1
        print(f"Deleted agent: {agent_name}")

    print(f"Successfully deleted {killed} agent(s)")
    return killed


def execute_kill(args: Sequence[str]) -> None:
    """Kill the agent named in ``args``, or every agent when it is "all"."""
    if not args:
        raise ValueError("agent name argument is required")

    agent_name = args[0]
    try:
        manager = StateManager()
    except RuntimeError as exc:
        raise RuntimeError("could not initialize state manager") from exc

    if agent_name == "all":
        kill_all(manager)
        return

    try:
        sessions = manager.get_active_sessions_for_repo()
    except Exception as exc:
        log.error("Error getting active sessions: %s", exc)
        raise

    target = next((s for s in sessions if s.endswith("-" + agent_name)), None)
    if target is None:
        log.debug("No active tmux session found for agent %s", agent_name)
        raise RuntimeError(f"no active session found for agent: {agent_name}")

    kill_session(target, agent_name, manager)
    print(f"Deleted agent: {agent_name}")