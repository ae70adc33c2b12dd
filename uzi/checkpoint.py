"""The checkpoint command: bring an agent's work into the current branch."""

from __future__ import annotations

import logging
import os
import subprocess
from collections.abc import Iterable, Sequence

from uzi.state import StateError, StateManager

log = logging.getLogger(__name__)


def find_session_for_agent(sessions: Iterable[str], agent_name: str) -> str | None:
    """Return the session named agent-<project>-<hash>-<agent_name>, if any."""
    for session in sessions:
        parts = session.split("-")
        if len(parts) >= 4 and parts[0] == "agent" and "-".join(parts[3:]) == agent_name:
            return session
    return None


def _git_output(cwd: str, *args: str) -> str:
    result = subprocess.run(
        ["git", *args], cwd=cwd, capture_output=True, text=True, check=True
    )
    return result.stdout.strip()


def _git_run(cwd: str, *args: str, show: bool = False) -> None:
    target = None if show else subprocess.DEVNULL
    subprocess.run(["git", *args], cwd=cwd, stdout=target, stderr=target, check=True)


_GIT_FAILURES = (OSError, subprocess.CalledProcessError)


def execute_checkpoint(args: Sequence[str]) -> None:
    """Commit an agent's worktree and rebase its branch into the current one.

    ``args`` holds the agent name and the commit message.
    """
    if len(args) < 2:
        raise ValueError("agent name and commit message arguments are required")

    agent_name, commit_message = args[0], args[1]
    log.debug("Checkpointing changes from agent %s", agent_name)

    manager = StateManager()
    try:
        sessions = manager.get_active_sessions_for_repo()
    except Exception as exc:
        log.error("Error getting active sessions: %s", exc)
        raise

    session = find_session_for_agent(sessions, agent_name)
    if session is None:
        raise RuntimeError(f"no active session found for agent: {agent_name}")

    try:
        states = manager.load_states()
    except OSError as exc:
        raise RuntimeError(f"error reading state file: {exc}") from exc
    except StateError as exc:
        raise RuntimeError(f"error parsing state file: {exc}") from exc

    state = states.get(session)
    if state is None or not state.worktree_path:
        raise RuntimeError(f"invalid state for session: {session}")

    agent_branch = state.branch_name
    worktree = state.worktree_path

    try:
        current_dir = os.getcwd()
    except OSError as exc:
        raise RuntimeError(f"error getting current directory: {exc}") from exc

    try:
        current_branch = _git_output(current_dir, "branch", "--show-current")
    except _GIT_FAILURES as exc:
        raise RuntimeError(f"error getting current branch: {exc}") from exc

    try:
        _git_run(current_dir, "show-ref", "--verify", "--quiet", f"refs/heads/{agent_branch}")
    except _GIT_FAILURES:
        raise RuntimeError(f"agent branch does not exist: {agent_branch}") from None

    try:
        _git_run(worktree, "add", ".")
    except _GIT_FAILURES as exc:
        raise RuntimeError(f"error staging changes: {exc}") from exc

    try:
        _git_run(worktree, "commit", "-am", commit_message, show=True)
    except _GIT_FAILURES:
        log.warning("No unstaged changes to commit, rebasing")

    try:
        merge_base = _git_output(current_dir, "merge-base", current_branch, agent_branch)
    except _GIT_FAILURES as exc:
        raise RuntimeError(f"error finding merge base: {exc}") from exc

    try:
        change_count = _git_output(
            current_dir, "rev-list", "--count", f"{merge_base}..{agent_branch}"
        )
    except _GIT_FAILURES as exc:
        raise RuntimeError(f"error checking for changes: {exc}") from exc

    print(f"Checkpointing {change_count} commits from agent: {agent_name}")

    try:
        _git_run(current_dir, "rebase", agent_branch, show=True)
    except _GIT_FAILURES as exc:
        raise RuntimeError(f"error rebasing agent changes: {exc}") from exc

    try:
        manager.mark_work_completed(session)
    except (OSError, StateError) as exc:
        log.warning("Failed to mark work as completed for %s: %s", session, exc)

    try:
        manager.mark_as_merged(session)
    except (OSError, StateError) as exc:
        log.warning("Failed to mark %s as merged: %s", session, exc)

    print(f"Successfully checkpointed changes from agent: {agent_name}")
    print(f"Successfully committed changes with message: {commit_message}")