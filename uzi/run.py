"""The run command: run a shell command in a new window of every session."""

from __future__ import annotations

import argparse
import logging
import subprocess
from collections.abc import Sequence

from uzi.config import get_default_config_path
from uzi.state import StateManager

log = logging.getLogger(__name__)


def _parse_args(args: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="uzi run",
        usage="uzi run <command>",
        description="Run a command in all agent sessions",
        allow_abbrev=False,
    )
    parser.add_argument(
        "-delete", "--delete", action="store_true",
        help="delete the panel after running the command",
    )
    parser.add_argument(
        "-config", "--config", default=get_default_config_path(),
        help="path to config file",
    )
    parser.add_argument("command", nargs=argparse.REMAINDER)
    return parser.parse_args(list(args))


def _tmux(*args: str) -> str | None:
    """Run tmux and return its output, or None when it fails."""
    try:
        result = subprocess.run(["tmux", *args], capture_output=True, text=True, check=False)
    except OSError as exc:
        log.error("Could not run tmux: %s", exc)
        return None
    if result.returncode != 0:
        return None
    return result.stdout


def execute_run(args: Sequence[str]) -> None:
    """Run the command in ``args`` in a fresh window of each active session."""
    log.debug("Running run command")
    options = _parse_args(args)
    if not options.command:
        raise ValueError("no command provided")

    command = " ".join(options.command)

    try:
        sessions = StateManager().get_active_sessions_for_repo()
    except Exception as exc:
        log.error("Error getting active sessions: %s", exc)
        raise

    if not sessions:
        raise RuntimeError("no active agent sessions found")

    print(f"Running command '{command}' in {len(sessions)} agent sessions:")
    for session in sessions:
        print(f"\n=== {session} ===")

        created = _tmux(
            "new-window", "-t", session, "-P", "-F", "#{window_index}",
            "-c", "#{session_path}",
        )
        if created is None:
            log.error("Failed to create new window in session %s", session)
            continue
        target = f"{session}:{created.strip()}"

        if _tmux("send-keys", "-t", target, command, "Enter") is None:
            log.error("Failed to send command %r to session %s", command, session)
            continue

        captured = _tmux("capture-pane", "-t", target, "-p")
        if captured is None:
            log.error("Failed to capture output of session %s", session)
        else:
            output = captured.strip()
            if output:
                print(output)

        if options.delete and _tmux("kill-window", "-t", target) is None:
            log.error("Failed to kill window %s in session %s", target, session)