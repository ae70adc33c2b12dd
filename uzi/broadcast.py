"""The broadcast command: type one message into every agent session."""

from __future__ import annotations

import logging
import subprocess
from collections.abc import Sequence

from uzi.state import StateManager

log = logging.getLogger(__name__)


def _tmux(*args: str) -> bool:
    try:
        result = subprocess.run(["tmux", *args], capture_output=True, check=False)
    except OSError as exc:
        log.error("Could not run tmux: %s", exc)
        return False
    return result.returncode == 0


def execute_broadcast(args: Sequence[str]) -> None:
    """Send the words in ``args`` to the agent window of each active session."""
    if not args:
        raise ValueError("message argument is required")

    message = " ".join(args)
    log.debug("Broadcasting message: %s", message)

    try:
        sessions = StateManager().get_active_sessions_for_repo()
    except Exception as exc:
        log.error("Error getting active sessions: %s", exc)
        raise

    if not sessions:
        raise RuntimeError("no active agent sessions found")

    print(f"Broadcasting message to {len(sessions)} agent sessions:")
    for session in sessions:
        print(f"\n=== {session} ===")
        target = f"{session}:agent"
        if not _tmux("send-keys", "-t", target, message, "Enter"):
            log.error("Failed to send message to session %s", session)
            continue
        _tmux("send-keys", "-t", target, "Enter")