"""The auto command: watch agent panes and answer their confirmation prompts."""

from __future__ import annotations

import hashlib
import logging
import signal
import subprocess
import threading
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from uzi.state import StateManager

log = logging.getLogger(__name__)

_TRUST_PROMPT = "Do you trust the files in this folder?"
_CONTINUE_PROMPTS = (
    "Press Enter to continue",
    "Continue? (Y/n)",
    "Do you want to proceed?",
    "Do you want to",
    "Proceed? (y/N)",
)
_POLL_INTERVAL = 0.5
_ERROR_BACKOFF = 2.0
_REFRESH_INTERVAL = 5.0


def detect_prompt(content: str) -> bool:
    """Tell whether pane text shows a prompt that should be answered with Enter."""
    if _TRUST_PROMPT in content:
        return True
    if any(phrase in content for phrase in _CONTINUE_PROMPTS):
        return True
    return "Allow command" in content and "Thinking" not in content


@dataclass
class SessionMonitor:
    """What the watcher remembers about one session's pane."""

    session_name: str
    prev_output_hash: bytes
    last_updated: datetime
    update_count: int = 0
    no_update_count: int = 0


def _capture_pane(session_name: str) -> str:
    result = subprocess.run(
        ["tmux", "capture-pane", "-t", f"{session_name}:agent", "-p"],
        capture_output=True,
        text=True,
        check=True,
    )
    return result.stdout


def _tap_enter(session_name: str) -> bool:
    try:
        result = subprocess.run(
            ["tmux", "send-keys", "-t", f"{session_name}:agent", "Enter"],
            capture_output=True,
            check=False,
        )
    except OSError as exc:
        log.debug("Could not run tmux: %s", exc)
        return False
    return result.returncode == 0


class AgentWatcher:
    """Follows every active session and presses Enter at known prompts."""

    def __init__(self, state_manager: Any = None) -> None:
        self.state_manager = state_manager if state_manager is not None else StateManager()
        self.watched_sessions: dict[str, SessionMonitor] = {}
        self._lock = threading.Lock()
        self._quit = threading.Event()
        self._workers: dict[str, tuple[threading.Thread, threading.Event]] = {}

    def has_updated(self, session_name: str) -> tuple[bool, bool]:
        """Return whether the pane changed since last time and whether it shows a prompt.

        Raises OSError or subprocess.CalledProcessError when tmux fails.
        """
        content = _capture_pane(session_name)
        has_prompt = detect_prompt(content)
        digest = hashlib.sha256(content.encode("utf-8")).digest()

        with self._lock:
            monitor = self.watched_sessions.get(session_name)
            if monitor is None:
                self.watched_sessions[session_name] = SessionMonitor(
                    session_name=session_name,
                    prev_output_hash=digest,
                    last_updated=datetime.now(),
                )
                return False, has_prompt
            if digest != monitor.prev_output_hash:
                monitor.prev_output_hash = digest
                monitor.last_updated = datetime.now()
                monitor.update_count += 1
                monitor.no_update_count = 0
                return True, has_prompt
            monitor.no_update_count += 1
            return False, has_prompt

    def _watch_session(self, session_name: str, stop: threading.Event) -> None:
        log.info("Starting to watch session %s", session_name)
        while not stop.is_set() and not self._quit.is_set():
            try:
                updated, has_prompt = self.has_updated(session_name)
            except (OSError, subprocess.SubprocessError) as exc:
                log.error("Error checking session %s: %s", session_name, exc)
                stop.wait(_ERROR_BACKOFF)
                continue

            if updated:
                log.debug("Session updated: %s", session_name)

            if has_prompt:
                log.info("Auto-pressing Enter for prompt in %s", session_name)
                if _tap_enter(session_name):
                    log.info("Successfully sent Enter to %s", session_name)
                else:
                    log.error("Failed to send Enter to %s", session_name)

            stop.wait(_POLL_INTERVAL)

    def refresh_active_sessions(self) -> None:
        """Stop following sessions that ended and start following new ones.

        Raises RuntimeError when the active sessions cannot be read.
        """
        try:
            active = self.state_manager.get_active_sessions_for_repo()
        except Exception as exc:
            raise RuntimeError(f"failed to get active sessions: {exc}") from exc
        active_set = set(active)

        with self._lock:
            for name in list(self.watched_sessions):
                if name not in active_set:
                    log.info("Session %s no longer active, stopping watch", name)
                    del self.watched_sessions[name]
            for name in list(self._workers):
                if name not in active_set:
                    self._workers.pop(name)[1].set()
            for name in active:
                if self._quit.is_set():
                    break
                if name in self.watched_sessions or name in self._workers:
                    continue
                stop = threading.Event()
                thread = threading.Thread(
                    target=self._watch_session, args=(name, stop),
                    name=f"watch-{name}", daemon=True,
                )
                self._workers[name] = (thread, stop)
                thread.start()

    def start(self) -> None:
        """Watch sessions until stop() is called or SIGINT or SIGTERM arrives."""
        log.info("Starting Agent Watcher")
        previous: dict[int, Any] = {}
        if threading.current_thread() is threading.main_thread():
            for sig in (signal.SIGINT, signal.SIGTERM):
                previous[sig] = signal.signal(sig, lambda *_: self._quit.set())
        try:
            while not self._quit.is_set():
                try:
                    self.refresh_active_sessions()
                except RuntimeError as exc:
                    log.error("Failed to refresh active sessions: %s", exc)
                self._quit.wait(_REFRESH_INTERVAL)
        finally:
            for sig, handler in previous.items():
                signal.signal(sig, handler)
            log.info("Shutting down Agent Watcher")
            self.stop()

    def stop(self) -> None:
        """Stop every session watcher and wait for them to finish."""
        self._quit.set()
        with self._lock:
            workers = list(self._workers.values())
            self._workers.clear()
        for thread, stop in workers:
            stop.set()
        for thread, _ in workers:
            thread.join(timeout=_ERROR_BACKOFF + 1)


def execute_auto(args: Sequence[str] = ()) -> None:
    """Run the watcher in the foreground until interrupted."""
    AgentWatcher().start()