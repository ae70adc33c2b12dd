"""The ls command: list the agent sessions of the current repository."""

from __future__ import annotations

import argparse
import logging
import re
import subprocess
import sys
import time
from collections.abc import Sequence
from datetime import datetime, timedelta, timezone

from uzi.config import get_default_config_path
from uzi.ls_view import format_last_change, get_git_diff_details
from uzi.state import AgentState, StateError, StateManager
from uzi.status import StateAdapter, Status, StatusManager, TmuxClient

log = logging.getLogger(__name__)

_SHORTSTAT_COMMAND = "git add -A . && git diff --cached --shortstat HEAD && git reset HEAD > /dev/null"
_INSERTIONS_RE = re.compile(r"(\d+) insertion(?:s)?\(\+\)")
_DELETIONS_RE = re.compile(r"(\d+) deletion(?:s)?\(-\)")

_MONTHS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun",
           "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")

_STATUS_COLOURS = {
    Status.IDLE.value: "34",
    Status.READY.value: "32",
    Status.RUNNING.value: "33",
    Status.MERGED.value: "36",
    Status.ERROR.value: "31",
}

_COLUMN_PADDING = 2
_WATCH_INTERVAL = 5.0
_DETAILED_ROW = "{:<25} {:<12} {:<15} {:<15} {:<15} {}\n"


def agent_name_from_session(session_name: str) -> str:
    """Return the agent part of a name of the form agent-project-hash-name."""
    parts = session_name.split("-")
    if len(parts) >= 4 and parts[0] == "agent":
        return "-".join(parts[3:])
    return session_name


def parse_shortstat(output: str) -> tuple[int, int]:
    """Return the inserted and deleted line counts of ``git diff --shortstat``."""
    insertions = _INSERTIONS_RE.search(output)
    deletions = _DELETIONS_RE.search(output)
    return (
        int(insertions.group(1)) if insertions else 0,
        int(deletions.group(1)) if deletions else 0,
    )


def get_git_diff_totals(session_name: str, state_manager: StateManager) -> tuple[int, int]:
    """Return the uncommitted insertions and deletions of a session's worktree.

    Any failure yields (0, 0).
    """
    try:
        states = state_manager.load_states()
    except (OSError, StateError):
        return 0, 0
    state = states.get(session_name)
    if state is None or not state.worktree_path:
        return 0, 0
    try:
        result = subprocess.run(
            ["sh", "-c", _SHORTSTAT_COMMAND],
            cwd=state.worktree_path,
            capture_output=True,
            text=True,
            check=False,
        )
    except OSError:
        return 0, 0
    if result.returncode != 0:
        return 0, 0
    return parse_shortstat(result.stdout)


def get_pane_content(session_name: str) -> str:
    """Return the visible text of a session's agent window.

    Raises OSError or subprocess.CalledProcessError when tmux fails.
    """
    return TmuxClient().get_pane_content(session_name)


def _status_manager(state_manager: StateManager) -> StatusManager:
    return StatusManager(TmuxClient(), StateAdapter(state_manager))


def _default_manager(state_manager: StateManager | None) -> StateManager | None:
    if state_manager is not None:
        return state_manager
    try:
        return StateManager()
    except RuntimeError:
        return None


def _mark_completed(state_manager: StateManager, session_name: str) -> None:
    try:
        state_manager.mark_work_completed(session_name)
    except (OSError, StateError) as exc:
        log.debug("Could not mark work completed for %s: %s", session_name, exc)


def get_agent_status(
    session_name: str, has_worked: bool, state_manager: StateManager | None = None
) -> str:
    """Return the status name of a session, or "unknown" when it cannot be found.

    A session seen ready for the first time is recorded as having worked.
    """
    manager = _default_manager(state_manager)
    if manager is None:
        return "unknown"
    try:
        status = _status_manager(manager).get_status(session_name)
    except Exception as exc:
        log.debug("Could not get status of %s: %s", session_name, exc)
        return "unknown"
    if status is Status.READY and not has_worked:
        _mark_completed(manager, session_name)
    return status.value


def format_status(status: str) -> str:
    """Return the status name in its colour; unknown names come back unchanged."""
    text = str(status)
    colour = _STATUS_COLOURS.get(text)
    if colour is None:
        return text
    return f"\033[{colour}m{text}\033[0m"


def _month_day(moment: datetime) -> str:
    return f"{_MONTHS[moment.month - 1]} {moment.day:02d}"


def format_time(t: datetime, now: datetime | None = None) -> str:
    """Return the age of ``t`` as minutes, hours or days, or its date past a week."""
    if now is None:
        now = datetime.now() if t.tzinfo is None else datetime.now(timezone.utc)
    diff = now - t
    seconds = diff.total_seconds()
    if diff < timedelta(hours=1):
        return f"{int(seconds / 60):2d}m"
    if diff < timedelta(days=1):
        return f"{int(seconds / 3600):2d}h"
    if diff < timedelta(days=7):
        return f"{int(seconds / 3600 / 24):2d}d"
    return _month_day(t)


def get_detailed_agent_status(
    session_name: str, has_worked: bool, state_manager: StateManager | None = None
) -> tuple[str, str]:
    """Return the status name and icon of a session; stuck sessions get a warning icon."""
    manager = _default_manager(state_manager)
    if manager is None:
        return Status.ERROR.value, Status.ERROR.icon
    try:
        detailed = _status_manager(manager).get_detailed_status(session_name)
    except Exception as exc:
        log.debug("Could not get detailed status of %s: %s", session_name, exc)
        return Status.ERROR.value, Status.ERROR.icon
    if detailed.status is Status.READY and not has_worked:
        _mark_completed(manager, session_name)
    icon = "⚠️" if detailed.is_stuck else detailed.icon
    return detailed.status.value, icon


def _sorted_sessions(
    state_manager: StateManager, active_sessions: Sequence[str]
) -> list[tuple[str, AgentState]]:
    try:
        states = state_manager.load_states()
    except OSError:
        states = {}
    except StateError as exc:
        raise StateError(f"error parsing state file: {exc}") from exc
    found = [(name, states[name]) for name in active_sessions if name in states]
    return sorted(found, key=lambda item: item[1].updated_at, reverse=True)


def _diff_colours(insertions: int, deletions: int) -> str:
    return f"\033[32m+{insertions}\033[0m/\033[31m-{deletions}\033[0m"


def _file_summary(worktree_path: str) -> tuple[str, str]:
    try:
        details = get_git_diff_details(worktree_path)
    except Exception as exc:
        log.debug("Could not get diff details of %s: %s", worktree_path, exc)
        details = []
    if not details:
        return "+0/~0/-0", "-"
    counts = {"A": 0, "M": 0, "D": 0}
    for detail in details:
        if detail.status in counts:
            counts[detail.status] += 1
    last_file = details[-1].file_path
    if len(last_file) > 30:
        last_file = "..." + last_file[-27:]
    return f"+{counts['A']}/~{counts['M']}/-{counts['D']}", last_file


def render_detailed_sessions(
    state_manager: StateManager, active_sessions: Sequence[str]
) -> str:
    """Return the detailed table of sessions, most recently updated first.

    Raises StateError when the state file cannot be parsed.
    """
    sessions = _sorted_sessions(state_manager, active_sessions)
    lines = [
        _DETAILED_ROW.format(
            "AGENT", "STATUS", "DIFF", "FILES (+/~/-)", "LAST CHANGE", "PROMPT / ERROR"
        ),
        "-" * 100 + "\n",
    ]
    for session_name, state in sessions:
        agent_name = agent_name_from_session(session_name)
        status, icon = get_detailed_agent_status(session_name, state.has_worked, state_manager)
        file_stats, last_file = _file_summary(state.worktree_path)
        insertions, deletions = get_git_diff_totals(session_name, state_manager)

        agent_info = f"{agent_name} ({state.model})"
        if len(agent_info) > 24:
            agent_info = agent_info[:21] + "..."

        last_change = last_file if last_file != "-" else format_last_change(state.updated_at)

        prompt = state.prompt
        if status == Status.ERROR.value and "Error:" in prompt:
            prompt = prompt.strip()
        if len(prompt) > 40:
            prompt = prompt[:37] + "..."

        lines.append(
            _DETAILED_ROW.format(
                agent_info,
                f"{icon} {status}",
                _diff_colours(insertions, deletions),
                file_stats,
                last_change,
                prompt,
            )
        )
    return "".join(lines)


def _align(rows: list[list[str]]) -> str:
    """Align tab-separated cells into columns; the last cell of a row is left as is."""
    columns = max(len(row) for row in rows) - 1
    widths = []
    for column in range(columns):
        cells = [len(row[column]) for row in rows if column < len(row) - 1]
        widths.append(max(cells, default=0) + _COLUMN_PADDING)
    out = []
    for row in rows:
        padded = [cell.ljust(width) for cell, width in zip(row[:-1], widths)]
        out.append("".join(padded) + row[-1] + "\n")
    return "".join(out)


def render_sessions(
    state_manager: StateManager, active_sessions: Sequence[str], detailed: bool = False
) -> str:
    """Return the session table, most recently updated first.

    Raises StateError when the state file cannot be parsed.
    """
    sessions = _sorted_sessions(state_manager, active_sessions)
    if detailed:
        header = ["AGENT", "MODEL", "STATUS    DIFF", "ADDR", "WORKTREE", "UPDATED", "PROMPT"]
    else:
        header = ["AGENT", "MODEL", "STATUS    DIFF", "ADDR", "PROMPT"]
    rows = [header]
    for session_name, state in sessions:
        status = get_agent_status(session_name, state.has_worked, state_manager)
        insertions, deletions = get_git_diff_totals(session_name, state_manager)
        model = state.model or "unknown"
        addr = f"http://localhost:{state.port}" if state.port else ""
        row = [
            agent_name_from_session(session_name),
            model,
            format_status(status),
            _diff_colours(insertions, deletions),
            addr,
        ]
        if detailed:
            row += [state.worktree_path or "-", format_time(state.updated_at)]
        row.append(state.prompt)
        rows.append(row)
    return _align(rows)


def _parse_args(args: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="uzi ls",
        usage="uzi ls [-a] [-w] [-d]",
        description="List active agent sessions",
        allow_abbrev=False,
    )
    parser.add_argument(
        "-config", "--config", default=get_default_config_path(),
        help="path to config file",
    )
    parser.add_argument(
        "-a", dest="all_sessions", action="store_true",
        help="show all sessions including inactive",
    )
    parser.add_argument(
        "-w", dest="watch", action="store_true",
        help="watch mode - refresh output periodically",
    )
    parser.add_argument(
        "-d", dest="detailed", action="store_true",
        help="show detailed information",
    )
    parser.add_argument("rest", nargs="*", help=argparse.SUPPRESS)
    return parser.parse_args(list(args))


def _render(state_manager: StateManager, sessions: Sequence[str], detailed: bool) -> str:
    if not sessions:
        return "No active sessions found\n"
    try:
        if detailed:
            return render_detailed_sessions(state_manager, sessions)
        return render_sessions(state_manager, sessions, False)
    except StateError as exc:
        log.error("%s", exc)
        return ""


def _watch(state_manager: StateManager, detailed: bool) -> None:
    try:
        sessions = state_manager.get_active_sessions_for_repo()
    except Exception as exc:
        raise RuntimeError(f"error getting active sessions: {exc}") from exc

    sys.stdout.write("\033[?25l")
    try:
        sys.stdout.write(_render(state_manager, sessions, detailed))
        sys.stdout.flush()
        while True:
            time.sleep(_WATCH_INTERVAL)
            try:
                sessions = state_manager.get_active_sessions_for_repo()
            except Exception as exc:
                screen = f"Error getting active sessions: {exc}\n"
            else:
                screen = _render(state_manager, sessions, detailed)
            sys.stdout.write("\033[H" + screen + "\033[J")
            sys.stdout.flush()
    finally:
        sys.stdout.write("\033[?25h")
        sys.stdout.flush()


def execute_ls(args: Sequence[str] = ()) -> None:
    """List the active sessions once, or keep refreshing the list with -w."""
    options = _parse_args(args)
    try:
        state_manager = StateManager()
    except RuntimeError as exc:
        raise RuntimeError("failed to create state manager") from exc

    if options.watch:
        _watch(state_manager, options.detailed)
        return

    try:
        sessions = state_manager.get_active_sessions_for_repo()
    except Exception as exc:
        raise RuntimeError(f"error getting active sessions: {exc}") from exc

    if not sessions:
        print("No active sessions found")
        return

    if options.detailed:
        sys.stdout.write(render_detailed_sessions(state_manager, sessions))
    else:
        sys.stdout.write(render_sessions(state_manager, sessions, False))