"""Formatting helpers and git diff inspection for the detailed listing."""

from __future__ import annotations

import logging
import re
import subprocess
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from uzi.state import ZERO_TIME

log = logging.getLogger(__name__)

_MONTHS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun",
           "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")
_LEADING_INT = re.compile(r"[+-]?\d+")

_STATUS_COLOURS = {"ready": "32", "running": "33", "error": "31"}


@dataclass
class GitDiffDetails:
    """One changed file as reported by git."""

    file_path: str
    status: str
    insertions: int = 0
    deletions: int = 0
    is_binary: bool = False


def format_detailed_status(status: str, is_running: bool = False) -> str:
    """Return the status padded to ten columns and coloured."""
    if is_running:
        status = "running"
    colour = _STATUS_COLOURS.get(status)
    if colour is None:
        return f"{status:<10}"
    return f"\033[{colour}m{status:<10}\033[0m"


def format_file_changes(additions: int, deletions: int) -> str:
    """Return coloured added/deleted line counts."""
    if additions == 0 and deletions == 0:
        return "\033[90m  no changes\033[0m"
    return f"\033[32m+{additions}\033[0m / \033[31m-{deletions}\033[0m"


def _month_day(moment: datetime) -> str:
    return f"{_MONTHS[moment.month - 1]} {moment.day:02d}"


def format_last_change(last_changed: datetime | None, now: datetime | None = None) -> str:
    """Return how long ago ``last_changed`` was, in the largest fitting unit."""
    if last_changed is None or last_changed == ZERO_TIME:
        return "\033[90mnever\033[0m"
    if now is None:
        now = datetime.now() if last_changed.tzinfo is None else datetime.now(timezone.utc)

    diff = now - last_changed
    hours = diff.total_seconds() / 3600
    if diff < timedelta(minutes=1):
        return f"{int(diff.total_seconds())}s ago"
    if diff < timedelta(hours=1):
        return f"{int(diff.total_seconds() / 60)}m ago"
    if diff < timedelta(days=1):
        return f"{int(hours)}h ago"
    if diff < timedelta(days=7):
        return f"{int(hours / 24)}d ago"
    if diff < timedelta(days=30):
        return f"{int(hours / (24 * 7))}w ago"
    return _month_day(last_changed)


def generate_table_separator(columns: list[int]) -> str:
    """Return a dashed rule with a column joint between each width."""
    return "-+-".join("-" * width for width in columns)


def parse_git_name_status(output: str) -> list[GitDiffDetails]:
    """Parse ``git diff --name-status`` output into one entry per line."""
    details = []
    for line in output.strip().split("\n"):
        parts = line.split()
        if len(parts) < 2:
            continue
        details.append(GitDiffDetails(file_path=" ".join(parts[1:]), status=parts[0]))
    return details


def git_diff_name_status_command() -> list[str]:
    """Return the git command that lists staged changes against HEAD."""
    return ["git", "diff", "--cached", "--name-status", "HEAD"]


def _scan_int(text: str) -> int:
    match = _LEADING_INT.match(text)
    return int(match.group()) if match else 0


def _run(worktree_path: str, args: list[str]) -> subprocess.CompletedProcess[str] | None:
    try:
        return subprocess.run(
            args, cwd=worktree_path, capture_output=True, text=True, check=False
        )
    except OSError as exc:
        log.debug("Could not run %s: %s", args[0], exc)
        return None


def _apply_numstat(worktree_path: str, detail: GitDiffDetails) -> None:
    result = _run(
        worktree_path,
        ["git", "diff", "--cached", "--numstat", "HEAD", "--", detail.file_path],
    )
    if result is None or result.returncode != 0:
        return
    parts = result.stdout.strip().split()
    if len(parts) < 3:
        return
    if parts[0] == "-" and parts[1] == "-":
        detail.is_binary = True
    else:
        detail.insertions = _scan_int(parts[0])
        detail.deletions = _scan_int(parts[1])


def get_git_diff_details(worktree_path: str) -> list[GitDiffDetails]:
    """Return per-file change details of a worktree against HEAD.

    All changes are staged for the inspection and unstaged again afterwards.
    Raises RuntimeError when staging or listing the changes fails.
    """
    staged = _run(worktree_path, ["git", "add", "-A", "."])
    if staged is None or staged.returncode != 0:
        raise RuntimeError("failed to stage changes")

    try:
        listed = _run(worktree_path, git_diff_name_status_command())
        if listed is None or listed.returncode != 0:
            raise RuntimeError("failed to get name-status")
        details = parse_git_name_status(listed.stdout)
        for detail in details:
            _apply_numstat(worktree_path, detail)
        return details
    finally:
        _run(worktree_path, ["git", "reset", "HEAD"])