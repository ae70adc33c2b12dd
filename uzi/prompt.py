"""The prompt command: start agents on a prompt, each in its own worktree."""

from __future__ import annotations

import argparse
import logging
import os
import posixpath
import re
import shutil
import socket
import subprocess
import time
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from pathlib import Path

from uzi.agents import get_random_agent
from uzi.config import Config, get_default_config_path, load_config
from uzi.state import StateError, StateManager, data_dir

log = logging.getLogger(__name__)

_INT_RE = re.compile(r"[+-]?\d+")
_WORKER_NOTES = "CLAUDE-WORKER.md"
_AGENT_NOTES = "CLAUDE.md"
_MARKER_FILE = ".uzi-task-completed"


@dataclass
class AgentConfig:
    """The command an agent runs and how many copies of it to start."""

    command: str
    count: int


def parse_agents(agents_str: str) -> dict[str, AgentConfig]:
    """Parse ``agent:count[,agent:count...]`` into one config per agent.

    Raises ValueError when a pair is malformed or a count is below one.
    """
    configs: dict[str, AgentConfig] = {}
    for pair in agents_str.split(","):
        parts = pair.strip().split(":")
        if len(parts) != 2:
            raise ValueError(f"invalid agent format: {pair} (expected agent:count)")
        agent = parts[0].strip()
        count_text = parts[1].strip()
        if not _INT_RE.fullmatch(count_text):
            raise ValueError(f"invalid count for agent {agent}: {count_text}")
        count = int(count_text)
        if count < 1:
            raise ValueError(f"count must be at least 1 for agent {agent}")
        configs[agent] = AgentConfig(command=agent, count=count)
    return configs


def _to_int(text: str) -> int:
    return int(text) if _INT_RE.fullmatch(text) else 0


def parse_port_range(port_range: str) -> tuple[int, int]:
    """Parse ``start-end`` into two ports; raise ValueError when it is not valid."""
    parts = port_range.split("-")
    if len(parts) != 2:
        raise ValueError(f"invalid port range format: {port_range}")
    start, end = _to_int(parts[0]), _to_int(parts[1])
    if start <= 0 or end <= 0 or end < start:
        raise ValueError(f"invalid port range: {port_range}")
    return start, end


def is_port_available(port: int) -> bool:
    """Tell whether a TCP listener can be opened on ``port`` on all interfaces."""
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            if os.name != "nt":
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind(("", port))
            sock.listen(1)
    except (OSError, OverflowError):
        return False
    return True


def find_available_port(start_port: int, end_port: int, assigned_ports: Iterable[int]) -> int:
    """Return the first free port in the range that is not already assigned.

    Raises RuntimeError when every port in the range is taken.
    """
    taken = set(assigned_ports)
    for port in range(start_port, end_port + 1):
        if port not in taken and is_port_available(port):
            return port
    raise RuntimeError(f"no available ports in range {start_port}-{end_port}")


def _parse_args(args: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="uzi prompt",
        usage="uzi prompt --agents=AGENT:COUNT[,AGENT:COUNT...] prompt text...",
        description="Run the prompt command with specified agents and counts",
        allow_abbrev=False,
    )
    parser.add_argument(
        "-agents", "--agents", default="claude:1",
        help="agents to run with their commands and counts (e.g., 'claude:1,codex:2'). "
        "Use 'random' as agent name to select a random agent name.",
    )
    parser.add_argument(
        "-config", "--config", default=get_default_config_path(),
        help="path to config file",
    )
    parser.add_argument("prompt", nargs=argparse.REMAINDER)
    return parser.parse_args(list(args))


def _git_output(*args: str) -> str:
    result = subprocess.run(["git", *args], capture_output=True, text=True, check=True)
    return result.stdout.strip()


def _run_quiet(command: list[str], cwd: str | None = None) -> bool:
    try:
        result = subprocess.run(
            command, cwd=cwd, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL, check=False
        )
    except OSError as exc:
        log.debug("Could not run %s: %s", command[0], exc)
        return False
    return result.returncode == 0


def _repo_name(remote_url: str) -> str:
    trimmed = remote_url.rstrip("/")
    if not trimmed:
        return "/" if remote_url else "."
    name = posixpath.basename(trimmed)
    return name[: -len(".git")] if name.endswith(".git") else name


def _load_config(path: str) -> Config:
    try:
        return load_config(path)
    except Exception as exc:
        log.warning("Error loading config, using default values: %s", exc)
        return Config()


def _save_state(prompt: str, branch: str, session: str, worktree: str, model: str, port: int) -> None:
    try:
        manager = StateManager()
    except RuntimeError as exc:
        log.error("Could not create state manager: %s", exc)
        return
    try:
        manager.save_state(prompt, branch, session, worktree, model, port)
    except (OSError, StateError) as exc:
        log.error("Error saving state: %s", exc)


class _Launcher:
    """Starts agent sessions one by one, keeping dev-server ports apart."""

    def __init__(self, config: Config, prompt_text: str) -> None:
        self.config = config
        self.prompt_text = prompt_text
        self.assigned_ports: list[int] = []

    @property
    def dev_enabled(self) -> bool:
        return bool(self.config.dev_command) and bool(self.config.port_range)

    def launch(self, agent: str, agent_config: AgentConfig, index: int) -> None:
        random_name = get_random_agent()
        command = random_name if agent == "random" else agent_config.command
        print(f"{random_name}: {command}: {self.prompt_text}")

        try:
            git_hash = _git_output("rev-parse", "--short", "HEAD")
        except (OSError, subprocess.CalledProcessError) as exc:
            log.error("Error getting git hash: %s", exc)
            return
        try:
            remote_url = _git_output("remote", "get-url", "origin")
        except (OSError, subprocess.CalledProcessError) as exc:
            log.error("Error getting git remote: %s", exc)
            return
        project = _repo_name(remote_url)

        unique_id = f"{int(time.time())}-{index}"
        branch_name = f"{random_name}-{project}-{git_hash}-{unique_id}"
        session = f"agent-{project}-{git_hash}-{random_name}"

        try:
            worktrees_dir = data_dir() / "worktrees"
            worktrees_dir.mkdir(parents=True, exist_ok=True)
        except (RuntimeError, OSError) as exc:
            log.error("Error creating worktrees directory: %s", exc)
            return
        worktree = str(worktrees_dir / branch_name)

        if not _run_quiet(["git", "worktree", "add", "-b", branch_name, worktree]):
            log.error("Error creating git worktree %s", worktree)
            return

        notes = Path(_WORKER_NOTES)
        if notes.exists():
            try:
                shutil.copyfile(notes, Path(worktree) / _AGENT_NOTES)
                log.debug("Copied %s to worktree", _WORKER_NOTES)
            except OSError as exc:
                log.warning("Failed to copy %s: %s", _WORKER_NOTES, exc)

        if not _run_quiet(["tmux", "new-session", "-d", "-s", session, "-c", worktree]):
            log.error("Error creating tmux session %s", session)
            return
        if not _run_quiet(["tmux", "rename-window", "-t", f"{session}:0", "agent"]):
            log.error("Error renaming tmux window of %s", session)
            return

        agent_target = f"{session}:agent"
        agent_keys = f'{command} "{self.prompt_text}"'

        if not self.dev_enabled:
            if not _run_quiet(["tmux", "send-keys", "-t", agent_target, "C-m"]):
                log.error("Error hitting enter in tmux session %s", session)
            if not _run_quiet(["tmux", "send-keys", "-t", agent_target, agent_keys, "C-m"], cwd=worktree):
                log.error("Error sending keys to tmux session %s", session)
                return
            _save_state(self.prompt_text, branch_name, session, worktree, command, 0)
            return

        port_range = self.config.port_range or ""
        try:
            start, end = parse_port_range(port_range)
        except ValueError as exc:
            log.warning("%s", exc)
            return
        try:
            port = find_available_port(start, end, self.assigned_ports)
        except RuntimeError as exc:
            log.error("Error finding available port: %s", exc)
            return

        dev_command = (self.config.dev_command or "").replace("$PORT", str(port), 1)
        if not _run_quiet(["tmux", "new-window", "-t", session, "-n", "uzi-dev", "-c", worktree]):
            log.error("Error creating new tmux window for dev server in %s", session)
            return
        if not _run_quiet(["tmux", "send-keys", "-t", f"{session}:uzi-dev", dev_command, "C-m"]):
            log.error("Error sending dev command to tmux session %s", session)
        if not _run_quiet(["tmux", "send-keys", "-t", agent_target, "C-m"]):
            log.error("Error hitting enter in tmux session %s", session)

        self.assigned_ports.append(port)

        marker = Path(worktree) / _MARKER_FILE
        if marker.exists():
            try:
                marker.unlink()
                log.debug("Cleared marker file %s", marker)
            except OSError as exc:
                log.warning("Failed to remove marker file %s: %s", marker, exc)

        if not _run_quiet(["tmux", "send-keys", "-t", agent_target, agent_keys, "C-m"], cwd=worktree):
            log.error("Error sending keys to tmux session %s", session)
            return
        _save_state(self.prompt_text, branch_name, session, worktree, command, port)


def execute_prompt(args: Sequence[str]) -> None:
    """Start the requested agents on the prompt given in ``args``."""
    options = _parse_args(args)
    if not options.prompt:
        raise ValueError("prompt argument is required")

    config = _load_config(options.config)
    if not config.dev_command:
        log.info("Dev command not set in config, skipping dev server startup.")
    if not config.port_range:
        log.info("Port range not set in config, skipping dev server startup.")

    prompt_text = " ".join(options.prompt)
    log.debug("Running prompt command: %s", prompt_text)

    try:
        agent_configs = parse_agents(options.agents)
    except ValueError as exc:
        raise ValueError(f"error parsing agents: {exc}") from exc

    launcher = _Launcher(config, prompt_text)
    for agent, agent_config in agent_configs.items():
        for index in range(agent_config.count):
            launcher.launch(agent, agent_config, index)