"""Command-line entry point dispatching to the uzi subcommands."""

from __future__ import annotations

import logging
import re
import sys
from collections.abc import Callable, Sequence
from typing import NamedTuple

from uzi.broadcast import execute_broadcast
from uzi.checkpoint import execute_checkpoint
from uzi.kill import execute_kill
from uzi.ls import execute_ls
from uzi.prompt import execute_prompt
from uzi.reset import execute_reset
from uzi.run import execute_run
from uzi.watch import execute_auto


class _Command(NamedTuple):
    short_help: str
    execute: Callable[[Sequence[str]], None]


_COMMANDS: dict[str, _Command] = {
    "prompt": _Command("Run the prompt command with specified agents and counts", execute_prompt),
    "ls": _Command("List active agent sessions", execute_ls),
    "kill": _Command("Delete tmux session and git worktree for the specified agent", execute_kill),
    "reset": _Command("Delete all data stored in ~/.local/share/uzi", execute_reset),
    "run": _Command("Run a command in all agent sessions", execute_run),
    "checkpoint": _Command(
        "Rebase changes from an agent worktree into the current worktree and commit",
        execute_checkpoint,
    ),
    "auto": _Command("Automatically manage active agent sessions", execute_auto),
    "broadcast": _Command("Send a message to all active agent sessions", execute_broadcast),
}

_ALIASES = {
    "prompt": re.compile(r"^p(ro(mpt)?)?$"),
    "ls": re.compile(r"^l(s)?$"),
    "kill": re.compile(r"^k(ill)?$"),
    "reset": re.compile(r"^re(set)?$"),
    "checkpoint": re.compile(r"^c(heckpoint)?$"),
    "run": re.compile(r"^r(un)?$"),
    "watch": re.compile(r"^w(atch)?$"),
    "broadcast": re.compile(r"^b(roadcast)?$"),
    "attach": re.compile(r"^a(ttach)?$"),
}

_HELP_FLAGS = {"-h", "-help", "--help", "--h"}


def resolve_alias(name: str) -> str:
    """Return the full command name for an abbreviation, or the name unchanged."""
    for command, pattern in _ALIASES.items():
        if pattern.match(name):
            return command
    return name


def _usage() -> str:
    width = max(len(name) for name in _COMMANDS)
    lines = ["USAGE", "  uzi <command>", "", "SUBCOMMANDS"]
    lines += [f"  {name.ljust(width)}  {cmd.short_help}" for name, cmd in _COMMANDS.items()]
    return "\n".join(lines) + "\n"


def _setup_logging() -> None:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")


def _error(message: object) -> int:
    print(f"uzi: error: {message}", file=sys.stderr)
    return 1


def main(argv: Sequence[str] | None = None) -> int:
    """Run the command named on the command line and return the exit status."""
    args = list(sys.argv[1:] if argv is None else argv)
    _setup_logging()

    if not args:
        print(_usage())
        return 0

    original = args[0]
    name = resolve_alias(original)

    if name in _HELP_FLAGS:
        print(_usage())
        return 0
    if name.startswith("-") and name not in ("-", "--"):
        print(f"flag provided but not defined: {name}")
        print(_usage())
        return 2

    command = _COMMANDS.get(name)
    if command is None:
        print(_usage())
        return _error(f'unknown command "{original}"')

    try:
        command.execute(args[1:])
    except SystemExit as exc:
        code = exc.code
        return code if isinstance(code, int) else (0 if code is None else 1)
    except KeyboardInterrupt:
        return 130
    except Exception as exc:
        return _error(exc)
    return 0


if __name__ == "__main__":
    sys.exit(main())