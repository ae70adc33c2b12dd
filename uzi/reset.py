"""The reset command: delete every piece of stored data."""

from __future__ import annotations

import logging
import shutil
import sys
from collections.abc import Sequence

from uzi.state import data_dir

log = logging.getLogger(__name__)


def execute_reset(args: Sequence[str] = ()) -> None:
    """Ask for confirmation, then remove the data directory."""
    try:
        path = data_dir()
    except RuntimeError as exc:
        raise RuntimeError(f"could not get user home directory: {exc}") from exc

    if not path.exists() and not path.is_symlink():
        log.debug("Data directory does not exist: %s", path)
        print("No uzi data found to reset")
        return

    print(f"This will permanently delete all uzi data from {path}")
    print("Are you sure you want to continue? (y/N): ", end="", flush=True)

    line = sys.stdin.readline()
    if not line.endswith("\n"):
        raise RuntimeError("failed to read user input: EOF")

    response = line.strip().lower()
    if response not in ("y", "yes"):
        print("Reset cancelled")
        return

    try:
        if path.is_dir() and not path.is_symlink():
            shutil.rmtree(path)
        else:
            path.unlink()
    except OSError as exc:
        log.error("Error removing data directory %s: %s", path, exc)
        raise RuntimeError(f"failed to remove uzi data directory: {exc}") from exc

    log.debug("Removed data directory %s", path)
    print(f"Successfully reset all uzi data from {path}")