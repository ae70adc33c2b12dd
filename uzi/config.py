"""Project configuration read from a YAML file."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml


@dataclass
class Config:
    """Settings for starting a dev server next to each agent."""

    dev_command: str | None = None
    port_range: str | None = None


def default_config() -> Config:
    """Return a configuration with nothing set."""
    return Config()


def _optional_str(value: Any, key: str) -> str | None:
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (str, int, float)):
        return str(value)
    raise ValueError(f"config value {key!r} must be a scalar")


def load_config(path: str | os.PathLike[str]) -> Config:
    """Load the configuration stored at ``path``.

    Raises OSError when the file cannot be read, yaml.YAMLError when it is
    not valid YAML and ValueError when it does not hold a mapping.
    """
    text = Path(path).read_text(encoding="utf-8")
    data = yaml.safe_load(text)
    if data is None:
        return Config()
    if not isinstance(data, dict):
        raise ValueError(f"config file {path} must contain a mapping")
    return Config(
        dev_command=_optional_str(data.get("devCommand"), "devCommand"),
        port_range=_optional_str(data.get("portRange"), "portRange"),
    )


def get_default_config_path() -> str:
    """Return the path of the config file used when none is given."""
    return "uzi.yaml"