[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "uzi"
version = "0.1.0"
description = "Run several coding agents in parallel, each in its own git worktree and tmux session"
requires-python = ">=3.10"
keywords = ["agents", "tmux", "git", "worktree", "cli", "automation"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Console",
    "Intended Audience :: Developers",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development",
]
dependencies = [
    "pyyaml",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
uzi = "uzi.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["uzi"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
