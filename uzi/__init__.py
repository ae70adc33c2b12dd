"""Run and manage parallel coding agents in git worktrees and tmux sessions."""

__version__ = "0.1.0"