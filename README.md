# uzi

`uzi` runs several coding agents side by side. Each agent gets its own git
branch and worktree under `~/.local/share/uzi/worktrees` and its own tmux
session named `agent-<project>-<hash>-<name>`, where `<name>` is picked at
random from a built-in list of names. You can then list the agents, type
messages into them, run commands in all of them, and rebase a finished
agent's work into your current branch.

It needs `git` and `tmux` on your `PATH`. Run it from inside a git
repository that has an `origin` remote. What is known about each session is
kept in `~/.local/share/uzi/state.json`.

## Installation

```
pip install .
```

For the tests:

```
pip install ".[test]"
pytest
```

## Commands

```
uzi prompt --agents=claude:2,codex:1 "Add input validation to the form"
uzi ls              # list active agents (-d for detail, -w to refresh)
uzi broadcast "Please also add tests"
uzi run "npm test"  # run a command in a new window of every agent session
uzi run --delete "git status"
uzi checkpoint john "Add input validation"
uzi kill john       # or: uzi kill all
uzi auto            # press Enter automatically at confirmation prompts
uzi reset           # delete everything under ~/.local/share/uzi
```

- `prompt` starts `COUNT` sessions for each `AGENT:COUNT` pair in `--agents`
  (default `claude:1`) and types `<agent> "<prompt>"` into the `agent` window
  of each. Use `random` as the agent name to run a randomly chosen name as the
  command. If `CLAUDE-WORKER.md` exists in the current directory it is copied
  into the new worktree as `CLAUDE.md`.
- `ls` lists the active sessions of the current repository, most recently
  updated first, with model, status, uncommitted line counts and dev-server
  address. `-d` shows a detailed table with status icons, changed-file counts
  and the last changed file; `-w` redraws the list every 5 seconds until
  interrupted.
- `broadcast` types the message into the `agent` window of every active
  session and presses Enter.
- `run` opens a new tmux window in every active session, runs the command
  there, prints what the pane shows, and with `--delete` closes the window
  again.
- `checkpoint` stages and commits everything in the agent's worktree with the
  given message, then runs `git rebase <agent-branch>` in the current
  directory and records the session as merged.
- `kill` ends the agent's tmux session, removes its worktree directory and
  state entry; `kill all` does so for every active session.
- `auto` checks each agent pane every half second and presses Enter when it
  shows a trust or continuation prompt (for example `Press Enter to continue`
  or `Do you want to proceed?`). It stops on Ctrl-C or SIGTERM.
- `reset` asks for confirmation and then deletes `~/.local/share/uzi`.

Commands may be shortened: `p`/`pro` for `prompt`, `l` for `ls`, `k` for
`kill`, `re` for `reset`, `r` for `run`, `c` for `checkpoint`, `b` for
`broadcast`.

`uzi` exits with status 0 on success, 1 when a command fails (the error is
printed as `uzi: error: ...`), 2 for an unknown option before the command,
and 130 when interrupted.

## Configuration

`uzi prompt` reads `uzi.yaml` in the current directory, or the file given
with `--config`:

```yaml
devCommand: npm run dev -- --port $PORT
portRange: 3000-3010
```

When both are set, each agent gets the first free port in the range that no
other agent of the same run has taken. A `uzi-dev` tmux window then runs
`devCommand` in that agent's session, with the first `$PORT` replaced by the
port, and `uzi ls` shows `http://localhost:<port>` for the agent. When the
file is missing or unreadable, no dev server is started.

## Status

`uzi ls` reports each agent as one of these states, checked in this order:

- `error`: the agent's pane shows `Error:` or `error:`, or cannot be read
- `running`: the pane shows `esc to interrupt` or `Thinking`
- `merged`: the agent's work has been checkpointed
- `ready`: the agent has written a `.uzi-task-completed` marker in its worktree
- `idle`: none of the above

In the detailed view a session not updated for more than five minutes is
shown with a warning icon.

## Library use

The pieces behind the commands can be used directly, for example
`uzi.state.StateManager` for the session records,
`uzi.status.StatusManager` for status detection, and `uzi.prompt.parse_agents`
for the `--agents` syntax.

`uzi.notification` holds a small HTTP protocol for workers to report on
their task: `NotificationServer(port)` accepts JSON posts on `/notify` and
answers health checks on `/health`, and `NotificationClient(port, session,
agent)` sends `complete`, `error` and `progress` notifications to it.
`uzi.notify.execute_notify(args)` sends one notification from
command-line style arguments (`--session`, `--agent`, `--type`, `--port`,
message).

## Limitations

- There is no `uzi notify` command and nothing starts a notification server
  for you; the notification pieces are available only as library code.
- The abbreviations `w`/`watch` and `a`/`attach` are recognised but there is
  no command behind them, so they are reported as unknown commands.
- `uzi ls -a` is accepted but does not change the listing, and `--config` is
  accepted by `uzi ls` and `uzi run` without being read.