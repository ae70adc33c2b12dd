"""The notify command: tell the manager how an agent's task is going."""

from __future__ import annotations

import argparse
import logging
from collections.abc import Sequence

from uzi.notification import NotificationClient, NotificationError

log = logging.getLogger(__name__)


def _parse_args(args: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="uzi notify",
        usage="uzi notify --session=SESSION --agent=AGENT --type=TYPE [message]",
        description="Send a notification to the manager",
        allow_abbrev=False,
    )
    parser.add_argument("-session", "--session", default="", help="session name")
    parser.add_argument("-agent", "--agent", default="", help="agent name")
    parser.add_argument(
        "-type", "--type", dest="notif_type", default="complete",
        help="notification type (complete, error, progress)",
    )
    parser.add_argument(
        "-port", "--port", type=int, default=9999, help="manager notification port"
    )
    parser.add_argument("message", nargs=argparse.REMAINDER)
    return parser.parse_args(list(args))


def execute_notify(args: Sequence[str] = ()) -> None:
    """Send one notification described by the command-line ``args``."""
    options = _parse_args(args)
    if not options.session or not options.agent:
        raise ValueError("session and agent names are required")

    message = " ".join(options.message) if options.message else "Task completed"
    client = NotificationClient(options.port, options.session, options.agent)

    try:
        client.check_health()
    except NotificationError as exc:
        log.warning("Manager notification server may not be running: %s", exc)

    senders = {
        "complete": lambda: client.notify_complete(message),
        "error": lambda: client.notify_error(message, "agent error"),
        "progress": lambda: client.notify_progress(message, 50),
    }
    send = senders.get(options.notif_type)
    if send is None:
        raise ValueError(f"unknown notification type: {options.notif_type}")

    try:
        send()
    except NotificationError as exc:
        raise RuntimeError(f"failed to send notification: {exc}") from exc

    log.info(
        "Notification sent successfully type=%s session=%s agent=%s",
        options.notif_type, options.session, options.agent,
    )