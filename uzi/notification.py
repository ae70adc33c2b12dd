"""HTTP notifications sent from agent workers to a managing process."""

from __future__ import annotations

import json
import logging
import queue
import re
import socketserver
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any
from urllib.error import HTTPError, URLError
from urllib.parse import urlsplit
from urllib.request import Request, urlopen

from uzi.state import ZERO_TIME

log = logging.getLogger(__name__)

_CLIENT_TIMEOUT = 5.0
_SEND_TIMEOUT = 3.0
_HEALTH_TIMEOUT = 2.0
_QUEUE_SIZE = 100

_TIME_RE = re.compile(
    r"^(\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2})(?:\.(\d+))?(Z|[+-]\d{2}:\d{2})$"
)


class NotificationType(str, Enum):
    """The kinds of notification a worker can send."""

    COMPLETE = "complete"
    ERROR = "error"
    PROGRESS = "progress"

    def __str__(self) -> str:
        return self.value


class NotificationError(Exception):
    """Raised when a notification or health check cannot be delivered."""


def _now() -> datetime:
    return datetime.now().astimezone()


def _format_time(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.astimezone()
    text = value.isoformat()
    if value.utcoffset() == timedelta(0) and text.endswith("+00:00"):
        text = text[: -len("+00:00")] + "Z"
    return text


def _parse_time(value: Any) -> datetime:
    if not isinstance(value, str):
        raise ValueError("timestamp must be a string")
    match = _TIME_RE.match(value)
    if match is None:
        raise ValueError(f"invalid timestamp: {value!r}")
    base, fraction, zone = match.groups()
    if zone == "Z":
        zone = "+00:00"
    text = base
    if fraction:
        text += "." + fraction[:6].ljust(6, "0")
    return datetime.fromisoformat(text + zone)


def _string_field(data: dict[str, Any], key: str) -> str:
    value = data.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValueError(f"field {key!r} must be a string")
    return value


@dataclass
class Notification:
    """One message from a worker about its task."""

    session_name: str
    agent_name: str
    type: NotificationType | str
    message: str
    timestamp: datetime | None = None
    metadata: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON form sent over the wire."""
        data: dict[str, Any] = {
            "session_name": self.session_name,
            "agent_name": self.agent_name,
            "type": str(self.type),
            "message": self.message,
            "timestamp": _format_time(self.timestamp or ZERO_TIME),
        }
        if self.metadata:
            data["metadata"] = dict(self.metadata)
        return data

    @classmethod
    def from_dict(cls, data: Any) -> Notification:
        """Build a notification from its JSON form; raise ValueError if malformed."""
        if not isinstance(data, dict):
            raise ValueError("notification must be a JSON object")
        kind = _string_field(data, "type")
        try:
            parsed_type: NotificationType | str = NotificationType(kind)
        except ValueError:
            parsed_type = kind
        raw_time = data.get("timestamp")
        metadata = data.get("metadata")
        if metadata is not None and not isinstance(metadata, dict):
            raise ValueError("field 'metadata' must be an object")
        return cls(
            session_name=_string_field(data, "session_name"),
            agent_name=_string_field(data, "agent_name"),
            type=parsed_type,
            message=_string_field(data, "message"),
            timestamp=None if raw_time is None else _parse_time(raw_time),
            metadata=metadata,
        )


class NotificationClient:
    """Sends notifications about one agent session to the manager."""

    def __init__(self, manager_port: int, session_name: str, agent_name: str) -> None:
        self.manager_url = f"http://localhost:{manager_port}"
        self.session_name = session_name
        self.agent_name = agent_name
        self.timeout = _CLIENT_TIMEOUT

    def notify_complete(self, message: str) -> None:
        """Report that the task is done."""
        self._send(NotificationType.COMPLETE, message, None)

    def notify_error(self, message: str, error: object = None) -> None:
        """Report a failure, attaching the error text when there is one."""
        metadata: dict[str, Any] = {}
        if error is not None:
            metadata["error"] = str(error)
        self._send(NotificationType.ERROR, message, metadata)

    def notify_progress(self, message: str, progress: int) -> None:
        """Report how far the task has got."""
        self._send(NotificationType.PROGRESS, message, {"progress": progress})

    def _status_of(self, request: Request, timeout: float, failure: str) -> int:
        try:
            with urlopen(request, timeout=min(timeout, self.timeout)) as response:
                return response.status
        except HTTPError as exc:
            exc.close()
            return exc.code
        except (URLError, OSError) as exc:
            raise NotificationError(f"{failure}: {exc}") from exc

    def _send(
        self,
        kind: NotificationType,
        message: str,
        metadata: dict[str, Any] | None,
    ) -> None:
        notification = Notification(
            session_name=self.session_name,
            agent_name=self.agent_name,
            type=kind,
            message=message,
            timestamp=_now(),
            metadata=metadata,
        )
        body = json.dumps(notification.to_dict()).encode("utf-8")
        request = Request(
            self.manager_url + "/notify",
            data=body,
            method="POST",
            headers={"Content-Type": "application/json"},
        )
        status = self._status_of(request, _SEND_TIMEOUT, "failed to send notification")
        if status != 200:
            raise NotificationError(f"notification rejected with status: {status}")
        log.debug(
            "Notification sent successfully type=%s session=%s agent=%s",
            kind, self.session_name, self.agent_name,
        )

    def check_health(self) -> None:
        """Raise NotificationError unless the manager's server answers healthy."""
        request = Request(self.manager_url + "/health", method="GET")
        status = self._status_of(request, _HEALTH_TIMEOUT, "health check failed")
        if status != 200:
            raise NotificationError(f"health check returned status: {status}")


class _HTTPServer(ThreadingHTTPServer):
    daemon_threads = True

    def server_bind(self) -> None:
        socketserver.TCPServer.server_bind(self)
        self.server_name = "localhost"
        self.server_port = self.server_address[1]


class NotificationServer:
    """Receives notifications from workers over HTTP."""

    def __init__(self, port: int) -> None:
        self.port = port
        self._queue: queue.Queue[Notification] = queue.Queue(maxsize=_QUEUE_SIZE)
        self._lock = threading.Lock()
        self._received_count = 0
        self._log: list[Notification] = []
        self._httpd: _HTTPServer | None = None
        self._thread: threading.Thread | None = None

    def __enter__(self) -> NotificationServer:
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop()

    def start(self) -> None:
        """Bind the port and serve requests in a background thread."""
        if self._httpd is not None:
            return
        log.info("Starting notification server on port %d", self.port)
        self._httpd = _HTTPServer(("", self.port), _make_handler(self))
        self.port = self._httpd.server_address[1]
        self._thread = threading.Thread(
            target=self._httpd.serve_forever, name="notification-server", daemon=True
        )
        self._thread.start()

    def stop(self) -> None:
        """Stop serving and release the port."""
        if self._httpd is None:
            return
        log.info("Shutting down notification server")
        self._httpd.shutdown()
        self._httpd.server_close()
        if self._thread is not None:
            self._thread.join(timeout=5)
        self._httpd = None
        self._thread = None

    def get_notification(self, timeout: float | None = None) -> Notification:
        """Return the next received notification, waiting up to ``timeout`` seconds.

        Raises TimeoutError when none arrives in time.
        """
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            raise TimeoutError("no notification received") from None

    def get_stats(self) -> tuple[int, list[Notification]]:
        """Return how many notifications arrived and a copy of them in order."""
        with self._lock:
            return self._received_count, list(self._log)

    def _record(self, notification: Notification) -> bool:
        if notification.timestamp is None or notification.timestamp == ZERO_TIME:
            notification.timestamp = _now()
        with self._lock:
            self._received_count += 1
            self._log.append(notification)
        log.info(
            "Received notification type=%s session=%s agent=%s message=%s",
            notification.type, notification.session_name,
            notification.agent_name, notification.message,
        )
        try:
            self._queue.put_nowait(notification)
        except queue.Full:
            log.warning("Notification queue full, dropping notification")
            return False
        return True

    def _health(self) -> dict[str, Any]:
        with self._lock:
            count = self._received_count
        return {
            "status": "healthy",
            "notifications_received": count,
            "timestamp": _format_time(_now()),
        }


def _make_handler(owner: NotificationServer) -> type[BaseHTTPRequestHandler]:
    class Handler(BaseHTTPRequestHandler):
        def log_message(self, format: str, *args: Any) -> None:
            log.debug("%s - %s", self.address_string(), format % args)

        def _send_json(self, status: int, payload: Any) -> None:
            body = (json.dumps(payload) + "\n").encode("utf-8")
            self.send_response(status)
            self.send_header("Content-Type", "application/json")
            self.send_header("Content-Length", str(len(body)))
            self.end_headers()
            self.wfile.write(body)

        def _send_text_error(self, status: int, text: str) -> None:
            body = (text + "\n").encode("utf-8")
            self.send_response(status)
            self.send_header("Content-Type", "text/plain; charset=utf-8")
            self.send_header("X-Content-Type-Options", "nosniff")
            self.send_header("Content-Length", str(len(body)))
            self.end_headers()
            self.wfile.write(body)

        def _read_body(self) -> bytes:
            length = int(self.headers.get("Content-Length") or 0)
            return self.rfile.read(length) if length > 0 else b""

        def _notify(self) -> None:
            if self.command != "POST":
                self._send_text_error(405, "Method not allowed")
                return
            try:
                notification = Notification.from_dict(json.loads(self._read_body()))
            except ValueError:
                self._send_text_error(400, "Invalid JSON")
                return
            if owner._record(notification):
                self._send_json(200, {"status": "received"})
            else:
                self._send_text_error(503, "Server busy")

        def _dispatch(self) -> None:
            path = urlsplit(self.path).path
            if path == "/notify":
                self._notify()
            elif path == "/health":
                self._send_json(200, owner._health())
            else:
                self._send_text_error(404, "404 page not found")

        do_GET = do_POST = do_PUT = do_DELETE = do_PATCH = do_OPTIONS = _dispatch

    return Handler