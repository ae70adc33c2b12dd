import json
import socket
import threading
import time
from datetime import datetime, timezone
from urllib.error import HTTPError
from urllib.request import Request, urlopen

import pytest

from uzi.notification import (
    Notification,
    NotificationClient,
    NotificationError,
    NotificationServer,
    NotificationType,
)


@pytest.fixture
def server():
    srv = NotificationServer(0)
    srv.start()
    yield srv
    srv.stop()


def _free_port():
    with socket.socket() as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def _status(request):
    try:
        with urlopen(request, timeout=5) as response:
            return response.status, response.read()
    except HTTPError as exc:
        body = exc.read()
        exc.close()
        return exc.code, body


def test_server_client(server):
    client = NotificationClient(server.port, "test-session", "test-agent")
    client.check_health()
    client.notify_complete("Test task completed")
    client.notify_error("Test error occurred", None)
    client.notify_progress("Test in progress", 75)

    count, logs = server.get_stats()
    assert count == 3
    assert [n.type for n in logs] == [
        NotificationType.COMPLETE,
        NotificationType.ERROR,
        NotificationType.PROGRESS,
    ]
    assert logs[0].session_name == "test-session"
    assert logs[0].agent_name == "test-agent"


def test_notification_channel(server):
    client = NotificationClient(server.port, "channel-test", "test-agent")

    def send():
        time.sleep(0.05)
        client.notify_complete("Channel test")

    thread = threading.Thread(target=send)
    thread.start()
    notification = server.get_notification(timeout=1)
    thread.join()
    assert notification.type == NotificationType.COMPLETE
    assert notification.session_name == "channel-test"
    assert notification.message == "Channel test"


def test_get_notification_times_out(server):
    with pytest.raises(TimeoutError):
        server.get_notification(timeout=0.05)


def test_error_metadata_carries_error_text(server):
    client = NotificationClient(server.port, "s", "a")
    client.notify_error("failed", ValueError("boom"))
    _, logs = server.get_stats()
    assert logs[0].metadata == {"error": "boom"}


def test_error_without_error_has_no_metadata(server):
    client = NotificationClient(server.port, "s", "a")
    client.notify_error("failed", None)
    _, logs = server.get_stats()
    assert logs[0].metadata is None


def test_progress_metadata(server):
    client = NotificationClient(server.port, "s", "a")
    client.notify_progress("half", 75)
    _, logs = server.get_stats()
    assert logs[0].metadata == {"progress": 75}


def test_stats_returns_copy(server):
    client = NotificationClient(server.port, "s", "a")
    client.notify_complete("one")
    _, logs = server.get_stats()
    logs.clear()
    count, again = server.get_stats()
    assert count == 1
    assert len(again) == 1


def test_get_on_notify_is_rejected(server):
    status, body = _status(Request(f"http://127.0.0.1:{server.port}/notify"))
    assert status == 405
    assert body == b"Method not allowed\n"


def test_invalid_json_is_rejected(server):
    request = Request(
        f"http://127.0.0.1:{server.port}/notify", data=b"{not json", method="POST"
    )
    status, body = _status(request)
    assert status == 400
    assert body == b"Invalid JSON\n"
    assert server.get_stats()[0] == 0


def test_unknown_path_is_not_found(server):
    status, _ = _status(Request(f"http://127.0.0.1:{server.port}/other"))
    assert status == 404


def test_health_reports_count(server):
    NotificationClient(server.port, "s", "a").notify_complete("done")
    status, body = _status(Request(f"http://127.0.0.1:{server.port}/health"))
    payload = json.loads(body)
    assert status == 200
    assert payload["status"] == "healthy"
    assert payload["notifications_received"] == 1


def test_missing_timestamp_is_filled_in(server):
    request = Request(
        f"http://127.0.0.1:{server.port}/notify",
        data=json.dumps({"session_name": "s", "type": "complete"}).encode(),
        method="POST",
    )
    status, body = _status(request)
    assert status == 200
    assert json.loads(body) == {"status": "received"}
    _, logs = server.get_stats()
    assert logs[0].timestamp is not None
    assert logs[0].timestamp.year > 1


def test_full_queue_answers_busy(server):
    client = NotificationClient(server.port, "s", "a")
    for index in range(100):
        client.notify_complete(f"message {index}")
    with pytest.raises(NotificationError, match="503"):
        client.notify_complete("one too many")
    assert server.get_stats()[0] == 101


def test_client_without_server_fails():
    client = NotificationClient(_free_port(), "s", "a")
    with pytest.raises(NotificationError, match="health check failed"):
        client.check_health()
    with pytest.raises(NotificationError, match="failed to send notification"):
        client.notify_complete("done")


def test_stopped_server_no_longer_answers():
    srv = NotificationServer(0)
    srv.start()
    port = srv.port
    srv.stop()
    with pytest.raises(NotificationError):
        NotificationClient(port, "s", "a").check_health()


def test_context_manager_serves():
    with NotificationServer(0) as srv:
        NotificationClient(srv.port, "s", "a").notify_complete("done")
        assert srv.get_stats()[0] == 1


def test_round_trip():
    notification = Notification(
        session_name="s",
        agent_name="a",
        type=NotificationType.PROGRESS,
        message="m",
        timestamp=datetime(2024, 5, 6, 7, 8, 9, 123456, tzinfo=timezone.utc),
        metadata={"progress": 10},
    )
    data = notification.to_dict()
    assert data["timestamp"] == "2024-05-06T07:08:09.123456Z"
    assert data["type"] == "progress"
    assert Notification.from_dict(json.loads(json.dumps(data))) == notification


def test_empty_metadata_is_omitted():
    notification = Notification("s", "a", NotificationType.ERROR, "m", metadata={})
    assert "metadata" not in notification.to_dict()


def test_zero_timestamp_serialises_like_zero_time():
    notification = Notification("s", "a", NotificationType.COMPLETE, "m")
    assert notification.to_dict()["timestamp"] == "0001-01-01T00:00:00Z"


def test_from_dict_parses_nanoseconds():
    notification = Notification.from_dict(
        {"type": "complete", "timestamp": "2024-01-02T03:04:05.123456789Z"}
    )
    assert notification.timestamp == datetime(
        2024, 1, 2, 3, 4, 5, 123456, tzinfo=timezone.utc
    )


def test_from_dict_keeps_unknown_type():
    notification = Notification.from_dict({"type": "custom"})
    assert notification.type == "custom"


@pytest.mark.parametrize(
    "data",
    [[], "text", {"session_name": 5}, {"metadata": [1]}, {"timestamp": "yesterday"}],
)
def test_from_dict_rejects_malformed(data):
    with pytest.raises(ValueError):
        Notification.from_dict(data)