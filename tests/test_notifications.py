"""Tests for the notification sink client."""
import json
import socket
import threading

from lxckeeper.core.notifications import PRIORITY_ALERT, Notifier, RecordingNotifier


def test_unreachable_socket_is_swallowed(tmp_path):
    notifier = Notifier(str(tmp_path / 'missing.sock'), timeout=0.1)

    assert notifier.notify("LXC Backup", "done") is False


def test_delivers_json_payload(tmp_path):
    # Keep the path short; AF_UNIX paths are limited to ~100 bytes
    sock_path = str(tmp_path / 'n.sock')
    server = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    server.bind(sock_path)
    server.listen(1)
    received = []

    def accept():
        conn, _ = server.accept()
        with conn:
            chunks = []
            while True:
                data = conn.recv(4096)
                if not data:
                    break
                chunks.append(data)
            received.append(b''.join(chunks))

    thread = threading.Thread(target=accept)
    thread.start()
    try:
        assert Notifier(sock_path).notify("LXC Restore", "failed", PRIORITY_ALERT) is True
        thread.join(timeout=5)
    finally:
        server.close()

    assert json.loads(received[0]) == {'title': 'LXC Restore', 'message': 'failed', 'priority': 'alert'}


def test_recording_notifier():
    notifier = RecordingNotifier()
    notifier.notify("LXC Snapshot", "cloned")
    assert notifier.messages == [("LXC Snapshot", "cloned", "normal")]
