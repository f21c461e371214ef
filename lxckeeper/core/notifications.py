"""Best-effort status notifications over the host notify socket."""
import json
import socket
from typing import List, Tuple

from lxckeeper.core.config import DEFAULT_NOTIFY_SOCKET
from lxckeeper.core.errors import NotificationError
from lxckeeper.core.logger import get_logger

logger = get_logger(__name__)

PRIORITY_NORMAL = "normal"
PRIORITY_ALERT = "alert"


class Notifier:
    """Fire-and-forget delivery of (title, message, priority) triples.

    Delivery failures are logged and swallowed; they never change the
    outcome of the operation that produced the message.
    """

    def __init__(self, socket_path: str = DEFAULT_NOTIFY_SOCKET, timeout: float = 1.0, mock: bool = False):
        self.socket_path = socket_path
        self.timeout = timeout
        self.mock = mock

    def notify(self, title: str, message: str, priority: str = PRIORITY_NORMAL) -> bool:
        """Send a notification.

        Returns:
            True if delivered, False otherwise
        """
        if priority == PRIORITY_ALERT:
            logger.warning(f"{title}: {message}")
        else:
            logger.info(f"{title}: {message}")

        if self.mock:
            return True

        try:
            self._send(title, message, priority)
            return True
        except NotificationError as e:
            logger.debug(f"Notification not delivered: {e}")
            return False

    def _send(self, title: str, message: str, priority: str) -> None:
        payload = json.dumps({'title': title, 'message': message, 'priority': priority})
        try:
            with socket.socket(socket.AF_UNIX, socket.SOCK_STREAM) as client:
                client.settimeout(self.timeout)
                client.connect(self.socket_path)
                client.sendall(payload.encode('utf-8'))
        except OSError as e:
            raise NotificationError(f"{self.socket_path}: {e}") from e


class RecordingNotifier(Notifier):
    """Notifier that keeps messages in memory (used for dry runs and tests)."""

    def __init__(self):
        super().__init__(mock=True)
        self.messages: List[Tuple[str, str, str]] = []

    def notify(self, title: str, message: str, priority: str = PRIORITY_NORMAL) -> bool:
        self.messages.append((title, message, priority))
        return super().notify(title, message, priority)
