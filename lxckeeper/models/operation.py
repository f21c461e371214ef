"""In-flight operation records and the tickets handed back to callers."""
import threading
from concurrent.futures import Future
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Optional


class OperationKind(str, Enum):
    """Kinds of lifecycle operation that hold a container's slot."""
    BACKUP = "backup"
    RESTORE = "restore"
    CONVERT_STORAGE = "convert-storage"
    SNAPSHOT_RESTORE = "snapshot-restore"
    SNAPSHOT_CLONE = "snapshot-clone"


@dataclass
class Operation:
    """Ephemeral metadata for the single operation running on a container."""
    container: str
    kind: OperationKind
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    cancel_hook: Optional[Callable[[], None]] = None
    details: Dict[str, Any] = field(default_factory=dict)
    _cancel_event: threading.Event = field(default_factory=threading.Event, repr=False)

    @property
    def cancel_requested(self) -> bool:
        return self._cancel_event.is_set()

    def request_cancel(self) -> None:
        """Flag the operation as cancelled and fire the coordinator's hook."""
        self._cancel_event.set()
        if self.cancel_hook is not None:
            self.cancel_hook()

    def to_dict(self) -> Dict[str, Any]:
        return {
            'container': self.container,
            'kind': self.kind.value,
            'started_at': self.started_at.isoformat(),
            'cancel_requested': self.cancel_requested,
            **self.details,
        }


@dataclass
class OperationOutcome:
    """Terminal result of a background operation (the task handle's value)."""
    container: str
    kind: OperationKind
    success: bool
    message: str
    error: Optional[BaseException] = None


@dataclass
class Ticket:
    """Synchronous acknowledgement that a background operation was accepted."""
    container: str
    task: Future = field(repr=False)
    accepted: bool = True

    def wait(self, timeout: Optional[float] = None) -> OperationOutcome:
        """Block until the background work finishes."""
        return self.task.result(timeout=timeout)

    def to_dict(self) -> Dict[str, Any]:
        data = {k: v for k, v in self.__dict__.items() if k != 'task'}
        return data


@dataclass
class BackupTicket(Ticket):
    backup_file: str = ""
    use_snapshot: bool = False
    is_cow: bool = False
    was_running: bool = False
    allow_running: bool = False


@dataclass
class RestoreTicket(Ticket):
    source: str = ""
    backup_file: str = ""
    target_exists: bool = False
    was_running: bool = False


@dataclass
class ConvertTicket(Ticket):
    was_running: bool = False


@dataclass
class SnapshotTicket(Ticket):
    snapshot: str = ""
    new_name: Optional[str] = None
    was_running: bool = False
