"""Per-container operation slots.

Prevents two lifecycle operations (backup, restore, conversion, snapshot
restore/clone) from running against the same container at the same time.
"""
import threading
from typing import Callable, Dict, List, Optional

from lxckeeper.core.errors import ConflictError, NotFoundError
from lxckeeper.core.logger import get_logger
from lxckeeper.models.operation import Operation, OperationKind

logger = get_logger(__name__)


class OperationRegistry:
    """In-memory map of container name -> active Operation.

    Entries are never persisted; they vanish with the process.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._operations: Dict[str, Operation] = {}

    def acquire(
        self,
        container: str,
        kind: OperationKind,
        cancel_hook: Optional[Callable[[], None]] = None,
        **details,
    ) -> Operation:
        """Claim the container's slot.

        Args:
            container: Container name
            kind: Operation kind
            cancel_hook: Called when cancellation is requested
            **details: Extra metadata exposed through status queries

        Returns:
            The newly registered Operation

        Raises:
            ConflictError: If another operation holds the slot
        """
        with self._lock:
            current = self._operations.get(container)
            if current is not None:
                raise ConflictError(
                    f"{current.kind.value} already in progress for container {container} "
                    f"(since {current.started_at.isoformat(timespec='seconds')})"
                )
            operation = Operation(
                container=container,
                kind=kind,
                cancel_hook=cancel_hook,
                details=dict(details),
            )
            self._operations[container] = operation

        logger.debug(f"Acquired {kind.value} slot for {container}")
        return operation

    def release(self, container: str, operation: Optional[Operation] = None) -> None:
        """Free the container's slot.

        When operation is given, the slot is only freed if it still belongs
        to that operation.
        """
        with self._lock:
            current = self._operations.get(container)
            if current is None:
                return
            if operation is not None and current is not operation:
                logger.warning(f"Slot for {container} is held by another operation, not releasing")
                return
            del self._operations[container]

        logger.debug(f"Released {current.kind.value} slot for {container}")

    def get(self, container: str) -> Optional[Operation]:
        with self._lock:
            return self._operations.get(container)

    def active(self) -> List[Operation]:
        """Snapshot of all active operations, sorted by container name."""
        with self._lock:
            return sorted(self._operations.values(), key=lambda op: op.container)

    def request_cancel(self, container: str) -> Operation:
        """Ask the container's operation to stop at its next cancellation point.

        Raises:
            NotFoundError: If no operation is active for the container
        """
        with self._lock:
            operation = self._operations.get(container)
        if operation is None:
            raise NotFoundError(f"No active operation for container {container}")

        logger.info(f"Cancellation requested for {operation.kind.value} of {container}")
        operation.request_cancel()
        return operation

    def ensure_idle(self, container: str, action: str) -> None:
        """Raise ConflictError if any operation is active on the container."""
        operation = self.get(container)
        if operation is not None:
            raise ConflictError(
                f"Cannot {action}: {operation.kind.value} operation in progress on {container}"
            )
