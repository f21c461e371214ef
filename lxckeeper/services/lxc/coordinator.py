"""Shared plumbing for the backup, restore, snapshot and conversion engines."""
from typing import Callable, Optional

from lxckeeper.core.config import KeeperConfig, load_config
from lxckeeper.core.errors import AbortedError, NotFoundError
from lxckeeper.core.logger import get_logger
from lxckeeper.core.notifications import PRIORITY_ALERT, PRIORITY_NORMAL, Notifier
from lxckeeper.core.pipeline import PipelineEngine
from lxckeeper.core.registry import OperationRegistry
from lxckeeper.models.operation import Operation, OperationOutcome
from .base import RuntimeBackend
from .config_file import ContainerConfig, ContainerIndex

logger = get_logger(__name__)


class Coordinator:
    """Base class holding the collaborators every engine needs.

    Args:
        runtime: Runtime control surface
        registry: Shared operation registry
        notifier: Notification sink
        config_provider: Callable returning a fresh KeeperConfig per call
        pipeline: Archive pipeline engine
    """

    def __init__(
        self,
        runtime: RuntimeBackend,
        registry: OperationRegistry,
        notifier: Optional[Notifier] = None,
        config_provider: Optional[Callable[[], KeeperConfig]] = None,
        pipeline: Optional[PipelineEngine] = None,
    ):
        self.runtime = runtime
        self.registry = registry
        self.notifier = notifier or Notifier()
        self.config_provider = config_provider or load_config
        self.pipeline = pipeline or PipelineEngine()

    def load_config(self) -> KeeperConfig:
        return self.config_provider()

    def container_config(self, name: str) -> ContainerConfig:
        return ContainerConfig.for_container(self.runtime.lxc_path, name)

    def index(self) -> ContainerIndex:
        return ContainerIndex(self.runtime.lxc_path)

    def require_container(self, name: str) -> None:
        if not self.runtime.exists(name):
            raise NotFoundError(f"Container {name} does not exist")

    def is_running(self, name: str) -> bool:
        return self.runtime.is_running(name)

    @staticmethod
    def check_cancel(operation: Operation, what: str) -> None:
        """Cancellation point between forward steps."""
        if operation.cancel_requested:
            raise AbortedError(f"{what} aborted by user")

    def assign_index(self, name: str) -> None:
        """Give a new container the next ordering index (best effort)."""
        try:
            self.index().assign_next(name, self.runtime.list_containers())
        except Exception as e:
            logger.warning(f"Could not assign index to {name}: {e}")

    def finish(
        self,
        operation: Operation,
        title: str,
        success_message: str,
        error: Optional[BaseException] = None,
        failure_message: Optional[str] = None,
    ) -> OperationOutcome:
        """Release the slot, notify the sink and build the task's outcome."""
        self.registry.release(operation.container, operation)

        if error is None:
            self.notifier.notify(title, success_message, PRIORITY_NORMAL)
            return OperationOutcome(operation.container, operation.kind, True, success_message)

        message = f"{failure_message}: {error}" if failure_message else str(error)
        self.notifier.notify(title, message, PRIORITY_ALERT)
        return OperationOutcome(operation.container, operation.kind, False, message, error)
