"""Ordered compensating actions for multi-step operations.

Forward steps push the action that undoes them; on failure the stack is
unwound in reverse order. Actions flagged ``on_success`` are cleanups that
also run (in reverse order) when the operation completes normally.
"""
from dataclasses import dataclass
from typing import Callable, List

from lxckeeper.core.errors import KeeperError
from lxckeeper.core.logger import get_logger

logger = get_logger(__name__)


class CompensationError(KeeperError):
    """Raised when a required cleanup fails on the success path."""
    pass


@dataclass
class CompensatingAction:
    description: str
    action: Callable[[], None]
    on_success: bool = False
    required: bool = False


class Compensation:
    """Stack of compensating actions for one operation."""

    def __init__(self, label: str):
        self.label = label
        self._actions: List[CompensatingAction] = []

    def __len__(self) -> int:
        return len(self._actions)

    @property
    def pending(self) -> List[str]:
        return [a.description for a in self._actions]

    def push(
        self,
        description: str,
        action: Callable[[], None],
        on_success: bool = False,
        required: bool = False,
    ) -> CompensatingAction:
        """Register an undo step for a forward step that just succeeded.

        Args:
            description: Human readable description for logs
            action: Callable performing the undo
            on_success: Also run when the operation completes normally
            required: On the success path, a failure of this action fails
                the operation (e.g. restarting a container)

        Returns:
            Handle usable with discard()
        """
        entry = CompensatingAction(description, action, on_success, required)
        self._actions.append(entry)
        return entry

    def discard(self, entry: CompensatingAction) -> None:
        """Drop an action whose effect has already been undone by a forward step."""
        if entry in self._actions:
            self._actions.remove(entry)

    def complete(self) -> None:
        """Run on_success cleanups in reverse order and clear the stack.

        Raises:
            CompensationError: If a required cleanup failed (after all
                cleanups were attempted)
        """
        cleanups = [a for a in reversed(self._actions) if a.on_success]
        self._actions = [a for a in self._actions if not a.on_success]

        failures = []
        for entry in cleanups:
            try:
                logger.debug(f"[{self.label}] cleanup: {entry.description}")
                entry.action()
            except Exception as e:
                if entry.required:
                    logger.error(f"[{self.label}] {entry.description} failed: {e}")
                    failures.append(f"{entry.description}: {e}")
                else:
                    logger.warning(f"[{self.label}] {entry.description} failed: {e}")

        if failures:
            raise CompensationError("; ".join(failures))

        # Remaining actions only undo failures
        self._actions = []

    def unwind(self) -> List[str]:
        """Run every remaining action in reverse order, best effort.

        Returns:
            Descriptions of actions that failed
        """
        failed = []
        while self._actions:
            entry = self._actions.pop()
            try:
                logger.info(f"[{self.label}] compensating: {entry.description}")
                entry.action()
            except Exception as e:
                logger.warning(f"[{self.label}] compensation '{entry.description}' failed: {e}")
                failed.append(entry.description)
        return failed
