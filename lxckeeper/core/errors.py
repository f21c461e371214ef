"""Exception hierarchy for container lifecycle operations."""
from typing import Optional, Sequence


class KeeperError(Exception):
    """Base class for all lxckeeper errors."""
    pass


class ValidationError(KeeperError):
    """Raised for malformed container names, snapshot ids or settings."""
    pass


class NotFoundError(KeeperError):
    """Raised when a container, snapshot, archive or operation is missing."""
    pass


class ConflictError(KeeperError):
    """Raised when another operation already holds the container's slot."""
    pass


class PreconditionError(KeeperError):
    """Raised on backing-storage or filesystem mismatches and missing setup."""
    pass


class RuntimeCommandError(KeeperError):
    """Raised when an lxc-* (or helper) command fails."""

    def __init__(self, message: str, command: Optional[Sequence[str]] = None, stderr: str = ""):
        super().__init__(message)
        self.command = list(command) if command else []
        self.stderr = stderr


class PipelineError(KeeperError):
    """Raised when an archive, compress or extract stage exits abnormally."""

    def __init__(self, message: str, stage: Optional[str] = None, stderr: str = ""):
        super().__init__(message)
        self.stage = stage
        self.stderr = stderr


class AbortedError(KeeperError):
    """Raised when a cooperative cancellation request is honored."""
    pass


class NotificationError(KeeperError):
    """Raised when the notification sink is unreachable (never propagated)."""
    pass
