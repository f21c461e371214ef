"""Copy-on-write snapshots: create, list, delete, restore in place, clone."""
import os
from pathlib import Path
from typing import List, Optional

from lxckeeper.core.errors import ConflictError, NotFoundError, PreconditionError
from lxckeeper.core.logger import get_logger
from lxckeeper.core.tasks import spawn
from lxckeeper.core.validator import validate_container_name, validate_snapshot_name
from lxckeeper.models.archive import SnapshotInfo
from lxckeeper.models.operation import Operation, OperationKind, OperationOutcome, SnapshotTicket
from .coordinator import Coordinator

logger = get_logger(__name__)

TITLE = "LXC Snapshot"


def tree_size(path: Path) -> int:
    """Apparent size of a directory tree in bytes (symlinks not followed)."""
    total = 0
    for root, dirs, files in os.walk(path):
        for entry in dirs + files:
            try:
                total += os.lstat(os.path.join(root, entry)).st_size
            except OSError:
                continue
    return total


class SnapshotManager(Coordinator):
    """Snapshot operations, all gated on btrfs backing storage."""

    def _require_cow(self, container: str) -> None:
        if not self.container_config(container).is_btrfs:
            raise PreconditionError(
                f"Snapshots require BTRFS backing storage. "
                f"Container {container} uses directory backing storage."
            )

    def _require_snapshot(self, container: str, snapshot: str) -> None:
        validate_snapshot_name(snapshot)
        if snapshot not in self.runtime.snapshot_list(container):
            raise NotFoundError(f"Snapshot {snapshot} not found")

    # ==================== Read paths ====================

    def list_snapshots(self, container: str) -> List[SnapshotInfo]:
        validate_container_name(container)
        self.require_container(container)

        snapshots = []
        for snapshot_id in self.runtime.snapshot_list(container):
            path = self.runtime.snapshot_path(container, snapshot_id)
            timestamp = None
            ts_file = path / 'ts'
            if ts_file.exists():
                try:
                    timestamp = ts_file.read_text().strip() or None
                except OSError as e:
                    logger.debug(f"Could not read {ts_file}: {e}")
            snapshots.append(SnapshotInfo(
                container=container,
                name=snapshot_id,
                timestamp=timestamp,
                size=tree_size(path) if path.exists() else 0,
            ))
        return snapshots

    def list_all_snapshots(self) -> List[SnapshotInfo]:
        """Snapshots of every container, sorted by container then name."""
        result = []
        for container in self.runtime.list_containers():
            try:
                result.extend(self.list_snapshots(container))
            except Exception as e:
                logger.debug(f"Skipping snapshots of {container}: {e}")
        return sorted(result, key=lambda s: (s.container, s.name))

    # ==================== Synchronous mutations ====================

    def create_snapshot(
        self,
        container: str,
        snapshot_name: Optional[str] = None,
        allow_running: bool = False,
    ) -> str:
        """Snapshot a container, stopping it for the duration unless allowed running.

        Returns:
            The id of the new snapshot
        """
        validate_container_name(container)
        if snapshot_name is not None:
            validate_snapshot_name(snapshot_name)
        self.require_container(container)
        self._require_cow(container)
        self.registry.ensure_idle(container, "create snapshot")

        should_stop = self.is_running(container) and not allow_running
        if should_stop:
            self.runtime.stop(container)

        try:
            before = set(self.runtime.snapshot_list(container))
            self.runtime.snapshot_create(container, snapshot_name)
            created = sorted(set(self.runtime.snapshot_list(container)) - before)
        finally:
            if should_stop:
                try:
                    self.runtime.start(container)
                except Exception as e:
                    logger.error(f"Failed to restart {container} after snapshot: {e}")

        snapshot = created[0] if created else (snapshot_name or 'snap0')
        logger.info(f"Created snapshot {snapshot} of {container}")
        return snapshot

    def delete_snapshot(self, container: str, snapshot: str) -> None:
        validate_container_name(container)
        self.require_container(container)
        self._require_cow(container)
        self.registry.ensure_idle(container, "delete snapshot")
        self._require_snapshot(container, snapshot)

        self.runtime.snapshot_delete(container, snapshot)

    # ==================== Background mutations ====================

    def restore_snapshot(self, container: str, snapshot: str) -> SnapshotTicket:
        """Roll a container back to one of its snapshots in the background."""
        validate_container_name(container)
        self.require_container(container)
        self._require_cow(container)
        self.registry.ensure_idle(container, "restore snapshot")
        self._require_snapshot(container, snapshot)

        operation = self.registry.acquire(container, OperationKind.SNAPSHOT_RESTORE, snapshot=snapshot)
        try:
            was_running = self.is_running(container)
            task = spawn(f"snapshot-restore-{container}", self._run_restore_snapshot,
                         operation, snapshot, was_running)
        except BaseException:
            self.registry.release(container, operation)
            raise

        return SnapshotTicket(container=container, task=task, snapshot=snapshot, was_running=was_running)

    def _run_restore_snapshot(self, operation: Operation, snapshot: str, was_running: bool) -> OperationOutcome:
        name = operation.container
        error = None
        try:
            self.notifier.notify(TITLE, f"Restoring {name} from snapshot {snapshot}")
            if was_running:
                self.runtime.stop(name)
            self.runtime.snapshot_restore(name, snapshot)
            if was_running:
                self.runtime.start(name)
        except Exception as e:
            error = e
            if was_running:
                try:
                    if not self.is_running(name):
                        self.runtime.start(name)
                except Exception as start_error:
                    logger.error(f"Failed to restart {name}: {start_error}")

        return self.finish(
            operation,
            TITLE,
            f"Snapshot {snapshot} restored to {name}",
            error=error,
            failure_message=f"Snapshot restore failed for {name}",
        )

    def clone_from_snapshot(self, source: str, snapshot: str, new_name: str) -> SnapshotTicket:
        """Create a new container from a snapshot in the background.

        The source container's slot is held for the duration.
        """
        validate_container_name(source)
        validate_container_name(new_name)
        self.require_container(source)
        if self.runtime.exists(new_name):
            raise ConflictError(f"Container {new_name} already exists")
        self._require_cow(source)
        self._require_snapshot(source, snapshot)

        operation = self.registry.acquire(source, OperationKind.SNAPSHOT_CLONE,
                                          snapshot=snapshot, new_name=new_name)
        try:
            task = spawn(f"snapshot-clone-{new_name}", self._run_clone, operation, snapshot, new_name)
        except BaseException:
            self.registry.release(source, operation)
            raise

        return SnapshotTicket(container=source, task=task, snapshot=snapshot, new_name=new_name)

    def _run_clone(self, operation: Operation, snapshot: str, new_name: str) -> OperationOutcome:
        source = operation.container
        error = None
        try:
            self.notifier.notify(TITLE, f"Cloning {new_name} from {source}/{snapshot}")
            self.runtime.clone_from_snapshot(source, snapshot, new_name)
            self.assign_index(new_name)
        except Exception as e:
            error = e
            try:
                if self.runtime.exists(new_name):
                    self.runtime.destroy(new_name, force=True)
            except Exception as destroy_error:
                logger.warning(f"Could not remove half-created container {new_name}: {destroy_error}")

        return self.finish(
            operation,
            TITLE,
            f"Container {new_name} cloned successfully",
            error=error,
            failure_message="Clone failed",
        )
