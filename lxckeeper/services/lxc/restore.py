"""Restore containers from backup archives."""
import shutil
import threading
from dataclasses import dataclass
from pathlib import Path

from lxckeeper.core.compensation import Compensation
from lxckeeper.core.config import BACKING_BTRFS, KeeperConfig
from lxckeeper.core.errors import NotFoundError, PreconditionError
from lxckeeper.core.logger import get_logger
from lxckeeper.core.tasks import spawn
from lxckeeper.core.validator import validate_archive_filename, validate_container_name
from lxckeeper.models.operation import Operation, OperationKind, OperationOutcome, RestoreTicket
from .coordinator import Coordinator

logger = get_logger(__name__)

TITLE = "LXC Restore"


@dataclass
class _RestorePlan:
    source: str
    target: str
    archive_path: Path
    target_exists: bool
    was_running: bool
    config: KeeperConfig
    abort: threading.Event


class RestoreCoordinator(Coordinator):
    """Recreates a container from one of its (or another container's) archives."""

    def restore(self, source_container: str, target_name: str, archive_filename: str) -> RestoreTicket:
        """Start a restore in the background.

        Args:
            source_container: Container whose archive directory holds the backup
            target_name: Name of the container to (re)create
            archive_filename: Archive file name inside the source's directory

        Raises:
            ValidationError: Bad names
            PreconditionError: No backup root configured
            NotFoundError: Archive does not exist
            ConflictError: Another operation is active on the target
        """
        validate_container_name(source_container)
        validate_container_name(target_name)
        validate_archive_filename(archive_filename)

        config = self.load_config()
        if not config.backup.path:
            raise PreconditionError("Backup path not configured")

        archive_path = Path(config.backup.path) / source_container / archive_filename
        if not archive_path.is_file():
            raise NotFoundError(f"Backup file not found: {archive_filename}")

        abort = threading.Event()
        operation = self.registry.acquire(
            target_name,
            OperationKind.RESTORE,
            cancel_hook=abort.set,
            backup_file=archive_filename,
            source=source_container,
        )

        try:
            target_exists = self.runtime.exists(target_name)
            was_running = target_exists and self.is_running(target_name)
            plan = _RestorePlan(
                source=source_container,
                target=target_name,
                archive_path=archive_path,
                target_exists=target_exists,
                was_running=was_running,
                config=config,
                abort=abort,
            )
            task = spawn(f"restore-{target_name}", self._run_restore, operation, plan)
        except BaseException:
            self.registry.release(target_name, operation)
            raise

        return RestoreTicket(
            container=target_name,
            task=task,
            source=source_container,
            backup_file=archive_filename,
            target_exists=target_exists,
            was_running=was_running,
        )

    def _teardown_target(self, plan: _RestorePlan, saga: Compensation) -> None:
        """Stop the existing target, drop its snapshots and destroy it."""
        name = plan.target
        restart = None
        if plan.was_running:
            self.runtime.stop(name)
            restart = saga.push(f"restart {name}", lambda: self.runtime.start(name))

        for snapshot in self.runtime.snapshot_list(name):
            self.runtime.snapshot_delete(name, snapshot)

        self.runtime.destroy(name)
        if restart is not None:
            # Nothing left to restart once the old container is gone
            saga.discard(restart)

    def _rewrite_config(self, plan: _RestorePlan, container_path: Path) -> None:
        container_config = self.container_config(plan.target)
        container_config.set_rootfs(container_path / 'rootfs', btrfs=plan.config.use_btrfs)
        container_config.set_hostname(plan.target)

    def _adopt_icon(self, plan: _RestorePlan, container_path: Path) -> None:
        archived_icon = container_path / f"{plan.source}.png"
        if archived_icon.exists():
            icons_dir = plan.config.icons_path
            icons_dir.mkdir(parents=True, exist_ok=True)
            archived_icon.replace(icons_dir / f"{plan.target}.png")

    def _run_restore(self, operation: Operation, plan: _RestorePlan) -> OperationOutcome:
        name = plan.target
        saga = Compensation(f"restore {name}")
        container_path = self.runtime.container_path(name)
        error = None

        try:
            self.notifier.notify(TITLE, f"Starting restore of {name} from {plan.archive_path.name}")

            if plan.target_exists:
                self._teardown_target(plan, saga)

            self.check_cancel(operation, "Restore")

            if plan.config.use_btrfs:
                fs_type = self.runtime.filesystem_type(self.runtime.lxc_path)
                if fs_type != BACKING_BTRFS:
                    raise PreconditionError(
                        f"BTRFS backing storage configured but {self.runtime.lxc_path} "
                        f"is on {fs_type} filesystem"
                    )

            container_path.mkdir(parents=True, exist_ok=True)
            partial = saga.push(f"remove partially extracted {container_path}",
                                lambda: shutil.rmtree(container_path, ignore_errors=True))
            if plan.config.use_btrfs:
                self.runtime.create_subvolume(container_path / 'rootfs')

            self.pipeline.extract_archive(
                plan.archive_path,
                container_path,
                threads=plan.config.backup.threads,
                is_cancelled=plan.abort.is_set,
            )
            # From here on a failed restore is left as-is for inspection
            saga.discard(partial)

            self._rewrite_config(plan, container_path)
            self._adopt_icon(plan, container_path)

            snaps_path = container_path / 'snaps'
            if snaps_path.exists():
                shutil.rmtree(snaps_path)

            self.assign_index(name)

            if plan.was_running:
                self.runtime.start(name)
        except Exception as e:
            error = e
            saga.unwind()

        return self.finish(
            operation,
            TITLE,
            f"Container {name} restored successfully from {plan.archive_path.name}",
            error=error,
            failure_message=f"Restore of {name} failed",
        )
