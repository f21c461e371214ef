"""Container backups: snapshot-or-stop, tar | xz pipeline, retention."""
import shutil
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from lxckeeper.core.compensation import Compensation
from lxckeeper.core.config import BackupSettings
from lxckeeper.core.errors import NotFoundError, PreconditionError
from lxckeeper.core.logger import get_logger
from lxckeeper.core.tasks import spawn
from lxckeeper.core.validator import validate_archive_filename, validate_container_name
from lxckeeper.models.archive import ARCHIVE_SUFFIX, BackupArchive, archive_filename, is_archive_of
from lxckeeper.models.operation import BackupTicket, Operation, OperationKind, OperationOutcome
from .coordinator import Coordinator

logger = get_logger(__name__)

TITLE = "LXC Backup"
FROZEN_TIMESTAMP_MARKER = "ts"


@dataclass
class _BackupPlan:
    container: str
    settings: BackupSettings
    archive_path: Path
    icon_path: Path
    use_snapshot: bool
    should_stop: bool
    abort: threading.Event


class BackupCoordinator(Coordinator):
    """Creates, lists, prunes and deletes container backup archives."""

    def __init__(self, *args, clock: Optional[Callable[[], datetime]] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def backup(
        self,
        container: str,
        overrides: Optional[Dict[str, Any]] = None,
        allow_running: bool = False,
    ) -> BackupTicket:
        """Start a backup in the background.

        Args:
            container: Container name
            overrides: Per-call BackupSettings overrides (path, keep,
                compression, threads, use_snapshot)
            allow_running: Archive a running container without stopping it

        Returns:
            BackupTicket whose task resolves to an OperationOutcome

        Raises:
            ValidationError: Bad name or settings
            NotFoundError: Container does not exist
            PreconditionError: No backup root configured
            ConflictError: Another operation is active on the container
        """
        validate_container_name(container)
        config = self.load_config()
        settings = config.backup.merged(overrides)
        if not settings.path:
            raise PreconditionError("Backup path not configured. Set backup.path in the lxckeeper config.")
        self.require_container(container)

        backup_file = archive_filename(container, self.clock())
        abort = threading.Event()
        operation = self.registry.acquire(
            container,
            OperationKind.BACKUP,
            cancel_hook=abort.set,
            backup_file=backup_file,
        )

        try:
            is_cow = self.container_config(container).is_btrfs
            use_snapshot = settings.use_snapshot and is_cow
            if settings.use_snapshot and not is_cow:
                logger.info(f"Container {container} uses directory backing storage - snapshot mode disabled")
            operation.details['use_snapshot'] = use_snapshot

            was_running = self.is_running(container)
            archive_dir = Path(settings.path) / container
            archive_dir.mkdir(parents=True, exist_ok=True)

            plan = _BackupPlan(
                container=container,
                settings=settings,
                archive_path=archive_dir / backup_file,
                icon_path=config.icons_path / f"{container}.png",
                use_snapshot=use_snapshot,
                should_stop=was_running and not allow_running,
                abort=abort,
            )
            task = spawn(f"backup-{container}", self._run_backup, operation, plan)
        except BaseException:
            self.registry.release(container, operation)
            raise

        return BackupTicket(
            container=container,
            task=task,
            backup_file=backup_file,
            use_snapshot=use_snapshot,
            is_cow=is_cow,
            was_running=was_running,
            allow_running=allow_running,
        )

    def _take_snapshot(self, name: str) -> Optional[str]:
        """Create a snapshot and return its id, found by diffing the id sets."""
        before = set(self.runtime.snapshot_list(name))
        self.runtime.snapshot_create(name)
        created = sorted(set(self.runtime.snapshot_list(name)) - before)
        if not created:
            logger.warning(f"Snapshot of {name} was requested but no new snapshot appeared")
            return None
        return created[0]

    def _run_backup(self, operation: Operation, plan: _BackupPlan) -> OperationOutcome:
        name = plan.container
        saga = Compensation(f"backup {name}")
        error = None

        try:
            self.notifier.notify(TITLE, f"Starting backup of {name}")
            source = self.runtime.container_path(name)

            if plan.should_stop:
                self.runtime.stop(name)
                restart = saga.push(f"restart {name}", lambda: self.runtime.start(name),
                                    on_success=True, required=True)

            self.check_cancel(operation, "Backup")

            if plan.use_snapshot:
                snapshot = self._take_snapshot(name)
                if snapshot:
                    saga.push(f"delete temporary snapshot {snapshot}",
                              lambda: self.runtime.snapshot_delete(name, snapshot), on_success=True)
                    source = self.runtime.snapshot_path(name, snapshot)
                    (source / FROZEN_TIMESTAMP_MARKER).unlink(missing_ok=True)

                # Downtime ends as soon as the snapshot exists
                if plan.should_stop:
                    saga.discard(restart)
                    self.runtime.start(name)

            self.check_cancel(operation, "Backup")

            if plan.icon_path.exists():
                temp_icon = source / f"{name}.png"
                shutil.copy2(plan.icon_path, temp_icon)
                saga.push("remove temporary icon copy", lambda: temp_icon.unlink(missing_ok=True),
                          on_success=True)

            saga.push(f"delete partial archive {plan.archive_path.name}",
                      lambda: plan.archive_path.unlink(missing_ok=True))
            self.pipeline.create_archive(
                source,
                plan.archive_path,
                compression=plan.settings.compression,
                threads=plan.settings.threads,
                is_cancelled=plan.abort.is_set,
            )

            saga.complete()
            self.enforce_retention(plan.archive_path.parent, name, plan.settings.keep)
        except Exception as e:
            error = e
            saga.unwind()

        return self.finish(
            operation,
            TITLE,
            f"Backup of {name} completed: {plan.archive_path.name}",
            error=error,
            failure_message=f"Backup of {name} failed",
        )

    def enforce_retention(self, archive_dir: Path, container: str, keep: int) -> List[Path]:
        """Delete all but the newest `keep` archives (by filename timestamp).

        Returns:
            Paths that were deleted
        """
        deleted = []
        try:
            archives = sorted(
                (p for p in Path(archive_dir).iterdir() if is_archive_of(p.name, container)),
                key=lambda p: p.name,
                reverse=True,
            )
            for old in archives[keep:]:
                old.unlink()
                logger.info(f"Deleted old backup {old.name} (keeping latest {keep})")
                deleted.append(old)
        except OSError as e:
            logger.warning(f"Could not clean up old backups of {container}: {e}")
        return deleted

    def abort(self, container: str) -> Operation:
        """Request cancellation of the container's active operation.

        Raises:
            NotFoundError: No operation is active for the container
        """
        return self.registry.request_cancel(container)

    def _backup_root(self) -> Optional[Path]:
        path = self.load_config().backup.path
        return Path(path) if path else None

    @staticmethod
    def _archives_in(directory: Path, container: str) -> List[BackupArchive]:
        archives = []
        for entry in directory.iterdir():
            if entry.is_file() and entry.name.endswith(ARCHIVE_SUFFIX):
                stat = entry.stat()
                archives.append(BackupArchive(
                    container=container,
                    path=entry,
                    size=stat.st_size,
                    created=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
                ))
        return archives

    def list_backups(self, container: Optional[str] = None) -> List[BackupArchive]:
        """List archives for one container, or for all when container is None.

        Returns:
            Archives sorted newest first
        """
        root = self._backup_root()
        if root is None or not root.exists():
            return []

        if container is not None:
            validate_container_name(container)
            directories = [root / container]
        else:
            directories = sorted(p for p in root.iterdir() if p.is_dir())

        archives = []
        for directory in directories:
            if directory.is_dir():
                archives.extend(self._archives_in(directory, directory.name))

        return sorted(archives, key=lambda a: (a.created, a.filename), reverse=True)

    def delete_backup(self, container: str, filename: str) -> Path:
        """Delete one archive; drops the container's directory when it empties.

        Raises:
            ValidationError: Unsafe filename
            NotFoundError: Archive does not exist
            PreconditionError: No backup root configured
        """
        validate_container_name(container)
        validate_archive_filename(filename)
        root = self._backup_root()
        if root is None:
            raise PreconditionError("Backup path not configured")

        archive = root / container / filename
        if not archive.is_file():
            raise NotFoundError(f"Backup file not found: {filename}")

        archive.unlink()
        logger.info(f"Deleted backup {archive}")

        try:
            archive.parent.rmdir()
        except OSError:
            # Directory still holds other archives
            pass

        return archive
