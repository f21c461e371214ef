"""Convert a directory-backed container to a btrfs subvolume."""
import shutil
import subprocess
from pathlib import Path

from lxckeeper.core.compensation import Compensation
from lxckeeper.core.config import BACKING_BTRFS
from lxckeeper.core.errors import PreconditionError, RuntimeCommandError
from lxckeeper.core.logger import get_logger
from lxckeeper.core.tasks import spawn
from lxckeeper.core.validator import validate_container_name
from lxckeeper.models.operation import ConvertTicket, Operation, OperationKind, OperationOutcome
from .coordinator import Coordinator

logger = get_logger(__name__)

TITLE = "LXC Convert"


class StorageConverter(Coordinator):
    """Moves a container's rootfs onto a fresh btrfs subvolume."""

    def convert_storage(self, container: str) -> ConvertTicket:
        """Start the conversion in the background.

        Raises:
            NotFoundError: Container does not exist
            PreconditionError: Already on btrfs, or the LXC path is not on btrfs
            ConflictError: Another operation is active on the container
        """
        validate_container_name(container)
        self.require_container(container)

        if self.container_config(container).is_btrfs:
            raise PreconditionError(f"Container {container} is already using BTRFS")

        fs_type = self.runtime.filesystem_type(self.runtime.lxc_path)
        if fs_type != BACKING_BTRFS:
            raise PreconditionError(f"LXC directory is not on a BTRFS filesystem (detected: {fs_type})")

        operation = self.registry.acquire(container, OperationKind.CONVERT_STORAGE)
        try:
            was_running = self.is_running(container)
            task = spawn(f"convert-{container}", self._run_convert, operation, was_running)
        except BaseException:
            self.registry.release(container, operation)
            raise

        return ConvertTicket(container=container, task=task, was_running=was_running)

    def _copy_tree(self, source: Path, destination: Path) -> None:
        """cp -a preserves ownership, modes, xattrs and device nodes."""
        cmd = ['cp', '-a', f"{source}/.", f"{destination}/"]
        if self.runtime.mock:
            logger.info(f"MOCK: Would run: {' '.join(cmd)}")
            return
        try:
            subprocess.run(cmd, capture_output=True, text=True, check=True)
        except subprocess.CalledProcessError as e:
            stderr = (e.stderr or '').strip()
            raise RuntimeCommandError(f"Failed to copy {source} to {destination}: {stderr}",
                                      command=cmd, stderr=stderr) from e

    def _put_back(self, rootfs: Path, aside: Path) -> None:
        if not aside.exists():
            return
        if rootfs.exists():
            self.runtime.delete_subvolume(rootfs)
        aside.rename(rootfs)
        logger.info(f"Restored original rootfs of {rootfs.parent.name}")

    def _run_convert(self, operation: Operation, was_running: bool) -> OperationOutcome:
        name = operation.container
        container_path = self.runtime.container_path(name)
        rootfs = container_path / 'rootfs'
        aside = container_path / 'rootfs.old'
        saga = Compensation(f"convert {name}")
        error = None

        try:
            self.notifier.notify(TITLE, f"Starting BTRFS conversion for {name}")

            if was_running:
                self.runtime.stop(name)
                saga.push(f"restart {name}", lambda: self.runtime.start(name),
                          on_success=True, required=True)

            rootfs.rename(aside)
            put_back = saga.push(f"move {aside.name} back to rootfs", lambda: self._put_back(rootfs, aside))

            self.runtime.create_subvolume(rootfs)
            self._copy_tree(aside, rootfs)
            self.container_config(name).set_rootfs(rootfs, btrfs=True)
            # The config now points at the subvolume
            saga.discard(put_back)

            try:
                shutil.rmtree(aside)
            except OSError as e:
                logger.warning(f"Could not remove {aside}: {e}")
            saga.complete()
        except Exception as e:
            error = e
            saga.unwind()

        return self.finish(
            operation,
            TITLE,
            f"Container {name} converted to BTRFS",
            error=error,
            failure_message=f"BTRFS conversion of {name} failed",
        )
