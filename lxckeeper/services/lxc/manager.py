"""High-level container lifecycle facade (backup, restore, snapshots, storage)."""
from datetime import datetime
from functools import partial
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from lxckeeper.core.config import KeeperConfig, load_config
from lxckeeper.core.logger import get_logger
from lxckeeper.core.notifications import Notifier
from lxckeeper.core.pipeline import PipelineEngine
from lxckeeper.core.registry import OperationRegistry
from lxckeeper.core.validator import validate_container_name
from lxckeeper.models.operation import Operation
from .backup import BackupCoordinator
from .base import RuntimeBackend
from .config_file import ContainerConfig, ContainerIndex
from .convert import StorageConverter
from .restore import RestoreCoordinator
from .runtime import LxcRuntime
from .snapshots import SnapshotManager

logger = get_logger(__name__)


class LxcKeeper:
    """Facade wiring one registry, notifier and pipeline into every engine.

    All engines share the same OperationRegistry, so a backup, a restore and
    a snapshot restore on the same container exclude each other.
    """

    def __init__(
        self,
        runtime: RuntimeBackend,
        registry: Optional[OperationRegistry] = None,
        notifier: Optional[Notifier] = None,
        config_provider: Optional[Callable[[], KeeperConfig]] = None,
        pipeline: Optional[PipelineEngine] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.runtime = runtime
        self.registry = registry or OperationRegistry()
        self.config_provider = config_provider or load_config
        self.notifier = notifier or Notifier(self.config_provider().notify_socket, mock=runtime.mock)
        self.pipeline = pipeline or PipelineEngine()

        shared = dict(
            registry=self.registry,
            notifier=self.notifier,
            config_provider=self.config_provider,
            pipeline=self.pipeline,
        )
        self.backups = BackupCoordinator(runtime, clock=clock, **shared)
        self.restores = RestoreCoordinator(runtime, **shared)
        self.snapshots = SnapshotManager(runtime, **shared)
        self.converter = StorageConverter(runtime, **shared)

    @classmethod
    def from_config(cls, config_path: Optional[str] = None, mock: bool = False) -> "LxcKeeper":
        """Build a keeper driving the real lxc-* tools.

        The config file is re-read for every operation so edits take effect
        without restarting a long-lived process.
        """
        provider = partial(load_config, config_path)
        config = provider()
        runtime = LxcRuntime(config.lxc_path, mock=mock)
        return cls(runtime, config_provider=provider)

    # ==================== Delegation Methods ====================

    # Backups
    def backup(self, container: str, overrides: Optional[Dict[str, Any]] = None,
               allow_running: bool = False):
        return self.backups.backup(container, overrides, allow_running)

    def abort_backup(self, container: str) -> Operation:
        return self.backups.abort(container)

    def list_backups(self, container: Optional[str] = None):
        return self.backups.list_backups(container)

    def delete_backup(self, container: str, filename: str) -> Path:
        return self.backups.delete_backup(container, filename)

    # Restore
    def restore(self, source_container: str, target_name: str, archive_filename: str):
        return self.restores.restore(source_container, target_name, archive_filename)

    # Snapshots
    def create_snapshot(self, container: str, snapshot_name: Optional[str] = None,
                        allow_running: bool = False) -> str:
        return self.snapshots.create_snapshot(container, snapshot_name, allow_running)

    def list_snapshots(self, container: str):
        return self.snapshots.list_snapshots(container)

    def list_all_snapshots(self):
        return self.snapshots.list_all_snapshots()

    def delete_snapshot(self, container: str, snapshot: str) -> None:
        return self.snapshots.delete_snapshot(container, snapshot)

    def restore_snapshot(self, container: str, snapshot: str):
        return self.snapshots.restore_snapshot(container, snapshot)

    def clone_from_snapshot(self, source: str, snapshot: str, new_name: str):
        return self.snapshots.clone_from_snapshot(source, snapshot, new_name)

    # Storage
    def convert_storage(self, container: str):
        return self.converter.convert_storage(container)

    # ==================== Registry ====================

    def active_operations(self) -> List[Operation]:
        return self.registry.active()

    def get_operation(self, container: str) -> Optional[Operation]:
        return self.registry.get(container)

    # ==================== Ordering index ====================

    def get_index(self, container: str) -> Optional[int]:
        validate_container_name(container)
        return ContainerConfig.for_container(self.runtime.lxc_path, container).get_index()

    def set_index(self, container: str, index: int) -> None:
        validate_container_name(container)
        self.backups.require_container(container)
        ContainerConfig.for_container(self.runtime.lxc_path, container).set_index(index)

    def next_available_index(self) -> int:
        return ContainerIndex(self.runtime.lxc_path).next_available(self.runtime.list_containers())

    def destroy_container(self, container: str) -> List[Tuple[str, int]]:
        """Destroy a container, drop its custom icon and close the index gap.

        Returns:
            The surviving containers with their new indices

        Raises:
            NotFoundError: Container does not exist
            ConflictError: An operation is active on the container
        """
        validate_container_name(container)
        self.backups.require_container(container)
        self.registry.ensure_idle(container, "destroy container")

        self.runtime.destroy(container, force=True)

        icon = self.config_provider().icons_path / f"{container}.png"
        if icon.exists():
            try:
                icon.unlink()
            except OSError as e:
                logger.warning(f"Could not remove icon of {container}: {e}")

        survivors = [name for name in self.runtime.list_containers() if name != container]
        return ContainerIndex(self.runtime.lxc_path).reindex(survivors)
