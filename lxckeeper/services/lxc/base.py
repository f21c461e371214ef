"""Abstract runtime control surface used by the lifecycle engine."""
from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Optional


class RuntimeBackend(ABC):
    """Synchronous capability interface to the container runtime.

    Every mutating call raises RuntimeCommandError on failure.
    """

    def __init__(self, lxc_path: str, mock: bool = False):
        """Initialize backend.

        Args:
            lxc_path: Directory holding one subdirectory per container
            mock: If True, simulate operations without making real changes
        """
        self.lxc_path = Path(lxc_path)
        self.mock = mock

    def container_path(self, name: str) -> Path:
        return self.lxc_path / name

    @abstractmethod
    def list_containers(self) -> List[str]:
        """Return names of all defined containers."""
        pass

    def exists(self, name: str) -> bool:
        return name in self.list_containers()

    @abstractmethod
    def is_running(self, name: str) -> bool:
        pass

    @abstractmethod
    def start(self, name: str) -> None:
        pass

    @abstractmethod
    def stop(self, name: str) -> None:
        pass

    @abstractmethod
    def destroy(self, name: str, force: bool = False) -> None:
        """Destroy a container and its data tree.

        Args:
            name: Container name
            force: Stop the container first if it is running
        """
        pass

    @abstractmethod
    def snapshot_list(self, name: str) -> List[str]:
        """Return snapshot ids of a container (empty list when none)."""
        pass

    @abstractmethod
    def snapshot_create(self, name: str, snapshot_id: Optional[str] = None) -> None:
        pass

    @abstractmethod
    def snapshot_delete(self, name: str, snapshot_id: str) -> None:
        pass

    @abstractmethod
    def snapshot_restore(self, name: str, snapshot_id: str) -> None:
        pass

    @abstractmethod
    def clone_from_snapshot(self, source: str, snapshot_id: str, new_name: str) -> None:
        pass

    @abstractmethod
    def filesystem_type(self, path: Path) -> str:
        """Return the filesystem type name of path (e.g. 'btrfs', 'ext2/ext3')."""
        pass

    @abstractmethod
    def create_subvolume(self, path: Path) -> None:
        pass

    @abstractmethod
    def delete_subvolume(self, path: Path) -> None:
        pass

    def snapshot_path(self, name: str, snapshot_id: str) -> Path:
        """Directory holding a snapshot's config and rootfs."""
        return self.container_path(name) / "snaps" / snapshot_id
