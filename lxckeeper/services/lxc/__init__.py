"""LXC container lifecycle engine.

- LxcRuntime: lxc-* command line backend
- BackupCoordinator: tar | xz archives with snapshot or stop-based capture
- RestoreCoordinator: recreate containers from archives
- SnapshotManager: btrfs snapshots, in-place restore and clones
- StorageConverter: directory -> btrfs subvolume conversion
- LxcKeeper: facade sharing one registry across all of the above
"""
from .backup import BackupCoordinator
from .base import RuntimeBackend
from .config_file import ContainerConfig, ContainerIndex
from .convert import StorageConverter
from .manager import LxcKeeper
from .restore import RestoreCoordinator
from .runtime import LxcRuntime
from .snapshots import SnapshotManager

__all__ = [
    'RuntimeBackend',
    'LxcRuntime',
    'ContainerConfig',
    'ContainerIndex',
    'BackupCoordinator',
    'RestoreCoordinator',
    'SnapshotManager',
    'StorageConverter',
    'LxcKeeper',
]
