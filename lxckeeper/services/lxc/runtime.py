"""LXC runtime backend driving the lxc-* command line tools."""
import subprocess
from pathlib import Path
from typing import List, Optional, Sequence

from lxckeeper.core.errors import RuntimeCommandError
from lxckeeper.core.logger import get_logger
from .base import RuntimeBackend

logger = get_logger(__name__)


class LxcRuntime(RuntimeBackend):
    """Runtime control surface backed by lxc-start/stop/destroy/snapshot.

    In mock mode mutating commands are only logged, and containers and
    snapshots are read from the directories under lxc_path.
    """

    def _lxc(self, tool: str, *args: str) -> List[str]:
        return [tool, '-P', str(self.lxc_path), *args]

    def _run(self, cmd: Sequence[str], description: str) -> str:
        """Run a command, raising RuntimeCommandError on non-zero exit."""
        if self.mock:
            logger.info(f"MOCK: Would run: {' '.join(cmd)}")
            return ""

        logger.debug(f"Command: {' '.join(cmd)}")
        try:
            result = subprocess.run(list(cmd), capture_output=True, text=True, check=True)
        except subprocess.CalledProcessError as e:
            stderr = (e.stderr or '').strip()
            logger.error(f"Failed to {description}: {stderr or e}")
            raise RuntimeCommandError(
                f"Failed to {description}: {stderr or f'exit code {e.returncode}'}",
                command=cmd,
                stderr=stderr,
            ) from e
        except FileNotFoundError as e:
            raise RuntimeCommandError(f"Failed to {description}: {e}", command=cmd) from e
        return result.stdout

    def list_containers(self) -> List[str]:
        if self.mock:
            # Every directory with a config file is a container, as lxc-ls sees it
            if not self.lxc_path.is_dir():
                return []
            return sorted(p.name for p in self.lxc_path.iterdir() if (p / 'config').is_file())
        output = self._run(self._lxc('lxc-ls', '-1'), "list containers")
        return [line.strip() for line in output.splitlines() if line.strip()]

    def is_running(self, name: str) -> bool:
        if self.mock:
            logger.info(f"MOCK: Would run: {' '.join(self._lxc('lxc-info', '-n', name, '-s', '-H'))}")
            return False
        output = self._run(self._lxc('lxc-info', '-n', name, '-s', '-H'), f"query state of {name}")
        return output.strip().upper() == 'RUNNING'

    def start(self, name: str) -> None:
        logger.info(f"Starting container {name}")
        self._run(self._lxc('lxc-start', '-n', name), f"start container {name}")

    def stop(self, name: str) -> None:
        logger.info(f"Stopping container {name}")
        self._run(self._lxc('lxc-stop', '-n', name), f"stop container {name}")

    def destroy(self, name: str, force: bool = False) -> None:
        cmd = self._lxc('lxc-destroy', '-n', name)
        if force:
            cmd.append('--force')
        logger.info(f"Destroying container {name}")
        self._run(cmd, f"destroy container {name}")

    def snapshot_list(self, name: str) -> List[str]:
        if self.mock:
            snaps = self.container_path(name) / 'snaps'
            if not snaps.is_dir():
                return []
            return sorted(p.name for p in snaps.iterdir() if p.is_dir())
        try:
            output = self._run(self._lxc('lxc-snapshot', '-n', name, '-L'), f"list snapshots of {name}")
        except RuntimeCommandError:
            # lxc-snapshot exits non-zero for containers without snapshot support
            return []

        # Format: "snap0 (/var/lib/lxc/web1/snaps) 2024:01:20 21:30:00"
        snapshots = []
        for line in output.splitlines():
            line = line.strip()
            if not line or line.lower().startswith('no snapshots'):
                continue
            snapshots.append(line.split()[0])
        return snapshots

    def snapshot_create(self, name: str, snapshot_id: Optional[str] = None) -> None:
        cmd = self._lxc('lxc-snapshot', '-n', name)
        if snapshot_id:
            cmd.extend(['-N', snapshot_id])
        logger.info(f"Creating snapshot of {name}")
        self._run(cmd, f"create snapshot of {name}")

    def snapshot_delete(self, name: str, snapshot_id: str) -> None:
        # A btrfs snapshot rootfs may still be mounted from an earlier run
        rootfs = self.snapshot_path(name, snapshot_id) / 'rootfs'
        if not self.mock:
            subprocess.run(['umount', str(rootfs)], capture_output=True, text=True, check=False)

        logger.info(f"Deleting snapshot {snapshot_id} of {name}")
        self._run(self._lxc('lxc-snapshot', '-n', name, '-d', snapshot_id),
                  f"delete snapshot {snapshot_id} of {name}")

    def snapshot_restore(self, name: str, snapshot_id: str) -> None:
        logger.info(f"Restoring {name} from snapshot {snapshot_id}")
        self._run(self._lxc('lxc-snapshot', '-n', name, '-r', snapshot_id),
                  f"restore snapshot {snapshot_id} of {name}")

    def clone_from_snapshot(self, source: str, snapshot_id: str, new_name: str) -> None:
        # lxc-snapshot -r with -N restores the snapshot into a new container
        logger.info(f"Cloning {new_name} from {source}/{snapshot_id}")
        self._run(
            self._lxc('lxc-snapshot', '-n', source, '-r', snapshot_id, '-N', new_name),
            f"clone {new_name} from {source}/{snapshot_id}",
        )

    def filesystem_type(self, path: Path) -> str:
        if self.mock:
            return 'unknown'
        try:
            output = self._run(['stat', '-f', '-c', '%T', str(path)], f"detect filesystem of {path}")
        except RuntimeCommandError:
            return 'unknown'
        return output.strip() or 'unknown'

    def create_subvolume(self, path: Path) -> None:
        logger.info(f"Creating btrfs subvolume {path}")
        self._run(['btrfs', 'subvolume', 'create', str(path)], f"create subvolume {path}")

    def delete_subvolume(self, path: Path) -> None:
        logger.info(f"Deleting btrfs subvolume {path}")
        self._run(['btrfs', 'subvolume', 'delete', str(path)], f"delete subvolume {path}")
