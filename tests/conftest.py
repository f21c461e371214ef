"""Shared test fixtures for lxckeeper tests."""
import shutil
import tarfile
import threading
import time
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, List, Optional

import pytest

from lxckeeper.core.config import BackupSettings, KeeperConfig
from lxckeeper.core.errors import AbortedError, PipelineError, RuntimeCommandError
from lxckeeper.core.notifications import RecordingNotifier
from lxckeeper.core.registry import OperationRegistry
from lxckeeper.services.lxc import LxcKeeper, RuntimeBackend

SNAPSHOT_TS = "2026:10:18 12:00:00"


class FakeRuntime(RuntimeBackend):
    """Runtime backed by plain directories under lxc_path.

    A container is a directory holding a `config` file; snapshots live in
    `<container>/snaps/<id>` like lxc-snapshot lays them out.
    """

    def __init__(self, lxc_path, fs_type: str = 'btrfs'):
        super().__init__(lxc_path)
        self.lxc_path.mkdir(parents=True, exist_ok=True)
        self.fs_type = fs_type
        self.running = set()
        self.calls: List[tuple] = []
        self.failures: Dict[str, Exception] = {}

    def _record(self, method: str, *args):
        self.calls.append((method, *args))
        if method in self.failures:
            raise self.failures[method]

    def count(self, method: str) -> int:
        return sum(1 for call in self.calls if call[0] == method)

    def list_containers(self) -> List[str]:
        return sorted(p.name for p in self.lxc_path.iterdir() if (p / 'config').is_file())

    def is_running(self, name: str) -> bool:
        return name in self.running

    def start(self, name: str) -> None:
        self._record('start', name)
        self.running.add(name)

    def stop(self, name: str) -> None:
        self._record('stop', name)
        self.running.discard(name)

    def destroy(self, name: str, force: bool = False) -> None:
        self._record('destroy', name)
        if self.snapshot_list(name):
            raise RuntimeCommandError(f"Container {name} has snapshots")
        if name in self.running and not force:
            raise RuntimeCommandError(f"Container {name} is running")
        self.running.discard(name)
        shutil.rmtree(self.container_path(name))

    def snapshot_list(self, name: str) -> List[str]:
        snaps = self.container_path(name) / 'snaps'
        if not snaps.is_dir():
            return []
        return sorted(p.name for p in snaps.iterdir() if p.is_dir())

    def snapshot_create(self, name: str, snapshot_id: Optional[str] = None) -> None:
        self._record('snapshot_create', name, snapshot_id)
        snapshot_id = snapshot_id or f"snap{len(self.snapshot_list(name))}"
        target = self.snapshot_path(name, snapshot_id)
        target.mkdir(parents=True)
        source = self.container_path(name)
        shutil.copy2(source / 'config', target / 'config')
        shutil.copytree(source / 'rootfs', target / 'rootfs', symlinks=True)
        (target / 'ts').write_text(SNAPSHOT_TS + '\n')

    def snapshot_delete(self, name: str, snapshot_id: str) -> None:
        self._record('snapshot_delete', name, snapshot_id)
        shutil.rmtree(self.snapshot_path(name, snapshot_id))

    def snapshot_restore(self, name: str, snapshot_id: str) -> None:
        self._record('snapshot_restore', name, snapshot_id)
        rootfs = self.container_path(name) / 'rootfs'
        shutil.rmtree(rootfs)
        shutil.copytree(self.snapshot_path(name, snapshot_id) / 'rootfs', rootfs, symlinks=True)

    def clone_from_snapshot(self, source: str, snapshot_id: str, new_name: str) -> None:
        target = self.container_path(new_name)
        target.mkdir()
        snapshot = self.snapshot_path(source, snapshot_id)
        config = (snapshot / 'config').read_text().replace(
            f"lxc.uts.name = {source}", f"lxc.uts.name = {new_name}")
        (target / 'config').write_text(config)
        self._record('clone_from_snapshot', source, snapshot_id, new_name)
        shutil.copytree(snapshot / 'rootfs', target / 'rootfs', symlinks=True)

    def filesystem_type(self, path: Path) -> str:
        return self.fs_type

    def create_subvolume(self, path: Path) -> None:
        self._record('create_subvolume', str(path))
        Path(path).mkdir()

    def delete_subvolume(self, path: Path) -> None:
        self._record('delete_subvolume', str(path))
        shutil.rmtree(path)

    # ==================== Test helpers ====================

    def make_container(
        self,
        name: str,
        btrfs: bool = False,
        running: bool = False,
        index: Optional[int] = None,
        files: Optional[Dict[str, str]] = None,
    ) -> Path:
        path = self.container_path(name)
        rootfs = path / 'rootfs'
        rootfs.mkdir(parents=True)
        prefix = 'btrfs' if btrfs else 'dir'
        lines = ["# Template used to create this container"]
        if index is not None:
            lines.append(f"#container_order={index}")
        lines += [
            f"lxc.rootfs.path = {prefix}:{rootfs}",
            f"lxc.uts.name = {name}",
            "lxc.net.0.type = veth",
            "",
        ]
        (path / 'config').write_text('\n'.join(lines))

        for relative, content in (files or {'etc/hostname': f"{name}\n"}).items():
            target = rootfs / relative
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content)

        if running:
            self.running.add(name)
        return path


class FakePipeline:
    """Archive pipeline built on the tarfile module.

    Set `block=True` to make either direction wait for cancellation, or
    `fail_with` to make create_archive fail after writing a partial file.
    """

    def __init__(self):
        self.created: List[tuple] = []
        self.extracted: List[tuple] = []
        self.block = False
        self.fail_with: Optional[Exception] = None
        self.started = threading.Event()

    def _wait_for_cancel(self, is_cancelled, what):
        deadline = time.monotonic() + 10
        while time.monotonic() < deadline:
            if is_cancelled is not None and is_cancelled():
                raise AbortedError(f"{what} aborted by user")
            time.sleep(0.01)
        raise PipelineError("blocked pipeline was never cancelled", stage='tar')

    def create_archive(self, source_dir, dest_path, compression=6, threads=0,
                       exclude=('./snaps',), is_cancelled=None):
        source_dir, dest_path = Path(source_dir), Path(dest_path)
        self.created.append((source_dir, dest_path, sorted(p.name for p in source_dir.iterdir())))
        dest_path.write_bytes(b'partial')
        self.started.set()

        if self.block:
            self._wait_for_cancel(is_cancelled, "archive")
        if self.fail_with is not None:
            raise self.fail_with

        skipped = {name.lstrip('./') for name in exclude}
        with tarfile.open(dest_path, 'w:xz') as archive:
            for entry in sorted(source_dir.iterdir()):
                if entry.name not in skipped:
                    archive.add(entry, arcname=f"./{entry.name}")
        return dest_path

    def extract_archive(self, archive_path, target_dir, threads=0, is_cancelled=None):
        self.extracted.append((Path(archive_path), Path(target_dir)))
        if self.block:
            (Path(target_dir) / 'config').write_text('partial')
            self.started.set()
            self._wait_for_cancel(is_cancelled, "extraction")
        with tarfile.open(archive_path, 'r:xz') as archive:
            archive.extractall(target_dir)
        return Path(target_dir)


class TickingClock:
    """Returns a new UTC second on every call."""

    def __init__(self, start: datetime = datetime(2026, 1, 1, 3, 0, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        self.now += timedelta(seconds=1)
        return self.now


@pytest.fixture
def runtime(tmp_path):
    """Filesystem-backed runtime rooted at tmp_path/lxc."""
    return FakeRuntime(tmp_path / 'lxc')


@pytest.fixture
def config(tmp_path, runtime):
    return KeeperConfig(
        lxc_path=str(runtime.lxc_path),
        backup=BackupSettings(path=str(tmp_path / 'backups')),
    )


@pytest.fixture
def registry():
    return OperationRegistry()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def pipeline():
    return FakePipeline()


@pytest.fixture
def keeper(runtime, registry, notifier, config, pipeline):
    """LxcKeeper wired to the fake runtime and pipeline."""
    return LxcKeeper(
        runtime,
        registry=registry,
        notifier=notifier,
        config_provider=lambda: config,
        pipeline=pipeline,
        clock=TickingClock(),
    )
