"""Tests for directory -> btrfs storage conversion."""
import shutil

import pytest

from lxckeeper.core.errors import PreconditionError, RuntimeCommandError
from lxckeeper.services.lxc import ContainerConfig


def test_convert_running_container(keeper, runtime):
    path = runtime.make_container('web1', running=True, files={'etc/hostname': 'web1\n', 'var/lib/app.db': 'rows'})

    ticket = keeper.convert_storage('web1')
    assert ticket.was_running
    outcome = ticket.wait(timeout=10)

    assert outcome.success, outcome.message
    rootfs = path / 'rootfs'
    assert (rootfs / 'var' / 'lib' / 'app.db').read_text() == 'rows'
    assert not (path / 'rootfs.old').exists()
    assert ContainerConfig.for_container(runtime.lxc_path, 'web1').rootfs == f"btrfs:{rootfs}"
    assert ('create_subvolume', str(rootfs)) in runtime.calls
    assert runtime.is_running('web1')
    assert runtime.count('start') == 1


def test_already_btrfs(keeper, runtime):
    runtime.make_container('web1', btrfs=True)

    with pytest.raises(PreconditionError):
        keeper.convert_storage('web1')


def test_lxc_path_not_on_btrfs(keeper, runtime):
    runtime.make_container('web1')
    runtime.fs_type = 'ext2/ext3'

    with pytest.raises(PreconditionError, match='ext2/ext3'):
        keeper.convert_storage('web1')
    assert keeper.active_operations() == []


def test_failure_puts_original_rootfs_back(keeper, runtime):
    path = runtime.make_container('web1', running=True, files={'etc/hostname': 'web1\n'})
    runtime.failures['create_subvolume'] = RuntimeCommandError("btrfs: not a btrfs filesystem")

    outcome = keeper.convert_storage('web1').wait(timeout=10)

    assert not outcome.success
    assert (path / 'rootfs' / 'etc' / 'hostname').read_text() == 'web1\n'
    assert not (path / 'rootfs.old').exists()
    assert ContainerConfig.for_container(runtime.lxc_path, 'web1').rootfs.startswith('dir:')
    assert runtime.is_running('web1')
    assert keeper.get_operation('web1') is None


def test_copy_failure_deletes_new_subvolume(keeper, runtime, monkeypatch):
    path = runtime.make_container('web1', files={'etc/hostname': 'web1\n'})

    def broken_copy(source, destination):
        (destination / 'half-copied').write_text('x')
        raise RuntimeCommandError("cp: No space left on device")

    monkeypatch.setattr(keeper.converter, '_copy_tree', broken_copy)

    outcome = keeper.convert_storage('web1').wait(timeout=10)

    assert not outcome.success
    assert "No space left" in outcome.message
    assert ('delete_subvolume', str(path / 'rootfs')) in runtime.calls
    assert (path / 'rootfs' / 'etc' / 'hostname').read_text() == 'web1\n'
    assert not (path / 'rootfs' / 'half-copied').exists()
    assert not (path / 'rootfs.old').exists()
    assert ContainerConfig.for_container(runtime.lxc_path, 'web1').rootfs.startswith('dir:')
    assert not runtime.is_running('web1')
    assert keeper.get_operation('web1') is None


def test_leftover_rootfs_old_does_not_fail_conversion(keeper, runtime, monkeypatch):
    path = runtime.make_container('web1')

    def busy(target, *args, **kwargs):
        raise OSError(16, "Device or resource busy")

    monkeypatch.setattr(shutil, 'rmtree', busy)

    outcome = keeper.convert_storage('web1').wait(timeout=10)
    monkeypatch.undo()

    assert outcome.success, outcome.message
    assert (path / 'rootfs.old').exists()
    assert ContainerConfig.for_container(runtime.lxc_path, 'web1').is_btrfs
    assert keeper.get_operation('web1') is None
