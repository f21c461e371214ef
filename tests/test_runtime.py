"""Tests for the lxc-* command line runtime."""
import logging
import subprocess

import pytest

from lxckeeper.core.errors import RuntimeCommandError
from lxckeeper.services.lxc import LxcRuntime


class FakeRun:
    """Stands in for subprocess.run, answering by tool name."""

    def __init__(self, outputs=None, fail=None):
        self.outputs = outputs or {}
        self.fail = fail
        self.commands = []

    def __call__(self, cmd, **kwargs):
        self.commands.append(cmd)
        if self.fail and cmd[0] == self.fail:
            raise subprocess.CalledProcessError(1, cmd, output='', stderr=f"{cmd[0]}: failed\n")
        return subprocess.CompletedProcess(cmd, 0, stdout=self.outputs.get(cmd[0], ''), stderr='')


def refuse(*args, **kwargs):
    raise AssertionError(f"subprocess.run called in mock mode: {args}")


class TestMockMode:
    def test_containers_and_snapshots_read_from_disk(self, runtime, monkeypatch):
        runtime.make_container('web1', btrfs=True, running=True)
        runtime.make_container('db1')
        runtime.snapshot_create('web1')
        (runtime.lxc_path / 'not-a-container').mkdir()
        monkeypatch.setattr(subprocess, 'run', refuse)

        mock = LxcRuntime(str(runtime.lxc_path), mock=True)

        assert mock.list_containers() == ['db1', 'web1']
        assert mock.exists('web1')
        assert not mock.exists('ghost')
        assert mock.snapshot_list('web1') == ['snap0']
        assert mock.snapshot_list('db1') == []
        assert not mock.is_running('web1')

    def test_missing_lxc_path(self, tmp_path):
        assert LxcRuntime(str(tmp_path / 'nope'), mock=True).list_containers() == []

    def test_mutations_only_log(self, tmp_path, monkeypatch, caplog):
        monkeypatch.setattr(subprocess, 'run', refuse)
        mock = LxcRuntime(str(tmp_path), mock=True)

        with caplog.at_level(logging.INFO):
            mock.stop('web1')
            mock.destroy('web1', force=True)
            mock.create_subvolume(tmp_path / 'web1' / 'rootfs')

        assert f"MOCK: Would run: lxc-stop -P {tmp_path} -n web1" in caplog.text
        assert f"lxc-destroy -P {tmp_path} -n web1 --force" in caplog.text
        assert "MOCK: Would run: btrfs subvolume create" in caplog.text
        assert not (tmp_path / 'web1').exists()


class TestCommands:
    def test_list_and_state(self, tmp_path, monkeypatch):
        fake = FakeRun({'lxc-ls': "web1\ndb1\n\n", 'lxc-info': "RUNNING\n"})
        monkeypatch.setattr(subprocess, 'run', fake)
        lxc = LxcRuntime(str(tmp_path))

        assert lxc.list_containers() == ['web1', 'db1']
        assert lxc.is_running('web1')
        assert fake.commands[0] == ['lxc-ls', '-P', str(tmp_path), '-1']

    def test_snapshot_list_parsing(self, tmp_path, monkeypatch):
        output = (
            f"snap0 ({tmp_path}/web1/snaps) 2026:10:18 12:00:00\n"
            f"before-upgrade ({tmp_path}/web1/snaps) 2026:10:18 13:00:00\n"
        )
        monkeypatch.setattr(subprocess, 'run', FakeRun({'lxc-snapshot': output}))

        assert LxcRuntime(str(tmp_path)).snapshot_list('web1') == ['snap0', 'before-upgrade']

    def test_no_snapshots(self, tmp_path, monkeypatch):
        monkeypatch.setattr(subprocess, 'run', FakeRun({'lxc-snapshot': "No snapshots\n"}))
        assert LxcRuntime(str(tmp_path)).snapshot_list('web1') == []

    def test_clone_uses_lxc_snapshot(self, tmp_path, monkeypatch):
        fake = FakeRun()
        monkeypatch.setattr(subprocess, 'run', fake)

        LxcRuntime(str(tmp_path)).clone_from_snapshot('web1', 'snap0', 'web2')

        assert fake.commands[-1] == ['lxc-snapshot', '-P', str(tmp_path), '-n', 'web1',
                                     '-r', 'snap0', '-N', 'web2']

    def test_failure_carries_stderr(self, tmp_path, monkeypatch):
        monkeypatch.setattr(subprocess, 'run', FakeRun(fail='lxc-start'))

        with pytest.raises(RuntimeCommandError) as excinfo:
            LxcRuntime(str(tmp_path)).start('web1')

        assert excinfo.value.stderr == "lxc-start: failed"
        assert 'start container web1' in str(excinfo.value)
