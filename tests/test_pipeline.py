"""Tests for the tar | xz archive pipelines (need real tar and xz)."""
import shutil
import subprocess
import tarfile
import time

import pytest

from lxckeeper.core.errors import AbortedError, PipelineError
from lxckeeper.core.pipeline import PipelineEngine, _PipelineRun, resolve_threads

needs_tools = pytest.mark.skipif(
    shutil.which('tar') is None or shutil.which('xz') is None,
    reason="tar and xz are required",
)


@pytest.fixture
def engine():
    return PipelineEngine(poll_interval=0.05, niceness=None)


@pytest.fixture
def source_tree(tmp_path):
    source = tmp_path / 'web1'
    (source / 'rootfs' / 'etc').mkdir(parents=True)
    (source / 'rootfs' / 'etc' / 'hostname').write_text('web1\n')
    (source / 'config').write_text('lxc.uts.name = web1\n')
    (source / 'snaps' / 'snap0').mkdir(parents=True)
    (source / 'snaps' / 'snap0' / 'ts').write_text('2026:01:01 00:00:00\n')
    return source


@pytest.mark.parametrize('threads,cpus,expected', [
    (0, 8, 4),
    (0, 1, 1),
    (3, 8, 3),
    (16, 8, 8),
])
def test_resolve_threads(threads, cpus, expected):
    assert resolve_threads(threads, cpu_count=cpus) == expected


@needs_tools
def test_archive_and_extract(engine, source_tree, tmp_path):
    archive = tmp_path / 'web1.tar.xz'

    engine.create_archive(source_tree, archive, compression=1, threads=1)

    with tarfile.open(archive, 'r:xz') as opened:
        names = opened.getnames()
    assert './rootfs/etc/hostname' in names
    assert not any('snaps' in name for name in names)

    target = tmp_path / 'restored'
    target.mkdir()
    engine.extract_archive(archive, target, threads=1)

    assert (target / 'rootfs' / 'etc' / 'hostname').read_text() == 'web1\n'
    assert (target / 'config').exists()


@needs_tools
def test_niceness_prefix(source_tree, tmp_path):
    if shutil.which('nice') is None:
        pytest.skip("nice is required")
    archive = tmp_path / 'web1.tar.xz'

    PipelineEngine(poll_interval=0.05).create_archive(source_tree, archive, compression=0)

    assert archive.stat().st_size > 0


@needs_tools
def test_missing_source_fails(engine, tmp_path):
    with pytest.raises(PipelineError) as excinfo:
        engine.create_archive(tmp_path / 'nope', tmp_path / 'out.tar.xz')
    assert excinfo.value.stage == 'tar'


@needs_tools
def test_corrupt_archive_fails(engine, tmp_path):
    archive = tmp_path / 'broken.tar.xz'
    archive.write_bytes(b'definitely not xz data' * 100)
    target = tmp_path / 'out'
    target.mkdir()

    with pytest.raises(PipelineError) as excinfo:
        engine.extract_archive(archive, target)
    assert excinfo.value.stage == 'xz'
    assert excinfo.value.stderr


def test_cancellation_kills_stages(tmp_path):
    if shutil.which('sleep') is None:
        pytest.skip("sleep is required")
    run = _PipelineRun('sleeper', lambda: True, poll_interval=0.05, niceness=None)
    proc = run.start('sleep', ['sleep', '30'], stdin=subprocess.DEVNULL, stdout=subprocess.DEVNULL)

    started = time.monotonic()
    try:
        with pytest.raises(AbortedError):
            run.wait()
    finally:
        run.close()

    assert time.monotonic() - started < 5
    assert proc.returncode is not None


def test_unknown_binary(tmp_path):
    run = _PipelineRun('missing', None, poll_interval=0.05, niceness=None)
    with pytest.raises(PipelineError, match='could not be started'):
        run.start('ghost', ['lxckeeper-no-such-binary'], stdin=subprocess.DEVNULL, stdout=subprocess.DEVNULL)
