"""Streaming archive pipelines (tar | xz | file and file | xz -d | tar).

Each run wires three concurrently running stages so data flows straight
from one into the next; memory use is bounded by the pipe buffers and one
copy chunk regardless of archive size.
"""
import os
import signal
import subprocess
import tempfile
import threading
import time
from pathlib import Path
from typing import BinaryIO, Callable, List, Optional, Sequence

from lxckeeper.core.errors import AbortedError, PipelineError
from lxckeeper.core.logger import get_logger

logger = get_logger(__name__)

POLL_INTERVAL = 1.0
CHUNK_SIZE = 1024 * 1024
DEFAULT_NICENESS = 10
DEFAULT_EXCLUDES = ("./snaps",)


def resolve_threads(threads: int, cpu_count: Optional[int] = None) -> int:
    """Translate the configured xz thread count into a concrete value.

    0 means half of the available CPUs (at least one); explicit values are
    capped at the CPU count.
    """
    cpus = cpu_count or os.cpu_count() or 1
    if threads <= 0:
        return max(1, cpus // 2)
    return min(threads, cpus)


class _Copier(threading.Thread):
    """In-process stage moving bytes between a pipe and a file."""

    def __init__(self, name: str, src: BinaryIO, dst: BinaryIO, close_dst: bool = False):
        super().__init__(name=name, daemon=True)
        self.stage = name
        self.src = src
        self.dst = dst
        self.close_dst = close_dst
        self.error: Optional[BaseException] = None
        self._stop_event = threading.Event()

    def stop(self) -> None:
        self._stop_event.set()

    def run(self) -> None:
        try:
            while not self._stop_event.is_set():
                chunk = self.src.read(CHUNK_SIZE)
                if not chunk:
                    break
                self.dst.write(chunk)
            self.dst.flush()
        except BrokenPipeError:
            # Downstream process went away; its exit status tells the story
            pass
        except (OSError, ValueError) as e:
            if not self._stop_event.is_set():
                self.error = e
        finally:
            if self.close_dst:
                try:
                    self.dst.close()
                except OSError:
                    pass


class _PipelineRun:
    """One execution of a pipeline; owns its stages privately."""

    def __init__(
        self,
        label: str,
        is_cancelled: Optional[Callable[[], bool]],
        poll_interval: float,
        niceness: Optional[int],
    ):
        self.label = label
        self.is_cancelled = is_cancelled
        self.poll_interval = poll_interval
        self.niceness = niceness
        self.processes: List[tuple] = []
        self.copier: Optional[_Copier] = None

    def start(self, name: str, cmd: Sequence[str], stdin, stdout) -> subprocess.Popen:
        if self.niceness is not None:
            cmd = ['nice', '-n', str(self.niceness), *cmd]
        stderr = tempfile.TemporaryFile()
        logger.debug(f"[{self.label}] starting {name}: {' '.join(cmd)}")
        try:
            proc = subprocess.Popen(list(cmd), stdin=stdin, stdout=stdout, stderr=stderr)
        except OSError as e:
            stderr.close()
            self.kill()
            raise PipelineError(f"{name} could not be started: {e}", stage=name) from e
        self.processes.append((name, proc, stderr))
        return proc

    def start_copy(self, name: str, src: BinaryIO, dst: BinaryIO, close_dst: bool = False) -> None:
        self.copier = _Copier(f"{self.label}:{name}", src, dst, close_dst=close_dst)
        self.copier.stage = name
        self.copier.start()

    def _all_finished(self) -> bool:
        procs_done = all(proc.poll() is not None for _, proc, _ in self.processes)
        copier_done = self.copier is None or not self.copier.is_alive()
        return procs_done and copier_done

    def _wait_slice(self) -> None:
        """Block for at most one poll interval waiting on the stages."""
        deadline = time.monotonic() + self.poll_interval
        for _, proc, _ in self.processes:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return
            try:
                proc.wait(timeout=remaining)
            except subprocess.TimeoutExpired:
                return
        if self.copier is not None:
            self.copier.join(timeout=max(0.0, deadline - time.monotonic()))

    def kill(self) -> None:
        """Force-terminate every stage, including the in-process one."""
        if self.copier is not None:
            self.copier.stop()
        for name, proc, _ in self.processes:
            if proc.poll() is None:
                logger.debug(f"[{self.label}] killing {name} (pid {proc.pid})")
                proc.kill()
        for _, proc, _ in self.processes:
            proc.wait()
        if self.copier is not None:
            self.copier.join(timeout=5)

    def _stderr_of(self, stderr_file) -> str:
        stderr_file.seek(0)
        return stderr_file.read().decode('utf-8', errors='replace').strip()

    def close(self) -> None:
        for _, proc, stderr_file in self.processes:
            for stream in (proc.stdin, proc.stdout):
                if stream is not None:
                    try:
                        stream.close()
                    except OSError:
                        pass
            stderr_file.close()

    def wait(self) -> None:
        """Drive the run to completion.

        Raises:
            AbortedError: If is_cancelled() turned true
            PipelineError: If any stage failed
        """
        while not self._all_finished():
            if self.is_cancelled is not None and self.is_cancelled():
                logger.warning(f"[{self.label}] cancellation requested, terminating pipeline")
                self.kill()
                raise AbortedError(f"{self.label} aborted by user")
            if self.copier is not None and self.copier.error is not None:
                self.kill()
                break
            self._wait_slice()

        if self.copier is not None and self.copier.error is not None:
            raise PipelineError(
                f"{self.copier.stage} failed: {self.copier.error}",
                stage=self.copier.stage,
                stderr=str(self.copier.error),
            )

        failed = [
            (name, proc.returncode, stderr_file)
            for name, proc, stderr_file in self.processes
            if proc.returncode != 0
        ]
        if failed:
            # A stage killed by SIGPIPE is a victim of a failure further down
            primary = next((f for f in failed if f[1] != -signal.SIGPIPE), failed[0])
            name, code, stderr_file = primary
            stderr = self._stderr_of(stderr_file)
            raise PipelineError(
                f"{name} exited with code {code}: {stderr}" if stderr else f"{name} exited with code {code}",
                stage=name,
                stderr=stderr,
            )


class PipelineEngine:
    """Builds and drives archive/extract pipelines.

    Args:
        poll_interval: Seconds between cancellation checks
        niceness: Priority adjustment for the external stages (None to skip)
    """

    def __init__(self, poll_interval: float = POLL_INTERVAL, niceness: Optional[int] = DEFAULT_NICENESS):
        self.poll_interval = poll_interval
        self.niceness = niceness

    def create_archive(
        self,
        source_dir: Path,
        dest_path: Path,
        compression: int = 6,
        threads: int = 0,
        exclude: Sequence[str] = DEFAULT_EXCLUDES,
        is_cancelled: Optional[Callable[[], bool]] = None,
    ) -> Path:
        """Serialize source_dir, compress it and persist it to dest_path.

        The caller owns dest_path and must delete it if this raises.
        """
        source_dir = Path(source_dir)
        dest_path = Path(dest_path)
        actual_threads = resolve_threads(threads)

        tar_cmd = ['tar', '-cf', '-']
        tar_cmd.extend(f'--exclude={pattern}' for pattern in exclude)
        tar_cmd.extend(['-C', str(source_dir), '.'])
        xz_cmd = ['xz', f'-{compression}', f'--threads={actual_threads}', '-c']

        logger.info(f"Archiving {source_dir} -> {dest_path} (xz -{compression}, {actual_threads} threads)")
        run = _PipelineRun(f"archive {source_dir.name}", is_cancelled, self.poll_interval, self.niceness)
        try:
            with open(dest_path, 'wb') as sink:
                tar = run.start('tar', tar_cmd, stdin=subprocess.DEVNULL, stdout=subprocess.PIPE)
                xz = run.start('xz', xz_cmd, stdin=tar.stdout, stdout=subprocess.PIPE)
                # Only xz holds tar's stdout now, so tar sees EPIPE if xz dies
                tar.stdout.close()
                run.start_copy('write', xz.stdout, sink)
                run.wait()
        finally:
            run.close()

        logger.info(f"Archive written: {dest_path} ({dest_path.stat().st_size} bytes)")
        return dest_path

    def extract_archive(
        self,
        archive_path: Path,
        target_dir: Path,
        threads: int = 0,
        is_cancelled: Optional[Callable[[], bool]] = None,
    ) -> Path:
        """Read archive_path, decompress it and unpack it into target_dir."""
        archive_path = Path(archive_path)
        target_dir = Path(target_dir)
        actual_threads = resolve_threads(threads)

        xz_cmd = ['xz', '-d', '-c', f'--threads={actual_threads}']
        tar_cmd = ['tar', '-xf', '-', '-C', str(target_dir)]

        logger.info(f"Extracting {archive_path} -> {target_dir}")
        run = _PipelineRun(f"extract {archive_path.name}", is_cancelled, self.poll_interval, self.niceness)
        try:
            with open(archive_path, 'rb') as source:
                xz = run.start('xz', xz_cmd, stdin=subprocess.PIPE, stdout=subprocess.PIPE)
                run.start('tar', tar_cmd, stdin=xz.stdout, stdout=subprocess.DEVNULL)
                xz.stdout.close()
                run.start_copy('read', source, xz.stdin, close_dst=True)
                run.wait()
        finally:
            run.close()

        return target_dir
