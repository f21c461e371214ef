"""Tests for the per-container operation registry."""
import threading

import pytest

from lxckeeper.core.errors import ConflictError, NotFoundError
from lxckeeper.core.registry import OperationRegistry
from lxckeeper.models.operation import OperationKind


def test_acquire_and_release():
    registry = OperationRegistry()

    operation = registry.acquire('web1', OperationKind.BACKUP, backup_file='web1_x.tar.xz')

    assert registry.get('web1') is operation
    assert operation.details['backup_file'] == 'web1_x.tar.xz'
    registry.release('web1')
    assert registry.get('web1') is None


def test_conflict_names_running_kind():
    registry = OperationRegistry()
    registry.acquire('web1', OperationKind.RESTORE)

    with pytest.raises(ConflictError, match='restore already in progress'):
        registry.acquire('web1', OperationKind.BACKUP)


def test_release_ignores_foreign_operation():
    registry = OperationRegistry()
    first = registry.acquire('web1', OperationKind.BACKUP)
    registry.release('web1', first)
    second = registry.acquire('web1', OperationKind.BACKUP)

    registry.release('web1', first)

    assert registry.get('web1') is second


def test_request_cancel_calls_hook():
    registry = OperationRegistry()
    fired = threading.Event()
    registry.acquire('web1', OperationKind.BACKUP, cancel_hook=fired.set)

    operation = registry.request_cancel('web1')

    assert operation.cancel_requested
    assert fired.is_set()


def test_request_cancel_without_operation():
    with pytest.raises(NotFoundError):
        OperationRegistry().request_cancel('web1')


def test_active_sorted():
    registry = OperationRegistry()
    registry.acquire('web2', OperationKind.BACKUP)
    registry.acquire('db1', OperationKind.CONVERT_STORAGE)

    assert [op.container for op in registry.active()] == ['db1', 'web2']
    assert registry.active()[0].to_dict()['kind'] == 'convert-storage'


def test_concurrent_acquire_single_winner():
    registry = OperationRegistry()
    barrier = threading.Barrier(16)
    winners = []
    lock = threading.Lock()

    def contender():
        barrier.wait()
        try:
            registry.acquire('web1', OperationKind.BACKUP)
        except ConflictError:
            return
        with lock:
            winners.append(threading.current_thread().name)

    threads = [threading.Thread(target=contender) for _ in range(16)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(winners) == 1
