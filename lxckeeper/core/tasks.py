"""Background execution of lifecycle operations."""
import threading
from concurrent.futures import Future
from typing import Callable

from lxckeeper.core.logger import get_logger

logger = get_logger(__name__)


def spawn(name: str, func: Callable, *args, **kwargs) -> Future:
    """Run func on its own thread and return a Future for its result.

    There is no worker pool: every operation gets a dedicated thread, so
    operations on different containers never wait on each other. Threads
    are non-daemon so a short-lived CLI process waits for compensation to
    finish before exiting.
    """
    future: Future = Future()

    def runner():
        if not future.set_running_or_notify_cancel():
            return
        try:
            future.set_result(func(*args, **kwargs))
        except BaseException as e:
            logger.error(f"Background task {name} crashed: {e}")
            future.set_exception(e)

    thread = threading.Thread(target=runner, name=name, daemon=False)
    thread.start()
    return future
