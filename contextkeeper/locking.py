"""
Locks for the item store.

- ReadWriteLock: in-process readers-writer lock. Any number of readers,
  or exactly one writer. Waiting writers block new readers.
- file_lock: advisory inter-process lock on a sidecar lock file.

Platform Support:
- POSIX systems (Linux, macOS): fcntl.flock on the lock file
- Elsewhere: a per-path threading.Lock (thread-safe only, not process-safe)
"""

import logging
import os
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

try:
    import fcntl

    HAS_FCNTL = True
except ImportError:
    HAS_FCNTL = False

logger = logging.getLogger(__name__)

# Fallback locks for systems without fcntl
_path_locks: dict[str, threading.Lock] = {}
_path_locks_lock = threading.Lock()


class ReadWriteLock:
    """
    Readers-writer lock with writer preference.

    Not reentrant: a thread holding either side must not acquire again.
    """

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    def acquire_read(self) -> None:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1

    def release_read(self) -> None:
        with self._cond:
            if self._readers <= 0:
                raise RuntimeError("release_read() without matching acquire_read()")
            self._readers -= 1
            if self._readers == 0:
                self._cond.notify_all()

    def acquire_write(self) -> None:
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True

    def release_write(self) -> None:
        with self._cond:
            if not self._writer:
                raise RuntimeError("release_write() without matching acquire_write()")
            self._writer = False
            self._cond.notify_all()

    @contextmanager
    def read_locked(self) -> Iterator[None]:
        """Hold the shared side for the duration of the block."""
        self.acquire_read()
        try:
            yield
        finally:
            self.release_read()

    @contextmanager
    def write_locked(self) -> Iterator[None]:
        """Hold the exclusive side for the duration of the block."""
        self.acquire_write()
        try:
            yield
        finally:
            self.release_write()


def _get_thread_lock(lock_path: Path) -> threading.Lock:
    """Get or create a threading.Lock for the given path."""
    key = str(lock_path)
    with _path_locks_lock:
        if key not in _path_locks:
            _path_locks[key] = threading.Lock()
        return _path_locks[key]


@contextmanager
def file_lock(lock_path: Path) -> Iterator[None]:
    """
    Hold an exclusive advisory lock on ``lock_path`` for the block.

    The lock file is created (with parent directories) if needed and left
    in place afterwards. Blocks until the lock is available.

    Raises:
        OSError: If the lock file cannot be created or locked
    """
    lock_path = Path(lock_path)

    if not HAS_FCNTL:
        thread_lock = _get_thread_lock(lock_path)
        with thread_lock:
            logger.debug("Acquired thread lock on %s (fallback mode)", lock_path)
            yield
        return

    lock_path.parent.mkdir(parents=True, exist_ok=True)
    fd = os.open(lock_path, os.O_RDWR | os.O_CREAT, 0o644)
    try:
        fcntl.flock(fd, fcntl.LOCK_EX)
        logger.debug("Acquired fcntl lock on %s", lock_path)
        try:
            yield
        finally:
            fcntl.flock(fd, fcntl.LOCK_UN)
            logger.debug("Released fcntl lock on %s", lock_path)
    finally:
        os.close(fd)
