"""Exclusive sections for index mutations.

A store's index is rewritten whole on every change, so two writers that both
read it and then write it back lose one update. Every mutation of a given
index therefore runs inside ``exclusive_section(lock_path)``:

- threads of one process serialize on a ``threading.Lock`` per lock file,
  kept only while some caller holds or waits for it
- processes serialize on an advisory ``fcntl.flock`` of the lock file
  (skipped on platforms without fcntl)

Callers re-read the index inside the section before merging their change.
"""

import logging
import os
import threading
import weakref
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

try:
    import fcntl
except ImportError:  # Windows or unsupported platform
    fcntl = None

logger = logging.getLogger(__name__)


class _PathLock:
    """A threading.Lock that can be weakly referenced."""

    __slots__ = ("_lock", "__weakref__")

    def __init__(self):
        self._lock = threading.Lock()

    def __enter__(self) -> "_PathLock":
        self._lock.acquire()
        return self

    def __exit__(self, *exc_info) -> None:
        self._lock.release()


# Entries vanish once no section for that path is open or waiting
_thread_locks: "weakref.WeakValueDictionary[str, _PathLock]" = weakref.WeakValueDictionary()
_thread_locks_guard = threading.Lock()


def _thread_lock_for(lock_path: Path) -> _PathLock:
    """Return the process-wide lock for a lock file, creating it if needed."""
    key = str(lock_path.resolve())
    with _thread_locks_guard:
        lock = _thread_locks.get(key)
        if lock is None:
            lock = _PathLock()
            _thread_locks[key] = lock
        return lock


@contextmanager
def exclusive_section(lock_path: Path) -> Iterator[None]:
    """Hold the exclusive section guarded by ``lock_path``.

    Creates the lock file (0o600) and its directory (0o700) if needed.

    Raises:
        OSError: if the lock file cannot be created or locked
    """
    lock_path = Path(lock_path)
    lock_path.parent.mkdir(parents=True, exist_ok=True, mode=0o700)

    path_lock = _thread_lock_for(lock_path)
    with path_lock:
        fd = os.open(lock_path, os.O_RDWR | os.O_CREAT, 0o600)
        try:
            if fcntl:
                fcntl.flock(fd, fcntl.LOCK_EX)
            logger.debug(f"Entered exclusive section: {lock_path}")
            try:
                yield
            finally:
                if fcntl:
                    fcntl.flock(fd, fcntl.LOCK_UN)
        finally:
            os.close(fd)
