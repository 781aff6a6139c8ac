"""Exclusive locking of the shared derived data directory.

xcodebuild is not safe when several builds share one derived data
directory, so a directory build holds an exclusive file lock on it for its
whole duration. The lock file sits next to the directory
(``<directory>.lock``) and uses ``fcntl.flock``, which also excludes other
open handles inside the same process.
"""

from __future__ import annotations

import fcntl
import logging
import os
import time
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from fatbuild.errors import LockTimeoutError

logger = logging.getLogger(__name__)

POLL_INTERVAL = 0.1


def lock_path_for(directory: Path) -> Path:
    """Return the lock file used for a directory."""
    return directory.with_name(f"{directory.name}.lock")


@contextmanager
def directory_lock(directory: Path, timeout: float | None = None) -> Iterator[Path]:
    """Acquire an exclusive lock on a directory.

    The lock is released exactly once when the ``with`` block exits, on
    every exit path including exceptions and generator closing.

    Args:
        directory: Directory to lock (need not exist yet).
        timeout: Acquisition timeout in seconds (None = blocking).

    Yields:
        Path of the lock file while the lock is held.

    Raises:
        LockTimeoutError: If the lock cannot be acquired within timeout.
    """
    lock_file = lock_path_for(directory)
    lock_file.parent.mkdir(parents=True, exist_ok=True)

    logger.debug("Acquiring lock on %s", directory)

    fd = os.open(str(lock_file), os.O_RDWR | os.O_CREAT, 0o600)
    lock_acquired = False
    try:
        if timeout is not None:
            start = time.monotonic()
            while True:
                try:
                    fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                    lock_acquired = True
                    break
                except BlockingIOError:
                    if time.monotonic() - start >= timeout:
                        raise LockTimeoutError(directory, timeout) from None
                    time.sleep(POLL_INTERVAL)
        else:
            fcntl.flock(fd, fcntl.LOCK_EX)
            lock_acquired = True

        logger.debug("Lock acquired on %s", directory)
        yield lock_file
    finally:
        if lock_acquired:
            fcntl.flock(fd, fcntl.LOCK_UN)
            logger.debug("Lock released on %s", directory)
        os.close(fd)


__all__ = ["directory_lock", "lock_path_for"]
