"""
Lock management for the ledger.

Uses flock for an advisory per-project lock around ledger
read-modify-write cycles.
"""

import fcntl
import logging
import os
import time
from contextlib import contextmanager
from pathlib import Path

from phaseflow.lib.errors import LockTimeout

logger = logging.getLogger(__name__)

POLL_INTERVAL = 0.1


@contextmanager
def _acquire_lock(lock_file: Path, timeout: float, lock_name: str):
    """
    Internal helper to acquire a file lock.

    Args:
        lock_file: Path to the lock file
        timeout: Seconds to wait for lock
        lock_name: Human-readable name for error messages

    Lock files are never deleted: removing one lets two processes hold
    "exclusive" locks on different inodes behind the same path.
    """
    lock_file.parent.mkdir(parents=True, exist_ok=True)

    fd = open(lock_file, 'w')
    start = time.monotonic()

    while True:
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
            break
        except BlockingIOError:
            if time.monotonic() - start > timeout:
                fd.close()
                raise LockTimeout(lock_name, timeout) from None
            time.sleep(POLL_INTERVAL)

    try:
        fd.write(f"{os.getpid()}\n")
        fd.flush()
        logger.debug(f"[LOCK] Acquired {lock_name}")
        yield
    finally:
        fcntl.flock(fd, fcntl.LOCK_UN)
        fd.close()
        logger.debug(f"[LOCK] Released {lock_name}")


@contextmanager
def ledger_lock(lock_file: Path, timeout: float = 30):
    """
    Acquire the ledger lock, yield, release on exit.

    Serializes ledger mutations across processes sharing a project.
    """
    with _acquire_lock(lock_file, timeout, "ledger lock"):
        yield


def is_locked(lock_file: Path) -> bool:
    """True if another process currently holds the lock."""
    if not lock_file.exists():
        return False
    with open(lock_file, 'r') as fd:
        try:
            # Try non-blocking exclusive lock
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            return True
        fcntl.flock(fd, fcntl.LOCK_UN)
    return False
