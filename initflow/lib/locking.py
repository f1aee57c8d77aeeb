"""
Per-initiative file locks.

Transitions read state.yaml, check gates and write it back. The lock turns
that sequence into a critical section across processes. Locks are flock()s
on <initiatives>/.locks/<id>.lock and disappear with the process that holds
them.
"""

import atexit
import fcntl
import os
import time
from contextlib import contextmanager
from pathlib import Path

LOCKS_DIRNAME = ".locks"
RETRY_DELAY = 0.1


class LockTimeout(Exception):
    """Another process kept the lock for longer than the timeout."""


def _try_flock(handle) -> bool:
    try:
        fcntl.flock(handle, fcntl.LOCK_EX | fcntl.LOCK_NB)
    except BlockingIOError:
        return False
    return True


@contextmanager
def _held_lock(lock_path: Path, timeout: float, description: str):
    """Hold an exclusive flock on lock_path for the duration of the block."""
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    handle = open(lock_path, "a+")

    deadline = time.monotonic() + timeout
    while not _try_flock(handle):
        if time.monotonic() >= deadline:
            handle.close()
            raise LockTimeout(f"Timed out after {timeout}s waiting for {description}")
        time.sleep(RETRY_DELAY)

    def release():
        if not handle.closed:
            fcntl.flock(handle, fcntl.LOCK_UN)
            handle.close()

    # Interpreter exit inside the block still releases
    atexit.register(release)
    try:
        handle.seek(0)
        handle.truncate()
        handle.write(f"{os.getpid()}\n")
        handle.flush()
        yield
    finally:
        atexit.unregister(release)
        release()


@contextmanager
def initiative_lock(base_path: Path, initiative_id: str, timeout: float = 30):
    """Serialize state changes for one initiative.

    Lock files are left in place; removing them would let two processes
    lock different inodes behind the same name.

    Raises:
        LockTimeout: If the lock is not acquired within timeout seconds
    """
    lock_path = base_path / LOCKS_DIRNAME / f"{initiative_id}.lock"
    with _held_lock(lock_path, timeout, f"the {initiative_id} lock"):
        yield
