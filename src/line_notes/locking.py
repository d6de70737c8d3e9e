"""OS-level locks guarding note sidecar files across processes."""

import contextlib
import os
import sys
import time
from collections.abc import Generator
from pathlib import Path
from typing import Literal

# Platform-specific imports
try:
    import fcntl  # Unix file locking
except ImportError:
    fcntl = None  # type: ignore[assignment]

try:
    import msvcrt  # Windows file locking
except ImportError:
    msvcrt = None  # type: ignore[assignment]


LockMode = Literal["shared", "exclusive"]

MAX_BACKOFF_SECONDS = 0.1


class LockTimeout(Exception):  # noqa: N818
    """Raised when a sidecar lock cannot be acquired in time."""

    pass


def lock_path_for(path: Path) -> Path:
    """Sibling lock file for a sidecar (``foo.py.json`` -> ``foo.py.json.lock``).

    Sidecars are replaced by atomic rename, so the lock lives on a separate
    file whose inode is stable across writes.
    """
    return path.with_name(path.name + ".lock")


@contextlib.contextmanager
def sidecar_lock(
    path: Path, mode: LockMode = "exclusive", timeout: float = 5.0
) -> Generator[Path, None, None]:
    """
    Hold a lock for ``path`` for the duration of the context.

    Uses flock on Unix and msvcrt.locking on Windows (exclusive only there).

    Args:
        path: Sidecar file being protected (need not exist yet)
        mode: "shared" for reads, "exclusive" for writes
        timeout: Maximum seconds to wait for the lock

    Yields:
        The lock file path

    Raises:
        LockTimeout: If the lock cannot be acquired within timeout
    """
    lock_path = lock_path_for(path)
    lock_path.parent.mkdir(parents=True, exist_ok=True)

    with open(lock_path, "a+", encoding="utf-8") as handle:
        fd = handle.fileno()
        _acquire(fd, mode, timeout)
        try:
            yield lock_path
        finally:
            _release(fd)


def _backoff(start_time: float, mode: LockMode, timeout: float) -> None:
    elapsed = time.monotonic() - start_time
    if elapsed >= timeout:
        raise LockTimeout(f"Failed to acquire {mode} lock after {timeout:.1f} seconds")
    # Exponential backoff capped at 100ms
    time.sleep(min(0.01 * (2 ** min(int(elapsed * 10), 10)), MAX_BACKOFF_SECONDS))


def _acquire(fd: int, mode: LockMode, timeout: float) -> None:
    start_time = time.monotonic()

    if sys.platform == "win32":
        while True:
            try:
                os.lseek(fd, 0, os.SEEK_SET)
                msvcrt.locking(fd, msvcrt.LK_NBLCK, 1)  # type: ignore[attr-defined]
                return
            except OSError:
                _backoff(start_time, mode, timeout)

    operation = fcntl.LOCK_SH if mode == "shared" else fcntl.LOCK_EX
    while True:
        try:
            fcntl.flock(fd, operation | fcntl.LOCK_NB)
            return
        except BlockingIOError:
            _backoff(start_time, mode, timeout)


def _release(fd: int) -> None:
    # Unlock errors mean the lock is already gone; the close that follows releases it anyway
    try:
        if sys.platform == "win32":
            os.lseek(fd, 0, os.SEEK_SET)
            msvcrt.locking(fd, msvcrt.LK_UNLCK, 1)  # type: ignore[attr-defined]
        else:
            fcntl.flock(fd, fcntl.LOCK_UN)
    except OSError:
        pass
