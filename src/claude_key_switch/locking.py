"""File locking for concurrent access protection."""

from __future__ import annotations

import sys
import time
from pathlib import Path
from typing import IO

# Platform-specific imports for file locking
if sys.platform == "win32":
    import msvcrt
else:
    import fcntl

from claude_key_switch.exceptions import StoreBusy, StoreWriteError

DEFAULT_LOCK_TIMEOUT = 5.0
POLL_INTERVAL = 0.05


class FileLock:
    """Cross-process file lock using platform-specific APIs.

    The lock guards the whole load/mutate/save section of the key store.
    Acquisition is bounded so an interactive shell never hangs on a stuck
    holder.
    """

    def __init__(self, lock_path: Path, timeout: float = DEFAULT_LOCK_TIMEOUT):
        self.lock_path = lock_path
        self.timeout = timeout
        self._lock_file: IO | None = None
        self._locked = False

    def acquire(self, timeout: float | None = None) -> bool:
        """Acquire exclusive lock with timeout.

        Args:
            timeout: Maximum seconds to wait for lock. Defaults to the
                timeout given at construction.

        Returns:
            True if lock acquired, False if timeout.

        Raises:
            StoreWriteError: If the lock file cannot be created.
        """
        if timeout is None:
            timeout = self.timeout

        try:
            self.lock_path.parent.mkdir(parents=True, exist_ok=True)
            self._lock_file = open(self.lock_path, "a")
        except OSError as e:
            raise StoreWriteError(f"Cannot open lock file {self.lock_path}: {e}") from e

        start = time.monotonic()
        while True:
            try:
                if sys.platform == "win32":
                    msvcrt.locking(self._lock_file.fileno(), msvcrt.LK_NBLCK, 1)
                else:
                    fcntl.flock(self._lock_file.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                self._locked = True
                return True
            except (BlockingIOError, OSError):
                if time.monotonic() - start >= timeout:
                    self._lock_file.close()
                    self._lock_file = None
                    return False
                time.sleep(POLL_INTERVAL)

    def release(self) -> None:
        """Release the lock."""
        if self._lock_file and self._locked:
            if sys.platform == "win32":
                try:
                    msvcrt.locking(self._lock_file.fileno(), msvcrt.LK_UNLCK, 1)
                except OSError:
                    pass  # File may already be unlocked
            else:
                fcntl.flock(self._lock_file.fileno(), fcntl.LOCK_UN)
            self._lock_file.close()
            self._lock_file = None
            self._locked = False

    @property
    def locked(self) -> bool:
        return self._locked

    def __enter__(self) -> FileLock:
        if not self.acquire():
            raise StoreBusy(
                f"Key store is busy (lock not acquired within {self.timeout:g}s)"
            )
        return self

    def __exit__(self, *args) -> None:
        self.release()
