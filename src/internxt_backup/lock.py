"""Single-instance lock for backup and restore runs.

The lock file holds the holder's PID as decimal text. A second invocation
fails fast while the holder is alive; a lock left behind by a dead process
is taken over. Takeover is serialized through a portalocker guard file so
two racing processes cannot both delete and recreate the lock.
"""

import atexit
import logging
import os
import time
from pathlib import Path
from typing import Optional

import portalocker
import psutil

from .constants import LOCK_FILE, PRIVATE_FILE_MODE
from .errors import LockError, LockHeldError
from .utils import get_state_dir

logger = logging.getLogger(__name__)

_RACE_RETRY_DELAY = 0.05


class InstanceLock:
    """PID-tagged lock file, usable as a context manager."""

    def __init__(self, lock_path: Optional[Path] = None, max_attempts: int = 5):
        self.lock_path = Path(lock_path) if lock_path else get_state_dir() / LOCK_FILE
        self.max_attempts = max_attempts
        self._held = False

    @property
    def held(self) -> bool:
        return self._held

    def _read_holder(self) -> Optional[int]:
        """PID recorded in the lock file, or None if missing/unparseable."""
        try:
            content = self.lock_path.read_text().strip()
        except OSError:
            return None
        try:
            return int(content)
        except ValueError:
            return None

    @staticmethod
    def _is_alive(pid: int) -> bool:
        if pid <= 0:
            return False
        return psutil.pid_exists(pid)

    def _try_create(self) -> bool:
        """Create the lock file exclusively; False if it already exists."""
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            fd = os.open(
                str(self.lock_path),
                os.O_CREAT | os.O_EXCL | os.O_WRONLY,
                PRIVATE_FILE_MODE,
            )
        except FileExistsError:
            return False
        with os.fdopen(fd, "w") as f:
            f.write(str(os.getpid()))
            f.flush()
            os.fsync(f.fileno())
        return True

    @property
    def guard_path(self) -> Path:
        return self.lock_path.with_name(self.lock_path.name + ".guard")

    def _evict_stale(self, expected_holder: Optional[int]) -> None:
        """Remove the lock file if it still belongs to ``expected_holder``."""
        guard = self.guard_path
        fd = os.open(str(guard), os.O_CREAT | os.O_WRONLY, PRIVATE_FILE_MODE)
        os.close(fd)
        with portalocker.Lock(str(guard), "w", timeout=5):
            # Re-check after acquiring the guard (another process may have taken over)
            if self._read_holder() == expected_holder:
                self.lock_path.unlink(missing_ok=True)

    def _claim(self) -> bool:
        if not self._try_create():
            return False
        self._held = True
        atexit.register(self.release)
        logger.debug("Acquired instance lock %s", self.lock_path)
        return True

    def acquire(self) -> "InstanceLock":
        """Acquire the lock.

        Unparseable lock contents are treated as stale once a short grace
        period has passed without a PID appearing.

        Raises:
            LockHeldError: If a live process holds the lock
            LockError: If the lock could not be acquired after retries
        """
        for _ in range(self.max_attempts):
            if self._claim():
                return self

            holder = self._read_holder()
            if holder == os.getpid():
                self._held = True
                return self

            if holder is None:
                # Holder may be between create and write; give it a moment
                time.sleep(_RACE_RETRY_DELAY)
                holder = self._read_holder()

            if holder is not None and self._is_alive(holder):
                raise LockHeldError(holder, str(self.lock_path))

            logger.warning("Removing stale lock from PID %s", holder if holder is not None else "<unknown>")
            try:
                self._evict_stale(holder)
            except portalocker.exceptions.LockException as e:
                logger.debug("Lock takeover contended: %s", e)

            if self._claim():
                return self
            time.sleep(_RACE_RETRY_DELAY)

        raise LockError(f"Could not acquire instance lock {self.lock_path} after {self.max_attempts} attempts")

    def release(self) -> None:
        """Release the lock if this process holds it (idempotent)."""
        if not self._held:
            return
        self._held = False
        try:
            atexit.unregister(self.release)
            if self._read_holder() == os.getpid():
                self.lock_path.unlink(missing_ok=True)
                logger.debug("Released instance lock %s", self.lock_path)
            self.guard_path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning("Could not remove lock file %s: %s", self.lock_path, e)

    def __enter__(self) -> "InstanceLock":
        return self.acquire()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()
