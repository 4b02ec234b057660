import os
import time
import logging

from wslbackup.errors import RunInProgress


logger = logging.getLogger(__name__)

LOCK_FILENAME = '.wslbackup.lock'

# No run takes this long; an older lock was left behind by a crashed process
STALE_AFTER_SECONDS = 24 * 3600


class RunLock:
    """
    Exclusive lock on a backup directory, held for the duration of a run.

    Usage:
        with RunLock(backup_dir):
            ...
    """

    def __init__(self, directory: str, stale_after: float = STALE_AFTER_SECONDS):
        self.path = os.path.join(directory, LOCK_FILENAME)
        self.stale_after = stale_after
        self._held = False

    def acquire(self):
        """
        Create the lock file.

        Raises:
            RunInProgress: If another run holds a fresh lock
        """
        os.makedirs(os.path.dirname(self.path), exist_ok=True)

        if self._is_stale():
            logger.warning(f"Removing stale lock file: {self.path}")
            try:
                os.remove(self.path)
            except FileNotFoundError:
                pass

        try:
            fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
        except FileExistsError:
            raise RunInProgress(f"Another run is in progress (lock file: {self.path})")

        with os.fdopen(fd, 'w') as f:
            f.write(f"{os.getpid()} {int(time.time())}\n")
        self._held = True

    def release(self):
        if not self._held:
            return
        try:
            os.remove(self.path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Failed to remove lock file {self.path}: {e}")
        self._held = False

    def _is_stale(self) -> bool:
        try:
            age = time.time() - os.path.getmtime(self.path)
        except FileNotFoundError:
            return False
        return age > self.stale_after

    def __enter__(self):
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.release()
        return False
