"""
Storage handlers for backup archives.

Supports:
- RcloneStorage: remote location reached through the rclone executable
- LocalStorage: archives kept in the local backup directory
"""

import os
import re
import json
import logging
from datetime import datetime
from typing import List, Optional

from wslbackup.models import RemoteEntry
from wslbackup.utils.process import run_command
from wslbackup.errors import BackupError, UploadFailed, DownloadFailed
from .compression import ARCHIVE_EXTENSION


logger = logging.getLogger(__name__)

_FRACTION_RE = re.compile(r'(\.\d{6})\d+')


class StorageError(BackupError):
    """Raised when a remote or local storage operation fails."""
    stage = 'storage'


class RcloneStorage:
    """
    Handler for an rclone remote.

    All archives live flat under the configured location:
    {remote:path}/{filename}
    """

    def __init__(self, remote: str, rclone_exe: str = 'rclone', retries: int = 3,
                 retries_sleep: str = '10s'):
        """
        Initialize rclone storage handler.

        Args:
            remote: Remote location in remote:path form
            rclone_exe: Path or name of the rclone executable
            retries: Whole-transfer retries rclone performs on failure
            retries_sleep: Backoff between retries (rclone duration)
        """
        self.remote = remote.rstrip('/')
        self.rclone_exe = rclone_exe
        self.retries = retries
        self.retries_sleep = retries_sleep

    def remote_path(self, name: str) -> str:
        """Full remote path of an object in the location."""
        if self.remote.endswith(':'):
            return f"{self.remote}{name}"
        return f"{self.remote}/{name}"

    def mkdir(self):
        """
        Create the remote location if absent (idempotent).

        Raises:
            StorageError: If rclone fails
        """
        result = self._run('mkdir', self.remote)
        if not result.ok:
            raise StorageError(f"rclone mkdir {self.remote} failed: {result.error_text()}")

    def upload(self, local_path: str) -> str:
        """
        Copy an archive into the remote location.

        Args:
            local_path: Path to local archive file

        Returns:
            Remote path of the uploaded object

        Raises:
            UploadFailed: If the file is missing or rclone exits non-zero after its retries
        """
        if not os.path.exists(local_path):
            raise UploadFailed(f"Local file not found: {local_path}")

        try:
            self.mkdir()
        except StorageError as e:
            raise UploadFailed(str(e))

        result = self._run(
            'copy', local_path, self.remote,
            '--retries', str(self.retries),
            '--retries-sleep', self.retries_sleep,
            '--low-level-retries', '10',
        )
        if not result.ok:
            raise UploadFailed(
                f"rclone copy failed after {self.retries} attempts (exit {result.returncode}): "
                f"{result.error_text()}"
            )

        return self.remote_path(os.path.basename(local_path))

    def download(self, name: str, dest_dir: str) -> str:
        """
        Fetch an object from the remote location.

        Args:
            name: Object name in the remote location
            dest_dir: Local directory to copy into

        Returns:
            Local path of the downloaded file

        Raises:
            DownloadFailed: If rclone fails or the file does not appear
        """
        try:
            os.makedirs(dest_dir, exist_ok=True)
        except OSError as e:
            raise DownloadFailed(f"Cannot create download directory {dest_dir}: {e}")
        result = self._run(
            'copy', self.remote_path(name), dest_dir,
            '--retries', str(self.retries),
            '--retries-sleep', self.retries_sleep,
        )
        local_path = os.path.join(dest_dir, name)
        if not result.ok:
            raise DownloadFailed(f"rclone copy of {name} failed (exit {result.returncode}): {result.error_text()}")
        if not os.path.exists(local_path):
            raise DownloadFailed(f"Download finished but {local_path} does not exist")
        return local_path

    def list_objects(self) -> List[RemoteEntry]:
        """
        List files in the remote location.

        Returns:
            List of RemoteEntry (empty if the location does not exist yet)

        Raises:
            StorageError: If listing fails
        """
        result = self._run('lsjson', self.remote, '--files-only')
        if not result.ok:
            error = result.error_text()
            if 'directory not found' in error.lower():
                return []
            raise StorageError(f"rclone lsjson {self.remote} failed: {error}")

        try:
            items = json.loads(result.text() or '[]')
        except json.JSONDecodeError as e:
            raise StorageError(f"Unexpected rclone lsjson output: {e}")

        return [
            RemoteEntry(
                name=item.get('Name') or item.get('Path'),
                size=int(item.get('Size', 0)),
                modified=parse_rclone_time(item.get('ModTime')),
            )
            for item in items
            if not item.get('IsDir')
        ]

    def list_archives(self) -> List[RemoteEntry]:
        """List only .tar.zst archives in the remote location."""
        return [entry for entry in self.list_objects() if entry.name.endswith(ARCHIVE_EXTENSION)]

    def hashsum(self, name: str, algorithm: str = 'MD5') -> Optional[str]:
        """
        Ask the remote for an object's digest.

        Args:
            name: Object name in the remote location
            algorithm: rclone hash name

        Returns:
            Lowercase hex digest, or None if the object is missing or the
            remote cannot report this hash

        Raises:
            StorageError: If rclone fails
        """
        result = self._run('hashsum', algorithm, self.remote_path(name))
        if not result.ok:
            error = result.error_text()
            if 'not found' in error.lower():
                return None
            raise StorageError(f"rclone hashsum {name} failed: {error}")

        for line in result.text().splitlines():
            parts = line.strip().split(None, 1)
            if len(parts) != 2:
                continue
            digest, listed_name = parts
            if listed_name.strip() != name:
                continue
            if re.fullmatch(r'[0-9a-fA-F]+', digest):
                return digest.lower()
            # UNSUPPORTED or empty hash
            return None

        return None

    def delete_older_than(self, days: int) -> bool:
        """
        Delete archives older than the given age, using rclone's age filter.

        Args:
            days: Minimum age in days of objects to delete

        Returns:
            True if rclone succeeded

        Raises:
            StorageError: If rclone fails
        """
        result = self._run(
            'delete', self.remote,
            '--min-age', f'{days}d',
            '--include', f'*{ARCHIVE_EXTENSION}',
        )
        if not result.ok:
            raise StorageError(f"rclone delete --min-age {days}d failed: {result.error_text()}")
        return True

    def _run(self, *args):
        return run_command([self.rclone_exe, *args])


def parse_rclone_time(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an rclone ModTime (RFC 3339 with nanoseconds) as naive local time.
    """
    if not value:
        return None
    text = _FRACTION_RE.sub(r'\1', value.replace('Z', '+00:00'))
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        logger.debug(f"Unparseable rclone time: {value}")
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone().replace(tzinfo=None)
    return parsed


class LocalStorage:
    """
    Handler for archives kept in the local backup directory.

    Archives sit directly in {base_path}/{filename}.
    """

    def __init__(self, base_path: str):
        """
        Initialize local storage handler.

        Args:
            base_path: Local backup directory
        """
        self.base_path = base_path

        try:
            os.makedirs(self.base_path, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Failed to create local backup directory: {e}")

    def list_archives(self) -> list:
        """
        List archive files, newest first.

        Returns:
            List of dicts with 'path', 'name', 'modified', and 'size' keys

        Raises:
            StorageError: If listing fails
        """
        try:
            files = []

            for entry in os.scandir(self.base_path):
                if entry.is_file() and entry.name.endswith(ARCHIVE_EXTENSION):
                    stat = entry.stat()
                    files.append({
                        'path': entry.path,
                        'name': entry.name,
                        'modified': datetime.fromtimestamp(stat.st_mtime),
                        'size': stat.st_size
                    })

            files.sort(key=lambda f: f['modified'], reverse=True)
            return files

        except OSError as e:
            raise StorageError(f"Failed to list local archives: {e}")

    def delete(self, path: str):
        """
        Delete an archive.

        Raises:
            StorageError: If deletion fails
        """
        try:
            if os.path.exists(path):
                os.remove(path)
        except PermissionError as e:
            raise StorageError(f"Permission denied deleting {path}: {e}")
        except OSError as e:
            raise StorageError(f"Failed to delete local file {path}: {e}")
