"""
Retention policy enforcement for backups.

Local and cloud windows are enforced independently. Neither sweep is fatal:
failures are logged and reported in the summary.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from wslbackup.models import RetentionPolicy
from .storage import LocalStorage, RcloneStorage, StorageError


logger = logging.getLogger(__name__)


class RetentionManager:
    """
    Prunes old archives from the local backup directory and the remote.

    Must only run after the current run's upload has been verified.
    """

    def __init__(
        self,
        local_storage: LocalStorage,
        remote_storage: RcloneStorage,
        policy: RetentionPolicy,
        log: Optional[Callable[[str], None]] = None,
    ):
        self.local_storage = local_storage
        self.remote_storage = remote_storage
        self.policy = policy
        self.log = log
        self.logs = []

    def enforce(self) -> Dict[str, Any]:
        """
        Run both sweeps.

        Returns:
            Dict with summary of cleanup operations:
            {
                'local_deleted': List[str],
                'cloud_pruned': bool,
                'errors': List[str]
            }
        """
        summary = {
            'local_deleted': [],
            'cloud_pruned': False,
            'errors': []
        }

        self._log(f"Local retention: {self.policy.local_days} days")
        summary['local_deleted'] = self.cleanup_local(summary['errors'])

        self._log(f"Cloud retention: {self.policy.cloud_days} days")
        summary['cloud_pruned'] = self.cleanup_cloud(summary['errors'])

        self._log(
            f"Retention enforcement complete. "
            f"Local deleted: {len(summary['local_deleted'])}, "
            f"Cloud pruned: {'yes' if summary['cloud_pruned'] else 'no'}, "
            f"Errors: {len(summary['errors'])}"
        )
        return summary

    def cleanup_local(self, errors: Optional[List[str]] = None) -> List[str]:
        """
        Delete local archives strictly older than the local window.

        Args:
            errors: Optional list that collects error messages

        Returns:
            Names of deleted archives
        """
        errors = errors if errors is not None else []
        cutoff_date = datetime.now() - timedelta(days=self.policy.local_days)

        try:
            files = self.local_storage.list_archives()
        except StorageError as e:
            message = f"Failed to list local archives: {e}"
            self._log(message)
            errors.append(message)
            return []

        to_delete = [f for f in files if f['modified'] < cutoff_date]

        deleted = []
        for file_info in to_delete:
            try:
                self.local_storage.delete(file_info['path'])
                deleted.append(file_info['name'])
                self._log(f"Deleted local archive: {file_info['name']}")
            except StorageError as e:
                message = f"Failed to delete local archive {file_info['name']}: {e}"
                self._log(message)
                errors.append(message)

        return deleted

    def cleanup_cloud(self, errors: Optional[List[str]] = None) -> bool:
        """
        Delete remote archives older than the cloud window in one bulk call.

        Returns:
            True if the remote delete succeeded
        """
        errors = errors if errors is not None else []
        try:
            self.remote_storage.delete_older_than(self.policy.cloud_days)
            return True
        except StorageError as e:
            message = f"Cloud retention failed: {e}"
            self._log(message)
            errors.append(message)
            return False

    def _log(self, message: str):
        self.logs.append(message)
        if self.log:
            self.log(message)
        else:
            logger.info(message)
