"""
Backup module for wslbackup.

This module handles the core backup functionality including:
- Distro export with progress monitoring
- Compression
- Storage (rclone remote and local directory)
- Verification
- Retention policy enforcement
- Execution orchestration and restore
"""

from .executor import BackupExecutor, execute_backup
from .sources import WslSource, ExportMonitor
from .compression import ZstdCodec, compress_export, decompress_archive
from .storage import RcloneStorage, LocalStorage
from .verify import verify_upload
from .retention import RetentionManager
from .restore import RestoreOrchestrator, execute_restore

__all__ = [
    'BackupExecutor',
    'execute_backup',
    'WslSource',
    'ExportMonitor',
    'ZstdCodec',
    'compress_export',
    'decompress_archive',
    'RcloneStorage',
    'LocalStorage',
    'verify_upload',
    'RetentionManager',
    'RestoreOrchestrator',
    'execute_restore'
]
